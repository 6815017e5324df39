"""Reference models for stored invoice artifacts and build results."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class DataReference(BaseModel):
    """Reference to a stored artifact with metadata for retrieval and verification.

    Attributes:
        storage_uri: Absolute file path to the artifact
        content_hash: SHA256 hash of the content for integrity verification
        content_type: MIME type of the stored content
        size_bytes: Size of the artifact in bytes
        stored_at: Timestamp when the artifact was stored
    """
    storage_uri: str = Field(..., description="Absolute file path to the artifact")
    content_hash: str = Field(..., description="SHA256 hash of content")
    content_type: str = Field(default="application/json", description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    stored_at: datetime = Field(default_factory=datetime.utcnow, description="Storage timestamp")


class InvoiceBuildResult(BaseModel):
    """Outcome of building one order's invoice payload.

    Attributes:
        order_code: Sales order the payload was built for
        status: Reconciliation status ("PASS", "WARN", "FAIL")
        line_count: Number of detail lines in the payload
        inferred_line_count: Detail lines synthesized from unmatched stock movements
        checks: Individual reconciliation check results
        payload_ref: Reference to the stored payload JSON
        report_ref: Reference to the stored reconciliation report JSON
    """
    order_code: str = Field(..., description="Sales order code")
    status: str = Field(..., description="Overall status: PASS, WARN, or FAIL")
    line_count: int = Field(default=0, description="Detail lines in payload")
    inferred_line_count: int = Field(default=0, description="Lines synthesized from movements")
    checks: list[dict] = Field(default_factory=list, description="Individual check results")
    payload_ref: Optional[DataReference] = Field(None, description="Payload artifact reference")
    report_ref: Optional[DataReference] = Field(None, description="Report artifact reference")
