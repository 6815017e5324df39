"""Invoice payload assembly.

- InvoicePayloadAssembler: detail, cbdetail and envelope
- InvoiceBuilder / build_invoice_payload: per-order pipeline entry point
"""

from .assembler import (
    InvoicePayloadAssembler,
    ResolvedLine,
    limit_string,
    format_document_date,
)
from .builder import (
    InvoiceBuild,
    InvoiceBuilder,
    build_invoice_payload,
)

__all__ = [
    "InvoicePayloadAssembler",
    "ResolvedLine",
    "limit_string",
    "format_document_date",
    "InvoiceBuild",
    "InvoiceBuilder",
    "build_invoice_payload",
]
