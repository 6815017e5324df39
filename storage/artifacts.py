"""Artifact storage for built invoice payloads and reconciliation reports.

Artifacts are JSON files under a base directory, one folder per order:

    <base>/<order_code>/payload.json
    <base>/<order_code>/report.json

Each write returns a DataReference carrying the content hash, so a reader
can verify the file it loads is the one that was produced.
"""

import hashlib
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from models.refs import DataReference


_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def serialize_json(obj: Any) -> bytes:
    """Canonical JSON bytes: sorted keys, UTF-8, no ASCII escaping.

    The same payload always serializes to the same bytes.
    """
    if hasattr(obj, "model_dump"):
        obj = obj.model_dump(mode="json", by_alias=True)
    return json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False, default=str).encode("utf-8")


def safe_name(order_code: str) -> str:
    """File-system safe form of an order code."""
    return _UNSAFE_PATH_CHARS.sub("_", order_code.strip()) or "_"


def artifact_path(base_dir: Path, order_code: str, kind: str) -> Path:
    """Path of one artifact kind ("payload", "report") for an order."""
    folder = safe_name(order_code)
    return Path(base_dir) / folder / f"{kind}.json"


def put_json(obj: Any, path: Path, ensure_parent: bool = True) -> DataReference:
    """Store a JSON-serializable object and return a DataReference.

    Args:
        obj: Object to serialize (dict or pydantic model)
        path: File path where the artifact is stored
        ensure_parent: Create parent directories if they don't exist

    Returns:
        DataReference with artifact metadata for retrieval
    """
    path = Path(path)
    if ensure_parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    json_bytes = serialize_json(obj)
    path.write_bytes(json_bytes)

    return DataReference(
        storage_uri=str(path.absolute()),
        content_hash=_compute_sha256(json_bytes),
        content_type="application/json",
        size_bytes=len(json_bytes),
        stored_at=datetime.utcnow(),
    )


def get_json(ref: DataReference, validate_hash: bool = True) -> Any:
    """Load a JSON artifact.

    Raises:
        FileNotFoundError: If the artifact path doesn't exist
        ValueError: If hash validation fails
    """
    path = Path(ref.storage_uri)
    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {ref.storage_uri}")

    json_bytes = path.read_bytes()
    if validate_hash:
        actual_hash = _compute_sha256(json_bytes)
        if actual_hash != ref.content_hash:
            raise ValueError(
                f"Hash mismatch for {ref.storage_uri}: "
                f"expected {ref.content_hash}, got {actual_hash}"
            )
    return json.loads(json_bytes.decode("utf-8"))
