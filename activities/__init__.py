"""Activity definitions module."""

from activities.build_invoice import (
    load_order_snapshot,
    build_invoice_payload,
    open_snapshot_loader,
    LoadSnapshotInput,
    BuildInvoiceInput,
)

__all__ = [
    "load_order_snapshot",
    "build_invoice_payload",
    "open_snapshot_loader",
    "LoadSnapshotInput",
    "BuildInvoiceInput",
]
