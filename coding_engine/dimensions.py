"""
Line Dimension Resolution

Resolves the per-line dimensions that do not depend on discount rules:
- Lot / serial code (product tracking flags)
- Warehouse code (fallback chain + remap table)
- Selected payment source for the order (priority order)
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from models.canonical import PaymentSourceKind, PaymentSourceRecord
from reconciliation.order_types import OrderTypeClass


# =============================================================================
# Batch / Serial
# =============================================================================

@dataclass(frozen=True)
class BatchSerial:
    """Lot code or serial code for a line; at most one is populated."""
    lot_code: str = ""
    serial_code: str = ""


def resolve_batch_serial(
    source_value: Optional[str],
    tracks_lot: bool,
    tracks_serial: bool,
) -> BatchSerial:
    """
    Choose between lot and serial for a line.

    Priority:
    1. Lot-tracked product -> lot code (even if serial flag is also set)
    2. Serial-tracked product -> serial code
    3. Neither -> both empty

    Args:
        source_value: Lot-or-serial value from the matched stock movement
        tracks_lot: Product is lot tracked
        tracks_serial: Product is serial tracked

    Returns:
        BatchSerial with at most one field populated
    """
    value = (source_value or "").strip()
    if not value:
        return BatchSerial()
    if tracks_lot:
        return BatchSerial(lot_code=value)
    if tracks_serial:
        return BatchSerial(serial_code=value)
    return BatchSerial()


# =============================================================================
# Warehouse
# =============================================================================

def department_default_warehouse(
    default_warehouse: Optional[str],
    department_code: Optional[str],
) -> Optional[str]:
    """Department default warehouse, else the 'B' + department code convention."""
    if default_warehouse:
        return default_warehouse
    if department_code:
        return f"B{department_code}"
    return None


def resolve_warehouse(
    movement_warehouse: Optional[str],
    sale_warehouse: Optional[str],
    department_warehouse: Optional[str],
    order_type: OrderTypeClass,
    remap: Optional[Dict[str, str]] = None,
) -> str:
    """
    Resolve the warehouse code for a line.

    Priority:
    1. Matched outbound movement warehouse (skipped for exchange/transfer orders)
    2. Warehouse recorded on the sale line
    3. Department default

    The remap table is applied to the chosen code.

    Returns:
        Warehouse code, or "" when nothing is available
    """
    chain = [sale_warehouse, department_warehouse]
    if not order_type.takes_warehouse_from_sale:
        chain.insert(0, movement_warehouse)

    chosen = next((code.strip() for code in chain if code and code.strip()), "")
    if chosen and remap:
        return remap.get(chosen, chosen)
    return chosen


# =============================================================================
# Payment Source
# =============================================================================

PAYMENT_SOURCE_PRIORITY = (PaymentSourceKind.ECOIN, PaymentSourceKind.VOUCHER)


def select_payment_source(
    records: Sequence[PaymentSourceRecord],
) -> Optional[PaymentSourceRecord]:
    """
    Select the payment source used for discount resolution.

    Priority:
    1. Virtual wallet (ECOIN)
    2. Voucher
    3. First record present
    """
    if not records:
        return None
    for kind in PAYMENT_SOURCE_PRIORITY:
        for record in records:
            if record.source_kind == kind:
                return record
    return records[0]
