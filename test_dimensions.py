"""
Line Dimension Tests

Lot/serial, warehouse and payment-source resolution.
"""

from decimal import Decimal

import pytest

from coding_engine.dimensions import (
    BatchSerial,
    department_default_warehouse,
    resolve_batch_serial,
    resolve_warehouse,
    select_payment_source,
)
from models.canonical import PaymentSourceKind, PaymentSourceRecord
from reconciliation.order_types import OrderTypeClass


def payment(kind, amount=0):
    return PaymentSourceRecord(order_code="SO1", kind=kind, amount=amount)


class TestBatchSerial:

    def test_lot_wins_over_serial(self):
        assert resolve_batch_serial("L2025", tracks_lot=True, tracks_serial=True) == BatchSerial(lot_code="L2025")

    def test_serial_tracked(self):
        result = resolve_batch_serial(" SN01 ", tracks_lot=False, tracks_serial=True)
        assert result.serial_code == "SN01"
        assert result.lot_code == ""

    def test_untracked_product_has_neither(self):
        assert resolve_batch_serial("X", tracks_lot=False, tracks_serial=False) == BatchSerial()

    def test_missing_value(self):
        assert resolve_batch_serial(None, tracks_lot=True, tracks_serial=False) == BatchSerial()


class TestWarehouse:

    def test_movement_warehouse_first(self):
        assert resolve_warehouse("K1", "K2", "B01", OrderTypeClass.NORMAL) == "K1"

    def test_sale_warehouse_then_department(self):
        assert resolve_warehouse(None, "K2", "B01", OrderTypeClass.NORMAL) == "K2"
        assert resolve_warehouse(None, " ", "B01", OrderTypeClass.NORMAL) == "B01"

    @pytest.mark.parametrize("order_type", [OrderTypeClass.SERVICE_EXCHANGE, OrderTypeClass.CARD_SPLIT])
    def test_exchange_orders_skip_movement_warehouse(self, order_type):
        assert resolve_warehouse("K1", "K2", "B01", order_type) == "K2"

    def test_remap_applies_to_chosen_code(self):
        assert resolve_warehouse("K1", None, None, OrderTypeClass.NORMAL, remap={"K1": "KHO-A"}) == "KHO-A"
        assert resolve_warehouse("K3", None, None, OrderTypeClass.NORMAL, remap={"K1": "KHO-A"}) == "K3"

    def test_nothing_available(self):
        assert resolve_warehouse(None, None, None, OrderTypeClass.NORMAL) == ""

    def test_department_default(self):
        assert department_default_warehouse("KHO9", "001") == "KHO9"
        assert department_default_warehouse(None, "001") == "B001"
        assert department_default_warehouse(None, None) is None


class TestPaymentSource:

    def test_wallet_has_priority(self):
        records = [payment("CASH", 10), payment("VOUCHER", 20), payment("ecoin", 30)]
        selected = select_payment_source(records)
        assert selected.source_kind == PaymentSourceKind.ECOIN
        assert selected.amount == Decimal("30")

    def test_voucher_before_other_kinds(self):
        assert select_payment_source([payment("CASH"), payment("VOUCHER")]).kind == "VOUCHER"

    def test_first_record_otherwise(self):
        assert select_payment_source([payment("BANK"), payment("CASH")]).kind == "BANK"

    def test_no_records(self):
        assert select_payment_source([]) is None

    def test_unknown_kind(self):
        assert payment("BANK").source_kind == PaymentSourceKind.OTHER
