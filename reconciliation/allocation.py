"""Proportional allocation of sale-line money across exploded lines."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from models.canonical import SaleLine
from reconciliation.order_types import OrderTypeClass


ONE = Decimal("1")

# Every monetary field scaled by the allocation ratio.
SCALED_FIELDS = (
    # Revenue and totals
    "revenue",
    "line_total",
    "goods_amount",
    "revenue_wholesale",
    "revenue_retail",
    # Discounts
    "other_discount",
    "purchase_discount",
    "policy_discount",
    "wholesale_policy_discount",
    "grade_discount",
    "vip_discount",
    "coupon_amount",
    "voucher_amount",
    "wallet_amount",
    "voucher_reserve_1",
    "voucher_reserve_2",
    "voucher_reserve_3",
    "voucher_reserve_4",
    "voucher_reserve_5",
    "voucher_reserve_6",
    "voucher_reserve_7",
    "voucher_reserve_8",
    "item_discount",
    "trade_discount",
    "extra_discount_1",
    "extra_discount_2",
    "extra_discount_3",
    "reserve_discount_1",
    "reserve_discount_2",
    "reserve_discount_3",
    "subsidy_amount",
    # Cost and tax
    "item_cost",
    "total_cost",
    "tax_amount",
    "dt_tg_amount",
)


@dataclass
class Allocation:
    """Result of allocating one sale line to one exploded line.

    Attributes:
        ratio: Allocation ratio applied to every monetary field
        quantity: Quantity of the exploded line
        line: Scaled copy of the sale line (quantity replaced)
        matched_quantity: Outbound movement quantity used, if any
    """
    ratio: Decimal
    quantity: Decimal
    line: SaleLine
    matched_quantity: Optional[Decimal] = None

    @property
    def is_split(self) -> bool:
        return self.ratio != ONE


def allocation_ratio(sale_quantity: Decimal, matched_quantity: Decimal) -> Decimal:
    """abs(matched) / abs(sale); a zero sale quantity yields 1."""
    if sale_quantity == 0:
        return ONE
    return abs(Decimal(matched_quantity)) / abs(Decimal(sale_quantity))


class AllocationCalculator:
    """Derives exploded-line quantity and scaled money from a sale line.

    Usage:
        calculator = AllocationCalculator()
        allocation = calculator.allocate(sale_line, Decimal("-6"), OrderTypeClass.NORMAL)
    """

    def allocate(
        self,
        sale_line: SaleLine,
        matched_outbound_qty: Optional[Decimal],
        order_type: Optional[OrderTypeClass] = None,
    ) -> Allocation:
        """Allocate a sale line against its matched outbound quantity.

        Args:
            sale_line: Original sale line
            matched_outbound_qty: Quantity of the matched outbound movement,
                or None when the line has no match
            order_type: Classified order type of the line

        Returns:
            Allocation with ratio, quantity and the scaled line
        """
        if matched_outbound_qty is None or order_type == OrderTypeClass.POINTS_EXCHANGE:
            return Allocation(
                ratio=ONE,
                quantity=sale_line.quantity,
                line=sale_line,
                matched_quantity=matched_outbound_qty,
            )

        ratio = allocation_ratio(sale_line.quantity, matched_outbound_qty)
        quantity = abs(Decimal(matched_outbound_qty))
        update = {"quantity": quantity}
        if ratio != ONE:
            for name in SCALED_FIELDS:
                update[name] = getattr(sale_line, name) * ratio

        return Allocation(
            ratio=ratio,
            quantity=quantity,
            line=sale_line.model_copy(update=update),
            matched_quantity=Decimal(matched_outbound_qty),
        )
