"""
Coding Engine Models

Defines data structures for:
- The 22 discount slots of an invoice line
- Accounting accounts resolved for a line
- Line coding results
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Any


SLOT_COUNT = 22
ZERO = Decimal("0")


# =============================================================================
# Discount Slots
# =============================================================================

@dataclass
class DiscountSlot:
    """
    One (amount, reason code) pair.

    Attributes:
        number: Slot number, 1-22
        amount: Discount amount, already scaled by the line's allocation ratio
        reason_code: Reason code paired with the amount ("" when absent)
    """
    number: int
    amount: Decimal = ZERO
    reason_code: str = ""

    @property
    def amount_field(self) -> str:
        return f"ck{self.number:02d}_nt"

    @property
    def reason_field(self) -> str:
        return f"ma_ck{self.number:02d}"


@dataclass
class DiscountSlotSet:
    """Fixed-size set of the 22 discount slots of one line."""
    slots: List[DiscountSlot] = field(
        default_factory=lambda: [DiscountSlot(n) for n in range(1, SLOT_COUNT + 1)]
    )

    def __getitem__(self, number: int) -> DiscountSlot:
        if not 1 <= number <= SLOT_COUNT:
            raise IndexError(f"Discount slot out of range: {number}")
        return self.slots[number - 1]

    def __iter__(self) -> Iterator[DiscountSlot]:
        return iter(self.slots)

    def __len__(self) -> int:
        return len(self.slots)

    def set(
        self,
        number: int,
        amount: Decimal,
        reason_code: Optional[str] = "",
        keep_code_when_zero: bool = False,
    ) -> None:
        """Set a slot; the reason code is dropped when the amount is zero."""
        slot = self[number]
        slot.amount = amount if amount is not None else ZERO
        code = (reason_code or "").strip()
        if slot.amount == 0 and not keep_code_when_zero:
            code = ""
        slot.reason_code = code

    def amount(self, number: int) -> Decimal:
        return self[number].amount

    def reason_code(self, number: int) -> str:
        return self[number].reason_code

    def total(self) -> Decimal:
        """Sum of all 22 slot amounts."""
        return sum((slot.amount for slot in self.slots), ZERO)

    def to_dict(self) -> Dict[str, Any]:
        """Payload fields ck01_nt..ck22_nt and ma_ck01..ma_ck22."""
        result: Dict[str, Any] = {}
        for slot in self.slots:
            result[slot.amount_field] = slot.amount
        for slot in self.slots:
            result[slot.reason_field] = slot.reason_code
        return result


# =============================================================================
# Accounts
# =============================================================================

@dataclass
class AccountSet:
    """
    Accounting accounts for one line.

    Attributes:
        revenue_account: Revenue account (tk_dt)
        cost_account: Cost of goods account (tk_gv)
        discount_account: Discount account (tk_chiet_khau)
        expense_account: Expense account for gifts/points (tk_chi_phi)
        fee_code: Expense fee code (ma_phi)
    """
    revenue_account: Optional[str] = None
    cost_account: Optional[str] = None
    discount_account: Optional[str] = None
    expense_account: Optional[str] = None
    fee_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tk_dt": self.revenue_account,
            "tk_gv": self.cost_account,
            "tk_chiet_khau": self.discount_account,
            "tk_chi_phi": self.expense_account,
            "ma_phi": self.fee_code,
        }


# =============================================================================
# Coding Result Models
# =============================================================================

@dataclass
class LineCoding:
    """
    Complete discount/account coding for one exploded line.

    Attributes:
        slots: The 22 discount slots
        accounts: Resolved accounts
        promotion_code: Resolved promotion code (ma_ck01)
        gift_promotion_code: Gift promotion code (ma_ctkm_th)
        is_gift_line: Zero price and zero amount
        gift_flag: km_yn value (0/1)
        transaction_type: loai_gd value
        unit_price: Unit price used on the invoice line
        line_amount: Goods amount of the invoice line
    """
    slots: DiscountSlotSet
    accounts: AccountSet
    promotion_code: str = ""
    gift_promotion_code: str = ""
    is_gift_line: bool = False
    gift_flag: int = 0
    transaction_type: str = "01"
    unit_price: Decimal = ZERO
    line_amount: Decimal = ZERO

    @property
    def total_discount(self) -> Decimal:
        return self.slots.total()

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.slots.to_dict(),
            **self.accounts.to_dict(),
            "ma_ctkm_th": self.gift_promotion_code,
            "km_yn": self.gift_flag,
            "loai_gd": self.transaction_type,
            "gia_ban": self.unit_price,
            "tien_hang": self.line_amount,
        }
