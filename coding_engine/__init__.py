"""
Coding Engine Package

Resolves the accounting coding of exploded invoice lines.

Features:
- 22 discount slots with reason codes (voucher / virtual-wallet exclusivity,
  marketplace voucher slot)
- Promotion and gift promotion codes
- Revenue / cost / discount / expense accounts
- Lot-serial, warehouse and payment-source dimensions

Usage:
    from coding_engine import DiscountCodeResolver

    resolver = DiscountCodeResolver(document_date=date(2025, 11, 3), company_code="TTM")
    coding = resolver.resolve(line, OrderTypeClass.NORMAL, ProductTypeTag.MERCHANDISE, payment_source, order_fee)
"""

from .models import (
    SLOT_COUNT,
    DiscountSlot,
    DiscountSlotSet,
    AccountSet,
    LineCoding,
)

from .dimensions import (
    BatchSerial,
    resolve_batch_serial,
    department_default_warehouse,
    resolve_warehouse,
    select_payment_source,
)

from .rules import (
    wallet_label,
    vip_label,
    promotion_code_with_suffix,
    gift_promotion_code,
    wholesale_policy_code,
    line_pricing,
    resolve_transaction_type,
    normalize_customer_code,
)

from .engine import DiscountCodeResolver

__all__ = [
    # Models
    "SLOT_COUNT",
    "DiscountSlot",
    "DiscountSlotSet",
    "AccountSet",
    "LineCoding",

    # Dimensions
    "BatchSerial",
    "resolve_batch_serial",
    "department_default_warehouse",
    "resolve_warehouse",
    "select_payment_source",

    # Rules
    "wallet_label",
    "vip_label",
    "promotion_code_with_suffix",
    "gift_promotion_code",
    "wholesale_policy_code",
    "line_pricing",
    "resolve_transaction_type",
    "normalize_customer_code",

    # Engine
    "DiscountCodeResolver",
]
