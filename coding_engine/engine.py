"""
Coding Engine

Resolves the accounting coding of one exploded invoice line:
1. Fill the 22 discount slots from the (already scaled) sale line
2. Apply the payment-source override (slot 5 voucher vs slot 11 wallet)
3. Resolve promotion codes and the gift flag
4. Resolve revenue/cost/discount/expense accounts
"""

from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from models.canonical import (
    ChannelType,
    OrderFeeRecord,
    PaymentSourceKind,
    PaymentSourceRecord,
    ProductInfo,
    ProductTypeTag,
    SaleLine,
    WholesaleAccountConfig,
    parse_product_type,
)
from reconciliation.order_types import OrderTypeClass

from .models import AccountSet, DiscountSlotSet, LineCoding
from .rules import (
    COUPON_LABEL,
    INVESTMENT_GIFT_CODE,
    PLATFORM_PROMOTION_CODES,
    PLATFORM_VOUCHER_LABEL,
    PURCHASE_DISCOUNT_LABEL,
    VOUCHER_LABEL,
    VOUCHER_RESERVE_2_LABEL,
    VOUCHER_RESERVE_3_LABEL,
    gift_promotion_code,
    line_pricing,
    promotion_code_with_suffix,
    resolve_transaction_type,
    vip_label,
    voucher_label,
    wallet_label,
    wholesale_policy_code,
)


ZERO = Decimal("0")


# =============================================================================
# Slot Table
# =============================================================================

# Passthrough slots: slot -> (sale line field, fixed conditional label or None).
# A None label means the slot carries the raw reason code from the sale line.
PASSTHROUGH_SLOTS: Dict[int, tuple] = {
    6: ("voucher_reserve_1", None),
    7: ("voucher_reserve_2", VOUCHER_RESERVE_2_LABEL),
    8: ("voucher_reserve_3", VOUCHER_RESERVE_3_LABEL),
    9: ("item_discount", None),
    10: ("trade_discount", None),
    12: ("extra_discount_1", None),
    13: ("extra_discount_2", None),
    14: ("extra_discount_3", None),
    15: ("voucher_reserve_4", None),
    16: ("voucher_reserve_5", None),
    17: ("voucher_reserve_6", None),
    18: ("voucher_reserve_7", None),
    19: ("voucher_reserve_8", None),
    20: ("reserve_discount_1", None),
    21: ("reserve_discount_2", None),
    22: ("reserve_discount_3", None),
}

# Default revenue / cost accounts per department channel
CHANNEL_ACCOUNTS = {
    ChannelType.RETAIL: ("5111", "632"),
    ChannelType.WHOLESALE: ("5112", "632"),
}
GIFT_ACCOUNTS = ("5118", "632")

# Retail expense scenarios
POINTS_EXPENSE = ("64191", "161010")
BIRTHDAY_EXPENSE = ("64192", "162010")


class DiscountCodeResolver:
    """
    Resolves discount slots, promotion codes and accounts for invoice lines.

    The resolver holds the order-level context (document date, company,
    department channel, wholesale account config); ``resolve`` is called
    once per exploded line and never raises for missing lookups.

    Usage:
        resolver = DiscountCodeResolver(document_date=date(2025, 11, 3), company_code="TTM")
        coding = resolver.resolve(line, OrderTypeClass.NORMAL, ProductTypeTag.MERCHANDISE, payment_source, None)
    """

    def __init__(
        self,
        document_date: date,
        company_code: Optional[str] = None,
        channel_type: ChannelType = ChannelType.RETAIL,
        wholesale_accounts: Optional[Dict[str, WholesaleAccountConfig]] = None,
    ):
        """
        Initialize the resolver.

        Args:
            document_date: Invoice document date (drives the wallet label)
            company_code: Company code (ma_dvcs) of the order's department
            channel_type: Department channel (retail / wholesale)
            wholesale_accounts: Account config keyed by wholesale policy code
        """
        self.document_date = document_date
        self.company_code = company_code
        self.channel_type = channel_type
        self.wholesale_accounts = wholesale_accounts or {}

    def resolve(
        self,
        line: SaleLine,
        order_type: OrderTypeClass,
        product_type: Optional[ProductTypeTag] = None,
        payment_source: Optional[PaymentSourceRecord] = None,
        order_fee: Optional[OrderFeeRecord] = None,
        product: Optional[ProductInfo] = None,
        sale_quantity: Optional[Decimal] = None,
    ) -> LineCoding:
        """
        Generate complete coding for one exploded line.

        Args:
            line: Exploded (scaled) sale line
            order_type: Classified order type
            product_type: Product-type tag (I/S/V/G); defaults to the line's own
            payment_source: Selected payment source for the order
            order_fee: Platform fee record (marks marketplace orders)
            product: Catalog entry for the line's item, if found
            sale_quantity: Signed quantity of the original sale line

        Returns:
            LineCoding with all 22 slots populated
        """
        product_type = parse_product_type(product_type) or line.product_type
        is_points = order_type == OrderTypeClass.POINTS_EXCHANGE
        is_platform = order_fee is not None or order_type == OrderTypeClass.PLATFORM

        pricing = line_pricing(line, order_type)
        promotion_code = self._promotion_code(line, order_type, product_type, is_platform, pricing.is_gift)
        gift_code = gift_promotion_code(line.promotion_code, order_type, pricing.is_gift, self.company_code)
        gift_flag = 1 if pricing.is_gift and gift_code != INVESTMENT_GIFT_CODE else 0

        slots = DiscountSlotSet()
        self._fill_discount_slots(slots, line, product, is_points, promotion_code)
        self._fill_payment_slots(slots, line, product_type, product, payment_source, is_points)
        self._fill_passthrough_slots(slots, line)
        if is_platform:
            self._move_platform_voucher(slots)

        accounts = self._resolve_accounts(
            line=line,
            order_type=order_type,
            product_type=product_type,
            product=product,
            is_gift_line=pricing.is_gift,
            has_promotion=bool(promotion_code),
            has_gift_promotion=bool(gift_code),
        )

        return LineCoding(
            slots=slots,
            accounts=accounts,
            promotion_code=promotion_code,
            gift_promotion_code=gift_code,
            is_gift_line=pricing.is_gift,
            gift_flag=gift_flag,
            transaction_type=resolve_transaction_type(
                line, order_type, product, pricing.unit_price, quantity=sale_quantity
            ),
            unit_price=pricing.unit_price,
            line_amount=pricing.line_amount,
        )

    # =========================================================================
    # Slots
    # =========================================================================

    def _fill_discount_slots(
        self,
        slots: DiscountSlotSet,
        line: SaleLine,
        product: Optional[ProductInfo],
        is_points: bool,
        promotion_code: str,
    ) -> None:
        # Slot 1: purchase discount
        if is_points:
            purchase = ZERO
        elif line.is_wholesale:
            purchase = line.purchase_discount
        else:
            purchase = max(line.other_discount, line.purchase_discount)
        slots.set(
            1,
            purchase,
            promotion_code or PURCHASE_DISCOUNT_LABEL,
            keep_code_when_zero=bool(promotion_code),
        )

        # Slot 2: policy discount
        policy = line.wholesale_policy_discount if line.wholesale_policy_discount > 0 else line.policy_discount
        slots.set(2, policy, wholesale_policy_code(product) if line.is_wholesale else "")

        # Slot 3: VIP grade discount
        vip = line.grade_discount or line.vip_discount
        slots.set(3, vip, vip_label(line.brand, product, line.item_code) if vip > 0 else "")

        # Slot 4: coupon
        slots.set(4, line.coupon_amount, COUPON_LABEL if line.coupon_amount > 0 else "")

    def _fill_payment_slots(
        self,
        slots: DiscountSlotSet,
        line: SaleLine,
        product_type: Optional[ProductTypeTag],
        product: Optional[ProductInfo],
        payment_source: Optional[PaymentSourceRecord],
        is_points: bool,
    ) -> None:
        """
        Slots 5 (voucher) and 11 (virtual wallet) are mutually exclusive.

        The voucher label is the brand label for the product type, else the
        raw slot-5 reason code, else VOUCHER. The wallet label is the raw
        slot-11 reason code, else the dated brand wallet label.
        """
        kind = payment_source.source_kind if payment_source is not None else None
        paid = line.voucher_amount or line.wallet_amount

        if kind == PaymentSourceKind.ECOIN:
            voucher, wallet = ZERO, paid
        elif kind == PaymentSourceKind.VOUCHER:
            voucher, wallet = paid, ZERO
        elif line.voucher_amount != 0:
            voucher, wallet = line.voucher_amount, ZERO
        else:
            voucher, wallet = ZERO, line.wallet_amount

        if is_points:
            voucher = ZERO

        reason_codes = line.discount_reason_codes
        slots.set(
            5,
            voucher,
            voucher_label(line, product_type, product) or reason_codes.get(5) or VOUCHER_LABEL,
        )
        slots.set(11, wallet, reason_codes.get(11) or wallet_label(self.document_date, line.brand))

    def _fill_passthrough_slots(self, slots: DiscountSlotSet, line: SaleLine) -> None:
        for number, (field_name, label) in PASSTHROUGH_SLOTS.items():
            amount = getattr(line, field_name)
            if label is None:
                code = line.discount_reason_codes.get(number, "")
            else:
                code = label if amount > 0 else ""
            slots.set(number, amount, code)

    def _move_platform_voucher(self, slots: DiscountSlotSet) -> None:
        """Marketplace orders carry the voucher in slot 15."""
        moved = slots.amount(5) + slots.amount(6)
        if moved == 0:
            return
        slots.set(15, slots.amount(15) + moved, PLATFORM_VOUCHER_LABEL)
        slots.set(5, ZERO)
        slots.set(6, ZERO)

    # =========================================================================
    # Promotion Code
    # =========================================================================

    def _promotion_code(
        self,
        line: SaleLine,
        order_type: OrderTypeClass,
        product_type: Optional[ProductTypeTag],
        is_platform: bool,
        is_gift_line: bool,
    ) -> str:
        """
        Promotion code (ma_ck01).

        Priority:
        1. Points exchange and gift lines -> none
        2. Wholesale -> disc_reasons when a purchase discount exists
        3. Marketplace -> brand platform code (no suffix)
        4. Raw promotion code, cut and suffixed by product type
        """
        if order_type == OrderTypeClass.POINTS_EXCHANGE or is_gift_line:
            return ""
        if line.is_wholesale:
            if line.disc_reasons and line.purchase_discount > 0:
                return line.disc_reasons
            return ""
        if is_platform:
            platform_code = PLATFORM_PROMOTION_CODES.get((line.brand or "").strip().lower())
            if platform_code:
                return platform_code
        return promotion_code_with_suffix(line.promotion_code, product_type)

    # =========================================================================
    # Accounts
    # =========================================================================

    def _resolve_accounts(
        self,
        line: SaleLine,
        order_type: OrderTypeClass,
        product_type: Optional[ProductTypeTag],
        product: Optional[ProductInfo],
        is_gift_line: bool,
        has_promotion: bool,
        has_gift_promotion: bool,
    ) -> AccountSet:
        revenue_account, cost_account = CHANNEL_ACCOUNTS.get(
            self.channel_type, CHANNEL_ACCOUNTS[ChannelType.RETAIL]
        )
        if is_gift_line:
            revenue_account = (product.gift_revenue_account if product else None) or GIFT_ACCOUNTS[0]
            cost_account = (product.gift_cost_account if product else None) or GIFT_ACCOUNTS[1]

        accounts = AccountSet(revenue_account=revenue_account, cost_account=cost_account)

        if line.is_wholesale:
            config = self.wholesale_accounts.get(wholesale_policy_code(product))
            if config is not None:
                accounts.discount_account = config.discount_account
                accounts.expense_account = config.expense_account
                accounts.fee_code = config.fee_code
            else:
                self._use_sale_accounts(accounts, line)
            return accounts

        vip = line.grade_discount or line.vip_discount
        voucher = line.voucher_amount
        purchase = line.other_discount
        is_gift_product = product is not None and (product.category or "").upper() == "GIFT"

        if order_type in (
            OrderTypeClass.SHELL_EXCHANGE,
            OrderTypeClass.POINTS_EXCHANGE,
            OrderTypeClass.INVESTMENT,
        ):
            accounts.expense_account, accounts.fee_code = POINTS_EXPENSE
        elif order_type == OrderTypeClass.BIRTHDAY_GIFT:
            accounts.expense_account, accounts.fee_code = BIRTHDAY_EXPENSE
        elif has_gift_promotion and is_gift_line:
            accounts.expense_account, accounts.fee_code = POINTS_EXPENSE
            accounts.discount_account = line.discount_account
        elif vip > 0 and product_type == ProductTypeTag.MERCHANDISE:
            accounts.discount_account = "521113"
        elif vip > 0 and product_type == ProductTypeTag.SERVICE:
            accounts.discount_account = "521132"
        elif voucher > 0 and is_gift_product:
            accounts.discount_account = "5211631"
        elif voucher > 0 and product_type == ProductTypeTag.MERCHANDISE:
            accounts.discount_account = "5211611"
        elif voucher > 0 and product_type == ProductTypeTag.SERVICE:
            accounts.discount_account = "5211621"
        elif purchase > 0 and product_type == ProductTypeTag.SERVICE:
            accounts.discount_account = "521131"
        elif purchase > 0 and product_type == ProductTypeTag.MERCHANDISE:
            accounts.discount_account = "521111"
        elif has_promotion:
            accounts.discount_account = "521131" if product_type == ProductTypeTag.SERVICE else "521111"
        else:
            self._use_sale_accounts(accounts, line)

        return accounts

    @staticmethod
    def _use_sale_accounts(accounts: AccountSet, line: SaleLine) -> None:
        accounts.discount_account = line.discount_account
        accounts.expense_account = line.expense_account
        accounts.fee_code = line.fee_code
