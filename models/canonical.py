"""Canonical input records for invoice reconciliation.

These models represent one order's already-fetched data in a standardized
format: sale lines, stock movements and the lookup records supplied by the
upstream collaborators (product catalog, departments, payment sources,
platform fees).

Field aliases accept the raw upstream names (``qty``, ``giaBan``,
``paid_by_voucher_ecode_ecoin_bp``...) so snapshots can be loaded straight
from sync payloads. All money is held as ``Decimal``.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from various formats (string with commas, floats, etc.)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "" or s == "-":
            return None
        s = s.replace(",", "")
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        try:
            return Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Cannot parse number: {value}")
    return value


def _parse_amount(value):
    """Parse a money/quantity field; missing values become zero."""
    parsed = _parse_decimal(value)
    if parsed is None:
        return Decimal("0")
    return parsed


def _parse_date(value):
    """Parse date from ISO strings or datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y"):
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Cannot parse date: {s}")
    return value


def _parse_channel(value):
    """Parse department channel type ('ban le', 'wholesale', ...)."""
    if value is None:
        return ChannelType.RETAIL
    if isinstance(value, ChannelType):
        return value
    s = str(value).strip().upper()
    if s in WHOLESALE_ALIASES:
        return ChannelType.WHOLESALE
    return ChannelType.RETAIL


def _parse_sale_type(value):
    """Parse the sale-line channel ('WS', 'wholesale', 'ban le', ...)."""
    if value is None or isinstance(value, SaleType):
        return value
    s = str(value).strip().upper()
    if s == "":
        return None
    return SaleType.WHOLESALE if s in WHOLESALE_ALIASES else SaleType.RETAIL


def parse_product_type(value) -> Optional["ProductTypeTag"]:
    """Parse a product-type tag; unknown or blank tags become None."""
    if value is None or isinstance(value, ProductTypeTag):
        return value
    s = str(value).strip().upper()
    try:
        return ProductTypeTag(s)
    except ValueError:
        return None


def _parse_flag(value):
    """Parse a boolean flag that upstream sometimes sends as 0/1 or 'Y'/'N'."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().upper() in ("1", "Y", "YES", "TRUE")
    return bool(value)


def _parse_code(value):
    """Normalize optional string codes: strip, empty becomes None."""
    if value is None:
        return None
    s = str(value).strip()
    return s or None


DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
AmountValue = Annotated[Decimal, BeforeValidator(_parse_amount)]
DateValue = Annotated[date, BeforeValidator(_parse_date)]
FlagValue = Annotated[bool, BeforeValidator(_parse_flag)]
CodeValue = Annotated[Optional[str], BeforeValidator(_parse_code)]

ZERO = Decimal("0")


# =============================================================================
# Enums
# =============================================================================

class SaleType(str, Enum):
    """Sales channel recorded on a sale line."""
    RETAIL = "RETAIL"
    WHOLESALE = "WHOLESALE"


class ChannelType(str, Enum):
    """Department channel used for revenue/cost account selection."""
    RETAIL = "RETAIL"
    WHOLESALE = "WHOLESALE"


class PaymentSourceKind(str, Enum):
    """Recognized payment-source kinds on a cashio record."""
    ECOIN = "ECOIN"        # Virtual wallet
    VOUCHER = "VOUCHER"
    CASH = "CASH"
    OTHER = "OTHER"


class ProductTypeTag(str, Enum):
    """Product-type tag carried by sale lines."""
    MERCHANDISE = "I"
    SERVICE = "S"
    VOUCHER = "V"
    GIFT = "G"


WHOLESALE_ALIASES = {"WHOLESALE", "WS"}
ECODE_MATERIAL_TYPE = "94"
KEEP_CARD_PLACEHOLDER = "TRUTONKEEP"


# =============================================================================
# Base Model
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical input records (immutable)."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)


# =============================================================================
# Sale Lines
# =============================================================================

class SaleLine(CanonicalBase):
    """One priced item/service entry within a commercial order.

    Discount categories keep one field per raw upstream column; the
    discount resolver maps them to the 22 invoice slots.
    """
    order_code: str = Field(..., alias="docCode")
    line_id: CodeValue = Field(None, alias="id")
    item_code: CodeValue = Field(None, alias="itemCode")
    item_name: CodeValue = Field(None, alias="itemName")
    quantity: AmountValue = Field(ZERO, alias="qty")
    unit_price: AmountValue = Field(ZERO, alias="giaBan")

    # Revenue and totals
    revenue: AmountValue = ZERO
    line_total: AmountValue = Field(ZERO, alias="linetotal")
    goods_amount: AmountValue = Field(ZERO, alias="tienHang")
    revenue_wholesale: AmountValue = Field(ZERO, alias="revenue_wsale")
    revenue_retail: AmountValue = ZERO

    # Discount categories
    other_discount: AmountValue = Field(ZERO, alias="other_discamt")
    purchase_discount: AmountValue = Field(ZERO, alias="disc_ctkm")
    policy_discount: AmountValue = Field(ZERO, alias="chietKhauCkTheoChinhSach")
    wholesale_policy_discount: AmountValue = Field(ZERO, alias="disc_tm")
    grade_discount: AmountValue = Field(ZERO, alias="grade_discamt")
    vip_discount: AmountValue = Field(ZERO, alias="chietKhauMuaHangCkVip")
    coupon_amount: AmountValue = Field(ZERO, alias="chietKhauThanhToanCoupon")
    voucher_amount: AmountValue = Field(ZERO, alias="paid_by_voucher_ecode_ecoin_bp")
    wallet_amount: AmountValue = Field(ZERO, alias="chietKhauThanhToanTkTienAo")
    voucher_reserve_1: AmountValue = Field(ZERO, alias="chietKhauVoucherDp1")
    voucher_reserve_2: AmountValue = Field(ZERO, alias="chietKhauVoucherDp2")
    voucher_reserve_3: AmountValue = Field(ZERO, alias="chietKhauVoucherDp3")
    voucher_reserve_4: AmountValue = Field(ZERO, alias="chietKhauVoucherDp4")
    voucher_reserve_5: AmountValue = Field(ZERO, alias="chietKhauVoucherDp5")
    voucher_reserve_6: AmountValue = Field(ZERO, alias="chietKhauVoucherDp6")
    voucher_reserve_7: AmountValue = Field(ZERO, alias="chietKhauVoucherDp7")
    voucher_reserve_8: AmountValue = Field(ZERO, alias="chietKhauVoucherDp8")
    item_discount: AmountValue = Field(ZERO, alias="chietKhauHang")
    trade_discount: AmountValue = Field(ZERO, alias="chietKhauThuongMuaBangHang")
    extra_discount_1: AmountValue = Field(ZERO, alias="chietKhauThem1")
    extra_discount_2: AmountValue = Field(ZERO, alias="chietKhauThem2")
    extra_discount_3: AmountValue = Field(ZERO, alias="chietKhauThem3")
    reserve_discount_1: AmountValue = Field(ZERO, alias="chietKhauDuPhong1")
    reserve_discount_2: AmountValue = Field(ZERO, alias="chietKhauDuPhong2")
    reserve_discount_3: AmountValue = Field(ZERO, alias="chietKhauDuPhong3")
    subsidy_amount: AmountValue = Field(ZERO, alias="troGia")

    # Cost and tax
    item_cost: AmountValue = Field(ZERO, alias="itemcost")
    total_cost: AmountValue = Field(ZERO, alias="totalcost")
    tax_amount: AmountValue = Field(ZERO, alias="tienThue")
    tax_code: CodeValue = Field(None, alias="maThue")
    tax_rate: Optional[DecimalValue] = Field(None, alias="thueSuat")
    dt_tg_amount: AmountValue = Field(ZERO, alias="dtTgNt")

    # Classification
    order_type_label: CodeValue = Field(None, alias="ordertypeName")
    product_type: Annotated[Optional[ProductTypeTag], BeforeValidator(parse_product_type)] = Field(
        None, alias="productType"
    )
    brand: CodeValue = None
    branch_code: CodeValue = Field(None, alias="branchCode")
    sale_type: Annotated[Optional[SaleType], BeforeValidator(_parse_sale_type)] = Field(
        None, alias="type_sale"
    )

    # References
    promotion_code: CodeValue = Field(None, alias="promCode")
    disc_reasons: CodeValue = None
    partner_code: CodeValue = Field(None, alias="partnerCode")
    issue_partner_code: CodeValue = Field(None, alias="issuePartnerCode")
    warehouse_code: CodeValue = Field(None, alias="maKho")
    serial_reference: CodeValue = Field(None, alias="maSerial")

    # Raw accounting fallbacks
    discount_account: CodeValue = Field(None, alias="tkChietKhau")
    expense_account: CodeValue = Field(None, alias="tkChiPhi")
    fee_code: CodeValue = Field(None, alias="maPhi")

    # Raw reason codes keyed by slot number (passthrough slots, voucher 5, wallet 11)
    discount_reason_codes: Dict[int, str] = Field(default_factory=dict)

    @property
    def is_wholesale(self) -> bool:
        return self.sale_type == SaleType.WHOLESALE

    @property
    def normalized_item_code(self) -> Optional[str]:
        return normalize_code(self.item_code)


# =============================================================================
# Stock Movements
# =============================================================================

OUTBOUND_DOC_PREFIX = "ST"
INBOUND_DOC_PREFIX = "RT"
OUTBOUND_DOC_TYPES = {"SALE_STOCKOUT"}


class StockMovementRecord(CanonicalBase):
    """A physical stock movement tied to an order (negative = stock out)."""
    order_code: str = Field(..., alias="soCode")
    movement_id: CodeValue = Field(None, alias="id")
    item_code: CodeValue = Field(None, alias="itemCode")
    material_code: CodeValue = Field(None, alias="materialCode")
    quantity: AmountValue = Field(ZERO, alias="qty")
    warehouse_code: CodeValue = Field(None, alias="stockCode")
    lot_serial: CodeValue = Field(None, alias="batchSerial")
    doc_code: CodeValue = Field(None, alias="docCode")
    doc_type: CodeValue = Field(None, alias="doctype")
    moved_at: Optional[datetime] = Field(None, alias="transDate")

    @property
    def is_outbound(self) -> bool:
        """Stock-out document class or negative quantity."""
        doc_code = (self.doc_code or "").upper()
        if doc_code.startswith(OUTBOUND_DOC_PREFIX):
            return True
        if (self.doc_type or "").upper() in OUTBOUND_DOC_TYPES:
            return True
        return self.quantity < 0

    @property
    def normalized_item_code(self) -> Optional[str]:
        return normalize_code(self.item_code)


# =============================================================================
# Lookup Records (collaborator-supplied)
# =============================================================================

class ProductInfo(CanonicalBase):
    """Product catalog entry for one item code."""
    item_code: str = Field(..., alias="code")
    material_code: CodeValue = Field(None, alias="materialCode")
    tracks_lot: FlagValue = Field(False, alias="trackBatch")
    tracks_serial: FlagValue = Field(False, alias="trackSerial")
    tracks_inventory: Optional[bool] = Field(None, alias="trackInventory")
    unit: CodeValue = Field(None, alias="unit")
    category: CodeValue = Field(None, alias="productType")
    material_type: CodeValue = Field(None, alias="materialType")
    name: CodeValue = None
    gift_revenue_account: CodeValue = None
    gift_cost_account: CodeValue = None

    @property
    def is_ecode(self) -> bool:
        return self.material_type == ECODE_MATERIAL_TYPE


class DepartmentInfo(CanonicalBase):
    """Department record for a branch code."""
    branch_code: str = Field(..., alias="branchcode")
    department_code: CodeValue = Field(None, alias="ma_bp")
    company_code: CodeValue = Field(None, alias="ma_dvcs")
    default_warehouse: CodeValue = Field(None, alias="defaultWarehouse")
    channel_type: Annotated[ChannelType, BeforeValidator(_parse_channel)] = Field(
        ChannelType.RETAIL, alias="channelType"
    )


class PaymentSourceRecord(CanonicalBase):
    """Per-order payment method breakdown ("cashio")."""
    order_code: str = Field(..., alias="so_code")
    kind: str = Field(..., alias="fop_syscode")
    amount: AmountValue = Field(ZERO, alias="total_in")
    reference_code: CodeValue = Field(None, alias="refno")

    @property
    def source_kind(self) -> PaymentSourceKind:
        try:
            return PaymentSourceKind(self.kind.strip().upper())
        except ValueError:
            return PaymentSourceKind.OTHER


class OrderFeeRecord(CanonicalBase):
    """Marketplace fee/voucher data for one order."""
    order_code: str = Field(..., alias="erpOrderCode")
    fee_id: CodeValue = Field(None, alias="feeId")
    platform: CodeValue = None
    fee_type: CodeValue = Field(None, alias="feeType")
    fee_amount: AmountValue = Field(ZERO, alias="feeAmount")
    voucher_amount: AmountValue = ZERO
    raw_data: Dict[str, Any] = Field(default_factory=dict, alias="rawData")


class CardRecord(CanonicalBase):
    """One card/serial entry returned by the card data service."""
    service_item_name: CodeValue = None
    serial: CodeValue = None
    quantity: AmountValue = Field(ZERO, alias="qty")
    issue_partner_code: CodeValue = None
    action: CodeValue = None


class SalesOrder(CanonicalBase):
    """Order header plus sale lines, as exported by the sales sync."""
    order_code: str = Field(..., alias="docCode")
    document_date: DateValue = Field(..., alias="docDate")
    customer_code: CodeValue = Field(None, alias="customerCode")
    customer_name: CodeValue = Field(None, alias="customerName")
    shift_code: CodeValue = Field(None, alias="maCa")
    branch_code: CodeValue = Field(None, alias="branchCode")
    sale_lines: List[SaleLine] = Field(default_factory=list, alias="sales")


class WholesaleAccountConfig(CanonicalBase):
    """Discount/fee accounts configured for a wholesale policy code."""
    code: str
    discount_account: CodeValue = None
    expense_account: CodeValue = None
    fee_code: CodeValue = None


# =============================================================================
# Order Snapshot
# =============================================================================

class OrderSnapshot(CanonicalBase):
    """All inputs required to build one invoice, already fetched."""
    order_code: str
    document_date: DateValue
    customer_code: CodeValue = None
    customer_name: CodeValue = None
    shift_code: CodeValue = None
    branch_code: CodeValue = None
    sale_lines: List[SaleLine] = Field(default_factory=list)
    movements: List[StockMovementRecord] = Field(default_factory=list)
    products: Dict[str, ProductInfo] = Field(default_factory=dict)
    departments: Dict[str, DepartmentInfo] = Field(default_factory=dict)
    warehouse_remap: Dict[str, str] = Field(default_factory=dict)
    payment_sources: List[PaymentSourceRecord] = Field(default_factory=list)
    order_fee: Optional[OrderFeeRecord] = None
    card_serials: Dict[str, str] = Field(default_factory=dict)
    wholesale_accounts: Dict[str, WholesaleAccountConfig] = Field(default_factory=dict)

    def product_for(self, item_code: Optional[str]) -> Optional[ProductInfo]:
        """Look up a product by item code (exact, then case-insensitive)."""
        return lookup_product(self.products, item_code)

    def department_for(self, branch_code: Optional[str]) -> Optional[DepartmentInfo]:
        if not branch_code:
            return None
        return self.departments.get(branch_code) or self.departments.get(branch_code.upper())


# =============================================================================
# Helpers
# =============================================================================

_RETURN_SUFFIX = re.compile(r"_\d+$")


def normalize_code(code: Optional[str]) -> Optional[str]:
    """Matching key for item/material codes (trimmed, lower-case)."""
    if code is None:
        return None
    key = str(code).strip().lower()
    return key or None


def lookup_product(
    products: Dict[str, ProductInfo],
    item_code: Optional[str],
) -> Optional[ProductInfo]:
    """Find a product by item code, tolerating case differences."""
    if not item_code:
        return None
    product = products.get(item_code)
    if product is not None:
        return product
    key = normalize_code(item_code)
    for code, candidate in products.items():
        if normalize_code(code) == key:
            return candidate
    return None


def origin_order_code(order_code: str) -> str:
    """Derive the originating sale order code from a return document code.

    Example: ``RT33.00121928_1`` -> ``SO33.00121928``. Codes that are not
    return documents are returned unchanged.
    """
    code = (order_code or "").strip()
    if not code.upper().startswith(INBOUND_DOC_PREFIX):
        return code
    return _RETURN_SUFFIX.sub("", "SO" + code[len(INBOUND_DOC_PREFIX):])


def related_order_codes(order_code: str) -> List[str]:
    """Order codes whose stock movements belong to this order."""
    codes = [order_code]
    origin = origin_order_code(order_code)
    if origin != order_code:
        codes.append(origin)
    return codes
