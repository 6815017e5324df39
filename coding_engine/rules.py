"""
Coding Rules

Label tables and helpers used by the discount resolver:
- Brand codes and the virtual-wallet label
- Brand voucher labels by product type
- VIP grade labels
- Promotion code normalization (cut, suffix, PRMN, points, platform)
- Wholesale policy codes
- Unit price / line amount derivation
- Transaction type (loai_gd)
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from models.canonical import ProductInfo, ProductTypeTag, SaleLine, parse_product_type
from reconciliation.order_types import OrderTypeClass


ZERO = Decimal("0")
GIFT_EPSILON = Decimal("0.01")


# =============================================================================
# Fixed Labels
# =============================================================================

PURCHASE_DISCOUNT_LABEL = "CKMH"
COUPON_LABEL = "COUPON"
VOUCHER_LABEL = "VOUCHER"
VOUCHER_RESERVE_2_LABEL = "VOUCHER_DP2"
VOUCHER_RESERVE_3_LABEL = "VOUCHER_DP3"
PLATFORM_VOUCHER_LABEL = "VC CTKM SÀN"
INVESTMENT_GIFT_CODE = "TT DAU TU"


# =============================================================================
# Brand Codes
# =============================================================================

BRAND_CODES: Dict[str, str] = {
    "menard": "MN",
    "f3": "FBV",
    "facialbar": "FBV",
    "chando": "CDV",
    "labhair": "LHV",
    "yaman": "BTH",
}
DEFAULT_BRAND_CODE = "MN"


def brand_code(brand: Optional[str]) -> str:
    """Map a brand name to its accounting brand code (default MN)."""
    if not brand:
        return DEFAULT_BRAND_CODE
    return BRAND_CODES.get(brand.strip().lower(), DEFAULT_BRAND_CODE)


def wallet_label(document_date: date, brand: Optional[str]) -> str:
    """Virtual-wallet reason code: YYMM + brand code + '.TKDV' (e.g. 2511MN.TKDV)."""
    return f"{document_date:%y%m}{brand_code(brand)}.TKDV"


# =============================================================================
# Voucher Labels
# =============================================================================

VOUCHER_LABELS: Dict[str, Dict[ProductTypeTag, str]] = {
    "yaman": {
        ProductTypeTag.MERCHANDISE: "YVC.HB",
        ProductTypeTag.SERVICE: "YVC.DV",
    },
    "facialbar": {
        ProductTypeTag.MERCHANDISE: "FBV TT VCDV",
        ProductTypeTag.SERVICE: "FBV TT VCHH",
    },
    "labhair": {
        ProductTypeTag.MERCHANDISE: "LHVTT.VCHB",
        ProductTypeTag.SERVICE: "LHVTT.VCDV",
    },
    "menard": {
        ProductTypeTag.MERCHANDISE: "VC HB",
        ProductTypeTag.SERVICE: "VC DV",
        ProductTypeTag.VOUCHER: "VC KM",
    },
}

# Merchandise sold as a gift product
GIFT_VOUCHER_LABELS: Dict[str, str] = {
    "labhair": "LHVTT.VCKM",
    "menard": "VC KM",
}

VOUCHER_BRAND_ALIASES: Dict[str, str] = {"f3": "facialbar"}


def voucher_label(
    line: SaleLine,
    product_type: Optional[ProductTypeTag],
    product: Optional[ProductInfo] = None,
) -> Optional[str]:
    """
    Brand label for the voucher slot (ma_ck05), or None when the brand has none.

    Wholesale lines and lines with neither revenue nor line total get no
    brand label.
    """
    if line.is_wholesale:
        return None
    if line.revenue == 0 and line.line_total == 0:
        return None

    product_type = parse_product_type(product_type)
    brand = (line.brand or "").strip().lower()
    brand = VOUCHER_BRAND_ALIASES.get(brand, brand)
    is_gift = product is not None and (product.category or "").upper() == "GIFT"
    if is_gift and product_type == ProductTypeTag.MERCHANDISE and brand in GIFT_VOUCHER_LABELS:
        return GIFT_VOUCHER_LABELS[brand]
    return VOUCHER_LABELS.get(brand, {}).get(product_type)


# =============================================================================
# VIP Labels
# =============================================================================

def vip_label(
    brand: Optional[str],
    product: Optional[ProductInfo],
    item_code: Optional[str] = None,
) -> str:
    """
    Reason code for the VIP grade discount slot.

    Facialbar/F3 brands use their own service/product labels; other brands
    derive the label from the product category and tracking flags.
    """
    brand_lower = (brand or "").strip().lower()
    category = (product.category or "").upper() if product else ""

    if brand_lower in ("f3", "facialbar"):
        return "FBV CKVIP DV" if category == "DIVU" else "FBV CKVIP SP"

    if category == "DIVU":
        return "VIP DV MAT"
    if category == "VOUC":
        return "VIP VC MP"

    material_code = (product.material_code or "") if product else ""
    code = item_code or ""
    has_vc = "VC" in material_code.upper() or "VC" in code.upper()
    serial_only = (
        product is not None
        and product.tracks_inventory is False
        and product.tracks_serial
    )
    if material_code.startswith("E.") or has_vc or serial_only:
        return "VIP VC MP"
    return "VIP MP"


# =============================================================================
# Promotion Codes
# =============================================================================

PRODUCT_TYPE_SUFFIX: Dict[ProductTypeTag, str] = {
    ProductTypeTag.MERCHANDISE: ".I",
    ProductTypeTag.SERVICE: ".S",
    ProductTypeTag.VOUCHER: ".V",
}

POINTS_PROMOTION_CODES: Dict[str, str] = {
    "TTM": "TTM.KMDIEM",
    "AMA": "TTM.KMDIEM",
    "TSG": "TTM.KMDIEM",
    "FBV": "FBV.KMDIEM",
    "BTH": "BTH.KMDIEM",
    "CDV": "CDV.KMDIEM",
    "LHV": "LHV.KMDIEM",
}
DEFAULT_POINTS_PROMOTION_CODE = "TTM.KMDIEM"

PLATFORM_PROMOTION_CODES: Dict[str, str] = {
    "menard": "TTM.R601ECOM",
    "yaman": "BTH.R601ECOM",
}


def cut_promotion_code(code: Optional[str]) -> str:
    """Keep the part of a promotion code before the first '-'."""
    if not code:
        return ""
    return code.strip().split("-", 1)[0].strip()


def promotion_code_with_suffix(raw_code: Optional[str], product_type: Optional[ProductTypeTag]) -> str:
    """
    Display promotion code for a line.

    'PRMN' codes become 'RMN' and take no suffix; other codes are cut at the
    first '-' and get the product-type suffix (.I / .S / .V).
    """
    code = (raw_code or "").strip()
    if not code:
        return ""

    if code.upper().startswith("PRMN"):
        return cut_promotion_code("RMN" + code[4:])

    cut = cut_promotion_code(code)
    suffix = PRODUCT_TYPE_SUFFIX.get(parse_product_type(product_type), "")
    if suffix and not cut.endswith(suffix):
        cut += suffix
    return cut


def points_promotion_code(company_code: Optional[str]) -> str:
    return POINTS_PROMOTION_CODES.get((company_code or "").upper(), DEFAULT_POINTS_PROMOTION_CODE)


def gift_promotion_code(
    raw_code: Optional[str],
    order_type: OrderTypeClass,
    is_gift_line: bool,
    company_code: Optional[str],
) -> str:
    """
    Gift promotion code (ma_ctkm_th).

    Priority:
    1. Points exchange -> company points code (e.g. FBV.KMDIEM)
    2. Gift line of an investment order -> 'TT DAU TU'
    3. Gift line of a normal / account-sale / platform order -> cut code, no suffix
    """
    if order_type == OrderTypeClass.POINTS_EXCHANGE:
        return points_promotion_code(company_code)
    if not is_gift_line:
        return ""
    if order_type == OrderTypeClass.INVESTMENT:
        return INVESTMENT_GIFT_CODE
    if order_type in (OrderTypeClass.NORMAL, OrderTypeClass.ACCOUNT_SALE, OrderTypeClass.PLATFORM):
        code = (raw_code or "").strip()
        if code.upper().startswith("PRMN"):
            code = "RMN" + code[4:]
        cut = cut_promotion_code(code)
        for suffix in PRODUCT_TYPE_SUFFIX.values():
            if cut.endswith(suffix):
                return cut[: -len(suffix)]
        return cut
    return ""


# =============================================================================
# Wholesale Policy Codes
# =============================================================================

def wholesale_category(category: Optional[str]) -> str:
    """Wholesale product group: TPCN, CCDC or MP (cosmetics, the default)."""
    group = (category or "").upper()
    if "03TPCN" in group:
        return "TPCN"
    if "11MMOC" in group:
        return "CCDC"
    return "MP"


def wholesale_policy_code(product: Optional[ProductInfo]) -> str:
    """CKCSBH code for wholesale policy discounts (E. prefix for e-codes)."""
    category = wholesale_category(product.category if product else None)
    if product is not None and product.is_ecode:
        return f"CKCSBH.E.{category}"
    return f"CKCSBH.{category}"


# =============================================================================
# Pricing
# =============================================================================

@dataclass(frozen=True)
class LinePricing:
    unit_price: Decimal
    line_amount: Decimal

    @property
    def is_gift(self) -> bool:
        """Both unit price and line amount are effectively zero."""
        return abs(self.unit_price) < GIFT_EPSILON and abs(self.line_amount) < GIFT_EPSILON


def line_pricing(line: SaleLine, order_type: OrderTypeClass) -> LinePricing:
    """
    Unit price and goods amount for an invoice line.

    Points-exchange lines are always priced at zero. A missing unit price is
    derived from the line's goods amount (goods amount, else line total, else
    revenue) divided by the absolute quantity.
    """
    if order_type == OrderTypeClass.POINTS_EXCHANGE:
        return LinePricing(ZERO, ZERO)

    goods = line.goods_amount or line.line_total or line.revenue
    price = line.unit_price
    if price == 0 and goods > 0 and line.quantity != 0:
        price = goods / abs(line.quantity)

    if price == 0:
        return LinePricing(ZERO, goods if line.quantity != 0 else ZERO)
    return LinePricing(price, line.quantity * price)


# =============================================================================
# Transaction Type
# =============================================================================

def resolve_transaction_type(
    line: SaleLine,
    order_type: OrderTypeClass,
    product: Optional[ProductInfo],
    unit_price: Decimal,
    quantity: Optional[Decimal] = None,
) -> str:
    """
    Transaction type (loai_gd) for a line.

    ``quantity`` is the signed sale quantity when the line's own quantity
    was replaced by an (unsigned) matched movement quantity.

    Priority:
    1. Service exchange / card split: '11' for negative quantity, else '12'
    2. Wholesale e-code: '04'
    3. Normal order: I -> '01', S with positive quantity -> '02', V -> '03'
    4. Service order: S with positive quantity -> '01', S at zero price -> '06'
    5. Default '01'
    """
    product_type = line.product_type
    if quantity is None:
        quantity = line.quantity

    if order_type.is_exchange_transaction:
        return "11" if quantity < 0 else "12"

    if line.is_wholesale and product is not None and product.is_ecode:
        return "04"

    if order_type == OrderTypeClass.NORMAL:
        if product_type == ProductTypeTag.MERCHANDISE:
            return "01"
        if product_type == ProductTypeTag.SERVICE and quantity > 0:
            return "02"
        if product_type == ProductTypeTag.VOUCHER:
            return "03"

    if order_type.is_service_like:
        if product_type == ProductTypeTag.SERVICE and quantity > 0:
            return "01"
        if product_type == ProductTypeTag.SERVICE and unit_price == 0:
            return "06"

    return "01"


# =============================================================================
# Customer Codes
# =============================================================================

def normalize_customer_code(code: Optional[str]) -> str:
    """Strip the 'NV' (employee) prefix from a customer code."""
    if not code:
        return ""
    trimmed = str(code).strip()
    if len(trimmed) > 2 and trimmed[:2].upper() == "NV":
        return trimmed[2:]
    return trimmed
