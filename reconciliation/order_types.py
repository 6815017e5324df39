"""Order-type classification.

Upstream sale lines carry a free-text order-type label such as
"01. Thường" or "03. Đổi điểm". The label is classified once per sale line
into a closed ``OrderTypeClass``; every rule downstream consumes the enum.
"""

import unicodedata
from enum import Enum
from typing import Optional


class OrderTypeClass(str, Enum):
    """Closed set of order-type classes."""
    NORMAL = "NORMAL"                      # 01. Thường
    SERVICE = "SERVICE"                    # 02. Làm dịch vụ
    POINTS_EXCHANGE = "POINTS_EXCHANGE"    # 03. Đổi điểm
    SERVICE_EXCHANGE = "SERVICE_EXCHANGE"  # 04. Đổi DV
    BIRTHDAY_GIFT = "BIRTHDAY_GIFT"        # 05. Tặng sinh nhật
    INVESTMENT = "INVESTMENT"              # 06. Đầu tư
    ACCOUNT_SALE = "ACCOUNT_SALE"          # 07. Bán tài khoản
    CARD_SPLIT = "CARD_SPLIT"              # 08. Tách thẻ
    PLATFORM = "PLATFORM"                  # 9. Sàn TMDT
    SHELL_EXCHANGE = "SHELL_EXCHANGE"      # Đổi vỏ
    CARD_CONVERSION = "CARD_CONVERSION"    # Đổi thẻ KEEP->Thẻ DV
    OTHER = "OTHER"

    @property
    def is_service_like(self) -> bool:
        """Service orders, including exchanges and card conversions."""
        return self in SERVICE_LIKE

    @property
    def takes_warehouse_from_sale(self) -> bool:
        """Exchange/transfer orders ignore the stock-movement warehouse."""
        return self in (OrderTypeClass.SERVICE_EXCHANGE, OrderTypeClass.CARD_SPLIT)

    @property
    def is_exchange_transaction(self) -> bool:
        return self in (OrderTypeClass.SERVICE_EXCHANGE, OrderTypeClass.CARD_SPLIT)


SERVICE_LIKE = frozenset({
    OrderTypeClass.SERVICE,
    OrderTypeClass.SERVICE_EXCHANGE,
    OrderTypeClass.CARD_SPLIT,
    OrderTypeClass.CARD_CONVERSION,
})


def _fold(text: str) -> str:
    """Lower-case and strip Vietnamese diacritics ("Đổi điểm" -> "doi diem")."""
    text = text.replace("Đ", "D").replace("đ", "d")
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return " ".join(stripped.lower().split())


# Ordered: numbered prefixes first, then keyword fallbacks.
_NUMBERED_LABELS = [
    ("03.", "doi diem", OrderTypeClass.POINTS_EXCHANGE),
    ("04.", "doi dv", OrderTypeClass.SERVICE_EXCHANGE),
    ("08.", "tach the", OrderTypeClass.CARD_SPLIT),
    ("07.", "ban tai khoan", OrderTypeClass.ACCOUNT_SALE),
    ("9.", "san tmdt", OrderTypeClass.PLATFORM),
    ("02.", "lam dich vu", OrderTypeClass.SERVICE),
]

_KEYWORD_LABELS = [
    ("doi vo", OrderTypeClass.SHELL_EXCHANGE),
    ("dau tu", OrderTypeClass.INVESTMENT),
    ("tang sinh nhat", OrderTypeClass.BIRTHDAY_GIFT),
    ("doi the keep", OrderTypeClass.CARD_CONVERSION),
]


def classify_order_type(label: Optional[str]) -> OrderTypeClass:
    """Classify an order-type label.

    Args:
        label: Raw order-type label from the sale line (may be None)

    Returns:
        The matching OrderTypeClass; OTHER when nothing matches.
    """
    if not label:
        return OrderTypeClass.OTHER

    folded = _fold(label.strip())
    compact = folded.replace(". ", ".")

    for prefix, keyword, order_type in _NUMBERED_LABELS:
        if f"{prefix}{keyword}" in compact:
            return order_type

    for keyword, order_type in _KEYWORD_LABELS:
        if keyword in folded:
            return order_type

    if folded.startswith("01.") or folded.startswith("01 ") or folded == "thuong":
        return OrderTypeClass.NORMAL

    return OrderTypeClass.OTHER
