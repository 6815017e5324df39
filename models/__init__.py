"""Models Package.

Data models for the invoice reconciliation system:
- Canonical input records (sale lines, stock movements, lookups)
- Data reference models for artifact storage
"""

from models.canonical import (
    SaleLine,
    StockMovementRecord,
    ProductInfo,
    DepartmentInfo,
    PaymentSourceRecord,
    OrderFeeRecord,
    WholesaleAccountConfig,
    CardRecord,
    SalesOrder,
    OrderSnapshot,
    SaleType,
    ChannelType,
    PaymentSourceKind,
    ProductTypeTag,
    normalize_code,
    lookup_product,
    origin_order_code,
    related_order_codes,
)

from models.refs import (
    DataReference,
    InvoiceBuildResult,
)

__all__ = [
    # Canonical
    "SaleLine",
    "StockMovementRecord",
    "ProductInfo",
    "DepartmentInfo",
    "PaymentSourceRecord",
    "OrderFeeRecord",
    "WholesaleAccountConfig",
    "CardRecord",
    "SalesOrder",
    "OrderSnapshot",
    # Enums
    "SaleType",
    "ChannelType",
    "PaymentSourceKind",
    "ProductTypeTag",
    # Helpers
    "normalize_code",
    "lookup_product",
    "origin_order_code",
    "related_order_codes",
    # Refs
    "DataReference",
    "InvoiceBuildResult",
]
