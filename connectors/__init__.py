"""Upstream Connectors.

Collaborators that supply already-persisted order data:
- Sales orders, stock movements, payment sources, fees (order export directory)
- Product catalog and departments (loyalty API)
- Card/serial records (card data webhook)

OrderSnapshotLoader combines them into one OrderSnapshot per order.
"""

from connectors.base import (
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamTimeoutError,
    SalesOrderSource,
    ProductCatalog,
    DepartmentDirectory,
    StockMovementSource,
    PaymentSourceProvider,
    OrderFeeProvider,
    CardDataProvider,
    WarehouseRemapProvider,
)
from connectors.cache import LookupCache
from connectors.retry import AttemptPolicy, AttemptStrategy
from connectors.http import JsonHttpClient
from connectors.export import OrderExportDirectory
from connectors.snapshot import OrderSnapshotLoader

__all__ = [
    # Errors
    "UpstreamError",
    "UpstreamNotFoundError",
    "UpstreamTimeoutError",
    # Interfaces
    "SalesOrderSource",
    "ProductCatalog",
    "DepartmentDirectory",
    "StockMovementSource",
    "PaymentSourceProvider",
    "OrderFeeProvider",
    "CardDataProvider",
    "WarehouseRemapProvider",
    # Building blocks
    "LookupCache",
    "AttemptPolicy",
    "AttemptStrategy",
    "JsonHttpClient",
    # Sources
    "OrderExportDirectory",
    "OrderSnapshotLoader",
]
