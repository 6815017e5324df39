"""Abstract collaborator interfaces for loading order snapshots.

Each collaborator supplies one kind of already-persisted upstream data.
Implementations raise ``UpstreamError`` (or a subclass) for transport and
HTTP failures; the snapshot loader catches those and degrades to empty data.

Key Design Principles:
- Methods return canonical models (ProductInfo, DepartmentInfo, ...), never
  raw upstream payloads
- "Not found" is a normal outcome: return None / an empty list
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from models.canonical import (
    CardRecord,
    DepartmentInfo,
    OrderFeeRecord,
    PaymentSourceRecord,
    ProductInfo,
    SalesOrder,
    StockMovementRecord,
)


# =============================================================================
# Errors
# =============================================================================

class UpstreamError(Exception):
    """Base exception for upstream collaborator failures."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class UpstreamNotFoundError(UpstreamError):
    """Resource not found (404)."""
    pass


class UpstreamTimeoutError(UpstreamError):
    """Upstream call exceeded its timeout."""
    pass


# =============================================================================
# Collaborator Interfaces
# =============================================================================

class SalesOrderSource(ABC):
    """Order header and sale lines."""

    @abstractmethod
    async def get_order(self, order_code: str) -> Optional[SalesOrder]:
        pass


class ProductCatalog(ABC):
    """Product lookup by item code."""

    @abstractmethod
    async def get_product(self, item_code: str) -> Optional[ProductInfo]:
        pass


class DepartmentDirectory(ABC):
    """Department lookup by branch code."""

    @abstractmethod
    async def get_department(self, branch_code: str) -> Optional[DepartmentInfo]:
        pass


class StockMovementSource(ABC):
    """Stock movements recorded against one or more order codes."""

    @abstractmethod
    async def list_movements(self, order_codes: Sequence[str]) -> List[StockMovementRecord]:
        pass


class PaymentSourceProvider(ABC):
    """Payment-method breakdown ("cashio") of an order."""

    @abstractmethod
    async def list_payment_sources(self, order_code: str) -> List[PaymentSourceRecord]:
        pass


class OrderFeeProvider(ABC):
    """Marketplace fee record of an order."""

    @abstractmethod
    async def get_order_fee(self, order_code: str) -> Optional[OrderFeeRecord]:
        pass


class CardDataProvider(ABC):
    """Card/serial records issued for an order."""

    @abstractmethod
    async def list_card_records(self, order_code: str) -> List[CardRecord]:
        pass


class WarehouseRemapProvider(ABC):
    """Historical warehouse code renumbering table."""

    @abstractmethod
    async def get_warehouse_remap(self) -> Dict[str, str]:
        pass
