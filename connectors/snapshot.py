"""Order snapshot loader.

Gathers everything one invoice build needs from the upstream collaborators
and freezes it into an ``OrderSnapshot``. Lookups run concurrently under a
semaphore. A failing collaborator degrades to empty data (no product, no
department, no movements...) and is logged and counted; only a missing
order is an error.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from connectors.base import (
    CardDataProvider,
    DepartmentDirectory,
    OrderFeeProvider,
    PaymentSourceProvider,
    ProductCatalog,
    SalesOrderSource,
    StockMovementSource,
    UpstreamError,
    WarehouseRemapProvider,
)
from connectors.loyalty.card_data import card_serials_by_material, issuing_partner_for
from core.observability.logging import get_logger
from core.observability.metrics import record_upstream_failure
from models.canonical import (
    CardRecord,
    OrderSnapshot,
    SaleLine,
    SalesOrder,
    WholesaleAccountConfig,
    related_order_codes,
)
from reconciliation.engine import OrderInputError
from reconciliation.order_types import OrderTypeClass, classify_order_type


logger = get_logger(__name__)


def _unique(values: Sequence[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        code = (value or "").strip()
        if code and code not in seen:
            seen[code] = None
    return list(seen)


class OrderSnapshotLoader:
    """
    Builds OrderSnapshots from collaborator interfaces.

    Usage:
        loader = OrderSnapshotLoader(
            sales=export_dir,
            catalog=loyalty,
            departments=loyalty,
            movements=export_dir,
            payments=export_dir,
            fees=export_dir,
            cards=card_client,
            remap=export_dir,
        )
        snapshot = await loader.load("SO33.00121928")
    """

    def __init__(
        self,
        sales: SalesOrderSource,
        catalog: ProductCatalog,
        departments: DepartmentDirectory,
        movements: StockMovementSource,
        payments: Optional[PaymentSourceProvider] = None,
        fees: Optional[OrderFeeProvider] = None,
        cards: Optional[CardDataProvider] = None,
        remap: Optional[WarehouseRemapProvider] = None,
        wholesale_accounts: Optional[Dict[str, WholesaleAccountConfig]] = None,
        concurrency: int = 5,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.sales = sales
        self.catalog = catalog
        self.departments = departments
        self.movements = movements
        self.payments = payments
        self.fees = fees
        self.cards = cards
        self.remap = remap
        self.wholesale_accounts = wholesale_accounts or {}
        self.concurrency = concurrency

    async def _guarded(
        self,
        semaphore: asyncio.Semaphore,
        collaborator: str,
        order_code: str,
        call: Callable[[], Awaitable[Any]],
        default: Any,
    ) -> Any:
        async with semaphore:
            try:
                return await call()
            except UpstreamError as e:
                logger.warning(
                    f"{collaborator} lookup failed, continuing without it: {e}",
                    extra_fields={
                        "order_code": order_code,
                        "collaborator": collaborator,
                        "status_code": e.status_code,
                    },
                )
                record_upstream_failure(collaborator, str(e))
                return default

    async def load(
        self,
        order_code: str,
        semaphore: Optional[asyncio.Semaphore] = None,
    ) -> OrderSnapshot:
        """
        Load one order.

        Args:
            order_code: Order to load
            semaphore: Shared limiter when loading several orders

        Returns:
            OrderSnapshot with all lookups resolved

        Raises:
            OrderInputError: If the order does not exist
            UpstreamError: If the sales source itself fails
        """
        semaphore = semaphore or asyncio.Semaphore(self.concurrency)

        async with semaphore:
            order = await self.sales.get_order(order_code)
        if order is None:
            raise OrderInputError(f"Order {order_code} not found")

        movements, payments, fee, cards, remap = await asyncio.gather(
            self._guarded(
                semaphore, "stock_movements", order_code,
                lambda: self.movements.list_movements(related_order_codes(order.order_code)), [],
            ),
            self._optional(semaphore, "payment_sources", order_code, self.payments,
                           lambda p: p.list_payment_sources(order.order_code), []),
            self._optional(semaphore, "order_fee", order_code, self.fees,
                           lambda p: p.get_order_fee(order.order_code), None),
            self._optional(semaphore, "card_data", order_code, self.cards,
                           lambda p: p.list_card_records(order.order_code), []),
            self._optional(semaphore, "warehouse_remap", order_code, self.remap,
                           lambda p: p.get_warehouse_remap(), {}),
        )

        item_codes = _unique(
            [line.item_code for line in order.sale_lines]
            + [movement.item_code for movement in movements]
            + [card.service_item_name for card in cards]
        )
        branch_codes = _unique([order.branch_code] + [line.branch_code for line in order.sale_lines])

        product_results = await asyncio.gather(*[
            self._guarded(semaphore, "product_catalog", order_code,
                          lambda code=code: self.catalog.get_product(code), None)
            for code in item_codes
        ])
        department_results = await asyncio.gather(*[
            self._guarded(semaphore, "departments", order_code,
                          lambda code=code: self.departments.get_department(code), None)
            for code in branch_codes
        ])

        products = {code: p for code, p in zip(item_codes, product_results) if p is not None}
        departments = {code: d for code, d in zip(branch_codes, department_results) if d is not None}

        snapshot = OrderSnapshot(
            order_code=order.order_code,
            document_date=order.document_date,
            customer_code=order.customer_code,
            customer_name=order.customer_name,
            shift_code=order.shift_code,
            branch_code=order.branch_code,
            sale_lines=self._with_issuing_partners(order, cards),
            movements=movements,
            products=products,
            departments=departments,
            warehouse_remap=remap,
            payment_sources=payments,
            order_fee=fee,
            card_serials=card_serials_by_material(cards, products),
            wholesale_accounts=self.wholesale_accounts,
        )
        logger.info(
            f"Loaded snapshot for {order.order_code}",
            extra_fields={
                "order_code": order.order_code,
                "sale_lines": len(snapshot.sale_lines),
                "movements": len(movements),
                "products": len(products),
                "missing_products": len(item_codes) - len(products),
            },
        )
        return snapshot

    async def load_many(self, order_codes: Sequence[str]) -> List[OrderSnapshot]:
        """Load several orders sharing one concurrency limit."""
        semaphore = asyncio.Semaphore(self.concurrency)
        return list(await asyncio.gather(*[self.load(code, semaphore) for code in order_codes]))

    async def _optional(
        self,
        semaphore: asyncio.Semaphore,
        collaborator: str,
        order_code: str,
        provider: Optional[Any],
        call: Callable[[Any], Awaitable[Any]],
        default: Any,
    ) -> Any:
        if provider is None:
            return default
        return await self._guarded(semaphore, collaborator, order_code, lambda: call(provider), default)

    @staticmethod
    def _with_issuing_partners(order: SalesOrder, cards: List[CardRecord]) -> List[SaleLine]:
        """Stamp the card issuing partner onto card-split lines."""
        if not cards:
            return list(order.sale_lines)
        lines: List[SaleLine] = []
        for line in order.sale_lines:
            if classify_order_type(line.order_type_label) == OrderTypeClass.CARD_SPLIT:
                partner = issuing_partner_for(line, cards)
                if partner:
                    line = line.model_copy(update={"issue_partner_code": partner})
            lines.append(line)
        return lines
