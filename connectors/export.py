"""Order export directory source.

Reads already-persisted order data from a directory of JSON files written by
the sales/stock sync jobs:

    <root>/orders/<order_code>.json        order header with "sales" lines
    <root>/movements/<order_code>.json     list of stock movements
    <root>/payments/<order_code>.json      list of cashio records
    <root>/fees/<order_code>.json          marketplace fee record
    <root>/warehouse_remap.json            {"old_code": "new_code", ...}
    <root>/wholesale_accounts.json         list of wholesale account configs

Order codes are made file-system safe the same way artifact folders are.
Missing files mean "no data".
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from connectors.base import (
    OrderFeeProvider,
    PaymentSourceProvider,
    SalesOrderSource,
    StockMovementSource,
    UpstreamError,
    WarehouseRemapProvider,
)
from core.observability.logging import get_logger
from models.canonical import (
    OrderFeeRecord,
    PaymentSourceRecord,
    SalesOrder,
    StockMovementRecord,
    WholesaleAccountConfig,
)
from storage.artifacts import safe_name


logger = get_logger(__name__)


class OrderExportDirectory(
    SalesOrderSource,
    StockMovementSource,
    PaymentSourceProvider,
    OrderFeeProvider,
    WarehouseRemapProvider,
):
    """
    File-backed collaborator for exported orders.

    Usage:
        source = OrderExportDirectory(Path("exports"))
        order = await source.get_order("SO33.00121928")
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _read(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise UpstreamError(f"Cannot read export file {path}: {e}")

    def _order_file(self, folder: str, order_code: str) -> Path:
        return self.root / folder / f"{safe_name(order_code)}.json"

    # =========================================================================
    # Collaborator interfaces
    # =========================================================================

    async def get_order(self, order_code: str) -> Optional[SalesOrder]:
        raw = self._read(self._order_file("orders", order_code))
        if raw is None:
            return None
        try:
            return SalesOrder.model_validate(raw)
        except ValidationError as e:
            raise UpstreamError(f"Malformed order export for {order_code}: {e}")

    async def list_movements(self, order_codes: Sequence[str]) -> List[StockMovementRecord]:
        movements: List[StockMovementRecord] = []
        for code in order_codes:
            raw = self._read(self._order_file("movements", code)) or []
            for item in raw:
                try:
                    movements.append(StockMovementRecord.model_validate(item))
                except ValidationError as e:
                    logger.warning(
                        f"Skipping malformed stock movement for {code}: {e}",
                        extra_fields={"order_code": code},
                    )
        return movements

    async def list_payment_sources(self, order_code: str) -> List[PaymentSourceRecord]:
        raw = self._read(self._order_file("payments", order_code)) or []
        try:
            return [PaymentSourceRecord.model_validate(item) for item in raw]
        except ValidationError as e:
            raise UpstreamError(f"Malformed payment export for {order_code}: {e}")

    async def get_order_fee(self, order_code: str) -> Optional[OrderFeeRecord]:
        raw = self._read(self._order_file("fees", order_code))
        if not raw:
            return None
        try:
            return OrderFeeRecord.model_validate(raw)
        except ValidationError as e:
            raise UpstreamError(f"Malformed fee export for {order_code}: {e}")

    async def get_warehouse_remap(self) -> Dict[str, str]:
        raw = self._read(self.root / "warehouse_remap.json") or {}
        return {str(k): str(v) for k, v in raw.items()}

    async def get_wholesale_accounts(self) -> Dict[str, WholesaleAccountConfig]:
        """Wholesale account configs keyed by policy code."""
        raw = self._read(self.root / "wholesale_accounts.json") or []
        configs: Dict[str, WholesaleAccountConfig] = {}
        for item in raw:
            try:
                config = WholesaleAccountConfig.model_validate(item)
            except ValidationError as e:
                raise UpstreamError(f"Malformed wholesale account config: {e}")
            configs[config.code] = config
        return configs
