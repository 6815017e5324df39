"""Card data webhook client.

Returns the card/serial records issued for an order. The webhook is called
with GET and a JSON body; deployments that reject GET (404/405) are retried
with POST. Responses look like ``[{"data": [{...card...}, ...]}]``.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from connectors.base import CardDataProvider
from connectors.cache import LookupCache
from connectors.http import JsonHttpClient
from connectors.retry import AttemptPolicy, AttemptStrategy
from core.observability.logging import get_logger
from models.canonical import CardRecord, ProductInfo, SaleLine


logger = get_logger(__name__)


CARD_LOOKUP_POLICY = AttemptPolicy(
    strategies=(
        AttemptStrategy("get", method="GET", continue_on=frozenset({404, 405})),
        AttemptStrategy("post", method="POST", continue_on=frozenset()),
    ),
    timeout_seconds=10.0,
)

ADJUST_ACTION = "ADJUST"


def parse_card_data(body: Any) -> List[Dict[str, Any]]:
    """Extract the card list from the first response element."""
    if not isinstance(body, list) or not body:
        return []
    first = body[0]
    if isinstance(first, dict) and isinstance(first.get("data"), list):
        return [item for item in first["data"] if isinstance(item, dict)]
    return []


class CardDataClient(CardDataProvider):
    """
    Card records per order code, cached for the process lifetime.

    Usage:
        client = CardDataClient(settings.card_data_api_url)
        records = await client.list_card_records("SO33.00121928")
    """

    def __init__(
        self,
        url: str,
        policy: AttemptPolicy = CARD_LOOKUP_POLICY,
        cache: Optional[LookupCache] = None,
        http: Optional[JsonHttpClient] = None,
    ):
        self.policy = policy
        self.cache = cache if cache is not None else LookupCache()
        self.http = http or JsonHttpClient(url, timeout_seconds=policy.timeout_seconds)

    async def close(self) -> None:
        await self.http.disconnect()

    async def list_card_records(self, order_code: str) -> List[CardRecord]:
        cache_key = f"cards:{order_code}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        async def attempt(strategy: AttemptStrategy) -> Any:
            return await self.http.request(
                strategy.method,
                strategy.path,
                data={"doccode": order_code},
                timeout_seconds=self.policy.timeout_seconds,
            )

        body = await self.policy.run(attempt)

        records: List[CardRecord] = []
        for raw in parse_card_data(body):
            try:
                records.append(CardRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed card record for {order_code}: {e}",
                    extra_fields={"order_code": order_code},
                )

        if body:
            self.cache.set(cache_key, tuple(records))
        return records


# =============================================================================
# Card record helpers
# =============================================================================

def card_serials_by_material(
    records: List[CardRecord],
    products: Dict[str, ProductInfo],
) -> Dict[str, str]:
    """
    Map product material code -> card serial.

    Args:
        records: Card records of the order
        products: Catalog entries keyed by item code (card service item names
            are item codes)

    Returns:
        Serial per material code; records without a serial or without a
        catalog material code are skipped
    """
    serials: Dict[str, str] = {}
    for record in records:
        if not record.service_item_name or not record.serial:
            continue
        product = products.get(record.service_item_name)
        if product is not None and product.material_code:
            serials[product.material_code] = record.serial
    return serials


def issuing_partner_for(line: SaleLine, records: List[CardRecord]) -> Optional[str]:
    """
    Pick the issuing partner of a card-split sale line.

    Negative lines take the first negative card record. Positive lines
    prefer an ADJUST record with positive quantity, then any positive record.
    """
    if line.quantity < 0:
        negative = next((r for r in records if r.quantity < 0), None)
        return negative.issue_partner_code if negative else None
    if line.quantity == 0:
        return None

    adjust = next(
        (r for r in records if r.quantity > 0 and (r.action or "").upper() == ADJUST_ACTION),
        None,
    )
    if adjust is not None and adjust.issue_partner_code:
        return adjust.issue_partner_code
    positive = next((r for r in records if r.quantity > 0), None)
    return positive.issue_partner_code if positive else None
