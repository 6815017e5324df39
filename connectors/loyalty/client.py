"""Loyalty API client: product catalog and department directory.

Product lookups try three catalog endpoints in order (current code, old
code, material code) and stop at the first that returns a usable entry.
Results are cached per item code for the process lifetime.
"""

from typing import Any, Dict, Optional
from urllib.parse import quote

from pydantic import ValidationError

from connectors.base import DepartmentDirectory, ProductCatalog, UpstreamError
from connectors.cache import LookupCache
from connectors.http import JsonHttpClient
from connectors.retry import AttemptPolicy, AttemptStrategy
from core.observability.logging import get_logger
from models.canonical import DepartmentInfo, ProductInfo


logger = get_logger(__name__)


PRODUCT_LOOKUP_POLICY = AttemptPolicy(
    strategies=(
        AttemptStrategy("code", path="/material-catalogs/code/{code}"),
        AttemptStrategy("old-code", path="/material-catalogs/old-code/{code}"),
        AttemptStrategy("material-code", path="/material-catalogs/material-code/{code}"),
    ),
    timeout_seconds=5.0,
)

DEPARTMENT_PAGE_SIZE = 25

# Sentinel stored for codes the catalog does not know
_MISSING = object()


def extract_product_payload(body: Any) -> Optional[Dict[str, Any]]:
    """
    Pull the product object out of a catalog response.

    The code endpoint wraps it as ``data.item``; the others return it under
    ``data`` or bare. A usable entry carries an ``id`` or a ``code``.
    """
    if not isinstance(body, dict):
        return None
    candidate: Any = body
    data = body.get("data")
    if isinstance(data, dict):
        item = data.get("item")
        candidate = item if isinstance(item, dict) and item else data
    if not isinstance(candidate, dict):
        return None
    if not (candidate.get("id") or candidate.get("code")):
        return None
    return candidate


class LoyaltyApiClient(ProductCatalog, DepartmentDirectory):
    """
    Product catalog and department lookups against the loyalty API.

    Usage:
        async with LoyaltyApiClient(settings.loyalty_api_base_url) as client:
            product = await client.get_product("SP001")
    """

    def __init__(
        self,
        base_url: str,
        policy: AttemptPolicy = PRODUCT_LOOKUP_POLICY,
        cache: Optional[LookupCache] = None,
        http: Optional[JsonHttpClient] = None,
    ):
        self.policy = policy
        self.cache = cache if cache is not None else LookupCache()
        self.http = http or JsonHttpClient(base_url, timeout_seconds=policy.timeout_seconds)

    async def __aenter__(self) -> "LoyaltyApiClient":
        await self.http.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.http.disconnect()

    async def close(self) -> None:
        await self.http.disconnect()

    # =========================================================================
    # Products
    # =========================================================================

    async def get_product(self, item_code: str) -> Optional[ProductInfo]:
        """
        Look up a catalog entry.

        Args:
            item_code: Sale or movement item code

        Returns:
            ProductInfo, or None when no endpoint knows the code

        Raises:
            UpstreamError: Only for failures the policy does not fall through
        """
        code = (item_code or "").strip()
        if not code:
            return None

        cache_key = f"product:{code}"
        cached = self.cache.get(cache_key)
        if cached is _MISSING:
            return None
        if cached is not None:
            return cached

        async def attempt(strategy: AttemptStrategy) -> Optional[Dict[str, Any]]:
            body = await self.http.request(
                strategy.method,
                strategy.path.format(code=quote(code, safe="")),
                timeout_seconds=self.policy.timeout_seconds,
            )
            return extract_product_payload(body)

        payload = await self.policy.run(attempt)
        if payload is None:
            logger.debug(f"Product not found in catalog: {code}")
            self.cache.set(cache_key, _MISSING)
            return None

        payload = dict(payload)
        payload.setdefault("code", code)
        try:
            product = ProductInfo.model_validate(payload)
        except ValidationError as e:
            raise UpstreamError(f"Malformed catalog entry for {code}: {e}")

        self.cache.set(cache_key, product)
        return product

    # =========================================================================
    # Departments
    # =========================================================================

    async def get_department(self, branch_code: str) -> Optional[DepartmentInfo]:
        code = (branch_code or "").strip()
        if not code:
            return None

        cache_key = f"department:{code}"
        cached = self.cache.get(cache_key)
        if cached is _MISSING:
            return None
        if cached is not None:
            return cached

        body = await self.http.request(
            "GET",
            "/departments",
            params={"page": "1", "limit": str(DEPARTMENT_PAGE_SIZE), "branchcode": code},
        )
        data = body.get("data") if isinstance(body, dict) else None
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            self.cache.set(cache_key, _MISSING)
            return None

        payload = dict(items[0])
        payload.setdefault("branchcode", code)
        try:
            department = DepartmentInfo.model_validate(payload)
        except ValidationError as e:
            raise UpstreamError(f"Malformed department entry for {code}: {e}")

        self.cache.set(cache_key, department)
        return department
