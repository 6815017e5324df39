"""
Connector Tests

Upstream collaborators and the snapshot loader, without network access:
1. LookupCache and AttemptPolicy
2. JsonHttpClient status mapping (fake aiohttp session)
3. Loyalty product/department lookups with endpoint fallback
4. Card data GET -> POST fallback and card helpers
5. Order export directory (tmp_path)
6. Snapshot loader degradation and card-split partners
"""

import asyncio
import json
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from connectors.base import (
    DepartmentDirectory,
    ProductCatalog,
    SalesOrderSource,
    StockMovementSource,
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamTimeoutError,
)
from connectors.cache import LookupCache
from connectors.export import OrderExportDirectory
from connectors.http import JsonHttpClient
from connectors.loyalty import (
    CardDataClient,
    LoyaltyApiClient,
    card_serials_by_material,
    extract_product_payload,
    issuing_partner_for,
)
from connectors.retry import AttemptPolicy, AttemptStrategy
from connectors.snapshot import OrderSnapshotLoader
from core.observability.metrics import MetricsCollector
from models.canonical import (
    CardRecord,
    DepartmentInfo,
    ProductInfo,
    SaleLine,
    SalesOrder,
    StockMovementRecord,
)
from reconciliation.engine import OrderInputError


def mock_http(*responses):
    """JsonHttpClient stand-in whose request() yields the given results in order."""
    http = MagicMock()
    http.request = AsyncMock(side_effect=list(responses))
    http.connect = AsyncMock()
    http.disconnect = AsyncMock()
    return http


# =============================================================================
# Cache and attempt policy
# =============================================================================

class TestLookupCache:

    def test_hits_and_misses(self):
        cache = LookupCache()
        assert cache.get("a") is None
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache
        assert cache.stats() == {"size": 1, "hits": 1, "misses": 1}

    def test_lru_eviction(self):
        cache = LookupCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_clear(self):
        cache = LookupCache()
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0
        assert cache.stats()["hits"] == 0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LookupCache(max_size=0)


class TestAttemptPolicy:

    def test_first_result_wins(self):
        policy = AttemptPolicy(strategies=(AttemptStrategy("one"), AttemptStrategy("two")))
        calls = []

        async def attempt(strategy):
            calls.append(strategy.name)
            return {"from": strategy.name}

        assert asyncio.run(policy.run(attempt)) == {"from": "one"}
        assert calls == ["one"]

    def test_empty_result_moves_on(self):
        policy = AttemptPolicy(strategies=(AttemptStrategy("one"), AttemptStrategy("two")))

        async def attempt(strategy):
            return None if strategy.name == "one" else "found"

        assert asyncio.run(policy.run(attempt)) == "found"

    def test_error_falls_through_by_status(self):
        policy = AttemptPolicy(strategies=(
            AttemptStrategy("get", continue_on=frozenset({405})),
            AttemptStrategy("post", method="POST"),
        ))

        async def attempt(strategy):
            if strategy.method == "GET":
                raise UpstreamError("method not allowed", 405)
            return "posted"

        assert asyncio.run(policy.run(attempt)) == "posted"

    def test_error_not_allowed_propagates(self):
        policy = AttemptPolicy(strategies=(
            AttemptStrategy("get", continue_on=frozenset({405})),
            AttemptStrategy("post", method="POST"),
        ))

        async def attempt(strategy):
            raise UpstreamError("server error", 500)

        with pytest.raises(UpstreamError):
            asyncio.run(policy.run(attempt))

    def test_exhausted_returns_none(self):
        policy = AttemptPolicy(strategies=(AttemptStrategy("one"), AttemptStrategy("two")))

        async def attempt(strategy):
            raise UpstreamNotFoundError("missing", 404)

        assert asyncio.run(policy.run(attempt)) is None


# =============================================================================
# HTTP client
# =============================================================================

class _FakeResponse:
    def __init__(self, status, body=""):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def fake_session(status=200, body="", side_effect=None):
    session = MagicMock()
    if side_effect is not None:
        session.request.side_effect = side_effect
    else:
        session.request.return_value = _FakeResponse(status, body)
    session.close = AsyncMock()
    return session


class TestJsonHttpClient:

    def test_build_url(self):
        client = JsonHttpClient("https://api.example.com/v1/", session=fake_session())
        assert client.build_url("/departments") == "https://api.example.com/v1/departments"
        assert client.build_url("") == "https://api.example.com/v1"
        assert client.build_url("https://other.example.com/x") == "https://other.example.com/x"

    def test_decodes_json(self):
        session = fake_session(200, json.dumps({"data": {"id": 1}}))
        client = JsonHttpClient("https://api.example.com", session=session)

        result = asyncio.run(client.request("GET", "/items", params={"page": "1"}))

        assert result == {"data": {"id": 1}}
        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://api.example.com/items")
        assert session.request.call_args.kwargs["params"] == {"page": "1"}

    def test_empty_body(self):
        client = JsonHttpClient("https://api.example.com", session=fake_session(204))
        assert asyncio.run(client.request("POST")) is None

    def test_not_found(self):
        client = JsonHttpClient("https://api.example.com", session=fake_session(404, "nope"))
        with pytest.raises(UpstreamNotFoundError) as exc_info:
            asyncio.run(client.request("GET", "/x"))
        assert exc_info.value.status_code == 404

    def test_server_error(self):
        client = JsonHttpClient("https://api.example.com", session=fake_session(503, "down"))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.request("GET", "/x"))
        assert exc_info.value.status_code == 503
        assert exc_info.value.response_body == "down"

    def test_invalid_json(self):
        client = JsonHttpClient("https://api.example.com", session=fake_session(200, "<html>"))
        with pytest.raises(UpstreamError, match="Invalid JSON"):
            asyncio.run(client.request("GET", "/x"))

    def test_timeout(self):
        session = fake_session(side_effect=asyncio.TimeoutError())
        client = JsonHttpClient("https://api.example.com", session=session)
        with pytest.raises(UpstreamTimeoutError):
            asyncio.run(client.request("GET", "/x"))

    def test_transport_error(self):
        session = fake_session(side_effect=aiohttp.ClientConnectionError("refused"))
        client = JsonHttpClient("https://api.example.com", session=session)
        with pytest.raises(UpstreamError, match="Request failed"):
            asyncio.run(client.request("GET", "/x"))

    def test_injected_session_is_not_closed(self):
        session = fake_session()
        client = JsonHttpClient("https://api.example.com", session=session)
        asyncio.run(client.disconnect())
        session.close.assert_not_called()


# =============================================================================
# Loyalty API
# =============================================================================

class TestLoyaltyProducts:

    def test_extract_product_payload(self):
        assert extract_product_payload({"data": {"item": {"code": "A"}}}) == {"code": "A"}
        assert extract_product_payload({"data": {"id": 7}}) == {"id": 7}
        assert extract_product_payload({"code": "A"}) == {"code": "A"}
        assert extract_product_payload({"data": {}}) is None
        assert extract_product_payload([]) is None

    def test_falls_back_to_old_code(self):
        http = mock_http(
            UpstreamNotFoundError("missing", 404),
            {"data": {"item": {"code": "SP1", "materialCode": "M1", "trackBatch": 1}}},
        )
        client = LoyaltyApiClient("https://loyalty.example.com", http=http)

        product = asyncio.run(client.get_product("SP1"))

        assert product.material_code == "M1"
        assert product.tracks_lot is True
        paths = [call.args[1] for call in http.request.call_args_list]
        assert paths == ["/material-catalogs/code/SP1", "/material-catalogs/old-code/SP1"]

    def test_product_is_cached(self):
        http = mock_http({"data": {"item": {"code": "SP1"}}})
        client = LoyaltyApiClient("https://loyalty.example.com", http=http)

        first = asyncio.run(client.get_product("SP1"))
        second = asyncio.run(client.get_product("SP1"))

        assert first is second
        assert http.request.call_count == 1

    def test_unknown_product_is_cached_as_missing(self):
        http = mock_http(None, {"data": {}}, UpstreamError("boom", 500))
        client = LoyaltyApiClient("https://loyalty.example.com", http=http)

        assert asyncio.run(client.get_product("NOPE")) is None
        assert asyncio.run(client.get_product("NOPE")) is None
        assert http.request.call_count == 3

    def test_code_defaults_to_requested_code(self):
        http = mock_http({"data": {"item": {"id": 5, "materialCode": "M9"}}})
        client = LoyaltyApiClient("https://loyalty.example.com", http=http)
        assert asyncio.run(client.get_product("SP9")).item_code == "SP9"

    def test_blank_code(self):
        http = mock_http()
        client = LoyaltyApiClient("https://loyalty.example.com", http=http)
        assert asyncio.run(client.get_product("  ")) is None
        http.request.assert_not_called()


class TestLoyaltyDepartments:

    def test_department_lookup(self):
        http = mock_http({"data": {"items": [
            {"branchcode": "B01", "ma_bp": "BP01", "ma_dvcs": "TTM", "channelType": "wholesale"},
        ]}})
        client = LoyaltyApiClient("https://loyalty.example.com", http=http)

        department = asyncio.run(client.get_department("B01"))

        assert department.department_code == "BP01"
        assert department.company_code == "TTM"
        assert department.channel_type.value == "WHOLESALE"
        assert http.request.call_args.kwargs["params"] == {"page": "1", "limit": "25", "branchcode": "B01"}

    def test_unknown_department(self):
        http = mock_http({"data": {"items": []}})
        client = LoyaltyApiClient("https://loyalty.example.com", http=http)

        assert asyncio.run(client.get_department("B99")) is None
        assert asyncio.run(client.get_department("B99")) is None
        assert http.request.call_count == 1


# =============================================================================
# Card data
# =============================================================================

CARD_BODY = [{"data": [
    {"service_item_name": "SV1", "serial": "S-001", "qty": 1, "issue_partner_code": "P1"},
    {"service_item_name": "SV2", "qty": "abc"},
]}]


class TestCardData:

    def test_get_rejected_then_post(self):
        http = mock_http(UpstreamError("method not allowed", 405), CARD_BODY)
        client = CardDataClient("https://hooks.example.com/cards", http=http)

        records = asyncio.run(client.list_card_records("SO1"))

        assert [r.serial for r in records] == ["S-001"]
        methods = [call.args[0] for call in http.request.call_args_list]
        assert methods == ["GET", "POST"]
        assert http.request.call_args.kwargs["data"] == {"doccode": "SO1"}

    def test_records_are_cached(self):
        http = mock_http(CARD_BODY)
        client = CardDataClient("https://hooks.example.com/cards", http=http)

        asyncio.run(client.list_card_records("SO1"))
        asyncio.run(client.list_card_records("SO1"))

        assert http.request.call_count == 1

    def test_post_failure_propagates(self):
        http = mock_http(UpstreamError("not allowed", 404), UpstreamError("server error", 500))
        client = CardDataClient("https://hooks.example.com/cards", http=http)

        with pytest.raises(UpstreamError):
            asyncio.run(client.list_card_records("SO1"))

    def test_serials_by_material(self):
        records = [
            CardRecord(service_item_name="SV1", serial="S-001"),
            CardRecord(service_item_name="SV2", serial="S-002"),
            CardRecord(service_item_name="SV1"),
        ]
        products = {"SV1": ProductInfo(item_code="SV1", material_code="M-SV1")}
        assert card_serials_by_material(records, products) == {"M-SV1": "S-001"}


class TestIssuingPartner:

    RECORDS = [
        CardRecord(quantity=-1, issue_partner_code="NEG"),
        CardRecord(quantity=1, issue_partner_code="FIRST"),
        CardRecord(quantity=1, issue_partner_code="ADJ", action="adjust"),
    ]

    def sale(self, quantity):
        return SaleLine(order_code="SO1", item_code="A", quantity=quantity)

    def test_negative_line(self):
        assert issuing_partner_for(self.sale(-1), self.RECORDS) == "NEG"

    def test_positive_line_prefers_adjust(self):
        assert issuing_partner_for(self.sale(1), self.RECORDS) == "ADJ"

    def test_positive_line_without_adjust(self):
        assert issuing_partner_for(self.sale(1), self.RECORDS[:2]) == "FIRST"

    def test_zero_quantity(self):
        assert issuing_partner_for(self.sale(0), self.RECORDS) is None


# =============================================================================
# Export directory
# =============================================================================

def write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")


class TestOrderExportDirectory:

    def test_reads_order_files(self, tmp_path):
        write_json(tmp_path / "orders" / "SO1.json", {
            "docCode": "SO1",
            "docDate": "2025-11-03T08:15:00Z",
            "customerCode": "KH01",
            "branchCode": "B01",
            "sales": [{"docCode": "SO1", "itemCode": "A", "qty": "10", "giaBan": "100"}],
        })
        write_json(tmp_path / "movements" / "SO1.json", [
            {"soCode": "SO1", "itemCode": "A", "qty": -10, "docCode": "ST1", "stockCode": "K1"},
            {"soCode": "SO1", "qty": "oops"},
        ])
        write_json(tmp_path / "payments" / "SO1.json", [
            {"so_code": "SO1", "fop_syscode": "ECOIN", "total_in": 50},
        ])
        write_json(tmp_path / "warehouse_remap.json", {"K1": "KHO1"})
        write_json(tmp_path / "wholesale_accounts.json", [
            {"code": "CKCSBH.MP", "discount_account": "521121"},
        ])
        source = OrderExportDirectory(tmp_path)

        order = asyncio.run(source.get_order("SO1"))
        assert order.document_date == date(2025, 11, 3)
        assert order.sale_lines[0].quantity == Decimal("10")

        movements = asyncio.run(source.list_movements(["SO1", "SO2"]))
        assert len(movements) == 1
        assert movements[0].warehouse_code == "K1"

        payments = asyncio.run(source.list_payment_sources("SO1"))
        assert payments[0].amount == Decimal("50")

        assert asyncio.run(source.get_warehouse_remap()) == {"K1": "KHO1"}
        accounts = asyncio.run(source.get_wholesale_accounts())
        assert accounts["CKCSBH.MP"].discount_account == "521121"

    def test_missing_files_mean_no_data(self, tmp_path):
        source = OrderExportDirectory(tmp_path)
        assert asyncio.run(source.get_order("SO1")) is None
        assert asyncio.run(source.get_order_fee("SO1")) is None
        assert asyncio.run(source.list_payment_sources("SO1")) == []
        assert asyncio.run(source.get_warehouse_remap()) == {}

    def test_bad_json(self, tmp_path):
        (tmp_path / "orders").mkdir()
        (tmp_path / "orders" / "SO1.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(UpstreamError):
            asyncio.run(OrderExportDirectory(tmp_path).get_order("SO1"))

    def test_unsafe_order_code(self, tmp_path):
        write_json(tmp_path / "fees" / "SO_1.json", {"erpOrderCode": "SO/1", "feeAmount": 12})
        fee = asyncio.run(OrderExportDirectory(tmp_path).get_order_fee("SO/1"))
        assert fee.fee_amount == Decimal("12")


# =============================================================================
# Snapshot loader
# =============================================================================

class FakeSales(SalesOrderSource):
    def __init__(self, orders):
        self.orders = orders

    async def get_order(self, order_code):
        return self.orders.get(order_code)


class FakeCatalog(ProductCatalog, DepartmentDirectory):
    def __init__(self, products, failing=()):
        self.products = products
        self.failing = set(failing)
        self.calls = []

    async def get_product(self, item_code):
        self.calls.append(item_code)
        if item_code in self.failing:
            raise UpstreamError("catalog down", 503)
        return self.products.get(item_code)

    async def get_department(self, branch_code):
        return DepartmentInfo(branch_code=branch_code, department_code="BP01", company_code="TTM")


class FakeMovements(StockMovementSource):
    def __init__(self, movements=(), error=None):
        self.movements = list(movements)
        self.error = error
        self.requested = None

    async def list_movements(self, order_codes):
        self.requested = list(order_codes)
        if self.error:
            raise self.error
        return [m for m in self.movements if m.order_code in order_codes]


class FakeCards:
    def __init__(self, records):
        self.records = records

    async def list_card_records(self, order_code):
        return list(self.records)


def sales_order(order_code="SO1", lines=None):
    return SalesOrder(
        order_code=order_code,
        document_date=date(2025, 11, 3),
        branch_code="B01",
        sale_lines=lines or [SaleLine(order_code=order_code, item_code="A", quantity=1)],
    )


class TestOrderSnapshotLoader:

    def test_load(self):
        movement = StockMovementRecord(order_code="SO1", item_code="A", quantity=-1, doc_code="ST1")
        catalog = FakeCatalog({"A": ProductInfo(item_code="A", material_code="M-A")})
        loader = OrderSnapshotLoader(
            sales=FakeSales({"SO1": sales_order()}),
            catalog=catalog,
            departments=catalog,
            movements=FakeMovements([movement]),
        )

        snapshot = asyncio.run(loader.load("SO1"))

        assert snapshot.order_code == "SO1"
        assert snapshot.products["A"].material_code == "M-A"
        assert snapshot.departments["B01"].company_code == "TTM"
        assert len(snapshot.movements) == 1
        assert snapshot.payment_sources == []
        assert catalog.calls == ["A"]

    def test_missing_order(self):
        catalog = FakeCatalog({})
        loader = OrderSnapshotLoader(FakeSales({}), catalog, catalog, FakeMovements())
        with pytest.raises(OrderInputError):
            asyncio.run(loader.load("SO404"))

    def test_return_order_requests_origin_movements(self):
        movements = FakeMovements()
        catalog = FakeCatalog({})
        code = "RT33.001_1"
        loader = OrderSnapshotLoader(FakeSales({code: sales_order(code)}), catalog, catalog, movements)

        asyncio.run(loader.load(code))

        assert movements.requested == [code, "SO33.001"]

    def test_failing_collaborators_degrade(self):
        metrics = MetricsCollector.instance()
        before = metrics.get_summary()["upstream"]["by_collaborator"].get("stock_movements", 0)
        catalog = FakeCatalog({"B": ProductInfo(item_code="B")}, failing={"A"})
        order = sales_order(lines=[
            SaleLine(order_code="SO1", item_code="A", quantity=1),
            SaleLine(order_code="SO1", item_code="B", quantity=1),
        ])
        loader = OrderSnapshotLoader(
            sales=FakeSales({"SO1": order}),
            catalog=catalog,
            departments=catalog,
            movements=FakeMovements(error=UpstreamTimeoutError("timed out")),
        )

        snapshot = asyncio.run(loader.load("SO1"))

        assert snapshot.movements == []
        assert set(snapshot.products) == {"B"}
        after = metrics.get_summary()["upstream"]["by_collaborator"]["stock_movements"]
        assert after == before + 1

    def test_card_split_lines_get_issuing_partner(self):
        lines = [
            SaleLine(order_code="SO1", item_code="A", quantity=-1, order_type_label="08. Tách thẻ"),
            SaleLine(order_code="SO1", item_code="SV1", quantity=1, order_type_label="08. Tách thẻ"),
            SaleLine(order_code="SO1", item_code="C", quantity=1, order_type_label="01. Thường"),
        ]
        cards = FakeCards([
            CardRecord(service_item_name="SV1", serial="S-1", quantity=-1, issue_partner_code="OLD"),
            CardRecord(service_item_name="SV1", serial="S-2", quantity=1, issue_partner_code="NEW"),
        ])
        catalog = FakeCatalog({"SV1": ProductInfo(item_code="SV1", material_code="M-SV1")})
        loader = OrderSnapshotLoader(
            sales=FakeSales({"SO1": sales_order(lines=lines)}),
            catalog=catalog,
            departments=catalog,
            movements=FakeMovements(),
            cards=cards,
        )

        snapshot = asyncio.run(loader.load("SO1"))

        assert [l.issue_partner_code for l in snapshot.sale_lines] == ["OLD", "NEW", None]
        assert snapshot.card_serials == {"M-SV1": "S-2"}

    def test_load_many(self):
        catalog = FakeCatalog({})
        loader = OrderSnapshotLoader(
            FakeSales({"SO1": sales_order("SO1"), "SO2": sales_order("SO2")}),
            catalog,
            catalog,
            FakeMovements(),
            concurrency=1,
        )
        snapshots = asyncio.run(loader.load_many(["SO1", "SO2"]))
        assert [s.order_code for s in snapshots] == ["SO1", "SO2"]

    def test_invalid_concurrency(self):
        catalog = FakeCatalog({})
        with pytest.raises(ValueError):
            OrderSnapshotLoader(FakeSales({}), catalog, catalog, FakeMovements(), concurrency=0)
