"""
Activity and Workflow Tests

Runs the invoice activities inside temporalio's ActivityEnvironment and the
workflow run method with mocked activity execution (no Temporal server):
1. build_invoice_payload stores payload + report and returns refs
2. Malformed or empty snapshots raise OrderInputError (non-retryable)
3. load_order_snapshot wires the export directory and loyalty client
4. Workflow stages, NEEDS_REVIEW on FAIL, review reasons
"""

import asyncio
import json
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from temporalio.testing import ActivityEnvironment

from activities.build_invoice import (
    BuildInvoiceInput,
    LoadSnapshotInput,
    build_invoice_payload,
    load_order_snapshot,
    open_snapshot_loader,
)
from connectors.loyalty.client import LoyaltyApiClient
from core.settings import Settings
from models.canonical import OrderSnapshot, ProductInfo, SaleLine, StockMovementRecord
from models.refs import DataReference
from reconciliation.engine import OrderInputError
from storage.artifacts import get_json
from workflows.invoice_workflow import (
    NON_RETRYABLE_ERRORS,
    BuildStage,
    InvoiceBuildWorkflow,
    InvoiceBuildWorkflowInput,
    ProcessingStatus,
)


def snapshot_dict(sale_lines=None, movements=None):
    snapshot = OrderSnapshot(
        order_code="SO1",
        document_date=date(2025, 11, 3),
        customer_code="KH01",
        branch_code="B01",
        sale_lines=sale_lines if sale_lines is not None else [
            SaleLine(order_code="SO1", item_code="A", quantity=10, unit_price=100,
                     revenue=1000, line_total=1000, order_type_label="01. Thường", product_type="I"),
        ],
        movements=movements if movements is not None else [
            StockMovementRecord(order_code="SO1", item_code="A", quantity=-6, doc_code="ST1"),
            StockMovementRecord(order_code="SO1", item_code="A", quantity=-4, doc_code="ST1"),
        ],
        products={"A": ProductInfo(item_code="A", material_code="M-A")},
    )
    return snapshot.model_dump(mode="json")


# =============================================================================
# build_invoice_payload
# =============================================================================

class TestBuildInvoiceActivity:

    def test_builds_and_stores_artifacts(self, tmp_path):
        env = ActivityEnvironment()
        result = asyncio.run(env.run(
            build_invoice_payload,
            BuildInvoiceInput(snapshot=snapshot_dict(), artifacts_dir=str(tmp_path)),
        ))

        assert result["order_code"] == "SO1"
        assert result["status"] == "PASS"
        assert result["line_count"] == 2
        assert result["inferred_line_count"] == 0

        payload = get_json(DataReference.model_validate(result["payload_ref"]))
        assert [d["so_luong"] for d in payload["detail"]] == [6.0, 4.0]
        assert (tmp_path / "SO1" / "payload.json").exists()

        report = json.loads((tmp_path / "SO1" / "report.json").read_text(encoding="utf-8"))
        assert report["status"] == "PASS"

    def test_warn_status_for_inferred_lines(self, tmp_path):
        movements = [
            StockMovementRecord(order_code="SO1", item_code="A", quantity=-10, doc_code="ST1"),
            StockMovementRecord(order_code="SO1", item_code="GIFT", quantity=-1, doc_code="ST1"),
        ]
        result = asyncio.run(ActivityEnvironment().run(
            build_invoice_payload,
            BuildInvoiceInput(snapshot=snapshot_dict(movements=movements), artifacts_dir=str(tmp_path)),
        ))

        assert result["status"] == "WARN"
        assert result["inferred_line_count"] == 1

    def test_malformed_snapshot(self, tmp_path):
        with pytest.raises(OrderInputError, match="Malformed order snapshot SO1"):
            asyncio.run(ActivityEnvironment().run(
                build_invoice_payload,
                BuildInvoiceInput(snapshot={"order_code": "SO1"}, artifacts_dir=str(tmp_path)),
            ))

    def test_empty_order(self, tmp_path):
        with pytest.raises(OrderInputError):
            asyncio.run(ActivityEnvironment().run(
                build_invoice_payload,
                BuildInvoiceInput(snapshot=snapshot_dict(sale_lines=[]), artifacts_dir=str(tmp_path)),
            ))
        assert not (tmp_path / "SO1").exists()

    def test_order_input_error_is_non_retryable(self):
        assert OrderInputError.__name__ in NON_RETRYABLE_ERRORS


# =============================================================================
# load_order_snapshot
# =============================================================================

def write_order(root):
    (root / "orders").mkdir(parents=True)
    (root / "orders" / "SO1.json").write_text(json.dumps({
        "docCode": "SO1",
        "docDate": "2025-11-03",
        "branchCode": "B01",
        "sales": [{"docCode": "SO1", "itemCode": "A", "qty": 2, "giaBan": 100}],
    }), encoding="utf-8")
    (root / "movements").mkdir()
    (root / "movements" / "SO1.json").write_text(json.dumps([
        {"soCode": "SO1", "itemCode": "A", "qty": -2, "docCode": "ST1", "stockCode": "K1"},
    ]), encoding="utf-8")


class TestLoadSnapshotActivity:

    def test_loads_from_export_directory(self, tmp_path):
        write_order(tmp_path)
        settings = Settings(order_export_path=tmp_path, loyalty_api_base_url="https://loyalty.example.com")
        product = ProductInfo(item_code="A", material_code="M-A")

        with patch("activities.build_invoice.get_settings", return_value=settings), \
                patch.object(LoyaltyApiClient, "get_product", AsyncMock(return_value=product)), \
                patch.object(LoyaltyApiClient, "get_department", AsyncMock(return_value=None)):
            result = asyncio.run(ActivityEnvironment().run(
                load_order_snapshot, LoadSnapshotInput(order_code="SO1"),
            ))

        snapshot = OrderSnapshot.model_validate(result)
        assert snapshot.order_code == "SO1"
        assert snapshot.products["A"].material_code == "M-A"
        assert snapshot.movements[0].warehouse_code == "K1"
        assert snapshot.departments == {}

    def test_missing_order(self, tmp_path):
        settings = Settings(order_export_path=tmp_path, loyalty_api_base_url="https://loyalty.example.com")
        with patch("activities.build_invoice.get_settings", return_value=settings):
            with pytest.raises(OrderInputError):
                asyncio.run(ActivityEnvironment().run(
                    load_order_snapshot, LoadSnapshotInput(order_code="SO404"),
                ))

    def test_loader_requires_configuration(self, tmp_path):
        async def open_loader(settings):
            async with open_snapshot_loader(settings):
                pass

        with pytest.raises(ValueError, match="ORDER_EXPORT_PATH"):
            asyncio.run(open_loader(Settings(loyalty_api_base_url="https://loyalty.example.com")))
        with pytest.raises(ValueError, match="LOYALTY_API_BASE_URL"):
            asyncio.run(open_loader(Settings(order_export_path=tmp_path)))


# =============================================================================
# Workflow
# =============================================================================

def build_result(status="PASS", checks=None):
    return {
        "order_code": "SO1",
        "status": status,
        "line_count": 2,
        "inferred_line_count": 0,
        "checks": checks or [],
        "payload_ref": {"storage_uri": "/tmp/SO1/payload.json"},
        "report_ref": {"storage_uri": "/tmp/SO1/report.json"},
    }


def run_workflow(workflow_input, *activity_results):
    execute = AsyncMock(side_effect=list(activity_results))
    wf = InvoiceBuildWorkflow()
    with patch("workflows.invoice_workflow.workflow.execute_activity", execute), \
            patch("workflows.invoice_workflow.workflow.logger", MagicMock()):
        output = asyncio.run(wf.run(workflow_input))
    return wf, output, execute


class TestInvoiceBuildWorkflow:

    def test_loads_then_builds(self):
        wf, output, execute = run_workflow(
            InvoiceBuildWorkflowInput(order_code="SO1"),
            snapshot_dict(),
            build_result(),
        )

        assert execute.call_count == 2
        assert execute.call_args_list[0].args[0] is load_order_snapshot
        assert execute.call_args_list[1].args[0] is build_invoice_payload
        assert output.status == ProcessingStatus.COMPLETED.value
        assert output.current_stage == BuildStage.PAYLOAD_GENERATED.value
        assert output.line_count == 2
        assert wf.get_stage() == "PAYLOAD_GENERATED"

    def test_preloaded_snapshot_skips_load(self):
        _, output, execute = run_workflow(
            InvoiceBuildWorkflowInput(order_code="SO1", snapshot=snapshot_dict(), artifacts_dir="/tmp/a"),
            build_result(),
        )

        assert execute.call_count == 1
        build_input = execute.call_args.args[1]
        assert build_input.artifacts_dir == "/tmp/a"
        assert output.reconciliation_status == "PASS"
        assert output.review_reasons == []

    def test_fail_needs_review(self):
        checks = [
            {"check_id": "QUANTITY_CONSERVATION", "severity": "BLOCK", "passed": False, "message": "1 items"},
            {"check_id": "INFERRED_LINES", "severity": "INFO", "passed": True, "message": "ok"},
        ]
        _, output, _ = run_workflow(
            InvoiceBuildWorkflowInput(order_code="SO1", snapshot=snapshot_dict()),
            build_result("FAIL", checks),
        )

        assert output.status == ProcessingStatus.NEEDS_REVIEW.value
        assert output.needs_review
        assert output.review_reasons == ["QUANTITY_CONSERVATION: 1 items"]

    def test_warn_completes_with_reasons(self):
        checks = [{"check_id": "INFERRED_LINES", "severity": "WARN", "passed": True, "message": "1 lines"}]
        _, output, _ = run_workflow(
            InvoiceBuildWorkflowInput(order_code="SO1", snapshot=snapshot_dict()),
            build_result("WARN", checks),
        )

        assert output.status == ProcessingStatus.COMPLETED.value
        assert not output.needs_review
        assert output.review_reasons == ["INFERRED_LINES: 1 lines"]
