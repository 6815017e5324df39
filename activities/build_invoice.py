"""Invoice build activities.

Temporal activities that load an order snapshot from the upstream
collaborators and turn it into a stored invoice payload plus
reconciliation report.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from pydantic import ValidationError
from temporalio import activity

from connectors.export import OrderExportDirectory
from connectors.loyalty.card_data import CARD_LOOKUP_POLICY, CardDataClient
from connectors.loyalty.client import PRODUCT_LOOKUP_POLICY, LoyaltyApiClient
from connectors.retry import AttemptPolicy
from connectors.snapshot import OrderSnapshotLoader
from core.observability.logging import with_correlation
from core.observability.metrics import record_order_failed
from core.settings import Settings, get_settings
from models.canonical import OrderSnapshot
from models.refs import InvoiceBuildResult
from payload.builder import InvoiceBuilder
from reconciliation.engine import OrderInputError
from storage.artifacts import artifact_path, put_json


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class LoadSnapshotInput:
    """Input for load_order_snapshot activity.

    Attributes:
        order_code: Order to load
    """
    order_code: str


@dataclass
class BuildInvoiceInput:
    """Input for build_invoice_payload activity.

    Attributes:
        snapshot: Serialized OrderSnapshot
        artifacts_dir: Override for the artifact directory
    """
    snapshot: dict
    artifacts_dir: Optional[str] = None


# =============================================================================
# Collaborator wiring
# =============================================================================

@asynccontextmanager
async def open_snapshot_loader(settings: Settings) -> AsyncIterator[OrderSnapshotLoader]:
    """
    Wire the configured collaborators into a loader and close them afterwards.

    Raises:
        ValueError: If ORDER_EXPORT_PATH or LOYALTY_API_BASE_URL is not set
    """
    if settings.order_export_path is None:
        raise ValueError("ORDER_EXPORT_PATH is not set")
    if not settings.loyalty_api_base_url:
        raise ValueError("LOYALTY_API_BASE_URL is not set")

    export_dir = OrderExportDirectory(settings.order_export_path)
    loyalty = LoyaltyApiClient(
        settings.loyalty_api_base_url,
        policy=AttemptPolicy(PRODUCT_LOOKUP_POLICY.strategies, settings.upstream_timeout_seconds),
    )
    cards = None
    if settings.card_data_api_url:
        cards = CardDataClient(
            settings.card_data_api_url,
            policy=AttemptPolicy(CARD_LOOKUP_POLICY.strategies, settings.card_data_timeout_seconds),
        )

    try:
        yield OrderSnapshotLoader(
            sales=export_dir,
            catalog=loyalty,
            departments=loyalty,
            movements=export_dir,
            payments=export_dir,
            fees=export_dir,
            cards=cards,
            remap=export_dir,
            wholesale_accounts=await export_dir.get_wholesale_accounts(),
            concurrency=settings.upstream_concurrency,
        )
    finally:
        await loyalty.close()
        if cards is not None:
            await cards.close()


# =============================================================================
# Activity Definitions
# =============================================================================

@activity.defn
async def load_order_snapshot(input: LoadSnapshotInput) -> dict:
    """Load one order's snapshot from the upstream collaborators.

    Args:
        input: LoadSnapshotInput with the order code

    Returns:
        Serialized OrderSnapshot

    Raises:
        OrderInputError: If the order does not exist
    """
    activity.logger.info(f"Loading snapshot for order {input.order_code}")

    with with_correlation(order_code=input.order_code, stage="load"):
        async with open_snapshot_loader(get_settings()) as loader:
            snapshot = await loader.load(input.order_code)

    activity.logger.info(
        f"Loaded order {snapshot.order_code}: {len(snapshot.sale_lines)} sale lines, "
        f"{len(snapshot.movements)} movements"
    )
    return snapshot.model_dump(mode="json")


@activity.defn
async def build_invoice_payload(input: BuildInvoiceInput) -> dict:
    """Build and store the invoice payload and reconciliation report.

    Args:
        input: BuildInvoiceInput with the serialized snapshot

    Returns:
        Serialized InvoiceBuildResult

    Raises:
        OrderInputError: If the snapshot is malformed or structurally invalid
    """
    try:
        snapshot = OrderSnapshot.model_validate(input.snapshot)
    except ValidationError as e:
        order_code = str(input.snapshot.get("order_code", ""))
        record_order_failed(order_code, str(e))
        raise OrderInputError(f"Malformed order snapshot {order_code}: {e}")

    activity.logger.info(f"Building invoice for order {snapshot.order_code}")

    try:
        build = InvoiceBuilder().build(snapshot)
    except OrderInputError as e:
        record_order_failed(snapshot.order_code, str(e))
        activity.logger.error(f"✗ Order {snapshot.order_code} rejected: {e}")
        raise

    base_dir = Path(input.artifacts_dir) if input.artifacts_dir else get_settings().artifacts_path
    payload_ref = put_json(build.payload, artifact_path(base_dir, snapshot.order_code, "payload"))
    report_ref = put_json(build.report.to_dict(), artifact_path(base_dir, snapshot.order_code, "report"))

    status = build.report.status.value
    if status == "PASS":
        activity.logger.info(f"✓ Order {snapshot.order_code}: PASS ({build.report.line_count} lines)")
    elif status == "WARN":
        activity.logger.warning(
            f"⚠ Order {snapshot.order_code}: WARN ({build.report.inferred_line_count} inferred lines)"
        )
    else:
        activity.logger.error(f"✗ Order {snapshot.order_code}: FAIL")

    result = InvoiceBuildResult(
        order_code=snapshot.order_code,
        status=status,
        line_count=build.report.line_count,
        inferred_line_count=build.report.inferred_line_count,
        checks=[c.to_dict() for c in build.report.checks],
        payload_ref=payload_ref,
        report_ref=report_ref,
    )
    return result.model_dump(mode="json")
