"""
Invoice Build Workflow

Per-order workflow that orchestrates:
LOAD_SNAPSHOT → BUILD_PAYLOAD → PAYLOAD_GENERATED

A caller that already holds the order snapshot can pass it in and skip the
load stage.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.build_invoice import (
        load_order_snapshot,
        build_invoice_payload,
        LoadSnapshotInput,
        BuildInvoiceInput,
    )


TASK_QUEUE_DEFAULT = "invoice-build"

# Structurally invalid orders won't self-heal
NON_RETRYABLE_ERRORS = ["OrderInputError", "ValidationError"]


# =============================================================================
# Workflow Input/Output
# =============================================================================

class BuildStage(str, Enum):
    LOAD_SNAPSHOT = "LOAD_SNAPSHOT"
    BUILD_PAYLOAD = "BUILD_PAYLOAD"
    PAYLOAD_GENERATED = "PAYLOAD_GENERATED"


class ProcessingStatus(str, Enum):
    """Overall processing status"""
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    FAILED = "FAILED"


@dataclass
class InvoiceBuildWorkflowInput:
    """Input for the invoice build workflow"""
    order_code: str

    # Pre-loaded snapshot (skips LOAD_SNAPSHOT)
    snapshot: Optional[Dict[str, Any]] = None

    artifacts_dir: Optional[str] = None


@dataclass
class InvoiceBuildWorkflowOutput:
    """Output from the invoice build workflow"""
    order_code: str
    status: str
    current_stage: str

    reconciliation_status: Optional[str] = None
    line_count: int = 0
    inferred_line_count: int = 0
    payload_ref: Optional[Dict[str, Any]] = None
    report_ref: Optional[Dict[str, Any]] = None

    needs_review: bool = False
    review_reasons: List[str] = field(default_factory=list)
    error_message: Optional[str] = None


# =============================================================================
# Invoice Build Workflow
# =============================================================================

@workflow.defn
class InvoiceBuildWorkflow:
    """
    Per-order invoice build workflow.

    1. LOAD_SNAPSHOT - Fetch order, movements and lookups from collaborators
    2. BUILD_PAYLOAD - Explode, resolve, assemble and store the payload
    3. PAYLOAD_GENERATED - Stop

    A FAIL reconciliation status still produces a payload; the workflow
    marks the order for review instead of failing.
    """

    def __init__(self):
        self.current_stage = BuildStage.LOAD_SNAPSHOT

    @workflow.query
    def get_stage(self) -> str:
        return self.current_stage.value

    @workflow.run
    async def run(self, input: InvoiceBuildWorkflowInput) -> InvoiceBuildWorkflowOutput:
        """Execute the invoice build workflow."""
        workflow.logger.info(f"Starting invoice build for order {input.order_code}")

        load_options = {
            "start_to_close_timeout": timedelta(minutes=2),
            "retry_policy": RetryPolicy(
                maximum_attempts=5,
                initial_interval=timedelta(seconds=2),
                maximum_interval=timedelta(minutes=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        }
        build_options = {
            "start_to_close_timeout": timedelta(seconds=60),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        }

        # =====================================================================
        # Stage: LOAD_SNAPSHOT
        # =====================================================================
        snapshot = input.snapshot
        if snapshot is None:
            self.current_stage = BuildStage.LOAD_SNAPSHOT
            snapshot = await workflow.execute_activity(
                load_order_snapshot,
                LoadSnapshotInput(order_code=input.order_code),
                **load_options,
            )

        # =====================================================================
        # Stage: BUILD_PAYLOAD
        # =====================================================================
        self.current_stage = BuildStage.BUILD_PAYLOAD
        build_result = await workflow.execute_activity(
            build_invoice_payload,
            BuildInvoiceInput(snapshot=snapshot, artifacts_dir=input.artifacts_dir),
            **build_options,
        )

        self.current_stage = BuildStage.PAYLOAD_GENERATED
        reconciliation_status = build_result.get("status")

        output = InvoiceBuildWorkflowOutput(
            order_code=input.order_code,
            status=ProcessingStatus.COMPLETED.value,
            current_stage=self.current_stage.value,
            reconciliation_status=reconciliation_status,
            line_count=build_result.get("line_count", 0),
            inferred_line_count=build_result.get("inferred_line_count", 0),
            payload_ref=build_result.get("payload_ref"),
            report_ref=build_result.get("report_ref"),
        )

        if reconciliation_status != "PASS":
            for check in build_result.get("checks", []):
                if check.get("severity") != "INFO":
                    output.review_reasons.append(f"{check.get('check_id')}: {check.get('message')}")
        if reconciliation_status == "FAIL":
            output.status = ProcessingStatus.NEEDS_REVIEW.value
            output.needs_review = True

        workflow.logger.info(
            f"Invoice build for {input.order_code} finished: {output.status} "
            f"(reconciliation {reconciliation_status}, {output.line_count} lines)"
        )
        return output
