"""Start invoice build workflows on Temporal.

Connects to Temporal, starts one InvoiceBuildWorkflow per order code and
prints each result.

Usage:
    python scripts/start_invoice_build.py SO33.00121928 SO33.00121929
    python scripts/start_invoice_build.py SO33.00121928 --no-wait
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from core.observability.logging import configure_logging, get_logger
from core.settings import get_settings
from storage.artifacts import safe_name
from workflows.invoice_workflow import InvoiceBuildWorkflow, InvoiceBuildWorkflowInput


logger = get_logger(__name__)


async def start_invoice_builds(order_codes, task_queue: str, wait: bool = True):
    """Start one workflow per order.

    Returns:
        List of workflow outputs (or workflow ids when not waiting)
    """
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    handles = []
    for order_code in order_codes:
        handle = await client.start_workflow(
            InvoiceBuildWorkflow.run,
            InvoiceBuildWorkflowInput(order_code=order_code),
            task_queue=task_queue,
            id=f"invoice-build-{safe_name(order_code)}",
        )
        logger.info(f"Workflow started: {handle.id}")
        handles.append(handle)

    if not wait:
        return [h.id for h in handles]

    logger.info("Waiting for results...")
    return await asyncio.gather(*[h.result() for h in handles])


def main():
    """Entry point."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Start invoice build workflows")
    parser.add_argument("order_codes", nargs="+", help="Order codes to build")
    parser.add_argument("--queue", "-q", default=settings.task_queue, help="Task queue")
    parser.add_argument("--no-wait", action="store_true", help="Return after starting")
    args = parser.parse_args()

    configure_logging(level=settings.logging_level, json_format=settings.log_json)

    try:
        results = asyncio.run(start_invoice_builds(args.order_codes, args.queue, wait=not args.no_wait))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for result in results:
        if isinstance(result, str):
            print(result)
        else:
            print(f"{result.order_code}: {result.status} "
                  f"(reconciliation {result.reconciliation_status}, {result.line_count} lines)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
