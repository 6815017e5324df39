"""Worker for the invoice build pipeline.

Listens on a Temporal task queue and executes InvoiceBuildWorkflow and its
activities (snapshot loading, payload building).

Run with --queue <name> to override the configured TASK_QUEUE.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from core.observability.logging import configure_logging, get_logger
from core.settings import get_settings
from workflows.invoice_workflow import InvoiceBuildWorkflow
from activities.build_invoice import load_order_snapshot, build_invoice_payload


logger = get_logger(__name__)

WORKFLOWS = [InvoiceBuildWorkflow]
ACTIVITIES = [load_order_snapshot, build_invoice_payload]


async def run_worker(task_queue: str) -> None:
    """Start a worker polling one task queue.

    Args:
        task_queue: Queue to poll

    Raises:
        Exception: If connection to Temporal fails
    """
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
    )
    logger.info(
        f"Worker created for queue '{task_queue}'",
        extra_fields={"workflows": len(WORKFLOWS), "activities": len(ACTIVITIES)},
    )

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Invoice Build Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=settings.task_queue,
        help=f"Task queue to poll (default: {settings.task_queue})",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=settings.log_json,
        help="Emit JSON log lines",
    )
    args = parser.parse_args()

    configure_logging(level=settings.logging_level, json_format=args.json_logs, force=True)
    try:
        asyncio.run(run_worker(args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
