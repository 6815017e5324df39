"""Build an invoice payload locally, without Temporal.

Examples:
    # From a snapshot file
    python scripts/build_invoice.py --snapshot snapshots/SO33.00121928.json

    # Load the order from the configured collaborators and write artifacts
    python scripts/build_invoice.py --order-code SO33.00121928 --output out/payload.json --report
"""

import argparse
import logging
import asyncio
import json
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.build_invoice import open_snapshot_loader
from core.observability.logging import configure_logging, get_logger
from core.settings import get_settings
from models.canonical import OrderSnapshot
from payload.builder import InvoiceBuilder
from reconciliation.engine import OrderInputError
from storage.artifacts import serialize_json


logger = get_logger(__name__)


async def load_snapshot(order_code: str) -> OrderSnapshot:
    async with open_snapshot_loader(get_settings()) as loader:
        return await loader.load(order_code)


def read_snapshot(path: Path) -> OrderSnapshot:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return OrderSnapshot.model_validate(data)


def main() -> int:
    parser = argparse.ArgumentParser(description="Build an invoice payload for one order")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--snapshot", type=Path, help="Order snapshot JSON file")
    source.add_argument("--order-code", help="Load the order from the configured collaborators")
    parser.add_argument("--output", "-o", type=Path, help="Write payload here instead of stdout")
    parser.add_argument("--report", action="store_true", help="Print the reconciliation report to stderr")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(level=logging.DEBUG if args.verbose else settings.logging_level, json_format=settings.log_json)

    try:
        if args.snapshot:
            snapshot = read_snapshot(args.snapshot)
        else:
            snapshot = asyncio.run(load_snapshot(args.order_code))
        build = InvoiceBuilder().build(snapshot)
    except (OrderInputError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    payload_bytes = serialize_json(build.payload)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_bytes(payload_bytes)
        print(f"Payload written to {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(payload_bytes.decode("utf-8") + "\n")

    if args.report:
        report = build.report
        print(f"\nReconciliation: {report.status.value} "
              f"({report.line_count} lines, {report.inferred_line_count} inferred)", file=sys.stderr)
        for check in report.checks:
            mark = "✓" if check.passed and check.severity.value == "INFO" else ("⚠" if check.passed else "✗")
            print(f"  {mark} {check.check_id}: {check.message}", file=sys.stderr)

    return 0 if build.report.status.value != "FAIL" else 2


if __name__ == "__main__":
    sys.exit(main())
