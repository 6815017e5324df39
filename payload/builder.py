"""
Invoice Builder

Per-order pipeline: validate -> explode -> resolve each line -> assemble.

Exposes:
- InvoiceBuilder.build(snapshot) -> InvoiceBuild
- build_invoice_payload(snapshot) -> dict
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from coding_engine.dimensions import (
    department_default_warehouse,
    resolve_batch_serial,
    resolve_warehouse,
    select_payment_source,
)
from coding_engine.engine import DiscountCodeResolver
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import record_order_built, record_processing_time
from models.canonical import ChannelType, DepartmentInfo, OrderSnapshot
from reconciliation.engine import (
    ExplodedLine,
    Explosion,
    ReconciliationEngine,
    ReconciliationReport,
    validate_order_snapshot,
)

from .assembler import InvoicePayloadAssembler, ResolvedLine


logger = get_logger(__name__)


@dataclass
class InvoiceBuild:
    """Everything produced for one order."""
    payload: Dict[str, Any]
    report: ReconciliationReport
    explosion: Explosion


class InvoiceBuilder:
    """
    Builds the invoice payload of one order from its snapshot.

    Usage:
        builder = InvoiceBuilder()
        build = builder.build(snapshot)
        build.payload["detail"]
    """

    def __init__(
        self,
        engine: Optional[ReconciliationEngine] = None,
        assembler: Optional[InvoicePayloadAssembler] = None,
    ):
        self.engine = engine or ReconciliationEngine()
        self.assembler = assembler or InvoicePayloadAssembler()

    def build(self, snapshot: OrderSnapshot) -> InvoiceBuild:
        """
        Build payload and reconciliation report.

        Raises:
            OrderInputError: If the snapshot is structurally invalid
        """
        validate_order_snapshot(snapshot)

        with with_correlation(order_code=snapshot.order_code, stage="build"):
            start = time.perf_counter()

            explosion = self.engine.explode(snapshot)
            order_department = self._order_department(snapshot)
            resolver = DiscountCodeResolver(
                document_date=snapshot.document_date,
                company_code=order_department.company_code if order_department else None,
                channel_type=order_department.channel_type if order_department else ChannelType.RETAIL,
                wholesale_accounts=snapshot.wholesale_accounts,
            )
            payment_source = select_payment_source(snapshot.payment_sources)

            resolved = [
                self._resolve_line(snapshot, exploded, resolver, payment_source)
                for exploded in explosion.lines
            ]
            payload = self.assembler.assemble(snapshot, resolved)
            report = self.engine.check(explosion)

            duration_ms = (time.perf_counter() - start) * 1000
            record_order_built(
                snapshot.order_code,
                status=report.status.value,
                exploded=len(explosion.lines),
                inferred=explosion.inferred_count,
                unmatched=len(explosion.match.unmatched_sale_indices),
                duration_ms=duration_ms,
            )
            record_processing_time("explode_and_assemble", duration_ms)

            logger.info(
                "Invoice payload built",
                extra_fields={
                    "lines": len(resolved),
                    "inferred_lines": explosion.inferred_count,
                    "status": report.status.value,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            return InvoiceBuild(payload=payload, report=report, explosion=explosion)

    def _resolve_line(
        self,
        snapshot: OrderSnapshot,
        exploded: ExplodedLine,
        resolver: DiscountCodeResolver,
        payment_source,
    ) -> ResolvedLine:
        line = exploded.line
        product = snapshot.product_for(line.item_code)
        department = snapshot.department_for(line.branch_code or snapshot.branch_code)
        movement = exploded.movement

        # Step 1: Lot / serial (e-codes fall back to the sale's serial reference)
        source_value = movement.lot_serial if movement else None
        tracks_lot = product.tracks_lot if product else False
        tracks_serial = product.tracks_serial if product else False
        if product is not None and product.is_ecode:
            source_value = source_value or line.serial_reference
            tracks_serial = True
        batch_serial = resolve_batch_serial(source_value, tracks_lot, tracks_serial)

        # Step 2: Warehouse
        department_warehouse = (
            department_default_warehouse(department.default_warehouse, department.department_code)
            if department else None
        )
        warehouse_code = resolve_warehouse(
            movement_warehouse=exploded.outbound.warehouse_code if exploded.outbound else None,
            sale_warehouse=line.warehouse_code,
            department_warehouse=department_warehouse,
            order_type=exploded.order_type,
            remap=snapshot.warehouse_remap,
        )

        # Step 3: Discount slots, promotion codes and accounts
        coding = resolver.resolve(
            line,
            exploded.order_type,
            line.product_type,
            payment_source,
            snapshot.order_fee,
            product=product,
            sale_quantity=exploded.source.quantity if exploded.source is not None else None,
        )

        # Step 4: Card number
        material_code = (product.material_code if product else None) or line.item_code
        if product is not None and product.is_ecode and batch_serial.serial_code:
            card_code = batch_serial.serial_code
        else:
            card_code = snapshot.card_serials.get(material_code or "")

        return ResolvedLine(
            exploded=exploded,
            coding=coding,
            batch_serial=batch_serial,
            warehouse_code=warehouse_code,
            material_code=material_code,
            unit=product.unit if product else None,
            department_code=(department.department_code if department else None)
            or line.branch_code
            or snapshot.branch_code,
            card_code=card_code,
        )

    @staticmethod
    def _order_department(snapshot: OrderSnapshot) -> Optional[DepartmentInfo]:
        branch = snapshot.branch_code
        if not branch and snapshot.sale_lines:
            branch = snapshot.sale_lines[0].branch_code
        return snapshot.department_for(branch)


def build_invoice_payload(snapshot: OrderSnapshot) -> Dict[str, Any]:
    """Build only the payload for one order."""
    return InvoiceBuilder().build(snapshot).payload
