"""Reconciliation engine: explode sale lines against stock movements.

Exposes:
- validate_order_snapshot(snapshot) -> None (raises OrderInputError)
- ReconciliationEngine.explode(snapshot) -> Explosion
- ReconciliationEngine.check(explosion) -> ReconciliationReport
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from core.observability.logging import get_logger
from models.canonical import (
    KEEP_CARD_PLACEHOLDER,
    OrderSnapshot,
    SaleLine,
    StockMovementRecord,
    normalize_code,
    related_order_codes,
)
from reconciliation.allocation import ONE, AllocationCalculator
from reconciliation.matcher import MatchedPair, MatchResult, StockMatcher
from reconciliation.order_types import OrderTypeClass, classify_order_type


logger = get_logger(__name__)

ZERO = Decimal("0")


# =============================================================================
# Input Validation
# =============================================================================

class OrderInputError(ValueError):
    """Structurally invalid order snapshot; not retryable."""


def validate_order_snapshot(snapshot: OrderSnapshot) -> None:
    """Reject snapshots that cannot describe a single order.

    Raises:
        OrderInputError: no order code, no sale lines, or a sale line that
            belongs to another order
    """
    if not (snapshot.order_code or "").strip():
        raise OrderInputError("Order snapshot has no order code")
    if not snapshot.sale_lines:
        raise OrderInputError(f"Order {snapshot.order_code} has no sale lines")

    accepted = set(related_order_codes(snapshot.order_code))
    foreign = sorted({
        line.order_code for line in snapshot.sale_lines if line.order_code not in accepted
    })
    if foreign:
        raise OrderInputError(
            f"Order {snapshot.order_code} contains sale lines of other orders: {', '.join(foreign)}"
        )


# =============================================================================
# Exploded Lines
# =============================================================================

@dataclass
class ExplodedLine:
    """One invoice line produced by the reconciliation.

    Attributes:
        line: Sale line with quantity and money scaled by ``ratio``
        ratio: Allocation ratio applied to the original sale line
        quantity: Quantity of this line
        order_type: Order-type class of the originating sale line
        sale_index: Index of the originating sale line (None when inferred)
        source: Originating sale line, unscaled (None when inferred)
        outbound: Matched outbound movement
        inbound: Matched inbound movement
        is_inferred: Synthesized from a movement without a sale line
    """
    line: SaleLine
    ratio: Decimal
    quantity: Decimal
    order_type: OrderTypeClass
    sale_index: Optional[int] = None
    source: Optional[SaleLine] = None
    outbound: Optional[StockMovementRecord] = None
    inbound: Optional[StockMovementRecord] = None
    is_inferred: bool = False

    @property
    def movement(self) -> Optional[StockMovementRecord]:
        """Movement that supplies warehouse and lot/serial (outbound first)."""
        return self.outbound or self.inbound


@dataclass
class MergedMovement:
    """Matched movement absorbed into another line of the same sale line."""
    sale_index: int
    movement: StockMovementRecord


@dataclass
class Explosion:
    """Exploded lines of one order plus the match they came from."""
    order_code: str
    lines: List[ExplodedLine]
    sale_lines: List[SaleLine]
    movements: List[StockMovementRecord]
    match: MatchResult
    merged: List[MergedMovement] = field(default_factory=list)

    @property
    def inferred_count(self) -> int:
        return sum(1 for line in self.lines if line.is_inferred)


# =============================================================================
# Checks
# =============================================================================

class Severity(str, Enum):
    BLOCK = "BLOCK"
    WARN = "WARN"
    INFO = "INFO"


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class CheckResult:
    """Result of a single reconciliation check."""

    def __init__(
        self,
        check_id: str,
        severity: Severity,
        passed: bool,
        message: str,
        evidence: Optional[Dict] = None,
    ):
        self.check_id = check_id
        self.severity = severity
        self.passed = passed
        self.message = message
        self.evidence = evidence or {}

    def to_dict(self) -> Dict:
        return {
            "check_id": self.check_id,
            "severity": self.severity.value,
            "passed": self.passed,
            "message": self.message,
            "evidence": self.evidence,
        }


@dataclass
class ReconciliationReport:
    """Outcome of the reconciliation checks for one order."""
    order_code: str
    checks: List[CheckResult] = field(default_factory=list)
    line_count: int = 0
    inferred_line_count: int = 0

    @property
    def status(self) -> CheckStatus:
        if any(not c.passed and c.severity == Severity.BLOCK for c in self.checks):
            return CheckStatus.FAIL
        if any(c.severity == Severity.WARN for c in self.checks):
            return CheckStatus.WARN
        return CheckStatus.PASS

    def to_dict(self) -> Dict:
        return {
            "order_code": self.order_code,
            "status": self.status.value,
            "line_count": self.line_count,
            "inferred_line_count": self.inferred_line_count,
            "checks": [c.to_dict() for c in self.checks],
        }


def check_quantity_conservation(explosion: Explosion) -> CheckResult:
    """Exploded quantity per item equals the matched movement quantity.

    Only item groups where every line was split by a stock-out are compared;
    lines without an outbound movement are emitted unscaled and would skew
    the sum. Points-exchange lines are never split and are skipped.
    """
    groups: Dict[str, List[ExplodedLine]] = {}
    partial = set()
    for exploded in explosion.lines:
        if exploded.is_inferred or exploded.order_type == OrderTypeClass.POINTS_EXCHANGE:
            continue
        key = exploded.line.normalized_item_code
        if not key:
            continue
        if exploded.outbound is None:
            partial.add(key)
        groups.setdefault(key, []).append(exploded)

    mismatches = []
    for key, lines in groups.items():
        if key in partial:
            continue
        exploded_qty = sum((line.quantity for line in lines), ZERO)
        moved_qty = sum((abs(line.outbound.quantity) for line in lines), ZERO)
        if exploded_qty != moved_qty:
            mismatches.append({
                "item": key,
                "exploded_quantity": str(exploded_qty),
                "movement_quantity": str(moved_qty),
            })

    if mismatches:
        return CheckResult(
            check_id="QUANTITY_CONSERVATION",
            severity=Severity.BLOCK,
            passed=False,
            message=f"{len(mismatches)} items with exploded quantity different from stock movements",
            evidence={"mismatches": mismatches},
        )
    return CheckResult(
        check_id="QUANTITY_CONSERVATION",
        severity=Severity.INFO,
        passed=True,
        message="Exploded quantities match stock movements",
        evidence={"items_checked": len(groups) - len(partial & set(groups))},
    )


def check_inferred_lines(explosion: Explosion) -> CheckResult:
    """Movements without a sale line produce inferred lines."""
    inferred = [line for line in explosion.lines if line.is_inferred]
    if inferred:
        return CheckResult(
            check_id="INFERRED_LINES",
            severity=Severity.WARN,
            passed=True,
            message=f"{len(inferred)} lines inferred from stock movements without sale line",
            evidence={
                "movements": [
                    {
                        "item": line.line.item_code,
                        "quantity": str(line.quantity),
                        "doc_code": line.movement.doc_code if line.movement else None,
                    }
                    for line in inferred
                ],
            },
        )
    return CheckResult(
        check_id="INFERRED_LINES",
        severity=Severity.INFO,
        passed=True,
        message="Every stock movement matched a sale line",
    )


def check_unmatched_sale_lines(explosion: Explosion) -> CheckResult:
    """Sale lines of stock-tracked orders without any movement are kept unscaled."""
    indices = explosion.match.unmatched_sale_indices
    if indices and explosion.movements:
        return CheckResult(
            check_id="UNMATCHED_SALE_LINES",
            severity=Severity.WARN,
            passed=True,
            message=f"{len(indices)} sale lines without stock movement",
            evidence={
                "sale_lines": [
                    {
                        "index": i,
                        "item": explosion.sale_lines[i].item_code,
                        "quantity": str(explosion.sale_lines[i].quantity),
                    }
                    for i in indices
                ],
            },
        )
    return CheckResult(
        check_id="UNMATCHED_SALE_LINES",
        severity=Severity.INFO,
        passed=True,
        message="No sale line left without stock movement" if explosion.movements
        else "Order has no stock movements",
    )


def check_merged_movements(explosion: Explosion) -> CheckResult:
    """Matched movements that produced no line of their own."""
    if explosion.merged:
        return CheckResult(
            check_id="MERGED_MOVEMENTS",
            severity=Severity.WARN,
            passed=True,
            message=f"{len(explosion.merged)} stock movements merged into another invoice line",
            evidence={
                "movements": [
                    {
                        "sale_index": merged.sale_index,
                        "item": merged.movement.item_code,
                        "quantity": str(merged.movement.quantity),
                        "doc_code": merged.movement.doc_code,
                    }
                    for merged in explosion.merged
                ],
            },
        )
    return CheckResult(
        check_id="MERGED_MOVEMENTS",
        severity=Severity.INFO,
        passed=True,
        message="No matched stock movement was merged into another line",
    )


# =============================================================================
# Engine
# =============================================================================

class ReconciliationEngine:
    """Explodes one order's sale lines against its stock movements.

    Usage:
        engine = ReconciliationEngine()
        explosion = engine.explode(snapshot)
        report = engine.check(explosion)
    """

    def __init__(self, allocator: Optional[AllocationCalculator] = None):
        self.allocator = allocator or AllocationCalculator()

    def explode(self, snapshot: OrderSnapshot) -> Explosion:
        """Run matching and allocation for one order.

        Lines are emitted in sale-line order (one per outbound match, or one
        unscaled line when the sale line has no stock-out), followed by
        inferred lines for movements that found no sale line, in movement
        order.
        """
        sale_lines = [line for line in snapshot.sale_lines if not _is_placeholder(line.item_code)]
        accepted = set(related_order_codes(snapshot.order_code))
        movements = [
            m for m in snapshot.movements
            if m.order_code in accepted and not _is_placeholder(m.item_code)
        ]

        matcher = StockMatcher(product_lookup=snapshot.product_for)
        match = matcher.match(sale_lines, movements)
        pairs_by_sale = match.by_sale_line()

        lines: List[ExplodedLine] = []
        merged: List[MergedMovement] = []
        for sale_index, sale in enumerate(sale_lines):
            order_type = classify_order_type(sale.order_type_label)
            pairs = pairs_by_sale.get(sale_index)

            if not pairs:
                lines.append(ExplodedLine(
                    line=sale,
                    ratio=ONE,
                    quantity=sale.quantity,
                    order_type=order_type,
                    sale_index=sale_index,
                    source=sale,
                ))
                continue

            kept, extra = _split_pairs(pairs, order_type)
            for pair in extra:
                for moved in (pair.outbound, pair.inbound):
                    if moved is not None:
                        merged.append(MergedMovement(sale_index=sale_index, movement=moved))

            for pair in kept:
                # Only stock-out drives the split; inbound-only lines keep their signed quantity
                matched_qty = pair.outbound.quantity if pair.outbound is not None else None
                allocation = self.allocator.allocate(sale, matched_qty, order_type)
                lines.append(ExplodedLine(
                    line=allocation.line,
                    ratio=allocation.ratio,
                    quantity=allocation.quantity,
                    order_type=order_type,
                    sale_index=sale_index,
                    source=sale,
                    outbound=pair.outbound,
                    inbound=pair.inbound,
                ))

        for movement_index in match.unmatched_movement_indices:
            lines.append(self._inferred_line(snapshot, sale_lines, movements[movement_index]))

        explosion = Explosion(
            order_code=snapshot.order_code,
            lines=lines,
            sale_lines=sale_lines,
            movements=movements,
            match=match,
            merged=merged,
        )
        logger.debug(
            "Order exploded",
            extra_fields={
                "order_code": snapshot.order_code,
                "sale_lines": len(sale_lines),
                "movements": len(movements),
                "exploded_lines": len(lines),
                "inferred_lines": explosion.inferred_count,
                "merged_movements": len(merged),
            },
        )
        return explosion

    def check(self, explosion: Explosion) -> ReconciliationReport:
        report = ReconciliationReport(
            order_code=explosion.order_code,
            line_count=len(explosion.lines),
            inferred_line_count=explosion.inferred_count,
        )
        report.checks.append(check_quantity_conservation(explosion))
        report.checks.append(check_inferred_lines(explosion))
        report.checks.append(check_unmatched_sale_lines(explosion))
        report.checks.append(check_merged_movements(explosion))
        return report

    @staticmethod
    def _inferred_line(
        snapshot: OrderSnapshot,
        sale_lines: List[SaleLine],
        movement: StockMovementRecord,
    ) -> ExplodedLine:
        """Zero-priced line for a movement that matched no sale line."""
        template = sale_lines[0] if sale_lines else None
        line = SaleLine(
            order_code=snapshot.order_code,
            item_code=movement.item_code or movement.material_code,
            quantity=abs(movement.quantity),
            unit_price=ZERO,
            warehouse_code=movement.warehouse_code,
            order_type_label=template.order_type_label if template else None,
            brand=template.brand if template else None,
            branch_code=template.branch_code if template else snapshot.branch_code,
            sale_type=template.sale_type if template else None,
        )
        order_type = classify_order_type(line.order_type_label)
        is_outbound = movement.is_outbound
        return ExplodedLine(
            line=line,
            ratio=ONE,
            quantity=line.quantity,
            order_type=order_type,
            outbound=movement if is_outbound else None,
            inbound=None if is_outbound else movement,
            is_inferred=True,
        )


def _split_pairs(
    pairs: List[MatchedPair],
    order_type: OrderTypeClass,
) -> Tuple[List[MatchedPair], List[MatchedPair]]:
    """Pairs that become lines, and pairs folded into them.

    Points exchange keeps only its first pair. Otherwise every outbound pair
    is a line; inbound-only pairs become one unscaled line when the sale line
    has no outbound match at all.
    """
    if order_type == OrderTypeClass.POINTS_EXCHANGE:
        return pairs[:1], pairs[1:]
    outbound = [pair for pair in pairs if pair.outbound is not None]
    inbound_only = [pair for pair in pairs if pair.outbound is None]
    if outbound:
        return outbound, inbound_only
    return inbound_only[:1], inbound_only[1:]


def _is_placeholder(item_code: Optional[str]) -> bool:
    return normalize_code(item_code) == KEEP_CARD_PLACEHOLDER.lower()
