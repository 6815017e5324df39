"""Stock matching: pair stock-movement records with sale lines.

Each movement is assigned to at most one sale line. Candidates are held in
per-key FIFO queues of sale-line indices, one queue set per movement
direction, so a sale line can receive one outbound and one inbound match.

Pick order for a movement:
1. Best fit: first still-available sale line whose absolute quantity equals
   the movement's absolute quantity
2. First still-available sale line in input order
3. Legacy: first candidate regardless of consumption (one sale line split
   across several movements)
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence, Set, Union

from core.observability.logging import get_logger
from models.canonical import (
    ProductInfo,
    SaleLine,
    StockMovementRecord,
    lookup_product,
    normalize_code,
)


logger = get_logger(__name__)

ProductLookup = Callable[[Optional[str]], Optional[ProductInfo]]


# =============================================================================
# Match Results
# =============================================================================

@dataclass
class MatchedPair:
    """One sale line with zero-or-one outbound and zero-or-one inbound movement."""
    sale_index: int
    sale_line: SaleLine
    outbound: Optional[StockMovementRecord] = None
    outbound_index: Optional[int] = None
    inbound: Optional[StockMovementRecord] = None
    inbound_index: Optional[int] = None

    @property
    def movement_indices(self) -> List[int]:
        return [i for i in (self.outbound_index, self.inbound_index) if i is not None]


@dataclass
class MatchResult:
    """Output of StockMatcher.match().

    Pairs are ordered by the movement that created them.
    """
    pairs: List[MatchedPair] = field(default_factory=list)
    unmatched_movement_indices: List[int] = field(default_factory=list)
    unmatched_sale_indices: List[int] = field(default_factory=list)

    def by_sale_line(self) -> Dict[int, List[MatchedPair]]:
        """Group pairs by sale-line index, preserving pair order."""
        grouped: Dict[int, List[MatchedPair]] = {}
        for pair in self.pairs:
            grouped.setdefault(pair.sale_index, []).append(pair)
        return grouped

    def consumed_movement_indices(self) -> List[int]:
        indices: List[int] = []
        for pair in self.pairs:
            indices.extend(pair.movement_indices)
        return indices


# =============================================================================
# Candidate Queues
# =============================================================================

class _CandidateQueues:
    """Per-key FIFO queues of sale-line indices for one movement direction.

    Queues sharing a ``consumed`` set see each other's consumption, so a sale
    line taken through its item code is no longer offered through its
    material code.
    """

    def __init__(self, index: Dict[str, List[int]], consumed: Set[int]):
        self._all = index
        self._available: Dict[str, Deque[int]] = {key: deque(ids) for key, ids in index.items()}
        self._consumed = consumed

    def has(self, key: Optional[str]) -> bool:
        return bool(key) and key in self._all

    def take(self, key: str, quantity, sale_lines: Sequence[SaleLine]) -> int:
        """Consume and return the sale-line index chosen for a movement."""
        available = self._available[key]
        while available and available[0] in self._consumed:
            available.popleft()

        target = abs(quantity)
        for sale_index in available:
            if sale_index not in self._consumed and abs(sale_lines[sale_index].quantity) == target:
                self._consumed.add(sale_index)
                return sale_index

        if available:
            sale_index = available.popleft()
            self._consumed.add(sale_index)
            return sale_index

        # Every candidate already consumed: legacy one-sale-to-many-movements
        return self._all[key][0]


# =============================================================================
# Stock Matcher
# =============================================================================

class StockMatcher:
    """Matches stock movements to sale lines within one order.

    Usage:
        matcher = StockMatcher(product_lookup=snapshot.product_for)
        result = matcher.match(sale_lines, movements)
    """

    def __init__(self, product_lookup: Optional[Union[ProductLookup, Mapping[str, ProductInfo]]] = None):
        self._product_lookup = _as_lookup(product_lookup)

    def match(
        self,
        sale_lines: Sequence[SaleLine],
        movements: Sequence[StockMovementRecord],
        product_lookup: Optional[Union[ProductLookup, Mapping[str, ProductInfo]]] = None,
    ) -> MatchResult:
        """Build the match result for one order.

        Args:
            sale_lines: Sale lines of the order, in input order
            movements: Stock movements of the order, in input order
            product_lookup: Optional override of the constructor lookup

        Returns:
            MatchResult with pairs, unmatched movements and unmatched sale lines
        """
        lookup = _as_lookup(product_lookup) if product_lookup is not None else self._product_lookup

        item_index, material_index = self._index_sale_lines(sale_lines, lookup)
        outbound_consumed: Set[int] = set()
        inbound_consumed: Set[int] = set()
        outbound_items = _CandidateQueues(item_index, outbound_consumed)
        outbound_materials = _CandidateQueues(material_index, outbound_consumed)
        inbound_items = _CandidateQueues(item_index, inbound_consumed)
        inbound_materials = _CandidateQueues(material_index, inbound_consumed)

        result = MatchResult()
        open_inbound: Dict[int, List[MatchedPair]] = {}

        for movement_index, movement in enumerate(movements):
            if movement.is_outbound:
                queues = (outbound_items, outbound_materials)
            else:
                queues = (inbound_items, inbound_materials)

            sale_index = self._take_candidate(movement, queues, sale_lines, lookup)
            if sale_index is None:
                result.unmatched_movement_indices.append(movement_index)
                continue

            if movement.is_outbound:
                pair = MatchedPair(
                    sale_index=sale_index,
                    sale_line=sale_lines[sale_index],
                    outbound=movement,
                    outbound_index=movement_index,
                )
                result.pairs.append(pair)
                open_inbound.setdefault(sale_index, []).append(pair)
            else:
                waiting = open_inbound.get(sale_index, [])
                pair = next((p for p in waiting if p.inbound is None), None)
                if pair is None:
                    pair = MatchedPair(sale_index=sale_index, sale_line=sale_lines[sale_index])
                    result.pairs.append(pair)
                    open_inbound.setdefault(sale_index, []).append(pair)
                pair.inbound = movement
                pair.inbound_index = movement_index

        matched = {pair.sale_index for pair in result.pairs}
        result.unmatched_sale_indices = [i for i in range(len(sale_lines)) if i not in matched]

        if result.unmatched_movement_indices:
            logger.info(
                "Stock movements without sale line",
                extra_fields={"unmatched_movements": len(result.unmatched_movement_indices)},
            )
        return result

    def _index_sale_lines(self, sale_lines: Sequence[SaleLine], lookup: Optional[ProductLookup]):
        item_index: Dict[str, List[int]] = {}
        material_index: Dict[str, List[int]] = {}
        for sale_index, sale in enumerate(sale_lines):
            key = sale.normalized_item_code
            if not key:
                continue
            item_index.setdefault(key, []).append(sale_index)
            product = lookup(sale.item_code) if lookup else None
            material_key = normalize_code(product.material_code) if product else None
            if material_key:
                material_index.setdefault(material_key, []).append(sale_index)
        return item_index, material_index

    def _take_candidate(
        self,
        movement: StockMovementRecord,
        queues,
        sale_lines: Sequence[SaleLine],
        lookup: Optional[ProductLookup],
    ) -> Optional[int]:
        items, materials = queues
        item_key = movement.normalized_item_code
        if items.has(item_key):
            return items.take(item_key, movement.quantity, sale_lines)

        material_key = self._movement_material_key(movement, lookup)
        if items.has(material_key):
            return items.take(material_key, movement.quantity, sale_lines)
        if materials.has(material_key):
            return materials.take(material_key, movement.quantity, sale_lines)
        return None

    @staticmethod
    def _movement_material_key(movement: StockMovementRecord, lookup: Optional[ProductLookup]) -> Optional[str]:
        if movement.material_code:
            return normalize_code(movement.material_code)
        if lookup and movement.item_code:
            product = lookup(movement.item_code)
            if product and product.material_code:
                return normalize_code(product.material_code)
        return None


def _as_lookup(source) -> Optional[ProductLookup]:
    """Accept either a callable or a mapping of item code -> ProductInfo."""
    if source is None:
        return None
    if callable(source):
        return source
    products = dict(source)
    return lambda code: lookup_product(products, code)
