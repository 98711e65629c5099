from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from common.logger import get_logger
from graph.reference_graph import ReferenceGraph
from ingestion.document_models import ContentUnit
from ingestion.errors import DanglingReferenceWarning

log = get_logger(__name__)


@dataclass
class ResolvedDocument:
    graph: ReferenceGraph
    unit_ids: Tuple[str, ...] = ()
    depths: Dict[str, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.unit_ids)

    def __iter__(self) -> Iterator[ContentUnit]:
        return iter(self.units())

    @property
    def is_empty(self) -> bool:
        return not self.unit_ids

    def units(self) -> List[ContentUnit]:
        # looked up on demand; the document never holds its own copies
        return [self.graph.get(uid) for uid in self.unit_ids]

    def depth(self, unit_id: str) -> int:
        return self.depths.get(unit_id, 0)


def resolve(
    graph: ReferenceGraph,
    roots: Optional[Sequence[str]] = None,
    since: Optional[datetime] = None,
    max_depth: Optional[int] = None,
) -> ResolvedDocument:
    """
    Depth-first walk from the edited units, emitting every unit once.

    Roots default to `graph.roots(since)` (newest first, ties by id). A unit
    is emitted on first visit, then its children are walked in order, then
    its references. Anything already visited is skipped without re-walking,
    which also cuts cycles. Ids missing from the graph are skipped and
    reported in `skipped`.

    `max_depth` limits how many edges below a root are followed; None means
    the full transitive closure. Under a limit, a unit first met deep in
    another root's tree is walked again when it comes up closer to a root
    (a root itself, say), but it is still emitted only once.
    """
    if max_depth is not None and max_depth < 0:
        raise ValueError("max_depth must be >= 0")
    if roots is None:
        roots = graph.roots(since)

    order: List[str] = []
    depths: Dict[str, int] = {}
    skipped: List[str] = []
    visited: Set[str] = set()
    missing: Set[str] = set()
    # depth each unit was last expanded at; only consulted under a depth limit
    expanded_at: Dict[str, int] = {}

    # explicit stack, popped in the same order a recursive pre-order walk
    # would visit
    stack: List[Tuple[str, int, Optional[str]]] = [
        (rid, 0, None) for rid in reversed(list(roots))
    ]
    while stack:
        uid, depth, referrer = stack.pop()
        if uid in visited:
            # reached again closer to a root: walk further, emit nothing new
            if max_depth is None or depth >= expanded_at[uid]:
                continue
            unit = graph.get(uid)
        else:
            unit = graph.get(uid)
            if unit is None:
                if uid not in missing:
                    missing.add(uid)
                    warning = DanglingReferenceWarning(uid, referrer)
                    skipped.append(str(warning))
                    log.info("Skipping %s", warning)
                continue
            visited.add(uid)
            order.append(uid)
            depths[uid] = depth

        expanded_at[uid] = depth
        if max_depth is not None and depth >= max_depth:
            continue
        for target in reversed(unit.edges()):
            if target not in visited or (
                max_depth is not None and depth + 1 < expanded_at[target]
            ):
                stack.append((target, depth + 1, uid))

    log.info(
        "Resolved %d units from %d roots (%d skipped)",
        len(order),
        len(roots),
        len(skipped),
    )
    return ResolvedDocument(
        graph=graph, unit_ids=tuple(order), depths=depths, skipped=skipped
    )
