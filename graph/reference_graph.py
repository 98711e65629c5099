from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from common.logger import get_logger
from ingestion.document_models import ContentUnit
from ingestion.errors import MalformedInputError
from ingestion.unit_cache import UnitCache

log = get_logger(__name__)


class ReferenceGraph:
    """
    All units of one ingestion run plus the reverse edge index.

    Built once per run and thrown away after resolution; never shared
    between runs.
    """

    def __init__(
        self,
        units: Dict[str, ContentUnit],
        referrers: Dict[str, Set[str]],
        conflicts: Optional[List[str]] = None,
        from_cache: Optional[Set[str]] = None,
    ):
        self._units = units
        self._referrers = referrers
        self.conflicts: List[str] = list(conflicts or [])
        self.from_cache: Set[str] = set(from_cache or ())

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def get(self, unit_id: str) -> Optional[ContentUnit]:
        return self._units.get(unit_id)

    def units(self) -> List[ContentUnit]:
        return list(self._units.values())

    def referrers(self, unit_id: str) -> Set[str]:
        """Ids of the units that contain or reference `unit_id`."""
        return set(self._referrers.get(unit_id, ()))

    def dangling(self) -> Set[str]:
        """Edge targets with no unit in the graph."""
        return {t for t in self._referrers if t not in self._units}

    def roots(self, since: Optional[datetime] = None) -> List[str]:
        """
        Ids of the directly edited units, newest first, ties by id.
        Units filled in from the cache were not edited in this run.
        """
        edited = [
            u
            for uid, u in self._units.items()
            if uid not in self.from_cache and (since is None or u.edited_since(since))
        ]
        edited.sort(key=lambda u: u.id)
        edited.sort(key=lambda u: u.last_edited_at, reverse=True)
        return [u.id for u in edited]


def _collect(
    units: Iterable[ContentUnit], strict: bool
) -> tuple[Dict[str, ContentUnit], List[str]]:
    by_id: Dict[str, ContentUnit] = {}
    conflicts: List[str] = []
    for u in units:
        seen = by_id.get(u.id)
        if seen is not None and seen.content_sha1 != u.content_sha1:
            if strict:
                raise MalformedInputError(u.id)
            log.warning(
                "Conflicting payloads for unit %s; keeping the last one seen", u.id
            )
            if u.id not in conflicts:
                conflicts.append(u.id)
        by_id[u.id] = u
    return by_id, conflicts


def _fill_from_cache(units: Dict[str, ContentUnit], cache: UnitCache) -> Set[str]:
    filled: Set[str] = set()
    pending = [t for u in units.values() for t in u.edges()]
    while pending:
        target = pending.pop()
        if target in units:
            continue
        cached = cache.get(target)
        if cached is None:
            continue
        units[target] = cached
        filled.add(target)
        pending.extend(cached.edges())
    if filled:
        log.info("Filled %d missing units from cache", len(filled))
    return filled


def build_reference_graph(
    units: Iterable[ContentUnit],
    cache: UnitCache | None = None,
    strict: bool = False,
) -> ReferenceGraph:
    """
    Index a fetch batch by id and derive reverse edges.
    - Same id, same content: collapsed
    - Same id, different content: last one wins and the id is recorded in
      `conflicts`, or MalformedInputError when `strict`
    - Missing edge targets are looked up in `cache` when one is given
    """
    by_id, conflicts = _collect(units, strict)

    from_cache: Set[str] = set()
    if cache is not None:
        for u in by_id.values():
            cache.put(u)
        from_cache = _fill_from_cache(by_id, cache)

    referrers: Dict[str, Set[str]] = defaultdict(set)
    for u in by_id.values():
        for target in u.edges():
            referrers[target].add(u.id)

    graph = ReferenceGraph(by_id, dict(referrers), conflicts, from_cache)
    log.info(
        "Built reference graph: %d units, %d conflicts, %d dangling targets",
        len(graph),
        len(conflicts),
        len(graph.dangling()),
    )
    return graph
