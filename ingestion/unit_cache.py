from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional

import orjson

from common.logger import get_logger
from ingestion.document_models import ContentUnit, UnitKind

log = get_logger(__name__)


class UnitCache:
    """
    Units seen in earlier runs, keyed by id.

    Owned by the caller and handed to the graph builder; nothing here is
    global. An entry is only ever replaced by a version edited at the same
    time or later.
    """

    def __init__(self, units: Optional[Dict[str, ContentUnit]] = None):
        self._units: Dict[str, ContentUnit] = dict(units or {})

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def __iter__(self) -> Iterator[ContentUnit]:
        return iter(self._units.values())

    def get(self, unit_id: str) -> Optional[ContentUnit]:
        return self._units.get(unit_id)

    def put(self, unit: ContentUnit) -> bool:
        current = self._units.get(unit.id)
        if current is not None and current.last_edited_at > unit.last_edited_at:
            return False
        self._units[unit.id] = unit
        return True

    def invalidate(self, unit_id: str) -> bool:
        return self._units.pop(unit_id, None) is not None

    def invalidate_before(self, cutoff: datetime) -> int:
        """Drop every entry last edited before `cutoff`."""
        stale = [u.id for u in self._units.values() if not u.edited_since(cutoff)]
        for unit_id in stale:
            del self._units[unit_id]
        if stale:
            log.info("Invalidated %d cached units older than %s", len(stale), cutoff)
        return len(stale)

    def save(self, path: Path) -> Path:
        rows = [
            {
                "id": u.id,
                "kind": u.kind.value,
                "text": u.text,
                "last_edited_at": u.last_edited_at,
                "children": list(u.children),
                "references": list(u.references),
                "page_id": u.page_id,
                "url": u.url,
                "block_type": u.block_type,
            }
            for u in self._units.values()
        ]
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(orjson.dumps(rows, option=orjson.OPT_INDENT_2))
        log.info("Saved %d cached units to %s", len(rows), path)
        return path

    @classmethod
    def load(cls, path: Path) -> "UnitCache":
        path = Path(path)
        if not path.exists():
            return cls()
        rows = orjson.loads(path.read_bytes())
        units = {}
        for r in rows:
            unit = ContentUnit(
                id=r["id"],
                kind=UnitKind(r["kind"]),
                text=r.get("text", ""),
                last_edited_at=datetime.fromisoformat(r["last_edited_at"]),
                children=tuple(r.get("children", ())),
                references=tuple(r.get("references", ())),
                page_id=r.get("page_id"),
                url=r.get("url"),
                block_type=r.get("block_type"),
            )
            units[unit.id] = unit
        log.info("Loaded %d cached units from %s", len(units), path)
        return cls(units)
