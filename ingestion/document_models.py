from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Tuple

from ingestion.hash_utils import sha1_text


class UnitKind(str, Enum):
    PAGE = "page"
    BLOCK = "block"


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _unique(ids: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(ids))


@dataclass(frozen=True)
class ContentUnit:
    id: str  # stable ID from the note source
    kind: UnitKind
    text: str  # own text only, children are separate units
    last_edited_at: datetime
    children: Tuple[str, ...] = ()  # owned, ordered
    references: Tuple[str, ...] = ()  # embedded by reference, ordered, unique
    page_id: Optional[str] = None
    url: Optional[str] = None
    block_type: Optional[str] = None  # raw type name, e.g. "paragraph"
    _sha1: str = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "kind", UnitKind(self.kind))
        object.__setattr__(self, "last_edited_at", _as_utc(self.last_edited_at))
        object.__setattr__(self, "children", tuple(self.children))
        object.__setattr__(self, "references", _unique(self.references))
        fingerprint = "\x1f".join(
            [
                self.kind.value,
                self.text,
                ",".join(self.children),
                ",".join(self.references),
            ]
        )
        object.__setattr__(self, "_sha1", sha1_text(fingerprint))

    @property
    def content_sha1(self) -> str:
        """Hash over the fields that matter for rendering and traversal."""
        return self._sha1

    def edited_since(self, cutoff: datetime) -> bool:
        return self.last_edited_at >= _as_utc(cutoff)

    def edges(self) -> Tuple[str, ...]:
        """Outgoing ids in traversal order: children first, then references."""
        return self.children + self.references
