from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Sequence

from common.logger import get_logger
from ingestion.cleaners import normalize_text, slug_to_title
from ingestion.document_models import ContentUnit, UnitKind

log = get_logger(__name__)

TEXT_BLOCK_TYPES = {
    "paragraph",
    "heading_1",
    "heading_2",
    "heading_3",
    "bulleted_list_item",
    "numbered_list_item",
    "toggle",
    "to_do",
    "quote",
    "callout",
    "code",
}
URL_BLOCK_TYPES = {"bookmark", "embed", "link_preview"}
# blocks that stand for a whole page/database; those are fetched as pages
PAGE_LIKE_BLOCK_TYPES = {"child_page", "child_database"}

_MENTION_ID_KEYS = ("page", "database")


def parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def plain_text(rich_text: Iterable[Dict[str, Any]]) -> str:
    return "".join(rt.get("plain_text", "") for rt in rich_text or [])


def _body(payload: Dict[str, Any]) -> Dict[str, Any]:
    return payload.get(payload.get("type", ""), None) or {}


def block_text(payload: Dict[str, Any]) -> str:
    """Plain text of a block; unsupported types yield an empty string."""
    btype = payload.get("type", "")
    body = _body(payload)
    if btype in TEXT_BLOCK_TYPES:
        text = normalize_text(plain_text(body.get("rich_text", [])))
        if btype == "to_do":
            text = ("[x] " if body.get("checked") else "[ ] ") + text
        return text
    if btype in URL_BLOCK_TYPES:
        return body.get("url", "") or ""
    if btype in PAGE_LIKE_BLOCK_TYPES:
        return normalize_text(body.get("title", ""))
    log.debug("Block type %s not supported", btype)
    return ""


def block_references(payload: Dict[str, Any]) -> List[str]:
    """
    Ids a block embeds without owning them: page/database mentions,
    link_to_page targets and the source of a synced block copy.
    """
    btype = payload.get("type", "")
    body = _body(payload)
    refs: List[str] = []

    for rt in body.get("rich_text", []) or []:
        mention = rt.get("mention") if rt.get("type") == "mention" else None
        if not mention:
            continue
        target = mention.get(mention.get("type", ""), None) or {}
        if mention.get("type") in _MENTION_ID_KEYS and target.get("id"):
            refs.append(target["id"])

    if btype == "link_to_page":
        target_id = body.get(body.get("type", ""), None)
        if target_id:
            refs.append(target_id)
    elif btype == "synced_block":
        synced_from = body.get("synced_from") or {}
        if synced_from.get("block_id"):
            refs.append(synced_from["block_id"])
    return refs


def is_empty_block(payload: Dict[str, Any]) -> bool:
    """
    Text-bearing blocks with no text, no references and no children.
    Other types are never treated as empty.
    """
    if payload.get("type") not in TEXT_BLOCK_TYPES:
        return False
    if payload.get("has_children"):
        return False
    body = _body(payload)
    return not plain_text(body.get("rich_text", [])).strip() and not block_references(
        payload
    )


def page_title(payload: Dict[str, Any]) -> str:
    for prop in (payload.get("properties") or {}).values():
        if prop.get("type") == "title":
            title = normalize_text(plain_text(prop.get("title", [])))
            if title:
                return title
    url = payload.get("url") or ""
    slug = url.rstrip("/").split("/")[-1]
    return slug_to_title(slug) or "Untitled"


def parse_page(payload: Dict[str, Any], child_ids: Sequence[str] = ()) -> ContentUnit:
    return ContentUnit(
        id=payload["id"],
        kind=UnitKind.PAGE,
        text=page_title(payload),
        last_edited_at=parse_timestamp(payload.get("last_edited_time")),
        children=tuple(child_ids),
        page_id=payload["id"],
        url=payload.get("url"),
    )


def parse_block(
    payload: Dict[str, Any],
    page_id: str,
    child_ids: Sequence[str] = (),
    extra_references: Sequence[str] = (),
) -> ContentUnit:
    return ContentUnit(
        id=payload["id"],
        kind=UnitKind.BLOCK,
        text=block_text(payload),
        last_edited_at=parse_timestamp(payload.get("last_edited_time")),
        children=tuple(child_ids),
        references=tuple(block_references(payload)) + tuple(extra_references),
        page_id=page_id,
        block_type=payload.get("type"),
    )
