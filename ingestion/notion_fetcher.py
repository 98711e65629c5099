from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable, Dict, List, Sequence

import httpx
from notion_client import Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tqdm import tqdm

from common.config import IngestConfig, secrets, yaml_config
from common.logger import get_logger
from ingestion.document_models import ContentUnit
from ingestion.errors import FetchError
from ingestion.notion_parser import (
    PAGE_LIKE_BLOCK_TYPES,
    is_empty_block,
    parse_block,
    parse_page,
    parse_timestamp,
)

log = get_logger(__name__)


def _to_fetch_error(exc: Exception) -> FetchError:
    if isinstance(exc, RequestTimeoutError):
        return FetchError(f"Notion request timed out: {exc}", retriable=True)
    if isinstance(exc, HTTPResponseError):
        retriable = exc.status == 429 or exc.status >= 500
        return FetchError(f"Notion returned {exc.status}: {exc}", retriable=retriable)
    if isinstance(exc, httpx.TransportError):
        return FetchError(f"Could not reach Notion: {exc}", retriable=True)
    return FetchError(str(exc))


def _is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retriable


class NotionFetcher:
    """
    Pulls every page edited within a trailing window, plus the edited
    blocks of those pages and the full subtrees below them.
    """

    def __init__(
        self,
        client: Any | None = None,
        token: str | None = None,
        page_size: int | None = None,
        skip_url_patterns: Sequence[str] | None = None,
        ingest_cfg: IngestConfig | None = None,
    ):
        cfg = ingest_cfg or yaml_config.ingest
        self.cfg = cfg
        if client is None:
            token = token or secrets.notion_token
            if not token:
                raise FetchError(
                    "NOTION_TOKEN is not set. Add it to your .env file or environment."
                )
            client = Client(auth=token)
        self.client = client
        self.page_size = page_size or cfg.page_size
        self.skip_url_patterns = tuple(
            cfg.skip_url_patterns if skip_url_patterns is None else skip_url_patterns
        )

    def _call(self, fn: Callable[..., Dict[str, Any]], **kwargs) -> Dict[str, Any]:
        try:
            return fn(**kwargs)
        except (HTTPResponseError, RequestTimeoutError, httpx.TransportError) as e:
            raise _to_fetch_error(e) from e

    def fetch_edited(
        self, window: timedelta, now: datetime | None = None
    ) -> List[ContentUnit]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - window
        pages = self.edited_pages(cutoff)
        log.info(
            "Retrieved %d pages edited in the last %d days", len(pages), window.days
        )

        units: List[ContentUnit] = []
        for page in tqdm(pages, desc="Fetching blocks", disable=not pages):
            try:
                units.extend(self._page_units_with_retry(page, cutoff))
            except FetchError as e:
                # deleted or unshared since the search ran; the rest still counts
                log.warning("Skipping page %s: %s", page.get("id"), e)
        log.info("Fetched %d content units", len(units))
        return units

    def _page_units_with_retry(
        self, page: Dict[str, Any], cutoff: datetime
    ) -> List[ContentUnit]:
        retryer = Retrying(
            retry=retry_if_exception(_is_retriable),
            stop=stop_after_attempt(self.cfg.fetch_attempts),
            wait=wait_exponential(
                multiplier=1, min=self.cfg.backoff_min, max=self.cfg.backoff_max
            ),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )
        return retryer(self.page_units, page, cutoff)

    def edited_pages(self, cutoff: datetime) -> List[Dict[str, Any]]:
        """
        Search results come newest first, so paging stops at the first page
        older than `cutoff`.
        """
        pages: List[Dict[str, Any]] = []
        cursor = None
        while True:
            kwargs: Dict[str, Any] = {
                "filter": {"property": "object", "value": "page"},
                "sort": {"timestamp": "last_edited_time", "direction": "descending"},
                "page_size": self.page_size,
            }
            if cursor:
                kwargs["start_cursor"] = cursor
            res = self._call(self.client.search, **kwargs)

            for item in res.get("results", []):
                if item.get("object") != "page":
                    log.debug("Ignoring non-page search result %s", item.get("id"))
                    continue
                if parse_timestamp(item.get("last_edited_time")) < cutoff:
                    return pages
                if self._skip(item):
                    log.debug("Skipping container page %s", item.get("url"))
                    continue
                pages.append(item)

            if not res.get("has_more"):
                return pages
            cursor = res.get("next_cursor")

    def _skip(self, page: Dict[str, Any]) -> bool:
        url = page.get("url") or ""
        return any(p in url for p in self.skip_url_patterns)

    def block_children(self, block_id: str) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        cursor = None
        while True:
            kwargs: Dict[str, Any] = {"block_id": block_id, "page_size": 100}
            if cursor:
                kwargs["start_cursor"] = cursor
            res = self._call(self.client.blocks.children.list, **kwargs)
            results.extend(res.get("results", []))
            if not res.get("has_more"):
                return results
            cursor = res.get("next_cursor")

    def _children_or_skip(self, block_id: str) -> List[Dict[str, Any]]:
        """Children of a nested block; a block gone upstream counts as childless."""
        try:
            return self.block_children(block_id)
        except FetchError as e:
            if e.retriable:
                raise
            log.warning("Skipping children of block %s: %s", block_id, e)
            return []

    def page_units(self, page: Dict[str, Any], cutoff: datetime) -> List[ContentUnit]:
        """
        Breadth-first over the page's block tree: edited blocks become roots
        (not descended into here), unedited ones are searched further down.
        """
        page_id = page["id"]
        roots: List[Dict[str, Any]] = []
        queue = deque([page_id])
        while queue:
            parent = queue.popleft()
            # the page itself must be readable, nested blocks may have vanished
            if parent == page_id:
                children = self.block_children(parent)
            else:
                children = self._children_or_skip(parent)
            for block in children:
                if block.get("type") in PAGE_LIKE_BLOCK_TYPES:
                    continue
                if parse_timestamp(block.get("last_edited_time")) >= cutoff:
                    roots.append(block)
                elif block.get("has_children"):
                    queue.append(block["id"])

        roots = [b for b in roots if not is_empty_block(b)]
        log.debug("Page %s has %d edited block roots", page.get("url"), len(roots))

        units = [parse_page(page, [b["id"] for b in roots])]
        for block in roots:
            units.extend(self._grow(block, page_id))
        return units

    def _grow(self, root: Dict[str, Any], page_id: str) -> List[ContentUnit]:
        units: List[ContentUnit] = []
        stack = [root]
        while stack:
            block = stack.pop()
            children = []
            if block.get("has_children"):
                children = self._children_or_skip(block["id"])
            owned, linked = [], []
            for c in children:
                # sub-pages are linked, not owned; they come in through search
                if c.get("type") in PAGE_LIKE_BLOCK_TYPES:
                    linked.append(c["id"])
                else:
                    owned.append(c)
            units.append(
                parse_block(block, page_id, [c["id"] for c in owned], linked)
            )
            stack.extend(reversed(owned))
        return units
