from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Protocol

import orjson
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from common.config import IngestConfig, yaml_config
from common.logger import get_logger
from graph.reference_graph import build_reference_graph
from graph.resolver import ResolvedDocument, resolve
from ingestion.document_models import ContentUnit
from ingestion.errors import FetchError
from ingestion.unit_cache import UnitCache
from prompting.renderer import RenderOptions, render_document

log = get_logger(__name__)

# marks "use resolver.max_depth from config"; None itself means no limit
FROM_CONFIG: Any = object()


class ContentFetcher(Protocol):
    def fetch_edited(
        self, window: timedelta, now: datetime | None = None
    ) -> List[ContentUnit]: ...


@dataclass
class IngestionResult:
    text: str
    unit_ids: List[str]
    skipped: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    manifest_path: Optional[Path] = None


def _is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retriable


def _fetch_with_retry(
    fetcher: ContentFetcher, window: timedelta, now: datetime, cfg: IngestConfig
) -> List[ContentUnit]:
    """
    Retry wrapper around the fetch with exponential backoff. Only retriable
    FetchErrors are retried; the last error is re-raised.
    """
    retryer = Retrying(
        retry=retry_if_exception(_is_retriable),
        stop=stop_after_attempt(cfg.fetch_attempts),
        wait=wait_exponential(multiplier=1, min=cfg.backoff_min, max=cfg.backoff_max),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )
    return retryer(fetcher.fetch_edited, window, now=now)


def write_manifest(
    document: ResolvedDocument, out_dir: Path, run_at: datetime
) -> Path:
    manifest = {
        "run_at": run_at,
        "units": [
            {
                "id": u.id,
                "kind": u.kind.value,
                "page_id": u.page_id,
                "depth": document.depth(u.id),
                "last_edited_at": u.last_edited_at,
                "len": len(u.text),
            }
            for u in document.units()
        ],
        "skipped": document.skipped,
        "conflicts": document.graph.conflicts,
    }
    out = Path(out_dir) / f"manifest_{run_at.strftime('%Y%m%dT%H%M%SZ')}.json"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(manifest, option=orjson.OPT_INDENT_2))
    log.info("Wrote manifest to %s", out)
    return out


def run_ingestion(
    fetcher: ContentFetcher,
    window_days: int | None = None,
    cache: UnitCache | None = None,
    render_options: RenderOptions | None = None,
    max_depth: int | None = FROM_CONFIG,
    manifest_dir: Path | None = None,
    now: datetime | None = None,
    ingest_cfg: IngestConfig | None = None,
) -> IngestionResult:
    """
    One ingestion run, start to finish:
    - Fetch units edited in the trailing window (retried)
    - Build the reference graph
    - Resolve edited units into a duplicate-free order
    - Render prompt text
    - Optionally write a JSON manifest of what was included

    Only a fetch that fails outright is fatal; everything after it is best
    effort.
    """
    cfg = ingest_cfg or yaml_config.ingest
    if window_days is None:
        window_days = cfg.window_days
    if window_days < 1:
        raise ValueError("window_days must be >= 1")
    window = timedelta(days=window_days)
    now = now or datetime.now(timezone.utc)
    if max_depth is FROM_CONFIG:
        max_depth = yaml_config.resolver.max_depth

    # 1) Fetch
    units = _fetch_with_retry(fetcher, window, now, cfg)
    if not units:
        log.warning("Nothing edited in the last %d days.", window.days)

    # 2) Graph, after dropping cached units past their TTL
    if cache is not None and cfg.cache_ttl_days is not None:
        cache.invalidate_before(now - timedelta(days=cfg.cache_ttl_days))
    graph = build_reference_graph(units, cache=cache)

    # 3) Resolve
    document = resolve(graph, since=now - window, max_depth=max_depth)

    # 4) Render
    text = render_document(document, render_options or RenderOptions.from_config())

    # 5) Manifest (for audit/debug)
    manifest_path = None
    if manifest_dir is not None:
        manifest_path = write_manifest(document, manifest_dir, now)

    log.info("Ingestion complete: %d units, %d chars", len(document), len(text))
    return IngestionResult(
        text=text,
        unit_ids=list(document.unit_ids),
        skipped=list(document.skipped),
        conflicts=list(graph.conflicts),
        manifest_path=manifest_path,
    )
