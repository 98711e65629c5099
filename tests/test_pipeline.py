from datetime import timedelta

import orjson
import pytest

from common.config import IngestConfig
from ingestion.document_models import UnitKind
from ingestion.errors import FetchError
from ingestion.ingest_pipeline import run_ingestion
from ingestion.unit_cache import UnitCache
from prompting.renderer import RenderOptions

FAST = IngestConfig(fetch_attempts=3, backoff_min=0, backoff_max=0)


class StubFetcher:
    def __init__(self, units=(), failures=()):
        self.units = list(units)
        self.failures = list(failures)
        self.calls = 0

    def fetch_edited(self, window, now=None):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.units


def test_end_to_end_pipeline(tmp_path, unit, now):
    units = [
        unit("PageA", kind=UnitKind.PAGE, text="Page A", children=["BlockA"], hours_ago=1),
        unit("BlockA", text="see below", references=["BlockB", "missing"], hours_ago=2),
        unit("BlockB", text="hello", hours_ago=3),
        unit("Ctx", text="old context", hours_ago=24 * 30),
    ]
    result = run_ingestion(
        StubFetcher(units),
        window_days=7,
        render_options=RenderOptions(separator="\n"),
        manifest_dir=tmp_path,
        now=now,
        ingest_cfg=FAST,
    )

    assert result.unit_ids == ["PageA", "BlockA", "BlockB"]
    assert result.text == "Page A\nsee below\nhello"
    assert len(result.skipped) == 1
    assert result.conflicts == []

    manifest = orjson.loads(result.manifest_path.read_bytes())
    assert [u["id"] for u in manifest["units"]] == result.unit_ids
    assert manifest["units"][1]["depth"] == 1


def test_empty_fetch_is_not_an_error(now):
    result = run_ingestion(StubFetcher([]), now=now, ingest_cfg=FAST)
    assert result.text == ""
    assert result.unit_ids == []


def test_retriable_fetch_errors_are_retried(unit, now):
    fetcher = StubFetcher(
        [unit("a", text="x")],
        failures=[FetchError("rate limited", retriable=True)],
    )
    result = run_ingestion(fetcher, now=now, ingest_cfg=FAST)
    assert fetcher.calls == 2
    assert result.unit_ids == ["a"]


def test_exhausted_retries_surface_fetch_error(now):
    errors = [FetchError("down", retriable=True) for _ in range(3)]
    fetcher = StubFetcher(failures=errors)
    with pytest.raises(FetchError):
        run_ingestion(fetcher, now=now, ingest_cfg=FAST)
    assert fetcher.calls == 3


def test_non_retriable_fetch_error_fails_fast(now):
    fetcher = StubFetcher(failures=[FetchError("unauthorized", retriable=False)])
    with pytest.raises(FetchError):
        run_ingestion(fetcher, now=now, ingest_cfg=FAST)
    assert fetcher.calls == 1


def test_cache_supplies_unedited_references(unit, now):
    cache = UnitCache()
    cache.put(unit("Quote", text="cached quote", hours_ago=24 * 20))
    fetcher = StubFetcher([unit("Note", text="note", references=["Quote"])])

    result = run_ingestion(fetcher, cache=cache, now=now, ingest_cfg=FAST)

    assert result.unit_ids == ["Note", "Quote"]
    assert result.skipped == []
    assert "Note" in cache


def test_conflicting_units_are_reported(unit, now):
    fetcher = StubFetcher([unit("a", text="one"), unit("a", text="two")])
    result = run_ingestion(fetcher, now=now, ingest_cfg=FAST)
    assert result.conflicts == ["a"]
    assert "two" in result.text


def test_cache_entries_past_ttl_are_dropped(unit, now):
    cache = UnitCache()
    cache.put(unit("Deleted", text="gone upstream", hours_ago=24 * 45))
    cache.put(unit("Recent", text="still cached", hours_ago=24 * 10))
    fetcher = StubFetcher([unit("Note", references=["Deleted", "Recent"])])
    cfg = FAST.model_copy(update={"cache_ttl_days": 30})

    result = run_ingestion(fetcher, cache=cache, now=now, ingest_cfg=cfg)

    assert result.unit_ids == ["Note", "Recent"]
    assert "Deleted" in result.skipped[0]
    assert "Deleted" not in cache
    assert "Recent" in cache


def test_zero_day_window_is_rejected(now):
    with pytest.raises(ValueError):
        run_ingestion(StubFetcher([]), window_days=0, now=now, ingest_cfg=FAST)


def test_explicit_none_max_depth_overrides_config(unit, now, monkeypatch):
    from ingestion import ingest_pipeline

    monkeypatch.setattr(ingest_pipeline.yaml_config.resolver, "max_depth", 0)
    units = [
        unit("root", children=["a"]),
        unit("a", children=["b"], hours_ago=24 * 30),
        unit("b", hours_ago=24 * 30),
    ]

    limited = run_ingestion(StubFetcher(units), now=now, ingest_cfg=FAST)
    unlimited = run_ingestion(
        StubFetcher(units), max_depth=None, now=now, ingest_cfg=FAST
    )

    assert limited.unit_ids == ["root"]
    assert unlimited.unit_ids == ["root", "a", "b"]
