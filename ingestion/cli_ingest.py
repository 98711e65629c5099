from __future__ import annotations

import argparse
import codecs
import sys
from pathlib import Path

from common.config import yaml_config
from common.logger import get_logger
from ingestion.errors import FetchError
from ingestion.ingest_pipeline import run_ingestion
from ingestion.notion_fetcher import NotionFetcher
from ingestion.unit_cache import UnitCache
from prompting.renderer import RenderOptions

log = get_logger(__name__)


def _unescape(s: str) -> str:
    """Turn backslash escapes like \\t into characters, leaving other text alone."""
    return codecs.decode(s.encode("latin-1", "backslashreplace"), "unicode_escape")


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ingest recently edited Notion pages into deduplicated prompt text."
    )
    parser.add_argument(
        "--days",
        type=_positive_int,
        default=yaml_config.ingest.window_days,
        help="Trailing window in days",
    )
    parser.add_argument(
        "--separator", type=str, default=None, help="Text placed between units"
    )
    parser.add_argument(
        "--include-ids",
        action="store_true",
        help="Prefix each unit with its id",
    )
    parser.add_argument(
        "--indent", type=str, default=None, help="Indent repeated per nesting level"
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=yaml_config.resolver.max_depth,
        help="Follow at most this many edges below an edited unit",
    )
    parser.add_argument(
        "--no-depth-limit",
        action="store_true",
        help="Include everything reachable, whatever the config says",
    )
    parser.add_argument(
        "--cache", type=str, default="", help="Optional JSON unit cache file"
    )
    parser.add_argument(
        "--output", type=str, default="", help="Write the text here instead of stdout"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    options = RenderOptions.from_config()
    if args.separator is not None:
        options.separator = _unescape(args.separator)
    if args.indent is not None:
        options.indent = _unescape(args.indent)
    if args.include_ids:
        options.include_ids = True

    cache_path = Path(args.cache) if args.cache else None
    cache = UnitCache.load(cache_path) if cache_path else None

    try:
        fetcher = NotionFetcher()
    except FetchError as e:
        log.error("%s", e)
        return 1

    try:
        result = run_ingestion(
            fetcher,
            window_days=args.days,
            cache=cache,
            render_options=options,
            max_depth=None if args.no_depth_limit else args.max_depth,
            manifest_dir=yaml_config.app.cache_dir,
        )
    except FetchError as e:
        log.error("Ingestion failed: %s", e)
        return 2

    if cache is not None:
        cache.save(cache_path)

    if args.output:
        Path(args.output).write_text(result.text, encoding="utf-8")
        log.info("Wrote %d units to %s", len(result.unit_ids), args.output)
    else:
        sys.stdout.write(result.text + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
