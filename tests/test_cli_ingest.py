from datetime import datetime, timedelta, timezone

import pytest

from ingestion import cli_ingest
from ingestion.document_models import ContentUnit, UnitKind
from ingestion.errors import FetchError


class StubFetcher:
    def __init__(self, units=(), error=None):
        self.units = list(units)
        self.error = error

    def fetch_edited(self, window, now=None):
        if self.error:
            raise self.error
        return self.units


def _recent_units():
    # the CLI runs against the real clock
    now = datetime.now(timezone.utc)
    return [
        ContentUnit("p", UnitKind.PAGE, "Page", now, children=("b",)),
        ContentUnit("b", UnitKind.BLOCK, "body", now - timedelta(minutes=1)),
    ]


def test_cli_writes_output_and_cache(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    units = _recent_units()
    monkeypatch.setattr(cli_ingest, "NotionFetcher", lambda: StubFetcher(units))
    out = tmp_path / "retro.txt"
    cache = tmp_path / "units.json"

    code = cli_ingest.main(
        [
            "--separator",
            " / ",
            "--indent",
            "",
            "--include-ids",
            "--output",
            str(out),
            "--cache",
            str(cache),
        ]
    )

    assert code == 0
    assert out.read_text(encoding="utf-8") == "[p] Page / [b] body"
    assert cache.exists()


def test_cli_missing_token_exits_1(monkeypatch):
    def _no_token():
        raise FetchError("NOTION_TOKEN is not set.")

    monkeypatch.setattr(cli_ingest, "NotionFetcher", _no_token)
    assert cli_ingest.main([]) == 1


def test_cli_fetch_failure_exits_2(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    error = FetchError("unauthorized", retriable=False)
    monkeypatch.setattr(cli_ingest, "NotionFetcher", lambda: StubFetcher(error=error))
    assert cli_ingest.main([]) == 2


def test_cli_stdout_holds_only_the_text(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    units = _recent_units()
    monkeypatch.setattr(cli_ingest, "NotionFetcher", lambda: StubFetcher(units))

    code = cli_ingest.main(["--separator", " — ", "--indent", r"\t"])

    assert code == 0
    assert capsys.readouterr().out == "Page — \tbody\n"


def test_logs_go_to_stderr():
    import logging
    import sys

    from common.logger import get_logger

    logger = get_logger("exobrain.tests.stream")
    handler = logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert handler.stream is sys.stderr


def test_cli_rejects_non_positive_days(capsys):
    with pytest.raises(SystemExit) as exc:
        cli_ingest.main(["--days", "0"])
    assert exc.value.code == 2
