from datetime import datetime, timedelta, timezone

import pytest

from ingestion.document_models import ContentUnit, UnitKind

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


def make_unit(
    uid,
    kind=UnitKind.BLOCK,
    text=None,
    children=(),
    references=(),
    hours_ago=1,
):
    return ContentUnit(
        id=uid,
        kind=kind,
        text=uid if text is None else text,
        last_edited_at=NOW - timedelta(hours=hours_ago),
        children=tuple(children),
        references=tuple(references),
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def unit():
    return make_unit
