import pytest

from graph.reference_graph import build_reference_graph
from ingestion.document_models import UnitKind
from ingestion.errors import MalformedInputError
from ingestion.unit_cache import UnitCache


def test_reverse_index_includes_children_and_references(unit):
    page = unit("page", kind=UnitKind.PAGE, children=["a"])
    a = unit("a", references=["b", "missing"])
    b = unit("b")
    graph = build_reference_graph([b, a, page])

    assert len(graph) == 3
    assert graph.referrers("a") == {"page"}
    assert graph.referrers("b") == {"a"}
    assert graph.referrers("missing") == {"a"}
    assert graph.referrers("page") == set()
    assert graph.dangling() == {"missing"}


def test_identical_duplicates_are_not_conflicts(unit):
    graph = build_reference_graph([unit("a"), unit("a")])
    assert len(graph) == 1
    assert graph.conflicts == []


def test_conflicting_duplicate_last_seen_wins(unit):
    first = unit("a", text="old")
    second = unit("a", text="new")
    graph = build_reference_graph([first, second])

    assert graph.get("a").text == "new"
    assert graph.conflicts == ["a"]


def test_conflicting_duplicate_strict_raises(unit):
    with pytest.raises(MalformedInputError) as exc:
        build_reference_graph([unit("a", text="x"), unit("a", text="y")], strict=True)
    assert exc.value.unit_id == "a"


def test_roots_sorted_newest_first_then_by_id(unit, now):
    units = [
        unit("c", hours_ago=2),
        unit("b", hours_ago=1),
        unit("a", hours_ago=2),
        unit("old", hours_ago=500),
    ]
    graph = build_reference_graph(units)

    assert graph.roots() == ["b", "a", "c", "old"]
    assert graph.roots(since=now.replace(day=now.day - 1)) == ["b", "a", "c"]


def test_cache_fills_missing_targets_transitively(unit):
    cache = UnitCache()
    cache.put(unit("b", references=["c"], hours_ago=400))
    cache.put(unit("c", hours_ago=400))

    graph = build_reference_graph([unit("a", references=["b"])], cache=cache)

    assert "b" in graph and "c" in graph
    assert graph.from_cache == {"b", "c"}
    assert graph.roots() == ["a"]
    assert "a" in cache
