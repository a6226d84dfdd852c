# ============================================================
# Tests : tests/test_conditions.py
# Objet : Évaluation des conditions (fenêtres de dates, top-N, promotion).
# ============================================================

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from syncmesh.domain.conditions import ConditionEngine, membership_delta, window_bounds
from syncmesh.domain.entities import ContentCondition, DateWindow

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _add(content, day, name, root=True, **fields):
    meta = {"sync_status": "root", "sync_id": ""} if root else {}
    return content.insert_item(1, {"name": name, "date": datetime(2026, 10, day, tzinfo=UTC),
                                   "meta": meta, **fields})


@pytest.fixture
def conditions(content, clock):
    return ConditionEngine(content, clock=clock)


def test_dynamic_window_bounds():
    after, before = window_bounds(DateWindow(mode="dynamic", since_value=7), NOW)
    assert after == datetime(2026, 10, 12, tzinfo=UTC)
    assert before is None
    months, _ = window_bounds(DateWindow(mode="dynamic", since_value=8, since_unit="months"), NOW)
    assert months.date() == date(2026, 2, 19)
    years, _ = window_bounds(DateWindow(mode="dynamic", since_value=1, since_unit="years"), NOW)
    assert years.date() == date(2025, 10, 19)


def test_month_shift_clamps_day():
    end_of_month = datetime(2026, 3, 31, tzinfo=UTC)
    after, _ = window_bounds(DateWindow(mode="dynamic", since_value=1, since_unit="months"),
                             end_of_month)
    assert after.date() == date(2026, 2, 28)


def test_static_range_is_inclusive(content, conditions):
    first = _add(content, 1, "first")
    last = _add(content, 10, "last")
    _add(content, 11, "after")
    window = DateWindow(mode="static_range", after=date(2026, 10, 1), before=date(2026, 10, 10))
    condition = ContentCondition(source_node_id=1, date_window=window)
    assert conditions.evaluate_ids(condition) == [last, first]


def test_count_limit_keeps_most_recent(content, conditions):
    ids = [_add(content, day, f"p{day}") for day in (1, 2, 3, 4)]
    condition = ContentCondition(source_node_id=1, count_limit=3)
    assert conditions.evaluate_ids(condition) == [ids[3], ids[2], ids[1]]
    oldest = content.get_item(1, ids[0])
    assert not conditions.matches(oldest, condition)
    assert conditions.matches(content.get_item(1, ids[3]), condition)


def test_non_root_items_need_auto_promote(content, conditions):
    plain = _add(content, 5, "plain", root=False)
    strict = ContentCondition(source_node_id=1)
    loose = ContentCondition(source_node_id=1, auto_promote_to_root=True)
    assert conditions.evaluate_ids(strict) == []
    assert conditions.evaluate_ids(loose) == [plain]


def test_linked_copies_never_match(content, conditions):
    linked = content.insert_item(1, {"name": "copy", "meta": {"sync_status": "linked"}})
    condition = ContentCondition(source_node_id=1, auto_promote_to_root=True)
    assert conditions.evaluate_ids(condition) == []
    assert not conditions.matches(content.get_item(1, linked), condition)


def test_taxonomy_terms(content, conditions):
    news = _add(content, 5, "news", taxonomies={"category": ["news", "world"]})
    _add(content, 6, "sport", taxonomies={"category": ["sport"]})
    _add(content, 7, "bare")
    condition = ContentCondition(source_node_id=1, taxonomy="category", terms=["news"])
    assert conditions.evaluate_ids(condition) == [news]
    any_term = ContentCondition(source_node_id=1, taxonomy="category")
    assert len(conditions.evaluate_ids(any_term)) == 2


def test_drafts_and_other_types_are_excluded(content, conditions):
    _add(content, 5, "draft", status="draft")
    page = _add(content, 6, "page", type="page")
    assert conditions.evaluate_ids(ContentCondition(source_node_id=1)) == []
    pages = ContentCondition(source_node_id=1, content_type="page")
    assert conditions.evaluate_ids(pages) == [page]


def test_conditions_including_item_filters_node(content, conditions):
    item = content.get_item(1, _add(content, 5, "x"))
    mine = ContentCondition(id=1, source_node_id=1)
    other_node = ContentCondition(id=2, source_node_id=2)
    other_type = ContentCondition(id=3, source_node_id=1, content_type="page")
    matched = conditions.conditions_including_item(item, [mine, other_node, other_type])
    assert [c.id for c in matched] == [1]


def test_membership_delta():
    delta = membership_delta(None, [1, 2, 3], [4, 1, 2])
    assert delta.added == {4}
    assert delta.removed == {3}
    assert delta.changed
    assert not membership_delta(None, [1], [1]).changed
