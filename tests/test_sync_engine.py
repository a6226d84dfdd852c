# ============================================================
# Tests : tests/test_sync_engine.py
# Objet : Effets d'une modification (clusters, conditions, copies liées).
# ============================================================

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from syncmesh.domain.entities import Cluster, ContentCondition, DateWindow
from syncmesh.infra.ops.idempotency import IdempotencyStore
from syncmesh.services.sync_engine import (
    CreateReview,
    Distribute,
    PromoteToRoot,
    RedistributeCondition,
    RemoveConnection,
    RestoreConnection,
)


def _day(day: int) -> datetime:
    return datetime(2026, 10, day, 9, 0, tzinfo=UTC)


def _cluster(cluster_repo, destinations, review=False, **condition) -> Cluster:
    condition.setdefault("source_node_id", 1)
    return cluster_repo.create(
        Cluster(title="c", destination_ids=destinations, review_enabled=review,
                content_conditions=[ContentCondition(**condition)])
    )


def _root(content, engine, title="Hello", **fields) -> tuple[int, str]:
    item_id = content.insert_item(1, {"name": title.lower(), "title": title, **fields})
    return item_id, engine.promote(1, item_id)


def _planned(created) -> set[tuple[str, str, str]]:
    return {(i.root_gid, i.destination_id, i.action) for i in created}


def test_latest_three_membership_change_redistributes_whole_condition(
    engine, content, cluster_repo, ctx1
):
    cluster = _cluster(cluster_repo, ["2"], content_type="article", count_limit=3,
                       auto_promote_to_root=True)
    condition = cluster.content_conditions[0]
    ids = {}
    for name, day in (("C", 1), ("A", 2), ("B", 3)):
        ids[name] = content.insert_item(1, {"name": name, "type": "article", "date": _day(day)})
    initial = engine.apply([RedistributeCondition(condition.id)])
    assert _planned(initial) == {(f"1-{ids[n]}", "2", "insert") for n in "ABC"}

    before = engine.capture_before(ctx1, None)
    ids["D"] = content.insert_item(1, {"name": "D", "type": "article", "date": _day(10)})
    effects = engine.on_item_changed(ctx1, ids["D"], before)

    assert effects == [
        PromoteToRoot(1, ids["D"]),
        RedistributeCondition(condition.id, (ids["C"],)),
    ]
    created = engine.apply(effects)
    assert _planned(created) == {
        (f"1-{ids['D']}", "2", "insert"),
        (f"1-{ids['A']}", "2", "insert"),
        (f"1-{ids['B']}", "2", "insert"),
        (f"1-{ids['C']}", "2", "delete"),
    }
    assert cluster_repo.get_snapshot(condition.id) == [ids["D"], ids["B"], ids["A"]]


def test_plain_condition_redistributes_only_changed_item(engine, content, cluster_repo, ctx1):
    _cluster(cluster_repo, ["2", "3"], content_type="post")
    item_id, gid = _root(content, engine)
    before = engine.capture_before(ctx1, item_id)
    content.update_item(1, item_id, {"title": "Hello v2"})
    effects = engine.on_item_changed(ctx1, item_id, before)
    assert effects == [Distribute(gid, ("2", "3"), "insert")]
    assert _planned(engine.apply(effects)) == {(gid, "2", "insert"), (gid, "3", "insert")}


def test_unmatched_plain_item_has_no_effect(engine, content, cluster_repo, ctx1):
    _cluster(cluster_repo, ["2"], content_type="post")
    item_id = content.insert_item(1, {"name": "draft", "type": "page"})
    before = engine.capture_before(ctx1, item_id)
    assert engine.on_item_changed(ctx1, item_id, before) == []


def test_leaving_cluster_schedules_delete(engine, content, cluster_repo, ctx1):
    _cluster(cluster_repo, ["2"], content_type="post", taxonomy="category", terms=["news"])
    item_id, gid = _root(content, engine, taxonomies={"category": ["news"]})
    before = engine.capture_before(ctx1, item_id)
    assert before.condition_ids
    content.update_item(1, item_id, {"taxonomies": {"category": ["sport"]}})
    effects = engine.on_item_changed(ctx1, item_id, before)
    assert effects == [Distribute(gid, ("2",), "delete")]


def test_source_node_is_never_a_destination(engine, content, cluster_repo, ctx1):
    _cluster(cluster_repo, ["1", "2"], content_type="post")
    item_id, gid = _root(content, engine)
    effects = engine.on_item_changed(ctx1, item_id, engine.capture_before(ctx1, item_id))
    assert effects == [Distribute(gid, ("2",), "insert")]


def test_ledger_destinations_are_included(engine, content, ledger, ctx1, directory):
    item_id, gid = _root(content, engine)
    ledger.connect_local_copy(gid, directory.context(3), 77)
    effects = engine.on_item_changed(ctx1, item_id, engine.capture_before(ctx1, item_id))
    assert effects == [Distribute(gid, ("3",), "insert")]


def test_review_cluster_wins_over_plain_cluster(engine, content, cluster_repo, review_gate,
                                                ctx1):
    _cluster(cluster_repo, ["2"], content_type="post")
    _cluster(cluster_repo, ["3"], review=True, content_type="post")
    item_id, gid = _root(content, engine)
    before = engine.capture_before(ctx1, item_id)
    content.update_item(1, item_id, {"title": "Hello v2"})
    effects = engine.on_item_changed(ctx1, item_id, before, editor="alice")
    assert [type(e) for e in effects] == [CreateReview]
    assert effects[0].previous_snapshot["title"] == "Hello"
    assert engine.apply(effects) == []
    record = review_gate.get_active(ctx1, item_id)
    assert record.state == "new"
    assert record.editor == "alice"


def test_new_item_in_review_cluster_waits_for_approval(engine, content, cluster_repo,
                                                       review_gate, dispatcher, distributor,
                                                       ctx1):
    _cluster(cluster_repo, ["2"], review=True, content_type="post", auto_promote_to_root=True)
    before = engine.capture_before(ctx1, None)
    item_id = content.insert_item(1, {"name": "fresh", "title": "Fresh"})
    effects = engine.on_item_changed(ctx1, item_id, before, editor="alice")
    assert effects == [PromoteToRoot(1, item_id), CreateReview(1, item_id, None, "alice")]
    assert not any(isinstance(e, Distribute) for e in effects)

    assert engine.apply(effects) == []
    assert dispatcher.scheduled == []
    record = review_gate.get_active(ctx1, item_id)
    assert record.state == "new"
    assert record.previous_snapshot is None

    assert review_gate.approve(record.id, reviewer="bob").ok
    [released] = [distributor.repo.get(i) for i in dispatcher.scheduled]
    assert (released.root_gid, released.destination_id) == (f"1-{item_id}", "2")
    assert released.origin == "review"


def test_trashed_root_distributes_trash_to_ledger(engine, content, ledger, ctx1, ctx2):
    item_id, gid = _root(content, engine)
    ledger.connect_local_copy(gid, ctx2, 12)
    before = engine.capture_before(ctx1, item_id)
    content.move_to_trash(1, item_id)
    assert engine.on_item_changed(ctx1, item_id, before) == [Distribute(gid, ("2",), "trash")]


def test_deleted_root_distributes_delete(engine, content, ledger, ctx1, ctx2):
    item_id, gid = _root(content, engine)
    ledger.connect_local_copy(gid, ctx2, 12)
    before = engine.capture_before(ctx1, item_id)
    content.delete_item(1, item_id)
    assert engine.on_item_changed(ctx1, item_id, before) == [Distribute(gid, ("2",), "delete")]


@pytest.fixture
def linked_copy(engine, content, ledger, ctx2):
    root_id, gid = _root(content, engine)
    copy_id = content.insert_item(2, {"name": "hello",
                                      "meta": {"sync_status": "linked", "sync_id": gid}})
    ledger.connect_local_copy(gid, ctx2, copy_id)
    return gid, copy_id


def test_trash_and_restore_linked_copy(engine, content, ledger, ctx2, linked_copy):
    gid, copy_id = linked_copy
    before = engine.capture_before(ctx2, copy_id)
    content.move_to_trash(2, copy_id)
    effects = engine.on_item_changed(ctx2, copy_id, before)
    assert effects == [RemoveConnection(gid, 2)]
    engine.apply(effects)
    assert ledger.destinations_of(gid) == []

    before = engine.capture_before(ctx2, copy_id)
    content.restore_from_trash(2, copy_id)
    effects = engine.on_item_changed(ctx2, copy_id, before)
    assert effects == [RestoreConnection(gid, 2, copy_id)]
    engine.apply(effects)
    assert ledger.destinations_of(gid) == ["2"]


def test_deleted_linked_copy_leaves_ledger(engine, content, ledger, ctx2, linked_copy):
    gid, copy_id = linked_copy
    before = engine.capture_before(ctx2, copy_id)
    content.delete_item(2, copy_id)
    engine.apply(engine.on_item_changed(ctx2, copy_id, before))
    assert ledger.destinations_of(gid) == []


def test_repeated_signal_is_processed_once(engine, content, cluster_repo, ctx1):
    engine.idempotency = IdempotencyStore(window_seconds=60)
    _cluster(cluster_repo, ["2"], content_type="post")
    item_id, gid = _root(content, engine)
    before = engine.capture_before(ctx1, item_id)
    assert engine.on_item_changed(ctx1, item_id, before) == [Distribute(gid, ("2",), "insert")]
    assert engine.on_item_changed(ctx1, item_id, before) == []


def test_apply_merges_identical_enqueues(engine, content):
    item_id, gid = _root(content, engine)
    created = engine.apply([Distribute(gid, ("2",)), Distribute(gid, ("2", "3"))])
    assert [(i.destination_id, i.action) for i in created] == [("2", "insert"), ("3", "insert")]


def test_windowed_check_redistributes_after_window_moves(engine, content, cluster_repo, clock):
    cluster = _cluster(cluster_repo, ["2"], content_type="post",
                       date_window=DateWindow(mode="dynamic", since_value=7))
    condition = cluster.content_conditions[0]
    old_id, old_gid = _root(content, engine, "Old", date=_day(13))
    new_id, new_gid = _root(content, engine, "New", date=_day(18))

    assert engine.check_windowed_conditions() == []
    assert cluster_repo.get_snapshot(condition.id) == [new_id, old_id]

    clock.advance(days=2)
    created = engine.check_windowed_conditions()
    assert _planned(created) == {(new_gid, "2", "insert"), (old_gid, "2", "delete")}
    assert cluster_repo.get_snapshot(condition.id) == [new_id]


def test_release_distributes_current_state(engine, content, cluster_repo):
    _cluster(cluster_repo, ["2", "3"], content_type="post")
    item_id, gid = _root(content, engine)
    created = engine.release(1, item_id)
    assert [(i.destination_id, i.origin) for i in created] == [("2", "review"), ("3", "review")]
