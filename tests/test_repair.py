# ============================================================
# Tests : tests/test_repair.py
# Objet : Classement des incohérences et réparations (autorepair / repair).
# ============================================================

from __future__ import annotations

import pytest

from syncmesh.domain.entities import DestinationKey
from syncmesh.domain.errors import IdentityError, RemoteConnectionError
from syncmesh.domain.repair import (
    MISDIRECTED_LINK,
    NO_ERROR,
    ORPHANED_CONNECTION,
    STALE_DUPLICATE_ROOT,
    UNREACHABLE_REMOTE_ROOT,
)

GID = "2-57"


@pytest.fixture
def root57(content):
    content.insert_item(2, {"id": 57, "name": "hello",
                            "meta": {"sync_status": "root", "sync_id": GID}})
    return 57


def _linked(content, node_id, gid=GID, **fields):
    return content.insert_item(node_id, {"name": "hello", **fields,
                                         "meta": {"sync_status": "linked", "sync_id": gid}})


def test_missing_ledger_entry_is_repaired(content, ledger, repairer, directory, root57):
    ctx3 = directory.context(3)
    copy_id = _linked(content, 3)

    report = repairer.check_item(ctx3, copy_id)
    assert report.kind == ORPHANED_CONNECTION
    assert not report.repaired
    assert ledger.destinations_of(GID) == []

    report = repairer.check_item(ctx3, copy_id, repair=True)
    assert report.repaired
    assert report.log == ["Connection restored on the root item."]
    assert ledger.read(GID).get(DestinationKey(3)).item_id == copy_id

    again = repairer.check_item(ctx3, copy_id)
    assert again.kind == NO_ERROR
    assert again.as_text() == "No error found."


def test_autorepair_restores_entry_too(content, ledger, repairer, directory, root57):
    copy_id = _linked(content, 3)
    report = repairer.check_item(directory.context(3), copy_id, autorepair=True)
    assert report.repaired
    assert ledger.destinations_of(GID) == ["3"]


def test_unsynced_and_missing_items(content, repairer, ctx1):
    plain = content.insert_item(1, {"name": "plain"})
    assert repairer.check_item(ctx1, plain).kind == NO_ERROR
    missing = repairer.check_item(ctx1, 999)
    assert missing.kind == NO_ERROR
    assert "not found" in missing.message


def test_healthy_root_drops_stale_entries(content, ledger, repairer, directory, root57):
    live = _linked(content, 1)
    ledger.connect_local_copy(GID, directory.context(1), live)
    ledger.connect_local_copy(GID, directory.context(3), 404)
    ctx2 = directory.context(2)

    report = repairer.check_item(ctx2, root57, autorepair=True)
    assert report.kind == ORPHANED_CONNECTION
    assert report.repaired
    assert ledger.destinations_of(GID) == ["1"]
    assert repairer.check_item(ctx2, root57).kind == NO_ERROR


def test_deleted_root_needs_destructive_repair(content, repairer, directory, ledger):
    ctx3 = directory.context(3)
    copy_id = _linked(content, 3)

    report = repairer.check_item(ctx3, copy_id, autorepair=True)
    assert report.kind == ORPHANED_CONNECTION
    assert not report.repaired
    assert "Suggested action: Make this item a new root." in report.as_text()

    report = repairer.check_item(ctx3, copy_id, repair=True)
    assert report.repaired
    item = content.get_item(3, copy_id)
    assert item.sync_status == "root"
    assert item.sync_id == f"3-{copy_id}"


def test_promote_to_root_moves_linked_copies(content, ledger, repairer, directory, root57):
    ctx1, ctx3 = directory.context(1), directory.context(3)
    first = _linked(content, 1)
    second = _linked(content, 3)
    ledger.connect_local_copy(GID, ctx1, first)
    ledger.connect_local_copy(GID, ctx3, second)

    new_gid = repairer.promote_to_root(ctx1, first)
    assert new_gid == f"1-{first}"
    assert content.get_item(3, second).sync_id == new_gid
    assert ledger.destinations_of(new_gid) == ["3"]
    # l'ancienne racine ne connaît plus la copie promue
    assert ledger.destinations_of(GID) == ["3"]


def test_promote_missing_item(repairer, ctx1):
    with pytest.raises(IdentityError):
        repairer.promote_to_root(ctx1, 999)


def test_invalid_gid_is_misdirected(content, repairer, ctx1):
    copy_id = _linked(content, 1, gid="not-a-gid")
    report = repairer.check_item(ctx1, copy_id)
    assert report.kind == MISDIRECTED_LINK


def test_own_host_gid_is_rewritten(content, repairer, directory, ledger, root57):
    ctx3 = directory.context(3)
    copy_id = _linked(content, 3, gid="2-57-a.example")
    report = repairer.check_item(ctx3, copy_id, autorepair=True)
    assert report.kind == MISDIRECTED_LINK
    assert report.repaired
    assert content.get_item(3, copy_id).sync_id == GID


def test_link_to_root_on_same_node_is_unlinked(content, repairer, directory, root57):
    ctx2 = directory.context(2)
    copy_id = _linked(content, 2)
    report = repairer.check_item(ctx2, copy_id, repair=True)
    assert report.kind == MISDIRECTED_LINK
    assert report.repaired
    assert content.get_item(2, copy_id).sync_status == "none"


def test_duplicate_linked_copies(content, ledger, repairer, directory, root57):
    ctx3 = directory.context(3)
    kept = _linked(content, 3)
    duplicate = _linked(content, 3)
    ledger.connect_local_copy(GID, ctx3, kept)

    report = repairer.check_item(ctx3, duplicate, repair=True)
    assert report.kind == STALE_DUPLICATE_ROOT
    assert content.get_item(3, duplicate).status == "trash"
    assert ledger.read(GID).get(DestinationKey(3)).item_id == kept


def test_unknown_remote_network(content, repairer, ctx1):
    copy_id = _linked(content, 1, gid="5-9-b.example")
    report = repairer.check_item(ctx1, copy_id)
    assert report.kind == UNREACHABLE_REMOTE_ROOT
    assert "does not exist" in report.message


def test_unreachable_remote_is_reported_only(content, repairer, transport, ctx1):
    transport.add_network("b.example")
    transport.fail_with = RemoteConnectionError("timeout", host="b.example")
    copy_id = _linked(content, 1, gid="5-9-b.example")
    report = repairer.check_item(ctx1, copy_id, repair=True)
    assert report.kind == UNREACHABLE_REMOTE_ROOT
    assert not report.repaired
    assert content.get_item(1, copy_id).sync_status == "linked"


def test_remote_entry_missing_is_pushed_back(content, repairer, transport, ctx1):
    transport.add_network("b.example")
    transport.remote_items[("b.example", "5-9")] = {"sync_status": "root", "connections": {}}
    copy_id = _linked(content, 1, gid="5-9-b.example")
    report = repairer.check_item(ctx1, copy_id, autorepair=True)
    assert report.kind == ORPHANED_CONNECTION
    assert report.repaired
    host, gid, payload = transport.connection_updates[-1]
    assert (host, gid) == ("b.example", "5-9-b.example")
    assert payload["node_id"] == 1
    assert payload["host"] == "a.example"


def test_remote_entry_present_is_healthy(content, repairer, transport, ctx1):
    transport.add_network("b.example")
    copy_id = _linked(content, 1, gid="5-9-b.example")
    transport.remote_items[("b.example", "5-9")] = {
        "sync_status": "root",
        "connections": {"a.example": {"1": {"item_id": copy_id}}},
    }
    assert repairer.check_item(ctx1, copy_id).kind == NO_ERROR


def test_scan_network_lists_errors_only(content, ledger, repairer, directory, root57):
    healthy = _linked(content, 1)
    ledger.connect_local_copy(GID, directory.context(1), healthy)
    broken = _linked(content, 3)
    reports = repairer.scan_network()
    assert [(r.node_id, r.item_id) for r in reports] == [(3, broken)]
    assert repairer.scan_network(autorepair=True)[0].repaired
    assert repairer.scan_network() == []
