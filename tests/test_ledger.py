# ============================================================
# Tests : tests/test_ledger.py
# Objet : Ledger des connexions (normalisation, idempotence, distant).
# ============================================================

from __future__ import annotations

import json
import threading

import pytest

from syncmesh.domain.entities import ConnectionRecord, DestinationKey
from syncmesh.domain.errors import IdentityError, RemoteConnectionError
from syncmesh.domain.ledger import normalize_ledger, to_destination_ids


def _root(content, node_id=1, name="hello"):
    item_id = content.insert_item(node_id, {"name": name, "title": name})
    gid = f"{node_id}-{item_id}"
    content.set_item_metadata(node_id, item_id, "sync_status", "root")
    content.set_item_metadata(node_id, item_id, "sync_id", gid)
    return item_id, gid


def test_normalize_legacy_shapes():
    raw = {
        "2": 57,
        "3": {"post_id": 9, "edit": "https://a.example/de/edit", "blog": "https://a.example/de"},
        "https://b.example/": {"4": "12"},
        "c.example": "garbage",
    }
    ledger = normalize_ledger(json.dumps(raw))
    assert ledger.local[2].item_id == 57
    assert ledger.local[3].edit_locator == "https://a.example/de/edit"
    assert ledger.local[3].view_locator == "https://a.example/de"
    remote = ledger.remote["b.example"][4]
    assert remote.item_id == 12
    assert remote.edit_locator == "b.example"
    assert "c.example" not in ledger.remote
    assert to_destination_ids(ledger) == ["2", "3", "4|b.example"]


def test_normalize_unreadable_values():
    assert normalize_ledger("{not json").is_empty
    assert normalize_ledger(None).is_empty
    assert normalize_ledger([1, 2]).is_empty


def test_add_connection_is_idempotent(content, ledger):
    _, gid = _root(content)
    record = ConnectionRecord(item_id=57)
    assert ledger.add_connection(gid, DestinationKey(2), record)
    first = ledger.read(gid)
    assert ledger.add_connection(gid, DestinationKey(2), record)
    assert ledger.read(gid) == first
    assert ledger.destinations_of(gid) == ["2"]


def test_remove_missing_connection_succeeds(content, ledger):
    _, gid = _root(content)
    assert ledger.remove_connection(gid, DestinationKey(3))
    assert ledger.read(gid).is_empty


def test_remote_entries_round_trip(content, ledger):
    _, gid = _root(content)
    ledger.add_connection(gid, DestinationKey(4, "b.example"), ConnectionRecord(item_id=8))
    assert ledger.destinations_of(gid) == ["4|b.example"]
    ledger.remove_connection(gid, DestinationKey(4, "b.example"))
    assert ledger.destinations_of(gid) == []


def test_concurrent_adds_keep_every_entry(content, ledger):
    _, gid = _root(content)

    def add(node_id: int) -> None:
        ledger.add_connection(gid, DestinationKey(node_id), ConnectionRecord(item_id=node_id * 10))

    threads = [threading.Thread(target=add, args=(n,)) for n in range(2, 12)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(ledger.read(gid).local) == list(range(2, 12))


def test_remote_root_is_forwarded(ledger, transport):
    transport.add_network("b.example")
    gid = "5-77-b.example"
    ledger.add_connection(gid, DestinationKey(2), ConnectionRecord(item_id=3))
    host, sent_gid, payload = transport.connection_updates[-1]
    assert host == "b.example"
    assert sent_gid == gid
    assert payload["add"] is True
    assert payload["node_id"] == 2
    assert payload["host"] == "a.example"
    assert payload["record"]["item_id"] == 3
    with pytest.raises(IdentityError):
        ledger.read(gid)


def test_inactive_remote_rejects_mutation(ledger, transport):
    transport.add_network("c.example", active=False)
    with pytest.raises(RemoteConnectionError):
        ledger.remove_connection("5-77-c.example", DestinationKey(2))


def test_connect_local_copy_builds_locators(content, ledger, ctx2):
    _, gid = _root(content)
    ledger.connect_local_copy(gid, ctx2, 41)
    record = ledger.read(gid).get(DestinationKey(2))
    assert record.item_id == 41
    assert record.edit_locator == "https://a.example/fr/admin/items/41/edit"
    assert record.display_locator == "a.example/fr"
