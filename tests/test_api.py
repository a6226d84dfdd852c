"""Tests des routes HTTP (santé, distribution, ledger, revues, réparation, distant).

L'application utilise le conteneur global configuré par `conftest.py`: réseau `a.example`,
nœuds 1 à 3, distribution exécutée en ligne après commit.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from syncmesh.app.main import app
from syncmesh.core.container import container
from syncmesh.tasks.sync_tasks import PAUSE_KEY
from tests.fakes import FakeTransport

client = TestClient(app)


def _root(title: str = "Hello") -> tuple[int, str]:
    item_id = container.content.insert_item(1, {"name": title.lower(), "title": title})
    return item_id, container.sync_engine.promote(1, item_id)


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["storage"] == "memory"
    assert body["network"] == "a.example"
    assert body["nodes"] == [1, 2, 3]


def test_request_id_is_echoed():
    r = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert r.headers["X-Request-ID"] == "req-42"
    assert "X-Process-Time-ms" in r.headers


def test_enqueue_runs_inline():
    _, gid = _root("Inline")
    r = client.post("/distribution/enqueue", json={"root_gid": gid, "destination_ids": ["1", "2"]})
    assert r.status_code == 200
    [created] = r.json()
    assert created["destination_id"] == "2"

    items = client.get("/distribution/items", params={"root_gid": gid}).json()
    assert [i["status"] for i in items] == ["completed"]
    assert client.get(f"/connections/{gid}").json()["destinations"] == ["2"]

    again = client.post(f"/distribution/items/{created['id']}/run")
    assert again.text == "success::already completed"
    requeue = client.post(f"/distribution/items/{created['id']}/requeue")
    assert requeue.text == f"error::item {created['id']} cannot be requeued"


def test_invalid_gid_uses_error_envelope():
    r = client.post("/distribution/enqueue", json={"root_gid": "bogus", "destination_ids": ["2"]})
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "INVALID_GID"
    assert body["details"]["kind"] == "identity"
    assert body["trace_id"]


def test_foreign_root_ledger_is_rejected():
    r = client.get("/connections/1-2-b.example")
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_GID"


def test_remote_connection_callback():
    _, gid = _root("Callback")
    record = {"item_id": 31, "edit_locator": "b.example"}
    r = client.post(f"/connections/{gid}",
                    json={"add": True, "node_id": 4, "host": "https://b.example", "record": record})
    assert r.text == "success::connection 4|b.example added"
    assert client.get(f"/connections/{gid}").json()["destinations"] == ["4|b.example"]

    r = client.post(f"/connections/{gid}", json={"add": False, "node_id": 4, "host": "b.example"})
    assert r.text.startswith("success::")
    assert client.get(f"/connections/{gid}").json()["destinations"] == []

    missing = client.post(f"/connections/{gid}", json={"add": True, "node_id": 4})
    assert missing.text.startswith("error::")


def test_stuck_items_listing():
    r = client.get("/distribution/stuck", params={"threshold_s": 3600})
    assert r.status_code == 200
    assert r.json() == []


def test_batch_pause_and_resume():
    assert client.post("/distribution/batch/pause").text.startswith("success::")
    assert container.idempotency.get_state(PAUSE_KEY) == "1"
    r = client.post("/distribution/batch", json={"item_ids": [1, 2]})
    body = r.json()
    assert body["paused"] is True
    assert body["next_index"] == 0
    assert client.post("/distribution/batch/resume").text.startswith("success::")
    assert container.idempotency.get_state(PAUSE_KEY) is None


def test_cleanup_reports_removed_count():
    r = client.post("/distribution/cleanup", params={"retention_days": 30})
    assert r.text == "success::0 items removed"


def test_review_routes():
    item_id, _ = _root("Reviewed")
    missing = client.get(f"/reviews/items/1/{item_id}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"

    record = container.review_gate.create_review(
        container.context(1), container.content.get_item(1, item_id), None
    )
    active = client.get(f"/reviews/items/1/{item_id}").json()
    assert active["id"] == record.id
    assert active["state"] == "new"

    deny = client.post(f"/reviews/{record.id}/deny", json={"message": ""})
    assert deny.text == "error::a message is required to deny a review"
    deny = client.post(f"/reviews/{record.id}/deny", json={"message": "fix title"})
    assert deny.text == "success::Review denied."
    comment = client.post(f"/reviews/{record.id}/comments",
                          json={"message": "ok now", "reviewer": "bob"})
    assert comment.text == "success::Comment added."

    history = client.get(f"/reviews/items/1/{item_id}/history").json()
    assert [m["action"] for m in history[0]["messages"]] == ["denied", "comment"]


def test_repair_routes():
    root_id, gid = _root("Repaired")
    copy_id = container.content.insert_item(
        3, {"name": "repaired", "meta": {"sync_status": "linked", "sync_id": gid}}
    )
    report = client.get(f"/repair/items/3/{copy_id}").json()
    assert report["kind"] == "orphaned_connection"
    assert report["repaired"] is False

    r = client.post(f"/repair/items/3/{copy_id}")
    assert r.text == "success::The root item has no connection to this item. " \
                     "Connection restored on the root item."
    assert client.get(f"/repair/items/3/{copy_id}").json()["kind"] == "none"
    assert client.post(f"/repair/items/1/{root_id}").text == "success::No error found."


def test_promote_route():
    item_id = container.content.insert_item(2, {"name": "promoted"})
    r = client.post(f"/repair/items/2/{item_id}/promote")
    assert r.text == f"success::item is now the root 2-{item_id}"


def test_remote_fetch_item():
    item_id, gid = _root("Fetched")
    body = client.get(f"/remote/items/{gid}").json()
    assert body["sync_status"] == "root"
    assert body["sync_id"] == gid
    assert body["connections"] == {}
    assert client.get(f"/remote/items/{gid}-a.example").status_code == 200
    assert client.get("/remote/items/1-2-b.example").status_code == 400
    assert client.get("/remote/items/1-999999").status_code == 404


@pytest.fixture
def remote_ledger(monkeypatch):
    fake = FakeTransport()
    fake.add_network("b.example")
    monkeypatch.setattr(container.ledger, "transport", fake)
    return fake


def test_remote_import_links_copy(remote_ledger):
    payload = {
        "gid": "7-3-b.example",
        "origin_host": "b.example",
        "items": [{"gid": "7-3-b.example", "source_id": 3, "name": "from-b", "type": "post",
                   "title": "From B"}],
    }
    r = client.post("/remote/import", json={"node_id": 2, "payload": payload})
    body = r.json()
    assert body["ok"] is True
    [result] = body["results"]
    assert result["outcome"] == "link_updated"
    copy = container.content.get_item(2, result["local_id"])
    assert copy.sync_status == "linked"
    host, gid, update = remote_ledger.connection_updates[-1]
    assert (host, gid, update["node_id"]) == ("b.example", "7-3-b.example", 2)


def test_remote_import_unknown_node():
    payload = {"gid": "7-3-b.example", "items": []}
    body = client.post("/remote/import", json={"node_id": 9, "payload": payload}).json()
    assert body == {"ok": False, "results": [], "message": "unknown node 9"}


def test_metrics_exposes_sync_counters():
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "syncmesh_distribution_enqueued_total" in r.text
