# ============================================================
# Tests : tests/test_scripts.py
# Objet  : Scripts d'exploitation (réparation réseau, relance).
# ============================================================
"""Tests des scripts d'exploitation, le conteneur global étant simulé par monkeypatch."""

from __future__ import annotations

import sys
from types import SimpleNamespace

from scripts import repair_network, rerun_stuck_items
from syncmesh.core.container import container
from syncmesh.domain.repair import RepairReport
from syncmesh.services.distributor import BatchReport, RunResult


def test_repair_network_lists_open_errors(monkeypatch, capsys) -> None:
    seen = {}

    def fake_scan(autorepair, repair):
        seen["flags"] = (autorepair, repair)
        return [
            RepairReport(node_id=2, item_id=7, kind="orphaned_connection", message="orphan",
                         suggestion="restore", repaired=False),
            RepairReport(node_id=3, item_id=9, kind="misdirected_link", message="bad gid",
                         log=["GID rewritten."], repaired=True),
        ]

    monkeypatch.setattr(container.repairer, "scan_network", fake_scan)
    monkeypatch.setattr(sys, "argv", ["repair_network", "--autorepair"])
    assert repair_network.main() == 1
    assert seen["flags"] == (True, False)
    out = capsys.readouterr().out
    assert "node=2 item=7 kind=orphaned_connection [open] orphan Suggested action: restore" in out
    assert "[repaired] bad gid GID rewritten." in out
    assert "errors=2 remaining=1" in out


def test_repair_single_node_clean(monkeypatch, capsys) -> None:
    monkeypatch.setattr(container.repairer, "scan_node", lambda ctx, a, r: [])
    monkeypatch.setattr(sys, "argv", ["repair_network", "--node", "2"])
    assert repair_network.main() == 0
    assert "errors=0 remaining=0" in capsys.readouterr().out


def _stuck(item_id: int):
    return SimpleNamespace(id=item_id, root_gid="1-5", destination_id="2", status="started",
                           updated_at=container.distributor.clock())


def test_rerun_dry_run(monkeypatch, capsys) -> None:
    monkeypatch.setattr(container.distributor, "stuck_items", lambda threshold: [_stuck(4)])
    monkeypatch.setattr(sys, "argv", ["rerun_stuck_items", "--dry-run"])
    assert rerun_stuck_items.main() == 0
    out = capsys.readouterr().out
    assert "#4 1-5 -> 2 status=started" in out
    assert "stuck=1" in out


def test_rerun_runs_batch(monkeypatch, capsys) -> None:
    batches = []

    def fake_batch(ids):
        batches.append(ids)
        return BatchReport(results=[RunResult(4, True, "completed", "ok")])

    monkeypatch.setattr(container.distributor, "stuck_items",
                        lambda threshold: [_stuck(4), _stuck(6)])
    monkeypatch.setattr(container.distributor, "run_batch", fake_batch)
    monkeypatch.setattr(sys, "argv", ["rerun_stuck_items", "--max-items", "1"])
    assert rerun_stuck_items.main() == 0
    assert batches == [[4]]
    assert "1 succeeded, 0 failed" in capsys.readouterr().out
