"""Tests unitaires pour l'idempotence des tâches workers."""

from __future__ import annotations

import pytest

from syncmesh.infra.ops.idempotency import (
    IdempotencyStore,
    canonical_task_key,
    idempotent_task,
    make_idem_key,
)


def test_idempotent_task_decorator_duplicate():
    """Le décorateur renvoie 'dup' sur duplication et n'exécute pas la fonction."""
    store = IdempotencyStore()
    calls = {"n": 0}

    @idempotent_task(lambda: store, key_builder=lambda x: make_idem_key("unit", x),
                     ttl_seconds=60, on_duplicate_return="dup")
    def do_work(x: str) -> str:
        calls["n"] += 1
        return f"ok:{x}"

    assert do_work("A") == "ok:A"
    assert do_work("A") == "dup"
    assert do_work("B") == "ok:B"
    assert calls["n"] == 2
    assert store.get_state(f"{make_idem_key('unit', 'A')}:state") == "succeeded"


def test_failed_task_can_be_redelivered():
    store = IdempotencyStore()
    calls = {"n": 0}

    @idempotent_task(lambda: store, key_builder=lambda: "task:flaky", ttl_seconds=60)
    def flaky() -> str:
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("transient")
        return "done"

    with pytest.raises(RuntimeError):
        flaky()
    assert store.get_state("task:flaky:state") == "failed"
    assert flaky() == "done"


def test_default_key_is_canonical():
    store = IdempotencyStore()

    @idempotent_task(lambda: store)
    def work(payload: dict) -> int:
        return len(payload)

    assert work({"a": 1, "b": 2}) == 2
    assert work({"b": 2, "a": 1}) == "duplicate"


def test_canonical_key_is_order_invariant():
    """La clé canonique est indépendante de l'ordre des dicts/kwargs."""
    k1 = canonical_task_key("t", (1, {"a": 1, "b": 2}), {"x": {"k": 3, "j": 4}})
    k2 = canonical_task_key("t", (1, {"b": 2, "a": 1}), {"x": {"j": 4, "k": 3}})
    assert k1 == k2
