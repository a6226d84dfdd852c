"""Trigger and task idempotency helpers (Redis or in-memory).

- IdempotencyStore: `acquire(key, ttl)` to deduplicate work, and
  `already_processed(action, item_id)` to collapse the repeated "item changed" signals fired
  for one logical save (short window, 2 s by default).
- `idempotent_task`: decorator collapsing duplicate Celery deliveries.

Idempotency key rule:
    task:{name}:{param_significant}

Use `make_idem_key("distribute", gid, destination_id)` to compose keys consistently.

The store uses Redis when a client (or `REDIS_URL`) is available, otherwise an in-memory
map of key -> expiry suitable for unit tests and single-process runs.
"""

from __future__ import annotations

import functools
import json
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import redis
import structlog
from prometheus_client import Counter

log = structlog.get_logger(__name__).bind(component="idempotency")

IDEMPOTENCY_ATTEMPTS_TOTAL = Counter(
    "syncmesh_idempotency_attempts_total",
    "Idempotency checks by outcome",
    ["scope", "result"],
)


def make_idem_key(task: str, *parts: object) -> str:
    """Compose a stable idempotency key following `task:{name}:{param}` rule."""
    safe_parts = [str(p).replace("\n", " ").replace("\r", " ") for p in parts]
    suffix = ":".join(safe_parts) if safe_parts else ""
    return f"task:{task}:{suffix}" if suffix else f"task:{task}"


class _InMemoryKV:
    """Map clé -> (valeur, expiration) protégée par un verrou."""

    def __init__(self) -> None:
        self._exp: dict[str, float] = {}
        self._vals: dict[str, str] = {}
        self._lock = threading.Lock()

    def _purge(self, key: str, now: float) -> None:
        exp = self._exp.get(key)
        if exp is not None and exp <= now:
            self._exp.pop(key, None)
            self._vals.pop(key, None)

    def set(self, name: str, value: str, ex: float | None = None, nx: bool = False) -> bool:
        now = time.monotonic()
        with self._lock:
            self._purge(name, now)
            if nx and name in self._vals:
                return False
            self._vals[name] = value
            if ex:
                self._exp[name] = now + float(ex)
            else:
                self._exp.pop(name, None)
            return True

    def get(self, name: str) -> str | None:
        with self._lock:
            self._purge(name, time.monotonic())
            return self._vals.get(name)

    def delete(self, name: str) -> int:
        with self._lock:
            self._exp.pop(name, None)
            return 1 if self._vals.pop(name, None) is not None else 0


def _redis_client(url: str | None = None):
    url = url or os.getenv("REDIS_URL")
    if not url:
        return None
    return redis.Redis.from_url(url, decode_responses=True)


@dataclass
class IdempotencyStore:
    """Store d'idempotence avec TTL (injecté dans le moteur)."""

    ttl_seconds: int = 300
    window_seconds: float = 2.0
    client: object | None = field(default=None)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = _InMemoryKV()

    @property
    def backend(self) -> str:
        return "memory" if isinstance(self.client, _InMemoryKV) else "redis"

    def acquire(self, key: str, ttl: float | None = None, scope: str = "task") -> bool:
        """Acquiert une clé avec TTL; False si elle est déjà tenue."""
        ttl = ttl or self.ttl_seconds
        if self.backend == "redis":
            # Redis n'accepte que des secondes entières pour `ex`
            ok = bool(
                self.client.set(  # type: ignore[attr-defined]
                    name=key, value="1", nx=True, ex=max(1, int(ttl))
                )
            )
        else:
            ok = self.client.set(key, "1", ex=ttl, nx=True)  # type: ignore[attr-defined]
        IDEMPOTENCY_ATTEMPTS_TOTAL.labels(scope=scope, result="allowed" if ok else "deduped").inc()
        return ok

    def release(self, key: str) -> None:
        self.client.delete(key)  # type: ignore[attr-defined]

    def set_state(self, key: str, state: str, ttl: float | None = None) -> None:
        """Enregistre un état (in_progress/succeeded/failed) avec TTL."""
        ttl = ttl or self.ttl_seconds
        if self.backend == "redis":
            self.client.set(  # type: ignore[attr-defined]
                name=key, value=state, ex=max(1, int(ttl))
            )
        else:
            self.client.set(key, state, ex=ttl)  # type: ignore[attr-defined]

    def get_state(self, key: str) -> str | None:
        return self.client.get(key)  # type: ignore[attr-defined]

    def already_processed(self, action: str, item_id: object, window: float | None = None) -> bool:
        """Vrai si (action, item) a déjà été traité dans la fenêtre courte.

        Le premier appel enregistre la clé et retourne False.
        """
        key = make_idem_key("trigger", action, item_id)
        first = self.acquire(key, ttl=window or self.window_seconds, scope=action)
        if not first:
            log.debug("trigger_deduplicated", action=action, item_id=item_id)
        return not first


def build_idempotency_store(redis_url: str | None = None, window_seconds: float = 2.0,
                            require_redis: bool = False) -> IdempotencyStore:
    """Construit le store (Redis si configuré, sinon mémoire)."""
    client = None
    if redis_url:
        try:
            client = _redis_client(redis_url)
            client.ping()
        except redis.RedisError as err:
            if require_redis:
                raise RuntimeError("Redis required but unavailable") from err
            log.warning("idempotency_redis_unavailable", error=type(err).__name__)
            client = None
    return IdempotencyStore(window_seconds=window_seconds, client=client)


def _normalize_for_json(value: Any) -> Any:
    """Normalize complex values for canonical JSON (sets, datetime)."""
    if isinstance(value, (set, frozenset)):
        return sorted(_normalize_for_json(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_normalize_for_json(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _normalize_for_json(v) for k, v in value.items()}
    if isinstance(value, datetime):
        v = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return v.astimezone(UTC).isoformat()
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def canonical_task_key(task_name: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
    """Construis une clé canonique stable depuis nom de tâche et args/kwargs normalisés."""
    payload = {
        "args": _normalize_for_json(list(args)),
        "kwargs": _normalize_for_json(dict(kwargs)),
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return make_idem_key(task_name, raw)


def idempotent_task(store_getter, key_builder=None, ttl_seconds: int = 300,
                    on_duplicate_return: object = "duplicate"):
    """Decorate a task function to enforce idempotence via the shared store.

    Si la clé existe déjà (dans la fenêtre TTL), la fonction décorée renvoie immédiatement
    `on_duplicate_return` sans exécuter la logique métier.

    Args:
        store_getter: Callable retournant l'`IdempotencyStore` à utiliser.
        key_builder: Fonction construisant une clé stable à partir des arguments.
        ttl_seconds: Fenêtre d'idempotence en secondes.
        on_duplicate_return: Valeur renvoyée si doublon détecté.
    """

    def _decorator(func):
        @functools.wraps(func)
        def _wrapper(*args, **kwargs):
            task_name = getattr(func, "__name__", "task")
            kb = key_builder or (lambda *a, **k: canonical_task_key(task_name, a, k))
            key = kb(*args, **kwargs)
            store: IdempotencyStore = store_getter()
            if not store.acquire(key, ttl=ttl_seconds, scope=task_name):
                return on_duplicate_return
            store.set_state(f"{key}:state", "in_progress", ttl_seconds)
            try:
                result = func(*args, **kwargs)
            except Exception:
                store.set_state(f"{key}:state", "failed", ttl_seconds)
                # une redelivery doit pouvoir rejouer la tâche
                store.release(key)
                raise
            store.set_state(f"{key}:state", "succeeded", ttl_seconds)
            return result

        return _wrapper

    return _decorator
