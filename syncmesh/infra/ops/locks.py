"""Per-key mutexes (Redis or in-process).

- `LockManager.hold(key)` serializes writers of one logical resource, e.g. the connection
  ledger of a root (`ledger:{gid}`) or a (root, destination) distribution pair.

Backed by `redis` locks when a client is given (multi-worker deployments), otherwise by
`threading.Lock` objects kept per key.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from syncmesh.domain.errors import DistributionError

log = structlog.get_logger(__name__).bind(component="locks")


class LockTimeout(DistributionError):
    """Le verrou n'a pas pu être obtenu dans le délai imparti."""


class LockManager:
    """Fabrique de verrous nommés."""

    def __init__(self, client: object | None = None, timeout: float = 30.0,
                 prefix: str = "syncmesh:lock:") -> None:
        self.client = client
        self.timeout = float(timeout)
        self.prefix = prefix
        self._local: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @property
    def backend(self) -> str:
        return "redis" if self.client is not None else "memory"

    def _local_lock(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._local.get(key)
            if lock is None:
                lock = threading.Lock()
                self._local[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str, blocking: bool = True, timeout: float | None = None) -> Iterator[None]:
        """Tient le verrou `key` pendant le bloc; lève `LockTimeout` sinon."""
        wait = self.timeout if timeout is None else float(timeout)
        if self.client is not None:
            lock = self.client.lock(  # type: ignore[attr-defined]
                self.prefix + key, timeout=max(wait, 1.0), blocking_timeout=wait
            )
            acquired = lock.acquire(blocking=blocking)
        else:
            lock = self._local_lock(key)
            acquired = lock.acquire(blocking, wait if blocking else -1)
        if not acquired:
            log.warning("lock_not_acquired", key=key, backend=self.backend)
            raise LockTimeout(f"lock busy: {key}", key=key)
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, key: str) -> bool:
        if self.client is not None:
            return bool(self.client.exists(self.prefix + key))  # type: ignore[attr-defined]
        return self._local_lock(key).locked()
