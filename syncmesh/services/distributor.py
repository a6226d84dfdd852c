"""
Distributeur: file des éléments (racine, destination) et leur exécution.

Cycle de vie d'un élément: init -> started -> completed | failed. Un élément `failed` reste
rejouable (`requeue`). Les éléments restés `init`/`started` au-delà du seuil sont remontés par
`stuck_items` mais jamais rejoués automatiquement.

Les exécutions d'une même paire (GID, destination) sont sérialisées; une seconde exécution du
même élément observe `started`/`completed` et ne fait rien.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from opentelemetry import trace

from syncmesh.app.metrics import (
    DISTRIBUTION_ENQUEUED_TOTAL,
    DISTRIBUTION_RESULTS_TOTAL,
    DISTRIBUTION_RUN_SECONDS,
    DISTRIBUTION_STUCK,
)
from syncmesh.domain.conflicts import ConflictResolver, ImportResult
from syncmesh.domain.entities import DestinationKey, DistributionItem, DistributionPayload
from syncmesh.domain.errors import (
    ConsistencyError,
    DistributionError,
    RemoteConnectionError,
    SyncError,
    classify,
)
from syncmesh.domain.export import build_payload
from syncmesh.domain.gid import make_gid, nice_url, parse_gid
from syncmesh.infra.ops.locks import LockTimeout
from syncmesh.infra.repo.db import session_scope

log = structlog.get_logger(__name__).bind(component="distributor")
tracer = trace.get_tracer(__name__)


@dataclass
class DistributionOptions:
    """Options d'un enqueue.

    - actions: action par destination (`insert`, `draft`, `trash`, `delete`)
    - conflict_policy: politique par défaut (`replace`, `skip`, `keep`)
    - policies: politique par destination
    """

    action: str = "insert"
    actions: dict[str, str] = field(default_factory=dict)
    conflict_policy: str | None = None
    policies: dict[str, str] = field(default_factory=dict)
    origin: str = "manual"


@dataclass
class RunResult:
    item_id: int
    ok: bool
    status: str
    message: str = ""
    kind: str | None = None
    skipped: bool = False
    outcomes: list[ImportResult] = field(default_factory=list)


@dataclass
class BatchReport:
    results: list[RunResult] = field(default_factory=list)
    paused: bool = False
    next_index: int | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def summary(self) -> str:
        text = f"{self.succeeded} succeeded, {self.failed} failed"
        if self.paused:
            text += f", paused before item #{self.next_index}"
        return text


class Distributor:
    """Crée, exécute et surveille les éléments de distribution."""

    def __init__(self, repo, content, directory, resolver: ConflictResolver, *,
                 review_gate=None, transport=None, locks=None, dispatcher=None,
                 clock: Callable[[], datetime] | None = None,
                 stuck_threshold_s: int = 300, retention_days: int = 3,
                 default_conflict_policy: str | None = None,
                 lock_timeout_s: float = 30.0) -> None:
        self.repo = repo
        self.content = content
        self.directory = directory
        self.resolver = resolver
        self.review_gate = review_gate
        self.transport = transport
        self.locks = locks
        self.dispatcher = dispatcher
        self.clock = clock or (lambda: datetime.now(UTC))
        self.stuck_threshold_s = stuck_threshold_s
        self.retention_days = retention_days
        self.default_conflict_policy = default_conflict_policy
        self.lock_timeout_s = lock_timeout_s

    @property
    def network_host(self) -> str:
        return nice_url(self.directory.get_network_identity())

    # --- file -------------------------------------------------------

    def enqueue(self, root_gid: str, destination_ids, options: DistributionOptions | None = None
                ) -> list[DistributionItem]:
        """Crée un élément par destination puis le confie au dispatcher après commit."""
        options = options or DistributionOptions()
        node_id, _, host = parse_gid(root_gid)
        if host and host != self.network_host:
            raise DistributionError(f"{root_gid} is not a root of this network", gid=root_gid)
        now = self.clock()

        targets: list[str] = []
        for raw in destination_ids:
            dest = DestinationKey.parse(raw)
            if not dest.is_remote and dest.node_id == node_id:
                continue
            if dest.as_id() not in targets:
                targets.append(dest.as_id())

        created: list[DistributionItem] = []
        with session_scope(self.repo.session_factory) as session:
            for destination_id in targets:
                action = options.actions.get(destination_id, options.action)
                item = DistributionItem(
                    root_gid=root_gid,
                    destination_id=destination_id,
                    action=action,
                    conflict_policy=options.policies.get(destination_id, options.conflict_policy),
                    enqueued_at=now,
                    updated_at=now,
                    origin=options.origin,
                )
                created.append(self.repo.add_in(session, item))
                DISTRIBUTION_ENQUEUED_TOTAL.labels(action=action, origin=options.origin).inc()
            if self.dispatcher is not None and created:
                self.dispatcher.schedule(session, [i.id for i in created])
        log.info("distribution_enqueued", gid=root_gid, destinations=targets,
                 origin=options.origin)
        return created

    def requeue(self, item_id: int) -> bool:
        """Remet un élément non terminé avec succès en `init` et le redispatche."""
        with session_scope(self.repo.session_factory) as session:
            if not self.repo.requeue(item_id, self.clock()):
                return False
            if self.dispatcher is not None:
                self.dispatcher.schedule(session, [int(item_id)])
        return True

    # --- exécution ----------------------------------------------------

    def run(self, item_id: int) -> RunResult:
        """Exécute un élément; les échecs sont retournés, jamais levés."""
        item = self.repo.get(item_id)
        if item is None:
            return RunResult(item_id, False, "missing", f"distribution item {item_id} not found",
                             kind="distribution")
        if item.status in ("started", "completed"):
            return RunResult(item_id, item.status == "completed", item.status,
                             f"already {item.status}", skipped=True)

        lock_key = f"distribute:{item.root_gid}:{item.destination_id}"
        try:
            with self.locks.hold(lock_key, timeout=self.lock_timeout_s):
                return self._run_claimed(item)
        except LockTimeout as err:
            return RunResult(item_id, False, item.status, str(err), kind=err.kind, skipped=True)

    def _run_claimed(self, item: DistributionItem) -> RunResult:
        if not self.repo.claim(item.id, self.clock()):
            current = self.repo.get(item.id)
            status = current.status if current else "missing"
            return RunResult(item.id, status == "completed", status, f"already {status}",
                             skipped=True)

        dest = DestinationKey.parse(item.destination_id)
        start = time.perf_counter()
        with tracer.start_as_current_span("distribution.run") as span:
            span.set_attribute("syncmesh.gid", item.root_gid)
            span.set_attribute("syncmesh.destination", item.destination_id)
            try:
                outcomes, message = self._push(item, dest)
            except SyncError as err:
                return self._fail(item, err.kind, str(err))
            except Exception as err:
                log.exception("distribution_unexpected_error", item_id=item.id)
                return self._fail(item, classify(err), f"{type(err).__name__}: {err}")
            finally:
                DISTRIBUTION_RUN_SECONDS.labels(
                    destination_kind="remote" if dest.is_remote else "local"
                ).observe(time.perf_counter() - start)

        self.repo.finish(item.id, "completed", self.clock())
        DISTRIBUTION_RESULTS_TOTAL.labels(status="completed", kind="none").inc()
        log.info("distribution_completed", item_id=item.id, gid=item.root_gid,
                 destination=item.destination_id, outcomes=[o.outcome for o in outcomes])
        return RunResult(item.id, True, "completed", message, outcomes=outcomes)

    def _fail(self, item: DistributionItem, kind: str, error: str) -> RunResult:
        self.repo.finish(item.id, "failed", self.clock(), error=error)
        DISTRIBUTION_RESULTS_TOTAL.labels(status="failed", kind=kind).inc()
        log.warning("distribution_failed", item_id=item.id, gid=item.root_gid,
                    destination=item.destination_id, kind=kind, error=error)
        return RunResult(item.id, False, "failed", error, kind=kind)

    def _payload(self, item: DistributionItem, dest: DestinationKey) -> DistributionPayload | None:
        node_id, root_id, _ = parse_gid(item.root_gid)
        # vue depuis un autre réseau, la racine porte notre hôte
        gid = make_gid(node_id, root_id, self.network_host if dest.is_remote else "")
        policy = item.conflict_policy or self.default_conflict_policy
        if item.action in ("trash", "delete"):
            return DistributionPayload(gid=gid, items=[], action=item.action,
                                       conflict_policy=policy, origin_host=self.network_host)

        root = self.content.get_item(node_id, root_id)
        if root is None:
            raise ConsistencyError(f"root item {item.root_gid} not found", gid=item.root_gid)
        if root.status == "trash":
            return DistributionPayload(gid=gid, items=[], action="trash",
                                       conflict_policy=policy, origin_host=self.network_host)
        state = root
        if self.review_gate is not None:
            state = self.review_gate.snapshot_for_distribution(
                self.directory.context(node_id), root
            )
            if state is None:
                return None
        return build_payload(self.content, state, gid, action=item.action,
                             conflict_policy=policy, origin_host=self.network_host)

    def _push(self, item: DistributionItem, dest: DestinationKey
              ) -> tuple[list[ImportResult], str]:
        payload = self._payload(item, dest)
        if payload is None:
            return [], "held for review"

        if dest.is_remote:
            if self.transport is None or not self.transport.is_active(dest.host):
                raise RemoteConnectionError(f"remote network {dest.host} is not active",
                                            host=dest.host)
            ack = self.transport.push_distribution(dest.host, dest.node_id, payload)
            if not ack.get("ok", False):
                raise DistributionError(ack.get("message") or "remote import refused",
                                        host=dest.host)
            outcomes = [ImportResult(**o) for o in ack.get("results", [])]
            return outcomes, ack.get("message", "")

        if self.directory.get_node(dest.node_id) is None:
            raise DistributionError(f"unknown destination node {dest.node_id}")
        ctx = self.directory.context(dest.node_id)
        return self.resolver.import_payload(ctx, payload), ""

    # --- supervision ------------------------------------------------

    def stuck_items(self, threshold_s: int | None = None) -> list[DistributionItem]:
        """Éléments `init`/`started` plus anciens que le seuil (5 min par défaut)."""
        threshold = self.stuck_threshold_s if threshold_s is None else threshold_s
        items = self.repo.stuck(self.clock() - timedelta(seconds=threshold))
        DISTRIBUTION_STUCK.set(len(items))
        return items

    def run_batch(self, item_ids: list[int], should_pause: Callable[[], bool] | None = None,
                  start_at: int = 0) -> BatchReport:
        """Exécute une sélection séquentiellement; la pause est vérifiée entre deux éléments.

        Un élément bloqué (`started` depuis plus que le seuil) est d'abord remis en `init`;
        un élément `started` récent est laissé à son exécutant.
        """
        report = BatchReport()
        ids = [int(i) for i in item_ids]
        stuck_before = self.clock() - timedelta(seconds=self.stuck_threshold_s)
        for index in range(start_at, len(ids)):
            if should_pause is not None and should_pause():
                report.paused = True
                report.next_index = index
                break
            item_id = ids[index]
            current = self.repo.get(item_id)
            if (current is not None and current.status == "started"
                    and current.updated_at <= stuck_before):
                self.repo.requeue(item_id, self.clock())
            report.results.append(self.run(item_id))
        log.info("distribution_batch", total=len(report.results), summary=report.summary())
        return report

    def list_items(self, status: str | None = None, root_gid: str | None = None,
                   limit: int = 200) -> list[DistributionItem]:
        return self.repo.list_items(status=status, root_gid=root_gid, limit=limit)

    def cleanup(self, retention_days: int | None = None) -> int:
        """Supprime les éléments terminés plus anciens que la rétention (3 jours)."""
        days = self.retention_days if retention_days is None else retention_days
        removed = self.repo.delete_terminal_before(self.clock() - timedelta(days=days))
        log.info("distribution_cleanup", removed=removed, retention_days=days)
        return removed
