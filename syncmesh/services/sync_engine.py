"""
Moteur de synchronisation: de la modification d'un élément aux distributions.

Le flux est explicite:

1. `capture_before(ctx, item_id)` avant la modification (instantané, conditions incluant
   l'élément, membres des conditions limitées en nombre du nœud);
2. `on_item_changed(ctx, item_id, before)` après la modification: calcule une liste d'effets
   sans rien exécuter;
3. `apply(effects)` exécute les effets dans l'ordre (promotion, revue, ledger, enqueues).

Règles principales:
- destinations d'une racine = destinations des clusters qui l'incluent ∪ destinations du ledger,
  jamais le nœud de l'élément lui-même;
- quitter un cluster programme `delete` sur les destinations de ce cluster;
- une condition limitée en nombre dont l'appartenance change est redistribuée entière;
- un cluster avec revue l'emporte: la modification est retenue jusqu'à l'approbation;
- mettre à la corbeille / restaurer une copie liée retire / rétablit son entrée de ledger.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from syncmesh.domain.conditions import ConditionEngine, membership_delta
from syncmesh.domain.entities import (
    META_CONNECTIONS,
    META_SYNC_ID,
    META_SYNC_STATUS,
    Cluster,
    ContentCondition,
    ContentItem,
    DestinationKey,
    NodeContext,
)
from syncmesh.domain.gid import make_gid
from syncmesh.domain.ledger import ConnectionLedger, to_destination_ids
from syncmesh.domain.review import take_snapshot
from syncmesh.services.distributor import DistributionOptions, Distributor

log = structlog.get_logger(__name__).bind(component="sync_engine")


# --- effets -------------------------------------------------------------


@dataclass(frozen=True)
class PromoteToRoot:
    node_id: int
    item_id: int


@dataclass(frozen=True)
class CreateReview:
    node_id: int
    item_id: int
    previous_snapshot: dict | None = field(default=None, hash=False, compare=False)
    editor: str = ""


@dataclass(frozen=True)
class Distribute:
    gid: str
    destination_ids: tuple[str, ...]
    action: str = "insert"
    origin: str = "change"


@dataclass(frozen=True)
class RedistributeCondition:
    condition_id: int
    removed_item_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class RemoveConnection:
    gid: str
    node_id: int


@dataclass(frozen=True)
class RestoreConnection:
    gid: str
    node_id: int
    item_id: int


Effect = (
    PromoteToRoot | CreateReview | Distribute | RedistributeCondition | RemoveConnection
    | RestoreConnection
)


@dataclass
class BeforeState:
    """État capturé avant une modification."""

    snapshot: dict | None = None
    condition_ids: set[int] = field(default_factory=set)
    windowed_members: dict[int, list[int]] = field(default_factory=dict)

    @property
    def status(self) -> str | None:
        return self.snapshot.get("status") if self.snapshot else None

    @property
    def sync_status(self) -> str:
        meta = (self.snapshot or {}).get("meta") or {}
        return meta.get(META_SYNC_STATUS) or "none"

    @property
    def sync_id(self) -> str:
        meta = (self.snapshot or {}).get("meta") or {}
        return meta.get(META_SYNC_ID) or ""

    @property
    def connections(self) -> list[str]:
        """Destinations du ledger tel qu'il était avant la modification."""
        meta = (self.snapshot or {}).get("meta") or {}
        return to_destination_ids(meta.get(META_CONNECTIONS))


class SyncEngine:
    """Orchestre conditions, revues, ledger et distributeur autour d'un changement."""

    def __init__(self, content, directory, clusters, conditions: ConditionEngine,
                 ledger: ConnectionLedger, distributor: Distributor, *, review_gate=None,
                 idempotency=None, repairer=None, autorepair_on_change: bool = False,
                 clock: Callable[[], datetime] | None = None) -> None:
        self.content = content
        self.directory = directory
        self.clusters = clusters
        self.conditions = conditions
        self.ledger = ledger
        self.distributor = distributor
        self.review_gate = review_gate
        self.idempotency = idempotency
        self.repairer = repairer
        self.autorepair_on_change = autorepair_on_change
        self.clock = clock or (lambda: datetime.now(UTC))

    # --- résolution -----------------------------------------------------

    def _cluster_index(self) -> tuple[list[Cluster], dict[int, Cluster]]:
        clusters = self.clusters.list_all()
        by_condition = {
            c.id: cluster for cluster in clusters for c in cluster.content_conditions
            if c.id is not None
        }
        return clusters, by_condition

    def _node_conditions(self, node_id: int) -> list[ContentCondition]:
        return self.clusters.list_conditions(node_id)

    def clusters_including_item(self, item: ContentItem) -> list[Cluster]:
        clusters, by_condition = self._cluster_index()
        matched = self.conditions.conditions_including_item(
            item, [c for cl in clusters for c in cl.content_conditions]
        )
        seen: dict[int, Cluster] = {}
        for condition in matched:
            cluster = by_condition.get(condition.id)
            if cluster is not None:
                seen.setdefault(cluster.id, cluster)
        return list(seen.values())

    def _ledger_destinations(self, gid: str) -> list[str]:
        return self.ledger.destinations_of(gid) if gid else []

    def destinations_for(self, item: ContentItem, clusters: list[Cluster] | None = None,
                         gid: str | None = None) -> list[str]:
        """Destinations de clusters ∪ destinations du ledger, sans le nœud de l'élément."""
        clusters = self.clusters_including_item(item) if clusters is None else clusters
        gid = item.sync_id if gid is None else gid
        out: list[str] = []
        raw_ids = [d for c in clusters for d in c.destination_ids]
        for raw in raw_ids + self._ledger_destinations(gid):
            dest = DestinationKey.parse(raw)
            if not dest.is_remote and dest.node_id == item.node_id:
                continue
            if dest.as_id() not in out:
                out.append(dest.as_id())
        return out

    # --- capture ----------------------------------------------------------

    def capture_before(self, ctx: NodeContext, item_id: int | None) -> BeforeState:
        item = self.content.get_item(ctx.node_id, item_id) if item_id is not None else None
        state = BeforeState(snapshot=take_snapshot(item))
        conditions = self._node_conditions(ctx.node_id)
        if item is not None:
            state.condition_ids = {
                c.id for c in self.conditions.conditions_including_item(item, conditions)
            }
        for condition in conditions:
            if condition.is_count_limited:
                state.windowed_members[condition.id] = self.conditions.evaluate_ids(condition)
        return state

    # --- calcul des effets -------------------------------------------

    def on_item_changed(self, ctx: NodeContext, item_id: int, before: BeforeState | None = None,
                        editor: str = "") -> list[Effect]:
        """Effets à appliquer suite à la modification (ou suppression) d'un élément."""
        if self.idempotency is not None and self.idempotency.already_processed(
            "item_changed", f"{ctx.node_id}:{item_id}"
        ):
            return []
        before = before or BeforeState()
        item = self.content.get_item(ctx.node_id, item_id)

        if item is None:
            return self._on_deleted(ctx, before)
        if item.sync_status == "linked":
            return self._on_linked_changed(ctx, item, before)
        if item.status == "trash":
            if item.sync_status == "root" and before.status != "trash":
                dests = self.destinations_for(item, clusters=[])
                return [Distribute(item.sync_id, tuple(dests), "trash")] if dests else []
            return []
        return self._on_root_changed(ctx, item, before, editor)

    def _on_deleted(self, ctx: NodeContext, before: BeforeState) -> list[Effect]:
        if before.sync_status == "root" and before.sync_id:
            dests = tuple(before.connections)
            return [Distribute(before.sync_id, dests, "delete")] if dests else []
        if before.sync_status == "linked" and before.sync_id:
            return [RemoveConnection(before.sync_id, ctx.node_id)]
        return []

    def _on_linked_changed(self, ctx: NodeContext, item: ContentItem,
                           before: BeforeState) -> list[Effect]:
        if item.status == "trash" and before.status != "trash":
            return [RemoveConnection(item.sync_id, ctx.node_id)]
        if item.status != "trash" and before.status == "trash":
            return [RestoreConnection(item.sync_id, ctx.node_id, item.id)]
        return []

    def _on_root_changed(self, ctx: NodeContext, item: ContentItem, before: BeforeState,
                         editor: str) -> list[Effect]:
        effects: list[Effect] = []
        _, by_condition = self._cluster_index()
        node_conditions = self._node_conditions(ctx.node_id)
        now_conditions = self.conditions.conditions_including_item(item, node_conditions)
        now_ids = {c.id for c in now_conditions}
        delta = membership_delta(item, before.condition_ids, now_ids)

        gid = item.sync_id
        if item.sync_status != "root":
            if not any(c.auto_promote_to_root for c in now_conditions):
                return self._windowed_effects(node_conditions, before)
            effects.append(PromoteToRoot(ctx.node_id, item.id))
            gid = make_gid(ctx.node_id, item.id)

        clusters_in = {by_condition[i].id: by_condition[i] for i in now_ids if i in by_condition}
        clusters_left = {
            by_condition[i].id: by_condition[i] for i in delta.removed
            if i in by_condition and by_condition[i].id not in clusters_in
        }

        windowed = self._windowed_effects(node_conditions, before)
        redistributed = {
            by_condition[e.condition_id].id for e in windowed
            if isinstance(e, RedistributeCondition) and e.condition_id in by_condition
        }

        in_dests = self.destinations_for(item, list(clusters_in.values()), gid=gid)
        kept = set(self.destinations_for(item, list(clusters_in.values()), gid=""))
        left_dests = [
            d for d in self.destinations_for(item, list(clusters_left.values()), gid="")
            if d not in kept
        ]
        insert_dests = [d for d in in_dests if d not in left_dests]

        if any(c.review_enabled for c in clusters_in.values()):
            effects.append(CreateReview(ctx.node_id, item.id, before.snapshot, editor))
        else:
            # les destinations d'une condition redistribuée entière sont couvertes par celle-ci
            covered = {
                d for cid in redistributed for d in clusters_in.get(cid, Cluster()).destination_ids
            } if redistributed else set()
            remaining = [d for d in insert_dests if d not in covered]
            if remaining:
                effects.append(Distribute(gid, tuple(remaining), "insert"))
        if left_dests:
            effects.append(Distribute(gid, tuple(left_dests), "delete"))
        effects.extend(windowed)
        return effects

    def _windowed_effects(self, conditions: list[ContentCondition],
                          before: BeforeState) -> list[Effect]:
        effects: list[Effect] = []
        for condition in conditions:
            if not condition.is_count_limited:
                continue
            previous = before.windowed_members.get(condition.id)
            if previous is None:
                continue
            delta = membership_delta(None, previous, self.conditions.evaluate_ids(condition))
            if delta.changed:
                effects.append(RedistributeCondition(condition.id, tuple(sorted(delta.removed))))
        return effects

    # --- exécution ----------------------------------------------------

    def promote(self, node_id: int, item_id: int) -> str:
        """Marque l'élément comme racine (GID local) s'il ne l'est pas déjà."""
        item = self.content.get_item(node_id, item_id)
        if item is not None and item.sync_status == "root" and item.sync_id:
            return item.sync_id
        gid = make_gid(node_id, item_id)
        self.content.set_item_metadata(node_id, item_id, META_SYNC_STATUS, "root")
        self.content.set_item_metadata(node_id, item_id, META_SYNC_ID, gid)
        log.info("item_promoted", node_id=node_id, item_id=item_id, gid=gid)
        return gid

    def apply(self, effects: list[Effect]) -> list:
        """Exécute les effets; les enqueues identiques (gid, destination, action) fusionnent."""
        seen: set[tuple[str, str, str]] = set()
        created: list = []

        def enqueue(gid: str, dests, action: str, origin: str) -> None:
            fresh = [d for d in dests if (gid, d, action) not in seen]
            if not fresh:
                return
            seen.update((gid, d, action) for d in fresh)
            created.extend(
                self.distributor.enqueue(
                    gid, fresh, DistributionOptions(action=action, origin=origin)
                )
            )

        for effect in effects:
            if isinstance(effect, PromoteToRoot):
                self.promote(effect.node_id, effect.item_id)
            elif isinstance(effect, CreateReview):
                if self.review_gate is None:
                    continue
                item = self.content.get_item(effect.node_id, effect.item_id)
                if item is not None:
                    self.review_gate.create_review(
                        self.directory.context(effect.node_id), item,
                        effect.previous_snapshot, effect.editor,
                    )
            elif isinstance(effect, Distribute):
                enqueue(effect.gid, effect.destination_ids, effect.action, effect.origin)
            elif isinstance(effect, RemoveConnection):
                self.ledger.remove_connection(effect.gid, DestinationKey(effect.node_id))
            elif isinstance(effect, RestoreConnection):
                self.ledger.connect_local_copy(
                    effect.gid, self.directory.context(effect.node_id), effect.item_id
                )
            elif isinstance(effect, RedistributeCondition):
                for gid, dests, action in self._condition_plan(effect):
                    enqueue(gid, dests, action, "condition")
        if effects:
            log.info("effects_applied", effects=[type(e).__name__ for e in effects],
                     enqueued=len(created))
        return created

    def _condition_plan(self, effect: RedistributeCondition) -> list[tuple[str, list[str], str]]:
        condition = self.clusters.get_condition(effect.condition_id)
        if condition is None or condition.cluster_id is None:
            return []
        cluster = self.clusters.get(condition.cluster_id)
        if cluster is None:
            return []
        node_id = condition.source_node_id
        plan: list[tuple[str, list[str], str]] = []
        members = self.conditions.evaluate(condition)
        for item in members:
            gid = self.promote(node_id, item.id)
            dests = self.destinations_for(item, [cluster], gid="")
            if dests:
                plan.append((gid, dests, "insert"))
        for item_id in effect.removed_item_ids:
            item = self.content.get_item(node_id, item_id)
            if item is None or item.sync_status != "root":
                continue
            dests = self.destinations_for(item, [cluster], gid="")
            if dests:
                plan.append((item.sync_id, dests, "delete"))
        self.clusters.save_snapshot(condition.id, [i.id for i in members], self.clock())
        return plan

    def handle_change(self, ctx: NodeContext, item_id: int, before: BeforeState | None = None,
                      editor: str = "") -> list:
        """Raccourci: calcule puis applique les effets (et l'autoréparation si activée)."""
        created = self.apply(self.on_item_changed(ctx, item_id, before, editor))
        if self.autorepair_on_change and self.repairer is not None:
            if self.content.get_item(ctx.node_id, item_id) is not None:
                self.repairer.check_item(ctx, item_id, autorepair=True)
        return created

    # --- revue / planification ---------------------------------------

    def release(self, node_id: int, item_id: int) -> list:
        """Distribue l'état courant d'une racine (à l'approbation ou au retour arrière)."""
        item = self.content.get_item(node_id, item_id)
        if item is None or item.sync_status != "root":
            return []
        action = "trash" if item.status == "trash" else "insert"
        dests = self.destinations_for(item)
        if not dests:
            return []
        return self.distributor.enqueue(item.sync_id, dests,
                                        DistributionOptions(action=action, origin="review"))

    def check_windowed_conditions(self) -> list:
        """Compare chaque condition fenêtrée à son dernier instantané, redistribue si besoin."""
        effects: list[Effect] = []
        for condition in self.clusters.list_conditions():
            if not condition.is_windowed:
                continue
            current = self.conditions.evaluate_ids(condition)
            previous = self.clusters.get_snapshot(condition.id)
            if previous is None:
                self.clusters.save_snapshot(condition.id, current, self.clock())
                continue
            delta = membership_delta(None, previous, current)
            if delta.changed:
                effects.append(RedistributeCondition(condition.id, tuple(sorted(delta.removed))))
        created = self.apply(effects)
        log.info("windowed_conditions_checked", redistributed=len(effects), enqueued=len(created))
        return created
