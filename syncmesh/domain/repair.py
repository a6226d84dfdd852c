"""
Détection et réparation des incohérences de synchronisation.

L'état d'erreur d'un élément est calculé à la demande (jamais stocké) à partir de son
statut de synchro, de son GID et du ledger de sa racine. Classes d'erreur:

- orphaned_connection: entrée de ledger sans copie vivante, ou copie sans entrée
- misdirected_link: la racine déclarée ne correspond pas au nœud qui la porte réellement
- stale_duplicate_root: deux éléments revendiquent la même place
- unreachable_remote_root: réseau distant inconnu ou inactif

`autorepair` n'applique que les actions sans risque (entrées de ledger, réécriture du GID);
`repair` autorise en plus les actions destructives (corbeille, promotion en racine,
retrait des métadonnées). Chaque action produit une ligne de journal lisible.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from syncmesh.app.metrics import ERRORS_DETECTED_TOTAL, REPAIR_ACTIONS_TOTAL
from syncmesh.domain.entities import (
    META_CONNECTIONS,
    META_SYNC_ID,
    META_SYNC_STATUS,
    ContentItem,
    DestinationKey,
    NodeContext,
)
from syncmesh.domain.errors import IdentityError, SyncError
from syncmesh.domain.gid import localize_gid, make_gid, nice_url, parse_gid
from syncmesh.domain.ledger import ConnectionLedger, Ledger, normalize_ledger
from syncmesh.domain.ports import ContentRepository, ItemQuery, NodeDirectory, RemoteTransport

log = structlog.get_logger(__name__).bind(component="repair")

NO_ERROR = "none"
ORPHANED_CONNECTION = "orphaned_connection"
MISDIRECTED_LINK = "misdirected_link"
STALE_DUPLICATE_ROOT = "stale_duplicate_root"
UNREACHABLE_REMOTE_ROOT = "unreachable_remote_root"

LOW_RISK = "low"
DESTRUCTIVE = "destructive"


@dataclass
class RepairReport:
    node_id: int
    item_id: int
    kind: str = NO_ERROR
    message: str = ""
    suggestion: str = ""
    log: list[str] = field(default_factory=list)
    repaired: bool = False

    @property
    def has_error(self) -> bool:
        return self.kind != NO_ERROR

    def as_text(self) -> str:
        if not self.has_error:
            return "No error found."
        lines = [self.message, *self.log]
        if not self.log and self.suggestion:
            lines.append(f"Suggested action: {self.suggestion}")
        return " ".join(line for line in lines if line)


class _Plan:
    """Accumule les actions d'une réparation et leur résultat global."""

    def __init__(self, report: RepairReport, autorepair: bool, repair: bool) -> None:
        self.report = report
        self.allowed = {LOW_RISK: autorepair or repair, DESTRUCTIVE: repair}
        self.applied = 0
        self.all_ok = True

    def error(self, kind: str, message: str, suggestion: str) -> None:
        self.report.kind = kind
        self.report.message = message
        self.report.suggestion = suggestion
        ERRORS_DETECTED_TOTAL.labels(kind=kind).inc()

    def run(self, risk: str, name: str, action: Callable[[], bool], ok_line: str,
            fail_line: str) -> None:
        if not self.allowed[risk]:
            return
        self.applied += 1
        try:
            ok = bool(action())
        except SyncError as err:
            ok = False
            fail_line = f"{fail_line} ({err})"
        self.report.log.append(ok_line if ok else fail_line)
        self.all_ok = self.all_ok and ok
        REPAIR_ACTIONS_TOTAL.labels(action=name, result="ok" if ok else "failed").inc()

    def finish(self) -> RepairReport:
        self.report.repaired = self.report.has_error and self.applied > 0 and self.all_ok
        return self.report


class Repairer:
    """Classe et répare les éléments d'un nœud."""

    def __init__(self, content: ContentRepository, directory: NodeDirectory,
                 ledger: ConnectionLedger, transport: RemoteTransport | None = None) -> None:
        self.content = content
        self.directory = directory
        self.ledger = ledger
        self.transport = transport

    @property
    def network_host(self) -> str:
        return nice_url(self.directory.get_network_identity())

    # --- actions ----------------------------------------------------

    def _set_sync(self, ctx: NodeContext, item_id: int, status: str, gid: str) -> bool:
        self.content.set_item_metadata(ctx.node_id, item_id, META_SYNC_STATUS, status)
        self.content.set_item_metadata(ctx.node_id, item_id, META_SYNC_ID, gid)
        return True

    def _unlink(self, ctx: NodeContext, item_id: int) -> bool:
        for key in (META_SYNC_STATUS, META_SYNC_ID, META_CONNECTIONS):
            self.content.delete_item_metadata(ctx.node_id, item_id, key)
        return True

    def _restore_entry(self, gid: str, ctx: NodeContext, item_id: int) -> bool:
        return self.ledger.connect_local_copy(gid, ctx, item_id)

    def promote_to_root(self, ctx: NodeContext, item_id: int) -> str:
        """Fait de l'élément une nouvelle racine et rattache les copies liées à l'ancien GID.

        Retourne le nouveau GID.
        """
        item = self.content.get_item(ctx.node_id, item_id)
        if item is None:
            raise IdentityError(f"item {item_id} not found on node {ctx.node_id}")
        old_gid = item.sync_id
        new_gid = make_gid(ctx.node_id, item_id)
        self._set_sync(ctx, item_id, "root", new_gid)

        ledger = Ledger()
        if old_gid and old_gid != new_gid:
            for node in self.directory.list_nodes():
                if node.id == ctx.node_id:
                    continue
                for linked in self.content.find_by_meta(node.id, META_SYNC_ID, old_gid):
                    if linked.sync_status != "linked":
                        continue
                    self.content.set_item_metadata(node.id, linked.id, META_SYNC_ID, new_gid)
                    ledger = ledger.with_connection(
                        DestinationKey(node.id), self.ledger.make_record(node.id, linked.id)
                    )
            self._detach_from_old_root(old_gid, ctx)

        with self.ledger.locks.hold(f"ledger:{new_gid}"):
            self.ledger.write(new_gid, ledger)
        log.info("item_promoted_to_root", node_id=ctx.node_id, item_id=item_id,
                 old_gid=old_gid or None, gid=new_gid)
        return new_gid

    def _detach_from_old_root(self, old_gid: str, ctx: NodeContext) -> None:
        try:
            node_id, root_id, host = parse_gid(old_gid)
        except IdentityError:
            return
        if host and host != self.network_host:
            if self.transport is not None and self.transport.is_active(host):
                try:
                    self.ledger.remove_connection(old_gid, DestinationKey(ctx.node_id))
                except SyncError as err:
                    log.warning("old_root_detach_failed", gid=old_gid, error=str(err))
            return
        if self.content.get_item(node_id, root_id) is not None:
            self.ledger.remove_connection(localize_gid(old_gid, self.network_host),
                                          DestinationKey(ctx.node_id))

    # --- détection --------------------------------------------------

    def check_item(self, ctx: NodeContext, item_id: int, autorepair: bool = False,
                   repair: bool = False) -> RepairReport:
        """Classe l'élément et applique les réparations autorisées."""
        report = RepairReport(node_id=ctx.node_id, item_id=int(item_id))
        plan = _Plan(report, autorepair, repair)
        item = self.content.get_item(ctx.node_id, item_id)
        if item is None:
            report.message = f"Item {item_id} not found on node {ctx.node_id}."
            return report
        if item.sync_status == "none" or not item.sync_id:
            return report

        try:
            root_node, root_id, host = parse_gid(item.sync_id)
        except IdentityError:
            plan.error(MISDIRECTED_LINK, f"The sync id '{item.sync_id}' is not valid.",
                       "Make this item a new root.")
            self._promote_action(plan, ctx, item)
            return plan.finish()

        if host and host == self.network_host:
            local_gid = make_gid(root_node, root_id)
            plan.error(MISDIRECTED_LINK, "The connection refers to this network.",
                       f"Rewrite the sync id to {local_gid}.")
            plan.run(LOW_RISK, "rewrite_sync_id",
                     lambda: self._set_sync(ctx, item.id, item.sync_status, local_gid),
                     f"Sync id rewritten to {local_gid}.", "Sync id could not be rewritten.")
        elif host:
            self._check_remote(plan, ctx, item, host, root_node, root_id)
        elif item.sync_status == "root":
            self._check_root(plan, ctx, item, root_node, root_id)
        else:
            self._check_linked(plan, ctx, item, root_node, root_id)

        result = plan.finish()
        if result.has_error:
            log.info("sync_error_checked", node_id=ctx.node_id, item_id=item.id,
                     kind=result.kind, repaired=result.repaired)
        return result

    def repair_item(self, ctx: NodeContext, item_id: int) -> RepairReport:
        return self.check_item(ctx, item_id, autorepair=True, repair=True)

    def _promote_action(self, plan: _Plan, ctx: NodeContext, item: ContentItem) -> None:
        plan.run(DESTRUCTIVE, "promote_to_root", lambda: bool(self.promote_to_root(ctx, item.id)),
                 "Item has been made the new root.", "Item could not be made a root.")

    def _check_remote(self, plan: _Plan, ctx: NodeContext, item: ContentItem, host: str,
                      root_node: int, root_id: int) -> None:
        network = self.transport.get_network(host) if self.transport else None
        if network is None:
            plan.error(UNREACHABLE_REMOTE_ROOT, f"The connection to {host} does not exist.",
                       "Make this item a new root.")
            self._promote_action(plan, ctx, item)
            return
        if not network.active:
            plan.error(UNREACHABLE_REMOTE_ROOT, f"The connection to {host} is inactive.",
                       "Reactivate the connection or make this item a new root.")
            self._promote_action(plan, ctx, item)
            return
        if item.sync_status == "root":
            plan.error(MISDIRECTED_LINK, f"This root item refers to a root on {host}.",
                       "Make this item a new root.")
            self._promote_action(plan, ctx, item)
            return

        try:
            remote_root = self.transport.fetch_remote_item(host, make_gid(root_node, root_id))
        except SyncError as err:
            plan.error(UNREACHABLE_REMOTE_ROOT, f"The root on {host} could not be reached ({err}).",
                       "Retry later.")
            return
        if not remote_root or (remote_root.get("sync_status") or "none") != "root":
            plan.error(ORPHANED_CONNECTION, f"The root item on {host} no longer exists.",
                       "Make this item a new root.")
            self._promote_action(plan, ctx, item)
            return
        remote_ledger = normalize_ledger(remote_root.get("connections"))
        entry = remote_ledger.get(DestinationKey(ctx.node_id, self.network_host))
        self._check_entry(plan, ctx, item, item.sync_id, entry)

    def _check_root(self, plan: _Plan, ctx: NodeContext, item: ContentItem,
                    root_node: int, root_id: int) -> None:
        gid = item.sync_id
        if root_node != ctx.node_id:
            actual = self.content.get_item(root_node, root_id)
            if actual is not None and actual.sync_status == "root":
                plan.error(MISDIRECTED_LINK,
                           f"This item is marked as root, but the root lives on node {root_node}.",
                           "Turn this item into a linked copy.")
                plan.run(DESTRUCTIVE, "relink",
                         lambda: self._set_sync(ctx, item.id, "linked", gid)
                         and self._restore_entry(gid, ctx, item.id),
                         "Item is linked to its root again.", "Item could not be linked.")
            else:
                plan.error(MISDIRECTED_LINK, "This root item refers to a missing root.",
                           "Make this item a new root.")
                self._promote_action(plan, ctx, item)
            return

        if root_id != item.id:
            actual = self.content.get_item(ctx.node_id, root_id)
            if actual is not None and actual.sync_status == "root" and actual.sync_id == gid:
                plan.error(STALE_DUPLICATE_ROOT,
                           f"Item {root_id} on this node is already the root of {gid}.",
                           "Remove the sync metadata from this item.")
                plan.run(DESTRUCTIVE, "unlink", lambda: self._unlink(ctx, item.id),
                         "Sync metadata removed.", "Sync metadata could not be removed.")
            else:
                plan.error(MISDIRECTED_LINK, f"This root item carries the id of item {root_id}.",
                           "Make this item a new root.")
                self._promote_action(plan, ctx, item)
            return

        # racine saine: vérifie les entrées locales de son ledger
        ledger = self.ledger.read(gid)
        stale = []
        for dest, record in ledger.entries():
            if dest.is_remote:
                continue
            copy = self.content.get_item(dest.node_id, record.item_id)
            if copy is None or copy.sync_status != "linked" or copy.sync_id != gid:
                stale.append(dest)
        if stale:
            plan.error(ORPHANED_CONNECTION,
                       f"{len(stale)} connection(s) point to items that no longer exist.",
                       "Remove the stale connections.")
            for dest in stale:
                plan.run(LOW_RISK, "remove_connection",
                         lambda d=dest: self.ledger.remove_connection(gid, d),
                         f"Stale connection removed for node {dest.as_id()}.",
                         f"Connection for node {dest.as_id()} could not be removed.")

    def _check_linked(self, plan: _Plan, ctx: NodeContext, item: ContentItem,
                      root_node: int, root_id: int) -> None:
        gid = item.sync_id
        if root_node == ctx.node_id:
            if root_id == item.id:
                plan.error(MISDIRECTED_LINK, "This linked item refers to itself.",
                           "Make this item the root.")
                self._promote_action(plan, ctx, item)
                return
            root = self.content.get_item(ctx.node_id, root_id)
            if root is not None and root.sync_status == "root":
                plan.error(MISDIRECTED_LINK, "This item is linked to a root on the same node.",
                           "Remove the sync metadata from this item.")
                plan.run(DESTRUCTIVE, "unlink", lambda: self._unlink(ctx, item.id),
                         "Sync metadata removed.", "Sync metadata could not be removed.")
            else:
                plan.error(ORPHANED_CONNECTION, "The root item no longer exists.",
                           "Make this item a new root.")
                self._promote_action(plan, ctx, item)
            return

        root = self.content.get_item(root_node, root_id)
        if root is None or root.sync_status != "root" or (root.sync_id and root.sync_id != gid):
            plan.error(ORPHANED_CONNECTION, "The root item was deleted or moved.",
                       "Make this item a new root.")
            self._promote_action(plan, ctx, item)
            return
        entry = self.ledger.read(gid).get(DestinationKey(ctx.node_id))
        self._check_entry(plan, ctx, item, gid, entry)

    def _check_entry(self, plan: _Plan, ctx: NodeContext, item: ContentItem, gid: str,
                     entry) -> None:
        restore = ("Connection restored on the root item.",
                   "Connection could not be restored on the root item.")
        if entry is None:
            plan.error(ORPHANED_CONNECTION, "The root item has no connection to this item.",
                       "Restore the connection.")
            plan.run(LOW_RISK, "restore_connection",
                     lambda: self._restore_entry(gid, ctx, item.id), *restore)
            return
        if entry.item_id == item.id:
            return

        other = self.content.get_item(ctx.node_id, entry.item_id)
        if (other is None or other.status == "trash" or other.sync_status != "linked"
                or other.sync_id != gid):
            plan.error(ORPHANED_CONNECTION,
                       f"The root item is connected to item {entry.item_id}, which is gone.",
                       "Restore the connection to this item.")
            plan.run(LOW_RISK, "restore_connection",
                     lambda: self._restore_entry(gid, ctx, item.id), *restore)
            return

        plan.error(STALE_DUPLICATE_ROOT,
                   f"Item {other.id} on this node is also linked to {gid}.",
                   "Keep one linked copy and move the other to trash.")
        if item.status == "publish" and other.status != "publish":
            plan.run(DESTRUCTIVE, "restore_connection",
                     lambda: self._restore_entry(gid, ctx, item.id), *restore)
            plan.run(DESTRUCTIVE, "trash_item",
                     lambda: self.content.move_to_trash(ctx.node_id, other.id),
                     f"Item {other.id} moved to trash.", f"Item {other.id} could not be trashed.")
        else:
            plan.run(DESTRUCTIVE, "trash_item",
                     lambda: self.content.move_to_trash(ctx.node_id, item.id),
                     "Item moved to trash.", "Item could not be trashed.")

    # --- balayage -----------------------------------------------------

    def scan_node(self, ctx: NodeContext, autorepair: bool = False,
                  repair: bool = False) -> list[RepairReport]:
        """Retourne les rapports des éléments synchronisés en erreur sur le nœud."""
        reports = []
        candidates: dict[int, ContentItem] = {}
        for status in ("root", "linked"):
            query = ItemQuery(statuses=(), meta_equals={META_SYNC_STATUS: status})
            for item in self.content.query_items(ctx.node_id, query):
                candidates[item.id] = item
        for item_id in sorted(candidates):
            report = self.check_item(ctx, item_id, autorepair=autorepair, repair=repair)
            if report.has_error:
                reports.append(report)
        return reports

    def scan_network(self, autorepair: bool = False, repair: bool = False) -> list[RepairReport]:
        reports = []
        for node in self.directory.list_nodes():
            reports.extend(self.scan_node(self.directory.context(node.id), autorepair, repair))
        return reports
