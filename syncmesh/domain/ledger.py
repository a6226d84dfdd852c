"""
Ledger des connexions d'un élément racine.

Le ledger est stocké dans les métadonnées de la racine (`sync_connections`) et liste chaque
copie liée:

    {
        "2": {"item_id": 57, "edit_locator": ..., "view_locator": ..., "display_locator": ...},
        "remote.example": {"3": {"item_id": 12, ...}},
    }

Les formes historiques (identifiant nu, entrée distante non structurée, JSON sérialisé) sont
normalisées une seule fois à la lecture par `normalize_ledger`. Toute écriture passe par
`ConnectionLedger`, qui sérialise les mutations d'une même racine sous un verrou.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

import structlog
from prometheus_client import Counter
from pydantic import BaseModel, Field

from syncmesh.domain.entities import META_CONNECTIONS, ConnectionRecord, DestinationKey, NodeContext
from syncmesh.domain.errors import IdentityError, RemoteConnectionError
from syncmesh.domain.gid import nice_url, parse_gid
from syncmesh.domain.ports import ContentRepository, NodeDirectory, RemoteTransport

log = structlog.get_logger(__name__).bind(component="ledger")

LEDGER_WRITES_TOTAL = Counter(
    "syncmesh_ledger_writes_total",
    "Connection ledger mutations",
    ["op", "result"],
)


class Ledger(BaseModel):
    """Ledger normalisé: entrées locales et entrées par réseau distant."""

    local: dict[int, ConnectionRecord] = Field(default_factory=dict)
    remote: dict[str, dict[int, ConnectionRecord]] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.local and not any(self.remote.values())

    def get(self, dest: DestinationKey) -> ConnectionRecord | None:
        if dest.is_remote:
            return self.remote.get(dest.host, {}).get(dest.node_id)
        return self.local.get(dest.node_id)

    def with_connection(self, dest: DestinationKey, record: ConnectionRecord) -> Ledger:
        updated = self.model_copy(deep=True)
        if dest.is_remote:
            updated.remote.setdefault(dest.host, {})[dest.node_id] = record
        else:
            updated.local[dest.node_id] = record
        return updated

    def without(self, dest: DestinationKey) -> Ledger:
        updated = self.model_copy(deep=True)
        if dest.is_remote:
            entries = updated.remote.get(dest.host, {})
            entries.pop(dest.node_id, None)
            if not entries:
                updated.remote.pop(dest.host, None)
        else:
            updated.local.pop(dest.node_id, None)
        return updated

    def entries(self) -> Iterator[tuple[DestinationKey, ConnectionRecord]]:
        for node_id, record in sorted(self.local.items()):
            yield DestinationKey(node_id), record
        for host, nodes in sorted(self.remote.items()):
            for node_id, record in sorted(nodes.items()):
                yield DestinationKey(node_id, host), record

    def to_raw(self) -> dict[str, Any]:
        raw: dict[str, Any] = {str(k): v.model_dump() for k, v in sorted(self.local.items())}
        for host, nodes in sorted(self.remote.items()):
            if nodes:
                raw[host] = {str(k): v.model_dump() for k, v in sorted(nodes.items())}
        return raw


def _is_int_like(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().isdigit()


def _record_from(value: Any, fallback_locator: str = "") -> ConnectionRecord | None:
    """Convertit une valeur brute (dict moderne/historique ou identifiant nu) en record."""
    if isinstance(value, ConnectionRecord):
        return value
    if _is_int_like(value):
        return ConnectionRecord(
            item_id=int(value),
            edit_locator=fallback_locator,
            view_locator=fallback_locator,
            display_locator=fallback_locator,
        )
    if isinstance(value, dict):
        item_id = value.get("item_id", value.get("post_id"))
        if not _is_int_like(item_id):
            return None
        return ConnectionRecord(
            item_id=int(item_id),
            edit_locator=str(value.get("edit_locator", value.get("edit", fallback_locator)) or ""),
            view_locator=str(value.get("view_locator", value.get("blog", fallback_locator)) or ""),
            display_locator=str(
                value.get("display_locator", value.get("nice", fallback_locator)) or ""
            ),
        )
    return None


def normalize_ledger(raw: Any) -> Ledger:
    """Normalise n'importe quelle forme stockée du ledger."""
    if isinstance(raw, Ledger):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw.strip() else {}
        except ValueError:
            log.warning("ledger_unreadable", raw_type="str")
            return Ledger()
    if not isinstance(raw, dict):
        return Ledger()

    ledger = Ledger()
    for key, value in raw.items():
        if _is_int_like(key):
            record = _record_from(value)
            if record is not None:
                ledger.local[int(key)] = record
            continue
        host = nice_url(str(key))
        if not isinstance(value, dict):
            continue
        nodes: dict[int, ConnectionRecord] = {}
        for node_key, node_value in value.items():
            if not _is_int_like(node_key):
                continue
            record = _record_from(node_value, fallback_locator=host)
            if record is not None:
                nodes[int(node_key)] = record
        if nodes:
            ledger.remote[host] = nodes
    return ledger


def to_destination_ids(ledger: Ledger | dict | None) -> list[str]:
    """Aplatit le ledger: ids locaux nus, ids distants `node_id|host`."""
    normalized = normalize_ledger(ledger or {})
    return [dest.as_id() for dest, _ in normalized.entries()]


class ConnectionLedger:
    """Lecture et mutations atomiques (par racine) du ledger."""

    def __init__(
        self,
        content: ContentRepository,
        directory: NodeDirectory,
        locks,
        transport: RemoteTransport | None = None,
    ) -> None:
        self.content = content
        self.directory = directory
        self.locks = locks
        self.transport = transport

    @property
    def network_host(self) -> str:
        return nice_url(self.directory.get_network_identity())

    def make_record(self, node_id: int, item_id: int) -> ConnectionRecord:
        """Construit un record avec les localisateurs d'un nœud local."""
        node = self.directory.get_node(node_id)
        base = (node.base_url if node else "").rstrip("/")
        return ConnectionRecord(
            item_id=int(item_id),
            edit_locator=f"{base}/admin/items/{int(item_id)}/edit",
            view_locator=base,
            display_locator=nice_url(base),
        )

    def _root_of(self, gid: str) -> tuple[int, int, str]:
        node_id, item_id, host = parse_gid(gid)
        if host and host != self.network_host:
            return node_id, item_id, host
        return node_id, item_id, ""

    def read(self, gid: str) -> Ledger:
        """Ledger normalisé d'une racine locale (vide si la racine est absente)."""
        node_id, item_id, host = self._root_of(gid)
        if host:
            raise IdentityError(f"gid {gid} is owned by remote network {host}", gid=gid)
        raw = self.content.get_item_metadata(node_id, item_id, META_CONNECTIONS)
        return normalize_ledger(raw)

    def write(self, gid: str, ledger: Ledger) -> None:
        node_id, item_id, _ = self._root_of(gid)
        self.content.set_item_metadata(node_id, item_id, META_CONNECTIONS, ledger.to_raw())

    def destinations_of(self, gid: str) -> list[str]:
        return to_destination_ids(self.read(gid))

    def _forward_remote(self, host: str, gid: str, dest: DestinationKey,
                        record: ConnectionRecord | None, add: bool) -> bool:
        if self.transport is None or not self.transport.is_active(host):
            raise RemoteConnectionError(f"remote network {host} is not reachable", host=host)
        payload = {
            "add": add,
            "node_id": dest.node_id,
            "host": dest.host or self.network_host,
            "record": record.model_dump() if record else None,
        }
        ok = self.transport.push_remote_connection_update(host, gid, payload)
        LEDGER_WRITES_TOTAL.labels(op="add" if add else "remove", result="remote").inc()
        return ok

    def _mutate(self, gid: str, dest: DestinationKey, record: ConnectionRecord | None) -> bool:
        op = "add" if record is not None else "remove"
        _, _, host = self._root_of(gid)
        if host:
            # la destination vue du réseau distant porte notre hôte
            remote_dest = DestinationKey(dest.node_id, dest.host or self.network_host)
            return self._forward_remote(host, gid, remote_dest, record, add=record is not None)

        with self.locks.hold(f"ledger:{gid}"):
            current = self.read(gid)
            updated = current.with_connection(dest, record) if record else current.without(dest)
            if updated == current:
                LEDGER_WRITES_TOTAL.labels(op=op, result="unchanged").inc()
                return True
            self.write(gid, updated)
        LEDGER_WRITES_TOTAL.labels(op=op, result="written").inc()
        log.info("ledger_updated", gid=gid, op=op, destination=dest.as_id())
        return True

    def add_connection(self, gid: str, dest: DestinationKey, record: ConnectionRecord) -> bool:
        """Upsert idempotent d'une connexion."""
        return self._mutate(gid, dest, record)

    def remove_connection(self, gid: str, dest: DestinationKey) -> bool:
        """Suppression idempotente d'une connexion (succès si absente)."""
        return self._mutate(gid, dest, None)

    def connect_local_copy(self, gid: str, ctx: NodeContext, item_id: int) -> bool:
        """Enregistre la copie `item_id` du nœud `ctx` sur la racine `gid`."""
        record = self.make_record(ctx.node_id, item_id)
        return self.add_connection(gid, DestinationKey(ctx.node_id), record)
