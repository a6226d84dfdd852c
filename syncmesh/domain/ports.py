"""Interfaces des collaborateurs externes du moteur.

Le moteur ne dépend que de ces contrats étroits: dépôt de contenu, annuaire des nœuds et
transport vers les réseaux distants. Chaque opération reçoit explicitement le nœud visé.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from syncmesh.domain.entities import (
    ContentItem,
    DistributionPayload,
    Node,
    NodeContext,
    RemoteNetwork,
)


@dataclass
class ItemQuery:
    """Filtre de requête sur un nœud (ordre: plus récent d'abord)."""

    type: str | None = None
    statuses: tuple[str, ...] = ("publish",)
    taxonomy: str | None = None
    terms: list[str] = field(default_factory=list)
    after: datetime | None = None
    before: datetime | None = None
    limit: int | None = None
    meta_equals: dict[str, Any] = field(default_factory=dict)


class ContentRepository(ABC):
    """Accès au stockage des éléments d'un nœud."""

    @abstractmethod
    def get_item(self, node_id: int, item_id: int) -> ContentItem | None: ...

    @abstractmethod
    def get_item_metadata(self, node_id: int, item_id: int, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set_item_metadata(self, node_id: int, item_id: int, key: str, value: Any) -> None: ...

    @abstractmethod
    def delete_item_metadata(self, node_id: int, item_id: int, key: str) -> None: ...

    @abstractmethod
    def query_items(self, node_id: int, query: ItemQuery) -> list[ContentItem]: ...

    @abstractmethod
    def insert_item(self, node_id: int, data: dict[str, Any]) -> int: ...

    @abstractmethod
    def update_item(self, node_id: int, item_id: int, data: dict[str, Any]) -> None: ...

    @abstractmethod
    def move_to_trash(self, node_id: int, item_id: int) -> bool: ...

    @abstractmethod
    def delete_item(self, node_id: int, item_id: int) -> bool: ...

    @abstractmethod
    def find_by_name_and_type(
        self, node_id: int, name: str, type: str, language: str | None = None
    ) -> ContentItem | None: ...

    @abstractmethod
    def find_by_meta(self, node_id: int, key: str, value: Any) -> list[ContentItem]: ...


class NodeDirectory(ABC):
    """Annuaire des nœuds du réseau local."""

    @abstractmethod
    def list_nodes(self) -> list[Node]: ...

    @abstractmethod
    def get_network_identity(self) -> str: ...

    def get_node(self, node_id: int) -> Node | None:
        return next((n for n in self.list_nodes() if n.id == int(node_id)), None)

    def context(self, node_id: int) -> NodeContext:
        """Construit le handle d'un nœud (remplace le basculement de contexte global)."""
        node = self.get_node(node_id)
        return NodeContext(
            node_id=int(node_id),
            network_host=self.get_network_identity(),
            base_url=node.base_url if node else "",
        )


class RemoteTransport(ABC):
    """Transport vers les réseaux distants connectés."""

    @abstractmethod
    def networks(self) -> list[RemoteNetwork]: ...

    def get_network(self, host: str) -> RemoteNetwork | None:
        return next((n for n in self.networks() if n.host == host), None)

    def is_active(self, host: str) -> bool:
        network = self.get_network(host)
        return bool(network and network.active)

    @abstractmethod
    def fetch_remote_item(self, host: str, gid: str) -> dict[str, Any] | None:
        """Retourne l'élément racine distant (champs, statut de synchro, connexions)."""

    @abstractmethod
    def push_remote_connection_update(self, host: str, gid: str, payload: dict[str, Any]) -> bool:
        """Demande au réseau distant d'ajouter/retirer une connexion sur sa racine."""

    @abstractmethod
    def push_distribution(
        self, host: str, node_id: int, payload: DistributionPayload
    ) -> dict[str, Any]:
        """Transmet une distribution; retourne l'accusé de réception distant."""
