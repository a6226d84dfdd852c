"""Annuaire statique des nœuds locaux et des réseaux distants.

Les deux listes proviennent des paramètres:
- SYNC_NODES:   "1=https://a.example,2=https://a.example/fr"
- SYNC_REMOTES: "b.example=https://b.example,c.example=https://c.example;inactive"
"""

from __future__ import annotations

from syncmesh.domain.entities import Node, RemoteNetwork
from syncmesh.domain.gid import nice_url
from syncmesh.domain.ports import NodeDirectory


def parse_nodes(raw: str | None) -> list[Node]:
    nodes: list[Node] = []
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        node_id, _, base_url = chunk.partition("=")
        nodes.append(Node(id=int(node_id.strip()), base_url=base_url.strip()))
    return nodes


def parse_remotes(raw: str | None) -> list[RemoteNetwork]:
    remotes: list[RemoteNetwork] = []
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        chunk, _, flag = chunk.partition(";")
        host, _, base_url = chunk.partition("=")
        remotes.append(
            RemoteNetwork(
                host=nice_url(host),
                base_url=(base_url.strip() or f"https://{nice_url(host)}"),
                active=flag.strip().lower() != "inactive",
            )
        )
    return remotes


class StaticNodeDirectory(NodeDirectory):
    """Annuaire figé à la construction."""

    def __init__(self, nodes: list[Node], network_host: str) -> None:
        self._nodes = sorted(nodes, key=lambda n: n.id)
        self._host = nice_url(network_host)

    def list_nodes(self) -> list[Node]:
        return list(self._nodes)

    def get_network_identity(self) -> str:
        return self._host
