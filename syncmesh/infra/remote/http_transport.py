"""Transport HTTP vers les réseaux distants connectés.

Chaque réseau distant expose l'API syncmesh (`/remote/items/{gid}`, `/remote/import`,
`/connections/{gid}`). Tous les appels portent un timeout borné: au-delà, l'appel échoue avec
une `DistributionError` "timeout" que le distributeur enregistre sur l'élément.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
import structlog

from syncmesh.app.metrics import REMOTE_CALLS_TOTAL
from syncmesh.domain.entities import DistributionPayload, RemoteNetwork
from syncmesh.domain.errors import DistributionError, RemoteConnectionError
from syncmesh.domain.ports import RemoteTransport

log = structlog.get_logger(__name__).bind(component="remote_transport")


class HttpRemoteTransport(RemoteTransport):
    """Client httpx partagé pour tous les réseaux distants."""

    def __init__(self, remotes: list[RemoteNetwork], timeout_s: float = 10.0,
                 client: httpx.Client | None = None, origin_host: str = "") -> None:
        self._remotes = {r.host: r for r in remotes}
        self.origin_host = origin_host
        if client is None:
            timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 5.0))
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
            client = httpx.Client(timeout=timeout, limits=limits)
        self._client = client

    def networks(self) -> list[RemoteNetwork]:
        return list(self._remotes.values())

    def _url(self, host: str, path: str) -> str:
        network = self._remotes.get(host)
        if network is None:
            raise RemoteConnectionError(f"unknown remote network {host}", host=host)
        if not network.active:
            raise RemoteConnectionError(f"remote network {host} is inactive", host=host)
        return network.base_url.rstrip("/") + path

    def _request(self, method: str, host: str, path: str, op: str, **kwargs) -> httpx.Response:
        url = self._url(host, path)
        headers = {"X-Sync-Origin": self.origin_host} if self.origin_host else {}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as err:
            REMOTE_CALLS_TOTAL.labels(op=op, result="timeout").inc()
            log.warning("remote_timeout", host=host, op=op)
            raise DistributionError(f"timeout calling {host}", host=host) from err
        except httpx.HTTPError as err:
            REMOTE_CALLS_TOTAL.labels(op=op, result="unreachable").inc()
            log.warning("remote_unreachable", host=host, op=op, error=type(err).__name__)
            raise RemoteConnectionError(f"remote network {host} unreachable", host=host) from err
        REMOTE_CALLS_TOTAL.labels(op=op, result=str(response.status_code)).inc()
        return response

    def fetch_remote_item(self, host: str, gid: str) -> dict[str, Any] | None:
        response = self._request("GET", host, f"/remote/items/{quote(gid, safe='')}", "fetch")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def push_remote_connection_update(self, host: str, gid: str, payload: dict[str, Any]) -> bool:
        response = self._request(
            "POST", host, f"/connections/{quote(gid, safe='')}", "connection", json=payload
        )
        return response.status_code < 300

    def push_distribution(
        self, host: str, node_id: int, payload: DistributionPayload
    ) -> dict[str, Any]:
        body = {"node_id": int(node_id), "payload": payload.model_dump(mode="json")}
        response = self._request("POST", host, "/remote/import", "distribute", json=body)
        if response.status_code >= 400:
            raise DistributionError(
                f"remote import failed with HTTP {response.status_code}", host=host
            )
        return response.json()
