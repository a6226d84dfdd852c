"""
Routes appelées par les réseaux distants connectés.

Côté réception du transport HTTP: lecture d'une racine par GID (repair distant) et import
d'une distribution sur un de nos nœuds, avec accusé de réception `{ok, results, message}`.
"""

from __future__ import annotations

from dataclasses import asdict

import structlog
from fastapi import APIRouter, HTTPException

from syncmesh.api.schemas import RemoteImportRequest
from syncmesh.core.container import container
from syncmesh.domain.entities import META_CONNECTIONS, SYNC_META_KEYS
from syncmesh.domain.errors import IdentityError, SyncError
from syncmesh.domain.gid import parse_gid

router = APIRouter(prefix="/remote", tags=["remote"])
log = structlog.get_logger(__name__).bind(component="remote_api")


@router.get("/items/{gid}")
def fetch_item(gid: str):
    node_id, item_id, host = parse_gid(gid)
    if host and host != container.ledger.network_host:
        raise IdentityError(f"gid {gid} does not belong to this network", gid=gid)
    item = container.content.get_item(node_id, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return {
        "id": item.id,
        "node_id": item.node_id,
        "name": item.name,
        "type": item.type,
        "status": item.status,
        "title": item.title,
        "sync_status": item.sync_status,
        "sync_id": item.sync_id,
        "connections": item.meta.get(META_CONNECTIONS) or {},
        "meta": {k: v for k, v in item.meta.items() if k not in SYNC_META_KEYS},
    }


@router.post("/import")
def import_distribution(payload: RemoteImportRequest):
    if container.directory.get_node(payload.node_id) is None:
        return {"ok": False, "results": [], "message": f"unknown node {payload.node_id}"}
    ctx = container.context(payload.node_id)
    try:
        results = container.resolver.import_payload(ctx, payload.payload)
    except SyncError as err:
        log.warning("remote_import_failed", gid=payload.payload.gid, kind=err.kind, error=str(err))
        return {"ok": False, "results": [], "message": str(err)}
    return {"ok": True, "results": [asdict(r) for r in results], "message": ""}
