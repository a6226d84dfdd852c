"""Routes du ledger de connexions.

- lecture du ledger normalisé d'une racine locale
- rappel d'un réseau distant qui ajoute ou retire sa copie sur une de nos racines
"""

from __future__ import annotations

from fastapi import APIRouter

from syncmesh.api.envelope import envelope_response
from syncmesh.api.schemas import ConnectionUpdate, LedgerResponse
from syncmesh.core.container import container
from syncmesh.domain.entities import DestinationKey
from syncmesh.domain.gid import nice_url
from syncmesh.domain.ledger import to_destination_ids

router = APIRouter(prefix="/connections", tags=["connections"])


@router.get("/{gid}", response_model=LedgerResponse)
def read_ledger(gid: str):
    ledger = container.ledger.read(gid)
    return LedgerResponse(gid=gid, destinations=to_destination_ids(ledger),
                          connections=ledger.to_raw())


@router.post("/{gid}")
def update_connection(gid: str, payload: ConnectionUpdate):
    host = nice_url(payload.host)
    if host == container.ledger.network_host:
        host = ""
    dest = DestinationKey(payload.node_id, host)
    if payload.add:
        if payload.record is None:
            return envelope_response(False, "record is required to add a connection")
        container.ledger.add_connection(gid, dest, payload.record)
        return envelope_response(True, f"connection {dest.as_id()} added")
    container.ledger.remove_connection(gid, dest)
    return envelope_response(True, f"connection {dest.as_id()} removed")
