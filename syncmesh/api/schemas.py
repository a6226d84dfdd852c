# Schémas Pydantic exposés par l'API (requêtes et réponses).

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from syncmesh.domain.entities import ConnectionRecord, DistributionPayload


class EnqueueRequest(BaseModel):
    """Demande de distribution d'une racine.

    Champs:
    - root_gid: GID de la racine (réseau local)
    - destination_ids: ids de destination ("2" ou "2|remote.example")
    - action: action par défaut (insert/draft/trash/delete)
    - actions: action par destination
    - conflict_policy: politique par défaut (replace/skip/keep)
    - policies: politique par destination
    """

    root_gid: str
    destination_ids: list[str]
    action: Literal["insert", "draft", "trash", "delete"] = "insert"
    actions: dict[str, Literal["insert", "draft", "trash", "delete"]] = Field(default_factory=dict)
    conflict_policy: Literal["replace", "skip", "keep"] | None = None
    policies: dict[str, Literal["replace", "skip", "keep"]] = Field(default_factory=dict)


class DistributionItemOut(BaseModel):
    id: int
    root_gid: str
    destination_id: str
    status: str
    action: str
    conflict_policy: str | None = None
    attempts: int = 0
    enqueued_at: datetime
    updated_at: datetime
    last_error: str | None = None
    origin: str


class BatchRequest(BaseModel):
    item_ids: list[int]
    start_at: int = 0


class BatchResponse(BaseModel):
    summary: str
    succeeded: int
    failed: int
    paused: bool
    next_index: int | None = None
    results: list[dict[str, Any]] = Field(default_factory=list)


class LedgerResponse(BaseModel):
    gid: str
    destinations: list[str]
    connections: dict[str, Any]


class ConnectionUpdate(BaseModel):
    """Rappel d'un réseau distant: ajout/retrait de sa copie sur notre racine."""

    add: bool
    node_id: int
    host: str = ""
    record: ConnectionRecord | None = None


class ReviewAction(BaseModel):
    message: str = ""
    reviewer: str = ""


class RepairReportOut(BaseModel):
    node_id: int
    item_id: int
    kind: str
    message: str
    suggestion: str
    log: list[str]
    repaired: bool


class RemoteImportRequest(BaseModel):
    node_id: int
    payload: DistributionPayload
