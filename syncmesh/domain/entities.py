"""
Entités du domaine de synchronisation.

Ce module définit les modèles de données partagés par le moteur: éléments de contenu,
enregistrements de connexion, clusters, conditions, éléments de distribution et revues.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

SyncStatus = Literal["none", "root", "linked"]
DistributionStatus = Literal["init", "started", "completed", "failed"]
ImportAction = Literal["insert", "draft", "trash", "delete"]
ConflictPolicy = Literal["replace", "skip", "keep"]
ReviewState = Literal["new", "in_review", "approved", "denied", "reverted"]

# Clés de métadonnées portées par chaque élément
META_SYNC_STATUS = "sync_status"
META_SYNC_ID = "sync_id"
META_CONNECTIONS = "sync_connections"
SYNC_META_KEYS = (META_SYNC_STATUS, META_SYNC_ID, META_CONNECTIONS)

TERMINAL_DISTRIBUTION = ("completed", "failed")
TERMINAL_REVIEW = ("approved", "reverted")


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class NodeContext:
    """Handle explicite du nœud sur lequel une opération agit."""

    node_id: int
    network_host: str
    base_url: str = ""


@dataclass(frozen=True)
class Node:
    id: int
    base_url: str


@dataclass(frozen=True)
class RemoteNetwork:
    """Réseau distant connecté (hôte normalisé, URL d'API, santé)."""

    host: str
    base_url: str
    active: bool = True


@dataclass(frozen=True)
class DestinationKey:
    """Clé de destination: nœud local, ou nœud d'un réseau distant."""

    node_id: int
    host: str = ""

    @property
    def is_remote(self) -> bool:
        return bool(self.host)

    def as_id(self) -> str:
        return f"{self.node_id}|{self.host}" if self.host else str(self.node_id)

    @classmethod
    def parse(cls, destination_id: str | int) -> DestinationKey:
        raw = str(destination_id).strip()
        node, _, host = raw.partition("|")
        return cls(node_id=int(node), host=host)


class ContentItem(BaseModel):
    """Élément de contenu local à un nœud."""

    id: int
    node_id: int
    type: str = "post"
    status: str = "publish"
    name: str = ""
    title: str = ""
    body: str = ""
    language: str | None = None
    date: datetime = Field(default_factory=utcnow)
    taxonomies: dict[str, list[str]] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[int] = Field(default_factory=list)

    @property
    def sync_status(self) -> str:
        return self.meta.get(META_SYNC_STATUS) or "none"

    @property
    def sync_id(self) -> str:
        return self.meta.get(META_SYNC_ID) or ""


class ConnectionRecord(BaseModel):
    """Copie liée connue du ledger (identifiant local et localisateurs)."""

    item_id: int
    edit_locator: str = ""
    view_locator: str = ""
    display_locator: str = ""


class ExportedItem(BaseModel):
    """Forme sérialisée d'un élément transmis à une destination."""

    gid: str = ""
    source_id: int
    name: str
    type: str
    status: str = "publish"
    title: str = ""
    body: str = ""
    language: str | None = None
    date: datetime = Field(default_factory=utcnow)
    taxonomies: dict[str, list[str]] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)


class DistributionPayload(BaseModel):
    """Racine sérialisée (premier élément) suivie de ses dépendances."""

    gid: str
    items: list[ExportedItem]
    action: ImportAction = "insert"
    conflict_policy: ConflictPolicy | None = None
    origin_host: str = ""


class DateWindow(BaseModel):
    """Fenêtre de dates d'une condition.

    - static: éléments publiés après `after`
    - static_range: éléments publiés entre `after` et `before` (inclus)
    - dynamic: éléments des `since_value` derniers jours/mois/années
    """

    mode: Literal["static", "static_range", "dynamic"]
    after: date | None = None
    before: date | None = None
    since_value: int = 0
    since_unit: Literal["days", "months", "years"] = "days"


class ContentCondition(BaseModel):
    id: int | None = None
    cluster_id: int | None = None
    source_node_id: int
    content_type: str = "post"
    taxonomy: str | None = None
    terms: list[str] = Field(default_factory=list)
    count_limit: int | None = None
    date_window: DateWindow | None = None
    auto_promote_to_root: bool = False

    @property
    def is_count_limited(self) -> bool:
        return bool(self.count_limit and self.count_limit > 0)

    @property
    def is_windowed(self) -> bool:
        return self.is_count_limited or self.date_window is not None


class Cluster(BaseModel):
    id: int | None = None
    title: str = ""
    destination_ids: list[str] = Field(default_factory=list)
    review_enabled: bool = False
    reviewer_ids: list[str] = Field(default_factory=list)
    content_conditions: list[ContentCondition] = Field(default_factory=list)


class DistributionItem(BaseModel):
    """Unité de travail (racine, destination) mise en file."""

    id: int | None = None
    root_gid: str
    destination_id: str
    status: DistributionStatus = "init"
    action: ImportAction = "insert"
    conflict_policy: ConflictPolicy | None = None
    attempts: int = 0  # exécutions en échec
    enqueued_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_error: str | None = None
    origin: str = "manual"


class ReviewMessage(BaseModel):
    action: Literal["approved", "denied", "reverted", "comment"]
    content: str = ""
    author: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class ReviewRecord(BaseModel):
    id: int | None = None
    item_id: int
    source_node_id: int
    state: ReviewState = "new"
    editor: str = ""
    previous_snapshot: dict[str, Any] | None = None
    messages: list[ReviewMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.state not in TERMINAL_REVIEW
