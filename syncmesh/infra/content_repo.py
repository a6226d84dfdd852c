"""Dépôt de contenus multi-nœuds en mémoire, avec persistance JSON optionnelle.

Implémente l'interface `ContentRepository` du moteur: chaque nœud possède son propre espace
d'identifiants. Si un chemin est fourni, l'état complet est relu au démarrage et réécrit après
chaque mutation.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import UTC
from typing import Any

from syncmesh.domain.entities import ContentItem
from syncmesh.domain.ports import ContentRepository, ItemQuery

_TRASH_PREVIOUS_STATUS = "_trash_previous_status"


def _aware(value):
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class InMemoryContentRepository(ContentRepository):
    """Stockage des éléments indexés par (nœud, identifiant)."""

    def __init__(self, path: str | None = None):
        """Initialise le dépôt.

        Paramètres:
        - path: fichier JSON de persistance (optionnel).
        """
        self.path = path
        self._items: dict[int, dict[int, ContentItem]] = {}
        self._next_id: dict[int, int] = {}
        self._lock = threading.RLock()
        if self.path and os.path.exists(self.path):
            self._load()

    # --- persistance -------------------------------------------------

    def _load(self) -> None:
        with open(self.path, encoding="utf-8") as f:  # type: ignore[arg-type]
            data = json.load(f)
        for node_key, items in data.get("nodes", {}).items():
            node_id = int(node_key)
            bucket = self._items.setdefault(node_id, {})
            for raw in items:
                item = ContentItem.model_validate(raw)
                bucket[item.id] = item
            self._next_id[node_id] = max(bucket, default=0) + 1

    def _flush(self) -> None:
        if not self.path:
            return
        payload = {
            "nodes": {
                str(node_id): [i.model_dump(mode="json") for i in bucket.values()]
                for node_id, bucket in self._items.items()
            }
        }
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    # --- lecture -----------------------------------------------------

    def _bucket(self, node_id: int) -> dict[int, ContentItem]:
        return self._items.setdefault(int(node_id), {})

    def get_item(self, node_id: int, item_id: int) -> ContentItem | None:
        with self._lock:
            item = self._bucket(node_id).get(int(item_id))
            return item.model_copy(deep=True) if item else None

    def get_item_metadata(self, node_id: int, item_id: int, key: str, default: Any = None) -> Any:
        with self._lock:
            item = self._bucket(node_id).get(int(item_id))
            if item is None:
                return default
            value = item.meta.get(key, default)
            return json.loads(json.dumps(value)) if value is not None else value

    def query_items(self, node_id: int, query: ItemQuery) -> list[ContentItem]:
        with self._lock:
            items = [i for i in self._bucket(node_id).values() if self._match(i, query)]
            items.sort(key=lambda i: (_aware(i.date), i.id), reverse=True)
            if query.limit:
                items = items[: query.limit]
            return [i.model_copy(deep=True) for i in items]

    @staticmethod
    def _match(item: ContentItem, query: ItemQuery) -> bool:
        if query.type and item.type != query.type:
            return False
        if query.statuses and item.status not in query.statuses:
            return False
        if query.taxonomy:
            assigned = set(item.taxonomies.get(query.taxonomy, []))
            if query.terms and not assigned.intersection(query.terms):
                return False
            if not query.terms and not assigned:
                return False
        published = _aware(item.date)
        if query.after and published < query.after:
            return False
        if query.before and published > query.before:
            return False
        return all(item.meta.get(k) == v for k, v in query.meta_equals.items())

    def find_by_name_and_type(
        self, node_id: int, name: str, type: str, language: str | None = None
    ) -> ContentItem | None:
        with self._lock:
            for item in sorted(self._bucket(node_id).values(), key=lambda i: i.id):
                if item.name != name or item.type != type or item.status == "trash":
                    continue
                if language and item.language and item.language != language:
                    continue
                return item.model_copy(deep=True)
        return None

    def find_by_meta(self, node_id: int, key: str, value: Any) -> list[ContentItem]:
        with self._lock:
            return [
                i.model_copy(deep=True)
                for i in sorted(self._bucket(node_id).values(), key=lambda i: i.id)
                if i.meta.get(key) == value
            ]

    # --- écriture ----------------------------------------------------

    def set_item_metadata(self, node_id: int, item_id: int, key: str, value: Any) -> None:
        with self._lock:
            item = self._require(node_id, item_id)
            item.meta[key] = value
            self._flush()

    def delete_item_metadata(self, node_id: int, item_id: int, key: str) -> None:
        with self._lock:
            item = self._bucket(node_id).get(int(item_id))
            if item is not None and key in item.meta:
                del item.meta[key]
                self._flush()

    def insert_item(self, node_id: int, data: dict[str, Any]) -> int:
        with self._lock:
            node_id = int(node_id)
            bucket = self._bucket(node_id)
            item_id = int(data.get("id") or self._next_id.get(node_id, max(bucket, default=0) + 1))
            if item_id in bucket:
                raise ValueError(f"item {item_id} already exists on node {node_id}")
            fields = {k: v for k, v in data.items() if k not in ("id", "node_id")}
            bucket[item_id] = ContentItem(id=item_id, node_id=node_id, **fields)
            self._next_id[node_id] = max(item_id, self._next_id.get(node_id, 0) - 1) + 1
            self._flush()
            return item_id

    def update_item(self, node_id: int, item_id: int, data: dict[str, Any]) -> None:
        with self._lock:
            item = self._require(node_id, item_id)
            fields = {k: v for k, v in data.items() if k not in ("id", "node_id")}
            meta = fields.pop("meta", None)
            merged = {**item.model_dump(), **fields}
            if meta is not None:
                merged["meta"] = {**item.meta, **meta}
            self._bucket(node_id)[int(item_id)] = ContentItem.model_validate(merged)
            self._flush()

    def move_to_trash(self, node_id: int, item_id: int) -> bool:
        with self._lock:
            item = self._bucket(node_id).get(int(item_id))
            if item is None:
                return False
            if item.status != "trash":
                item.meta[_TRASH_PREVIOUS_STATUS] = item.status
                item.status = "trash"
                self._flush()
            return True

    def restore_from_trash(self, node_id: int, item_id: int) -> bool:
        with self._lock:
            item = self._bucket(node_id).get(int(item_id))
            if item is None or item.status != "trash":
                return False
            item.status = item.meta.pop(_TRASH_PREVIOUS_STATUS, None) or "draft"
            self._flush()
            return True

    def delete_item(self, node_id: int, item_id: int) -> bool:
        with self._lock:
            removed = self._bucket(node_id).pop(int(item_id), None)
            if removed is not None:
                self._flush()
            return removed is not None

    def _require(self, node_id: int, item_id: int) -> ContentItem:
        item = self._bucket(node_id).get(int(item_id))
        if item is None:
            raise KeyError(f"item {item_id} not found on node {node_id}")
        return item
