"""
Résolution des conflits à l'import sur un nœud destination.

Pour chaque élément reçu, exactement une issue est produite:
- `link_updated`: copie liée créée ou mise à jour (insert sans conflit, `replace`)
- `link_skipped`: l'élément existant est laissé tel quel, aucun lien (`skip`)
- `created_unlinked`: nouvel élément local indépendant (`keep`)

Les actions `trash` et `delete` agissent sur la copie liée existante et n'insèrent rien.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from syncmesh.domain.entities import (
    META_CONNECTIONS,
    META_SYNC_ID,
    META_SYNC_STATUS,
    DestinationKey,
    DistributionPayload,
    ExportedItem,
    NodeContext,
)
from syncmesh.domain.errors import ConflictPolicyError
from syncmesh.domain.ledger import ConnectionLedger
from syncmesh.domain.ports import ContentRepository

log = structlog.get_logger(__name__).bind(component="conflicts")

POLICIES = ("replace", "skip", "keep")


@dataclass
class ImportResult:
    source_id: int
    outcome: str
    local_id: int | None = None
    inserted: bool = False
    message: str = ""


class ConflictResolver:
    """Place les éléments distribués sur un nœud selon la politique choisie."""

    def __init__(self, content: ContentRepository, ledger: ConnectionLedger) -> None:
        self.content = content
        self.ledger = ledger

    def find_existing(self, ctx: NodeContext, item_name: str, item_type: str,
                      language: str | None = None):
        """Élément local de même nom et type (langue optionnelle)."""
        return self.content.find_by_name_and_type(ctx.node_id, item_name, item_type, language)

    def find_linked_copy(self, ctx: NodeContext, gid: str):
        """Copie liée à `gid` sur le nœud (hors racine elle-même)."""
        for item in self.content.find_by_meta(ctx.node_id, META_SYNC_ID, gid):
            if item.sync_status == "linked":
                return item
        return None

    def check_import(self, ctx: NodeContext, items: list[ExportedItem]) -> list[dict]:
        """Liste les conflits qu'un import rencontrerait (pour l'interface)."""
        conflicts = []
        for exported in items:
            if exported.gid and self.find_linked_copy(ctx, exported.gid):
                continue
            existing = self.find_existing(ctx, exported.name, exported.type, exported.language)
            if existing is not None:
                conflicts.append(
                    {
                        "source_id": exported.source_id,
                        "existing_id": existing.id,
                        "name": existing.name,
                        "type": existing.type,
                        "title": existing.title,
                        "status": existing.status,
                    }
                )
        return conflicts

    @staticmethod
    def _fields(exported: ExportedItem, action: str) -> dict:
        fields = exported.model_dump(exclude={"gid", "source_id"})
        if action == "draft":
            fields["status"] = "draft"
        return fields

    def _link(self, ctx: NodeContext, gid: str, local_id: int) -> None:
        self.content.set_item_metadata(ctx.node_id, local_id, META_SYNC_STATUS, "linked")
        self.content.set_item_metadata(ctx.node_id, local_id, META_SYNC_ID, gid)
        self.content.delete_item_metadata(ctx.node_id, local_id, META_CONNECTIONS)
        self.ledger.connect_local_copy(gid, ctx, local_id)

    def import_item(self, ctx: NodeContext, exported: ExportedItem, policy: str | None,
                    action: str = "insert") -> ImportResult:
        """Importe un élément; lève `ConflictPolicyError` si un conflit n'a pas de politique."""
        gid = exported.gid
        fields = self._fields(exported, action)

        if gid:
            linked = self.find_linked_copy(ctx, gid)
            if linked is not None:
                self.content.update_item(ctx.node_id, linked.id, fields)
                self._link(ctx, gid, linked.id)
                return ImportResult(exported.source_id, "link_updated", linked.id)

        existing = self.find_existing(ctx, exported.name, exported.type, exported.language)
        if existing is not None:
            if policy not in POLICIES:
                raise ConflictPolicyError(
                    f"'{exported.name}' ({exported.type}) already exists on node {ctx.node_id}",
                    existing_id=existing.id,
                )
            if policy == "skip":
                return ImportResult(
                    exported.source_id, "link_skipped", existing.id, message="kept existing item"
                )
            if policy == "replace":
                self.content.update_item(ctx.node_id, existing.id, fields)
                if gid:
                    self._link(ctx, gid, existing.id)
                return ImportResult(exported.source_id, "link_updated", existing.id)
            # keep: nouvel élément indépendant, jamais lié
            local_id = self.content.insert_item(ctx.node_id, fields)
            return ImportResult(exported.source_id, "created_unlinked", local_id, inserted=True)

        local_id = self.content.insert_item(ctx.node_id, fields)
        if gid:
            self._link(ctx, gid, local_id)
            return ImportResult(exported.source_id, "link_updated", local_id, inserted=True)
        return ImportResult(exported.source_id, "created_unlinked", local_id, inserted=True)

    def remove_copy(self, ctx: NodeContext, gid: str, action: str) -> ImportResult:
        """Applique `trash`/`delete` à la copie liée et retire l'entrée du ledger."""
        linked = self.find_linked_copy(ctx, gid)
        dest = DestinationKey(ctx.node_id)
        if linked is None:
            self.ledger.remove_connection(gid, dest)
            return ImportResult(0, "none", message="no linked copy on destination")
        if action == "delete":
            self.content.delete_item(ctx.node_id, linked.id)
            outcome = "deleted"
        else:
            self.content.move_to_trash(ctx.node_id, linked.id)
            outcome = "trashed"
        self.ledger.remove_connection(gid, dest)
        return ImportResult(linked.id, outcome, linked.id)

    def import_payload(self, ctx: NodeContext, payload: DistributionPayload) -> list[ImportResult]:
        """Importe la racine puis ses dépendances avec la même politique."""
        if payload.action in ("trash", "delete"):
            return [self.remove_copy(ctx, payload.gid, payload.action)]
        results = []
        for exported in payload.items:
            result = self.import_item(ctx, exported, payload.conflict_policy, payload.action)
            log.info("item_imported", node_id=ctx.node_id, gid=exported.gid or None,
                     outcome=result.outcome, local_id=result.local_id)
            results.append(result)
        return results
