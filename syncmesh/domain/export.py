"""Sérialisation d'un élément racine et de ses dépendances pour la distribution."""

from __future__ import annotations

from syncmesh.domain.entities import (
    SYNC_META_KEYS,
    ContentItem,
    DistributionPayload,
    ExportedItem,
)
from syncmesh.domain.gid import make_gid, parse_gid
from syncmesh.domain.ports import ContentRepository


def export_item(item: ContentItem, gid: str = "") -> ExportedItem:
    """Forme transmise d'un élément (sans métadonnées de synchronisation)."""
    meta = {k: v for k, v in item.meta.items() if k not in SYNC_META_KEYS and not k.startswith("_")}
    return ExportedItem(
        gid=gid,
        source_id=item.id,
        name=item.name,
        type=item.type,
        status=item.status,
        title=item.title,
        body=item.body,
        language=item.language,
        date=item.date,
        taxonomies={k: list(v) for k, v in item.taxonomies.items()},
        meta=meta,
    )


def build_payload(content: ContentRepository, root: ContentItem, gid: str, *,
                  action: str = "insert", conflict_policy: str | None = None,
                  origin_host: str = "") -> DistributionPayload:
    """Racine en tête, puis chaque dépendance existante (une seule fois).

    Les dépendances qui sont elles-mêmes racines gardent leur GID (avec le même segment
    hôte que `gid`), les autres sont transmises sans lien.
    """
    _, _, host = parse_gid(gid)
    items = [export_item(root, gid)]
    seen = {root.id}
    for dep_id in root.dependencies:
        if dep_id in seen:
            continue
        seen.add(dep_id)
        dependent = content.get_item(root.node_id, dep_id)
        if dependent is None or dependent.status == "trash":
            continue
        dep_gid = ""
        if dependent.sync_status == "root":
            dep_gid = make_gid(root.node_id, dependent.id, host)
        items.append(export_item(dependent, dep_gid))
    return DistributionPayload(
        gid=gid,
        items=items,
        action=action,
        conflict_policy=conflict_policy,
        origin_host=origin_host,
    )


def item_from_snapshot(snapshot: dict) -> ContentItem:
    return ContentItem.model_validate(snapshot)


def snapshot_of(item: ContentItem) -> dict:
    return item.model_dump(mode="json")
