"""
Revue des modifications avant distribution.

États: new -> in_review -> approved | (refus: retour à in_review) ; toute revue active peut
être annulée (reverted). `approved` et `reverted` sont terminaux.

Tant qu'une revue active existe pour un élément, c'est l'instantané précédent (et non l'état
courant) qui est distribué: les modifications en attente restent invisibles aux destinations.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from syncmesh.app.metrics import REVIEW_TRANSITIONS_TOTAL
from syncmesh.domain.entities import (
    SYNC_META_KEYS,
    ContentItem,
    NodeContext,
    ReviewMessage,
    ReviewRecord,
)
from syncmesh.domain.errors import SyncError
from syncmesh.domain.export import item_from_snapshot, snapshot_of

log = structlog.get_logger(__name__).bind(component="review")

# statuts pour lesquels l'élément n'existait pas encore avant la modification
_NEVER_EXISTED = ("auto-draft", "new")


@dataclass
class ReviewResult:
    ok: bool
    message: str
    record: ReviewRecord | None = None


class ReviewGate:
    """Machine à états des revues, adossée à un dépôt de revues."""

    def __init__(self, reviews, content, ledger, release: Callable | None = None,
                 clock: Callable[[], datetime] | None = None) -> None:
        self.reviews = reviews
        self.content = content
        self.ledger = ledger
        # callback (node_id, item_id) -> None qui confie l'état courant au distributeur
        self.release = release
        self.clock = clock or (lambda: datetime.now(UTC))

    def _was_distributed(self, item: ContentItem) -> bool:
        if item.sync_status != "root" or not item.sync_id:
            return False
        try:
            return not self.ledger.read(item.sync_id).is_empty
        except SyncError:
            return False

    def get_active(self, ctx: NodeContext, item_id: int) -> ReviewRecord | None:
        return self.reviews.get_active_for_item(ctx.node_id, item_id)

    def create_review(self, ctx: NodeContext, item: ContentItem,
                      previous_snapshot: dict | None, editor: str = "") -> ReviewRecord:
        """Crée la revue, ou met à jour en place la revue active existante."""
        now = self.clock()
        existing = self.get_active(ctx, item.id)
        if existing is not None:
            existing.state = "new" if existing.state == "new" else "in_review"
            existing.editor = editor or existing.editor
            record = self.reviews.save(existing, now)
        else:
            record = ReviewRecord(
                item_id=item.id,
                source_node_id=ctx.node_id,
                state="in_review" if self._was_distributed(item) else "new",
                editor=editor,
                previous_snapshot=previous_snapshot,
                created_at=now,
            )
            record = self.reviews.save(record, now)
        REVIEW_TRANSITIONS_TOTAL.labels(state=record.state).inc()
        log.info("review_recorded", review_id=record.id, item_id=item.id, state=record.state)
        return record

    def snapshot_for_distribution(self, ctx: NodeContext, item: ContentItem) -> ContentItem | None:
        """État à distribuer: instantané précédent si une revue est active.

        Retourne None si l'élément n'existait pas avant la modification en attente.
        """
        record = self.get_active(ctx, item.id)
        if record is None:
            return item
        snapshot = record.previous_snapshot
        if not snapshot or snapshot.get("status") in _NEVER_EXISTED:
            return None
        held = item_from_snapshot(snapshot)
        # la synchro (statut, GID, ledger) reste celle de l'élément courant
        held.meta = {
            **{k: v for k, v in held.meta.items() if k not in SYNC_META_KEYS},
            **{k: v for k, v in item.meta.items() if k in SYNC_META_KEYS},
        }
        return held

    def _load_active(self, review_id: int) -> tuple[ReviewRecord | None, str]:
        record = self.reviews.get(review_id)
        if record is None:
            return None, f"review {review_id} not found"
        if not record.is_active:
            return None, f"review {review_id} is already {record.state}"
        return record, ""

    def _transition(self, record: ReviewRecord, state: str, action: str,
                    message: str, author: str) -> ReviewRecord:
        now = self.clock()
        record.state = state
        record.messages.append(
            ReviewMessage(action=action, content=message, author=author, timestamp=now)
        )
        saved = self.reviews.save(record, now)
        REVIEW_TRANSITIONS_TOTAL.labels(state=action).inc()
        log.info("review_transition", review_id=saved.id, item_id=saved.item_id, action=action)
        return saved

    def approve(self, review_id: int, reviewer: str = "", message: str = "") -> ReviewResult:
        """Approuve et libère l'état courant vers le distributeur (terminal)."""
        record, error = self._load_active(review_id)
        if record is None:
            return ReviewResult(False, error)
        previous_state = record.state
        approved = self._transition(record, "approved", "approved", message, reviewer)
        if self.release is not None:
            try:
                self.release(record.source_node_id, record.item_id)
            except SyncError as err:
                approved.state = previous_state
                approved.messages.pop()
                restored = self.reviews.save(approved, self.clock())
                log.warning("review_approve_failed", review_id=review_id, error=str(err))
                return ReviewResult(False, f"distribution failed: {err}", restored)
        return ReviewResult(True, "Review approved and changes distributed.", approved)

    def deny(self, review_id: int, message: str, reviewer: str = "") -> ReviewResult:
        """Refuse: l'instantané précédent reste la référence distribuée."""
        record, error = self._load_active(review_id)
        if record is None:
            return ReviewResult(False, error)
        denied = self._transition(record, "in_review", "denied", message, reviewer)
        return ReviewResult(True, "Review denied.", denied)

    def revert(self, review_id: int, message: str = "", reviewer: str = "") -> ReviewResult:
        """Restaure l'instantané sur l'élément courant puis redistribue (terminal)."""
        record, error = self._load_active(review_id)
        if record is None:
            return ReviewResult(False, error)
        node_id, item_id = record.source_node_id, record.item_id
        snapshot = record.previous_snapshot
        if self.content.get_item(node_id, item_id) is None:
            return ReviewResult(False, f"item {item_id} no longer exists on node {node_id}")

        if not snapshot or snapshot.get("status") in _NEVER_EXISTED:
            self.content.move_to_trash(node_id, item_id)
        else:
            fields = {k: v for k, v in snapshot.items() if k not in ("id", "node_id", "meta")}
            fields["meta"] = {
                k: v for k, v in (snapshot.get("meta") or {}).items() if k not in SYNC_META_KEYS
            }
            self.content.update_item(node_id, item_id, fields)

        reverted = self._transition(record, "reverted", "reverted", message, reviewer)
        if self.release is not None:
            try:
                self.release(node_id, item_id)
            except SyncError as err:
                log.warning("review_revert_distribution_failed", review_id=review_id,
                            error=str(err))
                return ReviewResult(False, f"reverted, but distribution failed: {err}", reverted)
        return ReviewResult(True, "Review reverted.", reverted)

    def comment(self, review_id: int, message: str, author: str = "") -> ReviewResult:
        record = self.reviews.get(review_id)
        if record is None:
            return ReviewResult(False, f"review {review_id} not found")
        record.messages.append(
            ReviewMessage(action="comment", content=message, author=author, timestamp=self.clock())
        )
        return ReviewResult(True, "Comment added.", self.reviews.save(record, self.clock()))


def take_snapshot(item: ContentItem | None) -> dict | None:
    """Instantané pré-modification (None si l'élément n'existait pas)."""
    return snapshot_of(item) if item is not None else None
