# ============================================================
# Module : syncmesh/infra/repo/review_repo.py
# Objet  : Accès SQL aux revues (états, instantané, messages).
# ============================================================

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from syncmesh.domain.entities import TERMINAL_REVIEW, ReviewMessage, ReviewRecord
from syncmesh.infra.repo.db import session_scope
from syncmesh.infra.repo.distribution_repo import from_db_time, to_db_time
from syncmesh.infra.repo.models import ReviewORM


def _to_domain(row: ReviewORM) -> ReviewRecord:
    return ReviewRecord(
        id=row.id,
        item_id=row.item_id,
        source_node_id=row.source_node_id,
        state=row.state,
        editor=row.editor or "",
        previous_snapshot=row.previous_snapshot,
        messages=[ReviewMessage.model_validate(m) for m in (row.messages or [])],
        created_at=from_db_time(row.created_at),
        updated_at=from_db_time(row.updated_at),
    )


class ReviewRepo:
    """CRUD minimal pour les revues."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._factory = session_factory

    def get(self, review_id: int) -> ReviewRecord | None:
        with session_scope(self._factory) as session:
            row = session.get(ReviewORM, int(review_id))
            return _to_domain(row) if row else None

    def get_active_for_item(self, node_id: int, item_id: int) -> ReviewRecord | None:
        """Dernière revue non terminale de l'élément."""
        stmt = (
            select(ReviewORM)
            .where(ReviewORM.source_node_id == int(node_id))
            .where(ReviewORM.item_id == int(item_id))
            .where(ReviewORM.state.not_in(TERMINAL_REVIEW))
            .order_by(ReviewORM.id.desc())
            .limit(1)
        )
        with session_scope(self._factory) as session:
            row = session.execute(stmt).scalars().first()
            return _to_domain(row) if row else None

    def list_for_item(self, node_id: int, item_id: int) -> list[ReviewRecord]:
        stmt = (
            select(ReviewORM)
            .where(ReviewORM.source_node_id == int(node_id))
            .where(ReviewORM.item_id == int(item_id))
            .order_by(ReviewORM.id)
        )
        with session_scope(self._factory) as session:
            return [_to_domain(r) for r in session.execute(stmt).scalars()]

    def save(self, record: ReviewRecord, now: datetime) -> ReviewRecord:
        """Insère ou met à jour la revue et retourne l'état persisté."""
        messages = [m.model_dump(mode="json") for m in record.messages]
        with session_scope(self._factory) as session:
            row = session.get(ReviewORM, record.id) if record.id else None
            if row is None:
                row = ReviewORM(
                    item_id=record.item_id,
                    source_node_id=record.source_node_id,
                    created_at=to_db_time(record.created_at),
                )
                session.add(row)
            row.state = record.state
            row.editor = record.editor
            row.previous_snapshot = record.previous_snapshot
            row.messages = messages
            row.updated_at = to_db_time(now)
            session.flush()
            return _to_domain(row)
