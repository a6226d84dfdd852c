# ============================================================
# Module : syncmesh/infra/repo/distribution_repo.py
# Objet  : Accès SQL aux éléments de distribution (file + états).
# ============================================================

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from syncmesh.domain.entities import TERMINAL_DISTRIBUTION, DistributionItem
from syncmesh.infra.repo.db import session_scope
from syncmesh.infra.repo.models import DistributionItemORM


def to_db_time(value: datetime) -> datetime:
    """UTC naïf (les dates sont stockées sans fuseau)."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def from_db_time(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(UTC)
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_domain(row: DistributionItemORM) -> DistributionItem:
    return DistributionItem(
        id=row.id,
        root_gid=row.root_gid,
        destination_id=row.destination_id,
        status=row.status,
        action=row.action,
        conflict_policy=row.conflict_policy,
        attempts=row.attempts or 0,
        enqueued_at=from_db_time(row.enqueued_at),
        updated_at=from_db_time(row.updated_at),
        last_error=row.last_error,
        origin=row.origin,
    )


class DistributionRepo:
    """CRUD et transitions d'état des éléments de distribution."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._factory = session_factory

    @property
    def session_factory(self) -> sessionmaker:
        return self._factory

    def add_in(self, session: Session, item: DistributionItem) -> DistributionItem:
        """Insère dans une session existante (flush pour obtenir l'id)."""
        row = DistributionItemORM(
            root_gid=item.root_gid,
            destination_id=item.destination_id,
            status=item.status,
            action=item.action,
            conflict_policy=item.conflict_policy,
            attempts=item.attempts,
            enqueued_at=to_db_time(item.enqueued_at),
            updated_at=to_db_time(item.updated_at),
            last_error=item.last_error,
            origin=item.origin,
        )
        session.add(row)
        session.flush()
        return _to_domain(row)

    def add(self, item: DistributionItem) -> DistributionItem:
        with session_scope(self._factory) as session:
            return self.add_in(session, item)

    def get(self, item_id: int) -> DistributionItem | None:
        with session_scope(self._factory) as session:
            row = session.get(DistributionItemORM, int(item_id))
            return _to_domain(row) if row else None

    def claim(self, item_id: int, now: datetime) -> bool:
        """Passe l'élément en `started` s'il est `init` ou `failed` (compare-and-set)."""
        stmt = (
            update(DistributionItemORM)
            .where(DistributionItemORM.id == int(item_id))
            .where(DistributionItemORM.status.in_(("init", "failed")))
            .values(status="started", updated_at=to_db_time(now))
        )
        with session_scope(self._factory) as session:
            return session.execute(stmt).rowcount == 1

    def finish(self, item_id: int, status: str, now: datetime, error: str | None = None) -> None:
        """Termine une exécution; `attempts` compte les échecs."""
        values: dict[str, Any] = {"status": status, "last_error": error,
                                  "updated_at": to_db_time(now)}
        if status == "failed":
            values["attempts"] = DistributionItemORM.attempts + 1
        stmt = (
            update(DistributionItemORM)
            .where(DistributionItemORM.id == int(item_id))
            .values(**values)
        )
        with session_scope(self._factory) as session:
            session.execute(stmt)

    def requeue(self, item_id: int, now: datetime) -> bool:
        """`failed` (ou bloqué) -> `init`; False si l'élément est terminé avec succès."""
        stmt = (
            update(DistributionItemORM)
            .where(DistributionItemORM.id == int(item_id))
            .where(DistributionItemORM.status != "completed")
            .values(status="init", updated_at=to_db_time(now))
        )
        with session_scope(self._factory) as session:
            return session.execute(stmt).rowcount == 1

    def list_items(self, status: str | None = None, root_gid: str | None = None,
                   limit: int = 200) -> list[DistributionItem]:
        stmt = select(DistributionItemORM)
        if status:
            stmt = stmt.where(DistributionItemORM.status == status)
        if root_gid:
            stmt = stmt.where(DistributionItemORM.root_gid == root_gid)
        stmt = stmt.order_by(DistributionItemORM.id.desc()).limit(limit)
        with session_scope(self._factory) as session:
            return [_to_domain(r) for r in session.execute(stmt).scalars()]

    def stuck(self, cutoff: datetime) -> list[DistributionItem]:
        """Éléments `init`/`started` non modifiés depuis `cutoff`."""
        stmt = (
            select(DistributionItemORM)
            .where(DistributionItemORM.status.in_(("init", "started")))
            .where(DistributionItemORM.updated_at < to_db_time(cutoff))
            .order_by(DistributionItemORM.id)
        )
        with session_scope(self._factory) as session:
            return [_to_domain(r) for r in session.execute(stmt).scalars()]

    def delete_terminal_before(self, cutoff: datetime) -> int:
        stmt = (
            delete(DistributionItemORM)
            .where(DistributionItemORM.status.in_(TERMINAL_DISTRIBUTION))
            .where(DistributionItemORM.updated_at < to_db_time(cutoff))
        )
        with session_scope(self._factory) as session:
            return session.execute(stmt).rowcount or 0
