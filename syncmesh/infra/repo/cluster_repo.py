# ============================================================
# Module : syncmesh/infra/repo/cluster_repo.py
# Objet  : Accès SQL aux clusters, conditions et instantanés.
# ============================================================

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import selectinload, sessionmaker

from syncmesh.domain.entities import Cluster, ContentCondition, DateWindow
from syncmesh.infra.repo.db import session_scope
from syncmesh.infra.repo.distribution_repo import to_db_time
from syncmesh.infra.repo.models import ClusterORM, ConditionSnapshotORM, ContentConditionORM


def _condition_to_domain(row: ContentConditionORM) -> ContentCondition:
    return ContentCondition(
        id=row.id,
        cluster_id=row.cluster_id,
        source_node_id=row.source_node_id,
        content_type=row.content_type,
        taxonomy=row.taxonomy,
        terms=list(row.terms or []),
        count_limit=row.count_limit,
        date_window=DateWindow.model_validate(row.date_window) if row.date_window else None,
        auto_promote_to_root=bool(row.auto_promote_to_root),
    )


def _cluster_to_domain(row: ClusterORM) -> Cluster:
    return Cluster(
        id=row.id,
        title=row.title or "",
        destination_ids=[str(d) for d in (row.destination_ids or [])],
        review_enabled=bool(row.review_enabled),
        reviewer_ids=list(row.reviewer_ids or []),
        content_conditions=[_condition_to_domain(c) for c in row.conditions],
    )


class ClusterRepo:
    """Lecture/écriture des clusters et de leurs conditions."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._factory = session_factory

    def create(self, cluster: Cluster) -> Cluster:
        with session_scope(self._factory) as session:
            row = ClusterORM(
                title=cluster.title,
                destination_ids=list(cluster.destination_ids),
                review_enabled=cluster.review_enabled,
                reviewer_ids=list(cluster.reviewer_ids),
            )
            for condition in cluster.content_conditions:
                row.conditions.append(
                    ContentConditionORM(
                        source_node_id=condition.source_node_id,
                        content_type=condition.content_type,
                        taxonomy=condition.taxonomy,
                        terms=list(condition.terms),
                        count_limit=condition.count_limit,
                        date_window=(
                            condition.date_window.model_dump(mode="json")
                            if condition.date_window else None
                        ),
                        auto_promote_to_root=condition.auto_promote_to_root,
                    )
                )
            session.add(row)
            session.flush()
            return _cluster_to_domain(row)

    def get(self, cluster_id: int) -> Cluster | None:
        stmt = (
            select(ClusterORM)
            .options(selectinload(ClusterORM.conditions))
            .where(ClusterORM.id == int(cluster_id))
        )
        with session_scope(self._factory) as session:
            row = session.execute(stmt).scalars().first()
            return _cluster_to_domain(row) if row else None

    def list_all(self) -> list[Cluster]:
        stmt = (
            select(ClusterORM)
            .options(selectinload(ClusterORM.conditions))
            .order_by(ClusterORM.id)
        )
        with session_scope(self._factory) as session:
            return [_cluster_to_domain(r) for r in session.execute(stmt).scalars()]

    def get_condition(self, condition_id: int) -> ContentCondition | None:
        with session_scope(self._factory) as session:
            row = session.get(ContentConditionORM, int(condition_id))
            return _condition_to_domain(row) if row else None

    def list_conditions(self, node_id: int | None = None) -> list[ContentCondition]:
        stmt = select(ContentConditionORM).order_by(ContentConditionORM.id)
        if node_id is not None:
            stmt = stmt.where(ContentConditionORM.source_node_id == int(node_id))
        with session_scope(self._factory) as session:
            return [_condition_to_domain(r) for r in session.execute(stmt).scalars()]

    def get_snapshot(self, condition_id: int) -> list[int] | None:
        with session_scope(self._factory) as session:
            row = session.get(ConditionSnapshotORM, int(condition_id))
            return [int(i) for i in row.item_ids] if row else None

    def save_snapshot(self, condition_id: int, item_ids: list[int], now: datetime) -> None:
        with session_scope(self._factory) as session:
            row = session.get(ConditionSnapshotORM, int(condition_id))
            if row is None:
                row = ConditionSnapshotORM(condition_id=int(condition_id))
                session.add(row)
            row.item_ids = [int(i) for i in item_ids]
            row.checked_at = to_db_time(now)
