"""SQLAlchemy models for the sync persistence layer.

Tables: clusters, content_conditions, condition_snapshots, distribution_items, reviews.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Classe de base pour tous les modèles SQLAlchemy."""

    metadata = MetaData()


class ClusterORM(Base):
    """Cluster: destinations + conditions + revue."""

    __tablename__ = "clusters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False, default="")
    destination_ids = Column(JSON, nullable=False, default=list)
    review_enabled = Column(Boolean, nullable=False, default=False)
    reviewer_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=_now)

    conditions = relationship(
        "ContentConditionORM",
        back_populates="cluster",
        cascade="all, delete-orphan",
        order_by="ContentConditionORM.id",
    )


class ContentConditionORM(Base):
    """Condition de contenu rattachée à un cluster."""

    __tablename__ = "content_conditions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cluster_id = Column(Integer, ForeignKey("clusters.id", ondelete="CASCADE"), nullable=False)
    source_node_id = Column(Integer, nullable=False)
    content_type = Column(String(64), nullable=False, default="post")
    taxonomy = Column(String(64), nullable=True)
    terms = Column(JSON, nullable=False, default=list)
    count_limit = Column(Integer, nullable=True)
    date_window = Column(JSON, nullable=True)
    auto_promote_to_root = Column(Boolean, nullable=False, default=False)

    cluster = relationship("ClusterORM", back_populates="conditions")

    __table_args__ = (Index("ix_conditions_node_type", "source_node_id", "content_type"),)


class ConditionSnapshotORM(Base):
    """Dernière appartenance connue d'une condition fenêtrée."""

    __tablename__ = "condition_snapshots"

    condition_id = Column(
        Integer, ForeignKey("content_conditions.id", ondelete="CASCADE"), primary_key=True
    )
    item_ids = Column(JSON, nullable=False, default=list)
    checked_at = Column(DateTime, nullable=False, default=_now)


class DistributionItemORM(Base):
    """Unité de distribution (racine, destination)."""

    __tablename__ = "distribution_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    root_gid = Column(String(255), nullable=False)
    destination_id = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default="init")
    action = Column(String(16), nullable=False, default="insert")
    conflict_policy = Column(String(16), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    enqueued_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now)
    last_error = Column(Text, nullable=True)
    origin = Column(String(64), nullable=False, default="manual")

    __table_args__ = (
        Index("ix_distribution_status_updated", "status", "updated_at"),
        Index("ix_distribution_gid_destination", "root_gid", "destination_id"),
    )


class ReviewORM(Base):
    """Revue d'un élément (piste d'audit conservée)."""

    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, nullable=False)
    source_node_id = Column(Integer, nullable=False)
    state = Column(String(16), nullable=False, default="new")
    editor = Column(String(255), nullable=False, default="")
    previous_snapshot = Column(JSON, nullable=True)
    messages = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now)

    __table_args__ = (Index("ix_reviews_node_item", "source_node_id", "item_id"),)
