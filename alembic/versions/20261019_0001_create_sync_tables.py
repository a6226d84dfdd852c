# mypy: ignore-errors
"""
Migration Alembic créant les tables du moteur de synchronisation.

Tables: clusters, content_conditions, condition_snapshots, distribution_items, reviews.
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "clusters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("destination_ids", sa.JSON(), nullable=False),
        sa.Column("review_enabled", sa.Boolean(), nullable=False),
        sa.Column("reviewer_ids", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "content_conditions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "cluster_id",
            sa.Integer(),
            sa.ForeignKey("clusters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_node_id", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.String(length=64), nullable=False),
        sa.Column("taxonomy", sa.String(length=64), nullable=True),
        sa.Column("terms", sa.JSON(), nullable=False),
        sa.Column("count_limit", sa.Integer(), nullable=True),
        sa.Column("date_window", sa.JSON(), nullable=True),
        sa.Column("auto_promote_to_root", sa.Boolean(), nullable=False),
    )
    op.create_index(
        "ix_conditions_node_type", "content_conditions", ["source_node_id", "content_type"]
    )
    op.create_table(
        "condition_snapshots",
        sa.Column(
            "condition_id",
            sa.Integer(),
            sa.ForeignKey("content_conditions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("item_ids", sa.JSON(), nullable=False),
        sa.Column("checked_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "distribution_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("root_gid", sa.String(length=255), nullable=False),
        sa.Column("destination_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("conflict_policy", sa.String(length=16), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("enqueued_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("origin", sa.String(length=64), nullable=False),
    )
    op.create_index(
        "ix_distribution_status_updated", "distribution_items", ["status", "updated_at"]
    )
    op.create_index(
        "ix_distribution_gid_destination", "distribution_items", ["root_gid", "destination_id"]
    )
    op.create_table(
        "reviews",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("source_node_id", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column("editor", sa.String(length=255), nullable=False),
        sa.Column("previous_snapshot", sa.JSON(), nullable=True),
        sa.Column("messages", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_reviews_node_item", "reviews", ["source_node_id", "item_id"])


def downgrade() -> None:
    op.drop_index("ix_reviews_node_item", table_name="reviews")
    op.drop_table("reviews")
    op.drop_index("ix_distribution_gid_destination", table_name="distribution_items")
    op.drop_index("ix_distribution_status_updated", table_name="distribution_items")
    op.drop_table("distribution_items")
    op.drop_table("condition_snapshots")
    op.drop_index("ix_conditions_node_type", table_name="content_conditions")
    op.drop_table("content_conditions")
    op.drop_table("clusters")
