"""Create content tables read by search and expertise ranking.

Revision ID: 001_create_content_tables
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_create_content_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # Content Sources and Items
    # ==========================================================================
    op.create_table(
        "content_source",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_content_source_organization_id", "content_source", ["organization_id"])

    op.create_table(
        "content_item",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "source_id",
            sa.Text,
            sa.ForeignKey("content_source.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("external_id", sa.Text, nullable=True),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("content", sa.Text, nullable=True),
        sa.Column("author_id", sa.Text, nullable=True),
        sa.Column("created_at_source", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_status", sa.Text, nullable=False, server_default="completed"),
        # Precomputed lexical index entry and embedding vector
        sa.Column("search_text", sa.Text, nullable=True),
        sa.Column("embedding", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_content_item_source_id", "content_item", ["source_id"])
    op.create_index("ix_content_item_author_id", "content_item", ["author_id"])
    op.create_index(
        "content_item_org_created_idx", "content_item", ["organization_id", "created_at_source"]
    )

    # ==========================================================================
    # Videos
    # ==========================================================================
    op.create_table(
        "video",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("transcript", sa.Text, nullable=True),
        sa.Column("author_id", sa.Text, nullable=True),
        sa.Column("search_text", sa.Text, nullable=True),
        sa.Column("embedding", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("video_org_created_idx", "video", ["organization_id", "created_at"])

    # ==========================================================================
    # Topic Clusters
    # ==========================================================================
    op.create_table(
        "topic_cluster",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_topic_cluster_organization_id", "topic_cluster", ["organization_id"])

    op.create_table(
        "topic_cluster_member",
        sa.Column(
            "cluster_id",
            sa.Text,
            sa.ForeignKey("topic_cluster.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "content_item_id",
            sa.Text,
            sa.ForeignKey("content_item.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("similarity_score", sa.Float, nullable=False, server_default="1.0"),
    )
    op.create_index(
        "ix_topic_cluster_member_content_item_id", "topic_cluster_member", ["content_item_id"]
    )


def downgrade() -> None:
    op.drop_table("topic_cluster_member")
    op.drop_table("topic_cluster")
    op.drop_table("video")
    op.drop_table("content_item")
    op.drop_table("content_source")
