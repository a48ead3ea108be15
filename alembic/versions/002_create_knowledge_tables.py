"""Create knowledge graph and decision ledger tables.

Revision ID: 002_create_knowledge_tables
Revises: 001_create_content_tables
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "002_create_knowledge_tables"
down_revision: Union[str, None] = "001_create_content_tables"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # Graph
    # ==========================================================================
    op.create_table(
        "knowledge_node",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("external_id", sa.Text, nullable=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("metadata", JSONB, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "organization_id", "type", "external_id", name="knowledge_node_org_type_external_uq"
        ),
    )
    op.create_index("ix_knowledge_node_organization_id", "knowledge_node", ["organization_id"])
    op.create_index("knowledge_node_org_type_idx", "knowledge_node", ["organization_id", "type"])

    op.create_table(
        "knowledge_edge",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "source_node_id",
            sa.Text,
            sa.ForeignKey("knowledge_node.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_node_id",
            sa.Text,
            sa.ForeignKey("knowledge_node.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("relationship", sa.Text, nullable=False),
        sa.Column("weight", sa.Float, nullable=False, server_default="1.0"),
        sa.Column("metadata", JSONB, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "source_node_id", "target_node_id", "relationship", name="knowledge_edge_unique"
        ),
        sa.CheckConstraint("weight >= 0", name="knowledge_edge_weight_non_negative"),
    )
    op.create_index("ix_knowledge_edge_organization_id", "knowledge_edge", ["organization_id"])
    op.create_index("ix_knowledge_edge_source_node_id", "knowledge_edge", ["source_node_id"])
    op.create_index("ix_knowledge_edge_target_node_id", "knowledge_edge", ["target_node_id"])
    op.create_index("ix_knowledge_edge_relationship", "knowledge_edge", ["relationship"])

    # ==========================================================================
    # Decision Ledger
    # ==========================================================================
    op.create_table(
        "decision",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column("node_id", sa.Text, sa.ForeignKey("knowledge_node.id"), nullable=False),
        sa.Column("video_id", sa.Text, nullable=True),
        sa.Column("summary", sa.Text, nullable=False),
        sa.Column("context", sa.Text, nullable=True),
        sa.Column("reasoning", sa.Text, nullable=True),
        sa.Column("timestamp_start", sa.Integer, nullable=True),
        sa.Column("timestamp_end", sa.Integer, nullable=True),
        sa.Column("decision_type", sa.Text, nullable=False, server_default="other"),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("confidence", sa.Integer, nullable=False),
        sa.Column("tags", JSONB, nullable=False, server_default="[]"),
        sa.Column("superseded_by", sa.Text, nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="decision_confidence_range"
        ),
    )
    op.create_index("ix_decision_video_id", "decision", ["video_id"])
    op.create_index("ix_decision_status", "decision", ["status"])
    op.create_index("decision_org_created_idx", "decision", ["organization_id", "created_at"])

    op.create_table(
        "decision_event",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column(
            "decision_id",
            sa.Text,
            sa.ForeignKey("decision.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("actor_id", sa.Text, nullable=True),
        sa.Column("previous_value", JSONB, nullable=True),
        sa.Column("new_value", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_decision_event_decision_id", "decision_event", ["decision_id"])


def downgrade() -> None:
    op.drop_table("decision_event")
    op.drop_table("decision")
    op.drop_table("knowledge_edge")
    op.drop_table("knowledge_node")
