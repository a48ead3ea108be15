"""
Knowledge graph and decision ledger models.

A decision lives twice: as a `decision` row (source of truth) and as a
`knowledge_node` of type `decision` whose `external_id` is the decision id.
The ledger writes both in one transaction.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)

from knowledge_engine.db.models.base import Base
from knowledge_engine.kernel.time import utc_now


class KnowledgeNodeRow(Base):
    __tablename__ = "knowledge_node"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=False, index=True)
    type = Column(Text, nullable=False)  # person, topic, artifact, decision, video
    external_id = Column(Text, nullable=True)  # github:pr:123, user id, decision id...
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    node_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "type",
            "external_id",
            name="knowledge_node_org_type_external_uq",
        ),
        Index("knowledge_node_org_type_idx", "organization_id", "type"),
    )


class KnowledgeEdgeRow(Base):
    __tablename__ = "knowledge_edge"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=False, index=True)
    source_node_id = Column(
        Text, ForeignKey("knowledge_node.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_node_id = Column(
        Text, ForeignKey("knowledge_node.id", ondelete="CASCADE"), nullable=False, index=True
    )
    relationship = Column(Text, nullable=False, index=True)
    weight = Column(Float, nullable=False, default=1.0)
    edge_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint(
            "source_node_id",
            "target_node_id",
            "relationship",
            name="knowledge_edge_unique",
        ),
    )


class DecisionRow(Base):
    __tablename__ = "decision"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=False)
    node_id = Column(Text, ForeignKey("knowledge_node.id"), nullable=False)
    video_id = Column(Text, nullable=True, index=True)

    summary = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    reasoning = Column(Text, nullable=True)
    timestamp_start = Column(Integer, nullable=True)  # seconds into the video
    timestamp_end = Column(Integer, nullable=True)

    decision_type = Column(Text, nullable=False, default="other")
    status = Column(Text, nullable=False, index=True)  # proposed, decided, revisited, superseded
    confidence = Column(Integer, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    superseded_by = Column(Text, nullable=True)

    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("decision_org_created_idx", "organization_id", "created_at"),
    )


class DecisionEventRow(Base):
    """Append-only history of what happened to a decision."""

    __tablename__ = "decision_event"

    id = Column(Text, primary_key=True)
    decision_id = Column(
        Text, ForeignKey("decision.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id = Column(Text, nullable=False)
    event_type = Column(Text, nullable=False)
    actor_id = Column(Text, nullable=True)
    previous_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
