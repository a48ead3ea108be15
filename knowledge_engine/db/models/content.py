"""
Content models written by the ingestion adapters.

The engine only reads these tables. `search_text` and `embedding` are the
precomputed lexical index entry and embedding vector for each row.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Index, Text

from knowledge_engine.db.models.base import Base
from knowledge_engine.kernel.time import utc_now


class ContentSourceRow(Base):
    __tablename__ = "content_source"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=False, index=True)
    type = Column(Text, nullable=False)  # slack, notion, github, google_drive, confluence, linear
    name = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class ContentItemRow(Base):
    __tablename__ = "content_item"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=False)
    source_id = Column(
        Text, ForeignKey("content_source.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(Text, nullable=False)  # message, thread, document, issue, pull_request, ...
    external_id = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    author_id = Column(Text, nullable=True, index=True)
    created_at_source = Column(DateTime(timezone=True), nullable=True)
    processing_status = Column(Text, nullable=False, default="completed")

    search_text = Column(Text, nullable=True)
    embedding = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("content_item_org_created_idx", "organization_id", "created_at_source"),
    )


class VideoRow(Base):
    __tablename__ = "video"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    author_id = Column(Text, nullable=True)

    search_text = Column(Text, nullable=True)
    embedding = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("video_org_created_idx", "organization_id", "created_at"),
    )


class TopicClusterRow(Base):
    __tablename__ = "topic_cluster"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class TopicClusterMemberRow(Base):
    __tablename__ = "topic_cluster_member"

    cluster_id = Column(
        Text, ForeignKey("topic_cluster.id", ondelete="CASCADE"), primary_key=True
    )
    content_item_id = Column(
        Text, ForeignKey("content_item.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    similarity_score = Column(Float, nullable=False, default=1.0)
