"""
Seed helpers for the ingestion-owned tables.

The engine never writes content sources, items, videos or topic clusters;
tests insert them directly, the way the ingestion adapters would.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from knowledge_engine.db.client import Database
from knowledge_engine.db.models import (
    ContentItemRow,
    ContentSourceRow,
    TopicClusterMemberRow,
    TopicClusterRow,
    VideoRow,
)


def _id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def at(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, 0, 0, tzinfo=timezone.utc)


async def add_source(
    db: Database,
    organization_id: str,
    source_type: str = "slack",
    name: str | None = None,
) -> str:
    source_id = _id("src")
    async with db.session() as session:
        session.add(
            ContentSourceRow(
                id=source_id,
                organization_id=organization_id,
                type=source_type,
                name=name or source_type.title(),
            )
        )
    return source_id


async def add_item(
    db: Database,
    organization_id: str,
    source_id: str,
    *,
    title: str | None = None,
    content: str | None = None,
    item_type: str = "message",
    author_id: str | None = None,
    created_at_source: datetime | None = None,
    embedding: list[float] | None = None,
    processing_status: str = "completed",
    item_id: str | None = None,
) -> str:
    item_id = item_id or _id("item")
    async with db.session() as session:
        session.add(
            ContentItemRow(
                id=item_id,
                organization_id=organization_id,
                source_id=source_id,
                type=item_type,
                title=title,
                content=content,
                author_id=author_id,
                created_at_source=created_at_source,
                processing_status=processing_status,
                embedding=embedding,
            )
        )
    return item_id


async def add_video(
    db: Database,
    organization_id: str,
    *,
    title: str,
    description: str | None = None,
    transcript: str | None = None,
    author_id: str | None = None,
    created_at: datetime | None = None,
    embedding: list[float] | None = None,
    video_id: str | None = None,
) -> str:
    video_id = video_id or _id("vid")
    async with db.session() as session:
        row = VideoRow(
            id=video_id,
            organization_id=organization_id,
            title=title,
            description=description,
            transcript=transcript,
            author_id=author_id,
            embedding=embedding,
        )
        if created_at is not None:
            row.created_at = created_at
            row.updated_at = created_at
        session.add(row)
    return video_id


async def add_topic(
    db: Database,
    organization_id: str,
    name: str,
    item_ids: list[str] | None = None,
) -> str:
    topic_id = _id("topic")
    async with db.session() as session:
        session.add(TopicClusterRow(id=topic_id, organization_id=organization_id, name=name))
        await session.flush()
        for item_id in item_ids or []:
            session.add(TopicClusterMemberRow(cluster_id=topic_id, content_item_id=item_id))
    return topic_id
