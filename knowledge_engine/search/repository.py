"""
Candidate loading for search.

Videos and content items are drawn independently, filtered in SQL before any
scoring happens, and capped at the most recent `max_candidates` per pool.
Search unions a keyword-prefiltered pool with a recency pool so old exact
matches are never crowded out by newer rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_engine.db.client import Database
from knowledge_engine.db.models import (
    ContentItemRow,
    ContentSourceRow,
    TopicClusterMemberRow,
    TopicClusterRow,
    VideoRow,
)
from knowledge_engine.kernel.time import coerce_utc
from knowledge_engine.search.types import (
    VIDEO_CONTENT_TYPE,
    VIDEO_SOURCE,
    DateRange,
    ResultKind,
    Suggestion,
)

logger = structlog.get_logger()

_IN_CHUNK = 500
COMPLETED = "completed"


@dataclass(frozen=True)
class CandidateFilters:
    organization_id: str
    sources: frozenset[str] | None = None
    source_ids: frozenset[str] | None = None
    content_types: frozenset[str] | None = None
    date_range: DateRange | None = None
    topic_ids: frozenset[str] | None = None
    include_videos: bool = True
    include_content_items: bool = True
    # Restrict to rows containing at least one of these terms
    required_terms: tuple[str, ...] = ()

    def allows_videos(self) -> bool:
        if not self.include_videos:
            return False
        if self.sources is not None and VIDEO_SOURCE not in self.sources:
            return False
        if self.content_types is not None and VIDEO_CONTENT_TYPE not in self.content_types:
            return False
        # Videos carry neither a content source nor topic membership
        return self.source_ids is None and self.topic_ids is None


@dataclass(frozen=True)
class Candidate:
    id: str
    kind: ResultKind
    organization_id: str
    title: str | None
    body: str | None
    search_text: str | None
    content_type: str
    source_type: str
    source_id: str | None
    author_id: str | None
    created_at_source: datetime
    embedding: tuple[float, ...] | None = None
    topic_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def document_text(self) -> str:
        """Text the lexical scorer sees."""
        return " ".join(part for part in (self.title, self.body, self.search_text) if part)


def _as_vector(value: object) -> tuple[float, ...] | None:
    if not value or not isinstance(value, (list, tuple)):
        return None
    return tuple(float(v) for v in value)


def _newest_first(candidate: Candidate) -> tuple[float, str]:
    return -candidate.created_at_source.timestamp(), candidate.id


def _chunks(values: Sequence[str], size: int = _IN_CHUNK):
    for i in range(0, len(values), size):
        yield values[i : i + size]


class CandidateRepository:
    """Reads searchable rows for one organization."""

    def __init__(self, db: Database):
        self._db = db

    async def load_candidates(
        self,
        filters: CandidateFilters,
        *,
        max_candidates: int,
        with_embeddings: bool,
    ) -> list[Candidate]:
        return await self.load_candidate_pools(
            [filters], max_candidates=max_candidates, with_embeddings=with_embeddings
        )

    async def load_candidate_pools(
        self,
        pools: Sequence[CandidateFilters],
        *,
        max_candidates: int,
        with_embeddings: bool,
    ) -> list[Candidate]:
        """
        Union of several candidate pools, deduplicated by kind and id.

        Each pool is capped at `max_candidates` on its own, so a keyword pool
        keeps older exact matches that a recency-capped pool would drop.
        """
        if not pools:
            return []

        merged: dict[tuple[ResultKind, str], Candidate] = {}
        async with self._db.session() as session:
            for filters in pools:
                for candidate in await self._load_pool(
                    session, filters, max_candidates, with_embeddings
                ):
                    merged.setdefault((candidate.kind, candidate.id), candidate)

        candidates = sorted(merged.values(), key=_newest_first)
        logger.debug(
            "Search candidates loaded",
            organization_id=pools[0].organization_id,
            pools=len(pools),
            count=len(candidates),
        )
        return candidates

    async def suggest_titles(
        self,
        organization_id: str,
        prefix: str,
        limit: int,
    ) -> list[Suggestion]:
        """Titles starting with `prefix`, or with a word starting with it, newest first."""
        suggestions: list[tuple[datetime, Suggestion]] = []
        async with self._db.session() as session:
            items = await session.execute(
                select(
                    ContentItemRow.id,
                    ContentItemRow.title,
                    ContentItemRow.created_at_source,
                    ContentItemRow.created_at,
                )
                .where(
                    ContentItemRow.organization_id == organization_id,
                    ContentItemRow.processing_status == COMPLETED,
                    ContentItemRow.title.is_not(None),
                    or_(
                        ContentItemRow.title.istartswith(prefix, autoescape=True),
                        ContentItemRow.title.icontains(f" {prefix}", autoescape=True),
                    ),
                )
                .order_by(ContentItemRow.created_at.desc())
                .limit(limit)
            )
            for row in items:
                suggestions.append(
                    (
                        coerce_utc(row.created_at_source or row.created_at),
                        Suggestion(id=row.id, kind=ResultKind.CONTENT_ITEM, title=row.title),
                    )
                )

            videos = await session.execute(
                select(VideoRow.id, VideoRow.title, VideoRow.created_at)
                .where(
                    VideoRow.organization_id == organization_id,
                    or_(
                        VideoRow.title.istartswith(prefix, autoescape=True),
                        VideoRow.title.icontains(f" {prefix}", autoescape=True),
                    ),
                )
                .order_by(VideoRow.created_at.desc())
                .limit(limit)
            )
            for row in videos:
                suggestions.append(
                    (
                        coerce_utc(row.created_at),
                        Suggestion(id=row.id, kind=ResultKind.VIDEO, title=row.title),
                    )
                )

        suggestions.sort(key=lambda pair: (-pair[0].timestamp(), pair[1].id))
        seen: set[str] = set()
        unique: list[Suggestion] = []
        for _, suggestion in suggestions:
            key = suggestion.title.strip().lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(suggestion)
        return unique[:limit]

    # =========================================================================
    # Queries
    # =========================================================================

    async def _load_pool(
        self,
        session: AsyncSession,
        filters: CandidateFilters,
        max_candidates: int,
        with_embeddings: bool,
    ) -> list[Candidate]:
        candidates: list[Candidate] = []
        if filters.include_content_items:
            candidates.extend(
                await self._content_items(session, filters, max_candidates, with_embeddings)
            )
        if filters.allows_videos():
            candidates.extend(await self._videos(session, filters, max_candidates, with_embeddings))

        candidates.sort(key=_newest_first)
        return candidates[:max_candidates]

    async def _content_items(
        self,
        session: AsyncSession,
        filters: CandidateFilters,
        max_candidates: int,
        with_embeddings: bool,
    ) -> list[Candidate]:
        created = func.coalesce(ContentItemRow.created_at_source, ContentItemRow.created_at)
        columns = [
            ContentItemRow.id,
            ContentItemRow.organization_id,
            ContentItemRow.title,
            ContentItemRow.content,
            ContentItemRow.search_text,
            ContentItemRow.type,
            ContentItemRow.source_id,
            ContentItemRow.author_id,
            ContentItemRow.created_at_source,
            ContentItemRow.created_at,
            ContentSourceRow.type.label("source_type"),
        ]
        if with_embeddings:
            columns.append(ContentItemRow.embedding)

        stmt = (
            select(*columns)
            .join(ContentSourceRow, ContentSourceRow.id == ContentItemRow.source_id)
            .where(
                ContentItemRow.organization_id == filters.organization_id,
                ContentItemRow.processing_status == COMPLETED,
            )
        )
        if filters.sources is not None:
            stmt = stmt.where(ContentSourceRow.type.in_(sorted(filters.sources)))
        if filters.source_ids is not None:
            stmt = stmt.where(ContentItemRow.source_id.in_(sorted(filters.source_ids)))
        if filters.content_types is not None:
            stmt = stmt.where(ContentItemRow.type.in_(sorted(filters.content_types)))
        if filters.date_range is not None:
            if filters.date_range.from_ is not None:
                stmt = stmt.where(created >= filters.date_range.from_)
            if filters.date_range.to is not None:
                stmt = stmt.where(created < filters.date_range.to)
        if filters.topic_ids is not None:
            stmt = stmt.where(
                ContentItemRow.id.in_(
                    select(TopicClusterMemberRow.content_item_id)
                    .join(TopicClusterRow, TopicClusterRow.id == TopicClusterMemberRow.cluster_id)
                    .where(
                        TopicClusterMemberRow.cluster_id.in_(sorted(filters.topic_ids)),
                        TopicClusterRow.organization_id == filters.organization_id,
                    )
                )
            )
        if filters.required_terms:
            stmt = stmt.where(
                or_(
                    *(
                        or_(
                            ContentItemRow.title.icontains(term, autoescape=True),
                            ContentItemRow.content.icontains(term, autoescape=True),
                            ContentItemRow.search_text.icontains(term, autoescape=True),
                        )
                        for term in filters.required_terms
                    )
                )
            )

        stmt = stmt.order_by(created.desc(), ContentItemRow.id.asc()).limit(max_candidates)
        rows = (await session.execute(stmt)).all()
        topics = await self._topics_for_items(session, filters.organization_id, [r.id for r in rows])

        return [
            Candidate(
                id=row.id,
                kind=ResultKind.CONTENT_ITEM,
                organization_id=row.organization_id,
                title=row.title,
                body=row.content,
                search_text=row.search_text,
                content_type=row.type,
                source_type=row.source_type,
                source_id=row.source_id,
                author_id=row.author_id,
                created_at_source=coerce_utc(row.created_at_source or row.created_at),
                embedding=_as_vector(row.embedding) if with_embeddings else None,
                topic_ids=tuple(topics.get(row.id, ())),
            )
            for row in rows
        ]

    async def _videos(
        self,
        session: AsyncSession,
        filters: CandidateFilters,
        max_candidates: int,
        with_embeddings: bool,
    ) -> list[Candidate]:
        columns = [
            VideoRow.id,
            VideoRow.organization_id,
            VideoRow.title,
            VideoRow.description,
            VideoRow.transcript,
            VideoRow.search_text,
            VideoRow.author_id,
            VideoRow.created_at,
        ]
        if with_embeddings:
            columns.append(VideoRow.embedding)

        stmt = select(*columns).where(VideoRow.organization_id == filters.organization_id)
        if filters.date_range is not None:
            if filters.date_range.from_ is not None:
                stmt = stmt.where(VideoRow.created_at >= filters.date_range.from_)
            if filters.date_range.to is not None:
                stmt = stmt.where(VideoRow.created_at < filters.date_range.to)
        if filters.required_terms:
            stmt = stmt.where(
                or_(
                    *(
                        or_(
                            VideoRow.title.icontains(term, autoescape=True),
                            VideoRow.description.icontains(term, autoescape=True),
                            VideoRow.transcript.icontains(term, autoescape=True),
                            VideoRow.search_text.icontains(term, autoescape=True),
                        )
                        for term in filters.required_terms
                    )
                )
            )

        stmt = stmt.order_by(VideoRow.created_at.desc(), VideoRow.id.asc()).limit(max_candidates)
        rows = (await session.execute(stmt)).all()

        return [
            Candidate(
                id=row.id,
                kind=ResultKind.VIDEO,
                organization_id=row.organization_id,
                title=row.title,
                body=" ".join(part for part in (row.description, row.transcript) if part) or None,
                search_text=row.search_text,
                content_type=VIDEO_CONTENT_TYPE,
                source_type=VIDEO_SOURCE,
                source_id=None,
                author_id=row.author_id,
                created_at_source=coerce_utc(row.created_at),
                embedding=_as_vector(row.embedding) if with_embeddings else None,
            )
            for row in rows
        ]

    async def _topics_for_items(
        self,
        session: AsyncSession,
        organization_id: str,
        item_ids: list[str],
    ) -> dict[str, list[str]]:
        topics: dict[str, list[str]] = {}
        for chunk in _chunks(item_ids):
            result = await session.execute(
                select(TopicClusterMemberRow.content_item_id, TopicClusterMemberRow.cluster_id)
                .join(TopicClusterRow, TopicClusterRow.id == TopicClusterMemberRow.cluster_id)
                .where(
                    and_(
                        TopicClusterMemberRow.content_item_id.in_(list(chunk)),
                        TopicClusterRow.organization_id == organization_id,
                    )
                )
            )
            for item_id, cluster_id in result:
                topics.setdefault(item_id, []).append(cluster_id)
        return {key: sorted(values) for key, values in topics.items()}
