"""
Hybrid Search Engine

Blends lexical (BM25) and semantic (cosine) relevance over videos and content
items of one organization.

Pipeline:
- Validate the request before touching the store
- Load candidates with every filter applied in SQL (filter, then score)
- Score each candidate on both signals and blend per mode
- Rank by score, then recency, then id; slice the page
- Aggregate facets over all matches and highlight lexical matches on the page

If the embedding provider fails in hybrid mode the search degrades to lexical
scoring with a warning; in semantic mode it fails with RetrievalError.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Iterable

import structlog

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.kernel.errors import RetrievalError, ValidationError
from knowledge_engine.kernel.time import Clock, SystemClock
from knowledge_engine.kernel.validation import require_int_in_range, require_organization_id
from knowledge_engine.monitoring.metrics import Metrics, get_metrics
from knowledge_engine.search.embeddings import EmbeddingError, QueryEmbeddingProvider
from knowledge_engine.search.highlight import build_highlight
from knowledge_engine.search.repository import Candidate, CandidateFilters, CandidateRepository
from knowledge_engine.search.scoring import (
    BlendedScore,
    ComponentScores,
    blend_scores,
    bm25_scores,
    cosine_similarity,
    query_terms,
    recency_boost,
    tokenize,
)
from knowledge_engine.search.types import (
    DateBucket,
    FacetBucket,
    ScoreBreakdown,
    SearchFacets,
    SearchHit,
    SearchMode,
    SearchRequest,
    SearchResult,
    Suggestion,
)

logger = structlog.get_logger()

SNIPPET_LENGTH = 200
MAX_SUGGESTIONS = 20


def _clean_set(values: Iterable[str] | None, *, lower: bool = False) -> frozenset[str] | None:
    if values is None:
        return None
    cleaned = {v.strip().lower() if lower else v.strip() for v in values if v and v.strip()}
    return frozenset(cleaned)


def _check_unit_interval(value: float, field: str) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValidationError(
            message=f"{field} must be between 0 and 1",
            meta={"field": field, "value": value},
        )
    return value


def _snippet(candidate: Candidate) -> str | None:
    text = candidate.body or candidate.search_text
    if not text:
        return None
    text = " ".join(text.split())
    if len(text) <= SNIPPET_LENGTH:
        return text
    return text[:SNIPPET_LENGTH].rsplit(" ", 1)[0] + "..."


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _week_start(value: datetime) -> date:
    day = value.date()
    return day - timedelta(days=day.weekday())


def _buckets(counter: Counter[str]) -> list[FacetBucket]:
    return [
        FacetBucket(key=key, count=count)
        for key, count in sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))
    ]


def build_facets(candidates: Iterable[Candidate]) -> SearchFacets:
    """Counts per content type, source, author, topic and ISO week."""
    content_types: Counter[str] = Counter()
    sources: Counter[str] = Counter()
    authors: Counter[str] = Counter()
    topics: Counter[str] = Counter()
    weeks: Counter[date] = Counter()

    for candidate in candidates:
        content_types[candidate.content_type] += 1
        sources[candidate.source_type] += 1
        if candidate.author_id:
            authors[candidate.author_id] += 1
        for topic_id in candidate.topic_ids:
            topics[topic_id] += 1
        weeks[_week_start(candidate.created_at_source)] += 1

    return SearchFacets(
        content_types=_buckets(content_types),
        sources=_buckets(sources),
        authors=_buckets(authors),
        topics=_buckets(topics),
        dates=[
            DateBucket(week_start=week, count=count)
            for week, count in sorted(weeks.items())
        ],
    )


class HybridSearchEngine:
    """
    Hybrid search over one organization's videos and content items.

    The engine holds no mutable state; every call reads from the store.
    """

    def __init__(
        self,
        repository: CandidateRepository,
        settings: Settings | None = None,
        embedding_provider: QueryEmbeddingProvider | None = None,
        metrics: Metrics | None = None,
        clock: Clock | None = None,
    ):
        self._repository = repository
        self._settings = settings or get_settings()
        self._embedding_provider = embedding_provider
        self._metrics = metrics or get_metrics()
        self._clock = clock or SystemClock()

    # =========================================================================
    # Core Search Methods
    # =========================================================================

    async def search(self, request: SearchRequest) -> SearchResult:
        """
        Run a filtered, blended search and return one page.

        Raises:
            ValidationError: Missing organization, out-of-range parameters, or
                semantic mode without any source of a query embedding.
            RetrievalError: The store is unreachable, or the embedding
                provider failed in semantic mode.
        """
        started = time.perf_counter()
        organization_id = require_organization_id(request.organization_id)
        settings = self._settings
        mode = request.mode
        limit = settings.search_default_limit if request.limit is None else request.limit
        require_int_in_range(limit, field="limit", minimum=1, maximum=settings.search_max_limit)
        if request.offset < 0:
            raise ValidationError(message="offset must be >= 0", meta={"field": "offset"})
        weight = _check_unit_interval(
            settings.search_semantic_weight
            if request.semantic_weight is None
            else request.semantic_weight,
            "semantic_weight",
        )
        threshold = _check_unit_interval(
            settings.search_semantic_threshold
            if request.semantic_threshold is None
            else request.semantic_threshold,
            "semantic_threshold",
        )
        date_range = request.date_range
        if (
            date_range is not None
            and date_range.from_ is not None
            and date_range.to is not None
            and date_range.from_ >= date_range.to
        ):
            raise ValidationError(
                message="date_range.from must be before date_range.to",
                meta={"field": "date_range"},
            )
        if (
            mode == SearchMode.SEMANTIC
            and not request.query_embedding
            and self._embedding_provider is None
        ):
            raise ValidationError(
                message="Semantic search needs a query embedding",
                meta={"field": "query_embedding"},
            )

        query = request.query.strip()
        terms = query_terms(query)
        empty = SearchResult.empty(query, mode, include_facets=request.include_facets)

        query_embedding, degraded = await self._resolve_query_embedding(request, query)
        if not terms and query_embedding is None:
            return empty.model_copy(update={"semantic_degraded": degraded})
        if mode == SearchMode.KEYWORD and not terms:
            return empty

        filters = CandidateFilters(
            organization_id=organization_id,
            sources=_clean_set(request.sources, lower=True),
            source_ids=_clean_set(request.source_ids),
            content_types=_clean_set(request.content_types, lower=True),
            date_range=date_range,
            topic_ids=_clean_set(request.topic_ids),
            include_videos=request.include_videos,
            include_content_items=request.include_content_items,
        )
        if not filters.include_videos and not filters.include_content_items:
            return empty

        effective_mode = SearchMode.KEYWORD if degraded else mode
        use_semantic = effective_mode != SearchMode.KEYWORD and query_embedding is not None
        # Lexical matches come from their own pool; the recency pool only
        # feeds semantic scoring
        pools: list[CandidateFilters] = []
        if terms and effective_mode != SearchMode.SEMANTIC:
            pools.append(replace(filters, required_terms=tuple(terms)))
        if use_semantic:
            pools.append(filters)

        candidates = await self._repository.load_candidate_pools(
            pools,
            max_candidates=settings.search_max_candidates,
            with_embeddings=use_semantic,
        )
        matches = self._rank(
            candidates,
            terms,
            query_embedding if effective_mode != SearchMode.KEYWORD else None,
            mode=effective_mode,
            weight=weight,
            threshold=threshold,
        )

        total_count = len(matches)
        page = matches[request.offset : request.offset + limit]
        now = self._clock.now()
        highlight = request.include_highlights and effective_mode != SearchMode.SEMANTIC

        items = [
            self._to_hit(
                candidate,
                scored,
                semantic,
                terms,
                now=now,
                with_highlight=highlight,
            )
            for candidate, scored, semantic in page
        ]

        result = SearchResult(
            query=query,
            mode=mode,
            items=items,
            total_count=total_count,
            has_more=request.offset + len(items) < total_count,
            facets=build_facets(c for c, _, _ in matches) if request.include_facets else None,
            semantic_degraded=degraded,
            search_time_ms=_elapsed_ms(started),
        )

        self._metrics.track_search(mode.value, total_count)
        logger.info(
            "Search completed",
            organization_id=organization_id,
            mode=mode.value,
            candidates=len(candidates),
            total_count=total_count,
            returned=len(items),
            semantic_degraded=degraded,
            search_time_ms=result.search_time_ms,
        )
        return result

    async def quick_search(
        self,
        query: str,
        organization_id: str,
        limit: int | None = None,
    ) -> SearchResult:
        """
        Latency-bounded keyword search for the command palette.

        Never calls the embedding provider, never facets or highlights, and
        scans at most `quick_search_max_candidates` rows.
        """
        started = time.perf_counter()
        organization_id = require_organization_id(organization_id)
        max_limit = self._settings.quick_search_max_limit
        limit = max_limit if limit is None else limit
        require_int_in_range(limit, field="limit", minimum=1, maximum=max_limit)

        query = (query or "").strip()
        terms = query_terms(query)
        if not terms:
            return SearchResult.empty(query, SearchMode.KEYWORD)

        candidates = await self._repository.load_candidates(
            CandidateFilters(organization_id=organization_id, required_terms=tuple(terms)),
            max_candidates=self._settings.quick_search_max_candidates,
            with_embeddings=False,
        )
        matches = self._rank(
            candidates, terms, None, mode=SearchMode.KEYWORD, weight=0.0, threshold=1.0
        )
        now = self._clock.now()
        items = [
            self._to_hit(candidate, scored, None, terms, now=now, with_highlight=False)
            for candidate, scored, _ in matches[:limit]
        ]

        self._metrics.track_search("quick", len(matches))
        return SearchResult(
            query=query,
            mode=SearchMode.KEYWORD,
            items=items,
            total_count=len(matches),
            has_more=len(items) < len(matches),
            search_time_ms=_elapsed_ms(started),
        )

    async def suggest(
        self,
        organization_id: str,
        prefix: str,
        limit: int = 10,
    ) -> list[Suggestion]:
        """Title autocomplete over videos and content items."""
        organization_id = require_organization_id(organization_id)
        require_int_in_range(limit, field="limit", minimum=1, maximum=MAX_SUGGESTIONS)
        prefix = (prefix or "").strip()
        if not prefix:
            return []
        return await self._repository.suggest_titles(organization_id, prefix, limit)

    # =========================================================================
    # Scoring
    # =========================================================================

    async def _resolve_query_embedding(
        self, request: SearchRequest, query: str
    ) -> tuple[list[float] | None, bool]:
        """Query vector plus whether semantic scoring had to be dropped."""
        if request.mode == SearchMode.KEYWORD:
            return None, False
        if request.query_embedding:
            return list(request.query_embedding), False
        if self._embedding_provider is None or not query:
            return None, False

        try:
            return await self._embedding_provider.embed_query(query), False
        except (EmbeddingError, OSError, TimeoutError) as exc:
            if request.mode == SearchMode.SEMANTIC:
                raise RetrievalError(
                    message="Query embedding unavailable",
                    meta={"error_type": type(exc).__name__},
                ) from exc
            logger.warning(
                "Embedding generation failed, falling back to lexical search",
                organization_id=request.organization_id,
                error=str(exc),
            )
            return None, True

    def _rank(
        self,
        candidates: list[Candidate],
        terms: list[str],
        query_embedding: list[float] | None,
        *,
        mode: SearchMode,
        weight: float,
        threshold: float,
    ) -> list[tuple[Candidate, BlendedScore, float | None]]:
        lexical = bm25_scores(terms, [tokenize(c.document_text) for c in candidates])
        semantic = [
            cosine_similarity(query_embedding, c.embedding) if query_embedding else None
            for c in candidates
        ]
        blended = blend_scores(
            [ComponentScores(lexical=lex, semantic=sem) for lex, sem in zip(lexical, semantic)],
            mode=mode,
            semantic_weight=weight,
            semantic_threshold=threshold,
        )

        matches = [
            (candidate, scored, sem)
            for candidate, scored, sem in zip(candidates, blended, semantic)
            if scored is not None
        ]
        matches.sort(
            key=lambda m: (-m[1].score, -m[0].created_at_source.timestamp(), m[0].id)
        )
        return matches

    def _to_hit(
        self,
        candidate: Candidate,
        scored: BlendedScore,
        semantic: float | None,
        terms: list[str],
        *,
        now: datetime,
        with_highlight: bool,
    ) -> SearchHit:
        highlight = None
        if with_highlight and scored.lexical_match:
            highlight = build_highlight(
                candidate.title,
                candidate.body or candidate.search_text,
                terms,
                window=self._settings.search_highlight_window,
            )

        return SearchHit(
            id=candidate.id,
            kind=candidate.kind,
            organization_id=candidate.organization_id,
            title=candidate.title,
            snippet=_snippet(candidate),
            content_type=candidate.content_type,
            source_type=candidate.source_type,
            source_id=candidate.source_id,
            author_id=candidate.author_id,
            created_at_source=candidate.created_at_source,
            topic_ids=list(candidate.topic_ids),
            score=scored.score,
            score_breakdown=ScoreBreakdown(
                lexical=scored.lexical_norm,
                semantic=semantic,
                recency_boost=recency_boost(candidate.created_at_source, now=now),
            ),
            highlight=highlight,
        )
