"""
Unit tests for the Hybrid Search Engine.

Tests filtering, per-mode scoring, pagination, facets, highlights and the
embedding fallback paths against a per-test SQLite database.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_engine.db.client import Database
from knowledge_engine.kernel.errors import RetrievalError, ValidationError
from knowledge_engine.search.hybrid import HybridSearchEngine
from knowledge_engine.search.repository import CandidateRepository
from knowledge_engine.search.types import DateRange, ResultKind, SearchMode, SearchRequest
from tests.support.content import add_item, add_source, add_topic, add_video
from tests.support.embeddings import FailingEmbeddingProvider, StaticEmbeddingProvider

pytestmark = pytest.mark.unit


def _day(month: int, day: int, year: int = 2025) -> datetime:
    return datetime(year, month, day, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_engine(db, settings, metrics, fake_clock):
    def _make(provider=None):
        return HybridSearchEngine(
            CandidateRepository(db),
            settings,
            embedding_provider=provider,
            metrics=metrics,
            clock=fake_clock,
        )

    return _make


# =============================================================================
# Keyword Search Tests
# =============================================================================


class TestKeywordSearch:
    """Lexical matching, highlights and ordering."""

    @pytest.mark.asyncio
    async def test_rollout_query_finds_single_match(self, search_engine, db, org_id):
        source = await add_source(db, org_id, "slack")
        item = await add_item(
            db, org_id, source,
            title="Rollout plan",
            content="We agreed on the rollout plan for Q3.",
            author_id="alice",
            created_at_source=_day(12, 1),
        )
        await add_item(db, org_id, source, title="Billing", content="Invoices are late.")

        result = await search_engine.search(
            SearchRequest(query="rollout", organization_id=org_id, mode=SearchMode.KEYWORD)
        )

        assert result.total_count == 1
        assert result.has_more is False
        assert result.facets is None
        assert result.search_time_ms >= 0.0
        [hit] = result.items
        assert hit.id == item
        assert hit.kind == ResultKind.CONTENT_ITEM
        assert hit.source_type == "slack"
        assert hit.score == pytest.approx(1.0)
        assert hit.highlight is not None
        assert hit.highlight.title == "<mark>Rollout</mark> plan"
        assert "<mark>rollout</mark>" in hit.highlight.content

    @pytest.mark.asyncio
    async def test_videos_are_searched_with_transcripts(self, search_engine, db, org_id):
        video = await add_video(
            db, org_id, title="Weekly sync", transcript="Next we discuss the rollout."
        )

        result = await search_engine.search(
            SearchRequest(query="rollout", organization_id=org_id, mode=SearchMode.KEYWORD)
        )

        assert [h.id for h in result.items] == [video]
        assert result.items[0].kind == ResultKind.VIDEO
        assert result.items[0].content_type == "video"

    @pytest.mark.asyncio
    async def test_equal_scores_order_by_recency(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        older = await add_item(db, org_id, source, content="deploy", created_at_source=_day(11, 1))
        newer = await add_item(db, org_id, source, content="deploy", created_at_source=_day(12, 1))

        result = await search_engine.search(
            SearchRequest(query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD)
        )

        assert [h.id for h in result.items] == [newer, older]
        assert result.items[0].score_breakdown.recency_boost > result.items[1].score_breakdown.recency_boost

    @pytest.mark.asyncio
    async def test_other_org_and_unprocessed_items_are_invisible(self, search_engine, db, factory):
        org_a, org_b = factory.organization_id(), factory.organization_id()
        source_a = await add_source(db, org_a)
        source_b = await add_source(db, org_b)
        visible = await add_item(db, org_a, source_a, content="deploy")
        await add_item(db, org_a, source_a, content="deploy", processing_status="pending")
        await add_item(db, org_b, source_b, content="deploy")

        result = await search_engine.search(
            SearchRequest(query="deploy", organization_id=org_a, mode=SearchMode.KEYWORD)
        )

        assert [h.id for h in result.items] == [visible]

    @pytest.mark.asyncio
    async def test_blank_query_returns_empty(self, search_engine, org_id):
        result = await search_engine.search(
            SearchRequest(query="   ", organization_id=org_id, include_facets=True)
        )
        assert result.items == []
        assert result.total_count == 0
        assert result.facets is not None
        assert result.search_time_ms == 0.0


# =============================================================================
# Filter Tests
# =============================================================================


class TestFilters:
    """Filters narrow the candidate set before scoring."""

    @pytest.mark.asyncio
    async def test_source_filter_excludes_other_sources_and_videos(self, search_engine, db, org_id):
        github = await add_source(db, org_id, "github")
        slack = await add_source(db, org_id, "slack")
        pr = await add_item(db, org_id, github, item_type="pull_request", content="deploy")
        await add_item(db, org_id, slack, content="deploy")
        await add_video(db, org_id, title="deploy demo")

        result = await search_engine.search(
            SearchRequest(
                query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD,
                sources=["GitHub"],
            )
        )

        assert [h.id for h in result.items] == [pr]

    @pytest.mark.asyncio
    async def test_video_content_type_selects_videos(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        await add_item(db, org_id, source, content="deploy")
        video = await add_video(db, org_id, title="deploy demo")

        result = await search_engine.search(
            SearchRequest(
                query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD,
                content_types=["video"],
            )
        )

        assert [h.id for h in result.items] == [video]

    @pytest.mark.asyncio
    async def test_include_flags(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        item = await add_item(db, org_id, source, content="deploy")
        await add_video(db, org_id, title="deploy demo")

        result = await search_engine.search(
            SearchRequest(
                query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD,
                include_videos=False,
            )
        )

        assert [h.id for h in result.items] == [item]

    @pytest.mark.asyncio
    async def test_date_range_is_half_open(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        await add_item(db, org_id, source, content="deploy", created_at_source=_day(12, 1))
        inside = await add_item(db, org_id, source, content="deploy", created_at_source=_day(12, 10))
        await add_item(db, org_id, source, content="deploy", created_at_source=_day(12, 20))

        result = await search_engine.search(
            SearchRequest(
                query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD,
                date_range=DateRange(from_=_day(12, 10), to=_day(12, 20)),
            )
        )

        assert [h.id for h in result.items] == [inside]

    @pytest.mark.asyncio
    async def test_topic_filter(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        member = await add_item(db, org_id, source, content="deploy")
        await add_item(db, org_id, source, content="deploy")
        topic = await add_topic(db, org_id, "Deploys", [member])

        result = await search_engine.search(
            SearchRequest(
                query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD,
                topic_ids=[topic],
            )
        )

        assert [h.id for h in result.items] == [member]
        assert result.items[0].topic_ids == [topic]

    @pytest.mark.asyncio
    async def test_inverted_date_range_is_validation_error(self, search_engine, org_id):
        with pytest.raises(ValidationError):
            await search_engine.search(
                SearchRequest(
                    query="deploy", organization_id=org_id,
                    date_range=DateRange(from_=_day(12, 20), to=_day(12, 10)),
                )
            )


# =============================================================================
# Pagination and Facet Tests
# =============================================================================


class TestPaginationAndFacets:
    """Facets describe all matches, not the page."""

    @pytest.mark.asyncio
    async def test_facets_are_stable_across_pages(self, search_engine, db, org_id):
        slack = await add_source(db, org_id, "slack")
        notion = await add_source(db, org_id, "notion")
        for i in range(3):
            await add_item(
                db, org_id, slack, content=f"deploy step {i}", author_id="alice",
                created_at_source=_day(12, 1 + i),
            )
        for i in range(2):
            await add_item(
                db, org_id, notion, item_type="document", content=f"deploy guide {i}",
                author_id="bob", created_at_source=_day(12, 10 + i),
            )

        first = await search_engine.search(
            SearchRequest(
                query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD,
                include_facets=True, limit=2,
            )
        )
        last = await search_engine.search(
            SearchRequest(
                query="deploy", organization_id=org_id, mode=SearchMode.KEYWORD,
                include_facets=True, limit=5, offset=3,
            )
        )

        assert first.total_count == last.total_count == 5
        assert first.facets == last.facets
        assert len(first.items) == 2 and first.has_more is True
        assert len(last.items) == 2 and last.has_more is False

        facets = first.facets
        assert [(b.key, b.count) for b in facets.sources] == [("slack", 3), ("notion", 2)]
        assert [(b.key, b.count) for b in facets.authors] == [("alice", 3), ("bob", 2)]
        assert sum(b.count for b in facets.dates) == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("limit", "offset"), [(0, 0), (101, 0), (10, -1)])
    async def test_bad_paging_is_validation_error(self, search_engine, org_id, limit, offset):
        with pytest.raises(ValidationError):
            await search_engine.search(
                SearchRequest(query="x", organization_id=org_id, limit=limit, offset=offset)
            )


# =============================================================================
# Semantic and Hybrid Tests
# =============================================================================


class TestSemanticSearch:
    """Embedding-backed modes."""

    @pytest.mark.asyncio
    async def test_semantic_mode_excludes_below_threshold(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        close = await add_item(db, org_id, source, content="alpha", embedding=[1.0, 0.0])
        await add_item(db, org_id, source, content="beta", embedding=[0.0, 1.0])
        await add_item(db, org_id, source, content="gamma")

        result = await search_engine.search(
            SearchRequest(
                query="unrelated words",
                organization_id=org_id,
                mode=SearchMode.SEMANTIC,
                query_embedding=[1.0, 0.0],
            )
        )

        assert [h.id for h in result.items] == [close]
        hit = result.items[0]
        assert hit.score == pytest.approx(1.0)
        assert hit.score_breakdown.semantic == pytest.approx(1.0)
        assert hit.highlight is None

    @pytest.mark.asyncio
    async def test_hybrid_ranks_both_signals(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        both = await add_item(db, org_id, source, content="deploy", embedding=[1.0, 0.0])
        lexical = await add_item(db, org_id, source, content="deploy", embedding=[0.0, 1.0])
        semantic = await add_item(db, org_id, source, content="other", embedding=[0.9, 0.1])

        result = await search_engine.search(
            SearchRequest(
                query="deploy",
                organization_id=org_id,
                mode=SearchMode.HYBRID,
                query_embedding=[1.0, 0.0],
            )
        )

        ids = [h.id for h in result.items]
        assert ids[0] == both
        assert set(ids) == {both, lexical, semantic}
        assert result.semantic_degraded is False

    @pytest.mark.asyncio
    async def test_provider_is_asked_for_query_embedding(self, make_engine, db, org_id):
        source = await add_source(db, org_id)
        item = await add_item(db, org_id, source, content="alpha", embedding=[1.0, 0.0])
        provider = StaticEmbeddingProvider(vector=[1.0, 0.0])

        result = await make_engine(provider).search(
            SearchRequest(query="alpha", organization_id=org_id, mode=SearchMode.SEMANTIC)
        )

        assert provider.calls == ["alpha"]
        assert [h.id for h in result.items] == [item]

    @pytest.mark.asyncio
    async def test_keyword_mode_never_embeds(self, make_engine, db, org_id):
        provider = StaticEmbeddingProvider(vector=[1.0, 0.0])
        await make_engine(provider).search(
            SearchRequest(query="alpha", organization_id=org_id, mode=SearchMode.KEYWORD)
        )
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_hybrid_degrades_to_lexical_when_embedding_fails(self, make_engine, db, org_id):
        source = await add_source(db, org_id)
        item = await add_item(db, org_id, source, title="Rollout", content="rollout notes")

        result = await make_engine(FailingEmbeddingProvider()).search(
            SearchRequest(query="rollout", organization_id=org_id, mode=SearchMode.HYBRID)
        )

        assert result.semantic_degraded is True
        assert result.mode == SearchMode.HYBRID
        assert [h.id for h in result.items] == [item]
        assert result.items[0].highlight is not None

    @pytest.mark.asyncio
    async def test_semantic_fails_when_embedding_fails(self, make_engine, org_id):
        with pytest.raises(RetrievalError):
            await make_engine(FailingEmbeddingProvider()).search(
                SearchRequest(query="rollout", organization_id=org_id, mode=SearchMode.SEMANTIC)
            )

    @pytest.mark.asyncio
    async def test_semantic_without_any_embedding_is_validation_error(self, search_engine, org_id):
        with pytest.raises(ValidationError):
            await search_engine.search(
                SearchRequest(query="rollout", organization_id=org_id, mode=SearchMode.SEMANTIC)
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["semantic_weight", "semantic_threshold"])
    async def test_weights_outside_unit_interval(self, search_engine, org_id, field):
        with pytest.raises(ValidationError):
            await search_engine.search(
                SearchRequest(query="x", organization_id=org_id, **{field: 1.5})
            )


# =============================================================================
# Candidate Cap Tests
# =============================================================================


class TestCandidateCap:
    """Keyword matches are loaded apart from the recency-capped pool."""

    @pytest.fixture
    def capped_engine(self, db, settings, metrics, fake_clock):
        capped = settings.model_copy(update={"search_max_candidates": 2})
        return HybridSearchEngine(
            CandidateRepository(db), capped, metrics=metrics, clock=fake_clock
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [SearchMode.KEYWORD, SearchMode.HYBRID])
    async def test_old_keyword_match_survives_newer_rows(
        self, capped_engine, db, org_id, mode
    ):
        source = await add_source(db, org_id)
        old = await add_item(
            db, org_id, source, title="Rollout plan", created_at_source=_day(1, 5)
        )
        for day in (10, 11):
            await add_item(
                db, org_id, source, title=f"Standup {day}", created_at_source=_day(12, day)
            )

        result = await capped_engine.search(
            SearchRequest(query="rollout", organization_id=org_id, mode=mode)
        )

        assert [h.id for h in result.items] == [old]
        assert result.total_count == 1

    @pytest.mark.asyncio
    async def test_hybrid_unions_keyword_and_recent_semantic_matches(
        self, capped_engine, db, org_id
    ):
        source = await add_source(db, org_id)
        old = await add_item(
            db, org_id, source, title="Rollout plan", created_at_source=_day(1, 5)
        )
        recent = await add_item(
            db, org_id, source, title="Launch checklist", embedding=[1.0, 0.0],
            created_at_source=_day(12, 12),
        )
        await add_item(
            db, org_id, source, title="Standup notes", created_at_source=_day(12, 11)
        )

        result = await capped_engine.search(
            SearchRequest(
                query="rollout",
                organization_id=org_id,
                mode=SearchMode.HYBRID,
                query_embedding=[1.0, 0.0],
            )
        )

        assert {h.id for h in result.items} == {old, recent}
        assert result.total_count == 2


# =============================================================================
# Failure Tests
# =============================================================================


class TestFailures:
    """Validation happens first; store failures are never empty results."""

    @pytest.mark.asyncio
    async def test_missing_organization_fails_before_store_access(self, settings, metrics):
        repository = MagicMock()
        repository.load_candidates = AsyncMock(return_value=[])
        engine = HybridSearchEngine(repository, settings, metrics=metrics)

        with pytest.raises(ValidationError):
            await engine.search(SearchRequest(query="rollout"))
        repository.load_candidates.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreachable_store_is_retrieval_error(self, tmp_path, settings, metrics):
        # A database file without the schema fails on the first query
        broken = Database.from_url(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        engine = HybridSearchEngine(CandidateRepository(broken), settings, metrics=metrics)

        try:
            with pytest.raises(RetrievalError):
                await engine.search(SearchRequest(query="rollout", organization_id="org_1"))
        finally:
            await broken.dispose()


# =============================================================================
# Quick Search and Suggest Tests
# =============================================================================


class TestQuickSearch:
    """Command-palette search."""

    @pytest.mark.asyncio
    async def test_quick_search_caps_results_and_skips_highlights(
        self, search_engine, db, org_id
    ):
        source = await add_source(db, org_id)
        for i in range(4):
            await add_item(
                db, org_id, source, title=f"Deploy {i}", created_at_source=_day(12, 1 + i)
            )

        result = await search_engine.quick_search("deploy", org_id, limit=3)

        assert len(result.items) == 3
        assert result.total_count == 4
        assert result.has_more is True
        assert result.mode == SearchMode.KEYWORD
        assert all(h.highlight is None for h in result.items)
        assert result.facets is None

    @pytest.mark.asyncio
    async def test_quick_search_never_embeds(self, make_engine, db, org_id):
        source = await add_source(db, org_id)
        item = await add_item(db, org_id, source, title="Deploy", embedding=[1.0, 0.0])
        provider = StaticEmbeddingProvider(vector=[1.0, 0.0])

        result = await make_engine(provider).quick_search("deploy", org_id)

        assert provider.calls == []
        assert [h.id for h in result.items] == [item]
        assert all(h.score_breakdown.semantic is None for h in result.items)

    @pytest.mark.asyncio
    async def test_quick_search_limit_bounds(self, search_engine, org_id):
        with pytest.raises(ValidationError):
            await search_engine.quick_search("deploy", org_id, limit=11)

    @pytest.mark.asyncio
    async def test_quick_search_blank_query(self, search_engine, org_id):
        result = await search_engine.quick_search("  ", org_id)
        assert result.items == []

    @pytest.mark.asyncio
    async def test_suggest_matches_title_and_word_prefixes(self, search_engine, db, org_id):
        source = await add_source(db, org_id)
        await add_item(db, org_id, source, title="Rollout plan", created_at_source=_day(12, 1))
        await add_item(db, org_id, source, title="Q3 rollout review", created_at_source=_day(12, 2))
        await add_item(db, org_id, source, title="rollout plan", created_at_source=_day(11, 1))
        await add_item(db, org_id, source, title="Enrollment", created_at_source=_day(12, 3))
        await add_video(db, org_id, title="Rollout demo", created_at=_day(12, 5))

        suggestions = await search_engine.suggest(org_id, "roll")

        assert [s.title for s in suggestions] == ["Rollout demo", "Q3 rollout review", "Rollout plan"]
        assert suggestions[0].kind == ResultKind.VIDEO

    @pytest.mark.asyncio
    async def test_suggest_limit_bounds(self, search_engine, org_id):
        with pytest.raises(ValidationError):
            await search_engine.suggest(org_id, "roll", limit=21)
