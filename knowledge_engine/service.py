"""
Knowledge Query Service

The single surface the transport layer calls. Each method threads the
organization scope into its collaborators, binds logging context, records
metrics, and makes sure only the typed error taxonomy escapes.

Membership and authorization are checked by the caller before any method
here runs; this layer makes no authorization decisions.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generic, Iterator, Sequence, TypeVar

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.db.client import Database
from knowledge_engine.decisions.ledger import DecisionLedger
from knowledge_engine.decisions.refs import parse_artifact_ref
from knowledge_engine.decisions.types import (
    Decision,
    DecisionEvent,
    DecisionTimelineItem,
    TimelineQuery,
)
from knowledge_engine.expertise.ranker import ExpertiseRanker, RankedExpert
from knowledge_engine.graph.store import GraphStore
from knowledge_engine.graph.types import GraphResult, NodeType
from knowledge_engine.kernel.errors import RetrievalError
from knowledge_engine.kernel.time import Clock
from knowledge_engine.kernel.validation import require_organization_id
from knowledge_engine.monitoring.metrics import Metrics, get_metrics
from knowledge_engine.search.embeddings import QueryEmbeddingProvider
from knowledge_engine.search.hybrid import HybridSearchEngine
from knowledge_engine.search.repository import CandidateRepository
from knowledge_engine.search.types import SearchRequest, SearchResult, Suggestion

logger = structlog.get_logger()

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of an offset-paginated listing."""

    items: list[T] = Field(default_factory=list)
    limit: int
    offset: int
    has_more: bool = False


class KnowledgeQueryService:
    """Facade over the graph store, decision ledger, expertise ranker and search."""

    def __init__(
        self,
        graph: GraphStore,
        ledger: DecisionLedger,
        ranker: ExpertiseRanker,
        search_engine: HybridSearchEngine,
        metrics: Metrics | None = None,
    ):
        self.graph = graph
        self.ledger = ledger
        self.ranker = ranker
        self.search_engine = search_engine
        self._metrics = metrics or get_metrics()

    @classmethod
    def from_database(
        cls,
        db: Database,
        settings: Settings | None = None,
        embedding_provider: QueryEmbeddingProvider | None = None,
        clock: Clock | None = None,
    ) -> "KnowledgeQueryService":
        """Wire the default components around one database."""
        settings = settings or get_settings()
        metrics = get_metrics(enabled=settings.metrics_enabled)
        graph = GraphStore(db, settings)
        return cls(
            graph=graph,
            ledger=DecisionLedger(db, graph, clock=clock, metrics=metrics),
            ranker=ExpertiseRanker(db, settings, clock=clock),
            search_engine=HybridSearchEngine(
                CandidateRepository(db),
                settings,
                embedding_provider=embedding_provider,
                metrics=metrics,
                clock=clock,
            ),
            metrics=metrics,
        )

    @contextmanager
    def _operation(self, operation: str, organization_id: str | None) -> Iterator[str]:
        organization_id = require_organization_id(organization_id)
        with structlog.contextvars.bound_contextvars(
            organization_id=organization_id,
            operation=operation,
        ):
            with self._metrics.track_operation(operation):
                try:
                    yield organization_id
                except (SQLAlchemyError, OSError) as exc:
                    logger.error("Knowledge store failure", error=str(exc))
                    raise RetrievalError(
                        message="Knowledge store unavailable",
                        meta={"error_type": type(exc).__name__},
                    ) from exc

    # =========================================================================
    # Graph
    # =========================================================================

    async def get_graph(
        self,
        organization_id: str,
        center_id: str | None = None,
        center_type: NodeType | str | None = None,
        depth: int | None = None,
        relationship_types: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> GraphResult:
        with self._operation("get_graph", organization_id) as org:
            return await self.graph.traverse(
                org,
                center_id=center_id,
                center_type=center_type,
                depth=depth,
                relationship_types=relationship_types,
                limit=limit,
            )

    # =========================================================================
    # Decisions
    # =========================================================================

    async def get_decision_context(
        self,
        organization_id: str,
        artifact_ref: str,
    ) -> list[Decision]:
        """Decisions linked to an artifact reference such as `github:pr:123`."""
        with self._operation("get_decision_context", organization_id) as org:
            ref = parse_artifact_ref(artifact_ref)
            return await self.ledger.get_decision_context(org, ref.entity_type, ref.entity_id)

    async def get_decision(self, organization_id: str, decision_id: str) -> Decision:
        with self._operation("get_decision", organization_id) as org:
            return await self.ledger.get_decision(org, decision_id)

    async def get_decision_history(
        self, organization_id: str, decision_id: str
    ) -> list[DecisionEvent]:
        with self._operation("get_decision_history", organization_id) as org:
            return await self.ledger.get_decision_history(org, decision_id)

    async def get_decision_timeline(
        self,
        organization_id: str,
        query: TimelineQuery | None = None,
    ) -> Page[DecisionTimelineItem]:
        query = query or TimelineQuery()
        with self._operation("get_decision_timeline", organization_id) as org:
            items, has_more = await self.ledger.get_decision_timeline_page(org, query)
            return Page[DecisionTimelineItem](
                items=items,
                limit=query.limit,
                offset=query.offset,
                has_more=has_more,
            )

    # =========================================================================
    # Expertise
    # =========================================================================

    async def get_topic_experts(
        self,
        organization_id: str,
        topic_id: str,
        limit: int | None = None,
    ) -> list[RankedExpert]:
        with self._operation("get_topic_experts", organization_id) as org:
            return await self.ranker.get_topic_experts(org, topic_id, limit)

    # =========================================================================
    # Search
    # =========================================================================

    async def search(self, request: SearchRequest) -> SearchResult:
        with self._operation("search", request.organization_id) as org:
            return await self.search_engine.search(
                request.model_copy(update={"organization_id": org})
            )

    async def quick_search(
        self,
        organization_id: str,
        query: str,
        limit: int | None = None,
    ) -> SearchResult:
        with self._operation("quick_search", organization_id) as org:
            return await self.search_engine.quick_search(query, org, limit)

    async def suggest(
        self,
        organization_id: str,
        prefix: str,
        limit: int = 10,
    ) -> list[Suggestion]:
        with self._operation("suggest", organization_id) as org:
            return await self.search_engine.suggest(org, prefix, limit)
