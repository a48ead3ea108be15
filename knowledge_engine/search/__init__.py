"""Hybrid lexical + semantic retrieval over videos and content items."""

from .embeddings import EmbeddingError, QueryEmbeddingProvider
from .hybrid import HybridSearchEngine
from .repository import CandidateRepository
from .types import (
    DateRange,
    Highlight,
    ResultKind,
    ScoreBreakdown,
    SearchFacets,
    SearchHit,
    SearchMode,
    SearchRequest,
    SearchResult,
    Suggestion,
)

__all__ = [
    "CandidateRepository",
    "DateRange",
    "EmbeddingError",
    "Highlight",
    "HybridSearchEngine",
    "QueryEmbeddingProvider",
    "ResultKind",
    "ScoreBreakdown",
    "SearchFacets",
    "SearchHit",
    "SearchMode",
    "SearchRequest",
    "SearchResult",
    "Suggestion",
]
