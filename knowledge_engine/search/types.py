"""Search request and result models."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from knowledge_engine.kernel.time import coerce_utc_optional


class SearchMode(str, Enum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class ResultKind(str, Enum):
    VIDEO = "video"
    CONTENT_ITEM = "content_item"


# Videos are their own source and their own content type
VIDEO_SOURCE = "video"
VIDEO_CONTENT_TYPE = "video"


class DateRange(BaseModel):
    """Half-open interval `[from, to)`."""

    from_: datetime | None = Field(default=None, alias="from")
    to: datetime | None = None

    model_config = {"populate_by_name": True}

    @field_validator("from_", "to")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return coerce_utc_optional(value)


class SearchRequest(BaseModel):
    query: str = ""
    organization_id: str | None = None

    # Filters, applied before scoring
    sources: list[str] | None = None
    source_ids: list[str] | None = None
    content_types: list[str] | None = None
    date_range: DateRange | None = None
    topic_ids: list[str] | None = None

    mode: SearchMode = SearchMode.HYBRID
    semantic_weight: float | None = None
    semantic_threshold: float | None = None
    include_videos: bool = True
    include_content_items: bool = True
    include_facets: bool = False
    include_highlights: bool = True

    limit: int | None = None
    offset: int = 0

    # Precomputed query vector; when absent the engine asks its provider
    query_embedding: list[float] | None = None


class ScoreBreakdown(BaseModel):
    lexical: float = 0.0  # normalized to [0, 1] over the candidate set
    semantic: float | None = None  # raw cosine similarity, None without vectors
    recency_boost: float = 0.0  # informational, not part of `score`


class Highlight(BaseModel):
    title: str | None = None
    content: str | None = None


class SearchHit(BaseModel):
    id: str
    kind: ResultKind
    organization_id: str
    title: str | None = None
    snippet: str | None = None
    content_type: str
    source_type: str
    source_id: str | None = None
    author_id: str | None = None
    created_at_source: datetime
    topic_ids: list[str] = Field(default_factory=list)
    score: float
    score_breakdown: ScoreBreakdown
    highlight: Highlight | None = None


class FacetBucket(BaseModel):
    key: str
    count: int


class DateBucket(BaseModel):
    week_start: date
    count: int


class SearchFacets(BaseModel):
    content_types: list[FacetBucket] = Field(default_factory=list)
    sources: list[FacetBucket] = Field(default_factory=list)
    authors: list[FacetBucket] = Field(default_factory=list)
    topics: list[FacetBucket] = Field(default_factory=list)
    dates: list[DateBucket] = Field(default_factory=list)


class SearchResult(BaseModel):
    query: str
    mode: SearchMode
    items: list[SearchHit] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False
    facets: SearchFacets | None = None
    semantic_degraded: bool = False
    # Wall time spent in the engine; 0 on early empty returns
    search_time_ms: float = 0.0

    @classmethod
    def empty(cls, query: str, mode: SearchMode, include_facets: bool = False) -> "SearchResult":
        return cls(
            query=query,
            mode=mode,
            facets=SearchFacets() if include_facets else None,
        )


class Suggestion(BaseModel):
    id: str
    kind: ResultKind
    title: str
