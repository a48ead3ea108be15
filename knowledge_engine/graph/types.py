"""Graph node and relationship type definitions."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator

from knowledge_engine.kernel.time import utc_now


class NodeType(str, Enum):
    """All graph node types."""

    PERSON = "person"
    TOPIC = "topic"
    ARTIFACT = "artifact"
    DECISION = "decision"
    VIDEO = "video"


class Relationship(str, Enum):
    """Relationships the engine itself writes.

    Ingestion may add edges with other relationship names; the store accepts
    any non-empty string.
    """

    PARTICIPATES_IN = "participates_in"  # person -> decision
    PRODUCES = "produces"  # video -> decision
    SUPERSEDES = "supersedes"  # new decision -> old decision
    ABOUT = "about"  # decision -> topic
    REFERENCES = "references"  # decision -> artifact


NODE_TYPES = frozenset(t.value for t in NodeType)


# ============================================================================
# Write Models
# ============================================================================


class NodeInput(BaseModel):
    """A node to insert or upsert."""

    organization_id: str = Field(..., min_length=1)
    type: NodeType
    name: str = Field(..., min_length=1)
    description: str | None = None
    external_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class EdgeInput(BaseModel):
    """An edge to upsert, keyed by (source, target, relationship)."""

    organization_id: str = Field(..., min_length=1)
    source_node_id: str = Field(..., min_length=1)
    target_node_id: str = Field(..., min_length=1)
    relationship: str = Field(..., min_length=1)
    weight: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("relationship")
    @classmethod
    def _normalize_relationship(cls, value: str) -> str:
        return value.strip().lower()


# ============================================================================
# Read Models
# ============================================================================


class GraphNode(BaseModel):
    id: str
    organization_id: str
    type: NodeType
    name: str
    description: str | None = None
    external_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class GraphEdge(BaseModel):
    id: str
    organization_id: str
    source_node_id: str
    target_node_id: str
    relationship: str
    weight: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class GraphStats(BaseModel):
    node_count: int = 0
    edge_count: int = 0


class GraphResult(BaseModel):
    """Result of a bounded traversal. Stats are derived from the sets."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    @computed_field
    @property
    def stats(self) -> GraphStats:
        return GraphStats(node_count=len(self.nodes), edge_count=len(self.edges))

    @classmethod
    def empty(cls) -> "GraphResult":
        return cls()
