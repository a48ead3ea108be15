"""Typed knowledge graph storage and traversal."""

from .store import GraphStore
from .types import (
    EdgeInput,
    GraphEdge,
    GraphNode,
    GraphResult,
    GraphStats,
    NodeInput,
    NodeType,
    Relationship,
)

__all__ = [
    "EdgeInput",
    "GraphEdge",
    "GraphNode",
    "GraphResult",
    "GraphStats",
    "GraphStore",
    "NodeInput",
    "NodeType",
    "Relationship",
]
