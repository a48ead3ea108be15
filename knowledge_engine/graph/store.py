"""
Graph Store

Typed node/edge storage over the `knowledge_node` and `knowledge_edge` tables
with natural-key upserts and bounded breadth-first traversal.

Public methods open their own transaction. The `*_in_session` variants run
inside a caller's session so the Decision Ledger can write nodes, edges and
decision rows atomically.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.db.client import Database
from knowledge_engine.db.models import KnowledgeEdgeRow, KnowledgeNodeRow
from knowledge_engine.graph.types import (
    EdgeInput,
    GraphEdge,
    GraphNode,
    GraphResult,
    NodeInput,
    NodeType,
)
from knowledge_engine.kernel.errors import (
    InvalidReferenceError,
    NotFoundError,
    ValidationError,
)
from knowledge_engine.kernel.ids import EDGE_ID_PREFIX, NODE_ID_PREFIX, new_prefixed_id
from knowledge_engine.kernel.time import coerce_utc, utc_now
from knowledge_engine.kernel.validation import (
    require_int_in_range,
    require_organization_id,
)

logger = structlog.get_logger()

MIN_DEPTH = 1
MAX_DEPTH = 5
MIN_LIMIT = 1
MAX_LIMIT = 500


def node_from_row(row: KnowledgeNodeRow) -> GraphNode:
    return GraphNode(
        id=row.id,
        organization_id=row.organization_id,
        type=NodeType(row.type),
        name=row.name,
        description=row.description,
        external_id=row.external_id,
        metadata=dict(row.node_metadata or {}),
        created_at=coerce_utc(row.created_at),
        updated_at=coerce_utc(row.updated_at),
    )


def edge_from_row(row: KnowledgeEdgeRow) -> GraphEdge:
    return GraphEdge(
        id=row.id,
        organization_id=row.organization_id,
        source_node_id=row.source_node_id,
        target_node_id=row.target_node_id,
        relationship=row.relationship,
        weight=float(row.weight),
        metadata=dict(row.edge_metadata or {}),
        created_at=coerce_utc(row.created_at),
    )


def _coerce_node_type(value: NodeType | str | None) -> NodeType | None:
    if value is None or isinstance(value, NodeType):
        return value
    try:
        return NodeType(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(
            message=f"Unknown node type: {value}",
            meta={"field": "center_type", "value": str(value)},
        ) from exc


def _validate_weight(weight: float) -> float:
    if not math.isfinite(weight) or weight < 0:
        raise ValidationError(
            message="Edge weight must be a finite number >= 0",
            meta={"field": "weight", "value": weight},
        )
    return float(weight)


class GraphStore:
    """Node/edge persistence and bounded traversal for one database."""

    def __init__(self, db: Database, settings: Settings | None = None):
        self._db = db
        self._settings = settings or get_settings()

    # =========================================================================
    # Nodes
    # =========================================================================

    async def upsert_node(self, node: NodeInput) -> str:
        """Insert a node, or update it in place when its natural key exists."""
        require_organization_id(node.organization_id)
        async with self._db.session() as session:
            return await self.upsert_node_in_session(session, node)

    async def upsert_node_in_session(self, session: AsyncSession, node: NodeInput) -> str:
        now = utc_now()

        if node.external_id is not None:
            existing = await self._find_node_row(
                session, node.organization_id, node.type, node.external_id
            )
            if existing is not None:
                existing.name = node.name
                existing.description = node.description
                existing.node_metadata = dict(node.metadata)
                existing.updated_at = now
                await session.flush()
                return existing.id

        row = KnowledgeNodeRow(
            id=new_prefixed_id(NODE_ID_PREFIX),
            organization_id=node.organization_id,
            type=node.type.value,
            external_id=node.external_id,
            name=node.name,
            description=node.description,
            node_metadata=dict(node.metadata),
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        await session.flush()

        logger.debug(
            "Graph node created",
            organization_id=node.organization_id,
            node_id=row.id,
            node_type=node.type.value,
        )
        return row.id

    async def get_node(self, organization_id: str, node_id: str) -> GraphNode:
        organization_id = require_organization_id(organization_id)
        async with self._db.session() as session:
            row = await self._get_node_row(session, organization_id, node_id)
        if row is None:
            raise NotFoundError(
                message="Node not found",
                meta={"node_id": node_id},
            )
        return node_from_row(row)

    async def find_node(
        self,
        organization_id: str,
        node_type: NodeType | str,
        external_id: str,
    ) -> GraphNode | None:
        """Look a node up by its natural key."""
        organization_id = require_organization_id(organization_id)
        resolved_type = _coerce_node_type(node_type)
        async with self._db.session() as session:
            row = await self._find_node_row(session, organization_id, resolved_type, external_id)
        return node_from_row(row) if row is not None else None

    async def find_node_in_session(
        self,
        session: AsyncSession,
        organization_id: str,
        node_type: NodeType,
        external_id: str,
    ) -> GraphNode | None:
        row = await self._find_node_row(session, organization_id, node_type, external_id)
        return node_from_row(row) if row is not None else None

    async def list_nodes(
        self,
        organization_id: str,
        node_type: NodeType | str | None = None,
        limit: int = 100,
    ) -> list[GraphNode]:
        """Most recently created nodes of an organization."""
        organization_id = require_organization_id(organization_id)
        require_int_in_range(limit, field="limit", minimum=MIN_LIMIT, maximum=MAX_LIMIT)
        resolved_type = _coerce_node_type(node_type)
        async with self._db.session() as session:
            rows = await self._recent_node_rows(session, organization_id, resolved_type, limit)
        return [node_from_row(row) for row in rows]

    # =========================================================================
    # Edges
    # =========================================================================

    async def upsert_edge(self, edge: EdgeInput) -> str:
        """Insert an edge, or update weight/metadata of the existing one.

        Raises:
            InvalidReferenceError: An endpoint is missing or belongs to
                another organization.
            ValidationError: The weight is negative or not finite.
        """
        require_organization_id(edge.organization_id)
        _validate_weight(edge.weight)
        async with self._db.session() as session:
            return await self.upsert_edge_in_session(session, edge)

    async def upsert_edge_in_session(self, session: AsyncSession, edge: EdgeInput) -> str:
        weight = _validate_weight(edge.weight)

        result = await session.execute(
            select(KnowledgeNodeRow.id, KnowledgeNodeRow.organization_id).where(
                KnowledgeNodeRow.id.in_({edge.source_node_id, edge.target_node_id})
            )
        )
        owners = {row.id: row.organization_id for row in result}
        for endpoint in (edge.source_node_id, edge.target_node_id):
            owner = owners.get(endpoint)
            if owner is None:
                raise InvalidReferenceError(
                    message="Edge endpoint does not exist",
                    meta={"node_id": endpoint},
                )
            if owner != edge.organization_id:
                raise InvalidReferenceError(
                    message="Edge endpoint belongs to another organization",
                    meta={"node_id": endpoint},
                )

        existing = (
            await session.execute(
                select(KnowledgeEdgeRow).where(
                    KnowledgeEdgeRow.source_node_id == edge.source_node_id,
                    KnowledgeEdgeRow.target_node_id == edge.target_node_id,
                    KnowledgeEdgeRow.relationship == edge.relationship,
                )
            )
        ).scalar_one_or_none()

        if existing is not None:
            existing.weight = weight
            existing.edge_metadata = dict(edge.metadata)
            await session.flush()
            return existing.id

        row = KnowledgeEdgeRow(
            id=new_prefixed_id(EDGE_ID_PREFIX),
            organization_id=edge.organization_id,
            source_node_id=edge.source_node_id,
            target_node_id=edge.target_node_id,
            relationship=edge.relationship,
            weight=weight,
            edge_metadata=dict(edge.metadata),
            created_at=utc_now(),
        )
        session.add(row)
        await session.flush()
        return row.id

    async def get_edges_between(
        self,
        organization_id: str,
        source_id: str,
        target_id: str,
    ) -> list[GraphEdge]:
        """Edges connecting two nodes, in either direction."""
        organization_id = require_organization_id(organization_id)
        async with self._db.session() as session:
            result = await session.execute(
                select(KnowledgeEdgeRow)
                .where(
                    KnowledgeEdgeRow.organization_id == organization_id,
                    or_(
                        (KnowledgeEdgeRow.source_node_id == source_id)
                        & (KnowledgeEdgeRow.target_node_id == target_id),
                        (KnowledgeEdgeRow.source_node_id == target_id)
                        & (KnowledgeEdgeRow.target_node_id == source_id),
                    ),
                )
                .order_by(KnowledgeEdgeRow.weight.desc(), KnowledgeEdgeRow.id.asc())
            )
            rows = result.scalars().all()
        return [edge_from_row(row) for row in rows]

    async def delete_edge(self, organization_id: str, edge_id: str) -> bool:
        """Delete an edge by id. Returns False when there was nothing to delete."""
        organization_id = require_organization_id(organization_id)
        async with self._db.session() as session:
            result = await session.execute(
                delete(KnowledgeEdgeRow).where(
                    KnowledgeEdgeRow.id == edge_id,
                    KnowledgeEdgeRow.organization_id == organization_id,
                )
            )
        return bool(result.rowcount)

    async def delete_edge_by_key_in_session(
        self,
        session: AsyncSession,
        organization_id: str,
        source_node_id: str,
        target_node_id: str,
        relationship: str,
    ) -> bool:
        result = await session.execute(
            delete(KnowledgeEdgeRow).where(
                KnowledgeEdgeRow.organization_id == organization_id,
                KnowledgeEdgeRow.source_node_id == source_node_id,
                KnowledgeEdgeRow.target_node_id == target_node_id,
                KnowledgeEdgeRow.relationship == relationship,
            )
        )
        return bool(result.rowcount)

    # =========================================================================
    # Traversal
    # =========================================================================

    async def traverse(
        self,
        organization_id: str,
        center_id: str | None = None,
        center_type: NodeType | str | None = None,
        depth: int | None = None,
        relationship_types: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> GraphResult:
        """
        Bounded breadth-first expansion.

        Edges are followed in both directions. At each hop the edges touching
        the frontier are explored in descending weight order (ties by edge id),
        and `limit` caps the number of returned nodes. Once the limit is hit
        the traversal stops, so every kept edge outweighs every dropped edge of
        the same hop.

        Without a center the seeds are the organization's most recent nodes
        (optionally of `center_type`), up to `limit`. A missing center, or a
        center of another type, yields an empty graph.
        """
        organization_id = require_organization_id(organization_id)
        depth = self._settings.graph_default_depth if depth is None else depth
        limit = self._settings.graph_default_limit if limit is None else limit
        require_int_in_range(depth, field="depth", minimum=MIN_DEPTH, maximum=MAX_DEPTH)
        require_int_in_range(limit, field="limit", minimum=MIN_LIMIT, maximum=MAX_LIMIT)
        resolved_type = _coerce_node_type(center_type)
        relationships = (
            sorted({r.strip().lower() for r in relationship_types if r and r.strip()})
            if relationship_types
            else None
        )

        async with self._db.session() as session:
            if center_id:
                center = await self._get_node_row(session, organization_id, center_id)
                if center is None or (
                    resolved_type is not None and center.type != resolved_type.value
                ):
                    logger.debug(
                        "Traversal center not found",
                        organization_id=organization_id,
                        center_id=center_id,
                    )
                    return GraphResult.empty()
                seeds = [center]
            else:
                seeds = await self._recent_node_rows(
                    session, organization_id, resolved_type, limit
                )

            nodes: dict[str, KnowledgeNodeRow] = {row.id: row for row in seeds}
            edges: dict[str, KnowledgeEdgeRow] = {}
            frontier = list(nodes)
            truncated = False

            for _hop in range(depth):
                if not frontier or truncated:
                    break

                next_frontier: list[str] = []
                for edge in await self._edges_touching(
                    session, organization_id, frontier, relationships
                ):
                    if edge.id in edges:
                        continue
                    unseen = [
                        node_id
                        for node_id in {edge.source_node_id, edge.target_node_id}
                        if node_id not in nodes and node_id not in next_frontier
                    ]
                    if len(nodes) + len(next_frontier) + len(unseen) > limit:
                        truncated = True
                        break
                    next_frontier.extend(unseen)
                    edges[edge.id] = edge

                for row in await self._node_rows_by_id(session, organization_id, next_frontier):
                    nodes[row.id] = row
                frontier = [node_id for node_id in next_frontier if node_id in nodes]

        result = GraphResult(
            nodes=[node_from_row(row) for row in nodes.values()],
            edges=[
                edge_from_row(edge)
                for edge in edges.values()
                if edge.source_node_id in nodes and edge.target_node_id in nodes
            ],
        )
        logger.debug(
            "Graph traversed",
            organization_id=organization_id,
            center_id=center_id,
            depth=depth,
            node_count=result.stats.node_count,
            edge_count=result.stats.edge_count,
            truncated=truncated,
        )
        return result

    # =========================================================================
    # Row helpers
    # =========================================================================

    async def _get_node_row(
        self, session: AsyncSession, organization_id: str, node_id: str
    ) -> KnowledgeNodeRow | None:
        result = await session.execute(
            select(KnowledgeNodeRow).where(
                KnowledgeNodeRow.id == node_id,
                KnowledgeNodeRow.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def _find_node_row(
        self,
        session: AsyncSession,
        organization_id: str,
        node_type: NodeType | None,
        external_id: str,
    ) -> KnowledgeNodeRow | None:
        stmt = select(KnowledgeNodeRow).where(
            KnowledgeNodeRow.organization_id == organization_id,
            KnowledgeNodeRow.external_id == external_id,
        )
        if node_type is not None:
            stmt = stmt.where(KnowledgeNodeRow.type == node_type.value)
        result = await session.execute(stmt.order_by(KnowledgeNodeRow.created_at.asc()).limit(1))
        return result.scalar_one_or_none()

    async def _recent_node_rows(
        self,
        session: AsyncSession,
        organization_id: str,
        node_type: NodeType | None,
        limit: int,
    ) -> Sequence[KnowledgeNodeRow]:
        stmt = select(KnowledgeNodeRow).where(KnowledgeNodeRow.organization_id == organization_id)
        if node_type is not None:
            stmt = stmt.where(KnowledgeNodeRow.type == node_type.value)
        stmt = stmt.order_by(KnowledgeNodeRow.created_at.desc(), KnowledgeNodeRow.id.asc()).limit(
            limit
        )
        return (await session.execute(stmt)).scalars().all()

    async def _node_rows_by_id(
        self, session: AsyncSession, organization_id: str, node_ids: Iterable[str]
    ) -> Sequence[KnowledgeNodeRow]:
        ids = list(node_ids)
        if not ids:
            return []
        result = await session.execute(
            select(KnowledgeNodeRow).where(
                KnowledgeNodeRow.id.in_(ids),
                KnowledgeNodeRow.organization_id == organization_id,
            )
        )
        return result.scalars().all()

    async def _edges_touching(
        self,
        session: AsyncSession,
        organization_id: str,
        node_ids: list[str],
        relationships: list[str] | None,
    ) -> Sequence[KnowledgeEdgeRow]:
        stmt = select(KnowledgeEdgeRow).where(
            KnowledgeEdgeRow.organization_id == organization_id,
            or_(
                KnowledgeEdgeRow.source_node_id.in_(node_ids),
                KnowledgeEdgeRow.target_node_id.in_(node_ids),
            ),
        )
        if relationships:
            stmt = stmt.where(KnowledgeEdgeRow.relationship.in_(relationships))
        stmt = stmt.order_by(KnowledgeEdgeRow.weight.desc(), KnowledgeEdgeRow.id.asc())
        return (await session.execute(stmt)).scalars().all()

