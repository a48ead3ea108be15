"""
Unit tests for the Graph Store.

Runs against a per-test SQLite database.
"""

from unittest.mock import MagicMock

import pytest

from knowledge_engine.graph.store import GraphStore
from knowledge_engine.graph.types import EdgeInput, NodeInput, NodeType
from knowledge_engine.kernel.errors import (
    InvalidReferenceError,
    NotFoundError,
    ValidationError,
)

pytestmark = pytest.mark.unit


async def _node(graph, org_id, name, node_type=NodeType.TOPIC, external_id=None):
    return await graph.upsert_node(
        NodeInput(organization_id=org_id, type=node_type, name=name, external_id=external_id)
    )


async def _edge(graph, org_id, source, target, relationship="about", weight=1.0):
    return await graph.upsert_edge(
        EdgeInput(
            organization_id=org_id,
            source_node_id=source,
            target_node_id=target,
            relationship=relationship,
            weight=weight,
        )
    )


# =============================================================================
# Node Tests
# =============================================================================


class TestNodes:
    """Node upserts and lookups."""

    @pytest.mark.asyncio
    async def test_upsert_node_by_natural_key_is_idempotent(self, graph, org_id):
        first = await _node(graph, org_id, "Postgres", external_id="postgres")
        second = await _node(graph, org_id, "PostgreSQL", external_id="postgres")

        assert first == second
        node = await graph.get_node(org_id, first)
        assert node.name == "PostgreSQL"
        assert node.type == NodeType.TOPIC

    @pytest.mark.asyncio
    async def test_nodes_without_external_id_are_distinct(self, graph, org_id):
        first = await _node(graph, org_id, "Note")
        second = await _node(graph, org_id, "Note")
        assert first != second

    @pytest.mark.asyncio
    async def test_same_natural_key_in_two_orgs_creates_two_nodes(self, graph, factory):
        org_a, org_b = factory.organization_id(), factory.organization_id()
        a = await _node(graph, org_a, "Postgres", external_id="postgres")
        b = await _node(graph, org_b, "Postgres", external_id="postgres")
        assert a != b

    @pytest.mark.asyncio
    async def test_get_node_of_other_org_is_not_found(self, graph, factory):
        org_a, org_b = factory.organization_id(), factory.organization_id()
        node_id = await _node(graph, org_a, "Secret")
        with pytest.raises(NotFoundError):
            await graph.get_node(org_b, node_id)

    @pytest.mark.asyncio
    async def test_find_node_by_natural_key(self, graph, org_id):
        node_id = await _node(graph, org_id, "alice", NodeType.PERSON, external_id="user_alice")
        found = await graph.find_node(org_id, "person", "user_alice")
        assert found is not None and found.id == node_id
        assert await graph.find_node(org_id, NodeType.TOPIC, "user_alice") is None

    @pytest.mark.asyncio
    async def test_list_nodes_filters_by_type(self, graph, org_id):
        await _node(graph, org_id, "alice", NodeType.PERSON, external_id="u1")
        await _node(graph, org_id, "search", NodeType.TOPIC, external_id="search")

        people = await graph.list_nodes(org_id, node_type="person")
        assert [n.name for n in people] == ["alice"]

    @pytest.mark.asyncio
    async def test_unknown_node_type_is_validation_error(self, graph, org_id):
        with pytest.raises(ValidationError):
            await graph.list_nodes(org_id, node_type="planet")


# =============================================================================
# Edge Tests
# =============================================================================


class TestEdges:
    """Edge upserts, reference checks and deletes."""

    @pytest.mark.asyncio
    async def test_upsert_edge_by_key_updates_weight(self, graph, org_id):
        a = await _node(graph, org_id, "A")
        b = await _node(graph, org_id, "B")

        first = await _edge(graph, org_id, a, b, weight=0.2)
        second = await _edge(graph, org_id, a, b, weight=0.8)

        assert first == second
        edges = await graph.get_edges_between(org_id, b, a)
        assert len(edges) == 1
        assert edges[0].weight == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_relationship_name_is_normalized(self, graph, org_id):
        a = await _node(graph, org_id, "A")
        b = await _node(graph, org_id, "B")
        first = await _edge(graph, org_id, a, b, relationship="About")
        second = await _edge(graph, org_id, a, b, relationship=" about ")
        assert first == second

    @pytest.mark.asyncio
    async def test_edge_to_missing_node_is_invalid_reference(self, graph, org_id):
        a = await _node(graph, org_id, "A")
        with pytest.raises(InvalidReferenceError):
            await _edge(graph, org_id, a, "node_missing")

    @pytest.mark.asyncio
    async def test_edge_across_organizations_is_invalid_reference(self, graph, factory):
        org_a, org_b = factory.organization_id(), factory.organization_id()
        a = await _node(graph, org_a, "A")
        b = await _node(graph, org_b, "B")
        with pytest.raises(InvalidReferenceError):
            await _edge(graph, org_a, a, b)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("weight", [-0.1, float("nan"), float("inf")])
    async def test_invalid_weight_is_rejected(self, graph, org_id, weight):
        a = await _node(graph, org_id, "A")
        b = await _node(graph, org_id, "B")
        with pytest.raises(ValidationError):
            await _edge(graph, org_id, a, b, weight=weight)

    @pytest.mark.asyncio
    async def test_delete_edge(self, graph, org_id):
        a = await _node(graph, org_id, "A")
        b = await _node(graph, org_id, "B")
        edge_id = await _edge(graph, org_id, a, b)

        assert await graph.delete_edge(org_id, edge_id) is True
        assert await graph.delete_edge(org_id, edge_id) is False
        assert await graph.get_edges_between(org_id, a, b) == []


# =============================================================================
# Traversal Tests
# =============================================================================


class TestTraversal:
    """Bounded breadth-first traversal."""

    @pytest.mark.asyncio
    async def test_depth_bounds_the_expansion(self, graph, org_id):
        a = await _node(graph, org_id, "A")
        b = await _node(graph, org_id, "B")
        c = await _node(graph, org_id, "C")
        await _edge(graph, org_id, a, b)
        await _edge(graph, org_id, b, c)

        one_hop = await graph.traverse(org_id, center_id=a, depth=1)
        assert {n.id for n in one_hop.nodes} == {a, b}
        assert one_hop.stats.edge_count == 1

        two_hops = await graph.traverse(org_id, center_id=a, depth=2)
        assert {n.id for n in two_hops.nodes} == {a, b, c}
        assert two_hops.stats.node_count == 3
        assert two_hops.stats.edge_count == 2

    @pytest.mark.asyncio
    async def test_edges_are_followed_in_both_directions(self, graph, org_id):
        a = await _node(graph, org_id, "A")
        b = await _node(graph, org_id, "B")
        await _edge(graph, org_id, b, a)

        result = await graph.traverse(org_id, center_id=a, depth=1)
        assert {n.id for n in result.nodes} == {a, b}

    @pytest.mark.asyncio
    async def test_limit_keeps_heaviest_edges(self, graph, org_id):
        center = await _node(graph, org_id, "center")
        heavy = await _node(graph, org_id, "heavy")
        medium = await _node(graph, org_id, "medium")
        light = await _node(graph, org_id, "light")
        await _edge(graph, org_id, center, light, weight=0.1)
        await _edge(graph, org_id, center, heavy, weight=0.9)
        await _edge(graph, org_id, center, medium, weight=0.5)

        result = await graph.traverse(org_id, center_id=center, depth=1, limit=3)

        assert {n.id for n in result.nodes} == {center, heavy, medium}
        assert sorted(e.weight for e in result.edges) == pytest.approx([0.5, 0.9])

    @pytest.mark.asyncio
    async def test_every_edge_connects_returned_nodes(self, graph, org_id):
        ids = [await _node(graph, org_id, f"n{i}") for i in range(6)]
        for i in range(5):
            await _edge(graph, org_id, ids[i], ids[i + 1], weight=1.0 - i * 0.1)
        await _edge(graph, org_id, ids[0], ids[5], weight=0.05)

        result = await graph.traverse(org_id, center_id=ids[0], depth=5, limit=4)

        returned = {n.id for n in result.nodes}
        assert len(returned) <= 4
        for edge in result.edges:
            assert edge.source_node_id in returned
            assert edge.target_node_id in returned

    @pytest.mark.asyncio
    async def test_relationship_filter(self, graph, org_id):
        a = await _node(graph, org_id, "A")
        b = await _node(graph, org_id, "B")
        c = await _node(graph, org_id, "C")
        await _edge(graph, org_id, a, b, relationship="about")
        await _edge(graph, org_id, a, c, relationship="references")

        result = await graph.traverse(
            org_id, center_id=a, depth=1, relationship_types=["references"]
        )
        assert {n.id for n in result.nodes} == {a, c}
        assert [e.relationship for e in result.edges] == ["references"]

    @pytest.mark.asyncio
    async def test_missing_center_returns_empty_graph(self, graph, org_id):
        result = await graph.traverse(org_id, center_id="node_missing")
        assert result.nodes == []
        assert result.edges == []
        assert result.stats.node_count == 0

    @pytest.mark.asyncio
    async def test_center_of_other_org_returns_empty_graph(self, graph, factory):
        org_a, org_b = factory.organization_id(), factory.organization_id()
        a = await _node(graph, org_a, "A")
        result = await graph.traverse(org_b, center_id=a)
        assert result.nodes == []

    @pytest.mark.asyncio
    async def test_center_type_mismatch_returns_empty_graph(self, graph, org_id):
        a = await _node(graph, org_id, "A", NodeType.TOPIC)
        result = await graph.traverse(org_id, center_id=a, center_type="person")
        assert result.nodes == []

    @pytest.mark.asyncio
    async def test_without_center_seeds_are_scoped_to_org(self, graph, factory):
        org_a, org_b = factory.organization_id(), factory.organization_id()
        a = await _node(graph, org_a, "A")
        await _node(graph, org_b, "B")

        result = await graph.traverse(org_a, depth=1)
        assert {n.id for n in result.nodes} == {a}
        assert all(n.organization_id == org_a for n in result.nodes)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("depth", "limit"),
        [(0, 10), (6, 10), (2, 0), (2, 501)],
    )
    async def test_out_of_range_parameters_fail_before_store_access(self, settings, depth, limit):
        db = MagicMock()
        graph = GraphStore(db, settings)

        with pytest.raises(ValidationError):
            await graph.traverse("org_1", center_id="node_1", depth=depth, limit=limit)
        db.session.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_organization_fails_before_store_access(self, settings):
        db = MagicMock()
        graph = GraphStore(db, settings)

        with pytest.raises(ValidationError):
            await graph.traverse("")
        db.session.assert_not_called()
