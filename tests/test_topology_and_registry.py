"""Tests for cycle detection, whole-flow audits, the node registry, and tool names."""

from __future__ import annotations

import pytest

from flowgraph.errors import MSG_LINK_SOURCE, MSG_TRIGGER_TARGET
from flowgraph.graph.model import Connection, Flow, NodeInstance
from flowgraph.graph.parameters import parameters_for
from flowgraph.graph.topology import audit_flow, find_cycle_nodes, would_create_cycle
from flowgraph.persistence import InMemoryFlowStore
from flowgraph.registry import NodeRegistry, NodeTypeDefinition
from flowgraph.tool_names import ToolNameAllocator


def _edge(source: str, target: str, cid: str | None = None) -> Connection:
    return Connection(cid or f"{source}-{target}", source, "output", target, "input")


def _node(node_id: str, node_type: str = "ApiCall", name: str | None = None, **params) -> NodeInstance:
    return NodeInstance(
        id=node_id,
        type=node_type,
        name=name or node_id,
        slug=node_id,
        parameters=parameters_for(node_type, params or None),
    )


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------


class TestWouldCreateCycle:
    def test_back_edge_closes_cycle(self):
        assert would_create_cycle("b", "a", [_edge("a", "b")])

    def test_transitive_back_edge(self):
        edges = [_edge("a", "b"), _edge("b", "c")]
        assert would_create_cycle("c", "a", edges)

    def test_forward_and_parallel_edges_are_fine(self):
        edges = [_edge("a", "b"), _edge("b", "c")]
        assert not would_create_cycle("a", "c", edges)
        assert not would_create_cycle("d", "a", edges)

    def test_self_edge_counts_as_cycle(self):
        assert would_create_cycle("a", "a", [])

    def test_diamond_is_acyclic(self):
        edges = [_edge("a", "b"), _edge("a", "c"), _edge("b", "d")]
        assert not would_create_cycle("c", "d", edges)


class TestFindCycleNodes:
    def test_dag_has_none(self):
        assert find_cycle_nodes(["a", "b", "c"], [_edge("a", "b"), _edge("b", "c")]) == []

    def test_downstream_tail_is_pruned(self):
        edges = [_edge("a", "b"), _edge("b", "a"), _edge("b", "c")]
        assert find_cycle_nodes(["a", "b", "c"], edges) == ["a", "b"]


# ---------------------------------------------------------------------------
# Whole-flow audit
# ---------------------------------------------------------------------------


class TestAuditFlow:
    registry = NodeRegistry.default()

    def _audit(self, nodes, connections):
        flow = Flow(id="f", app_id="a", nodes=nodes, connections=connections)
        return audit_flow(flow, self.registry.category_of)

    def test_valid_flow(self):
        report = self._audit(
            [_node("t", "UserIntent"), _node("api"), _node("ui", "StatCard"), _node("l", "Link")],
            [_edge("t", "api"), _edge("api", "ui"), _edge("ui", "l")],
        )
        assert report.valid
        assert report.to_dict() == {"flowId": "f", "valid": True, "errors": []}

    def test_collects_every_violation(self):
        nodes = [
            _node("t", "UserIntent"),
            _node("a", name="Same"),
            _node("b", name="Same"),
            _node("l", "Link"),
        ]
        connections = [
            _edge("a", "t", "c1"),
            _edge("a", "l", "c2"),
            _edge("a", "b", "c3"),
            _edge("b", "a", "c4"),
            _edge("a", "ghost", "c5"),
            _edge("a", "b", "c6"),
        ]
        report = self._audit(nodes, connections)
        assert not report.valid
        assert 'Duplicate node name "Same"' in report.errors
        assert f"Connection c1: {MSG_TRIGGER_TARGET}" in report.errors
        assert f"Connection c2: {MSG_LINK_SOURCE}" in report.errors
        assert "Connection c5 references missing node ghost" in report.errors
        assert "Connection c6 duplicates an existing connection" in report.errors
        assert sum("circular reference" in e for e in report.errors) == 2

    def test_self_loop_reported(self):
        report = self._audit([_node("a")], [_edge("a", "a", "loop")])
        assert "Connection loop connects node a to itself" in report.errors

    def test_unknown_types_are_not_category_checked(self):
        report = self._audit([_node("x", "Mystery"), _node("y", "Mystery")], [_edge("x", "y")])
        assert report.valid


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestNodeRegistry:
    def test_builtin_categories(self):
        registry = NodeRegistry.default()
        assert registry.category_of("UserIntent") == "trigger"
        assert registry.category_of("StatCard") == "interface"
        assert registry.category_of("ApiCall") == "action"
        assert registry.category_of("JavaScriptCodeTransform") == "transform"
        assert registry.category_of("Link") == "return"
        assert registry.category_of("Nope") is None

    def test_categories_in_display_order(self):
        ids = [c.id for c in NodeRegistry.default().categories()]
        assert ids == ["trigger", "interface", "action", "transform", "return"]

    def test_defaults_are_copies(self):
        definition = NodeRegistry.default().lookup("ApiCall")
        defaults = definition.defaults()
        defaults["headers"].append({"key": "x", "value": "y"})
        assert definition.defaults()["headers"] == []

    def test_register_replaces_and_keeps_order(self):
        registry = NodeRegistry(
            [
                NodeTypeDefinition("A", "A", "action"),
                NodeTypeDefinition("B", "B", "return"),
            ]
        )
        registry.register(NodeTypeDefinition("A", "A2", "action"))
        assert [d.name for d in registry.list()] == ["A", "B"]
        assert registry.lookup("A").display_name == "A2"

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError, match="Unknown category"):
            NodeTypeDefinition("X", "X", "bogus")

    def test_to_dict_is_camel_case(self):
        data = NodeRegistry.default().lookup("JavaScriptCodeTransform").to_dict()
        assert data["displayName"] == "JavaScript Code"
        assert data["defaultParameters"]["code"] == "return input;"


# ---------------------------------------------------------------------------
# Tool names
# ---------------------------------------------------------------------------


def _trigger(node_id: str, tool_name: str) -> NodeInstance:
    return _node(node_id, "UserIntent", toolName=tool_name)


@pytest.fixture
def allocator():
    store = InMemoryFlowStore(
        [
            Flow(id="f1", app_id="app", nodes=[_trigger("t1", "search"), _node("api")]),
            Flow(id="f2", app_id="app", nodes=[_trigger("t2", "search_2")]),
            Flow(id="f3", app_id="other", nodes=[_trigger("t3", "checkout")]),
        ]
    )
    return ToolNameAllocator(store, NodeRegistry.default())


class TestToolNameAllocator:
    @pytest.mark.asyncio
    async def test_collects_across_flows_of_one_app(self, allocator):
        assert await allocator.existing_tool_names("app") == {"search", "search_2"}

    @pytest.mark.asyncio
    async def test_suffix_skips_names_taken_in_other_flows(self, allocator):
        assert await allocator.generate_unique_tool_name("app", "Search") == "search_3"

    @pytest.mark.asyncio
    async def test_other_apps_do_not_collide(self, allocator):
        assert await allocator.generate_unique_tool_name("app", "Checkout") == "checkout"

    @pytest.mark.asyncio
    async def test_excluded_node_frees_its_name(self, allocator):
        name = await allocator.generate_unique_tool_name("app", "Search", exclude_node_id="t1")
        assert name == "search"

    @pytest.mark.asyncio
    async def test_tool_name_exists(self, allocator):
        assert await allocator.tool_name_exists("app", "search_2")
        assert not await allocator.tool_name_exists("app", "search_2", exclude_node_id="t2")
