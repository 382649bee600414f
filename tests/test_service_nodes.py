"""Tests for node operations on GraphMutationService.

All tests run against InMemoryFlowStore seeded with one empty flow, so every
assertion about persistence re-reads the store rather than trusting the
returned objects.
"""

from __future__ import annotations

import pytest

from flowgraph.errors import FlowValidationError, NotFoundError
from flowgraph.graph.model import Connection, Flow, NodeInstance, Position
from flowgraph.graph.parameters import parameters_for
from flowgraph.persistence import InMemoryFlowStore
from flowgraph.registry import NodeRegistry
from flowgraph.service import (
    CreateConnectionRequest,
    CreateNodeRequest,
    GraphMutationService,
    UpdateNodeRequest,
)

FLOW_ID = "flow-1"
APP_ID = "app-1"


@pytest.fixture
def store():
    return InMemoryFlowStore([Flow(id=FLOW_ID, app_id=APP_ID, name="Main")])


@pytest.fixture
def service(store):
    return GraphMutationService(store, NodeRegistry.default())


async def _add(service, node_type: str, name: str, **kwargs) -> NodeInstance:
    return await service.add_node(FLOW_ID, CreateNodeRequest(type=node_type, name=name, **kwargs))


# ---------------------------------------------------------------------------
# add_node
# ---------------------------------------------------------------------------


class TestAddNode:
    @pytest.mark.asyncio
    async def test_slug_derived_from_name(self, service, store):
        node = await _add(service, "ApiCall", "Fetch Data", position=Position(0, 0))
        assert node.slug == "fetch_data"
        stored = await store.find_by_id(FLOW_ID)
        assert [n.slug for n in stored.nodes] == ["fetch_data"]

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, service, store):
        await _add(service, "ApiCall", "Test Node")
        with pytest.raises(FlowValidationError, match="already exists"):
            await _add(service, "Return", "Test Node")
        assert len((await store.find_by_id(FLOW_ID)).nodes) == 1

    @pytest.mark.asyncio
    async def test_colliding_slug_gets_suffix(self, service):
        await _add(service, "ApiCall", "Fetch Data")
        second = await _add(service, "ApiCall", "fetch-data")
        assert second.slug == "fetch_data_2"

    @pytest.mark.asyncio
    async def test_registry_defaults_merged_under_request(self, service):
        node = await _add(service, "ApiCall", "Fetch", parameters={"url": "https://x"})
        assert node.parameters.url == "https://x"
        assert node.parameters.method == "GET"
        assert node.parameters.timeout == 30000

    @pytest.mark.asyncio
    async def test_trigger_gets_app_unique_tool_name(self, service, store):
        await store.save(
            Flow(
                id="flow-2",
                app_id=APP_ID,
                nodes=[
                    NodeInstance(
                        id="t-other", type="UserIntent", name="Search", slug="search",
                        parameters=parameters_for("UserIntent", {"toolName": "search_products"}),
                    )
                ],
            )
        )
        node = await _add(service, "UserIntent", "Search Products")
        assert node.parameters.tool_name == "search_products_2"

    @pytest.mark.asyncio
    async def test_unknown_flow(self, service):
        with pytest.raises(NotFoundError, match="Flow with id nope not found"):
            await service.add_node("nope", CreateNodeRequest(type="ApiCall", name="X"))


# ---------------------------------------------------------------------------
# get_nodes
# ---------------------------------------------------------------------------


class TestGetNodes:
    @pytest.mark.asyncio
    async def test_legacy_flow_is_migrated_and_persisted(self):
        legacy = Flow.from_dict(
            {
                "id": FLOW_ID,
                "appId": APP_ID,
                "nodes": [
                    {"id": "n-1", "type": "ApiCall", "name": "Get User",
                     "parameters": {"url": "https://x"}},
                    {"id": "n-2", "type": "Return", "name": "Reply",
                     "parameters": {"text": "Hello {{ n-1.body.name }}"}},
                ],
            }
        )
        store = InMemoryFlowStore([legacy])
        service = GraphMutationService(store, NodeRegistry.default())

        nodes = await service.get_nodes(FLOW_ID)
        assert [n.slug for n in nodes] == ["get_user", "reply"]
        assert nodes[1].parameters.text == "Hello {{ get_user.body.name }}"

        stored = await store.find_by_id(FLOW_ID)
        assert stored.nodes[0].slug == "get_user"
        assert stored.nodes[1].parameters.text == "Hello {{ get_user.body.name }}"

    @pytest.mark.asyncio
    async def test_null_headers_do_not_break_later_loads(self, service, store):
        node = await _add(service, "ApiCall", "Fetch", parameters={"headers": None})
        assert node.parameters.headers == []
        nodes = await service.get_nodes(FLOW_ID)
        assert nodes[0].parameters.headers == []
        stored = await store.find_by_id(FLOW_ID)
        assert stored.nodes[0].parameters.to_dict()["headers"] == []

    @pytest.mark.asyncio
    async def test_flow_locks_released_after_each_call(self, service):
        await _add(service, "ApiCall", "A")
        await service.get_nodes(FLOW_ID)
        assert len(service._locks) == 0

    @pytest.mark.asyncio
    async def test_up_to_date_flow_is_not_rewritten(self, service, store):
        await _add(service, "ApiCall", "A")
        before = (await store.find_by_id(FLOW_ID)).updated_at
        await service.get_nodes(FLOW_ID)
        assert (await store.find_by_id(FLOW_ID)).updated_at == before


# ---------------------------------------------------------------------------
# update_node
# ---------------------------------------------------------------------------


class TestUpdateNode:
    @pytest.mark.asyncio
    async def test_rename_rewrites_references_and_nothing_else(self, service, store):
        foo = await _add(service, "ApiCall", "Foo")
        api = await _add(
            service, "ApiCall", "Caller",
            parameters={
                "url": "https://x/{{ foo.id }}?other={{ foo_bar.id }}",
                "headers": [{"key": "Authorization", "value": "Bearer {{foo.token}}"}],
            },
        )
        ret = await _add(service, "Return", "Reply", parameters={"text": "Got {{ foo.name }}"})
        code = await _add(
            service, "JavaScriptCodeTransform", "Code",
            parameters={"code": "return '{{ foo.x }}';"},
        )

        updated = await service.update_node(FLOW_ID, foo.id, UpdateNodeRequest(name="Bar"))
        assert updated.name == "Bar"
        assert updated.slug == "bar"

        stored = await store.find_by_id(FLOW_ID)
        stored_api = stored.get_node(api.id)
        assert stored_api.parameters.url == "https://x/{{ bar.id }}?other={{ foo_bar.id }}"
        assert stored_api.parameters.headers[0].value == "Bearer {{ bar.token}}"
        assert stored.get_node(ret.id).parameters.text == "Got {{ bar.name }}"
        assert stored.get_node(code.id).parameters.code == "return '{{ foo.x }}';"

    @pytest.mark.asyncio
    async def test_rename_to_existing_name_rejected_without_changes(self, service, store):
        a = await _add(service, "ApiCall", "A")
        await _add(service, "ApiCall", "B")
        with pytest.raises(FlowValidationError, match="already exists"):
            await service.update_node(
                FLOW_ID, a.id, UpdateNodeRequest(name="B", parameters={"url": "changed"})
            )
        stored = (await store.find_by_id(FLOW_ID)).get_node(a.id)
        assert stored.name == "A"
        assert stored.parameters.url == ""

    @pytest.mark.asyncio
    async def test_same_name_keeps_slug(self, service):
        a = await _add(service, "ApiCall", "A")
        updated = await service.update_node(FLOW_ID, a.id, UpdateNodeRequest(name="A"))
        assert updated.slug == "a"

    @pytest.mark.asyncio
    async def test_parameters_shallow_merge(self, service):
        a = await _add(
            service, "ApiCall", "A",
            parameters={"url": "https://a", "method": "POST", "custom": {"k": 1}},
        )
        updated = await service.update_node(
            FLOW_ID, a.id, UpdateNodeRequest(parameters={"url": "https://b"})
        )
        assert updated.parameters.url == "https://b"
        assert updated.parameters.method == "POST"
        assert updated.parameters.extra["custom"] == {"k": 1}

    @pytest.mark.asyncio
    async def test_trigger_rename_regenerates_tool_name(self, service):
        trigger = await _add(service, "UserIntent", "Search")
        assert trigger.parameters.tool_name == "search"
        updated = await service.update_node(
            FLOW_ID, trigger.id, UpdateNodeRequest(name="Find Products")
        )
        assert updated.parameters.tool_name == "find_products"

    @pytest.mark.asyncio
    async def test_tool_name_parameter_must_be_unique_in_app(self, service, store):
        await store.save(
            Flow(
                id="flow-2",
                app_id=APP_ID,
                nodes=[
                    NodeInstance(
                        id="t-other", type="UserIntent", name="Search", slug="search",
                        parameters=parameters_for("UserIntent", {"toolName": "search"}),
                    )
                ],
            )
        )
        trigger = await _add(service, "UserIntent", "Lookup")
        with pytest.raises(FlowValidationError, match='Tool name "search"'):
            await service.update_node(
                FLOW_ID, trigger.id, UpdateNodeRequest(parameters={"toolName": "search"})
            )
        stored = (await store.find_by_id(FLOW_ID)).get_node(trigger.id)
        assert stored.parameters.tool_name == "lookup"

    @pytest.mark.asyncio
    async def test_free_tool_name_parameter_accepted(self, service, store):
        trigger = await _add(service, "UserIntent", "Lookup")
        updated = await service.update_node(
            FLOW_ID, trigger.id, UpdateNodeRequest(parameters={"toolName": "find_items"})
        )
        assert updated.parameters.tool_name == "find_items"
        stored = (await store.find_by_id(FLOW_ID)).get_node(trigger.id)
        assert stored.parameters.tool_name == "find_items"

    @pytest.mark.asyncio
    async def test_keeping_own_tool_name_is_not_a_conflict(self, service):
        trigger = await _add(service, "UserIntent", "Lookup")
        updated = await service.update_node(
            FLOW_ID, trigger.id,
            UpdateNodeRequest(parameters={"toolName": "lookup", "isActive": False}),
        )
        assert updated.parameters.tool_name == "lookup"
        assert updated.parameters.is_active is False

    @pytest.mark.asyncio
    async def test_position_update(self, service, store):
        a = await _add(service, "ApiCall", "A")
        await service.update_node_position(FLOW_ID, a.id, Position(12, 34))
        stored = (await store.find_by_id(FLOW_ID)).get_node(a.id)
        assert stored.position == Position(12, 34)

    @pytest.mark.asyncio
    async def test_unknown_node(self, service):
        with pytest.raises(NotFoundError, match="Node with id missing not found in flow flow-1"):
            await service.update_node(FLOW_ID, "missing", UpdateNodeRequest(name="X"))
        with pytest.raises(NotFoundError):
            await service.update_node_position(FLOW_ID, "missing", Position())


# ---------------------------------------------------------------------------
# delete_node
# ---------------------------------------------------------------------------


class TestDeleteNode:
    @pytest.mark.asyncio
    async def test_cascades_every_incident_connection(self, service, store):
        a = await _add(service, "ApiCall", "A")
        b = await _add(service, "ApiCall", "B")
        c = await _add(service, "ApiCall", "C")
        d = await _add(service, "ApiCall", "D")
        for src, dst in ((a, b), (b, c), (b, d), (c, d)):
            await service.add_connection(
                FLOW_ID, CreateConnectionRequest(source_node_id=src.id, target_node_id=dst.id)
            )

        await service.delete_node(FLOW_ID, b.id)

        stored = await store.find_by_id(FLOW_ID)
        assert stored.node_ids() == {a.id, c.id, d.id}
        assert [(x.source_node_id, x.target_node_id) for x in stored.connections] == [
            (c.id, d.id)
        ]

    @pytest.mark.asyncio
    async def test_unknown_node(self, service):
        with pytest.raises(NotFoundError):
            await service.delete_node(FLOW_ID, "missing")

    @pytest.mark.asyncio
    async def test_delete_leaves_unrelated_connections(self, service, store):
        a = await _add(service, "ApiCall", "A")
        b = await _add(service, "ApiCall", "B")
        lonely = await _add(service, "Return", "Lonely")
        await service.add_connection(
            FLOW_ID, CreateConnectionRequest(source_node_id=a.id, target_node_id=b.id)
        )
        await service.delete_node(FLOW_ID, lonely.id)
        stored = await store.find_by_id(FLOW_ID)
        assert stored.connections == [
            Connection(
                stored.connections[0].id, a.id, "output", b.id, "input"
            )
        ]
