"""GraphMutationService — node and connection edits on a Flow aggregate.

Every public coroutine is one read-modify-write cycle:

  1. load the whole Flow from the store and run migrate() on it
  2. validate the request against the flow; raise before touching anything
  3. mutate the in-memory Flow
  4. save the whole Flow back

Because the store hands out copies and every check runs before step 3, a
rejected request leaves both the in-memory and the stored aggregate
unchanged.

Calls for the same flow are serialized by a per-flow asyncio.Lock, so two
concurrent requests in one process never interleave their load and save.
Arbitration between processes is left to the store.

Invariants maintained after every successful mutation:
  - node names and slugs are unique within a flow
  - connections form a DAG, with no self-loops and no duplicate
    (source, source_handle, target, target_handle) tuples
  - nothing connects into a trigger node
  - a Link node only receives connections from interface nodes
  - trigger tool names are unique across all flows of the app
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flowgraph.errors import (
    MSG_CYCLE,
    MSG_DUPLICATE_CONNECTION,
    MSG_LINK_SOURCE,
    MSG_SELF_CONNECTION,
    MSG_TRIGGER_TARGET,
    FlowValidationError,
    NotFoundError,
    duplicate_name,
    duplicate_tool_name,
)
from flowgraph.graph.migrate import migrate
from flowgraph.graph.model import Connection, Flow, NodeInstance, Position, new_id
from flowgraph.graph.parameters import NodeParameters, UserIntentParameters, parameters_for
from flowgraph.graph.references import rename_slug_references, rewrite_node_templates
from flowgraph.graph.slugs import generate_unique_slug
from flowgraph.graph.topology import (
    LINK_NODE_TYPE,
    FlowValidationReport,
    audit_flow,
    would_create_cycle,
)
from flowgraph.persistence.store import FlowGraphStore
from flowgraph.registry import NodeRegistry
from flowgraph.tool_names import ToolNameAllocator

if TYPE_CHECKING:
    from flowgraph.sandbox.runner import TestTransformResult, TransformSandbox

logger = logging.getLogger("flowgraph.service")

DEFAULT_SOURCE_HANDLE = "output"
DEFAULT_TARGET_HANDLE = "input"


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------


@dataclass
class CreateNodeRequest:
    type: str
    name: str
    position: Position = field(default_factory=Position)
    parameters: dict[str, Any] | None = None


@dataclass
class UpdateNodeRequest:
    """Partial update. Fields left as None are not touched."""

    name: str | None = None
    position: Position | None = None
    parameters: dict[str, Any] | None = None


@dataclass
class CreateConnectionRequest:
    source_node_id: str
    target_node_id: str
    source_handle: str = DEFAULT_SOURCE_HANDLE
    target_handle: str = DEFAULT_TARGET_HANDLE


@dataclass
class InsertTransformerRequest:
    source_node_id: str
    target_node_id: str
    transformer_type: str


@dataclass
class TestTransformRequest:
    __test__ = False  # not a pytest test class

    code: str
    sample_input: Any = None


@dataclass
class InsertTransformerResult:
    transformer_node: NodeInstance
    source_connection: Connection
    target_connection: Connection

    def to_dict(self) -> dict[str, Any]:
        return {
            "transformerNode": self.transformer_node.to_dict(),
            "sourceConnection": self.source_connection.to_dict(),
            "targetConnection": self.target_connection.to_dict(),
        }


def _set_tool_name(params: NodeParameters, tool_name: str) -> None:
    if isinstance(params, UserIntentParameters):
        params.tool_name = tool_name
    else:
        params.extra["toolName"] = tool_name


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class GraphMutationService:
    """Node/connection CRUD with invariant enforcement for one store and catalog.

    Usage:
        service = GraphMutationService(store, NodeRegistry.default())
        node = await service.add_node("flow-1", CreateNodeRequest(type="ApiCall", name="Fetch Data"))
        node.slug   # → "fetch_data"
    """

    def __init__(
        self,
        store: FlowGraphStore,
        registry: NodeRegistry,
        tool_names: ToolNameAllocator | None = None,
        sandbox: TransformSandbox | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._tool_names = tool_names or ToolNameAllocator(store, registry)
        self._sandbox = sandbox
        # An entry lives only while some call holds or awaits its lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, flow_id: str) -> asyncio.Lock:
        lock = self._locks.get(flow_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[flow_id] = lock
        return lock

    async def _load(self, flow_id: str) -> tuple[Flow, bool]:
        """Load and migrate a flow. Returns (flow, migration_changed_anything)."""
        flow = await self._store.find_by_id(flow_id)
        if flow is None:
            raise NotFoundError(f"Flow with id {flow_id} not found")
        result = migrate(flow)
        return result.flow, result.changed

    async def _save(self, flow: Flow) -> None:
        flow.touch()
        await self._store.save(flow)

    @staticmethod
    def _require_node(flow: Flow, node_id: str) -> NodeInstance:
        node = flow.get_node(node_id)
        if node is None:
            raise NotFoundError(f"Node with id {node_id} not found in flow {flow.id}")
        return node

    def _is_trigger(self, node_type: str) -> bool:
        return self._registry.is_category(node_type, "trigger")

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_node_types(self) -> dict[str, Any]:
        """Node type catalog plus the category groups in display order."""
        return {
            "nodeTypes": [d.to_dict() for d in self._registry.list()],
            "categories": [c.to_dict() for c in self._registry.categories()],
        }

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def get_nodes(self, flow_id: str) -> list[NodeInstance]:
        """Return the flow's nodes, persisting the load-time migration if it changed anything."""
        async with self._lock(flow_id):
            flow, migrated = await self._load(flow_id)
            if migrated:
                await self._save(flow)
            return flow.nodes

    async def add_node(self, flow_id: str, request: CreateNodeRequest) -> NodeInstance:
        async with self._lock(flow_id):
            flow, _ = await self._load(flow_id)

            if any(n.name == request.name for n in flow.nodes):
                raise duplicate_name(request.name)

            slug = generate_unique_slug(request.name, {n.slug for n in flow.nodes if n.slug})

            definition = self._registry.lookup(request.type)
            defaults = definition.defaults() if definition else {}
            params = parameters_for(request.type, {**defaults, **(request.parameters or {})})

            if self._is_trigger(request.type):
                tool_name = await self._tool_names.generate_unique_tool_name(
                    flow.app_id, request.name
                )
                _set_tool_name(params, tool_name)

            node = NodeInstance(
                id=new_id(),
                type=request.type,
                name=request.name,
                position=Position(x=request.position.x, y=request.position.y),
                parameters=params,
                slug=slug,
            )
            flow.nodes.append(node)
            await self._save(flow)
            logger.info(
                "Added node %s (%s, slug=%s) to flow %s", node.id, node.type, node.slug, flow_id
            )
            return node

    async def update_node(
        self, flow_id: str, node_id: str, request: UpdateNodeRequest
    ) -> NodeInstance:
        async with self._lock(flow_id):
            flow, _ = await self._load(flow_id)
            node = self._require_node(flow, node_id)

            renamed = request.name is not None and request.name != node.name
            new_slug = node.slug
            new_tool_name: str | None = None
            if renamed:
                if any(n.name == request.name and n.id != node_id for n in flow.nodes):
                    raise duplicate_name(request.name)
                other_slugs = {n.slug for n in flow.nodes if n.id != node_id and n.slug}
                new_slug = generate_unique_slug(request.name, other_slugs)
                if self._is_trigger(node.type):
                    new_tool_name = await self._tool_names.generate_unique_tool_name(
                        flow.app_id, request.name, exclude_node_id=node_id
                    )
            requested_tool_name = (request.parameters or {}).get("toolName")
            if (
                new_tool_name is None
                and requested_tool_name
                and self._is_trigger(node.type)
                and await self._tool_names.tool_name_exists(
                    flow.app_id, requested_tool_name, exclude_node_id=node_id
                )
            ):
                raise duplicate_tool_name(requested_tool_name)

            # All checks passed; mutate.
            old_slug = node.slug
            if renamed:
                node.name = request.name
                node.slug = new_slug
            if request.position is not None:
                node.position = Position(x=request.position.x, y=request.position.y)
            if request.parameters is not None:
                node.parameters = node.parameters.merged(request.parameters)
            if new_tool_name is not None:
                _set_tool_name(node.parameters, new_tool_name)

            if renamed and old_slug and new_slug != old_slug:
                rewritten = rewrite_node_templates(
                    flow.nodes,
                    lambda value: rename_slug_references(value, old_slug, new_slug),
                    skip_node_id=node_id,
                )
                logger.info(
                    "Renamed slug %s → %s in flow %s; rewrote references in %d node(s)",
                    old_slug, new_slug, flow_id, rewritten,
                )

            await self._save(flow)
            return node

    async def update_node_position(
        self, flow_id: str, node_id: str, position: Position
    ) -> NodeInstance:
        async with self._lock(flow_id):
            flow, _ = await self._load(flow_id)
            node = self._require_node(flow, node_id)
            node.position = Position(x=position.x, y=position.y)
            await self._save(flow)
            return node

    async def delete_node(self, flow_id: str, node_id: str) -> None:
        """Remove a node and every connection it is the source or target of."""
        async with self._lock(flow_id):
            flow, _ = await self._load(flow_id)
            self._require_node(flow, node_id)

            flow.nodes = [n for n in flow.nodes if n.id != node_id]
            before = len(flow.connections)
            flow.connections = [
                c for c in flow.connections
                if c.source_node_id != node_id and c.target_node_id != node_id
            ]
            await self._save(flow)
            logger.info(
                "Deleted node %s from flow %s (cascaded %d connection(s))",
                node_id, flow_id, before - len(flow.connections),
            )

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def get_connections(self, flow_id: str) -> list[Connection]:
        flow, _ = await self._load(flow_id)
        return flow.connections

    async def add_connection(
        self, flow_id: str, request: CreateConnectionRequest
    ) -> Connection:
        """Validate and append a connection. Checks run in a fixed order; the first failure wins."""
        async with self._lock(flow_id):
            flow, _ = await self._load(flow_id)

            source = flow.get_node(request.source_node_id)
            if source is None:
                raise FlowValidationError(
                    f"Source node {request.source_node_id} not found in flow"
                )
            target = flow.get_node(request.target_node_id)
            if target is None:
                raise FlowValidationError(
                    f"Target node {request.target_node_id} not found in flow"
                )
            if self._is_trigger(target.type):
                raise FlowValidationError(MSG_TRIGGER_TARGET)
            if target.type == LINK_NODE_TYPE and not self._registry.is_category(
                source.type, "interface"
            ):
                raise FlowValidationError(MSG_LINK_SOURCE)
            if request.source_node_id == request.target_node_id:
                raise FlowValidationError(MSG_SELF_CONNECTION)
            if would_create_cycle(
                request.source_node_id, request.target_node_id, flow.connections
            ):
                raise FlowValidationError(MSG_CYCLE)

            connection = Connection(
                id=new_id(),
                source_node_id=request.source_node_id,
                source_handle=request.source_handle,
                target_node_id=request.target_node_id,
                target_handle=request.target_handle,
            )
            if any(c.key == connection.key for c in flow.connections):
                raise FlowValidationError(MSG_DUPLICATE_CONNECTION)

            flow.connections.append(connection)
            await self._save(flow)
            logger.info(
                "Connected %s → %s in flow %s",
                connection.source_node_id, connection.target_node_id, flow_id,
            )
            return connection

    async def delete_connection(self, flow_id: str, connection_id: str) -> None:
        async with self._lock(flow_id):
            flow, _ = await self._load(flow_id)
            if flow.get_connection(connection_id) is None:
                raise NotFoundError(
                    f"Connection with id {connection_id} not found in flow {flow_id}"
                )
            flow.connections = [c for c in flow.connections if c.id != connection_id]
            await self._save(flow)

    # ------------------------------------------------------------------
    # Transformers
    # ------------------------------------------------------------------

    async def insert_transformer(
        self, flow_id: str, request: InsertTransformerRequest
    ) -> InsertTransformerResult:
        """Splice a transform node between source and target.

        Any direct source → target connection is replaced by
        source → transformer → target. If there is none, the transformer is
        still inserted and wired, unless target already reaches source, which
        would close a cycle.
        """
        async with self._lock(flow_id):
            flow, _ = await self._load(flow_id)

            source = flow.get_node(request.source_node_id)
            if source is None:
                raise NotFoundError(f"Source node {request.source_node_id} not found")
            target = flow.get_node(request.target_node_id)
            if target is None:
                raise NotFoundError(f"Target node {request.target_node_id} not found")

            definition = self._registry.lookup(request.transformer_type)
            if definition is None:
                raise FlowValidationError(
                    f"Transformer type {request.transformer_type} not found"
                )
            if definition.category != "transform":
                raise FlowValidationError(
                    f"Node type {request.transformer_type} is not a transformer"
                )

            remaining = [
                c for c in flow.connections
                if not (c.source_node_id == source.id and c.target_node_id == target.id)
            ]
            if would_create_cycle(source.id, target.id, remaining):
                raise FlowValidationError(MSG_CYCLE)

            # "<display name> <N>", N = 1 + nodes of this type, bumped past taken names.
            names = {node.name for node in flow.nodes}
            index = sum(1 for node in flow.nodes if node.type == request.transformer_type) + 1
            name = f"{definition.display_name} {index}"
            while name in names:
                index += 1
                name = f"{definition.display_name} {index}"

            transformer = NodeInstance(
                id=new_id(),
                type=request.transformer_type,
                name=name,
                position=Position.midpoint(source.position, target.position),
                parameters=parameters_for(request.transformer_type, definition.defaults()),
                slug=generate_unique_slug(name, {n.slug for n in flow.nodes if n.slug}),
            )
            source_connection = Connection(
                id=new_id(),
                source_node_id=source.id,
                source_handle=DEFAULT_SOURCE_HANDLE,
                target_node_id=transformer.id,
                target_handle=DEFAULT_TARGET_HANDLE,
            )
            target_connection = Connection(
                id=new_id(),
                source_node_id=transformer.id,
                source_handle=DEFAULT_SOURCE_HANDLE,
                target_node_id=target.id,
                target_handle=DEFAULT_TARGET_HANDLE,
            )

            flow.connections = remaining
            flow.nodes.append(transformer)
            flow.connections.extend([source_connection, target_connection])
            await self._save(flow)
            logger.info(
                "Inserted %s %s between %s and %s in flow %s",
                transformer.type, transformer.id, source.id, target.id, flow_id,
            )
            return InsertTransformerResult(
                transformer_node=transformer,
                source_connection=source_connection,
                target_connection=target_connection,
            )

    def test_transform(self, request: TestTransformRequest) -> TestTransformResult:
        """Run transform code in the sandbox. Blocking; never raises."""
        if self._sandbox is None:
            raise RuntimeError("GraphMutationService was created without a TransformSandbox")
        return self._sandbox.test_transform(request.code, request.sample_input)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def validate_flow(self, flow_id: str) -> FlowValidationReport:
        """Report every invariant violation in the stored flow. Read-only."""
        flow, _ = await self._load(flow_id)
        report = audit_flow(flow, self._registry.category_of)
        if not report.valid:
            logger.info("Flow %s failed audit with %d error(s)", flow_id, len(report.errors))
        return report
