"""Flow graph engine.

Models a workflow as a directed graph of typed nodes and handle-qualified
connections, keeps it valid under incremental edits, and tests user
transform code in an isolated sandbox.

Entry points:
    GraphMutationService(store, registry)  — node/connection edits (service.py)
    NodeRegistry.default()                  — built-in node type catalog
    open_store(db_path)                     — in-memory or SQLite flow store
    flowgraph.api:app                       — FastAPI application
"""

from flowgraph.errors import FlowGraphError, FlowValidationError, NotFoundError
from flowgraph.graph.model import Connection, Flow, NodeInstance, Position
from flowgraph.persistence import FlowGraphStore, InMemoryFlowStore, SqliteFlowStore, open_store
from flowgraph.registry import NodeRegistry, NodeTypeDefinition
from flowgraph.service import (
    CreateConnectionRequest,
    CreateNodeRequest,
    GraphMutationService,
    InsertTransformerRequest,
    InsertTransformerResult,
    TestTransformRequest,
    UpdateNodeRequest,
)
from flowgraph.tool_names import ToolNameAllocator

__all__ = [
    "FlowGraphError",
    "FlowValidationError",
    "NotFoundError",
    "Connection",
    "Flow",
    "NodeInstance",
    "Position",
    "FlowGraphStore",
    "InMemoryFlowStore",
    "SqliteFlowStore",
    "open_store",
    "NodeRegistry",
    "NodeTypeDefinition",
    "CreateConnectionRequest",
    "CreateNodeRequest",
    "GraphMutationService",
    "InsertTransformerRequest",
    "InsertTransformerResult",
    "TestTransformRequest",
    "UpdateNodeRequest",
    "ToolNameAllocator",
]
