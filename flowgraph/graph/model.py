"""Flow aggregate — nodes, connections, and their wire format.

A Flow exclusively owns an ordered list of NodeInstance and a list of
Connection. It is loaded and saved as one document by a FlowGraphStore;
every mutation in service.py works on an in-memory Flow and persists it
back in full.

Canonical wire format (what the store and the HTTP API exchange):
  {
    "id": "flow-1",
    "appId": "app-1",
    "name": "Checkout",
    "description": "",
    "isActive": true,
    "nodes": [
      {
        "id": "3f0e...",
        "slug": "fetch_data",
        "type": "ApiCall",
        "name": "Fetch Data",
        "position": {"x": 0, "y": 0},
        "parameters": {"method": "GET", "url": "https://...", "headers": []}
      }
    ],
    "connections": [
      {
        "id": "9a1c...",
        "sourceNodeId": "3f0e...",
        "sourceHandle": "output",
        "targetNodeId": "b71d...",
        "targetHandle": "input"
      }
    ],
    "createdAt": "2026-01-01T00:00:00+00:00",
    "updatedAt": "2026-01-01T00:00:00+00:00"
  }
"""

from __future__ import annotations

import copy
import datetime
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from flowgraph.graph.parameters import NodeParameters, parameters_for


def new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# ---------------------------------------------------------------------------
# Graph elements
# ---------------------------------------------------------------------------


@dataclass
class Position:
    """Canvas coordinates. Presentation only; no invariant depends on them."""

    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Position:
        data = data or {}
        return cls(x=data.get("x", 0.0), y=data.get("y", 0.0))

    @staticmethod
    def midpoint(a: Position, b: Position) -> Position:
        return Position(x=(a.x + b.x) / 2, y=(a.y + b.y) / 2)


@dataclass
class NodeInstance:
    """A typed node inside one flow.

    id:         Opaque, stable identifier (uuid4 string).
    slug:       Flow-unique, human-readable identifier derived from name.
                None only on legacy documents that predate slugs; migrate()
                assigns one at load time.
    type:       Node type name from the registry (e.g. "ApiCall").
    name:       Flow-unique display name.
    position:   Canvas coordinates.
    parameters: The variant from graph/parameters.py matching `type`.
    """

    id: str
    type: str
    name: str
    position: Position = field(default_factory=Position)
    parameters: NodeParameters = field(default_factory=lambda: parameters_for(""))
    slug: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "position": self.position.to_dict(),
            "parameters": self.parameters.to_dict(),
        }
        if self.slug is not None:
            out["slug"] = self.slug
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeInstance:
        node_type = data.get("type", "")
        return cls(
            id=data.get("id", ""),
            type=node_type,
            name=data.get("name", ""),
            position=Position.from_dict(data.get("position")),
            parameters=parameters_for(node_type, copy.deepcopy(data.get("parameters"))),
            slug=data.get("slug") or None,
        )


@dataclass
class Connection:
    """A directed, handle-qualified edge between two nodes of the same flow."""

    id: str
    source_node_id: str
    source_handle: str
    target_node_id: str
    target_handle: str

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Identity tuple used for duplicate detection."""
        return (self.source_node_id, self.source_handle, self.target_node_id, self.target_handle)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "sourceNodeId": self.source_node_id,
            "sourceHandle": self.source_handle,
            "targetNodeId": self.target_node_id,
            "targetHandle": self.target_handle,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        return cls(
            id=data.get("id", ""),
            source_node_id=data.get("sourceNodeId", ""),
            source_handle=data.get("sourceHandle", ""),
            target_node_id=data.get("targetNodeId", ""),
            target_handle=data.get("targetHandle", ""),
        )


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------


@dataclass
class Flow:
    """Aggregate root. Owns its nodes and connections exclusively."""

    id: str
    app_id: str
    name: str = ""
    description: str = ""
    is_active: bool = True
    nodes: list[NodeInstance] = field(default_factory=list)
    connections: list[Connection] = field(default_factory=list)
    created_at: datetime.datetime = field(default_factory=_utcnow)
    updated_at: datetime.datetime = field(default_factory=_utcnow)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    def get_node(self, node_id: str) -> NodeInstance | None:
        """Find a node by ID. Returns None if not found."""
        return next((n for n in self.nodes if n.id == node_id), None)

    def get_connection(self, connection_id: str) -> Connection | None:
        return next((c for c in self.connections if c.id == connection_id), None)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "appId": self.app_id,
            "name": self.name,
            "description": self.description,
            "isActive": self.is_active,
            "nodes": [n.to_dict() for n in self.nodes],
            "connections": [c.to_dict() for c in self.connections],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Flow:
        """Parse a stored flow document. Missing node/connection lists become empty."""
        flow = cls(
            id=data.get("id", ""),
            app_id=data.get("appId", ""),
            name=data.get("name", ""),
            description=data.get("description", "") or "",
            is_active=data.get("isActive", True),
            nodes=[NodeInstance.from_dict(n) for n in data.get("nodes") or []],
            connections=[Connection.from_dict(c) for c in data.get("connections") or []],
        )
        if data.get("createdAt"):
            flow.created_at = datetime.datetime.fromisoformat(data["createdAt"])
        if data.get("updatedAt"):
            flow.updated_at = datetime.datetime.fromisoformat(data["updatedAt"])
        return flow
