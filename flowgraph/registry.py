"""NodeRegistry — static catalog of node type definitions.

Each definition tells the graph core three things about a node type:
  display_name:        human label, also the prefix of auto-named transformer nodes
                       ("JavaScript Code 1", "JavaScript Code 2", ...)
  category:            trigger | interface | action | transform | return | other
  default_parameters:  wire-format dict merged under caller-supplied parameters

The registry never reads per-flow state; it is safe to share one instance
across every service and request.

Usage:
    registry = NodeRegistry.default()
    registry.lookup("ApiCall").category      # → "action"
    [d.name for d in registry.list()]        # → ["UserIntent", "RegistryComponent", ...]
"""

from __future__ import annotations

import copy
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

CATEGORIES = ("trigger", "interface", "action", "transform", "return", "other")


@dataclass(frozen=True)
class CategoryInfo:
    id: str
    display_name: str
    order: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "displayName": self.display_name, "order": self.order}


# Display grouping for the add-step picker; "other" is never shown as a group.
DEFAULT_CATEGORIES: tuple[CategoryInfo, ...] = (
    CategoryInfo("trigger", "Triggers", 1),
    CategoryInfo("interface", "UI Components", 2),
    CategoryInfo("action", "Actions", 3),
    CategoryInfo("transform", "Transform", 4),
    CategoryInfo("return", "Return Values", 5),
)


@dataclass
class NodeTypeDefinition:
    """Static description of one node type.

    Fields:
        name:               Type name stored on NodeInstance.type ("ApiCall").
        display_name:       Human label ("API Call").
        category:           One of CATEGORIES.
        description:        One-line summary for pickers.
        default_parameters: Wire-format defaults. Copied on every read so callers
                            may mutate the result freely.
        inputs / outputs:   Named handles the node exposes.
    """

    name: str
    display_name: str
    category: str
    description: str = ""
    default_parameters: dict[str, Any] = field(default_factory=dict)
    inputs: tuple[str, ...] = ("input",)
    outputs: tuple[str, ...] = ("output",)

    def __post_init__(self) -> None:
        if self.category not in CATEGORIES:
            raise ValueError(
                f"Unknown category {self.category!r} for node type {self.name!r}. "
                f"Valid: {CATEGORIES}"
            )

    def defaults(self) -> dict[str, Any]:
        return copy.deepcopy(self.default_parameters)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "category": self.category,
            "description": self.description,
            "defaultParameters": self.defaults(),
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
        }


class NodeRegistry:
    """Lookup and listing over a fixed set of NodeTypeDefinition.

    Registration order is preserved by list(). Registering a name twice
    replaces the earlier definition.
    """

    def __init__(
        self,
        definitions: Iterable[NodeTypeDefinition] = (),
        categories: Iterable[CategoryInfo] = DEFAULT_CATEGORIES,
    ) -> None:
        self._definitions: dict[str, NodeTypeDefinition] = {}
        self._categories = sorted(categories, key=lambda c: c.order)
        for definition in definitions:
            self.register(definition)

    def register(self, definition: NodeTypeDefinition) -> None:
        self._definitions[definition.name] = definition

    def lookup(self, type_name: str) -> NodeTypeDefinition | None:
        return self._definitions.get(type_name)

    def list(self) -> list[NodeTypeDefinition]:
        return list(self._definitions.values())

    def categories(self) -> list[CategoryInfo]:
        return list(self._categories)

    def category_of(self, type_name: str) -> str | None:
        definition = self._definitions.get(type_name)
        return definition.category if definition else None

    def is_category(self, type_name: str, category: str) -> bool:
        return self.category_of(type_name) == category

    @classmethod
    def default(cls) -> NodeRegistry:
        """Registry preloaded with the built-in node types."""
        return cls(BUILTIN_NODE_TYPES)


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------

BUILTIN_NODE_TYPES: tuple[NodeTypeDefinition, ...] = (
    NodeTypeDefinition(
        name="UserIntent",
        display_name="User Intent",
        category="trigger",
        description="Expose this flow to the assistant as a callable tool",
        default_parameters={
            "toolName": "",
            "toolDescription": "",
            "isActive": True,
            "parameters": [],
        },
        inputs=(),
        outputs=("main",),
    ),
    NodeTypeDefinition(
        name="RegistryComponent",
        display_name="UI Component",
        category="interface",
        description="Render a component from the UI registry",
        default_parameters={"layoutTemplate": "table", "mockData": None},
    ),
    NodeTypeDefinition(
        name="BlankComponent",
        display_name="Blank Component",
        category="interface",
        description="Empty component scaffold to fill in by hand",
        default_parameters={"layoutTemplate": "blank", "mockData": None},
    ),
    NodeTypeDefinition(
        name="StatCard",
        display_name="Stat Card",
        category="interface",
        description="Display key metrics as cards",
        default_parameters={"layoutTemplate": "stat-card", "mockData": None},
    ),
    NodeTypeDefinition(
        name="PostList",
        display_name="Post List",
        category="interface",
        description="Display a list of posts",
        default_parameters={"layoutTemplate": "post-list", "mockData": None},
    ),
    NodeTypeDefinition(
        name="ApiCall",
        display_name="API Call",
        category="action",
        description="Make an HTTP request to an external API",
        default_parameters={
            "method": "GET",
            "url": "",
            "headers": [],
            "timeout": 30000,
            "inputMappings": [],
        },
        inputs=("main",),
        outputs=("main",),
    ),
    NodeTypeDefinition(
        name="JavaScriptCodeTransform",
        display_name="JavaScript Code",
        category="transform",
        description="Transform data using custom JavaScript code",
        default_parameters={"code": "return input;", "resolvedOutputSchema": None},
        inputs=("main",),
        outputs=("main",),
    ),
    NodeTypeDefinition(
        name="Return",
        display_name="Return Value",
        category="return",
        description="Return text to the assistant",
        default_parameters={"text": ""},
        outputs=(),
    ),
    NodeTypeDefinition(
        name="CallFlow",
        display_name="Call Flow",
        category="return",
        description="Hand off to another flow of the same app",
        default_parameters={"targetFlowId": None},
        outputs=(),
    ),
    NodeTypeDefinition(
        name="Link",
        display_name="Link",
        category="return",
        description="Open a URL after a UI component",
        default_parameters={"url": "", "text": ""},
        outputs=(),
    ),
)
