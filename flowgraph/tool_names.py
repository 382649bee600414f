"""Per-app unique tool names for trigger nodes.

Every trigger node (category "trigger") is exposed to the assistant as a
tool, so its `toolName` must be unique across all flows of the owning app,
not just within one flow.

    allocator = ToolNameAllocator(store, registry)
    await allocator.generate_unique_tool_name("app-1", "Search Products")
    # → "search_products", or "search_products_2" if already taken
"""

from __future__ import annotations

import logging

from flowgraph.graph.parameters import UserIntentParameters
from flowgraph.graph.slugs import first_free, to_snake_case
from flowgraph.persistence.store import FlowGraphStore
from flowgraph.registry import NodeRegistry

logger = logging.getLogger("flowgraph.tool_names")


class ToolNameAllocator:
    def __init__(self, store: FlowGraphStore, registry: NodeRegistry) -> None:
        self._store = store
        self._registry = registry

    async def existing_tool_names(
        self, app_id: str, exclude_node_id: str | None = None
    ) -> set[str]:
        """Collect tool names of every trigger node in every flow of app_id."""
        names: set[str] = set()
        for flow in await self._store.find_by_app_id(app_id):
            for node in flow.nodes:
                if node.id == exclude_node_id:
                    continue
                if not self._registry.is_category(node.type, "trigger"):
                    continue
                params = node.parameters
                tool_name = (
                    params.tool_name if isinstance(params, UserIntentParameters)
                    else params.extra.get("toolName")
                )
                if tool_name:
                    names.add(tool_name)
        return names

    async def generate_unique_tool_name(
        self, app_id: str, candidate_name: str, exclude_node_id: str | None = None
    ) -> str:
        """snake_case(candidate_name), suffixed _2, _3, ... until unused in the app."""
        taken = await self.existing_tool_names(app_id, exclude_node_id)
        name = first_free(to_snake_case(candidate_name), taken)
        logger.debug("Allocated tool name %r for app %s (%d taken)", name, app_id, len(taken))
        return name

    async def tool_name_exists(
        self, app_id: str, tool_name: str, exclude_node_id: str | None = None
    ) -> bool:
        return tool_name in await self.existing_tool_names(app_id, exclude_node_id)
