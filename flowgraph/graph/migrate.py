"""Load-time migration of legacy flow documents.

Older documents predate slugs: nodes carry no `slug` and template fields
reference other nodes by raw id ({{ <node-id>.path }}). migrate() brings a
Flow up to date in one explicit pass:

  1. Every node without a slug gets one, derived from its name and
     de-duplicated against the slugs already assigned, in node order.
  2. Every legacy {{ <node-id>.path }} reference in a template-capable field
     is rewritten to {{ <slug>.path }} using the id → slug map of the flow.

The pass is idempotent: running it on its own output reports changed=False
and leaves the flow untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flowgraph.graph.model import Flow
from flowgraph.graph.references import migrate_legacy_references, rewrite_node_templates
from flowgraph.graph.slugs import generate_unique_slug

logger = logging.getLogger("flowgraph.graph.migrate")


@dataclass
class MigrationResult:
    flow: Flow
    slugs_assigned: int = 0
    nodes_rewritten: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.slugs_assigned or self.nodes_rewritten)


def migrate(flow: Flow) -> MigrationResult:
    """Assign missing slugs and rewrite legacy id references in place.

    Mutates and returns the given flow (wrapped in a MigrationResult). The
    caller decides whether to persist based on result.changed.
    """
    taken: set[str] = {n.slug for n in flow.nodes if n.slug}
    slugs_assigned = 0
    for node in flow.nodes:
        if node.slug:
            continue
        node.slug = generate_unique_slug(node.name, taken)
        taken.add(node.slug)
        slugs_assigned += 1

    id_to_slug = {n.id: n.slug for n in flow.nodes if n.slug}
    nodes_rewritten = rewrite_node_templates(
        flow.nodes, lambda value: migrate_legacy_references(value, id_to_slug)
    )

    result = MigrationResult(
        flow=flow, slugs_assigned=slugs_assigned, nodes_rewritten=nodes_rewritten
    )
    if result.changed:
        logger.info(
            "Migrated flow %s: %d slug(s) assigned, %d node(s) with rewritten references",
            flow.id, slugs_assigned, nodes_rewritten,
        )
    return result
