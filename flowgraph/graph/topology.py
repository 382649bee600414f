"""Graph topology checks over a flow's connections.

would_create_cycle() is the incremental check run by add_connection: a
depth-first reachability search from the proposed target forward through
the existing edges. If the proposed source is reachable, adding the edge
closes a cycle. Recomputed from scratch per call, O(V + E).

audit_flow() inspects a whole stored aggregate and reports every structural
violation it finds. It never raises and never mutates; it exists for flows
written by other tools (imports, hand-edited documents) that did not go
through GraphMutationService.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from flowgraph.errors import MSG_LINK_SOURCE, MSG_TRIGGER_TARGET
from flowgraph.graph.model import Connection, Flow

LINK_NODE_TYPE = "Link"


def _adjacency(connections: Iterable[Connection]) -> dict[str, list[str]]:
    adj: dict[str, list[str]] = defaultdict(list)
    for c in connections:
        adj[c.source_node_id].append(c.target_node_id)
    return adj


def would_create_cycle(
    source_node_id: str, target_node_id: str, connections: Iterable[Connection]
) -> bool:
    """True if adding source → target to connections would close a directed cycle."""
    adj = _adjacency(connections)
    visited: set[str] = set()
    stack = [target_node_id]
    while stack:
        current = stack.pop()
        if current == source_node_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(n for n in adj.get(current, ()) if n not in visited)
    return False


def find_cycle_nodes(node_ids: Iterable[str], connections: Iterable[Connection]) -> list[str]:
    """Return the ids of nodes that lie on some directed cycle, in node order.

    Kahn's algorithm: whatever cannot be peeled off by repeatedly removing
    zero-in-degree nodes sits on (or downstream of) a cycle; the downstream
    tail is then pruned by keeping only nodes that can reach themselves.
    """
    ids = list(node_ids)
    conns = [c for c in connections if c.source_node_id in ids and c.target_node_id in ids]
    in_degree = {n: 0 for n in ids}
    for c in conns:
        in_degree[c.target_node_id] += 1
    adj = _adjacency(conns)

    ready = [n for n in ids if in_degree[n] == 0]
    while ready:
        current = ready.pop()
        for nxt in adj.get(current, ()):
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                ready.append(nxt)

    leftover = [n for n in ids if in_degree[n] > 0]
    return [n for n in leftover if _reaches(n, n, adj)]


def _reaches(start: str, goal: str, adj: dict[str, list[str]]) -> bool:
    visited: set[str] = set()
    stack = list(adj.get(start, ()))
    while stack:
        current = stack.pop()
        if current == goal:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(adj.get(current, ()))
    return False


# ---------------------------------------------------------------------------
# Whole-flow audit
# ---------------------------------------------------------------------------


@dataclass
class FlowValidationReport:
    """Result of audit_flow(). errors is empty when the flow satisfies every invariant."""

    flow_id: str
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"flowId": self.flow_id, "valid": self.valid, "errors": list(self.errors)}


def _duplicates(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for v in values:
        if v in seen and v not in dupes:
            dupes.append(v)
        seen.add(v)
    return dupes


def audit_flow(flow: Flow, category_of: Callable[[str], str | None]) -> FlowValidationReport:
    """Check every structural invariant of flow and collect the violations.

    category_of maps a node type name to its registry category (or None for
    types the registry does not know, which are not category-checked).
    """
    report = FlowValidationReport(flow_id=flow.id)
    errors = report.errors
    nodes = {n.id: n for n in flow.nodes}

    for name in _duplicates(n.name for n in flow.nodes):
        errors.append(f'Duplicate node name "{name}"')
    for slug in _duplicates(n.slug for n in flow.nodes if n.slug):
        errors.append(f'Duplicate node slug "{slug}"')

    seen_keys: set[tuple[str, str, str, str]] = set()
    for c in flow.connections:
        source = nodes.get(c.source_node_id)
        target = nodes.get(c.target_node_id)
        if source is None or target is None:
            missing = c.source_node_id if source is None else c.target_node_id
            errors.append(f"Connection {c.id} references missing node {missing}")
            continue
        if c.source_node_id == c.target_node_id:
            errors.append(f"Connection {c.id} connects node {c.source_node_id} to itself")
        if category_of(target.type) == "trigger":
            errors.append(f"Connection {c.id}: {MSG_TRIGGER_TARGET}")
        if target.type == LINK_NODE_TYPE and category_of(source.type) != "interface":
            errors.append(f"Connection {c.id}: {MSG_LINK_SOURCE}")
        if c.key in seen_keys:
            errors.append(f"Connection {c.id} duplicates an existing connection")
        seen_keys.add(c.key)

    for node_id in find_cycle_nodes(nodes, flow.connections):
        errors.append(f'Node "{nodes[node_id].name}" is part of a circular reference')

    return report
