"""Template references — {{ <slug>.<dotted.path> }} tokens in node parameters.

A template reference lets one node read another node's output at execution
time. Only the template-capable fields declared by each parameter variant
(see graph/parameters.py) are scanned or rewritten.

Two rewrites exist:

  legacy id → slug   {{ 3f0e...-uuid.data }}  → {{ fetch_data.data }}
                     Applied once by migrate() using the id→slug map.
  slug rename        {{ old_slug.x.y }}        → {{ new_slug.x.y }}
                     Applied by update_node when a rename changes a slug.

Both rewrites substitute the identifier only; the path and every other
character of the field are preserved.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from flowgraph.graph.model import NodeInstance

# {{ identifier.path }}; the identifier runs up to the first dot.
_REFERENCE = re.compile(r"\{\{\s*([^\s.{}]+)\.([^}]+?)\s*\}\}")


@dataclass(frozen=True)
class TemplateReference:
    identifier: str
    path: str


def find_references(template: str) -> list[TemplateReference]:
    """Return every {{ identifier.path }} token in template, in order."""
    return [
        TemplateReference(identifier=m.group(1), path=m.group(2).strip())
        for m in _REFERENCE.finditer(template)
    ]


def migrate_legacy_references(template: str, id_to_slug: Mapping[str, str]) -> str:
    """Rewrite {{ <node-id>.path }} to {{ <slug>.path }} for ids known to id_to_slug.

    Tokens whose identifier is not a known node id (already a slug, or a
    reference to a deleted node) are returned unchanged.
    """

    def _sub(match: re.Match[str]) -> str:
        slug = id_to_slug.get(match.group(1))
        if slug is None:
            return match.group(0)
        return "{{ " + slug + "." + match.group(2).strip() + " }}"

    return _REFERENCE.sub(_sub, template)


def rename_slug_references(template: str, old_slug: str, new_slug: str) -> str:
    """Rewrite {{ old_slug. prefixes to {{ new_slug. and touch nothing else."""
    pattern = re.compile(r"\{\{\s*" + re.escape(old_slug) + r"\.")
    return pattern.sub(lambda _m: "{{ " + new_slug + ".", template)


def rewrite_node_templates(
    nodes: Iterable[NodeInstance],
    fn: Callable[[str], str],
    skip_node_id: str | None = None,
) -> int:
    """Apply fn to the template fields of every node. Returns how many nodes changed."""
    changed = 0
    for node in nodes:
        if node.id == skip_node_id:
            continue
        if node.parameters.rewrite_templates(fn):
            changed += 1
    return changed
