"""Persistence layer — whole-aggregate load/save of Flow documents.

Exports:
  FlowGraphStore     — abstract contract the graph core depends on
  InMemoryFlowStore  — dict-backed store for tests and ephemeral servers
  SqliteFlowStore    — aiosqlite-backed store, one JSON document per flow
  open_store(path)   — pick and set up the right store for a db path
"""

from flowgraph.persistence.store import (
    FlowGraphStore,
    InMemoryFlowStore,
    SqliteFlowStore,
    open_store,
)

__all__ = [
    "FlowGraphStore",
    "InMemoryFlowStore",
    "SqliteFlowStore",
    "open_store",
]
