"""Flow aggregate stores.

The graph core only needs three operations from its store:

    find_by_id(flow_id)    → Flow | None
    save(flow)             → Flow      (whole-document replace)
    find_by_app_id(app_id) → list[Flow]

Every store hands out independent copies: mutating a Flow returned by
find_by_id never changes what is stored until save() is called. This is
what lets GraphMutationService validate and mutate in memory and still
leave the stored aggregate untouched when a check fails.

Table schema (SqliteFlowStore):
    flows (
        id          TEXT PRIMARY KEY,
        app_id      TEXT NOT NULL,
        document    TEXT NOT NULL,   -- Flow.to_dict() as JSON
        updated_at  REAL NOT NULL    -- Unix timestamp of the last save
    )
"""

from __future__ import annotations

import abc
import json
import logging
import time
from typing import Any

from flowgraph.graph.model import Flow

logger = logging.getLogger("flowgraph.persistence.store")


class FlowGraphStore(abc.ABC):
    """Load/save contract for whole Flow aggregates."""

    @abc.abstractmethod
    async def find_by_id(self, flow_id: str) -> Flow | None:
        ...

    @abc.abstractmethod
    async def save(self, flow: Flow) -> Flow:
        ...

    @abc.abstractmethod
    async def find_by_app_id(self, app_id: str) -> list[Flow]:
        ...

    async def setup(self) -> None:
        """Acquire resources. No-op for stores that hold none."""

    async def close(self) -> None:
        """Release resources. No-op for stores that hold none."""


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryFlowStore(FlowGraphStore):
    """Keeps each flow as its serialized dict, so reads and writes never share objects."""

    def __init__(self, flows: list[Flow] | None = None) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        for flow in flows or []:
            self._docs[flow.id] = flow.to_dict()

    async def find_by_id(self, flow_id: str) -> Flow | None:
        doc = self._docs.get(flow_id)
        return Flow.from_dict(doc) if doc is not None else None

    async def save(self, flow: Flow) -> Flow:
        self._docs[flow.id] = flow.to_dict()
        return Flow.from_dict(self._docs[flow.id])

    async def find_by_app_id(self, app_id: str) -> list[Flow]:
        return [Flow.from_dict(d) for d in self._docs.values() if d.get("appId") == app_id]


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS flows (
    id          TEXT PRIMARY KEY,
    app_id      TEXT NOT NULL,
    document    TEXT NOT NULL,
    updated_at  REAL NOT NULL
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_flows_app_id ON flows (app_id)
"""

_UPSERT = """
INSERT INTO flows (id, app_id, document, updated_at)
VALUES (?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    app_id = excluded.app_id,
    document = excluded.document,
    updated_at = excluded.updated_at
"""


class SqliteFlowStore(FlowGraphStore):
    """Async SQLite-backed flow store.

    Lifecycle:
        store = await SqliteFlowStore.open(db_path)
        flow = await store.find_by_id("flow-1")
        ...
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        """Open the SQLite connection and create the flows table."""
        import aiosqlite
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute(_CREATE_TABLE)
        await self._conn.execute(_CREATE_INDEX)
        await self._conn.commit()
        logger.info("SqliteFlowStore ready: %s", self._db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @classmethod
    async def open(cls, db_path: str) -> SqliteFlowStore:
        """Factory: create + setup in one call."""
        store = cls(db_path)
        await store.setup()
        return store

    def _require_conn(self):
        if self._conn is None:
            raise RuntimeError("SqliteFlowStore is not set up; call setup() first")
        return self._conn

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    async def find_by_id(self, flow_id: str) -> Flow | None:
        conn = self._require_conn()
        async with conn.execute("SELECT document FROM flows WHERE id = ?", (flow_id,)) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return Flow.from_dict(json.loads(row[0]))

    async def save(self, flow: Flow) -> Flow:
        conn = self._require_conn()
        document = json.dumps(flow.to_dict())
        await conn.execute(_UPSERT, (flow.id, flow.app_id, document, time.time()))
        await conn.commit()
        logger.debug("SqliteFlowStore: saved flow id=%s (%d bytes)", flow.id, len(document))
        return Flow.from_dict(json.loads(document))

    async def find_by_app_id(self, app_id: str) -> list[Flow]:
        conn = self._require_conn()
        async with conn.execute(
            "SELECT document FROM flows WHERE app_id = ? ORDER BY id", (app_id,)
        ) as cur:
            rows = await cur.fetchall()
        return [Flow.from_dict(json.loads(r[0])) for r in rows]


async def open_store(db_path: str) -> FlowGraphStore:
    """Return a ready store: in-memory for ":memory:", SQLite otherwise."""
    if db_path == ":memory:":
        logger.info("Using in-memory flow store")
        return InMemoryFlowStore()
    return await SqliteFlowStore.open(db_path)
