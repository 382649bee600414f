"""FastAPI service for the flow graph engine.

A thin HTTP layer over GraphMutationService: each route parses a camelCase
body, calls one service operation, and serializes the result with the
model's to_dict(). Domain errors become status codes here and nowhere else:

  NotFoundError        → 404 {"detail": message}
  FlowValidationError  → 400 {"detail": message}

Routes:
  GET    /health
  GET    /node-types
  POST   /flows                                      create an empty flow
  GET    /flows/{flow_id}
  GET    /flows/{flow_id}/nodes
  POST   /flows/{flow_id}/nodes
  PATCH  /flows/{flow_id}/nodes/{node_id}
  PATCH  /flows/{flow_id}/nodes/{node_id}/position
  DELETE /flows/{flow_id}/nodes/{node_id}
  GET    /flows/{flow_id}/connections
  POST   /flows/{flow_id}/connections
  DELETE /flows/{flow_id}/connections/{connection_id}
  POST   /flows/{flow_id}/transformers
  GET    /flows/{flow_id}/validation
  POST   /transforms/test                            rate limited
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from flowgraph.config import EngineSettings
from flowgraph.errors import FlowValidationError, NotFoundError
from flowgraph.graph.model import Flow, Position, new_id
from flowgraph.service import (
    CreateConnectionRequest,
    CreateNodeRequest,
    GraphMutationService,
    InsertTransformerRequest,
    TestTransformRequest,
    UpdateNodeRequest,
)

logger = logging.getLogger("flowgraph.api")

_settings = EngineSettings.from_env()

# ---------------------------------------------------------------------------
# API key authentication (optional, enabled when FLOWGRAPH_API_KEY is set)
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def _verify_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> None:
    """Verify the Bearer token against FLOWGRAPH_API_KEY.

    If no key is configured, all requests are allowed (open dev mode).
    """
    settings: EngineSettings = getattr(request.app.state, "settings", _settings)
    api_key = settings.api_key.get_secret_value()
    if not api_key:
        return
    if not credentials or credentials.credentials != api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the flow store and build the service on startup; close the store on shutdown."""
    from dotenv import load_dotenv
    load_dotenv()

    from flowgraph.persistence import open_store
    from flowgraph.registry import NodeRegistry
    from flowgraph.sandbox.runner import TransformSandbox

    settings = EngineSettings.from_env()
    store = await open_store(settings.db_path)
    sandbox = TransformSandbox(
        timeout_ms=settings.sandbox_timeout_ms,
        max_memory_mb=settings.sandbox_max_memory_mb,
        grace_ms=settings.sandbox_grace_ms,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.service = GraphMutationService(store, NodeRegistry.default(), sandbox=sandbox)
    logger.info(
        "Starting flowgraph API | store: %s | sandbox timeout: %dms",
        settings.db_path, settings.sandbox_timeout_ms,
    )

    yield

    await store.close()
    logger.info("Shutting down flowgraph API")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Flow Graph Engine API",
    description=(
        "Edit workflow graphs node by node with structural invariants enforced "
        "on every change, and test JavaScript transforms in an isolated sandbox."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(FlowValidationError)
async def _invalid(request: Request, exc: FlowValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.message})


def _service(request: Request) -> GraphMutationService:
    return request.app.state.service


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PositionBody(_CamelModel):
    x: float = 0.0
    y: float = 0.0

    def to_position(self) -> Position:
        return Position(x=self.x, y=self.y)


class CreateFlowBody(_CamelModel):
    """Request body for POST /flows."""

    app_id: str = Field(..., description="Owning app; tool names are unique per app.")
    name: str = ""
    description: str = ""
    is_active: bool = True


class CreateNodeBody(_CamelModel):
    """Request body for POST /flows/{flow_id}/nodes."""

    type: str = Field(..., examples=["ApiCall"])
    name: str = Field(..., examples=["Fetch Data"])
    position: PositionBody = Field(default_factory=PositionBody)
    parameters: dict[str, Any] | None = Field(
        None, description="Merged over the node type's default parameters."
    )


class UpdateNodeBody(_CamelModel):
    """Request body for PATCH /flows/{flow_id}/nodes/{node_id}. Omitted fields are untouched."""

    name: str | None = None
    position: PositionBody | None = None
    parameters: dict[str, Any] | None = Field(
        None, description="Shallow-merged into the existing parameters."
    )


class CreateConnectionBody(_CamelModel):
    source_node_id: str
    target_node_id: str
    source_handle: str = "output"
    target_handle: str = "input"


class InsertTransformerBody(_CamelModel):
    source_node_id: str
    target_node_id: str
    transformer_type: str = Field(..., examples=["JavaScriptCodeTransform"])


class TestTransformBody(_CamelModel):
    code: str = Field(..., examples=["return { doubled: input.value * 2 };"])
    sample_input: Any = None


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


@app.get("/health", tags=["system"])
async def health() -> dict:
    return {"api": "ok"}


@app.get("/node-types", tags=["catalog"], dependencies=[Depends(_verify_api_key)])
async def get_node_types(request: Request) -> dict:
    """Node type catalog grouped by category, for the add-step picker."""
    return _service(request).get_node_types()


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


@app.post("/flows", status_code=201, tags=["flows"], dependencies=[Depends(_verify_api_key)])
async def create_flow(request: Request, body: CreateFlowBody) -> dict:
    flow = Flow(
        id=new_id(),
        app_id=body.app_id,
        name=body.name,
        description=body.description,
        is_active=body.is_active,
    )
    saved = await request.app.state.store.save(flow)
    logger.info("Created flow %s for app %s", saved.id, saved.app_id)
    return saved.to_dict()


@app.get("/flows/{flow_id}", tags=["flows"], dependencies=[Depends(_verify_api_key)])
async def get_flow(request: Request, flow_id: str) -> dict:
    flow = await request.app.state.store.find_by_id(flow_id)
    if flow is None:
        raise NotFoundError(f"Flow with id {flow_id} not found")
    return flow.to_dict()


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


@app.get("/flows/{flow_id}/nodes", tags=["nodes"], dependencies=[Depends(_verify_api_key)])
async def get_nodes(request: Request, flow_id: str) -> list[dict]:
    return [n.to_dict() for n in await _service(request).get_nodes(flow_id)]


@app.post(
    "/flows/{flow_id}/nodes", status_code=201, tags=["nodes"],
    dependencies=[Depends(_verify_api_key)],
)
async def add_node(request: Request, flow_id: str, body: CreateNodeBody) -> dict:
    node = await _service(request).add_node(
        flow_id,
        CreateNodeRequest(
            type=body.type,
            name=body.name,
            position=body.position.to_position(),
            parameters=body.parameters,
        ),
    )
    return node.to_dict()


@app.patch(
    "/flows/{flow_id}/nodes/{node_id}", tags=["nodes"], dependencies=[Depends(_verify_api_key)]
)
async def update_node(request: Request, flow_id: str, node_id: str, body: UpdateNodeBody) -> dict:
    node = await _service(request).update_node(
        flow_id,
        node_id,
        UpdateNodeRequest(
            name=body.name,
            position=body.position.to_position() if body.position else None,
            parameters=body.parameters,
        ),
    )
    return node.to_dict()


@app.patch(
    "/flows/{flow_id}/nodes/{node_id}/position", tags=["nodes"],
    dependencies=[Depends(_verify_api_key)],
)
async def update_node_position(
    request: Request, flow_id: str, node_id: str, body: PositionBody
) -> dict:
    node = await _service(request).update_node_position(flow_id, node_id, body.to_position())
    return node.to_dict()


@app.delete(
    "/flows/{flow_id}/nodes/{node_id}", status_code=204, tags=["nodes"],
    dependencies=[Depends(_verify_api_key)],
)
async def delete_node(request: Request, flow_id: str, node_id: str) -> None:
    await _service(request).delete_node(flow_id, node_id)


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


@app.get(
    "/flows/{flow_id}/connections", tags=["connections"], dependencies=[Depends(_verify_api_key)]
)
async def get_connections(request: Request, flow_id: str) -> list[dict]:
    return [c.to_dict() for c in await _service(request).get_connections(flow_id)]


@app.post(
    "/flows/{flow_id}/connections", status_code=201, tags=["connections"],
    dependencies=[Depends(_verify_api_key)],
)
async def add_connection(request: Request, flow_id: str, body: CreateConnectionBody) -> dict:
    connection = await _service(request).add_connection(
        flow_id,
        CreateConnectionRequest(
            source_node_id=body.source_node_id,
            source_handle=body.source_handle,
            target_node_id=body.target_node_id,
            target_handle=body.target_handle,
        ),
    )
    return connection.to_dict()


@app.delete(
    "/flows/{flow_id}/connections/{connection_id}", status_code=204, tags=["connections"],
    dependencies=[Depends(_verify_api_key)],
)
async def delete_connection(request: Request, flow_id: str, connection_id: str) -> None:
    await _service(request).delete_connection(flow_id, connection_id)


# ---------------------------------------------------------------------------
# Transformers and validation
# ---------------------------------------------------------------------------


@app.post(
    "/flows/{flow_id}/transformers", status_code=201, tags=["transformers"],
    dependencies=[Depends(_verify_api_key)],
)
async def insert_transformer(request: Request, flow_id: str, body: InsertTransformerBody) -> dict:
    """Splice a transform node into the source → target edge."""
    result = await _service(request).insert_transformer(
        flow_id,
        InsertTransformerRequest(
            source_node_id=body.source_node_id,
            target_node_id=body.target_node_id,
            transformer_type=body.transformer_type,
        ),
    )
    return result.to_dict()


@app.get(
    "/flows/{flow_id}/validation", tags=["flows"], dependencies=[Depends(_verify_api_key)]
)
async def validate_flow(request: Request, flow_id: str) -> dict:
    report = await _service(request).validate_flow(flow_id)
    return report.to_dict()


@app.post("/transforms/test", tags=["transformers"], dependencies=[Depends(_verify_api_key)])
@limiter.limit(f"{_settings.transforms_per_minute}/minute")
async def test_transform(request: Request, body: TestTransformBody) -> dict:
    """Run transform code against sample input in the sandbox.

    Failures (syntax errors, thrown values, timeouts) come back as
    {"success": false, "error": ...} with status 200.
    """
    result = await asyncio.to_thread(
        _service(request).test_transform,
        TestTransformRequest(code=body.code, sample_input=body.sample_input),
    )
    return result.to_dict()


# ---------------------------------------------------------------------------
# Entry point (for uvicorn programmatic launch)
# ---------------------------------------------------------------------------


def serve(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Launch the FastAPI server via uvicorn."""
    import uvicorn
    logging.basicConfig(
        level=_settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    uvicorn.run(
        "flowgraph.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=_settings.log_level.lower(),
    )


if __name__ == "__main__":
    serve()
