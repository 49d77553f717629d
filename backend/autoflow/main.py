"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autoflow import __version__
from autoflow.client.automations import AutomationsClient
from autoflow.config import settings
from autoflow.logging_setup import configure_logging
from autoflow.services.session import init_graph_session, shutdown_graph_session

configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Mount the graph session at startup and tear it down at shutdown."""
    client = AutomationsClient(
        base_url=settings.api_base_url,
        token=settings.api_token,
        timeout=settings.request_timeout,
        require_auth=settings.require_auth,
    )
    logger.info(f"Using automations backend at {client.base_url}")
    await init_graph_session(client, settings)

    yield

    await shutdown_graph_session()
    await client.aclose()


app = FastAPI(
    title="Automation Graph Coordinator",
    description="Dependency graph, layout and execution control for automation workflows",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port for the dashboard dev server
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import routers after app is created to avoid circular imports
from autoflow.api import graph  # noqa: E402

app.include_router(graph.router, prefix="/api/v1", tags=["graph"])
