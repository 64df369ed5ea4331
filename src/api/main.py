"""
FastAPI application for the onboarding service.

Shared resources live on app.state for the lifetime of the process:

- pool: psycopg ConnectionPool backing the per-flow session stores
- http_client: httpx.AsyncClient for the marketplace backend
- flows: FlowRegistry of in-progress onboarding flows
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from src.adapters.http.backend import create_http_client
from src.adapters.session.postgres import run_migrations
from src.api.flows import FlowRegistry
from src.api.v1 import router as v1_router
from src.config.settings import get_settings

logger = logging.getLogger(__name__)

tags_metadata = [
    {
        "name": "v1",
        "description": "Onboarding API v1 - Role, account details, email code, skills and passkey steps",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the session database and marketplace client; close flows before either goes away."""
    settings = get_settings()

    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
    )
    run_migrations(pool)

    http_client = create_http_client(settings)
    flows = FlowRegistry(
        idle_timeout_seconds=settings.flow_idle_timeout_seconds,
        max_flows=settings.max_flows,
    )
    app.state.pool = pool
    app.state.http_client = http_client
    app.state.flows = flows
    logger.info("Onboarding service ready, marketplace API at %s", settings.api_base_url)

    try:
        yield
    finally:
        await flows.close()
        await http_client.aclose()
        pool.close()
        logger.info("Onboarding service stopped")


app = FastAPI(
    title="onboarding",
    description="Marketplace account onboarding - Drives a browser from role selection to an authenticated session",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

app.include_router(v1_router, prefix="/v1")


@app.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    """
    Liveness check.

    Fails if the session database is unreachable; reports the number of
    flows in progress.
    """
    with request.app.state.pool.connection() as conn:
        conn.execute("SELECT 1")

    return {"status": "healthy", "active_flows": str(len(request.app.state.flows))}
