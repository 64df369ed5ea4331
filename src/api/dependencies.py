"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting onboarding flows
and infrastructure adapters into routes.
"""

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from psycopg_pool import ConnectionPool

from src.adapters.http.backend import HttpMarketplaceBackend
from src.adapters.session.postgres import PostgresSessionStore
from src.api.flows import FlowRegistry, OnboardingFlow, build_flow
from src.config.settings import get_settings


def get_pool(request: Request) -> ConnectionPool:
    """
    Get connection pool from app state.

    The pool is created during app lifespan startup and stored in app.state.
    """
    return request.app.state.pool


def get_backend(request: Request) -> HttpMarketplaceBackend:
    """Create marketplace backend adapter over the shared HTTP client."""
    return HttpMarketplaceBackend(request.app.state.http_client)


def get_registry(request: Request) -> FlowRegistry:
    """Get the flow registry from app state."""
    return request.app.state.flows


def get_flow_factory(request: Request) -> Callable[[str], OnboardingFlow]:
    """
    Create a factory that wires a new flow.

    Each flow gets a session store namespaced by its id.
    """
    settings = get_settings()
    pool = get_pool(request)
    backend = get_backend(request)

    def factory(flow_id: str) -> OnboardingFlow:
        return build_flow(flow_id, backend, PostgresSessionStore(pool, flow_id), settings)

    return factory


async def get_flow(flow_id: str, registry: FlowRegistry = Depends(get_registry)) -> OnboardingFlow:
    """
    Resolve the flow named in the path, 404 if unknown or expired.

    Must run on the event loop: evicting a flow cancels its ceremony task.
    """
    flow = registry.get(flow_id)
    if flow is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Onboarding flow not found",
        )
    return flow
