"""Immuno-Warriors API - FastAPI application factory.

Invariants:
    - Routes registered explicitly (no auto-discovery - ExMA anti-pattern)
    - The store handle is injected into app.state; routes never construct their own
    - Global error handlers map ImmunoError -> structured JSON responses
    - CORS configured from settings (not hardcoded)

Design Decisions:
    - Factory over module-level app: the store only exists after the startup gate passed,
      so the app cannot be built at import time (ADR: composition root in server.py)
    - Lifespan over @app.on_event: FastAPI recommended pattern (ADR: FastAPI 0.128)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from immuno_api.api.error_handlers import register_error_handlers
from immuno_api.api.middleware import register_middleware
from immuno_api.api.routes import health, welcome
from immuno_api.api.routes.route_groups import (
    build_route_groups, mount_route_groups,
)
from immuno_api.config import Settings
from immuno_api.core.domain_types import API_VERSION
from immuno_api.core.store_protocols import DocumentStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """ASGI lifespan - logging only; startup checks ran before the app existed."""
    logger.info("Immuno-Warriors API application ready")
    yield
    logger.info("Immuno-Warriors API application stopping")


def create_app(
    settings: Settings,
    store: DocumentStore,
    routers: dict[str, APIRouter] | None = None,
) -> FastAPI:
    """Build the HTTP app around an already-verified store handle."""
    app = FastAPI(
        title="Immuno-Warriors API", version=API_VERSION, lifespan=lifespan,
    )
    groups = build_route_groups(routers)
    app.state.settings = settings
    app.state.store = store
    app.state.route_groups = groups

    register_middleware(app, settings)
    register_error_handlers(app)

    app.include_router(welcome.router)
    app.include_router(health.router)
    mount_route_groups(app, groups, settings.node_env)
    return app
