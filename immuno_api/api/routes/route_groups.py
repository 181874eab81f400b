"""Route Groups - mounts the opaque domain routers at their path prefixes.

Invariants:
    - Exactly the 17 prefixes of ROUTE_GROUP_SPECS, in order; unknown prefixes raise ValueError
    - Every group answers GET <prefix>/ with {message, version, environment}
    - A collaborator's own GET / (if any) takes precedence over the landing route
    - The core never inspects a collaborator router beyond mounting it

Design Decisions:
    - Routers injected by path prefix: domain route modules live outside this package
    - Missing collaborator -> empty APIRouter, so the prefix still answers its landing route
"""

import logging
from dataclasses import dataclass, field

from fastapi import APIRouter, FastAPI

from immuno_api.core.domain_types import API_VERSION

logger = logging.getLogger(__name__)

ROUTE_GROUP_SPECS: tuple[tuple[str, str], ...] = (
    ("/api/auth", "Authentication API"),
    ("/api/user", "Users API"),
    ("/api/combat", "Combat API"),
    ("/api/research", "Research API"),
    ("/api/gemini", "Gemini AI API"),
    ("/api/base-virale", "Viral Base API"),
    ("/api/pathogen", "Pathogens API"),
    ("/api/antibody", "Antibodies API"),
    ("/api/notification", "Notifications API"),
    ("/api/memory", "Immune Memory API"),
    ("/api/inventory", "Inventory API"),
    ("/api/progression", "Progression API"),
    ("/api/achievement", "Achievements API"),
    ("/api/threat-test", "Threat Scanner API"),
    ("/api/leaderboard", "Leaderboard API"),
    ("/api/multiplayer", "Multiplayer API"),
    ("/api/sync", "Synchronization API"),
)


@dataclass
class RouteGroup:
    """A collaborator router and the prefix it is mounted at."""
    path: str
    base_message: str
    router: APIRouter = field(default_factory=APIRouter)


def build_route_groups(
    routers: dict[str, APIRouter] | None = None,
) -> list[RouteGroup]:
    """Pair each known prefix with its collaborator router (or an empty one)."""
    routers = routers or {}
    unknown = set(routers) - {path for path, _ in ROUTE_GROUP_SPECS}
    if unknown:
        raise ValueError(f"Unknown route group prefixes: {', '.join(sorted(unknown))}")
    return [
        RouteGroup(path, message, routers.get(path) or APIRouter())
        for path, message in ROUTE_GROUP_SPECS
    ]


def _landing_router(group: RouteGroup, environment: str) -> APIRouter:
    landing = APIRouter()

    @landing.get("/")
    async def landing_route():
        return {
            "message": group.base_message,
            "version": API_VERSION,
            "environment": environment,
        }

    return landing


def mount_route_groups(
    app: FastAPI, groups: list[RouteGroup], environment: str,
) -> None:
    for group in groups:
        tag = group.path.rsplit("/", 1)[-1]
        app.include_router(group.router, prefix=group.path, tags=[tag])
        app.include_router(
            _landing_router(group, environment), prefix=group.path, tags=[tag],
        )
        logger.info(f"Route mounted: {group.path}", extra={"path": group.path})
