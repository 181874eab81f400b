"""Welcome Routes - GET / and GET /api enumerate the mounted route-group prefixes."""

from fastapi import APIRouter, Request

from immuno_api.core.domain_types import API_VERSION

router = APIRouter(tags=["welcome"])

WELCOME_MESSAGE = "Welcome to the Immuno-Warriors API!"


def welcome_payload(request: Request) -> dict:
    return {
        "message": WELCOME_MESSAGE,
        "version": API_VERSION,
        "environment": request.app.state.settings.node_env,
        "endpoints": [group.path for group in request.app.state.route_groups],
    }


@router.get("/")
async def root(request: Request):
    return welcome_payload(request)


@router.get("/api")
async def api_root(request: Request):
    return welcome_payload(request)
