"""HTTP Surface - welcome payloads, health probe, route-group landings, error envelopes.

Tests cover:
    - GET / and GET /api enumerate all 17 mounted prefixes
    - GET /api/health: 200 {status, uptime, timestamp} / 500 {status: unhealthy, error}
    - store error text never reaches the client
    - every route group answers GET <prefix>/ with {message, version, environment}
    - injected collaborator routers are mounted under their prefix
    - ImmunoError and unexpected exceptions mapped to structured envelopes
    - rate limiting returns 429 with Retry-After, health probe exempt
"""

import pytest
from fastapi import APIRouter
from httpx import ASGITransport, AsyncClient

from immuno_api.api.routes.route_groups import ROUTE_GROUP_SPECS, build_route_groups
from immuno_api.core.errors import ConnectivityError
from immuno_api.main import create_app
from tests.fakes import FakeStore, make_settings


def _client(app, raise_app_exceptions=True):
    return AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions),
        base_url="http://test",
    )


@pytest.fixture
async def client(settings, store):
    async with _client(create_app(settings, store)) as c:
        yield c


@pytest.mark.parametrize("path", ["/", "/api"])
async def test_welcome_lists_mounted_prefixes(client, path):
    resp = await client.get(path)
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Welcome to the Immuno-Warriors API!"
    assert body["version"] == "1.0.0"
    assert body["environment"] == "test"
    assert body["endpoints"] == [p for p, _ in ROUTE_GROUP_SPECS]
    assert len(body["endpoints"]) == 17


async def test_health_ok(client, store):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["uptime"] >= 0
    assert "timestamp" in body
    assert store.calls[-1][0] == "get"


async def test_health_unhealthy_hides_store_error(settings):
    store = FakeStore(fail_reads=-1)
    async with _client(create_app(settings, store)) as c:
        resp = await c.get("/api/health")
    assert resp.status_code == 500
    assert resp.json() == {"status": "unhealthy", "error": "Document store unreachable"}
    assert "UNAVAILABLE" not in resp.text


@pytest.mark.parametrize("prefix, message", ROUTE_GROUP_SPECS)
async def test_route_group_landing(client, prefix, message):
    resp = await client.get(f"{prefix}/")
    assert resp.status_code == 200
    assert resp.json() == {"message": message, "version": "1.0.0", "environment": "test"}


async def test_injected_router_mounted_under_prefix(settings, store):
    combat = APIRouter()

    @combat.get("/sessions")
    async def list_sessions():
        return {"sessions": []}

    app = create_app(settings, store, routers={"/api/combat": combat})
    async with _client(app) as c:
        resp = await c.get("/api/combat/sessions")
        landing = await c.get("/api/combat/")
    assert resp.json() == {"sessions": []}
    assert landing.json()["message"] == "Combat API"


def test_unknown_route_group_rejected():
    with pytest.raises(ValueError, match="/api/unknown"):
        build_route_groups({"/api/unknown": APIRouter()})


def test_app_route_groups_built_from_injected_routers(settings, store):
    combat = APIRouter()
    app = create_app(settings, store, routers={"/api/combat": combat})

    groups = {g.path: g for g in app.state.route_groups}
    assert len(groups) == len(ROUTE_GROUP_SPECS)
    assert groups["/api/combat"].router is combat

    with pytest.raises(ValueError, match="/api/unknown"):
        create_app(settings, store, routers={"/api/unknown": APIRouter()})


async def test_immuno_error_mapped_to_envelope(settings, store):
    sync = APIRouter()

    @sync.get("/pull")
    async def pull():
        raise ConnectivityError("Unable to reach Firestore", cause=OSError("10.1.2.3 refused"))

    app = create_app(settings, store, routers={"/api/sync": sync})
    async with _client(app) as c:
        resp = await c.get("/api/sync/pull")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "STORE_UNAVAILABLE"
    assert "10.1.2.3" not in resp.text


async def test_unexpected_error_never_leaks_details(settings, store):
    memory = APIRouter()

    @memory.get("/boom")
    async def boom():
        raise RuntimeError("secret internal state")

    app = create_app(settings, store, routers={"/api/memory": memory})
    async with _client(app, raise_app_exceptions=False) as c:
        resp = await c.get("/api/memory/boom")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
    assert "secret" not in resp.text


async def test_rate_limit_exceeded_returns_429(store):
    app = create_app(make_settings(rate_limit_max=2, rate_limit_window_ms=60_000), store)
    async with _client(app) as c:
        codes = [(await c.get("/api")).status_code for _ in range(3)]
        health = await c.get("/api/health")
        limited = await c.get("/")
    assert codes == [200, 200, 429]
    assert health.status_code == 200
    assert limited.status_code == 429
    assert int(limited.headers["retry-after"]) >= 1
    assert limited.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"


async def test_cors_preflight_uses_configured_origins(store):
    app = create_app(
        make_settings(cors_allowed_origins="https://immuno-warriors.com"), store,
    )
    async with _client(app) as c:
        resp = await c.options(
            "/api",
            headers={
                "Origin": "https://immuno-warriors.com",
                "Access-Control-Request-Method": "GET",
            },
        )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "https://immuno-warriors.com"
