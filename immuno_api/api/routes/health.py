"""Health Probe - request-time store reachability for orchestrators and monitors.

Invariants:
    - GET /api/health returns 200 only after a successful read of status/health_check
    - Any store failure returns 500 {status: "unhealthy", error} with a generic message
    - The underlying store error is logged, never echoed to the client

Design Decisions:
    - Read, not write: probing must not mutate the store on every poll
    - Uptime measured from process creation (psutil), not from app construction
"""

import logging
import time
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from immuno_api.core.domain_types import HEALTH_CHECK_DOC

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/health", tags=["health"])

UNHEALTHY_MESSAGE = "Document store unreachable"


def process_uptime() -> float:
    """Seconds since this process was created."""
    return round(time.time() - psutil.Process().create_time(), 3)


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    """Liveness + store readiness in one probe."""
    try:
        await request.app.state.store.get(HEALTH_CHECK_DOC)
    except Exception as e:
        logger.error(
            f"Health check failed: {e}", extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "unhealthy", "error": UNHEALTHY_MESSAGE},
        )
    return {
        "status": "healthy",
        "uptime": process_uptime(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
