"""Status Publisher - writes startup, shutdown and URL status documents to the store.

Invariants:
    - publish_api_url() never raises: failures are logged and swallowed
    - publish_service_status() raises store errors; callers decide whether they are fatal
    - Every write carries a server-assigned timestamp, never the local clock
    - config/api is always merge-written, so unrelated fields survive

Design Decisions:
    - Fixed document paths, idempotent writes: no cross-document transaction needed
    - Startup overwrites api_status (fresh record per run); shutdown merges into it
"""

import logging
import socket

import psutil

from immuno_api.config import Settings
from immuno_api.core.domain_types import API_CONFIG_DOC, API_STATUS_DOC, DocumentStatus
from immuno_api.core.store_protocols import DocumentStore

logger = logging.getLogger(__name__)

FALLBACK_IP = "0.0.0.0"

_STATUS_MESSAGES = {
    DocumentStatus.STARTED: "API started",
    DocumentStatus.STOPPED: "API stopped",
}


def local_ip() -> str:
    """First non-internal IPv4 address of this host."""
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return addr.address
    return FALLBACK_IP


def resolve_api_url(settings: Settings, ip: str | None = None) -> str:
    """Externally visible URL override, otherwise http://<ip>:<port>."""
    if settings.render_external_url:
        return settings.render_external_url
    return f"http://{ip or local_ip()}:{settings.http_port}"


class StatusPublisher:
    """Writes lifecycle status documents for external monitors."""

    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.settings = settings

    @property
    def environment(self) -> str:
        return self.settings.node_env

    async def publish_api_url(self, url: str, status: DocumentStatus) -> None:
        """Merge-write the reachable base URL to config/api (best-effort)."""
        try:
            await self.store.set(API_CONFIG_DOC, {
                "baseUrl": url,
                "status": DocumentStatus(status).value,
                "environment": self.environment,
                "lastUpdated": self.store.server_timestamp,
                "timestamp": self.store.server_timestamp,
            }, merge=True)
            logger.info(
                f"API URL updated in Firestore: {url}",
                extra={"url": url, "status": DocumentStatus(status).value},
            )
        except Exception as e:
            logger.error(
                f"Failed to update API URL in Firestore: {e}", exc_info=True,
            )

    async def publish_service_status(
        self, status: DocumentStatus, *, merge: bool = False, **fields,
    ) -> None:
        """Write status/api_status with fields plus a server timestamp."""
        status = DocumentStatus(status)
        payload = {
            **fields,
            "status": status.value,
            "message": _STATUS_MESSAGES.get(status, f"API {status.value}"),
            "timestamp": self.store.server_timestamp,
        }
        if status is DocumentStatus.STARTED:
            payload["last_started"] = self.store.server_timestamp
        elif status is DocumentStatus.STOPPED:
            payload["last_stopped"] = self.store.server_timestamp
        await self.store.set(API_STATUS_DOC, payload, merge=merge)
        logger.info(
            f"API status published: {status.value}",
            extra={"status": status.value},
        )

    async def publish_started(self, url: str, ip: str) -> None:
        """Startup pair: config/api active, then api_status started."""
        await self.publish_api_url(url, DocumentStatus.ACTIVE)
        await self.publish_service_status(
            DocumentStatus.STARTED,
            port=self.settings.http_port,
            environment=self.environment,
            ip=ip,
            apiUrl=url,
        )
