"""Startup Health Check - gate that must pass before the HTTP listener opens.

Invariants:
    - Missing required env vars fail immediately (ConfigurationError, no retry, no store call)
    - One attempt = one write to status/health_check + one collection listing
    - Store failures consume an attempt; exhaustion raises the last ConnectivityError
    - Returns True only when both store operations of a single attempt succeeded

Design Decisions:
    - Independent of request handling: runs before uvicorn binds (ADR: "published => listening")
    - Collection ids only logged, never consumed: the listing is a second reachability signal
    - The only collection listing in the package: store.list_collections() called here directly,
      failures wrapped with operation="list_collections" in the error context
"""

import logging

from immuno_api.config import Settings
from immuno_api.core.domain_types import HEALTH_CHECK_DOC, DocumentStatus
from immuno_api.core.errors import ConfigurationError, ConnectivityError, ErrorContext
from immuno_api.core.retry import RetryPolicy
from immuno_api.core.store_protocols import DocumentStore

logger = logging.getLogger(__name__)


class HealthCheckRunner:
    """Validates configuration, then exercises store write + listing under retry."""

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings,
        retry_policy: RetryPolicy | None = None,
    ):
        self.store = store
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.startup_max_retries,
            delay_ms=settings.startup_retry_delay_ms,
        )

    def check_environment(self) -> None:
        missing = self.settings.missing_required()
        if missing:
            logger.error(f"Missing environment variables: {', '.join(missing)}")
            raise ConfigurationError(missing, scope="environment")
        logger.info("Environment variables check: OK")

    async def run(self) -> bool:
        """Run the full gate; raises on configuration error or exhausted retries."""
        logger.info("Starting health check")
        self.check_environment()
        return await self.retry_policy.run(self._probe_store, label="Health check")

    async def _probe_store(self) -> bool:
        operation = "set"
        try:
            await self.store.set(HEALTH_CHECK_DOC, {
                "lastChecked": self.store.server_timestamp,
                "timestamp": self.store.server_timestamp,
                "status": DocumentStatus.HEALTHY.value,
            })
            logger.info("Firestore write test: OK")
            operation = "list_collections"
            collections = await self.store.list_collections()
        except Exception as e:
            raise ConnectivityError(
                "Firestore health check failed", cause=e,
                context=ErrorContext(
                    operation=operation, document_path=str(HEALTH_CHECK_DOC),
                ),
            )
        logger.info(
            "Firestore connection: OK", extra={"collections": collections},
        )
        return True
