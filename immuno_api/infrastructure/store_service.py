"""Store Service - builds the store client once and proves it is reachable.

Invariants:
    - Credentials validated before the client exists (ConfigurationError, never retried)
    - Client created exactly once per StoreService; initialize() reuses it across calls
    - verify_connection() writes status/connection_test and maps ANY store error to ConnectivityError
    - initialize() raises the LAST ConnectivityError once the retry policy is exhausted

Design Decisions:
    - Constructed explicitly by the composition root, not at import time
      (ADR: no global import side effects)
    - client_factory injected: tests hand in an in-memory DocumentStore
"""

import logging
from typing import Callable

from immuno_api.core.domain_types import CONNECTION_TEST_DOC, DocumentStatus
from immuno_api.core.errors import ConnectivityError, ErrorContext
from immuno_api.core.retry import RetryPolicy
from immuno_api.core.store_protocols import DocumentStore
from immuno_api.infrastructure.store_client import StoreCredentials, create_store_client

logger = logging.getLogger(__name__)


class StoreService:
    """Owns the process-wide DocumentStore and its connectivity checks."""

    def __init__(
        self,
        creds: StoreCredentials,
        retry_policy: RetryPolicy | None = None,
        client_factory: Callable[[StoreCredentials], DocumentStore] = create_store_client,
    ):
        creds.validate()
        logger.info(f"Firebase credentials validated for project {creds.project_id}")
        self.creds = creds
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, delay_ms=5000)
        self._client_factory = client_factory
        self._store: DocumentStore | None = None

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            self._store = self._client_factory(self.creds)
        return self._store

    async def initialize(self) -> DocumentStore:
        """Build the client (once) and verify connectivity under the retry policy."""
        store = self.store
        await self.retry_policy.run(
            self.verify_connection, label="Firestore connection check",
        )
        logger.info("Firestore connection verified")
        return store

    async def verify_connection(self) -> None:
        """Write the connection_test document; success means the store is reachable."""
        store = self.store
        try:
            await store.set(CONNECTION_TEST_DOC, {
                "lastChecked": store.server_timestamp,
                "timestamp": store.server_timestamp,
                "status": DocumentStatus.CONNECTED.value,
            })
        except Exception as e:
            logger.error(f"Firestore connection check failed: {e}", exc_info=True)
            raise ConnectivityError(
                "Unable to connect to Firestore", cause=e,
                context=ErrorContext(
                    operation="set", document_path=str(CONNECTION_TEST_DOC),
                ),
            )

    async def shutdown(self) -> None:
        """Release the client; failures are logged, never raised."""
        if self._store is None:
            return
        try:
            await self._store.close()
        except Exception as e:
            logger.error(f"Error while shutting down Firestore client: {e}")
