"""Composition Root - startup gate, listener, status publishing and lifecycle wiring.

Invariants:
    - Ordering: credentials -> store connection check -> health check -> listener -> "active" publish
    - The listener is never created when any startup step failed (run() returns 1)
    - "active"/"started" published only after the listener reports started ("published => listening")
    - The store handle is created here once and injected everywhere else
    - run() returns the exit code chosen by the LifecycleCoordinator (0 graceful, 1 fault)
    - SIGTERM/SIGINT are owned by the LifecycleCoordinator from the first line of run():
      a signal during the startup retries cancels them, closes the store and returns 0
    - Signal and fault hooks installed by run() are restored before it returns

Design Decisions:
    - uvicorn.Server driven in-process with its own signal capture disabled: SIGTERM/SIGINT
      belong to the LifecycleCoordinator (ADR: one owner for shutdown)
    - Readiness detected by polling server.started, uvicorn has no listen callback
    - server_factory / client_factory / sleep / ip_resolver injectable: end-to-end tests
      run without sockets or host network lookups
    - Publisher and API URL attached to the lifecycle only once the store is verified:
      a shutdown during startup writes no status documents
"""

import asyncio
import contextlib
import logging
import sys
from typing import Any, Awaitable, Callable, Protocol

import uvicorn
from fastapi import APIRouter, FastAPI

from immuno_api.config import Settings, get_settings
from immuno_api.core.retry import RetryPolicy
from immuno_api.core.store_protocols import DocumentStore
from immuno_api.infrastructure.observability import setup_logging
from immuno_api.infrastructure.store_client import StoreCredentials, create_store_client
from immuno_api.infrastructure.store_service import StoreService
from immuno_api.main import create_app
from immuno_api.services.health_check import HealthCheckRunner
from immuno_api.services.lifecycle import LifecycleCoordinator
from immuno_api.services.status_publisher import (
    StatusPublisher, local_ip, resolve_api_url,
)

logger = logging.getLogger(__name__)

LISTEN_HOST = "0.0.0.0"
READY_POLL_SECONDS = 0.05


class ServerLike(Protocol):
    started: bool
    should_exit: bool

    async def serve(self, sockets: Any = None) -> None: ...


class LifecycleServer(uvicorn.Server):
    """uvicorn server that leaves SIGTERM/SIGINT to the LifecycleCoordinator."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def build_uvicorn_server(app: FastAPI, settings: Settings) -> LifecycleServer:
    config = uvicorn.Config(
        app, host=LISTEN_HOST, port=settings.http_port, log_config=None,
    )
    return LifecycleServer(config)


async def wait_until_listening(
    server: ServerLike, serve_task: asyncio.Task,
) -> bool:
    """True once the server reports started; False if serve() ended first."""
    while not server.started:
        if serve_task.done():
            return False
        await asyncio.sleep(READY_POLL_SECONDS)
    return True


class ServiceRunner:
    """Owns the startup sequence and hands the running process to the lifecycle."""

    def __init__(
        self,
        settings: Settings,
        routers: dict[str, APIRouter] | None = None,
        client_factory: Callable[[StoreCredentials], DocumentStore] = create_store_client,
        server_factory: Callable[[FastAPI, Settings], ServerLike] = build_uvicorn_server,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        install_handlers: bool = True,
        ip_resolver: Callable[[], str] = local_ip,
    ):
        self.settings = settings
        self.routers = routers
        self.client_factory = client_factory
        self.server_factory = server_factory
        self.sleep = sleep
        self.install_handlers = install_handlers
        self.ip_resolver = ip_resolver
        self.store_service: StoreService | None = None
        self.lifecycle: LifecycleCoordinator | None = None
        self.server: ServerLike | None = None
        self.app: FastAPI | None = None
        self._startup_task: asyncio.Task | None = None

    def _retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.settings.startup_max_retries,
            delay_ms=self.settings.startup_retry_delay_ms,
            sleep=self.sleep,
        )

    async def startup_checks(self) -> DocumentStore:
        """Credentials, connection check and health gate. Raises on failure."""
        self.store_service = StoreService(
            self.settings.store_credentials(),
            retry_policy=self._retry_policy(),
            client_factory=self.client_factory,
        )
        store = await self.store_service.initialize()
        await HealthCheckRunner(store, self.settings, self._retry_policy()).run()
        return store

    async def run(self) -> int:
        logger.info("Starting server...")
        self.lifecycle = lifecycle = LifecycleCoordinator(exit=self._stop_listener)
        lifecycle.on_terminate(self._cancel_startup)
        lifecycle.on_terminate(self._shutdown_store)
        if self.install_handlers:
            lifecycle.install_signal_handlers()
            lifecycle.install_fault_handlers()
        try:
            return await self._run(lifecycle)
        finally:
            if self.install_handlers:
                lifecycle.restore_handlers()

    async def _run(self, lifecycle: LifecycleCoordinator) -> int:
        self._startup_task = asyncio.create_task(
            self.startup_checks(), name="startup-checks",
        )
        try:
            store = await self._startup_task
        except asyncio.CancelledError:
            if not lifecycle.is_shutting_down:
                raise
            logger.info("Startup interrupted by shutdown request")
            await lifecycle.wait_for_shutdown()
            return lifecycle.exit_code or 0
        except Exception as e:
            logger.error(f"Failed to start server: {e}", exc_info=True)
            await self._shutdown_store()
            return 1
        if lifecycle.is_shutting_down:
            await lifecycle.wait_for_shutdown()
            return lifecycle.exit_code or 0

        self.app = create_app(self.settings, store, routers=self.routers)
        self.server = server = self.server_factory(self.app, self.settings)
        publisher = StatusPublisher(store, self.settings)
        ip = self.ip_resolver()
        api_url = resolve_api_url(self.settings, ip)
        lifecycle.publisher = publisher
        lifecycle.api_url = api_url

        serve_task = asyncio.create_task(server.serve(), name="http-listener")
        if await wait_until_listening(server, serve_task):
            logger.info(
                f"Server started on port {self.settings.http_port}",
                extra={"url": f"{api_url}/api"},
            )
            await self._publish_started(publisher, api_url, ip)
        await serve_task

        if lifecycle.is_shutting_down:
            await lifecycle.wait_for_shutdown()
        else:
            await lifecycle.notify_listener_closed()
        return lifecycle.exit_code or 0

    def _stop_listener(self, exit_code: int) -> None:
        if self.server is not None:
            self.server.should_exit = True

    async def _cancel_startup(self) -> None:
        if self._startup_task is not None and not self._startup_task.done():
            self._startup_task.cancel()

    async def _shutdown_store(self) -> None:
        if self.store_service is not None:
            await self.store_service.shutdown()

    async def _publish_started(
        self, publisher: StatusPublisher, api_url: str, ip: str,
    ) -> None:
        try:
            await publisher.publish_started(api_url, ip)
        except Exception as e:
            logger.error(f"Failed to publish startup status: {e}", exc_info=True)


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    sys.exit(asyncio.run(ServiceRunner(settings).run()))
