"""Lifecycle Coordinator - owns RUNNING -> SHUTTING_DOWN and everything that happens on it.

Invariants:
    - State moves RUNNING -> SHUTTING_DOWN exactly once; SHUTTING_DOWN is terminal
    - The check-and-set happens synchronously, before the first await: overlapping
      SIGTERM/SIGINT (or a fault during a graceful stop) yield ONE shutdown sequence
    - Shutdown sequence: api_status stopped -> config/api stopped -> terminate handlers -> exit(code)
    - Store failures during shutdown are logged and skipped: shutdown never hangs on the store
    - exit() called at most once; 0 for signals and listener closure, 1 for faults while RUNNING
    - Unhandled task exceptions are logged only; they never change state
    - restore_handlers() puts back the loop exception handler and sys.excepthook
      that were active before install_fault_handlers(), and removes the signal handlers

Design Decisions:
    - exit injected (sys.exit by default): tests observe exit codes without ending the process
    - loop.add_signal_handler over signal.signal: handlers run inside the event loop,
      so the shutdown sequence can await store writes
    - Fault vs. rejection split kept explicit (see DESIGN.md open questions)
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Awaitable, Callable

from immuno_api.core.domain_types import DocumentStatus, LifecycleState
from immuno_api.core.errors import RuntimeFault
from immuno_api.services.status_publisher import StatusPublisher

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGINT)

TerminateHandler = Callable[[], Awaitable[Any]]


class LifecycleCoordinator:
    """Process lifecycle state machine with injected exit behavior."""

    def __init__(
        self,
        publisher: StatusPublisher | None = None,
        api_url: str | None = None,
        exit: Callable[[int], Any] = sys.exit,
    ):
        self.publisher = publisher
        self.api_url = api_url
        self._exit = exit
        self._state = LifecycleState.RUNNING
        self._terminate_handlers: list[TerminateHandler] = []
        self._shutdown_task: asyncio.Task | None = None
        self._signal_loop: asyncio.AbstractEventLoop | None = None
        self._previous_fault_handlers: tuple | None = None
        self.exit_code: int | None = None
        self.shutdown_reason: str | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_shutting_down(self) -> bool:
        return self._state is LifecycleState.SHUTTING_DOWN

    def on_terminate(self, handler: TerminateHandler) -> TerminateHandler:
        """Register an async cleanup step, run in registration order."""
        self._terminate_handlers.append(handler)
        return handler

    # ─── Triggers ────────────────────────────────────────────────

    def _begin(self, reason: str) -> bool:
        """Check-and-set. No await may come before this call."""
        if self._state is LifecycleState.SHUTTING_DOWN:
            logger.warning(
                f"Shutdown already in progress, ignoring: {reason}",
                extra={"reason": reason},
            )
            return False
        self._state = LifecycleState.SHUTTING_DOWN
        self.shutdown_reason = reason
        return True

    async def trigger_shutdown(self, reason: str, exit_code: int = 0) -> bool:
        """Run the shutdown sequence; False if one already started."""
        if not self._begin(reason):
            return False
        await self._run_shutdown(reason, exit_code)
        return True

    def request_shutdown(
        self, reason: str, exit_code: int = 0,
    ) -> asyncio.Task | None:
        """Synchronous entry point for loop callbacks (signals, faults)."""
        if not self._begin(reason):
            return None
        self._shutdown_task = asyncio.get_running_loop().create_task(
            self._run_shutdown(reason, exit_code), name="lifecycle-shutdown",
        )
        return self._shutdown_task

    async def notify_listener_closed(self) -> bool:
        """The HTTP listener stopped without a signal: graceful shutdown."""
        return await self.trigger_shutdown("listener closed", exit_code=0)

    async def wait_for_shutdown(self) -> None:
        """Await an in-flight shutdown sequence started from a callback."""
        if self._shutdown_task is not None:
            await asyncio.shield(self._shutdown_task)

    # ─── Sequence ────────────────────────────────────────────────

    async def _run_shutdown(self, reason: str, exit_code: int) -> None:
        logger.info(
            f"Shutting down server ({reason})",
            extra={"reason": reason, "exit_code": exit_code},
        )
        if self.publisher is not None:
            await self._publish_stopped()
        for handler in self._terminate_handlers:
            try:
                await handler()
            except Exception as e:
                logger.error(f"Terminate handler failed: {e}", exc_info=True)
        self._do_exit(exit_code)

    async def _publish_stopped(self) -> None:
        try:
            await self.publisher.publish_service_status(
                DocumentStatus.STOPPED, merge=True,
            )
        except Exception as e:
            logger.error(f"Error during Firestore shutdown: {e}", exc_info=True)
        if self.api_url:
            await self.publisher.publish_api_url(
                self.api_url, DocumentStatus.STOPPED,
            )

    def _do_exit(self, exit_code: int) -> None:
        if self.exit_code is not None:
            return
        self.exit_code = exit_code
        logger.info(
            f"Exiting with code {exit_code}", extra={"exit_code": exit_code},
        )
        self._exit(exit_code)

    # ─── Signal & fault wiring ───────────────────────────────────

    def install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in TERMINATION_SIGNALS:
            loop.add_signal_handler(sig, self.handle_signal, sig)
        self._signal_loop = loop
        logger.info("Signal handlers installed (SIGTERM, SIGINT)")

    def handle_signal(self, sig: signal.Signals) -> None:
        name = signal.Signals(sig).name
        logger.info(
            f"Received {name} signal. Shutting down server...",
            extra={"signal": name},
        )
        self.request_shutdown(f"signal {name}", exit_code=0)

    def install_fault_handlers(
        self, loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        loop = loop or asyncio.get_running_loop()
        self._previous_fault_handlers = (
            loop, loop.get_exception_handler(), sys.excepthook,
        )
        loop.set_exception_handler(self._loop_exception_handler)
        sys.excepthook = self._excepthook

    def restore_handlers(self) -> None:
        """Undo install_signal_handlers / install_fault_handlers."""
        if self._signal_loop is not None:
            for sig in TERMINATION_SIGNALS:
                self._signal_loop.remove_signal_handler(sig)
            self._signal_loop = None
        if self._previous_fault_handlers is not None:
            loop, loop_handler, excepthook = self._previous_fault_handlers
            loop.set_exception_handler(loop_handler)
            # someone else may have replaced the hook since; leave theirs alone
            if sys.excepthook == self._excepthook:
                sys.excepthook = excepthook
            self._previous_fault_handlers = None

    def handle_fault(self, exc: BaseException) -> None:
        """Uncaught exception in a loop callback: shut down with exit code 1."""
        fault = RuntimeFault(exc)
        logger.error(
            f"Uncaught Exception: {exc}",
            extra={"error_code": fault.code},
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        self.request_shutdown("uncaught exception", exit_code=1)

    def handle_unhandled_rejection(
        self, exc: BaseException | None, message: str | None = None,
    ) -> None:
        """Task exception never retrieved: logged, lifecycle untouched."""
        exc_info = (type(exc), exc, exc.__traceback__) if exc else None
        logger.error(
            f"Unhandled async exception: {exc if exc else message}",
            exc_info=exc_info,
        )

    def _loop_exception_handler(
        self, loop: asyncio.AbstractEventLoop, context: dict,
    ) -> None:
        exc = context.get("exception")
        if "future" in context or "task" in context:
            self.handle_unhandled_rejection(exc, context.get("message"))
        elif exc is not None:
            self.handle_fault(exc)
        else:
            loop.default_exception_handler(context)

    def _excepthook(self, exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        logger.error(
            f"Uncaught Exception: {exc}", exc_info=(exc_type, exc, tb),
        )
        # No loop left to await store writes; a graceful stop in progress wins
        if self._begin("uncaught exception"):
            self._do_exit(1)
