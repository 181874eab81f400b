"""Lifecycle Coordinator - single shutdown sequence, exit codes, fault vs. rejection.

Tests cover:
    - two overlapping triggers -> ONE api_status "stopped" write and ONE exit call
    - SIGTERM and SIGINT handled identically (exit 0)
    - store failures during shutdown are logged; exit still happens
    - terminate handlers run in order after the status writes, failures skipped
    - uncaught fault while RUNNING -> exit 1; while SHUTTING_DOWN -> no extra exit
    - unhandled task exceptions only logged, state untouched
    - restore_handlers() puts back the previous excepthook and loop handler, removes signal handlers
"""

import asyncio
import signal
import sys

import pytest

from immuno_api.core.domain_types import API_CONFIG_DOC, API_STATUS_DOC, LifecycleState
from immuno_api.services.lifecycle import LifecycleCoordinator
from immuno_api.services.status_publisher import StatusPublisher
from tests.fakes import FakeStore

API_URL = "http://10.0.0.2:4000"


class _ExitRecorder:
    def __init__(self):
        self.codes: list[int] = []

    def __call__(self, code: int) -> None:
        self.codes.append(code)


@pytest.fixture
def exits():
    return _ExitRecorder()


@pytest.fixture
def coordinator(store, settings, exits):
    return LifecycleCoordinator(
        StatusPublisher(store, settings), api_url=API_URL, exit=exits,
    )


async def test_graceful_shutdown_publishes_stopped_and_exits_zero(coordinator, store, exits):
    assert await coordinator.trigger_shutdown("signal SIGTERM") is True

    assert coordinator.state is LifecycleState.SHUTTING_DOWN
    assert store.docs[API_STATUS_DOC]["status"] == "stopped"
    assert store.docs[API_CONFIG_DOC]["status"] == "stopped"
    assert store.docs[API_CONFIG_DOC]["baseUrl"] == API_URL
    assert exits.codes == [0]


async def test_duplicate_triggers_run_one_sequence(coordinator, store, exits):
    first, second = await asyncio.gather(
        coordinator.trigger_shutdown("signal SIGTERM"),
        coordinator.trigger_shutdown("signal SIGINT"),
    )

    assert (first, second) == (True, False)
    assert len(store.writes(API_STATUS_DOC)) == 1
    assert exits.codes == [0]
    assert coordinator.shutdown_reason == "signal SIGTERM"


@pytest.mark.parametrize("sig", [signal.SIGTERM, signal.SIGINT])
async def test_both_signals_handled_identically(coordinator, store, exits, sig):
    coordinator.handle_signal(sig)
    coordinator.handle_signal(signal.SIGTERM)
    await coordinator.wait_for_shutdown()

    assert len(store.writes(API_STATUS_DOC)) == 1
    assert exits.codes == [0]
    assert coordinator.shutdown_reason == f"signal {sig.name}"


async def test_store_failure_does_not_block_exit(settings, exits, caplog):
    store = FakeStore(fail_writes=-1)
    coordinator = LifecycleCoordinator(
        StatusPublisher(store, settings), api_url=API_URL, exit=exits,
    )

    await coordinator.trigger_shutdown("signal SIGTERM")

    assert exits.codes == [0]
    assert len(store.writes()) == 2  # api_status + config/api, both attempted
    messages = [r.getMessage() for r in caplog.records]
    assert any("Error during Firestore shutdown" in m for m in messages)


async def test_terminate_handlers_run_after_status_writes(coordinator, store, exits):
    order = []

    @coordinator.on_terminate
    async def close_listener():
        order.append(("listener", len(store.writes())))

    @coordinator.on_terminate
    async def broken():
        raise RuntimeError("already closed")

    @coordinator.on_terminate
    async def close_store():
        order.append(("store", len(store.writes())))

    await coordinator.trigger_shutdown("listener closed")

    assert order == [("listener", 2), ("store", 2)]
    assert exits.codes == [0]


async def test_listener_closure_is_graceful(coordinator, exits):
    assert await coordinator.notify_listener_closed() is True
    assert exits.codes == [0]
    assert coordinator.shutdown_reason == "listener closed"


async def test_fault_while_running_exits_one(coordinator, store, exits):
    coordinator.handle_fault(ValueError("boom"))
    await coordinator.wait_for_shutdown()

    assert exits.codes == [1]
    assert store.docs[API_STATUS_DOC]["status"] == "stopped"


async def test_fault_during_graceful_shutdown_does_not_exit_again(coordinator, exits):
    await coordinator.trigger_shutdown("signal SIGTERM")
    coordinator.handle_fault(ValueError("late failure"))
    await coordinator.wait_for_shutdown()

    assert exits.codes == [0]


async def test_unhandled_rejection_only_logged(coordinator, store, exits, caplog):
    coordinator.handle_unhandled_rejection(RuntimeError("never awaited"))

    assert coordinator.state is LifecycleState.RUNNING
    assert store.calls == []
    assert exits.codes == []
    assert any("never awaited" in r.getMessage() for r in caplog.records)


async def test_loop_exception_handler_routes_by_context(coordinator, exits):
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    coordinator._loop_exception_handler(loop, {
        "message": "Task exception was never retrieved",
        "exception": RuntimeError("rejected"),
        "future": future,
    })
    assert coordinator.state is LifecycleState.RUNNING

    coordinator._loop_exception_handler(loop, {
        "message": "Exception in callback",
        "exception": KeyError("missing"),
    })
    await coordinator.wait_for_shutdown()
    assert exits.codes == [1]


def test_excepthook_exits_one_only_while_running(coordinator, exits):
    err = ValueError("main thread crashed")
    coordinator._excepthook(ValueError, err, None)
    coordinator._excepthook(ValueError, err, None)

    assert exits.codes == [1]
    assert coordinator.is_shutting_down


async def test_without_publisher_still_exits(exits):
    coordinator = LifecycleCoordinator(exit=exits)
    await coordinator.trigger_shutdown("signal SIGINT")
    assert exits.codes == [0]


async def test_install_signal_handlers_registers_both_signals(coordinator):
    registered = []

    class _Loop:
        def add_signal_handler(self, sig, callback, *args):
            registered.append((sig, callback, args))

    coordinator.install_signal_handlers(_Loop())
    assert [r[0] for r in registered] == [signal.SIGTERM, signal.SIGINT]
    assert all(r[1] == coordinator.handle_signal for r in registered)


async def test_restore_handlers_puts_back_previous_hooks(coordinator, monkeypatch):
    loop = asyncio.get_running_loop()
    previous_hook = sys.excepthook
    monkeypatch.setattr(sys, "excepthook", previous_hook)
    previous_loop_handler = loop.get_exception_handler()
    removed = []
    monkeypatch.setattr(loop, "add_signal_handler", lambda sig, cb, *args: None)
    monkeypatch.setattr(loop, "remove_signal_handler", removed.append)

    coordinator.install_signal_handlers()
    coordinator.install_fault_handlers()
    assert sys.excepthook == coordinator._excepthook
    assert loop.get_exception_handler() == coordinator._loop_exception_handler

    await coordinator.trigger_shutdown("signal SIGTERM")
    coordinator.restore_handlers()

    assert sys.excepthook is previous_hook
    assert loop.get_exception_handler() is previous_loop_handler
    assert removed == [signal.SIGTERM, signal.SIGINT]


def test_restore_handlers_keeps_a_hook_installed_later(coordinator):
    class _Loop:
        handler = None

        def get_exception_handler(self):
            return self.handler

        def set_exception_handler(self, handler):
            self.handler = handler

    def later_hook(exc_type, exc, tb):
        pass

    original = sys.excepthook
    loop = _Loop()
    try:
        coordinator.install_fault_handlers(loop)
        sys.excepthook = later_hook
        coordinator.restore_handlers()
        assert sys.excepthook is later_hook
        assert loop.handler is None
    finally:
        sys.excepthook = original
