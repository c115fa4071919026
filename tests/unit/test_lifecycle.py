"""Tests for LifecycleCoordinator and the relay server's signal handling."""
import asyncio
import signal
from unittest.mock import MagicMock, patch

import uvicorn
from fastapi import FastAPI

from hookrelay.lifecycle import LifecycleCoordinator
from hookrelay.server import RelayServer


class _CountingStop:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = 0
        self.error = error

    async def __call__(self) -> None:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error


class TestLifecycleCoordinator:
    """Tests for LifecycleCoordinator."""

    async def test_default_stop_is_noop(self) -> None:
        coordinator = LifecycleCoordinator()

        await coordinator.shutdown()

        assert coordinator.is_shutting_down

    async def test_signal_flood_stops_once(self) -> None:
        stop = _CountingStop()
        coordinator = LifecycleCoordinator()
        coordinator.register_stop(stop)
        coordinator.attach(asyncio.get_running_loop())

        for _ in range(5):
            coordinator.request_shutdown(signal.SIGINT)
        coordinator.request_shutdown(signal.SIGTERM)
        await coordinator.shutdown()

        assert stop.calls == 1

    async def test_concurrent_shutdowns_stop_once(self) -> None:
        stop = _CountingStop()
        coordinator = LifecycleCoordinator()
        coordinator.register_stop(stop)

        await asyncio.gather(*(coordinator.shutdown() for _ in range(3)))

        assert stop.calls == 1

    async def test_failing_stop_is_logged(self) -> None:
        stop = _CountingStop(error=RuntimeError("docker gone"))
        coordinator = LifecycleCoordinator()
        coordinator.register_stop(stop)

        with patch("hookrelay.lifecycle.logger") as mock_logger:
            await coordinator.shutdown()
            await coordinator.shutdown()

        assert stop.calls == 1
        mock_logger.exception.assert_called_once_with("Stop function failed")

    async def test_request_before_attach_is_ignored(self) -> None:
        stop = _CountingStop()
        coordinator = LifecycleCoordinator()
        coordinator.register_stop(stop)

        coordinator.request_shutdown(signal.SIGINT)
        await asyncio.sleep(0)

        assert not coordinator.is_shutting_down
        assert stop.calls == 0

    async def test_register_replaces_stop(self) -> None:
        first, second = _CountingStop(), _CountingStop()
        coordinator = LifecycleCoordinator()
        coordinator.register_stop(first)
        coordinator.register_stop(second)

        await coordinator.shutdown()

        assert (first.calls, second.calls) == (0, 1)


class TestRelayServer:
    def test_handle_exit_notifies_coordinator(self) -> None:
        coordinator = MagicMock(spec=LifecycleCoordinator)
        server = RelayServer(uvicorn.Config(FastAPI()), coordinator)

        server.handle_exit(signal.SIGTERM, None)

        coordinator.request_shutdown.assert_called_once_with(signal.SIGTERM)
        assert server.should_exit
