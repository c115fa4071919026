"""Process-wide shutdown coordination."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable

from loguru import logger


async def _noop() -> None:
    return None


class LifecycleCoordinator:
    """Owns the process-wide stop function.

    Defaults to a no-op; static mode registers the teardown of its shared
    environment. The stop function runs at most once per process, no
    matter how many signals arrive or how many callers await ``shutdown()``.
    """

    def __init__(self) -> None:
        self._stop: Callable[[], Awaitable[None]] = _noop
        self._stop_task: asyncio.Future[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_shutting_down(self) -> bool:
        """True once the stop function has been started."""
        return self._stop_task is not None

    def register_stop(self, stop: Callable[[], Awaitable[None]]) -> None:
        """Replace the stop function.

        Args:
            stop: Async callable releasing process-lifetime resources.
        """
        self._stop = stop

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind to the event loop that signals are delivered to."""
        self._loop = loop

    def request_shutdown(self, sig: int | None = None) -> None:
        """Start the stop function from a signal handler.

        Safe to call from a signal handler and any number of times; only the
        first call schedules the stop function.

        Args:
            sig: Signal that triggered the shutdown, for logging.
        """
        name = signal.Signals(sig).name if sig is not None else "shutdown"
        if self._loop is None:
            logger.warning("Received signal before the event loop was attached", signal=name)
            return
        logger.info("Received signal, stopping environment if there is any", signal=name)
        self._loop.call_soon_threadsafe(self._start)

    def _start(self) -> asyncio.Future[None]:
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._run_stop())
        return self._stop_task

    async def _run_stop(self) -> None:
        try:
            await self._stop()
        except Exception:
            logger.exception("Stop function failed")
        else:
            logger.info("Stop function completed")

    async def shutdown(self) -> None:
        """Run the stop function, or wait for the run already in progress."""
        await asyncio.shield(self._start())
