"""Timers running on the asyncio event loop: debounced writes and polling."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Generic, TypeVar

LOGGER = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Debouncer(Generic[K, V]):
    """Delay an async action per key until input has been quiet for a while.

    Each ``trigger`` for a key restarts that key's timer and replaces the
    pending value, so only the last value typed within the quiet period is
    written.
    """

    def __init__(
        self,
        delay_seconds: float,
        action: Callable[[K, V], Awaitable[None]],
    ) -> None:
        """Store the quiet period and the action fired once it elapses."""
        if delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        self._delay = delay_seconds
        self._action = action
        self._pending: dict[K, tuple[asyncio.TimerHandle, V]] = {}
        self._running: set[asyncio.Task[None]] = set()

    def trigger(self, key: K, value: V) -> None:
        """Schedule ``value`` for ``key``, superseding any pending value."""
        loop = asyncio.get_running_loop()
        self.cancel(key)
        handle = loop.call_later(self._delay, self._fire, key)
        self._pending[key] = (handle, value)

    def cancel(self, key: K) -> bool:
        """Drop the pending value for ``key``. Returns ``True`` if one existed."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def is_pending(self, key: K) -> bool:
        return key in self._pending

    async def flush(self) -> None:
        """Fire every pending action now and wait for all running actions."""
        for key in list(self._pending):
            handle, value = self._pending.pop(key)
            handle.cancel()
            self._spawn(key, value)
        if self._running:
            await asyncio.gather(*self._running)

    def _fire(self, key: K) -> None:
        entry = self._pending.pop(key, None)
        if entry is not None:
            self._spawn(key, entry[1])

    def _spawn(self, key: K, value: V) -> None:
        task = asyncio.get_running_loop().create_task(self._run(key, value))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: K, value: V) -> None:
        try:
            await self._action(key, value)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Debounced write for %s failed", key)


class PeriodicPoller:
    """Run an async job on a fixed cadence until stopped.

    A failing run is logged and counted; whatever state the job last
    produced successfully is left alone.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], Awaitable[Any]],
        *,
        run_immediately: bool = True,
    ) -> None:
        """Configure the poller; nothing runs until :meth:`start`."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self._interval = interval_seconds
        self._job = job
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.failures = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin polling on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        LOGGER.debug("Started poller %s every %ss", self.name, self._interval)

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        LOGGER.debug("Stopped poller %s", self.name)

    async def poll_once(self) -> bool:
        """Run the job a single time. Returns ``True`` when it succeeded."""
        self.runs += 1
        try:
            await self._job()
        except Exception as exc:  # pylint: disable=broad-except
            self.failures += 1
            LOGGER.warning("Poll %s failed: %s", self.name, exc)
            return False
        return True

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval)
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)


__all__ = ["Debouncer", "PeriodicPoller"]
