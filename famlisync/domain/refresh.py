"""Cancellable read-and-regroup refresh that never publishes data older than a write."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RefreshController(Generic[T]):
    """Runs the display reload and keeps it ordered against writes.

    Reloads wait while a write is in flight. A reload that was running when a
    write completed is discarded and started again, so ``latest`` never shows
    data the write has made stale. Starting a new reload cancels the previous
    one.

    Args:
        loader: Coroutine function producing a fresh view (e.g. grouped agenda)
        on_result: Called with each published view
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[T]],
        on_result: Optional[Callable[[T], None]] = None,
    ):
        self._loader = loader
        self._on_result = on_result
        self._writes_in_flight = 0
        self._write_generation = 0
        self._idle = asyncio.Condition()
        self._task: Optional[asyncio.Task[Optional[T]]] = None
        self.latest: Optional[T] = None
        self.published_count = 0
        self.discarded_count = 0

    @property
    def write_in_flight(self) -> bool:
        return self._writes_in_flight > 0

    @contextlib.asynccontextmanager
    async def write_guard(self) -> AsyncIterator[None]:
        """Hold reloads back for the duration of a write, then request one."""
        async with self._idle:
            self._writes_in_flight += 1
        try:
            yield
        finally:
            async with self._idle:
                self._writes_in_flight -= 1
                self._write_generation += 1
                self._idle.notify_all()
            self.request_refresh()

    async def refresh(self) -> Optional[T]:
        """Reload once writes are idle and publish unless a write overtook it."""
        while True:
            async with self._idle:
                await self._idle.wait_for(lambda: self._writes_in_flight == 0)
                generation = self._write_generation

            result = await self._loader()

            if self._writes_in_flight == 0 and self._write_generation == generation:
                self.latest = result
                self.published_count += 1
                if self._on_result is not None:
                    self._on_result(result)
                return result
            self.discarded_count += 1
            logger.debug("Discarding reload that started before a write finished")

    def request_refresh(self) -> asyncio.Task[Optional[T]]:
        """Start a reload, cancelling one that is still running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self.refresh())
        return self._task

    def notify_store_changed(self) -> asyncio.Task[Optional[T]]:
        """Change-feed entry point: the store changed in some unknown way."""
        logger.debug("Calendar store reported a change; reloading")
        return self.request_refresh()

    async def wait_idle(self) -> Optional[T]:
        """Wait until no reload is running and return the latest published view.

        Raises:
            Exception: whatever the last reload raised
        """
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        task = self._task
        if task is not None and not task.cancelled() and task.exception() is not None:
            raise task.exception()  # type: ignore[misc]
        return self.latest

    async def run_periodic(
        self,
        interval: float,
        stop_event: asyncio.Event,
        poll_changes: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Reload immediately, then every ``interval`` seconds until ``stop_event`` is set.

        Args:
            interval: Seconds between reloads
            stop_event: Set to stop the loop
            poll_changes: Optional change check run before each periodic tick;
                ticks where it returns False skip the reload
        """
        logger.info("Starting initial refresh")
        self.request_refresh()
        try:
            await self.wait_idle()
        except Exception:
            logger.exception("Initial refresh failed")

        while not stop_event.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            if stop_event.is_set():
                break
            try:
                if poll_changes is not None and not poll_changes():
                    logger.debug("No store changes since last refresh")
                    continue
                self.request_refresh()
                await self.wait_idle()
            except Exception:
                logger.exception("Periodic refresh failed")

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait({self._task})
        self._task = None
