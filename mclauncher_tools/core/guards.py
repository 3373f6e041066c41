"""Process-wide operation guards and cooperative cancellation."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import structlog

from mclauncher_tools.core.errors import OperationCancelledError, OperationInProgressError

logger = structlog.get_logger()


class OperationGuard:
    """Non re-entrant compare-and-swap flag.

    ``try_acquire`` never blocks: it either flips the flag from clear to
    held and returns True, or returns False because someone else holds it.
    A second acquire from the same holder also fails.

    Args:
        name: Operation name used in log lines and error messages
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        acquired = self._lock.acquire(blocking=False)
        if not acquired:
            logger.debug("guard_busy", guard=self.name)
        return acquired

    def release(self) -> None:
        self._lock.release()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, message: str | None = None) -> Iterator[None]:
        """Hold the guard for the duration of the block.

        Raises:
            OperationInProgressError: If the guard is already held
        """
        if not self.try_acquire():
            raise OperationInProgressError(message or f"Another {self.name} is already in progress")
        try:
            yield
        finally:
            self.release()


class CancellationHandle:
    """Cooperative cancellation shared between the requester and the worker.

    ``cancel`` may be called from any thread. Registered callbacks run once,
    on the cancelling thread, which is how cancellation reaches a pending
    network read or process wait.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback and return a function that unregisters it.

        The callback runs immediately if cancellation already happened.
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove
        callback()
        return lambda: None

    def cancel_task_on_cancel(self, task: asyncio.Future) -> Callable[[], None]:
        """Propagate cancellation to an asyncio task or future.

        Once the returned function is called, a cancellation still queued
        on the loop no longer reaches the task.
        """
        loop = asyncio.get_running_loop()
        active = True

        def cancel_task() -> None:
            if active and not task.done():
                task.cancel()

        def schedule() -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(cancel_task)

        remove_callback = self.add_callback(schedule)

        def remove() -> None:
            nonlocal active
            active = False
            remove_callback()

        return remove

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError("Operation cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early on cancellation.

        Raises:
            OperationCancelledError: If cancelled before or during the sleep
        """
        self.raise_if_cancelled()
        loop = asyncio.get_running_loop()
        woken: asyncio.Future[None] = loop.create_future()

        def wake() -> None:
            if not woken.done():
                woken.set_result(None)

        remove = self.add_callback(lambda: loop.call_soon_threadsafe(wake))
        try:
            await asyncio.wait_for(woken, delay)
        except TimeoutError:
            pass
        finally:
            remove()
        self.raise_if_cancelled()
