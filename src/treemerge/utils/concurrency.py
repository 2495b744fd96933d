"""Async concurrency primitives used by the tree merge engine."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING, Any, TypeVar

from treemerge.errors import MergeCancelledError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "operation cancelled"

    def cancel(self, reason: str | None = None) -> None:
        # The first reason wins; later calls only re-signal.
        if not self._event.is_set() and reason:
            self._reason = reason
        self._event.set()

    def cancel_after(self, delay_seconds: float) -> asyncio.TimerHandle:
        """Schedule cancellation on the running loop after ``delay_seconds``."""
        if delay_seconds <= 0:
            raise ValueError("delay_seconds must be > 0")
        loop = asyncio.get_running_loop()
        return loop.call_later(
            delay_seconds,
            self.cancel,
            f"deadline of {delay_seconds} seconds exceeded",
        )

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise MergeCancelledError(self._reason, operation="cancel")


class BoundedSemaphore:
    """Small wrapper over ``asyncio.Semaphore`` with usage diagnostics."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_use = 0
        self._peak = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def peak(self) -> int:
        return self._peak

    async def acquire(self) -> None:
        # Cancellation while waiting here does not acquire a permit.
        await self._semaphore.acquire()
        self._in_use += 1
        self._peak = max(self._peak, self._in_use)

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("release called more times than acquire")
        self._in_use -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    async def run_in_thread(self, func: Callable[..., T], /, *args: Any) -> T:
        """Run blocking ``func`` in a worker thread while holding one permit."""
        async with self.permit():
            return await asyncio.to_thread(func, *args)

    def snapshot(self) -> dict[str, int]:
        return {
            "limit": self._limit,
            "in_use": self._in_use,
            "peak": self._peak,
        }


class CooperativeTaskGroup:
    """
    Run sibling coroutines as one structured unit.

    Every spawned task is joined before ``run`` returns or raises. The first
    failure cancels the shared token instead of cancelling the tasks, so a
    worker that is in the middle of a blocking filesystem call finishes it and
    then observes the token before starting anything new. The error raised is
    the first real failure; cancellation errors are reported only when nothing
    else failed.
    """

    def __init__(self, token: CancellationToken) -> None:
        self._token = token

    @property
    def token(self) -> CancellationToken:
        return self._token

    async def run(self, coroutines: Iterable[Awaitable[T]]) -> list[T]:
        tasks: list[asyncio.Task[T]] = []
        for coroutine in coroutines:
            if self._token.is_cancelled:
                _close_unscheduled_coroutine(coroutine)
                continue
            tasks.append(asyncio.ensure_future(coroutine))

        if not tasks:
            self._token.raise_if_cancelled()
            return []

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            first_error = _first_error(task for task in tasks if task in done)
            if first_error is not None and not isinstance(first_error, MergeCancelledError):
                self._token.cancel(f"sibling task failed: {first_error}")
            if pending:
                await asyncio.wait(pending)
        except asyncio.CancelledError:
            self._token.cancel("merge task cancelled")
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        error = _first_error(tasks)
        if error is not None:
            raise error
        self._token.raise_if_cancelled()
        return [task.result() for task in tasks]


async def run_in_thread_to_completion(func: Callable[..., T], /, *args: Any) -> T:
    """
    Run blocking ``func`` in a worker thread and always wait for it to return.

    If the caller is cancelled meanwhile, the cancellation is re-raised only
    after the thread has finished, so no state it mutates is touched by the
    caller's cleanup while the thread is still running.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        while not task.done():
            with suppress(asyncio.CancelledError):
                await asyncio.wait({task})
        raise


def _first_error(tasks: Iterable[asyncio.Task[Any]]) -> BaseException | None:
    cancelled: BaseException | None = None
    for task in tasks:
        if task.cancelled():
            if cancelled is None:
                cancelled = MergeCancelledError("worker task cancelled", operation="cancel")
            continue
        exc = task.exception()
        if exc is None:
            continue
        if isinstance(exc, MergeCancelledError):
            if cancelled is None:
                cancelled = exc
            continue
        return exc
    return cancelled


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects that will never be scheduled so CPython does
    # not emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "CooperativeTaskGroup",
    "run_in_thread_to_completion",
]
