"""Bounded-concurrency and timeout helpers for outbound calls.

Two patterns are exposed:

1. **throttled_gather** -- a drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  The resolver uses
   it to fan out per-suggestion work with at most N calls in flight, and
   waits for the whole batch before deciding whether to move to the next
   threshold.

2. **call_with_timeout** -- runs one outbound call under a per-call
   timeout, converting ``asyncio.TimeoutError`` into
   :class:`~bookresolver.utils.errors.TransientUpstreamError` so a timed-out
   call is handled exactly like a failed one.

Unlike a process-wide semaphore, callers pass their own semaphore so each
service instance owns its concurrency budget.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from bookresolver.utils.errors import TransientUpstreamError

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding the number of coroutines in flight.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.  Task
        cancellation of the caller still propagates.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def call_with_timeout(
    awaitable: Awaitable[_T],
    timeout: float | None,
    *,
    operation: str,
    provider_name: str | None = None,
) -> _T:
    """Await *awaitable*, raising ``TransientUpstreamError`` after *timeout* seconds.

    ``timeout=None`` disables the limit.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransientUpstreamError(
            message=f"{operation} timed out after {timeout}s",
            provider_name=provider_name,
        ) from exc
