"""Bounded-concurrency fan-out helpers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

logger = logging.getLogger(__name__)


async def bounded_gather(
    factories: Sequence[Callable[[], Awaitable[Any]]],
    limit: int = 5,
    timeout: float | None = None,
) -> list[Any]:
    """Run coroutine factories with at most ``limit`` in flight.

    Never raises for an individual failure: each slot of the returned list
    holds either the result or the exception that factory raised. When the
    overall ``timeout`` elapses, unfinished work is cancelled and its slot
    holds a ``TimeoutError``.

    Args:
        factories: Zero-argument callables returning awaitables. Factories
            (not coroutines) so nothing starts before a slot is free.
        limit: Maximum concurrently running awaitables.
        timeout: Overall deadline in seconds for the whole fan-out.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if not factories:
        return []

    semaphore = asyncio.Semaphore(limit)

    async def _run(factory: Callable[[], Awaitable[Any]]) -> Any:
        async with semaphore:
            return await factory()

    tasks = [asyncio.ensure_future(_run(factory)) for factory in factories]
    try:
        _, pending = await asyncio.wait(tasks, timeout=timeout)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise

    for task in pending:
        task.cancel()
    if pending:
        logger.warning(
            "Bounded fan-out timed out with %d of %d tasks pending", len(pending), len(tasks)
        )
        await asyncio.gather(*pending, return_exceptions=True)

    results: list[Any] = []
    for task in tasks:
        if task in pending:
            results.append(TimeoutError("fan-out deadline exceeded"))
        elif task.cancelled():
            results.append(asyncio.CancelledError())
        elif task.exception() is not None:
            results.append(task.exception())
        else:
            results.append(task.result())
    return results
