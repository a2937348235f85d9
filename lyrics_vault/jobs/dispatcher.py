"""In-process event dispatcher for background enrichment jobs.

``publish`` assigns a run id and schedules every subscribed handler as a
background asyncio task, returning immediately. Delivery is at-least-once
from the handler's point of view (callers may republish with the same run
id), so handlers must be idempotent. Handler failures are logged here; the
job ledger is where callers learn about them.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

EVENT_GENERATE_LYRICS = "song.lyrics.generate"
EVENT_SYNC_LYRICS = "song.lyrics.sync"
EVENT_GENERATE_EMBEDDINGS = "song.embeddings.generate"

Handler = Callable[[dict[str, Any], str], Awaitable[Any]]


class Dispatcher(Protocol):
    def publish(
        self, event_name: str, payload: dict[str, Any], run_id: str | None = None
    ) -> str: ...


class EventDispatcher:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_name: str, handler: Handler) -> None:
        self._handlers[event_name].append(handler)

    def publish(self, event_name: str, payload: dict[str, Any], run_id: str | None = None) -> str:
        """Schedule all handlers for ``event_name``; returns the run id.

        Raises:
            LookupError: Nobody subscribed to ``event_name``.
        """
        handlers = self._handlers.get(event_name)
        if not handlers:
            raise LookupError(f"no handlers registered for {event_name!r}")

        run_id = run_id or f"run_{uuid.uuid4().hex}"
        for handler in handlers:
            task = asyncio.create_task(
                self._invoke(event_name, handler, dict(payload), run_id),
                name=f"{event_name}:{run_id}",
            )
            # Strong reference until done; the loop only keeps weak ones
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        logger.info("Published %s run=%s to %d handler(s)", event_name, run_id, len(handlers))
        return run_id

    async def _invoke(
        self, event_name: str, handler: Handler, payload: dict[str, Any], run_id: str
    ) -> None:
        try:
            await handler(payload, run_id)
        except asyncio.CancelledError:
            logger.warning("Handler for %s run=%s cancelled", event_name, run_id)
            raise
        except Exception:
            logger.exception("Handler for %s run=%s failed", event_name, run_id)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight handlers (used at shutdown and in tests)."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d unfinished job handler(s)", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
