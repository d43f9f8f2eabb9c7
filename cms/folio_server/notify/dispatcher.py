"""
In-process hook dispatch.

Services announce what they did ("save", "publishPage", "createPage",
"delete", ...) through HookDispatcher.emit(). Subscribers run
fire-and-forget: emit() never waits for them and never raises because of
them.

Invariants:
    - emit() returns before any async subscriber runs
    - A failing subscriber is logged and never affects the caller or other
      subscribers
    - drain() waits for every subscriber task started so far

How to change safely:
    - Keep emit() synchronous; services call it right after committing
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Dict, List, Set

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any], Any]

# Wildcard subscription: receives every event
ALL_EVENTS = "*"


class HookDispatcher:
    """Named-event fan-out to registered subscribers.

    Example:
        >>> dispatcher = HookDispatcher()
        >>> dispatcher.subscribe("publishPage", search_indexer)
        >>> dispatcher.emit("publishPage", {"uri": uri, "data": data, "user": user})
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()
        self._emitted = 0

    def subscribe(self, event: str, subscriber: Subscriber) -> None:
        """Register subscriber(event, payload) for event, or ALL_EVENTS."""
        self._subscribers[event].append(subscriber)

    def emit(self, event: str, payload: Any) -> List[asyncio.Task]:
        """Deliver payload to subscribers of event.

        Returns:
            Tasks started for coroutine subscribers
        """
        self._emitted += 1
        tasks = []

        for subscriber in [*self._subscribers.get(event, ()), *self._subscribers.get(ALL_EVENTS, ())]:
            try:
                result = subscriber(event, payload)
            except Exception as e:
                logger.warning(
                    f"Hook subscriber failed for {event}: {e}",
                    extra={"event": event},
                    exc_info=True,
                )
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._finished(event))
                tasks.append(task)

        return tasks

    def _finished(self, event: str) -> Callable[[asyncio.Task], None]:
        def callback(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.warning(
                    f"Hook subscriber failed for {event}: {exc}",
                    extra={"event": event, "error_type": type(exc).__name__},
                )

        return callback

    async def drain(self) -> None:
        """Wait for all in-flight subscriber tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def stats(self) -> dict[str, Any]:
        return {
            "emitted": self._emitted,
            "pending": len(self._pending),
            "events": sorted(self._subscribers),
        }
