"""In-process event bus: structured (type, payload) broadcasts to subscribers."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from agent.models import Event

logger = structlog.get_logger()

Subscriber = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """Fire-and-forget broadcast channel.

    Subscriber failures are logged and never reach the broadcaster. Async
    subscribers are scheduled on the running loop; without a loop they are
    skipped.
    """

    def __init__(self, history_limit: int = 1000) -> None:
        self._subscribers: list[Subscriber] = []
        self._history: list[Event] = []
        self._history_limit = history_limit
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def broadcast(self, event_type: str, payload: dict[str, Any] | None = None) -> Event:
        event = Event(type=event_type, payload=payload or {})
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        logger.debug("event_broadcast", event_type=event_type)

        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event_type)
            except Exception as e:
                logger.warning("event_subscriber_failed", event_type=event_type, error=str(e))
        return event

    def _schedule(self, awaitable: Awaitable[None], event_type: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("event_subscriber_skipped", event_type=event_type, reason="no running loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        async def _run() -> None:
            try:
                await awaitable
            except Exception as e:
                logger.warning("event_subscriber_failed", event_type=event_type, error=str(e))

        task = loop.create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def get_events(self, event_type: str | None = None) -> list[Event]:
        """Recent events, optionally filtered by type, oldest first."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def clear(self) -> None:
        self._history.clear()
