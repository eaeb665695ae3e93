"""In-process, best-effort event broadcasting to observers."""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from deploylens.messaging.topics import EventEnvelope

logger = structlog.get_logger()

Subscriber = Callable[[EventEnvelope], Awaitable[None] | None]


class EventSink(ABC):
    """Receives push events. Delivery is fire-and-forget: no ack, no retry."""

    @abstractmethod
    def publish(self, event_type: str, payload: dict[str, Any]) -> EventEnvelope:
        """Publish an event without blocking the caller."""

    async def drain(self) -> None:
        """Wait for deliveries still in flight. Called when tracking stops."""


class Broadcaster(EventSink):
    """Fans events out to registered subscribers.

    Sync subscribers are called inline; a raising subscriber is logged and
    skipped. Async subscribers are scheduled as tasks on the running loop
    so :meth:`publish` never waits on them.

    Typical usage::

        broadcaster = Broadcaster()
        broadcaster.subscribe(websocket_push)
        tracker = DeploymentLifecycleTracker(scm, monitoring, sink=broadcaster)
    """

    def __init__(self, source: str = "deploylens.tracker") -> None:
        self._source = source
        self._subscribers: list[Subscriber] = []
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event_type: str, payload: dict[str, Any]) -> EventEnvelope:
        envelope = EventEnvelope(event_type=event_type, source=self._source, payload=payload)
        for subscriber in list(self._subscribers):
            self._deliver(subscriber, envelope)
        logger.debug(
            "event_broadcast",
            event_type=event_type,
            event_id=envelope.event_id,
            subscribers=len(self._subscribers),
        )
        return envelope

    def _deliver(self, subscriber: Subscriber, envelope: EventEnvelope) -> None:
        try:
            result = subscriber(envelope)
        except Exception as e:
            logger.warning(
                "event_subscriber_failed",
                event_type=envelope.event_type,
                error=str(e),
            )
            return
        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("event_subscriber_no_loop", event_type=envelope.event_type)
            if inspect.iscoroutine(result):
                result.close()
            return
        task = asyncio.ensure_future(result, loop=loop)
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("event_subscriber_failed", error=str(exc))

    async def drain(self) -> None:
        """Wait for all in-flight async deliveries to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
