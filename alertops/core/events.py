"""In-process event bus for live dashboard updates."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from alertops.core.types import Clock, EventType, MonitoringEvent

logger = structlog.get_logger(__name__)

EventCallback = Callable[[MonitoringEvent], Awaitable[None] | None]


class EventBus:
    """Fans every mutation out to registered listeners.

    Listener failures are logged and swallowed so a misbehaving consumer
    never breaks the alerting pipeline. Coroutine listeners are scheduled
    on the running loop.

    Usage::

        bus = EventBus()
        unsubscribe = bus.add_listener(print)
        bus.emit("alert_created", "alert_store", subject_id="alert_1")
        unsubscribe()
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._listeners: list[EventCallback] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, callback: EventCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def emit(
        self,
        action: str,
        source: str,
        subject_id: str = "",
        event_type: EventType = EventType.CUSTOM,
        data: dict[str, Any] | None = None,
        tags: dict[str, str] | None = None,
    ) -> MonitoringEvent:
        """Build a MonitoringEvent and deliver it to every listener."""
        payload: dict[str, Any] = {"action": action}
        payload.update(data or {})
        event = MonitoringEvent(
            id=f"{action}_{subject_id}" if subject_id else action,
            type=event_type,
            source=source,
            timestamp=self._clock(),
            data=payload,
            tags=tags or {},
        )
        for cb in list(self._listeners):
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    self._schedule(result, event)
            except Exception:
                logger.exception("listener_error", event_id=event.id, source=source)
        return event

    def _schedule(self, coro: Awaitable[None], event: MonitoringEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("listener_coroutine_without_loop", event_id=event.id)
            coro.close()  # type: ignore[attr-defined]
            return
        task = loop.create_task(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("listener_error", error=str(exc), exc_info=exc)
