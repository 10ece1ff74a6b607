"""
apilink Notifications — Typed Lifecycle Events.

Executors and the registry publish a closed set of notification types.
Downstream layers (approval orchestration, workflow engines) subscribe
with a callback and optionally a subset of types.
"""
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Union
import asyncio
import inspect
import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    REQUEST_SUCCEEDED = "request.succeeded"
    REQUEST_FAILED = "request.failed"
    REQUEST_RETRIED = "request.retried"
    RATE_LIMIT_HIT = "rate_limit.hit"
    AUTH_REFRESHED = "auth.refreshed"
    AUTH_REFRESH_FAILED = "auth.refresh_failed"
    AUTH_TOKEN_EXPIRED = "auth.token_expired"
    CACHE_CLEARED = "cache.cleared"
    HEALTH_CHECKED = "health.checked"
    HEALTH_CHECK_FAILED = "health.check_failed"
    INTEGRATION_REGISTERED = "integration.registered"
    INTEGRATION_UNREGISTERED = "integration.unregistered"
    CONNECTION_TEST_FAILED = "integration.connection_test_failed"


class Notification(BaseModel):
    """One discrete event about an integration."""
    type: NotificationType
    integration_id: str
    request_id: Optional[str] = None
    method: Optional[str] = None
    url: Optional[str] = None
    status: Optional[int] = None
    error: Optional[str] = None
    retry_count: Optional[int] = None
    delay: Optional[float] = None
    healthy: Optional[bool] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[Notification], Union[None, Awaitable[None]]]


class NotificationBus:
    """Fan-out of notifications to subscribers.

    Sync callbacks run inline; coroutine callbacks are scheduled on the
    running loop so a slow subscriber never stalls a request.
    """

    def __init__(self):
        self._subscribers: list[tuple[Subscriber, frozenset[NotificationType] | None]] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(
        self,
        callback: Subscriber,
        types: Iterable[NotificationType] | None = None,
    ) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        entry = (callback, frozenset(types) if types is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, notification: Notification) -> None:
        for callback, types in list(self._subscribers):
            if types is not None and notification.type not in types:
                continue
            try:
                if inspect.iscoroutinefunction(callback):
                    task = asyncio.get_running_loop().create_task(callback(notification))
                    self._pending.add(task)
                    task.add_done_callback(self._task_done)
                else:
                    callback(notification)
            except Exception:
                # A broken subscriber must not fail the request that triggered it.
                logger.exception(
                    "Subscriber %r failed on %s", callback, notification.type.value
                )

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async subscriber failed", exc_info=task.exception())

    def emit(self, type: NotificationType, integration_id: str, **fields: Any) -> Notification:
        notification = Notification(type=type, integration_id=integration_id, **fields)
        self.publish(notification)
        return notification
