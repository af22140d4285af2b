"""Outbound notifications for the dashboard display."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections import deque
from typing import Any, Deque, Protocol, Set

VIDEO_STREAM_AVAILABLE = "VIDEO_STREAM_AVAILABLE"
VIDEO_STREAM_ENDED = "VIDEO_STREAM_ENDED"
DISPLAY_ERROR = "DISPLAY_ERROR"

NOTIFICATION_TYPES = (VIDEO_STREAM_AVAILABLE, VIDEO_STREAM_ENDED, DISPLAY_ERROR)

log = logging.getLogger("ring_bridge.notifications")


class NotificationSink(Protocol):
    def notify(self, notification: str, payload: Any = None) -> None: ...


class NotificationBus:
    """In-process publisher that fans notifications out to SSE clients.

    Subscribers get their own bounded queue. A slow subscriber loses its
    oldest pending notification rather than blocking the publisher. A short
    history lets reconnecting clients resume from ``Last-Event-ID``.
    """

    def __init__(self, *, max_queue_size: int = 64, history_limit: int = 64) -> None:
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be positive")
        if history_limit <= 0:
            raise ValueError("history_limit must be positive")
        self._max_queue_size = max_queue_size
        self._history: Deque[dict[str, Any]] = deque(maxlen=history_limit)
        self._subscribers: Set[asyncio.Queue] = set()
        self._seq = 0

    def subscribe(self, *, last_event_id: str | None = None) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.add(queue)

        threshold = _parse_event_id(last_event_id)
        if threshold is not None:
            for event in self._history:
                if event["seq"] > threshold:
                    self._enqueue_nowait(queue, event)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def notify(self, notification: str, payload: Any = None) -> str:
        if not notification or not isinstance(notification, str):
            raise ValueError("notification must be a non-empty string")
        self._seq += 1
        event = {
            "id": str(self._seq),
            "seq": self._seq,
            "type": notification,
            "timestamp": time.time(),
            "payload": copy.deepcopy(payload) if isinstance(payload, (dict, list)) else payload,
        }
        self._history.append(event)
        log.debug("Notification %s (%d subscribers)", notification, len(self._subscribers))
        for queue in list(self._subscribers):
            self._enqueue_nowait(queue, event)
        return event["id"]

    def _enqueue_nowait(self, queue: asyncio.Queue, event: dict[str, Any]) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            queue.put_nowait(event)

    def history_snapshot(self) -> list[dict[str, Any]]:
        return list(self._history)


def _parse_event_id(candidate: str | None) -> int | None:
    if not candidate:
        return None
    try:
        return int(candidate)
    except (TypeError, ValueError):
        return None


__all__ = [
    "DISPLAY_ERROR",
    "NOTIFICATION_TYPES",
    "NotificationBus",
    "NotificationSink",
    "VIDEO_STREAM_AVAILABLE",
    "VIDEO_STREAM_ENDED",
]
