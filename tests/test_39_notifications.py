from __future__ import annotations

import pytest

from ring_bridge.notifications import (
    DISPLAY_ERROR,
    VIDEO_STREAM_AVAILABLE,
    VIDEO_STREAM_ENDED,
    NotificationBus,
)


@pytest.mark.asyncio
async def test_notifications_reach_every_subscriber():
    bus = NotificationBus()
    first = bus.subscribe()
    second = bus.subscribe()

    bus.notify(VIDEO_STREAM_AVAILABLE)

    for queue in (first, second):
        event = queue.get_nowait()
        assert event["type"] == VIDEO_STREAM_AVAILABLE
        assert event["payload"] is None
    assert bus.subscriber_count == 2


@pytest.mark.asyncio
async def test_payload_is_copied():
    bus = NotificationBus()
    queue = bus.subscribe()
    payload = {"message": "first"}

    bus.notify(DISPLAY_ERROR, payload)
    payload["message"] = "mutated"

    assert queue.get_nowait()["payload"] == {"message": "first"}


@pytest.mark.asyncio
async def test_slow_subscriber_drops_oldest():
    bus = NotificationBus(max_queue_size=2)
    queue = bus.subscribe()

    bus.notify(VIDEO_STREAM_AVAILABLE)
    bus.notify(VIDEO_STREAM_ENDED)
    bus.notify(DISPLAY_ERROR, "boom")

    assert [queue.get_nowait()["type"] for _ in range(2)] == [VIDEO_STREAM_ENDED, DISPLAY_ERROR]


@pytest.mark.asyncio
async def test_replay_after_last_event_id():
    bus = NotificationBus()
    first_id = bus.notify(VIDEO_STREAM_AVAILABLE)
    bus.notify(VIDEO_STREAM_ENDED)

    queue = bus.subscribe(last_event_id=first_id)
    assert queue.get_nowait()["type"] == VIDEO_STREAM_ENDED
    assert queue.empty()

    fresh = bus.subscribe(last_event_id="not-a-number")
    assert fresh.empty()


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    bus = NotificationBus()
    queue = bus.subscribe()
    bus.unsubscribe(queue)
    bus.unsubscribe(queue)

    bus.notify(VIDEO_STREAM_ENDED)

    assert queue.empty()
    assert bus.subscriber_count == 0
    assert [event["type"] for event in bus.history_snapshot()] == [VIDEO_STREAM_ENDED]


def test_rejects_empty_notification_type():
    with pytest.raises(ValueError):
        NotificationBus().notify("")
