"""Unit tests for session progress streaming."""

from __future__ import annotations

import asyncio

import pytest

from app.services.models import ProgressEvent, ProgressEventType
from app.services.progress import ProgressPublisher

SESSION = "session-1"


def _event(event_type: ProgressEventType = ProgressEventType.PROVIDER_RESULT, **kwargs) -> ProgressEvent:
    return ProgressEvent(session_id=SESSION, type=event_type, **kwargs)


async def _drain(subscription, timeout: float = 1.0):
    events = []

    async def collect() -> None:
        async for event in subscription:
            events.append(event)

    await asyncio.wait_for(collect(), timeout)
    return events


@pytest.mark.asyncio
async def test_snapshot_first_then_live_events_then_end() -> None:
    publisher = ProgressPublisher()
    publisher.open(SESSION, {"status": "pending", "progress": 0.0})

    subscription = publisher.subscribe(SESSION)
    publisher.publish(SESSION, _event(target="Acme Corp"), snapshot={"status": "running", "progress": 50.0})
    publisher.publish(SESSION, _event(ProgressEventType.SESSION_COMPLETED))
    publisher.close(SESSION)

    events = await _drain(subscription)

    assert [e.type for e in events] == [
        ProgressEventType.SNAPSHOT,
        ProgressEventType.PROVIDER_RESULT,
        ProgressEventType.SESSION_COMPLETED,
    ]
    assert events[0].status == "pending"
    assert [e.sequence for e in events[1:]] == [1, 2]


@pytest.mark.asyncio
async def test_late_subscriber_sees_latest_snapshot() -> None:
    publisher = ProgressPublisher()
    publisher.open(SESSION, {"status": "pending", "progress": 0.0})
    publisher.publish(SESSION, _event(), snapshot={"status": "running", "progress": 50.0})

    subscription = publisher.subscribe(SESSION)
    first = await asyncio.wait_for(subscription.get(), 1.0)

    assert first.type == ProgressEventType.SNAPSHOT
    assert first.status == "running"
    assert first.progress == 50.0
    assert first.sequence == 1
    publisher.unsubscribe(subscription)


@pytest.mark.asyncio
async def test_slow_subscriber_drops_oldest_with_marker() -> None:
    publisher = ProgressPublisher(subscriber_buffer_size=2)
    publisher.open(SESSION)
    subscription = publisher.subscribe(SESSION)

    for index in range(3):
        assert publisher.publish(SESSION, _event(data={"index": index}))
    publisher.close(SESSION)

    events = await _drain(subscription)

    assert events[0].type == ProgressEventType.EVENTS_DROPPED
    assert events[0].data == {"dropped": 2}
    assert [e.data["index"] for e in events[1:]] == [1, 2]
    assert subscription.dropped_total == 2


@pytest.mark.asyncio
async def test_publishing_never_blocks_on_a_stalled_subscriber() -> None:
    publisher = ProgressPublisher(subscriber_buffer_size=1)
    publisher.open(SESSION)
    publisher.subscribe(SESSION)
    fast = publisher.subscribe(SESSION)

    for _ in range(500):
        publisher.publish(SESSION, _event())

    assert publisher.subscriber_count(SESSION) == 2
    first = await asyncio.wait_for(fast.get(), 1.0)
    assert first.type == ProgressEventType.EVENTS_DROPPED


@pytest.mark.asyncio
async def test_subscribe_to_closed_or_unknown_session_ends_after_snapshot() -> None:
    publisher = ProgressPublisher()
    publisher.open(SESSION, {"status": "completed", "progress": 100.0})
    publisher.close(SESSION)

    closed = await _drain(publisher.subscribe(SESSION))
    unknown = await _drain(publisher.subscribe("elsewhere", snapshot={"status": "failed"}))

    assert [e.type for e in closed] == [ProgressEventType.SNAPSHOT]
    assert closed[0].status == "completed"
    assert [e.status for e in unknown] == ["failed"]


@pytest.mark.asyncio
async def test_unsubscribe_ends_iteration_and_detaches() -> None:
    publisher = ProgressPublisher()
    publisher.open(SESSION)
    subscription = publisher.subscribe(SESSION)
    await subscription.get()

    publisher.unsubscribe(subscription)
    publisher.unsubscribe(subscription)

    assert publisher.subscriber_count(SESSION) == 0
    assert await asyncio.wait_for(subscription.get(), 1.0) is None


@pytest.mark.asyncio
async def test_publish_from_worker_thread_wakes_subscriber() -> None:
    publisher = ProgressPublisher()
    publisher.open(SESSION)
    subscription = publisher.subscribe(SESSION)
    await subscription.get()

    waiter = asyncio.create_task(subscription.get())
    await asyncio.sleep(0)
    await asyncio.to_thread(publisher.publish, SESSION, _event(target="Acme Corp"))

    event = await asyncio.wait_for(waiter, 1.0)
    assert event.target == "Acme Corp"


def test_history_is_bounded_and_survives_close() -> None:
    publisher = ProgressPublisher(history_size=2)
    publisher.open(SESSION)
    for _ in range(3):
        publisher.publish(SESSION, _event())
    publisher.close(SESSION)

    history = publisher.get_recent_events(SESSION)

    assert [event["sequence"] for event in history] == [2, 3]
    assert publisher.publish(SESSION, _event()) is False
    assert publisher.get_recent_events("unknown") == []


def test_discard_forgets_session() -> None:
    publisher = ProgressPublisher()
    publisher.open(SESSION)
    publisher.publish(SESSION, _event())

    publisher.discard(SESSION)

    assert publisher.get_recent_events(SESSION) == []
