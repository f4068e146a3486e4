"""Progress streaming for analysis sessions backed by in-memory buffers.

Every subscriber owns a bounded buffer. Publishing appends to each buffer and
never waits; when a buffer is full its oldest event is dropped and the
subscriber receives an ``events_dropped`` marker before the next event it
reads. The publisher also keeps a bounded history per session so REST clients
can fetch events after the stream has finished.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from threading import Lock, RLock
from typing import Any, Deque, Dict, List, Optional, Set

import structlog

from .models import ProgressEvent, ProgressEventType

logger = structlog.get_logger(__name__)


class Subscription:
    """A single consumer's view of one session's progress stream.

    Iterate with ``async for``; iteration ends when the session stream is
    closed and the buffer is drained, or when the subscription is closed.
    """

    def __init__(self, session_id: str, *, max_buffer: int) -> None:
        self.session_id = session_id
        self._max_buffer = max(1, max_buffer)
        self._buffer: Deque[ProgressEvent] = deque()
        self._lock = Lock()
        self._dropped = 0
        self._dropped_total = 0
        self._closed = False
        self._wakeup = asyncio.Event()
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped_total(self) -> int:
        return self._dropped_total

    def push(self, event: ProgressEvent) -> None:
        """Buffer an event without blocking; overflow drops the oldest one."""
        with self._lock:
            if self._closed:
                return
            if len(self._buffer) >= self._max_buffer:
                self._buffer.popleft()
                self._dropped += 1
                self._dropped_total += 1
            self._buffer.append(event)
        self._notify()

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._notify()

    def _notify(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self._wakeup.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._wakeup.set()
        else:
            loop.call_soon_threadsafe(self._wakeup.set)

    def _take(self) -> Optional[ProgressEvent]:
        with self._lock:
            if self._dropped:
                count, self._dropped = self._dropped, 0
                return ProgressEvent(
                    session_id=self.session_id,
                    type=ProgressEventType.EVENTS_DROPPED,
                    data={"dropped": count},
                )
            if self._buffer:
                return self._buffer.popleft()
            return None

    async def get(self) -> Optional[ProgressEvent]:
        """Wait for the next event; ``None`` once the stream has ended."""
        while True:
            event = self._take()
            if event is not None:
                return event
            if self._closed:
                return None
            self._wakeup.clear()
            event = self._take()
            if event is not None:
                return event
            if self._closed:
                return None
            await self._wakeup.wait()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


@dataclass
class _SessionChannel:
    history: Deque[ProgressEvent]
    subscribers: Set[Subscription] = field(default_factory=set)
    snapshot: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    closed: bool = False


class ProgressPublisher:
    """Fan-out of session progress events to any number of subscribers."""

    def __init__(self, *, subscriber_buffer_size: int = 100, history_size: int = 200) -> None:
        self._channels: Dict[str, _SessionChannel] = {}
        self._lock = RLock()
        self._subscriber_buffer_size = subscriber_buffer_size
        self._history_size = history_size

    def open(self, session_id: str, snapshot: Optional[Dict[str, Any]] = None) -> None:
        """Register a session so that events can be published for it."""
        with self._lock:
            if session_id not in self._channels:
                self._channels[session_id] = _SessionChannel(
                    history=deque(maxlen=self._history_size),
                    snapshot=dict(snapshot or {}),
                )

    def publish(
        self,
        session_id: str,
        event: ProgressEvent,
        *,
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Deliver ``event`` to every current subscriber of the session.

        Returns ``False`` when the session is unknown or already closed.
        """
        with self._lock:
            channel = self._channels.get(session_id)
            if channel is None or channel.closed:
                return False
            channel.sequence += 1
            event.sequence = channel.sequence
            channel.history.append(event)
            if snapshot is not None:
                channel.snapshot = dict(snapshot)
            subscribers = list(channel.subscribers)

        for subscription in subscribers:
            subscription.push(event)
        return True

    def subscribe(
        self,
        session_id: str,
        *,
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """Subscribe to a session's live tail.

        The first event is always a ``snapshot`` of the current state. For
        sessions whose stream is already closed (or never opened in this
        process) the subscription yields the snapshot and then ends.
        ``snapshot`` is used when the publisher has no state of its own.
        """
        subscription = Subscription(session_id, max_buffer=self._subscriber_buffer_size)
        with self._lock:
            channel = self._channels.get(session_id)
            state = dict(channel.snapshot) if channel and channel.snapshot else dict(snapshot or {})
            sequence = channel.sequence if channel else 0
            subscription.push(
                ProgressEvent(
                    session_id=session_id,
                    type=ProgressEventType.SNAPSHOT,
                    status=state.get("status"),
                    progress=float(state.get("progress", 0.0)),
                    data=state,
                    sequence=sequence,
                )
            )
            if channel is None or channel.closed:
                subscription.close()
            else:
                channel.subscribers.add(subscription)
        logger.debug("progress_subscribed", session_id=session_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach and close a subscription; safe to call more than once."""
        with self._lock:
            channel = self._channels.get(subscription.session_id)
            if channel is not None:
                channel.subscribers.discard(subscription)
        subscription.close()

    def close(self, session_id: str) -> None:
        """End every stream of the session; history stays readable."""
        with self._lock:
            channel = self._channels.get(session_id)
            if channel is None or channel.closed:
                return
            channel.closed = True
            subscribers = list(channel.subscribers)
            channel.subscribers.clear()
        for subscription in subscribers:
            subscription.close()

    def discard(self, session_id: str) -> None:
        """Forget a session entirely, closing any remaining streams."""
        self.close(session_id)
        with self._lock:
            self._channels.pop(session_id, None)

    def tracked_sessions(self) -> List[str]:
        with self._lock:
            return list(self._channels)

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            channel = self._channels.get(session_id)
            return len(channel.subscribers) if channel else 0

    def get_recent_events(self, session_id: str) -> List[Dict[str, Any]]:
        """Buffered events of the session, oldest first."""
        with self._lock:
            channel = self._channels.get(session_id)
            if channel is None:
                return []
            return [event.to_dict() for event in channel.history]
