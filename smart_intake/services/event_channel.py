# smart_intake/services/event_channel.py
"""
Per-session event channel.

publish() appends to a bounded history (oldest evicted first) and hands the
event to every subscriber queue without awaiting. subscribe() replays the
current history before the live tail. The channel closes exactly once, on a
terminal event or an explicit close(); after that publish() is a no-op.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, AsyncIterator, Optional

from ..config import settings
from ..domain.pipeline_types import TERMINAL_EVENT_TYPES, PipelineEvent, create_pipeline_event, utcnow
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """One observer's view of a channel: replayed history followed by live events."""

    def __init__(self, channel: "EventChannel", maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._done = False

    def _offer(self, event: PipelineEvent) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                log.warning(
                    "subscriber_buffer_full dropped=%s",
                    self.dropped,
                    extra={"session_id": self._channel.session_id},
                )
            return False

    def _end(self) -> None:
        # make room for the sentinel so a full queue still terminates
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    async def get(self) -> Optional[PipelineEvent]:
        """Next event, or None once the channel has closed and the queue is drained."""
        if self._done:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            return None
        return item

    def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[PipelineEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event

    def close(self) -> None:
        self._channel.unsubscribe(self)


class EventChannel:
    def __init__(
        self,
        session_id: str,
        *,
        history_limit: Optional[int] = None,
        heartbeat_seconds: Optional[float] = None,
        subscriber_buffer: Optional[int] = None,
    ) -> None:
        self.session_id = session_id
        self.history_limit = int(history_limit or settings.pipeline_history_limit)
        self.heartbeat_seconds = float(heartbeat_seconds or settings.pipeline_heartbeat_seconds)
        # a fresh subscriber must be able to take the whole replay
        self.subscriber_buffer = max(int(subscriber_buffer or settings.pipeline_subscriber_buffer), self.history_limit + 1)

        self._history: deque[PipelineEvent] = deque(maxlen=self.history_limit)
        self._subscribers: list[Subscription] = []
        self._closed = False
        self._heartbeat_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def history(self) -> list[PipelineEvent]:
        return list(self._history)

    def publish(self, event_type: str, data: Optional[dict[str, Any]] = None) -> Optional[PipelineEvent]:
        if self._closed:
            return None

        event = create_pipeline_event(event_type, self.session_id, data)
        self._history.append(event)
        METRICS.inc("events_published")

        for sub in list(self._subscribers):
            sub._offer(event)

        if event_type in TERMINAL_EVENT_TYPES:
            self.close()
        return event

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.subscriber_buffer)
        for event in self._history:
            sub._offer(event)
        if self._closed:
            sub._end()
        else:
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def heartbeat(self) -> Optional[PipelineEvent]:
        return self.publish("heartbeat", {"time": utcnow().isoformat()})

    def start_heartbeat(self) -> None:
        """Needs a running loop. Idempotent."""
        if self._closed or self._heartbeat_task is not None:
            return
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_seconds)
            if self._closed:
                return
            self.heartbeat()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        subs, self._subscribers = self._subscribers, []
        for sub in subs:
            sub._end()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
