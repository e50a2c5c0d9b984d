"""Event distribution for progress streaming.

EventPublisher fans events of a run out to any number of subscribers
through bounded asyncio queues. Publishing never waits: a subscriber whose
queue is full loses the event (with a warning) instead of stalling the
agent loop. The end-of-stream marker is always delivered.

This module is headless - no HTTP dependencies.
"""

import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator, Dict, List, Optional

from taskpilot.core.events import AgentEvent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_QUEUE_SIZE = 1000


class _Subscription:
    """Internal subscription handle."""

    # Sentinel value to signal end of stream
    END_OF_STREAM = object()

    def __init__(self, run_id: str, queue: asyncio.Queue):
        self.run_id = run_id
        self.queue = queue
        self.active = True
        self.dropped = 0


class EventPublisher:
    """Publish/subscribe for AgentEvents, keyed by run id.

    Usage:
        publisher = EventPublisher()

        # Register before the run starts so no event is missed
        stream = publisher.subscribe(run_id)
        async for event in stream:
            print(event.to_wire())

        # In the agent loop (never blocks)
        publisher.publish(run_id, event)

        # When the run ends (closes all subscriber streams)
        publisher.complete_run(run_id)

    Must be used from a single event loop.
    """

    def __init__(self, timeout: Optional[float] = None, max_queue_size: Optional[int] = None):
        """Initialize the event publisher.

        Args:
            timeout: Seconds a subscriber waits between events before re-checking
                whether the run ended (default: 30)
            max_queue_size: Max buffered events per subscriber (default: 1000)
        """
        self._subscribers: Dict[str, List[_Subscription]] = defaultdict(list)
        self._timeout = timeout if timeout is not None else DEFAULT_TIMEOUT_SECONDS
        self._max_queue_size = max_queue_size if max_queue_size is not None else DEFAULT_MAX_QUEUE_SIZE

    def subscribe(self, run_id: str) -> AsyncIterator[AgentEvent]:
        """Subscribe to the events of a run.

        The subscription is registered immediately; events published after
        this call are buffered until the iterator is consumed. The iterator
        ends when the run completes.
        """
        subscription = _Subscription(run_id, asyncio.Queue(maxsize=self._max_queue_size))
        self._subscribers[run_id].append(subscription)
        return self._iterate(subscription)

    async def _iterate(self, subscription: _Subscription) -> AsyncIterator[AgentEvent]:
        queue = subscription.queue
        try:
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=self._timeout)
                except asyncio.TimeoutError:
                    if not subscription.active:
                        break
                    continue
                if item is _Subscription.END_OF_STREAM:
                    break
                yield item
        finally:
            self._remove(subscription)

    def _remove(self, subscription: _Subscription) -> None:
        subscribers = self._subscribers.get(subscription.run_id)
        if subscribers is None:
            return
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            del self._subscribers[subscription.run_id]

    def publish(self, run_id: str, event: AgentEvent) -> None:
        """Deliver *event* to all active subscribers of *run_id* without waiting.

        Events with no subscribers are dropped silently.
        """
        for subscription in self._subscribers.get(run_id, []):
            if not subscription.active:
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning(
                    "Event queue full for run %s, dropping event: %s",
                    run_id,
                    event.type.value,
                )

    def complete_run(self, run_id: str) -> None:
        """Close every subscriber stream of *run_id*.

        Queued events are delivered first. If a queue is full, its oldest
        event is discarded to make room for the end-of-stream marker.
        """
        for subscription in self._subscribers.get(run_id, []):
            subscription.active = False
            queue = subscription.queue
            if queue.full():
                queue.get_nowait()
                subscription.dropped += 1
            queue.put_nowait(_Subscription.END_OF_STREAM)

    def subscriber_count(self, run_id: str) -> int:
        """Number of active subscribers for a run."""
        return sum(1 for s in self._subscribers.get(run_id, []) if s.active)
