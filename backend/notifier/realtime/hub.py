from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from typing import Literal

from notifier.errors import PublishFailure
from notifier.schemas.notification import NotificationOut


logger = logging.getLogger(__name__)

OverflowPolicy = Literal["drop_oldest", "close"]
Predicate = Callable[[NotificationOut], bool]


class Subscription:
    """One live consumer of the hub with its own bounded buffer.

    Iterate with ``async for``; iteration ends once the subscription is closed
    and its buffer is drained. Everything that touches the buffer is
    synchronous, so a publisher never waits on a consumer.
    """

    def __init__(self, hub: BroadcastHub, *, buffer_size: int, predicate: Predicate | None = None) -> None:
        self._hub = hub
        self._buffer: deque[NotificationOut] = deque()
        self._buffer_size = buffer_size
        self._predicate = predicate
        self._ready = asyncio.Event()
        self.closed = False
        self.dropped = 0

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> NotificationOut:
        while not self._buffer:
            if self.closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def accepts(self, record: NotificationOut) -> bool:
        return self._predicate is None or self._predicate(record)

    def offer(self, record: NotificationOut, policy: OverflowPolicy) -> bool:
        """Buffer ``record``; apply ``policy`` if the buffer is full."""
        if self.closed:
            return False
        if len(self._buffer) >= self._buffer_size:
            if policy == "close":
                logger.warning("Subscriber buffer full (%d); closing subscription", self._buffer_size)
                self.close()
                return False
            self._buffer.popleft()
            self.dropped += 1
            logger.warning("Subscriber buffer full (%d); dropped oldest notification", self._buffer_size)
        self._buffer.append(record)
        self._ready.set()
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._hub._detach(self)
        self._ready.set()


class BroadcastHub:
    """Process-wide multicast of newly persisted notifications.

    Every subscription receives every accepted record independently; a full or
    abandoned subscription only ever affects itself. New subscriptions see only
    records published after they attach.
    """

    def __init__(self, *, buffer_size: int = 100, overflow_policy: OverflowPolicy = "drop_oldest") -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.buffer_size = buffer_size
        self.overflow_policy = overflow_policy
        self._subscriptions: set[Subscription] = set()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, predicate: Predicate | None = None) -> Subscription:
        if self._closed:
            raise PublishFailure("Broadcast hub is closed")
        subscription = Subscription(self, buffer_size=self.buffer_size, predicate=predicate)
        self._subscriptions.add(subscription)
        logger.debug("Subscriber attached (%d active)", len(self._subscriptions))
        return subscription

    def publish(self, record: NotificationOut) -> int:
        if self._closed:
            raise PublishFailure(f"Broadcast hub is closed; notification {record.id} not delivered")
        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.accepts(record):
                continue
            if subscription.offer(record, self.overflow_policy):
                delivered += 1
        logger.debug("Notification %s published to %d subscriber(s)", record.id, delivered)
        return delivered

    def close(self) -> None:
        self._closed = True
        for subscription in list(self._subscriptions):
            subscription.close()

    def _detach(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)
        logger.debug("Subscriber detached (%d active)", len(self._subscriptions))
