"""In-process fan-out of newly created messages.

One hub per process, created in the app lifespan and closed at shutdown.
Every WebSocket connection holds its own Subscription with a bounded buffer:

- publish() never blocks and never fails for the publisher
- A full buffer drops its oldest event (slow consumers miss updates)
- Delivery is best-effort; ownership filtering is the subscriber's job

All methods must be called from the event loop thread.
"""

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from polychat.logging import get_logger
from polychat.schemas.chats import MessageOut

logger = get_logger(__name__)

DEFAULT_CAPACITY = 100


class Subscription:
    """A single subscriber's view of the hub.

    Iterate with `async for message in subscription`; iteration ends once the
    hub is closed and the buffer has drained.
    """

    def __init__(self, capacity: int):
        self._buffer: deque[MessageOut] = deque()
        self._capacity = capacity
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def _push(self, message: MessageOut) -> None:
        if self._closed:
            return
        if len(self._buffer) >= self._capacity:
            self._buffer.popleft()
            self.dropped += 1
            logger.warning(
                "broadcast.dropped",
                capacity=self._capacity,
                dropped_total=self.dropped,
            )
        self._buffer.append(message)
        self._ready.set()

    def _close(self) -> None:
        self._closed = True
        self._ready.set()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> MessageOut:
        while not self._buffer:
            if self._closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()


class BroadcastHub:
    """Process-wide publish/subscribe channel of MessageOut events."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: set[Subscription] = set()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, message: MessageOut) -> int:
        """Hand message to every live subscriber. Returns the receiver count."""
        for subscription in self._subscribers:
            subscription._push(message)
        return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[Subscription]:
        """Register a subscriber for the duration of the block."""
        subscription = Subscription(self._capacity)
        if self._closed:
            subscription._close()
        else:
            self._subscribers.add(subscription)
        logger.debug("broadcast.subscribed", subscribers=len(self._subscribers))
        try:
            yield subscription
        finally:
            self._subscribers.discard(subscription)
            logger.debug("broadcast.unsubscribed", subscribers=len(self._subscribers))

    async def close(self) -> None:
        """End every subscription. Later publishes reach nobody."""
        self._closed = True
        for subscription in list(self._subscribers):
            subscription._close()
        self._subscribers.clear()
        logger.info("broadcast.closed")
