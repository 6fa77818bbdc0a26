"""In-process fan-out bus for live notifications.

Every subscriber gets its own bounded FIFO queue. Nothing is replayed: a
subscriber only sees what is broadcast while it is subscribed, so consumers
reconcile after a reconnect by reloading through pagination.
"""
import asyncio
import logging

from plantalerts.schemas.notification import NotificationItem

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """Async iterator over notifications broadcast after it was opened."""

    def __init__(self, channel: "PushChannel", maxsize: int):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> NotificationItem:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self.closed:
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._channel._discard(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # the reader is not blocked on get(); it sees `closed` on its next call
            pass

    async def _deliver(self, notification: NotificationItem, timeout: float) -> bool:
        if self.closed:
            return False
        try:
            await asyncio.wait_for(self._queue.put(notification), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Subscriber stalled for %.1fs, disconnecting it", timeout)
            self.close()
            return False
        return True


class PushChannel:
    def __init__(self, queue_size: int = 100, send_timeout: float = 1.0):
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.queue_size)
        self._subscribers.add(sub)
        return sub

    def _discard(self, sub: Subscription):
        self._subscribers.discard(sub)

    async def broadcast(self, notification: NotificationItem) -> int:
        """Delivers to every current subscriber; returns how many accepted it."""
        subscribers = list(self._subscribers)
        if not subscribers:
            return 0
        results = await asyncio.gather(*(s._deliver(notification, self.send_timeout) for s in subscribers))
        return sum(1 for ok in results if ok)

    def close(self):
        for sub in list(self._subscribers):
            sub.close()
