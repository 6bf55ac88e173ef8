"""
Event Hub

Fan-out of state-change notifications to observers (dashboards, the live
printer display, websocket clients).

- Message passing: every subscription owns a bounded asyncio.Queue; the
  publisher never calls observer code directly.
- Channel scoping: an event published on a channel reaches subscribers of
  that channel; an event published without a channel reaches everyone.
- No persistence or replay: late subscribers query the job store for the
  current state.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

@dataclass
class Event:
    type: str
    payload: dict[str, Any]
    channel: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "channel": self.channel,
            "timestamp": self.timestamp.isoformat(),
        }

Observer = Callable[[Event], Union[None, Awaitable[None]]]

# Wakes consumers blocked on a subscription that was closed
_CLOSED = object()

class SubscriptionClosed(Exception):
    pass

class Subscription:
    def __init__(self, hub: "EventHub", channels: set[str], maxsize: int):
        self._hub = hub
        self.channels = channels
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False
        self._pump: Optional[asyncio.Task] = None

    def subscribe(self, channel: str) -> None:
        self.channels.add(str(channel))

    def unsubscribe(self, channel: str) -> None:
        self.channels.discard(str(channel))

    def wants(self, channel: Optional[str]) -> bool:
        return channel is None or channel in self.channels

    def deliver(self, event: Event) -> None:
        if self.queue.full():
            # Slow consumer: drop its oldest event rather than block publishers
            self.queue.get_nowait()
            self.dropped += 1
            logger.warning(f"Subscriber buffer full, dropped oldest event ({self.dropped} so far)")
        self.queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Event:
        """Next event; raises SubscriptionClosed once closed and drained."""
        if timeout is None:
            item = await self.queue.get()
        else:
            item = await asyncio.wait_for(self.queue.get(), timeout=timeout)
        return self._unwrap(item)

    def get_nowait(self) -> Event:
        return self._unwrap(self.queue.get_nowait())

    def _unwrap(self, item) -> Event:
        if item is _CLOSED:
            # Leave it for any other waiter
            self.queue.put_nowait(_CLOSED)
            raise SubscriptionClosed()
        return item

    def _mark_closed(self) -> None:
        self.closed = True
        if self._pump:
            self._pump.cancel()
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None

    def close(self) -> None:
        self._hub.unsubscribe(self)

class EventHub:
    def __init__(self, buffer_size: int = 100):
        self.buffer_size = buffer_size
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, observer: Optional[Observer] = None, channel: Optional[str] = None) -> Subscription:
        """
        Registers an observer.

        Without `observer` the caller consumes the returned Subscription
        (async iteration or get()). With one, a background task feeds each
        event to it; the observer may be a plain function or a coroutine
        function, and its exceptions are logged, not propagated.
        """
        channels = {str(channel)} if channel else set()
        sub = Subscription(self, channels, self.buffer_size)
        # Copy-on-write: publish() iterates a snapshot
        self._subscriptions = [*self._subscriptions, sub]

        if observer is not None:
            sub._pump = asyncio.create_task(self._pump(sub, observer))

        logger.debug(f"Observer subscribed (channel={channel}), {self.subscriber_count} total")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub.closed:
            return
        self._subscriptions = [s for s in self._subscriptions if s is not sub]
        sub._mark_closed()

    def publish(self, event_type: str, payload: dict[str, Any], channel: Optional[str] = None) -> int:
        """Delivers to matching subscribers; returns how many received it."""
        event = Event(type=str(event_type), payload=payload, channel=str(channel) if channel else None)
        delivered = 0
        for sub in self._subscriptions:
            if sub.wants(event.channel):
                sub.deliver(event)
                delivered += 1
        logger.debug(f"Published {event.type} on {event.channel or '*'} to {delivered} subscriber(s)")
        return delivered

    async def close(self) -> None:
        subs, self._subscriptions = self._subscriptions, []
        pumps = []
        for sub in subs:
            sub._mark_closed()
            if sub._pump:
                pumps.append(sub._pump)
        if pumps:
            await asyncio.gather(*pumps, return_exceptions=True)

    async def _pump(self, sub: Subscription, observer: Observer) -> None:
        while not sub.closed:
            try:
                event = await sub.get()
            except SubscriptionClosed:
                return
            try:
                result = observer(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Observer failed on {event.type}: {e}", exc_info=True)
