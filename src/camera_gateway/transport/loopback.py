"""In-process transport.

Everything published is recorded in ``published`` and, when the topic is
subscribed, delivered back through ``messages()``. Tests inject client
commands with ``inject()`` and wait for responses with
``wait_for_published()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from camera_gateway.observability import get_logger
from camera_gateway.transport.base import InboundMessage, TransportError

logger = get_logger(__name__)

_CLOSED = object()


class LoopbackTransport:
    """Transport backed by an asyncio.Queue.

    Attributes:
        published: Every message published, in order.
        subscriptions: Subscribed topics.
        fail_publish: When set, publish() raises TransportError.
    """

    def __init__(self) -> None:
        self.published: list[InboundMessage] = []
        self.subscriptions: set[str] = set()
        self.fail_publish = False
        self._queue: asyncio.Queue[InboundMessage | object] = asyncio.Queue()
        self._published_changed = asyncio.Condition()
        self._closed = False

    async def connect(self) -> None:
        logger.debug("Loopback transport connected")

    async def subscribe(self, topic: str) -> None:
        """Loop messages published on ``topic`` back to messages()."""
        self.subscriptions.add(topic)

    async def publish(self, topic: str, payload: bytes, *, wait: bool = False) -> None:
        """Record a message and loop it back if ``topic`` is subscribed.

        Args:
            topic: Destination topic.
            payload: Message body.
            wait: Accepted for interface parity; delivery is immediate.

        Raises:
            TransportError: If the transport is closed or ``fail_publish``
                is set.
        """
        if self._closed:
            raise TransportError("Loopback transport is closed")
        if self.fail_publish:
            raise TransportError(f"Publish to {topic} rejected")

        message = InboundMessage(topic, bytes(payload))
        async with self._published_changed:
            self.published.append(message)
            self._published_changed.notify_all()
        if topic in self.subscriptions:
            self._queue.put_nowait(message)

    def inject(self, topic: str, payload: bytes | str) -> None:
        """Deliver a message as if a client had published it."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self._queue.put_nowait(InboundMessage(topic, payload))

    def published_on(self, topic: str) -> list[InboundMessage]:
        """Published messages for one topic."""
        return [m for m in self.published if m.topic == topic]

    async def wait_for_published(
        self, count: int, topic: str | None = None, timeout: float = 5.0
    ) -> list[InboundMessage]:
        """Wait until at least ``count`` messages were published.

        Raises:
            TimeoutError: If fewer arrive within ``timeout`` seconds.
        """

        def matching() -> list[InboundMessage]:
            if topic is None:
                return list(self.published)
            return self.published_on(topic)

        async with self._published_changed:
            await asyncio.wait_for(
                self._published_changed.wait_for(lambda: len(matching()) >= count),
                timeout,
            )
        return matching()

    async def messages(self) -> AsyncIterator[InboundMessage]:
        """Yield injected and looped-back messages until close()."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            assert isinstance(item, InboundMessage)
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        logger.debug("Loopback transport closed")
