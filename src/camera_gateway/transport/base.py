"""Transport protocol and shared types."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class TransportError(Exception):
    """Publishing or subscribing failed."""


@dataclass(frozen=True)
class InboundMessage:
    """A message received on a subscribed topic."""

    topic: str
    payload: bytes


@runtime_checkable
class Transport(Protocol):  # pragma: no cover
    """Publish/subscribe transport used by the gateway runtime."""

    async def connect(self) -> None:
        """Establish the connection (no-op for in-process transports)."""
        ...

    async def subscribe(self, topic: str) -> None:
        """Receive messages published to ``topic``; kept across reconnects."""
        ...

    async def publish(self, topic: str, payload: bytes, *, wait: bool = False) -> None:
        """Send ``payload`` to ``topic``.

        Args:
            topic: Destination topic.
            payload: Message bytes.
            wait: Return only after the transport confirmed delivery.

        Raises:
            TransportError: If the message could not be queued or confirmed.
        """
        ...

    def messages(self) -> AsyncIterator[InboundMessage]:
        """Iterate inbound messages until the transport is closed."""
        ...

    async def close(self) -> None:
        """Disconnect and end the ``messages()`` iteration."""
        ...
