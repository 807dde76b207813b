"""MQTT transport built on paho-mqtt.

paho runs its network loop in a background thread (``loop_start``). Its
callbacks hand messages to the asyncio loop through
``call_soon_threadsafe``, and blocking waits for delivery confirmation run
in an executor, so nothing here blocks the event loop.

Subscriptions are remembered and re-issued from ``on_connect``, which paho
also calls after an automatic reconnect.

Example:
    transport = MqttTransport(MqttSettings(host="broker.local"))
    await transport.connect()
    await transport.subscribe("camera/instr")
    async for message in transport.messages():
        ...
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any

import paho.mqtt.client as mqtt

from camera_gateway.observability import get_logger
from camera_gateway.transport.base import InboundMessage, TransportError

logger = get_logger(__name__)

_CLOSED = object()


@dataclass
class MqttSettings:
    """Broker connection settings.

    Attributes:
        host: Broker host name.
        port: Broker TCP port.
        client_id: MQTT client id; empty lets the broker assign one.
        keepalive: Keepalive interval in seconds.
        subscribe_qos: QoS for command subscriptions.
        publish_qos: QoS for responses.
        username: Optional broker user.
        password: Optional broker password.
        connect_timeout: Seconds connect() waits for the first CONNACK.
        publish_timeout: Seconds a confirmed publish waits for delivery.
        reconnect_min_delay: Initial automatic reconnect delay in seconds.
        reconnect_max_delay: Upper bound of the reconnect back-off.
    """

    host: str = "localhost"
    port: int = 1883
    client_id: str = "camera-gateway"
    keepalive: int = 20
    subscribe_qos: int = 2
    publish_qos: int = 1
    username: str | None = None
    password: str | None = None
    connect_timeout: float = 10.0
    publish_timeout: float = 10.0
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 30


class MqttTransport:
    """Transport over an MQTT broker."""

    def __init__(
        self,
        settings: MqttSettings | None = None,
        executor: Executor | None = None,
        client: Any = None,
    ) -> None:
        """Create the transport.

        Args:
            settings: Broker settings; defaults to localhost:1883.
            executor: Pool used for blocking delivery waits.
            client: Pre-built paho client (tests); by default one is
                created with callback API version 2.
        """
        self.settings = settings or MqttSettings()
        self._executor = executor
        self._client = client if client is not None else self._create_client()
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._topics: dict[str, int] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[InboundMessage | object] | None = None
        self._connected = asyncio.Event()
        self._started = False
        self._closed = False

    def _create_client(self) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.settings.client_id,
            clean_session=True,
        )
        if self.settings.username is not None:
            client.username_pw_set(self.settings.username, self.settings.password)
        client.reconnect_delay_set(
            min_delay=self.settings.reconnect_min_delay,
            max_delay=self.settings.reconnect_max_delay,
        )
        return client

    def __repr__(self) -> str:
        return (
            f"MqttTransport({self.settings.host}:{self.settings.port}, "
            f"connected={self._connected.is_set()})"
        )

    @property
    def is_connected(self) -> bool:
        """True between CONNACK and the next disconnect."""
        return self._connected.is_set()

    # -------------------------------------------------------------------------
    # paho callbacks (network thread)
    # -------------------------------------------------------------------------

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any,
    ) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connection refused", reason=str(reason_code))
            return

        for topic, qos in self._topics.items():
            client.subscribe(topic, qos)
        logger.info(
            "MQTT connected",
            host=self.settings.host,
            port=self.settings.port,
            topics=list(self._topics),
        )
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._connected.set)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any,
    ) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._connected.clear)
        if self._closed:
            return
        logger.warning("MQTT disconnected, reconnecting", reason=str(reason_code))

    def _on_message(self, client: mqtt.Client, userdata: Any, message: Any) -> None:
        if self._loop is None or self._queue is None:
            return
        inbound = InboundMessage(message.topic, bytes(message.payload))
        self._loop.call_soon_threadsafe(self._queue.put_nowait, inbound)

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the network thread and wait for the first connection.

        Raises:
            TransportError: If the broker does not accept the connection
                within ``connect_timeout``.
        """
        self._loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue()

        if not self._started:
            try:
                self._client.connect_async(
                    self.settings.host,
                    self.settings.port,
                    keepalive=self.settings.keepalive,
                )
            except (OSError, ValueError) as e:
                raise TransportError(f"Cannot connect to MQTT broker: {e}") from e
            self._client.loop_start()
            self._started = True

        try:
            await asyncio.wait_for(
                self._connected.wait(), self.settings.connect_timeout
            )
        except TimeoutError as e:
            raise TransportError(
                f"No connection to {self.settings.host}:{self.settings.port} "
                f"after {self.settings.connect_timeout}s"
            ) from e

    async def subscribe(self, topic: str) -> None:
        """Subscribe to ``topic`` at ``subscribe_qos``.

        The topic is remembered and re-subscribed after every reconnect.
        Before the first connection it is only recorded; ``on_connect``
        issues the subscription.

        Args:
            topic: MQTT topic filter.

        Raises:
            TransportError: If paho rejects the SUBSCRIBE while connected.
        """
        qos = self.settings.subscribe_qos
        self._topics[topic] = qos
        if self._connected.is_set():
            result, _ = self._client.subscribe(topic, qos)
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise TransportError(
                    f"Subscribe to {topic} failed: {mqtt.error_string(result)}"
                )
        logger.debug("Subscribed", topic=topic, qos=qos)

    async def publish(self, topic: str, payload: bytes, *, wait: bool = False) -> None:
        """Queue a message; with ``wait`` also wait for broker acknowledgement.

        While disconnected paho keeps QoS>0 messages queued and sends them
        after reconnecting, so NO_CONN is not treated as a failure.
        """
        info = self._client.publish(topic, payload, qos=self.settings.publish_qos)
        if info.rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            raise TransportError(
                f"Publish to {topic} failed: {mqtt.error_string(info.rc)}"
            )
        if not wait:
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                self._executor, info.wait_for_publish, self.settings.publish_timeout
            )
        except (RuntimeError, ValueError) as e:
            raise TransportError(f"Publish to {topic} not delivered: {e}") from e
        if not info.is_published():
            raise TransportError(
                f"Publish to {topic} not acknowledged within "
                f"{self.settings.publish_timeout}s"
            )

    async def messages(self) -> AsyncIterator[InboundMessage]:
        """Yield inbound messages in arrival order until close().

        Messages received on the network thread are queued on the event
        loop, so the iterator never blocks it. Only one consumer should
        iterate at a time; each message is delivered once.

        Yields:
            InboundMessage with topic and raw payload bytes.

        Example:
            >>> async for message in transport.messages():
            ...     print(message.topic, len(message.payload))
        """
        if self._queue is None:
            self._queue = asyncio.Queue()
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            assert isinstance(item, InboundMessage)
            yield item

    async def close(self) -> None:
        """Disconnect, stop the network thread and end ``messages()``."""
        if self._closed:
            return
        self._closed = True
        if self._started:
            self._client.disconnect()
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self._executor, self._client.loop_stop)
        if self._queue is not None:
            self._queue.put_nowait(_CLOSED)
        logger.info("MQTT transport closed")
