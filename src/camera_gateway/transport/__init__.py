"""Message transports.

Protocols:
    Transport: Subscribe, receive, publish and close

Implementations:
    MqttTransport: MQTT broker connection via paho-mqtt
    LoopbackTransport: In-process transport for tests and local tools

The gateway only touches the Transport protocol, so it holds no state that
depends on the broker connection and survives reconnects unchanged.
"""

from camera_gateway.transport.base import InboundMessage, Transport, TransportError
from camera_gateway.transport.loopback import LoopbackTransport
from camera_gateway.transport.mqtt import MqttSettings, MqttTransport

__all__ = [
    "InboundMessage",
    "LoopbackTransport",
    "MqttSettings",
    "MqttTransport",
    "Transport",
    "TransportError",
]
