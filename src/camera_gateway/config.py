"""Gateway configuration.

One dataclass tree holds every runtime setting. The CLI fills it from
arguments; tests construct it directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from camera_gateway.drivers.config import DriverConfig
from camera_gateway.transport.mqtt import MqttSettings

DEFAULT_COMMAND_TOPIC = "camera/instr"
DEFAULT_INIT_TOPIC = "camera/init"
DEFAULT_RESPONSE_TOPIC = "camera/response"

#: Worker threads for blocking device and delivery calls.
DEFAULT_WORKER_THREADS = 10


@dataclass
class TopicConfig:
    """Topic names.

    Attributes:
        command: Commands addressed to a device.
        init: Registry re-enumeration requests; every message here is
            handled as Init whatever its ``cmd_idx``.
        response: All responses, including capture frames.
    """

    command: str = DEFAULT_COMMAND_TOPIC
    init: str = DEFAULT_INIT_TOPIC
    response: str = DEFAULT_RESPONSE_TOPIC


@dataclass
class GatewayConfig:
    """Everything the gateway runtime needs.

    Attributes:
        mqtt: Broker connection.
        topics: Topic names.
        drivers: Device kinds and their settings.
        worker_threads: Size of the pool running blocking device calls.
        capture_backpressure: When True each capture frame waits for the
            transport to confirm delivery before the next frame is
            acquired. When False frames are published best-effort.
        shutdown_timeout_s: How long shutdown waits for in-flight commands
            before cancelling them.
        log_level: Level name for the package logger.
        json_logs: Emit NDJSON logs instead of human-readable lines.
    """

    mqtt: MqttSettings = field(default_factory=MqttSettings)
    topics: TopicConfig = field(default_factory=TopicConfig)
    drivers: DriverConfig = field(default_factory=DriverConfig)
    worker_threads: int = DEFAULT_WORKER_THREADS
    capture_backpressure: bool = False
    shutdown_timeout_s: float = 5.0
    log_level: str = "INFO"
    json_logs: bool = False
