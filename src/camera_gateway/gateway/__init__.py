"""Command dispatch, capture streaming and the gateway runtime."""

from camera_gateway.gateway.capture import CaptureStream, ResponsePublisher
from camera_gateway.gateway.dispatcher import (
    CONTROL_READ_FAILED,
    CommandDispatcher,
    CommandParameterError,
    parse_roi,
)
from camera_gateway.gateway.runtime import GatewayRuntime

__all__ = [
    "CONTROL_READ_FAILED",
    "CaptureStream",
    "CommandDispatcher",
    "CommandParameterError",
    "GatewayRuntime",
    "ResponsePublisher",
    "parse_roi",
]
