"""Test helper functions for camera-gateway.

Provides protocol compliance checks and shortcuts for building commands
and reading responses off a LoopbackTransport.

Example:
    from tests.helpers import assert_implements_protocol, command
    from camera_gateway.drivers.cameras import CameraCapability

    def test_twin_is_a_capability(twin_driver):
        assert_implements_protocol(twin_driver.open(0), CameraCapability)
"""

from __future__ import annotations

from typing import Any, Protocol

from camera_gateway.config import DEFAULT_RESPONSE_TOPIC
from camera_gateway.drivers.cameras import ImageType, TwinCameraSpec
from camera_gateway.protocol import (
    CommandCode,
    CommandEnvelope,
    ResponseEnvelope,
    decode_response,
    encode_command,
)
from camera_gateway.transport import InboundMessage, LoopbackTransport

SMALL_CAMERA = TwinCameraSpec(
    name="Test Camera",
    max_width=64,
    max_height=48,
    supported_image_types=(ImageType.RAW8, ImageType.RAW16, ImageType.RGB24),
    supported_bins=(1, 2),
)

SMALL_COOLED_CAMERA = TwinCameraSpec(
    name="Test Cooled Camera",
    max_width=32,
    max_height=24,
    supported_image_types=(ImageType.RAW8,),
    supported_bins=(1,),
    is_coolable=True,
)


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a @runtime_checkable Protocol.

    Args:
        instance: Object to check.
        protocol: Protocol class decorated with @runtime_checkable.

    Raises:
        AssertionError: Listing the protocol members the instance lacks.
    """
    if isinstance(instance, protocol):
        return

    object_attrs = set(dir(object))
    protocol_members = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(m for m in protocol_members if not hasattr(instance, m))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {', '.join(missing) or 'unknown'}"
    )


def assert_all_implement_protocol(
    instances: list[Any], protocol: type[Protocol]
) -> None:
    """assert_implements_protocol() for each instance, naming the failing index."""
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e


def command(
    cmd: CommandCode | int,
    camera_idx: int = 0,
    transaction_id: str = "t-1",
    **data: Any,
) -> CommandEnvelope:
    """Build a CommandEnvelope; keyword arguments become ``data`` strings."""
    return CommandEnvelope(
        transaction_id=transaction_id,
        camera_idx=camera_idx,
        cmd_idx=int(cmd),
        data={key: str(value) for key, value in data.items()},
    )


def command_message(
    cmd: CommandCode | int,
    topic: str = "camera/instr",
    camera_idx: int = 0,
    transaction_id: str = "t-1",
    **data: Any,
) -> InboundMessage:
    """Inbound message carrying an encoded command."""
    envelope = command(cmd, camera_idx, transaction_id, **data)
    return InboundMessage(topic, encode_command(envelope))


def responses(
    transport: LoopbackTransport, topic: str = DEFAULT_RESPONSE_TOPIC
) -> list[ResponseEnvelope]:
    """Decoded responses published so far on ``topic``."""
    return [decode_response(m.payload) for m in transport.published_on(topic)]
