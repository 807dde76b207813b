"""Logical device layer: the registry of opened, lock-guarded devices."""

from camera_gateway.devices.registry import (
    CaptureState,
    DeviceHandle,
    DeviceIndexError,
    DeviceKind,
    DeviceRegistry,
)

__all__ = [
    "CaptureState",
    "DeviceHandle",
    "DeviceIndexError",
    "DeviceKind",
    "DeviceRegistry",
]
