"""Camera drivers.

Every device kind the gateway can serve is reached through two protocols:

Protocols:
    CameraDriver: Enumerates devices of one kind and opens them
    CameraCapability: Operations on one opened device

Implementations:
    DigitalTwinCameraDriver/DigitalTwinCameraInstance: Simulated cameras
    ASICameraDriver/ASICameraInstance: ZWO ASI cameras via zwoasi

Capability methods are blocking. The gateway calls them from worker
threads, one call at a time per device, so implementations need no
locking of their own.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from camera_gateway.drivers.cameras.asi import (
    ASICameraDriver,
    ASICameraInstance,
)
from camera_gateway.drivers.cameras.twin import (
    DEFAULT_CAMERAS,
    DigitalTwinCameraDriver,
    DigitalTwinCameraInstance,
    DigitalTwinConfig,
    ImageSource,
    TwinCameraSpec,
)
from camera_gateway.drivers.cameras.types import (
    CameraClosedError,
    CameraError,
    CaptureNotRunningError,
    ControlDescriptor,
    ControlType,
    ControlValue,
    DeviceInfo,
    ImageType,
    RegionOfInterest,
)


@runtime_checkable
class CameraCapability(Protocol):  # pragma: no cover
    """Operations every opened device provides.

    Failures are reported by raising CameraError (or ValueError for an
    ROI the device cannot accept). Callers decide how a failure shows up
    on the wire.
    """

    def get_info(self) -> DeviceInfo:
        """Static device description; index is 0 until the registry assigns one."""
        ...

    def get_roi(self) -> RegionOfInterest:
        """Current capture window and encoding."""
        ...

    def set_roi(self, roi: RegionOfInterest) -> None:
        """Apply a capture window and encoding.

        Raises:
            ValueError: If the window exceeds the sensor, or the bin or
                encoding is unsupported.
            CameraError: If the device rejects the change.
        """
        ...

    def get_controls(self) -> dict[ControlType, ControlDescriptor]:
        """Descriptors of every control the device exposes."""
        ...

    def get_control_value(self, control: ControlType) -> ControlValue:
        """Read one control.

        Raises:
            CameraError: If the control is unsupported or the read fails.
        """
        ...

    def set_control_value(
        self, control: ControlType, value: int, auto: bool = False
    ) -> None:
        """Write one control. Read-only controls ignore the write.

        Raises:
            CameraError: If the control is unsupported or the write fails.
        """
        ...

    def start_capture(self) -> None:
        """Enter continuous capture mode."""
        ...

    def stop_capture(self) -> None:
        """Leave continuous capture mode. Safe to call when not capturing."""
        ...

    def get_frame(self) -> bytes:
        """Block until the next frame is ready and return its raw pixels.

        Raises:
            CaptureNotRunningError: If start_capture() has not been called.
            CameraError: If acquisition fails or times out.
        """
        ...

    @property
    def is_capturing(self) -> bool:
        """True between start_capture() and stop_capture()."""
        ...

    def close(self) -> None:
        """Release the device. Idempotent."""
        ...


@runtime_checkable
class CameraDriver(Protocol):  # pragma: no cover
    """Discovery and opening for one kind of device."""

    def get_connected_cameras(self) -> dict[int, str]:
        """Map driver-local camera id to display name."""
        ...

    def open(self, camera_id: int) -> CameraCapability:
        """Open a camera by driver-local id.

        Raises:
            CameraError: If the camera cannot be opened.
        """
        ...


__all__ = [
    # Protocols
    "CameraCapability",
    "CameraDriver",
    # Implementations
    "ASICameraDriver",
    "ASICameraInstance",
    "DigitalTwinCameraDriver",
    "DigitalTwinCameraInstance",
    "DigitalTwinConfig",
    "ImageSource",
    "TwinCameraSpec",
    "DEFAULT_CAMERAS",
    # Types
    "CameraClosedError",
    "CameraError",
    "CaptureNotRunningError",
    "ControlDescriptor",
    "ControlType",
    "ControlValue",
    "DeviceInfo",
    "ImageType",
    "RegionOfInterest",
]
