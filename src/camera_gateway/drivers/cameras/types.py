"""Value types shared by camera implementations and the gateway core.

Ordinals of ImageType and ControlType are part of the wire protocol: clients
send and receive them as plain integers, so the numbering here is fixed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class CameraError(Exception):
    """A device capability call failed."""


class CameraClosedError(CameraError):
    """Operation attempted on a camera that has been closed."""


class CaptureNotRunningError(CameraError):
    """Frame requested while the device is not in capture mode."""


class ImageType(IntEnum):
    """Pixel encodings.

    ``END`` stands in for any ordinal a device reports that is not listed,
    so decoding device data never fails on an unknown encoding.
    """

    RAW8 = 0
    RAW10 = 1
    RAW12 = 2
    RAW14 = 3
    RAW16 = 4
    Y8 = 5
    Y10 = 6
    Y12 = 7
    Y14 = 8
    Y16 = 9
    RGB24 = 10
    RGB32 = 11
    END = -1

    @classmethod
    def from_ordinal(cls, value: int) -> ImageType:
        """Map an integer to an ImageType, unknown values to END.

        Example:
            >>> ImageType.from_ordinal(4)
            <ImageType.RAW16: 4>
            >>> ImageType.from_ordinal(42)
            <ImageType.END: -1>
        """
        try:
            return cls(value)
        except ValueError:
            return cls.END

    @property
    def bytes_per_pixel(self) -> int:
        """Bytes used per pixel in a raw frame buffer of this encoding."""
        return _BYTES_PER_PIXEL.get(self, 1)


_BYTES_PER_PIXEL = {
    ImageType.RAW8: 1,
    ImageType.Y8: 1,
    ImageType.RAW10: 2,
    ImageType.RAW12: 2,
    ImageType.RAW14: 2,
    ImageType.RAW16: 2,
    ImageType.Y10: 2,
    ImageType.Y12: 2,
    ImageType.Y14: 2,
    ImageType.Y16: 2,
    ImageType.RGB24: 3,
    ImageType.RGB32: 4,
}


class ControlType(IntEnum):
    """Adjustable device parameters."""

    GAIN = 0
    EXPOSURE = 1
    GAMMA = 2
    GAMMA_CONTRAST = 3
    WB_R = 4
    WB_G = 5
    WB_B = 6
    FLIP = 7
    FRAME_SPEED_MODE = 8
    CONTRAST = 9
    SHARPNESS = 10
    SATURATION = 11
    AUTO_TARGET_BRIGHTNESS = 12
    BLACK_LEVEL = 13
    COOLER_ENABLE = 14
    TARGET_TEMPERATURE = 15
    CURRENT_TEMPERATURE = 16
    COOLER_POWER = 17
    BAD_PIXEL_CORRECTION_ENABLE = 18

    @classmethod
    def parse(cls, value: int) -> ControlType:
        """Return the member for ``value``.

        Raises:
            ValueError: If value is not a known control ordinal.
        """
        return cls(value)


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    """Static description of an opened device.

    Attributes:
        name: Model or display name.
        index: Registry index; assigned by the registry, 0 until then.
        max_width: Sensor width in pixels.
        max_height: Sensor height in pixels.
        supported_image_types: Encodings the device can produce, in
            device order.
        supported_bins: Binning factors the device accepts.
        is_coolable: Whether the device has a thermoelectric cooler.
    """

    name: str
    index: int
    max_width: int
    max_height: int
    supported_image_types: tuple[ImageType, ...]
    supported_bins: tuple[int, ...]
    is_coolable: bool = False

    def with_index(self, index: int) -> DeviceInfo:
        """Copy of this info carrying a registry index."""
        return DeviceInfo(
            name=self.name,
            index=index,
            max_width=self.max_width,
            max_height=self.max_height,
            supported_image_types=self.supported_image_types,
            supported_bins=self.supported_bins,
            is_coolable=self.is_coolable,
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire representation used in GetInfo responses."""
        return {
            "name": self.name,
            "idx": self.index,
            "max_width": self.max_width,
            "max_height": self.max_height,
            "supported_img_type": [int(t) for t in self.supported_image_types],
            "supported_bins": list(self.supported_bins),
            "is_coolable": self.is_coolable,
        }


@dataclass(frozen=True, slots=True)
class RegionOfInterest:
    """Capture window and encoding.

    Attributes:
        startx: Left edge in binned pixels.
        starty: Top edge in binned pixels.
        width: Window width in binned pixels.
        height: Window height in binned pixels.
        bin: Binning factor.
        img_type: Pixel encoding.
    """

    startx: int
    starty: int
    width: int
    height: int
    bin: int
    img_type: ImageType

    @property
    def frame_size(self) -> int:
        """Bytes in one raw frame captured with this ROI."""
        return self.width * self.height * self.img_type.bytes_per_pixel

    def to_dict(self) -> dict[str, int]:
        """Wire representation used in GetRoi/SetRoi responses."""
        return {
            "startx": self.startx,
            "starty": self.starty,
            "width": self.width,
            "height": self.height,
            "bin": self.bin,
            "img_type": int(self.img_type),
        }


@dataclass(frozen=True, slots=True)
class ControlDescriptor:
    """Range and capabilities of one control."""

    control_type: ControlType
    name: str
    min_value: int
    max_value: int
    default_value: int
    is_auto_supported: bool
    is_writable: bool

    def clamp(self, value: int) -> int:
        """Limit ``value`` to [min_value, max_value]."""
        return max(self.min_value, min(self.max_value, value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "ctrl_type": int(self.control_type),
            "name": self.name,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "default_value": self.default_value,
            "is_auto_supported": self.is_auto_supported,
            "is_writable": self.is_writable,
        }


@dataclass(frozen=True, slots=True)
class ControlValue:
    """Current value of a control and whether auto mode is on."""

    value: int
    auto: bool = False
