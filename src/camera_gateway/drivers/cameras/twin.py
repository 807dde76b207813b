"""Digital twin camera driver: simulated devices for gateway testing.

Behaves like a hardware capability from the gateway's point of view:
validated ROI changes, ranged controls with read-only entries, explicit
capture mode, and raw frame buffers whose size follows the ROI.

Image Sources:
    Synthetic: Grid, crosshair and status text with gain-scaled noise
    Directory: Cycle through images in a folder
    File: Return the same image repeatedly

Classes:
    TwinCameraSpec: Static properties of a simulated camera
    DigitalTwinConfig: Image source and timing behaviour
    DigitalTwinCameraDriver: Enumerates and opens simulated cameras
    DigitalTwinCameraInstance: One opened simulated camera

Example:
    driver = DigitalTwinCameraDriver()
    camera = driver.open(0)
    camera.start_capture()
    raw = camera.get_frame()  # 1912 * 1304 bytes of RAW8
    camera.close()
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, final

import cv2
import numpy as np

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
from camera_gateway.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DigitalTwinCameraDriver",
    "DigitalTwinCameraInstance",
    "DigitalTwinConfig",
    "ImageSource",
    "TwinCameraSpec",
    "DEFAULT_CAMERAS",
    "create_file_camera",
    "create_directory_camera",
]


class ImageSource(Enum):
    """Where simulated frames come from."""

    SYNTHETIC = "synthetic"
    DIRECTORY = "directory"
    FILE = "file"


@dataclass(frozen=True)
class TwinCameraSpec:
    """Static properties of a simulated camera."""

    name: str
    max_width: int
    max_height: int
    supported_image_types: tuple[ImageType, ...]
    supported_bins: tuple[int, ...]
    is_coolable: bool = False


@dataclass
class DigitalTwinConfig:
    """Configuration for digital twin camera behaviour.

    Attributes:
        image_source: Frame source.
        image_path: Directory or file for the non-synthetic sources.
        cycle_images: Loop back to the first directory image at the end.
        simulate_exposure: Sleep for the EXPOSURE control value on each
            frame, capped at ``max_exposure_s``.
        max_exposure_s: Upper bound on the simulated exposure sleep.
    """

    image_source: ImageSource = ImageSource.SYNTHETIC
    image_path: Path | None = None
    cycle_images: bool = True
    simulate_exposure: bool = False
    max_exposure_s: float = 2.0


# =============================================================================
# Constants
# =============================================================================

_SYNTHETIC_GRID_SPACING = 50
_CROSSHAIR_RADIUS = 100
_IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".tif", ".tiff"})

# name, min, max, default, auto supported, writable
_CONTROL_TABLE: Mapping[ControlType, tuple[str, int, int, int, bool, bool]] = (
    MappingProxyType(
        {
            ControlType.GAIN: ("Gain", 0, 720, 120, True, True),
            ControlType.EXPOSURE: ("Exposure", 32, 2_000_000_000, 10_000, True, True),
            ControlType.GAMMA: ("Gamma", 0, 100, 50, False, True),
            ControlType.GAMMA_CONTRAST: ("GammaContrast", 0, 100, 50, False, True),
            ControlType.WB_R: ("WB_R", 1, 99, 52, True, True),
            ControlType.WB_G: ("WB_G", 1, 99, 50, True, True),
            ControlType.WB_B: ("WB_B", 1, 99, 95, True, True),
            ControlType.FLIP: ("Flip", 0, 3, 0, False, True),
            ControlType.FRAME_SPEED_MODE: ("FrameSpeedMode", 0, 2, 1, False, True),
            ControlType.CONTRAST: ("Contrast", 0, 100, 50, False, True),
            ControlType.SHARPNESS: ("Sharpness", 0, 100, 0, False, True),
            ControlType.SATURATION: ("Saturation", 0, 255, 128, False, True),
            ControlType.AUTO_TARGET_BRIGHTNESS: (
                "AutoExpTargetBrightness",
                50,
                160,
                100,
                False,
                True,
            ),
            ControlType.BLACK_LEVEL: ("BlackLevel", 0, 255, 10, False, True),
            ControlType.COOLER_ENABLE: ("CoolerEnable", 0, 1, 0, False, True),
            ControlType.TARGET_TEMPERATURE: (
                "TargetTemperature",
                -350,
                300,
                0,
                False,
                True,
            ),
            # Tenths of a degree Celsius
            ControlType.CURRENT_TEMPERATURE: (
                "CurrentTemperature",
                -500,
                1000,
                250,
                False,
                False,
            ),
            ControlType.COOLER_POWER: ("CoolerPower", 0, 100, 0, False, False),
            ControlType.BAD_PIXEL_CORRECTION_ENABLE: (
                "BadPixelCorrectionEnable",
                0,
                1,
                1,
                False,
                True,
            ),
        }
    )
)

_COOLER_CONTROLS = frozenset(
    {
        ControlType.COOLER_ENABLE,
        ControlType.TARGET_TEMPERATURE,
        ControlType.COOLER_POWER,
    }
)

DEFAULT_CAMERAS: Mapping[int, TwinCameraSpec] = MappingProxyType(
    {
        0: TwinCameraSpec(
            name="Mock Camera",
            max_width=1912,
            max_height=1304,
            supported_image_types=(ImageType.RAW8, ImageType.RAW16),
            supported_bins=(1, 2, 4, 8),
        ),
        1: TwinCameraSpec(
            name="Mock Cooled Camera",
            max_width=1280,
            max_height=960,
            supported_image_types=(ImageType.RAW8, ImageType.RAW16, ImageType.RGB24),
            supported_bins=(1, 2),
            is_coolable=True,
        ),
    }
)


def build_control_descriptors(
    is_coolable: bool,
) -> dict[ControlType, ControlDescriptor]:
    """Control descriptors for a simulated camera.

    Cooler controls are only present on coolable cameras.
    """
    descriptors: dict[ControlType, ControlDescriptor] = {}
    for control, (name, lo, hi, default, auto, writable) in _CONTROL_TABLE.items():
        if control in _COOLER_CONTROLS and not is_coolable:
            continue
        descriptors[control] = ControlDescriptor(
            control_type=control,
            name=name,
            min_value=lo,
            max_value=hi,
            default_value=default,
            is_auto_supported=auto,
            is_writable=writable,
        )
    return descriptors


@final
class DigitalTwinCameraDriver:
    """Enumerates and opens simulated cameras.

    Example:
        driver = DigitalTwinCameraDriver(
            config=DigitalTwinConfig(simulate_exposure=True),
            cameras={0: DEFAULT_CAMERAS[0], 1: DEFAULT_CAMERAS[0]},
        )
    """

    __slots__ = ("config", "_cameras")

    def __init__(
        self,
        config: DigitalTwinConfig | None = None,
        cameras: Mapping[int, TwinCameraSpec] | None = None,
    ) -> None:
        """Create the driver.

        Args:
            config: Image source and timing. Defaults to synthetic frames
                with no exposure delay.
            cameras: Camera specs keyed by driver-local id. Defaults to
                DEFAULT_CAMERAS.
        """
        self.config = config or DigitalTwinConfig()
        self._cameras: dict[int, TwinCameraSpec] = (
            dict(cameras) if cameras is not None else dict(DEFAULT_CAMERAS)
        )
        logger.info(
            "Digital twin camera driver initialized",
            image_source=self.config.image_source.value,
            num_cameras=len(self._cameras),
        )

    def __repr__(self) -> str:
        return (
            f"DigitalTwinCameraDriver("
            f"source={self.config.image_source.value}, "
            f"cameras={list(self._cameras.keys())})"
        )

    def get_connected_cameras(self) -> dict[int, str]:
        """Return configured simulated cameras as ``{id: name}``."""
        logger.debug("Listing simulated cameras", count=len(self._cameras))
        return {camera_id: spec.name for camera_id, spec in self._cameras.items()}

    def open(self, camera_id: int) -> DigitalTwinCameraInstance:
        """Open a simulated camera.

        Raises:
            CameraError: If camera_id is not configured.
        """
        if camera_id not in self._cameras:
            logger.error("Simulated camera not found", camera_id=camera_id)
            raise CameraError(f"Simulated camera {camera_id} not found")
        logger.info("Opening simulated camera", camera_id=camera_id)
        return DigitalTwinCameraInstance(camera_id, self._cameras[camera_id], self.config)


@final
class DigitalTwinCameraInstance:
    """One opened simulated camera.

    Starts with a full-sensor ROI at bin 1 in the camera's first supported
    encoding, and every control at its default value.
    """

    __slots__ = (
        "_camera_id",
        "_spec",
        "_config",
        "_descriptors",
        "_values",
        "_roi",
        "_capturing",
        "_closed",
        "_image_files",
        "_image_index",
        "_rng",
    )

    def __init__(
        self,
        camera_id: int,
        spec: TwinCameraSpec,
        config: DigitalTwinConfig,
    ) -> None:
        self._camera_id = camera_id
        self._spec = spec
        self._config = config
        self._descriptors = build_control_descriptors(spec.is_coolable)
        self._values: dict[ControlType, ControlValue] = {
            control: ControlValue(descriptor.default_value)
            for control, descriptor in self._descriptors.items()
        }
        self._roi = RegionOfInterest(
            startx=0,
            starty=0,
            width=spec.max_width,
            height=spec.max_height,
            bin=1,
            img_type=spec.supported_image_types[0],
        )
        self._capturing = False
        self._closed = False
        self._image_files: list[Path] = []
        self._image_index = 0
        self._rng = np.random.default_rng()
        self._load_image_files()

    def _load_image_files(self) -> None:
        """Collect sorted image paths for DIRECTORY mode; no-op otherwise."""
        if self._config.image_source != ImageSource.DIRECTORY:
            return
        if self._config.image_path is None:
            return

        path = Path(self._config.image_path)
        if not path.is_dir():
            logger.warning("Image directory not found", path=str(path))
            return

        self._image_files = sorted(
            f for f in path.iterdir() if f.suffix.lower() in _IMAGE_EXTENSIONS
        )

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return (
            f"DigitalTwinCameraInstance(id={self._camera_id}, "
            f"name={self._spec.name!r}, {state})"
        )

    def _check_open(self) -> None:
        if self._closed:
            raise CameraClosedError(f"Simulated camera {self._camera_id} is closed")

    # -------------------------------------------------------------------------
    # Info and ROI
    # -------------------------------------------------------------------------

    def get_info(self) -> DeviceInfo:
        self._check_open()
        return DeviceInfo(
            name=self._spec.name,
            index=self._camera_id,
            max_width=self._spec.max_width,
            max_height=self._spec.max_height,
            supported_image_types=self._spec.supported_image_types,
            supported_bins=self._spec.supported_bins,
            is_coolable=self._spec.is_coolable,
        )

    def get_roi(self) -> RegionOfInterest:
        self._check_open()
        return self._roi

    def set_roi(self, roi: RegionOfInterest) -> None:
        """Validate and apply an ROI.

        Window limits are checked against the sensor size divided by the
        requested bin.

        Raises:
            ValueError: If the ROI does not fit the sensor, or the bin or
                encoding is unsupported.
        """
        self._check_open()
        if roi.bin not in self._spec.supported_bins:
            raise ValueError(
                f"Unsupported bin {roi.bin}; supported: {list(self._spec.supported_bins)}"
            )
        if roi.img_type not in self._spec.supported_image_types:
            raise ValueError(f"Unsupported image type {int(roi.img_type)}")
        if min(roi.startx, roi.starty) < 0 or min(roi.width, roi.height) <= 0:
            raise ValueError("ROI origin must be non-negative and size positive")

        limit_w = self._spec.max_width // roi.bin
        limit_h = self._spec.max_height // roi.bin
        if roi.startx + roi.width > limit_w or roi.starty + roi.height > limit_h:
            raise ValueError(
                f"ROI {roi.width}x{roi.height}+{roi.startx}+{roi.starty} exceeds "
                f"{limit_w}x{limit_h} at bin {roi.bin}"
            )

        self._roi = roi
        logger.debug("ROI applied", camera_id=self._camera_id, **roi.to_dict())

    # -------------------------------------------------------------------------
    # Controls
    # -------------------------------------------------------------------------

    def get_controls(self) -> dict[ControlType, ControlDescriptor]:
        self._check_open()
        return dict(self._descriptors)

    def _descriptor(self, control: ControlType) -> ControlDescriptor:
        try:
            return self._descriptors[control]
        except KeyError:
            raise CameraError(
                f"Control {control.name} not supported by {self._spec.name}"
            ) from None

    def get_control_value(self, control: ControlType) -> ControlValue:
        self._check_open()
        self._descriptor(control)
        return self._values[control]

    def set_control_value(
        self, control: ControlType, value: int, auto: bool = False
    ) -> None:
        """Store a clamped control value.

        Writes to read-only controls are ignored, as a device would ignore
        them, and auto is dropped for controls without auto support.
        """
        self._check_open()
        descriptor = self._descriptor(control)
        if not descriptor.is_writable:
            logger.debug(
                "Ignoring write to read-only control",
                camera_id=self._camera_id,
                control=control.name,
            )
            return

        clamped = descriptor.clamp(value)
        self._values[control] = ControlValue(
            clamped, auto and descriptor.is_auto_supported
        )
        if control == ControlType.COOLER_ENABLE:
            self._values[ControlType.COOLER_POWER] = ControlValue(
                40 if clamped else 0
            )

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    def start_capture(self) -> None:
        self._check_open()
        self._capturing = True
        logger.debug("Simulated capture started", camera_id=self._camera_id)

    def stop_capture(self) -> None:
        self._capturing = False
        logger.debug("Simulated capture stopped", camera_id=self._camera_id)

    def get_frame(self) -> bytes:
        """Produce one raw frame in the current ROI and encoding.

        Returns:
            ``width * height * bytes_per_pixel`` bytes, row-major.

        Raises:
            CameraClosedError: If the camera is closed.
            CaptureNotRunningError: If capture mode is off.
        """
        self._check_open()
        if not self._capturing:
            raise CaptureNotRunningError(
                f"Simulated camera {self._camera_id} is not capturing"
            )

        capture_start = time.monotonic()
        if self._config.simulate_exposure:
            exposure_us = self._values[ControlType.EXPOSURE].value
            time.sleep(min(exposure_us / 1_000_000, self._config.max_exposure_s))

        roi = self._roi
        source = self._config.image_source
        if source == ImageSource.FILE:
            img = self._image_from_file()
        elif source == ImageSource.DIRECTORY:
            img = self._image_from_directory()
        else:
            img = None
        if img is None:
            img = self._synthetic_image(roi.bin)
        else:
            img = self._resize_to_sensor(img, roi.bin)

        window = img[
            roi.starty : roi.starty + roi.height, roi.startx : roi.startx + roi.width
        ]
        data = _encode_pixels(window, roi.img_type).tobytes()

        logger.debug(
            "Simulated frame ready",
            camera_id=self._camera_id,
            source=source.value,
            size=len(data),
            elapsed_ms=round((time.monotonic() - capture_start) * 1000, 1),
        )
        return data

    def _image_from_file(self) -> NDArray[Any] | None:
        if self._config.image_path is None:
            return None
        path = Path(self._config.image_path)
        if not path.is_file():
            return None
        return cv2.imread(str(path))

    def _image_from_directory(self) -> NDArray[Any] | None:
        if not self._image_files:
            return None

        image_path = self._image_files[self._image_index]
        self._image_index += 1
        if self._config.cycle_images:
            self._image_index %= len(self._image_files)
        else:
            self._image_index = min(self._image_index, len(self._image_files) - 1)

        return cv2.imread(str(image_path))

    def _resize_to_sensor(self, img: NDArray[Any], bin_factor: int) -> NDArray[Any]:
        """Scale an image to the binned sensor resolution."""
        target_width = self._spec.max_width // bin_factor
        target_height = self._spec.max_height // bin_factor
        h, w = img.shape[:2]
        if w != target_width or h != target_height:
            img = cv2.resize(img, (target_width, target_height))
        return img

    def _synthetic_image(self, bin_factor: int) -> NDArray[Any]:
        """Grid, crosshair and status text with noise scaled by gain."""
        width = self._spec.max_width // bin_factor
        height = self._spec.max_height // bin_factor
        exposure_us = self._values[ControlType.EXPOSURE].value
        gain = self._values[ControlType.GAIN].value

        img: NDArray[Any] = np.zeros((height, width, 3), dtype=np.uint8)

        img[::_SYNTHETIC_GRID_SPACING, :] = [50, 50, 50]
        img[:, ::_SYNTHETIC_GRID_SPACING] = [50, 50, 50]

        cv2.line(img, (width // 2, 0), (width // 2, height), (0, 255, 0), 1)
        cv2.line(img, (0, height // 2), (width, height // 2), (0, 255, 0), 1)
        cv2.circle(img, (width // 2, height // 2), _CROSSHAIR_RADIUS, (0, 100, 0), 1)

        cv2.putText(
            img,
            f"DIGITAL TWIN - {self._spec.name} [{self._camera_id}]",
            (20, 40),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.8,
            (255, 255, 255),
            2,
        )
        cv2.putText(
            img,
            f"Exposure: {exposure_us}us  Gain: {gain}",
            (20, 75),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.6,
            (200, 200, 200),
            1,
        )

        if gain > 0:
            noise_level = int(gain) // 10
            noise = self._rng.integers(
                0, noise_level + 1, img.shape, dtype=np.uint8, endpoint=False
            )
            img = cv2.add(img, noise)

        return img

    def close(self) -> None:
        """Mark the camera closed. Safe to call more than once."""
        if self._closed:
            return
        self._capturing = False
        self._closed = True
        logger.info("Simulated camera closed", camera_id=self._camera_id)


def _encode_pixels(img: NDArray[Any], img_type: ImageType) -> NDArray[Any]:
    """Convert a BGR uint8 image into the buffer layout of ``img_type``.

    Colour encodings keep the BGR channel order of the SDKs; mono
    encodings use luminance, widened to 16 bits for the 10 to 16 bit
    formats.

    Raises:
        CameraError: For ImageType.END.
    """
    if img_type == ImageType.END:
        raise CameraError("Cannot produce frames for an unknown image type")
    if img_type == ImageType.RGB24:
        return np.ascontiguousarray(img)
    if img_type == ImageType.RGB32:
        return cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)

    gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    if img_type.bytes_per_pixel == 1:
        return np.ascontiguousarray(gray)
    return gray.astype(np.uint16) << 8


def create_file_camera(
    image_path: Path | str, cameras: Mapping[int, TwinCameraSpec] | None = None
) -> DigitalTwinCameraDriver:
    """Twin driver whose cameras always return the given image."""
    config = DigitalTwinConfig(image_source=ImageSource.FILE, image_path=Path(image_path))
    return DigitalTwinCameraDriver(config=config, cameras=cameras)


def create_directory_camera(
    image_dir: Path | str,
    cycle: bool = True,
    cameras: Mapping[int, TwinCameraSpec] | None = None,
) -> DigitalTwinCameraDriver:
    """Twin driver whose cameras step through the images in a directory."""
    config = DigitalTwinConfig(
        image_source=ImageSource.DIRECTORY,
        image_path=Path(image_dir),
        cycle_images=cycle,
    )
    return DigitalTwinCameraDriver(config=config, cameras=cameras)
