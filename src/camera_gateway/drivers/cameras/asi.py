"""ASI camera driver: ZWO hardware through the zwoasi bindings.

Types:
    ASICameraProtocol: Subset of zwoasi.Camera used here (enables mocking)
    ASISDKProtocol: Subset of the zwoasi module used here (enables mocking)

Classes:
    ASICameraInstance: One opened ASI camera as a CameraCapability
    ASICameraDriver: Enumerates and opens ASI cameras

Capture uses the SDK's video mode: start_capture() starts a video stream
and get_frame() pulls the next raw buffer with get_video_data(), whose
timeout the SDK derives from the current exposure.

Example:
    driver = ASICameraDriver()
    for camera_id, name in driver.get_connected_cameras().items():
        camera = driver.open(camera_id)
        print(name, camera.get_roi())
        camera.close()
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Protocol, final, runtime_checkable

import zwoasi as asi

from camera_gateway.drivers.asi_sdk import get_sdk_library_path
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

logger = get_logger(__name__)

__all__ = [
    "ASICameraDriver",
    "ASICameraInstance",
    "ASICameraProtocol",
    "ASISDKProtocol",
    "CONTROL_MAP",
    "IMAGE_TYPE_MAP",
]

# =============================================================================
# Constants
# =============================================================================

# Gateway control to ASI control id. Controls missing here are not
# exposed by the ASI SDK.
CONTROL_MAP: Mapping[ControlType, int] = MappingProxyType(
    {
        ControlType.GAIN: asi.ASI_GAIN,
        ControlType.EXPOSURE: asi.ASI_EXPOSURE,
        ControlType.GAMMA: asi.ASI_GAMMA,
        ControlType.WB_R: asi.ASI_WB_R,
        ControlType.WB_B: asi.ASI_WB_B,
        ControlType.BLACK_LEVEL: asi.ASI_OFFSET,
        ControlType.FLIP: asi.ASI_FLIP,
        ControlType.FRAME_SPEED_MODE: asi.ASI_HIGH_SPEED_MODE,
        ControlType.CURRENT_TEMPERATURE: asi.ASI_TEMPERATURE,
        ControlType.AUTO_TARGET_BRIGHTNESS: asi.ASI_AUTO_MAX_BRIGHTNESS,
        ControlType.COOLER_POWER: asi.ASI_COOLER_POWER_PERC,
        ControlType.TARGET_TEMPERATURE: asi.ASI_TARGET_TEMP,
        ControlType.COOLER_ENABLE: asi.ASI_COOLER_ON,
    }
)

IMAGE_TYPE_MAP: Mapping[ImageType, int] = MappingProxyType(
    {
        ImageType.RAW8: asi.ASI_IMG_RAW8,
        ImageType.RGB24: asi.ASI_IMG_RGB24,
        ImageType.RAW16: asi.ASI_IMG_RAW16,
        ImageType.Y8: asi.ASI_IMG_Y8,
    }
)

_ASI_TO_IMAGE_TYPE: Mapping[int, ImageType] = MappingProxyType(
    {value: key for key, value in IMAGE_TYPE_MAP.items()}
)


# =============================================================================
# SDK Protocol for Dependency Injection
# =============================================================================


@runtime_checkable
class ASICameraProtocol(Protocol):  # pragma: no cover
    """Subset of zwoasi.Camera used by ASICameraInstance."""

    def get_camera_property(self) -> dict[str, Any]: ...

    def get_controls(self) -> dict[str, dict[str, Any]]: ...

    def get_control_value(self, control_type: int) -> tuple[int, bool]: ...

    def set_control_value(
        self, control_type: int, value: int, auto: bool = False
    ) -> None: ...

    def get_roi_format(self) -> list[int]: ...

    def set_roi_format(
        self, width: int, height: int, bins: int, image_type: int
    ) -> None: ...

    def get_roi_start_position(self) -> tuple[int, int]: ...

    def set_roi_start_position(self, start_x: int, start_y: int) -> None: ...

    def start_video_capture(self) -> None: ...

    def stop_video_capture(self) -> None: ...

    def get_video_data(self, timeout: int | None = None) -> bytes: ...

    def close(self) -> None: ...


@runtime_checkable
class ASISDKProtocol(Protocol):  # pragma: no cover
    """Subset of the zwoasi module used by ASICameraDriver.

    Example:
        class FakeSDK:
            def init(self, library_path: str) -> None: ...
            def get_num_cameras(self) -> int: return 1
            def list_cameras(self) -> list[str]: return ["ZWO ASI120MM"]
            def open_camera(self, camera_id: int) -> ASICameraProtocol: ...

        driver = ASICameraDriver(sdk=FakeSDK())
    """

    def init(self, library_path: str) -> None: ...

    def get_num_cameras(self) -> int: ...

    def list_cameras(self) -> list[str]: ...

    def open_camera(self, camera_id: int) -> ASICameraProtocol: ...


class _ASISDKWrapper:
    """Adapt the zwoasi module to ASISDKProtocol."""

    def init(self, library_path: str) -> None:
        asi.init(library_path)

    def get_num_cameras(self) -> int:
        result: int = asi.get_num_cameras()
        return result

    def list_cameras(self) -> list[str]:
        result: list[str] = asi.list_cameras()
        return result

    def open_camera(self, camera_id: int) -> ASICameraProtocol:
        camera: ASICameraProtocol = asi.Camera(camera_id)
        return camera


# =============================================================================
# ASI Camera Instance
# =============================================================================


@final
class ASICameraInstance:
    """Opened ASI camera implementing CameraCapability.

    SDK errors (``zwoasi.ZWO_Error`` and subclasses) are re-raised as
    CameraError so callers never depend on zwoasi.
    """

    __slots__ = ("_camera_id", "_camera", "_closed", "_capturing", "_info")

    def __init__(self, camera_id: int, camera: ASICameraProtocol) -> None:
        self._camera_id = camera_id
        self._camera = camera
        self._closed = False
        self._capturing = False
        self._info: DeviceInfo | None = None

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"ASICameraInstance(id={self._camera_id}, {state})"

    def _check_open(self) -> None:
        if self._closed:
            raise CameraClosedError(f"ASI camera {self._camera_id} is closed")

    def _asi_control(self, control: ControlType) -> int:
        try:
            return CONTROL_MAP[control]
        except KeyError:
            raise CameraError(
                f"Control {control.name} not supported by ASI cameras"
            ) from None

    def get_info(self) -> DeviceInfo:
        """Read camera properties once and cache them.

        Formats the gateway has no encoding for are reported as
        ImageType.END.
        """
        self._check_open()
        if self._info is None:
            try:
                props = self._camera.get_camera_property()
            except asi.ZWO_Error as e:
                raise CameraError(f"Failed to read camera properties: {e}") from e

            image_types = tuple(
                _ASI_TO_IMAGE_TYPE.get(fmt, ImageType.END)
                for fmt in props.get("SupportedVideoFormat", [])
                if fmt != asi.ASI_IMG_END
            )
            self._info = DeviceInfo(
                name=props.get("Name", f"ASI camera {self._camera_id}"),
                index=self._camera_id,
                max_width=int(props["MaxWidth"]),
                max_height=int(props["MaxHeight"]),
                supported_image_types=image_types or (ImageType.RAW8,),
                supported_bins=tuple(props.get("SupportedBins", [1])),
                is_coolable=bool(props.get("IsCoolerCam", False)),
            )
        return self._info

    def get_roi(self) -> RegionOfInterest:
        self._check_open()
        try:
            width, height, bins, image_type = self._camera.get_roi_format()
            startx, starty = self._camera.get_roi_start_position()
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to read ROI: {e}") from e
        return RegionOfInterest(
            startx=int(startx),
            starty=int(starty),
            width=int(width),
            height=int(height),
            bin=int(bins),
            img_type=_ASI_TO_IMAGE_TYPE.get(image_type, ImageType.END),
        )

    def set_roi(self, roi: RegionOfInterest) -> None:
        """Apply format first, then start position.

        The SDK recentres the window when the format changes, so the start
        position has to be set afterwards.

        Raises:
            ValueError: Encoding unsupported by ASI cameras, or geometry
                rejected by zwoasi (width must be a multiple of 8, height
                a multiple of 2, window inside the binned sensor).
            CameraError: SDK failure.
        """
        self._check_open()
        asi_type = IMAGE_TYPE_MAP.get(roi.img_type)
        if asi_type is None:
            raise ValueError(f"Image type {int(roi.img_type)} not supported by ASI")
        try:
            self._camera.set_roi_format(roi.width, roi.height, roi.bin, asi_type)
            self._camera.set_roi_start_position(roi.startx, roi.starty)
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to set ROI: {e}") from e

    def get_controls(self) -> dict[ControlType, ControlDescriptor]:
        """Descriptors for the mapped controls this camera reports."""
        self._check_open()
        try:
            raw = self._camera.get_controls()
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to read controls: {e}") from e

        by_asi_id = {entry["ControlType"]: entry for entry in raw.values()}
        descriptors: dict[ControlType, ControlDescriptor] = {}
        for control, asi_id in CONTROL_MAP.items():
            entry = by_asi_id.get(asi_id)
            if entry is None:
                continue
            descriptors[control] = ControlDescriptor(
                control_type=control,
                name=entry["Name"],
                min_value=int(entry["MinValue"]),
                max_value=int(entry["MaxValue"]),
                default_value=int(entry["DefaultValue"]),
                is_auto_supported=bool(entry["IsAutoSupported"]),
                is_writable=bool(entry["IsWritable"]),
            )
        return descriptors

    def get_control_value(self, control: ControlType) -> ControlValue:
        self._check_open()
        asi_id = self._asi_control(control)
        try:
            value, auto = self._camera.get_control_value(asi_id)
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to read {control.name}: {e}") from e
        return ControlValue(int(value), bool(auto))

    def set_control_value(
        self, control: ControlType, value: int, auto: bool = False
    ) -> None:
        self._check_open()
        asi_id = self._asi_control(control)
        try:
            self._camera.set_control_value(asi_id, value, auto)
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to set {control.name}={value}: {e}") from e
        logger.debug(
            "ASI control set",
            camera_id=self._camera_id,
            control=control.name,
            value=value,
            auto=auto,
        )

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    def start_capture(self) -> None:
        self._check_open()
        try:
            self._camera.start_video_capture()
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to start video capture: {e}") from e
        self._capturing = True
        logger.info("ASI video capture started", camera_id=self._camera_id)

    def stop_capture(self) -> None:
        if self._closed:
            self._capturing = False
            return
        try:
            self._camera.stop_video_capture()
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to stop video capture: {e}") from e
        finally:
            self._capturing = False
        logger.info("ASI video capture stopped", camera_id=self._camera_id)

    def get_frame(self) -> bytes:
        """Wait for the next video frame.

        Raises:
            CaptureNotRunningError: If video capture is not running.
            CameraError: On SDK timeout or transfer failure.
        """
        self._check_open()
        if not self._capturing:
            raise CaptureNotRunningError(
                f"ASI camera {self._camera_id} is not capturing"
            )
        try:
            data = self._camera.get_video_data()
        except asi.ZWO_Error as e:
            raise CameraError(f"Failed to read video frame: {e}") from e
        return bytes(data)

    def close(self) -> None:
        """Stop any capture and release the camera. Idempotent.

        Errors during close are logged and the camera is still marked
        closed, so the registry can move on to the next device.
        """
        if self._closed:
            logger.debug("ASI camera already closed", camera_id=self._camera_id)
            return

        try:
            if self._capturing:
                self._camera.stop_video_capture()
            self._camera.close()
            logger.info("Closed ASI camera", camera_id=self._camera_id)
        except asi.ZWO_Error as e:
            logger.warning(
                "Error closing ASI camera", camera_id=self._camera_id, error=str(e)
            )
        finally:
            self._capturing = False
            self._closed = True


# =============================================================================
# ASI Camera Driver
# =============================================================================


@final
class ASICameraDriver:
    """Enumerates and opens ZWO ASI cameras.

    The SDK library is loaded lazily on first use so a gateway without ASI
    hardware (or without the vendor library) can still start.

    Example:
        driver = ASICameraDriver(library_path="/opt/zwo/libASICamera2.so")
        cameras = driver.get_connected_cameras()  # SDK loaded here
    """

    __slots__ = ("_sdk", "_sdk_initialized", "_library_path")

    def __init__(
        self,
        sdk: ASISDKProtocol | None = None,
        library_path: str | Path | None = None,
    ) -> None:
        """Create the driver.

        Args:
            sdk: SDK implementation; defaults to the real zwoasi module.
                Injected SDKs are treated as already initialized.
            library_path: Explicit SDK library path, see
                ``asi_sdk.get_sdk_library_path``.
        """
        self._sdk: ASISDKProtocol = sdk if sdk is not None else _ASISDKWrapper()
        self._sdk_initialized = sdk is not None
        self._library_path = library_path

    def __repr__(self) -> str:
        return f"ASICameraDriver(initialized={self._sdk_initialized})"

    def _ensure_sdk_initialized(self) -> None:
        """Load the SDK library once.

        Raises:
            CameraError: If the library cannot be found or loaded.
        """
        if self._sdk_initialized:
            return
        try:
            sdk_path = get_sdk_library_path(self._library_path)
            self._sdk.init(sdk_path)
        except (RuntimeError, OSError, asi.ZWO_Error) as e:
            logger.error("Failed to initialize ASI SDK", error=str(e))
            raise CameraError(f"ASI SDK initialization failed: {e}") from e
        self._sdk_initialized = True
        logger.info("ASI SDK initialized", library=sdk_path)

    def get_connected_cameras(self) -> dict[int, str]:
        """Enumerate connected cameras as ``{id: name}``.

        Raises:
            CameraError: If the SDK cannot be initialized.
        """
        self._ensure_sdk_initialized()

        if self._sdk.get_num_cameras() == 0:
            logger.info("No ASI cameras detected")
            return {}

        cameras = dict(enumerate(self._sdk.list_cameras()))
        logger.info("Discovered ASI cameras", count=len(cameras))
        return cameras

    def open(self, camera_id: int) -> ASICameraInstance:
        """Open a camera by SDK id.

        Raises:
            CameraError: If the id is negative or the SDK refuses to open it.
        """
        if camera_id < 0:
            raise CameraError(f"camera_id must be >= 0, got {camera_id}")

        self._ensure_sdk_initialized()

        try:
            camera = self._sdk.open_camera(camera_id)
        except asi.ZWO_Error as e:
            logger.error("Failed to open ASI camera", camera_id=camera_id, error=str(e))
            raise CameraError(f"Cannot open ASI camera {camera_id}: {e}") from e

        logger.info("Opened ASI camera", camera_id=camera_id)
        return ASICameraInstance(camera_id, camera)
