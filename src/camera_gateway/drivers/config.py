"""Driver configuration and factory.

Chooses which device kinds the registry enumerates. Simulated devices
always come before hardware ones, so the digital twins keep stable low
indices in HYBRID mode no matter how many ASI cameras are plugged in.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from camera_gateway.drivers.cameras import (
    ASICameraDriver,
    CameraDriver,
    DigitalTwinCameraDriver,
    DigitalTwinConfig,
    ImageSource,
    TwinCameraSpec,
)
from camera_gateway.drivers.cameras.twin import DEFAULT_CAMERAS
from camera_gateway.observability import get_logger

logger = get_logger(__name__)


class DriverMode(Enum):
    """Which device kinds to enumerate."""

    DIGITAL_TWIN = "digital_twin"  # Simulated cameras only
    HARDWARE = "hardware"  # ASI cameras only
    HYBRID = "hybrid"  # Simulated cameras, then ASI cameras


class DeviceKind(Enum):
    """Tag carried by every registry entry."""

    SIMULATED = "simulated"
    ASI = "asi"


@dataclass
class DriverConfig:
    """Configuration for driver selection.

    Attributes:
        mode: Device kinds to enumerate.
        twin_camera_count: Number of simulated cameras. Specs cycle
            through DEFAULT_CAMERAS.
        twin_image_path: File or directory of images for simulated frames;
            None gives synthetic frames.
        twin_simulate_exposure: Sleep for the EXPOSURE control per
            simulated frame.
        asi_library_path: ZWO SDK library; None falls back to the
            ZWO_ASI_LIB environment variable.
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN
    twin_camera_count: int = 1
    twin_image_path: Path | None = None
    twin_simulate_exposure: bool = False
    asi_library_path: Path | None = None


class DriverFactory:
    """Create the ordered list of camera drivers for a DriverConfig.

    Example:
        >>> factory = DriverFactory(DriverConfig(mode=DriverMode.HYBRID))
        >>> [kind for kind, _ in factory.create_camera_drivers()]
        [<DeviceKind.SIMULATED: 'simulated'>, <DeviceKind.ASI: 'asi'>]
    """

    def __init__(self, config: DriverConfig | None = None):
        self.config = config or DriverConfig()

    def create_twin_driver(self) -> DigitalTwinCameraDriver:
        """Simulated camera driver built from the twin settings."""
        path = self.config.twin_image_path
        if path is None:
            source = ImageSource.SYNTHETIC
        elif Path(path).is_dir():
            source = ImageSource.DIRECTORY
        else:
            source = ImageSource.FILE

        twin_config = DigitalTwinConfig(
            image_source=source,
            image_path=path,
            simulate_exposure=self.config.twin_simulate_exposure,
        )
        specs = list(DEFAULT_CAMERAS.values())
        cameras: dict[int, TwinCameraSpec] = {
            i: specs[i % len(specs)] for i in range(self.config.twin_camera_count)
        }
        return DigitalTwinCameraDriver(twin_config, cameras=cameras)

    def create_asi_driver(self) -> ASICameraDriver:
        """ASI driver; the SDK is loaded on first enumeration."""
        return ASICameraDriver(library_path=self.config.asi_library_path)

    def create_camera_drivers(self) -> list[tuple[DeviceKind, CameraDriver]]:
        """Drivers in enumeration order for the configured mode."""
        mode = self.config.mode
        drivers: list[tuple[DeviceKind, CameraDriver]] = []
        if mode in (DriverMode.DIGITAL_TWIN, DriverMode.HYBRID):
            drivers.append((DeviceKind.SIMULATED, self.create_twin_driver()))
        if mode in (DriverMode.HARDWARE, DriverMode.HYBRID):
            drivers.append((DeviceKind.ASI, self.create_asi_driver()))
        logger.debug(
            "Camera drivers created",
            mode=mode.value,
            kinds=[kind.value for kind, _ in drivers],
        )
        return drivers
