"""Camera drivers and driver selection.

Modes:
- DIGITAL_TWIN: Simulated cameras only
- HARDWARE: ZWO ASI cameras only
- HYBRID: Simulated cameras first, then ZWO ASI cameras

    from camera_gateway.drivers import DriverConfig, DriverFactory, DriverMode

    factory = DriverFactory(DriverConfig(mode=DriverMode.HYBRID))
    drivers = factory.create_camera_drivers()
"""

from camera_gateway.drivers import asi_sdk, config
from camera_gateway.drivers.config import (
    DeviceKind,
    DriverConfig,
    DriverFactory,
    DriverMode,
)

__all__ = [
    # Submodules
    "asi_sdk",
    "config",
    # Configuration
    "DeviceKind",
    "DriverConfig",
    "DriverFactory",
    "DriverMode",
]
