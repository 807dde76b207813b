"""Tests for driver selection and gateway configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from camera_gateway.config import (
    DEFAULT_COMMAND_TOPIC,
    DEFAULT_INIT_TOPIC,
    DEFAULT_RESPONSE_TOPIC,
    GatewayConfig,
)
from camera_gateway.devices import DeviceRegistry
from camera_gateway.drivers import DeviceKind, DriverConfig, DriverFactory, DriverMode
from camera_gateway.drivers.cameras import (
    ASICameraDriver,
    DigitalTwinCameraDriver,
    ImageSource,
)


class TestDriverConfig:
    def test_default_mode_is_digital_twin(self) -> None:
        """Verifies the default configuration never touches hardware.

        Arrangement:
        DriverConfig() with no arguments.

        Action:
        Read mode and twin settings.

        Assertion Strategy:
        DIGITAL_TWIN with one synthetic camera and no SDK path.
        """
        config = DriverConfig()
        assert config.mode is DriverMode.DIGITAL_TWIN
        assert config.twin_camera_count == 1
        assert config.twin_image_path is None
        assert config.asi_library_path is None


class TestDriverFactory:
    """Driver lists per mode and twin driver construction."""

    @pytest.mark.parametrize(
        ("mode", "kinds"),
        [
            (DriverMode.DIGITAL_TWIN, [DeviceKind.SIMULATED]),
            (DriverMode.HARDWARE, [DeviceKind.ASI]),
            (DriverMode.HYBRID, [DeviceKind.SIMULATED, DeviceKind.ASI]),
        ],
    )
    def test_drivers_per_mode(self, mode: DriverMode, kinds: list[DeviceKind]) -> None:
        drivers = DriverFactory(DriverConfig(mode=mode)).create_camera_drivers()
        assert [kind for kind, _ in drivers] == kinds

    def test_driver_types(self) -> None:
        drivers = dict(
            DriverFactory(DriverConfig(mode=DriverMode.HYBRID)).create_camera_drivers()
        )
        assert isinstance(drivers[DeviceKind.SIMULATED], DigitalTwinCameraDriver)
        assert isinstance(drivers[DeviceKind.ASI], ASICameraDriver)

    def test_twin_count_cycles_default_specs(self) -> None:
        driver = DriverFactory(DriverConfig(twin_camera_count=3)).create_twin_driver()
        assert driver.get_connected_cameras() == {
            0: "Mock Camera",
            1: "Mock Cooled Camera",
            2: "Mock Camera",
        }

    def test_zero_twins(self) -> None:
        driver = DriverFactory(DriverConfig(twin_camera_count=0)).create_twin_driver()
        assert driver.get_connected_cameras() == {}

    def test_image_source_from_path(self, tmp_path: Path) -> None:
        image = tmp_path / "frame.png"
        image.write_bytes(b"")

        synthetic = DriverFactory(DriverConfig()).create_twin_driver()
        directory = DriverFactory(
            DriverConfig(twin_image_path=tmp_path)
        ).create_twin_driver()
        single = DriverFactory(DriverConfig(twin_image_path=image)).create_twin_driver()

        assert synthetic.config.image_source is ImageSource.SYNTHETIC
        assert directory.config.image_source is ImageSource.DIRECTORY
        assert single.config.image_source is ImageSource.FILE
        assert single.config.image_path == image

    def test_simulate_exposure_passed_through(self) -> None:
        driver = DriverFactory(
            DriverConfig(twin_simulate_exposure=True)
        ).create_twin_driver()
        assert driver.config.simulate_exposure is True

    def test_hybrid_without_sdk_still_lists_twins(self, tmp_path: Path) -> None:
        """A missing ASI library leaves the simulated cameras usable.

        Arrangement:
        HYBRID mode pointing the SDK at a path that does not exist.

        Action:
        Build a registry from the factory's drivers.

        Assertion Strategy:
        Only the two simulated cameras are registered, at indices 0 and 1.
        """
        config = DriverConfig(
            mode=DriverMode.HYBRID,
            twin_camera_count=2,
            asi_library_path=tmp_path / "missing" / "libASICamera2.so",
        )
        registry = DeviceRegistry(DriverFactory(config).create_camera_drivers())

        handles = registry.build()

        assert [h.kind for h in handles] == [DeviceKind.SIMULATED] * 2
        assert [h.index for h in handles] == [0, 1]
        for handle in handles:
            handle.capability.close()


class TestGatewayConfig:
    def test_defaults(self) -> None:
        config = GatewayConfig()
        assert config.topics.command == DEFAULT_COMMAND_TOPIC == "camera/instr"
        assert config.topics.init == DEFAULT_INIT_TOPIC == "camera/init"
        assert config.topics.response == DEFAULT_RESPONSE_TOPIC == "camera/response"
        assert config.worker_threads == 10
        assert config.capture_backpressure is False
        assert config.mqtt.host == "localhost"
        assert config.mqtt.port == 1883
        assert config.drivers.mode is DriverMode.DIGITAL_TWIN

    def test_instances_do_not_share_nested_config(self) -> None:
        first, second = GatewayConfig(), GatewayConfig()
        first.topics.command = "other/instr"
        assert second.topics.command == DEFAULT_COMMAND_TOPIC
