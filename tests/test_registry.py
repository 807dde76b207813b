"""Unit tests for the device registry.

Test Categories:
1. Build: index assignment across drivers, skipping failing drivers/devices
2. Access: lookup(), get(), len(), iteration
3. CaptureState: begin/cancel/finish semantics
4. Rebuild and close: stream cancellation, per-device close, serialization
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from camera_gateway.devices import (
    CaptureState,
    DeviceIndexError,
    DeviceKind,
    DeviceRegistry,
)
from camera_gateway.drivers.cameras import (
    CameraError,
    DigitalTwinCameraDriver,
)
from tests.helpers import SMALL_CAMERA, SMALL_COOLED_CAMERA


def _failing_driver(error: Exception | None = None) -> MagicMock:
    driver = MagicMock()
    driver.get_connected_cameras.side_effect = error or CameraError("no SDK")
    return driver


class TestBuild:
    """build() assigns consecutive indices in driver order."""

    def test_indices_follow_driver_order(self) -> None:
        """Simulated devices come first, then the next driver's devices.

        Arrangement:
        Two drivers of one and two cameras.

        Action:
        build().

        Assertion Strategy:
        Indices 0..2 in order, info carries the global index, kinds are
        tagged per driver.
        """
        first = DigitalTwinCameraDriver(cameras={0: SMALL_CAMERA})
        second = DigitalTwinCameraDriver(cameras={0: SMALL_COOLED_CAMERA, 1: SMALL_CAMERA})
        registry = DeviceRegistry(
            [(DeviceKind.SIMULATED, first), (DeviceKind.ASI, second)]
        )

        handles = registry.build()

        assert [h.index for h in handles] == [0, 1, 2]
        assert [h.info.index for h in handles] == [0, 1, 2]
        assert [h.info.name for h in handles] == [
            "Test Camera",
            "Test Cooled Camera",
            "Test Camera",
        ]
        assert [h.kind for h in handles] == [
            DeviceKind.SIMULATED,
            DeviceKind.ASI,
            DeviceKind.ASI,
        ]

    def test_failing_driver_is_skipped(self, twin_driver) -> None:
        registry = DeviceRegistry(
            [(DeviceKind.ASI, _failing_driver()), (DeviceKind.SIMULATED, twin_driver)]
        )

        registry.build()

        assert len(registry) == 2
        assert registry.get(0).kind is DeviceKind.SIMULATED

    def test_device_that_fails_to_open_is_skipped(self) -> None:
        driver = MagicMock()
        driver.get_connected_cameras.return_value = {0: "broken", 1: "good"}
        good = DigitalTwinCameraDriver(cameras={0: SMALL_CAMERA}).open(0)
        driver.open.side_effect = [CameraError("busy"), good]
        registry = DeviceRegistry([(DeviceKind.ASI, driver)])

        registry.build()

        assert len(registry) == 1
        assert registry.get(0).capability is good

    def test_device_without_info_is_closed_and_skipped(self) -> None:
        capability = MagicMock()
        capability.get_info.side_effect = CameraError("io")
        driver = MagicMock()
        driver.get_connected_cameras.return_value = {0: "flaky"}
        driver.open.return_value = capability
        registry = DeviceRegistry([(DeviceKind.ASI, driver)])

        assert registry.build() == []
        capability.close.assert_called_once()

    def test_empty_registry(self) -> None:
        registry = DeviceRegistry([])
        assert registry.build() == []
        assert len(registry) == 0


class TestAccess:
    def test_lookup_in_range(self, registry: DeviceRegistry) -> None:
        assert registry.lookup(1).index == 1

    @pytest.mark.parametrize("index", [-1, 2, 100])
    def test_lookup_out_of_range(self, registry: DeviceRegistry, index: int) -> None:
        assert registry.lookup(index) is None

    def test_get_out_of_range_raises(self, registry: DeviceRegistry) -> None:
        with pytest.raises(DeviceIndexError) as exc_info:
            registry.get(5)
        assert exc_info.value.index == 5
        assert exc_info.value.num_devices == 2
        assert isinstance(exc_info.value, IndexError)

    def test_iteration_and_handles(self, registry: DeviceRegistry) -> None:
        assert [h.index for h in registry] == [0, 1]
        assert registry.handles == list(registry)

    def test_each_handle_has_its_own_lock(self, registry: DeviceRegistry) -> None:
        first, second = registry.handles
        assert first.lock is not second.lock

    def test_repr(self, registry: DeviceRegistry) -> None:
        assert "devices=2" in repr(registry)


class TestCaptureState:
    """One-shot stop signals per stream."""

    def test_begin_marks_active(self) -> None:
        state = CaptureState()
        signal = state.begin()
        assert state.active
        assert not signal.is_set()

    def test_cancel_sets_signal(self) -> None:
        state = CaptureState()
        signal = state.begin()

        assert state.cancel() is True
        assert signal.is_set()
        assert not state.active

    def test_cancel_when_idle(self) -> None:
        assert CaptureState().cancel() is False

    def test_stale_finish_does_not_clear_new_stream(self) -> None:
        """finish() from an old stream leaves a newer stream running.

        Arrangement:
        Stream A begins and is cancelled; stream B begins.

        Action:
        Stream A's loop exits and calls finish() with its own signal.

        Assertion Strategy:
        State stays active and B's signal stays unset.
        """
        state = CaptureState()
        old = state.begin()
        state.cancel()
        new = state.begin()

        state.finish(old)

        assert state.active
        assert not new.is_set()

    def test_finish_clears_current_stream(self) -> None:
        state = CaptureState()
        signal = state.begin()
        state.finish(signal)
        assert not state.active


class TestRebuildAndClose:
    @pytest.mark.asyncio
    async def test_rebuild_cancels_streams_and_reopens(
        self, registry: DeviceRegistry
    ) -> None:
        old_handles = registry.handles
        signal = old_handles[0].capture.begin()

        count = await registry.rebuild()

        assert count == 2
        assert signal.is_set()
        new_handles = registry.handles
        assert all(new is not old for new, old in zip(new_handles, old_handles, strict=True))
        with pytest.raises(CameraError):
            old_handles[0].capability.get_roi()
        new_handles[0].capability.get_roi()

    @pytest.mark.asyncio
    async def test_rebuild_waits_for_device_lock(self, registry: DeviceRegistry) -> None:
        """A device is closed only after the current lock holder finishes."""
        handle = registry.get(0)
        await handle.lock.acquire()
        rebuild = asyncio.create_task(registry.rebuild())
        await asyncio.sleep(0.05)

        assert not rebuild.done()
        handle.capability.get_roi()

        handle.lock.release()
        assert await asyncio.wait_for(rebuild, 5) == 2

    @pytest.mark.asyncio
    async def test_close_failure_does_not_block_others(self) -> None:
        broken = MagicMock()
        broken.is_capturing = False
        broken.close.side_effect = RuntimeError("stuck")
        good = MagicMock()
        good.is_capturing = True
        driver = MagicMock()
        driver.get_connected_cameras.return_value = {0: "a", 1: "b"}
        driver.open.side_effect = [broken, good]
        registry = DeviceRegistry([(DeviceKind.ASI, driver)])
        registry.build()

        await registry.close()

        good.stop_capture.assert_called_once()
        good.close.assert_called_once()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_concurrent_rebuilds_are_serialized(
        self, registry: DeviceRegistry
    ) -> None:
        results = await asyncio.gather(registry.rebuild(), registry.rebuild())
        assert results == [2, 2]
        assert len(registry) == 2
