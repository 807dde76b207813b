"""Device registry: index-addressed handles over every enumerated camera.

The registry is built once at startup from an ordered list of drivers and
owned by the gateway runtime. Each handle pairs a capability with the
asyncio.Lock that serializes every command addressed to it, and with the
CaptureState that gates its capture stream.

Rebuilding (the Init command) cancels every capture stream, closes every
device under its own lock, and enumerates again, so indices may change.

Example:
    factory = DriverFactory(DriverConfig(mode=DriverMode.HYBRID))
    registry = DeviceRegistry(factory.create_camera_drivers())
    registry.build()

    handle = registry.lookup(0)
    async with handle.lock:
        roi = handle.capability.get_roi()

    await registry.rebuild()
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Sequence
from concurrent.futures import Executor
from dataclasses import dataclass, field

from camera_gateway.drivers.cameras import (
    CameraCapability,
    CameraDriver,
    CameraError,
    DeviceInfo,
)
from camera_gateway.drivers.config import DeviceKind
from camera_gateway.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "CaptureState",
    "DeviceHandle",
    "DeviceIndexError",
    "DeviceKind",
    "DeviceRegistry",
]


class DeviceIndexError(IndexError):
    """No device exists at the requested index."""

    def __init__(self, index: int, num_devices: int) -> None:
        super().__init__(
            f"Device index {index} out of range; {num_devices} device(s) available"
        )
        self.index = index
        self.num_devices = num_devices


class CaptureState:
    """Capture flag plus the stop signal of the current stream.

    Every stream gets a fresh one-shot ``asyncio.Event``. Cancelling sets
    it, and the stream loop checks it between frames, so a stream never
    stops partway through a frame and a stale signal never stops a
    later stream.
    """

    __slots__ = ("_active", "_stop")

    def __init__(self) -> None:
        self._active = False
        self._stop: asyncio.Event | None = None

    @property
    def active(self) -> bool:
        return self._active

    def begin(self) -> asyncio.Event:
        """Mark capture active and return the new stream's stop signal."""
        self._active = True
        self._stop = asyncio.Event()
        return self._stop

    def cancel(self) -> bool:
        """Mark capture inactive and signal the running stream.

        Returns:
            True if a stream was active.
        """
        was_active = self._active
        self._active = False
        if self._stop is not None:
            self._stop.set()
            self._stop = None
        return was_active

    def finish(self, signal: asyncio.Event) -> None:
        """Clear state when the stream owning ``signal`` exits on its own."""
        if self._stop is signal:
            self._active = False
            self._stop = None

    def __repr__(self) -> str:
        return f"CaptureState(active={self._active})"


@dataclass(eq=False)
class DeviceHandle:
    """One registry entry.

    Attributes:
        index: Global device index used on the wire.
        kind: Device kind tag chosen at build time.
        capability: Opened device.
        info: Device description cached at open time, carrying ``index``.
        lock: Serializes all capability access for this device.
        capture: Capture flag and stop signal.
    """

    index: int
    kind: DeviceKind
    capability: CameraCapability
    info: DeviceInfo
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    capture: CaptureState = field(default_factory=CaptureState)


class DeviceRegistry:
    """Ordered, index-addressed collection of device handles.

    Indices are assigned consecutively in driver order, then in each
    driver's enumeration order.
    """

    def __init__(self, drivers: Sequence[tuple[DeviceKind, CameraDriver]]) -> None:
        """Create an empty registry.

        Args:
            drivers: ``(kind, driver)`` pairs in enumeration order.
        """
        self._drivers = list(drivers)
        self._handles: list[DeviceHandle] = []
        self._rebuild_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Enumeration
    # -------------------------------------------------------------------------

    def _enumerate(self) -> list[DeviceHandle]:
        """Open every camera of every driver.

        A driver that fails to enumerate, or a camera that fails to open
        or describe itself, is logged and skipped.
        """
        handles: list[DeviceHandle] = []
        for kind, driver in self._drivers:
            try:
                cameras = driver.get_connected_cameras()
            except CameraError as e:
                logger.warning(
                    "Skipping device kind, enumeration failed",
                    kind=kind.value,
                    error=str(e),
                )
                continue

            for camera_id, name in cameras.items():
                try:
                    capability = driver.open(camera_id)
                except CameraError as e:
                    logger.warning(
                        "Skipping device, open failed",
                        kind=kind.value,
                        camera_id=camera_id,
                        name=name,
                        error=str(e),
                    )
                    continue

                try:
                    info = capability.get_info()
                except CameraError as e:
                    logger.warning(
                        "Skipping device, info unavailable",
                        kind=kind.value,
                        camera_id=camera_id,
                        error=str(e),
                    )
                    _close_quietly(capability)
                    continue

                index = len(handles)
                handles.append(
                    DeviceHandle(
                        index=index,
                        kind=kind,
                        capability=capability,
                        info=info.with_index(index),
                    )
                )
                logger.info(
                    "Device registered",
                    index=index,
                    kind=kind.value,
                    name=info.name,
                )
        return handles

    def build(self) -> list[DeviceHandle]:
        """Enumerate all drivers and replace the handle list.

        Blocking; call before the event loop starts serving commands, or
        use rebuild() once it is.

        Returns:
            The new handles in index order.
        """
        self._handles = self._enumerate()
        logger.info("Device registry built", num_devices=len(self._handles))
        return list(self._handles)

    async def _close_handles(self, executor: Executor | None) -> None:
        loop = asyncio.get_running_loop()
        handles = self._handles

        for handle in handles:
            handle.capture.cancel()

        for handle in handles:
            async with handle.lock:
                await loop.run_in_executor(executor, _close_capability, handle)

    async def rebuild(self, executor: Executor | None = None) -> int:
        """Close every device and enumerate again.

        Capture streams are cancelled first; each device is then closed
        under its lock, so a stream finishes its in-flight frame before
        its device goes away. Concurrent rebuilds run one after another.

        Args:
            executor: Pool for the blocking close and enumeration calls;
                None uses the loop's default executor.

        Returns:
            Number of devices after the rebuild.
        """
        async with self._rebuild_lock:
            await self._close_handles(executor)
            self._handles = []
            loop = asyncio.get_running_loop()
            self._handles = await loop.run_in_executor(executor, self._enumerate)
            logger.info("Device registry rebuilt", num_devices=len(self._handles))
            return len(self._handles)

    async def close(self, executor: Executor | None = None) -> None:
        """Cancel streams and close every device.

        Best effort: a device that fails to stop or close is logged and
        skipped. The registry is empty afterwards; build() or rebuild()
        enumerates again.

        Args:
            executor: Pool for the blocking close calls; None uses the
                loop's default executor.
        """
        async with self._rebuild_lock:
            await self._close_handles(executor)
            self._handles = []
            logger.info("Device registry closed")

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def lookup(self, index: int) -> DeviceHandle | None:
        """Resolve a wire ``camera_idx`` to its device.

        Used on the command path, where an unknown index is answered with an
        error response rather than an exception.

        Args:
            index: Global device index from a command envelope. Negative
                values are never valid.

        Returns:
            The handle at ``index``, or None when it is out of range.

        Example:
            >>> handle = registry.lookup(envelope.camera_idx)
            >>> if handle is None:
            ...     payload = {"error": "index out of range"}
        """
        if 0 <= index < len(self._handles):
            return self._handles[index]
        return None

    def get(self, index: int) -> DeviceHandle:
        """Handle at ``index``.

        Args:
            index: Global device index.

        Returns:
            The handle at ``index``.

        Raises:
            DeviceIndexError: If no device has that index.
        """
        handle = self.lookup(index)
        if handle is None:
            raise DeviceIndexError(index, len(self._handles))
        return handle

    @property
    def handles(self) -> list[DeviceHandle]:
        """Snapshot of the current handles in index order.

        The list is a copy; a concurrent rebuild() replaces the registry's
        handles without changing lists already returned.

        Returns:
            Handles where ``handles[i].index == i``.
        """
        return list(self._handles)

    def __len__(self) -> int:
        """Number of registered devices, as reported by Init."""
        return len(self._handles)

    def __iter__(self) -> Iterator[DeviceHandle]:
        # Iterates a snapshot so a rebuild mid-iteration is harmless.
        return iter(list(self._handles))

    def __repr__(self) -> str:
        kinds = ", ".join(h.kind.value for h in self._handles)
        return f"<DeviceRegistry(devices={len(self._handles)}, kinds=[{kinds}])>"


def _close_capability(handle: DeviceHandle) -> None:
    """Stop capture and close one device, logging instead of raising."""
    capability = handle.capability
    try:
        if capability.is_capturing:
            capability.stop_capture()
    except CameraError as e:
        logger.warning("Failed to stop capture", index=handle.index, error=str(e))
    _close_quietly(capability, index=handle.index)


def _close_quietly(capability: CameraCapability, index: int | None = None) -> None:
    try:
        capability.close()
    except Exception as e:  # noqa: BLE001 - one failing device must not block the rest
        logger.warning("Failed to close device", index=index, error=str(e))
