"""Capture stream loop.

Publishes one response per frame for a StartCapture command until the
stream's stop signal is set. Each iteration holds the device lock for
exactly one acquire-and-publish cycle, and asyncio.Lock wakes waiters in
FIFO order, so a StopCapture queued behind the stream gets the lock at
the next iteration boundary. Once it holds the lock and has set the
signal, the stream publishes no further frame.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable, Callable
from concurrent.futures import Executor

from camera_gateway.devices.registry import DeviceHandle
from camera_gateway.drivers.cameras import CameraError
from camera_gateway.observability import GatewayStats, get_logger
from camera_gateway.protocol import CommandEnvelope, ResponseEnvelope
from camera_gateway.transport import TransportError

logger = get_logger(__name__)

#: Publishes a response; the flag asks for delivery confirmation.
ResponsePublisher = Callable[[ResponseEnvelope, bool], Awaitable[None]]


class CaptureStream:
    """Runs capture streams for StartCapture commands."""

    def __init__(
        self,
        publish: ResponsePublisher,
        executor: Executor | None = None,
        stats: GatewayStats | None = None,
        backpressure: bool = False,
    ) -> None:
        """Create the stream runner.

        Args:
            publish: Sends one response envelope.
            executor: Pool for blocking capability calls.
            stats: Receives one record per published frame.
            backpressure: Wait for delivery confirmation of each frame
                before acquiring the next.
        """
        self._publish = publish
        self._executor = executor
        self._stats = stats
        self._backpressure = backpressure

    async def run(
        self,
        envelope: CommandEnvelope,
        handle: DeviceHandle,
        stop: asyncio.Event,
    ) -> int:
        """Stream frames until ``stop`` is set or acquisition fails.

        Every frame response echoes the StartCapture transaction id,
        device index and command code, with ``{"frame": <base64>}`` as
        payload. The caller publishes the terminal response.

        Args:
            envelope: The StartCapture command.
            handle: Device to capture from; capture already started.
            stop: This stream's stop signal from ``CaptureState.begin()``.

        Returns:
            Number of frames published.
        """
        loop = asyncio.get_running_loop()
        capability = handle.capability
        frames = 0
        logger.info("Capture stream started", backpressure=self._backpressure)

        try:
            while not stop.is_set():
                async with handle.lock:
                    if stop.is_set():
                        break

                    try:
                        frame = await loop.run_in_executor(
                            self._executor, capability.get_frame
                        )
                    except CameraError as e:
                        logger.error(
                            "Frame acquisition failed, ending capture",
                            error=str(e),
                            frames=frames,
                        )
                        await self._abort(handle, stop)
                        break
                    except Exception:  # noqa: BLE001 - any driver fault ends the stream
                        logger.exception(
                            "Unexpected frame acquisition error, ending capture",
                            frames=frames,
                        )
                        await self._abort(handle, stop)
                        break

                    response = envelope.respond(
                        {"frame": base64.b64encode(frame).decode("ascii")}
                    )
                    try:
                        await self._publish(response, self._backpressure)
                    except TransportError as e:
                        logger.error(
                            "Frame publish failed, ending capture",
                            error=str(e),
                            frames=frames,
                        )
                        await self._abort(handle, stop)
                        break

                    frames += 1
                    if self._stats is not None:
                        self._stats.record_frame(handle.index, len(frame))
        finally:
            handle.capture.finish(stop)

        logger.info("Capture stream ended", frames=frames)
        return frames

    async def _abort(self, handle: DeviceHandle, stop: asyncio.Event) -> None:
        """Clear capture state and stop the device; caller holds the lock."""
        handle.capture.finish(stop)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, handle.capability.stop_capture)
        except Exception as e:  # noqa: BLE001 - stream is already ending
            logger.warning("stop_capture failed after stream error", error=str(e))
