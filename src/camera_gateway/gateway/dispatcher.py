"""Command dispatcher: one decoded command in, one response out.

Handlers run the capability calls for their command while holding the
device lock, on the worker pool so a slow device never stalls the event
loop or other devices. Results are rendered as payload mappings:

======================  ==============================================
Command                 Payload
======================  ==============================================
GetInfo                 DeviceInfo wire form
GetStatus               ``{}``
GetRoi / SetRoi         ROI wire form (SetRoi re-reads after writing)
GetCtrlVal / SetCtrlVal ``{"ctrl_type": "<n>", "value": "<v>"}``
StartCapture            frames, then ``{}`` once the stream ends
StopCapture             ``{}``
Init                    ``{"num_device": "<n>"}``
Unrecognized            ``{}``
======================  ==============================================

Control values and device counts are decimal strings so 64-bit values
survive JavaScript clients. A failing control read reports ``"-1"``.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable, Mapping
from concurrent.futures import Executor
from types import MappingProxyType
from typing import Any, TypeVar

from camera_gateway.devices.registry import DeviceHandle, DeviceRegistry
from camera_gateway.drivers.cameras import (
    CameraError,
    ControlType,
    ImageType,
    RegionOfInterest,
)
from camera_gateway.gateway.capture import CaptureStream
from camera_gateway.observability import GatewayStats, get_logger
from camera_gateway.protocol import CommandCode, CommandEnvelope, ResponseEnvelope

logger = get_logger(__name__)

T = TypeVar("T")

Payload = dict[str, Any]
Handler = Callable[[CommandEnvelope, DeviceHandle], Awaitable[Payload]]

#: Reported for a control whose value could not be read.
CONTROL_READ_FAILED = "-1"

#: Control values are signed 64-bit integers on the wire.
CONTROL_VALUE_MIN = -(2**63)
CONTROL_VALUE_MAX = 2**63 - 1

_ROI_FIELDS = ("startx", "starty", "width", "height", "bin", "img_type")


class CommandParameterError(ValueError):
    """A command's ``data`` is missing a field or holds an invalid value."""


def _int_param(
    params: Mapping[str, str],
    key: str,
    bounds: tuple[int, int] | None = None,
) -> int:
    """Parse a decimal integer parameter.

    Args:
        params: Command ``data``.
        key: Parameter name.
        bounds: Inclusive (low, high) range the value must fall in.

    Raises:
        CommandParameterError: If the key is missing, the value is not a
            decimal integer or it lies outside ``bounds``.
    """
    if key not in params:
        raise CommandParameterError(f"missing parameter {key!r}")
    try:
        value = int(params[key], 10)
    except ValueError:
        raise CommandParameterError(
            f"parameter {key!r} must be an integer, got {params[key]!r}"
        ) from None
    if bounds is not None and not bounds[0] <= value <= bounds[1]:
        raise CommandParameterError(
            f"parameter {key!r} out of range [{bounds[0]}, {bounds[1]}]: {value}"
        )
    return value


def _control_param(params: Mapping[str, str]) -> ControlType:
    """Parse ``ctrl_type`` into a ControlType; unknown ordinals are parameter errors."""
    ordinal = _int_param(params, "ctrl_type")
    try:
        return ControlType.parse(ordinal)
    except ValueError:
        raise CommandParameterError(f"unknown control type {ordinal}") from None


def parse_roi(params: Mapping[str, str]) -> RegionOfInterest:
    """Build a RegionOfInterest from SetRoi parameters.

    Unknown encodings become ImageType.END, which the device rejects.

    Raises:
        CommandParameterError: If a field is missing or not an integer.
    """
    values = {key: _int_param(params, key) for key in _ROI_FIELDS}
    return RegionOfInterest(
        startx=values["startx"],
        starty=values["starty"],
        width=values["width"],
        height=values["height"],
        bin=values["bin"],
        img_type=ImageType.from_ordinal(values["img_type"]),
    )


class CommandDispatcher:
    """Executes commands against registry devices.

    Example:
        stream = CaptureStream(publish, executor=pool)
        dispatcher = CommandDispatcher(registry, stream, executor=pool)
        handle = registry.lookup(envelope.camera_idx)
        response = await dispatcher.dispatch(envelope, handle)
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        capture: CaptureStream,
        executor: Executor | None = None,
        stats: GatewayStats | None = None,
    ) -> None:
        self._registry = registry
        self._capture = capture
        self._executor = executor
        self._stats = stats
        self._handlers: Mapping[CommandCode, Handler] = MappingProxyType(
            {
                CommandCode.GET_INFO: self._get_info,
                CommandCode.GET_STATUS: self._get_status,
                CommandCode.GET_ROI: self._get_roi,
                CommandCode.GET_CTRL_VAL: self._get_ctrl_val,
                CommandCode.SET_ROI: self._set_roi,
                CommandCode.SET_CTRL_VAL: self._set_ctrl_val,
                CommandCode.START_CAPTURE: self._start_capture,
                CommandCode.STOP_CAPTURE: self._stop_capture,
                CommandCode.UNRECOGNIZED: self._unrecognized,
            }
        )

    async def dispatch(
        self, envelope: CommandEnvelope, handle: DeviceHandle | None
    ) -> ResponseEnvelope:
        """Run one command and build its response.

        Args:
            envelope: Decoded command.
            handle: Device resolved from ``envelope.camera_idx``, or None
                when the index is out of range. Ignored for Init.

        Returns:
            The response to publish. For StartCapture this is the terminal
            response, returned once the stream has ended.

        Raises:
            CommandParameterError: If the command's parameters are invalid;
                no response should be published.
        """
        code = envelope.command
        started = time.monotonic()
        error_type: str | None = None
        try:
            if code == CommandCode.INIT:
                payload = await self._init(envelope)
            elif handle is None:
                payload = self._index_error(envelope)
                error_type = "index_out_of_range"
            else:
                payload = await self._handlers[code](envelope, handle)
                if "error" in payload:
                    error_type = "device_error"
        except CommandParameterError:
            error_type = "invalid_parameters"
            raise
        finally:
            self._record(envelope, code, started, error_type)

        return envelope.respond(payload)

    def _record(
        self,
        envelope: CommandEnvelope,
        code: CommandCode,
        started: float,
        error_type: str | None,
    ) -> None:
        """Log the outcome and feed the stats collector.

        Args:
            envelope: Command that was handled.
            code: Its decoded command code.
            started: ``time.monotonic()`` when handling began.
            error_type: Failure category, or None on success.
        """
        duration_ms = (time.monotonic() - started) * 1000
        logger.debug(
            "Command handled",
            duration_ms=round(duration_ms, 2),
            success=error_type is None,
        )
        if self._stats is not None:
            self._stats.record_command(
                envelope.camera_idx,
                code.name,
                duration_ms,
                success=error_type is None,
                error_type=error_type,
            )

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking capability call on the worker pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(fn, *args)
        )

    def _index_error(self, envelope: CommandEnvelope) -> Payload:
        num_device = len(self._registry)
        logger.warning("Device index out of range", num_device=num_device)
        return {
            "error": f"camera_idx {envelope.camera_idx} out of range",
            "num_device": str(num_device),
        }

    async def _read_control(self, handle: DeviceHandle, control: ControlType) -> Payload:
        """Read a control under the caller's lock; failures give ``"-1"``."""
        try:
            current = await self._call(handle.capability.get_control_value, control)
            value = str(current.value)
        except CameraError as e:
            logger.error("Control read failed", control=control.name, error=str(e))
            value = CONTROL_READ_FAILED
        return {"ctrl_type": str(int(control)), "value": value}

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _get_info(self, envelope: CommandEnvelope, handle: DeviceHandle) -> Payload:
        async with handle.lock:
            try:
                info = await self._call(handle.capability.get_info)
            except CameraError as e:
                logger.error("GetInfo failed", error=str(e))
                return {"error": str(e)}
        return info.with_index(handle.index).to_dict()

    async def _get_status(
        self, envelope: CommandEnvelope, handle: DeviceHandle
    ) -> Payload:
        return {}

    async def _get_roi(self, envelope: CommandEnvelope, handle: DeviceHandle) -> Payload:
        async with handle.lock:
            try:
                roi = await self._call(handle.capability.get_roi)
            except CameraError as e:
                logger.error("GetRoi failed", error=str(e))
                return {"error": str(e)}
        return roi.to_dict()

    async def _set_roi(self, envelope: CommandEnvelope, handle: DeviceHandle) -> Payload:
        roi = parse_roi(envelope.data)
        async with handle.lock:
            if handle.capture.active:
                logger.warning("SetRoi refused while capturing")
                return {"error": "cannot change ROI while capture is running"}
            try:
                await self._call(handle.capability.set_roi, roi)
                confirmed = await self._call(handle.capability.get_roi)
            except (ValueError, CameraError) as e:
                logger.error("SetRoi failed", error=str(e), **roi.to_dict())
                return {"error": str(e)}
        return confirmed.to_dict()

    async def _get_ctrl_val(
        self, envelope: CommandEnvelope, handle: DeviceHandle
    ) -> Payload:
        control = _control_param(envelope.data)
        async with handle.lock:
            return await self._read_control(handle, control)

    async def _set_ctrl_val(
        self, envelope: CommandEnvelope, handle: DeviceHandle
    ) -> Payload:
        """Write with auto off, then report the value the device confirms."""
        control = _control_param(envelope.data)
        value = _int_param(
            envelope.data, "value", (CONTROL_VALUE_MIN, CONTROL_VALUE_MAX)
        )
        async with handle.lock:
            try:
                await self._call(
                    handle.capability.set_control_value, control, value, False
                )
            except CameraError as e:
                logger.error(
                    "Control write failed",
                    control=control.name,
                    value=value,
                    error=str(e),
                )
            return await self._read_control(handle, control)

    async def _start_capture(
        self, envelope: CommandEnvelope, handle: DeviceHandle
    ) -> Payload:
        async with handle.lock:
            if handle.capture.active:
                logger.warning("StartCapture refused, stream already running")
                return {"error": "capture already running"}
            stop = handle.capture.begin()
            try:
                await self._call(handle.capability.start_capture)
            except CameraError as e:
                handle.capture.finish(stop)
                logger.error("StartCapture failed", error=str(e))
                return {"error": str(e)}

        await self._capture.run(envelope, handle, stop)
        return {}

    async def _stop_capture(
        self, envelope: CommandEnvelope, handle: DeviceHandle
    ) -> Payload:
        async with handle.lock:
            was_active = handle.capture.cancel()
            try:
                await self._call(handle.capability.stop_capture)
            except CameraError as e:
                logger.error("StopCapture failed", error=str(e))
        logger.info("Capture stop requested", was_active=was_active)
        return {}

    async def _unrecognized(
        self, envelope: CommandEnvelope, handle: DeviceHandle
    ) -> Payload:
        logger.error("Unrecognized command", cmd_idx=envelope.cmd_idx)
        return {}

    async def _init(self, envelope: CommandEnvelope) -> Payload:
        num_device = await self._registry.rebuild(self._executor)
        return {"num_device": str(num_device)}
