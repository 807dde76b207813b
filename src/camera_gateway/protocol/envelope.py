"""Command and response envelopes and their JSON wire form.

Inbound (client to gateway)::

    {"transaction_id": "a1", "camera_idx": 0, "cmd_idx": 5,
     "data": {"ctrl_type": "0", "value": "120"}}

Outbound (gateway to client)::

    {"transaction_id": "a1", "camera_idx": 0, "cmd_idx": 5,
     "data": "{\\"ctrl_type\\": \\"0\\", \\"value\\": \\"120\\"}"}

``data`` is a JSON object inbound but a JSON *string* outbound, which is
what existing clients expect. Decoding is all-or-nothing: any defect
raises EnvelopeDecodeError and nothing partial is returned.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

__all__ = [
    "CommandCode",
    "CommandEnvelope",
    "EnvelopeDecodeError",
    "EnvelopeError",
    "ResponseEnvelope",
    "decode_command",
    "decode_response",
    "encode_command",
    "encode_response",
]


class EnvelopeError(ValueError):
    """Base class for envelope codec failures."""


class EnvelopeDecodeError(EnvelopeError):
    """Bytes did not form a valid envelope."""


class CommandCode(IntEnum):
    """Command ordinals as sent by clients in ``cmd_idx``."""

    GET_INFO = 0
    GET_STATUS = 1
    GET_ROI = 2
    GET_CTRL_VAL = 3
    SET_ROI = 4
    SET_CTRL_VAL = 5
    START_CAPTURE = 6
    STOP_CAPTURE = 7
    INIT = 8
    UNRECOGNIZED = -1

    @classmethod
    def from_ordinal(cls, value: int) -> CommandCode:
        """Map ``cmd_idx`` to a code; unknown values give UNRECOGNIZED."""
        if value < 0:
            return cls.UNRECOGNIZED
        try:
            return cls(value)
        except ValueError:
            return cls.UNRECOGNIZED


@dataclass(frozen=True)
class CommandEnvelope:
    """A decoded client command.

    Attributes:
        transaction_id: Opaque client token, echoed in every response.
        camera_idx: Target device index (unchecked here).
        cmd_idx: Raw command ordinal, echoed in every response.
        data: Command parameters as strings.
    """

    transaction_id: str
    camera_idx: int
    cmd_idx: int
    data: Mapping[str, str] = field(default_factory=dict)

    @property
    def command(self) -> CommandCode:
        return CommandCode.from_ordinal(self.cmd_idx)

    def respond(self, payload: Mapping[str, Any]) -> ResponseEnvelope:
        """Response correlated with this command."""
        return ResponseEnvelope(
            transaction_id=self.transaction_id,
            camera_idx=self.camera_idx,
            cmd_idx=self.cmd_idx,
            data=dict(payload),
        )


@dataclass(frozen=True)
class ResponseEnvelope:
    """A response to publish; ``data`` is serialized to a JSON string."""

    transaction_id: str
    camera_idx: int
    cmd_idx: int
    data: Mapping[str, Any] = field(default_factory=dict)


def _require(obj: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in obj:
        raise EnvelopeDecodeError(f"missing field {key!r}")
    value = obj[key]
    # bool is an int subclass; a JSON true is not a device index
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise EnvelopeDecodeError(
            f"field {key!r} must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _parse_object(raw: bytes | str) -> dict[str, Any]:
    try:
        obj = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EnvelopeDecodeError(f"invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise EnvelopeDecodeError("envelope must be a JSON object")
    return obj


def _decode_params(value: Any) -> dict[str, str]:
    """Normalize the inbound ``data`` object to ``str -> str``.

    Numbers are accepted and rendered in decimal since some clients send
    them unquoted; anything else is rejected.
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise EnvelopeDecodeError("field 'data' must be an object")
    params: dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, bool) or not isinstance(item, str | int | float):
            raise EnvelopeDecodeError(f"data[{key!r}] must be a string")
        if isinstance(item, float) and item.is_integer():
            item = int(item)
        params[key] = str(item)
    return params


def decode_command(raw: bytes | str) -> CommandEnvelope:
    """Parse an inbound command.

    Raises:
        EnvelopeDecodeError: Invalid JSON, a missing or mistyped
            ``transaction_id``/``camera_idx``/``cmd_idx``, or a
            non-scalar ``data`` value.

    Example:
        >>> env = decode_command(b'{"transaction_id": "t", "camera_idx": 0, "cmd_idx": 2}')
        >>> env.command
        <CommandCode.GET_ROI: 2>
    """
    obj = _parse_object(raw)
    return CommandEnvelope(
        transaction_id=_require(obj, "transaction_id", str),
        camera_idx=_require(obj, "camera_idx", int),
        cmd_idx=_require(obj, "cmd_idx", int),
        data=_decode_params(obj.get("data")),
    )


def encode_command(envelope: CommandEnvelope) -> bytes:
    """Serialize a command as a client would send it."""
    return json.dumps(
        {
            "transaction_id": envelope.transaction_id,
            "camera_idx": envelope.camera_idx,
            "cmd_idx": envelope.cmd_idx,
            "data": dict(envelope.data),
        }
    ).encode("utf-8")


def encode_response(envelope: ResponseEnvelope) -> bytes:
    """Serialize a response; ``data`` becomes a JSON string."""
    return json.dumps(
        {
            "transaction_id": envelope.transaction_id,
            "camera_idx": envelope.camera_idx,
            "cmd_idx": envelope.cmd_idx,
            "data": json.dumps(dict(envelope.data)),
        }
    ).encode("utf-8")


def decode_response(raw: bytes | str) -> ResponseEnvelope:
    """Parse a response, including its nested ``data`` string.

    Used by clients and tests.

    Raises:
        EnvelopeDecodeError: Any structural defect.
    """
    obj = _parse_object(raw)
    data_text = _require(obj, "data", str)
    try:
        data = json.loads(data_text)
    except json.JSONDecodeError as e:
        raise EnvelopeDecodeError(f"invalid response data: {e}") from e
    if not isinstance(data, dict):
        raise EnvelopeDecodeError("response data must encode an object")
    return ResponseEnvelope(
        transaction_id=_require(obj, "transaction_id", str),
        camera_idx=_require(obj, "camera_idx", int),
        cmd_idx=_require(obj, "cmd_idx", int),
        data=data,
    )
