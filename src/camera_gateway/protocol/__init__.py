"""Wire protocol: envelopes exchanged with clients."""

from camera_gateway.protocol.envelope import (
    CommandCode,
    CommandEnvelope,
    EnvelopeDecodeError,
    EnvelopeError,
    ResponseEnvelope,
    decode_command,
    decode_response,
    encode_command,
    encode_response,
)

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
