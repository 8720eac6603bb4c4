"""OSC wire codec and UDP transport."""

from x32remote.osc.message import (
    Argument,
    Blob,
    Float32,
    Int32,
    Message,
    String,
    decode,
    decode_argument,
    encode,
    format_packet,
    packet_from_text,
)
from x32remote.osc.transport import (
    Connection,
    RetryPolicy,
    dial,
    is_valid_address,
)

__all__ = [
    "Argument",
    "Blob",
    "Float32",
    "Int32",
    "Message",
    "String",
    "decode",
    "decode_argument",
    "encode",
    "format_packet",
    "packet_from_text",
    "Connection",
    "RetryPolicy",
    "dial",
    "is_valid_address",
]
