"""
OSC message codec for the console's control protocol.

A message on the wire is::

    <address><",", type tags><arg0><arg1>...

The address block and the type-tag block are each null-terminated and
padded to a multiple of four bytes. ``i`` and ``f`` arguments are four
big-endian bytes, ``s`` arguments are null-terminated padded strings and
``b`` arguments are an int32 length prefix followed by the raw bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Union

from x32remote.core.exceptions import DecodeError, DecodeErrorKind, EncodeError

NULL = b"\x00"
TAG_PREFIX = b","
FIXED_SIZE = 4
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# Rendering of null bytes in text packets and debug output.
TEXT_NULL = "~"


def pad_length(length: int) -> int:
    """
    Number of null bytes that follow a block of ``length`` bytes.

    Blocks must end on a 4-byte boundary and must be null-terminated,
    so an already aligned block still gets four nulls.
    """
    return 4 - (length % 4)


def pad_block(data: bytes) -> bytes:
    return data + NULL * pad_length(len(data))


def _as_float32(value: float) -> float:
    return struct.unpack(">f", struct.pack(">f", value))[0]


# =============================================================================
# Argument variants
# =============================================================================


@dataclass(frozen=True)
class Int32:
    """32-bit signed integer argument (tag ``i``)."""

    value: int
    tag: ClassVar[str] = "i"

    def __post_init__(self) -> None:
        if not INT32_MIN <= self.value <= INT32_MAX:
            raise EncodeError(f"int32 argument out of range: {self.value}")

    @property
    def raw(self) -> bytes:
        return struct.pack(">i", self.value)

    def encode(self) -> bytes:
        return self.raw


@dataclass(frozen=True)
class Float32:
    """IEEE-754 single precision argument (tag ``f``).

    The stored value is rounded to float32 on construction so that a
    decoded argument compares equal to the one that was sent.
    """

    value: float
    tag: ClassVar[str] = "f"

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "value", _as_float32(float(self.value)))
        except (OverflowError, TypeError, ValueError) as e:
            raise EncodeError(f"float32 argument not representable: {self.value!r} ({e})")

    @property
    def raw(self) -> bytes:
        return struct.pack(">f", self.value)

    def encode(self) -> bytes:
        return self.raw

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Float32):
            return NotImplemented
        # Bitwise so that NaN payloads round-trip as equal
        return self.raw == other.raw

    def __hash__(self) -> int:
        return hash(self.raw)


@dataclass(frozen=True)
class String:
    """Null-terminated string argument (tag ``s``)."""

    value: str
    tag: ClassVar[str] = "s"

    def __post_init__(self) -> None:
        if "\x00" in self.value:
            raise EncodeError("string argument contains a null byte")

    @property
    def raw(self) -> bytes:
        return self.value.encode("utf-8")

    def encode(self) -> bytes:
        return pad_block(self.raw)


@dataclass(frozen=True)
class Blob:
    """Length-prefixed binary argument (tag ``b``)."""

    value: bytes
    tag: ClassVar[str] = "b"

    @property
    def raw(self) -> bytes:
        return bytes(self.value)

    def encode(self) -> bytes:
        size = len(self.value)
        return struct.pack(">i", size) + self.raw + NULL * (-size % 4)


Argument = Union[Int32, Float32, String, Blob]

ARGUMENT_TYPES: Dict[str, type] = {
    Int32.tag: Int32,
    Float32.tag: Float32,
    String.tag: String,
    Blob.tag: Blob,
}


# =============================================================================
# Message
# =============================================================================


@dataclass
class Message:
    """An OSC message: address plus ordered typed arguments."""

    address: str
    arguments: List[Argument] = field(default_factory=list)
    _packet: Optional[bytes] = field(default=None, init=False, repr=False, compare=False)

    @property
    def type_tags(self) -> str:
        return "".join(arg.tag for arg in self.arguments)

    @property
    def values(self) -> List[Any]:
        return [arg.value for arg in self.arguments]

    def _append(self, argument: Argument) -> "Message":
        self.arguments.append(argument)
        self._packet = None
        return self

    def add_int(self, value: int) -> "Message":
        return self._append(Int32(int(value)))

    def add_float(self, value: float) -> "Message":
        return self._append(Float32(value))

    def add_string(self, value: str) -> "Message":
        return self._append(String(value))

    def add_blob(self, value: bytes) -> "Message":
        return self._append(Blob(bytes(value)))

    def add(self, value: Any) -> "Message":
        """Add an argument, choosing its type from the Python value."""
        if isinstance(value, bool):
            raise EncodeError("cannot determine OSC type of a bool argument")
        if isinstance(value, int):
            return self.add_int(value)
        if isinstance(value, float):
            return self.add_float(value)
        if isinstance(value, str):
            return self.add_string(value)
        if isinstance(value, (bytes, bytearray)):
            return self.add_blob(value)
        raise EncodeError(f"cannot determine OSC type of argument {value!r}")

    def encode(self) -> bytes:
        """Serialize once and reuse the packet until the message changes."""
        if self._packet is None:
            self._packet = encode(self)
        return self._packet


def encode(message: Message) -> bytes:
    """Serialize a message to a datagram payload."""
    address = message.address
    if not address or "," in address or "\x00" in address:
        raise EncodeError(f"invalid address {address!r}")

    packet = bytearray()
    packet.extend(pad_block(address.encode("utf-8")))
    packet.extend(pad_block(TAG_PREFIX + message.type_tags.encode("ascii")))

    for arg in message.arguments:
        payload = arg.encode()
        if arg.tag in (Int32.tag, Float32.tag) and len(payload) != FIXED_SIZE:
            raise EncodeError(
                f"'{arg.tag}' argument payload is {len(payload)} bytes, expected {FIXED_SIZE}"
            )
        packet.extend(payload)

    return bytes(packet)


# =============================================================================
# Decoding
# =============================================================================


def decode_argument(tag: str, raw: bytes) -> Optional[Any]:
    """
    Convert an argument's raw bytes to a Python value.

    Returns None for a fixed-size tag with the wrong byte count or for an
    unknown tag; ``decode`` turns that into a DecodeError.
    """
    if tag == Int32.tag:
        if len(raw) != FIXED_SIZE:
            return None
        return struct.unpack(">i", raw)[0]
    if tag == Float32.tag:
        if len(raw) != FIXED_SIZE:
            return None
        return struct.unpack(">f", raw)[0]
    if tag == String.tag:
        return raw.decode("utf-8", errors="replace")
    if tag == Blob.tag:
        return bytes(raw)
    return None


def _read_fixed(data: bytes, pos: int) -> Tuple[bytes, int]:
    raw = data[pos:pos + FIXED_SIZE]
    if not raw:
        raise DecodeError(DecodeErrorKind.TRUNCATED, f"missing 4-byte argument at offset {pos}")
    return raw, pos + FIXED_SIZE


def _read_string(data: bytes, pos: int) -> Tuple[bytes, int]:
    end = data.find(NULL, pos)
    if end < 0:
        raise DecodeError(DecodeErrorKind.TRUNCATED, f"string at offset {pos} not terminated")
    raw = data[pos:end]
    next_pos = pos + len(raw) + pad_length(len(raw))
    if next_pos > len(data):
        raise DecodeError(DecodeErrorKind.TRUNCATED, f"string at offset {pos} missing padding")
    return raw, next_pos


def _read_blob(data: bytes, pos: int) -> Tuple[bytes, int]:
    head = data[pos:pos + 4]
    if len(head) < 4:
        raise DecodeError(DecodeErrorKind.TRUNCATED, f"blob length missing at offset {pos}")
    size = struct.unpack(">i", head)[0]
    if size < 0:
        raise DecodeError(DecodeErrorKind.BAD_LENGTH, f"negative blob length {size}")
    start = pos + 4
    stop = start + size
    next_pos = stop + (-size % 4)
    if next_pos > len(data):
        raise DecodeError(DecodeErrorKind.TRUNCATED, f"blob of {size} bytes exceeds packet")
    return data[start:stop], next_pos


_READERS: Dict[str, Callable[[bytes, int], Tuple[bytes, int]]] = {
    Int32.tag: _read_fixed,
    Float32.tag: _read_fixed,
    String.tag: _read_string,
    Blob.tag: _read_blob,
}


def decode(data: bytes) -> Message:
    """Parse a datagram into a Message."""
    data = bytes(data)

    comma = data.find(TAG_PREFIX)
    if comma < 0:
        raise DecodeError(DecodeErrorKind.TRUNCATED, "no type tag block")
    address = data[:comma].rstrip(NULL).decode("utf-8", errors="replace")

    tags_end = data.find(NULL, comma)
    if tags_end < 0:
        raise DecodeError(DecodeErrorKind.TRUNCATED, "type tags not null-terminated")
    tags = data[comma + 1:tags_end].decode("ascii", errors="replace")

    # Skip exactly the tag block padding; a float argument may start with
    # zero bytes, so stripping nulls here would eat into it.
    pos = min(tags_end + pad_length(len(tags) + 1), len(data))

    arguments: List[Argument] = []
    for tag in tags:
        reader = _READERS.get(tag)
        if reader is None:
            raise DecodeError(DecodeErrorKind.UNKNOWN_TAG, f"unknown type tag {tag!r}")
        raw, pos = reader(data, pos)
        value = decode_argument(tag, raw)
        if value is None:
            raise DecodeError(
                DecodeErrorKind.BAD_LENGTH,
                f"'{tag}' argument is {len(raw)} bytes, expected {FIXED_SIZE}",
            )
        arguments.append(ARGUMENT_TYPES[tag](value))

    return Message(address, arguments)


# =============================================================================
# Text rendering
# =============================================================================


def format_packet(data: bytes) -> str:
    """Render a packet for logs, showing null bytes as ``~``."""
    out = []
    for byte in data:
        if byte == 0:
            out.append(TEXT_NULL)
        elif 32 <= byte < 127:
            out.append(chr(byte))
        else:
            out.append(f"\\x{byte:02x}")
    return "".join(out)


def packet_from_text(text: str) -> bytes:
    """Build a raw packet from text where ``~`` stands for a null byte."""
    return text.replace(TEXT_NULL, "\x00").encode("utf-8")

