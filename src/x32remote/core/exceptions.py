"""
Custom Exceptions for X32 Remote.

Provides a hierarchy of exceptions for the wire codec, the UDP transport
and the mixer control layer, so callers can tell a malformed packet from
a dead network from a request that makes no sense for the console state.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ConsoleError(Exception):
    """Base exception for all X32 Remote errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


# =============================================================================
# Protocol Errors
# =============================================================================


class ProtocolError(ConsoleError):
    """Base exception for malformed OSC packets."""
    pass


class EncodeError(ProtocolError):
    """A message could not be serialized."""

    def __init__(self, reason: str):
        super().__init__(f"Cannot encode OSC message: {reason}", recoverable=False)
        self.reason = reason


class DecodeErrorKind(Enum):
    """Why a datagram could not be decoded."""

    TRUNCATED = "truncated"
    BAD_LENGTH = "bad_length"
    UNKNOWN_TAG = "unknown_tag"


class DecodeError(ProtocolError):
    """A received datagram is not a valid OSC message."""

    def __init__(self, kind: DecodeErrorKind, reason: str):
        super().__init__(f"Cannot decode OSC message ({kind.value}): {reason}")
        self.kind = kind
        self.reason = reason


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(ConsoleError):
    """Base exception for network errors."""
    pass


class DialError(TransportError):
    """Failed to open the UDP connection to the console."""

    def __init__(self, local: str, remote: str, reason: str):
        super().__init__(
            f"Failed to connect {local} -> {remote}: {reason}",
            recoverable=False
        )
        self.local = local
        self.remote = remote
        self.reason = reason


class TransportTimeoutError(TransportError):
    """A send or receive did not complete before its deadline."""

    def __init__(self, operation: str, timeout_s: float):
        super().__init__(f"Timed out after {timeout_s}s waiting to {operation}")
        self.operation = operation
        self.timeout_s = timeout_s


class NotConnectedError(TransportError):
    """An operation needed a connection but none is open."""

    def __init__(self, what: str = "console"):
        super().__init__(f"No connection made to {what}")


class FadeTransmissionError(TransportError):
    """Too many consecutive step sends failed during a fade."""

    def __init__(self, channel_id: int, failures: int, last_error: Optional[Exception] = None):
        super().__init__("too many failures sending message")
        self.channel_id = channel_id
        self.failures = failures
        self.last_error = last_error


# =============================================================================
# State Errors
# =============================================================================


class StateError(ConsoleError):
    """Base exception for requests that conflict with mixer state."""
    pass


class InvalidChannelError(StateError):
    """Channel ID outside 0-79."""

    def __init__(self, channel_id: object):
        super().__init__(f"Invalid channel id: {channel_id!r}")
        self.channel_id = channel_id


class InvalidResolutionError(StateError):
    """Fader resolution text did not parse to a positive integer."""

    def __init__(self, value: object):
        super().__init__(
            f"Cannot parse fader resolution {value!r} into a positive int: "
            "fader resolution unchanged"
        )
        self.value = value


class InvalidLevelError(StateError):
    """A fader level outside the unit interval."""

    def __init__(self, value: float):
        super().__init__("invalid start/stop value")
        self.value = value


class FaderInMotionError(StateError):
    """A fade was requested while the fader is moving."""

    def __init__(self, channel_id: int):
        super().__init__("fader currently in motion")
        self.channel_id = channel_id


class FadeInterruptedError(StateError):
    """A running fade was cancelled by clearing the fader's active flag."""

    def __init__(self, channel_id: int, steps_sent: int):
        super().__init__("fade interrupted")
        self.channel_id = channel_id
        self.steps_sent = steps_sent
