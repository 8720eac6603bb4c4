"""Core components: configuration and the exception hierarchy."""

from x32remote.core.config import ConnectionConfig, FadeConfig, MonitorConfig, Settings
from x32remote.core.exceptions import (
    ConsoleError,
    ProtocolError,
    StateError,
    TransportError,
)

__all__ = [
    "ConnectionConfig",
    "FadeConfig",
    "MonitorConfig",
    "Settings",
    "ConsoleError",
    "ProtocolError",
    "StateError",
    "TransportError",
]
