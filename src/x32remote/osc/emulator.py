"""
Console Emulator - loopback testing without a desk.

A small UDP server that speaks the same OSC codec as the console. It
keeps one value per fader path and name path, answers argument-less
queries with the stored value, stores the first argument of any other
message and answers ``/info`` with four strings.

Only what the remote needs is emulated; there are no subscriptions,
meters or scenes.
"""

from __future__ import annotations

import socket
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

import structlog

from x32remote.core.exceptions import ProtocolError
from x32remote.mixer.addressing import CHANNEL_COUNT, fader_path, name_path
from x32remote.osc.message import Argument, Float32, Message, String, decode, format_packet
from x32remote.osc.transport import RECEIVE_BUFFER_SIZE

logger = structlog.get_logger()

INFO_FIELDS = ("V2.05", "osc-server", "X32 Emulator", "4.06")
_POLL_TIMEOUT_S = 0.1


class ConsoleEmulator:
    """
    Emulated console on a UDP port.

    Args:
        host: Address to bind (default 127.0.0.1)
        port: UDP port, 0 for an ephemeral one
        info: The four ``/info`` reply strings
        history: How many received messages to keep
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        info: Tuple[str, ...] = INFO_FIELDS,
        history: int = 1000,
    ):
        self.host = host
        self.port = port
        self.info = tuple(info)

        self._lock = threading.Lock()
        self._values: Dict[str, Argument] = {}
        for channel_id in range(CHANNEL_COUNT):
            self._values[fader_path(channel_id)] = Float32(0.0)
            self._values[name_path(channel_id)] = String("")

        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

        # Stats
        self.received: Deque[Message] = deque(maxlen=history)
        self.replies = 0
        self.malformed = 0

    @property
    def address(self) -> Tuple[str, int]:
        return self.host, self.port

    def start(self) -> "ConsoleEmulator":
        """Bind the socket and start serving in a daemon thread."""
        if self._running:
            return self

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.port))
        sock.settimeout(_POLL_TIMEOUT_S)
        self._socket = sock
        self.port = sock.getsockname()[1]

        self._running = True
        self._thread = threading.Thread(
            target=self._serve,
            name="Console-Emulator",
            daemon=True,
        )
        self._thread.start()
        logger.info("Console emulator started", host=self.host, port=self.port)
        return self

    def stop(self) -> None:
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        logger.info("Console emulator stopped", received=len(self.received))

    def __enter__(self) -> "ConsoleEmulator":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False

    # -------------------------------------------------------------------------
    # State inspection
    # -------------------------------------------------------------------------

    def value(self, path: str) -> Any:
        with self._lock:
            argument = self._values.get(path)
        return None if argument is None else argument.value

    def set_value(self, path: str, argument: Argument) -> None:
        with self._lock:
            self._values[path] = argument

    def fader_level(self, channel_id: int) -> float:
        return self.value(fader_path(channel_id))

    def set_fader_level(self, channel_id: int, level: float) -> None:
        self.set_value(fader_path(channel_id), Float32(level))

    def channel_name(self, channel_id: int) -> str:
        return self.value(name_path(channel_id))

    # -------------------------------------------------------------------------
    # Serving
    # -------------------------------------------------------------------------

    def _serve(self) -> None:
        sock = self._socket
        while self._running and sock is not None:
            try:
                data, sender = sock.recvfrom(RECEIVE_BUFFER_SIZE)
            except socket.timeout:
                continue
            except OSError:
                break

            reply = self.handle_packet(data)
            if reply is None:
                continue
            try:
                sock.sendto(reply.encode(), sender)
                self.replies += 1
            except OSError as e:
                logger.warning("Emulator reply failed", error=str(e))

    def handle_packet(self, data: bytes) -> Optional[Message]:
        """Apply one datagram; returns the reply to send, if any."""
        try:
            message = decode(data)
        except ProtocolError as e:
            self.malformed += 1
            logger.debug("Emulator ignored packet", packet=format_packet(data), error=str(e))
            return None

        self.received.append(message)

        if message.address == "/info":
            return Message("/info", [String(field) for field in self.info])

        if message.arguments:
            self.set_value(message.address, message.arguments[0])
            return None

        with self._lock:
            stored = self._values.get(message.address)
        if stored is None:
            return None
        return Message(message.address, [stored])
