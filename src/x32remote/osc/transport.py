"""UDP transport for OSC messages: dial, timed send/receive and inquire."""

from __future__ import annotations

import errno
import ipaddress
import select
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from x32remote.core.exceptions import DialError, TransportError, TransportTimeoutError
from x32remote.osc.message import Message, decode, format_packet

logger = structlog.get_logger()

DEFAULT_SEND_TIMEOUT_S = 4.0
DEFAULT_RECEIVE_TIMEOUT_S = 4.0
# One reply packet as used here; not a general streaming read.
RECEIVE_BUFFER_SIZE = 512
PORT_MAX = 65535

SocketFactory = Callable[[int], socket.socket]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for dialing while the local port is taken."""

    max_attempts: int = 5
    delay_s: float = 0.25
    sleep: Callable[[float], None] = time.sleep


def is_address_in_use(error: OSError) -> bool:
    return error.errno == errno.EADDRINUSE


def is_valid_address(address: str) -> bool:
    """
    Check an address typed by a user.

    Accepts an IP literal ("192.168.1.1"), a bare port (":10023") or both
    ("192.168.1.1:10023"). IPv6 takes a port only in brackets
    ("[::1]:10023"); a bare IPv6 literal is accepted without port.
    """
    address = address.strip()
    if not address:
        return False

    host, port = address, ""
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or ":" not in host:
            return False
        if rest:
            if not rest.startswith(":") or rest == ":":
                return False
            port = rest[1:]
    elif address.count(":") == 1:
        host, port = address.split(":")
        if not port:
            return False

    if host:
        try:
            ipaddress.ip_address(host)
        except ValueError:
            return False

    if port:
        if not port.isdigit():
            return False
        if int(port) > PORT_MAX:
            return False

    return True


def format_address(host: str, port: int) -> str:
    """Join host and port, bracketing an IPv6 host."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _default_socket(family: int) -> socket.socket:
    return socket.socket(family, socket.SOCK_DGRAM)


def _family_for(host: str) -> int:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def dial(
    local_port: int,
    remote_host: str,
    remote_port: int,
    *,
    local_host: str = "",
    retry: Optional[RetryPolicy] = None,
    send_timeout_s: float = DEFAULT_SEND_TIMEOUT_S,
    receive_timeout_s: float = DEFAULT_RECEIVE_TIMEOUT_S,
    socket_factory: SocketFactory = _default_socket,
) -> "Connection":
    """
    Bind a UDP socket to ``local_port`` and connect it to the console.

    While the local port is already in use the next port up is tried,
    up to ``retry.max_attempts`` times. Any other error fails at once.
    """
    retry = retry or RetryPolicy()
    remote = format_address(remote_host, remote_port)
    port = local_port

    if not remote_host or not is_valid_address(remote):
        raise DialError(f"{local_host}:{port}", remote, "invalid remote address")

    for attempt in range(1, retry.max_attempts + 1):
        sock = socket_factory(_family_for(remote_host))
        try:
            sock.bind((local_host, port))
            sock.connect((remote_host, remote_port))
        except OSError as e:
            sock.close()
            if is_address_in_use(e) and attempt < retry.max_attempts:
                logger.debug("Local port in use, retrying", port=port, attempt=attempt)
                retry.sleep(retry.delay_s)
                port = min(port + 1, PORT_MAX) if port else port
                continue
            raise DialError(f"{local_host}:{port}", remote, str(e)) from e

        conn = Connection(
            sock,
            send_timeout_s=send_timeout_s,
            receive_timeout_s=receive_timeout_s,
        )
        logger.info("Connected", local=conn.local_address, remote=conn.remote_address)
        return conn

    # max_attempts < 1
    raise DialError(f"{local_host}:{port}", remote, "no dial attempts allowed")


class Connection:
    """
    A connected UDP socket carrying OSC messages to one console.

    Every datagram write goes through one lock so concurrent fades
    interleave only at datagram granularity. ``inquire`` holds a second
    lock across send+receive because replies carry no request id.
    """

    def __init__(
        self,
        sock: socket.socket,
        send_timeout_s: float = DEFAULT_SEND_TIMEOUT_S,
        receive_timeout_s: float = DEFAULT_RECEIVE_TIMEOUT_S,
    ):
        self._socket: Optional[socket.socket] = sock
        self.send_timeout_s = send_timeout_s
        self.receive_timeout_s = receive_timeout_s

        self._send_lock = threading.Lock()
        self._exchange_lock = threading.Lock()

        # Socket timeout is the write deadline; reads wait in select()
        sock.settimeout(send_timeout_s)
        self.local_address = _format_endpoint(sock.getsockname())
        self.remote_address = _format_endpoint(sock.getpeername())

    @property
    def closed(self) -> bool:
        return self._socket is None

    def _require_open(self) -> socket.socket:
        sock = self._socket
        if sock is None:
            raise TransportError("connection is closed")
        return sock

    def send(self, message: Message) -> None:
        """Encode (once) and write a message as a single datagram."""
        self.send_raw(message.encode())

    def send_raw(self, packet: bytes) -> None:
        sock = self._require_open()
        with self._send_lock:
            try:
                sent = sock.send(packet)
            except socket.timeout as e:
                raise TransportTimeoutError("send", self.send_timeout_s) from e
            except OSError as e:
                raise TransportError(f"send failed: {e}") from e
        if sent != len(packet):
            raise TransportError(f"short write: {sent} of {len(packet)} bytes")

    def receive(self, timeout_s: Optional[float] = None) -> Message:
        """Wait up to ``timeout_s`` for one datagram and decode it."""
        timeout = self.receive_timeout_s if timeout_s is None else timeout_s
        data = self._receive_raw(timeout)
        return decode(data)

    def _receive_raw(self, timeout: float) -> bytes:
        sock = self._require_open()
        try:
            ready, _, _ = select.select([sock], [], [], timeout)
        except (OSError, ValueError) as e:
            raise TransportError(f"receive failed: {e}") from e
        if not ready:
            raise TransportTimeoutError("receive", timeout)
        try:
            return sock.recv(RECEIVE_BUFFER_SIZE)
        except socket.timeout as e:
            raise TransportTimeoutError("receive", timeout) from e
        except OSError as e:
            raise TransportError(f"receive failed: {e}") from e

    def _drain(self) -> int:
        """Discard datagrams already queued, e.g. a reply that arrived late."""
        discarded = 0
        while True:
            try:
                data = self._receive_raw(0.0)
            except TransportTimeoutError:
                return discarded
            except TransportError:
                # A queued ICMP error; the send that follows reports real trouble
                return discarded
            discarded += 1
            logger.debug("Discarded stale datagram", packet=format_packet(data))

    def inquire(self, request: Message, timeout_s: Optional[float] = None) -> Message:
        """Send a request and return the next datagram as its reply."""
        with self._exchange_lock:
            self._drain()
            self.send(request)
            return self.receive(timeout_s)

    def close(self) -> None:
        sock, self._socket = self._socket, None
        if sock is not None:
            sock.close()
            logger.debug("Connection closed", local=self.local_address)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


def _format_endpoint(endpoint: tuple) -> str:
    host, port = endpoint[0], endpoint[1]
    return f"{host}:{port}"
