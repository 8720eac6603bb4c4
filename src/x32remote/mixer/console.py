"""
Mixer facade: connection state, the fader registry, channel selection
and the operations a user interface calls.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

import structlog

from x32remote.core.config import Settings
from x32remote.core.exceptions import (
    InvalidChannelError,
    InvalidLevelError,
    InvalidResolutionError,
    NotConnectedError,
    ProtocolError,
)
from x32remote.mixer.addressing import CHANNEL_COUNT, fader_path, is_valid_channel, name_path
from x32remote.mixer.fader import Fader, clamp_unit, is_unit_interval
from x32remote.mixer.monitor import LevelMonitor
from x32remote.mixer.motion import MotionController
from x32remote.osc.message import Message, String
from x32remote.osc.transport import Connection, RetryPolicy, dial

logger = structlog.get_logger()

INFO_PATH = "/info"
STATUS_SEPARATOR = "   "


class Mixer:
    """
    Remote control of one console.

    Holds the main control connection (fades, names, status), the 80
    fader records and the selected channel. The level monitor gets its
    own connection on ``settings.connection.monitor_port``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        name: str = "Behringer X32",
        dial_fn: Callable[..., Connection] = dial,
        motion: Optional[MotionController] = None,
    ):
        self.settings = settings or Settings()
        self.name = name
        self.faders: List[Fader] = [Fader(i) for i in range(CHANNEL_COUNT)]

        fade = self.settings.fade
        self.motion = motion or MotionController(
            sample_interval_s=fade.motion_sample_interval_s,
            failure_limit=fade.failure_limit,
        )
        self.monitor: Optional[LevelMonitor] = None

        self._dial = dial_fn
        self._lock = threading.Lock()
        self._connection: Optional[Connection] = None
        self._selected_channel = 0
        self._fader_resolution = fade.resolution
        self._executor: Optional[ThreadPoolExecutor] = None

    # =========================================================================
    # Connection
    # =========================================================================

    def _open(self, local_port: int) -> Connection:
        cfg = self.settings.connection
        return self._dial(
            local_port,
            cfg.remote_host,
            cfg.remote_port,
            retry=RetryPolicy(
                max_attempts=cfg.dial_attempts,
                delay_s=cfg.dial_retry_delay_s,
            ),
            send_timeout_s=cfg.send_timeout_s,
            receive_timeout_s=cfg.receive_timeout_s,
        )

    def connect(self) -> Connection:
        """Open the control connection, replacing any previous one."""
        conn = self._open(self.settings.connection.local_port)
        with self._lock:
            previous, self._connection = self._connection, conn
        if previous is not None:
            previous.close()
        return conn

    def disconnect(self) -> None:
        with self._lock:
            conn, self._connection = self._connection, None
        if conn is not None:
            conn.close()

    @property
    def connection(self) -> Optional[Connection]:
        with self._lock:
            return self._connection

    @property
    def connected(self) -> bool:
        return self.connection is not None

    def _require_connection(self) -> Connection:
        conn = self.connection
        if conn is None:
            raise NotConnectedError(self.name)
        return conn

    # =========================================================================
    # Registry, selection and resolution
    # =========================================================================

    def fader(self, channel_id: int) -> Fader:
        if not is_valid_channel(channel_id):
            raise InvalidChannelError(channel_id)
        return self.faders[channel_id]

    @property
    def selected_channel(self) -> int:
        with self._lock:
            return self._selected_channel

    def select_channel(self, channel_id: int) -> Fader:
        fader = self.fader(channel_id)
        with self._lock:
            self._selected_channel = channel_id
        return fader

    def selected_fader(self) -> Fader:
        return self.faders[self.selected_channel]

    @property
    def fader_resolution(self) -> int:
        with self._lock:
            return self._fader_resolution

    def set_fader_resolution(self, value: object) -> int:
        """Parse and apply a new resolution; the old one stays on failure."""
        try:
            resolution = int(str(value).strip())
        except ValueError:
            raise InvalidResolutionError(value) from None
        if resolution <= 0:
            raise InvalidResolutionError(value)

        with self._lock:
            self._fader_resolution = resolution
        logger.info("Fader resolution set", resolution=resolution)
        return resolution

    # =========================================================================
    # Console queries
    # =========================================================================

    def get_status(self) -> List[str]:
        """
        Return the fields of the console's ``/info`` reply.

        Fields keep their position; a non-string field reads as "".
        """
        reply = self._require_connection().inquire(Message(INFO_PATH))
        return [arg.value if arg.tag == String.tag else "" for arg in reply.arguments]

    def status_line(self) -> str:
        return STATUS_SEPARATOR.join(self.get_status())

    def get_name(self, channel_id: int) -> str:
        path = name_path(self.fader(channel_id).channel_id)
        reply = self._require_connection().inquire(Message(path))
        names = [arg.value for arg in reply.arguments if arg.tag == String.tag]
        if not names:
            raise ProtocolError(f"no name in reply for {path}")
        return names[-1]

    def set_name(self, channel_id: int, name: str) -> None:
        path = name_path(self.fader(channel_id).channel_id)
        message = Message(path).add_string(name)
        self._require_connection().send(message)
        logger.info("Channel renamed", channel=channel_id, name=name)

    def get_level(self, channel_id: int) -> float:
        fader = self.fader(channel_id)
        return self.motion.read_level(self._require_connection(), fader)

    def set_level(self, channel_id: int, value: float) -> None:
        """Move a fader in one step."""
        fader = self.fader(channel_id)
        if not is_unit_interval(value):
            raise InvalidLevelError(value)
        level = clamp_unit(value)
        self._require_connection().send(Message(fader_path(channel_id)).add_float(level))
        fader.set_level(level)

    # =========================================================================
    # Fades
    # =========================================================================

    def fade_to(self, channel_id: int, target: float, duration_s: float) -> int:
        """Fade a channel from its live level to ``target``; blocks until done."""
        fader = self.fader(channel_id)
        conn = self._require_connection()
        logger.info("Fade", channel=channel_id, target=target, duration_s=duration_s)
        return self.motion.fade_to(conn, fader, target, duration_s, self.fader_resolution)

    def fade_out(self, channel_id: int, duration_s: float) -> int:
        return self.fade_to(channel_id, 0.0, duration_s)

    def start_fade(self, channel_id: int, target: float, duration_s: float) -> "Future[int]":
        """Run ``fade_to`` as its own task; the future holds its outcome."""
        self.fader(channel_id)
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=CHANNEL_COUNT,
                    thread_name_prefix="Fade",
                )
            executor = self._executor
        return executor.submit(self.fade_to, channel_id, target, duration_s)

    def stop_fade(self, channel_id: int) -> bool:
        """Interrupt a running fade; True if one was running."""
        stopped = self.fader(channel_id).cancel()
        if stopped:
            logger.info("Fade stop requested", channel=channel_id)
        return stopped

    # =========================================================================
    # Level monitor
    # =========================================================================

    def monitor_levels(self, on_update: Optional[Callable[[str], None]] = None) -> LevelMonitor:
        """Start polling the selected channel on the monitor connection."""
        if self.monitor is not None and self.monitor.running:
            return self.monitor

        cfg = self.settings.monitor
        self.monitor = LevelMonitor(
            self,
            connect=lambda: self._open(self.settings.connection.monitor_port),
            interval_s=cfg.interval_s,
            freshness_s=cfg.freshness_s,
            on_update=on_update,
        )
        self.monitor.start()
        return self.monitor

    def stop_monitor(self) -> None:
        if self.monitor is not None:
            self.monitor.stop()

    def is_monitor_active(self) -> bool:
        return self.monitor is not None and self.monitor.is_active()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Stop the monitor and any fades, then close the connection."""
        self.stop_monitor()
        for fader in self.faders:
            fader.cancel()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        self.disconnect()

    def __enter__(self) -> "Mixer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
