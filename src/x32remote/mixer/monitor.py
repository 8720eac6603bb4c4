"""
Level Monitor: polls the selected fader's level on its own connection.

Runs in a dedicated thread at a fixed refresh rate (24 Hz by default)
and publishes a display line per poll. It is supplementary telemetry:
if its connection cannot be opened the thread just ends.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

import structlog

from x32remote.core.exceptions import ConsoleError
from x32remote.mixer.fader import UNKNOWN_LEVEL
from x32remote.mixer.motion import query_level

logger = structlog.get_logger()

DEFAULT_INTERVAL_S = 1.0 / 24
DEFAULT_FRESHNESS_S = 1.0


class LevelMonitor:
    """
    Background poller for the currently selected fader.

    ``mixer`` provides ``selected_fader()``; ``connect`` opens the
    monitor's own connection and is called from the monitor thread.
    Pausing is an explicit flag checked once per loop iteration.
    """

    def __init__(
        self,
        mixer,
        connect: Callable[[], object],
        interval_s: float = DEFAULT_INTERVAL_S,
        freshness_s: float = DEFAULT_FRESHNESS_S,
        on_update: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._mixer = mixer
        self._connect = connect
        self.interval_s = interval_s
        self.freshness_s = freshness_s
        self.join_timeout_s = 1.0
        self._on_update = on_update
        self._clock = clock

        # Thread synchronization
        self._lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._resume = threading.Event()
        self._resume.set()

        self._connection = None
        self._last_update: Optional[float] = None
        self._last_message = ""

        # Stats
        self._polls = 0
        self._errors = 0

    def start(self) -> None:
        """Start the polling thread."""
        if self._running:
            return
        previous = self._thread
        if previous is not None and previous.is_alive():
            previous.join(timeout=self.join_timeout_s)
            if previous.is_alive():
                logger.warning("Previous level monitor thread still running, not restarting")
                return
        self._running = True
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            name="Level-Monitor",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop polling and close the monitor connection."""
        self._running = False
        self._stop.set()
        self._resume.set()

        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout_s)
        # A thread stuck in connect keeps its reference so start() waits for it
        if thread is None or not thread.is_alive():
            self._thread = None

        logger.info("Level monitor stopped", polls=self._polls, errors=self._errors)

    def pause(self) -> None:
        self._resume.clear()

    def resume(self) -> None:
        self._resume.set()

    @property
    def paused(self) -> bool:
        return not self._resume.is_set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_message(self) -> str:
        with self._lock:
            return self._last_message

    def is_active(self) -> bool:
        """True if a poll succeeded within the last ``freshness_s`` seconds."""
        with self._lock:
            last = self._last_update
        return last is not None and self._clock() - last <= self.freshness_s

    def _poll_loop(self) -> None:
        try:
            self._connection = self._connect()
        except ConsoleError as e:
            logger.warning("Level monitor could not connect", error=str(e))
            self._running = False
            return

        logger.info("Level monitor started", interval_ms=self.interval_s * 1000)
        try:
            while self._running:
                if not self._resume.is_set():
                    self._resume.wait()
                    continue
                self.poll_once()
                self._stop.wait(self.interval_s)
        finally:
            connection, self._connection = self._connection, None
            if connection is not None:
                connection.close()

    def poll_once(self) -> str:
        """Query the selected fader once and publish its display line."""
        fader = self._mixer.selected_fader()
        self._polls += 1

        try:
            level = query_level(self._connection, fader)
        except ConsoleError as e:
            self._errors += 1
            if self._errors % 100 == 1:
                logger.debug("Level poll failed", channel=fader.channel_id, error=str(e))
            message = fader.level_message(UNKNOWN_LEVEL)
        else:
            message = fader.level_message(level)
            with self._lock:
                self._last_update = self._clock()

        with self._lock:
            self._last_message = message

        if self._on_update is not None:
            try:
                self._on_update(message)
            except Exception as e:
                logger.error("Level monitor subscriber failed", error=str(e))
        return message

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "paused": self.paused,
            "polls": self._polls,
            "errors": self._errors,
            "active": self.is_active(),
        }
