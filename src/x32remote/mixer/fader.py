"""Per-fader state shared by fades and the level monitor."""

from __future__ import annotations

import itertools
import math
import threading
from typing import Optional

from x32remote.mixer.addressing import channel_label, group_index

UNKNOWN_LEVEL = -1.0

_fade_tokens = itertools.count(1)


def is_unit_interval(value: float) -> bool:
    """True for a finite float in [0, 1]."""
    return math.isfinite(value) and 0.0 <= value <= 1.0


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


class Fader:
    """
    One fader-bearing control on the console.

    ``level`` and the active flag are read and written from several
    threads (fade tasks, the level monitor, the caller), always under
    ``self._lock``. The active flag belongs to at most one fade at a
    time: ``claim`` hands out a token and only that token can ``release``
    it, while ``cancel`` clears it for whoever holds it.
    """

    def __init__(self, channel_id: int):
        self.channel_id = channel_id
        self.group, self.index = group_index(channel_id)

        self._lock = threading.Lock()
        self._level = UNKNOWN_LEVEL
        self._owner: Optional[int] = None

    @property
    def level(self) -> float:
        with self._lock:
            return self._level

    def set_level(self, value: float) -> None:
        with self._lock:
            self._level = value

    @property
    def active(self) -> bool:
        with self._lock:
            return self._owner is not None

    def claim(self) -> Optional[int]:
        """Mark the fader active for a new fade; None if one already runs."""
        with self._lock:
            if self._owner is not None:
                return None
            self._owner = next(_fade_tokens)
            return self._owner

    def holds(self, token: int) -> bool:
        with self._lock:
            return self._owner == token

    def release(self, token: int) -> None:
        with self._lock:
            if self._owner == token:
                self._owner = None

    def cancel(self) -> bool:
        """Clear the active flag; the running fade stops before its next step."""
        with self._lock:
            was_active = self._owner is not None
            self._owner = None
            return was_active

    def level_message(self, level: Optional[float] = None) -> str:
        """Display line such as ``channel 5 : 0.75`` (``??`` when unknown)."""
        if level is None:
            level = self.level
        prefix = channel_label(self.channel_id)
        if level < 0:
            return f"{prefix} : ??"
        return f"{prefix} : {level:.2f}"

    def __repr__(self) -> str:
        return f"Fader(channel_id={self.channel_id}, group={self.group!r}, index={self.index})"
