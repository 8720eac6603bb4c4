"""Mixer control: channel addressing, faders, fades and level monitoring."""

from x32remote.mixer.addressing import (
    CHANNEL_COUNT,
    channel_label,
    fader_path,
    is_valid_channel,
    name_path,
    parse_channel,
)
from x32remote.mixer.console import Mixer
from x32remote.mixer.fader import Fader
from x32remote.mixer.monitor import LevelMonitor
from x32remote.mixer.motion import MotionController

__all__ = [
    "CHANNEL_COUNT",
    "channel_label",
    "fader_path",
    "is_valid_channel",
    "name_path",
    "parse_channel",
    "Mixer",
    "Fader",
    "LevelMonitor",
    "MotionController",
]
