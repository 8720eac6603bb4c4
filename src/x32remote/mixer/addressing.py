"""
Channel ID to OSC path mapping.

Channel IDs follow the console's unofficial OSC numbering:

    0 - 31   input channels     /ch/01 .. /ch/32
    32 - 39  aux ins            /auxin/01 .. /auxin/08
    40 - 47  fx returns         /fxrtn/01 .. /fxrtn/08
    48 - 63  mix buses          /bus/01 .. /bus/16
    64 - 69  matrices           /mtx/01 .. /mtx/06
    70       main stereo        /main/st
    71       main mono          /main/m
    72 - 79  dca groups         /dca/1 .. /dca/8

DCAs have no channel ID on the console itself; 72 - 79 are ours.
"""

from __future__ import annotations

import re
from typing import NamedTuple, Optional, Tuple

CHANNEL_COUNT = 80
CHANNEL_MIN = 0
CHANNEL_MAX = CHANNEL_COUNT - 1


class ChannelGroup(NamedTuple):
    name: str
    first_id: int
    last_id: int
    # Path for a 1-based index within the group; None for single-fader groups
    template: Optional[str]
    fixed_path: str = ""


GROUPS: Tuple[ChannelGroup, ...] = (
    ChannelGroup("channel", 0, 31, "/ch/{:02d}"),
    ChannelGroup("aux", 32, 39, "/auxin/{:02d}"),
    ChannelGroup("fx", 40, 47, "/fxrtn/{:02d}"),
    ChannelGroup("bus", 48, 63, "/bus/{:02d}"),
    ChannelGroup("matrix", 64, 69, "/mtx/{:02d}"),
    ChannelGroup("mains", 70, 70, None, "/main/st"),
    ChannelGroup("mono", 71, 71, None, "/main/m"),
    ChannelGroup("dca", 72, 79, "/dca/{:d}"),
)

DCA_GROUP = "dca"

# "ch5", "dca 3", "bus-12", "mains"
_LABEL_PATTERN = re.compile(r"^\s*([a-z]+)[\s\-_]*(\d*)\s*$")
_LABEL_ALIASES = {
    "ch": "channel",
    "chan": "channel",
    "auxin": "aux",
    "fxrtn": "fx",
    "mtx": "matrix",
    "main": "mains",
    "st": "mains",
    "m": "mono",
}


def is_valid_channel(channel_id: object) -> bool:
    """Return True for an int channel ID in 0-79."""
    return (
        isinstance(channel_id, int)
        and not isinstance(channel_id, bool)
        and CHANNEL_MIN <= channel_id <= CHANNEL_MAX
    )


def group_for(channel_id: int) -> Optional[ChannelGroup]:
    if not is_valid_channel(channel_id):
        return None
    for group in GROUPS:
        if group.first_id <= channel_id <= group.last_id:
            return group
    return None


def channel_path(channel_id: int) -> str:
    """
    Return the path prefix for a channel ID, e.g. ``/ch/05``.

    Not a complete console command. Empty string for an invalid ID.
    """
    group = group_for(channel_id)
    if group is None:
        return ""
    if group.template is None:
        return group.fixed_path
    return group.template.format(channel_id - group.first_id + 1)


def fader_path(channel_id: int) -> str:
    """Fader control path, e.g. ``/ch/01/mix/fader`` or ``/dca/3/fader``."""
    path = channel_path(channel_id)
    if not path:
        return ""
    if group_for(channel_id).name == DCA_GROUP:
        return f"{path}/fader"
    return f"{path}/mix/fader"


def name_path(channel_id: int) -> str:
    """Scribble-strip name path, e.g. ``/ch/01/config/name``."""
    path = channel_path(channel_id)
    if not path:
        return ""
    return f"{path}/config/name"


def group_index(channel_id: int) -> Tuple[str, int]:
    """Return (group name, 1-based index within group) for a valid ID."""
    group = group_for(channel_id)
    if group is None:
        raise ValueError(f"invalid channel id {channel_id!r}")
    return group.name, channel_id - group.first_id + 1


def channel_id_for(group_name: str, index: int = 1) -> int:
    """Inverse of ``group_index``."""
    for group in GROUPS:
        if group.name == group_name:
            channel_id = group.first_id + index - 1
            if not group.first_id <= channel_id <= group.last_id:
                raise ValueError(f"{group_name} has no index {index}")
            return channel_id
    raise ValueError(f"unknown channel group {group_name!r}")


def channel_label(channel_id: int) -> str:
    name, index = group_index(channel_id)
    return f"{name} {index}"


def parse_channel(text: str) -> int:
    """
    Parse a channel reference typed by a user.

    Accepts a raw channel ID ("42") or a group label with a 1-based index
    ("ch5", "dca 3", "bus-12"); single-fader groups need no index ("mains").
    """
    text = text.strip().lower()
    if text.isdigit():
        channel_id = int(text)
        if not is_valid_channel(channel_id):
            raise ValueError(f"channel id out of range: {channel_id}")
        return channel_id

    match = _LABEL_PATTERN.match(text)
    if not match:
        raise ValueError(f"cannot parse channel {text!r}")
    name = _LABEL_ALIASES.get(match.group(1), match.group(1))
    index = int(match.group(2)) if match.group(2) else 1
    return channel_id_for(name, index)
