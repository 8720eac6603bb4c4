"""
X32 Remote: fades, channel names and fader levels for a Behringer X32
digital mixing console over OSC/UDP.
"""

__version__ = "0.1.0"
__author__ = "X32 Remote Team"

from x32remote.core.config import Settings
from x32remote.core.exceptions import ConsoleError
from x32remote.mixer.console import Mixer

__all__ = [
    "ConsoleError",
    "Mixer",
    "Settings",
    "__version__",
]
