import time
from unittest.mock import MagicMock

import pytest

from x32remote.core.config import ConnectionConfig, FadeConfig, Settings
from x32remote.core.exceptions import (
    FadeInterruptedError,
    InvalidChannelError,
    InvalidLevelError,
    InvalidResolutionError,
    NotConnectedError,
)
from x32remote.mixer.console import Mixer
from x32remote.osc.emulator import INFO_FIELDS, ConsoleEmulator
from x32remote.osc.message import Message


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def emulator():
    with ConsoleEmulator() as emu:
        yield emu


@pytest.fixture
def mixer(emulator):
    settings = Settings(
        connection=ConnectionConfig(
            remote_host="127.0.0.1",
            remote_port=emulator.port,
            local_port=0,
            monitor_port=0,
            receive_timeout_s=1.0,
        ),
        fade=FadeConfig(resolution=16, motion_sample_interval_s=0.01),
    )
    m = Mixer(settings)
    m.connect()
    yield m
    m.close()


def test_status_from_info(mixer) -> None:
    assert mixer.get_status() == list(INFO_FIELDS)
    assert mixer.status_line() == "   ".join(INFO_FIELDS)


def test_set_and_get_name(mixer, emulator) -> None:
    mixer.set_name(74, "Drums")

    assert _wait_for(lambda: emulator.channel_name(74) == "Drums")
    assert mixer.get_name(74) == "Drums"


def test_set_level_moves_console_fader(mixer, emulator) -> None:
    mixer.set_level(70, 0.5)

    assert _wait_for(lambda: emulator.fader_level(70) == 0.5)
    assert mixer.fader(70).level == 0.5
    assert mixer.get_level(70) == 0.5


def test_set_level_rejects_out_of_range(mixer) -> None:
    with pytest.raises(InvalidLevelError):
        mixer.set_level(0, 1.2)


def test_fade_out_moves_console_fader(mixer, emulator) -> None:
    emulator.set_fader_level(2, 0.5)

    steps = mixer.fade_out(2, 0.05)

    assert steps == 8
    assert _wait_for(lambda: emulator.fader_level(2) == 1 / 16)
    assert mixer.fader(2).level == 1 / 16
    assert not mixer.fader(2).active


def test_start_fade_returns_future(mixer, emulator) -> None:
    emulator.set_fader_level(5, 0.25)

    future = mixer.start_fade(5, 0.5, 0.05)

    assert future.result(timeout=5.0) == 4


def test_stop_fade_interrupts_background_fade(mixer, emulator) -> None:
    emulator.set_fader_level(6, 0.0)

    future = mixer.start_fade(6, 1.0, 5.0)
    assert _wait_for(lambda: mixer.fader(6).active)
    assert mixer.stop_fade(6)

    with pytest.raises(FadeInterruptedError):
        future.result(timeout=5.0)
    assert not mixer.stop_fade(6)


def test_invalid_channel(mixer) -> None:
    with pytest.raises(InvalidChannelError):
        mixer.fade_to(80, 0.0, 1.0)
    with pytest.raises(InvalidChannelError):
        mixer.get_name(-1)
    with pytest.raises(InvalidChannelError):
        mixer.select_channel(80)


def test_operations_need_connection() -> None:
    m = Mixer(Settings())

    assert not m.connected
    with pytest.raises(NotConnectedError):
        m.get_status()
    with pytest.raises(NotConnectedError):
        m.fade_to(0, 0.0, 1.0)


def test_fader_resolution_parsing() -> None:
    m = Mixer(Settings())

    assert m.fader_resolution == 1024
    assert m.set_fader_resolution(" 256 ") == 256
    for bad in ("abc", "0", "-5", "1.5"):
        with pytest.raises(InvalidResolutionError):
            m.set_fader_resolution(bad)
    assert m.fader_resolution == 256


def test_selected_channel() -> None:
    m = Mixer(Settings())

    assert m.selected_fader().channel_id == 0
    m.select_channel(72)
    assert m.selected_channel == 72
    assert m.selected_fader().group == "dca"


def test_connect_replaces_previous_connection() -> None:
    first, second = MagicMock(), MagicMock()
    dial_fn = MagicMock(side_effect=[first, second])
    m = Mixer(Settings(), dial_fn=dial_fn)

    m.connect()
    m.connect()

    first.close.assert_called_once()
    second.close.assert_not_called()
    assert m.connection is second
    assert dial_fn.call_args[0][:3] == (10023, "192.168.0.64", 10023)
    assert dial_fn.call_args.kwargs["retry"].max_attempts == 5


def test_level_monitor_uses_own_connection(mixer, emulator) -> None:
    emulator.set_fader_level(3, 0.5)
    updates = []

    mixer.select_channel(3)
    mixer.monitor_levels(on_update=updates.append)

    assert _wait_for(mixer.is_monitor_active)
    assert "channel 4 : 0.50" in updates
    assert mixer.monitor.last_message == "channel 4 : 0.50"

    mixer.stop_monitor()
    assert not mixer.monitor.running


def test_monitor_follows_background_fade(mixer, emulator) -> None:
    updates = []
    mixer.select_channel(3)
    mixer.monitor_levels(on_update=updates.append)
    assert _wait_for(mixer.is_monitor_active)

    mixer.set_fader_resolution(256)
    future = mixer.start_fade(3, 1.0, 0.3)

    assert future.result(timeout=5.0) == 256
    assert _wait_for(lambda: mixer.monitor.last_message == "channel 4 : 1.00")
    assert mixer.monitor.get_stats()["errors"] == 0
    assert "channel 4 : 0.00" in updates
    assert emulator.fader_level(3) == 255 / 256

    mixer.stop_monitor()


def test_status_keeps_field_positions() -> None:
    conn = MagicMock()
    conn.inquire.return_value = Message("/info").add_string("V2.05").add_int(3).add_string("X32")
    m = Mixer(Settings(), dial_fn=MagicMock(return_value=conn))
    m.connect()

    assert m.get_status() == ["V2.05", "", "X32"]
    assert m.status_line() == "V2.05      X32"
