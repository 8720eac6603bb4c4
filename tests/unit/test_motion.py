import math
import threading
from typing import List, Optional

import pytest

from x32remote.core.exceptions import (
    FadeInterruptedError,
    FadeTransmissionError,
    FaderInMotionError,
    InvalidLevelError,
    NotConnectedError,
    ProtocolError,
    TransportError,
    TransportTimeoutError,
)
from x32remote.mixer.fader import Fader
from x32remote.mixer.motion import MotionController, plan_fade, query_level, to_units
from x32remote.osc.message import Float32, Message


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeConsole:
    """Answers fader queries from a list of levels and records sends."""

    def __init__(self, levels=(0.5,), fail_queries: bool = False) -> None:
        self.levels = list(levels)
        self.fail_queries = fail_queries
        self.sent: List[Message] = []
        self.send_hook = None

    def inquire(self, message: Message) -> Message:
        if self.fail_queries:
            raise TransportTimeoutError("receive", 4.0)
        level = self.levels.pop(0) if len(self.levels) > 1 else self.levels[0]
        return Message(message.address).add_float(level)

    def send(self, message: Message) -> None:
        if self.send_hook is not None:
            self.send_hook(len(self.sent), message)
        self.sent.append(message)


def _controller(clock: Optional[FakeClock] = None, **kwargs) -> MotionController:
    clock = clock or FakeClock()
    return MotionController(clock=clock, sleep=clock.sleep, **kwargs)


def test_to_units_rounds() -> None:
    assert to_units(0.5, 1024) == 512
    assert to_units(1.0, 1024) == 1024
    assert to_units(0.0004, 1024) == 0

    for bad in (-0.1, 1.5, math.nan, math.inf):
        with pytest.raises(InvalidLevelError):
            to_units(bad, 1024)


def test_plan_excludes_stop_unit() -> None:
    plan = plan_fade(0, 0.25, 0.5, 1.0, 8)

    assert [m.values[0] for m in plan.messages] == [0.25, 0.375]
    assert plan.distance == 2
    assert plan.interval_s == pytest.approx(0.5)


def test_fade_down_sends_one_message_per_unit() -> None:
    clock = FakeClock()
    console = FakeConsole()
    fader = Fader(0)

    sent = _controller(clock).make_fade(console, fader, 0.5, 0.0, 2.0, 1024)

    assert sent == 512
    assert len(console.sent) == 512
    assert {m.address for m in console.sent} == {"/ch/01/mix/fader"}
    assert console.sent[0].values == [0.5]
    assert console.sent[-1].values == [1 / 1024]
    assert all(s == pytest.approx(2.0 / 512) for s in clock.sleeps)
    assert sum(clock.sleeps) == pytest.approx(2.0)
    assert fader.level == 1 / 1024
    assert not fader.active


def test_fade_with_equal_start_and_stop_sends_nothing() -> None:
    fader = Fader(3)

    assert _controller().make_fade(None, fader, 0.4, 0.4, 5.0, 1024) == 0
    assert not fader.active


def test_fade_without_connection() -> None:
    with pytest.raises(NotConnectedError):
        _controller().make_fade(None, Fader(0), 0.0, 1.0, 1.0, 16)


def test_slow_sends_do_not_stretch_the_fade() -> None:
    clock = FakeClock()
    console = FakeConsole()

    def slow_send(index: int, message: Message) -> None:
        clock.now += 0.5

    console.send_hook = slow_send
    _controller(clock).make_fade(console, Fader(0), 0.0, 0.5, 1.0, 8)

    # Each send already overran its 0.25 s slot
    assert clock.sleeps == []


def test_fade_interrupted_after_third_step() -> None:
    console = FakeConsole()
    fader = Fader(10)

    def cancel_after_three(index: int, message: Message) -> None:
        if index == 2:
            fader.cancel()

    console.send_hook = cancel_after_three

    with pytest.raises(FadeInterruptedError) as info:
        _controller().make_fade(console, fader, 0.0, 1.0, 1.0, 10)

    assert info.value.steps_sent == 3
    assert len(console.sent) == 3
    assert fader.level == Float32(0.2).value
    assert not fader.active


def test_fade_aborts_after_ten_consecutive_failures() -> None:
    console = FakeConsole()
    fader = Fader(0)

    def fail(index: int, message: Message) -> None:
        raise TransportError("send failed")

    console.send_hook = fail

    with pytest.raises(FadeTransmissionError) as info:
        _controller().make_fade(console, fader, 0.0, 1.0, 1.0, 1024)

    assert info.value.failures == 10
    assert str(info.value) == "too many failures sending message"
    assert not fader.active
    assert fader.level == -1.0


def test_failures_below_limit_do_not_abort() -> None:
    console = FakeConsole()
    calls = {"n": 0}

    def flaky(index: int, message: Message) -> None:
        calls["n"] += 1
        if calls["n"] <= 9:
            raise TransportError("send failed")

    console.send_hook = flaky
    sent = _controller().make_fade(console, Fader(0), 0.0, 0.2, 1.0, 100)

    assert sent == 11


def test_second_fade_on_active_fader_is_rejected() -> None:
    fader = Fader(0)
    token = fader.claim()

    with pytest.raises(FaderInMotionError):
        _controller().make_fade(FakeConsole(), fader, 0.0, 1.0, 1.0, 16)

    assert fader.holds(token)


def test_motion_detection() -> None:
    clock = FakeClock()
    controller = _controller(clock, sample_interval_s=0.1)

    assert not controller.is_in_motion(FakeConsole([0.5, 0.5]), Fader(0))
    assert controller.is_in_motion(FakeConsole([0.5, 0.6]), Fader(0))
    assert controller.is_in_motion(FakeConsole(fail_queries=True), Fader(0))
    assert clock.sleeps == [0.1, 0.1]


def test_fade_to_refuses_moving_fader() -> None:
    console = FakeConsole([0.5, 0.6])

    with pytest.raises(FaderInMotionError):
        _controller().fade_to(console, Fader(0), 0.0, 1.0, 1024)

    assert console.sent == []


def test_fade_to_starts_from_live_level() -> None:
    console = FakeConsole([0.25])

    sent = _controller().fade_to(console, Fader(0), 0.5, 1.0, 8)

    assert sent == 2
    assert [m.values[0] for m in console.sent] == [0.25, 0.375]


def test_fade_to_validates_target_first() -> None:
    console = FakeConsole(fail_queries=True)

    with pytest.raises(InvalidLevelError):
        _controller().fade_to(console, Fader(0), 2.0, 1.0, 8)


def test_query_level_checks_reply() -> None:
    fader = Fader(4)

    class WrongAddress(FakeConsole):
        def inquire(self, message: Message) -> Message:
            return Message("/ch/06/mix/fader").add_float(0.3)

    class NoFloat(FakeConsole):
        def inquire(self, message: Message) -> Message:
            return Message(message.address).add_string("0.3")

    with pytest.raises(ProtocolError):
        query_level(WrongAddress(), fader)
    with pytest.raises(ProtocolError):
        query_level(NoFloat(), fader)
    with pytest.raises(NotConnectedError):
        query_level(None, fader)

    assert query_level(FakeConsole([0.75]), fader) == 0.75
    assert fader.level == 0.75


def test_active_flag_has_one_owner_under_contention() -> None:
    fader = Fader(0)
    holders = {"now": 0, "max": 0}
    counter_lock = threading.Lock()

    def worker() -> None:
        for _ in range(2000):
            token = fader.claim()
            if token is None:
                fader.level
                continue
            with counter_lock:
                holders["now"] += 1
                holders["max"] = max(holders["max"], holders["now"])
            fader.set_level(0.5)
            with counter_lock:
                holders["now"] -= 1
            fader.release(token)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert holders["max"] == 1
    assert not fader.active
