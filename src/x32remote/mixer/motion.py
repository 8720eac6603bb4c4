"""
Fader Motion: timed fades and in-motion detection.

A fade is a run of single-float messages to one fader path, one per
resolution unit between the start and stop level, spaced evenly over
the fade duration. Spacing is linear in unit space.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, List

import structlog

from x32remote.core.exceptions import (
    ConsoleError,
    FadeInterruptedError,
    FadeTransmissionError,
    FaderInMotionError,
    InvalidLevelError,
    NotConnectedError,
    ProtocolError,
    TransportError,
)
from x32remote.mixer.addressing import fader_path
from x32remote.mixer.fader import Fader, is_unit_interval
from x32remote.osc.message import Float32, Message

logger = structlog.get_logger()

DEFAULT_SAMPLE_INTERVAL_S = 0.1
# Consecutive send failures that abort a fade
DEFAULT_FAILURE_LIMIT = 10


def to_units(value: float, resolution: int) -> int:
    """Convert a unit-interval level to resolution units."""
    if not is_unit_interval(value):
        raise InvalidLevelError(value)
    return round(value * resolution)


def step_interval(distance: int, duration_s: float) -> float:
    """Delay between steps; zero for an empty fade."""
    if distance == 0:
        return 0.0
    return duration_s / distance


@dataclass
class FadePlan:
    """The precomputed messages and pacing of one fade."""

    channel_id: int
    start_units: int
    stop_units: int
    interval_s: float
    messages: List[Message] = field(default_factory=list)

    @property
    def distance(self) -> int:
        return abs(self.stop_units - self.start_units)


def plan_fade(
    channel_id: int,
    start: float,
    stop: float,
    duration_s: float,
    resolution: int,
) -> FadePlan:
    """
    Build the step messages for a fade from ``start`` to ``stop``.

    Steps run from the start unit (inclusive) towards the stop unit
    (exclusive), one unit at a time.
    """
    start_units = to_units(start, resolution)
    stop_units = to_units(stop, resolution)
    distance = abs(stop_units - start_units)

    path = fader_path(channel_id)
    step = 1 if stop_units > start_units else -1
    messages = []
    for units in range(start_units, stop_units, step):
        message = Message(path).add_float(units / resolution)
        message.encode()
        messages.append(message)

    return FadePlan(
        channel_id=channel_id,
        start_units=start_units,
        stop_units=stop_units,
        interval_s=step_interval(distance, duration_s),
        messages=messages,
    )


def query_level(connection, fader: Fader) -> float:
    """Ask the console for a fader's live level and store it on the fader."""
    if connection is None:
        raise NotConnectedError()
    path = fader_path(fader.channel_id)
    reply = connection.inquire(Message(path))
    if reply.address != path:
        raise ProtocolError(f"expected reply for {path}, got {reply.address}")
    if not reply.arguments or reply.arguments[0].tag != Float32.tag:
        raise ProtocolError(f"could not get fader level from {path}")
    level = reply.arguments[0].value
    fader.set_level(level)
    return level


class MotionController:
    """
    Drives fades and samples fader movement over a connection.

    The connection only needs ``send(message)`` and ``inquire(message)``.
    Clock and sleep are injectable so pacing can be tested without
    waiting in real time.
    """

    def __init__(
        self,
        sample_interval_s: float = DEFAULT_SAMPLE_INTERVAL_S,
        failure_limit: int = DEFAULT_FAILURE_LIMIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sample_interval_s = sample_interval_s
        self.failure_limit = failure_limit
        self._clock = clock
        self._sleep = sleep

    def read_level(self, connection, fader: Fader) -> float:
        return query_level(connection, fader)

    def is_in_motion(self, connection, fader: Fader) -> bool:
        """
        Sample the level twice, ``sample_interval_s`` apart.

        The fader may also be moved by hand on the console, so this is a
        heuristic rather than a lock. A failed sample counts as moving.
        """
        try:
            first = self.read_level(connection, fader)
            self._sleep(self.sample_interval_s)
            second = self.read_level(connection, fader)
        except ConsoleError as e:
            logger.debug(
                "Motion sample failed, assuming fader moves",
                channel=fader.channel_id,
                error=str(e),
            )
            return True
        return first != second

    def fade_to(
        self,
        connection,
        fader: Fader,
        target: float,
        duration_s: float,
        resolution: int,
    ) -> int:
        """Fade from the current live level to ``target``."""
        if not is_unit_interval(target):
            raise InvalidLevelError(target)
        if self.is_in_motion(connection, fader):
            raise FaderInMotionError(fader.channel_id)
        start = self.read_level(connection, fader)
        return self.make_fade(connection, fader, start, target, duration_s, resolution)

    def make_fade(
        self,
        connection,
        fader: Fader,
        start: float,
        stop: float,
        duration_s: float,
        resolution: int,
    ) -> int:
        """
        Send a fade from ``start`` to ``stop`` over ``duration_s``.

        Returns the number of steps sent. The fader is left at the last
        step that went out if the fade is interrupted or aborted.
        """
        plan = plan_fade(fader.channel_id, start, stop, duration_s, resolution)
        if not plan.messages:
            return 0
        if connection is None:
            raise NotConnectedError()

        token = fader.claim()
        if token is None:
            raise FaderInMotionError(fader.channel_id)

        logger.debug(
            "Fade started",
            channel=fader.channel_id,
            steps=len(plan.messages),
            interval_ms=plan.interval_s * 1000,
        )
        try:
            return self._run(connection, fader, token, plan)
        finally:
            fader.release(token)

    def _run(self, connection, fader: Fader, token: int, plan: FadePlan) -> int:
        failures = 0
        sent = 0
        deadline = self._clock()

        for message in plan.messages:
            if not fader.holds(token):
                logger.info("Fade interrupted", channel=fader.channel_id, steps_sent=sent)
                raise FadeInterruptedError(fader.channel_id, sent)

            try:
                connection.send(message)
            except TransportError as e:
                failures += 1
                if failures >= self.failure_limit:
                    logger.error(
                        "Fade aborted",
                        channel=fader.channel_id,
                        failures=failures,
                        error=str(e),
                    )
                    raise FadeTransmissionError(fader.channel_id, failures, e) from e
            else:
                failures = 0
                sent += 1
                fader.set_level(message.arguments[0].value)

            # Pace against the schedule so slow sends don't stretch the fade
            deadline += plan.interval_s
            delay = deadline - self._clock()
            if delay > 0:
                self._sleep(delay)

        logger.debug("Fade complete", channel=fader.channel_id, steps_sent=sent)
        return sent
