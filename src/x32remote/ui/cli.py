"""
Command-Line Interface for X32 Remote.

Provides commands for reading console status, naming channels and
moving faders, plus a level monitor and a raw packet sender for
poking at the console by hand.
"""

from __future__ import annotations

import logging
import re
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
import structlog
from pydantic import ValidationError

from x32remote import __version__
from x32remote.core.exceptions import ConsoleError

logger = structlog.get_logger()

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d*)?|\.\d+)\s*(ms|s)?\s*$")


def parse_duration(text: str) -> float:
    """Parse ``2s``, ``500ms`` or a bare number of seconds."""
    match = _DURATION_PATTERN.match(text)
    if not match:
        raise ValueError(f"cannot parse duration {text!r}")
    value = float(match.group(1))
    if match.group(2) == "ms":
        value /= 1000.0
    return value


class ChannelParam(click.ParamType):
    """A channel ID or label such as ``ch5``, ``dca3`` or ``mains``."""

    name = "channel"

    def convert(self, value, param, ctx) -> int:
        if isinstance(value, int):
            return value
        from x32remote.mixer.addressing import parse_channel

        try:
            return parse_channel(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


class DurationParam(click.ParamType):
    name = "duration"

    def convert(self, value, param, ctx) -> float:
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


CHANNEL = ChannelParam()
DURATION = DurationParam()


def _configure_logging(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        raise click.UsageError(f"Unknown log level: {level_name}")
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
    return level


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option("--host", default=None, help="Console IP address")
@click.option("--port", type=int, default=None, help="Console OSC port")
@click.option("--mock", is_flag=True, help="Use the loopback console emulator (no desk)")
@click.pass_context
def cli(
    ctx: click.Context,
    debug: bool,
    config: Optional[str],
    host: Optional[str],
    port: Optional[int],
    mock: bool,
) -> None:
    """
    X32 Remote - fades, names and levels for a Behringer X32 over OSC.

    Channels are given as IDs 0-79 or labels: ch1-ch32, aux1-aux8,
    fx1-fx8, bus1-bus16, mtx1-mtx6, mains, mono, dca1-dca8.
    """
    ctx.ensure_object(dict)

    _configure_logging("DEBUG" if debug else "INFO")

    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config) if config else None
    ctx.obj["host"] = host
    ctx.obj["port"] = port
    ctx.obj["mock"] = mock


def _load_settings(ctx: click.Context):
    from x32remote.core.config import ConnectionConfig, Settings

    try:
        if ctx.obj["config_path"]:
            settings = Settings.from_yaml(ctx.obj["config_path"])
        else:
            settings = Settings()

        overrides = {}
        if ctx.obj["host"]:
            overrides["remote_host"] = ctx.obj["host"]
        if ctx.obj["port"] is not None:
            overrides["remote_port"] = ctx.obj["port"]
        if overrides:
            settings.connection = ConnectionConfig(
                **{**settings.connection.model_dump(), **overrides}
            )
    except ValidationError as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e

    settings.debug = ctx.obj["debug"]
    if not settings.debug:
        _configure_logging(settings.log_level)
    return settings


def _open_mixer(ctx: click.Context, connect: bool = True):
    """Build a Mixer for this invocation; closed when the command ends."""
    from x32remote.core.config import ConnectionConfig
    from x32remote.mixer.console import Mixer

    settings = _load_settings(ctx)

    if ctx.obj["mock"]:
        from x32remote.osc.emulator import ConsoleEmulator

        emulator = ConsoleEmulator().start()
        ctx.call_on_close(emulator.stop)
        settings.connection = ConnectionConfig(
            **{
                **settings.connection.model_dump(),
                "remote_host": emulator.host,
                "remote_port": emulator.port,
                "local_port": 0,
                "monitor_port": 0,
            }
        )

    mixer = Mixer(settings)
    ctx.call_on_close(mixer.close)
    if connect:
        conn = mixer.connect()
        logger.debug("Using connection", local=conn.local_address, remote=conn.remote_address)
    return mixer


@contextmanager
def _console_errors(ctx: click.Context) -> Iterator[None]:
    try:
        yield
    except ConsoleError as e:
        click.echo(f"Error: {e}", err=True)
        if ctx.obj["debug"]:
            raise
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the console's /info status line."""
    with _console_errors(ctx):
        mixer = _open_mixer(ctx)
        conn = mixer.connection
        click.echo(f"Connected {conn.local_address} -> {conn.remote_address}")
        click.echo(mixer.status_line())


@cli.command()
@click.argument("channel", type=CHANNEL)
@click.option("--set", "new_name", default=None, help="Rename the channel")
@click.pass_context
def name(ctx: click.Context, channel: int, new_name: Optional[str]) -> None:
    """Show or set a channel's scribble strip name."""
    from x32remote.mixer.addressing import channel_label

    with _console_errors(ctx):
        mixer = _open_mixer(ctx)
        if new_name is not None:
            mixer.set_name(channel, new_name)
            click.echo(f"{channel_label(channel)} renamed to {new_name!r}")
        else:
            click.echo(f"{channel_label(channel)}: {mixer.get_name(channel)}")


@cli.command()
@click.argument("channel", type=CHANNEL)
@click.option("--set", "value", type=float, default=None, help="Move the fader (0.0-1.0)")
@click.pass_context
def level(ctx: click.Context, channel: int, value: Optional[float]) -> None:
    """Show or set a fader level."""
    with _console_errors(ctx):
        mixer = _open_mixer(ctx)
        if value is not None:
            mixer.set_level(channel, value)
        else:
            mixer.get_level(channel)
        click.echo(mixer.fader(channel).level_message())


def _run_fade(ctx: click.Context, channel: int, target: float, duration: float) -> None:
    from x32remote.mixer.addressing import channel_label

    with _console_errors(ctx):
        mixer = _open_mixer(ctx)
        fader = mixer.fader(channel)
        click.echo(f"Fading {channel_label(channel)} to {target:.2f} over {duration}s...")
        try:
            steps = mixer.fade_to(channel, target, duration)
        except KeyboardInterrupt:
            click.echo("\nFade stopped.")
            return
        click.echo(f"{fader.level_message()} ({steps} steps)")


@cli.command()
@click.argument("channel", type=CHANNEL)
@click.argument("target", type=float)
@click.option("--duration", "-d", type=DURATION, default="2s", help="Fade time, e.g. 2s or 500ms")
@click.pass_context
def fade(ctx: click.Context, channel: int, target: float, duration: float) -> None:
    """Fade a channel from its current level to TARGET."""
    _run_fade(ctx, channel, target, duration)


@cli.command("fade-out")
@click.argument("channel", type=CHANNEL)
@click.option("--duration", "-d", type=DURATION, default="2s", help="Fade time, e.g. 2s or 500ms")
@click.pass_context
def fade_out(ctx: click.Context, channel: int, duration: float) -> None:
    """Fade a channel down to zero."""
    _run_fade(ctx, channel, 0.0, duration)


@cli.command()
@click.argument("channel", type=CHANNEL)
@click.option("--seconds", "-s", default=10.0, help="How long to monitor")
@click.pass_context
def monitor(ctx: click.Context, channel: int, seconds: float) -> None:
    """Follow a fader's level as it changes."""
    with _console_errors(ctx):
        mixer = _open_mixer(ctx, connect=False)
        mixer.select_channel(channel)

        last = {"message": None}

        def show(message: str) -> None:
            if message != last["message"]:
                last["message"] = message
                click.echo(message)

        click.echo("Press Ctrl+C to stop.")
        level_monitor = mixer.monitor_levels(on_update=show)
        try:
            deadline = time.monotonic() + seconds
            while time.monotonic() < deadline and level_monitor.running:
                time.sleep(0.05)
        except KeyboardInterrupt:
            pass
        finally:
            mixer.stop_monitor()

        if last["message"] is None:
            click.echo("Error: no level received from console", err=True)
            sys.exit(1)


@cli.command("send-raw")
@click.argument("text")
@click.option("--reply", is_flag=True, help="Wait for and print one reply")
@click.pass_context
def send_raw(ctx: click.Context, text: str, reply: bool) -> None:
    """
    Send TEXT as a raw datagram, with ~ standing for a null byte.

    Example: x32-remote send-raw "/ch/01/mix/fader~~~~"
    """
    from x32remote.osc.message import format_packet, packet_from_text

    with _console_errors(ctx):
        mixer = _open_mixer(ctx)
        packet = packet_from_text(text)
        mixer.connection.send_raw(packet)
        click.echo(f"Sent {len(packet)} bytes: {format_packet(packet)}")

        if reply:
            message = mixer.connection.receive()
            values = " ".join(repr(value) for value in message.values)
            click.echo(f"{message.address} ,{message.type_tags} {values}".rstrip())


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
