"""Operator line commands for a running simulator.

    speed <km/h>      torch [on|off]     pump / deflate (2 psi)
    tyre <psi>        reset              reset-battery
    start             stop
"""
import asyncio
import logging
import sys

from trackpedal.simulation.motion import MotionSimulator

logger = logging.getLogger(__name__)


class CommandError(ValueError):
    """Unknown command or bad argument."""


def _number(name, args):
    if len(args) != 1:
        raise CommandError(f"{name}: expected one number")
    try:
        return float(args[0])
    except ValueError:
        raise CommandError(f"{name}: {args[0]!r} is not a number") from None


def apply_command(simulator: MotionSimulator, line: str) -> str:
    """Run one command line against ``simulator``; returns the command name."""
    parts = line.split()
    if not parts:
        raise CommandError("empty command")
    name, args = parts[0].lower(), parts[1:]

    if name == "speed":
        simulator.set_speed(_number(name, args))
    elif name == "torch":
        if not args:
            simulator.toggle_torch()
        elif args[0].lower() in ("on", "off"):
            simulator.set_torch(args[0].lower() == "on")
        else:
            raise CommandError(f"torch: expected on or off, got {args[0]!r}")
    elif name == "pump":
        simulator.pump_tyre()
    elif name == "deflate":
        simulator.deflate_tyre()
    elif name == "tyre":
        simulator.set_tyre_pressure(_number(name, args))
    elif name == "reset":
        simulator.reset()
    elif name == "reset-battery":
        simulator.reset_battery()
    elif name == "start":
        simulator.start()
    elif name == "stop":
        simulator.stop()
    else:
        raise CommandError(f"unknown command {name!r}")
    return name


async def _stdin_reader() -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    loop = asyncio.get_running_loop()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def read_commands(simulator: MotionSimulator, reader: asyncio.StreamReader = None):
    """Apply commands line by line until the stream ends (stdin by default)."""
    if reader is None:
        try:
            reader = await _stdin_reader()
        except (ValueError, OSError) as exc:
            logger.warning("Operator commands disabled: %s", exc)
            return
    while True:
        raw = await reader.readline()
        if not raw:
            logger.info("Command input closed")
            return
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        try:
            name = apply_command(simulator, line)
        except CommandError as exc:
            logger.warning("Ignoring command: %s", exc)
            continue
        logger.info("Applied %s", name)
