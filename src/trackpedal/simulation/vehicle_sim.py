"""Bicycle telemetry simulator.
Ticks the motion model, gates the samples per channel and streams them to the
relay over a WebSocket as `bike_*` events. Operator commands are read from
stdin; a lost relay connection is retried while the bike keeps riding.
"""
import argparse
import asyncio
import logging
import time

import websockets

from trackpedal import config
from trackpedal.relay.transport import encode_frame
from trackpedal.simulation.commands import read_commands
from trackpedal.simulation.emitter import ChangeGatedEmitter, TelemetryEvent, Tier
from trackpedal.simulation.motion import MotionSimulator

logger = logging.getLogger(__name__)

PLAN_PRICES = {Tier.BASIC: 9, Tier.PRO: 19}


def _now_ms() -> int:
    return int(time.time() * 1000)


class SimulatorSession:
    """The emitter and outbox for one relay connection.

    Frames go through a queue so emission stays synchronous within a tick
    while the socket writes happen in a separate task, in order.
    """

    def __init__(self, simulator: MotionSimulator, tier: Tier = Tier.DEMO):
        self.simulator = simulator
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.emitter = ChangeGatedEmitter(self._enqueue_event, tier=tier)
        simulator.on_snapshot = self.emitter.on_snapshot

    def _enqueue_event(self, event: TelemetryEvent):
        self.outbox.put_nowait(encode_frame(event.event_name, event.wire_payload()))

    def purchase_plan(self, tier: Tier, user_id=None):
        """Announce a plan choice to the relay and open its channels."""
        tier = Tier(tier)
        plan = tier.value.capitalize()
        self.outbox.put_nowait(
            encode_frame("plan_selected", {"plan": plan, "price": PLAN_PRICES[tier], "timestamp": _now_ms()})
        )
        self.outbox.put_nowait(
            encode_frame("plan_purchased", {"plan": plan, "userId": user_id, "timestamp": _now_ms()})
        )
        self.emitter.set_tier(tier)

    def close(self):
        if self.simulator.on_snapshot == self.emitter.on_snapshot:
            self.simulator.on_snapshot = None

    async def pump(self, websocket):
        while True:
            frame = await self.outbox.get()
            await websocket.send(frame)


async def stream_to_relay(
    simulator: MotionSimulator,
    url: str,
    tier=None,
    reconnect_delay: float = config.RECONNECT_DELAY_SEC,
    max_reconnect_delay: float = config.RECONNECT_MAX_DELAY_SEC,
):
    """Keep a relay connection open, with a fresh session per connection."""
    delay = reconnect_delay
    while True:
        session = SimulatorSession(simulator)
        try:
            async with websockets.connect(url) as websocket:
                logger.info("Connected to relay %s", url)
                delay = reconnect_delay
                if tier is not None:
                    session.purchase_plan(tier, user_id=str(websocket.id))
                await session.pump(websocket)
        except websockets.ConnectionClosed as exc:
            logger.warning("Relay connection closed: %s", exc)
        except (OSError, asyncio.TimeoutError, websockets.InvalidHandshake) as exc:
            logger.warning("Relay %s unreachable: %s", url, exc)
        finally:
            session.close()
        logger.info("Reconnecting in %.1fs", delay)
        await asyncio.sleep(delay)
        delay = min(delay * 2, max_reconnect_delay)


async def run(
    url: str,
    tier,
    speed_kmh: float,
    torch: bool,
    duration=None,
    commands: bool = False,
    reconnect_delay: float = config.RECONNECT_DELAY_SEC,
):
    simulator = MotionSimulator(
        initial_speed_kmh=speed_kmh,
        tick_interval=config.TICK_MS / 1000,
        drift_interval=config.DRIFT_INTERVAL_SEC,
        max_speed_kmh=config.MAX_SPEED_KMH,
    )
    simulator.set_torch(torch)
    simulator.attach()

    tasks = {asyncio.ensure_future(stream_to_relay(simulator, url, tier, reconnect_delay))}
    if commands:
        tasks.add(asyncio.ensure_future(read_commands(simulator)))
    try:
        if duration is None:
            await asyncio.gather(*tasks)
        else:
            await asyncio.wait(tasks, timeout=duration)
    finally:
        simulator.stop()
        simulator.detach()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Simulate a bicycle and stream its telemetry")
    parser.add_argument("--url", default=config.RELAY_URL, help="relay WebSocket URL")
    parser.add_argument("--plan", choices=[Tier.BASIC.value, Tier.PRO.value], help="purchase a plan on connect")
    parser.add_argument("--speed", type=float, default=config.INITIAL_SPEED_KMH, help="km/h")
    parser.add_argument("--torch", action="store_true", help="start with the torch on")
    parser.add_argument("--duration", type=float, help="seconds to run (default: forever)")
    parser.add_argument("--no-commands", action="store_true", help="do not read operator commands from stdin")
    args = parser.parse_args(argv)
    config.configure_logging()
    try:
        asyncio.run(
            run(args.url, args.plan, args.speed, args.torch, args.duration, commands=not args.no_commands)
        )
    except KeyboardInterrupt:
        logger.info("Simulator stopped by user")


if __name__ == "__main__":
    main()
