"""WebSocket relay → republishes bike telemetry to the receivers on the bus.
"""
import argparse
import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Set

import websockets

from trackpedal import config
from trackpedal.relay.bus import BusClient, DeliveryPolicy
from trackpedal.relay.transport import (
    INFO_EVENTS,
    FrameError,
    decode_frame,
    is_telemetry,
    project_payload,
)

logger = logging.getLogger(__name__)


class RelayService:
    def __init__(self, bus, receivers: Sequence[str] = (), policy: DeliveryPolicy = DeliveryPolicy.BEST_EFFORT):
        self.bus = bus
        self.receivers = tuple(receivers)
        self.policy = policy
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, connection_id: str, event: str, data: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Handle one inbound event; returns the publish task if one was started."""
        if event in INFO_EVENTS:
            logger.info("%s from %s: %s", event, connection_id, data)
            return None
        if not is_telemetry(event):
            logger.debug("Ignoring unknown event %r from %s", event, connection_id)
            return None

        payload = project_payload(event, data)
        logger.info("%s from %s: %s", event, connection_id, payload)
        if not self.receivers:
            return None

        task = asyncio.get_running_loop().create_task(self._publish(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _publish(self, event: str, payload: Dict[str, Any]):
        try:
            await self.bus.publish(event, self.receivers, payload)
        except Exception as exc:
            # best effort: the sample is dropped
            logger.warning("Failed to publish %s (%s): %s", event, self.policy.value, exc)

    async def handle_connection(self, websocket):
        connection_id = str(websocket.id)
        logger.info("User connected: %s", connection_id)
        try:
            async for message in websocket:
                try:
                    event, data = decode_frame(message)
                except FrameError as exc:
                    logger.warning("Malformed frame from %s: %s", connection_id, exc)
                    continue
                self.dispatch(connection_id, event, data)
        except websockets.ConnectionClosedError as exc:
            logger.info("Connection %s closed with error: %s", connection_id, exc)
        finally:
            logger.info("User disconnected: %s", connection_id)

    async def drain(self):
        """Wait for publishes already handed to the bus."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def serve(self, host: str = config.RELAY_HOST, port: int = config.RELAY_PORT):
        async with websockets.serve(self.handle_connection, host, port):
            logger.info("Relay listening on ws://%s:%s", host, port)
            await asyncio.Future()


async def run(host: str, port: int, receivers: Sequence[str]):
    bus = BusClient()
    bus.connect()
    relay = RelayService(bus, receivers)
    if not receivers:
        logger.warning("No receivers configured; telemetry will not be published")
    try:
        await relay.serve(host, port)
    finally:
        await relay.drain()
        bus.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Relay bike telemetry to the pub/sub bus")
    parser.add_argument("--host", default=config.RELAY_HOST)
    parser.add_argument("--port", type=int, default=config.RELAY_PORT)
    parser.add_argument(
        "--receiver", action="append", dest="receivers",
        help="receiver id (repeatable); defaults to RECEIVER_IDENTIFICATION_NUMBER",
    )
    args = parser.parse_args(argv)
    config.configure_logging()
    receivers = tuple(args.receivers) if args.receivers else config.RECEIVER_IDS
    try:
        asyncio.run(run(args.host, args.port, receivers))
    except KeyboardInterrupt:
        logger.info("Relay stopped by user")


if __name__ == "__main__":
    main()
