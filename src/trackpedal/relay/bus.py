"""Pub/sub bus client: addressed telemetry messages over MQTT."""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, Dict, Sequence

import paho.mqtt.client as mqtt

from trackpedal import config

logger = logging.getLogger(__name__)


class PublishError(RuntimeError):
    """The broker refused or never acknowledged a message."""


class DeliveryPolicy(str, Enum):
    # Failed publishes are logged and dropped, never retried or queued
    BEST_EFFORT = "best_effort"


class BusClient:
    """One long-lived MQTT connection shared by every relay connection.

    Each publish is a single JSON message on ``<prefix>/<event name>``
    listing the receivers it is addressed to.
    """

    def __init__(
        self,
        broker: str = config.MQTT_BROKER,
        port: int = config.MQTT_PORT,
        client_id: str = config.MQTT_CLIENT_ID,
        topic_prefix: str = config.MQTT_TOPIC_PREFIX,
        publish_timeout: float = config.MQTT_PUBLISH_TIMEOUT,
        client=None,
    ):
        self.broker = broker
        self.port = port
        self.topic_prefix = topic_prefix
        self.publish_timeout = publish_timeout
        if client is None:
            client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
            if config.MQTT_USERNAME:
                client.username_pw_set(config.MQTT_USERNAME, config.MQTT_PASSWORD or None)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        self._client = client

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        logger.info("Connected to MQTT broker %s:%s (%s)", self.broker, self.port, reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.warning("Disconnected from MQTT broker (%s)", reason_code)

    def connect(self):
        self._client.connect(self.broker, self.port, keepalive=60)
        self._client.loop_start()

    def close(self):
        self._client.loop_stop()
        self._client.disconnect()

    def topic_for(self, event_name: str) -> str:
        return f"{self.topic_prefix}/{event_name}"

    async def publish(self, event_name: str, receiver_ids: Sequence[str], payload: Dict[str, Any]):
        message = json.dumps(
            {"event": event_name, "receivers": list(receiver_ids), "payload": payload}
        )
        info = self._client.publish(self.topic_for(event_name), message, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"{event_name}: {mqtt.error_string(info.rc)}")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, info.wait_for_publish, self.publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise PublishError(f"{event_name}: {exc}") from exc
        if not info.is_published():
            raise PublishError(f"{event_name}: no broker acknowledgement after {self.publish_timeout}s")
