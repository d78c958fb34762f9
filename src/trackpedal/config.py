"""Environment configuration shared by the simulator, relay and API processes.

Everything is read once at import time; a `.env` file in the working directory
is honoured for local development.
"""
import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _split_ids(raw: str):
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# Bus / receivers
RECEIVER_IDS = _split_ids(os.getenv("RECEIVER_IDENTIFICATION_NUMBER", ""))
MQTT_BROKER = os.getenv("MQTT_BROKER", "localhost")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_TOPIC_PREFIX = os.getenv("MQTT_TOPIC_PREFIX", "trackpedal")
MQTT_CLIENT_ID = os.getenv("ENSYNC_CLIENT_ID", "trackpedal-relay")
MQTT_USERNAME = os.getenv("MQTT_USERNAME", "")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD", "")
MQTT_PUBLISH_TIMEOUT = float(os.getenv("MQTT_PUBLISH_TIMEOUT", "5"))  # seconds

# Transport
RELAY_HOST = os.getenv("RELAY_HOST", "0.0.0.0")
RELAY_PORT = int(os.getenv("RELAY_PORT", "4001"))
RELAY_URL = os.getenv("RELAY_URL", f"ws://localhost:{RELAY_PORT}")

# Simulator
TICK_MS = int(os.getenv("TICK_MS", "250"))
DRIFT_INTERVAL_SEC = float(os.getenv("DRIFT_INTERVAL_SEC", "4"))
INITIAL_SPEED_KMH = float(os.getenv("INITIAL_SPEED_KMH", "18"))
MAX_SPEED_KMH = float(os.getenv("MAX_SPEED_KMH", "50"))
RECONNECT_DELAY_SEC = float(os.getenv("RECONNECT_DELAY_SEC", "1"))
RECONNECT_MAX_DELAY_SEC = float(os.getenv("RECONNECT_MAX_DELAY_SEC", "30"))

# Integration link API
PORT = int(os.getenv("PORT", "4000"))
BASIC_PLAN_KEY = os.getenv("BASIC_PLAN_ENSYNC_INTEGRATION_KEY", "")
PRO_PLAN_KEY = os.getenv("PRO_PLAN_ENSYNC_INTEGRATION_KEY", "")
ENSYNC_INTEGRATION_URL = os.getenv("ENSYNC_INTEGRATION_URL", "")
ENSYNC_EMBED_URL = os.getenv("ENSYNC_EMBED_URL", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )
