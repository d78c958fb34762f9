"""JSON event frames exchanged between the simulator host and the relay."""
import json
from typing import Any, Dict, Tuple

# Telemetry events and the payload fields each one carries on the bus
TELEMETRY_FIELDS = {
    "bike_gps": ("x", "y", "timestamp"),
    "bike_speed": ("speed", "timestamp"),
    "bike_torch": ("torchOn", "timestamp"),
    "bike_battery": ("battery", "timestamp"),
    "bike_battery_distance": ("distanceKm", "timestamp"),
    "bike_tyre_pressure": ("psi", "timestamp"),
}

# Accepted on the same connection but never relayed
INFO_EVENTS = frozenset({"bike_data", "plan_selected", "plan_purchased"})


class FrameError(ValueError):
    """Raised for frames that are not ``{"event": str, "data": object}``."""


def encode_frame(event: str, data: Dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": data})


def decode_frame(raw) -> Tuple[str, Dict[str, Any]]:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(frame, dict):
        raise FrameError("frame must be a JSON object")
    event = frame.get("event")
    if not isinstance(event, str) or not event:
        raise FrameError("frame is missing an event name")
    data = frame.get("data", {})
    if not isinstance(data, dict):
        raise FrameError(f"{event}: data must be a JSON object")
    return event, data


def is_telemetry(event: str) -> bool:
    return event in TELEMETRY_FIELDS


def project_payload(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the documented fields of a telemetry event."""
    return {name: data.get(name) for name in TELEMETRY_FIELDS[event]}
