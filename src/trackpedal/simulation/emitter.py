"""Change-gated telemetry emitter.

Each channel rounds its metric to a fixed precision and forwards an event only
when the rounded value differs from the last one it sent. Channels that belong
to the Pro plan stay silent for Basic subscribers.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from trackpedal.simulation.motion import SimulationState

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    DEMO = "demo"  # nothing purchased yet, everything visible
    BASIC = "basic"
    PRO = "pro"


class TierGate(str, Enum):
    ALWAYS = "always"
    PRO_ONLY = "pro_only"


def tier_grants(tier: Tier, gate: TierGate) -> bool:
    if gate is TierGate.ALWAYS:
        return True
    return tier in (Tier.PRO, Tier.DEMO)


@dataclass(frozen=True)
class TelemetryEvent:
    channel: str
    event_name: str
    payload: Dict[str, Any]
    timestamp_ms: int

    def wire_payload(self) -> Dict[str, Any]:
        return {**self.payload, "timestamp": self.timestamp_ms}


def _rounded(digits: int):
    def quantize(value):
        value = float(value)
        if not math.isfinite(value):
            return None
        return round(value, digits)

    return quantize


def _quantize_gps(position):
    x, y = float(position.x), float(position.y)
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return (round(x, 2), round(y, 2))


@dataclass
class MetricChannel:
    name: str
    event_name: str
    quantization_digits: Optional[int]
    tier_gate: TierGate
    extract: Callable[[SimulationState], Any]
    quantize: Callable[[Any], Any]
    to_payload: Callable[[Any], Dict[str, Any]]
    last_emitted_value: Any = field(default=None)


def default_channels() -> List[MetricChannel]:
    """Fresh channel set; one per emitter so state is never shared."""
    return [
        MetricChannel(
            "gps", "bike_gps", 2, TierGate.ALWAYS,
            lambda s: s.position, _quantize_gps,
            lambda v: {"x": v[0], "y": v[1]},
        ),
        MetricChannel(
            "speed", "bike_speed", 1, TierGate.ALWAYS,
            lambda s: s.speed_kmh, _rounded(1),
            lambda v: {"speed": v},
        ),
        MetricChannel(
            "torch", "bike_torch", None, TierGate.ALWAYS,
            lambda s: s.torch_on, bool,
            lambda v: {"torchOn": v},
        ),
        MetricChannel(
            "battery", "bike_battery", 1, TierGate.PRO_ONLY,
            lambda s: s.battery_level_pct, _rounded(1),
            lambda v: {"battery": v},
        ),
        MetricChannel(
            "batteryDistance", "bike_battery_distance", 2, TierGate.PRO_ONLY,
            lambda s: s.distance_since_full_battery_km, _rounded(2),
            lambda v: {"distanceKm": v},
        ),
        MetricChannel(
            "tyrePressure", "bike_tyre_pressure", 1, TierGate.PRO_ONLY,
            lambda s: s.tyre_pressure_psi, _rounded(1),
            lambda v: {"psi": v},
        ),
    ]


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class ChangeGatedEmitter:
    def __init__(
        self,
        sink: Callable[[TelemetryEvent], None],
        tier: Tier = Tier.DEMO,
        clock: Callable[[], int] = _wall_clock_ms,
        channels: Optional[List[MetricChannel]] = None,
    ):
        self.sink = sink
        self.tier = Tier(tier)
        self._clock = clock
        self.channels = channels if channels is not None else default_channels()

    def channel(self, name: str) -> MetricChannel:
        for channel in self.channels:
            if channel.name == name:
                return channel
        raise KeyError(name)

    def set_tier(self, tier: Tier):
        self.tier = Tier(tier)
        logger.info("Emitter tier set to %s", self.tier.value)

    def reset(self):
        for channel in self.channels:
            channel.last_emitted_value = None

    def on_snapshot(self, state: SimulationState) -> List[TelemetryEvent]:
        """Run every channel against ``state``; returns the events forwarded."""
        emitted = []
        for channel in self.channels:
            event = self._evaluate(channel, state)
            if event is not None:
                self.sink(event)
                emitted.append(event)
        return emitted

    def _evaluate(self, channel: MetricChannel, state: SimulationState):
        try:
            value = channel.quantize(channel.extract(state))
        except (TypeError, ValueError):
            value = None
        if value is None:
            logger.debug("Dropping non-finite %s sample", channel.name)
            return None
        if not tier_grants(self.tier, channel.tier_gate):
            return None
        if value == channel.last_emitted_value:
            return None
        channel.last_emitted_value = value
        return TelemetryEvent(
            channel=channel.name,
            event_name=channel.event_name,
            payload=channel.to_payload(value),
            timestamp_ms=self._clock(),
        )
