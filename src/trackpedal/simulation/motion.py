"""Bicycle motion model.

Heading wanders smoothly towards a drift target that is resampled on its own
timer, with a little per-tick wobble on top. Position is integrated from the
operator-set speed; battery drains with distance travelled.
"""
import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

logger = logging.getLogger(__name__)

BATTERY_DROP_PER_METER = 0.001  # percent, ~10% per 10 km
TYRE_MIN_PSI = 40.0
TYRE_MAX_PSI = 120.0
TYRE_STEP_PSI = 2.0
EASE_SECONDS = 3.0
MAX_DT = 1.0


def wrap_deg(deg: float) -> float:
    wrapped = math.fmod(deg, 360.0)
    if wrapped < 0:
        wrapped += 360.0
    # a tiny negative remainder plus 360 rounds up to 360
    if wrapped >= 360.0:
        wrapped = 0.0
    return wrapped


def ease_in_out_cubic(t: float) -> float:
    if t < 0.5:
        return 4 * t * t * t
    return 1 - math.pow(-2 * t + 2, 3) / 2


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0


@dataclass
class SimulationState:
    position: Position = field(default_factory=Position)
    heading_deg: float = 0.0  # 0 = east
    speed_kmh: float = 0.0
    battery_level_pct: float = 100.0
    distance_since_full_battery_km: float = 0.0
    tyre_pressure_psi: float = 85.0
    torch_on: bool = False
    running: bool = False

    @property
    def speed_mps(self) -> float:
        return self.speed_kmh * 1000 / 3600

    def snapshot(self) -> "SimulationState":
        """Independent copy handed to listeners."""
        return replace(self, position=replace(self.position))


@dataclass
class DriftTarget:
    target_deg: float = 0.0
    ease_progress: float = 0.0

    def resample(self, rng: random.Random, max_deg: float):
        self.target_deg = rng.uniform(-max_deg, max_deg)
        self.ease_progress = 0.0

    def advance(self, dt: float) -> float:
        """Move the ease forward by ``dt`` and return the drift rate in deg/s."""
        self.ease_progress = min(1.0, self.ease_progress + dt / EASE_SECONDS)
        return self.target_deg * ease_in_out_cubic(self.ease_progress)


SnapshotListener = Callable[[SimulationState], None]


class MotionSimulator:
    """Owns a single SimulationState and advances it on an asyncio timer.

    ``tick`` is pure synchronous integration and can be driven directly;
    ``attach`` hooks the tick and drift timers onto an event loop.
    """

    def __init__(
        self,
        initial_speed_kmh: float = 18.0,
        tick_interval: float = 0.25,
        drift_interval: float = 4.0,
        max_speed_kmh: float = 50.0,
        max_drift_deg: float = 8.0,
        noise_amplitude: float = 0.4,
        auto_start: bool = True,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        on_snapshot: Optional[SnapshotListener] = None,
    ):
        self.max_speed_kmh = max_speed_kmh
        self.state = SimulationState(
            speed_kmh=_clamp(initial_speed_kmh, 0.0, max_speed_kmh),
            running=auto_start,
        )
        self.drift = DriftTarget()
        self.tick_interval = tick_interval
        self.drift_interval = drift_interval
        self.max_drift_deg = max_drift_deg
        self.noise_amplitude = noise_amplitude
        self.on_snapshot = on_snapshot
        self._rng = rng or random.Random()
        self._clock = clock
        self._last_tick = clock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tick_handle: Optional[asyncio.TimerHandle] = None
        self._drift_handle: Optional[asyncio.TimerHandle] = None

    # -- integration -------------------------------------------------------

    def tick(self, dt: float) -> SimulationState:
        """Advance the state by ``dt`` seconds and notify the listener."""
        dt = _clamp(dt, 0.0, MAX_DT)
        state = self.state

        drift_rate = self.drift.advance(dt)
        noise = (self._rng.random() - 0.5) * 2 * self.noise_amplitude
        state.heading_deg = wrap_deg(state.heading_deg + drift_rate * dt + noise * dt)

        distance = state.speed_mps * dt  # meters
        rad = math.radians(state.heading_deg)
        state.position.x += math.cos(rad) * distance
        state.position.y += math.sin(rad) * distance

        state.battery_level_pct = _clamp(
            state.battery_level_pct - distance * BATTERY_DROP_PER_METER, 0.0, 100.0
        )
        state.distance_since_full_battery_km += distance / 1000

        self._notify()
        return state

    def step(self):
        """Tick with the wall time elapsed since the previous tick."""
        now = self._clock()
        dt = now - self._last_tick
        self._last_tick = now
        return self.tick(dt)

    def resample_drift(self):
        self.drift.resample(self._rng, self.max_drift_deg)

    def _notify(self):
        if self.on_snapshot is not None:
            self.on_snapshot(self.state.snapshot())

    # -- operator commands -------------------------------------------------

    def set_speed(self, speed_kmh: float):
        self.state.speed_kmh = _clamp(float(speed_kmh), 0.0, self.max_speed_kmh)

    def set_torch(self, on: bool):
        self.state.torch_on = bool(on)

    def toggle_torch(self):
        self.state.torch_on = not self.state.torch_on

    def adjust_tyre_pressure(self, delta_psi: float):
        self.state.tyre_pressure_psi = _clamp(
            self.state.tyre_pressure_psi + delta_psi, TYRE_MIN_PSI, TYRE_MAX_PSI
        )

    def pump_tyre(self):
        self.adjust_tyre_pressure(TYRE_STEP_PSI)

    def deflate_tyre(self):
        self.adjust_tyre_pressure(-TYRE_STEP_PSI)

    def set_tyre_pressure(self, psi):
        try:
            value = float(psi)
        except (TypeError, ValueError):
            value = 0.0
        if math.isnan(value):
            value = 0.0
        self.state.tyre_pressure_psi = _clamp(value, TYRE_MIN_PSI, TYRE_MAX_PSI)

    def reset_battery(self):
        self.state.battery_level_pct = 100.0
        self.state.distance_since_full_battery_km = 0.0

    def reset(self):
        """Back to the origin; battery, tyre and torch are left alone."""
        self.state.position = Position()
        self.state.heading_deg = 0.0

    def start(self):
        if self.state.running:
            return
        self.state.running = True
        self._last_tick = self._clock()
        logger.info("Simulation started")
        self._notify()
        if self._loop is not None:
            self._schedule_tick()

    def stop(self):
        if not self.state.running:
            return
        self.state.running = False
        self._cancel_tick()
        logger.info("Simulation stopped")
        self._notify()

    # -- scheduling --------------------------------------------------------

    def attach(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Start the drift timer and, if running, the tick timer on ``loop``."""
        self._cancel_tick()
        if self._drift_handle is not None:
            self._drift_handle.cancel()
            self._drift_handle = None
        self._loop = loop or asyncio.get_running_loop()
        self._last_tick = self._clock()
        self._on_drift_timer()
        if self.state.running:
            self._schedule_tick()

    def detach(self):
        self._cancel_tick()
        if self._drift_handle is not None:
            self._drift_handle.cancel()
            self._drift_handle = None
        self._loop = None

    @property
    def attached(self) -> bool:
        return self._loop is not None

    def _schedule_tick(self):
        self._cancel_tick()
        self._tick_handle = self._loop.call_later(self.tick_interval, self._on_tick_timer)

    def _cancel_tick(self):
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _on_tick_timer(self):
        self._tick_handle = None
        if not self.state.running or self._loop is None:
            return
        self.step()
        # the listener may have stopped or detached us
        if self.state.running and self._loop is not None:
            self._schedule_tick()

    def _on_drift_timer(self):
        self.resample_drift()
        self._drift_handle = self._loop.call_later(self.drift_interval, self._on_drift_timer)
