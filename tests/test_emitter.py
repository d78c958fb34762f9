"""Change detection, quantization and plan gating of telemetry channels."""

from __future__ import annotations

import itertools
import math

import pytest

from trackpedal.simulation.emitter import (
    ChangeGatedEmitter,
    TelemetryEvent,
    Tier,
    TierGate,
    tier_grants,
)
from trackpedal.simulation.motion import MotionSimulator, Position, SimulationState

PRO_CHANNELS = {"battery", "batteryDistance", "tyrePressure"}
ALL_CHANNELS = ["gps", "speed", "torch", "battery", "batteryDistance", "tyrePressure"]


def _emitter(tier: Tier = Tier.DEMO) -> tuple[ChangeGatedEmitter, list[TelemetryEvent]]:
    sent: list[TelemetryEvent] = []
    counter = itertools.count(1000)
    emitter = ChangeGatedEmitter(sent.append, tier=tier, clock=lambda: next(counter))
    return emitter, sent


def _state(**overrides) -> SimulationState:
    state = SimulationState(speed_kmh=18.0)
    for name, value in overrides.items():
        setattr(state, name, value)
    return state


def test_first_snapshot_emits_every_channel_in_order() -> None:
    emitter, sent = _emitter()

    emitter.on_snapshot(_state())

    assert [event.channel for event in sent] == ALL_CHANNELS
    assert [event.event_name for event in sent] == [
        "bike_gps",
        "bike_speed",
        "bike_torch",
        "bike_battery",
        "bike_battery_distance",
        "bike_tyre_pressure",
    ]
    assert sent[0].payload == {"x": 0.0, "y": 0.0}
    assert sent[2].payload == {"torchOn": False}


def test_unchanged_snapshot_emits_nothing() -> None:
    emitter, sent = _emitter()
    emitter.on_snapshot(_state())
    sent.clear()

    assert emitter.on_snapshot(_state()) == []
    assert sent == []


def test_changes_below_precision_are_suppressed() -> None:
    emitter, sent = _emitter()
    emitter.on_snapshot(_state())
    sent.clear()

    emitter.on_snapshot(_state(speed_kmh=18.04, battery_level_pct=99.96, tyre_pressure_psi=85.04))
    assert sent == []

    emitter.on_snapshot(_state(speed_kmh=18.26))
    assert [(e.channel, e.payload) for e in sent] == [("speed", {"speed": 18.3})]


def test_gps_compares_both_axes_as_one_key() -> None:
    emitter, sent = _emitter()
    emitter.on_snapshot(_state(position=Position(1.0, 2.0)))
    sent.clear()

    emitter.on_snapshot(_state(position=Position(1.0, 2.01)))
    emitter.on_snapshot(_state(position=Position(1.004, 2.01)))
    emitter.on_snapshot(_state(position=Position(1.01, 2.01)))

    assert [e.payload for e in sent] == [{"x": 1.0, "y": 2.01}, {"x": 1.01, "y": 2.01}]
    assert emitter.channel("gps").last_emitted_value == (1.01, 2.01)


def test_basic_plan_never_emits_pro_channels() -> None:
    emitter, sent = _emitter(Tier.BASIC)

    for step in range(10):
        emitter.on_snapshot(
            _state(
                speed_kmh=10.0 + step,
                battery_level_pct=100.0 - step,
                distance_since_full_battery_km=step * 0.5,
                tyre_pressure_psi=60.0 + step * 2,
            )
        )

    channels = {event.channel for event in sent}
    assert channels == {"gps", "speed", "torch"}
    assert sum(1 for event in sent if event.channel == "speed") == 10


def test_pro_plan_emits_every_changed_channel() -> None:
    emitter, sent = _emitter(Tier.PRO)
    emitter.on_snapshot(_state())
    sent.clear()

    emitter.on_snapshot(
        _state(
            position=Position(3.0, 0.0),
            speed_kmh=20.0,
            torch_on=True,
            battery_level_pct=90.0,
            distance_since_full_battery_km=1.25,
            tyre_pressure_psi=87.0,
        )
    )

    assert [event.channel for event in sent] == ALL_CHANNELS


def test_upgrading_plan_opens_gated_channels() -> None:
    emitter, sent = _emitter(Tier.BASIC)
    emitter.on_snapshot(_state())
    assert not PRO_CHANNELS & {event.channel for event in sent}
    sent.clear()

    emitter.set_tier(Tier.PRO)
    emitter.on_snapshot(_state())

    assert {event.channel for event in sent} == PRO_CHANNELS


@pytest.mark.parametrize(
    "tier, gate, granted",
    [
        (Tier.BASIC, TierGate.ALWAYS, True),
        (Tier.BASIC, TierGate.PRO_ONLY, False),
        (Tier.PRO, TierGate.PRO_ONLY, True),
        (Tier.DEMO, TierGate.PRO_ONLY, True),
    ],
)
def test_tier_grants(tier: Tier, gate: TierGate, granted: bool) -> None:
    assert tier_grants(tier, gate) is granted


def test_non_finite_samples_are_dropped_without_touching_last_value() -> None:
    emitter, sent = _emitter()
    emitter.on_snapshot(_state(position=Position(1.0, 1.0), speed_kmh=12.0))
    sent.clear()

    emitter.on_snapshot(_state(position=Position(math.nan, 1.0), speed_kmh=math.inf))

    assert sent == []
    assert emitter.channel("gps").last_emitted_value == (1.0, 1.0)
    assert emitter.channel("speed").last_emitted_value == 12.0

    emitter.on_snapshot(_state(position=Position(1.0, 1.0), speed_kmh=12.0))
    assert sent == []
    emitter.on_snapshot(_state(position=Position(2.0, 1.0), speed_kmh=12.0))
    assert [e.channel for e in sent] == ["gps"]


def test_last_emitted_value_matches_latest_payload() -> None:
    emitter, sent = _emitter(Tier.PRO)

    for step in range(5):
        emitter.on_snapshot(_state(battery_level_pct=100.0 - step * 0.37, torch_on=bool(step % 2)))

    latest_battery = [e for e in sent if e.channel == "battery"][-1]
    latest_torch = [e for e in sent if e.channel == "torch"][-1]
    assert emitter.channel("battery").last_emitted_value == latest_battery.payload["battery"]
    assert emitter.channel("torch").last_emitted_value is latest_torch.payload["torchOn"]


def test_timestamps_are_assigned_at_emission_and_never_decrease() -> None:
    emitter, sent = _emitter()

    for step in range(4):
        emitter.on_snapshot(_state(speed_kmh=float(step)))

    speed_stamps = [e.timestamp_ms for e in sent if e.channel == "speed"]
    assert speed_stamps == sorted(speed_stamps)
    assert sent[0].wire_payload() == {"x": 0.0, "y": 0.0, "timestamp": sent[0].timestamp_ms}


def test_reset_forgets_last_values() -> None:
    emitter, sent = _emitter()
    emitter.on_snapshot(_state())
    sent.clear()

    emitter.reset()
    emitter.on_snapshot(_state())

    assert len(sent) == len(ALL_CHANNELS)


def test_stationary_bike_sends_position_once() -> None:
    emitter, sent = _emitter()
    sim = MotionSimulator(
        initial_speed_kmh=0,
        max_drift_deg=0.0,
        noise_amplitude=0.0,
        auto_start=False,
        on_snapshot=emitter.on_snapshot,
    )

    sim.tick(0.25)
    sim.tick(0.25)
    sim.tick(0.25)

    assert [e.payload for e in sent if e.event_name == "bike_gps"] == [{"x": 0.0, "y": 0.0}]


def test_moving_bike_streams_position_but_not_static_channels() -> None:
    emitter, sent = _emitter()
    sim = MotionSimulator(
        initial_speed_kmh=18,
        max_drift_deg=0.0,
        noise_amplitude=0.0,
        auto_start=False,
        on_snapshot=emitter.on_snapshot,
    )

    for _ in range(4):
        sim.tick(1.0)

    gps = [e.payload["x"] for e in sent if e.channel == "gps"]
    assert gps == [5.0, 10.0, 15.0, 20.0]
    assert sum(1 for e in sent if e.channel == "speed") == 1
    assert sum(1 for e in sent if e.channel == "tyrePressure") == 1
