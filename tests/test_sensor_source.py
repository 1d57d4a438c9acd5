from __future__ import annotations

import json

import pytest

from monitor.sensor_source import (
    WATER_DRINKER_ADC,
    WATER_MAIN_ADC,
    MqttSensorSource,
    build_snapshot,
    food_level_from_distance,
    water_level_from_adc,
)

PREFIX = "farm1/coop1/sensors"


@pytest.mark.parametrize("distance, level", [(0.5, 100), (1, 100), (3, 50), (5, 0), (9, 0)])
def test_food_level_from_distance(distance, level) -> None:
    assert food_level_from_distance(distance) == level


def test_water_level_from_adc() -> None:
    assert water_level_from_adc(600, WATER_MAIN_ADC) == 0
    assert water_level_from_adc(2800, WATER_MAIN_ADC) == 100
    assert water_level_from_adc(1700, WATER_MAIN_ADC) == 50
    assert water_level_from_adc(100, WATER_DRINKER_ADC) == 0


def test_build_snapshot_substitutes_sentinels(clock) -> None:
    snapshot = build_snapshot(
        {
            "temperature_c": float("nan"),
            "humidity_pct": 140,
            "food_level_pct": "55",
            "water_main_pct": 120,
            "water_drinker_pct": True,
        },
        clock.now(),
    )
    assert snapshot.faults == frozenset({"temperature_c", "humidity_pct", "water_drinker_pct"})
    assert snapshot.temperature_c == 0
    assert snapshot.food_level_pct == 55
    assert snapshot.water_main_pct == 100
    assert not snapshot.is_valid("temperature_c")
    assert snapshot.is_valid("water_main_pct")


def test_mqtt_source_builds_snapshot(mqtt_client, clock) -> None:
    source = MqttSensorSource(mqtt_client, "farm1", "coop1", clock)
    mqtt_client.deliver(f"{PREFIX}/air", json.dumps({"temperature_c": 29.5, "humidity_pct": 61}))
    mqtt_client.deliver(f"{PREFIX}/feed_level", json.dumps({"distance_cm": 2}))
    mqtt_client.deliver(f"{PREFIX}/water_level", json.dumps({"main_raw": 2800, "drinker_pct": 40}))

    snapshot = source.read()
    assert snapshot.faults == frozenset()
    assert snapshot.temperature_c == 29.5
    assert snapshot.food_level_pct == 75
    assert snapshot.water_main_pct == 100
    assert snapshot.water_drinker_pct == 40
    assert snapshot.taken_at == clock.now()


def test_no_echo_reads_as_empty_hopper(mqtt_client, clock) -> None:
    source = MqttSensorSource(mqtt_client, "farm1", "coop1", clock)
    mqtt_client.deliver(f"{PREFIX}/feed_level", json.dumps({"distance_cm": 0}))
    assert source.read().food_level_pct == 0


def test_missing_and_stale_readings_are_faults(mqtt_client, clock) -> None:
    source = MqttSensorSource(mqtt_client, "farm1", "coop1", clock, max_age_s=30)
    assert source.read().faults == frozenset(
        {"temperature_c", "humidity_pct", "food_level_pct", "water_main_pct", "water_drinker_pct"}
    )

    mqtt_client.deliver(f"{PREFIX}/air", json.dumps({"temperature_c": 25, "humidity_pct": 50}))
    clock.advance(20)
    assert source.read().is_valid("temperature_c")
    clock.advance(11)
    assert not source.read().is_valid("temperature_c")


def test_bad_payloads_are_ignored(mqtt_client, clock) -> None:
    source = MqttSensorSource(mqtt_client, "farm1", "coop1", clock)
    mqtt_client.deliver(f"{PREFIX}/air", "not json")
    mqtt_client.deliver(f"{PREFIX}/air", "[1, 2]")
    mqtt_client.deliver(f"{PREFIX}/co2", json.dumps({"ppm": 800}))
    assert not source.read().is_valid("temperature_c")
