# monitor/sensor_source.py
import json
import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Protocol, Tuple

from common.clock import Clock
from common.errors import SensorFault
from common.models import SensorSnapshot
from common.mqtt_utils import subscribe, topic_base

logger = logging.getLogger(__name__)

TEMP_RANGE_C = (-40.0, 80.0)

# Ultrasonic feed hopper: 1 cm from the sensor is full, 5 cm is empty
FOOD_FULL_CM = 1
FOOD_EMPTY_CM = 5
# Analog water level probes (ADC counts for empty, full)
WATER_MAIN_ADC = (600, 2800)
WATER_DRINKER_ADC = (700, 2400)


class SensorSource(Protocol):
    def read(self) -> SensorSnapshot:
        ...


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _map_range(value: float, in_low: float, in_high: float, out_low: float, out_high: float) -> float:
    return out_low + (value - in_low) * (out_high - out_low) / (in_high - in_low)


def food_level_from_distance(distance_cm: float) -> int:
    """Hopper fill percentage from the ultrasonic distance to the feed surface."""
    d = _clamp(distance_cm, FOOD_FULL_CM, FOOD_EMPTY_CM)
    return int(round(_map_range(d, FOOD_FULL_CM, FOOD_EMPTY_CM, 100, 0)))


def water_level_from_adc(raw: float, calibration: Tuple[int, int]) -> int:
    empty, full = calibration
    return int(round(_map_range(_clamp(raw, empty, full), empty, full, 0, 100)))


def _number(field: str, value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise SensorFault(field, value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise SensorFault(field, value)
    if math.isnan(number) or math.isinf(number):
        raise SensorFault(field, value)
    return number


def _temperature(value: Any) -> float:
    number = _number("temperature_c", value)
    if not TEMP_RANGE_C[0] <= number <= TEMP_RANGE_C[1]:
        raise SensorFault("temperature_c", value)
    return number


def _humidity(value: Any) -> float:
    number = _number("humidity_pct", value)
    if not 0.0 <= number <= 100.0:
        raise SensorFault("humidity_pct", value)
    return number


def _level(field: str, value: Any) -> int:
    return int(round(_clamp(_number(field, value), 0, 100)))


_VALIDATORS = {
    "temperature_c": _temperature,
    "humidity_pct": _humidity,
    "food_level_pct": lambda v: _level("food_level_pct", v),
    "water_main_pct": lambda v: _level("water_main_pct", v),
    "water_drinker_pct": lambda v: _level("water_drinker_pct", v),
}


def build_snapshot(readings: Dict[str, Any], taken_at: datetime) -> SensorSnapshot:
    """
    Validate raw readings into a snapshot. A missing or invalid field is
    replaced by a zero sentinel and listed in `faults`; this never raises.
    """
    values = {}
    faults = set()
    for field, validate in _VALIDATORS.items():
        try:
            values[field] = validate(readings.get(field))
        except SensorFault as e:
            logger.debug("%s; substituting sentinel", e)
            values[field] = 0
            faults.add(field)
    return SensorSnapshot(taken_at=taken_at, faults=frozenset(faults), **values)


class MqttSensorSource:
    """
    Latest sensor values received on "<farm>/<zone>/sensors/+".

    Topics and payloads:
      air          {"temperature_c": .., "humidity_pct": ..}
      feed_level   {"food_level_pct": ..} or {"distance_cm": ..}
      water_level  {"main_pct": .., "drinker_pct": ..} or {"main_raw": .., "drinker_raw": ..}

    Values older than max_age_s are reported as faults.
    """

    def __init__(self, client, farm_id: str, zone_id: str, clock: Clock, max_age_s: float = 30.0):
        self._clock = clock
        self._max_age = timedelta(seconds=max_age_s)
        self._readings: Dict[str, Tuple[Any, datetime]] = {}
        self._lock = threading.Lock()
        self._prefix = f"{topic_base(farm_id, zone_id)}/sensors/"
        subscribe(client, f"{self._prefix}+", self._on_message)

    def _on_message(self, client, userdata, msg):
        try:
            data = json.loads(msg.payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Invalid JSON on %s", msg.topic)
            return
        if not isinstance(data, dict):
            logger.warning("Unexpected payload on %s: %r", msg.topic, data)
            return

        sensor_type = msg.topic[len(self._prefix):]
        self.ingest(sensor_type, data)

    def ingest(self, sensor_type: str, data: Dict[str, Any]) -> None:
        fields: Dict[str, Any] = {}
        if sensor_type == "air":
            fields["temperature_c"] = data.get("temperature_c")
            fields["humidity_pct"] = data.get("humidity_pct")
        elif sensor_type == "feed_level":
            if "distance_cm" in data:
                distance = data.get("distance_cm")
                # 0 means no echo: treat as out of range (empty hopper)
                if isinstance(distance, (int, float)) and not isinstance(distance, bool):
                    fields["food_level_pct"] = food_level_from_distance(distance or FOOD_EMPTY_CM)
                else:
                    fields["food_level_pct"] = distance
            else:
                fields["food_level_pct"] = data.get("food_level_pct")
        elif sensor_type == "water_level":
            fields["water_main_pct"] = self._water(data, "main", WATER_MAIN_ADC)
            fields["water_drinker_pct"] = self._water(data, "drinker", WATER_DRINKER_ADC)
        else:
            logger.warning("Unknown sensor type: %s", sensor_type)
            return

        now = self._clock.now()
        with self._lock:
            for field, value in fields.items():
                self._readings[field] = (value, now)

    @staticmethod
    def _water(data: Dict[str, Any], name: str, calibration: Tuple[int, int]) -> Optional[Any]:
        raw = data.get(f"{name}_raw")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return water_level_from_adc(raw, calibration)
        return data.get(f"{name}_pct")

    def read(self) -> SensorSnapshot:
        now = self._clock.now()
        with self._lock:
            readings = {
                field: value
                for field, (value, received_at) in self._readings.items()
                if now - received_at <= self._max_age
            }
        return build_snapshot(readings, now)
