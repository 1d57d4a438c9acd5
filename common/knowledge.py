# common/knowledge.py
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from influxdb_client import Point, InfluxDBClient
from influxdb_client.client.write_api import SYNCHRONOUS

from common.influx_utils import create_influx_client
from common.config import (
    SENSOR_MEASUREMENT,
    ACTUATOR_MEASUREMENT,
    EVENT_MEASUREMENT,
    FEEDING_MEASUREMENT,
    WATER_MEASUREMENT,
    HISTORY_MEASUREMENT,
    INFLUXDB_BUCKET,
    INFLUXDB_ORG,
    FARM_ID,
    ZONE_ID,
)
from common.models import AnalyticsRecord, Event, SensorSnapshot

STREAM_MEASUREMENTS = {
    "feedingLogs": FEEDING_MEASUREMENT,
    "waterLogs": WATER_MEASUREMENT,
    "history": HISTORY_MEASUREMENT,
}

SNAPSHOT_SENSOR_TYPES = {
    "temperature_c": "temperature",
    "humidity_pct": "humidity",
    "food_level_pct": "food_level",
    "water_main_pct": "water_level_main",
    "water_drinker_pct": "water_level_drinker",
}


class KnowledgeStore:
    """
    Knowledge layer that abstracts access to InfluxDB.

    - Writers: log_snapshot(), log_event(), log_analytics(), log_actuator_command()

    The controller and the actuator drivers talk to this instead of using
    InfluxDB directly.
    """

    def __init__(
        self,
        client: Optional[InfluxDBClient] = None,
        farm_id: str = FARM_ID,
        zone_id: str = ZONE_ID,
    ) -> None:
        self._client = client if client is not None else create_influx_client()
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)
        self._farm_id = farm_id
        self._zone_id = zone_id
        self._last_event_at: Optional[datetime] = None

    def _point(self, measurement: str) -> Point:
        return Point(measurement).tag("farm", self._farm_id).tag("zone", self._zone_id)

    def _write(self, record) -> None:
        self._write_api.write(bucket=INFLUXDB_BUCKET, org=INFLUXDB_ORG, record=record)

    def log_snapshot(self, snapshot: SensorSnapshot) -> None:
        """Store one point per valid sensor field."""
        points = []
        for field_name, sensor_type in SNAPSHOT_SENSOR_TYPES.items():
            if not snapshot.is_valid(field_name):
                continue
            point = (
                self._point(SENSOR_MEASUREMENT)
                .tag("type", sensor_type)
                .field("value", float(getattr(snapshot, field_name)))
                .time(snapshot.taken_at)
            )
            points.append(point)
        if points:
            self._write(points)

    def log_event(self, event: Event) -> None:
        """
        Events of one tick share a timestamp; each is nudged 1us past the
        previous one so same-type events land on distinct points.
        """
        when = event.timestamp
        if self._last_event_at is not None and when <= self._last_event_at:
            when = self._last_event_at + timedelta(microseconds=1)
        self._last_event_at = when
        point = (
            self._point(EVENT_MEASUREMENT)
            .tag("type", str(event.kind))
            .field("description", event.description)
            .time(when)
        )
        self._write(point)

    def log_analytics(self, record: AnalyticsRecord) -> None:
        """
        Store a feeding log, water log or history record.
        Booleans and numbers are kept as fields, anything else as a string.
        """
        measurement = STREAM_MEASUREMENTS.get(record.stream, record.stream)
        point = self._point(measurement)
        for k, v in record.fields.items():
            if isinstance(v, bool):
                point = point.field(k, v)
            elif isinstance(v, (int, float)):
                point = point.field(k, float(v))
            else:
                point = point.field(k, str(v))
        self._write(point.time(record.timestamp))

    def log_actuator_command(
        self,
        actuator: str,
        state_str: str,
        numeric_fields: Optional[Dict[str, float]] = None,
        payload: Optional[str] = None,
    ) -> None:
        """
        Store an actuator command + state.

        numeric_fields can hold things like {"on": 1}
        """
        point = self._point(ACTUATOR_MEASUREMENT).tag("actuator", actuator)
        point = point.field("state", state_str)
        if numeric_fields:
            for k, v in numeric_fields.items():
                point = point.field(k, v)

        if payload is not None:
            point = point.field("payload", payload)

        self._write(point)

    def ping(self) -> bool:
        return self._client.ping()

    def close(self) -> None:
        self._write_api.close()
        self._client.close()
