from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from paho.mqtt.client import topic_matches_sub

from common.errors import ActuatorCommandFailure, RemoteUnavailable
from common.models import AnalyticsRecord, Event
from common.remote import coerce_bool, coerce_float, coerce_int
from monitor.sensor_source import build_snapshot


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current

    def set(self, when: datetime) -> datetime:
        self.current = when
        return self.current


class FakeDriver:
    """Records commands; `fail_on` / `fail_off` make the matching command raise."""

    def __init__(self, name: str):
        self.name = name
        self.state = False
        self.commands: List[bool] = []
        self.fail_on = False
        self.fail_off = False

    def set_on(self, on: bool) -> None:
        if (on and self.fail_on) or (not on and self.fail_off):
            raise ActuatorCommandFailure(self.name, on, "simulated failure")
        self.commands.append(on)
        self.state = on


class EventRecorder:
    def __init__(self):
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]

    def clear(self) -> None:
        self.events.clear()


class InMemoryControlPlane:
    """RemoteControlPlane backed by a dict; `online = False` simulates a dropped link."""

    def __init__(self):
        self.values: Dict[str, Any] = {}
        self.events: List[Event] = []
        self.analytics: List[AnalyticsRecord] = []
        self.writes: List[tuple] = []
        self.online = True
        # paths whose writes fail while the link is otherwise up
        self.fail_writes = set()

    def _check(self, path: str) -> None:
        if not self.online:
            raise RemoteUnavailable(f"offline: {path}")

    def _get(self, path: str, coerce):
        self._check(path)
        raw = self.values.get(path)
        return None if raw is None else coerce(raw)

    def get_bool(self, path: str) -> Optional[bool]:
        return self._get(path, coerce_bool)

    def get_int(self, path: str) -> Optional[int]:
        return self._get(path, coerce_int)

    def get_float(self, path: str) -> Optional[float]:
        return self._get(path, coerce_float)

    def get_json(self, path: str) -> Optional[Any]:
        self._check(path)
        if path in self.values:
            return self.values[path]
        prefix = f"{path}/"
        children = {k[len(prefix):]: v for k, v in self.values.items() if k.startswith(prefix)}
        return children or None

    def _set(self, path: str, value: Any) -> None:
        self._check(path)
        if path in self.fail_writes:
            raise RemoteUnavailable(f"write rejected: {path}")
        self.values[path] = value
        self.writes.append((path, value))

    def set_bool(self, path: str, value: bool) -> None:
        self._set(path, bool(value))

    def set_int(self, path: str, value: int) -> None:
        self._set(path, int(value))

    def set_float(self, path: str, value: float) -> None:
        self._set(path, float(value))

    def set_str(self, path: str, value: str) -> None:
        self._set(path, str(value))

    def push_event(self, kind: str, description: str, timestamp: datetime) -> None:
        self._check("events")
        self.events.append(Event(kind=kind, description=description, timestamp=timestamp))

    def push_analytics(self, record: AnalyticsRecord) -> None:
        self._check(record.stream)
        self.analytics.append(record)

    def event_kinds(self) -> List[str]:
        return [e.kind for e in self.events]


class FakeMqttClient:
    """The subset of paho's Client used by the adapters."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.rc = 0
        self.published: List[tuple] = []
        self.subscribed: List[str] = []
        self._callbacks: Dict[str, Any] = {}
        self._userdata = {"subscriptions": []}

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self.rc)

    def message_callback_add(self, sub, callback) -> None:
        self._callbacks[sub] = callback

    def user_data_get(self):
        return self._userdata

    def subscribe(self, topic, qos=0):
        self.subscribed.append(topic)

    def deliver(self, topic: str, payload) -> None:
        if isinstance(payload, str):
            payload = payload.encode()
        msg = SimpleNamespace(topic=topic, payload=payload)
        for sub, callback in self._callbacks.items():
            if topic_matches_sub(sub, topic):
                callback(self, self._userdata, msg)


class FakeSensorSource:
    def __init__(self, clock: FakeClock, **readings):
        self._clock = clock
        self.readings: Dict[str, Any] = {
            "temperature_c": 28.0,
            "humidity_pct": 60.0,
            "food_level_pct": 80,
            "water_main_pct": 70,
            "water_drinker_pct": 50,
        }
        self.readings.update(readings)

    def read(self):
        return build_snapshot(self.readings, self._clock.now())


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 7, 30, 0))


@pytest.fixture()
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture()
def remote() -> InMemoryControlPlane:
    return InMemoryControlPlane()


@pytest.fixture()
def mqtt_client() -> FakeMqttClient:
    return FakeMqttClient()


@pytest.fixture()
def drivers() -> Dict[str, FakeDriver]:
    return {name: FakeDriver(name) for name in ("fan", "heat", "pump", "feeder")}
