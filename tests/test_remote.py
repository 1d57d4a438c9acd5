from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest import mock

import pytest

from common.errors import ActuatorCommandFailure, RemoteUnavailable
from common.models import AnalyticsRecord, EventKind
from common.remote import MqttControlPlane, coerce_bool, coerce_int
from executor.actuators import MqttActuatorDriver

BASE = "farm1/coop1/state"


@pytest.fixture()
def plane(mqtt_client) -> MqttControlPlane:
    return MqttControlPlane(mqtt_client, "farm1", "coop1")


def test_subscribes_to_state_tree(mqtt_client, plane) -> None:
    assert mqtt_client.user_data_get()["subscriptions"] == [f"{BASE}/#"]
    assert mqtt_client.subscribed == [f"{BASE}/#"]


def test_mirrors_retained_values(mqtt_client, plane) -> None:
    mqtt_client.deliver(f"{BASE}/controls/feed", "true")
    mqtt_client.deliver(f"{BASE}/waterSettings/flowRate", "120")
    mqtt_client.deliver(f"{BASE}/controls/feedDuration", '"7.5"')

    assert plane.get_bool("controls/feed") is True
    assert plane.get_int("waterSettings/flowRate") == 120
    assert plane.get_float("controls/feedDuration") == 7.5
    assert plane.get_bool("controls/waterFill") is None


def test_empty_payload_deletes_value(mqtt_client, plane) -> None:
    mqtt_client.deliver(f"{BASE}/controls/fan", "true")
    mqtt_client.deliver(f"{BASE}/controls/fan", b"")
    assert plane.get_bool("controls/fan") is None


def test_malformed_values_read_as_absent(mqtt_client, plane) -> None:
    mqtt_client.deliver(f"{BASE}/controls/feed", "{not json")
    mqtt_client.deliver(f"{BASE}/waterSettings/flowRate", '"fast"')
    assert plane.get_bool("controls/feed") is None
    assert plane.get_int("waterSettings/flowRate") is None


def test_streams_are_not_mirrored(mqtt_client, plane) -> None:
    mqtt_client.deliver(f"{BASE}/events/1700000000", json.dumps({"type": "system"}))
    assert plane.get_json("events") is None


def test_get_json_assembles_children(mqtt_client, plane) -> None:
    mqtt_client.deliver(f"{BASE}/feedingSchedule/8", "true")
    mqtt_client.deliver(f"{BASE}/feedingSchedule/18", "false")
    assert plane.get_json("feedingSchedule") == {"8": True, "18": False}


def test_reads_fail_while_disconnected(mqtt_client, plane) -> None:
    mqtt_client.deliver(f"{BASE}/controls/feed", "true")
    mqtt_client.connected = False
    with pytest.raises(RemoteUnavailable):
        plane.get_bool("controls/feed")


def test_set_publishes_retained_and_writes_through(mqtt_client, plane) -> None:
    plane.set_bool("controls/feed", False)
    assert mqtt_client.published[-1] == (f"{BASE}/controls/feed", "false", 1, True)
    assert plane.get_bool("controls/feed") is False

    mqtt_client.rc = 4
    with pytest.raises(RemoteUnavailable):
        plane.set_int("waterSettings/flowRate", 90)
    assert plane.get_int("waterSettings/flowRate") is None


def test_push_event_publishes_and_stores(mqtt_client) -> None:
    knowledge = mock.Mock()
    plane = MqttControlPlane(mqtt_client, "farm1", "coop1", knowledge)
    when = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    plane.push_event(EventKind.FORCED_STOP, "Watchdog stopped feed dispensing", when)

    topic, payload, qos, retain = mqtt_client.published[-1]
    ts = int(when.timestamp())
    assert topic == f"{BASE}/events/{ts}"
    assert json.loads(payload) == {"timestamp": ts, "type": "forcedStop", "description": "Watchdog stopped feed dispensing"}
    assert retain is False
    stored = knowledge.log_event.call_args[0][0]
    assert stored.kind == "forcedStop"


def test_analytics_still_published_when_store_fails(mqtt_client) -> None:
    knowledge = mock.Mock()
    knowledge.log_analytics.side_effect = OSError("influx down")
    plane = MqttControlPlane(mqtt_client, "farm1", "coop1", knowledge)
    when = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    record = AnalyticsRecord(stream="waterLogs", timestamp=when, fields={"volumeDispensed": 3000.0})

    with pytest.raises(RemoteUnavailable):
        plane.push_analytics(record)
    topic, payload, _, _ = mqtt_client.published[-1]
    assert topic == f"{BASE}/waterLogs/{int(when.timestamp())}"
    assert json.loads(payload)["volumeDispensed"] == 3000.0


def test_coercion() -> None:
    assert coerce_bool("ON") is True
    assert coerce_bool(0) is False
    assert coerce_bool("perhaps") is None
    assert coerce_int("12.0") == 12
    assert coerce_int(True) is None


def test_actuator_driver_publishes_command(mqtt_client) -> None:
    knowledge = mock.Mock()
    driver = MqttActuatorDriver(mqtt_client, "fan", "farm1", "coop1", knowledge)
    driver.set_on(True)

    topic, payload, qos, _ = mqtt_client.published[-1]
    assert topic == "farm1/coop1/cmd/fan"
    assert json.loads(payload) == {"action": "ON"}
    assert qos == 1
    knowledge.log_actuator_command.assert_called_once()


def test_actuator_driver_raises_when_disconnected(mqtt_client) -> None:
    mqtt_client.connected = False
    driver = MqttActuatorDriver(mqtt_client, "pump", "farm1", "coop1")
    with pytest.raises(ActuatorCommandFailure):
        driver.set_on(False)
    assert mqtt_client.published == []
