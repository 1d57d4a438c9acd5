# common/remote.py
import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from common.errors import RemoteUnavailable
from common.knowledge import KnowledgeStore
from common.models import AnalyticsRecord, Event, kind_name
from common.mqtt_utils import subscribe, topic_base

logger = logging.getLogger(__name__)

# Append-only streams are published but never mirrored locally
STREAMS = ("events", "feedingLogs", "waterLogs", "history")

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


class RemoteControlPlane(Protocol):
    def get_bool(self, path: str) -> Optional[bool]: ...
    def get_int(self, path: str) -> Optional[int]: ...
    def get_float(self, path: str) -> Optional[float]: ...
    def get_json(self, path: str) -> Optional[Any]: ...
    def set_bool(self, path: str, value: bool) -> None: ...
    def set_int(self, path: str, value: int) -> None: ...
    def set_float(self, path: str, value: float) -> None: ...
    def set_str(self, path: str, value: str) -> None: ...
    def push_event(self, kind: str, description: str, timestamp: datetime) -> None: ...
    def push_analytics(self, record: AnalyticsRecord) -> None: ...


def coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def coerce_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MqttControlPlane:
    """
    Remote control plane over MQTT retained topics.

    Every semantic path (e.g. "controls/feed") maps to the retained topic
    "<farm>/<zone>/state/<path>". Incoming retained messages are mirrored into a
    local dictionary; reads are served from that mirror while the link is up.
    Writes publish a retained value and update the mirror once the publish was
    queued. Events and analytics are published to "<stream>/<ts>" and, when a
    KnowledgeStore is configured, stored in InfluxDB as well.
    """

    def __init__(self, client, farm_id: str, zone_id: str, knowledge: Optional[KnowledgeStore] = None):
        self._client = client
        self._base = f"{topic_base(farm_id, zone_id)}/state"
        self._knowledge = knowledge
        self._values: Dict[str, Any] = {}
        self._lock = threading.Lock()
        subscribe(client, f"{self._base}/#", self._on_message)

    # ----- MQTT callbacks -----

    def _on_message(self, client, userdata, msg):
        path = msg.topic[len(self._base) + 1:]
        if not path or path.split("/", 1)[0] in STREAMS:
            return

        with self._lock:
            if not msg.payload:
                # an empty retained payload deletes the value
                self._values.pop(path, None)
                return
            try:
                self._values[path] = json.loads(msg.payload.decode())
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning("Invalid JSON on %s", msg.topic)

    # ----- pull -----

    def _get(self, path: str) -> Any:
        if not self._client.is_connected():
            raise RemoteUnavailable(f"MQTT link down, cannot read {path}")
        with self._lock:
            return self._values.get(path)

    def _typed(self, path: str, coerce) -> Any:
        raw = self._get(path)
        if raw is None:
            return None
        value = coerce(raw)
        if value is None:
            logger.warning("Ignoring malformed value %r at %s", raw, path)
        return value

    def get_bool(self, path: str) -> Optional[bool]:
        return self._typed(path, coerce_bool)

    def get_int(self, path: str) -> Optional[int]:
        return self._typed(path, coerce_int)

    def get_float(self, path: str) -> Optional[float]:
        return self._typed(path, coerce_float)

    def get_json(self, path: str) -> Optional[Any]:
        """
        Return the value stored at `path`, or a dict assembled from its children
        (e.g. "feedingSchedule/8" -> {"8": ...}) when only children are present.
        """
        value = self._get(path)
        if value is not None:
            return value
        prefix = f"{path}/"
        with self._lock:
            children = {
                key[len(prefix):]: val
                for key, val in self._values.items()
                if key.startswith(prefix)
            }
        return children or None

    # ----- push -----

    def _publish(self, topic_path: str, value: Any, retain: bool) -> None:
        if not self._client.is_connected():
            raise RemoteUnavailable(f"MQTT link down, cannot write {topic_path}")
        info = self._client.publish(f"{self._base}/{topic_path}", json.dumps(value), qos=1, retain=retain)
        if info.rc != 0:
            raise RemoteUnavailable(f"Publish to {topic_path} failed (rc={info.rc})")

    def _set(self, path: str, value: Any) -> None:
        self._publish(path, value, retain=True)
        with self._lock:
            self._values[path] = value

    def set_bool(self, path: str, value: bool) -> None:
        self._set(path, bool(value))

    def set_int(self, path: str, value: int) -> None:
        self._set(path, int(value))

    def set_float(self, path: str, value: float) -> None:
        self._set(path, float(value))

    def set_str(self, path: str, value: str) -> None:
        self._set(path, str(value))

    def push_event(self, kind: str, description: str, timestamp: datetime) -> None:
        ts = int(timestamp.timestamp())
        payload = {"timestamp": ts, "type": kind_name(kind), "description": description}
        event = Event(kind=kind, description=description, timestamp=timestamp)
        self._publish_and_store(f"events/{ts}", payload, lambda ks: ks.log_event(event))

    def push_analytics(self, record: AnalyticsRecord) -> None:
        ts = int(record.timestamp.timestamp())
        payload = dict(record.fields, timestamp=ts)
        self._publish_and_store(f"{record.stream}/{ts}", payload, lambda ks: ks.log_analytics(record))

    def _publish_and_store(self, topic_path: str, payload: dict, write) -> None:
        failure = None
        if self._knowledge is not None:
            try:
                write(self._knowledge)
            except Exception as e:
                # influxdb-client raises transport and API errors of several types
                failure = e
        self._publish(topic_path, payload, retain=False)
        if failure is not None:
            raise RemoteUnavailable(f"Knowledge store write failed: {failure}") from failure
