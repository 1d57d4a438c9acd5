# executor/actuators.py
import json
import logging
from typing import Optional, Protocol

from common.errors import ActuatorCommandFailure
from common.knowledge import KnowledgeStore
from common.mqtt_utils import topic_base

FAN = "fan"
HEAT = "heat"
PUMP = "pump"
FEEDER = "feeder"

ACTUATORS = (FAN, HEAT, PUMP, FEEDER)


class ActuatorDriver(Protocol):
    """One physical output. set_on() is idempotent and raises ActuatorCommandFailure."""

    name: str

    def set_on(self, on: bool) -> None:
        ...


class MqttActuatorDriver:
    """
    Drives an output by publishing {"action": "ON"|"OFF"} to
    "<farm>/<zone>/cmd/<actuator>" and logs the command to the knowledge store.
    """

    def __init__(self, client, name: str, farm_id: str, zone_id: str, knowledge: Optional[KnowledgeStore] = None):
        self.name = name
        self._client = client
        self._topic = f"{topic_base(farm_id, zone_id)}/cmd/{name}"
        self._knowledge = knowledge
        self._logger = logging.getLogger(f"{__name__}.{name}")

    def set_on(self, on: bool) -> None:
        command = {"action": "ON" if on else "OFF"}
        payload_str = json.dumps(command)

        if not self._client.is_connected():
            raise ActuatorCommandFailure(self.name, on, "MQTT link down")
        info = self._client.publish(self._topic, payload_str, qos=1)
        if info.rc != 0:
            raise ActuatorCommandFailure(self.name, on, f"publish rc={info.rc}")
        self._logger.debug("Sent command to %s: %s", self._topic, payload_str)

        # ----- Log to Knowledge -----
        if self._knowledge is not None:
            try:
                self._knowledge.log_actuator_command(
                    actuator=self.name,
                    state_str=command["action"],
                    numeric_fields={"on": 1 if on else 0},
                    payload=payload_str,
                )
            except Exception as e:
                self._logger.warning("Failed to log %s command to knowledge store: %s", self.name, e)
