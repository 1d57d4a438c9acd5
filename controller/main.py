# controller/main.py
import logging
import signal

from common.clock import make_clock
from common.config import (
    ACTUATOR_BACKEND,
    FARM_ID,
    LOG_LEVEL,
    TICK_INTERVAL_S,
    ZONE_ID,
    load_controller_config,
    load_system_config,
)
from common.influx_utils import influx_configured
from common.knowledge import KnowledgeStore
from common.mqtt_utils import create_mqtt_client
from common.remote import MqttControlPlane
from controller.controller_service import CoopController
from environment.model import SimulationConfig
from environment.simulator import CoopSimulator
from executor.actuators import ACTUATORS, MqttActuatorDriver
from monitor.sensor_source import MqttSensorSource

logger = logging.getLogger(__name__)


def main():
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    system_config = load_system_config()
    config = load_controller_config(system_config, FARM_ID, ZONE_ID)
    clock = make_clock(config.timezone)

    knowledge = None
    if influx_configured():
        knowledge = KnowledgeStore(farm_id=FARM_ID, zone_id=ZONE_ID)
        if not knowledge.ping():
            logger.warning("InfluxDB not reachable yet, history writes may fail")
    else:
        logger.info("InfluxDB not configured, knowledge store disabled")

    client = create_mqtt_client(f"coop_controller_{FARM_ID}_{ZONE_ID}")
    remote = MqttControlPlane(client, FARM_ID, ZONE_ID, knowledge)

    if ACTUATOR_BACKEND == "sim":
        logger.info("Using the simulated coop")
        coop = CoopSimulator(clock, SimulationConfig(bird_count=config.default_chicken_count))
        sensors = coop
        drivers = {name: coop.driver(name) for name in ACTUATORS}
    else:
        sensors = MqttSensorSource(client, FARM_ID, ZONE_ID, clock)
        drivers = {name: MqttActuatorDriver(client, name, FARM_ID, ZONE_ID, knowledge) for name in ACTUATORS}

    controller = CoopController(config, clock, sensors, drivers, remote, knowledge)

    def _handle_signal(signum, frame):
        logger.info("Received signal %d, stopping", signum)
        controller.stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    client.loop_start()
    try:
        controller.run_forever(TICK_INTERVAL_S)
    finally:
        client.loop_stop()
        client.disconnect()
        if knowledge is not None:
            knowledge.close()


if __name__ == "__main__":
    main()
