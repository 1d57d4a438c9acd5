import os
import logging

import paho.mqtt.client as mqtt

MQTT_HOST = os.getenv("MQTT_HOST", "mqtt")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_USER = os.getenv("MQTT_USER")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD")

logger = logging.getLogger(__name__)


def _on_connect(client, userdata, flags, reason_code, properties):
    if reason_code.is_failure:
        logger.warning("MQTT connect refused: %s", reason_code)
        return
    # Subscriptions are lost with a clean session, so replay them on every connect
    for topic in userdata["subscriptions"]:
        client.subscribe(topic)
    logger.info("MQTT connected, subscribed to %d topic filter(s)", len(userdata["subscriptions"]))


def _on_disconnect(client, userdata, flags, reason_code, properties):
    logger.warning("MQTT disconnected: %s", reason_code)


def create_mqtt_client(client_id: str, connect: bool = True) -> mqtt.Client:
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        userdata={"subscriptions": []},
    )
    if MQTT_USER and MQTT_PASSWORD:
        client.username_pw_set(MQTT_USER, MQTT_PASSWORD)
    client.on_connect = _on_connect
    client.on_disconnect = _on_disconnect
    client.reconnect_delay_set(min_delay=1, max_delay=30)
    if connect:
        logger.info("Connecting %s to MQTT %s:%s", client_id, MQTT_HOST, MQTT_PORT)
        # connect_async lets loop_start() keep retrying while the broker is down
        client.connect_async(MQTT_HOST, MQTT_PORT, 60)
    return client


def subscribe(client: mqtt.Client, topic: str, callback) -> None:
    """Route `topic` to `callback` and keep the subscription across reconnects."""
    client.message_callback_add(topic, callback)
    client.user_data_get()["subscriptions"].append(topic)
    if client.is_connected():
        client.subscribe(topic)


def topic_base(farm_id: str, zone_id: str) -> str:
    return f"{farm_id}/{zone_id}"
