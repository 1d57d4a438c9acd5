import os
from influxdb_client import InfluxDBClient

INFLUXDB_URL = os.getenv("INFLUXDB_URL")
INFLUXDB_TOKEN = os.getenv("INFLUXDB_ADMIN_TOKEN")
INFLUXDB_ORG = os.getenv("INFLUXDB_ORG")
# Writes are synchronous and run inside the control tick, keep them short
INFLUXDB_TIMEOUT_MS = int(os.getenv("INFLUXDB_TIMEOUT_MS", "2000"))


def influx_configured() -> bool:
    return bool(INFLUXDB_URL and INFLUXDB_TOKEN and INFLUXDB_ORG)


def create_influx_client() -> InfluxDBClient:
    if not influx_configured():
        raise RuntimeError("InfluxDB env vars not set correctly")
    return InfluxDBClient(url=INFLUXDB_URL, token=INFLUXDB_TOKEN, org=INFLUXDB_ORG, timeout=INFLUXDB_TIMEOUT_MS)
