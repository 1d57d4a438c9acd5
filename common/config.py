import os
import json
import logging
from dataclasses import dataclass, fields
from typing import Optional

logger = logging.getLogger(__name__)

FARM_ID = os.getenv("FARM_ID", "farm1")
ZONE_ID = os.getenv("ZONE_ID", "coop1")

SENSOR_MEASUREMENT = "sensors"
ACTUATOR_MEASUREMENT = "actuator_commands"
EVENT_MEASUREMENT = "events"
FEEDING_MEASUREMENT = "feeding_logs"
WATER_MEASUREMENT = "water_logs"
HISTORY_MEASUREMENT = "history"

INFLUXDB_BUCKET = os.getenv("INFLUXDB_BUCKET", "farm-bucket")
INFLUXDB_ORG = os.getenv("INFLUXDB_ORG", "farm-org")

SYSTEM_CONFIG_PATH = os.getenv("SYSTEM_CONFIG", "system_config.json")
TICK_INTERVAL_S = float(os.getenv("TICK_INTERVAL_S", 1.0))
ACTUATOR_BACKEND = os.getenv("ACTUATOR_BACKEND", "mqtt").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass
class ControllerConfig:
    # Alert / environment thresholds
    temp_high_c: float = 32.0
    temp_low_c: float = 24.0
    food_low_pct: int = 20
    water_main_low_pct: int = 10
    water_drinker_low_pct: int = 5
    hydration_alert_ml: int = 120
    hydration_warning_ml: int = 180

    # Dispensing
    grams_per_second: float = 50.0
    default_flow_rate_ml_s: int = 100
    default_fill_duration_s: int = 30
    feed_cooldown_s: float = 30.0
    water_cooldown_s: float = 30.0
    feed_max_timeout_s: float = 90.0
    water_max_timeout_s: float = 90.0

    # Defaults used until the remote settings arrive
    default_age_group: str = "adult"
    default_chicken_count: int = 10
    automation_enabled: bool = True
    auto_water_enabled: bool = True

    history_interval_s: float = 300.0
    timezone: Optional[str] = None


def load_system_config(path=SYSTEM_CONFIG_PATH):
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Error loading system config from %s: %s", path, e)
        return {"farms": []}


def get_config(key: str, system_config: dict, farm_id: str = None, zone_id: str = None, default=None):
    """
    Retrieve config value with precedence:
    1. Zone-specific config (in system_config)
    2. Farm-specific config
    3. Global defaults (in system_config['defaults'])
    4. The `default` argument
    """
    if farm_id and zone_id:
        for farm in system_config.get("farms", []):
            if farm["id"] == farm_id:
                for z in farm.get("zones", []):
                    if isinstance(z, dict) and z.get("id") == zone_id:
                        if "config" in z and key in z["config"]:
                            return z["config"][key]

                if "config" in farm and key in farm["config"]:
                    return farm["config"][key]

    if "defaults" in system_config and key in system_config["defaults"]:
        return system_config["defaults"][key]

    return default


def load_controller_config(system_config: dict, farm_id: str = FARM_ID, zone_id: str = ZONE_ID) -> ControllerConfig:
    config = ControllerConfig()

    for field_info in fields(ControllerConfig):
        key = field_info.name
        val = get_config(key, system_config, farm_id, zone_id)
        if val is None:
            continue
        current = getattr(config, key)
        target_type = type(current) if current is not None else str
        try:
            if target_type == bool:
                if isinstance(val, str):
                    val = val.lower() in ("true", "1", "yes")
                else:
                    val = bool(val)
            else:
                val = target_type(val)
            setattr(config, key, val)
        except (ValueError, TypeError) as e:
            logger.warning("[%s/%s] Could not cast config %s=%r to %s: %s", farm_id, zone_id, key, val, target_type.__name__, e)

    return config
