"""Typed view of the settings held by the remote control plane.

Remote values arrive as loosely typed JSON (age group as text, schedules as a
sparse hour map). They are parsed once into the dataclasses below; malformed
entries are dropped with a warning and never reach the control logic.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Optional

from common.config import ControllerConfig
from common.errors import RemoteUnavailable
from common.models import AgeGroup, FeedingProfile
from common.remote import RemoteControlPlane, coerce_bool, coerce_int

logger = logging.getLogger(__name__)


def parse_age_group(value: Any) -> Optional[AgeGroup]:
    if not isinstance(value, str):
        return None
    try:
        return AgeGroup(value.strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class ScheduleTable:
    hours: FrozenSet[int] = field(default_factory=frozenset)

    def is_enabled(self, hour: int) -> bool:
        return hour in self.hours

    @classmethod
    def from_remote(cls, raw: Any) -> "ScheduleTable":
        """
        Accepts {"8": true, "12": false} or a 24-item list of booleans.
        Keys outside 0-23 and non-boolean values are ignored.
        """
        if isinstance(raw, list):
            items = enumerate(raw)
        elif isinstance(raw, dict):
            items = raw.items()
        else:
            logger.warning("Ignoring schedule of type %s", type(raw).__name__)
            return cls()

        hours = set()
        for key, value in items:
            hour = coerce_int(key)
            enabled = coerce_bool(value)
            if hour is None or not 0 <= hour <= 23 or enabled is None:
                logger.warning("Ignoring malformed schedule entry %r=%r", key, value)
                continue
            if enabled:
                hours.add(hour)
        return cls(frozenset(hours))


@dataclass
class WaterSettings:
    flow_rate_ml_s: int = 100
    fill_duration_s: int = 30
    auto_enabled: bool = True


class RemoteSettings:
    """
    Last known remote settings with a refresh-on-success policy.

    Each field keeps its previous value until a pull returns a well-formed
    replacement, so a dropped link leaves the controller running on what it
    knew last.
    """

    def __init__(self, config: ControllerConfig):
        self.feeding = FeedingProfile(
            age_group=parse_age_group(config.default_age_group) or AgeGroup.ADULT,
            chicken_count=config.default_chicken_count,
        )
        self.water = WaterSettings(
            flow_rate_ml_s=config.default_flow_rate_ml_s,
            fill_duration_s=config.default_fill_duration_s,
            auto_enabled=config.auto_water_enabled,
        )
        self.feeding_schedule = ScheduleTable()
        self.water_schedule = ScheduleTable()
        self.feed_duration_override_s: Optional[float] = None

    def refresh(self, remote: RemoteControlPlane) -> bool:
        """Pull every setting once. Returns False when the remote was unreachable."""
        try:
            self._refresh_feeding(remote.get_json("feedingSettings"))

            flow_rate = remote.get_int("waterSettings/flowRate")
            if flow_rate is not None and flow_rate > 0:
                self.water.flow_rate_ml_s = flow_rate
            fill_duration = remote.get_int("waterSettings/fillDuration")
            if fill_duration is not None and fill_duration > 0:
                self.water.fill_duration_s = fill_duration
            auto_enabled = remote.get_bool("waterSettings/autoEnabled")
            if auto_enabled is not None:
                self.water.auto_enabled = auto_enabled

            feeding_schedule = remote.get_json("feedingSchedule")
            if feeding_schedule is not None:
                self.feeding_schedule = ScheduleTable.from_remote(feeding_schedule)
            water_schedule = remote.get_json("waterSchedule")
            if water_schedule is not None:
                self.water_schedule = ScheduleTable.from_remote(water_schedule)

            feed_duration = remote.get_float("controls/feedDuration")
            self.feed_duration_override_s = feed_duration if feed_duration and feed_duration > 0 else None
        except RemoteUnavailable as e:
            logger.warning("Settings refresh failed, keeping last known values: %s", e)
            return False
        return True

    def _refresh_feeding(self, raw: Any) -> None:
        if raw is None:
            return
        if not isinstance(raw, dict):
            logger.warning("Ignoring feedingSettings of type %s", type(raw).__name__)
            return

        if "ageGroup" in raw:
            age_group = parse_age_group(raw["ageGroup"])
            if age_group is None:
                logger.warning("Ignoring unknown age group %r", raw["ageGroup"])
            elif age_group != self.feeding.age_group:
                logger.info("Age group updated: %s", age_group.value)
                self.feeding.age_group = age_group

        if "chickenCount" in raw:
            count = coerce_int(raw["chickenCount"])
            if count is None or count <= 0:
                logger.warning("Ignoring chicken count %r", raw["chickenCount"])
            elif count != self.feeding.chicken_count:
                logger.info("Chicken count updated: %d", count)
                self.feeding.chicken_count = count
