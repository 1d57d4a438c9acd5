from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional


class AlertKind(str, Enum):
    HIGH_TEMP = "highTemperature"
    LOW_TEMP = "lowTemperature"
    LOW_FOOD = "lowFood"
    LOW_WATER_MAIN = "lowWaterMain"
    LOW_WATER_DRINKER = "lowWaterDrinker"
    LOW_HYDRATION = "lowHydration"


class EventKind(str, Enum):
    SYSTEM = "system"
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    RESOLVED = "resolved"
    FEEDING = "feeding"
    WATER_FILLING = "waterFilling"
    FEEDING_COMPLETE = "feedingComplete"
    WATER_FILL_COMPLETE = "waterFillComplete"
    FORCED_STOP = "forcedStop"
    SCHEDULED_FEEDING = "scheduledFeeding"
    SCHEDULED_WATER_FILL = "scheduledWaterFill"
    DIAGNOSTIC = "diagnostic"


class DispenseResource(str, Enum):
    FEED = "feed"
    WATER = "water"


class DispenseStatus(str, Enum):
    IDLE = "idle"
    DISPENSING = "dispensing"
    COOLDOWN = "cooldown"


class TriggerSource(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class RequestResult(str, Enum):
    ACCEPTED = "accepted"
    BUSY = "busy"
    INVALID = "invalid"


class AgeGroup(str, Enum):
    CHICK = "chick"
    GROWER = "grower"
    ADULT = "adult"


@dataclass(frozen=True)
class SensorSnapshot:
    temperature_c: float
    humidity_pct: float
    food_level_pct: int
    water_main_pct: int
    water_drinker_pct: int
    taken_at: datetime
    faults: FrozenSet[str] = frozenset()   # fields holding a sentinel value

    def is_valid(self, field_name: str) -> bool:
        return field_name not in self.faults


def kind_name(kind) -> str:
    return kind.value if isinstance(kind, Enum) else str(kind)


@dataclass(frozen=True)
class Event:
    kind: str
    description: str
    timestamp: datetime

    def __post_init__(self):
        object.__setattr__(self, "kind", kind_name(self.kind))


EventSink = Callable[[Event], None]


@dataclass
class AlertState:
    kind: AlertKind
    active: bool = False


@dataclass(frozen=True)
class AlertTransition:
    kind: AlertKind
    now_active: bool
    value: float
    threshold: float
    description: str


@dataclass
class DispenseJob:
    resource: DispenseResource
    status: DispenseStatus = DispenseStatus.IDLE
    started_at: Optional[datetime] = None
    planned_duration_s: float = 0.0
    cooldown_until: Optional[datetime] = None
    trigger_source: Optional[TriggerSource] = None


@dataclass(frozen=True)
class DispenseOutcome:
    resource: DispenseResource
    source: TriggerSource
    started_at: datetime
    finished_at: datetime
    planned_duration_s: float
    duration_s: float              # time the output was commanded on
    amount: float                  # grams for feed, ml for water
    forced: bool                   # True when the watchdog stopped the job


@dataclass(frozen=True)
class TriggerRequest:
    resource: DispenseResource
    duration_s: float
    source: TriggerSource = TriggerSource.SCHEDULED


@dataclass(frozen=True)
class AnalyticsRecord:
    stream: str                    # feedingLogs, waterLogs, history
    timestamp: datetime
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FeedingProfile:
    age_group: AgeGroup = AgeGroup.ADULT
    chicken_count: int = 10


@dataclass
class WaterConsumptionTracker:
    day_start: date
    total_dispensed_today_ml: float = 0.0

    def roll_over(self, now: datetime) -> bool:
        """Reset the daily total when the calendar day changed. Returns True on reset."""
        if now.date() == self.day_start:
            return False
        self.day_start = now.date()
        self.total_dispensed_today_ml = 0.0
        return True

    def record(self, volume_ml: float, now: datetime) -> None:
        self.roll_over(now)
        self.total_dispensed_today_ml += max(0.0, volume_ml)

    def per_bird(self, chicken_count: int) -> Optional[float]:
        if chicken_count <= 0:
            return None
        return self.total_dispensed_today_ml / chicken_count
