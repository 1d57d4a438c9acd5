# analyzer/alert_tracker.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from common.models import (
    AlertKind,
    AlertState,
    AlertTransition,
    Event,
    EventKind,
    EventSink,
    SensorSnapshot,
    WaterConsumptionTracker,
)

logger = logging.getLogger(__name__)


@dataclass
class AlertThresholds:
    temp_high_c: float = 32.0
    temp_low_c: float = 24.0
    food_low_pct: float = 20
    water_main_low_pct: float = 10
    water_drinker_low_pct: float = 5
    hydration_alert_ml: float = 120


# kind -> (snapshot field, unit, label used in descriptions)
_SNAPSHOT_ALERTS = {
    AlertKind.HIGH_TEMP: ("temperature_c", "°C", "High temperature"),
    AlertKind.LOW_TEMP: ("temperature_c", "°C", "Low temperature"),
    AlertKind.LOW_FOOD: ("food_level_pct", "%", "Low food level"),
    AlertKind.LOW_WATER_MAIN: ("water_main_pct", "%", "Low water level in main tank"),
    AlertKind.LOW_WATER_DRINKER: ("water_drinker_pct", "%", "Low water level in drinker"),
}


def _fmt(value: float) -> str:
    return f"{value:g}" if float(value).is_integer() else f"{value:.1f}"


class AlertTracker:
    """
    Edge-triggered threshold alerts.

    Stored state flips only when a measured value crosses its threshold, and a
    transition (and event) is produced exactly on each flip. Fields flagged as
    sensor faults are skipped so a sentinel reading never raises or clears an
    alert.
    """

    def __init__(self, thresholds: AlertThresholds, emit: Optional[EventSink] = None):
        self._thresholds = thresholds
        self._emit = emit
        self._states: Dict[AlertKind, AlertState] = {kind: AlertState(kind) for kind in AlertKind}

    def is_active(self, kind: AlertKind) -> bool:
        return self._states[kind].active

    def states(self) -> Dict[AlertKind, bool]:
        return {kind: state.active for kind, state in self._states.items()}

    def _threshold(self, kind: AlertKind) -> float:
        t = self._thresholds
        return {
            AlertKind.HIGH_TEMP: t.temp_high_c,
            AlertKind.LOW_TEMP: t.temp_low_c,
            AlertKind.LOW_FOOD: t.food_low_pct,
            AlertKind.LOW_WATER_MAIN: t.water_main_low_pct,
            AlertKind.LOW_WATER_DRINKER: t.water_drinker_low_pct,
            AlertKind.LOW_HYDRATION: t.hydration_alert_ml,
        }[kind]

    def evaluate(self, snapshot: SensorSnapshot) -> List[AlertTransition]:
        transitions = []
        for kind, (field_name, unit, label) in _SNAPSHOT_ALERTS.items():
            if not snapshot.is_valid(field_name):
                continue
            value = getattr(snapshot, field_name)
            threshold = self._threshold(kind)
            active = value > threshold if kind is AlertKind.HIGH_TEMP else value < threshold
            transition = self._update(kind, active, value, threshold, unit, label, snapshot.taken_at)
            if transition is not None:
                transitions.append(transition)
        return transitions

    def evaluate_hydration(self, tracker: WaterConsumptionTracker, chicken_count: int, now: datetime) -> Optional[AlertTransition]:
        """Re-check daily water per bird; call whenever water consumption changes."""
        per_bird = tracker.per_bird(chicken_count)
        if per_bird is None:
            return None
        threshold = self._threshold(AlertKind.LOW_HYDRATION)
        return self._update(
            AlertKind.LOW_HYDRATION,
            per_bird < threshold,
            per_bird,
            threshold,
            "ml per bird",
            "Low hydration",
            now,
        )

    def _update(self, kind, active, value, threshold, unit, label, timestamp) -> Optional[AlertTransition]:
        state = self._states[kind]
        if active == state.active:
            return None
        state.active = active

        sep = "" if unit in ("%", "°C") else " "
        measured = f"{_fmt(value)}{sep}{unit}"
        limit = f"{_fmt(threshold)}{sep}{unit}"
        if active:
            description = f"{label} detected: {measured} (threshold: {limit})"
            event_kind = kind.value
        else:
            description = f"{label} alert resolved: {measured} (threshold: {limit})"
            event_kind = EventKind.RESOLVED

        transition = AlertTransition(kind=kind, now_active=active, value=value, threshold=threshold, description=description)
        logger.info(description)
        if self._emit is not None:
            self._emit(Event(kind=event_kind, description=description, timestamp=timestamp))
        return transition
