# planner/environment_controller.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from common.errors import ActuatorCommandFailure
from common.models import DispenseStatus, Event, EventKind, EventSink, SensorSnapshot
from executor.actuators import FAN, HEAT, PUMP, ActuatorDriver

logger = logging.getLogger(__name__)

LABELS = {FAN: "Fan", HEAT: "Heat lamp", PUMP: "Water pump"}


@dataclass(frozen=True)
class EnvironmentTargets:
    fan: bool
    heat: bool
    pump: Optional[bool]   # None while the pump rule is suppressed


@dataclass
class EnvironmentThresholds:
    temp_high_c: float = 32.0
    temp_low_c: float = 24.0
    water_drinker_low_pct: float = 5
    water_main_low_pct: float = 10


def temperature_targets(temperature_c: float, high: float, low: float):
    """Three-way bang-bang: (fan, heat). No hysteresis band."""
    if temperature_c > high:
        return True, False
    if temperature_c < low:
        return False, True
    return False, False


class EnvironmentController:
    """
    Fan, heat lamp and drinker pump control.

    Outputs are owned here: the automatic rules run only while automation is
    enabled, and explicit remote commands are applied through apply_manual()
    while it is disabled. The pump is shared with the water dispenser, so
    neither path touches it while the water job is not idle.
    """

    def __init__(self, drivers: Dict[str, ActuatorDriver], thresholds: EnvironmentThresholds,
                 automation_enabled: bool = True, emit: Optional[EventSink] = None):
        self._drivers = drivers
        self._thresholds = thresholds
        self._automation_enabled = automation_enabled
        self._emit = emit
        # last applied target per output; outputs start OFF
        self._applied: Dict[str, bool] = {FAN: False, HEAT: False, PUMP: False}
        self._retry: Dict[str, bool] = {}

    @property
    def automation_enabled(self) -> bool:
        return self._automation_enabled

    def output_state(self, name: str) -> bool:
        return self._applied[name]

    def set_automation(self, enabled: bool, now: datetime) -> bool:
        """Switch automatic/manual mode. Returns True when the mode changed."""
        if enabled == self._automation_enabled:
            return False
        self._automation_enabled = enabled
        mode = "automatic" if enabled else "manual"
        self._notify(EventKind.SYSTEM, f"System switched to {mode} mode", now)
        return True

    def ensure_off(self) -> None:
        for name in (FAN, HEAT, PUMP):
            self._command(name, False)
            self._applied[name] = False

    def apply(self, snapshot: SensorSnapshot, water_status: DispenseStatus) -> Optional[EnvironmentTargets]:
        """Run the automatic rules for one tick. Returns None while automation is disabled."""
        if water_status is not DispenseStatus.IDLE:
            # the water dispenser drives the pump and always leaves it OFF when done
            self._applied[PUMP] = False
            self._retry.pop(PUMP, None)
        self._retry_failed()
        if not self._automation_enabled:
            return None

        th = self._thresholds
        now = snapshot.taken_at

        if snapshot.is_valid("temperature_c"):
            temp = snapshot.temperature_c
            fan, heat = temperature_targets(temp, th.temp_high_c, th.temp_low_c)
            if temp > th.temp_high_c:
                reason = "due to high temperature"
            elif temp < th.temp_low_c:
                reason = "due to low temperature"
            else:
                reason = "- temperature in normal range"
        else:
            fan, heat = False, False
            reason = "- temperature reading invalid"

        self._set_target(FAN, fan, f"{LABELS[FAN]} automatically turned {{state}} {reason}", now)
        self._set_target(HEAT, heat, f"{LABELS[HEAT]} automatically turned {{state}} {reason}", now)

        pump = None
        if water_status is DispenseStatus.IDLE:
            levels_valid = snapshot.is_valid("water_drinker_pct") and snapshot.is_valid("water_main_pct")
            pump = (
                levels_valid
                and snapshot.water_drinker_pct < th.water_drinker_low_pct
                and snapshot.water_main_pct > th.water_main_low_pct
            )
            if pump:
                message = "Water pump automatically activated to refill drinker"
            else:
                message = "Water pump automatically deactivated"
            self._set_target(PUMP, pump, message, now)

        return EnvironmentTargets(fan=fan, heat=heat, pump=pump)

    def apply_manual(self, name: str, on: bool, water_status: DispenseStatus, now: datetime) -> bool:
        """
        Apply an explicit remote command while automation is disabled.
        Returns False when the command was not applied.
        """
        if self._automation_enabled:
            return False
        if name == PUMP and water_status is not DispenseStatus.IDLE:
            logger.debug("Ignoring manual pump command while water is being dispensed")
            return False
        self._set_target(name, on, f"{LABELS[name]} manually turned {{state}}", now, EventKind.MANUAL)
        return True

    def _set_target(self, name: str, on: bool, message: str, now: datetime, kind: EventKind = EventKind.AUTOMATIC) -> None:
        if self._applied[name] == on:
            return
        self._applied[name] = on
        self._command(name, on)
        self._notify(kind, message.format(state="ON" if on else "OFF"), now)

    def _command(self, name: str, on: bool) -> None:
        try:
            self._drivers[name].set_on(on)
        except ActuatorCommandFailure as e:
            logger.warning("%s; retrying next tick", e)
            self._retry[name] = on
        else:
            self._retry.pop(name, None)

    def _retry_failed(self) -> None:
        for name, on in list(self._retry.items()):
            if self._applied[name] == on:
                self._command(name, on)
            else:
                self._retry.pop(name, None)

    def _notify(self, kind: EventKind, description: str, now: datetime) -> None:
        logger.info(description)
        if self._emit is not None:
            self._emit(Event(kind=kind, description=description, timestamp=now))
