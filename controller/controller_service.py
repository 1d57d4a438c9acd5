# controller/controller_service.py
import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional, Set

from analyzer.alert_tracker import AlertThresholds, AlertTracker
from common.clock import Clock
from common.config import ControllerConfig
from common.errors import ActuatorCommandFailure, RemoteUnavailable
from common.knowledge import KnowledgeStore
from common.models import (
    AnalyticsRecord,
    DispenseOutcome,
    DispenseResource,
    DispenseStatus,
    Event,
    EventKind,
    RequestResult,
    SensorSnapshot,
    TriggerSource,
    WaterConsumptionTracker,
)
from common.remote import RemoteControlPlane
from common.settings import RemoteSettings
from executor.actuators import FAN, FEEDER, HEAT, PUMP, ActuatorDriver
from executor.dispense_coordinator import DispenseCoordinator
from monitor.sensor_source import SensorSource
from planner.environment_controller import EnvironmentController, EnvironmentThresholds
from planner.rations import (
    feed_duration_s,
    feed_grams,
    hydration_status,
    recommended_feed_grams,
    water_volume_ml,
)
from planner.schedule_engine import ScheduleEngine

logger = logging.getLogger(__name__)

FEED_FLAG = "controls/feed"
WATER_FLAG = "controls/waterFill"

# snapshot field -> telemetry name under sensors/ and history/
SENSOR_PATHS = {
    "temperature_c": "temperature",
    "humidity_pct": "humidity",
    "food_level_pct": "foodLevel",
    "water_main_pct": "waterLevelMain",
    "water_drinker_pct": "waterLevelDrinker",
}
MANUAL_OUTPUTS = {FAN: "controls/fan", HEAT: "controls/heat", PUMP: "controls/pump"}


class CoopController:
    """
    One coop, one cooperative tick.

    Every tick reads the sensors, evaluates alerts, publishes telemetry, pulls
    settings and commands from the remote control plane, advances both
    dispense coordinators and the schedules, and applies the environment rules.
    Nothing in a tick sleeps: dispensing is carried across ticks by the
    coordinators, and a failed remote call only costs that tick's sync.
    """

    def __init__(
        self,
        config: ControllerConfig,
        clock: Clock,
        sensors: SensorSource,
        drivers: Dict[str, ActuatorDriver],
        remote: RemoteControlPlane,
        knowledge: Optional[KnowledgeStore] = None,
    ):
        self.config = config
        self._clock = clock
        self._sensors = sensors
        self._drivers = drivers
        self._remote = remote
        self._knowledge = knowledge

        self.settings = RemoteSettings(config)
        self.alerts = AlertTracker(
            AlertThresholds(
                temp_high_c=config.temp_high_c,
                temp_low_c=config.temp_low_c,
                food_low_pct=config.food_low_pct,
                water_main_low_pct=config.water_main_low_pct,
                water_drinker_low_pct=config.water_drinker_low_pct,
                hydration_alert_ml=config.hydration_alert_ml,
            ),
            emit=self._emit,
        )
        self.feed = DispenseCoordinator(
            DispenseResource.FEED,
            drivers[FEEDER],
            clock,
            cooldown_s=config.feed_cooldown_s,
            max_timeout_s=config.feed_max_timeout_s,
            amount_for=lambda d: feed_grams(d, config.grams_per_second),
            emit=self._emit,
        )
        self.water = DispenseCoordinator(
            DispenseResource.WATER,
            drivers[PUMP],
            clock,
            cooldown_s=config.water_cooldown_s,
            max_timeout_s=config.water_max_timeout_s,
            amount_for=lambda d: water_volume_ml(d, self.settings.water.flow_rate_ml_s),
            emit=self._emit,
        )
        self.environment = EnvironmentController(
            {name: drivers[name] for name in (FAN, HEAT, PUMP)},
            EnvironmentThresholds(
                temp_high_c=config.temp_high_c,
                temp_low_c=config.temp_low_c,
                water_drinker_low_pct=config.water_drinker_low_pct,
                water_main_low_pct=config.water_main_low_pct,
            ),
            automation_enabled=config.automation_enabled,
            emit=self._emit,
        )
        self.feed_schedule = ScheduleEngine(self.feed, clock, self.recommended_feed_duration_s, emit=self._emit)
        self.water_schedule = ScheduleEngine(
            self.water, clock, lambda: self.settings.water.fill_duration_s, emit=self._emit
        )
        self.consumption = WaterConsumptionTracker(day_start=clock.now().date())

        self._pending_clear: Set[str] = set()
        # stale flags must not be acted on before the startup reset went through
        self._reset_pending = True
        self._published: Dict[str, Any] = {}
        self._last_faults = frozenset()
        self._last_history: Optional[datetime] = None
        self._stop = threading.Event()

    # ----- durations -----

    def recommended_feed_duration_s(self) -> float:
        grams = recommended_feed_grams(self.settings.feeding)
        return feed_duration_s(grams, self.config.grams_per_second)

    def manual_feed_duration_s(self) -> float:
        return self.settings.feed_duration_override_s or self.recommended_feed_duration_s()

    # ----- lifecycle -----

    def start(self) -> None:
        """Drive every output OFF and reset the remote command state."""
        now = self._clock.now()
        self.feed.ensure_off()
        self.water.ensure_off()
        self.environment.ensure_off()
        self._reset_remote_state()
        self.settings.refresh(self._remote)
        self._emit(Event(kind=EventKind.SYSTEM, description="Coop controller started", timestamp=now))

    def _reset_remote_state(self) -> None:
        """Clear the command flags and seed missing water settings; retried each tick until it succeeds."""
        try:
            for path in (FEED_FLAG, WATER_FLAG, "deviceStates/isFeeding", "deviceStates/isWaterFilling"):
                self._remote.set_bool(path, False)
            if self._remote.get_int("waterSettings/flowRate") is None:
                self._remote.set_int("waterSettings/flowRate", self.config.default_flow_rate_ml_s)
            if self._remote.get_int("waterSettings/fillDuration") is None:
                self._remote.set_int("waterSettings/fillDuration", self.config.default_fill_duration_s)
            if self._remote.get_bool("waterSettings/autoEnabled") is None:
                self._remote.set_bool("waterSettings/autoEnabled", self.config.auto_water_enabled)
        except RemoteUnavailable as e:
            logger.warning("Could not reset remote state, retrying next tick: %s", e)
            self._reset_pending = True
        else:
            self._reset_pending = False

    def stop(self) -> None:
        self._stop.set()

    def shutdown(self) -> None:
        for name, driver in self._drivers.items():
            try:
                driver.set_on(False)
            except ActuatorCommandFailure as e:
                logger.error("Could not switch %s OFF at shutdown: %s", name, e)

    def run_forever(self, interval_s: float) -> None:
        self.start()
        logger.info("Controller loop started (tick %.1fs)", interval_s)
        try:
            while not self._stop.is_set():
                started = time.monotonic()
                try:
                    self.tick()
                except Exception:
                    logger.exception("Tick failed, continuing with the next one")
                self._stop.wait(max(0.0, interval_s - (time.monotonic() - started)))
        finally:
            self.shutdown()
            logger.info("Controller loop stopped")

    # ----- tick -----

    def tick(self) -> SensorSnapshot:
        snapshot = self._sensors.read()
        now = snapshot.taken_at
        self._report_faults(snapshot)

        if self.consumption.roll_over(now):
            logger.info("New day, daily water consumption reset")
            self.alerts.evaluate_hydration(self.consumption, self.settings.feeding.chicken_count, now)

        self.alerts.evaluate(snapshot)
        self._publish_readings(snapshot)
        self._record_history(snapshot)

        if self._reset_pending:
            self._reset_remote_state()
        if not self._reset_pending and self.settings.refresh(self._remote):
            try:
                self._pull_commands(now)
            except RemoteUnavailable as e:
                logger.warning("Command pull failed: %s", e)

        for coordinator in (self.feed, self.water):
            outcome = coordinator.poll()
            if outcome is not None:
                self._record_outcome(outcome)

        self.feed_schedule.poll(self.settings.feeding_schedule)
        self.water_schedule.poll(self.settings.water_schedule, enabled=self.settings.water.auto_enabled)

        self.environment.apply(snapshot, self.water.status)
        self._publish_states()
        return snapshot

    # ----- remote commands -----

    def _pull_commands(self, now: datetime) -> None:
        for path in list(self._pending_clear):
            self._clear_flag(path)

        automation = self._remote.get_bool("controls/automationEnabled")
        if automation is not None:
            self.environment.set_automation(automation, now)

        if not self.environment.automation_enabled:
            for name, path in MANUAL_OUTPUTS.items():
                on = self._remote.get_bool(path)
                if on is not None:
                    self.environment.apply_manual(name, on, self.water.status, now)

        self._remote_trigger(FEED_FLAG, self.feed, self.manual_feed_duration_s())
        self._remote_trigger(WATER_FLAG, self.water, self.settings.water.fill_duration_s)

    def _remote_trigger(self, path: str, coordinator: DispenseCoordinator, duration_s: float) -> None:
        # a flag whose clear is still pending was already accepted once
        if path in self._pending_clear:
            return
        if not self._remote.get_bool(path):
            return
        result = coordinator.request(duration_s, TriggerSource.MANUAL)
        if result is RequestResult.BUSY:
            # left set, accepted once the coordinator is idle again
            return
        if result is RequestResult.INVALID:
            logger.warning("Discarding %s request with duration %.1fs", path, duration_s)
        self._clear_flag(path)

    def _clear_flag(self, path: str) -> None:
        try:
            self._remote.set_bool(path, False)
        except RemoteUnavailable as e:
            logger.warning("Could not clear %s, retrying next tick: %s", path, e)
            self._pending_clear.add(path)
        else:
            self._pending_clear.discard(path)

    # ----- dispense outcomes -----

    def _record_outcome(self, outcome: DispenseOutcome) -> None:
        profile = self.settings.feeding
        if outcome.resource is DispenseResource.FEED:
            record = AnalyticsRecord(
                stream="feedingLogs",
                timestamp=outcome.finished_at,
                fields={
                    "gramsDispensed": round(outcome.amount, 1),
                    "ageGroup": profile.age_group.value,
                    "chickenCount": profile.chicken_count,
                    "source": outcome.source.value,
                    "forced": outcome.forced,
                },
            )
        else:
            record = AnalyticsRecord(
                stream="waterLogs",
                timestamp=outcome.finished_at,
                fields={
                    "volumeDispensed": round(outcome.amount, 1),
                    "durationSeconds": round(outcome.duration_s, 1),
                    "source": outcome.source.value,
                    "forced": outcome.forced,
                },
            )
            if not outcome.forced:
                self.consumption.record(outcome.amount, outcome.finished_at)
                self.alerts.evaluate_hydration(self.consumption, profile.chicken_count, outcome.finished_at)
        self._push_analytics(record)

    # ----- telemetry -----

    def _report_faults(self, snapshot: SensorSnapshot) -> None:
        if snapshot.faults == self._last_faults:
            return
        new_faults = snapshot.faults - self._last_faults
        recovered = self._last_faults - snapshot.faults
        self._last_faults = snapshot.faults
        if new_faults:
            description = f"Sensor fault: {', '.join(sorted(new_faults))}"
            logger.warning(description)
            self._emit(Event(kind=EventKind.DIAGNOSTIC, description=description, timestamp=snapshot.taken_at))
        if recovered:
            logger.info("Sensor readings recovered: %s", ", ".join(sorted(recovered)))

    def _publish_readings(self, snapshot: SensorSnapshot) -> None:
        if self._knowledge is not None:
            try:
                self._knowledge.log_snapshot(snapshot)
            except Exception as e:
                logger.warning("Failed to log snapshot to knowledge store: %s", e)

        values: Dict[str, Any] = {}
        for field_name, name in SENSOR_PATHS.items():
            if snapshot.is_valid(field_name):
                values[f"sensors/{name}"] = float(getattr(snapshot, field_name))
        for kind, active in self.alerts.states().items():
            values[f"alerts/{kind.value}"] = active
        self._publish_values(values)

    def _publish_states(self) -> None:
        per_bird = self.consumption.per_bird(self.settings.feeding.chicken_count)
        values: Dict[str, Any] = {
            "deviceStates/fan": self.environment.output_state(FAN),
            "deviceStates/heat": self.environment.output_state(HEAT),
            "deviceStates/pump": self.environment.output_state(PUMP) or self.water.status is DispenseStatus.DISPENSING,
            "deviceStates/isFeeding": self.feed.status is DispenseStatus.DISPENSING,
            "deviceStates/isWaterFilling": self.water.status is DispenseStatus.DISPENSING,
            "deviceStates/feedStatus": self.feed.status.value,
            "deviceStates/waterStatus": self.water.status.value,
            "waterConsumption/totalToday": round(self.consumption.total_dispensed_today_ml, 1),
        }
        if per_bird is not None:
            values["waterConsumption/perBird"] = round(per_bird, 1)
            values["waterConsumption/status"] = hydration_status(
                per_bird, self.config.hydration_alert_ml, self.config.hydration_warning_ml
            )
        self._publish_values(values)

    def _publish_values(self, values: Dict[str, Any]) -> None:
        """Publish the values that changed since the last successful publish."""
        try:
            for path, value in values.items():
                if path in self._published and self._published[path] == value:
                    continue
                if isinstance(value, bool):
                    self._remote.set_bool(path, value)
                elif isinstance(value, int):
                    self._remote.set_int(path, value)
                elif isinstance(value, float):
                    self._remote.set_float(path, value)
                else:
                    self._remote.set_str(path, value)
                self._published[path] = value
        except RemoteUnavailable as e:
            logger.warning("Telemetry publish failed: %s", e)

    def _record_history(self, snapshot: SensorSnapshot) -> None:
        now = snapshot.taken_at
        if self._last_history is not None:
            if (now - self._last_history).total_seconds() < self.config.history_interval_s:
                return
        self._last_history = now

        fields: Dict[str, Any] = {
            name: float(getattr(snapshot, field_name))
            for field_name, name in SENSOR_PATHS.items()
            if snapshot.is_valid(field_name)
        }
        fields["fan"] = self.environment.output_state(FAN)
        fields["heat"] = self.environment.output_state(HEAT)
        fields["pump"] = self.environment.output_state(PUMP)
        self._push_analytics(AnalyticsRecord(stream="history", timestamp=now, fields=fields))

    def _push_analytics(self, record: AnalyticsRecord) -> None:
        try:
            self._remote.push_analytics(record)
        except RemoteUnavailable as e:
            logger.warning("Could not push %s record: %s", record.stream, e)

    def _emit(self, event: Event) -> None:
        try:
            self._remote.push_event(event.kind, event.description, event.timestamp)
        except RemoteUnavailable as e:
            logger.warning("Could not push event %r: %s", event.description, e)
