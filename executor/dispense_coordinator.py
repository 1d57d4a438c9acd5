# executor/dispense_coordinator.py
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from common.clock import Clock
from common.errors import ActuatorCommandFailure
from common.models import (
    DispenseJob,
    DispenseOutcome,
    DispenseResource,
    DispenseStatus,
    Event,
    EventKind,
    EventSink,
    RequestResult,
    TriggerSource,
)
from executor.actuators import ActuatorDriver

logger = logging.getLogger(__name__)

START_EVENTS = {
    DispenseResource.FEED: EventKind.FEEDING,
    DispenseResource.WATER: EventKind.WATER_FILLING,
}
COMPLETE_EVENTS = {
    DispenseResource.FEED: EventKind.FEEDING_COMPLETE,
    DispenseResource.WATER: EventKind.WATER_FILL_COMPLETE,
}
UNITS = {DispenseResource.FEED: "g", DispenseResource.WATER: "ml"}
NOUNS = {DispenseResource.FEED: "feed", DispenseResource.WATER: "water"}


class DispenseCoordinator:
    """
    Owns the single dispensing job of one resource (feeder or water pump).

    IDLE -> DISPENSING -> COOLDOWN -> IDLE

    request() starts a job, poll() advances it. Both do a bounded amount of
    work (read the clock, compare, at most one driver command) and return, so
    the dispense duration is carried across ticks instead of blocking the loop.

    A job ends on whichever limit it reaches first: its planned duration
    (normal completion) or max_timeout_s (watchdog). A late poll that finds
    both limits passed still completes normally when the planned duration was
    the shorter one. The watchdog stops the job even when the OFF command
    fails; those outcomes are reported with a FORCED_STOP event, never with
    the completion event.
    """

    def __init__(
        self,
        resource: DispenseResource,
        driver: ActuatorDriver,
        clock: Clock,
        cooldown_s: float,
        max_timeout_s: float,
        amount_for: Callable[[float], float],
        emit: Optional[EventSink] = None,
    ):
        if cooldown_s < 0:
            raise ValueError("cooldown_s must be >= 0")
        if max_timeout_s <= 0:
            raise ValueError("max_timeout_s must be > 0")
        self._job = DispenseJob(resource=resource)
        self._driver = driver
        self._clock = clock
        self._cooldown = timedelta(seconds=cooldown_s)
        self._max_timeout_s = max_timeout_s
        self._amount_for = amount_for
        self._emit = emit
        # set when the last driver command failed and must be re-issued
        self._on_pending = False
        self._off_pending = False

    @property
    def resource(self) -> DispenseResource:
        return self._job.resource

    @property
    def status(self) -> DispenseStatus:
        return self._job.status

    @property
    def job(self) -> DispenseJob:
        return replace(self._job)

    @property
    def is_idle(self) -> bool:
        return self._job.status is DispenseStatus.IDLE

    @property
    def max_timeout_s(self) -> float:
        return self._max_timeout_s

    def ensure_off(self) -> None:
        """Command the output OFF without touching the job (startup, shutdown)."""
        if self._job.status is not DispenseStatus.DISPENSING:
            self._command(False)

    def request(self, duration_s: float, source: TriggerSource) -> RequestResult:
        now = self._clock.now()
        self._expire_cooldown(now)
        job = self._job
        noun = NOUNS[job.resource]

        if job.status is not DispenseStatus.IDLE:
            logger.info("Ignoring %s %s request: %s", source.value, noun, job.status.value)
            return RequestResult.BUSY
        if duration_s <= 0:
            logger.warning("Ignoring %s %s request with duration %.2fs", source.value, noun, duration_s)
            return RequestResult.INVALID
        if duration_s > self._max_timeout_s:
            logger.warning(
                "%s duration %.1fs exceeds the %.1fs safety ceiling; the watchdog will stop it",
                noun.capitalize(), duration_s, self._max_timeout_s,
            )

        amount = self._amount_for(duration_s)
        self._notify(
            START_EVENTS[job.resource],
            f"Dispensing {amount:.0f}{UNITS[job.resource]} of {noun} ({source.value}, {duration_s:.1f}s)",
            now,
        )

        job.status = DispenseStatus.DISPENSING
        job.started_at = now
        job.planned_duration_s = duration_s
        job.cooldown_until = None
        job.trigger_source = source
        self._command(True)
        return RequestResult.ACCEPTED

    def poll(self) -> Optional[DispenseOutcome]:
        now = self._clock.now()
        job = self._job

        if job.status is DispenseStatus.DISPENSING:
            elapsed = (now - job.started_at).total_seconds()
            timed_out = elapsed >= self._max_timeout_s
            # the planned end came first unless it lies beyond the ceiling
            completed = elapsed >= job.planned_duration_s and job.planned_duration_s <= self._max_timeout_s
            # a completion OFF that already failed is left to the watchdog
            if completed and not (timed_out and self._off_pending):
                # OFF is sent even if the output already reads OFF
                if not self._command(False):
                    return None
                return self._finish(now, elapsed, forced=False)
            if timed_out:
                self._command(False)
                return self._finish(now, elapsed, forced=True)
            if self._on_pending:
                self._command(True)
            return None

        if self._off_pending:
            self._command(False)
        self._expire_cooldown(now)
        return None

    def _finish(self, now: datetime, elapsed: float, forced: bool) -> DispenseOutcome:
        job = self._job
        noun = NOUNS[job.resource]
        duration_s = elapsed if forced else job.planned_duration_s
        amount = self._amount_for(duration_s)

        outcome = DispenseOutcome(
            resource=job.resource,
            source=job.trigger_source,
            started_at=job.started_at,
            finished_at=now,
            planned_duration_s=job.planned_duration_s,
            duration_s=duration_s,
            amount=amount,
            forced=forced,
        )

        job.status = DispenseStatus.COOLDOWN
        job.cooldown_until = now + self._cooldown

        if forced:
            self._notify(
                EventKind.FORCED_STOP,
                f"Watchdog stopped {noun} dispensing after {elapsed:.1f}s "
                f"(planned {job.planned_duration_s:.1f}s, limit {self._max_timeout_s:.1f}s)",
                now,
            )
        else:
            self._notify(
                COMPLETE_EVENTS[job.resource],
                f"Finished dispensing {amount:.0f}{UNITS[job.resource]} of {noun} in {duration_s:.1f}s",
                now,
            )
        return outcome

    def _expire_cooldown(self, now: datetime) -> None:
        job = self._job
        if job.status is DispenseStatus.COOLDOWN and now >= job.cooldown_until:
            job.status = DispenseStatus.IDLE
            logger.debug("%s coordinator idle", NOUNS[job.resource].capitalize())

    def _command(self, on: bool) -> bool:
        try:
            self._driver.set_on(on)
        except ActuatorCommandFailure as e:
            logger.warning("%s; retrying next tick", e)
            self._on_pending = on
            self._off_pending = not on
            return False
        self._on_pending = False
        self._off_pending = False
        return True

    def _notify(self, kind: EventKind, description: str, now: datetime) -> None:
        logger.info(description)
        if self._emit is not None:
            self._emit(Event(kind=kind, description=description, timestamp=now))
