# planner/schedule_engine.py
import logging
from datetime import date
from typing import Callable, Optional, Tuple

from common.clock import Clock
from common.models import (
    DispenseResource,
    Event,
    EventKind,
    EventSink,
    RequestResult,
    TriggerRequest,
    TriggerSource,
)
from common.settings import ScheduleTable
from executor.dispense_coordinator import DispenseCoordinator

logger = logging.getLogger(__name__)

SCHEDULE_EVENTS = {
    DispenseResource.FEED: (EventKind.SCHEDULED_FEEDING, "Scheduled feeding activated at hour {hour}"),
    DispenseResource.WATER: (EventKind.SCHEDULED_WATER_FILL, "Scheduled water filling activated at hour {hour}"),
}


class ScheduleEngine:
    """
    Hourly trigger source for one dispense resource.

    Fires at minute 0 of every enabled hour, at most once per (date, hour).
    The engine is primed with the hour it starts in, so a restart during
    minute 0 does not repeat that hour's dispense. A trigger the coordinator
    rejects (busy or cooling down) is retried on the next poll while still
    inside minute 0.
    """

    def __init__(
        self,
        coordinator: DispenseCoordinator,
        clock: Clock,
        duration_for: Callable[[], float],
        emit: Optional[EventSink] = None,
    ):
        self._coordinator = coordinator
        self._clock = clock
        self._duration_for = duration_for
        self._emit = emit
        now = clock.now()
        self._last_triggered: Optional[Tuple[date, int]] = (now.date(), now.hour)

    @property
    def resource(self) -> DispenseResource:
        return self._coordinator.resource

    @property
    def last_triggered_hour(self) -> Optional[int]:
        return self._last_triggered[1] if self._last_triggered else None

    def poll(self, table: ScheduleTable, enabled: bool = True) -> Optional[TriggerRequest]:
        now = self._clock.now()
        slot = (now.date(), now.hour)

        # the hour moved on: forget the old one so tomorrow's occurrence can fire
        if self._last_triggered is not None and self._last_triggered != slot:
            self._last_triggered = None

        if not enabled or not table.is_enabled(now.hour) or now.minute != 0:
            return None
        if self._last_triggered == slot:
            return None

        request = TriggerRequest(
            resource=self.resource,
            duration_s=self._duration_for(),
            source=TriggerSource.SCHEDULED,
        )
        result = self._coordinator.request(request.duration_s, request.source)
        if result is RequestResult.BUSY:
            logger.debug("Scheduled %s at hour %d deferred: coordinator busy", self.resource.value, now.hour)
            return None

        # INVALID (e.g. zero chickens configured) still consumes the slot
        self._last_triggered = slot
        if result is not RequestResult.ACCEPTED:
            logger.warning("Scheduled %s at hour %d skipped: %s", self.resource.value, now.hour, result.value)
            return None

        kind, template = SCHEDULE_EVENTS[self.resource]
        description = template.format(hour=now.hour)
        logger.info(description)
        if self._emit is not None:
            self._emit(Event(kind=kind, description=description, timestamp=now))
        return request
