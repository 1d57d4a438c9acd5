from __future__ import annotations

from datetime import datetime

import pytest

from common.models import DispenseResource, EventKind, RequestResult, TriggerSource
from common.settings import ScheduleTable
from conftest import FakeDriver
from executor.dispense_coordinator import DispenseCoordinator
from planner.schedule_engine import ScheduleEngine

EIGHT_AM = ScheduleTable(frozenset({8}))


@pytest.fixture()
def feeder() -> FakeDriver:
    return FakeDriver("feeder")


@pytest.fixture()
def coordinator(clock, feeder) -> DispenseCoordinator:
    return DispenseCoordinator(
        DispenseResource.FEED, feeder, clock, cooldown_s=30.0, max_timeout_s=90.0, amount_for=lambda d: d * 50.0
    )


def _at(clock, coordinator, when: datetime) -> None:
    clock.set(when)
    coordinator.poll()


def test_fires_once_per_enabled_hour(clock, coordinator, feeder, recorder) -> None:
    engine = ScheduleEngine(coordinator, clock, lambda: 2.0, emit=recorder)

    _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, 0))
    request = engine.poll(EIGHT_AM)
    assert request is not None
    assert request.source is TriggerSource.SCHEDULED
    assert request.duration_s == 2.0
    assert engine.last_triggered_hour == 8

    for when in (
        datetime(2026, 3, 2, 8, 0, 1),
        datetime(2026, 3, 2, 8, 0, 59),
        datetime(2026, 3, 2, 8, 1, 0),
        datetime(2026, 3, 2, 8, 59, 0),
        datetime(2026, 3, 2, 9, 0, 0),
    ):
        _at(clock, coordinator, when)
        assert engine.poll(EIGHT_AM) is None

    _at(clock, coordinator, datetime(2026, 3, 3, 8, 0, 0))
    assert engine.poll(EIGHT_AM) is not None

    assert feeder.commands.count(True) == 2
    assert recorder.kinds() == [EventKind.SCHEDULED_FEEDING.value] * 2
    assert recorder.events[0].description == "Scheduled feeding activated at hour 8"


def test_disabled_hours_and_switch(clock, coordinator) -> None:
    engine = ScheduleEngine(coordinator, clock, lambda: 2.0)
    _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, 0))
    assert engine.poll(ScheduleTable(frozenset({9}))) is None
    assert engine.poll(EIGHT_AM, enabled=False) is None
    assert coordinator.is_idle


def test_restart_inside_minute_zero_does_not_repeat(clock, coordinator) -> None:
    clock.set(datetime(2026, 3, 2, 8, 0, 5))
    engine = ScheduleEngine(coordinator, clock, lambda: 2.0)
    assert engine.poll(EIGHT_AM) is None
    assert coordinator.is_idle


def test_busy_coordinator_defers_within_minute_zero(clock, coordinator) -> None:
    engine = ScheduleEngine(coordinator, clock, lambda: 2.0)
    clock.set(datetime(2026, 3, 2, 7, 59, 50))
    assert coordinator.request(20.0, TriggerSource.MANUAL) is RequestResult.ACCEPTED

    _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, 0))
    assert engine.poll(EIGHT_AM) is None
    assert engine.last_triggered_hour is None

    # manual job ends at 08:00:10, cooldown until 08:00:40
    _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, 10))
    assert engine.poll(EIGHT_AM) is None
    _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, 40))
    request = engine.poll(EIGHT_AM)
    assert request is not None
    assert coordinator.job.trigger_source is TriggerSource.SCHEDULED


def test_busy_past_minute_zero_skips_the_hour(clock, coordinator) -> None:
    engine = ScheduleEngine(coordinator, clock, lambda: 2.0)
    clock.set(datetime(2026, 3, 2, 7, 59, 50))
    coordinator.request(60.0, TriggerSource.MANUAL)

    for second in range(0, 60, 5):
        _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, second))
        assert engine.poll(EIGHT_AM) is None
    _at(clock, coordinator, datetime(2026, 3, 2, 8, 2, 0))
    assert engine.poll(EIGHT_AM) is None
    assert coordinator.job.trigger_source is TriggerSource.MANUAL


def test_invalid_duration_consumes_the_slot(clock, coordinator, feeder) -> None:
    calls = []

    def zero_duration() -> float:
        calls.append(1)
        return 0.0

    engine = ScheduleEngine(coordinator, clock, zero_duration)
    _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, 0))
    assert engine.poll(EIGHT_AM) is None
    _at(clock, coordinator, datetime(2026, 3, 2, 8, 0, 1))
    assert engine.poll(EIGHT_AM) is None

    assert len(calls) == 1
    assert engine.last_triggered_hour == 8
    assert feeder.commands == []
