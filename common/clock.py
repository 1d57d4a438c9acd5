from datetime import datetime, tzinfo
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in the coop's local time zone."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


def make_clock(timezone: Optional[str] = None) -> SystemClock:
    if not timezone:
        return SystemClock()
    from zoneinfo import ZoneInfo

    return SystemClock(ZoneInfo(timezone))
