"""Injectable time source so "today" is never read implicitly"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo


class Clock:
    """Source of the current time in the business timezone"""

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock in a fixed timezone"""

    def __init__(self, tz_name: str):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FrozenClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, at: datetime):
        self._now = at

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = at

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self._now = self._now + timedelta(days=days, hours=hours)
