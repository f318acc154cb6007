"""Wall-clock abstraction so retry schedules and expiry can be tested."""

from datetime import datetime
from typing import Protocol

from santachat.timeutil import utc_now


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return utc_now()
