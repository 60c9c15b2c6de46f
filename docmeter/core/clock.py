"""Per-request time snapshot used for day and month boundaries."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable


@dataclass(frozen=True)
class RequestClock:
    """A single reading of the clock shared by every component in a request."""

    now: datetime

    @property
    def today(self) -> date:
        return self.now.date()

    @property
    def month_start(self) -> date:
        return self.today.replace(day=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Clock:
    """Produces :class:`RequestClock` snapshots; swap ``source`` in tests."""

    def __init__(self, source: Callable[[], datetime] = utc_now) -> None:
        self.source = source

    def snapshot(self) -> RequestClock:
        return RequestClock(now=self.source())
