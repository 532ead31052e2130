"""Clock capability - the single source of "now" for ledger timestamps."""

from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current UTC time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Clock pinned to one instant; ``advance`` moves it forward."""

    def __init__(self, instant: datetime) -> None:
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, instant: datetime) -> None:
        if instant < self._instant:
            raise ValueError("FixedClock cannot move backwards")
        self._instant = instant
