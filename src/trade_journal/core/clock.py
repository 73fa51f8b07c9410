"""Time sources for the journal.

Token expiry checks, sync timestamps and import bookkeeping read the time
through an :class:`IClock` so tests can pin it with :class:`SimClock`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

_EPOCH_2024 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class IClock(Protocol):
    def now(self) -> datetime:
        """Timezone-aware UTC instant."""
        ...


class WallClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimClock:
    """Manually driven clock that refuses to run backwards."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or _EPOCH_2024

    def now(self) -> datetime:
        return self._now

    def set_time(self, t: datetime) -> None:
        if t < self._now:
            raise ValueError(f"SimClock cannot go backwards: {t} < {self._now}")
        self._now = t

    def advance(self, seconds: float | timedelta) -> None:
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self.set_time(self._now + step)
