"""Performance breakdowns: daily calendar, per-instrument, per-account, windows.

Days are calendar days of the trade's exit time in the given timezone
(the broker's session zone, UTC by default).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from typing import Callable, Iterable

from trade_journal.core.models import Trade

from .stats import TradeStats, compute_stats


@dataclass
class DayStats:
    day: date
    pnl: Decimal = Decimal("0")
    trades: int = 0
    wins: int = 0

    @property
    def is_green(self) -> bool:
        return self.pnl > 0

    @property
    def is_red(self) -> bool:
        return self.pnl < 0


@dataclass
class CalendarSummary:
    """Daily P&L calendar, days in ascending order."""

    days: list[DayStats] = field(default_factory=list)

    @property
    def green_days(self) -> int:
        return sum(1 for d in self.days if d.is_green)

    @property
    def red_days(self) -> int:
        return sum(1 for d in self.days if d.is_red)

    @property
    def best_day(self) -> DayStats | None:
        return max(self.days, key=lambda d: d.pnl) if self.days else None

    @property
    def worst_day(self) -> DayStats | None:
        return min(self.days, key=lambda d: d.pnl) if self.days else None

    def get(self, day: date) -> DayStats | None:
        for d in self.days:
            if d.day == day:
                return d
        return None


@dataclass(frozen=True)
class WindowStats:
    trade_count: int
    net_pnl: Decimal


def daily_calendar(trades: Iterable[Trade], tz: tzinfo = timezone.utc) -> CalendarSummary:
    """Bucket trades by exit day in *tz*."""
    buckets: dict[date, DayStats] = {}
    for trade in trades:
        day = trade.exit_time.astimezone(tz).date()
        stats = buckets.get(day)
        if stats is None:
            stats = buckets[day] = DayStats(day=day)
        stats.pnl += trade.pnl
        stats.trades += 1
        if trade.is_win:
            stats.wins += 1
    return CalendarSummary(days=[buckets[d] for d in sorted(buckets)])


def _group_stats(
    trades: Iterable[Trade], key: Callable[[Trade], str],
) -> dict[str, TradeStats]:
    groups: dict[str, list[Trade]] = defaultdict(list)
    for trade in trades:
        groups[key(trade)].append(trade)
    return {k: compute_stats(v) for k, v in sorted(groups.items())}


def by_instrument(trades: Iterable[Trade]) -> dict[str, TradeStats]:
    return _group_stats(trades, lambda t: t.instrument_id)


def by_account(trades: Iterable[Trade]) -> dict[str, TradeStats]:
    return _group_stats(trades, lambda t: t.account_id)


def window_stats(
    trades: Iterable[Trade],
    start: datetime,
    end: datetime,
    *,
    prop_firm_account_id: str | None = None,
) -> WindowStats:
    """Trade count and net pnl of trades exiting in ``[start, end]``."""
    selected = [
        t for t in trades
        if start <= t.exit_time <= end
        and (prop_firm_account_id is None or t.prop_firm_account_id == prop_firm_account_id)
    ]
    return WindowStats(
        trade_count=len(selected),
        net_pnl=sum((t.pnl for t in selected), Decimal("0")),
    )
