"""Performance statistics and breakdowns computed on read."""

from .breakdown import by_account, by_instrument, daily_calendar, window_stats
from .stats import TradeStats, compute_stats

__all__ = [
    "TradeStats",
    "by_account",
    "by_instrument",
    "compute_stats",
    "daily_calendar",
    "window_stats",
]
