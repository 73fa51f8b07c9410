"""Tests for calendar, per-instrument and window breakdowns."""

from datetime import date, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from trade_journal.analytics.breakdown import (
    by_account,
    by_instrument,
    daily_calendar,
    window_stats,
)


class TestDailyCalendar:
    def test_days_follow_timezone(self, make_trade):
        # T0 is 14:30 UTC on 1 March; +10h crosses midnight UTC only
        trades = [make_trade("10", minutes=0), make_trade("-4", minutes=600)]

        utc = daily_calendar(trades, timezone.utc)
        assert [d.day for d in utc.days] == [date(2024, 3, 1), date(2024, 3, 2)]

        chicago = daily_calendar(trades, ZoneInfo("America/Chicago"))
        assert [d.day for d in chicago.days] == [date(2024, 3, 1)]
        assert chicago.days[0].pnl == Decimal("6")
        assert chicago.days[0].trades == 2
        assert chicago.days[0].wins == 1

    def test_green_and_red_days(self, make_trade):
        day = 24 * 60
        calendar = daily_calendar([
            make_trade("10", minutes=0),
            make_trade("-20", minutes=day),
            make_trade("5", minutes=2 * day),
            make_trade("-5", minutes=2 * day + 1),
        ])
        assert calendar.green_days == 1
        assert calendar.red_days == 1
        assert calendar.best_day.day == date(2024, 3, 1)
        assert calendar.worst_day.day == date(2024, 3, 2)
        assert calendar.get(date(2024, 3, 3)).pnl == Decimal("0")
        assert calendar.get(date(2024, 4, 1)) is None

    def test_empty(self):
        calendar = daily_calendar([])
        assert calendar.days == []
        assert calendar.best_day is None


class TestGroupings:
    def test_by_instrument(self, make_trade):
        groups = by_instrument([
            make_trade("10", instrument_id="NQ"),
            make_trade("-5", instrument_id="ES"),
            make_trade("7", instrument_id="NQ", minutes=1),
        ])
        assert list(groups) == ["ES", "NQ"]
        assert groups["NQ"].total_trades == 2
        assert groups["NQ"].net_pnl == Decimal("17")

    def test_by_account(self, make_trade):
        groups = by_account([
            make_trade("10", account_id="b"),
            make_trade("-5", account_id="a"),
        ])
        assert list(groups) == ["a", "b"]
        assert groups["a"].losses == 1


class TestWindowStats:
    def test_bounds_inclusive(self, make_trade, t0):
        trades = [
            make_trade("10", minutes=0),
            make_trade("20", minutes=30),
            make_trade("40", minutes=60),
            make_trade("80", minutes=61),
        ]
        window = window_stats(trades, t0, t0 + timedelta(minutes=60))
        assert window.trade_count == 3
        assert window.net_pnl == Decimal("70")

    def test_prop_firm_filter(self, make_trade, t0):
        trades = [
            make_trade("10", prop_firm_account_id="pf-1"),
            make_trade("20", prop_firm_account_id="pf-2"),
            make_trade("40"),
        ]
        window = window_stats(trades, t0, t0, prop_firm_account_id="pf-1")
        assert window.trade_count == 1
        assert window.net_pnl == Decimal("10")

    def test_empty_window(self, make_trade, t0):
        window = window_stats([make_trade("10")], t0 + timedelta(days=1), t0 + timedelta(days=2))
        assert window.trade_count == 0
        assert window.net_pnl == Decimal("0")
