"""Aggregate performance statistics over a trade set.

Pure and Decimal-exact.  Nothing is cached: every call recomputes from the
trades it is given, so edits and deletions are always reflected.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from trade_journal.core.models import Trade

_ZERO = Decimal("0")


@dataclass(frozen=True)
class TradeStats:
    """Summary statistics for a set of trades.

    ``win_rate`` is a fraction in [0, 1].  ``avg_loss`` is the (negative)
    mean pnl of losing trades.  ``profit_factor`` is ``None`` when there are
    no losing trades.  ``max_drawdown`` is the largest peak-to-trough drop
    of cumulative pnl ordered by exit time, with the peak starting at zero.
    """

    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    net_pnl: Decimal = _ZERO
    gross_profit: Decimal = _ZERO
    gross_loss: Decimal = _ZERO
    total_commission: Decimal = _ZERO
    win_rate: Decimal = _ZERO
    avg_win: Decimal = _ZERO
    avg_loss: Decimal = _ZERO
    profit_factor: Decimal | None = None
    expectancy: Decimal = _ZERO
    max_drawdown: Decimal = _ZERO
    best_trade: Trade | None = None
    worst_trade: Trade | None = None

    @property
    def breakeven(self) -> int:
        return self.total_trades - self.wins - self.losses

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly summary; Decimals are rendered as strings."""
        def _s(value: Decimal | None) -> str | None:
            return None if value is None else str(value)

        return {
            "total_trades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "breakeven": self.breakeven,
            "net_pnl": _s(self.net_pnl),
            "gross_profit": _s(self.gross_profit),
            "gross_loss": _s(self.gross_loss),
            "total_commission": _s(self.total_commission),
            "win_rate": _s(self.win_rate),
            "avg_win": _s(self.avg_win),
            "avg_loss": _s(self.avg_loss),
            "profit_factor": _s(self.profit_factor),
            "expectancy": _s(self.expectancy),
            "max_drawdown": _s(self.max_drawdown),
            "best_trade": _s(self.best_trade.pnl) if self.best_trade else None,
            "best_trade_id": self.best_trade.id if self.best_trade else None,
            "worst_trade": _s(self.worst_trade.pnl) if self.worst_trade else None,
            "worst_trade_id": self.worst_trade.id if self.worst_trade else None,
        }


def max_drawdown(trades: Iterable[Trade]) -> Decimal:
    """Largest peak-to-trough decline of the equity curve (peak starts at 0)."""
    equity = peak = worst = _ZERO
    for trade in sorted(trades, key=lambda t: t.exit_time):
        equity += trade.pnl
        peak = max(peak, equity)
        worst = max(worst, peak - equity)
    return worst


def compute_stats(trades: Iterable[Trade]) -> TradeStats:
    """Compute :class:`TradeStats` for *trades*.  An empty set yields zeros."""
    trades = list(trades)
    if not trades:
        return TradeStats()

    winners = [t for t in trades if t.is_win]
    losers = [t for t in trades if t.is_loss]
    gross_profit = sum((t.pnl for t in winners), _ZERO)
    gross_loss = sum((t.pnl for t in losers), _ZERO)

    total = len(trades)
    win_rate = Decimal(len(winners)) / Decimal(total)
    avg_win = gross_profit / len(winners) if winners else _ZERO
    avg_loss = gross_loss / len(losers) if losers else _ZERO

    return TradeStats(
        total_trades=total,
        wins=len(winners),
        losses=len(losers),
        net_pnl=sum((t.pnl for t in trades), _ZERO),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        total_commission=sum((t.commission for t in trades), _ZERO),
        win_rate=win_rate,
        avg_win=avg_win,
        avg_loss=avg_loss,
        profit_factor=gross_profit / -gross_loss if losers else None,
        expectancy=win_rate * avg_win + (1 - win_rate) * avg_loss,
        max_drawdown=max_drawdown(trades),
        best_trade=max(trades, key=lambda t: t.pnl),
        worst_trade=min(trades, key=lambda t: t.pnl),
    )
