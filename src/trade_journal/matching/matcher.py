"""FIFO position matcher: ordered fills -> round-trip trades.

Pure and synchronous.  The trades of an account are a function of its
ordered fill sequence alone, so re-running the matcher over the same fills
(with the same carried-over positions) yields identical trades, ids
included.

Per (account, contract) the matcher keeps a queue of open lots; different
expiries of one root symbol never net against each other.  A fill
on the position side (or on a flat book) pushes a lot; an opposing fill
consumes the oldest lots first.  A trade is emitted when the position
returns to zero and aggregates every partial exit taken since it opened.
Excess quantity on a closing fill opens a fresh position on the other side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from trade_journal.core.config import MatchingConfig
from trade_journal.core.enums import PositionSide
from trade_journal.core.ids import content_hash, key_to_uuid
from trade_journal.core.models import Fill, Lot, OpenPosition, Trade

logger = logging.getLogger(__name__)

_COMMISSION_QUANTUM = Decimal("0.00000001")

BookKey = tuple[str, str]


@dataclass
class MatchResult:
    trades: list[Trade] = field(default_factory=list)
    open_positions: list[OpenPosition] = field(default_factory=list)
    # trade_key -> keys of the fills seen in that trade's position so far
    fill_keys: dict[str, frozenset[str]] = field(default_factory=dict)


def position_identity(account_id: str, contract: str, opening_fill_key: str) -> str:
    return content_hash(account_id, contract, opening_fill_key)


def trade_identity(
    account_id: str,
    contract: str,
    opening_fill_key: str,
    closing_fill_key: str,
    exit_number: int | None = None,
) -> str:
    """Content key of a trade.

    Split-mode rows also carry their 1-based *exit_number* within the
    position, since composite fill keys need not be unique.
    """
    parts = [account_id, contract, opening_fill_key, closing_fill_key]
    if exit_number is not None:
        parts.append(str(exit_number))
    return content_hash(*parts)


def _share(amount: Decimal, part: int, whole: int) -> Decimal:
    """Pro-rated share of *amount* for *part* of *whole* units."""
    if part >= whole:
        return amount
    return (amount * part / whole).quantize(_COMMISSION_QUANTUM)


class PositionMatcher:
    """Matches fills into trades using strict FIFO lot accounting.

    Parameters
    ----------
    config:
        Point values per instrument and the ``split_partial_exits`` mode.
        In split mode every closing fill emits its own trade row; all rows
        of one position share the ``position_id``.
    """

    def __init__(self, config: MatchingConfig | None = None) -> None:
        self._config = config or MatchingConfig()

    @property
    def split_partial_exits(self) -> bool:
        return self._config.split_partial_exits

    def match(
        self,
        fills: Iterable[Fill],
        open_positions: Iterable[OpenPosition] = (),
    ) -> MatchResult:
        """Match *fills* on top of the carried-over *open_positions*.

        Inputs are never mutated.  Fills are stably sorted by timestamp, so
        fills sharing an instant keep their input order.
        """
        books: dict[BookKey, OpenPosition] = {}
        members: dict[BookKey, list[str]] = {}
        for pos in open_positions:
            key = (pos.account_id, pos.contract)
            books[key] = pos.model_copy(deep=True)
            members[key] = [pos.opening_fill_key, *(lot.fill_key for lot in pos.lots)]

        result = MatchResult()
        for fill in sorted(fills, key=lambda f: f.timestamp):
            key = (fill.account_id, fill.contract)
            pos = books.get(key)
            if pos is None:
                books[key] = self._open(fill, fill.qty, fill.commission)
                members[key] = [fill.key]
                continue

            members[key].append(fill.key)
            if PositionSide.from_fill_side(fill.side) is pos.side:
                pos.lots.append(_lot(fill, fill.qty, fill.commission))
                continue

            for trade in self._close(books, key, pos, fill):
                result.trades.append(trade)
                result.fill_keys[trade.trade_key] = frozenset(members[key])
            if books.get(key) is not pos:
                members[key] = [fill.key]

        result.open_positions = sorted(
            books.values(), key=lambda p: (p.account_id, p.contract),
        )
        logger.debug(
            "Matched %d trades, %d open positions",
            len(result.trades), len(result.open_positions),
        )
        return result

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #

    def _open(self, fill: Fill, qty: int, commission: Decimal) -> OpenPosition:
        return OpenPosition(
            account_id=fill.account_id,
            instrument_id=fill.instrument_id,
            contract=fill.contract,
            side=PositionSide.from_fill_side(fill.side),
            position_id=position_identity(fill.account_id, fill.contract, fill.key),
            opening_fill_key=fill.key,
            opened_at=fill.timestamp,
            lots=[_lot(fill, qty, commission)],
        )

    def _close(
        self,
        books: dict[BookKey, OpenPosition],
        key: BookKey,
        pos: OpenPosition,
        fill: Fill,
    ) -> list[Trade]:
        point_value = self._config.point_value(fill.instrument_id)
        remaining = fill.qty
        exit_commission_left = fill.commission

        while remaining and pos.lots:
            lot = pos.lots[0]
            matched = min(lot.qty, remaining)

            entry_commission = _share(lot.commission, matched, lot.qty)
            if matched == remaining:
                exit_commission = exit_commission_left
            else:
                exit_commission = _share(fill.commission, matched, fill.qty)
            exit_commission_left -= exit_commission

            pos.gross_pnl += (fill.price - lot.price) * matched * pos.side.sign * point_value
            pos.entry_notional += lot.price * matched
            pos.exit_notional += fill.price * matched
            pos.closed_qty += matched
            pos.commission += entry_commission + exit_commission

            if matched == lot.qty:
                pos.lots.pop(0)
            else:
                lot.qty -= matched
                lot.commission -= entry_commission
            remaining -= matched

        emitted: list[Trade] = []
        if pos.is_flat or self.split_partial_exits:
            emitted.append(self._emit(pos, fill))

        if pos.is_flat:
            del books[key]
            if remaining:
                books[key] = self._open(fill, remaining, exit_commission_left)
        return emitted

    def _emit(self, pos: OpenPosition, closing: Fill) -> Trade:
        """Build the trade for the accumulated round trip and reset the accumulators."""
        pos.exits += 1
        trade_key = trade_identity(
            pos.account_id,
            pos.contract,
            pos.opening_fill_key,
            closing.key,
            pos.exits if self.split_partial_exits else None,
        )
        qty = pos.closed_qty
        trade = Trade(
            id=key_to_uuid(trade_key),
            trade_key=trade_key,
            position_id=pos.position_id,
            account_id=pos.account_id,
            instrument_id=pos.instrument_id,
            contract=pos.contract,
            side=pos.side,
            entry_time=pos.opened_at,
            exit_time=closing.timestamp,
            entry_price=pos.entry_notional / qty,
            exit_price=pos.exit_notional / qty,
            qty=qty,
            pnl=pos.gross_pnl - pos.commission,
            commission=pos.commission,
        )
        pos.closed_qty = 0
        pos.entry_notional = Decimal("0")
        pos.exit_notional = Decimal("0")
        pos.gross_pnl = Decimal("0")
        pos.commission = Decimal("0")
        return trade


def _lot(fill: Fill, qty: int, commission: Decimal) -> Lot:
    return Lot(
        qty=qty,
        price=fill.price,
        open_time=fill.timestamp,
        side=fill.side,
        fill_key=fill.key,
        commission=commission,
    )
