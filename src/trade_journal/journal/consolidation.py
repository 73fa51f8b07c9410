"""Display-time consolidation of partial exits.

When a position is scaled out of in several fills (``split_partial_exits``
mode, or trades imported that way), the journal can show one row per
position instead of one row per exit.  Rows are grouped by ``position_id``,
i.e. by the fill that opened the position.

This is a read-only transform.  Stored trades are never modified.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Sequence

from trade_journal.core.enums import Emotion, Grade, PositionSide
from trade_journal.core.models import Trade


@dataclass(frozen=True)
class PartialLeg:
    """One stored trade inside a consolidated row."""

    trade_id: str
    qty: int
    exit_price: Decimal
    exit_time: datetime
    pnl: Decimal


@dataclass(frozen=True)
class ConsolidatedTrade:
    """All partial exits of one position folded into a single row."""

    key: str
    representative: Trade
    account_id: str
    instrument_id: str
    contract: str
    side: PositionSide
    entry_price: Decimal
    entry_time: datetime
    avg_exit_price: Decimal
    exit_time: datetime
    qty: int
    pnl: Decimal
    commission: Decimal
    is_mistake: bool
    playbook_ids: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    notes: str = ""
    grade: Grade | None = None
    emotion: Emotion | None = None
    partials: list[PartialLeg] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return len(self.partials) > 1

    def to_trade(self) -> Trade:
        """Flatten into a :class:`Trade` view (for stats over consolidated rows)."""
        return self.representative.model_copy(update={
            "trade_key": f"consolidated:{self.key}",
            "entry_price": self.entry_price,
            "entry_time": self.entry_time,
            "exit_price": self.avg_exit_price,
            "exit_time": self.exit_time,
            "qty": self.qty,
            "pnl": self.pnl,
            "commission": self.commission,
            "is_mistake": self.is_mistake,
            "playbook_ids": list(self.playbook_ids),
            "tags": list(self.tags),
            "notes": self.notes,
            "grade": self.grade,
            "emotion": self.emotion,
        })


def _representative(ordered: Sequence[Trade]) -> Trade:
    for trade in ordered:
        if trade.notes.strip():
            return trade
    for trade in ordered:
        if trade.tags:
            return trade
    return ordered[0]


def _fold(key: str, group: Sequence[Trade]) -> ConsolidatedTrade:
    ordered = sorted(group, key=lambda t: t.exit_time)
    rep = _representative(ordered)
    qty = sum(t.qty for t in ordered)

    return ConsolidatedTrade(
        key=key,
        representative=rep,
        account_id=rep.account_id,
        instrument_id=rep.instrument_id,
        contract=rep.contract,
        side=rep.side,
        entry_price=sum((t.entry_price * t.qty for t in ordered), Decimal("0")) / qty,
        entry_time=min(t.entry_time for t in ordered),
        avg_exit_price=sum((t.exit_price * t.qty for t in ordered), Decimal("0")) / qty,
        exit_time=ordered[-1].exit_time,
        qty=qty,
        pnl=sum((t.pnl for t in ordered), Decimal("0")),
        commission=sum((t.commission for t in ordered), Decimal("0")),
        is_mistake=any(t.is_mistake for t in ordered),
        playbook_ids=list(dict.fromkeys(p for t in ordered for p in t.playbook_ids)),
        tags=list(dict.fromkeys(tag for t in ordered for tag in t.tags)),
        notes=" | ".join(t.notes.strip() for t in ordered if t.notes.strip()),
        grade=next((t.grade for t in ordered if t.grade), None),
        emotion=next((t.emotion for t in ordered if t.emotion), None),
        partials=[
            PartialLeg(
                trade_id=t.id,
                qty=t.qty,
                exit_price=t.exit_price,
                exit_time=t.exit_time,
                pnl=t.pnl,
            )
            for t in ordered
        ],
    )


def consolidate(trades: Sequence[Trade]) -> list[ConsolidatedTrade]:
    """Group *trades* by opening position.  Rows keep first-seen order."""
    groups: dict[str, list[Trade]] = {}
    for trade in trades:
        groups.setdefault(trade.position_id, []).append(trade)
    return [_fold(key, group) for key, group in groups.items()]


def journal_view(
    trades: list[Trade], consolidate_partials: bool,
) -> list[Trade] | list[ConsolidatedTrade]:
    """Rows to display: *trades* itself, or its consolidated rows."""
    if not consolidate_partials:
        return trades
    return consolidate(trades)
