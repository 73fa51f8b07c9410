"""SQLAlchemy ORM models for the trade journal database.

Tables:
    trades            one row per matched round trip, unique on trade_key
    sync_states       per-account cursor, open-position carry state and
                      the fill history of CSV ledgers
    broker_accounts   connected Tradovate accounts
    mistakes          trade 1--* mistake annotations
    preferences       process-wide key/value settings

JSON columns use JSONB on PostgreSQL and plain JSON elsewhere.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# TradeRecord
# ---------------------------------------------------------------------------

class TradeRecord(Base):
    """Persisted round-trip trade.

    Maps from :class:`trade_journal.core.models.Trade`.  Economic columns
    are written once at insert; only annotation columns are ever updated.
    """

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trade_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    position_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    instrument_id: Mapped[str] = mapped_column(String(32), nullable=False)
    contract: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    entry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    exit_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    entry_price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    exit_price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    pnl: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    commission: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False, default=Decimal("0"))

    # Annotations
    is_mistake: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    playbook_ids: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    grade: Mapped[str | None] = mapped_column(String(4), nullable=True)
    emotion: Mapped[str | None] = mapped_column(String(16), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    prop_firm_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    __table_args__ = (
        Index("ix_trades_account_exit", "account_id", "exit_time"),
        Index("ix_trades_position_id", "position_id"),
        Index("ix_trades_prop_firm_account_id", "prop_firm_account_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<TradeRecord {self.trade_key} {self.contract} {self.side} "
            f"qty={self.qty} pnl={self.pnl}>"
        )


# ---------------------------------------------------------------------------
# SyncStateRecord
# ---------------------------------------------------------------------------

class SyncStateRecord(Base):
    """Cursor and carry state of one account (or CSV ledger)."""

    __tablename__ = "sync_states"

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    cursor_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cursor_fill_keys: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    open_positions: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    ledger_fills: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    last_sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default="never")
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)


# ---------------------------------------------------------------------------
# BrokerAccountRecord
# ---------------------------------------------------------------------------

class BrokerAccountRecord(Base):
    """Connected Tradovate account.  Credentials are stored elsewhere."""

    __tablename__ = "broker_accounts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    broker_account_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    environment: Mapped[str] = mapped_column(String(8), nullable=False, default="demo")
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    prop_firm_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


# ---------------------------------------------------------------------------
# MistakeRecord
# ---------------------------------------------------------------------------

class MistakeRecord(Base):
    """Mistake annotation attached to a trade."""

    __tablename__ = "mistakes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trade_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trades.id", ondelete="CASCADE"), nullable=False,
    )
    mistake_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    severity: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    __table_args__ = (
        Index("ix_mistakes_trade_id", "trade_id"),
    )


# ---------------------------------------------------------------------------
# PreferenceRecord
# ---------------------------------------------------------------------------

class PreferenceRecord(Base):
    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )
