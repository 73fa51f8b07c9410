"""SQL journal store.

Implements :class:`~trade_journal.core.interfaces.IJournalStore` on the
module-level session from :mod:`.connection`.  Trades are inserted with
``INSERT ... ON CONFLICT (trade_key) DO NOTHING`` so sync replays and
overlapping imports never duplicate rows; a sync cycle's trades and state
are written in one transaction.

Conversion helpers translate between core domain models
(:mod:`trade_journal.core.models`) and ORM records.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from trade_journal.core.enums import (
    Emotion,
    Environment,
    Grade,
    PositionSide,
    SyncStatus,
)
from trade_journal.core.errors import NotFoundError
from trade_journal.core.interfaces import UpsertResult
from trade_journal.core.models import (
    BrokerAccount,
    Fill,
    Mistake,
    OpenPosition,
    SyncCursor,
    SyncState,
    Trade,
)

from ..annotations import apply_annotation_changes
from .connection import get_engine, get_session
from .models import (
    BrokerAccountRecord,
    MistakeRecord,
    PreferenceRecord,
    SyncStateRecord,
    TradeRecord,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; all stored instants are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _trade_row(trade: Trade) -> dict[str, Any]:
    return {
        "id": trade.id,
        "trade_key": trade.trade_key,
        "position_id": trade.position_id,
        "account_id": trade.account_id,
        "instrument_id": trade.instrument_id,
        "contract": trade.contract,
        "side": trade.side.value,
        "entry_time": trade.entry_time,
        "exit_time": trade.exit_time,
        "entry_price": trade.entry_price,
        "exit_price": trade.exit_price,
        "qty": trade.qty,
        "pnl": trade.pnl,
        "commission": trade.commission,
        "is_mistake": trade.is_mistake,
        "playbook_ids": list(trade.playbook_ids),
        "grade": trade.grade.value if trade.grade else None,
        "emotion": trade.emotion.value if trade.emotion else None,
        "notes": trade.notes,
        "tags": list(trade.tags),
        "prop_firm_account_id": trade.prop_firm_account_id,
        "created_at": datetime.now(timezone.utc),
    }


def _record_to_trade(record: TradeRecord) -> Trade:
    return Trade(
        id=record.id,
        trade_key=record.trade_key,
        position_id=record.position_id,
        account_id=record.account_id,
        instrument_id=record.instrument_id,
        contract=record.contract,
        side=PositionSide(record.side),
        entry_time=_aware(record.entry_time),
        exit_time=_aware(record.exit_time),
        entry_price=record.entry_price,
        exit_price=record.exit_price,
        qty=record.qty,
        pnl=record.pnl,
        commission=record.commission,
        is_mistake=record.is_mistake,
        playbook_ids=list(record.playbook_ids or []),
        grade=Grade(record.grade) if record.grade else None,
        emotion=Emotion(record.emotion) if record.emotion else None,
        notes=record.notes or "",
        tags=list(record.tags or []),
        prop_firm_account_id=record.prop_firm_account_id,
    )


def _record_to_state(record: SyncStateRecord) -> SyncState:
    return SyncState(
        account_id=record.account_id,
        cursor=SyncCursor(
            timestamp=_aware(record.cursor_timestamp),
            fill_keys=list(record.cursor_fill_keys or []),
        ),
        open_positions=[OpenPosition.model_validate(p) for p in record.open_positions or []],
        ledger_fills=[Fill.model_validate(f) for f in record.ledger_fills or []],
        last_sync_status=SyncStatus(record.last_sync_status),
        last_sync_at=_aware(record.last_sync_at),
        last_error=record.last_error,
    )


def _state_to_record(state: SyncState) -> SyncStateRecord:
    return SyncStateRecord(
        account_id=state.account_id,
        cursor_timestamp=state.cursor.timestamp,
        cursor_fill_keys=list(state.cursor.fill_keys),
        open_positions=[p.model_dump(mode="json") for p in state.open_positions],
        ledger_fills=[f.model_dump(mode="json") for f in state.ledger_fills],
        last_sync_status=state.last_sync_status.value,
        last_sync_at=state.last_sync_at,
        last_error=state.last_error,
    )


def _record_to_account(record: BrokerAccountRecord) -> BrokerAccount:
    return BrokerAccount(
        id=record.id,
        broker_account_id=record.broker_account_id,
        environment=Environment(record.environment),
        name=record.name,
        is_active=record.is_active,
        prop_firm_account_id=record.prop_firm_account_id,
    )


def _record_to_mistake(record: MistakeRecord) -> Mistake:
    return Mistake(
        id=record.id,
        trade_id=record.trade_id,
        mistake_type=record.mistake_type,
        description=record.description,
        severity=record.severity,
        created_at=_aware(record.created_at),
    )


def _insert_ignoring_duplicates(dialect: str, row: dict[str, Any]):
    """``INSERT ... ON CONFLICT (trade_key) DO NOTHING`` for *dialect*."""
    if dialect == "postgresql":
        stmt = postgresql.insert(TradeRecord)
    elif dialect == "sqlite":
        stmt = sqlite.insert(TradeRecord)
    else:
        raise NotImplementedError(f"Unsupported database dialect: {dialect}")
    return stmt.values(**row).on_conflict_do_nothing(index_elements=["trade_key"])


# ---------------------------------------------------------------------------
# SqlJournalStore
# ---------------------------------------------------------------------------

class SqlJournalStore:
    """Journal store on SQLAlchemy async sessions.

    Requires :func:`~.connection.init_engine` to have been called.  Also
    implements the preference store.
    """

    # -- Sync state ----------------------------------------------------------

    async def get_sync_state(self, account_id: str) -> SyncState:
        async with get_session() as session:
            record = await session.get(SyncStateRecord, account_id)
            if record is None:
                return SyncState(account_id=account_id)
            return _record_to_state(record)

    async def commit_sync_cycle(
        self, state: SyncState, trades: Sequence[Trade],
    ) -> UpsertResult:
        dialect = get_engine().dialect.name
        inserted = skipped = linked = 0
        async with get_session() as session:
            for trade in trades:
                result = await session.execute(
                    _insert_ignoring_duplicates(dialect, _trade_row(trade))
                )
                if result.rowcount:
                    inserted += 1
                    continue
                skipped += 1
                if trade.prop_firm_account_id:
                    linked += await self._link(
                        session, [trade.trade_key], trade.prop_firm_account_id,
                    )
            await session.merge(_state_to_record(state))

        logger.debug(
            "Committed cycle for %s: %d inserted, %d skipped",
            state.account_id, inserted, skipped,
        )
        return UpsertResult(inserted=inserted, skipped=skipped, linked=linked)

    async def record_sync_failure(
        self, account_id: str, error: str, at: datetime,
    ) -> None:
        async with get_session() as session:
            record = await session.get(SyncStateRecord, account_id)
            if record is None:
                record = _state_to_record(SyncState(account_id=account_id))
                session.add(record)
            record.last_sync_status = SyncStatus.FAILED.value
            record.last_sync_at = at
            record.last_error = error

    # -- Trades --------------------------------------------------------------

    async def list_trades(
        self,
        *,
        account_id: str | None = None,
        prop_firm_account_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Trade]:
        stmt = select(TradeRecord).order_by(TradeRecord.exit_time, TradeRecord.trade_key)
        if account_id is not None:
            stmt = stmt.where(TradeRecord.account_id == account_id)
        if prop_firm_account_id is not None:
            stmt = stmt.where(TradeRecord.prop_firm_account_id == prop_firm_account_id)
        if start is not None:
            stmt = stmt.where(TradeRecord.exit_time >= start.astimezone(timezone.utc))
        if end is not None:
            stmt = stmt.where(TradeRecord.exit_time <= end.astimezone(timezone.utc))

        async with get_session() as session:
            result = await session.execute(stmt)
            return [_record_to_trade(r) for r in result.scalars().all()]

    async def get_trade(self, trade_id: str) -> Trade:
        async with get_session() as session:
            return _record_to_trade(await self._require_trade(session, trade_id))

    async def update_trade_annotations(
        self, trade_id: str, changes: Mapping[str, Any],
    ) -> Trade:
        async with get_session() as session:
            record = await self._require_trade(session, trade_id)
            updated = apply_annotation_changes(_record_to_trade(record), changes)
            record.is_mistake = updated.is_mistake
            record.playbook_ids = list(updated.playbook_ids)
            record.grade = updated.grade.value if updated.grade else None
            record.emotion = updated.emotion.value if updated.emotion else None
            record.notes = updated.notes
            record.tags = list(updated.tags)
            record.prop_firm_account_id = updated.prop_firm_account_id
            return updated

    async def delete_trade(self, trade_id: str) -> None:
        async with get_session() as session:
            record = await self._require_trade(session, trade_id)
            await session.execute(delete(MistakeRecord).where(MistakeRecord.trade_id == trade_id))
            await session.delete(record)

    async def link_prop_firm_account(
        self, trade_keys: Sequence[str], prop_firm_account_id: str,
    ) -> int:
        async with get_session() as session:
            return await self._link(session, trade_keys, prop_firm_account_id)

    @staticmethod
    async def _link(
        session: AsyncSession, trade_keys: Sequence[str], prop_firm_account_id: str,
    ) -> int:
        result = await session.execute(
            update(TradeRecord)
            .where(
                TradeRecord.trade_key.in_(list(trade_keys)),
                TradeRecord.prop_firm_account_id.is_(None),
            )
            .values(prop_firm_account_id=prop_firm_account_id)
        )
        return result.rowcount or 0

    @staticmethod
    async def _require_trade(session: AsyncSession, trade_id: str) -> TradeRecord:
        record = await session.get(TradeRecord, trade_id)
        if record is None:
            raise NotFoundError(f"Trade {trade_id} not found")
        return record

    # -- Mistakes ------------------------------------------------------------

    async def add_mistake(self, mistake: Mistake) -> Mistake:
        async with get_session() as session:
            await self._require_trade(session, mistake.trade_id)
            session.add(MistakeRecord(
                id=mistake.id,
                trade_id=mistake.trade_id,
                mistake_type=mistake.mistake_type,
                description=mistake.description,
                severity=mistake.severity,
                created_at=mistake.created_at,
            ))
        return mistake

    async def delete_mistake(self, mistake_id: str) -> Mistake:
        async with get_session() as session:
            record = await session.get(MistakeRecord, mistake_id)
            if record is None:
                raise NotFoundError(f"Mistake {mistake_id} not found")
            mistake = _record_to_mistake(record)
            await session.delete(record)
        return mistake

    async def list_mistakes(self, trade_id: str) -> list[Mistake]:
        stmt = (
            select(MistakeRecord)
            .where(MistakeRecord.trade_id == trade_id)
            .order_by(MistakeRecord.created_at)
        )
        async with get_session() as session:
            result = await session.execute(stmt)
            return [_record_to_mistake(r) for r in result.scalars().all()]

    # -- Broker accounts -----------------------------------------------------

    async def list_broker_accounts(
        self, *, active_only: bool = True,
    ) -> list[BrokerAccount]:
        stmt = select(BrokerAccountRecord).order_by(BrokerAccountRecord.id)
        if active_only:
            stmt = stmt.where(BrokerAccountRecord.is_active.is_(True))
        async with get_session() as session:
            result = await session.execute(stmt)
            return [_record_to_account(r) for r in result.scalars().all()]

    async def get_broker_account(self, account_id: str) -> BrokerAccount:
        async with get_session() as session:
            record = await session.get(BrokerAccountRecord, account_id)
            if record is None:
                raise NotFoundError(f"Broker account {account_id} not found")
            return _record_to_account(record)

    async def upsert_broker_account(self, account: BrokerAccount) -> BrokerAccount:
        async with get_session() as session:
            await session.merge(BrokerAccountRecord(
                id=account.id,
                broker_account_id=account.broker_account_id,
                environment=account.environment.value,
                name=account.name,
                is_active=account.is_active,
                prop_firm_account_id=account.prop_firm_account_id,
            ))
        return account

    # -- Preferences ---------------------------------------------------------

    async def get_preference(self, key: str) -> str | None:
        async with get_session() as session:
            record = await session.get(PreferenceRecord, key)
            return record.value if record is not None else None

    async def set_preference(self, key: str, value: str) -> None:
        async with get_session() as session:
            await session.merge(PreferenceRecord(
                key=key, value=value, updated_at=datetime.now(timezone.utc),
            ))
