"""In-process journal store.

Implements the same contract as the SQL store: insert-if-absent on
``trade_key`` and atomic sync-cycle commits.  Reads return copies so
callers can never mutate stored state.  Used by tests and dry runs.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping, Sequence

from trade_journal.core.enums import SyncStatus
from trade_journal.core.errors import NotFoundError
from trade_journal.core.interfaces import UpsertResult
from trade_journal.core.models import BrokerAccount, Mistake, SyncState, Trade

from .annotations import apply_annotation_changes

logger = logging.getLogger(__name__)


class InMemoryJournalStore:
    """Dict-backed journal store; also serves as a preference store."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._states: dict[str, SyncState] = {}
        self._trades: dict[str, Trade] = {}
        self._ids_by_key: dict[str, str] = {}
        self._accounts: dict[str, BrokerAccount] = {}
        self._mistakes: dict[str, Mistake] = {}
        self._preferences: dict[str, str] = {}

    # -- Sync state ----------------------------------------------------------

    async def get_sync_state(self, account_id: str) -> SyncState:
        state = self._states.get(account_id)
        if state is None:
            return SyncState(account_id=account_id)
        return state.model_copy(deep=True)

    async def commit_sync_cycle(
        self, state: SyncState, trades: Sequence[Trade],
    ) -> UpsertResult:
        async with self._lock:
            inserted = skipped = linked = 0
            for trade in trades:
                existing_id = self._ids_by_key.get(trade.trade_key)
                if existing_id is None:
                    self._trades[trade.id] = trade.model_copy(deep=True)
                    self._ids_by_key[trade.trade_key] = trade.id
                    inserted += 1
                    continue
                skipped += 1
                existing = self._trades[existing_id]
                if trade.prop_firm_account_id and existing.prop_firm_account_id is None:
                    existing.prop_firm_account_id = trade.prop_firm_account_id
                    linked += 1
            self._states[state.account_id] = state.model_copy(deep=True)
        return UpsertResult(inserted=inserted, skipped=skipped, linked=linked)

    async def record_sync_failure(
        self, account_id: str, error: str, at: datetime,
    ) -> None:
        async with self._lock:
            state = self._states.get(account_id) or SyncState(account_id=account_id)
            self._states[account_id] = state.model_copy(update={
                "last_sync_status": SyncStatus.FAILED,
                "last_sync_at": at,
                "last_error": error,
            })

    # -- Trades --------------------------------------------------------------

    async def list_trades(
        self,
        *,
        account_id: str | None = None,
        prop_firm_account_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Trade]:
        trades = [
            t for t in self._trades.values()
            if (account_id is None or t.account_id == account_id)
            and (prop_firm_account_id is None or t.prop_firm_account_id == prop_firm_account_id)
            and (start is None or t.exit_time >= start)
            and (end is None or t.exit_time <= end)
        ]
        trades.sort(key=lambda t: (t.exit_time, t.trade_key))
        return [t.model_copy(deep=True) for t in trades]

    async def get_trade(self, trade_id: str) -> Trade:
        return self._require_trade(trade_id).model_copy(deep=True)

    async def update_trade_annotations(
        self, trade_id: str, changes: Mapping[str, Any],
    ) -> Trade:
        async with self._lock:
            updated = apply_annotation_changes(self._require_trade(trade_id), changes)
            self._trades[trade_id] = updated
        return updated.model_copy(deep=True)

    async def delete_trade(self, trade_id: str) -> None:
        async with self._lock:
            trade = self._require_trade(trade_id)
            del self._trades[trade_id]
            self._ids_by_key.pop(trade.trade_key, None)
            for mistake_id in [m.id for m in self._mistakes.values() if m.trade_id == trade_id]:
                del self._mistakes[mistake_id]

    async def link_prop_firm_account(
        self, trade_keys: Sequence[str], prop_firm_account_id: str,
    ) -> int:
        linked = 0
        async with self._lock:
            for key in set(trade_keys):
                trade_id = self._ids_by_key.get(key)
                if trade_id is None:
                    continue
                trade = self._trades[trade_id]
                if trade.prop_firm_account_id is None:
                    trade.prop_firm_account_id = prop_firm_account_id
                    linked += 1
        return linked

    def _require_trade(self, trade_id: str) -> Trade:
        trade = self._trades.get(trade_id)
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found")
        return trade

    # -- Mistakes ------------------------------------------------------------

    async def add_mistake(self, mistake: Mistake) -> Mistake:
        self._require_trade(mistake.trade_id)
        self._mistakes[mistake.id] = mistake.model_copy()
        return mistake

    async def delete_mistake(self, mistake_id: str) -> Mistake:
        mistake = self._mistakes.pop(mistake_id, None)
        if mistake is None:
            raise NotFoundError(f"Mistake {mistake_id} not found")
        return mistake

    async def list_mistakes(self, trade_id: str) -> list[Mistake]:
        mistakes = [m for m in self._mistakes.values() if m.trade_id == trade_id]
        mistakes.sort(key=lambda m: m.created_at)
        return mistakes

    # -- Broker accounts -----------------------------------------------------

    async def list_broker_accounts(
        self, *, active_only: bool = True,
    ) -> list[BrokerAccount]:
        return [
            a.model_copy() for a in self._accounts.values()
            if a.is_active or not active_only
        ]

    async def get_broker_account(self, account_id: str) -> BrokerAccount:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Broker account {account_id} not found")
        return account.model_copy()

    async def upsert_broker_account(self, account: BrokerAccount) -> BrokerAccount:
        self._accounts[account.id] = account.model_copy()
        return account

    # -- Preferences ---------------------------------------------------------

    async def get_preference(self, key: str) -> str | None:
        return self._preferences.get(key)

    async def set_preference(self, key: str, value: str) -> None:
        self._preferences[key] = value
