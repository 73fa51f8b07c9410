"""Broker sync orchestrator.

Runs one sync cycle per account::

    IDLE -> FETCHING -> MATCHING -> UPSERTING -> IDLE

FETCHING acquires a token, pulls the account's fills and drops those the
cursor has already seen.  MATCHING replays the carried-over open positions
plus the new fills through the FIFO matcher.  UPSERTING commits new trades,
the new carry state and the advanced cursor in one store transaction.

A failure at any phase leaves cursor and carry state untouched and is
recorded on the account's SyncState.  Cycles for one account are
serialized by a per-account lock; different accounts run concurrently and
never affect each other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Sequence

import structlog

from trade_journal.core.clock import IClock, WallClock
from trade_journal.core.enums import SyncPhase, SyncStatus
from trade_journal.core.errors import AuthFailure, JournalError, NotFoundError
from trade_journal.core.interfaces import IBrokerClient, IJournalStore
from trade_journal.core.models import BrokerAccount, Fill, SyncState
from trade_journal.broker.tokens import TokenManager
from trade_journal.ingest.normalizer import normalize_api_fill
from trade_journal.matching.matcher import PositionMatcher
from trade_journal.observability.logger import new_sync_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSyncResult:
    """Outcome of one account's sync cycle.

    ``synced`` counts newly inserted trades, ``skipped`` trades already
    present, ``total`` all trades the cycle produced.
    """

    account_id: str
    status: SyncStatus
    synced: int = 0
    skipped: int = 0
    total: int = 0
    new_fills: int = 0
    open_positions: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is SyncStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "status": self.status.value,
            "synced": self.synced,
            "skipped": self.skipped,
            "total": self.total,
            "new_fills": self.new_fills,
            "open_positions": self.open_positions,
            "error": self.error,
        }


def total_synced(results: Sequence[AccountSyncResult]) -> int:
    return sum(r.synced for r in results)


class SyncOrchestrator:
    """Keeps broker accounts incrementally synchronized with the journal.

    Parameters
    ----------
    store:
        Journal persistence (sync state, trades, broker accounts).
    client:
        Broker REST client.
    tokens:
        Access-token cache shared by all cycles.
    matcher:
        FIFO position matcher.
    max_concurrent_accounts:
        Bound on concurrently running cycles in :meth:`sync_all`.
    only_active:
        :meth:`sync_all` skips inactive accounts when set.
    """

    def __init__(
        self,
        store: IJournalStore,
        client: IBrokerClient,
        tokens: TokenManager,
        matcher: PositionMatcher,
        *,
        clock: IClock | None = None,
        max_concurrent_accounts: int = 4,
        only_active: bool = True,
    ) -> None:
        self._store = store
        self._client = client
        self._tokens = tokens
        self._matcher = matcher
        self._clock = clock or WallClock()
        self._max_concurrent = max(1, max_concurrent_accounts)
        self._only_active = only_active
        self._locks: dict[str, asyncio.Lock] = {}
        self._phases: dict[str, SyncPhase] = {}

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def phase(self, account_id: str) -> SyncPhase:
        return self._phases.get(account_id, SyncPhase.IDLE)

    async def sync_account(self, account_id: str) -> AccountSyncResult:
        """Run one incremental cycle.  Waits if a cycle is already running."""
        async with self._lock(account_id):
            return await self._run_cycle(account_id, from_scratch=False)

    async def full_resync(self, account_id: str) -> AccountSyncResult:
        """Replay the account's whole fill history from an empty cursor.

        Trades already stored are skipped by the insert-if-absent upsert.
        The stored state is replaced only when the cycle succeeds.
        """
        async with self._lock(account_id):
            return await self._run_cycle(account_id, from_scratch=True)

    async def sync_all(self) -> list[AccountSyncResult]:
        """Sync every (active) account with bounded concurrency."""
        accounts = await self._store.list_broker_accounts(active_only=self._only_active)
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _bounded(account: BrokerAccount) -> AccountSyncResult:
            async with semaphore:
                return await self.sync_account(account.id)

        outcomes = await asyncio.gather(
            *(_bounded(a) for a in accounts), return_exceptions=True,
        )

        results: list[AccountSyncResult] = []
        for account, outcome in zip(accounts, outcomes):
            if isinstance(outcome, AccountSyncResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                results.append(AccountSyncResult(
                    account_id=account.id, status=SyncStatus.FAILED, error=str(outcome),
                ))
            else:
                raise outcome

        logger.info(
            "Synced %d accounts: %d new trades, %d failed",
            len(results), total_synced(results), sum(1 for r in results if not r.ok),
        )
        return results

    # ------------------------------------------------------------------ #
    # Cycle                                                              #
    # ------------------------------------------------------------------ #

    def _lock(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    async def _run_cycle(self, account_id: str, *, from_scratch: bool) -> AccountSyncResult:
        sync_id = new_sync_id()
        with structlog.contextvars.bound_contextvars(account_id=account_id, sync_id=sync_id):
            try:
                return await self._cycle(account_id, from_scratch=from_scratch)
            except NotFoundError:
                raise
            except JournalError as exc:
                logger.warning("Sync failed for %s: %s", account_id, exc)
                await self._store.record_sync_failure(account_id, str(exc), self._clock.now())
                return AccountSyncResult(
                    account_id=account_id, status=SyncStatus.FAILED, error=str(exc),
                )
            except Exception as exc:
                logger.exception("Unexpected sync failure for %s", account_id)
                await self._store.record_sync_failure(account_id, str(exc), self._clock.now())
                raise
            finally:
                self._phases[account_id] = SyncPhase.IDLE

    async def _cycle(self, account_id: str, *, from_scratch: bool) -> AccountSyncResult:
        account = await self._store.get_broker_account(account_id)
        state = await self._store.get_sync_state(account_id)
        if from_scratch:
            state = SyncState(
                account_id=account_id,
                last_sync_status=state.last_sync_status,
                last_sync_at=state.last_sync_at,
            )

        # -- FETCHING --
        self._phases[account_id] = SyncPhase.FETCHING
        fills = await self._fetch_fills(account)
        fresh = [f for f in fills if state.cursor.admits(f)]
        logger.info(
            "Fetched %d fills for %s (%d new)", len(fills), account_id, len(fresh),
        )

        # -- MATCHING --
        self._phases[account_id] = SyncPhase.MATCHING
        match = self._matcher.match(fresh, state.open_positions)
        trades = match.trades
        if account.prop_firm_account_id:
            trades = [
                t.model_copy(update={"prop_firm_account_id": account.prop_firm_account_id})
                for t in trades
            ]

        # -- UPSERTING --
        self._phases[account_id] = SyncPhase.UPSERTING
        new_state = state.model_copy(update={
            "cursor": state.cursor.advanced(fresh),
            "open_positions": match.open_positions,
            "last_sync_status": SyncStatus.SUCCESS,
            "last_sync_at": self._clock.now(),
            "last_error": None,
        })
        upsert = await self._store.commit_sync_cycle(new_state, trades)

        logger.info(
            "Sync complete for %s: %d new, %d skipped, %d open positions",
            account_id, upsert.inserted, upsert.skipped, len(match.open_positions),
        )
        return AccountSyncResult(
            account_id=account_id,
            status=SyncStatus.SUCCESS,
            synced=upsert.inserted,
            skipped=upsert.skipped,
            total=len(trades),
            new_fills=len(fresh),
            open_positions=len(match.open_positions),
        )

    async def _fetch_fills(self, account: BrokerAccount) -> list[Fill]:
        credential = await self._tokens.acquire(account.id, account.environment)
        try:
            raw = await self._client.list_fills(
                account.environment, credential.access_token, account.broker_account_id,
            )
        except AuthFailure:
            # One reactive re-authentication; a second 401 fails the cycle.
            logger.info("Broker rejected token for %s, re-authenticating", account.id)
            self._tokens.invalidate(account.id)
            credential = await self._tokens.acquire(account.id, account.environment)
            raw = await self._client.list_fills(
                account.environment, credential.access_token, account.broker_account_id,
            )

        unresolved = sorted({
            int(r["contractId"]) for r in raw
            if not r.get("symbol") and isinstance(r.get("contractId"), int)
        })
        names: dict[int, str] = {}
        if unresolved:
            names = await self._client.contract_names(
                account.environment, credential.access_token, unresolved,
            )

        return [
            normalize_api_fill(r, account_id=account.id, position=i, contract_names=names)
            for i, r in enumerate(raw)
        ]
