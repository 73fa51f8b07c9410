"""Protocol interfaces for the trade journal.

All module boundaries are defined here as Protocol classes.
Implementations can be swapped (in-memory/SQL, live broker/fake) without
changing callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from .enums import Environment
from .models import BrokerAccount, LoginSecrets, Mistake, SyncState, Trade


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of an insert-if-absent batch."""

    inserted: int = 0
    skipped: int = 0  # Identity already present
    linked: int = 0  # Existing trade newly attached to a prop-firm account


@dataclass(frozen=True)
class TokenGrant:
    """Raw token response from the broker auth endpoints."""

    access_token: str
    expires_at: datetime


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@runtime_checkable
class IJournalStore(Protocol):
    """Persistence boundary.

    The sync engine relies on two guarantees only: trades are inserted if
    their ``trade_key`` is absent (else no-op), and
    :meth:`commit_sync_cycle` applies trades and state atomically.
    """

    async def get_sync_state(self, account_id: str) -> SyncState: ...

    async def commit_sync_cycle(
        self, state: SyncState, trades: Sequence[Trade],
    ) -> UpsertResult: ...

    async def record_sync_failure(
        self, account_id: str, error: str, at: datetime,
    ) -> None: ...

    async def list_trades(
        self,
        *,
        account_id: str | None = None,
        prop_firm_account_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Trade]: ...

    async def get_trade(self, trade_id: str) -> Trade: ...

    async def update_trade_annotations(
        self, trade_id: str, changes: Mapping[str, Any],
    ) -> Trade: ...

    async def delete_trade(self, trade_id: str) -> None: ...

    async def link_prop_firm_account(
        self, trade_keys: Sequence[str], prop_firm_account_id: str,
    ) -> int: ...

    async def add_mistake(self, mistake: Mistake) -> Mistake: ...

    async def delete_mistake(self, mistake_id: str) -> Mistake: ...

    async def list_mistakes(self, trade_id: str) -> list[Mistake]: ...

    async def list_broker_accounts(
        self, *, active_only: bool = True,
    ) -> list[BrokerAccount]: ...

    async def get_broker_account(self, account_id: str) -> BrokerAccount: ...

    async def upsert_broker_account(self, account: BrokerAccount) -> BrokerAccount: ...


@runtime_checkable
class IPreferenceStore(Protocol):
    """Key/value store for process-wide preferences."""

    async def get_preference(self, key: str) -> str | None: ...

    async def set_preference(self, key: str, value: str) -> None: ...


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

@runtime_checkable
class ICredentialProvider(Protocol):
    """Supplies login secrets for a broker account (decryption lives outside)."""

    async def login_secrets(self, account_id: str) -> LoginSecrets: ...


@runtime_checkable
class IBrokerClient(Protocol):
    """Broker REST API consumed by the token manager and the orchestrator."""

    async def request_token(
        self, environment: Environment, secrets: LoginSecrets,
    ) -> TokenGrant: ...

    async def renew_token(
        self, environment: Environment, access_token: str,
    ) -> TokenGrant: ...

    async def list_fills(
        self, environment: Environment, access_token: str, broker_account_id: int,
    ) -> list[dict[str, Any]]: ...

    async def contract_names(
        self, environment: Environment, access_token: str, contract_ids: Sequence[int],
    ) -> dict[int, str]: ...
