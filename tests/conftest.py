"""Shared fixtures for the trade-journal test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Sequence

import pytest

from trade_journal.core.clock import SimClock
from trade_journal.core.config import MatchingConfig
from trade_journal.core.enums import Environment, PositionSide, Side
from trade_journal.core.errors import AuthFailure
from trade_journal.core.interfaces import TokenGrant
from trade_journal.core.models import BrokerAccount, Fill, LoginSecrets, Trade
from trade_journal.matching.matcher import PositionMatcher
from trade_journal.storage.memory import InMemoryJournalStore

T0 = datetime(2024, 3, 1, 14, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fill factories
# ---------------------------------------------------------------------------

_order_seq = 0


def _make_fill(
    side: str | Side,
    qty: int,
    price: str | int | Decimal,
    *,
    seconds: float = 0,
    account_id: str = "acct-1",
    instrument_id: str = "XYZ",
    contract: str | None = None,
    order_id: str | None = None,
    fill_id: str | None = None,
    commission: str | Decimal = "0",
) -> Fill:
    """Build a Fill at ``T0 + seconds``.  XYZ has a point value of 1.

    The contract defaults to the instrument.
    """
    global _order_seq
    _order_seq += 1
    return Fill(
        account_id=account_id,
        instrument_id=instrument_id,
        contract=contract,
        timestamp=T0 + timedelta(seconds=seconds),
        side=Side(side),
        qty=qty,
        price=Decimal(str(price)),
        order_id=order_id or f"ord-{_order_seq}",
        fill_id=fill_id or f"fill-{_order_seq}",
        commission=Decimal(str(commission)),
    )


def _api_fill(
    fill_id: int,
    action: str,
    qty: int,
    price: float | str,
    *,
    seconds: float = 0,
    symbol: str | None = "MNQH6",
    contract_id: int = 3570918,
    commission: float | None = None,
) -> dict[str, Any]:
    """Raw Tradovate ``fill/list`` item."""
    raw: dict[str, Any] = {
        "id": fill_id,
        "orderId": 1000 + fill_id,
        "contractId": contract_id,
        "timestamp": (T0 + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z"),
        "action": action,
        "qty": qty,
        "price": price,
    }
    if symbol is not None:
        raw["symbol"] = symbol
    if commission is not None:
        raw["commission"] = commission
    return raw


_trade_seq = 0


def _make_trade(
    pnl: str | int | Decimal,
    *,
    minutes: float = 0,
    account_id: str = "acct-1",
    instrument_id: str = "XYZ",
    side: PositionSide = PositionSide.LONG,
    qty: int = 1,
    commission: str | Decimal = "0",
    position_id: str | None = None,
    entry_price: str | Decimal = "100",
    exit_price: str | Decimal = "100",
    **extra: Any,
) -> Trade:
    """Build a stored-shape Trade exiting at ``T0 + minutes``."""
    global _trade_seq
    _trade_seq += 1
    exit_time = T0 + timedelta(minutes=minutes)
    return Trade(
        trade_key=f"key-{_trade_seq}",
        position_id=position_id or f"pos-{_trade_seq}",
        account_id=account_id,
        instrument_id=instrument_id,
        side=side,
        entry_time=exit_time - timedelta(minutes=1),
        exit_time=exit_time,
        entry_price=Decimal(str(entry_price)),
        exit_price=Decimal(str(exit_price)),
        qty=qty,
        pnl=Decimal(str(pnl)),
        commission=Decimal(str(commission)),
        **extra,
    )


# ---------------------------------------------------------------------------
# Broker fakes
# ---------------------------------------------------------------------------

class FakeBroker:
    """In-process stand-in for the Tradovate client.

    ``fills`` maps broker account id to the full fill history the broker
    reports.  Failure hooks: ``fail_fills_for`` raises the given exception
    for an account, ``reject_tokens`` makes the next N ``list_fills`` calls
    answer 401.
    """

    def __init__(self, clock: SimClock | None = None) -> None:
        self.clock = clock or SimClock(T0)
        self.fills: dict[int, list[dict[str, Any]]] = {}
        self.contracts: dict[int, str] = {}
        self.fail_fills_for: dict[int, Exception] = {}
        self.reject_tokens = 0
        self.token_requests = 0
        self.renewals = 0
        self.fill_requests = 0
        self.token_lifetime = timedelta(minutes=90)
        self.login_delay = 0.0
        self.bad_credentials = False

    async def request_token(
        self, environment: Environment, secrets: LoginSecrets,
    ) -> TokenGrant:
        self.token_requests += 1
        n = self.token_requests
        if self.login_delay:
            await asyncio.sleep(self.login_delay)
        if self.bad_credentials:
            raise AuthFailure("Invalid Tradovate credentials")
        return TokenGrant(
            access_token=f"tok-{n}",
            expires_at=self.clock.now() + self.token_lifetime,
        )

    async def renew_token(
        self, environment: Environment, access_token: str,
    ) -> TokenGrant:
        self.renewals += 1
        return TokenGrant(
            access_token=f"{access_token}-r{self.renewals}",
            expires_at=self.clock.now() + self.token_lifetime,
        )

    async def list_fills(
        self, environment: Environment, access_token: str, broker_account_id: int,
    ) -> list[dict[str, Any]]:
        self.fill_requests += 1
        if self.reject_tokens:
            self.reject_tokens -= 1
            raise AuthFailure("HTTP 401")
        if broker_account_id in self.fail_fills_for:
            raise self.fail_fills_for[broker_account_id]
        return list(self.fills.get(broker_account_id, []))

    async def contract_names(
        self, environment: Environment, access_token: str, contract_ids: Sequence[int],
    ) -> dict[int, str]:
        return {i: self.contracts[i] for i in contract_ids if i in self.contracts}


class FakeCredentials:
    def __init__(self) -> None:
        self.lookups: list[str] = []

    async def login_secrets(self, account_id: str) -> LoginSecrets:
        self.lookups.append(account_id)
        return LoginSecrets(username=f"user-{account_id}", password="pw")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    return SimClock(T0)


@pytest.fixture
def store() -> InMemoryJournalStore:
    return InMemoryJournalStore()


@pytest.fixture
def matcher() -> PositionMatcher:
    return PositionMatcher(MatchingConfig())


@pytest.fixture
def broker(sim_clock) -> FakeBroker:
    return FakeBroker(sim_clock)


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def demo_account() -> BrokerAccount:
    return BrokerAccount(id="acct-1", broker_account_id=101, name="Demo 1")


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def make_fill():
    """Factory for fills at ``T0 + seconds`` on instrument XYZ."""
    return _make_fill


@pytest.fixture
def api_fill():
    """Factory for raw Tradovate fill payloads."""
    return _api_fill


@pytest.fixture
def make_trade():
    """Factory for trades exiting at ``T0 + minutes``."""
    return _make_trade
