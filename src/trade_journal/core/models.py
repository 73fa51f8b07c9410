"""Core domain models used across the trade journal.

These are the canonical "truth models" for the system.
Raw CSV rows and broker payloads are normalized into :class:`Fill` at the
boundary; nothing broker-specific leaks past the normalizer.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Any, Iterable

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .enums import (
    Emotion,
    Environment,
    Grade,
    PositionSide,
    Side,
    SyncStatus,
)
from .ids import new_id, utc_now

# Fields fixed at match time.  Annotation operations may never touch them.
ECONOMIC_FIELDS = frozenset({
    "account_id",
    "instrument_id",
    "contract",
    "side",
    "entry_time",
    "exit_time",
    "entry_price",
    "exit_price",
    "qty",
    "pnl",
    "commission",
    "trade_key",
    "position_id",
})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def _decimal_text(value: Decimal) -> str:
    return f"{value.normalize():f}"


def _contract_defaults_to_instrument(data: Any) -> Any:
    if isinstance(data, dict) and not data.get("contract"):
        return {**data, "contract": data.get("instrument_id")}
    return data


# ---------------------------------------------------------------------------
# Fill
# ---------------------------------------------------------------------------

class Fill(BaseModel):
    """A single broker-reported execution.  Immutable once ingested.

    ``instrument_id`` is the root symbol (``MNQ``) used for point values and
    reporting; ``contract`` is the traded contract (``MNQH6``) and keys the
    position book.  ``contract`` defaults to the instrument when a source
    has no expiry.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    instrument_id: str
    contract: str
    timestamp: UtcDatetime
    side: Side
    qty: int = Field(gt=0)
    price: Decimal
    order_id: str
    commission: Decimal = Decimal("0")
    fill_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_contract(cls, data: Any) -> Any:
        return _contract_defaults_to_instrument(data)

    @field_validator("price")
    @classmethod
    def _finite_price(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("price must be finite")
        return v

    @field_validator("commission")
    @classmethod
    def _non_negative_commission(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v < 0:
            raise ValueError("commission must be a finite, non-negative amount")
        return v

    @property
    def key(self) -> str:
        """Dedupe identity within the account.

        Broker fill id when known, otherwise the timestamp+price+qty
        composite.  Always prefixed by the order id.
        """
        if self.fill_id:
            return f"{self.order_id}/{self.fill_id}"
        return (
            f"{self.order_id}/{self.timestamp.isoformat()}"
            f"+{_decimal_text(self.price)}+{self.qty}"
        )


# ---------------------------------------------------------------------------
# Open position carry-over
# ---------------------------------------------------------------------------

class Lot(BaseModel):
    """An open, unmatched quantity awaiting closure."""

    qty: int = Field(gt=0)
    price: Decimal
    open_time: datetime
    side: Side
    fill_key: str
    commission: Decimal = Decimal("0")  # Entry commission still attached to qty


class OpenPosition(BaseModel):
    """Unresolved position for one (account, contract).

    Holds the FIFO lot queue plus the accumulators of the round trip in
    progress, so partial exits taken in an earlier sync cycle still land in
    the trade that finalizes later.
    """

    account_id: str
    instrument_id: str
    contract: str
    side: PositionSide
    position_id: str
    opening_fill_key: str
    opened_at: datetime
    lots: list[Lot] = Field(default_factory=list)
    exits: int = 0  # Trade rows emitted for this position in split mode

    # Round-trip accumulators
    closed_qty: int = 0
    entry_notional: Decimal = Decimal("0")
    exit_notional: Decimal = Decimal("0")
    gross_pnl: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")

    @model_validator(mode="before")
    @classmethod
    def _default_contract(cls, data: Any) -> Any:
        return _contract_defaults_to_instrument(data)

    @property
    def qty(self) -> int:
        return sum(lot.qty for lot in self.lots)

    @property
    def is_flat(self) -> bool:
        return not self.lots


# ---------------------------------------------------------------------------
# Trade
# ---------------------------------------------------------------------------

class Trade(BaseModel):
    """Round-trip trade: a matched open-to-flat position."""

    id: str = Field(default_factory=new_id)
    trade_key: str
    position_id: str
    account_id: str
    instrument_id: str
    contract: str
    side: PositionSide
    entry_time: UtcDatetime
    exit_time: UtcDatetime
    entry_price: Decimal
    exit_price: Decimal
    qty: int = Field(gt=0)
    pnl: Decimal  # Net of commission
    commission: Decimal = Decimal("0")

    # Journal annotations
    is_mistake: bool = False
    playbook_ids: list[str] = Field(default_factory=list)
    grade: Grade | None = None
    emotion: Emotion | None = None
    notes: str = ""
    tags: list[str] = Field(default_factory=list)
    prop_firm_account_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_contract(cls, data: Any) -> Any:
        return _contract_defaults_to_instrument(data)

    @field_validator("playbook_ids")
    @classmethod
    def _normalize_playbooks(cls, v: list[str]) -> list[str]:
        return normalize_playbook_ids(v)

    @model_validator(mode="after")
    def _entry_before_exit(self) -> "Trade":
        if self.entry_time > self.exit_time:
            raise ValueError(
                f"entry_time {self.entry_time} is after exit_time {self.exit_time}"
            )
        return self

    @property
    def gross_pnl(self) -> Decimal:
        return self.pnl + self.commission

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    @property
    def is_loss(self) -> bool:
        return self.pnl < 0


def normalize_playbook_ids(ids: Iterable[object]) -> list[str]:
    """Drop blanks and non-strings, de-duplicate, keep first-seen order."""
    seen: dict[str, None] = {}
    for value in ids:
        if isinstance(value, str) and value.strip():
            seen.setdefault(value.strip(), None)
    return list(seen)


# ---------------------------------------------------------------------------
# Sync state
# ---------------------------------------------------------------------------

class SyncCursor(BaseModel):
    """Watermark of the last successfully ingested fill.

    ``fill_keys`` lists the fills seen exactly at ``timestamp`` so a later
    fill sharing the watermark instant is still admitted.
    """

    timestamp: datetime | None = None
    fill_keys: list[str] = Field(default_factory=list)

    def admits(self, fill: Fill) -> bool:
        if self.timestamp is None:
            return True
        if fill.timestamp > self.timestamp:
            return True
        if fill.timestamp == self.timestamp:
            return fill.key not in self.fill_keys
        return False

    def advanced(self, fills: Iterable[Fill]) -> "SyncCursor":
        """Return the cursor moved past *fills*.  Never moves backwards."""
        ts = self.timestamp
        keys = list(self.fill_keys)
        for fill in fills:
            if ts is None or fill.timestamp > ts:
                ts = fill.timestamp
                keys = [fill.key]
            elif fill.timestamp == ts and fill.key not in keys:
                keys.append(fill.key)
        return SyncCursor(timestamp=ts, fill_keys=keys)


class SyncState(BaseModel):
    """Per-account synchronization state.

    CSV ledgers also keep every fill imported so far in ``ledger_fills``;
    each import replays that history so files may arrive in any order.
    """

    account_id: str
    cursor: SyncCursor = Field(default_factory=SyncCursor)
    open_positions: list[OpenPosition] = Field(default_factory=list)
    ledger_fills: list[Fill] = Field(default_factory=list)
    last_sync_status: SyncStatus = SyncStatus.NEVER
    last_sync_at: datetime | None = None
    last_error: str | None = None


# ---------------------------------------------------------------------------
# Broker identity
# ---------------------------------------------------------------------------

class BrokerCredential(BaseModel):
    """Short-lived broker access token."""

    account_id: str
    environment: Environment
    access_token: str
    expires_at: UtcDatetime

    def expires_within(self, now: datetime, margin: timedelta) -> bool:
        return self.expires_at - now <= margin


class BrokerAccount(BaseModel):
    """A connected broker account that the sync engine pulls fills for."""

    id: str = Field(default_factory=new_id)
    broker_account_id: int
    environment: Environment = Environment.DEMO
    name: str = ""
    is_active: bool = True
    prop_firm_account_id: str | None = None


class LoginSecrets(BaseModel):
    """Username/password pair for a broker login.  Never persisted here."""

    username: str
    password: str
    cid: int = 0
    sec: str = ""


# ---------------------------------------------------------------------------
# Annotation entities
# ---------------------------------------------------------------------------

class Mistake(BaseModel):
    id: str = Field(default_factory=new_id)
    trade_id: str
    mistake_type: str
    description: str = ""
    severity: int = Field(default=2, ge=1, le=5)
    created_at: datetime = Field(default_factory=utc_now)
