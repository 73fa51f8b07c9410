"""Fill normalizer: raw CSV rows and broker fill payloads -> :class:`Fill`.

Both entry points either return a validated, frozen ``Fill`` or raise
:class:`~trade_journal.core.errors.MalformedRecord` naming the offending
field and the record's line/position.  Nothing unvalidated gets past
this module.

CSV layout (version 1, exact order)::

    symbol,timestamp,action,qty,price,orderId,buyerCommission,sellerCommission
"""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from trade_journal.core.enums import Side
from trade_journal.core.errors import MalformedFile, MalformedRecord
from trade_journal.core.models import Fill

from .symbols import clean_symbol, contract_symbol

CSV_LAYOUT_V1: tuple[str, ...] = (
    "symbol",
    "timestamp",
    "action",
    "qty",
    "price",
    "orderId",
    "buyerCommission",
    "sellerCommission",
)

_ACTIONS: dict[str, Side] = {
    "buy": Side.BUY,
    "b": Side.BUY,
    "bought": Side.BUY,
    "sell": Side.SELL,
    "s": Side.SELL,
    "sold": Side.SELL,
}

# Broker-local formats for naive timestamps, tried after ISO 8601.
_NAIVE_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%Y-%m-%d %H:%M:%S",
)


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

def parse_timestamp(raw: str, local_tz: tzinfo, *, field: str = "timestamp",
                    line: int | None = None) -> datetime:
    """Parse *raw* to an absolute UTC instant.

    Offset-aware ISO strings keep their offset.  Naive values are
    interpreted in *local_tz* (the broker's zone, not the host's).
    """
    text = raw.strip()
    if not text:
        raise MalformedRecord(field, "missing value", line)

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _NAIVE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        raise MalformedRecord(field, f"unparseable timestamp {text!r}", line)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=local_tz)
    return parsed.astimezone(timezone.utc)


def parse_side(raw: str, *, line: int | None = None) -> Side:
    side = _ACTIONS.get(raw.strip().lower())
    if side is None:
        raise MalformedRecord("action", f"expected buy or sell, got {raw!r}", line)
    return side


def parse_qty(raw: Any, *, line: int | None = None) -> int:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise MalformedRecord("qty", f"not a number: {raw!r}", line) from None
    if not value.is_finite() or value != value.to_integral_value():
        raise MalformedRecord("qty", f"not an integer: {raw!r}", line)
    if value <= 0:
        raise MalformedRecord("qty", f"must be positive, got {raw!r}", line)
    return int(value)


def parse_price(raw: Any, *, field: str = "price", line: int | None = None) -> Decimal:
    text = str(raw).strip()
    if not text:
        raise MalformedRecord(field, "missing value", line)
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise MalformedRecord(field, f"not a decimal: {raw!r}", line) from None
    if not value.is_finite():
        raise MalformedRecord(field, f"not finite: {raw!r}", line)
    return value


def parse_commission(raw: Any, *, field: str, line: int | None = None) -> Decimal:
    """Parse a commission cell.  Blank means zero; ``$`` and ``,`` are ignored."""
    text = "" if raw is None else str(raw).strip()
    if not text:
        return Decimal("0")
    if text.startswith("(") and text.endswith(")"):
        raise MalformedRecord(field, f"negative commission {raw!r}", line)
    value = parse_price(text.replace("$", "").replace(",", ""), field=field, line=line)
    if value < 0:
        raise MalformedRecord(field, f"negative commission {raw!r}", line)
    return value


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def validate_header(header: Sequence[str]) -> None:
    """Reject a file whose header is not exactly :data:`CSV_LAYOUT_V1`.

    Comparison ignores case and surrounding whitespace (and a UTF-8 BOM on
    the first cell), nothing else.
    """
    found = [h.strip().lstrip("\ufeff").lower() for h in header]
    expected = [h.lower() for h in CSV_LAYOUT_V1]
    if found != expected:
        raise MalformedFile(
            "Unrecognized CSV layout. Expected columns "
            f"{','.join(CSV_LAYOUT_V1)}; got {','.join(h.strip() for h in header)}"
        )


def normalize_csv_row(
    row: Sequence[str],
    *,
    account_id: str,
    line: int,
    local_tz: tzinfo,
) -> Fill:
    """Normalize one CSV data row (already split into cells)."""
    if len(row) != len(CSV_LAYOUT_V1):
        raise MalformedRecord(
            "row", f"expected {len(CSV_LAYOUT_V1)} columns, got {len(row)}", line,
        )
    symbol_raw, ts_raw, action_raw, qty_raw, price_raw, order_raw, buy_comm, sell_comm = row

    symbol = clean_symbol(symbol_raw)
    if not symbol:
        raise MalformedRecord("symbol", "missing value", line)
    order_id = order_raw.strip()
    if not order_id:
        raise MalformedRecord("orderId", "missing value", line)

    commission = (
        parse_commission(buy_comm, field="buyerCommission", line=line)
        + parse_commission(sell_comm, field="sellerCommission", line=line)
    )
    return _build_fill(
        line=line,
        account_id=account_id,
        instrument_id=symbol,
        contract=contract_symbol(symbol_raw),
        timestamp=parse_timestamp(ts_raw, local_tz, line=line),
        side=parse_side(action_raw, line=line),
        qty=parse_qty(qty_raw, line=line),
        price=parse_price(price_raw, line=line),
        order_id=order_id,
        commission=commission,
    )


# ---------------------------------------------------------------------------
# Broker API (Tradovate fill/list)
# ---------------------------------------------------------------------------

_REQUIRED_API_FIELDS = ("id", "orderId", "timestamp", "action", "qty", "price")


def normalize_api_fill(
    raw: Mapping[str, Any],
    *,
    account_id: str,
    position: int,
    contract_names: Mapping[int, str] | None = None,
) -> Fill:
    """Map one Tradovate fill object 1:1 onto :class:`Fill`.

    Contract resolution: explicit ``symbol`` field, then the contract name
    looked up by ``contractId``, then the raw contract id.  ``commission``
    is the total when present; otherwise the buyer and seller sides are
    added.  Naive timestamps are UTC (the API never reports exchange-local
    time).
    """
    for name in _REQUIRED_API_FIELDS:
        if raw.get(name) is None:
            raise MalformedRecord(name, "missing required field", position)

    contract = _resolve_contract(raw, contract_names or {}, position)

    if raw.get("commission") is not None:
        commission = parse_commission(raw["commission"], field="commission", line=position)
    else:
        commission = Decimal("0")
        for name in ("buyerCommission", "sellerCommission"):
            if raw.get(name) is not None:
                commission += parse_commission(raw[name], field=name, line=position)

    return _build_fill(
        line=position,
        account_id=account_id,
        instrument_id=clean_symbol(contract) or contract,
        contract=contract,
        timestamp=parse_timestamp(str(raw["timestamp"]), timezone.utc, line=position),
        side=parse_side(str(raw["action"]), line=position),
        qty=parse_qty(raw["qty"], line=position),
        price=parse_price(raw["price"], line=position),
        order_id=str(raw["orderId"]),
        commission=commission,
        fill_id=str(raw["id"]),
    )


def _resolve_contract(
    raw: Mapping[str, Any], contract_names: Mapping[int, str], position: int,
) -> str:
    if raw.get("symbol"):
        return contract_symbol(str(raw["symbol"]))
    contract_id = raw.get("contractId")
    if contract_id is None:
        raise MalformedRecord("contractId", "missing required field", position)
    try:
        name = contract_names.get(int(contract_id))
    except (TypeError, ValueError):
        raise MalformedRecord("contractId", f"not an id: {contract_id!r}", position) from None
    return contract_symbol(name) if name else str(contract_id)


def _build_fill(*, line: int, **fields: Any) -> Fill:
    try:
        return Fill(**fields)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "record"
        raise MalformedRecord(field, first.get("msg", "invalid value"), line) from exc
