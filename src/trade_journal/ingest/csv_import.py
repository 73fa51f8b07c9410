"""Batch CSV import.

Reads a broker export in :data:`~trade_journal.ingest.normalizer.CSV_LAYOUT_V1`,
normalizes row by row (malformed rows are reported, never fatal), matches
the resulting fills and commits the trades in one store transaction.

Each account's CSV history is kept on its own ledger (``csv:<account_id>``).
The ledger stores every fill imported so far; an import adds the fills it
has not seen (by fill identity, never by time) and re-matches the whole
history.  Exports may therefore arrive in any order, overlapping exports
produce no duplicate trades, and positions left open at the end of one
file close in the next.
"""

from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Sequence

from trade_journal.core.clock import IClock, WallClock
from trade_journal.core.enums import SyncStatus
from trade_journal.core.errors import MalformedFile, MalformedRecord
from trade_journal.core.interfaces import IJournalStore
from trade_journal.core.models import Fill, OpenPosition, Trade
from trade_journal.matching.matcher import MatchResult, PositionMatcher

from .normalizer import normalize_csv_row, validate_header

logger = logging.getLogger(__name__)


def csv_ledger_id(account_id: str) -> str:
    return f"csv:{account_id}"


def unseen_fills(fills: Sequence[Fill], ledger: Sequence[Fill]) -> list[Fill]:
    """Fills of *fills* not already on *ledger*, compared by fill key.

    Keys are counted, not just tested: a file holding two fills with the
    same composite key adds whichever occurrences the ledger lacks.
    """
    seen = Counter(f.key for f in ledger)
    fresh: list[Fill] = []
    for fill in fills:
        if seen[fill.key]:
            seen[fill.key] -= 1
        else:
            fresh.append(fill)
    return fresh


@dataclass(frozen=True)
class SkippedRow:
    line: int
    reason: str


@dataclass
class ImportReport:
    """Outcome of one CSV import.

    ``imported_count`` counts accepted fill rows (header excluded).
    """

    imported_count: int = 0
    duplicate_fills: int = 0
    trades_created: int = 0
    duplicate_trades: int = 0
    linked_trades: int = 0
    skipped_rows: list[SkippedRow] = field(default_factory=list)
    open_positions: list[OpenPosition] = field(default_factory=list)


def read_fills(
    text: str, *, account_id: str, local_tz: tzinfo,
) -> tuple[list[Fill], list[SkippedRow]]:
    """Parse *text* into fills plus the rows that could not be normalized.

    Raises :class:`MalformedFile` when the file is empty or the header does
    not match the supported layout.  Line numbers are 1-based and count the
    header as line 1.
    """
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader)
    except StopIteration:
        raise MalformedFile("CSV file is empty") from None
    validate_header(header)

    fills: list[Fill] = []
    skipped: list[SkippedRow] = []
    for row in reader:
        line = reader.line_num
        if not any(cell.strip() for cell in row):
            continue
        try:
            fills.append(
                normalize_csv_row(row, account_id=account_id, line=line, local_tz=local_tz)
            )
        except MalformedRecord as exc:
            skipped.append(SkippedRow(line=line, reason=f"{exc.field}: {exc.reason}"))
    return fills, skipped


class CsvImporter:
    """Imports broker CSV exports into the journal store."""

    def __init__(
        self,
        store: IJournalStore,
        matcher: PositionMatcher,
        local_tz: tzinfo,
        clock: IClock | None = None,
    ) -> None:
        self._store = store
        self._matcher = matcher
        self._tz = local_tz
        self._clock = clock or WallClock()

    async def import_file(
        self,
        account_id: str,
        path: str | Path,
        *,
        prop_firm_account_id: str | None = None,
    ) -> ImportReport:
        text = Path(path).read_text(encoding="utf-8-sig")
        return await self.import_text(
            account_id, text, prop_firm_account_id=prop_firm_account_id,
        )

    async def import_text(
        self,
        account_id: str,
        text: str,
        *,
        prop_firm_account_id: str | None = None,
    ) -> ImportReport:
        fills, skipped = read_fills(text, account_id=account_id, local_tz=self._tz)
        report = ImportReport(imported_count=len(fills), skipped_rows=skipped)
        for row in skipped:
            logger.warning("Skipped CSV row %d for %s: %s", row.line, account_id, row.reason)

        state = await self._store.get_sync_state(csv_ledger_id(account_id))
        fresh = unseen_fills(fills, state.ledger_fills)
        report.duplicate_fills = len(fills) - len(fresh)

        history = [*state.ledger_fills, *fresh]
        known = {t.trade_key for t in self._matcher.match(state.ledger_fills).trades}
        result = self._matcher.match(history)
        trades = _trades_to_commit(
            result, known, {f.key for f in fills}, prop_firm_account_id,
        )

        new_state = state.model_copy(update={
            "cursor": state.cursor.advanced(fresh),
            "open_positions": result.open_positions,
            "ledger_fills": history,
            "last_sync_status": SyncStatus.SUCCESS,
            "last_sync_at": self._clock.now(),
            "last_error": None,
        })
        upsert = await self._store.commit_sync_cycle(new_state, trades)

        report.trades_created = upsert.inserted
        report.duplicate_trades = upsert.skipped
        report.linked_trades = upsert.linked
        report.open_positions = result.open_positions
        logger.info(
            "CSV import for %s: %d fills (%d duplicate), %d trades created, "
            "%d skipped rows, %d open positions",
            account_id, report.imported_count, report.duplicate_fills,
            report.trades_created, len(skipped), len(result.open_positions),
        )
        return report


def _trades_to_commit(
    result: MatchResult,
    known: set[str],
    file_keys: set[str],
    prop_firm_account_id: str | None,
) -> list[Trade]:
    """Trades of the replayed history that an import has to write.

    Trades the previous history did not produce are always written.
    Known trades are re-sent only when one of their fills is in the file,
    so the store counts them as duplicates and links them to
    *prop_firm_account_id*; trades deleted from the journal stay deleted
    unless their own file is imported again.
    """
    trades: list[Trade] = []
    for trade in result.trades:
        in_file = not file_keys.isdisjoint(result.fill_keys.get(trade.trade_key, ()))
        if trade.trade_key in known and not in_file:
            continue
        if prop_firm_account_id is not None and in_file:
            trade = trade.model_copy(update={"prop_firm_account_id": prop_firm_account_id})
        trades.append(trade)
    return trades
