"""CLI entry point for the trade journal."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import click

from .core.enums import Environment
from .core.errors import JournalError


def _settings(config: str | None):
    from .core.config import load_settings
    from .observability.logger import setup_logging

    settings = load_settings(config)
    setup_logging(settings.observability.log_level, settings.observability.log_format)
    return settings


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _parse_instant(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _run(coro) -> Any:
    try:
        return asyncio.run(coro)
    except JournalError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
def main() -> None:
    """Trading performance journal."""


@main.command("import-csv")
@click.argument("account_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--prop-firm-account", default=None, help="Prop-firm account to link trades to")
@click.option("--config", default=None, help="Config file path")
def import_csv(account_id: str, path: str, prop_firm_account: str | None, config: str | None) -> None:
    """Import a broker CSV export for ACCOUNT_ID."""
    from .main import open_services

    async def _go() -> dict:
        async with open_services(_settings(config)) as services:
            report = await services.importer.import_file(
                account_id, path, prop_firm_account_id=prop_firm_account,
            )
            return {
                "imported": report.imported_count,
                "duplicate_fills": report.duplicate_fills,
                "trades_created": report.trades_created,
                "duplicate_trades": report.duplicate_trades,
                "linked_trades": report.linked_trades,
                "open_positions": len(report.open_positions),
                "skipped_rows": [{"line": r.line, "reason": r.reason} for r in report.skipped_rows],
            }

    _echo_json(_run(_go()))


@main.command("add-account")
@click.argument("account_id")
@click.option("--broker-account-id", type=int, required=True, help="Tradovate account id")
@click.option(
    "--environment", type=click.Choice([e.value for e in Environment]), default="demo",
)
@click.option("--name", default="", help="Display name")
@click.option("--prop-firm-account", default=None, help="Prop-firm account for synced trades")
@click.option("--inactive", is_flag=True, help="Register without syncing")
@click.option("--config", default=None, help="Config file path")
def add_account(
    account_id: str,
    broker_account_id: int,
    environment: str,
    name: str,
    prop_firm_account: str | None,
    inactive: bool,
    config: str | None,
) -> None:
    """Register (or update) a Tradovate account to sync."""
    from .core.models import BrokerAccount
    from .main import open_services

    async def _go() -> dict:
        async with open_services(_settings(config)) as services:
            account = await services.store.upsert_broker_account(BrokerAccount(
                id=account_id,
                broker_account_id=broker_account_id,
                environment=Environment(environment),
                name=name,
                is_active=not inactive,
                prop_firm_account_id=prop_firm_account,
            ))
            return account.model_dump(mode="json")

    _echo_json(_run(_go()))


@main.command()
@click.argument("account_id", required=False)
@click.option("--config", default=None, help="Config file path")
def sync(account_id: str | None, config: str | None) -> None:
    """Sync ACCOUNT_ID, or every active account when omitted."""
    from .main import open_services
    from .sync.orchestrator import total_synced

    async def _go() -> dict:
        async with open_services(_settings(config)) as services:
            if account_id:
                return (await services.orchestrator.sync_account(account_id)).to_dict()
            results = await services.orchestrator.sync_all()
            return {
                "results": [r.to_dict() for r in results],
                "total_synced": total_synced(results),
            }

    _echo_json(_run(_go()))


@main.command()
@click.argument("account_id")
@click.option("--config", default=None, help="Config file path")
def resync(account_id: str, config: str | None) -> None:
    """Replay ACCOUNT_ID's full fill history (no duplicates are created)."""
    from .main import open_services

    async def _go() -> dict:
        async with open_services(_settings(config)) as services:
            return (await services.orchestrator.full_resync(account_id)).to_dict()

    _echo_json(_run(_go()))


@main.command()
@click.option("--account", default=None, help="Restrict to one account")
@click.option("--prop-firm-account", default=None, help="Restrict to one prop-firm account")
@click.option("--start", default=None, help="Exit time from (ISO 8601)")
@click.option("--end", default=None, help="Exit time to (ISO 8601)")
@click.option("--config", default=None, help="Config file path")
def stats(
    account: str | None,
    prop_firm_account: str | None,
    start: str | None,
    end: str | None,
    config: str | None,
) -> None:
    """Print performance statistics, overall and per instrument."""
    from .analytics.breakdown import by_instrument, daily_calendar
    from .analytics.stats import compute_stats
    from .main import open_services

    async def _go() -> dict:
        settings = _settings(config)
        async with open_services(settings) as services:
            trades = await services.store.list_trades(
                account_id=account,
                prop_firm_account_id=prop_firm_account,
                start=_parse_instant(start),
                end=_parse_instant(end),
            )
        calendar = daily_calendar(trades, settings.ingest.tz)
        return {
            "overall": compute_stats(trades).to_dict(),
            "by_instrument": {k: v.to_dict() for k, v in by_instrument(trades).items()},
            "green_days": calendar.green_days,
            "red_days": calendar.red_days,
        }

    _echo_json(_run(_go()))


@main.command()
@click.option("--account", default=None, help="Restrict to one account")
@click.option("--consolidate/--no-consolidate", default=None, help="Override the saved preference")
@click.option("--config", default=None, help="Config file path")
def trades(account: str | None, consolidate: bool | None, config: str | None) -> None:
    """List journal rows, consolidating partial exits per the saved preference."""
    from .journal.consolidation import ConsolidatedTrade, journal_view
    from .main import open_services

    async def _go() -> list:
        async with open_services(_settings(config)) as services:
            rows = await services.store.list_trades(account_id=account)
            enabled = consolidate
            if enabled is None:
                enabled = await services.consolidation.get()
        out = []
        for row in journal_view(rows, enabled):
            if isinstance(row, ConsolidatedTrade):
                out.append({
                    "position_id": row.key,
                    "instrument": row.instrument_id,
                    "contract": row.contract,
                    "side": row.side.value,
                    "qty": row.qty,
                    "entry_price": str(row.entry_price),
                    "avg_exit_price": str(row.avg_exit_price),
                    "pnl": str(row.pnl),
                    "partials": len(row.partials),
                })
            else:
                out.append(row.model_dump(mode="json"))
        return out

    _echo_json(_run(_go()))


@main.command("set-consolidation")
@click.argument("state", type=click.Choice(["on", "off"]))
@click.option("--config", default=None, help="Config file path")
def set_consolidation(state: str, config: str | None) -> None:
    """Turn consolidation of partial exits on or off."""
    from .main import open_services

    async def _go() -> None:
        async with open_services(_settings(config)) as services:
            await services.consolidation.set(state == "on")

    _run(_go())
    click.echo(f"Consolidation {state}")


@main.command()
@click.option("--config", default=None, help="Config file path")
def serve(config: str | None) -> None:
    """Run the sync trigger HTTP server."""
    from .main import serve as run_server

    _run(run_server(_settings(config)))
