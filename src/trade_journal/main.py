"""Application wiring.

Builds the store, matcher, broker client, token cache, orchestrator and
importer from :class:`Settings`, and runs the sync trigger server.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator

from aiohttp import web

from .broker.client import TradovateClient
from .broker.credentials import StaticCredentialProvider
from .broker.tokens import TokenManager
from .core.config import Settings
from .ingest.csv_import import CsvImporter
from .journal.annotations import JournalAnnotator
from .journal.preferences import ConsolidationPreference
from .matching.matcher import PositionMatcher
from .server.app import create_sync_app
from .storage.postgres import connection
from .storage.postgres.repos import SqlJournalStore
from .sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: SqlJournalStore
    matcher: PositionMatcher
    client: TradovateClient
    tokens: TokenManager
    orchestrator: SyncOrchestrator
    importer: CsvImporter
    annotator: JournalAnnotator
    consolidation: ConsolidationPreference


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[Services]:
    """Initialise the database and broker client for the duration of the block."""
    await connection.init_engine(settings.database_url, create_tables=settings.create_tables)
    client = TradovateClient(settings.broker)
    await client.open()
    try:
        store = SqlJournalStore()
        matcher = PositionMatcher(settings.matching)
        tokens = TokenManager(
            client,
            StaticCredentialProvider(settings.credentials),
            safety_margin=timedelta(seconds=settings.broker.token_safety_margin_seconds),
        )
        yield Services(
            settings=settings,
            store=store,
            matcher=matcher,
            client=client,
            tokens=tokens,
            orchestrator=SyncOrchestrator(
                store,
                client,
                tokens,
                matcher,
                max_concurrent_accounts=settings.sync.max_concurrent_accounts,
                only_active=settings.sync.only_active_accounts,
            ),
            importer=CsvImporter(store, matcher, settings.ingest.tz),
            annotator=JournalAnnotator(store),
            consolidation=ConsolidationPreference(store),
        )
    finally:
        await client.close()
        await connection.dispose()


async def serve(settings: Settings) -> None:
    """Run the sync trigger server until cancelled."""
    secret = settings.require_cron_secret()
    async with open_services(settings) as services:
        app = create_sync_app(services.orchestrator, secret)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, settings.server.host, settings.server.port)
        await site.start()
        logger.info(
            "Sync server listening on %s:%d", settings.server.host, settings.server.port,
        )
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
