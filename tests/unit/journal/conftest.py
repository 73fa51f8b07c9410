"""Shared fixtures for journal tests."""

import pytest

from trade_journal.journal.annotations import JournalAnnotator
from trade_journal.journal.preferences import ConsolidationPreference


@pytest.fixture
def annotator(store):
    return JournalAnnotator(store)


@pytest.fixture
def preference(store):
    return ConsolidationPreference(store)


@pytest.fixture
async def stored_trade(store, make_trade):
    """A single trade committed to the in-memory store."""
    trade = make_trade("50")
    state = await store.get_sync_state(trade.account_id)
    await store.commit_sync_cycle(state, [trade])
    return trade
