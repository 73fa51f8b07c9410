"""Tests for the broker sync orchestrator."""

import asyncio
from decimal import Decimal

import pytest

from trade_journal.broker.tokens import TokenManager
from trade_journal.core.enums import SyncPhase, SyncStatus
from trade_journal.core.errors import NotFoundError, TransientNetworkFailure
from trade_journal.core.models import BrokerAccount
from trade_journal.matching.matcher import PositionMatcher
from trade_journal.sync.orchestrator import SyncOrchestrator, total_synced


@pytest.fixture
def orchestrator(store, broker, credentials, sim_clock):
    tokens = TokenManager(broker, credentials, clock=sim_clock)
    return SyncOrchestrator(store, broker, tokens, PositionMatcher(), clock=sim_clock)


@pytest.fixture
async def account(store, demo_account):
    await store.upsert_broker_account(demo_account)
    return demo_account


def _round_trip(api_fill, first_id, *, seconds=0, entry=17000, exit=17010):
    return [
        api_fill(first_id, "Buy", 1, entry, seconds=seconds),
        api_fill(first_id + 1, "Sell", 1, exit, seconds=seconds + 30),
    ]


class TestSyncAccount:
    @pytest.mark.asyncio
    async def test_creates_trades(self, orchestrator, store, broker, account, api_fill, sim_clock):
        broker.fills[101] = _round_trip(api_fill, 1)

        result = await orchestrator.sync_account("acct-1")

        assert result.ok
        assert (result.synced, result.skipped, result.total) == (1, 0, 1)
        assert result.new_fills == 2
        (trade,) = await store.list_trades(account_id="acct-1")
        assert trade.instrument_id == "MNQ"
        assert trade.contract == "MNQH6"
        assert trade.pnl == Decimal("20")

        state = await store.get_sync_state("acct-1")
        assert state.last_sync_status is SyncStatus.SUCCESS
        assert state.last_sync_at == sim_clock.now()
        assert state.cursor.timestamp == trade.exit_time

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, orchestrator, store, broker, account, api_fill):
        broker.fills[101] = _round_trip(api_fill, 1)

        await orchestrator.sync_account("acct-1")
        again = await orchestrator.sync_account("acct-1")

        assert again.ok
        assert (again.synced, again.new_fills) == (0, 0)
        assert len(await store.list_trades()) == 1

    @pytest.mark.asyncio
    async def test_incremental_fills(self, orchestrator, store, broker, account, api_fill):
        broker.fills[101] = _round_trip(api_fill, 1)
        await orchestrator.sync_account("acct-1")

        broker.fills[101] += _round_trip(api_fill, 3, seconds=300, exit=16990)
        result = await orchestrator.sync_account("acct-1")

        assert (result.synced, result.new_fills) == (1, 2)
        pnls = [t.pnl for t in await store.list_trades()]
        assert pnls == [Decimal("20"), Decimal("-20")]

    @pytest.mark.asyncio
    async def test_open_position_carried_between_cycles(
        self, orchestrator, store, broker, account, api_fill,
    ):
        broker.fills[101] = [api_fill(1, "Buy", 2, 17000)]
        first = await orchestrator.sync_account("acct-1")
        assert (first.synced, first.open_positions) == (0, 1)

        broker.fills[101].append(api_fill(2, "Sell", 2, 17005, seconds=60))
        second = await orchestrator.sync_account("acct-1")

        assert (second.synced, second.open_positions) == (1, 0)
        (trade,) = await store.list_trades()
        assert trade.qty == 2
        assert trade.pnl == Decimal("20")

    @pytest.mark.asyncio
    async def test_contract_names_resolved(self, orchestrator, store, broker, account, api_fill):
        broker.contracts[555] = "ESH6"
        broker.fills[101] = [
            api_fill(1, "Buy", 1, 5000, symbol=None, contract_id=555),
            api_fill(2, "Sell", 1, 5001, symbol=None, contract_id=555, seconds=5),
        ]
        await orchestrator.sync_account("acct-1")

        (trade,) = await store.list_trades()
        assert trade.instrument_id == "ES"
        assert trade.pnl == Decimal("50")
        assert trade.contract == "ESH6"

    @pytest.mark.asyncio
    async def test_expiries_are_separate_positions(
        self, orchestrator, store, broker, account, api_fill,
    ):
        broker.fills[101] = [
            api_fill(1, "Buy", 1, 100, symbol="MNQH6"),
            api_fill(2, "Sell", 1, 120, symbol="MNQM6", seconds=5),
        ]
        result = await orchestrator.sync_account("acct-1")

        assert result.ok
        assert await store.list_trades() == []
        state = await store.get_sync_state("acct-1")
        assert [p.contract for p in state.open_positions] == ["MNQH6", "MNQM6"]

    @pytest.mark.asyncio
    async def test_prop_firm_account_applied(self, orchestrator, store, broker, api_fill):
        await store.upsert_broker_account(BrokerAccount(
            id="acct-pf", broker_account_id=303, prop_firm_account_id="pf-1",
        ))
        broker.fills[303] = _round_trip(api_fill, 1)

        await orchestrator.sync_account("acct-pf")

        assert len(await store.list_trades(prop_firm_account_id="pf-1")) == 1

    @pytest.mark.asyncio
    async def test_unknown_account(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.sync_account("ghost")
        assert orchestrator.phase("ghost") is SyncPhase.IDLE


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_leaves_cursor_untouched(
        self, orchestrator, store, broker, account, api_fill,
    ):
        broker.fills[101] = _round_trip(api_fill, 1)
        await orchestrator.sync_account("acct-1")
        before = await store.get_sync_state("acct-1")

        broker.fills[101] += _round_trip(api_fill, 3, seconds=300)
        broker.fail_fills_for[101] = TransientNetworkFailure("broker down")
        result = await orchestrator.sync_account("acct-1")

        assert result.status is SyncStatus.FAILED
        assert "broker down" in result.error
        state = await store.get_sync_state("acct-1")
        assert state.cursor == before.cursor
        assert state.open_positions == before.open_positions
        assert state.last_sync_status is SyncStatus.FAILED
        assert state.last_error == "broker down"
        assert len(await store.list_trades()) == 1

        del broker.fail_fills_for[101]
        recovered = await orchestrator.sync_account("acct-1")
        assert (recovered.synced, recovered.new_fills) == (1, 2)

    @pytest.mark.asyncio
    async def test_malformed_fill_fails_cycle(self, orchestrator, store, broker, account, api_fill):
        bad = api_fill(2, "Sell", 1, 17010, seconds=30)
        del bad["price"]
        broker.fills[101] = [api_fill(1, "Buy", 1, 17000), bad]

        result = await orchestrator.sync_account("acct-1")

        assert result.status is SyncStatus.FAILED
        assert "price" in result.error
        assert await store.list_trades() == []
        assert (await store.get_sync_state("acct-1")).cursor.timestamp is None

    @pytest.mark.asyncio
    async def test_rejected_token_reauthenticates_once(
        self, orchestrator, store, broker, account, api_fill,
    ):
        broker.fills[101] = _round_trip(api_fill, 1)
        broker.reject_tokens = 1

        result = await orchestrator.sync_account("acct-1")

        assert result.ok
        assert broker.token_requests == 2
        assert broker.fill_requests == 2

    @pytest.mark.asyncio
    async def test_second_rejection_fails_cycle(self, orchestrator, broker, account, api_fill):
        broker.fills[101] = _round_trip(api_fill, 1)
        broker.reject_tokens = 2

        result = await orchestrator.sync_account("acct-1")

        assert result.status is SyncStatus.FAILED
        assert broker.fill_requests == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_recorded_and_raised(self, orchestrator, store, broker, account):
        broker.fail_fills_for[101] = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await orchestrator.sync_account("acct-1")

        state = await store.get_sync_state("acct-1")
        assert state.last_sync_status is SyncStatus.FAILED
        assert orchestrator.phase("acct-1") is SyncPhase.IDLE


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_accounts_isolated(self, orchestrator, store, broker, account, api_fill):
        await store.upsert_broker_account(BrokerAccount(id="acct-2", broker_account_id=202))
        broker.fills[101] = _round_trip(api_fill, 1)
        broker.fail_fills_for[202] = TransientNetworkFailure("timeout")

        results = await orchestrator.sync_all()

        by_id = {r.account_id: r for r in results}
        assert by_id["acct-1"].ok
        assert by_id["acct-2"].status is SyncStatus.FAILED
        assert total_synced(results) == 1
        assert len(await store.list_trades(account_id="acct-1")) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(
        self, orchestrator, store, broker, account, api_fill,
    ):
        await store.upsert_broker_account(BrokerAccount(id="acct-2", broker_account_id=202))
        broker.fills[101] = _round_trip(api_fill, 1)
        broker.fail_fills_for[202] = RuntimeError("bug")

        results = await orchestrator.sync_all()

        by_id = {r.account_id: r for r in results}
        assert by_id["acct-1"].ok
        assert by_id["acct-2"].error == "bug"

    @pytest.mark.asyncio
    async def test_inactive_accounts_skipped(self, orchestrator, store, broker, account):
        await store.upsert_broker_account(BrokerAccount(
            id="acct-off", broker_account_id=909, is_active=False,
        ))

        results = await orchestrator.sync_all()

        assert [r.account_id for r in results] == ["acct-1"]

    @pytest.mark.asyncio
    async def test_no_accounts(self, orchestrator):
        assert await orchestrator.sync_all() == []


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_same_account_cycles_serialized(
        self, orchestrator, store, broker, account, api_fill,
    ):
        broker.fills[101] = _round_trip(api_fill, 1)

        results = await asyncio.gather(*(orchestrator.sync_account("acct-1") for _ in range(4)))

        assert all(r.ok for r in results)
        assert total_synced(results) == 1
        assert sum(r.new_fills for r in results) == 2
        assert len(await store.list_trades()) == 1

    @pytest.mark.asyncio
    async def test_phase_during_fetch(self, store, broker, credentials, sim_clock, account, api_fill):
        seen = []
        list_fills = broker.list_fills

        async def _observing(environment, access_token, broker_account_id):
            seen.append(orchestrator.phase("acct-1"))
            return await list_fills(environment, access_token, broker_account_id)

        broker.list_fills = _observing
        broker.fills[101] = _round_trip(api_fill, 1)
        tokens = TokenManager(broker, credentials, clock=sim_clock)
        orchestrator = SyncOrchestrator(store, broker, tokens, PositionMatcher(), clock=sim_clock)

        await orchestrator.sync_account("acct-1")

        assert seen == [SyncPhase.FETCHING]
        assert orchestrator.phase("acct-1") is SyncPhase.IDLE


class TestFullResync:
    @pytest.mark.asyncio
    async def test_replay_creates_no_duplicates(self, orchestrator, store, broker, account, api_fill):
        broker.fills[101] = _round_trip(api_fill, 1) + _round_trip(api_fill, 3, seconds=300)
        await orchestrator.sync_account("acct-1")
        before = await store.get_sync_state("acct-1")

        result = await orchestrator.full_resync("acct-1")

        assert result.ok
        assert (result.synced, result.skipped, result.total) == (0, 2, 2)
        assert len(await store.list_trades()) == 2
        assert (await store.get_sync_state("acct-1")).cursor == before.cursor

    @pytest.mark.asyncio
    async def test_replay_restores_deleted_trade(self, orchestrator, store, broker, account, api_fill):
        broker.fills[101] = _round_trip(api_fill, 1)
        await orchestrator.sync_account("acct-1")
        (trade,) = await store.list_trades()
        await store.delete_trade(trade.id)

        result = await orchestrator.full_resync("acct-1")

        assert result.synced == 1
        (restored,) = await store.list_trades()
        assert restored.id == trade.id

    @pytest.mark.asyncio
    async def test_failed_replay_keeps_state(self, orchestrator, store, broker, account, api_fill):
        broker.fills[101] = [api_fill(1, "Buy", 1, 17000)]
        await orchestrator.sync_account("acct-1")
        before = await store.get_sync_state("acct-1")

        broker.fail_fills_for[101] = TransientNetworkFailure("down")
        result = await orchestrator.full_resync("acct-1")

        assert not result.ok
        state = await store.get_sync_state("acct-1")
        assert state.cursor == before.cursor
        assert len(state.open_positions) == 1
