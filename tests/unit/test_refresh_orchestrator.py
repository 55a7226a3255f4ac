"""
Unit tests for the refresh cycle (launchpad/services/refresh_orchestrator.py)

Tests:
- Cycle states and published snapshot
- Cache, demo and empty fallbacks on network failure
- Manual cooldown
- Stale-generation discard
- Aggregate metrics
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from solders.pubkey import Pubkey
from spl.token.constants import WRAPPED_SOL_MINT

from launchpad.clients.launchpad_client import LaunchpadClient
from launchpad.core.config import RefreshConfig
from launchpad.core.errors import MalformedDataError, RetriesExhaustedError, RPCError
from launchpad.core.models import ActivityRecord, PoolRecord, Provenance, ReserveDescriptor
from launchpad.core.storage import AggregateCache, DraftPoolStore
from launchpad.services.refresh_orchestrator import (
    SNAPSHOT_CACHE_KEY,
    RefreshOrchestrator,
    RefreshSnapshot,
    RefreshState,
    compute_aggregate_metrics,
)


class FakeClock:

    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_pool(fill=1, is_active=True, migrated=False, created_at=1_700_000_000.0):
    signer = Pubkey(bytes([fill + 100]) * 32)
    return PoolRecord(
        address=Pubkey(bytes([fill]) * 32),
        pool_signer=signer,
        meme_reserve=ReserveDescriptor.for_signer(Pubkey(bytes([fill + 50]) * 32), 900, signer),
        quote_reserve=ReserveDescriptor.for_signer(WRAPPED_SOL_MINT, 1_500, signer),
        fee_vault=Pubkey(bytes([6]) * 32),
        target_config=Pubkey(bytes([9]) * 32),
        creator=Pubkey(bytes([7]) * 32),
        is_active=is_active,
        migration_threshold=800,
        created_at=created_at,
        migrated=migrated,
    )


def activity(user="trader1", amount=0.5, success=True, kind="swap_buy"):
    return ActivityRecord(
        signature=f"sig_{user}_{amount}",
        kind=kind,
        user=user,
        amount_sol=amount,
        block_time=1_700_000_100,
        slot=1,
        pool=None,
        success=success
    )


def mock_client(pools=None, recent=None):
    client = MagicMock()
    client.fetch_pool_accounts = AsyncMock(return_value=[("entry", "info")])
    client.decode_pools = AsyncMock(return_value=pools if pools is not None else [make_pool()])
    client.fetch_recent_activity = AsyncMock(return_value=recent if recent is not None else [activity()])
    return client


def mock_resolver():
    resolver = MagicMock()
    resolver.resolve_many = AsyncMock(return_value={})
    return resolver


@pytest.fixture
def monotonic():
    return FakeClock()


@pytest.fixture
def make_orchestrator(blob_store, monotonic):
    def build(client=None, **config):
        return RefreshOrchestrator(
            client or mock_client(),
            mock_resolver(),
            DraftPoolStore(blob_store),
            AggregateCache(blob_store),
            RefreshConfig(**config),
            clock=lambda: 1_700_000_500.0,
            monotonic=monotonic
        )

    return build


class TestRefreshCycle:

    @pytest.mark.asyncio
    async def test_successful_cycle_publishes(self, make_orchestrator):
        orchestrator = make_orchestrator()

        snapshot = await orchestrator.refresh()

        assert snapshot.generation == 1
        assert snapshot.error is None
        assert snapshot.is_demo is False
        assert len(snapshot.pools) == 1
        assert snapshot.pools[0].provenance == Provenance.ONCHAIN_ONLY
        assert snapshot.metrics.total_pools == 1
        assert snapshot.last_updated == 1_700_000_500.0
        assert orchestrator.state == RefreshState.IDLE
        assert orchestrator.published_generation == 1

    @pytest.mark.asyncio
    async def test_states_follow_pipeline(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client)
        seen = []

        async def fetch_accounts():
            seen.append(orchestrator.state)
            return []

        async def decode(entries):
            seen.append(orchestrator.state)
            return [make_pool()]

        async def resolve(mints):
            seen.append(orchestrator.state)
            return {}

        client.fetch_pool_accounts.side_effect = fetch_accounts
        client.decode_pools.side_effect = decode
        orchestrator.resolver.resolve_many.side_effect = resolve

        await orchestrator.refresh()

        assert seen == [RefreshState.SCANNING, RefreshState.DECODING, RefreshState.ENRICHING]
        assert orchestrator.state == RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_drafts_reconciled(self, make_orchestrator):
        orchestrator = make_orchestrator(mock_client(pools=[]))
        orchestrator.drafts.add(name="Local", symbol="LOC", mint="mintA")

        snapshot = await orchestrator.refresh()

        assert [v.provenance for v in snapshot.pools] == [Provenance.LOCAL_ONLY]

    @pytest.mark.asyncio
    async def test_success_is_cached(self, make_orchestrator):
        orchestrator = make_orchestrator()

        await orchestrator.refresh()

        assert orchestrator.cache.get(SNAPSHOT_CACHE_KEY)["generation"] == 1

    @pytest.mark.asyncio
    async def test_activity_limits_passed(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client, activity_limit=20, activity_parse_limit=3)

        await orchestrator.refresh()

        client.fetch_recent_activity.assert_awaited_once_with(limit=20, parse_limit=3)


class TestFallbacks:

    @pytest.mark.asyncio
    async def test_cached_snapshot_preferred(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client)
        first = await orchestrator.refresh()

        client.fetch_pool_accounts.side_effect = RetriesExhaustedError(attempts=5)
        snapshot = await orchestrator.refresh()

        assert snapshot.from_cache is True
        assert snapshot.is_demo is False
        assert snapshot.generation == 2
        assert "RetriesExhaustedError" in snapshot.error
        assert [p.mint for p in snapshot.pools] == [p.mint for p in first.pools]

    @pytest.mark.asyncio
    async def test_demo_when_nothing_cached(self, make_orchestrator):
        client = mock_client()
        client.fetch_pool_accounts.side_effect = RetriesExhaustedError(attempts=5)
        orchestrator = make_orchestrator(client)

        snapshot = await orchestrator.refresh()

        assert snapshot.is_demo is True
        assert snapshot.pools
        assert snapshot.error is not None
        assert orchestrator.state == RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_empty_when_demo_disabled(self, make_orchestrator):
        client = mock_client()
        client.decode_pools.side_effect = RPCError("Invalid param", code=-32602)
        orchestrator = make_orchestrator(client, demo_fallback=False)

        snapshot = await orchestrator.refresh()

        assert snapshot.is_demo is False
        assert snapshot.pools == []
        assert snapshot.error.startswith("RPCError")

    @pytest.mark.asyncio
    async def test_failure_not_written_to_cache(self, make_orchestrator):
        client = mock_client()
        client.fetch_pool_accounts.side_effect = RetriesExhaustedError(attempts=5)
        orchestrator = make_orchestrator(client)

        await orchestrator.refresh()

        assert orchestrator.cache.get(SNAPSHOT_CACHE_KEY) is None

    @pytest.mark.asyncio
    async def test_pools_survive_activity_fetch_errors(self, make_orchestrator, program_config, blob_store):
        rpc = MagicMock()
        rpc.get_signatures_for_address = AsyncMock(return_value=[{"signature": "s1"}, {"signature": "s2"}])
        rpc.get_parsed_transaction = AsyncMock(side_effect=[
            RPCError("Transaction version (1) is not supported", code=-32015),
            RetriesExhaustedError(attempts=3),
        ])
        client = LaunchpadClient(rpc, program_config, blob_store=blob_store)
        client.fetch_pool_accounts = AsyncMock(return_value=[])
        client.decode_pools = AsyncMock(return_value=[make_pool()])
        orchestrator = make_orchestrator(client)

        snapshot = await orchestrator.refresh()

        assert snapshot.error is None
        assert snapshot.is_demo is False
        assert len(snapshot.pools) == 1
        assert snapshot.activity == []

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, make_orchestrator):
        client = mock_client()
        client.decode_pools.side_effect = MalformedDataError("broken")
        orchestrator = make_orchestrator(client)

        with pytest.raises(MalformedDataError):
            await orchestrator.refresh()


class TestManualRefresh:

    @pytest.mark.asyncio
    async def test_cooldown_throttles(self, make_orchestrator, monotonic):
        client = mock_client()
        orchestrator = make_orchestrator(client, manual_cooldown_s=2.0)

        await orchestrator.refresh(manual=True)
        monotonic.now += 1.0
        throttled = await orchestrator.refresh(manual=True)

        assert throttled.generation == 1
        assert client.fetch_pool_accounts.await_count == 1

        monotonic.now += 1.0
        snapshot = await orchestrator.refresh(manual=True)
        assert snapshot.generation == 2

    @pytest.mark.asyncio
    async def test_timer_refresh_ignores_cooldown(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client, manual_cooldown_s=60)

        await orchestrator.refresh(manual=True)
        await orchestrator.refresh()

        assert client.fetch_pool_accounts.await_count == 2


class TestGenerations:

    @pytest.mark.asyncio
    async def test_older_cycle_discarded(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client)
        release = asyncio.Event()
        calls = []

        async def fetch_accounts():
            calls.append(len(calls) + 1)
            if len(calls) == 1:
                await release.wait()
            return []

        async def decode(entries):
            return [make_pool(fill=len(calls))]

        client.fetch_pool_accounts.side_effect = fetch_accounts
        client.decode_pools.side_effect = decode

        slow = asyncio.create_task(orchestrator.refresh())
        await asyncio.sleep(0)
        fast = await orchestrator.refresh()
        release.set()
        final = await slow

        assert fast.generation == 2
        assert final.generation == 2
        assert orchestrator.snapshot.generation == 2
        assert orchestrator.published_generation == 2
        assert orchestrator.cache.get(SNAPSHOT_CACHE_KEY)["generation"] == 2

    @pytest.mark.asyncio
    async def test_older_cycle_does_not_reset_state(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client)
        gates = [asyncio.Event(), asyncio.Event()]
        calls = []

        async def fetch_accounts():
            calls.append(len(calls))
            await gates[calls[-1]].wait()
            return []

        client.fetch_pool_accounts.side_effect = fetch_accounts

        older = asyncio.create_task(orchestrator.refresh())
        await asyncio.sleep(0)
        newer = asyncio.create_task(orchestrator.refresh())
        await asyncio.sleep(0)

        gates[0].set()
        await older
        assert orchestrator.state == RefreshState.SCANNING

        gates[1].set()
        await newer
        assert orchestrator.state == RefreshState.IDLE
        assert orchestrator.published_generation == 2

    @pytest.mark.asyncio
    async def test_generations_increase(self, make_orchestrator):
        orchestrator = make_orchestrator()

        for expected in (1, 2, 3):
            snapshot = await orchestrator.refresh()
            assert snapshot.generation == expected


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_runs_immediately_and_stop_cancels(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client, interval_s=3600)

        await orchestrator.start()
        assert client.fetch_pool_accounts.await_count == 1
        assert orchestrator.snapshot.generation == 1

        await orchestrator.stop()
        assert orchestrator._task is None

    @pytest.mark.asyncio
    async def test_loop_refreshes_on_interval(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client, interval_s=0)

        await orchestrator.start()
        for _ in range(10):
            await asyncio.sleep(0)
        await orchestrator.stop()

        assert client.fetch_pool_accounts.await_count >= 2

    @pytest.mark.asyncio
    async def test_double_start_ignored(self, make_orchestrator):
        client = mock_client()
        orchestrator = make_orchestrator(client, interval_s=3600)

        await orchestrator.start()
        await orchestrator.start()
        await orchestrator.stop()

        assert client.fetch_pool_accounts.await_count == 1


class TestAggregateMetrics:

    def test_counts_and_volume(self):
        pools = [
            make_pool(fill=1),
            make_pool(fill=2, is_active=False, migrated=True),
            make_pool(fill=3, is_active=False),
            make_pool(fill=4),
        ]
        recent = [
            activity(user="a", amount=0.5),
            activity(user="a", amount=1.0),
            activity(user="b", amount=0.25),
            activity(user="c", amount=9.0, success=False),
        ]

        result = compute_aggregate_metrics(pools, recent)

        assert result.total_pools == 4
        assert result.active_pools == 2
        assert result.migrated_pools == 1
        assert result.migration_rate == pytest.approx(25.0)
        assert result.total_volume_sol == pytest.approx(1.75)
        assert result.active_traders == 2

    def test_empty(self):
        result = compute_aggregate_metrics([], [])

        assert result.total_pools == 0
        assert result.migration_rate == 0.0


class TestSnapshotSerialization:

    @pytest.mark.asyncio
    async def test_dict_round_trip(self, make_orchestrator):
        snapshot = await make_orchestrator().refresh()

        restored = RefreshSnapshot.from_dict(snapshot.to_dict())

        assert restored.to_dict() == snapshot.to_dict()
