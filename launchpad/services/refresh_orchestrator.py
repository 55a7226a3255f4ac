"""
Refresh Orchestrator
Runs scan -> decode -> enrich -> reconcile cycles on a timer or on demand and
owns the snapshot the presentation layer reads
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from launchpad.clients.launchpad_client import LaunchpadClient
from launchpad.core.config import RefreshConfig
from launchpad.core.errors import RPCError, TransientNetworkError
from launchpad.core.logger import get_logger, log_context
from launchpad.core.metrics import get_metrics, LatencyTimer
from launchpad.core.models import ActivityRecord, AggregateMetrics, PoolRecord, UnifiedPoolView
from launchpad.core.storage import AggregateCache, DraftPoolStore
from launchpad.services.demo_data import demo_activity, demo_metrics, demo_pools
from launchpad.services.metadata_resolver import MetadataResolver
from launchpad.services.reconciler import reconcile


logger = get_logger(__name__)
metrics = get_metrics()


SNAPSHOT_CACHE_KEY = "launchpad_snapshot"


class RefreshState(Enum):
    """Refresh cycle state"""
    IDLE = "idle"
    SCANNING = "scanning"
    DECODING = "decoding"
    ENRICHING = "enriching"
    RECONCILING = "reconciling"
    DEMO_FALLBACK = "demo_fallback"


@dataclass
class RefreshSnapshot:
    """Everything one refresh cycle publishes"""
    pools: List[UnifiedPoolView] = field(default_factory=list)
    metrics: AggregateMetrics = field(default_factory=AggregateMetrics)
    activity: List[ActivityRecord] = field(default_factory=list)
    error: Optional[str] = None
    is_demo: bool = False
    from_cache: bool = False
    generation: int = 0
    last_updated: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pools": [p.to_dict() for p in self.pools],
            "metrics": self.metrics.to_dict(),
            "activity": [a.to_dict() for a in self.activity],
            "error": self.error,
            "is_demo": self.is_demo,
            "from_cache": self.from_cache,
            "generation": self.generation,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefreshSnapshot":
        return cls(
            pools=[UnifiedPoolView.from_dict(p) for p in data.get("pools", [])],
            metrics=AggregateMetrics.from_dict(data.get("metrics", {})),
            activity=[ActivityRecord.from_dict(a) for a in data.get("activity", [])],
            error=data.get("error"),
            is_demo=data.get("is_demo", False),
            from_cache=data.get("from_cache", False),
            generation=data.get("generation", 0),
            last_updated=data.get("last_updated"),
        )


def compute_aggregate_metrics(
    pools: Sequence[PoolRecord],
    activity: Sequence[ActivityRecord]
) -> AggregateMetrics:
    """Launchpad-wide numbers from ledger pools and classified activity"""
    total = len(pools)
    migrated = sum(1 for p in pools if p.migrated)
    successful = [a for a in activity if a.success]

    return AggregateMetrics(
        total_pools=total,
        active_pools=sum(1 for p in pools if p.is_active),
        migrated_pools=migrated,
        migration_rate=(migrated / total * 100) if total else 0.0,
        total_volume_sol=sum(a.amount_sol for a in successful),
        active_traders=len({a.user for a in successful if a.user}),
    )


class RefreshOrchestrator:
    """
    Schedules refresh cycles and publishes their snapshots

    Each cycle takes a generation number when it starts. A finished cycle
    publishes only if its generation is newer than the last published one,
    so a slow older cycle never overwrites a newer result.

    Usage:
        orchestrator = RefreshOrchestrator(client, resolver, drafts, cache, config.refresh_config)
        await orchestrator.start()
        snapshot = orchestrator.snapshot
    """

    def __init__(
        self,
        client: LaunchpadClient,
        resolver: MetadataResolver,
        drafts: DraftPoolStore,
        cache: AggregateCache,
        config: Optional[RefreshConfig] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic
    ):
        """
        Initialize refresh orchestrator

        Args:
            client: Program client for pool and activity reads
            resolver: Metadata resolver (its cache spans cycles)
            drafts: Local draft pool store
            cache: Aggregate cache holding the last good snapshot
            config: Refresh configuration (optional)
            clock: Wall clock for timestamps
            monotonic: Monotonic clock for the manual cooldown
        """
        self.client = client
        self.resolver = resolver
        self.drafts = drafts
        self.cache = cache
        self.config = config or RefreshConfig()
        self._clock = clock
        self._monotonic = monotonic

        self.state = RefreshState.IDLE
        self.snapshot = RefreshSnapshot()
        self._generation = 0
        self._published_generation = 0
        self._last_manual: Optional[float] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None

        logger.info(
            "refresh_orchestrator_initialized",
            interval_s=self.config.interval_s,
            manual_cooldown_s=self.config.manual_cooldown_s,
            demo_fallback=self.config.demo_fallback
        )

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def published_generation(self) -> int:
        return self._published_generation

    def _transition(self, state: RefreshState, generation: int) -> None:
        # Only the newest cycle drives the state machine
        if generation != self._generation:
            return
        if state != self.state:
            logger.info(
                "refresh_state_changed",
                previous=self.state.value,
                state=state.value,
                generation=generation
            )
        self.state = state

    async def refresh(self, manual: bool = False) -> RefreshSnapshot:
        """
        Run one refresh cycle

        Args:
            manual: User-triggered; subject to the manual cooldown

        Returns:
            The snapshot current after the cycle (which may be a newer cycle's)
        """
        if manual:
            now = self._monotonic()
            if self._last_manual is not None and now - self._last_manual < self.config.manual_cooldown_s:
                logger.info("manual_refresh_throttled", cooldown_s=self.config.manual_cooldown_s)
                metrics.increment_counter("refresh_throttled")
                return self.snapshot
            self._last_manual = now

        self._generation += 1
        generation = self._generation
        metrics.increment_counter("refresh_cycles", labels={"trigger": "manual" if manual else "timer"})

        try:
            with log_context(refresh_generation=generation), LatencyTimer(metrics, "refresh_cycle"):
                snapshot = await self._run_cycle(generation)
            if self._publish(snapshot):
                self.cache.set(SNAPSHOT_CACHE_KEY, snapshot.to_dict(), ttl_s=self.config.aggregate_cache_ttl_s)
        except (TransientNetworkError, RPCError) as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning("refresh_cycle_failed", generation=generation, error=error)
            metrics.increment_counter("refresh_cycles_failed")
            self._publish(self._fallback(error, generation))

        self._transition(RefreshState.IDLE, generation)
        return self.snapshot

    async def _run_cycle(self, generation: int) -> RefreshSnapshot:
        self._transition(RefreshState.SCANNING, generation)
        entries = await self.client.fetch_pool_accounts()

        self._transition(RefreshState.DECODING, generation)
        pools = await self.client.decode_pools(entries)

        self._transition(RefreshState.ENRICHING, generation)
        metadata = await self.resolver.resolve_many([p.mint for p in pools])
        activity = await self.client.fetch_recent_activity(
            limit=self.config.activity_limit,
            parse_limit=self.config.activity_parse_limit
        )

        self._transition(RefreshState.RECONCILING, generation)
        views = reconcile(pools, self.drafts.list(), metadata)

        return RefreshSnapshot(
            pools=views,
            metrics=compute_aggregate_metrics(pools, activity),
            activity=activity,
            generation=generation,
            last_updated=self._clock(),
        )

    def _fallback(self, error: str, generation: int) -> RefreshSnapshot:
        cached = self.cache.get(SNAPSHOT_CACHE_KEY)
        if cached is not None:
            snapshot = RefreshSnapshot.from_dict(cached)
            snapshot.error = error
            snapshot.from_cache = True
            snapshot.generation = generation
            logger.info("refresh_using_cached_snapshot", pools=len(snapshot.pools), generation=generation)
            return snapshot

        if not self.config.demo_fallback:
            return RefreshSnapshot(error=error, generation=generation, last_updated=self._clock())

        self._transition(RefreshState.DEMO_FALLBACK, generation)
        metrics.increment_counter("refresh_demo_fallbacks")
        now = self._clock()
        return RefreshSnapshot(
            pools=demo_pools(now),
            metrics=demo_metrics(),
            activity=demo_activity(now),
            error=error,
            is_demo=True,
            generation=generation,
            last_updated=now,
        )

    def _publish(self, snapshot: RefreshSnapshot) -> bool:
        """Make snapshot current unless a newer generation already published"""
        if snapshot.generation <= self._published_generation:
            logger.info(
                "refresh_result_discarded",
                generation=snapshot.generation,
                published_generation=self._published_generation
            )
            metrics.increment_counter("refresh_results_discarded")
            return False

        self.snapshot = snapshot
        self._published_generation = snapshot.generation
        metrics.set_gauge("refresh_last_generation", snapshot.generation)
        logger.info(
            "refresh_published",
            generation=snapshot.generation,
            pools=len(snapshot.pools),
            is_demo=snapshot.is_demo,
            from_cache=snapshot.from_cache,
            error=snapshot.error
        )
        return True

    async def start(self) -> None:
        """Run one cycle now, then every interval_s"""
        if self._running:
            logger.warning("refresh_orchestrator_already_running")
            return

        self._running = True
        await self.refresh()
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info("refresh_orchestrator_started", interval_s=self.config.interval_s)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("refresh_orchestrator_stopped")

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.interval_s)
                await self.refresh()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("refresh_loop_error", error=str(e), exc_info=True)
