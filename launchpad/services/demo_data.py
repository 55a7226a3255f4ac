"""
Synthetic pools shown when the ledger cannot be reached
"""

from typing import List

from solders.pubkey import Pubkey
from spl.token.constants import WRAPPED_SOL_MINT

from launchpad.core.models import ActivityRecord, AggregateMetrics, Provenance, UnifiedPoolView


def _placeholder(fill: int) -> str:
    return str(Pubkey(bytes([fill]) * 32))


def demo_pools(now: float) -> List[UnifiedPoolView]:
    """Two fixed demo pools created one and two hours before now"""
    return [
        UnifiedPoolView(
            mint=_placeholder(3),
            pool_address=_placeholder(1),
            quote_mint=str(WRAPPED_SOL_MINT),
            name="Demo Token 1",
            symbol="DEMO1",
            description="Demo pool shown while the network is unavailable",
            provenance=Provenance.ONCHAIN_ONLY,
            created_at=now - 3600,
            meme_balance=1_000_000,
            quote_balance=1_500_000_000,
            total_supply=10_000_000,
            migration_threshold=500_000,
            creator=_placeholder(7),
            pool_signer=_placeholder(2),
            meme_vault=_placeholder(4),
            quote_vault=_placeholder(5),
        ),
        UnifiedPoolView(
            mint=_placeholder(10),
            pool_address=_placeholder(8),
            quote_mint=str(WRAPPED_SOL_MINT),
            name="Demo Token 2",
            symbol="DEMO2",
            description="Demo pool shown while the network is unavailable",
            provenance=Provenance.ONCHAIN_ONLY,
            created_at=now - 7200,
            meme_balance=750_000,
            quote_balance=2_300_000_000,
            total_supply=5_000_000,
            migration_threshold=250_000,
            creator=_placeholder(14),
            pool_signer=_placeholder(9),
            meme_vault=_placeholder(11),
            quote_vault=_placeholder(12),
        ),
    ]


def demo_activity(now: float) -> List[ActivityRecord]:
    pools = demo_pools(now)
    return [
        ActivityRecord(
            signature="demo_signature_1",
            kind="swap_buy",
            user="DemoUser1",
            amount_sol=0.5,
            block_time=int(now - 300),
            pool=pools[0].pool_address,
        ),
        ActivityRecord(
            signature="demo_signature_2",
            kind="pool_created",
            user="DemoUser2",
            amount_sol=2.0,
            block_time=int(now - 1800),
            pool=pools[1].pool_address,
        ),
    ]


def demo_metrics() -> AggregateMetrics:
    return AggregateMetrics(
        total_pools=2,
        active_pools=2,
        migrated_pools=0,
        migration_rate=75.0,
        total_volume_sol=15.7,
        active_traders=3,
    )
