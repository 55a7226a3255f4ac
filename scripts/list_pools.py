"""
List Launchpad Pools - one refresh cycle, printed

Usage:
    python scripts/list_pools.py --config config/config.yml
    python scripts/list_pools.py --config config/config.yml --json

This will show:
1. Every pool (on-chain, local draft or both) newest first
2. Reserve balances and migration threshold
3. Launchpad-wide metrics and recent activity
"""

import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from launchpad.clients.launchpad_client import LaunchpadClient
from launchpad.core.addresses import AddressDeriver
from launchpad.core.config import ConfigurationManager
from launchpad.core.logger import setup_logging, get_logger
from launchpad.core.metrics import init_metrics
from launchpad.core.rpc_manager import RPCManager
from launchpad.core.storage import AggregateCache, DraftPoolStore, FileBlobStore
from launchpad.services.metadata_resolver import MetadataResolver
from launchpad.services.refresh_orchestrator import RefreshOrchestrator

logger = get_logger(__name__)


async def list_pools(config_path: str, as_json: bool):
    """
    Run one refresh cycle and print the unified pool view

    Args:
        config_path: Path to config.yml
        as_json: Print the snapshot as JSON instead of a table
    """
    config = ConfigurationManager(config_path).load_config()
    init_metrics(
        enable_histogram=config.metrics_config.enable_histogram,
        max_samples=config.metrics_config.max_samples
    )

    store = FileBlobStore(config.storage_config.directory)
    drafts = DraftPoolStore(store)
    cache = AggregateCache(store, default_ttl_s=config.refresh_config.aggregate_cache_ttl_s)

    async with RPCManager(config.rpc_config) as rpc_manager:
        client = LaunchpadClient(
            rpc_manager,
            config.program_config,
            drafts=drafts,
            blob_store=store
        )
        async with MetadataResolver(
            rpc_manager,
            AddressDeriver(config.program_config),
            config.metadata_config
        ) as resolver:
            orchestrator = RefreshOrchestrator(client, resolver, drafts, cache, config.refresh_config)
            snapshot = await orchestrator.refresh()

    if as_json:
        print(json.dumps(snapshot.to_dict(), indent=2))
        return

    if snapshot.error:
        print(f"WARNING: {snapshot.error}")
    if snapshot.is_demo:
        print("Showing demo data (network unavailable)\n")

    print(f"{'NAME':<24} {'SYMBOL':<10} {'SOURCE':<9} {'QUOTE':>14} {'MEME':>20}  POOL")
    for pool in snapshot.pools:
        quote = "-" if pool.quote_balance is None else f"{pool.quote_balance / 1e9:.4f} SOL"
        meme = "-" if pool.meme_balance is None else f"{pool.meme_balance:,}"
        print(
            f"{pool.name[:24]:<24} {pool.symbol[:10]:<10} {pool.provenance.value:<9} "
            f"{quote:>14} {meme:>20}  {pool.pool_address or '-'}"
        )

    m = snapshot.metrics
    print(
        f"\nPools: {m.total_pools} (active {m.active_pools}, migrated {m.migrated_pools}, "
        f"rate {m.migration_rate:.1f}%)"
    )
    print(f"Volume: {m.total_volume_sol:.4f} SOL from {m.active_traders} trader(s)")

    if snapshot.activity:
        print("\nRecent activity:")
        for item in snapshot.activity:
            print(f"  {item.kind:<16} {item.amount_sol:>10.4f} SOL  {item.user or '-'}  {item.signature}")


async def main():
    import argparse

    parser = argparse.ArgumentParser(
        description="List launchpad pools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example:
  python scripts/list_pools.py --config config/config.yml --json
        """
    )

    parser.add_argument(
        "--config",
        default="config/config.yml",
        help="Path to config.yml"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the snapshot as JSON"
    )

    args = parser.parse_args()

    # Warnings only; stdout carries the listing
    setup_logging(level="WARNING", format="console")

    await list_pools(config_path=args.config, as_json=args.json)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error("error", error=str(e), exc_info=True)
        sys.exit(1)
