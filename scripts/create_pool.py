"""
Create Pool Script - new meme mint, target config and bonding-curve pool

Usage:
    python scripts/create_pool.py --wallet data/creator-wallet.json --name "Dog Coin" --symbol DOG --target-amount 1000000000
    python scripts/create_pool.py --wallet data/creator-wallet.json --name "Dog Coin" --symbol DOG \
        --target-amount 1000000000 --uri https://example.com/dog.json --description "Much wow"

This will:
1. Create the mint (pool signer as mint authority) and its target config
2. Create the pool, plus the metadata record when --uri is given
3. Store a local draft so the pool shows up before the next scan
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from launchpad.clients.launchpad_client import LaunchpadClient
from launchpad.core.config import ConfigurationManager
from launchpad.core.errors import SubmissionError
from launchpad.core.logger import get_logger, setup_logging, setup_logging_from_config
from launchpad.core.rpc_manager import RPCManager
from launchpad.core.storage import DraftPoolStore, FileBlobStore
from launchpad.core.tx_builder import TransactionBuilder
from launchpad.core.tx_signer import KeypairSigner, load_keypair
from launchpad.core.tx_submitter import TransactionSubmitter

logger = get_logger(__name__)


async def create_pool(
    config_path: str,
    wallet: str,
    name: str,
    symbol: str,
    target_amount: int,
    uri: str = None,
    description: str = "",
    decimals: int = 6
) -> bool:
    """
    Create a pool and print the stored draft

    Args:
        config_path: Path to config.yml
        wallet: Keypair JSON file or base58 secret key
        name: Token name
        symbol: Token symbol
        target_amount: Token target amount for the config
        uri: Off-chain metadata document URI
        description: Description kept in the local draft
        decimals: Meme mint decimals
    """
    config = ConfigurationManager(config_path).load_config()
    setup_logging_from_config(config.log_config)
    tx_config = config.transaction_config

    signer = KeypairSigner(load_keypair(wallet))
    logger.info("wallet_loaded", pubkey=signer.pubkey())

    store = FileBlobStore(config.storage_config.directory)

    async with RPCManager(config.rpc_config) as rpc_manager:
        client = LaunchpadClient(
            rpc_manager,
            config.program_config,
            submitter=TransactionSubmitter(rpc_manager, tx_config),
            builder=TransactionBuilder(
                compute_unit_limit=tx_config.compute_unit_limit,
                compute_unit_price=tx_config.compute_unit_price
            ),
            drafts=DraftPoolStore(store),
            blob_store=store
        )

        try:
            draft = await client.create_pool(
                signer,
                target_amount=target_amount,
                name=name,
                symbol=symbol,
                uri=uri,
                description=description,
                decimals=decimals
            )
        except SubmissionError as e:
            logger.error("create_pool_failed", error=str(e), signature=e.signature)
            for line in e.logs:
                print(f"  {line}")
            return False

    print(f"Pool created: {draft.pool_address}")
    print(f"Mint:         {draft.mint}")
    print(f"Signature:    {draft.signature}")
    print(f"Draft id:     {draft.id}")
    return True


async def main():
    import argparse

    parser = argparse.ArgumentParser(
        description="Create a launchpad pool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example:
  python scripts/create_pool.py --wallet data/creator-wallet.json --name "Dog Coin" --symbol DOG --target-amount 1000000000
        """
    )

    parser.add_argument("--config", default="config/config.yml", help="Path to config.yml")
    parser.add_argument("--wallet", required=True, help="Keypair JSON file or base58 secret key")
    parser.add_argument("--name", required=True, help="Token name (max 32 bytes)")
    parser.add_argument("--symbol", required=True, help="Token symbol (max 10 bytes)")
    parser.add_argument("--target-amount", type=int, required=True, help="Token target amount")
    parser.add_argument("--uri", default=None, help="Metadata document URI")
    parser.add_argument("--description", default="", help="Description for the local draft")
    parser.add_argument("--decimals", type=int, default=6, help="Mint decimals (default: 6)")

    args = parser.parse_args()

    setup_logging(level="INFO", format="console")

    ok = await create_pool(
        config_path=args.config,
        wallet=args.wallet,
        name=args.name,
        symbol=args.symbol,
        target_amount=args.target_amount,
        uri=args.uri,
        description=args.description,
        decimals=args.decimals
    )
    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error("error", error=str(e), exc_info=True)
        sys.exit(1)
