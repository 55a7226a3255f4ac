"""
Program-derived address helpers for the launchpad program
Pool signers, target configs, metadata records and associated token vaults
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Sequence, Tuple

from solders.pubkey import Pubkey
from spl.token.constants import WRAPPED_SOL_MINT
from spl.token.instructions import get_associated_token_address

from launchpad.core.config import ProgramConfig
from launchpad.core.errors import DerivationError
from launchpad.core.logger import get_logger


logger = get_logger(__name__)


# Seeds for PDA derivation
POOL_SIGNER_SEED = b"signer"
BOUND_POOL_SEED = b"bound_pool"
TARGET_CONFIG_SEED = b"config"
METADATA_SEED = b"metadata"

MAX_SEEDS = 16
MAX_SEED_LENGTH = 32


def _check_seeds(seeds: Sequence[bytes]) -> None:
    # One slot is reserved for the bump
    if len(seeds) > MAX_SEEDS - 1:
        raise DerivationError(f"Too many seeds: {len(seeds)} (max {MAX_SEEDS - 1})")
    for index, seed in enumerate(seeds):
        if len(seed) > MAX_SEED_LENGTH:
            raise DerivationError(
                f"Seed {index} is {len(seed)} bytes (max {MAX_SEED_LENGTH})"
            )


@lru_cache(maxsize=4096)
def _find(seeds: Tuple[bytes, ...], program_id: Pubkey) -> Tuple[Pubkey, int]:
    try:
        return Pubkey.find_program_address(list(seeds), program_id)
    except (TypeError, ValueError) as e:
        raise DerivationError(
            f"Cannot derive address from {len(seeds)} seeds under program {program_id}: {e}"
        ) from e


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """
    Derive an off-curve address and its bump from seeds

    Seed limits are checked before solders searches bumps from 255 down.
    Results are memoized.

    Args:
        seeds: Ordered seed byte strings (each at most 32 bytes)
        program_id: Owning program

    Returns:
        (address, bump)

    Raises:
        DerivationError: If the seeds are invalid or derivation fails
    """
    seeds = tuple(bytes(seed) for seed in seeds)
    _check_seeds(seeds)
    return _find(seeds, program_id)


def derive_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """
    Derive the associated token account for (owner, mint) under the SPL token program

    The owner may itself be a PDA (off-curve), which is how pool vaults are owned.
    """
    return get_associated_token_address(owner, mint)


@dataclass(frozen=True)
class PoolAddresses:
    """Every address that hangs off a pool"""
    pool: Pubkey
    pool_signer: Pubkey
    meme_vault: Pubkey
    quote_vault: Pubkey
    target_config: Pubkey
    fee_quote_vault: Pubkey

    def to_dict(self) -> dict:
        return {
            "pool": str(self.pool),
            "pool_signer": str(self.pool_signer),
            "meme_vault": str(self.meme_vault),
            "quote_vault": str(self.quote_vault),
            "target_config": str(self.target_config),
            "fee_quote_vault": str(self.fee_quote_vault),
        }


class AddressDeriver:
    """
    Derives the launchpad program's dependent addresses

    Usage:
        deriver = AddressDeriver(program_config)
        signer = deriver.pool_signer(pool_address)
        vault = deriver.vault(mint, signer)
    """

    def __init__(self, program_config: Optional[ProgramConfig] = None):
        config = program_config or ProgramConfig()
        self.program_id = Pubkey.from_string(config.program_id)
        self.metadata_program_id = Pubkey.from_string(config.metadata_program_id)
        self.quote_mint = Pubkey.from_string(config.quote_mint)
        self.fee_authority = Pubkey.from_string(config.fee_authority)

    def pool_signer(self, pool: Pubkey) -> Pubkey:
        """Signer authority PDA for a pool: ["signer", pool]"""
        address, _ = find_program_address([POOL_SIGNER_SEED, bytes(pool)], self.program_id)
        return address

    def pool(self, meme_mint: Pubkey, quote_mint: Optional[Pubkey] = None) -> Pubkey:
        """Pool PDA: ["bound_pool", meme_mint, quote_mint]"""
        quote_mint = quote_mint or self.quote_mint
        address, _ = find_program_address(
            [BOUND_POOL_SEED, bytes(meme_mint), bytes(quote_mint)],
            self.program_id
        )
        return address

    def target_config(self, meme_mint: Pubkey, quote_mint: Optional[Pubkey] = None) -> Pubkey:
        """Target config PDA: ["config", quote_mint, meme_mint]"""
        quote_mint = quote_mint or self.quote_mint
        address, _ = find_program_address(
            [TARGET_CONFIG_SEED, bytes(quote_mint), bytes(meme_mint)],
            self.program_id
        )
        return address

    def metadata(self, mint: Pubkey) -> Pubkey:
        """Token metadata PDA: ["metadata", metadata_program, mint]"""
        address, _ = find_program_address(
            [METADATA_SEED, bytes(self.metadata_program_id), bytes(mint)],
            self.metadata_program_id
        )
        return address

    def vault(self, mint: Pubkey, owner: Pubkey) -> Pubkey:
        return derive_associated_token_address(owner, mint)

    def fee_quote_vault(self) -> Pubkey:
        """Quote-mint token account of the fee-collection authority"""
        return derive_associated_token_address(self.fee_authority, WRAPPED_SOL_MINT)

    def pool_addresses(self, pool: Pubkey, meme_mint: Pubkey, quote_mint: Pubkey) -> PoolAddresses:
        """
        Derive signer, vaults and config for an existing pool

        Raises:
            DerivationError: If any derivation has no valid result
        """
        signer = self.pool_signer(pool)
        addresses = PoolAddresses(
            pool=pool,
            pool_signer=signer,
            meme_vault=self.vault(meme_mint, signer),
            quote_vault=self.vault(quote_mint, signer),
            target_config=self.target_config(meme_mint, quote_mint),
            fee_quote_vault=self.fee_quote_vault()
        )

        logger.debug(
            "pool_addresses_derived",
            pool=str(pool),
            pool_signer=str(signer),
            meme_vault=str(addresses.meme_vault),
            quote_vault=str(addresses.quote_vault)
        )

        return addresses
