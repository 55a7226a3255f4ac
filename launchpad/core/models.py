"""
Domain records shared by the client, resolver, reconciler and orchestrator
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional

from solders.pubkey import Pubkey

from launchpad.core.addresses import derive_associated_token_address
from launchpad.core.errors import MalformedDataError


class Provenance(Enum):
    """Where a unified pool view came from"""
    ONCHAIN_ONLY = "onchain"
    LOCAL_ONLY = "local"
    MERGED = "combined"


@dataclass(frozen=True)
class ReserveDescriptor:
    """
    One side of a pool: mint, balance at snapshot time, vault

    Build through for_signer() so the vault is always the associated token
    account of the pool signer.
    """
    mint: Pubkey
    balance: int
    vault: Pubkey

    @classmethod
    def for_signer(cls, mint: Pubkey, balance: int, pool_signer: Pubkey) -> "ReserveDescriptor":
        return cls(
            mint=mint,
            balance=balance,
            vault=derive_associated_token_address(pool_signer, mint)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": str(self.mint),
            "balance": self.balance,
            "vault": str(self.vault),
        }


@dataclass(frozen=True)
class PoolRecord:
    """Authoritative pool state decoded from the ledger"""
    address: Pubkey
    pool_signer: Pubkey
    meme_reserve: ReserveDescriptor
    quote_reserve: ReserveDescriptor
    fee_vault: Pubkey
    target_config: Pubkey
    creator: Pubkey
    is_active: bool
    migration_threshold: int
    created_at: float
    total_supply: Optional[int] = None
    decimals: Optional[int] = None
    locked: bool = False
    migrated: bool = False

    def __post_init__(self):
        if self.meme_reserve.mint == self.quote_reserve.mint:
            raise MalformedDataError(
                f"Pool {self.address} has identical reserve mints",
                address=str(self.address)
            )

    @property
    def mint(self) -> Pubkey:
        return self.meme_reserve.mint

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary"""
        return {
            "address": str(self.address),
            "pool_signer": str(self.pool_signer),
            "meme_reserve": self.meme_reserve.to_dict(),
            "quote_reserve": self.quote_reserve.to_dict(),
            "fee_vault": str(self.fee_vault),
            "target_config": str(self.target_config),
            "creator": str(self.creator),
            "is_active": self.is_active,
            "migration_threshold": self.migration_threshold,
            "created_at": self.created_at,
            "total_supply": self.total_supply,
            "decimals": self.decimals,
            "locked": self.locked,
            "migrated": self.migrated,
        }


@dataclass(frozen=True)
class TokenMetadataRecord:
    """Display metadata for a mint"""
    mint: str
    name: str
    symbol: str
    uri: str = ""
    image_uri: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DraftPoolRecord:
    """
    Locally created pool record written right after a create-pool submission

    Matched against PoolRecords by pool address, then by mint.
    """
    id: str
    name: str
    symbol: str
    mint: str
    created_at: float
    description: str = ""
    pool_address: Optional[str] = None
    quote_mint: Optional[str] = None
    target_config: Optional[str] = None
    created_by: Optional[str] = None
    target_amount: Optional[int] = None
    image_uri: Optional[str] = None
    metadata_uri: Optional[str] = None
    signature: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DraftPoolRecord":
        """
        Build a draft from stored JSON

        Unknown keys are ignored so older stored records still load.

        Raises:
            KeyError: If an identity field is missing
        """
        known = cls.__dataclass_fields__.keys()
        values = {k: v for k, v in data.items() if k in known}
        for required in ("id", "mint"):
            if not values.get(required):
                raise KeyError(required)
        values.setdefault("name", "")
        values.setdefault("symbol", "")
        values.setdefault("created_at", 0.0)
        return cls(**values)


@dataclass(frozen=True)
class UnifiedPoolView:
    """Pool as shown to the presentation layer, tagged with provenance"""
    mint: str
    pool_address: Optional[str]
    quote_mint: str
    name: str
    symbol: str
    description: str
    provenance: Provenance
    created_at: float
    image_uri: Optional[str] = None
    meme_balance: Optional[int] = None
    quote_balance: Optional[int] = None
    total_supply: Optional[int] = None
    migration_threshold: Optional[int] = None
    is_active: bool = True
    creator: Optional[str] = None
    pool_signer: Optional[str] = None
    meme_vault: Optional[str] = None
    quote_vault: Optional[str] = None
    draft_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["provenance"] = self.provenance.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnifiedPoolView":
        values = dict(data)
        values["provenance"] = Provenance(values["provenance"])
        return cls(**values)


@dataclass
class ActivityRecord:
    """One classified program transaction"""
    signature: str
    kind: str
    user: Optional[str]
    amount_sol: float
    block_time: Optional[int]
    slot: Optional[int] = None
    pool: Optional[str] = None
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityRecord":
        return cls(**data)


@dataclass
class AggregateMetrics:
    """Launchpad-wide numbers derived from one refresh cycle"""
    total_pools: int = 0
    active_pools: int = 0
    migrated_pools: int = 0
    migration_rate: float = 0.0
    total_volume_sol: float = 0.0
    active_traders: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregateMetrics":
        return cls(**data)
