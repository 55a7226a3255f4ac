"""
State reconciliation between ledger pools and local draft records

Numeric fields (balances, supply, threshold) always come from the ledger.
Descriptive fields come from the matching draft first, then on-chain
metadata, then placeholders.
"""

from typing import Dict, List, Mapping, Optional, Sequence, Set

from spl.token.constants import WRAPPED_SOL_MINT

from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics
from launchpad.core.models import (
    DraftPoolRecord,
    PoolRecord,
    Provenance,
    TokenMetadataRecord,
    UnifiedPoolView,
)


logger = get_logger(__name__)
metrics = get_metrics()


UNKNOWN_NAME = "Unknown Token"
UNKNOWN_SYMBOL = "UNKNOWN"


def default_description(mint: str) -> str:
    return f"Pool for {mint[:8]}..."


def _sort_key(view: UnifiedPoolView):
    # Newest first; mint and pool address make ties deterministic
    return (-view.created_at, view.mint, view.pool_address or "")


def _find_draft(
    pool: PoolRecord,
    by_address: Dict[str, DraftPoolRecord],
    by_mint: Dict[str, DraftPoolRecord],
    used: Set[str]
) -> Optional[DraftPoolRecord]:
    address = str(pool.address)
    draft = by_address.get(address)
    if draft is not None and draft.id not in used:
        return draft

    # Mint matching only applies when the draft has no pool address of its own
    draft = by_mint.get(str(pool.mint))
    if draft is not None and draft.id not in used and draft.pool_address in (None, "", address):
        return draft
    return None


def _merge(
    pool: PoolRecord,
    draft: Optional[DraftPoolRecord],
    metadata: Optional[TokenMetadataRecord]
) -> UnifiedPoolView:
    mint = str(pool.mint)
    name = (draft and draft.name) or (metadata and metadata.name) or UNKNOWN_NAME
    symbol = (draft and draft.symbol) or (metadata and metadata.symbol) or UNKNOWN_SYMBOL
    description = (draft and draft.description) or default_description(mint)
    image_uri = (metadata and metadata.image_uri) or (draft and draft.image_uri) or None

    return UnifiedPoolView(
        mint=mint,
        pool_address=str(pool.address),
        quote_mint=str(pool.quote_reserve.mint),
        name=name,
        symbol=symbol,
        description=description,
        provenance=Provenance.MERGED if draft is not None else Provenance.ONCHAIN_ONLY,
        created_at=pool.created_at,
        image_uri=image_uri,
        meme_balance=pool.meme_reserve.balance,
        quote_balance=pool.quote_reserve.balance,
        total_supply=pool.total_supply,
        migration_threshold=pool.migration_threshold,
        is_active=pool.is_active,
        creator=str(pool.creator),
        pool_signer=str(pool.pool_signer),
        meme_vault=str(pool.meme_reserve.vault),
        quote_vault=str(pool.quote_reserve.vault),
        draft_id=draft.id if draft is not None else None,
    )


def _local_only(draft: DraftPoolRecord, metadata: Optional[TokenMetadataRecord]) -> UnifiedPoolView:
    return UnifiedPoolView(
        mint=draft.mint,
        pool_address=draft.pool_address,
        quote_mint=draft.quote_mint or str(WRAPPED_SOL_MINT),
        name=draft.name or (metadata and metadata.name) or UNKNOWN_NAME,
        symbol=draft.symbol or (metadata and metadata.symbol) or UNKNOWN_SYMBOL,
        description=draft.description or default_description(draft.mint),
        provenance=Provenance.LOCAL_ONLY,
        created_at=draft.created_at,
        image_uri=draft.image_uri or (metadata and metadata.image_uri) or None,
        total_supply=draft.target_amount,
        creator=draft.created_by,
        draft_id=draft.id,
    )


def reconcile(
    pools: Sequence[PoolRecord],
    drafts: Sequence[DraftPoolRecord],
    metadata: Optional[Mapping[str, Optional[TokenMetadataRecord]]] = None
) -> List[UnifiedPoolView]:
    """
    Merge ledger pools with local drafts into one view list

    Every pool appears exactly once, enriched by the draft that shares its
    pool address (or, failing that, its mint). Each draft is used at most
    once; unmatched drafts appear as local-only views. The function is pure:
    identical inputs give an identical list.

    Args:
        pools: Decoded ledger pools
        drafts: Locally stored drafts
        metadata: Resolved metadata by mint (base58), None entries mean absent

    Returns:
        UnifiedPoolViews, newest creation time first
    """
    metadata = metadata or {}

    by_address: Dict[str, DraftPoolRecord] = {}
    by_mint: Dict[str, DraftPoolRecord] = {}
    for draft in drafts:
        if draft.pool_address:
            by_address.setdefault(draft.pool_address, draft)
        by_mint.setdefault(draft.mint, draft)

    used: Set[str] = set()
    views: List[UnifiedPoolView] = []

    for pool in pools:
        draft = _find_draft(pool, by_address, by_mint, used)
        if draft is not None:
            used.add(draft.id)
        views.append(_merge(pool, draft, metadata.get(str(pool.mint))))

    seen_ids: Set[str] = set()
    for draft in drafts:
        if draft.id in used or draft.id in seen_ids:
            continue
        seen_ids.add(draft.id)
        views.append(_local_only(draft, metadata.get(draft.mint)))

    views.sort(key=_sort_key)

    merged = sum(1 for v in views if v.provenance == Provenance.MERGED)
    local = sum(1 for v in views if v.provenance == Provenance.LOCAL_ONLY)
    metrics.set_gauge("unified_pools", len(views))
    logger.debug(
        "pools_reconciled",
        total=len(views),
        merged=merged,
        local_only=local,
        onchain_only=len(views) - merged - local
    )

    return views
