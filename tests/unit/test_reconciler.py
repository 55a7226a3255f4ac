"""
Unit tests for pool reconciliation (launchpad/services/reconciler.py)

Tests:
- Draft / ledger matching by pool address and by mint
- Field precedence and placeholders
- Ordering and idempotence
"""

import pytest

from solders.pubkey import Pubkey
from spl.token.constants import WRAPPED_SOL_MINT

from launchpad.core.errors import MalformedDataError
from launchpad.core.models import (
    DraftPoolRecord,
    PoolRecord,
    Provenance,
    ReserveDescriptor,
    TokenMetadataRecord,
)
from launchpad.services.reconciler import UNKNOWN_NAME, UNKNOWN_SYMBOL, reconcile


def pk(fill: int) -> Pubkey:
    return Pubkey(bytes([fill]) * 32)


def make_pool(address=1, mint=3, created_at=1_700_000_000.0, meme_balance=900, quote_balance=1_500):
    signer = pk(address + 100)
    return PoolRecord(
        address=pk(address),
        pool_signer=signer,
        meme_reserve=ReserveDescriptor.for_signer(pk(mint), meme_balance, signer),
        quote_reserve=ReserveDescriptor.for_signer(WRAPPED_SOL_MINT, quote_balance, signer),
        fee_vault=pk(6),
        target_config=pk(9),
        creator=pk(7),
        is_active=True,
        migration_threshold=800,
        created_at=created_at,
        total_supply=1_000,
        decimals=6,
    )


def make_draft(id="pool_a", mint=3, pool_address=None, created_at=1_600_000_000.0,
               name="Draft Coin", symbol="DRAFT", **fields):
    return DraftPoolRecord(
        id=id,
        name=name,
        symbol=symbol,
        mint=str(pk(mint)),
        created_at=created_at,
        pool_address=str(pool_address) if pool_address is not None else None,
        **fields
    )


def metadata_for(mint=3, name="Chain Coin", symbol="CHAIN", image_uri="https://img.test/c.png"):
    return {str(pk(mint)): TokenMetadataRecord(
        mint=str(pk(mint)), name=name, symbol=symbol, uri="https://x.test/c.json", image_uri=image_uri
    )}


class TestMatching:

    def test_draft_matched_by_pool_address(self):
        views = reconcile([make_pool()], [make_draft(pool_address=pk(1))])

        assert len(views) == 1
        assert views[0].provenance == Provenance.MERGED
        assert views[0].name == "Draft Coin"
        assert views[0].draft_id == "pool_a"

    def test_local_draft_becomes_merged_when_pool_appears(self):
        draft = make_draft(pool_address=pk(1), description="Local words")

        before = reconcile([], [draft])
        after = reconcile([make_pool(meme_balance=321, quote_balance=654)], [draft])

        assert [v.provenance for v in before] == [Provenance.LOCAL_ONLY]
        assert before[0].pool_address == str(pk(1))
        assert len(after) == 1
        assert after[0].provenance == Provenance.MERGED
        assert after[0].name == "Draft Coin"
        assert after[0].description == "Local words"
        assert after[0].meme_balance == 321
        assert after[0].quote_balance == 654

    def test_draft_matched_by_mint_without_address(self):
        views = reconcile([make_pool()], [make_draft()])

        assert len(views) == 1
        assert views[0].provenance == Provenance.MERGED

    def test_mint_match_ignored_when_draft_names_other_pool(self):
        views = reconcile([make_pool(address=1)], [make_draft(pool_address=pk(2))])

        assert {v.provenance for v in views} == {Provenance.ONCHAIN_ONLY, Provenance.LOCAL_ONLY}

    def test_unmatched_draft_is_local_only(self):
        draft = make_draft(mint=40, target_amount=5_000, image_uri="https://img.test/d.png")

        views = reconcile([], [draft])

        assert len(views) == 1
        view = views[0]
        assert view.provenance == Provenance.LOCAL_ONLY
        assert view.total_supply == 5_000
        assert view.quote_mint == str(WRAPPED_SOL_MINT)
        assert view.image_uri == "https://img.test/d.png"
        assert view.meme_balance is None

    def test_draft_used_at_most_once(self):
        pools = [make_pool(address=1, mint=3), make_pool(address=2, mint=3, created_at=1)]
        views = reconcile(pools, [make_draft()])

        assert len(views) == 2
        assert [v.provenance for v in views].count(Provenance.MERGED) == 1

    def test_duplicate_draft_entries_collapse(self):
        draft = make_draft(mint=40)

        views = reconcile([], [draft, draft])

        assert len(views) == 1

    def test_each_pool_appears_once(self):
        pools = [make_pool(address=i, mint=i + 20) for i in range(1, 6)]
        drafts = [make_draft(id=f"pool_{i}", mint=i + 20) for i in range(1, 4)]

        views = reconcile(pools, drafts)

        addresses = [v.pool_address for v in views]
        assert len(addresses) == len(set(addresses)) == 5


class TestPrecedence:

    def test_draft_fields_win_over_metadata(self):
        draft = make_draft(description="Local words", image_uri="https://img.test/d.png")

        view = reconcile([make_pool()], [draft], metadata_for())[0]

        assert view.name == "Draft Coin"
        assert view.symbol == "DRAFT"
        assert view.description == "Local words"
        assert view.image_uri == "https://img.test/c.png"

    def test_metadata_fills_onchain_only(self):
        view = reconcile([make_pool()], [], metadata_for())[0]

        assert view.provenance == Provenance.ONCHAIN_ONLY
        assert view.name == "Chain Coin"
        assert view.symbol == "CHAIN"

    def test_placeholders_without_draft_or_metadata(self):
        view = reconcile([make_pool()], [], {str(pk(3)): None})[0]

        assert view.name == UNKNOWN_NAME
        assert view.symbol == UNKNOWN_SYMBOL
        assert view.description == f"Pool for {str(pk(3))[:8]}..."
        assert view.image_uri is None

    def test_numbers_come_from_ledger(self):
        draft = make_draft(target_amount=1)
        pool = make_pool(meme_balance=123, quote_balance=456)

        view = reconcile([pool], [draft])[0]

        assert view.meme_balance == 123
        assert view.quote_balance == 456
        assert view.total_supply == 1_000
        assert view.migration_threshold == 800
        assert view.created_at == pool.created_at
        assert view.meme_vault == str(pool.meme_reserve.vault)


class TestOrdering:

    def test_newest_first(self):
        pools = [
            make_pool(address=1, mint=21, created_at=100),
            make_pool(address=2, mint=22, created_at=300),
        ]
        drafts = [make_draft(mint=40, created_at=200)]

        views = reconcile(pools, drafts)

        assert [v.created_at for v in views] == [300, 200, 100]

    def test_ties_broken_by_mint(self):
        pools = [make_pool(address=1, mint=22, created_at=5), make_pool(address=2, mint=21, created_at=5)]

        views = reconcile(pools, [])

        assert [v.mint for v in views] == sorted(v.mint for v in views)

    def test_idempotent(self):
        pools = [make_pool(address=i, mint=i + 20, created_at=i * 10) for i in range(1, 5)]
        drafts = [make_draft(id="pool_x", mint=22), make_draft(id="pool_y", mint=50)]
        metadata = metadata_for(mint=21)

        first = reconcile(pools, drafts, metadata)
        second = reconcile(list(reversed(pools)), drafts, metadata)

        assert [v.to_dict() for v in first] == [v.to_dict() for v in second]

    def test_empty_inputs(self):
        assert reconcile([], []) == []


class TestPoolRecordGuard:

    def test_identical_mints_rejected(self):
        with pytest.raises(MalformedDataError):
            PoolRecord(
                address=pk(1),
                pool_signer=pk(2),
                meme_reserve=ReserveDescriptor.for_signer(WRAPPED_SOL_MINT, 1, pk(2)),
                quote_reserve=ReserveDescriptor.for_signer(WRAPPED_SOL_MINT, 1, pk(2)),
                fee_vault=pk(6),
                target_config=pk(9),
                creator=pk(7),
                is_active=True,
                migration_threshold=0,
                created_at=0,
            )
