"""
Launchpad Program Client
Discovers bonding-curve pools, builds program instructions and submits them
"""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import base58
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import (
    ID as SYSTEM_PROGRAM_ID,
    CreateAccountParams,
    TransferParams,
    create_account,
    transfer,
)
from solders.sysvar import RENT
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID, WRAPPED_SOL_MINT
from spl.token.instructions import (
    InitializeMintParams,
    SyncNativeParams,
    create_associated_token_account,
    initialize_mint,
    sync_native,
)

from launchpad.core.addresses import AddressDeriver, PoolAddresses
from launchpad.core.config import ProgramConfig
from launchpad.core.errors import (
    DerivationError,
    InvalidArgumentError,
    MalformedDataError,
    RPCError,
    TransientNetworkError,
)
from launchpad.core.instructions import (
    CREATE_METADATA,
    GET_SWAP_X_AMT,
    GET_SWAP_Y_AMT,
    INIT_TARGET_CONFIG,
    MIGRATE_TO_RAYDIUM,
    NEW_POOL,
    SWAP_X,
    SWAP_Y,
    decode_instruction_data,
    encode_instruction_data,
    validate_token_strings,
)
from launchpad.core.layouts import (
    BOUND_POOL_LAYOUT,
    MINT_LAYOUT,
    AccountKind,
    BoundPoolState,
    decode_account,
    decode_mint,
)
from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics, LatencyTimer
from launchpad.core.models import ActivityRecord, DraftPoolRecord, PoolRecord, ReserveDescriptor
from launchpad.core.rpc_manager import AccountInfo, RPCManager
from launchpad.core.storage import BlobStore, DraftPoolStore, MemoryBlobStore
from launchpad.core.tx_builder import TransactionBuilder
from launchpad.core.tx_signer import TransactionSigner
from launchpad.core.tx_submitter import ConfirmedTransaction, SimulationResult, TransactionSubmitter


logger = get_logger(__name__)
metrics = get_metrics()


CREATED_AT_KEY_PREFIX = "pool_created_at:"

# Share of the meme supply that triggers migration when the curve has no gamma_m
DEFAULT_MIGRATION_SHARE = 0.8

LAMPORTS_PER_SOL = 1_000_000_000

ACTIVITY_KINDS = {
    NEW_POOL.name: "pool_created",
    SWAP_Y.name: "swap_buy",
    SWAP_X.name: "swap_sell",
    MIGRATE_TO_RAYDIUM.name: "migration",
    INIT_TARGET_CONFIG.name: "config_created",
    CREATE_METADATA.name: "metadata_created",
}

# Anchor logs "Instruction: <CamelName>"; matched lowercased
ACTIVITY_LOG_KEYWORDS = (
    ("newpool", "pool_created"),
    ("new_pool", "pool_created"),
    ("swapy", "swap_buy"),
    ("swap_y", "swap_buy"),
    ("swapx", "swap_sell"),
    ("swap_x", "swap_sell"),
    ("migrat", "migration"),
    ("inittargetconfig", "config_created"),
    ("init_target_config", "config_created"),
)


def _meta(pubkey: Pubkey, is_signer: bool = False, is_writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=is_signer, is_writable=is_writable)


class LaunchpadClient:
    """
    Launchpad program client

    Features:
    - Pool discovery (getProgramAccounts filtered to the pool size)
    - Instruction encoding for pool creation, swaps, previews and migration
    - Submission through the external signing capability
    - Recent program activity classified by instruction

    Usage:
        client = LaunchpadClient(rpc_manager, config.program_config, submitter=submitter)
        pools = await client.scan_pools()
        await client.buy(signer, pools[0], amount=10_000_000)
    """

    def __init__(
        self,
        rpc_manager: RPCManager,
        program_config: Optional[ProgramConfig] = None,
        submitter: Optional[TransactionSubmitter] = None,
        builder: Optional[TransactionBuilder] = None,
        drafts: Optional[DraftPoolStore] = None,
        blob_store: Optional[BlobStore] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize launchpad client

        Args:
            rpc_manager: RPC manager for ledger reads and writes
            program_config: Program addresses (optional)
            submitter: Transaction submitter, required for write operations
            builder: Transaction builder (optional)
            drafts: Draft pool store written after a successful create_pool
            blob_store: Store for cached pool creation times
            clock: Wall clock in seconds
        """
        self.rpc_manager = rpc_manager
        self.program_config = program_config or ProgramConfig()
        self.deriver = AddressDeriver(self.program_config)
        self.program_id = self.deriver.program_id
        self.submitter = submitter
        self.builder = builder or TransactionBuilder()
        self.blob_store = blob_store if blob_store is not None else MemoryBlobStore()
        self.drafts = drafts if drafts is not None else DraftPoolStore(self.blob_store)
        self._clock = clock

        logger.info(
            "launchpad_client_initialized",
            program_id=str(self.program_id),
            quote_mint=str(self.deriver.quote_mint)
        )

    # ----- instruction builders -----

    def build_init_target_config_instruction(
        self,
        creator: Pubkey,
        meme_mint: Pubkey,
        target_amount: int,
        quote_mint: Optional[Pubkey] = None
    ) -> Instruction:
        quote_mint = quote_mint or self.deriver.quote_mint
        accounts = [
            _meta(creator, is_signer=True, is_writable=True),
            _meta(self.deriver.target_config(meme_mint, quote_mint), is_writable=True),
            _meta(quote_mint),
            _meta(meme_mint),
            _meta(SYSTEM_PROGRAM_ID),
        ]
        data = encode_instruction_data(INIT_TARGET_CONFIG.name, token_target_amount=target_amount)
        return Instruction(program_id=self.program_id, accounts=accounts, data=data)

    def build_new_pool_instruction(
        self,
        sender: Pubkey,
        meme_mint: Pubkey,
        quote_mint: Optional[Pubkey] = None
    ) -> Instruction:
        """
        Build new_pool; account order follows the program's NewPool struct
        """
        quote_mint = quote_mint or self.deriver.quote_mint
        pool = self.deriver.pool(meme_mint, quote_mint)
        addresses = self.deriver.pool_addresses(pool, meme_mint, quote_mint)

        accounts = [
            _meta(sender, is_signer=True, is_writable=True),
            _meta(pool, is_writable=True),
            _meta(meme_mint, is_writable=True),
            _meta(addresses.quote_vault),
            _meta(quote_mint),
            _meta(addresses.fee_quote_vault),
            _meta(addresses.meme_vault, is_writable=True),
            _meta(addresses.target_config),
            _meta(addresses.pool_signer),
            _meta(SYSTEM_PROGRAM_ID),
            _meta(TOKEN_PROGRAM_ID),
        ]
        data = encode_instruction_data(NEW_POOL.name)
        return Instruction(program_id=self.program_id, accounts=accounts, data=data)

    def build_create_metadata_instruction(
        self,
        authority: Pubkey,
        mint: Pubkey,
        name: str,
        symbol: str,
        uri: str
    ) -> Instruction:
        accounts = [
            _meta(authority, is_signer=True, is_writable=True),
            _meta(self.deriver.metadata(mint), is_writable=True),
            _meta(mint),
            _meta(self.deriver.metadata_program_id),
            _meta(SYSTEM_PROGRAM_ID),
            _meta(TOKEN_PROGRAM_ID),
            _meta(RENT),
        ]
        data = encode_instruction_data(CREATE_METADATA.name, name=name, symbol=symbol, uri=uri)
        return Instruction(program_id=self.program_id, accounts=accounts, data=data)

    def build_buy_instruction(
        self,
        owner: Pubkey,
        addresses: PoolAddresses,
        meme_mint: Pubkey,
        quote_mint: Pubkey,
        amount: int,
        min_out: int = 0
    ) -> Instruction:
        """
        Build swap_y (quote in, meme out)

        Args:
            owner: Trader (signer)
            addresses: Derived pool addresses
            meme_mint: Pool's meme mint
            quote_mint: Pool's quote mint
            amount: Quote amount in base units (must be > 0)
            min_out: Minimum meme tokens out (slippage protection)

        Raises:
            InvalidArgumentError: If the amount is not positive or out of range
        """
        data = encode_instruction_data(SWAP_Y.name, coin_in_amount=amount, coin_x_min_value=min_out)
        accounts = [
            _meta(addresses.pool, is_writable=True),
            _meta(addresses.meme_vault, is_writable=True),
            _meta(addresses.quote_vault, is_writable=True),
            _meta(self.deriver.vault(quote_mint, owner), is_writable=True),
            _meta(self.deriver.vault(meme_mint, owner), is_writable=True),
            _meta(owner, is_signer=True, is_writable=True),
            _meta(addresses.pool_signer),
            _meta(TOKEN_PROGRAM_ID),
        ]

        metrics.increment_counter("buy_instructions_built")
        return Instruction(program_id=self.program_id, accounts=accounts, data=data)

    def build_sell_instruction(
        self,
        owner: Pubkey,
        addresses: PoolAddresses,
        meme_mint: Pubkey,
        quote_mint: Pubkey,
        amount: int,
        min_out: int = 0
    ) -> Instruction:
        """
        Build swap_x (meme in, quote out)

        Raises:
            InvalidArgumentError: If the amount is not positive or out of range
        """
        data = encode_instruction_data(SWAP_X.name, coin_in_amount=amount, coin_y_min_value=min_out)
        accounts = [
            _meta(addresses.pool, is_writable=True),
            _meta(addresses.meme_vault, is_writable=True),
            _meta(addresses.quote_vault, is_writable=True),
            _meta(self.deriver.vault(meme_mint, owner), is_writable=True),
            _meta(self.deriver.vault(quote_mint, owner), is_writable=True),
            _meta(owner, is_signer=True, is_writable=True),
            _meta(addresses.pool_signer),
            _meta(TOKEN_PROGRAM_ID),
        ]

        metrics.increment_counter("sell_instructions_built")
        return Instruction(program_id=self.program_id, accounts=accounts, data=data)

    def build_preview_instruction(
        self,
        addresses: PoolAddresses,
        side: str,
        amount: int,
        min_out: int = 0
    ) -> Instruction:
        """Build get_swap_y_amt ("buy") or get_swap_x_amt ("sell")"""
        if side == "buy":
            data = encode_instruction_data(
                GET_SWAP_Y_AMT.name, coin_in_amount=amount, coin_x_min_value=min_out
            )
        elif side == "sell":
            data = encode_instruction_data(
                GET_SWAP_X_AMT.name, coin_in_amount=amount, coin_y_min_value=min_out
            )
        else:
            raise InvalidArgumentError(f"Unknown swap side: {side}")

        accounts = [
            _meta(addresses.pool),
            _meta(addresses.meme_vault),
            _meta(addresses.quote_vault),
        ]
        return Instruction(program_id=self.program_id, accounts=accounts, data=data)

    def build_migrate_instruction(self, owner: Pubkey, pool: Pubkey) -> Instruction:
        accounts = [
            _meta(owner, is_signer=True, is_writable=True),
            _meta(pool, is_writable=True),
            _meta(SYSTEM_PROGRAM_ID),
        ]
        data = encode_instruction_data(MIGRATE_TO_RAYDIUM.name)
        return Instruction(program_id=self.program_id, accounts=accounts, data=data)

    # ----- reads -----

    async def fetch_pool_accounts(self) -> List[Tuple[Pubkey, AccountInfo]]:
        """Enumerate program accounts of the pool size (raw, undecoded)"""
        entries = await self.rpc_manager.get_program_accounts(
            self.program_id,
            data_size=BOUND_POOL_LAYOUT.size
        )
        logger.info("program_accounts_fetched", count=len(entries))
        return entries

    async def decode_pools(self, entries: Sequence[Tuple[Pubkey, AccountInfo]]) -> List[PoolRecord]:
        """
        Classify, decode and enrich raw program accounts into PoolRecords

        Accounts that fail classification, decoding or derivation are logged
        and skipped; network failures during enrichment propagate.
        """
        decoded = []
        for address, info in entries:
            candidate = self._decode_pool_entry(address, info)
            if candidate is not None:
                decoded.append(candidate)

        records = await self._build_pool_records(decoded)

        metrics.set_gauge("pools_discovered", len(records))
        logger.info(
            "pools_decoded",
            accounts=len(entries),
            pools=len(records),
            skipped=len(entries) - len(records)
        )
        return records

    async def scan_pools(self) -> List[PoolRecord]:
        """
        Enumerate and decode every pool owned by the program

        Returns:
            PoolRecords in ledger enumeration order
        """
        with LatencyTimer(metrics, "scan_pools"):
            entries = await self.fetch_pool_accounts()
            return await self.decode_pools(entries)

    async def get_pool(self, address: Pubkey) -> Optional[PoolRecord]:
        """Fetch and decode one pool; None if missing or not a pool"""
        info = await self.rpc_manager.get_account_info(address)
        if info is None:
            logger.info("pool_not_found", pool=str(address))
            return None

        candidate = self._decode_pool_entry(address, info)
        if candidate is None:
            return None

        records = await self._build_pool_records([candidate])
        return records[0] if records else None

    def _decode_pool_entry(
        self,
        address: Pubkey,
        info: AccountInfo
    ) -> Optional[Tuple[Pubkey, BoundPoolState, PoolAddresses]]:
        kind, state = decode_account(info.data, info.owner, self.deriver.metadata_program_id)
        if kind != AccountKind.POOL or state is None:
            logger.debug("account_skipped", address=str(address), kind=kind.value, size=len(info.data))
            metrics.increment_counter("accounts_skipped", labels={"kind": kind.value})
            return None

        try:
            addresses = self.deriver.pool_addresses(address, state.meme_mint, state.quote_mint)
        except DerivationError as e:
            logger.warning("pool_derivation_failed", pool=str(address), error=str(e))
            metrics.increment_counter("pool_derivation_failed")
            return None

        for side, stored, derived in (
            ("meme", state.meme_vault, addresses.meme_vault),
            ("quote", state.quote_vault, addresses.quote_vault),
        ):
            if stored != derived:
                logger.warning(
                    "pool_vault_mismatch",
                    pool=str(address),
                    side=side,
                    stored=str(stored),
                    derived=str(derived)
                )
                metrics.increment_counter("pool_vault_mismatch")

        return address, state, addresses

    async def _build_pool_records(
        self,
        decoded: Sequence[Tuple[Pubkey, BoundPoolState, PoolAddresses]]
    ) -> List[PoolRecord]:
        if not decoded:
            return []

        lookups: List[Pubkey] = []
        for _, state, addresses in decoded:
            lookups.extend([addresses.meme_vault, addresses.quote_vault, state.meme_mint])
        fetched = await self.rpc_manager.get_multiple_accounts(lookups)

        scan_time = self._clock()
        records = []
        for index, (address, state, addresses) in enumerate(decoded):
            meme_vault_info, quote_vault_info, mint_info = fetched[index * 3:index * 3 + 3]
            try:
                created_at = await self._resolve_created_at(address, scan_time)
                records.append(self._to_record(
                    address, state, addresses,
                    meme_vault_info, quote_vault_info, mint_info,
                    created_at
                ))
            except MalformedDataError as e:
                logger.warning("pool_record_skipped", pool=str(address), error=str(e))
                metrics.increment_counter("pool_records_skipped")

        return records

    def _to_record(
        self,
        address: Pubkey,
        state: BoundPoolState,
        addresses: PoolAddresses,
        meme_vault_info: Optional[AccountInfo],
        quote_vault_info: Optional[AccountInfo],
        mint_info: Optional[AccountInfo],
        created_at: float
    ) -> PoolRecord:
        meme_balance = self._vault_balance(meme_vault_info, state.meme_tokens)
        quote_balance = self._vault_balance(quote_vault_info, state.quote_tokens)

        total_supply = None
        decimals = None
        if mint_info is not None and len(mint_info.data) == MINT_LAYOUT.size:
            mint_state = decode_mint(mint_info.data)
            total_supply = mint_state.supply
            decimals = mint_state.decimals

        if state.gamma_m:
            threshold = state.gamma_m
        elif total_supply:
            threshold = int(total_supply * DEFAULT_MIGRATION_SHARE)
        else:
            threshold = 0

        return PoolRecord(
            address=address,
            pool_signer=addresses.pool_signer,
            meme_reserve=ReserveDescriptor.for_signer(state.meme_mint, meme_balance, addresses.pool_signer),
            quote_reserve=ReserveDescriptor.for_signer(state.quote_mint, quote_balance, addresses.pool_signer),
            fee_vault=state.fee_vault_quote,
            target_config=addresses.target_config,
            creator=state.creator_addr,
            is_active=not state.locked and not state.pool_migration,
            migration_threshold=threshold,
            created_at=created_at,
            total_supply=total_supply,
            decimals=decimals,
            locked=state.locked,
            migrated=state.pool_migration,
        )

    @staticmethod
    def _vault_balance(info: Optional[AccountInfo], fallback: int) -> int:
        if info is None:
            return fallback
        kind, token_account = decode_account(info.data, info.owner)
        if kind != AccountKind.TOKEN_ACCOUNT or token_account is None:
            return fallback
        return token_account.amount

    async def _resolve_created_at(self, pool: Pubkey, scan_time: float) -> float:
        """
        Block time of the oldest known signature for the pool

        Cached in the blob store; falls back to the scan time (uncached) when
        no signature carries a block time.
        """
        key = f"{CREATED_AT_KEY_PREFIX}{pool}"
        cached = self.blob_store.get(key)
        if cached is not None:
            try:
                return float(cached.decode())
            except (UnicodeDecodeError, ValueError):
                self.blob_store.remove(key)

        try:
            signatures = await self.rpc_manager.get_signatures_for_address(pool, limit=1000)
        except RPCError as e:
            logger.warning("pool_creation_time_unavailable", pool=str(pool), error=str(e))
            return scan_time

        block_times = [s["blockTime"] for s in signatures if s.get("blockTime")]
        if not block_times:
            return scan_time

        created_at = float(block_times[-1])
        self.blob_store.set(key, str(created_at).encode())
        return created_at

    async def fetch_recent_activity(self, limit: int = 50, parse_limit: int = 10) -> List[ActivityRecord]:
        """
        Recent program transactions, newest first

        Args:
            limit: Signatures to list for the program id
            parse_limit: How many of them to fetch and classify

        Returns:
            ActivityRecords for the parsed transactions
        """
        signatures = await self.rpc_manager.get_signatures_for_address(self.program_id, limit=limit)

        activity = []
        for entry in signatures[:parse_limit]:
            try:
                tx = await self.rpc_manager.get_parsed_transaction(entry["signature"])
            except (RPCError, TransientNetworkError) as e:
                logger.warning("activity_transaction_skipped", signature=entry["signature"], error=str(e))
                metrics.increment_counter("activity_transactions_skipped")
                continue
            if not tx:
                continue
            activity.append(self._classify_transaction(entry, tx))

        metrics.increment_counter("activity_transactions_parsed", value=len(activity))
        logger.info("recent_activity_fetched", signatures=len(signatures), parsed=len(activity))
        return activity

    def _classify_transaction(self, entry: Dict[str, Any], tx: Dict[str, Any]) -> ActivityRecord:
        meta = tx.get("meta") or {}
        message = (tx.get("transaction") or {}).get("message") or {}
        account_keys = message.get("accountKeys") or []

        kind = None
        pool = None
        for ix in message.get("instructions") or []:
            if ix.get("programId") != str(self.program_id) or "data" not in ix:
                continue
            try:
                name, _ = decode_instruction_data(base58.b58decode(ix["data"]))
            except (MalformedDataError, ValueError):
                continue
            kind = ACTIVITY_KINDS.get(name)
            accounts = ix.get("accounts") or []
            if name in (SWAP_X.name, SWAP_Y.name) and accounts:
                pool = accounts[0]
            elif name == NEW_POOL.name and len(accounts) > 1:
                pool = accounts[1]
            break

        if kind is None:
            logs = " ".join(meta.get("logMessages") or []).lower()
            kind = next((k for keyword, k in ACTIVITY_LOG_KEYWORDS if keyword in logs), "unknown")

        user = None
        for key in account_keys:
            if isinstance(key, dict) and key.get("signer"):
                user = key.get("pubkey")
                break
        if user is None and account_keys:
            first = account_keys[0]
            user = first.get("pubkey") if isinstance(first, dict) else first

        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        amount_sol = abs(pre[0] - post[0]) / LAMPORTS_PER_SOL if pre and post else 0.0

        return ActivityRecord(
            signature=entry["signature"],
            kind=kind,
            user=user,
            amount_sol=amount_sol,
            block_time=tx.get("blockTime", entry.get("blockTime")),
            slot=tx.get("slot", entry.get("slot")),
            pool=pool,
            success=meta.get("err") is None
        )

    # ----- writes -----

    def _require_submitter(self) -> TransactionSubmitter:
        if self.submitter is None:
            raise RuntimeError("LaunchpadClient has no TransactionSubmitter; writes are disabled")
        return self.submitter

    async def _execute(
        self,
        instructions: List[Instruction],
        signer: TransactionSigner,
        extra_signers: Sequence[Keypair] = (),
        action: str = "transaction"
    ) -> ConfirmedTransaction:
        submitter = self._require_submitter()
        blockhash, _ = await self.rpc_manager.get_latest_blockhash()
        tx = self.builder.build_transaction(instructions, signer.pubkey(), blockhash)

        with LatencyTimer(metrics, "launchpad_write", {"action": action}):
            confirmed = await submitter.sign_and_send(tx, signer, extra_signers)

        metrics.increment_counter("launchpad_writes", labels={"action": action})
        logger.info("launchpad_write_confirmed", action=action, signature=confirmed.signature)
        return confirmed

    async def _missing_accounts(self, addresses: Sequence[Pubkey]) -> List[bool]:
        infos = await self.rpc_manager.get_multiple_accounts(list(addresses))
        return [info is None for info in infos]

    async def create_pool(
        self,
        signer: TransactionSigner,
        target_amount: int,
        name: str,
        symbol: str,
        uri: Optional[str] = None,
        description: str = "",
        image_uri: Optional[str] = None,
        decimals: int = 6,
        mint_keypair: Optional[Keypair] = None
    ) -> DraftPoolRecord:
        """
        Create a meme mint, its target config and the bonding-curve pool

        Two transactions: (1) mint account with the pool signer as mint
        authority, target config and any missing vaults; (2) new_pool plus
        create_metadata when a uri is given. A draft record is written after
        the pool transaction confirms.

        Args:
            signer: Creator's signing capability (fee payer)
            target_amount: Token target amount for the config (> 0)
            name: Token name
            symbol: Token symbol
            uri: Off-chain metadata document URI (optional)
            description: Free text kept in the draft record
            image_uri: Image shown until metadata resolves
            decimals: Meme mint decimals
            mint_keypair: Keypair for the new mint (generated when omitted)

        Returns:
            The stored DraftPoolRecord

        Raises:
            InvalidArgumentError: Bad amount or metadata strings (before any network call)
            SigningRejectedError: If the signer declines
            SubmissionError: If either transaction fails
        """
        validate_token_strings(name, symbol)

        mint_keypair = mint_keypair or Keypair()
        meme_mint = mint_keypair.pubkey()
        quote_mint = self.deriver.quote_mint
        creator = signer.pubkey()

        init_config_ix = self.build_init_target_config_instruction(creator, meme_mint, target_amount, quote_mint)
        new_pool_ix = self.build_new_pool_instruction(creator, meme_mint, quote_mint)
        pool_instructions = [new_pool_ix]
        if uri:
            pool_instructions.append(self.build_create_metadata_instruction(creator, meme_mint, name, symbol, uri))

        pool = self.deriver.pool(meme_mint, quote_mint)
        addresses = self.deriver.pool_addresses(pool, meme_mint, quote_mint)

        rent = await self.rpc_manager.get_minimum_balance_for_rent_exemption(MINT_LAYOUT.size)
        setup = [
            create_account(CreateAccountParams(
                from_pubkey=creator,
                to_pubkey=meme_mint,
                lamports=rent,
                space=MINT_LAYOUT.size,
                owner=TOKEN_PROGRAM_ID
            )),
            initialize_mint(InitializeMintParams(
                decimals=decimals,
                program_id=TOKEN_PROGRAM_ID,
                mint=meme_mint,
                mint_authority=addresses.pool_signer,
                freeze_authority=None
            )),
            init_config_ix,
        ]

        quote_vault_missing, fee_vault_missing = await self._missing_accounts(
            [addresses.quote_vault, addresses.fee_quote_vault]
        )
        if quote_vault_missing:
            setup.append(create_associated_token_account(
                payer=creator, owner=addresses.pool_signer, mint=quote_mint
            ))
        setup.append(create_associated_token_account(
            payer=creator, owner=addresses.pool_signer, mint=meme_mint
        ))
        if fee_vault_missing:
            setup.append(create_associated_token_account(
                payer=creator, owner=self.deriver.fee_authority, mint=WRAPPED_SOL_MINT
            ))

        logger.info(
            "create_pool_started",
            mint=str(meme_mint),
            pool=str(pool),
            target_amount=target_amount,
            with_metadata=bool(uri)
        )

        await self._execute(setup, signer, extra_signers=[mint_keypair], action="create_pool_setup")
        confirmed = await self._execute(pool_instructions, signer, action="create_pool")

        draft = self.drafts.add(
            name=name,
            symbol=symbol,
            mint=str(meme_mint),
            description=description,
            pool_address=str(pool),
            quote_mint=str(quote_mint),
            target_config=str(addresses.target_config),
            created_by=str(creator),
            target_amount=target_amount,
            image_uri=image_uri,
            metadata_uri=uri,
            signature=confirmed.signature
        )

        metrics.increment_counter("pools_created")
        return draft

    def _pool_addresses(self, pool: PoolRecord) -> PoolAddresses:
        return self.deriver.pool_addresses(pool.address, pool.meme_reserve.mint, pool.quote_reserve.mint)

    async def buy(
        self,
        signer: TransactionSigner,
        pool: PoolRecord,
        amount: int,
        min_out: int = 0
    ) -> ConfirmedTransaction:
        """
        Swap quote for meme tokens

        Creates the owner's meme and wrapped-SOL token accounts when missing
        and wraps the input amount before the swap.

        Raises:
            InvalidArgumentError: If amount <= 0 or min_out < 0
            SubmissionError: If the swap is rejected
        """
        owner = signer.pubkey()
        meme_mint = pool.meme_reserve.mint
        quote_mint = pool.quote_reserve.mint
        addresses = self._pool_addresses(pool)
        swap_ix = self.build_buy_instruction(owner, addresses, meme_mint, quote_mint, amount, min_out)

        user_quote = self.deriver.vault(quote_mint, owner)
        user_meme = self.deriver.vault(meme_mint, owner)
        quote_missing, meme_missing = await self._missing_accounts([user_quote, user_meme])

        instructions = []
        if quote_missing:
            instructions.append(create_associated_token_account(payer=owner, owner=owner, mint=quote_mint))
        if meme_missing:
            instructions.append(create_associated_token_account(payer=owner, owner=owner, mint=meme_mint))
        if quote_mint == WRAPPED_SOL_MINT:
            instructions.append(transfer(TransferParams(from_pubkey=owner, to_pubkey=user_quote, lamports=amount)))
            instructions.append(sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=user_quote)))
        instructions.append(swap_ix)

        logger.info("buy_submitted", pool=str(pool.address), amount=amount, min_out=min_out)
        return await self._execute(instructions, signer, action="buy")

    async def sell(
        self,
        signer: TransactionSigner,
        pool: PoolRecord,
        amount: int,
        min_out: int = 0
    ) -> ConfirmedTransaction:
        """
        Swap meme tokens for quote

        Raises:
            InvalidArgumentError: If amount <= 0 or min_out < 0
            SubmissionError: If the swap is rejected
        """
        owner = signer.pubkey()
        meme_mint = pool.meme_reserve.mint
        quote_mint = pool.quote_reserve.mint
        addresses = self._pool_addresses(pool)
        swap_ix = self.build_sell_instruction(owner, addresses, meme_mint, quote_mint, amount, min_out)

        user_quote = self.deriver.vault(quote_mint, owner)
        (quote_missing,) = await self._missing_accounts([user_quote])

        instructions = []
        if quote_missing:
            instructions.append(create_associated_token_account(payer=owner, owner=owner, mint=quote_mint))
        instructions.append(swap_ix)

        logger.info("sell_submitted", pool=str(pool.address), amount=amount, min_out=min_out)
        return await self._execute(instructions, signer, action="sell")

    async def migrate(self, signer: TransactionSigner, pool: Pubkey) -> ConfirmedTransaction:
        """Submit migrate_to_raydium for a pool"""
        instruction = self.build_migrate_instruction(signer.pubkey(), pool)
        logger.info("migration_submitted", pool=str(pool))
        return await self._execute([instruction], signer, action="migrate")

    async def preview_swap(
        self,
        payer: Pubkey,
        pool: PoolRecord,
        amount: int,
        side: str = "buy",
        min_out: int = 0
    ) -> SimulationResult:
        """
        Run get_swap_y_amt / get_swap_x_amt through simulation

        Returns:
            SimulationResult whose logs carry the program's quoted amounts
        """
        submitter = self._require_submitter()
        addresses = self._pool_addresses(pool)
        instruction = self.build_preview_instruction(addresses, side, amount, min_out)
        blockhash, _ = await self.rpc_manager.get_latest_blockhash()
        tx: Transaction = self.builder.build_transaction([instruction], payer, blockhash)
        result = await submitter.simulate(tx)

        logger.debug(
            "swap_preview_simulated",
            pool=str(pool.address),
            side=side,
            amount=amount,
            success=result.success
        )
        return result

