"""
Account layouts for the launchpad program, SPL token accounts and token metadata

Fixed-size layouts are declared once as FieldSpec tables. The same tables
decode ledger buffers and build test buffers, so offsets live in one place.

Layout of BoundPool (394 bytes, Anchor/Borsh packed):
    [0, 8)     account discriminator
    [8, 80)    meme reserve  {tokens u64, mint, vault}
    [80, 152)  quote reserve {tokens u64, mint, vault}
    [152, 232) admin fees (meme, quote), fee_vault_quote, creator_addr
    [232, 248) fees {fee_meme_percent, fee_quote_percent}
    [248, 360) curve config incl. decimals
    [360, 394) locked, pool_migration, migration_pool_key
"""

import hashlib
import struct
from dataclasses import dataclass, fields as dataclass_fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from borsh_construct import CStruct, String, U8
from construct import Bytes, ConstructError
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID

from launchpad.core.errors import MalformedDataError
from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


PUBKEY_LENGTH = 32

_STRUCT_FORMATS = {
    "u8": "<B",
    "u32": "<I",
    "u64": "<Q",
}


def account_discriminator(account_name: str) -> bytes:
    """First 8 bytes of sha256("account:<Name>")"""
    return hashlib.sha256(f"account:{account_name}".encode()).digest()[:8]


@dataclass(frozen=True)
class FieldSpec:
    """One fixed-offset field of an account layout"""
    name: str
    offset: int
    width: int
    kind: str  # u8 | u32 | u64 | u128 | bool | pubkey | bytes | coption_pubkey

    @property
    def end(self) -> int:
        return self.offset + self.width

    def read(self, data: bytes) -> Any:
        raw = data[self.offset:self.end]
        if len(raw) != self.width:
            raise MalformedDataError(
                f"Field {self.name} [{self.offset}, {self.end}) out of bounds for {len(data)} bytes"
            )

        if self.kind in _STRUCT_FORMATS:
            return struct.unpack(_STRUCT_FORMATS[self.kind], raw)[0]
        if self.kind == "u128":
            return int.from_bytes(raw, "little")
        if self.kind == "bool":
            return raw[0] != 0
        if self.kind == "pubkey":
            return Pubkey.from_bytes(raw)
        if self.kind == "coption_pubkey":
            tag = struct.unpack("<I", raw[:4])[0]
            return Pubkey.from_bytes(raw[4:]) if tag == 1 else None
        if self.kind == "bytes":
            return bytes(raw)
        raise ValueError(f"Unknown field kind: {self.kind}")

    def write(self, buffer: bytearray, value: Any) -> None:
        if self.kind in _STRUCT_FORMATS:
            encoded = struct.pack(_STRUCT_FORMATS[self.kind], value)
        elif self.kind == "u128":
            encoded = int(value).to_bytes(16, "little")
        elif self.kind == "bool":
            encoded = b"\x01" if value else b"\x00"
        elif self.kind == "pubkey":
            encoded = bytes(value)
        elif self.kind == "coption_pubkey":
            encoded = struct.pack("<I", 1) + bytes(value) if value is not None else bytes(36)
        elif self.kind == "bytes":
            encoded = bytes(value)
        else:
            raise ValueError(f"Unknown field kind: {self.kind}")

        if len(encoded) != self.width:
            raise ValueError(f"Field {self.name} expects {self.width} bytes, got {len(encoded)}")
        buffer[self.offset:self.end] = encoded


@dataclass(frozen=True)
class AccountLayout:
    """Fixed-size account layout: name, exact size and field table"""
    name: str
    size: int
    fields: Tuple[FieldSpec, ...]
    discriminator: Optional[bytes] = None

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def matches_discriminator(self, data: bytes) -> bool:
        return self.discriminator is None or data[:8] == self.discriminator

    def decode(self, data: bytes) -> Dict[str, Any]:
        """
        Decode every declared field

        Raises:
            MalformedDataError: If the buffer length differs from the layout size
        """
        if len(data) != self.size:
            raise MalformedDataError(
                f"{self.name} expects {self.size} bytes, got {len(data)}"
            )
        return {spec.name: spec.read(data) for spec in self.fields}

    def encode(self, values: Dict[str, Any]) -> bytes:
        """Build a buffer from field values; unset fields stay zeroed"""
        buffer = bytearray(self.size)
        if self.discriminator is not None:
            buffer[:8] = self.discriminator
        for spec in self.fields:
            if spec.name in values:
                spec.write(buffer, values[spec.name])
        return bytes(buffer)


BOUND_POOL_LAYOUT = AccountLayout(
    name="BoundPool",
    size=394,
    discriminator=account_discriminator("BoundPool"),
    fields=(
        FieldSpec("discriminator", 0, 8, "bytes"),
        FieldSpec("meme_tokens", 8, 8, "u64"),
        FieldSpec("meme_mint", 16, 32, "pubkey"),
        FieldSpec("meme_vault", 48, 32, "pubkey"),
        FieldSpec("quote_tokens", 80, 8, "u64"),
        FieldSpec("quote_mint", 88, 32, "pubkey"),
        FieldSpec("quote_vault", 120, 32, "pubkey"),
        FieldSpec("admin_fees_meme", 152, 8, "u64"),
        FieldSpec("admin_fees_quote", 160, 8, "u64"),
        FieldSpec("fee_vault_quote", 168, 32, "pubkey"),
        FieldSpec("creator_addr", 200, 32, "pubkey"),
        FieldSpec("fee_meme_percent", 232, 8, "u64"),
        FieldSpec("fee_quote_percent", 240, 8, "u64"),
        FieldSpec("alpha_abs", 248, 16, "u128"),
        FieldSpec("beta", 264, 16, "u128"),
        FieldSpec("price_factor_num", 280, 8, "u64"),
        FieldSpec("price_factor_denom", 288, 8, "u64"),
        FieldSpec("gamma_s", 296, 8, "u64"),
        FieldSpec("gamma_m", 304, 8, "u64"),
        FieldSpec("omega_m", 312, 8, "u64"),
        FieldSpec("decimals_alpha", 320, 16, "u128"),
        FieldSpec("decimals_beta", 336, 16, "u128"),
        FieldSpec("decimals_quote", 352, 8, "u64"),
        FieldSpec("locked", 360, 1, "bool"),
        FieldSpec("pool_migration", 361, 1, "bool"),
        FieldSpec("migration_pool_key", 362, 32, "pubkey"),
    ),
)

TARGET_CONFIG_LAYOUT = AccountLayout(
    name="TargetConfig",
    size=80,
    discriminator=account_discriminator("TargetConfig"),
    fields=(
        FieldSpec("discriminator", 0, 8, "bytes"),
        FieldSpec("token_target_amount", 8, 8, "u64"),
        FieldSpec("token_mint", 16, 32, "pubkey"),
        FieldSpec("pair_token_mint", 48, 32, "pubkey"),
    ),
)

MINT_LAYOUT = AccountLayout(
    name="Mint",
    size=82,
    fields=(
        FieldSpec("mint_authority", 0, 36, "coption_pubkey"),
        FieldSpec("supply", 36, 8, "u64"),
        FieldSpec("decimals", 44, 1, "u8"),
        FieldSpec("is_initialized", 45, 1, "bool"),
        FieldSpec("freeze_authority", 46, 36, "coption_pubkey"),
    ),
)

TOKEN_ACCOUNT_LAYOUT = AccountLayout(
    name="TokenAccount",
    size=165,
    fields=(
        FieldSpec("mint", 0, 32, "pubkey"),
        FieldSpec("owner", 32, 32, "pubkey"),
        FieldSpec("amount", 64, 8, "u64"),
        FieldSpec("state", 108, 1, "u8"),
    ),
)


# Token metadata: key u8, update authority, mint, then three Borsh strings
METADATA_SCHEMA = CStruct(
    "key" / U8,
    "update_authority" / Bytes(PUBKEY_LENGTH),
    "mint" / Bytes(PUBKEY_LENGTH),
    "name" / String,
    "symbol" / String,
    "uri" / String,
)

METADATA_PREFIX_LENGTH = 1 + PUBKEY_LENGTH + PUBKEY_LENGTH
METADATA_MIN_LENGTH = METADATA_PREFIX_LENGTH + 3 * 4
MAX_NAME_LENGTH = 200
MAX_SYMBOL_LENGTH = 50
MAX_URI_LENGTH = 1000


class AccountKind(Enum):
    """Account classification"""
    POOL = "pool"
    TARGET_CONFIG = "target_config"
    MINT = "mint"
    TOKEN_ACCOUNT = "token_account"
    METADATA = "metadata"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BoundPoolState:
    """Raw decoded BoundPool fields"""
    meme_tokens: int
    meme_mint: Pubkey
    meme_vault: Pubkey
    quote_tokens: int
    quote_mint: Pubkey
    quote_vault: Pubkey
    admin_fees_meme: int
    admin_fees_quote: int
    fee_vault_quote: Pubkey
    creator_addr: Pubkey
    fee_meme_percent: int
    fee_quote_percent: int
    alpha_abs: int
    beta: int
    price_factor_num: int
    price_factor_denom: int
    gamma_s: int
    gamma_m: int
    omega_m: int
    decimals_alpha: int
    decimals_beta: int
    decimals_quote: int
    locked: bool
    pool_migration: bool
    migration_pool_key: Pubkey


@dataclass(frozen=True)
class TargetConfigState:
    token_target_amount: int
    token_mint: Pubkey
    pair_token_mint: Pubkey


@dataclass(frozen=True)
class MintState:
    mint_authority: Optional[Pubkey]
    supply: int
    decimals: int
    is_initialized: bool
    freeze_authority: Optional[Pubkey]


@dataclass(frozen=True)
class TokenAccountState:
    mint: Pubkey
    owner: Pubkey
    amount: int
    state: int


@dataclass(frozen=True)
class MetadataAccount:
    """On-chain token metadata record (strings already stripped)"""
    update_authority: Pubkey
    mint: Pubkey
    name: str
    symbol: str
    uri: str


def _build(cls, layout: AccountLayout, data: bytes):
    values = layout.decode(data)
    names = {f.name for f in dataclass_fields(cls)}
    return cls(**{k: v for k, v in values.items() if k in names})


def decode_pool(data: bytes) -> BoundPoolState:
    """
    Decode a BoundPool buffer

    Raises:
        MalformedDataError: On wrong length or identical reserve mints
    """
    state = _build(BoundPoolState, BOUND_POOL_LAYOUT, data)
    if state.meme_mint == state.quote_mint:
        raise MalformedDataError("BoundPool reserve mints are identical")
    return state


def decode_target_config(data: bytes) -> TargetConfigState:
    return _build(TargetConfigState, TARGET_CONFIG_LAYOUT, data)


def decode_mint(data: bytes) -> MintState:
    return _build(MintState, MINT_LAYOUT, data)


def decode_token_account(data: bytes) -> TokenAccountState:
    return _build(TokenAccountState, TOKEN_ACCOUNT_LAYOUT, data)


def _clean(value: str) -> str:
    return value.replace("\x00", "").strip()


def _within_bounds(name_len: int, symbol_len: int, uri_len: int) -> bool:
    return (
        0 < name_len <= MAX_NAME_LENGTH
        and 0 < symbol_len <= MAX_SYMBOL_LENGTH
        and uri_len <= MAX_URI_LENGTH
    )


def _parse_metadata_schema(data: bytes) -> MetadataAccount:
    parsed = METADATA_SCHEMA.parse(data)
    if not _within_bounds(
        len(parsed.name.encode()), len(parsed.symbol.encode()), len(parsed.uri.encode())
    ):
        raise MalformedDataError("Metadata string length out of bounds")
    return MetadataAccount(
        update_authority=Pubkey.from_bytes(parsed.update_authority),
        mint=Pubkey.from_bytes(parsed.mint),
        name=_clean(parsed.name),
        symbol=_clean(parsed.symbol),
        uri=_clean(parsed.uri),
    )


def _parse_metadata_manual(data: bytes) -> MetadataAccount:
    """
    Sequential parse with explicit bounds

    Every length prefix is checked against its sanity bound and against the
    remaining buffer before any bytes are read.
    """
    if len(data) < METADATA_MIN_LENGTH:
        raise MalformedDataError(f"Metadata buffer too short: {len(data)} bytes")

    offset = METADATA_PREFIX_LENGTH
    strings = []
    for label, bound in (("name", MAX_NAME_LENGTH), ("symbol", MAX_SYMBOL_LENGTH), ("uri", MAX_URI_LENGTH)):
        if offset + 4 > len(data):
            raise MalformedDataError(f"Metadata {label} length prefix overruns buffer")
        length = struct.unpack_from("<I", data, offset)[0]
        offset += 4
        if length > bound:
            raise MalformedDataError(f"Metadata {label} length {length} exceeds {bound}")
        if offset + length > len(data):
            raise MalformedDataError(f"Metadata {label} overruns buffer")
        strings.append(data[offset:offset + length].decode("utf-8", errors="replace"))
        offset += length

    name, symbol, uri = (_clean(s) for s in strings)
    return MetadataAccount(
        update_authority=Pubkey.from_bytes(data[1:33]),
        mint=Pubkey.from_bytes(data[33:65]),
        name=name,
        symbol=symbol,
        uri=uri,
    )


def decode_metadata(data: bytes) -> Optional[MetadataAccount]:
    """
    Decode a token metadata record, failing closed

    Tries the Borsh schema first and falls back to the manual parser. Any
    bound violation, truncation or empty name/symbol returns None.

    Returns:
        MetadataAccount or None
    """
    record = None
    try:
        record = _parse_metadata_schema(data)
    except (ConstructError, UnicodeDecodeError, MalformedDataError) as e:
        logger.debug("metadata_schema_decode_failed", error=str(e), data_length=len(data))
        try:
            record = _parse_metadata_manual(data)
        except MalformedDataError as fallback_error:
            logger.warning(
                "metadata_decode_rejected",
                error=str(fallback_error),
                data_length=len(data)
            )
            metrics.increment_counter("metadata_decode_rejected")
            return None

    if not record.name or not record.symbol:
        logger.warning("metadata_empty_fields", mint=str(record.mint))
        metrics.increment_counter("metadata_decode_rejected")
        return None

    return record


def encode_metadata(
    name: str,
    symbol: str,
    uri: str,
    mint: Pubkey,
    update_authority: Pubkey,
    key: int = 4
) -> bytes:
    """Serialize a metadata record with the Borsh schema"""
    return METADATA_SCHEMA.build({
        "key": key,
        "update_authority": bytes(update_authority),
        "mint": bytes(mint),
        "name": name,
        "symbol": symbol,
        "uri": uri,
    })


_PROGRAM_LAYOUTS = {
    BOUND_POOL_LAYOUT.size: (AccountKind.POOL, BOUND_POOL_LAYOUT),
    TARGET_CONFIG_LAYOUT.size: (AccountKind.TARGET_CONFIG, TARGET_CONFIG_LAYOUT),
}

_TOKEN_LAYOUTS = {
    MINT_LAYOUT.size: AccountKind.MINT,
    TOKEN_ACCOUNT_LAYOUT.size: AccountKind.TOKEN_ACCOUNT,
}


def classify_account(
    data: bytes,
    owner: Optional[Pubkey] = None,
    metadata_program_id: Optional[Pubkey] = None
) -> AccountKind:
    """
    Classify an account buffer by length, owner and discriminator

    Program accounts must match a known size exactly and carry the matching
    8-byte account discriminator; anything else is UNKNOWN. Never raises.

    Args:
        data: Raw account bytes
        owner: Owning program, when known
        metadata_program_id: Token metadata program, when known
    """
    length = len(data)

    if owner is not None and metadata_program_id is not None and owner == metadata_program_id:
        return AccountKind.METADATA if length >= METADATA_MIN_LENGTH else AccountKind.UNKNOWN

    if owner is None or owner == TOKEN_PROGRAM_ID:
        token_kind = _TOKEN_LAYOUTS.get(length)
        if token_kind is not None:
            return token_kind

    if owner != TOKEN_PROGRAM_ID and length in _PROGRAM_LAYOUTS:
        kind, layout = _PROGRAM_LAYOUTS[length]
        if layout.matches_discriminator(data):
            return kind
        logger.warning(
            "account_discriminator_mismatch",
            layout=layout.name,
            expected=layout.discriminator.hex(),
            found=bytes(data[:8]).hex()
        )
        metrics.increment_counter("account_discriminator_mismatch")

    return AccountKind.UNKNOWN


def decode_account(
    data: bytes,
    owner: Optional[Pubkey] = None,
    metadata_program_id: Optional[Pubkey] = None
) -> Tuple[AccountKind, Any]:
    """
    Classify and decode a buffer without raising

    Returns:
        (kind, decoded) where decoded is None for UNKNOWN or rejected buffers
    """
    kind = classify_account(data, owner, metadata_program_id)

    try:
        if kind == AccountKind.POOL:
            return kind, decode_pool(data)
        if kind == AccountKind.TARGET_CONFIG:
            return kind, decode_target_config(data)
        if kind == AccountKind.MINT:
            return kind, decode_mint(data)
        if kind == AccountKind.TOKEN_ACCOUNT:
            return kind, decode_token_account(data)
        if kind == AccountKind.METADATA:
            return kind, decode_metadata(data)
    except MalformedDataError as e:
        logger.warning("account_decode_failed", kind=kind.value, error=str(e))
        metrics.increment_counter("account_decode_failed", labels={"kind": kind.value})
        return AccountKind.UNKNOWN, None

    return AccountKind.UNKNOWN, None
