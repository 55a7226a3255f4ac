"""
Instruction data encoding for the launchpad program

Data layout: 8-byte discriminator (sha256("global:<name>")[:8]) followed by
the arguments in declared order. Integers are fixed-width little-endian;
strings are Borsh (u32 LE byte length + UTF-8).
"""

import hashlib
import struct
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from launchpad.core.errors import InvalidArgumentError, MalformedDataError


U64_MAX = 2 ** 64 - 1

# Limits enforced by the token metadata program on create
MAX_METADATA_NAME = 32
MAX_METADATA_SYMBOL = 10
MAX_METADATA_URI = 200


def instruction_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>")"""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


@dataclass(frozen=True)
class ArgSpec:
    """One instruction argument"""
    name: str
    kind: str  # u64 | string
    positive: bool = False
    max_length: int = 0


@dataclass(frozen=True)
class InstructionSpec:
    """Name and argument list of a program instruction"""
    name: str
    args: Tuple[ArgSpec, ...] = ()

    @property
    def discriminator(self) -> bytes:
        return instruction_discriminator(self.name)


INIT_TARGET_CONFIG = InstructionSpec(
    "init_target_config",
    (ArgSpec("token_target_amount", "u64", positive=True),),
)
NEW_POOL = InstructionSpec("new_pool")
CREATE_METADATA = InstructionSpec(
    "create_metadata",
    (
        ArgSpec("name", "string", max_length=MAX_METADATA_NAME),
        ArgSpec("symbol", "string", max_length=MAX_METADATA_SYMBOL),
        ArgSpec("uri", "string", max_length=MAX_METADATA_URI),
    ),
)
SWAP_X = InstructionSpec(
    "swap_x",
    (ArgSpec("coin_in_amount", "u64", positive=True), ArgSpec("coin_y_min_value", "u64")),
)
SWAP_Y = InstructionSpec(
    "swap_y",
    (ArgSpec("coin_in_amount", "u64", positive=True), ArgSpec("coin_x_min_value", "u64")),
)
GET_SWAP_X_AMT = InstructionSpec(
    "get_swap_x_amt",
    (ArgSpec("coin_in_amount", "u64", positive=True), ArgSpec("coin_y_min_value", "u64")),
)
GET_SWAP_Y_AMT = InstructionSpec(
    "get_swap_y_amt",
    (ArgSpec("coin_in_amount", "u64", positive=True), ArgSpec("coin_x_min_value", "u64")),
)
MIGRATE_TO_RAYDIUM = InstructionSpec("migrate_to_raydium")

INSTRUCTIONS: Dict[str, InstructionSpec] = {
    spec.name: spec
    for spec in (
        INIT_TARGET_CONFIG,
        NEW_POOL,
        CREATE_METADATA,
        SWAP_X,
        SWAP_Y,
        GET_SWAP_X_AMT,
        GET_SWAP_Y_AMT,
        MIGRATE_TO_RAYDIUM,
    )
}

_BY_DISCRIMINATOR: Dict[bytes, InstructionSpec] = {
    spec.discriminator: spec for spec in INSTRUCTIONS.values()
}


def _encode_u64(arg: ArgSpec, value: Any) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{arg.name} must be an integer, got {type(value).__name__}")
    if arg.positive and value <= 0:
        raise InvalidArgumentError(f"{arg.name} must be greater than zero, got {value}")
    if value < 0:
        raise InvalidArgumentError(f"{arg.name} must not be negative, got {value}")
    if value > U64_MAX:
        raise InvalidArgumentError(f"{arg.name} exceeds u64 range: {value}")
    return struct.pack("<Q", value)


def _encode_string(arg: ArgSpec, value: Any) -> bytes:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{arg.name} must be a non-empty string")
    encoded = value.encode("utf-8")
    if arg.max_length and len(encoded) > arg.max_length:
        raise InvalidArgumentError(
            f"{arg.name} is {len(encoded)} bytes (max {arg.max_length})"
        )
    return struct.pack("<I", len(encoded)) + encoded


def encode_instruction_data(instruction: str, /, **kwargs: Any) -> bytes:
    """
    Encode discriminator and arguments for a program instruction

    Args:
        instruction: Instruction name (e.g., "swap_y"), positional only
        **kwargs: Argument values by name

    Returns:
        Instruction data bytes

    Raises:
        InvalidArgumentError: Unknown instruction, missing/extra argument,
            non-positive amount or out-of-range value

    Example:
        data = encode_instruction_data("swap_y", coin_in_amount=10_000_000, coin_x_min_value=0)
    """
    spec = INSTRUCTIONS.get(instruction)
    if spec is None:
        raise InvalidArgumentError(f"Unknown instruction: {instruction}")

    expected = {arg.name for arg in spec.args}
    unexpected = set(kwargs) - expected
    if unexpected:
        raise InvalidArgumentError(f"Unexpected arguments for {instruction}: {sorted(unexpected)}")

    data = bytearray(spec.discriminator)
    for arg in spec.args:
        if arg.name not in kwargs:
            raise InvalidArgumentError(f"Missing argument for {instruction}: {arg.name}")
        value = kwargs[arg.name]
        if arg.kind == "u64":
            data += _encode_u64(arg, value)
        else:
            data += _encode_string(arg, value)

    return bytes(data)


def validate_token_strings(name: Any, symbol: Any) -> None:
    """Apply create_metadata string rules to a token name and symbol"""
    args = {arg.name: arg for arg in CREATE_METADATA.args}
    _encode_string(args["name"], name)
    _encode_string(args["symbol"], symbol)


def decode_instruction_data(data: bytes) -> Tuple[str, Dict[str, Any]]:
    """
    Reverse of encode_instruction_data

    Returns:
        (instruction name, arguments)

    Raises:
        MalformedDataError: Unknown discriminator or truncated arguments
    """
    if len(data) < 8:
        raise MalformedDataError(f"Instruction data too short: {len(data)} bytes")

    spec = _BY_DISCRIMINATOR.get(bytes(data[:8]))
    if spec is None:
        raise MalformedDataError(f"Unknown instruction discriminator: {bytes(data[:8]).hex()}")

    offset = 8
    args: Dict[str, Any] = {}
    for arg in spec.args:
        if arg.kind == "u64":
            if offset + 8 > len(data):
                raise MalformedDataError(f"{spec.name}.{arg.name} truncated")
            args[arg.name] = struct.unpack_from("<Q", data, offset)[0]
            offset += 8
        else:
            if offset + 4 > len(data):
                raise MalformedDataError(f"{spec.name}.{arg.name} length truncated")
            length = struct.unpack_from("<I", data, offset)[0]
            offset += 4
            if offset + length > len(data):
                raise MalformedDataError(f"{spec.name}.{arg.name} truncated")
            args[arg.name] = bytes(data[offset:offset + length]).decode("utf-8", errors="replace")
            offset += length

    return spec.name, args
