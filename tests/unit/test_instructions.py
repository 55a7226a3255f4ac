"""
Unit tests for instruction data encoding (launchpad/core/instructions.py)
"""

import hashlib
import struct

import pytest

from launchpad.core.errors import InvalidArgumentError, MalformedDataError
from launchpad.core.instructions import (
    INSTRUCTIONS,
    U64_MAX,
    decode_instruction_data,
    encode_instruction_data,
    instruction_discriminator,
    validate_token_strings,
)


class TestDiscriminators:

    def test_global_namespace(self):
        assert instruction_discriminator("swap_y") == hashlib.sha256(b"global:swap_y").digest()[:8]

    def test_discriminators_unique(self):
        discriminators = {spec.discriminator for spec in INSTRUCTIONS.values()}
        assert len(discriminators) == len(INSTRUCTIONS)


class TestEncoding:

    def test_swap_y_layout(self):
        data = encode_instruction_data("swap_y", coin_in_amount=10_000_000, coin_x_min_value=5)

        assert data[:8] == instruction_discriminator("swap_y")
        assert data[8:] == struct.pack("<QQ", 10_000_000, 5)
        assert len(data) == 24

    def test_no_argument_instruction(self):
        assert encode_instruction_data("new_pool") == instruction_discriminator("new_pool")

    def test_strings_are_length_prefixed(self):
        data = encode_instruction_data("create_metadata", name="Dog", symbol="DOG", uri="https://x.test")

        assert data[8:12] == struct.pack("<I", 3)
        assert data[12:15] == b"Dog"

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(InvalidArgumentError, match="greater than zero"):
            encode_instruction_data("swap_x", coin_in_amount=amount, coin_y_min_value=0)

    def test_negative_min_out_rejected(self):
        with pytest.raises(InvalidArgumentError, match="negative"):
            encode_instruction_data("swap_x", coin_in_amount=1, coin_y_min_value=-1)

    def test_u64_overflow_rejected(self):
        with pytest.raises(InvalidArgumentError, match="u64"):
            encode_instruction_data("swap_y", coin_in_amount=U64_MAX + 1, coin_x_min_value=0)

    def test_u64_max_accepted(self):
        data = encode_instruction_data("swap_y", coin_in_amount=U64_MAX, coin_x_min_value=0)
        assert decode_instruction_data(data)[1]["coin_in_amount"] == U64_MAX

    @pytest.mark.parametrize("value", [1.5, "10", True])
    def test_non_integer_rejected(self, value):
        with pytest.raises(InvalidArgumentError, match="integer"):
            encode_instruction_data("init_target_config", token_target_amount=value)

    def test_missing_argument(self):
        with pytest.raises(InvalidArgumentError, match="Missing"):
            encode_instruction_data("swap_y", coin_in_amount=1)

    def test_unexpected_argument(self):
        with pytest.raises(InvalidArgumentError, match="Unexpected"):
            encode_instruction_data("new_pool", extra=1)

    def test_unknown_instruction(self):
        with pytest.raises(InvalidArgumentError, match="Unknown instruction"):
            encode_instruction_data("withdraw_all")

    def test_metadata_name_limit(self):
        with pytest.raises(InvalidArgumentError, match="max 32"):
            encode_instruction_data("create_metadata", name="N" * 33, symbol="DOG", uri="u")

    def test_blank_string_rejected(self):
        with pytest.raises(InvalidArgumentError, match="non-empty"):
            encode_instruction_data("create_metadata", name="   ", symbol="DOG", uri="u")

    def test_metadata_name_passed_by_keyword(self):
        data = encode_instruction_data("create_metadata", name="Dog Coin", symbol="DOG", uri="https://x.test/d")

        name, args = decode_instruction_data(data)
        assert name == "create_metadata"
        assert args["name"] == "Dog Coin"
        assert data[8:12] == struct.pack("<I", len("Dog Coin"))


class TestTokenStrings:

    def test_valid_strings_accepted(self):
        validate_token_strings("Dog Coin", "DOG")

    @pytest.mark.parametrize("name,symbol,match", [
        ("", "DOG", "name must be a non-empty"),
        ("Dog", "  ", "symbol must be a non-empty"),
        ("N" * 33, "DOG", "max 32"),
        ("Dog", "S" * 11, "max 10"),
    ])
    def test_invalid_strings_rejected(self, name, symbol, match):
        with pytest.raises(InvalidArgumentError, match=match):
            validate_token_strings(name, symbol)


class TestDecoding:

    def test_round_trip(self):
        data = encode_instruction_data("create_metadata", name="Dog Coin", symbol="DOG", uri="https://x.test/d")

        assert decode_instruction_data(data) == (
            "create_metadata",
            {"name": "Dog Coin", "symbol": "DOG", "uri": "https://x.test/d"},
        )

    def test_unknown_discriminator(self):
        with pytest.raises(MalformedDataError, match="Unknown instruction discriminator"):
            decode_instruction_data(b"\x00" * 16)

    def test_truncated_arguments(self):
        data = encode_instruction_data("swap_y", coin_in_amount=1, coin_x_min_value=0)

        with pytest.raises(MalformedDataError, match="truncated"):
            decode_instruction_data(data[:20])

    def test_too_short(self):
        with pytest.raises(MalformedDataError, match="too short"):
            decode_instruction_data(b"\x01\x02")
