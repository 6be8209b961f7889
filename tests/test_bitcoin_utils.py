"""Unit tests for script tokenizing, amount conversion and block times."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from btc_exposure.utils.bitcoin import (
    ScriptParseError, btc_to_satoshi, calculate_fee, encode_segwit_address,
    is_public_key_shaped, parse_script, satoshi_to_btc, script_template,
)
from btc_exposure.utils.time import format_block_time, to_naive_utc


class TestParseScript:
    """Tests for the script tokenizer."""

    def test_direct_push_and_opcodes(self):
        ops = parse_script(bytes.fromhex("76a914") + bytes(20) + bytes.fromhex("88ac"))

        assert [op.opcode for op in ops] == [0x76, 0xa9, 0x14, 0x88, 0xac]
        assert ops[2].data == bytes(20)
        assert script_template(ops) == [
            "OP_DUP", "OP_HASH160", "PUSH(20 bytes)", "OP_EQUALVERIFY", "OP_CHECKSIG"
        ]

    def test_pushdata_variants(self):
        ops = parse_script(b"\x4c\x02\xab\xcd" + b"\x4d\x01\x00\xef" + b"\x4e\x01\x00\x00\x00\x11")
        assert [op.data for op in ops] == [b"\xab\xcd", b"\xef", b"\x11"]

    def test_op_zero_is_empty_push(self):
        ops = parse_script(b"\x00")
        assert ops[0].is_push
        assert ops[0].data == b""
        assert ops[0].name == "OP_0"

    def test_small_integers_are_named(self):
        assert script_template(parse_script(b"\x51\x60")) == ["OP_1", "OP_16"]

    def test_unknown_opcode_name(self):
        assert parse_script(b"\xff")[0].name == "OP_UNKNOWN_0xff"

    @pytest.mark.parametrize("script", [b"\x4c", b"\x4d\x01", b"\x4e\x01\x00", b"\x03\x01"])
    def test_truncated_scripts_raise(self, script):
        with pytest.raises(ScriptParseError):
            parse_script(script)


class TestKeysAndAddresses:
    """Tests for key shape checks and segwit encoding."""

    def test_public_key_shapes(self):
        assert is_public_key_shaped(b"\x02" + bytes(32))
        assert is_public_key_shaped(b"\x03" + bytes(32))
        assert is_public_key_shaped(b"\x04" + bytes(64))
        assert not is_public_key_shaped(b"\x05" + bytes(32))
        assert not is_public_key_shaped(bytes(20))

    def test_v0_program_uses_bech32(self):
        program = bytes.fromhex("751e76e8199196d454941c45d1b3a323f1433bd6")
        assert encode_segwit_address("bc", 0, program) == "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"

    def test_v1_program_uses_bech32m(self):
        """Test taproot addresses carry the BIP350 checksum, not the v0 one."""
        program = bytes.fromhex("79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")
        address = encode_segwit_address("bc", 1, program)

        assert address == "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
        assert not address.endswith("h2y7hd")

    def test_invalid_witness_program_raises(self):
        with pytest.raises(ValueError):
            encode_segwit_address("bc", 0, bytes(5))


class TestAmounts:
    """Tests for BTC/satoshi conversion."""

    def test_decimal_conversion_is_exact(self):
        assert btc_to_satoshi(Decimal("0.1")) == 10_000_000
        assert btc_to_satoshi(Decimal("20999999.97690000")) == 2099999997690000
        assert btc_to_satoshi("50") == 5_000_000_000

    def test_fractional_satoshi_rejected(self):
        with pytest.raises(ValueError):
            btc_to_satoshi(Decimal("0.000000001"))

    def test_round_trip_display(self):
        assert satoshi_to_btc(150_000_000) == Decimal("1.5")

    def test_fee(self):
        assert calculate_fee(5_000_000_000, 4_990_000_000) == 10_000_000


class TestBlockTime:
    """Tests for header time conversion."""

    def test_genesis_time(self):
        assert format_block_time(1231006505) == datetime(2009, 1, 3, 18, 15, 5, tzinfo=timezone.utc)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            format_block_time(-1)
        with pytest.raises(ValueError):
            format_block_time(2**32)

    def test_naive_storage_form(self):
        stored = to_naive_utc(datetime(2009, 1, 3, 18, 15, 5, tzinfo=timezone.utc))
        assert stored.tzinfo is None
        assert stored.hour == 18
