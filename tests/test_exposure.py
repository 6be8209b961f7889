"""Unit tests for exposure on spend."""

import pytest

from btc_exposure.core.exposure_tracker import ExposureTracker
from btc_exposure.database.models import Address, AddressInput
from btc_exposure.models.blockchain import RawInput

from conftest import (
    COMPRESSED_KEY, FAKE_SIGNATURE, OTHER_COMPRESSED_KEY, UNCOMPRESSED_KEY,
    push, signature_script,
)


def make_address(script_type, exposed=False, public_key=None):
    return Address(
        address_string=f"{script_type}-address",
        script_type=script_type,
        first_seen_block_height=1,
        total_receive_count=1,
        total_spend_count=0,
        is_public_key_exposed=exposed,
        public_key=public_key,
    )


def make_input(script_sig=b"", witness=None):
    row = AddressInput(block_height=10, input_index=0, value_satoshis=1000)
    raw = RawInput(index=0, previous_txid="aa" * 32, previous_vout=0,
                   script_sig=script_sig, witness=list(witness or []))
    return row, raw


@pytest.fixture
def tracker():
    return ExposureTracker()


class TestExposureTracker:
    """Tests for ExposureTracker.on_input_resolved."""

    def test_p2pkh_exposed_by_signature_script(self, tracker):
        """Test exposure transitions false to true at the spend."""
        address = make_address("p2pkh")
        row, raw = make_input(signature_script(COMPRESSED_KEY))

        assert tracker.on_input_resolved(address, row, raw) is True
        assert address.is_public_key_exposed is True
        assert address.public_key == COMPRESSED_KEY
        assert row.public_key_revealed == COMPRESSED_KEY

    def test_p2wpkh_exposed_by_witness(self, tracker):
        address = make_address("p2wpkh")
        row, raw = make_input(witness=[FAKE_SIGNATURE, COMPRESSED_KEY])

        assert tracker.on_input_resolved(address, row, raw) is True
        assert address.public_key == COMPRESSED_KEY

    def test_spend_without_key_leaves_address_unexposed(self, tracker):
        address = make_address("p2pkh")
        row, raw = make_input(push(FAKE_SIGNATURE))

        assert tracker.on_input_resolved(address, row, raw) is False
        assert address.is_public_key_exposed is False
        assert address.public_key is None
        assert row.public_key_revealed is None

    def test_stored_key_is_immutable(self, tracker):
        """Test a later spend never replaces the stored key or resets the flag."""
        address = make_address("p2pkh", exposed=True, public_key=COMPRESSED_KEY)
        row, raw = make_input(signature_script(OTHER_COMPRESSED_KEY))

        assert tracker.on_input_resolved(address, row, raw) is False
        assert address.is_public_key_exposed is True
        assert address.public_key == COMPRESSED_KEY
        # the input still records what it revealed
        assert row.public_key_revealed == OTHER_COMPRESSED_KEY

    def test_exposure_never_reverts(self, tracker):
        address = make_address("p2pkh", exposed=True, public_key=COMPRESSED_KEY)
        row, raw = make_input(b"")

        tracker.on_input_resolved(address, row, raw)
        assert address.is_public_key_exposed is True
        assert address.public_key == COMPRESSED_KEY

    @pytest.mark.parametrize("script_type", ["p2pk", "p2ms", "p2tr"])
    def test_key_revealing_types_are_noop(self, tracker, script_type):
        address = make_address(script_type, exposed=True, public_key=UNCOMPRESSED_KEY)
        row, raw = make_input(signature_script(COMPRESSED_KEY))

        assert tracker.on_input_resolved(address, row, raw) is False
        assert address.public_key == UNCOMPRESSED_KEY
        assert row.public_key_revealed is None

    def test_unknown_scripts_never_expose(self, tracker):
        address = make_address("unknown")
        row, raw = make_input(signature_script(COMPRESSED_KEY))

        assert tracker.on_input_resolved(address, row, raw) is False
        assert address.is_public_key_exposed is False
