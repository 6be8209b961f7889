"""Pytest configuration and fixtures for exposure indexer tests."""

import hashlib
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytest

from btc_exposure.models.blockchain import RawBlock, RawInput, RawOutput, RawTransaction
from btc_exposure.models.config import IndexerConfig
from btc_exposure.database.manager import DatabaseManager


# ============================================================================
# KEYS AND SCRIPTS
# ============================================================================

# secp256k1 generator point, compressed and uncompressed
COMPRESSED_KEY = bytes.fromhex(
    "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
)
UNCOMPRESSED_KEY = bytes.fromhex(
    "0479be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
    "483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8"
)
OTHER_COMPRESSED_KEY = bytes.fromhex(
    "02c6047f9441ed7d6d3045406e95c07cd85c778e4b8cef3ca7abac09b95c709ee5"
)
# hash160 of COMPRESSED_KEY
KEY_HASH = bytes.fromhex("751e76e8199196d454941c45d1b3a323f1433bd6")

FAKE_SIGNATURE = b"\x30" + bytes(70)


def push(data: bytes) -> bytes:
    """Minimal push for data shorter than OP_PUSHDATA1."""
    assert len(data) < 0x4c
    return bytes([len(data)]) + data


def p2pkh_script(key_hash: bytes = KEY_HASH) -> bytes:
    return b"\x76\xa9\x14" + key_hash + b"\x88\xac"


def p2sh_script(script_hash: bytes) -> bytes:
    return b"\xa9\x14" + script_hash + b"\x87"


def p2pk_script(key: bytes = COMPRESSED_KEY) -> bytes:
    return push(key) + b"\xac"


def p2wpkh_script(key_hash: bytes = KEY_HASH) -> bytes:
    return b"\x00\x14" + key_hash


def p2tr_script(output_key: bytes) -> bytes:
    return b"\x51\x20" + output_key


def multisig_script(m: int, keys: List[bytes]) -> bytes:
    return bytes([0x50 + m]) + b"".join(push(k) for k in keys) + bytes([0x50 + len(keys), 0xae])


def signature_script(key: bytes = COMPRESSED_KEY) -> bytes:
    """<sig> <pubkey> scriptSig."""
    return push(FAKE_SIGNATURE) + push(key)


# ============================================================================
# CHAIN BUILDER
# ============================================================================

class ChainBuilder:
    """Builds a deterministic sequence of contiguous RawBlocks."""

    def __init__(self, start_height: int = 0):
        self.height = start_height
        self.previous_hash: Optional[str] = None
        self._tx_counter = 0
        self._pending: List[RawTransaction] = []

    def _next_txid(self) -> str:
        self._tx_counter += 1
        return hashlib.sha256(f"tx-{self._tx_counter}".encode()).hexdigest()

    def coinbase(self, outputs: List[Tuple[bytes, int]], txid: Optional[str] = None) -> RawTransaction:
        """Start a block with a coinbase paying the given (script, value) outputs."""
        tx = RawTransaction(
            txid=txid or self._next_txid(),
            position=len(self._pending),
            inputs=[RawInput(index=0, previous_txid=None, previous_vout=None,
                             script_sig=b"\x03\x01\x02\x03")],
            outputs=[RawOutput(index=i, value_satoshis=value, script_pubkey=script)
                     for i, (script, value) in enumerate(outputs)],
        )
        self._pending.append(tx)
        return tx

    def spend(self, spends: List[Tuple[str, int]], outputs: List[Tuple[bytes, int]],
              script_sig: bytes = b"", witness: Optional[List[bytes]] = None,
              prevout_values: Optional[List[int]] = None) -> RawTransaction:
        """Add a transaction spending (txid, vout) outpoints."""
        inputs = []
        for i, (txid, vout) in enumerate(spends):
            inputs.append(RawInput(
                index=i,
                previous_txid=txid,
                previous_vout=vout,
                script_sig=script_sig,
                witness=list(witness or []),
                prevout_value_satoshis=prevout_values[i] if prevout_values else None,
            ))
        tx = RawTransaction(
            txid=self._next_txid(),
            position=len(self._pending),
            inputs=inputs,
            outputs=[RawOutput(index=i, value_satoshis=value, script_pubkey=script)
                     for i, (script, value) in enumerate(outputs)],
        )
        self._pending.append(tx)
        return tx

    def block(self) -> RawBlock:
        """Close the pending transactions into the next block."""
        if not self._pending:
            self.coinbase([(p2pkh_script(bytes(20)), 50 * 100_000_000)])

        block = RawBlock(
            height=self.height,
            block_hash=hashlib.sha256(f"block-{self.height}".encode()).hexdigest(),
            timestamp=datetime(2009, 1, 3, 18, 15, 5) + timedelta(minutes=10 * self.height),
            transactions=self._pending,
            previous_hash=self.previous_hash,
        )
        self._pending = []
        self.previous_hash = block.block_hash
        self.height += 1
        return block


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def config():
    """In-memory SQLite configuration with retries that never sleep."""
    return IndexerConfig(
        database_url="sqlite://",
        sync_start_height=0,
        commit_retry_attempts=3,
        commit_retry_delay=0,
        fetch_retry_delay=0,
        fetch_retry_max_delay=0,
        retry_pause_seconds=0,
        log_level="DEBUG",
    )


@pytest.fixture
def db_manager(config):
    """Database manager with the schema created and seeded."""
    manager = DatabaseManager(config)
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def session(db_manager):
    """Bare session for component tests; rolled back afterwards."""
    session = db_manager.get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def chain():
    return ChainBuilder()
