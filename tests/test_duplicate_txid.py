"""
Tests for the historical duplicate transaction ids.

e3bf3d07...85fb468 was mined as a coinbase at 91722 and again at 91880;
both rows must persist, and spends must resolve by height.
"""

import pytest

from btc_exposure.core.block_ingestor import BlockIngestor
from btc_exposure.core.duplicate_txid import (
    KNOWN_DUPLICATE_TXIDS, DuplicateTxidResolver, is_known_duplicate,
)
from btc_exposure.database.models import AddressOutput, Transaction, TxidBlockIndex
from btc_exposure.models.blockchain import ResolutionKind

from conftest import ChainBuilder, COMPRESSED_KEY, OTHER_COMPRESSED_KEY, p2pk_script, p2pkh_script

DUPLICATE_TXID = "e3bf3d07d4b0375638d5f1db5255fe07ba2c4cb067cd81b84ee974b6585fb468"
COINBASE_VALUE = 50 * 100_000_000


def add_output(session, txid, height, index=0, is_spent=False):
    session.add(TxidBlockIndex(transaction_id=bytes.fromhex(txid), block_height=height))
    session.add(AddressOutput(address_id=1, transaction_id=bytes.fromhex(txid),
                              block_height=height, output_index=index,
                              value_satoshis=COINBASE_VALUE, is_spent=is_spent))
    session.flush()


class TestDuplicateTxidResolver:
    """Tests for bare txid to height resolution."""

    def test_known_ids(self):
        assert KNOWN_DUPLICATE_TXIDS[DUPLICATE_TXID] == (91722, 91880)
        assert is_known_duplicate(DUPLICATE_TXID.upper())
        assert not is_known_duplicate("00" * 32)

    def test_not_found(self, session):
        result = DuplicateTxidResolver().resolve(session, "11" * 32, 0, 100)
        assert result.kind == ResolutionKind.NOT_FOUND
        assert not result.is_resolved

    def test_unique(self, session):
        add_output(session, "11" * 32, 50)
        result = DuplicateTxidResolver().resolve(session, "11" * 32, 0, 100)

        assert result.kind == ResolutionKind.UNIQUE
        assert result.height == 50

    def test_known_duplicate_prefers_later_unspent_instance(self, session):
        add_output(session, DUPLICATE_TXID, 91722)
        add_output(session, DUPLICATE_TXID, 91880)

        result = DuplicateTxidResolver().resolve(session, DUPLICATE_TXID, 0, 91900)

        assert result.kind == ResolutionKind.KNOWN_DUPLICATE
        assert result.height == 91880
        assert result.candidates == (91880, 91722)

    def test_known_duplicate_before_second_instance(self, session):
        """Only heights at or below the spending height are candidates."""
        add_output(session, DUPLICATE_TXID, 91722)
        add_output(session, DUPLICATE_TXID, 91880)

        result = DuplicateTxidResolver().resolve(session, DUPLICATE_TXID, 0, 91800)

        assert result.kind == ResolutionKind.UNIQUE
        assert result.height == 91722

    def test_other_id_at_two_heights_is_ambiguous(self, session):
        add_output(session, "22" * 32, 10)
        add_output(session, "22" * 32, 20)

        result = DuplicateTxidResolver().resolve(session, "22" * 32, 0, 30)

        assert result.kind == ResolutionKind.AMBIGUOUS
        assert result.height is None
        assert result.candidates == (20, 10)


class TestDuplicateTxidIngestion:
    """Ingests the 91722..91881 range with the duplicate coinbase."""

    @pytest.fixture
    def ingested(self, config, db_manager):
        config.sync_start_height = 91722
        ingestor = BlockIngestor(db_manager, config)
        chain = ChainBuilder(start_height=91722)

        chain.coinbase([(p2pk_script(COMPRESSED_KEY), COINBASE_VALUE)], txid=DUPLICATE_TXID)
        ingestor.ingest_block(chain.block())
        while chain.height < 91880:
            ingestor.ingest_block(chain.block())

        chain.coinbase([(p2pk_script(OTHER_COMPRESSED_KEY), COINBASE_VALUE)], txid=DUPLICATE_TXID)
        ingestor.ingest_block(chain.block())

        chain.coinbase([(p2pkh_script(bytes(20)), COINBASE_VALUE)])
        spend = chain.spend([(DUPLICATE_TXID, 0)], [(p2pkh_script(), COINBASE_VALUE)])
        ingestor.ingest_block(chain.block())
        return spend

    def test_both_instances_persist(self, db_manager, ingested):
        assert db_manager.get_transaction_heights(DUPLICATE_TXID) == [91722, 91880]

        with db_manager.session_scope() as session:
            rows = (session.query(Transaction)
                    .filter(Transaction.transaction_id == bytes.fromhex(DUPLICATE_TXID))
                    .order_by(Transaction.block_height)
                    .all())
            assert [row.block_height for row in rows] == [91722, 91880]
            assert all(row.is_coinbase for row in rows)

    def test_spend_resolves_to_later_instance(self, db_manager, ingested):
        with db_manager.session_scope() as session:
            outputs = {
                row.block_height: row
                for row in session.query(AddressOutput)
                .filter(AddressOutput.transaction_id == bytes.fromhex(DUPLICATE_TXID))
            }
            assert outputs[91880].is_spent is True
            assert outputs[91722].is_spent is False

        spending = db_manager.get_transaction(ingested.txid, 91881)
        assert spending['fee_satoshis'] == 0
