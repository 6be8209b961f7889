"""Per-block ingestion into the exposure index."""

import time
from typing import Any, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session
import structlog

from btc_exposure.models.blockchain import BlockIngestResult, RawBlock, RawTransaction
from btc_exposure.models.config import IndexerConfig
from btc_exposure.core.address_resolver import AddressResolver
from btc_exposure.core.duplicate_txid import DuplicateTxidResolver
from btc_exposure.core.exceptions import (
    ChainIntegrityError, ChainMismatchError, FeedGapError, NegativeFeeError,
    RetryExhaustedError, StorageUnavailableError,
)
from btc_exposure.core.exposure_tracker import ExposureTracker
from btc_exposure.core.script_classifier import ScriptClassifier
from btc_exposure.core.utxo_ledger import UTXOLedger
from btc_exposure.database.manager import DatabaseManager
from btc_exposure.database.models import Block, Transaction, TxidBlockIndex
from btc_exposure.utils.bitcoin import calculate_fee
from btc_exposure.utils.time import to_naive_utc

logger = structlog.get_logger(__name__)


class BlockIngestor:
    """Applies one block at a time to the index, atomically."""

    def __init__(self, db_manager: DatabaseManager, config: Optional[IndexerConfig] = None,
                 classifier: Optional[ScriptClassifier] = None,
                 txid_resolver: Optional[DuplicateTxidResolver] = None):
        self.db_manager = db_manager
        self.config = config or db_manager.config
        self.classifier = classifier or ScriptClassifier(hrp=self.config.address_hrp)
        self.txid_resolver = txid_resolver or DuplicateTxidResolver()
        self.exposure_tracker = ExposureTracker(self.classifier)
        self.logger = logger.bind(component="block_ingestor")

        self.stats = {
            'blocks_ingested': 0,
            'transactions_ingested': 0,
            'outputs_recorded': 0,
            'inputs_resolved': 0,
            'addresses_created': 0,
            'addresses_exposed': 0,
            'commit_retries': 0,
        }

    def ingest_block(self, block: RawBlock) -> Optional[BlockIngestResult]:
        """
        Ingest one block in a single database transaction.

        Returns None when the block is already in the index with the same
        hash. Transient storage failures are retried with exponential
        backoff; chain-integrity errors abort the block and propagate.

        Raises:
            FeedGapError: block is not the next height
            ChainIntegrityError: the block contradicts committed state
            RetryExhaustedError: storage kept failing past the retry ceiling
        """
        attempts = max(1, self.config.commit_retry_attempts)
        delay = self.config.commit_retry_delay
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                result = self._ingest_once(block)
            except IntegrityError as e:
                self.logger.error("Constraint violation while ingesting block",
                                  height=block.height, error=str(e.orig))
                raise ChainIntegrityError(
                    f"Constraint violation: {e.orig}", height=block.height
                ) from e
            except (OperationalError, InterfaceError) as e:
                last_error = StorageUnavailableError(f"Storage failure: {e.orig}")
                last_error.__cause__ = e
                self.stats['commit_retries'] += 1
                self.logger.warning("Transient storage failure",
                                    height=block.height,
                                    attempt=attempt,
                                    max_attempts=attempts,
                                    error=str(e))
                if attempt < attempts:
                    time.sleep(delay)
                    delay *= 2
                continue

            if result is None:
                self.logger.debug("Block already ingested, skipping", height=block.height)
            else:
                self._update_stats(result)
                self.logger.info("Block ingested",
                                 height=result.height,
                                 tx_count=result.tx_count,
                                 outputs=result.output_count,
                                 inputs=result.input_count,
                                 new_addresses=result.new_addresses,
                                 newly_exposed=result.newly_exposed,
                                 total_fees=result.total_fees_satoshis)
            return result

        raise RetryExhaustedError(
            f"Block {block.height} could not be committed after {attempts} attempts",
            attempts=attempts,
            last_error=last_error,
        )

    def _ingest_once(self, block: RawBlock) -> Optional[BlockIngestResult]:
        with self.db_manager.session_scope() as session:
            if not self._check_position(session, block):
                return None

            resolver = AddressResolver(session)
            ledger = UTXOLedger(session, self.txid_resolver)
            result = BlockIngestResult(height=block.height,
                                       block_hash=block.block_hash.lower(),
                                       tx_count=block.tx_count)

            tx_rows = self._record_transactions(session, block)
            ledger.begin_block(block.height, [tx.txid for tx in block.transactions])

            # Pass 1: every output of every transaction
            for tx in block.transactions:
                for output in tx.outputs:
                    classified = self.classifier.classify(output.script_pubkey)
                    address = resolver.resolve(classified, block.height,
                                               txid=tx.txid, index=output.index)
                    resolver.record_receive(address)
                    ledger.record_output(address, tx.txid, block.height,
                                         output.index, output.value_satoshis)
                    result.output_count += 1
            session.flush()

            # Pass 2: inputs in transaction order
            for tx, tx_row in zip(block.transactions, tx_rows):
                if tx.is_coinbase:
                    continue
                tx_row.fee_satoshis = self._resolve_inputs(tx, block.height, resolver, ledger, result)
                result.total_fees_satoshis += tx_row.fee_satoshis

            result.new_addresses = resolver.created_count
            result.newly_exposed += resolver.exposed_on_creation
            return result

    def _check_position(self, session: Session, block: RawBlock) -> bool:
        """False when the block is already ingested; raises when it does not follow the index."""
        last = session.query(func.max(Block.block_height)).scalar()
        expected = self.config.sync_start_height if last is None else last + 1

        if last is not None and block.height <= last:
            stored = session.get(Block, block.height)
            if stored is not None:
                if stored.block_hash.hex() == block.block_hash.lower():
                    return False
                raise ChainMismatchError(
                    f"Height already ingested with hash {stored.block_hash.hex()}, "
                    f"feed delivered {block.block_hash}",
                    height=block.height,
                )

        if block.height != expected:
            raise FeedGapError(expected, block.height)

        if last is not None and block.previous_hash is not None:
            previous = session.get(Block, last)
            if previous.block_hash.hex() != block.previous_hash.lower():
                raise ChainMismatchError(
                    f"Previous hash {block.previous_hash} does not match stored "
                    f"block {previous.block_hash.hex()}",
                    height=block.height,
                )
        return True

    def _record_transactions(self, session: Session, block: RawBlock) -> List[Transaction]:
        session.add(Block(
            block_height=block.height,
            block_hash=bytes.fromhex(block.block_hash),
            block_timestamp=to_naive_utc(block.timestamp),
            transaction_count=block.tx_count,
        ))
        session.flush()

        rows = []
        for tx in block.transactions:
            row = Transaction(
                transaction_id=bytes.fromhex(tx.txid),
                block_height=block.height,
                transaction_index=tx.position,
                is_coinbase=tx.is_coinbase,
                fee_satoshis=None,
                input_count=len(tx.inputs),
                output_count=len(tx.outputs),
            )
            session.add(row)
            rows.append(row)
        session.flush()

        for tx in block.transactions:
            session.add(TxidBlockIndex(transaction_id=bytes.fromhex(tx.txid),
                                       block_height=block.height))
        return rows

    def _resolve_inputs(self, tx: RawTransaction, height: int, resolver: AddressResolver,
                        ledger: UTXOLedger, result: BlockIngestResult) -> int:
        """Resolve every input of a non-coinbase transaction and return its fee."""
        inputs_value = 0
        for raw_input in tx.inputs:
            if raw_input.is_coinbase:
                raise ChainIntegrityError("Coinbase input in a non-coinbase transaction",
                                          height=height, txid=tx.txid, index=raw_input.index)

            spend = ledger.resolve_input(
                tx.txid, height, raw_input.index,
                raw_input.previous_txid, raw_input.previous_vout,
                raw_input.prevout_value_satoshis,
            )
            address = resolver.get_by_id(spend.address_id)
            resolver.record_spend(address)
            if self.exposure_tracker.on_input_resolved(address, spend, raw_input):
                result.newly_exposed += 1

            inputs_value += spend.value_satoshis
            result.input_count += 1

        fee = calculate_fee(inputs_value, tx.total_output_satoshis)
        if fee < 0:
            raise NegativeFeeError(
                f"Outputs ({tx.total_output_satoshis}) exceed inputs ({inputs_value})",
                height=height, txid=tx.txid,
            )
        return fee

    def _update_stats(self, result: BlockIngestResult) -> None:
        self.stats['blocks_ingested'] += 1
        self.stats['transactions_ingested'] += result.tx_count
        self.stats['outputs_recorded'] += result.output_count
        self.stats['inputs_resolved'] += result.input_count
        self.stats['addresses_created'] += result.new_addresses
        self.stats['addresses_exposed'] += result.newly_exposed

    def get_processing_stats(self) -> Dict[str, Any]:
        """Get ingestion statistics."""
        return self.stats.copy()
