"""Spent/unspent state of every output and input-to-output linking."""

from typing import Dict, Optional, Sequence
from sqlalchemy.orm import Session
import structlog

from btc_exposure.models.blockchain import ResolutionKind
from btc_exposure.database.models import Address, AddressInput, AddressOutput
from btc_exposure.core.duplicate_txid import DuplicateTxidResolver
from btc_exposure.core.exceptions import (
    AmbiguousTxidError, DoubleSpendError, ForwardSpendError, MissingOutputError,
    ValueMismatchError,
)

logger = structlog.get_logger(__name__)


class UTXOLedger:
    """
    Output ledger bound to one block's session.

    Outputs recorded earlier in the block are visible to resolve_input once
    the session has been flushed. The block's transaction order is
    registered up front so spends of same-block outputs can be checked
    against position.
    """

    def __init__(self, session: Session, txid_resolver: Optional[DuplicateTxidResolver] = None):
        self.session = session
        self.txid_resolver = txid_resolver or DuplicateTxidResolver()
        self.logger = logger.bind(component="utxo_ledger")
        self._block_height: Optional[int] = None
        self._block_positions: Dict[str, int] = {}

    def begin_block(self, height: int, txids: Sequence[str]) -> None:
        """Register the ordered transaction ids of the block being ingested."""
        self._block_height = height
        self._block_positions = {txid.lower(): position for position, txid in enumerate(txids)}

    def record_output(self, owner_address: Address, tx_id: str, height: int,
                      output_index: int, value: int) -> AddressOutput:
        """Create an unspent output owned by owner_address."""
        output = AddressOutput(
            address_id=owner_address.address_id,
            transaction_id=bytes.fromhex(tx_id),
            block_height=height,
            output_index=output_index,
            value_satoshis=value,
            is_spent=False,
        )
        self.session.add(output)
        return output

    def find_output(self, tx_id: str, height: int, output_index: int) -> Optional[AddressOutput]:
        """Look up an output by its (txid, height, index) triple."""
        return (self.session.query(AddressOutput)
                .filter_by(transaction_id=bytes.fromhex(tx_id),
                           block_height=height,
                           output_index=output_index)
                .first())

    def resolve_input(self, tx_id: str, height: int, input_index: int,
                      referenced_tx_id: str, referenced_output_index: int,
                      value: Optional[int] = None) -> AddressInput:
        """
        Spend the referenced output and create the input that consumes it.

        Args:
            tx_id: Spending transaction id
            height: Spending block height
            input_index: Position of the input in the spending transaction
            referenced_tx_id: Txid named by the input's outpoint
            referenced_output_index: Output index named by the outpoint
            value: Claimed spend value, None when the feed does not carry it

        Returns:
            The new AddressInput row, already linked to the spent output.
        """
        referenced_tx_id = referenced_tx_id.lower()
        context = dict(height=height, txid=tx_id, index=input_index)

        resolution = self.txid_resolver.resolve(
            self.session, referenced_tx_id, referenced_output_index, height
        )
        if resolution.kind == ResolutionKind.AMBIGUOUS:
            raise AmbiguousTxidError(
                f"Outpoint {referenced_tx_id}:{referenced_output_index} matches heights "
                f"{list(resolution.candidates)}",
                **context,
            )
        if resolution.kind == ResolutionKind.NOT_FOUND:
            raise MissingOutputError(
                f"Outpoint {referenced_tx_id}:{referenced_output_index} references an unknown transaction",
                **context,
            )

        if resolution.height == self._block_height:
            self._check_same_block_order(tx_id, referenced_tx_id, referenced_output_index, context)

        output = self.find_output(referenced_tx_id, resolution.height, referenced_output_index)
        if output is None:
            raise MissingOutputError(
                f"Output {referenced_tx_id}:{referenced_output_index} at height "
                f"{resolution.height} does not exist",
                **context,
            )
        if output.is_spent:
            raise DoubleSpendError(
                f"Output {referenced_tx_id}:{referenced_output_index} at height "
                f"{resolution.height} is already spent",
                **context,
            )
        if value is not None and value != output.value_satoshis:
            raise ValueMismatchError(
                f"Input claims {value} satoshis, output {referenced_tx_id}:"
                f"{referenced_output_index} holds {output.value_satoshis}",
                **context,
            )

        spend = AddressInput(
            address_id=output.address_id,
            transaction_id=bytes.fromhex(tx_id),
            block_height=height,
            input_index=input_index,
            spent_output_id=output.output_id,
            value_satoshis=output.value_satoshis,
        )
        self.session.add(spend)
        output.is_spent = True
        self.session.flush()  # assigns input_id
        output.spending_input_id = spend.input_id

        return spend

    def _check_same_block_order(self, tx_id: str, referenced_tx_id: str,
                                referenced_output_index: int, context: dict) -> None:
        spender = self._block_positions.get(tx_id.lower())
        creator = self._block_positions.get(referenced_tx_id)
        if spender is None or creator is None:
            return
        if creator >= spender:
            raise ForwardSpendError(
                f"Transaction at position {spender} spends {referenced_tx_id}:"
                f"{referenced_output_index} created at position {creator}",
                **context,
            )
