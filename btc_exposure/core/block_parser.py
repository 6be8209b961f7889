"""Node block JSON parsing."""

from typing import Any, Dict, Optional
import structlog

from btc_exposure.models.blockchain import RawBlock, RawInput, RawOutput, RawTransaction
from btc_exposure.core.exceptions import BlockParseError
from btc_exposure.utils.bitcoin import btc_to_satoshi
from btc_exposure.utils.time import format_block_time

logger = structlog.get_logger(__name__)


class BlockParser:
    """Turns getblock (verbosity 2/3) or REST block JSON into a RawBlock."""

    def __init__(self):
        self.logger = logger.bind(component="block_parser")

    def parse_block(self, block_data: Dict[str, Any]) -> RawBlock:
        """
        Parse one block.

        Amounts are expected as Decimal (the node client decodes JSON floats
        that way) and are converted to satoshis exactly.
        """
        try:
            height = int(block_data['height'])
            block_hash = block_data['hash']
            timestamp = format_block_time(int(block_data['time']))
            tx_list = block_data['tx']
        except (KeyError, TypeError, ValueError) as e:
            raise BlockParseError(f"Malformed block header: {e}") from e

        transactions = []
        for position, tx_data in enumerate(tx_list):
            if not isinstance(tx_data, dict):
                raise BlockParseError(
                    f"Block {height} carries transaction ids only, verbosity 2 or higher is required"
                )
            transactions.append(self.parse_transaction(tx_data, position))

        self.logger.debug("Parsed block", height=height, tx_count=len(transactions))

        return RawBlock(
            height=height,
            block_hash=block_hash.lower(),
            timestamp=timestamp,
            transactions=transactions,
            previous_hash=block_data.get('previousblockhash'),
        )

    def parse_transaction(self, tx_data: Dict[str, Any], position: int) -> RawTransaction:
        """Parse a single transaction at its position in the block."""
        try:
            txid = tx_data['txid'].lower()
            inputs = [self._parse_input(vin, index)
                      for index, vin in enumerate(tx_data.get('vin', []))]
            outputs = [self._parse_output(vout, index)
                       for index, vout in enumerate(tx_data.get('vout', []))]
        except (KeyError, TypeError, ValueError) as e:
            raise BlockParseError(
                f"Malformed transaction at position {position}: {e}"
            ) from e

        return RawTransaction(txid=txid, position=position, inputs=inputs, outputs=outputs)

    def _parse_input(self, vin: Dict[str, Any], index: int) -> RawInput:
        witness = [bytes.fromhex(item) for item in vin.get('txinwitness', [])]

        if 'coinbase' in vin:
            return RawInput(
                index=index,
                previous_txid=None,
                previous_vout=None,
                script_sig=bytes.fromhex(vin['coinbase']),
                witness=witness,
            )

        # verbosity 3 and recent REST responses carry the spent output
        prevout_value: Optional[int] = None
        prevout = vin.get('prevout')
        if prevout is not None and 'value' in prevout:
            prevout_value = btc_to_satoshi(prevout['value'])

        script_sig = vin.get('scriptSig') or {}
        return RawInput(
            index=index,
            previous_txid=vin['txid'].lower(),
            previous_vout=int(vin['vout']),
            script_sig=bytes.fromhex(script_sig.get('hex', '')),
            witness=witness,
            prevout_value_satoshis=prevout_value,
        )

    def _parse_output(self, vout: Dict[str, Any], index: int) -> RawOutput:
        script_pubkey = vout.get('scriptPubKey') or {}
        return RawOutput(
            index=int(vout.get('n', index)),
            value_satoshis=btc_to_satoshi(vout['value']),
            script_pubkey=bytes.fromhex(script_pubkey.get('hex', '')),
        )
