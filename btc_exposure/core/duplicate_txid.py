"""Height disambiguation for bare transaction ids.

A transaction is identified by (txid, block_height). The txid_block_index
table maps a bare id to the heights it occurs at and is a lookup aid only.
Two early coinbase transactions were mined twice with the same id; those
are the only ids allowed to resolve against more than one height.
"""

from typing import Dict, Tuple
from sqlalchemy.orm import Session
import structlog

from btc_exposure.models.blockchain import ResolutionKind, TxidResolution
from btc_exposure.database.models import AddressOutput, TxidBlockIndex

logger = structlog.get_logger(__name__)

# txid -> heights at which it was mined
KNOWN_DUPLICATE_TXIDS: Dict[str, Tuple[int, ...]] = {
    "d5d27987d2a3dfc724e359870c6644b40e497bdc0589a033220fe15429d88599": (91812, 91842),
    "e3bf3d07d4b0375638d5f1db5255fe07ba2c4cb067cd81b84ee974b6585fb468": (91722, 91880),
}


def is_known_duplicate(txid: str) -> bool:
    return txid.lower() in KNOWN_DUPLICATE_TXIDS


class DuplicateTxidResolver:
    """Resolves a referenced txid to the height of the transaction it means."""

    def __init__(self):
        self.logger = logger.bind(component="duplicate_txid_resolver")

    def resolve(self, session: Session, txid: str, output_index: int,
                spending_height: int) -> TxidResolution:
        """
        Resolve a bare txid seen in an input at spending_height.

        Args:
            session: Session of the block being ingested
            txid: Referenced transaction id (display hex)
            output_index: Referenced output index
            spending_height: Height of the spending block

        Only heights at or below spending_height are candidates. For the
        known duplicates the latest instance still holding an unspent output
        at output_index wins, since the later coinbase replaced the earlier
        one in the UTXO set.
        """
        txid = txid.lower()
        rows = (session.query(TxidBlockIndex.block_height)
                .filter(TxidBlockIndex.transaction_id == bytes.fromhex(txid),
                        TxidBlockIndex.block_height <= spending_height)
                .order_by(TxidBlockIndex.block_height.desc())
                .all())
        heights = tuple(row.block_height for row in rows)

        if not heights:
            return TxidResolution(kind=ResolutionKind.NOT_FOUND, txid=txid)

        if len(heights) == 1:
            return TxidResolution(kind=ResolutionKind.UNIQUE, txid=txid,
                                  height=heights[0], candidates=heights)

        if not is_known_duplicate(txid):
            self.logger.error("Transaction id found at several heights",
                              txid=txid, heights=list(heights))
            return TxidResolution(kind=ResolutionKind.AMBIGUOUS, txid=txid,
                                  candidates=heights)

        chosen = heights[0]
        for height in heights:
            unspent = (session.query(AddressOutput.output_id)
                       .filter(AddressOutput.transaction_id == bytes.fromhex(txid),
                               AddressOutput.block_height == height,
                               AddressOutput.output_index == output_index,
                               AddressOutput.is_spent.is_(False))
                       .first())
            if unspent is not None:
                chosen = height
                break

        self.logger.info("Resolved known duplicate transaction id",
                         txid=txid, height=chosen, candidates=list(heights))
        return TxidResolution(kind=ResolutionKind.KNOWN_DUPLICATE, txid=txid,
                              height=chosen, candidates=heights)
