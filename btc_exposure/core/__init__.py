"""Ingestion engine components."""

from btc_exposure.core.script_classifier import ScriptClassifier
from btc_exposure.core.address_resolver import AddressResolver
from btc_exposure.core.utxo_ledger import UTXOLedger
from btc_exposure.core.exposure_tracker import ExposureTracker
from btc_exposure.core.duplicate_txid import DuplicateTxidResolver
from btc_exposure.core.block_ingestor import BlockIngestor

__all__ = [
    "ScriptClassifier",
    "AddressResolver",
    "UTXOLedger",
    "ExposureTracker",
    "DuplicateTxidResolver",
    "BlockIngestor",
]
