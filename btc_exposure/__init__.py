"""
Bitcoin Public Key Exposure Indexer

Ingests blocks from a Bitcoin Core node and builds a relational index of
addresses, their outputs and inputs, and whether each address's public key
has been revealed on-chain.
"""

__version__ = "1.0.0"
__description__ = "Public key exposure index for Bitcoin built from Bitcoin Core blocks"

from btc_exposure.core.block_ingestor import BlockIngestor
from btc_exposure.core.indexer import Indexer
from btc_exposure.core.script_classifier import ScriptClassifier
from btc_exposure.database.manager import DatabaseManager
from btc_exposure.models.config import IndexerConfig

__all__ = [
    "BlockIngestor",
    "Indexer",
    "ScriptClassifier",
    "DatabaseManager",
    "IndexerConfig",
]
