"""Database management and operations."""

from btc_exposure.database.manager import DatabaseManager
from btc_exposure.database.models import (
    Base, ScriptTypeRecord, Block, Transaction, TxidBlockIndex, Address,
    AddressOutput, AddressInput,
)

__all__ = [
    "DatabaseManager",
    "Base",
    "ScriptTypeRecord",
    "Block",
    "Transaction",
    "TxidBlockIndex",
    "Address",
    "AddressOutput",
    "AddressInput",
]
