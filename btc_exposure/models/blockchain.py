"""Blockchain data models for the exposure index."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any, Tuple
from dataclasses import dataclass, field


class ScriptType(str, Enum):
    """Closed script type taxonomy, mirrored by the script_types table."""
    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2PK = "p2pk"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"
    P2MS = "p2ms"
    NON_STANDARD = "non-standard"
    UNKNOWN = "unknown"


SCRIPT_TYPE_DESCRIPTIONS = {
    ScriptType.P2PKH: "Pay to Public Key Hash - Bitcoin addresses starting with 1",
    ScriptType.P2SH: "Pay to Script Hash - Multisig and complex script addresses starting with 3",
    ScriptType.P2PK: "Pay to Public Key - Early Bitcoin format that exposes public keys",
    ScriptType.P2WPKH: "Pay to Witness Public Key Hash - SegWit PKH addresses starting with bc1q",
    ScriptType.P2WSH: "Pay to Witness Script Hash - SegWit script addresses starting with bc1q",
    ScriptType.P2TR: "Pay to Taproot - Taproot addresses starting with bc1p",
    ScriptType.P2MS: "Pay to MultiSig - Legacy (raw) multisig scripts",
    ScriptType.NON_STANDARD: "Non-standard scripts with recognisable patterns",
    ScriptType.UNKNOWN: "Completely unknown script pattern",
}

# Types whose output script alone reveals a public key
KEY_REVEALING_TYPES = frozenset({ScriptType.P2PK, ScriptType.P2MS, ScriptType.P2TR})


@dataclass(frozen=True)
class ClassifiedScript:
    """Result of classifying one scriptPubKey."""
    script_type: ScriptType
    address: str
    public_key: Optional[bytes] = None
    extra_data: Optional[Dict[str, Any]] = None

    @property
    def exposes_public_key(self) -> bool:
        return self.public_key is not None


@dataclass
class RawOutput:
    """Transaction output as delivered by the block feed."""
    index: int
    value_satoshis: int
    script_pubkey: bytes


@dataclass
class RawInput:
    """Transaction input as delivered by the block feed."""
    index: int
    previous_txid: Optional[str]
    previous_vout: Optional[int]
    script_sig: bytes = b""
    witness: List[bytes] = field(default_factory=list)
    prevout_value_satoshis: Optional[int] = None

    @property
    def is_coinbase(self) -> bool:
        return self.previous_txid is None


@dataclass
class RawTransaction:
    """Transaction with its ordered inputs and outputs."""
    txid: str
    position: int
    inputs: List[RawInput]
    outputs: List[RawOutput]

    @property
    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].is_coinbase

    @property
    def total_output_satoshis(self) -> int:
        return sum(output.value_satoshis for output in self.outputs)


@dataclass
class RawBlock:
    """One fully fetched block from the node."""
    height: int
    block_hash: str
    timestamp: datetime
    transactions: List[RawTransaction]
    previous_hash: Optional[str] = None

    @property
    def tx_count(self) -> int:
        return len(self.transactions)


class ResolutionKind(str, Enum):
    """Outcome of resolving a bare transaction id to a block height."""
    UNIQUE = "unique"
    KNOWN_DUPLICATE = "known_duplicate"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class TxidResolution:
    """Tagged result of a txid to height lookup."""
    kind: ResolutionKind
    txid: str
    height: Optional[int] = None
    candidates: Tuple[int, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.height is not None


@dataclass
class BlockIngestResult:
    """Summary of one committed block."""
    height: int
    block_hash: str
    tx_count: int
    output_count: int = 0
    input_count: int = 0
    new_addresses: int = 0
    newly_exposed: int = 0
    total_fees_satoshis: int = 0
