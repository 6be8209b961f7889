"""Data models and configuration."""

from btc_exposure.models.config import IndexerConfig
from btc_exposure.models.blockchain import (
    ScriptType,
    ClassifiedScript,
    RawBlock,
    RawTransaction,
    RawInput,
    RawOutput,
    ResolutionKind,
    TxidResolution,
    BlockIngestResult,
)

__all__ = [
    "IndexerConfig",
    "ScriptType",
    "ClassifiedScript",
    "RawBlock",
    "RawTransaction",
    "RawInput",
    "RawOutput",
    "ResolutionKind",
    "TxidResolution",
    "BlockIngestResult",
]
