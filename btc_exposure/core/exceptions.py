"""Error taxonomy for the ingestion engine.

Transient errors are retried with backoff. Chain-integrity errors abort the
current block and halt ingestion. Configuration errors are fatal at startup.
"""

from typing import Optional


class IndexerError(Exception):
    """Base class for all indexer errors."""
    pass


class TransientError(IndexerError):
    """Recoverable I/O failure."""
    pass


class NodeUnavailableError(TransientError):
    """Bitcoin node could not be reached."""
    pass


class StorageUnavailableError(TransientError):
    """Database write or connection failure."""
    pass


class RetryExhaustedError(IndexerError):
    """A transient failure persisted past the configured retry ceiling."""

    def __init__(self, message: str, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class BitcoinRPCError(IndexerError):
    """Bitcoin node returned an error response."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class ConfigurationError(IndexerError):
    """Invalid configuration or feed setup."""
    pass


class FeedGapError(ConfigurationError):
    """Block feed is not contiguous with the committed index."""

    def __init__(self, expected_height: int, received_height: int):
        super().__init__(
            f"Block feed gap: expected height {expected_height}, received {received_height}"
        )
        self.expected_height = expected_height
        self.received_height = received_height


class ChainIntegrityError(IndexerError):
    """The chain data contradicts the committed index.

    Carries the block height, transaction id and offending input/output index.
    """

    kind = "chain_integrity"

    def __init__(self, message: str, height: Optional[int] = None,
                 txid: Optional[str] = None, index: Optional[int] = None):
        self.height = height
        self.txid = txid
        self.index = index
        super().__init__(self._with_context(message))

    def _with_context(self, message: str) -> str:
        context = []
        if self.height is not None:
            context.append(f"height={self.height}")
        if self.txid is not None:
            context.append(f"txid={self.txid}")
        if self.index is not None:
            context.append(f"index={self.index}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "height": self.height,
            "txid": self.txid,
            "index": self.index,
            "message": str(self),
        }


class MissingOutputError(ChainIntegrityError):
    kind = "missing_output"


class DoubleSpendError(ChainIntegrityError):
    kind = "double_spend"


class ValueMismatchError(ChainIntegrityError):
    kind = "value_mismatch"


class ScriptTypeMismatchError(ChainIntegrityError):
    kind = "script_type_mismatch"


class AmbiguousTxidError(ChainIntegrityError):
    kind = "ambiguous_txid"


class ForwardSpendError(ChainIntegrityError):
    kind = "forward_spend"


class NegativeFeeError(ChainIntegrityError):
    kind = "negative_fee"


class ChainMismatchError(ChainIntegrityError):
    kind = "chain_mismatch"


class BlockParseError(IndexerError):
    """Node block JSON is missing fields or malformed."""
    pass
