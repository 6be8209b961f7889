"""Sequential, retrying block feed."""

import time
from typing import Callable, Iterator, Optional
import structlog

from btc_exposure.models.blockchain import RawBlock
from btc_exposure.models.config import IndexerConfig
from btc_exposure.core.block_parser import BlockParser
from btc_exposure.core.exceptions import (
    BitcoinRPCError, NodeUnavailableError, RetryExhaustedError,
)
from btc_exposure.core.node_client import BitcoinNodeClient

logger = structlog.get_logger(__name__)


class BlockFeed:
    """Yields parsed blocks in height order.

    Node failures are retried with exponential backoff capped at
    fetch_retry_max_delay. With max_attempts=None the feed retries forever.
    """

    def __init__(self, client: BitcoinNodeClient, config: IndexerConfig,
                 parser: Optional[BlockParser] = None,
                 max_attempts: Optional[int] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.config = config
        self.parser = parser or BlockParser()
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.logger = logger.bind(component="block_feed")

    def _with_retry(self, operation: str, func, **context):
        delay = self.config.fetch_retry_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except (NodeUnavailableError, BitcoinRPCError) as e:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise RetryExhaustedError(
                        f"{operation} failed after {attempt} attempts: {e}",
                        attempts=attempt,
                        last_error=e,
                    ) from e

                self.logger.warning("Node request failed, retrying",
                                    operation=operation,
                                    attempt=attempt,
                                    retry_in=delay,
                                    error=str(e),
                                    **context)
                self._sleep(delay)
                delay = min(delay * 2, self.config.fetch_retry_max_delay)

    def get_tip_height(self) -> int:
        """Current node height."""
        return self._with_retry("get_block_count", self.client.get_block_count)

    def fetch_block(self, height: int) -> RawBlock:
        """Fetch and parse the block at height."""
        block_data = self._with_retry(
            "get_block", lambda: self.client.get_block_by_height(height), height=height
        )
        block = self.parser.parse_block(block_data)
        if block.height != height:
            self.logger.warning("Node returned unexpected height",
                                requested=height, received=block.height)
        return block

    def iter_blocks(self, start_height: int, end_height: int) -> Iterator[RawBlock]:
        """Yield blocks start_height..end_height inclusive."""
        for height in range(start_height, end_height + 1):
            yield self.fetch_block(height)
