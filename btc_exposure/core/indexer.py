"""Long-running indexer: catch-up and continuous sync."""

import time
from typing import Any, Callable, Dict, Optional
import structlog

from btc_exposure.models.blockchain import BlockIngestResult
from btc_exposure.models.config import IndexerConfig
from btc_exposure.core.block_feed import BlockFeed
from btc_exposure.core.block_ingestor import BlockIngestor
from btc_exposure.core.exceptions import (
    BitcoinRPCError, ChainIntegrityError, ConfigurationError, NodeUnavailableError,
    RetryExhaustedError,
)
from btc_exposure.core.node_client import BitcoinNodeClient
from btc_exposure.database.manager import DatabaseManager
from btc_exposure.utils.time import get_current_utc

logger = structlog.get_logger(__name__)

# Node connection backoff on startup
CONNECT_RETRY_DELAY = 5.0
CONNECT_RETRY_MAX_DELAY = 300.0


class Indexer:
    """Feeds blocks from the node into the ingestor, strictly in height order."""

    def __init__(self, config: IndexerConfig,
                 db_manager: Optional[DatabaseManager] = None,
                 node_client: Optional[BitcoinNodeClient] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.logger = logger.bind(component="indexer")
        self._sleep = sleep
        self._stop_requested = False

        self.node_client = node_client or BitcoinNodeClient(config)
        self.db_manager = db_manager or DatabaseManager(config)
        self.feed = BlockFeed(self.node_client, config, sleep=sleep)
        self.ingestor = BlockIngestor(self.db_manager, config)

        self.logger.info("Indexer initialized", transport=config.bitcoin_transport)

    def initialize(self) -> bool:
        """Verify the database and node, and create tables."""
        self.logger.info("Initializing indexer...")

        if not self.db_manager.test_connection():
            self.logger.error("Failed to connect to database")
            return False

        self.db_manager.create_tables()

        if not self.node_client.test_connection():
            self.logger.error("Failed to connect to Bitcoin node")
            return False

        self.logger.info("Indexer initialized successfully")
        return True

    def wait_for_node(self) -> None:
        """Block until the node answers, backing off between attempts."""
        delay = CONNECT_RETRY_DELAY
        while not self.node_client.test_connection():
            self.logger.warning("Bitcoin node unavailable, retrying", retry_in=delay)
            self._sleep(delay)
            delay = min(delay * 2, CONNECT_RETRY_MAX_DELAY)

    def next_height(self) -> int:
        """Height the index expects next."""
        last = self.db_manager.get_last_ingested_height()
        return self.config.sync_start_height if last is None else last + 1

    def get_sync_status(self) -> Dict[str, Any]:
        """Get current synchronization status."""
        last = self.db_manager.get_last_ingested_height()
        status: Dict[str, Any] = {
            'last_ingested_height': last,
            'next_height': self.next_height(),
            'checked_at': get_current_utc().isoformat(),
        }

        try:
            tip = self.node_client.get_block_count()
        except (NodeUnavailableError, BitcoinRPCError) as e:
            self.logger.warning("Node unavailable for status", error=str(e))
            status.update({'node_height': None, 'blocks_behind': None})
            return status

        done = 0 if last is None else last + 1 - self.config.sync_start_height
        total = tip + 1 - self.config.sync_start_height
        status.update({
            'node_height': tip,
            'blocks_behind': max(0, tip - self.next_height() + 1),
            'sync_progress': (done / total * 100) if total > 0 else 100.0,
        })
        return status

    def ingest_height(self, height: int) -> Optional[BlockIngestResult]:
        """Fetch and ingest one block."""
        block = self.feed.fetch_block(height)
        return self.ingestor.ingest_block(block)

    def sync(self, end_height: Optional[int] = None) -> int:
        """
        Ingest every block from the next expected height up to end_height.

        Args:
            end_height: Last height to ingest (if None, sync to current tip)

        Returns:
            Number of blocks ingested.

        Chain-integrity, feed-gap and retry-exhausted errors propagate; the
        index never skips a block.
        """
        start_height = self.next_height()
        if end_height is None:
            end_height = self.feed.get_tip_height()

        if start_height > end_height:
            self.logger.debug("Index is at tip", next_height=start_height, tip=end_height)
            return 0

        total = end_height - start_height + 1
        self.logger.info("Starting block synchronization",
                         start_height=start_height,
                         end_height=end_height,
                         total_blocks=total)

        ingested = 0
        for block in self.feed.iter_blocks(start_height, end_height):
            if self._stop_requested:
                break
            if self.ingestor.ingest_block(block) is not None:
                ingested += 1

            if ingested and ingested % 1000 == 0:
                self.logger.info("Sync progress",
                                 height=block.height,
                                 progress=f"{ingested / total * 100:.1f}%")

        self.logger.info("Block synchronization completed",
                         start_height=start_height,
                         end_height=end_height,
                         blocks_ingested=ingested)
        return ingested

    def continuous_sync(self, poll_interval: Optional[int] = None) -> None:
        """
        Follow the node tip until stopped.

        Retry exhaustion pauses for retry_pause_seconds and resumes from the
        same height. Chain-integrity and configuration errors halt the loop.
        """
        if poll_interval is None:
            poll_interval = self.config.sync_poll_interval

        self.logger.info("Starting continuous synchronization", poll_interval=poll_interval)
        self.wait_for_node()

        try:
            while not self._stop_requested:
                try:
                    self.sync()
                except RetryExhaustedError as e:
                    self.logger.error("Retries exhausted, pausing ingestion",
                                      attempts=e.attempts,
                                      error=str(e),
                                      pause_seconds=self.config.retry_pause_seconds)
                    self._sleep(self.config.retry_pause_seconds)
                    continue
                except ChainIntegrityError as e:
                    self.logger.critical("Chain integrity violation, halting", **e.to_dict())
                    raise
                except ConfigurationError as e:
                    self.logger.critical("Configuration error, halting", error=str(e))
                    raise

                if self._stop_requested:
                    break
                self._sleep(poll_interval)

        except KeyboardInterrupt:
            self.logger.info("Continuous sync interrupted by user")

    def stop(self) -> None:
        """Ask a running sync loop to stop after the current block."""
        self._stop_requested = True

    def get_statistics(self) -> Dict[str, Any]:
        """Get indexer statistics."""
        return {
            'sync_status': self.get_sync_status(),
            'processing_stats': self.ingestor.get_processing_stats(),
        }

    def close(self):
        """Close all connections and cleanup."""
        self.logger.info("Shutting down indexer...")
        self.node_client.close()
        self.db_manager.close()
        self.logger.info("Indexer shutdown complete")
