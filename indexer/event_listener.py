import logging
import threading
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from config_loader import ConfigError, IndexerConfig
from event_decoder import EventDecodeError, EventDecoder
from event_publisher import EventPublisher
from event_store import EventStore
from log_fetcher import LogFetcher
from metrics import (
    CHAIN_HEAD,
    ERROR_COUNT,
    EVENTS_DROPPED,
    EVENTS_STORED,
    STORED_EVENTS,
    SYNC_CURSOR,
    PollTimer,
)
from models import BlockchainEvent

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    INITIALIZING = 'initializing'
    IDLE = 'idle'
    FETCHING = 'fetching'
    DECODING = 'decoding'
    STORING = 'storing'
    PUBLISHING = 'publishing'
    STOPPED = 'stopped'


class EventListener:
    """Poll the tracked contracts for new logs and feed the store and the stream."""

    def __init__(
        self,
        config: IndexerConfig,
        web3_client: Any,
        fetcher: LogFetcher,
        decoder: EventDecoder,
        store: EventStore,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        """
        Initialize the event listener.

        The listener is the only writer of the store and the sync cursor.
        """
        self.config = config
        self.web3_client = web3_client
        self.fetcher = fetcher
        self.decoder = decoder
        self.store = store
        self.publisher = publisher
        self.cursor: Optional[int] = None
        self.chain_head: Optional[int] = None
        self.state = SyncState.INITIALIZING
        self.shutdown_event = threading.Event()

    def initialize(self) -> int:
        """
        Check the provider's chain and compute the starting cursor.

        Raises:
            ConfigError: if the provider serves a different chain
        """
        chain_id = self.web3_client.get_chain_id()
        if chain_id != self.config.chain_id:
            raise ConfigError(f"RPC endpoint serves chain {chain_id}, expected {self.config.chain_id}")

        head = self.web3_client.get_block_number()
        self._set_chain_head(head)
        self._set_cursor(max(self.config.start_block, head - self.config.initial_lookback_blocks, 0))
        self.state = SyncState.IDLE
        logger.info(f"Indexer initialized at block {self.cursor} (chain head {head})")
        return self.cursor

    def poll_once(self) -> int:
        """
        Run one sync cycle.

        Returns:
            int: Number of events newly stored during the cycle
        """
        if self.cursor is None:
            self.initialize()

        head = self.web3_client.get_block_number()
        self._set_chain_head(head)
        if head <= self.cursor:
            self.state = SyncState.IDLE
            return 0

        from_block = max(self.cursor + 1 - self.config.reorg_rescan_blocks, 0)

        self.state = SyncState.FETCHING
        result = self.fetcher.fetch(from_block, head, self.config.addresses)

        self.state = SyncState.DECODING
        events = self.decode_logs(result.logs)

        self.state = SyncState.STORING
        stored = self.store_events(events)

        self.state = SyncState.PUBLISHING
        if self.publisher is not None:
            for event in stored:
                self.publisher.publish(event)

        if result.complete:
            self._set_cursor(head)
        else:
            logger.warning(
                f"Blocks {result.failed_range[0]}-{result.to_block} not fetched, "
                f"will retry from block {max(result.covered_to, self.cursor) + 1} next cycle"
            )
            if result.covered_to > self.cursor:
                self._set_cursor(result.covered_to)

        if stored:
            logger.info(f"Indexed {len(stored)} event(s) from block {from_block} to {result.covered_to}")
        self.state = SyncState.IDLE
        return len(stored)

    def decode_logs(self, logs: Sequence[Any]) -> List[BlockchainEvent]:
        """Decode a batch, dropping untracked logs and skipping malformed ones."""
        events: List[BlockchainEvent] = []
        for log in logs:
            try:
                event = self.decoder.decode(log)
            except EventDecodeError as e:
                logger.warning(f"Skipping log: {e}")
                EVENTS_DROPPED.labels(reason='decode_error').inc()
                continue

            if event is None:
                EVENTS_DROPPED.labels(reason='untracked').inc()
                continue
            events.append(event)

        events.sort(key=lambda event: event.position)
        return events

    def store_events(self, events: Sequence[BlockchainEvent]) -> List[BlockchainEvent]:
        stored = []
        for event in events:
            if self.store.append(event):
                stored.append(event)
                EVENTS_STORED.labels(contract_tag=event.contract_tag, event_type=event.event_type).inc()
            elif event.id in self.store:
                EVENTS_DROPPED.labels(reason='duplicate').inc()
            else:
                # Full store, and older than everything it retains
                EVENTS_DROPPED.labels(reason='too_old').inc()
        STORED_EVENTS.set(len(self.store))
        return stored

    def tick(self) -> None:
        """Run one cycle, logging instead of raising on transient errors."""
        with PollTimer():
            try:
                self.poll_once()
            except ConfigError as e:
                logger.critical(f"Stopping indexer: {e}")
                ERROR_COUNT.labels(error_type=type(e).__name__).inc()
                self.request_shutdown()
            except Exception as e:
                logger.error(f"Indexer sync error: {e}")
                logger.error(traceback.format_exc())
                ERROR_COUNT.labels(error_type=type(e).__name__).inc()
                self.state = SyncState.INITIALIZING if self.cursor is None else SyncState.IDLE

    def listen(self) -> None:
        """
        Poll until shutdown is requested.

        Each tick covers everything from the cursor up to the current chain head,
        then the loop waits poll_interval_ms before the next one.
        """
        logger.info(
            f"Listening for events on {len(self.config.contracts)} contracts "
            f"every {self.config.poll_interval_ms}ms"
        )
        while not self.shutdown_event.is_set():
            self.tick()
            self.shutdown_event.wait(self.config.poll_interval_ms / 1000.0)

        self.state = SyncState.STOPPED
        logger.info("Event listener stopped")

    def request_shutdown(self) -> None:
        """Signal the listener to stop after the current tick."""
        logger.info("Shutdown requested")
        self.shutdown_event.set()

    def status(self) -> Dict[str, Any]:
        return {
            'chainId': self.config.chain_id,
            'rpcUrl': self.config.rpc_url,
            'trackedContracts': [contract.to_dict() for contract in self.config.contracts],
            'lastSyncedBlock': self.cursor,
            'chainHead': self.chain_head,
            'state': self.state.value,
            'totalEvents': len(self.store),
            'subscribers': self.publisher.subscriber_count if self.publisher is not None else 0,
            'pollIntervalMs': self.config.poll_interval_ms,
        }

    def _set_cursor(self, block_number: int) -> None:
        self.cursor = block_number
        SYNC_CURSOR.set(block_number)

    def _set_chain_head(self, block_number: int) -> None:
        self.chain_head = block_number
        CHAIN_HEAD.set(block_number)
