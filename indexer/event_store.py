import bisect
import logging
import threading
from typing import Dict, List, Optional, Tuple

from models import BlockchainEvent

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000


class EventStore:
    """
    Bounded in-memory collection of canonical events.

    Events are kept in ascending (blockNumber, logIndex) order and deduplicated
    by id. Once more than max_events are held, the oldest are evicted. Every
    operation runs under one lock, so readers never see a half-applied append.
    """

    def __init__(self, max_events: int) -> None:
        if max_events < 1:
            raise ValueError("max_events must be >= 1")
        self.max_events = max_events
        self._lock = threading.Lock()
        self._events: List[BlockchainEvent] = []
        self._positions: List[Tuple[int, int, str]] = []
        self._ids: Dict[str, BlockchainEvent] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __contains__(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._ids

    def append(self, event: BlockchainEvent) -> bool:
        """
        Store an event unless its id is already present.

        Returns:
            bool: True if the event was newly stored
        """
        key = (event.block_number, event.log_index, event.id)
        with self._lock:
            if event.id in self._ids:
                return False
            if len(self._events) >= self.max_events and key < self._positions[0]:
                # Older than everything retained; it would be evicted immediately
                return False

            index = bisect.bisect_right(self._positions, key)
            self._positions.insert(index, key)
            self._events.insert(index, event)
            self._ids[event.id] = event

            overflow = len(self._events) - self.max_events
            if overflow > 0:
                for evicted in self._events[:overflow]:
                    del self._ids[evicted.id]
                del self._events[:overflow]
                del self._positions[:overflow]
            return True

    def snapshot(self) -> List[BlockchainEvent]:
        """All stored events, oldest first."""
        with self._lock:
            return list(self._events)

    def query(
        self,
        address: Optional[str] = None,
        contract: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[BlockchainEvent]:
        """
        Return matching events newest-first.

        Args:
            address: Participant address, matched against from/to and every arg value
            contract: Contract tag or contract address
            event_type: Normalized event type or raw event name
            limit: Maximum number of events, clamped to MAX_QUERY_LIMIT
        """
        if limit is None or limit <= 0:
            limit = DEFAULT_QUERY_LIMIT
        limit = min(limit, MAX_QUERY_LIMIT)

        address = address.lower() if address else None
        contract = contract.lower() if contract else None
        event_type = event_type.lower() if event_type else None

        with self._lock:
            events = list(self._events)

        results: List[BlockchainEvent] = []
        for event in reversed(events):
            if contract and contract not in (event.contract_tag.lower(), event.contract_address.lower()):
                continue
            if event_type and event_type not in (event.event_type.lower(), event.event_name.lower()):
                continue
            if address and not self._involves(event, address):
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    @staticmethod
    def _involves(event: BlockchainEvent, address: str) -> bool:
        values = [event.from_address, event.to_address, *event.args.values()]
        return any(isinstance(value, str) and value.lower() == address for value in values)
