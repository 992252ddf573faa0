import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from event_listener import EventListener
from event_publisher import EventPublisher
from event_store import EventStore

logger = logging.getLogger(__name__)

SERVICE_NAME = 'chain-event-indexer'


def parse_limit(raw: Optional[str]) -> Optional[int]:
    """Parse the limit query parameter; raises ValueError when it is not an integer."""
    if raw is None or raw.strip() == '':
        return None
    return int(raw)


def create_app(store: EventStore, publisher: EventPublisher, listener: Optional[EventListener] = None) -> FastAPI:
    """Build the query and stream API over a store and a publisher."""
    app = FastAPI(title="Chain Event Indexer")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        status: Dict[str, Any] = {'status': 'ok', 'service': SERVICE_NAME}
        if listener is not None:
            status.update(listener.status())
        else:
            status.update({'totalEvents': len(store), 'subscribers': publisher.subscriber_count})
        return status

    @app.get("/events")
    def list_events(
        address: Optional[str] = None,
        contract: Optional[str] = None,
        event_type: Optional[str] = Query(None, alias="type"),
        limit: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return stored events newest-first.

        Unknown filters or an unparsable limit produce an empty list, never an error,
        so clients can treat "not ready" and "no data" the same way.
        """
        try:
            parsed_limit = parse_limit(limit)
        except ValueError:
            logger.debug(f"Ignoring request with invalid limit {limit!r}")
            return []

        events = store.query(address=address, contract=contract, event_type=event_type, limit=parsed_limit)
        return [event.to_dict() for event in events]

    @app.websocket("/events/stream")
    async def stream_events(websocket: WebSocket) -> None:
        subscriber = await publisher.connect(websocket)
        try:
            await publisher.stream(subscriber)
        finally:
            publisher.disconnect(subscriber)

    return app
