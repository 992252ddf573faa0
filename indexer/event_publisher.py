import time
import asyncio
import logging
import threading
from typing import Any, Callable, Set

from fastapi import WebSocket, WebSocketDisconnect

from metrics import SUBSCRIBERS, ERROR_COUNT
from models import BlockchainEvent

logger = logging.getLogger(__name__)

CONNECTED_MESSAGE = 'Indexer event stream connected'
# Close code sent to subscribers that cannot keep up
TRY_AGAIN_LATER = 1013


class Subscriber:
    """One connected stream client and its pending messages."""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop, queue_size: int) -> None:
        self.websocket = websocket
        self.loop = loop
        self.queue: "asyncio.Queue[str]" = asyncio.Queue(maxsize=queue_size)
        self.closed = False


class EventPublisher:
    """
    Fan newly stored events out to every connected stream subscriber.

    publish() is called from the poller thread and never waits on a client:
    each payload is handed to the subscriber's own event loop and queued there.
    A subscriber whose queue fills up is dropped instead of slowing the others.
    """

    def __init__(self, queue_size: int = 1000, clock: Callable[[], float] = time.time) -> None:
        self.queue_size = queue_size
        self.clock = clock
        self._lock = threading.Lock()
        self._subscribers: Set[Subscriber] = set()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    async def connect(self, websocket: WebSocket) -> Subscriber:
        """Accept a connection, register it and send the connection acknowledgment."""
        await websocket.accept()
        subscriber = Subscriber(websocket, asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._subscribers.add(subscriber)
            count = len(self._subscribers)
        SUBSCRIBERS.set(count)
        logger.info(f"Stream client connected. Total: {count}")

        try:
            await websocket.send_json({
                'type': 'connected',
                'message': CONNECTED_MESSAGE,
                'timestamp': int(self.clock() * 1000),
            })
        except Exception:
            self.disconnect(subscriber)
            raise
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a subscriber; nothing is retained for it."""
        subscriber.closed = True
        with self._lock:
            if subscriber not in self._subscribers:
                return
            self._subscribers.discard(subscriber)
            count = len(self._subscribers)
        SUBSCRIBERS.set(count)
        logger.info(f"Stream client disconnected. Total: {count}")

    def publish(self, event: BlockchainEvent) -> int:
        """
        Queue an event for every connected subscriber.

        Returns:
            int: Number of subscribers the event was handed to
        """
        payload = event.to_json()
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber.loop.call_soon_threadsafe(self._offer, subscriber, payload)
                delivered += 1
            except RuntimeError:
                # Event loop already closed
                self.disconnect(subscriber)
        return delivered

    def _offer(self, subscriber: Subscriber, payload: str) -> None:
        if subscriber.closed:
            return
        try:
            subscriber.queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Dropping stream client: send queue is full")
            ERROR_COUNT.labels(error_type='SubscriberOverflow').inc()
            self.disconnect(subscriber)

    async def stream(self, subscriber: Subscriber) -> None:
        """
        Forward queued events to the client until it disconnects.

        The client's messages are read in the calling task; only the sender runs
        as a child task, and it is cancelled however the caller exits.
        """
        sender = asyncio.create_task(self._send_loop(subscriber))
        sender.add_done_callback(self._log_send_failure)
        try:
            await self._receive_loop(subscriber)
        finally:
            sender.cancel()

    @staticmethod
    def _log_send_failure(task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, WebSocketDisconnect):
            logger.debug(f"Stream client failed: {error}")

    async def _send_loop(self, subscriber: Subscriber) -> None:
        while True:
            payload = await subscriber.queue.get()
            if subscriber.closed:
                await subscriber.websocket.close(code=TRY_AGAIN_LATER)
                return
            await subscriber.websocket.send_text(payload)

    async def _receive_loop(self, subscriber: Subscriber) -> Any:
        while True:
            message = await subscriber.websocket.receive()
            if message['type'] == 'websocket.disconnect':
                return message
