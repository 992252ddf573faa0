import sys
import logging
import threading

import uvicorn

from api_server import create_app
from config_loader import ConfigError, ConfigLoader
from event_decoder import EventDecoder
from event_listener import EventListener
from event_publisher import EventPublisher
from event_store import EventStore
from log_fetcher import LogFetcher
from metrics import start_metrics_server
from web3_client import Web3Client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main() -> int:
    """Main entry point for the indexer service."""
    try:
        config = ConfigLoader().load()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logging.getLogger().setLevel(config.log_level)

    # Start metrics server
    start_metrics_server(config.metrics_port)

    # Create components
    web3_client = Web3Client(rpc_url=config.rpc_url, timeout=config.rpc_timeout_seconds)
    store = EventStore(max_events=config.max_stored_events)
    publisher = EventPublisher()
    listener = EventListener(
        config=config,
        web3_client=web3_client,
        fetcher=LogFetcher(
            web3_client,
            max_block_range=config.max_block_range,
            request_delay_ms=config.request_delay_ms,
            max_log_retries=config.max_log_retries,
        ),
        decoder=EventDecoder(config.contracts, web3_client.get_block_timestamp, codec=web3_client.codec),
        store=store,
        publisher=publisher,
    )

    try:
        listener.initialize()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    except Exception as e:
        # Provider unreachable; the poller retries initialization on its first tick
        logger.warning(f"Could not initialize from RPC endpoint: {e}")

    poller = threading.Thread(target=listener.listen, name='event-listener', daemon=True)
    poller.start()

    logger.info(f"Indexer REST API: http://0.0.0.0:{config.port}/events")
    logger.info(f"Indexer WebSocket: ws://0.0.0.0:{config.port}/events/stream")
    try:
        uvicorn.run(create_app(store, publisher, listener), host='0.0.0.0', port=config.port,
                    log_level=config.log_level.lower())
    finally:
        listener.request_shutdown()
        poller.join(timeout=30.0)
        logger.info("Indexer service shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
