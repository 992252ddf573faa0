import logging
import prometheus_client as prom
from prometheus_client import Counter, Histogram, Gauge
import time

logger = logging.getLogger(__name__)

# Create metrics
LOGS_FETCHED = Counter(
    'chain_indexer_logs_fetched_total',
    'Number of raw logs returned by the provider'
)

FETCH_RETRIES = Counter(
    'chain_indexer_fetch_retries_total',
    'Number of retried log queries'
)

FETCH_FAILURES = Counter(
    'chain_indexer_fetch_failures_total',
    'Number of block sub-ranges that exhausted their retries'
)

EVENTS_STORED = Counter(
    'chain_indexer_events_stored_total',
    'Number of events newly appended to the store',
    ['contract_tag', 'event_type']
)

EVENTS_DROPPED = Counter(
    'chain_indexer_events_dropped_total',
    'Number of logs not turned into stored events',
    ['reason']
)

ERROR_COUNT = Counter(
    'chain_indexer_errors_total',
    'Number of errors encountered',
    ['error_type']
)

SYNC_CURSOR = Gauge(
    'chain_indexer_sync_cursor',
    'Last block number fully scanned'
)

CHAIN_HEAD = Gauge(
    'chain_indexer_chain_head',
    'Latest chain head seen by the poller'
)

STORED_EVENTS = Gauge(
    'chain_indexer_stored_events',
    'Number of events currently held in memory'
)

SUBSCRIBERS = Gauge(
    'chain_indexer_stream_subscribers',
    'Number of connected stream subscribers'
)

POLL_DURATION = Histogram(
    'chain_indexer_poll_seconds',
    'Time spent in one poll tick'
)

# Start metrics server
def start_metrics_server(port=8001):
    """Start Prometheus metrics server on the specified port."""
    prom.start_http_server(port)
    logger.info(f"Prometheus metrics server started on port {port}")

# Context manager for measuring a poll tick
class PollTimer:
    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        POLL_DURATION.observe(time.time() - self.start_time)
