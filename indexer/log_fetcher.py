import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from tenacity import Retrying, RetryCallState, stop_after_attempt, wait_exponential

from metrics import LOGS_FETCHED, FETCH_RETRIES, FETCH_FAILURES

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 0.5
BACKOFF_MAX_SECONDS = 10.0


def split_block_range(from_block: int, to_block: int, max_block_range: int) -> List[Tuple[int, int]]:
    """
    Split [from_block, to_block] into consecutive ascending sub-ranges.

    Each sub-range spans at most max_block_range blocks (inclusive bounds).
    """
    if max_block_range < 1:
        raise ValueError("max_block_range must be >= 1")

    ranges = []
    start = from_block
    while start <= to_block:
        end = min(start + max_block_range - 1, to_block)
        ranges.append((start, end))
        start = end + 1
    return ranges


def log_position(log: Any) -> Tuple[int, int]:
    return int(log['blockNumber']), int(log['logIndex'])


@dataclass
class FetchResult:
    from_block: int
    to_block: int
    logs: List[Any] = field(default_factory=list)
    covered_to: int = -1
    failed_range: Optional[Tuple[int, int]] = None
    error: Optional[BaseException] = None

    @property
    def complete(self) -> bool:
        return self.failed_range is None


class LogFetcher:
    """Fetch logs for a block range in bounded, rate-limited, retried chunks."""

    def __init__(
        self,
        web3_client: Any,
        max_block_range: int,
        request_delay_ms: int = 0,
        max_log_retries: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the log fetcher.

        Args:
            web3_client: Provider client exposing get_logs(from_block, to_block, addresses)
            max_block_range (int): Maximum number of blocks per provider call
            request_delay_ms (int): Pause between consecutive provider calls
            max_log_retries (int): Retries per sub-range after the first attempt
            sleep (callable): Sleep function, replaceable in tests
        """
        self.web3_client = web3_client
        self.max_block_range = max_block_range
        self.request_delay = request_delay_ms / 1000.0
        self.max_log_retries = max_log_retries
        self.sleep = sleep

    def fetch(self, from_block: int, to_block: int, addresses: Sequence[str]) -> FetchResult:
        """
        Fetch all logs of the given contracts in [from_block, to_block].

        Stops at the first sub-range that exhausts its retries. The returned result
        then only contains logs up to covered_to, and failed_range is set.
        """
        result = FetchResult(from_block=from_block, to_block=to_block, covered_to=from_block - 1)

        for index, (start, end) in enumerate(split_block_range(from_block, to_block, self.max_block_range)):
            if index > 0 and self.request_delay > 0:
                self.sleep(self.request_delay)

            try:
                chunk = self._get_logs_with_retry(start, end, addresses)
            except Exception as e:
                logger.error(
                    f"Giving up on blocks {start}-{end} after {self.max_log_retries + 1} attempts: {e}"
                )
                FETCH_FAILURES.inc()
                result.failed_range = (start, end)
                result.error = e
                return result

            chunk.sort(key=log_position)
            result.logs.extend(chunk)
            result.covered_to = end
            LOGS_FETCHED.inc(len(chunk))

        return result

    def _get_logs_with_retry(self, start: int, end: int, addresses: Sequence[str]) -> List[Any]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_log_retries + 1),
            wait=wait_exponential(multiplier=BACKOFF_BASE_SECONDS, max=BACKOFF_MAX_SECONDS),
            sleep=self.sleep,
            before_sleep=self._before_retry(start, end),
            reraise=True,
        )
        return list(retrying(self.web3_client.get_logs, start, end, addresses))

    def _before_retry(self, start: int, end: int) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            FETCH_RETRIES.inc()
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"get_logs failed on blocks {start}-{end}: {retry_state.outcome.exception()}; "
                f"retry {retry_state.attempt_number}/{self.max_log_retries} in {delay:.1f}s"
            )
        return log_retry
