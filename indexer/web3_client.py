import logging
from collections import OrderedDict
from typing import Any, List, Sequence
from web3 import Web3
from web3.types import FilterParams, LogReceipt

logger = logging.getLogger(__name__)

class Web3Client:
    """Class for interacting with the chain's JSON-RPC provider via Web3."""

    TIMESTAMP_CACHE_SIZE = 4096

    def __init__(self, rpc_url: str, timeout: int = 10) -> None:
        """
        Initialize the Web3 client.

        Args:
            rpc_url (str): URL of the JSON-RPC endpoint
            timeout (int): HTTP request timeout in seconds
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.web3 = self.connect()
        self._block_timestamps: "OrderedDict[int, int]" = OrderedDict()

    def connect(self) -> Web3:
        """Create a Web3 instance for the configured node."""
        if not self.rpc_url:
            raise ValueError("RPC URL is not provided")

        logger.info(f"Connecting to RPC node at {self.rpc_url}")
        return Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={'timeout': self.timeout}))

    @property
    def codec(self) -> Any:
        return self.web3.codec

    def get_chain_id(self) -> int:
        return self.web3.eth.chain_id

    def get_block_number(self) -> int:
        """Get the current chain head."""
        return self.web3.eth.block_number

    def get_logs(self, from_block: int, to_block: int, addresses: Sequence[str]) -> List[LogReceipt]:
        """Get all logs emitted by the given contracts within [from_block, to_block]."""
        params: FilterParams = {
            'fromBlock': from_block,
            'toBlock': to_block,
            'address': [Web3.to_checksum_address(address) for address in addresses],
        }
        return list(self.web3.eth.get_logs(params))

    def get_block_timestamp(self, block_number: int) -> int:
        """Get a block's timestamp, cached per block number."""
        cached = self._block_timestamps.get(block_number)
        if cached is not None:
            self._block_timestamps.move_to_end(block_number)
            return cached

        block = self.web3.eth.get_block(block_number)
        timestamp = int(block['timestamp'])
        self._block_timestamps[block_number] = timestamp
        if len(self._block_timestamps) > self.TIMESTAMP_CACHE_SIZE:
            self._block_timestamps.popitem(last=False)
        return timestamp
