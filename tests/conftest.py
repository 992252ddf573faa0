from typing import Any, Dict, List, Optional, Sequence

import pytest
from hexbytes import HexBytes
from web3 import Web3

from config_loader import ContractConfig, IndexerConfig
from event_decoder import EventDecoder
from event_store import EventStore
from log_fetcher import LogFetcher
from models import BlockchainEvent, make_event_id

CODEC = Web3().codec

FACTORY = '0x' + '11' * 20
KYC = '0x' + '22' * 20
STRANGER = '0x' + '99' * 20
ALICE = '0x' + 'a1' * 20
BOB = '0x' + 'b0' * 20
ZERO = '0x' + '00' * 20

CONTRACTS = (ContractConfig(tag='factory', address=FACTORY), ContractConfig(tag='kyc', address=KYC))


def topic(signature: str) -> HexBytes:
    return HexBytes(Web3.keccak(text=signature))


def address_topic(address: str) -> HexBytes:
    return HexBytes(CODEC.encode(['address'], [address]))


def make_log(
    address: str,
    topics: Sequence[bytes],
    data: bytes = b'',
    block_number: int = 1,
    log_index: int = 0,
    tx_hash: Optional[str] = None,
) -> Dict[str, Any]:
    if tx_hash is None:
        tx_hash = '0x' + f'{block_number:032x}{log_index:032x}'
    return {
        'address': address,
        'topics': [HexBytes(t) for t in topics],
        'data': HexBytes(data),
        'blockNumber': block_number,
        'logIndex': log_index,
        'transactionIndex': 0,
        'transactionHash': HexBytes(tx_hash),
        'blockHash': HexBytes('0x' + 'ff' * 32),
    }


def transfer_log(contract: str, sender: str, recipient: str, value: int, **kwargs: Any) -> Dict[str, Any]:
    return make_log(
        contract,
        [topic('Transfer(address,address,uint256)'), address_topic(sender), address_topic(recipient)],
        CODEC.encode(['uint256'], [value]),
        **kwargs,
    )


def swap_log(contract: str, trader: str, token_in: str, amount_in: int, amount_out: int, **kwargs: Any) -> Dict[str, Any]:
    return make_log(
        contract,
        [topic('Swap(address,address,uint256,uint256)'), address_topic(trader), address_topic(token_in)],
        CODEC.encode(['uint256', 'uint256'], [amount_in, amount_out]),
        **kwargs,
    )


def make_event(block_number: int, log_index: int = 0, **overrides: Any) -> BlockchainEvent:
    tx_hash = overrides.pop('transaction_hash', '0x' + f'{block_number:032x}{log_index:032x}')
    fields = {
        'id': make_event_id(tx_hash, log_index),
        'block_number': block_number,
        'transaction_hash': tx_hash,
        'log_index': log_index,
        'event_type': 'Transfer',
        'contract_address': FACTORY,
        'contract_tag': 'factory',
        'event_name': 'Transfer',
        'timestamp': 1_700_000_000 + block_number,
        'args': {'from': ALICE, 'to': BOB, 'value': '1'},
        'from_address': ALICE,
        'to_address': BOB,
        'amount': '1',
    }
    fields.update(overrides)
    return BlockchainEvent(**fields)


def make_config(**overrides: Any) -> IndexerConfig:
    fields = {
        'chain_id': 11155111,
        'rpc_url': 'http://rpc.test',
        'poll_interval_ms': 0,
        'start_block': 0,
        'max_block_range': 10,
        'initial_lookback_blocks': 500,
        'request_delay_ms': 0,
        'max_log_retries': 2,
        'max_stored_events': 100,
        'contracts': CONTRACTS,
    }
    fields.update(overrides)
    return IndexerConfig(**fields)


class FakeWeb3Client:
    """In-memory provider. get_logs returns every log in range, ignoring the address filter."""

    def __init__(self, head: int = 0, chain_id: int = 11155111, logs: Sequence[Dict[str, Any]] = ()) -> None:
        self.head = head
        self.chain_id = chain_id
        self.logs: List[Dict[str, Any]] = list(logs)
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, int] = {}
        self.head_error: Optional[Exception] = None
        self.timestamp_error: Optional[Exception] = None

    def get_chain_id(self) -> int:
        return self.chain_id

    def get_block_number(self) -> int:
        if self.head_error is not None:
            raise self.head_error
        return self.head

    def get_logs(self, from_block: int, to_block: int, addresses: Sequence[str]) -> List[Dict[str, Any]]:
        self.calls.append((from_block, to_block))
        remaining = self.failures.get((from_block, to_block), 0)
        if remaining:
            self.failures[(from_block, to_block)] = remaining - 1
            raise TimeoutError(f"timeout on {from_block}-{to_block}")
        return [log for log in self.logs if from_block <= log['blockNumber'] <= to_block]

    def get_block_timestamp(self, block_number: int) -> int:
        if self.timestamp_error is not None:
            raise self.timestamp_error
        return 1_700_000_000 + block_number


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingPublisher:
    def __init__(self) -> None:
        self.published: List[BlockchainEvent] = []
        self.subscriber_count = 0

    def publish(self, event: BlockchainEvent) -> int:
        self.published.append(event)
        return 0


@pytest.fixture
def rpc() -> FakeWeb3Client:
    return FakeWeb3Client()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def decoder(rpc: FakeWeb3Client) -> EventDecoder:
    return EventDecoder(CONTRACTS, rpc.get_block_timestamp, codec=CODEC)


@pytest.fixture
def store() -> EventStore:
    return EventStore(max_events=100)


@pytest.fixture
def fetcher(rpc: FakeWeb3Client, sleep: SleepRecorder) -> LogFetcher:
    return LogFetcher(rpc, max_block_range=5, request_delay_ms=0, max_log_retries=2, sleep=sleep)
