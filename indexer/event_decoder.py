import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from hexbytes import HexBytes
from web3 import Web3
from web3._utils.events import get_event_data

from config_loader import ContractConfig
from event_abi import EVENT_ABI, EVENT_SHAPES, ZERO_ADDRESS, event_signature
from models import BlockchainEvent, make_event_id

logger = logging.getLogger(__name__)


class EventDecodeError(Exception):
    """A log with a known signature whose payload could not be decoded."""


def to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith('0x') else f'0x{text}'


def to_serializable(value: Any) -> Any:
    """Make decoded ABI values JSON-safe: big integers as strings, bytes as hex."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)
    if isinstance(value, Mapping):
        return {key: to_serializable(nested) for key, nested in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_serializable(nested) for nested in value]
    return value


class EventDecoder:
    """Turn raw provider logs into canonical events for the tracked contracts."""

    def __init__(
        self,
        contracts: Iterable[ContractConfig],
        block_timestamp: Callable[[int], int],
        codec: Any = None,
        event_abi: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> None:
        """
        Initialize the decoder.

        Args:
            contracts: Tracked (tag, address) pairs; other addresses are dropped
            block_timestamp: Resolves a block number to its unix timestamp
            codec: ABI codec used for decoding, defaults to web3's
            event_abi: Event ABI fragments to recognize, defaults to EVENT_ABI
        """
        self.contracts_by_address = {contract.address.lower(): contract for contract in contracts}
        self.block_timestamp = block_timestamp
        self.codec = codec if codec is not None else Web3().codec
        self.abi_by_topic: Dict[str, Dict[str, Any]] = {}
        for item in event_abi if event_abi is not None else EVENT_ABI:
            topic = to_hex(Web3.keccak(text=event_signature(item)))
            self.abi_by_topic[topic] = item

    def decode(self, log: Mapping[str, Any]) -> Optional[BlockchainEvent]:
        """
        Decode a single raw log.

        Returns:
            BlockchainEvent, or None when the log comes from an untracked address

        Raises:
            EventDecodeError: if the signature is known but the payload is malformed
        """
        address = str(log['address'])
        contract = self.contracts_by_address.get(address.lower())
        if contract is None:
            return None

        topics = [HexBytes(topic) for topic in log.get('topics') or []]
        data = HexBytes(log.get('data') or b'')
        topic0 = to_hex(topics[0]) if topics else None
        event_abi = self.abi_by_topic.get(topic0) if topic0 else None

        block_number = int(log['blockNumber'])
        log_index = int(log['logIndex'])
        transaction_hash = to_hex(log['transactionHash'])
        base = {
            'id': make_event_id(transaction_hash, log_index),
            'block_number': block_number,
            'transaction_hash': transaction_hash,
            'log_index': log_index,
            'contract_address': address,
            'contract_tag': contract.tag,
        }

        if event_abi is None:
            signature = topic0 or 'anonymous'
            return BlockchainEvent(
                event_type=signature,
                event_name=signature,
                timestamp=self.block_timestamp(block_number),
                args={'topics': [to_hex(topic) for topic in topics], 'data': to_hex(data)},
                **base,
            )

        try:
            entry = {'transactionIndex': 0, 'blockHash': HexBytes(b''), **log, 'topics': topics, 'data': data}
            decoded = get_event_data(self.codec, event_abi, entry)
        except Exception as e:
            raise EventDecodeError(
                f"Cannot decode {event_abi['name']} log {transaction_hash}#{log_index}: {e}"
            ) from e

        event_name = event_abi['name']
        args = to_serializable(dict(decoded['args']))
        shape = EVENT_SHAPES.get(event_name)

        return BlockchainEvent(
            event_type=self.classify(event_name, args),
            event_name=event_name,
            timestamp=self.block_timestamp(block_number),
            args=args,
            from_address=self._shape_value(args, shape.from_arg if shape else None),
            to_address=self._shape_value(args, shape.to_arg if shape else None),
            amount=self._shape_value(args, shape.amount_arg if shape else None),
            amount0=self._shape_value(args, shape.amount0_arg if shape else None),
            amount1=self._shape_value(args, shape.amount1_arg if shape else None),
            **base,
        )

    @staticmethod
    def classify(event_name: str, args: Mapping[str, Any]) -> str:
        """Map an ABI event name to its normalized event type."""
        if event_name == 'Transfer':
            if str(args.get('from', '')).lower() == ZERO_ADDRESS:
                return 'Mint'
            if str(args.get('to', '')).lower() == ZERO_ADDRESS:
                return 'Burn'
        shape = EVENT_SHAPES.get(event_name)
        return shape.event_type if shape else event_name

    @staticmethod
    def _shape_value(args: Mapping[str, Any], name: Optional[str]) -> Optional[str]:
        if name is None or args.get(name) is None:
            return None
        return str(args[name])
