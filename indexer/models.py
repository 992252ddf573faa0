import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


def make_event_id(transaction_hash: str, log_index: int) -> str:
    """Stable id of a log position."""
    return f"{transaction_hash.lower()}-{log_index}"


@dataclass(frozen=True)
class BlockchainEvent:
    """Canonical record of one decoded contract log."""

    id: str
    block_number: int
    transaction_hash: str
    log_index: int
    event_type: str
    contract_address: str
    contract_tag: str
    event_name: str
    timestamp: int
    args: Dict[str, Any] = field(default_factory=dict)
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[str] = None
    amount0: Optional[str] = None
    amount1: Optional[str] = None

    @property
    def position(self) -> Tuple[int, int]:
        return self.block_number, self.log_index

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation shared by the HTTP and stream endpoints."""
        return {
            'id': self.id,
            'blockNumber': self.block_number,
            'transactionHash': self.transaction_hash,
            'logIndex': self.log_index,
            'eventType': self.event_type,
            'contractAddress': self.contract_address,
            'contractTag': self.contract_tag,
            'eventName': self.event_name,
            'timestamp': self.timestamp,
            'from': self.from_address,
            'to': self.to_address,
            'amount': self.amount,
            'amount0': self.amount0,
            'amount1': self.amount1,
            'args': self.args,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
