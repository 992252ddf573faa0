"""
Event ABI fragments recognized by the indexer.

Each tracked contract may emit any of these events. EVENT_SHAPES says which
decoded arguments feed the normalized from/to/amount/amount0/amount1 fields.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'


def _event(name: str, *inputs: tuple) -> Dict[str, Any]:
    return {
        'anonymous': False,
        'inputs': [
            {'indexed': indexed, 'name': arg_name, 'type': arg_type}
            for arg_type, arg_name, indexed in inputs
        ],
        'name': name,
        'type': 'event',
    }


EVENT_ABI: List[Dict[str, Any]] = [
    _event('Transfer', ('address', 'from', True), ('address', 'to', True), ('uint256', 'value', False)),
    _event('Approval', ('address', 'owner', True), ('address', 'spender', True), ('uint256', 'value', False)),
    _event('Swap', ('address', 'trader', True), ('address', 'tokenIn', True),
           ('uint256', 'amountIn', False), ('uint256', 'amountOut', False)),
    _event('SwapExecuted', ('address', 'user', True), ('address', 'tokenIn', True), ('address', 'tokenOut', True),
           ('uint256', 'amountIn', False), ('uint256', 'amountOut', False), ('uint256', 'fee', False)),
    _event('LiquidityAdded', ('address', 'provider', True), ('uint256', 'amountAsset', False),
           ('uint256', 'amountBase', False), ('uint256', 'liquidity', False)),
    _event('LiquidityRemoved', ('address', 'provider', True), ('uint256', 'amountAsset', False),
           ('uint256', 'amountBase', False)),
    _event('PriceUpdated', ('uint256', 'assetId', True), ('uint256', 'price', False), ('uint256', 'updatedAt', False)),
    _event('AssetCreated', ('uint256', 'assetId', True), ('address', 'nft', True), ('address', 'token', True),
           ('address', 'pool', False)),
    _event('WhitelistUpdated', ('address', 'user', True), ('bool', 'status', False)),
    _event('BlacklistUpdated', ('address', 'user', True), ('bool', 'status', False)),
    _event('KYCSubmitted', ('address', 'user', True), ('string', 'fullName', False), ('string', 'country', False),
           ('uint256', 'timestamp', False)),
    _event('KYCApproved', ('address', 'user', True), ('address', 'admin', True), ('uint256', 'timestamp', False)),
    _event('KYCRejected', ('address', 'user', True), ('address', 'admin', True), ('uint256', 'timestamp', False)),
]


@dataclass(frozen=True)
class EventShape:
    event_type: str
    from_arg: Optional[str] = None
    to_arg: Optional[str] = None
    amount_arg: Optional[str] = None
    amount0_arg: Optional[str] = None
    amount1_arg: Optional[str] = None


EVENT_SHAPES: Dict[str, EventShape] = {
    'Transfer': EventShape('Transfer', from_arg='from', to_arg='to', amount_arg='value'),
    'Approval': EventShape('Approval', from_arg='owner', to_arg='spender', amount_arg='value'),
    'Swap': EventShape('Swap', from_arg='trader', amount0_arg='amountIn', amount1_arg='amountOut'),
    'SwapExecuted': EventShape('Swap', from_arg='user', to_arg='tokenOut',
                               amount0_arg='amountIn', amount1_arg='amountOut'),
    'LiquidityAdded': EventShape('LiquidityAdd', from_arg='provider',
                                 amount0_arg='amountAsset', amount1_arg='amountBase'),
    'LiquidityRemoved': EventShape('LiquidityRemove', from_arg='provider',
                                   amount0_arg='amountAsset', amount1_arg='amountBase'),
    'WhitelistUpdated': EventShape('WhitelistUpdated', from_arg='user'),
    'BlacklistUpdated': EventShape('BlacklistUpdated', from_arg='user'),
    'KYCSubmitted': EventShape('KYCSubmitted', from_arg='user'),
    'KYCApproved': EventShape('KYCApproved', from_arg='user', to_arg='admin'),
    'KYCRejected': EventShape('KYCRejected', from_arg='user', to_arg='admin'),
}


def event_signature(event_abi: Dict[str, Any]) -> str:
    """Canonical signature, e.g. Transfer(address,address,uint256)."""
    types = ','.join(item['type'] for item in event_abi['inputs'])
    return f"{event_abi['name']}({types})"
