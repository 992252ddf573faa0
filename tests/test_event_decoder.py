import pytest

from config_loader import ContractConfig
from event_decoder import EventDecodeError, EventDecoder, to_serializable
from conftest import (
    ALICE, BOB, CODEC, CONTRACTS, FACTORY, KYC, STRANGER, ZERO,
    address_topic, make_log, swap_log, topic, transfer_log,
)


def test_transfer_is_normalized(decoder):
    log = transfer_log(FACTORY, ALICE, BOB, 10 ** 24, block_number=42, log_index=3)

    event = decoder.decode(log)

    assert event.event_type == 'Transfer'
    assert event.event_name == 'Transfer'
    assert event.contract_tag == 'factory'
    assert event.contract_address == FACTORY
    assert event.block_number == 42
    assert event.log_index == 3
    assert event.timestamp == 1_700_000_042
    assert event.id == f"{event.transaction_hash}-3"
    assert event.from_address.lower() == ALICE
    assert event.to_address.lower() == BOB
    assert event.amount == str(10 ** 24)
    assert event.amount0 is None and event.amount1 is None
    assert event.args['value'] == str(10 ** 24)
    assert event.args['from'].lower() == ALICE


def test_transfer_from_zero_address_is_mint(decoder):
    event = decoder.decode(transfer_log(FACTORY, ZERO, BOB, 5))

    assert event.event_type == 'Mint'
    assert event.event_name == 'Transfer'


def test_transfer_to_zero_address_is_burn(decoder):
    event = decoder.decode(transfer_log(FACTORY, ALICE, ZERO, 5))

    assert event.event_type == 'Burn'


def test_swap_populates_pair_amounts(decoder):
    event = decoder.decode(swap_log(KYC, ALICE, BOB, 100, 95))

    assert event.event_type == 'Swap'
    assert event.contract_tag == 'kyc'
    assert event.amount0 == '100'
    assert event.amount1 == '95'
    assert event.amount is None
    assert event.from_address.lower() == ALICE
    assert event.to_address is None
    assert event.args['tokenIn'].lower() == BOB


def test_liquidity_added_is_classified(decoder):
    log = make_log(
        FACTORY,
        [topic('LiquidityAdded(address,uint256,uint256,uint256)'), address_topic(ALICE)],
        CODEC.encode(['uint256', 'uint256', 'uint256'], [7, 8, 9]),
    )

    event = decoder.decode(log)

    assert event.event_type == 'LiquidityAdd'
    assert (event.amount0, event.amount1) == ('7', '8')
    assert event.args['liquidity'] == '9'


def test_registered_event_outside_enumeration_keeps_its_name(decoder):
    log = make_log(
        KYC,
        [topic('KYCSubmitted(address,string,string,uint256)'), address_topic(ALICE)],
        CODEC.encode(['string', 'string', 'uint256'], ['Ada Lovelace', 'FR', 1_700_000_000]),
    )

    event = decoder.decode(log)

    assert event.event_type == 'KYCSubmitted'
    assert event.from_address.lower() == ALICE
    assert event.amount is None
    assert event.args['fullName'] == 'Ada Lovelace'
    assert event.args['country'] == 'FR'
    assert event.args['timestamp'] == '1700000000'


def test_untracked_address_is_dropped(decoder):
    assert decoder.decode(transfer_log(STRANGER, ALICE, BOB, 1)) is None


def test_tracked_address_matches_any_case(rpc):
    upper = '0x' + 'AB' * 20
    decoder = EventDecoder([*CONTRACTS, ContractConfig(tag='pool', address='0x' + 'ab' * 20)],
                           rpc.get_block_timestamp, codec=CODEC)

    event = decoder.decode(transfer_log(upper, ALICE, BOB, 1))

    assert event.contract_tag == 'pool'


def test_unknown_signature_keeps_raw_fields(decoder):
    unknown = topic('Rebased(uint256,uint256)')
    data = CODEC.encode(['uint256', 'uint256'], [1, 2])
    log = make_log(FACTORY, [unknown, address_topic(ALICE)], data, block_number=9, log_index=1)

    event = decoder.decode(log)

    raw_signature = '0x' + bytes(unknown).hex()
    assert event.event_type == raw_signature
    assert event.from_address is None
    assert event.to_address is None
    assert event.amount is None
    assert event.args == {
        'topics': [raw_signature, '0x' + bytes(address_topic(ALICE)).hex()],
        'data': '0x' + data.hex(),
    }
    assert event.contract_tag == 'factory'


def test_malformed_payload_raises_decode_error(decoder):
    log = make_log(FACTORY, [topic('Transfer(address,address,uint256)'), address_topic(ALICE), address_topic(BOB)], b'\x01')

    with pytest.raises(EventDecodeError):
        decoder.decode(log)


def test_missing_indexed_topics_raise_decode_error(decoder):
    log = make_log(FACTORY, [topic('Transfer(address,address,uint256)')], CODEC.encode(['uint256'], [1]))

    with pytest.raises(EventDecodeError):
        decoder.decode(log)


def test_decoding_is_deterministic(decoder):
    log = transfer_log(FACTORY, ALICE, BOB, 1, block_number=5, log_index=2)

    assert decoder.decode(log) == decoder.decode(log)


def test_to_serializable():
    assert to_serializable({'n': 2 ** 255, 'flag': True, 'raw': b'\x01\xff', 'items': (1, 'a')}) == {
        'n': str(2 ** 255), 'flag': True, 'raw': '0x01ff', 'items': ['1', 'a'],
    }
