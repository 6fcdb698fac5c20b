"""
Builders for raw Terra transaction responses used across the tests.
"""

import base64
import json

from alliance_explorer.config import DEFAULT_CONTRACTS

ALICE = 'terra1' + 'a' * 38
BOB = 'terra1' + 'x' * 38
CAROL = 'terra1' + 'c' * 38
TREASURY = DEFAULT_CONTRACTS.dao_treasury

VALIDATOR_A = 'terravaloper1' + 'q' * 38
VALIDATOR_B = 'terravaloper1' + 'p' * 38
VALIDATOR_STAKE = 'terravaloper1' + 'z' * 38


def b64(value):
    """Base64-encode a dict as JSON, or a string as is."""
    text = json.dumps(value) if isinstance(value, dict) else value
    return base64.b64encode(text.encode('utf-8')).decode('ascii')


def attrs(**kwargs):
    return [{'key': key, 'value': str(value)} for key, value in kwargs.items()]


def event(event_type, **kwargs):
    return {'type': event_type, 'attributes': attrs(**kwargs)}


def wasm(**kwargs):
    """A ``wasm`` event; pass ``_contract_address`` like the chain does."""
    return event('wasm', **kwargs)


def execute(contract, msg, sender=ALICE, funds=None):
    return {
        '@type': '/cosmwasm.wasm.v1.MsgExecuteContract',
        'sender': sender,
        'contract': contract,
        'msg': msg,
        'funds': funds or [],
    }


def lcd_tx(txhash='A1B2C3D4E5F6A7B8', height=14000000, timestamp='2024-05-10T12:00:00Z',
           code=0, memo='', messages=None, log_events=None, events=None, fee=None):
    """A bare LCD tx_response."""
    return {
        'txhash': txhash,
        'height': str(height),
        'code': code,
        'timestamp': timestamp,
        'tx': {
            'body': {'messages': messages or [], 'memo': memo},
            'auth_info': {'fee': fee or {}},
        },
        'logs': [{'msg_index': 0, 'events': log_events}] if log_events else [],
        'events': events or [],
    }


def rpc_item(txhash='F00DF00DF00DF00D', height=14000001, code=0, events=None):
    """A tx_search result with base64 encoded attribute keys and values."""
    encoded = []
    for ev in events or []:
        encoded.append({
            'type': ev['type'],
            'attributes': [
                {'key': b64(a['key']), 'value': b64(a['value']), 'index': True}
                for a in ev['attributes']
            ],
        })
    return {
        'hash': txhash,
        'height': str(height),
        'tx_result': {'code': code, 'log': '', 'events': encoded},
        'tx': 'CpIBCo8BCiQvY29zbXdhc20ud2FzbS52MS5Nc2dFeGVjdXRlQ29udHJhY3Q=',
    }


def claim_tx(txhash='C1A1C1A1C1A1C1A1', height=14000100, timestamp='2024-05-10T12:00:00Z',
             code=0, with_delegate=True, delegate_amount='4000000uluna'):
    """Alliance reward claim: 1.5 + 2.5 LUNA withdrawn, 3.9 ampLUNA minted and split."""
    contracts = DEFAULT_CONTRACTS
    log_events = [
        event('withdraw_rewards', amount='1500000uluna', validator=VALIDATOR_A),
        event('withdraw_rewards', amount='2500000uluna', validator=VALIDATOR_B),
    ]
    if with_delegate:
        log_events.append(event('delegate', validator=VALIDATOR_STAKE, amount=delegate_amount))
    log_events.extend([
        wasm(_contract_address=contracts.ampluna_token, action='mint',
             to=contracts.nft_contract, amount='3900000'),
        wasm(_contract_address=contracts.nft_contract, action='update_rewards_callback',
             rewards_collected='3500000', treasury_amount='400000'),
        wasm(_contract_address=contracts.ampluna_token, action='transfer',
             to=TREASURY, amount='400000'),
        wasm(_contract_address=contracts.ampluna_token, action='transfer',
             to=ALICE, amount='3500000'),
    ])
    return lcd_tx(
        txhash=txhash,
        height=height,
        timestamp=timestamp,
        code=code,
        messages=[execute(contracts.nft_contract, {'claim_rewards': {}})],
        log_events=log_events,
    )


def bbl_settle_tx(txhash='5E77155E77155E77', height=14000200, timestamp='2024-05-11T08:30:00Z'):
    """Backbone Labs auction settled for 249 LUNA."""
    contracts = DEFAULT_CONTRACTS
    return lcd_tx(
        txhash=txhash,
        height=height,
        timestamp=timestamp,
        messages=[execute(contracts.bbl_marketplace, {'settle': {'auction_id': 77}}, sender=BOB)],
        events=[
            wasm(_contract_address=contracts.bbl_marketplace, action='settle', auction_id='77',
                 amount='249000000', denom='uluna', seller=CAROL),
        ],
        fee={'amount': [{'denom': 'uluna', 'amount': '1500000'}], 'gas_limit': '600000'},
    )


def dao_stake_tx(memo='Sent via boostdao.io', txhash='57A4E57A4E57A4E5', height=14000300):
    """NFT sent into the DAO DAO staking contract."""
    contracts = DEFAULT_CONTRACTS
    return lcd_tx(
        txhash=txhash,
        height=height,
        memo=memo,
        messages=[execute(contracts.nft_contract, {
            'send_nft': {
                'contract': contracts.daodao_staking,
                'token_id': '42',
                'msg': b64({'stake': {}}),
            },
        })],
        log_events=[
            wasm(_contract_address=contracts.nft_contract, action='send_nft',
                 sender=ALICE, recipient=contracts.daodao_staking, token_id='42'),
        ],
    )


def p2p_transfer_tx(txhash='7AA5FE57AA5FE57A', height=14000400, recipient=BOB, token_id='7'):
    contracts = DEFAULT_CONTRACTS
    return lcd_tx(
        txhash=txhash,
        height=height,
        messages=[execute(contracts.nft_contract, {
            'transfer_nft': {'recipient': recipient, 'token_id': token_id},
        })],
        log_events=[
            wasm(_contract_address=contracts.nft_contract, action='transfer_nft',
                 sender=ALICE, recipient=recipient, token_id=token_id),
        ],
    )
