"""Tests for event classification."""

from unittest.mock import patch

import pytest

from alliance_explorer.config import KnownContracts
from alliance_explorer.models import EventTag
from alliance_explorer.tx_adapter import adapt
from alliance_explorer.tx_classifier import (
    CLASSIFICATION_RULES,
    TxSignals,
    action_names,
    classify,
)

from tests import factories
from tests.factories import ALICE, BOB, CAROL, b64, execute, lcd_tx, wasm

C = factories.DEFAULT_CONTRACTS
OUTSIDE_CONTRACT = 'terra1' + 'u' * 58


def single(contract, msg, memo='', log_events=None, events=None):
    return lcd_tx(memo=memo, messages=[execute(contract, msg)], log_events=log_events, events=events)


class TestRewardClaims:

    def test_claim(self, claim_tx):
        assert classify(claim_tx) == EventTag.ALLIANCE_CLAIM

    def test_failed_claim(self):
        assert classify(factories.claim_tx(code=5)) == EventTag.ALLY_REWARDS_CLAIM_FAILED

    def test_break(self):
        assert classify(single(C.nft_contract, {'break_nft': {'token_id': '3'}})) == EventTag.NFT_BREAK


class TestDaoDao:

    def test_stake(self):
        assert classify(factories.dao_stake_tx(memo='')) == EventTag.DAODAO_STAKE

    def test_boost_memo_stake(self, boost_stake_tx):
        assert classify(boost_stake_tx) == EventTag.BOOST_STAKE_DAODAO

    def test_unstake(self):
        raw = single(C.daodao_staking, {'unstake': {'token_ids': ['42']}})
        assert classify(raw) == EventTag.DAODAO_UNSTAKE

    def test_claim_nfts(self):
        assert classify(single(C.daodao_staking, {'claim_nfts': {}})) == EventTag.DAODAO_CLAIM_NFTS


class TestEnterprise:

    def test_claim(self):
        assert classify(single(C.enterprise_tool, {'claim': {}})) == EventTag.ENTERPRISE_CLAIM_NFTS

    def test_claim_with_boost_memo(self):
        raw = single(C.enterprise_tool, {'claim': {}}, memo='via boostdao.io')
        assert classify(raw) == EventTag.ENTERPRISE_UNSTAKE_BOOST

    def test_unstake(self):
        raw = single(C.enterprise_tool, {'unstake': {'tokens': ['1']}})
        assert classify(raw) == EventTag.ENTERPRISE_UNSTAKE


class TestBackboneLabs:

    def test_sale(self, settle_tx):
        assert classify(settle_tx) == EventTag.BBL_SALE

    def test_cancel_wins_over_settle(self):
        raw = lcd_tx(
            messages=[execute(C.bbl_marketplace, {'cancel_auction': {'auction_id': 77}})],
            events=[wasm(_contract_address=C.bbl_marketplace, action='settle',
                         amount='249000000', denom='uluna')],
        )
        assert classify(raw) == EventTag.BBL_DELIST

    def test_listing(self):
        raw = single(C.nft_contract, {'send_nft': {
            'contract': C.bbl_marketplace,
            'token_id': '11',
            'msg': b64({'create_auction': {'denom': 'uluna', 'reserve_price': '100000000'}}),
        }})
        assert classify(raw) == EventTag.BBL_LISTING

    def test_bid(self):
        assert classify(single(C.bbl_marketplace, {'place_bid': {'auction_id': 1}})) == EventTag.BBL_BID

    def test_collection_offer(self):
        raw = single(C.bbl_marketplace, {'make_collection_offer': {'collection': C.nft_contract}})
        assert classify(raw) == EventTag.BBL_COLLECTION_OFFER

    def test_collection_offer_accepted(self):
        raw = single(C.bbl_marketplace, {'accept_collection_offer': {'offer_id': 2}})
        assert classify(raw) == EventTag.BBL_COLLECTION_OFFER_ACCEPTED


class TestBoost:

    def test_sale_needs_two_messages(self):
        raw = lcd_tx(messages=[
            execute(C.boost_protocol, {'deposit': {'listing_id': 5}}),
            execute(C.boost_protocol, {'buy': {'listing_id': 5}}),
        ])
        assert classify(raw) == EventTag.BOOST_SALE

    def test_cancel(self):
        assert classify(single(C.boost_protocol, {'cancel': {'listing_id': 5}})) == EventTag.BOOST_CANCEL

    def test_listing(self):
        assert classify(single(C.boost_protocol, {'setup': {'price': '1'}})) == EventTag.BOOST_LISTING

    def test_memo_transfer(self):
        raw = single(C.nft_contract, {'transfer_nft': {'recipient': BOB, 'token_id': '8'}},
                     memo='Sent with boostdao.io')
        assert classify(raw) == EventTag.BOOST_TRANSFER


class TestNftSwitch:

    def test_otc_complete(self):
        assert classify(single(C.otc_contract, {'execute_trade': {'trade_id': 1}})) == \
            EventTag.NFTSWITCH_OTC_COMPLETE

    def test_otc_confirm(self):
        assert classify(single(C.otc_contract, {'confirm_trade': {'trade_id': 1}})) == \
            EventTag.NFTSWITCH_OTC_CONFIRM

    def test_otc_create(self):
        raw = single(C.otc_contract, {'create_trade': {'sale_price': {'amount': '5000000', 'denom': 'uluna'}}})
        assert classify(raw) == EventTag.NFTSWITCH_OTC_CREATE

    def test_sale(self):
        raw = single(C.nft_switch, {'deposit': {'listing': 'solid-12'}})
        assert classify(raw) == EventTag.NFTSWITCH_SALE

    def test_cancel(self):
        assert classify(single(C.nft_switch, {'cancel': {'listing_id': 3}})) == EventTag.NFTSWITCH_CANCEL

    def test_listing(self):
        assert classify(single(C.nft_switch, {'setup': {'listing_id': 3}})) == EventTag.NFTSWITCH_LISTING

    def test_batch_transfer(self):
        raw = lcd_tx(memo='nftswitch batch send', messages=[
            execute(C.nft_contract, {'transfer_nft': {'recipient': CAROL, 'token_id': '1'}}),
            execute(C.nft_contract, {'transfer_nft': {'recipient': CAROL, 'token_id': '2'}}),
        ])
        assert classify(raw) == EventTag.NFTSWITCH_BATCH_TRANSFER


class TestFallbacks:

    def test_p2p_transfer(self, transfer_tx):
        assert classify(transfer_tx) == EventTag.P2P_TRANSFER

    def test_transfer_into_staking_contract_is_not_p2p(self):
        raw = single(C.nft_contract, {'transfer_nft': {'recipient': C.daodao_staking, 'token_id': '1'}})
        assert classify(raw) != EventTag.P2P_TRANSFER

    @pytest.mark.parametrize('action,tag', [
        ('stake_tokens', EventTag.GENERIC_STAKE),
        ('unstake_tokens', EventTag.GENERIC_UNSTAKE),
        ('claim_nft', EventTag.GENERIC_UNSTAKE),
        ('claim_rewards', EventTag.REWARD_CLAIM),
    ])
    def test_generic_actions(self, action, tag):
        raw = single(OUTSIDE_CONTRACT, {action: {}},
                     log_events=[wasm(_contract_address=OUTSIDE_CONTRACT, action=action)])
        assert classify(raw) == tag

    def test_no_messages_is_unknown(self):
        assert classify(lcd_tx()) == EventTag.UNKNOWN_EVENT

    def test_non_dict_is_unknown(self):
        assert classify(None) == EventTag.UNKNOWN_EVENT


class TestTotality:

    def test_internal_failure_is_error_tag(self, transfer_tx):
        with patch.object(TxSignals, 'from_ledger', side_effect=RuntimeError('boom')):
            assert classify(transfer_tx) == EventTag.ERROR_CLASSIFYING

    @pytest.mark.parametrize('raw', [
        {},
        {'tx': 'garbage', 'logs': [None, 3], 'events': 'x'},
        {'tx': {'body': {'messages': [None, {'msg': 5}]}}},
        {'tx_result': None, 'hash': 'H'},
        lcd_tx(messages=[{'msg': '%%%', 'contract': None}]),
    ])
    def test_malformed_input_yields_a_tag(self, raw):
        assert isinstance(classify(raw), EventTag)

    def test_deterministic(self, sample_batch):
        first = [classify(raw) for raw in sample_batch]
        second = [classify(raw) for raw in sample_batch]
        assert first == second


def test_injected_contracts_are_used():
    custom_staking = 'terra1' + 'd' * 58
    contracts = KnownContracts(daodao_staking=custom_staking)
    raw = single(custom_staking, {'unstake': {'token_ids': ['1']}})
    assert classify(raw, contracts) == EventTag.DAODAO_UNSTAKE
    assert classify(raw) != EventTag.DAODAO_UNSTAKE


def test_rule_table_ends_with_catch_all():
    assert CLASSIFICATION_RULES[-1].name == 'unknown'
    assert len({rule.name for rule in CLASSIFICATION_RULES}) == len(CLASSIFICATION_RULES)


def test_action_names(boost_stake_tx):
    names = action_names(boost_stake_tx)
    assert {'send_nft', 'stake'} <= names


def test_signals_collect_addresses(transfer_tx):
    signals = TxSignals.from_ledger(adapt(transfer_tx))
    assert signals.involves(BOB)
    assert signals.involves(ALICE.upper().replace('TERRA1', 'terra1'))
    assert signals.first_transfer_recipient == BOB
