"""Tests for the reward claim analyzer."""

import csv
from decimal import Decimal

import pytest

from alliance_explorer.batch_processor import process_batch
from alliance_explorer.lookups import AddressBook
from alliance_explorer.rewards_analyzer import RewardsAnalyzer

from tests import factories
from tests.factories import ALICE, TREASURY, VALIDATOR_A, VALIDATOR_B


@pytest.fixture
def analyzer(sample_batch):
    unknown = factories.lcd_tx(txhash='ODD', height=13999999, messages=[
        factories.execute(factories.DEFAULT_CONTRACTS.nft_contract, {'mystery': {}})])
    failed = factories.claim_tx(txhash='FA11FA11', height=13999000, code=5)
    return RewardsAnalyzer(process_batch(sample_batch + [unknown, failed]))


def test_validator_totals(analyzer):
    assert analyzer.claim_transactions == 1
    assert analyzer.total_luna_claimed == Decimal('4.000000')
    assert analyzer.get_validator_stats(VALIDATOR_A).total_luna == Decimal('1.5')
    assert analyzer.get_validator_stats(VALIDATOR_B).claims_count == 1
    assert analyzer.get_validator_stats('terravaloper1unknown') is None


def test_top_validators_largest_first(analyzer):
    assert [v for v, _ in analyzer.get_top_validators()] == [VALIDATOR_B, VALIDATOR_A]
    assert len(analyzer.get_top_validators(limit=1)) == 1


def test_claimant_and_treasury_totals(analyzer):
    assert analyzer.get_top_claimants() == [(ALICE, Decimal('3.5'))]
    assert analyzer.total_treasury_take == Decimal('0.4')
    assert dict(analyzer.treasury_totals) == {TREASURY: Decimal('0.4')}


def test_classification_health(analyzer):
    health = analyzer.classification_health()
    assert health.total == 6
    assert health.unknown == 1
    assert health.errors == 0
    assert health.failed_claims == 1
    assert health.unclassified_ratio == pytest.approx(1 / 6)


def test_empty_input():
    analyzer = RewardsAnalyzer([])
    assert analyzer.total_luna_claimed == Decimal(0)
    assert analyzer.classification_health().unclassified_ratio == 0.0
    assert 'Validators: 0' in analyzer.generate_summary_report()


def test_summary_report(analyzer):
    report = analyzer.generate_summary_report()
    assert 'ALLIANCE REWARD CLAIMS SUMMARY' in report
    assert 'Total LUNA Claimed: 4.000000 LUNA' in report
    assert f'1. {VALIDATOR_B}' in report
    assert 'Failed Claims: 1' in report


def test_export_to_csv(analyzer, tmp_path):
    path = tmp_path / 'claims.csv'
    analyzer.export_to_csv(str(path))
    with open(path, newline='') as f:
        rows = list(csv.DictReader(f))
    assert [row['validator_address'] for row in rows] == sorted([VALIDATOR_A, VALIDATOR_B])
    assert {row['amount_luna'] for row in rows} == {'1.500000', '2.500000'}
    assert rows[0]['claimant'] == ALICE


def test_export_stats_to_csv(analyzer, tmp_path):
    path = tmp_path / 'stats.csv'
    analyzer.export_stats_to_csv(str(path))
    with open(path, newline='') as f:
        rows = list(csv.DictReader(f))
    assert rows[0]['validator_address'] == VALIDATOR_B
    assert rows[0]['total_luna'] == '2.500000'


def test_delegate_amount_is_the_claimed_total():
    claim = factories.claim_tx(delegate_amount='3999998uluna')
    analyzer = RewardsAnalyzer(process_batch([claim]))
    assert analyzer.total_luna_claimed == Decimal('3.999998')
    assert analyzer.total_luna_withdrawn == Decimal('4.000000')
    report = analyzer.generate_summary_report()
    assert 'Total LUNA Claimed: 3.999998 LUNA' in report
    assert 'Withdrawn from Validators: 4.000000 LUNA' in report


def test_claim_without_delegate_totals_withdrawals():
    analyzer = RewardsAnalyzer(process_batch([factories.claim_tx(with_delegate=False)]))
    assert analyzer.total_luna_claimed == Decimal('4.000000')


def test_largest_claims(analyzer):
    bigger = factories.claim_tx(txhash='B16B16B16B16B16B', height=14000500, delegate_amount='9000000uluna')
    analyzer = RewardsAnalyzer(analyzer.records + process_batch([bigger]))
    largest = analyzer.get_largest_claims()
    assert [(record.hash, total) for record, total in largest] == [
        ('B16B16B16B16B16B', Decimal('9.000000')),
        ('C1A1C1A1C1A1C1A1', Decimal('4.000000')),
    ]
    assert len(analyzer.get_largest_claims(limit=1)) == 1

    report = analyzer.generate_summary_report()
    assert 'B16B16...B16B (block 14000500): 9.000000 LUNA restaked, 3.5 ampLUNA to the claimant' in report


def test_report_uses_address_book_names(sample_batch):
    book = AddressBook.from_config({
        'members': {ALICE: {'handle': 'alice'}},
        'validators': {VALIDATOR_B: {'name': 'Orion'}},
        'tokens': {'terra1ampluna': {'symbol': 'ampLUNA', 'name': 'Eris Amplified LUNA'}},
    })
    report = RewardsAnalyzer(process_batch(sample_batch), book).generate_summary_report()
    assert f'1. {VALIDATOR_B}\n   Name: Orion' in report
    assert '1. alice (terra1a...aaaa): 3.500000 ampLUNA' in report
    assert '3.5 ampLUNA (Eris Amplified LUNA) to the claimant' in report


def test_report_without_address_book(analyzer):
    report = analyzer.generate_summary_report()
    assert 'Name:' not in report
    assert '1. terra1a...aaaa: 3.500000 ampLUNA' in report
