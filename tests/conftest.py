"""
Shared fixtures for the Alliance DAO explorer tests.
"""

from unittest.mock import MagicMock

import pytest

from alliance_explorer.config import DEFAULT_CONTRACTS, PipelineConfig

from tests import factories


@pytest.fixture
def contracts():
    return DEFAULT_CONTRACTS


@pytest.fixture
def claim_tx():
    return factories.claim_tx()


@pytest.fixture
def settle_tx():
    return factories.bbl_settle_tx()


@pytest.fixture
def boost_stake_tx():
    return factories.dao_stake_tx()


@pytest.fixture
def transfer_tx():
    return factories.p2p_transfer_tx()


@pytest.fixture
def sample_batch(claim_tx, settle_tx, boost_stake_tx, transfer_tx):
    """Mixed batch in arbitrary height order."""
    return [transfer_tx, claim_tx, boost_stake_tx, settle_tx]


@pytest.fixture
def pipeline_config():
    return PipelineConfig(
        lcd_url='https://lcd.test',
        rpc_url='https://rpc.test',
        pace_every=0,
        pace_delay_seconds=0,
        blocks_per_batch=5,
        max_transactions=10,
    )


@pytest.fixture
def mock_bq_client():
    client = MagicMock()
    client.get_existing_hashes.return_value = set()
    client.insert_transactions.side_effect = lambda records: len(records)
    client.table_ref = 'project.alliance_dao.nft_transactions'
    return client
