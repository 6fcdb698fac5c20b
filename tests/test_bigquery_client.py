"""Tests for the BigQuery storage client (google client mocked)."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.cloud.exceptions import NotFound

from alliance_explorer.bigquery_client import (
    STATE_KEY,
    BigQueryClient,
    BigQueryInsertError,
    to_row,
)
from alliance_explorer.tx_normalizer import normalize

from tests import factories


def query_returning(rows):
    job = MagicMock()
    job.result.return_value = rows
    return job


@pytest.fixture
def bq():
    client = MagicMock()
    client.insert_rows_json.return_value = []
    return client


@pytest.fixture
def store(bq):
    return BigQueryClient('project', dataset='alliance_dao', table='nft_transactions', batch_size=2, client=bq)


def transfers(count):
    return [normalize(factories.p2p_transfer_tx(txhash=f'T{i}', height=100 + i)) for i in range(count)]


def test_table_refs(store):
    assert store.table_ref == 'project.alliance_dao.nft_transactions'
    assert store.state_table_id == 'project.alliance_dao.ingestion_state'


def test_existing_tables_are_not_created(store, bq):
    assert bq.get_table.call_count == 2
    bq.create_table.assert_not_called()


def test_missing_tables_are_created():
    bq = MagicMock()
    bq.get_table.side_effect = NotFound('missing')
    BigQueryClient('project', client=bq)
    created = [c.args[0].table_id for c in bq.create_table.call_args_list]
    assert created == ['nft_transactions', 'ingestion_state']


def test_to_row(transfer_tx):
    row = to_row(normalize(transfer_tx), ingested_at='2024-05-10T13:00:00+00:00')
    assert row['tx_hash'] == '7AA5FE57AA5FE57A'
    assert row['block_height'] == 14000400
    assert row['event_type'] == 'P2P_TRANSFER'
    assert row['ingested_at'] == '2024-05-10T13:00:00+00:00'
    assert json.loads(row['nft']) == {'token_ids': ['7'], 'count': 1}
    assert json.loads(row['price'])['exists'] is False


def test_to_row_claim_rewards(claim_tx):
    rewards = json.loads(to_row(normalize(claim_tx))['rewards'])
    assert rewards['exists'] is True


class TestInsert:

    def test_batches_with_row_ids(self, store, bq):
        assert store.insert_transactions(transfers(3)) == 3
        assert bq.insert_rows_json.call_count == 2
        first = bq.insert_rows_json.call_args_list[0]
        assert first.args[0] == store.table_ref
        assert first.kwargs['row_ids'] == ['T0', 'T1']
        assert [row['tx_hash'] for row in first.args[1]] == ['T0', 'T1']

    def test_empty(self, store, bq):
        assert store.insert_transactions([]) == 0
        bq.insert_rows_json.assert_not_called()

    def test_row_errors_raise(self, store, bq):
        bq.insert_rows_json.return_value = [{'index': 0, 'errors': ['invalid']}]
        with pytest.raises(BigQueryInsertError):
            store.insert_transactions(transfers(1))


class TestQueries:

    def test_existing_hashes(self, store, bq):
        bq.query.return_value = query_returning([SimpleNamespace(tx_hash='T1')])
        assert store.get_existing_hashes(['T1', 'T2']) == {'T1'}
        params = bq.query.call_args.kwargs['job_config'].query_parameters
        assert params[0].values == ['T1', 'T2']

    def test_existing_hashes_empty_input(self, store, bq):
        assert store.get_existing_hashes([]) == set()
        bq.query.assert_not_called()

    def test_existing_hashes_missing_table(self, store, bq):
        bq.query.side_effect = NotFound('gone')
        assert store.get_existing_hashes(['T1']) == set()

    def test_last_processed_height(self, store, bq):
        bq.query.return_value = query_returning([SimpleNamespace(last_height=14000400)])
        assert store.get_last_processed_height() == 14000400

    def test_last_processed_height_without_state(self, store, bq):
        bq.query.return_value = query_returning([])
        assert store.get_last_processed_height() is None

    def test_last_processed_height_on_error(self, store, bq):
        bq.query.side_effect = RuntimeError('denied')
        assert store.get_last_processed_height() is None

    def test_update_state(self, store, bq):
        bq.query.return_value = query_returning([])
        store.update_state(14000400)
        params = {p.name: p.value for p in bq.query.call_args.kwargs['job_config'].query_parameters}
        assert params == {'table_name': STATE_KEY, 'height': 14000400}
        assert 'MERGE' in bq.query.call_args.args[0]

    def test_update_state_failure_is_logged(self, store, bq):
        bq.query.side_effect = RuntimeError('denied')
        store.update_state(1)

    def test_event_type_counts(self, store, bq):
        bq.query.return_value = query_returning([
            SimpleNamespace(event_type='BBL_SALE', count=4),
            SimpleNamespace(event_type='P2P_TRANSFER', count=1),
        ])
        assert store.get_event_type_counts() == {'BBL_SALE': 4, 'P2P_TRANSFER': 1}


def test_context_manager_closes(bq):
    with BigQueryClient('project', client=bq):
        pass
    bq.close.assert_called_once()
