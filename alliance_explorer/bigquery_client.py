"""
BigQuery Client Module for the Alliance DAO transaction pipeline

Stores normalized transactions in their persisted month-file shape, one row
per transaction with the nested parts JSON-encoded.

Uses a state table to track the last ingested block height.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from google.api_core import retry
from google.cloud import bigquery
from google.cloud.exceptions import NotFound

from .models import NormalizedTransaction
from .month_export import to_persisted

logger = logging.getLogger(__name__)

STATE_KEY = 'nft_transactions'

TRANSACTION_SCHEMA = [
    bigquery.SchemaField("tx_hash", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("block_height", "INTEGER", mode="REQUIRED"),
    bigquery.SchemaField("timestamp", "STRING"),
    bigquery.SchemaField("event_type", "STRING"),
    bigquery.SchemaField("nft", "STRING"),
    bigquery.SchemaField("seller", "STRING"),
    bigquery.SchemaField("buyer", "STRING"),
    bigquery.SchemaField("price", "STRING"),
    bigquery.SchemaField("fees", "STRING"),
    bigquery.SchemaField("rewards", "STRING"),
    bigquery.SchemaField("ingested_at", "TIMESTAMP"),
]

_NESTED_FIELDS = ('nft', 'seller', 'buyer', 'price', 'fees', 'rewards')


class BigQueryInsertError(RuntimeError):
    """Raised when BigQuery rejects rows of a streaming insert."""


def to_row(record: NormalizedTransaction, ingested_at: Optional[str] = None) -> Dict[str, Any]:
    """Flatten a record into a table row (nested parts as JSON strings)."""
    persisted = to_persisted(record)
    row = {
        'tx_hash': persisted['tx_hash'],
        'block_height': persisted['block_height'],
        'timestamp': persisted['timestamp'],
        'event_type': persisted['event_type'],
        'ingested_at': ingested_at or datetime.now(timezone.utc).isoformat(),
    }
    for name in _NESTED_FIELDS:
        row[name] = json.dumps(persisted[name])
    return row


class BigQueryClient:
    """Client for storing Alliance DAO NFT transactions in Google BigQuery."""

    def __init__(
        self,
        project_id: str,
        dataset: str = "alliance_dao",
        table: str = "nft_transactions",
        batch_size: int = 500,
        client: Optional[bigquery.Client] = None
    ):
        """Initialize BigQuery client."""
        self.project_id = project_id
        self.dataset = dataset
        self.table = table
        self.batch_size = batch_size

        self.table_ref = f"{project_id}.{dataset}.{table}"
        self.state_table_id = f"{project_id}.{dataset}.ingestion_state"

        self.client = client or bigquery.Client(project=project_id)
        logger.info(f"BigQuery client initialized for project: {project_id}")

        self._ensure_table(self.table_ref, TRANSACTION_SCHEMA)
        self._ensure_table(self.state_table_id, [
            bigquery.SchemaField("table_name", "STRING", mode="REQUIRED"),
            bigquery.SchemaField("last_height", "INTEGER"),
            bigquery.SchemaField("updated_at", "TIMESTAMP"),
        ])

    def _ensure_table(self, table_id: str, schema: List[bigquery.SchemaField]):
        """Create a table if it doesn't exist."""
        try:
            self.client.get_table(table_id)
            logger.debug(f"Table {table_id} already exists")
        except NotFound:
            try:
                self.client.create_table(bigquery.Table(table_id, schema=schema))
                logger.info(f"Created table: {table_id}")
            except Exception as e:
                logger.warning(f"Could not create table {table_id}: {e}")

    def insert_transactions(self, records: List[NormalizedTransaction]) -> int:
        """
        Insert records using streaming inserts, in batches.

        Returns:
            Number of rows inserted

        Raises:
            BigQueryInsertError: If BigQuery reports row errors
        """
        if not records:
            return 0

        ingested_at = datetime.now(timezone.utc).isoformat()
        rows = [to_row(record, ingested_at) for record in records]
        inserted = 0

        for start in range(0, len(rows), self.batch_size):
            batch = rows[start:start + self.batch_size]
            errors = self.client.insert_rows_json(
                self.table_ref,
                batch,
                row_ids=[row['tx_hash'] for row in batch],
                retry=retry.Retry(deadline=60)
            )
            if errors:
                logger.error(f"Errors inserting rows: {errors}")
                raise BigQueryInsertError(f"{len(errors)} rows rejected by {self.table_ref}")
            inserted += len(batch)

        logger.info(f"Inserted {inserted} transactions")
        return inserted

    def get_existing_hashes(self, tx_hashes: List[str]) -> Set[str]:
        """Subset of ``tx_hashes`` already stored."""
        if not tx_hashes:
            return set()

        query = f"""
        SELECT DISTINCT tx_hash
        FROM `{self.table_ref}`
        WHERE tx_hash IN UNNEST(@hashes)
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[bigquery.ArrayQueryParameter("hashes", "STRING", list(tx_hashes))]
        )
        try:
            return {row.tx_hash for row in self.client.query(query, job_config=job_config).result()}
        except NotFound:
            logger.warning(f"Table {self.table_ref} not found")
            return set()

    def get_last_processed_height(self) -> Optional[int]:
        """Last ingested block height from the state table."""
        query = f"""
        SELECT last_height
        FROM `{self.state_table_id}`
        WHERE table_name = @table_name
        LIMIT 1
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[bigquery.ScalarQueryParameter("table_name", "STRING", STATE_KEY)]
        )
        try:
            results = list(self.client.query(query, job_config=job_config).result())
            return results[0].last_height if results else None
        except Exception as e:
            logger.debug(f"Could not read state: {e}")
            return None

    def update_state(self, height: int):
        """Record ``height`` as the last ingested block."""
        query = f"""
        MERGE `{self.state_table_id}` T
        USING (SELECT @table_name AS table_name) S
        ON T.table_name = S.table_name
        WHEN MATCHED THEN
            UPDATE SET last_height = GREATEST(IFNULL(T.last_height, 0), @height),
                       updated_at = CURRENT_TIMESTAMP()
        WHEN NOT MATCHED THEN
            INSERT (table_name, last_height, updated_at)
            VALUES (@table_name, @height, CURRENT_TIMESTAMP())
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("table_name", "STRING", STATE_KEY),
                bigquery.ScalarQueryParameter("height", "INT64", height),
            ]
        )
        try:
            self.client.query(query, job_config=job_config).result()
            logger.info(f"Updated state: last_height={height}")
        except Exception as e:
            logger.warning(f"Could not update state: {e}")

    def get_event_type_counts(self) -> Dict[str, int]:
        """Number of stored transactions per event type."""
        query = f"""
        SELECT event_type, COUNT(*) AS count
        FROM `{self.table_ref}`
        GROUP BY event_type
        ORDER BY count DESC
        """
        try:
            return {row.event_type: row.count for row in self.client.query(query).result()}
        except NotFound:
            return {}

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
