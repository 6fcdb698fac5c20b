"""
Ingestion Pipeline for Alliance DAO NFT Transactions

Orchestrates the flow of data from a Terra node to normalized records:
1. Fetch the transactions of the requested blocks (LCD) or of a scanned
   block range below the chain tip (RPC)
2. Keep transactions that mention the NFT contract
3. Classify and normalize them
4. Optionally insert new records into BigQuery and track the last height
"""

import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .batch_processor import process_batch, summarize_tags, unclassified_count
from .bigquery_client import BigQueryClient
from .config import KnownContracts, PipelineConfig
from .models import NormalizedTransaction
from .terra_client import TerraLCDClient, TerraRPCClient
from .tx_adapter import adapt

logger = logging.getLogger(__name__)

_HEIGHT_SEPARATORS = re.compile(r'[\s,]+')


@dataclass
class PipelineStats:
    """Statistics from a pipeline run."""
    started_at: str = ""
    completed_at: str = ""
    blocks_requested: int = 0
    blocks_processed: int = 0
    blocks_failed: int = 0
    transactions_found: int = 0
    transactions_inserted: int = 0
    unclassified: int = 0
    event_types: Dict[str, int] = field(default_factory=dict)
    last_height: Optional[int] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_block_heights(text: str) -> List[int]:
    """
    Parse block heights separated by commas, spaces or newlines.

    Non-numeric and non-positive entries are ignored; order is kept and
    duplicates are dropped.
    """
    heights: List[int] = []
    seen = set()
    for token in _HEIGHT_SEPARATORS.split(text or ''):
        if not token.isdigit():
            if token:
                logger.debug(f"Ignoring block height {token!r}")
            continue
        height = int(token)
        if height > 0 and height not in seen:
            seen.add(height)
            heights.append(height)
    return heights


def filter_new_heights(heights: Iterable[int], records: Iterable[NormalizedTransaction]) -> List[int]:
    """Drop heights whose transactions are already loaded."""
    loaded = {int(r.height) for r in records}
    return [h for h in heights if h not in loaded]


def merge_by_hash(existing: Iterable[NormalizedTransaction],
                  new: Iterable[NormalizedTransaction]) -> List[NormalizedTransaction]:
    """Union of two record lists by tx hash (existing wins), newest block first."""
    merged: Dict[str, NormalizedTransaction] = {}
    for record in list(existing) + list(new):
        merged.setdefault(record.hash, record)
    return sorted(merged.values(), key=lambda r: r.height, reverse=True)


def mentions_contract(raw_tx: Dict[str, Any], contract: str) -> bool:
    """True when the contract address appears anywhere in the response.

    RPC results may carry base64 encoded event attributes, so those are
    checked again after decoding.
    """
    if contract in json.dumps(raw_tx, default=str):
        return True
    if isinstance(raw_tx, dict) and 'tx_result' in raw_tx:
        return contract in json.dumps(adapt(raw_tx).all_events, default=str)
    return False


class IngestionPipeline:
    """
    Pipeline for loading Alliance DAO NFT transactions from a Terra node.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        lcd_client: Optional[TerraLCDClient] = None,
        rpc_client: Optional[TerraRPCClient] = None,
        bq_client: Optional[BigQueryClient] = None,
        contracts: Optional[KnownContracts] = None
    ):
        """
        Initialize the ingestion pipeline.

        Args:
            config: Pipeline configuration (uses defaults if not provided)
            lcd_client: LCD client (created lazily when not provided)
            rpc_client: RPC client (created lazily when not provided)
            bq_client: BigQuery client (created lazily when BigQuery is enabled)
            contracts: Known contract addresses used for classification
                (defaults to the configured NFT contract)
        """
        self.config = config or PipelineConfig()
        self.contracts = contracts or self.config.known_contracts()

        self._lcd_client = lcd_client
        self._rpc_client = rpc_client
        self._bq_client = bq_client

        # Block time per height, RPC responses carry none
        self._block_times: Dict[int, Optional[str]] = {}

        logger.info(f"Pipeline initialized with config: {self.config}")

    @property
    def lcd_client(self) -> TerraLCDClient:
        """Lazily initialize LCD client."""
        if self._lcd_client is None:
            self._lcd_client = TerraLCDClient(
                base_url=self.config.lcd_url,
                timeout=self.config.request_timeout,
                max_retries=self.config.max_retries
            )
        return self._lcd_client

    @property
    def rpc_client(self) -> TerraRPCClient:
        """Lazily initialize RPC client."""
        if self._rpc_client is None:
            self._rpc_client = TerraRPCClient(
                base_url=self.config.rpc_url,
                timeout=self.config.request_timeout,
                max_retries=self.config.max_retries
            )
        return self._rpc_client

    @property
    def bq_client(self) -> BigQueryClient:
        """Lazily initialize BigQuery client."""
        if self._bq_client is None:
            self._bq_client = BigQueryClient(
                project_id=self.config.bq_project_id,
                dataset=self.config.bq_dataset,
                table=self.config.bq_table,
                batch_size=self.config.bq_batch_size
            )
        return self._bq_client

    @property
    def bigquery_enabled(self) -> bool:
        return self._bq_client is not None or self.config.bigquery_enabled

    def _pace(self, count: int):
        """Sleep briefly every ``pace_every`` requests."""
        if self.config.pace_every > 0 and count % self.config.pace_every == 0 \
                and self.config.pace_delay_seconds > 0:
            time.sleep(self.config.pace_delay_seconds)

    def load_block_heights(
        self,
        heights: List[int],
        stats: Optional[PipelineStats] = None
    ) -> Tuple[List[NormalizedTransaction], PipelineStats]:
        """
        Load and normalize the NFT transactions of specific blocks.

        A failing block is logged and counted; the remaining blocks are still
        loaded.

        Args:
            heights: Block heights to load
            stats: Stats object to update (a new one is created if omitted)

        Returns:
            Tuple of (records newest first, stats)
        """
        stats = stats or PipelineStats(started_at=_utcnow())
        stats.blocks_requested += len(heights)
        raw_txs: List[Dict[str, Any]] = []

        for index, height in enumerate(heights, start=1):
            try:
                tx_responses = self.lcd_client.get_txs_by_height(height)
                contract_txs = [tx for tx in tx_responses if mentions_contract(tx, self.contracts.nft_contract)]
                raw_txs.extend(contract_txs)
                stats.blocks_processed += 1
                if contract_txs:
                    logger.info(f"Block {height}: {len(contract_txs)} contract transactions")
                else:
                    logger.debug(f"Block {height}: no contract transactions (checked {len(tx_responses)})")
            except Exception as e:
                error_msg = f"Error loading block {height}: {e}"
                logger.error(error_msg)
                stats.errors.append(error_msg)
                stats.blocks_failed += 1

            self._pace(index)

        records = process_batch(raw_txs, self.contracts)
        self._record_batch(records, stats)
        return records, stats

    def _block_time(self, height: int) -> Optional[str]:
        if height not in self._block_times:
            try:
                self._block_times[height] = self.rpc_client.get_block_time(height)
            except Exception as e:
                logger.warning(f"Could not fetch block time for {height}: {e}")
                return None
        return self._block_times[height]

    def scan_batch(self, batch_number: int = 1) -> Tuple[List[NormalizedTransaction], PipelineStats]:
        """
        Scan a range of blocks below the chain tip over RPC.

        Batch 1 covers the newest ``blocks_per_batch`` blocks, batch 2 the
        range before it, and so on. Scanning goes newest first and stops once
        ``max_transactions`` contract transactions are found.
        """
        stats = PipelineStats(started_at=_utcnow())

        try:
            tip = self.rpc_client.get_latest_height()
        except Exception as e:
            error_msg = f"Could not get latest height: {e}"
            logger.error(error_msg)
            stats.errors.append(error_msg)
            stats.completed_at = _utcnow()
            return [], stats

        end_height = tip - (batch_number - 1) * self.config.blocks_per_batch
        start_height = tip - batch_number * self.config.blocks_per_batch
        logger.info(f"Scanning blocks {start_height} to {end_height}")

        raw_txs: List[Dict[str, Any]] = []
        timestamps: Dict[str, str] = {}
        scanned = 0

        for height in range(end_height, start_height - 1, -1):
            if len(raw_txs) >= self.config.max_transactions:
                break
            stats.blocks_requested += 1
            try:
                items = self.rpc_client.tx_search_height(height, per_page=self.config.txs_per_page)
                contract_txs = [tx for tx in items if mentions_contract(tx, self.contracts.nft_contract)]
                if contract_txs:
                    block_time = self._block_time(height)
                    for tx in contract_txs:
                        if block_time and tx.get('hash'):
                            timestamps[tx['hash']] = block_time
                    raw_txs.extend(contract_txs)
                    logger.info(f"Block {height}: {len(contract_txs)} contract transactions")
                stats.blocks_processed += 1
            except Exception as e:
                logger.warning(f"Error scanning block {height}: {e}")
                stats.blocks_failed += 1

            scanned += 1
            self._pace(scanned)

        records = process_batch(raw_txs[:self.config.max_transactions], self.contracts, timestamps=timestamps)
        self._record_batch(records, stats)
        stats.success = True
        stats.completed_at = _utcnow()
        return records, stats

    def _record_batch(self, records: List[NormalizedTransaction], stats: PipelineStats):
        stats.transactions_found += len(records)
        stats.unclassified += unclassified_count(records)
        for tag, count in summarize_tags(records).items():
            stats.event_types[str(tag)] = stats.event_types.get(str(tag), 0) + count
        if records:
            stats.last_height = max(stats.last_height or 0, max(r.height for r in records))

    def store_new_records(self, records: List[NormalizedTransaction], stats: PipelineStats):
        """Insert records not yet in BigQuery and advance the stored height."""
        existing = self.bq_client.get_existing_hashes([r.hash for r in records])
        new_records = [r for r in records if r.hash not in existing]
        logger.info(f"{len(new_records)} new records ({len(records) - len(new_records)} already stored)")

        if new_records:
            stats.transactions_inserted += self.bq_client.insert_transactions(new_records)
        if stats.last_height:
            self.bq_client.update_state(stats.last_height)

    def run(self, heights: Optional[List[int]] = None, batch_number: Optional[int] = None) -> PipelineStats:
        """
        Load blocks and store new records in BigQuery.

        Loads ``heights`` over LCD when given, otherwise scans
        ``batch_number`` (default 1) over RPC.

        Returns:
            PipelineStats with results of the run
        """
        stats = PipelineStats(started_at=_utcnow())

        try:
            if heights is not None:
                records, stats = self.load_block_heights(heights, stats)
            else:
                records, stats = self.scan_batch(batch_number or 1)

            if records and self.bigquery_enabled:
                self.store_new_records(records, stats)

            stats.success = stats.blocks_processed > 0 or (not stats.blocks_requested and not stats.errors)
            logger.info(
                f"Pipeline run completed: {stats.transactions_found} transactions, "
                f"{stats.transactions_inserted} inserted, {stats.unclassified} unclassified"
            )

        except Exception as e:
            error_msg = f"Pipeline error: {str(e)}"
            logger.error(error_msg)
            stats.errors.append(error_msg)
            stats.success = False

        finally:
            stats.completed_at = _utcnow()

        return stats

    def get_status(self) -> Dict[str, Any]:
        """
        Get current pipeline status.

        Returns:
            Dictionary with node health and, when enabled, BigQuery state
        """
        status: Dict[str, Any] = {
            'lcd': {'url': self.config.lcd_url, 'healthy': self.lcd_client.health_check()},
            'rpc': {'url': self.config.rpc_url, 'healthy': self.rpc_client.health_check()},
        }

        if self.bigquery_enabled:
            status['bigquery'] = {
                'table': self.bq_client.table_ref,
                'last_processed_height': self.bq_client.get_last_processed_height(),
                'event_types': self.bq_client.get_event_type_counts(),
            }

        return status

    def close(self):
        """Clean up resources."""
        if self._lcd_client:
            self._lcd_client.close()
        if self._rpc_client:
            self._rpc_client.close()
        if self._bq_client:
            self._bq_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
