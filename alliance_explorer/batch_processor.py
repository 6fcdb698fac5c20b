"""
Batch processing of raw transactions into normalized records.
"""

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_CONTRACTS, KnownContracts
from .models import UNCLASSIFIED_TAGS, EventTag, NormalizedTransaction
from .tx_classifier import action_names
from .tx_normalizer import normalize

logger = logging.getLogger(__name__)


def process_batch(raw_txs: Sequence[Dict[str, Any]],
                  contracts: KnownContracts = DEFAULT_CONTRACTS,
                  timestamps: Optional[Dict[str, str]] = None) -> List[NormalizedTransaction]:
    """
    Normalize a batch of transactions, newest block first.

    Each transaction is normalized on its own; the result is sorted by height
    descending, keeping input order within a block. No de-duplication happens
    here (see ``ingestion_pipeline.merge_by_hash``).

    Args:
        raw_txs: Raw LCD/RPC transaction dicts
        contracts: Known contract addresses
        timestamps: Optional block time per tx hash for responses without one
    """
    timestamps = timestamps or {}
    records = []

    for raw in raw_txs:
        txhash = (raw.get('txhash') or raw.get('hash')) if isinstance(raw, dict) else None
        timestamp = timestamps.get(txhash) if isinstance(txhash, str) else None
        record = normalize(raw, contracts, timestamp=timestamp)
        if record.event_tag == EventTag.UNKNOWN_EVENT and logger.isEnabledFor(logging.DEBUG):
            _log_unknown(record, raw)
        records.append(record)

    records.sort(key=lambda r: r.height, reverse=True)

    unclassified = unclassified_count(records)
    if unclassified:
        logger.info(f"Processed {len(records)} transactions, {unclassified} unclassified")
    else:
        logger.info(f"Processed {len(records)} transactions")

    return records


def _log_unknown(record: NormalizedTransaction, raw: Any) -> None:
    try:
        actions = sorted(action_names(raw))
    except Exception as e:
        actions = [f"<unavailable: {e}>"]
    logger.debug(f"Unknown event {record.hash}, actions: {actions}")


def summarize_tags(records: Iterable[NormalizedTransaction]) -> Counter:
    """Count records per event tag."""
    return Counter(record.event_tag for record in records)


def unclassified_count(records: Iterable[NormalizedTransaction]) -> int:
    """Number of records tagged UNKNOWN_EVENT or ERROR_CLASSIFYING."""
    return sum(1 for record in records if record.event_tag in UNCLASSIFIED_TAGS)
