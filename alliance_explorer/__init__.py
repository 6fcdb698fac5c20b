"""
Alliance DAO NFT transaction explorer.

Classifies Terra transactions that involve the Alliance DAO NFT collection
and extracts counterparties, prices, fees, token ids and reward breakdowns.
"""

from .batch_processor import process_batch
from .config import DEFAULT_CONTRACTS, KnownContracts, PipelineConfig
from .models import EventTag, NormalizedTransaction, RewardBreakdown
from .tx_adapter import LedgerTx, adapt
from .tx_classifier import classify
from .tx_normalizer import normalize

__version__ = '4.0.0'

__all__ = [
    'DEFAULT_CONTRACTS',
    'EventTag',
    'KnownContracts',
    'LedgerTx',
    'NormalizedTransaction',
    'PipelineConfig',
    'RewardBreakdown',
    'adapt',
    'classify',
    'normalize',
    'process_batch',
]
