"""
Configuration for the Alliance DAO transaction explorer.

Holds the known Terra contract addresses the classifier keys on, token
denomination aliases used by amount formatting, and the pipeline
configuration loaded from the environment.
"""

import os
from dataclasses import dataclass, replace
from typing import FrozenSet, Optional, Tuple


# Transfers/coins at or below this many base units are treated as noise
# (gas refunds, dust) and never picked as a sale price.
NOISE_THRESHOLD = 100000

MICRO_UNITS = 1000000

GENERIC_TOKEN_SYMBOL = 'TOKEN'
LIQUID_STAKING_SYMBOL = 'ampLUNA'

BOOST_MEMO_MARKERS = ('boostdao.io',)
NFTSWITCH_MEMO_MARKERS = ('nftswitch',)
BBL_MEMO_MARKERS = ('backbone labs', 'backbonelabs', 'necropolis')


@dataclass(frozen=True)
class KnownContracts:
    """Contract and wallet addresses with a fixed role in classification."""
    nft_contract: str = 'terra1phr9fngjv7a8an4dhmhd0u0f98wazxfnzccqtyheq4zqrrp4fpuqw3apw9'
    ampluna_token: str = 'terra1ecgazyd0waaj3g7l9cmy5gulhxkps2gmxu9ghducvuypjq68mq2s5lvsct'

    # Governance
    daodao_staking: str = 'terra1c57ur376szdv8rtes6sa9nst4k536dynunksu8tx5zu4z5u3am6qmvqx47'
    daodao_voting: str = 'terra14gv57x9lmuc04jzsmsz5f2heyfxfndey2v8hkkjt7z9p6d7xw35stx69j2'

    # Marketplaces
    bbl_marketplace: str = 'terra1ej4cv98e9g2zjefr5auf2nwtq4xl3dm7x0qml58yna2ml2hk595s7gccs9'
    bluna_token: str = 'terra17aj4ty4sz4yhgm08na8drc0v03v2jwr3waxcqrwhajj729zhl7zqnpc0ml'
    boost_marketplace: str = 'terra1kj7pasyahtugajx9qud02r5jqaf60mtm7g5v9utr94rmdfftx0vqspf4at'
    boost_fee_wallet: str = 'terra1rppeahhmtvy4fs9xr9zkjrf4xs9ak4ygy62slq'

    # Tools
    enterprise_tool: str = 'terra1e54tcdyulrtslvf79htx4zntqntd4r550cg22sj24r6gfm0anrvq0y8tdv'
    otc_contract: str = 'terra1wm7rag4feqm2w3qfj85gsmn3g38mlxtfvu7zmsydnd8ez3dlkdks0n8yk0'
    otc_operator: str = 'terra1hkqq2sy3dvvgt8sw2h0nfc3nzufa27d3xj69cf'
    otc_fee_wallet: str = 'terra1qdpyuvy9cjmelly6cf604ck7srpt040nee9cjy'

    # Legacy
    nft_switch: str = 'terra1c22qq8c5frqg2f2n95ksm5nct255fglk2ldm3u5chmqtu5k82gnq5y0j89'
    boost_protocol: str = 'terra1ss4tkg2de6r99s4s2cr92g2v2wea06v82klars4pelxxvsrsmgcsle7t5d'

    # Treasury and chain module accounts
    dao_treasury: str = 'terra1sffd4efk2jpdt894r04qwmtjqrrjfc52tmj6vkzjxqhd8qqu2drs3m5vzm'
    fee_collector: str = 'terra17xpfvakm2amg962yls6f84z3kell8c5lkaeqfa'

    def staking_and_marketplaces(self) -> FrozenSet[str]:
        """Contracts an NFT can be sent into (never a peer-to-peer recipient)."""
        return frozenset(addr.lower() for addr in (
            self.bbl_marketplace,
            self.boost_protocol,
            self.boost_marketplace,
            self.daodao_staking,
            self.enterprise_tool,
            self.nft_switch,
            self.otc_contract,
        ))

    def payment_intermediaries(self) -> FrozenSet[str]:
        """Addresses that receive coins in a sale without being the seller."""
        return frozenset(addr.lower() for addr in (
            self.bbl_marketplace,
            self.boost_protocol,
            self.boost_marketplace,
            self.boost_fee_wallet,
            self.nft_switch,
            self.otc_contract,
            self.otc_fee_wallet,
            self.fee_collector,
        ))


DEFAULT_CONTRACTS = KnownContracts()

# Denomination fragments mapped to display symbols, checked in order.
DENOM_ALIASES: Tuple[Tuple[str, str], ...] = (
    (DEFAULT_CONTRACTS.bluna_token, 'bLUNA'),
    (DEFAULT_CONTRACTS.ampluna_token, 'ampLUNA'),
    ('ibc/05238e98', 'bLUNA'),
    ('ibc/b3504e092456ba618cc28ac671a71fb08c6ca0fd0c7f1b5c2cca6c28bada', 'ampLUNA'),
    ('ibc/05d', 'ampLUNA'),
    ('bluna', 'bLUNA'),
    ('ampluna', 'ampLUNA'),
    ('uluna', 'LUNA'),
)

ADDRESS_BOOK_URL = (
    'https://raw.githubusercontent.com/defipatriot/transaction-tracker/main/alliance-dao-config.json'
)


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


@dataclass
class PipelineConfig:
    """Configuration for the ingestion pipeline."""
    # Terra endpoints
    lcd_url: str = 'https://terra-lcd.publicnode.com'
    rpc_url: str = 'https://terra-rpc.polkachu.com'
    request_timeout: int = 30
    max_retries: int = 3

    # Tracked collection
    nft_contract: str = DEFAULT_CONTRACTS.nft_contract

    # Request pacing: sleep pace_delay_seconds after every pace_every blocks
    pace_every: int = 10
    pace_delay_seconds: float = 0.1

    # Batch scanning over RPC
    blocks_per_batch: int = 1000
    max_transactions: int = 100
    txs_per_page: int = 100

    # BigQuery sink (disabled when bq_project_id is empty)
    bq_project_id: Optional[str] = None
    bq_dataset: str = 'alliance_dao'
    bq_table: str = 'nft_transactions'
    bq_batch_size: int = 500

    @property
    def bigquery_enabled(self) -> bool:
        return bool(self.bq_project_id)

    def known_contracts(self) -> KnownContracts:
        """Default contract addresses with the tracked collection swapped in."""
        return replace(DEFAULT_CONTRACTS, nft_contract=self.nft_contract)

    @classmethod
    def from_env(cls) -> 'PipelineConfig':
        """Build configuration from environment variables."""
        defaults = cls()
        return cls(
            lcd_url=os.environ.get('TERRA_LCD_URL', defaults.lcd_url),
            rpc_url=os.environ.get('TERRA_RPC_URL', defaults.rpc_url),
            request_timeout=_env_int('REQUEST_TIMEOUT', defaults.request_timeout),
            max_retries=_env_int('MAX_RETRIES', defaults.max_retries),
            nft_contract=os.environ.get('NFT_CONTRACT', defaults.nft_contract),
            pace_every=_env_int('PACE_EVERY', defaults.pace_every),
            pace_delay_seconds=_env_float('PACE_DELAY_SECONDS', defaults.pace_delay_seconds),
            blocks_per_batch=_env_int('BLOCKS_PER_BATCH', defaults.blocks_per_batch),
            max_transactions=_env_int('MAX_TRANSACTIONS', defaults.max_transactions),
            bq_project_id=os.environ.get('BQ_PROJECT_ID') or None,
            bq_dataset=os.environ.get('BQ_DATASET', defaults.bq_dataset),
            bq_table=os.environ.get('BQ_TABLE', defaults.bq_table),
            bq_batch_size=_env_int('BQ_BATCH_SIZE', defaults.bq_batch_size),
        )
