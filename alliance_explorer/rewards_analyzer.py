"""
Reward Claim Analyzer

Analyzes normalized Alliance DAO transactions to track how staking rewards
are claimed.

Key Features:
- Aggregate claimed LUNA per validator
- Track the liquid staking token paid to each claimant
- Track the treasury's share per treasury address
- Report classification health (unknown, errors, failed claims)
- Export per-claim and per-validator data to CSV
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .amount_formatter import SIX_PLACES, to_decimal
from .lookups import AddressBook, format_address_with_name, format_amount_display, format_tx_hash
from .models import EventTag, NormalizedTransaction, REWARD_CLAIM_TAGS

logger = logging.getLogger(__name__)

_ZERO = Decimal(0)


@dataclass
class ClaimRecord:
    """LUNA withdrawn from one validator in one claim transaction."""
    validator_address: str
    amount_luna: Decimal
    tx_hash: str
    height: int
    timestamp: Optional[str]
    claimant: Optional[str]


@dataclass
class ValidatorRewardStats:
    """Claim statistics for a single validator."""
    validator_address: str
    total_luna: Decimal = _ZERO
    claims_count: int = 0
    first_height: int = 0
    last_height: int = 0
    claimants: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def avg_luna_per_claim(self) -> Decimal:
        if not self.claims_count:
            return _ZERO
        return (self.total_luna / self.claims_count).quantize(SIX_PLACES)


@dataclass
class ClassificationHealth:
    """How much of a batch the classifier could not place."""
    total: int = 0
    unknown: int = 0
    errors: int = 0
    failed_claims: int = 0

    @property
    def unclassified_ratio(self) -> float:
        if not self.total:
            return 0.0
        return (self.unknown + self.errors) / self.total


class RewardsAnalyzer:
    """
    Analyzer for Alliance reward claims.

    Walks the reward breakdown of every claim record and builds per-validator,
    per-claimant and per-treasury totals.
    """

    def __init__(self, records: Iterable[NormalizedTransaction], address_book: Optional[AddressBook] = None):
        """
        Initialize the analyzer.

        Args:
            records: Normalized transactions (any event type)
            address_book: Optional names for validators and claimants in the report
        """
        self.records: List[NormalizedTransaction] = list(records)
        self.address_book = address_book or AddressBook()
        self.claims: List[ClaimRecord] = []
        self.stats_by_validator: Dict[str, ValidatorRewardStats] = {}
        self.claimant_totals: Dict[str, Decimal] = defaultdict(lambda: _ZERO)
        self.treasury_totals: Dict[str, Decimal] = defaultdict(lambda: _ZERO)
        self.claim_transactions = 0
        # Successful claims with their restaked LUNA (delegate amount, or the withdrawals without one)
        self.claim_totals: List[Tuple[NormalizedTransaction, Decimal]] = []

        self._extract_claims()
        self._calculate_statistics()

    def _extract_claims(self):
        """Collect validator claims and token splits from claim records."""
        for record in self.records:
            if record.event_tag not in REWARD_CLAIM_TAGS or record.reward_breakdown is None:
                continue
            # Failed claims moved nothing
            if record.event_tag == EventTag.ALLY_REWARDS_CLAIM_FAILED:
                continue

            rewards = record.reward_breakdown
            self.claim_transactions += 1
            claimant = rewards.recipient or record.counterparty_a

            total = to_decimal(rewards.total_luna_claimed)
            if total is not None:
                self.claim_totals.append((record, total))

            for claim in rewards.validator_claims:
                amount = to_decimal(claim.amount_luna)
                if amount is None:
                    logger.debug(f"Skipping claim with amount {claim.amount_luna!r} in {record.hash}")
                    continue
                self.claims.append(ClaimRecord(
                    validator_address=claim.validator_address,
                    amount_luna=amount,
                    tx_hash=record.hash,
                    height=record.height,
                    timestamp=record.timestamp,
                    claimant=claimant,
                ))

            user_portion = to_decimal(rewards.user_portion)
            if claimant and user_portion is not None:
                self.claimant_totals[claimant] += user_portion

            treasury_portion = to_decimal(rewards.treasury_portion)
            if rewards.treasury_address and treasury_portion is not None:
                self.treasury_totals[rewards.treasury_address] += treasury_portion

            if not rewards.split_balanced:
                logger.warning(f"Unbalanced treasury split in {record.hash}")

        logger.info(f"Extracted {len(self.claims)} validator claims from {self.claim_transactions} claim transactions")

    def _calculate_statistics(self):
        """Calculate statistics for each validator."""
        claims_by_validator: Dict[str, List[ClaimRecord]] = defaultdict(list)
        for claim in self.claims:
            claims_by_validator[claim.validator_address].append(claim)

        for validator, claims in claims_by_validator.items():
            heights = [c.height for c in claims]
            claimants: Dict[str, Decimal] = defaultdict(lambda: _ZERO)
            for claim in claims:
                if claim.claimant:
                    claimants[claim.claimant] += claim.amount_luna

            self.stats_by_validator[validator] = ValidatorRewardStats(
                validator_address=validator,
                total_luna=sum((c.amount_luna for c in claims), _ZERO),
                claims_count=len(claims),
                first_height=min(heights),
                last_height=max(heights),
                claimants=dict(claimants),
            )

    def get_validator_stats(self, validator_address: str) -> Optional[ValidatorRewardStats]:
        return self.stats_by_validator.get(validator_address)

    def get_top_validators(self, limit: int = 10) -> List[Tuple[str, ValidatorRewardStats]]:
        """
        Get top validators by total LUNA claimed.

        Args:
            limit: Maximum number of validators to return

        Returns:
            List of (validator_address, stats) tuples, largest first
        """
        sorted_validators = sorted(
            self.stats_by_validator.items(),
            key=lambda x: (x[1].total_luna, x[0]),
            reverse=True
        )
        return sorted_validators[:limit]

    def get_top_claimants(self, limit: int = 10) -> List[Tuple[str, Decimal]]:
        """Claimants ordered by liquid staking token received."""
        return sorted(self.claimant_totals.items(), key=lambda x: (x[1], x[0]), reverse=True)[:limit]

    @property
    def total_luna_claimed(self) -> Decimal:
        return sum((total for _, total in self.claim_totals), _ZERO)

    @property
    def total_luna_withdrawn(self) -> Decimal:
        return sum((stats.total_luna for stats in self.stats_by_validator.values()), _ZERO)

    def get_largest_claims(self, limit: int = 5) -> List[Tuple[NormalizedTransaction, Decimal]]:
        """Claim transactions ordered by restaked LUNA, largest first."""
        return sorted(self.claim_totals, key=lambda x: (x[1], x[0].height), reverse=True)[:limit]

    @property
    def total_treasury_take(self) -> Decimal:
        return sum(self.treasury_totals.values(), _ZERO)

    def classification_health(self) -> ClassificationHealth:
        """Count unclassified records and failed claims."""
        health = ClassificationHealth(total=len(self.records))
        for record in self.records:
            if record.event_tag == EventTag.UNKNOWN_EVENT:
                health.unknown += 1
            elif record.event_tag == EventTag.ERROR_CLASSIFYING:
                health.errors += 1
            elif record.event_tag == EventTag.ALLY_REWARDS_CLAIM_FAILED:
                health.failed_claims += 1
        return health

    def generate_summary_report(self) -> str:
        """
        Generate a text summary report of reward claims.

        Returns:
            Formatted summary report
        """
        report_lines = []
        report_lines.append("=" * 80)
        report_lines.append("ALLIANCE REWARD CLAIMS SUMMARY")
        report_lines.append("=" * 80)
        report_lines.append("")

        report_lines.append(f"Claim Transactions: {self.claim_transactions}")
        report_lines.append(f"Validators: {len(self.stats_by_validator)}")
        report_lines.append(f"Total LUNA Claimed: {self.total_luna_claimed:,.6f} LUNA")
        report_lines.append(f"Withdrawn from Validators: {self.total_luna_withdrawn:,.6f} LUNA")
        report_lines.append(f"Treasury Take: {self.total_treasury_take:,.6f} ampLUNA")
        report_lines.append("")

        report_lines.append("-" * 80)
        report_lines.append("TOP 10 VALIDATORS BY LUNA CLAIMED")
        report_lines.append("-" * 80)
        report_lines.append("")

        for i, (validator, stats) in enumerate(self.get_top_validators(limit=10), 1):
            report_lines.append(f"{i}. {validator}")
            info = self.address_book.lookup(validator)
            if info:
                report_lines.append(f"   Name: {info.get('name') or info.get('handle')}")
            report_lines.append(f"   Total Claimed: {stats.total_luna:,.6f} LUNA")
            report_lines.append(f"   Claims: {stats.claims_count:,}")
            report_lines.append(f"   Blocks: {stats.first_height} - {stats.last_height}")
            report_lines.append(f"   Avg per Claim: {stats.avg_luna_per_claim:,.6f} LUNA")
            report_lines.append("")

        report_lines.append("-" * 80)
        report_lines.append("TOP 10 CLAIMANTS BY ampLUNA RECEIVED")
        report_lines.append("-" * 80)
        report_lines.append("")

        for i, (claimant, amount) in enumerate(self.get_top_claimants(limit=10), 1):
            report_lines.append(f"{i}. {format_address_with_name(claimant, self.address_book)}: {amount:,.6f} ampLUNA")

        report_lines.append("")
        report_lines.append("-" * 80)
        report_lines.append("LARGEST CLAIMS")
        report_lines.append("-" * 80)

        for record, total in self.get_largest_claims():
            received = format_amount_display(record.reward_breakdown.formatted, self.address_book.tokens)
            report_lines.append(
                f"{format_tx_hash(record.hash)} (block {record.height}): "
                f"{total:,.6f} LUNA restaked, {received} to the claimant"
            )

        health = self.classification_health()
        report_lines.append("")
        report_lines.append("-" * 80)
        report_lines.append("CLASSIFICATION HEALTH")
        report_lines.append("-" * 80)
        report_lines.append(f"Records: {health.total}")
        report_lines.append(f"Unknown: {health.unknown}")
        report_lines.append(f"Errors: {health.errors}")
        report_lines.append(f"Failed Claims: {health.failed_claims}")
        report_lines.append(f"Unclassified Ratio: {health.unclassified_ratio:.1%}")
        report_lines.append("=" * 80)

        return "\n".join(report_lines)

    def export_to_csv(self, filename: str):
        """
        Export validator claims to a CSV file.

        Args:
            filename: Output CSV filename
        """
        import csv

        with open(filename, 'w', newline='') as csvfile:
            fieldnames = [
                'validator_address',
                'amount_luna',
                'tx_hash',
                'height',
                'timestamp',
                'claimant'
            ]
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames)

            writer.writeheader()
            for claim in sorted(self.claims, key=lambda c: (c.height, c.validator_address)):
                writer.writerow({
                    'validator_address': claim.validator_address,
                    'amount_luna': f"{claim.amount_luna:.6f}",
                    'tx_hash': claim.tx_hash,
                    'height': claim.height,
                    'timestamp': claim.timestamp or '',
                    'claimant': claim.claimant or ''
                })

        logger.info(f"Exported {len(self.claims)} claim records to {filename}")

    def export_stats_to_csv(self, filename: str):
        """
        Export per-validator statistics to a CSV file.

        Args:
            filename: Output CSV filename
        """
        import csv

        with open(filename, 'w', newline='') as csvfile:
            fieldnames = ['validator_address', 'total_luna', 'claims_count', 'first_height', 'last_height']
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames)

            writer.writeheader()
            for validator, stats in self.get_top_validators(limit=len(self.stats_by_validator)):
                writer.writerow({
                    'validator_address': validator,
                    'total_luna': f"{stats.total_luna:.6f}",
                    'claims_count': stats.claims_count,
                    'first_height': stats.first_height,
                    'last_height': stats.last_height
                })

        logger.info(f"Exported statistics for {len(self.stats_by_validator)} validators to {filename}")
