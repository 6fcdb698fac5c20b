"""
Month files: the persisted JSON form of normalized transactions.

Normalized records are grouped by calendar month (UTC) and written as one
document per month with a metadata header. Published month files can be
loaded back into records and merged with newly fetched transactions.

Key Features:
- Stable persisted record shape (buyer = counterparty_a, seller = counterparty_b)
- Lossless round trip: to_persisted(from_persisted(r)) == r
- Month planning: oldest month skipped, newest month written as partial
- Completeness check when merging new records into a month
"""

import calendar
import json
import logging
import os
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from .lookups import AddressBook
from .models import (
    REWARD_CLAIM_TAGS,
    EventTag,
    NormalizedTransaction,
    RewardBreakdown,
    ValidatorClaim,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = '2.0.0'
DATA_SOURCE = 'Alliance DAO TX Explorer'
EXPLORER_VERSION = '4.0'
PARTIAL_FILENAME = 'current-partial.json'

_LEADING_DIGITS_RE = re.compile(r'^\d*')

MONTH_NAMES = ['', 'January', 'February', 'March', 'April', 'May', 'June',
               'July', 'August', 'September', 'October', 'November', 'December']


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 block time ('2024-05-01T12:00:00Z') as UTC."""
    if not value:
        return None
    text = value.strip().replace('Z', '+00:00')
    # Block times can carry nanoseconds; keep microseconds
    if '.' in text:
        head, _, tail = text.partition('.')
        digits = _LEADING_DIGITS_RE.match(tail).group(0)
        zone = tail[len(digits):]
        text = f"{head}.{digits[:6].ljust(6, '0')}{zone}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable timestamp: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def iso_utc(value: datetime) -> str:
    """Format as '2024-05-01T12:00:00.000Z'."""
    value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


# =========================================================================
# Persisted record shape
# =========================================================================

def _party(address: Optional[str], address_book: Optional[AddressBook]) -> Dict[str, Any]:
    party = {
        'exists': bool(address) and address != 'N/A',
        'address': address or None,
    }
    if address_book is not None:
        info = address_book.lookup(address) or {}
        party['handle'] = info.get('handle')
        party['name'] = info.get('name')
        party['type'] = info.get('type')
    return party


def _persisted_rewards(rewards: Optional[RewardBreakdown]) -> Dict[str, Any]:
    if rewards is None:
        return {'exists': False, 'formatted': None}
    return {
        'exists': True,
        'type': rewards.type,
        'ampLunaTotal': rewards.minted_liquid_token,
        'ampLunaUser': rewards.user_portion,
        'ampLunaTreasury': rewards.treasury_portion,
        'totalLuna': rewards.total_luna_claimed,
        'validatorCount': rewards.validator_count,
        'validatorClaims': [
            {
                'validator': claim.validator_address,
                'amount': claim.amount_luna,
                'amountRaw': claim.amount_raw,
            }
            for claim in rewards.validator_claims
        ],
        'stakingValidator': rewards.staking_validator,
        'recipient': rewards.recipient,
        'treasuryAddress': rewards.treasury_address,
        'formatted': rewards.formatted,
    }


def to_persisted(record: NormalizedTransaction, address_book: Optional[AddressBook] = None) -> Dict[str, Any]:
    """
    Convert a record to the persisted month-file shape.

    Args:
        record: Normalized transaction
        address_book: When given, buyer/seller get handle/name/type fields

    Returns:
        JSON-serializable dict
    """
    return {
        'block_height': int(record.height),
        'timestamp': record.timestamp,
        'tx_hash': record.hash,
        'event_type': str(record.event_tag),
        'nft': {
            'token_ids': list(record.token_ids),
            'count': record.nft_count if isinstance(record.nft_count, int) else 0,
        },
        'seller': _party(record.counterparty_b, address_book),
        'buyer': _party(record.counterparty_a, address_book),
        'price': {
            'exists': bool(record.display_amount),
            'formatted': record.display_amount or None,
            'value': record.price,
            'raw_amount': record.price_raw_amount,
            'denom': record.price_denom,
        },
        'fees': {
            'exists': bool(record.fees),
            'formatted': record.fees or None,
        },
        'rewards': _persisted_rewards(record.reward_breakdown),
    }


def _event_tag(value: Any) -> EventTag:
    try:
        return EventTag(value)
    except ValueError:
        logger.warning(f"Unknown event type in month file: {value}")
        return EventTag.UNKNOWN_EVENT


def _rewards_from_persisted(rewards: Dict[str, Any]) -> Optional[RewardBreakdown]:
    if not rewards.get('exists') or rewards.get('type') != 'detailed':
        return None
    claims = tuple(
        ValidatorClaim(
            validator_address=claim.get('validator'),
            amount_luna=claim.get('amount'),
            amount_raw=claim.get('amountRaw'),
        )
        for claim in rewards.get('validatorClaims') or []
    )
    return RewardBreakdown(
        total_luna_claimed=rewards.get('totalLuna'),
        minted_liquid_token=rewards.get('ampLunaTotal'),
        validator_claims=claims,
        user_portion=rewards.get('ampLunaUser'),
        treasury_portion=rewards.get('ampLunaTreasury'),
        treasury_address=rewards.get('treasuryAddress'),
        staking_validator=rewards.get('stakingValidator'),
        recipient=rewards.get('recipient'),
        formatted=rewards.get('formatted'),
        type=rewards.get('type'),
    )


def _legacy_price(display: Optional[str], rewards: Optional[RewardBreakdown]) -> Optional[str]:
    """Price of a file written without 'price.value': a detailed claim displays its reward."""
    return None if rewards is not None else display


def from_persisted(item: Dict[str, Any]) -> NormalizedTransaction:
    """Rebuild a NormalizedTransaction from its persisted form."""
    tag = _event_tag(item.get('event_type'))
    nft = item.get('nft') or {}
    price = item.get('price') or {}
    fees = item.get('fees') or {}
    rewards = _rewards_from_persisted(item.get('rewards') or {})
    display = price.get('formatted')

    return NormalizedTransaction(
        hash=item.get('tx_hash', ''),
        height=int(item.get('block_height', 0)),
        timestamp=item.get('timestamp'),
        event_tag=tag,
        counterparty_a=(item.get('buyer') or {}).get('address'),
        counterparty_b=(item.get('seller') or {}).get('address'),
        token_ids=tuple(str(t) for t in nft.get('token_ids') or []),
        price=price['value'] if 'value' in price else _legacy_price(display, rewards),
        price_raw_amount=price.get('raw_amount'),
        price_denom=price.get('denom'),
        reward_breakdown=rewards,
        fees=fees.get('formatted'),
        display_amount=display,
        nft_count='N/A' if tag in REWARD_CLAIM_TAGS else int(nft.get('count') or 0),
    )


# =========================================================================
# Month documents
# =========================================================================

def month_key(record: NormalizedTransaction) -> Optional[str]:
    parsed = parse_timestamp(record.timestamp)
    return f"{parsed.year}-{parsed.month:02d}" if parsed else None


def group_by_month(records: Iterable[NormalizedTransaction]) -> Dict[str, List[NormalizedTransaction]]:
    """Group records by 'YYYY-MM' of their UTC block time, keys in ascending order."""
    groups: Dict[str, List[NormalizedTransaction]] = {}
    for record in records:
        key = month_key(record)
        if key is None:
            logger.warning(f"Skipping {record.hash} without a usable timestamp")
            continue
        groups.setdefault(key, []).append(record)
    return dict(sorted(groups.items()))


def _metadata_ranges(transactions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """date_range, block_range and event_types of persisted transactions."""
    dates = [d for d in (parse_timestamp(t.get('timestamp')) for t in transactions) if d]
    heights = [t['block_height'] for t in transactions]
    return {
        'date_range': {
            'oldest': iso_utc(min(dates)) if dates else None,
            'newest': iso_utc(max(dates)) if dates else None,
        },
        'total_transactions': len(transactions),
        'block_range': {
            'min': min(heights) if heights else None,
            'max': max(heights) if heights else None,
        },
        'event_types': dict(Counter(t['event_type'] for t in transactions)),
    }


def build_month_document(records: List[NormalizedTransaction], year: int, month: int, is_complete: bool,
                         address_book: Optional[AddressBook] = None,
                         generated_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the month file for one calendar month.

    Args:
        records: Records of that month
        year: Calendar year
        month: Month number (1-12)
        is_complete: Whether the month is fully covered
        address_book: Optional enrichment of buyer/seller
        generated_at: Generation time (defaults to now)

    Returns:
        {'metadata': {...}, 'transactions': [...]} with transactions newest first
    """
    transactions = [to_persisted(r, address_book) for r in records]
    transactions.sort(key=lambda t: t['block_height'], reverse=True)

    metadata = {
        'version': FORMAT_VERSION,
        'generated_at': iso_utc(generated_at or datetime.now(timezone.utc)),
        'month': MONTH_NAMES[month],
        'month_number': month,
        'year': year,
        'is_complete': is_complete,
    }
    metadata.update(_metadata_ranges(transactions))
    metadata['data_source'] = DATA_SOURCE
    metadata['explorer_version'] = EXPLORER_VERSION

    return {'metadata': metadata, 'transactions': transactions}


@dataclass
class MonthExport:
    """One month file to be written."""
    key: str
    year: int
    month: int
    filename: str
    is_complete: bool
    records: List[NormalizedTransaction] = field(default_factory=list)


def plan_month_exports(records: Iterable[NormalizedTransaction],
                       only_months: Optional[Set[str]] = None) -> List[MonthExport]:
    """
    Decide which month files to write.

    The oldest month in the data is usually cut off at the start of the load
    and is skipped. The newest month is still in progress and is written as
    the partial file; every month in between is complete.

    Args:
        records: All loaded records
        only_months: Restrict output to these 'YYYY-MM' keys (months with new data)
    """
    groups = group_by_month(records)
    if not groups:
        return []

    keys = list(groups)
    oldest, newest = keys[0], keys[-1]
    plans = []

    for key in keys:
        year, month = (int(part) for part in key.split('-'))
        if only_months is not None and key not in only_months:
            logger.info(f"Skipping {MONTH_NAMES[month]} {year} - no new transactions")
            continue
        if key == oldest:
            logger.info(f"Skipping {MONTH_NAMES[month]} {year} - oldest month")
            continue

        is_newest = key == newest
        plans.append(MonthExport(
            key=key,
            year=year,
            month=month,
            filename=PARTIAL_FILENAME if is_newest else f"{MONTH_NAMES[month].lower()}-{year}.json",
            is_complete=not is_newest,
            records=groups[key],
        ))

    return plans


def write_month_exports(plans: List[MonthExport], output_dir: str,
                        address_book: Optional[AddressBook] = None) -> List[str]:
    """Write planned month files as indented JSON; returns the written paths."""
    os.makedirs(output_dir, exist_ok=True)
    paths = []
    for plan in plans:
        document = build_month_document(plan.records, plan.year, plan.month, plan.is_complete, address_book)
        path = os.path.join(output_dir, plan.filename)
        with open(path, 'w') as f:
            json.dump(document, f, indent=2)
        status = 'complete' if plan.is_complete else 'partial'
        logger.info(f"Wrote {path}: {len(plan.records)} transactions ({status})")
        paths.append(path)
    return paths


def load_month_document(document: Dict[str, Any]) -> List[NormalizedTransaction]:
    """
    Load records from a month document.

    Raises:
        ValueError: If the document has no 'transactions' list
    """
    transactions = document.get('transactions') if isinstance(document, dict) else None
    if not isinstance(transactions, list):
        raise ValueError("Month document has no 'transactions' list")
    return [from_persisted(item) for item in transactions]


def read_month_file(path: str) -> Dict[str, Any]:
    with open(path) as f:
        return json.load(f)


def is_month_complete(oldest: datetime, newest: datetime) -> bool:
    """True when the data starts on day 1 and reaches the month's last day."""
    last_day = calendar.monthrange(newest.year, newest.month)[1]
    return oldest.day == 1 and newest.day == last_day


def merge_month_document(document: Dict[str, Any], new_records: Iterable[NormalizedTransaction],
                         generated_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Merge new records into an existing month document.

    Records whose hash is already present are ignored. Metadata is
    recomputed over the merged transactions and the input document is left
    unchanged.

    Raises:
        ValueError: If the document has no 'transactions' list
    """
    existing = document.get('transactions') if isinstance(document, dict) else None
    if not isinstance(existing, list):
        raise ValueError("Month document has no 'transactions' list")

    known = {t.get('tx_hash') for t in existing}
    added = []
    for record in new_records:
        if record.hash not in known:
            known.add(record.hash)
            added.append(to_persisted(record))

    merged = list(existing) + added
    merged.sort(key=lambda t: t['block_height'], reverse=True)

    now = iso_utc(generated_at or datetime.now(timezone.utc))
    metadata = dict(document.get('metadata') or {})
    metadata.update(_metadata_ranges(merged))
    metadata['generated_at'] = now
    metadata['last_updated'] = now

    dates = [d for d in (parse_timestamp(t.get('timestamp')) for t in merged) if d]
    metadata['is_complete'] = is_month_complete(min(dates), max(dates)) if dates else False

    logger.info(
        f"Merged {len(added)} new transactions (total {len(merged)}), "
        f"{'complete' if metadata['is_complete'] else 'still incomplete'}"
    )
    return {'metadata': metadata, 'transactions': merged}


def start_month_document(records: Iterable[NormalizedTransaction], address_book: Optional[AddressBook] = None,
                         generated_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Start a partial month file from a fresh batch.

    The file is labelled with the newest month present and holds every
    record of the batch, the same as merging the batch into an existing file.
    """
    records = list(records)
    groups = group_by_month(records)
    if groups:
        key = list(groups)[-1]
        year, month = (int(part) for part in key.split('-'))
    else:
        now = generated_at or datetime.now(timezone.utc)
        year, month = now.year, now.month
        key = f"{year}-{month:02d}"

    others = len(records) - len(groups.get(key, []))
    if others:
        logger.info(f"Starting {key} file with {others} records from other months")

    document = build_month_document(groups.get(key, []), year, month, False, address_book, generated_at)
    return merge_month_document(document, records, generated_at)


def build_raw_document(records: Iterable[NormalizedTransaction]) -> Dict[str, Any]:
    """Raw ledger responses keyed by transaction hash."""
    return {record.hash: record.raw for record in records if record.raw}
