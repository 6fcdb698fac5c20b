"""
Transaction normalization.

Turns one raw transaction into a ``NormalizedTransaction``: classify once,
run the field extractors, then map sender/recipient/seller onto the two
counterparty slots according to the event family.
"""

import logging
from typing import Any, Dict, Optional, Union

from .config import DEFAULT_CONTRACTS, KnownContracts
from .field_extractors import (
    extract_fees,
    extract_otc_quote,
    extract_price_quote,
    extract_recipient,
    extract_rewards,
    extract_seller,
    extract_sender,
    extract_token_ids,
)
from .models import (
    LISTING_TAGS,
    OTC_TAGS,
    REWARD_CLAIM_TAGS,
    SALE_TAGS,
    STAKE_TAGS,
    EventTag,
    NormalizedTransaction,
)
from .tx_adapter import LedgerTx, adapt
from .tx_classifier import classify

logger = logging.getLogger(__name__)

NOT_APPLICABLE = 'N/A'


def _counterparties(tag: EventTag, sender: str, recipient: Optional[str], seller: Optional[str],
                    price: Optional[str], otc_amount: Optional[str], rewards) -> Dict[str, Any]:
    """Assign counterparty_a / counterparty_b / display_amount for a tag."""
    if tag in REWARD_CLAIM_TAGS and rewards is not None:
        claimant = rewards.recipient or sender
        return {'a': claimant, 'b': claimant, 'display': rewards.formatted}

    if tag == EventTag.NFTSWITCH_OTC_CREATE:
        return {'a': None, 'b': sender, 'display': otc_amount or price}

    if tag == EventTag.NFTSWITCH_OTC_COMPLETE:
        return {'a': sender, 'b': None, 'display': otc_amount or price}

    if tag in STAKE_TAGS:
        return {'a': sender, 'b': None, 'display': None}

    if tag in SALE_TAGS:
        return {'a': sender, 'b': seller or recipient, 'display': price}

    if tag in LISTING_TAGS:
        return {'a': None, 'b': sender, 'display': price}

    return {'a': sender, 'b': recipient, 'display': rewards.formatted if rewards else price}


def _error_record(raw: Any, timestamp: Optional[str]) -> NormalizedTransaction:
    """Placeholder record for a transaction that could not be normalized."""
    if isinstance(raw, LedgerTx):
        txhash, height, data = raw.txhash, raw.height, raw.raw
    else:
        data = raw if isinstance(raw, dict) else {}
        response = data.get('tx_response') if isinstance(data.get('tx_response'), dict) else data
        txhash = response.get('txhash') or response.get('hash') or ''
        height = response.get('height', 0)
    try:
        height = int(height)
    except (TypeError, ValueError):
        height = 0
    return NormalizedTransaction(
        hash=str(txhash),
        height=height,
        timestamp=timestamp,
        event_tag=EventTag.ERROR_CLASSIFYING,
        raw=data,
    )


def normalize(raw: Union[LedgerTx, Dict[str, Any]],
              contracts: KnownContracts = DEFAULT_CONTRACTS,
              timestamp: Optional[str] = None) -> NormalizedTransaction:
    """
    Classify and extract one transaction.

    ``nft_count`` is 'N/A' for the reward-claim tags only (Alliance claims,
    failed claims and generic reward claims); every other tag counts its
    token ids, including DAO DAO ``CLAIM_NFTS`` exits, which move NFTs.

    Args:
        raw: LCD or RPC transaction dict (or an adapted LedgerTx)
        contracts: Known contract addresses
        timestamp: Block time to use when the response carries none

    Returns:
        NormalizedTransaction for the transaction; a record tagged
        ERROR_CLASSIFYING when the transaction cannot be processed at all
    """
    try:
        return _normalize(adapt(raw, timestamp=timestamp), contracts, timestamp)
    except Exception as e:
        logger.error(f"Error normalizing transaction: {e}", exc_info=True)
        return _error_record(raw, timestamp)


def _normalize(tx: LedgerTx, contracts: KnownContracts, timestamp: Optional[str]) -> NormalizedTransaction:
    tag = classify(tx, contracts)

    sender = extract_sender(tx)
    token_ids = extract_token_ids(tx)
    quote = extract_price_quote(tx, tag, contracts)
    price = quote.formatted if quote else None
    fees = extract_fees(tx)
    recipient = extract_recipient(tx)
    seller = extract_seller(tx, contracts) if tag in SALE_TAGS else None
    otc_quote = extract_otc_quote(tx, tag, contracts)
    otc_amount = otc_quote.formatted if otc_quote else None
    rewards = extract_rewards(tx) if tag in REWARD_CLAIM_TAGS else None

    mapped = _counterparties(tag, sender, recipient, seller, price, otc_amount, rewards)
    # raw amount and denom describe whichever quote is displayed
    shown = otc_quote if otc_amount and tag in OTC_TAGS else quote

    return NormalizedTransaction(
        hash=tx.txhash,
        height=tx.height,
        timestamp=tx.timestamp or timestamp,
        event_tag=tag,
        counterparty_a=mapped['a'],
        counterparty_b=mapped['b'],
        token_ids=tuple(token_ids),
        price=price,
        price_raw_amount=shown.raw_amount if shown else None,
        price_denom=shown.denom if shown else None,
        reward_breakdown=rewards,
        fees=fees,
        display_amount=mapped['display'],
        nft_count=NOT_APPLICABLE if tag in REWARD_CLAIM_TAGS else len(token_ids),
        raw=tx.raw,
    )
