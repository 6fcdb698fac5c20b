"""
Field extractors for classified Terra transactions.

Each extractor reads one field (sender, token ids, price, rewards, fees,
recipient, seller, OTC amount) out of a transaction. Extractors accept either
a raw response dict or a ``LedgerTx`` and never raise: a failure is logged and
the field falls back to an empty value, so one odd transaction cannot break a
batch.

Key Features:
- Event lookups run over per-log events first, then top-level events
- Coin transfers at or below the noise threshold are never taken as prices
- Reward claims are broken down per validator with the treasury split
"""

import functools
import logging
import re
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .amount_formatter import (
    SIX_PLACES,
    format_amount,
    format_token_amount,
    micro_to_display,
    parse_coin,
)
from .config import (
    DEFAULT_CONTRACTS,
    GENERIC_TOKEN_SYMBOL,
    LIQUID_STAKING_SYMBOL,
    MICRO_UNITS,
    NOISE_THRESHOLD,
    KnownContracts,
)
from .messages import message_payload
from .models import (
    CANCEL_TAGS,
    AmountQuote,
    EventTag,
    RewardBreakdown,
    ValidatorClaim,
)
from .tx_adapter import LedgerTx, adapt, attribute, is_wasm_event
from .tx_classifier import classify

logger = logging.getLogger(__name__)

TERRA_ADDRESS_RE = re.compile(r'^terra1[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{38,58}$')

_NUMERIC_RE = re.compile(r'^\d+$')
_LEADING_DIGITS_RE = re.compile(r'^(\d+)')
_ULUNA_RE = re.compile(r'^(\d+)uluna$')

_PAYMENT_EVENT_TYPES = ('coin_spent', 'transfer')
_NFT_MOVE_ACTIONS = ('transfer_nft', 'send_nft')

UNKNOWN_SENDER = 'Unknown'


def _fault_isolated(default: Any):
    """Log and swallow unexpected errors, returning ``default`` instead."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(tx, *args, **kwargs):
            try:
                return func(adapt(tx), *args, **kwargs)
            except Exception as e:
                txhash = tx.txhash if isinstance(tx, LedgerTx) else (
                    tx.get('txhash', '') if isinstance(tx, dict) else '')
                logger.warning(f"{func.__name__} failed for tx {txhash}: {e}")
                return default() if callable(default) else default
        return wrapper
    return decorator


def _first_attribute(event: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    """Value of the first attribute whose key is any of ``keys``."""
    for attr in event.get('attributes', []):
        if attr.get('key') in keys:
            return attr.get('value')
    return None


def _payment_quote(events: Iterable[Dict[str, Any]]) -> Optional[AmountQuote]:
    """First coin_spent/transfer amount above the noise threshold."""
    for event in events:
        if event.get('type') not in _PAYMENT_EVENT_TYPES:
            continue
        quote = _coin_quote(attribute(event, 'amount'))
        if quote:
            return quote
    return None


def _coin_quote(coin: Optional[str]) -> Optional[AmountQuote]:
    parsed = parse_coin(coin)
    if not parsed:
        return None
    amount, denom = parsed
    if int(amount) <= NOISE_THRESHOLD:
        return None
    formatted = format_amount(amount, denom)
    return AmountQuote(formatted, amount, denom) if formatted else None


# =========================================================================
# Sender / token ids
# =========================================================================

@_fault_isolated(UNKNOWN_SENDER)
def extract_sender(tx: LedgerTx) -> str:
    """Sender of the first message, or 'Unknown'."""
    if not tx.messages:
        return UNKNOWN_SENDER
    first = tx.messages[0]
    return (first.get('sender') if isinstance(first, dict) else None) or UNKNOWN_SENDER


@_fault_isolated(list)
def extract_token_ids(tx: LedgerTx) -> List[str]:
    """
    Token ids touched by the transaction, in first-seen order.

    Message arguments are taken as given; event attributes only count when
    the value is purely numeric.
    """
    token_ids: List[str] = []

    def add(value: Any) -> None:
        if value is None or value == '':
            return
        value = str(value)
        if value not in token_ids:
            token_ids.append(value)

    for call in tx.calls:
        add(call.args.get('token_id'))
        for token_id in call.args.get('token_ids') or []:
            add(token_id)
        add(call.inner_args.get('token_id'))

    for event in tx.log_events + tx.events:
        for attr in event.get('attributes', []):
            value = attr.get('value') or ''
            if attr.get('key') == 'token_id' and _NUMERIC_RE.match(value):
                add(value)

    return token_ids


# =========================================================================
# Price
# =========================================================================

def _find_price_object(payload: Any) -> Optional[Dict[str, Any]]:
    """Depth-first search for a ``price: {amount, denom}`` object."""
    if isinstance(payload, dict):
        price = payload.get('price')
        if isinstance(price, dict) and price.get('amount') and price.get('denom'):
            return price
        for value in payload.values():
            found = _find_price_object(value)
            if found:
                return found
    elif isinstance(payload, list):
        for value in payload:
            found = _find_price_object(value)
            if found:
                return found
    return None


def _auction_quote(auction: Dict[str, Any]) -> Optional[AmountQuote]:
    """Listing price of a BBL ``create_auction`` message."""
    denom = auction.get('denom')
    for key in ('reserve_price', 'reserve'):
        if auction.get(key) and denom:
            return AmountQuote(format_amount(auction[key], denom), str(auction[key]), denom)

    start_price = auction.get('start_price')
    if isinstance(start_price, dict) and start_price.get('amount'):
        return AmountQuote(
            format_amount(start_price['amount'], start_price.get('denom')),
            str(start_price['amount']),
            start_price.get('denom'),
        )
    return None


def _wasm_price_quote(event: Dict[str, Any]) -> Optional[AmountQuote]:
    denom = attribute(event, 'denom')
    if not denom:
        return None
    for attr in event.get('attributes', []):
        if attr.get('key') not in ('price', 'sale_price', 'amount'):
            continue
        match = _LEADING_DIGITS_RE.match(attr.get('value') or '')
        if match:
            return AmountQuote(format_amount(match.group(1), denom), match.group(1), denom)
    return None


def _resolve_tag(tx: LedgerTx, tag: Optional[EventTag], contracts: KnownContracts) -> EventTag:
    if tag is not None:
        return tag
    return classify(tx, contracts)


@_fault_isolated(None)
def extract_price_quote(tx: LedgerTx, tag: Optional[EventTag] = None,
                        contracts: KnownContracts = DEFAULT_CONTRACTS) -> Optional[AmountQuote]:
    """
    Price of the transaction with the raw amount and denom it came from.

    Cancellations and OTC trade creation carry no price (the OTC ask amount
    is read by ``extract_otc_amount``).
    """
    tag = _resolve_tag(tx, tag, contracts)
    if tag in CANCEL_TAGS or tag == EventTag.NFTSWITCH_OTC_CREATE:
        return None

    # Listing price from the messages
    for call in tx.calls:
        auction = call.find_args('create_auction')
        if auction:
            quote = _auction_quote(auction)
            if quote and quote.formatted:
                logger.debug(f"Auction price for {tx.txhash}: {quote.formatted}")
                return quote

        price = _find_price_object(call.args) or _find_price_object(call.inner_args)
        if price:
            formatted = format_amount(price['amount'], price['denom'])
            if formatted:
                return AmountQuote(formatted, str(price['amount']), price['denom'])

    # Payment events in the per-message logs
    for event in tx.log_events:
        if event.get('type') in _PAYMENT_EVENT_TYPES:
            quote = _coin_quote(attribute(event, 'amount'))
        elif is_wasm_event(event):
            quote = _wasm_price_quote(event)
        else:
            quote = None
        if quote and quote.formatted:
            return quote

    # BBL settlement in top-level events
    for event in tx.events:
        if not is_wasm_event(event) or attribute(event, 'action') != 'settle':
            continue
        amount = attribute(event, 'amount')
        if not amount:
            continue
        denom = attribute(event, 'denom')
        if denom:
            return AmountQuote(format_amount(amount, denom), amount, denom)
        # CW20 payment, token unknown
        return AmountQuote(format_token_amount(amount), amount, None)

    return None


def extract_price(tx: Any, tag: Optional[EventTag] = None,
                  contracts: KnownContracts = DEFAULT_CONTRACTS) -> Optional[str]:
    """Formatted price of the transaction, or None."""
    quote = extract_price_quote(tx, tag, contracts)
    return quote.formatted if quote else None


# =========================================================================
# Rewards
# =========================================================================

def _validator_claims(events: List[Dict[str, Any]]) -> List[ValidatorClaim]:
    claims = []
    for event in events:
        if event.get('type') != 'withdraw_rewards':
            continue
        validator = attribute(event, 'validator')
        match = _ULUNA_RE.match(attribute(event, 'amount') or '')
        if validator and match:
            claims.append(ValidatorClaim(
                validator_address=validator,
                amount_luna=micro_to_display(match.group(1)),
                amount_raw=match.group(1),
            ))
    return claims


def _treasury_address(events: List[Dict[str, Any]], treasury_amount: Optional[str]) -> Optional[str]:
    """Recipient of the first liquid-token transfer matching the treasury take."""
    if not treasury_amount:
        return None
    matches = []
    for event in events:
        if not is_wasm_event(event) or attribute(event, 'action') != 'transfer':
            continue
        to = attribute(event, 'to')
        if to and micro_to_display(attribute(event, 'amount')) == treasury_amount:
            matches.append(to)
    if len(matches) > 1:
        logger.debug(f"{len(matches)} transfers match treasury amount {treasury_amount}, using first")
    return matches[0] if matches else None


@_fault_isolated(None)
def extract_rewards(tx: LedgerTx) -> Optional[RewardBreakdown]:
    """
    Break a reward claim down into validator withdrawals and the liquid
    staking token split.

    The ``delegate`` event carries the restaked total and is preferred over
    the sum of withdrawals. Returns None when no liquid token was minted.
    """
    events = tx.all_events
    claims = _validator_claims(events)

    total_luna = None
    staking_validator = None
    minted = None
    recipient = None
    user_portion = None
    treasury_portion = None

    for event in events:
        event_type = event.get('type')
        if event_type == 'delegate':
            match = _ULUNA_RE.match(attribute(event, 'amount') or '')
            if match:
                total_luna = micro_to_display(match.group(1))
            staking_validator = attribute(event, 'validator') or staking_validator
            continue

        if not is_wasm_event(event):
            continue

        action = attribute(event, 'action')
        amount = attribute(event, 'amount')
        if action == 'mint' and amount:
            minted = micro_to_display(amount) or minted

        to = attribute(event, 'to')
        if to:
            recipient = to

        if action == 'update_rewards_callback':
            user_portion = micro_to_display(attribute(event, 'rewards_collected')) or user_portion
            treasury_portion = micro_to_display(attribute(event, 'treasury_amount')) or treasury_portion

    if not minted:
        logger.debug(f"No minted {LIQUID_STAKING_SYMBOL} in {tx.txhash}")
        return None

    if total_luna is None:
        withdrawn = sum((Decimal(c.amount_raw) for c in claims), Decimal(0))
        total_luna = str((withdrawn / MICRO_UNITS).quantize(SIX_PLACES))

    breakdown = RewardBreakdown(
        total_luna_claimed=total_luna,
        minted_liquid_token=minted,
        validator_claims=tuple(claims),
        user_portion=user_portion,
        treasury_portion=treasury_portion,
        treasury_address=_treasury_address(events, treasury_portion),
        staking_validator=staking_validator,
        recipient=recipient,
        formatted=f"{user_portion or minted} {LIQUID_STAKING_SYMBOL}",
    )

    if not breakdown.split_balanced:
        logger.warning(
            f"Reward split mismatch in {tx.txhash}: "
            f"{user_portion} + {treasury_portion} != {minted}"
        )
    if not claims:
        logger.debug(f"Reward claim {tx.txhash} has no validator withdrawals")

    return breakdown


# =========================================================================
# Fees / counterparties
# =========================================================================

@_fault_isolated(None)
def extract_fees(tx: LedgerTx) -> Optional[str]:
    """Protocol, royalty and gas fees as 'P: x | R: y | G: z'."""
    protocol_fee = None
    royalty_fee = None

    for event in tx.log_events:
        if not is_wasm_event(event):
            continue
        for attr in event.get('attributes', []):
            if attr.get('key') in ('protocol_fee', 'marketplace_fee'):
                protocol_fee = attr.get('value')
            if attr.get('key') in ('royalty_fee', 'royalty'):
                royalty_fee = attr.get('value')

    gas_fee = None
    fee_amounts = tx.fee.get('amount') if isinstance(tx.fee, dict) else None
    if fee_amounts and isinstance(fee_amounts[0], dict):
        gas_fee = format_amount(fee_amounts[0].get('amount'), fee_amounts[0].get('denom'))

    parts = []
    if protocol_fee:
        parts.append(f"P: {protocol_fee}")
    if royalty_fee:
        parts.append(f"R: {royalty_fee}")
    if gas_fee:
        parts.append(f"G: {gas_fee}")
    return ' | '.join(parts) if parts else None


def _nft_move_recipient(event: Dict[str, Any]) -> Optional[str]:
    if attribute(event, 'action') in _NFT_MOVE_ACTIONS:
        return _first_attribute(event, ('recipient', 'to'))
    return None


@_fault_isolated(None)
def extract_recipient(tx: LedgerTx) -> Optional[str]:
    """Receiver of the NFT: the buyer for sales, the receiver for transfers."""
    for event in tx.log_events:
        if not is_wasm_event(event):
            continue
        recipient = _nft_move_recipient(event) or attribute(event, 'buyer')
        if recipient:
            return recipient

    for event in tx.events:
        if is_wasm_event(event):
            recipient = _nft_move_recipient(event)
            if recipient:
                return recipient

    for call in tx.calls:
        for action in _NFT_MOVE_ACTIONS:
            args = call.find_args(action)
            if args and args.get('recipient'):
                return args['recipient']

    for message in tx.messages:
        payload = message_payload(message) if isinstance(message, dict) else None
        if payload and isinstance(payload.get('recipient'), str):
            return payload['recipient']

    return None


def is_terra_address(value: Optional[str]) -> bool:
    return bool(value) and bool(TERRA_ADDRESS_RE.match(value))


@_fault_isolated(None)
def extract_seller(tx: LedgerTx, contracts: KnownContracts = DEFAULT_CONTRACTS) -> Optional[str]:
    """
    Account paid in a marketplace sale.

    Payment recipients that are marketplaces, fee wallets or the fee
    collector module are skipped.
    """
    intermediaries = contracts.payment_intermediaries()

    for event in tx.log_events:
        if event.get('type') == 'transfer':
            recipient = attribute(event, 'recipient')
            if is_terra_address(recipient) and recipient.lower() not in intermediaries:
                return recipient
        elif is_wasm_event(event):
            seller = _first_attribute(event, ('seller', 'owner'))
            if seller:
                return seller

    for event in tx.events:
        if is_wasm_event(event) and attribute(event, 'action') == 'settle':
            seller = attribute(event, 'seller')
            if seller:
                return seller

    return None


# =========================================================================
# OTC trades
# =========================================================================

def _ask_quote(create_trade: Dict[str, Any]) -> Optional[AmountQuote]:
    """Asking price of an NFTSwitch ``create_trade`` message."""
    sale_price = create_trade.get('sale_price')
    if isinstance(sale_price, dict) and sale_price.get('amount') and sale_price.get('denom'):
        return AmountQuote(
            format_amount(sale_price['amount'], sale_price['denom']),
            str(sale_price['amount']),
            sale_price['denom'],
        )

    ask_tokens = create_trade.get('ask_tokens')
    if isinstance(ask_tokens, list) and ask_tokens:
        first = ask_tokens[0] if isinstance(ask_tokens[0], dict) else {}
        native = first.get('native')
        if isinstance(native, dict):
            return AmountQuote(
                format_amount(native.get('amount'), native.get('denom')),
                native.get('amount'),
                native.get('denom'),
            )
        cw20 = first.get('cw20')
        if isinstance(cw20, dict):
            # Unlisted CW20 tokens are shown generically rather than as LUNA
            return AmountQuote(
                format_amount(cw20.get('amount'), cw20.get('address'), default_symbol=GENERIC_TOKEN_SYMBOL),
                cw20.get('amount'),
                cw20.get('address'),
            )
    return None


def _funds_quote(funds: Any) -> Optional[AmountQuote]:
    if not isinstance(funds, (list, tuple)) or not funds:
        return None
    payment = funds[0]
    if isinstance(payment, dict) and payment.get('amount') and payment.get('denom'):
        return AmountQuote(format_amount(payment['amount'], payment['denom']),
                           str(payment['amount']), payment['denom'])
    return None


@_fault_isolated(None)
def extract_otc_quote(tx: LedgerTx, tag: Optional[EventTag] = None,
                      contracts: KnownContracts = DEFAULT_CONTRACTS) -> Optional[AmountQuote]:
    """Asking price of an OTC trade being created, or the payment completing one."""
    tag = _resolve_tag(tx, tag, contracts)

    if tag == EventTag.NFTSWITCH_OTC_CREATE:
        for call in tx.calls:
            create_trade = call.find_args('create_trade')
            if create_trade:
                quote = _ask_quote(create_trade)
                if quote and quote.formatted:
                    return quote
        return None

    if tag == EventTag.NFTSWITCH_OTC_COMPLETE:
        for call in tx.calls:
            if call.action not in ('execute_trade', 'execute_contract'):
                continue
            quote = _funds_quote(call.args.get('funds')) or _funds_quote(call.funds)
            if quote and quote.formatted:
                return quote
        return _payment_quote(tx.log_events) or _payment_quote(tx.events)

    return None


def extract_otc_amount(tx: Any, tag: Optional[EventTag] = None,
                       contracts: KnownContracts = DEFAULT_CONTRACTS) -> Optional[str]:
    """Display amount of an OTC trade: the ask when created, the payment when completed."""
    quote = extract_otc_quote(tx, tag, contracts)
    return quote.formatted if quote else None
