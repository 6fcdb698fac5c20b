"""
Event classification for Alliance DAO NFT transactions.

A transaction is reduced to a ``TxSignals`` view (addresses involved, action
names, memo, message count) and run through ``CLASSIFICATION_RULES``, an
ordered table where the first matching rule decides the ``EventTag``.

Key Features:
- Matching on parsed actions and addresses rather than serialized text
- Explicit rule order: protocol-specific rules before generic fallbacks
- Total: any failure yields ERROR_CLASSIFYING instead of an exception
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, Optional, Set, Tuple, Union

from .config import (
    BBL_MEMO_MARKERS,
    BOOST_MEMO_MARKERS,
    DEFAULT_CONTRACTS,
    NFTSWITCH_MEMO_MARKERS,
    KnownContracts,
)
from .models import EventTag
from .tx_adapter import LedgerTx, adapt, is_wasm_event

logger = logging.getLogger(__name__)

# Route fragment of the Boost launchpad UI, present in its messages
BOOST_LAUNCH_ROUTE = 'launch-nft'
# NFTSwitch secondary-market contracts tag their messages with this marker
NFTSWITCH_SALE_MARKER = 'solid'


def _collect_addresses(value: Any, found: Set[str]) -> None:
    """Gather every ``terra1...`` string leaf of a nested payload."""
    if isinstance(value, dict):
        for item in value.values():
            _collect_addresses(item, found)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect_addresses(item, found)
    elif isinstance(value, str):
        for part in value.split(','):
            part = part.strip().lower()
            if part.startswith('terra1'):
                found.add(part)


@dataclass(frozen=True)
class TxSignals:
    """Facts about a transaction that classification rules match on."""
    code: int
    memo: str
    message_count: int
    addresses: FrozenSet[str]
    actions: FrozenSet[str]
    wasm_actions: Tuple[str, ...]
    transfer_recipients: Tuple[Optional[str], ...]
    all_transfers: bool
    blob: str

    @classmethod
    def from_ledger(cls, tx: LedgerTx) -> 'TxSignals':
        addresses: Set[str] = set()
        actions: Set[str] = set()
        wasm_actions = []

        for call in tx.calls:
            actions.update(call.actions)
            _collect_addresses(call.contract, addresses)
            _collect_addresses(call.args, addresses)
            _collect_addresses(call.inner_args, addresses)
        for message in tx.messages:
            _collect_addresses(message, addresses)

        for event in tx.all_events:
            event_type = event.get('type', '')
            if event_type.startswith('wasm-'):
                actions.add(event_type[len('wasm-'):].lower())
            for attr in event.get('attributes', []):
                _collect_addresses(attr.get('value'), addresses)
            if is_wasm_event(event):
                for attr in event.get('attributes', []):
                    if attr.get('key') == 'action' and attr.get('value'):
                        actions.add(attr['value'].lower())
                        wasm_actions.append(attr['value'].lower())

        transfer_calls = [c for c in tx.calls if c.action == 'transfer_nft']
        recipients = tuple(c.args.get('recipient') for c in transfer_calls)

        blob = json.dumps({
            'memo': tx.memo,
            'messages': tx.messages,
            'inner': [c.inner_args for c in tx.calls],
            'events': tx.all_events,
        }, default=str).lower()

        return cls(
            code=tx.code,
            memo=(tx.memo or '').lower(),
            message_count=len(tx.messages),
            addresses=frozenset(addresses),
            actions=frozenset(actions),
            wasm_actions=tuple(wasm_actions),
            transfer_recipients=recipients,
            all_transfers=bool(tx.calls) and len(transfer_calls) == len(tx.messages) == len(tx.calls),
            blob=blob,
        )

    def involves(self, *addresses: str) -> bool:
        return any(address.lower() in self.addresses for address in addresses)

    def has(self, *actions: str) -> bool:
        return any(action in self.actions for action in actions)

    def has_containing(self, fragment: str) -> bool:
        return any(fragment in action for action in self.actions)

    def memo_has(self, markers: Iterable[str]) -> bool:
        return any(marker in self.memo for marker in markers)

    @property
    def boost_memo(self) -> bool:
        return self.memo_has(BOOST_MEMO_MARKERS)

    @property
    def nftswitch_memo(self) -> bool:
        return self.memo_has(NFTSWITCH_MEMO_MARKERS)

    @property
    def bbl_memo(self) -> bool:
        return self.memo_has(BBL_MEMO_MARKERS)

    @property
    def first_transfer_recipient(self) -> Optional[str]:
        if not self.transfer_recipients or not self.transfer_recipients[0]:
            return None
        return self.transfer_recipients[0].lower()


Predicate = Callable[[TxSignals, KnownContracts], bool]
TagResolver = Callable[[TxSignals], EventTag]


@dataclass(frozen=True)
class ClassificationRule:
    """One entry of the rule table: when ``predicate`` holds, ``tag`` applies."""
    name: str
    predicate: Predicate
    tag: Union[EventTag, TagResolver]

    def matches(self, signals: TxSignals, contracts: KnownContracts) -> bool:
        return self.predicate(signals, contracts)

    def resolve(self, signals: TxSignals) -> EventTag:
        return self.tag(signals) if callable(self.tag) else self.tag


# Protocol scopes

def _daodao(s: TxSignals, c: KnownContracts) -> bool:
    return s.involves(c.daodao_staking)


def _enterprise(s: TxSignals, c: KnownContracts) -> bool:
    return s.involves(c.enterprise_tool)


def _bbl(s: TxSignals, c: KnownContracts) -> bool:
    return s.involves(c.bbl_marketplace) or s.bbl_memo


def _boost(s: TxSignals, c: KnownContracts) -> bool:
    return s.involves(c.boost_protocol) or s.boost_memo or BOOST_LAUNCH_ROUTE in s.blob


def _nftswitch(s: TxSignals, c: KnownContracts) -> bool:
    return s.involves(c.nft_switch, c.otc_contract) or s.nftswitch_memo


def _known_scope(s: TxSignals, c: KnownContracts) -> bool:
    return any(scope(s, c) for scope in (_daodao, _enterprise, _bbl, _boost, _nftswitch))


def _recipient_is_peer(s: TxSignals, c: KnownContracts) -> bool:
    recipient = s.first_transfer_recipient
    return bool(recipient) and recipient not in c.staking_and_marketplaces()


def _single_recipient(s: TxSignals) -> bool:
    return len({r for r in s.transfer_recipients if r}) == 1


# Tag resolvers

def _claim_outcome(s: TxSignals) -> EventTag:
    return EventTag.ALLIANCE_CLAIM if s.code == 0 else EventTag.ALLY_REWARDS_CLAIM_FAILED


def _dao_stake(s: TxSignals) -> EventTag:
    return EventTag.BOOST_STAKE_DAODAO if s.boost_memo else EventTag.DAODAO_STAKE


def _enterprise_claim(s: TxSignals) -> EventTag:
    return EventTag.ENTERPRISE_UNSTAKE_BOOST if s.boost_memo else EventTag.ENTERPRISE_CLAIM_NFTS


def _generic_action_tag(s: TxSignals) -> Optional[EventTag]:
    for action in s.wasm_actions:
        if 'stake' in action and 'unstake' not in action:
            return EventTag.GENERIC_STAKE
        if 'unstake' in action or 'claim_nft' in action:
            return EventTag.GENERIC_UNSTAKE
        if 'claim' in action:
            return EventTag.REWARD_CLAIM
    return None


CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    # Alliance reward claims on the NFT contract
    ClassificationRule(
        'alliance_claim',
        lambda s, c: s.has('claim_rewards') and s.involves(c.nft_contract),
        _claim_outcome),
    ClassificationRule('nft_break', lambda s, c: s.has('break_nft'), EventTag.NFT_BREAK),

    # DAO DAO staking
    ClassificationRule(
        'daodao_claim_nfts',
        lambda s, c: _daodao(s, c) and s.has('claim_nfts'),
        EventTag.DAODAO_CLAIM_NFTS),
    ClassificationRule(
        'daodao_unstake',
        lambda s, c: _daodao(s, c) and s.has_containing('unstake'),
        EventTag.DAODAO_UNSTAKE),
    ClassificationRule(
        'daodao_stake',
        lambda s, c: _daodao(s, c) and s.has('send_nft', 'stake'),
        _dao_stake),

    # Enterprise (shut down, only exits remain)
    ClassificationRule(
        'enterprise_claim',
        lambda s, c: _enterprise(s, c) and s.has_containing('claim'),
        _enterprise_claim),
    ClassificationRule(
        'enterprise_unstake',
        lambda s, c: _enterprise(s, c) and s.has_containing('unstake'),
        EventTag.ENTERPRISE_UNSTAKE),

    # Backbone Labs marketplace; cancel txs also emit settle hooks
    ClassificationRule(
        'bbl_collection_offer',
        lambda s, c: _bbl(s, c) and s.has('make_collection_offer'),
        EventTag.BBL_COLLECTION_OFFER),
    ClassificationRule(
        'bbl_collection_offer_accepted',
        lambda s, c: _bbl(s, c) and s.has('accept_collection_offer'),
        EventTag.BBL_COLLECTION_OFFER_ACCEPTED),
    ClassificationRule(
        'bbl_delist',
        lambda s, c: _bbl(s, c) and s.has('cancel_auction', 'cancel'),
        EventTag.BBL_DELIST),
    ClassificationRule(
        'bbl_sale',
        lambda s, c: _bbl(s, c) and s.has_containing('settle'),
        EventTag.BBL_SALE),
    ClassificationRule(
        'bbl_bid',
        lambda s, c: _bbl(s, c) and s.has('place_bid'),
        EventTag.BBL_BID),
    ClassificationRule(
        'bbl_listing',
        lambda s, c: _bbl(s, c) and s.has('create_auction', 'send_nft'),
        EventTag.BBL_LISTING),

    # Boost marketplace and tools
    ClassificationRule(
        'boost_sale',
        lambda s, c: _boost(s, c) and s.has('deposit') and s.message_count >= 2,
        EventTag.BOOST_SALE),
    ClassificationRule(
        'boost_cancel',
        lambda s, c: _boost(s, c) and (s.has('cancel') or f'{BOOST_LAUNCH_ROUTE}/cancel' in s.blob),
        EventTag.BOOST_CANCEL),
    ClassificationRule(
        'boost_listing',
        lambda s, c: _boost(s, c) and (s.has('setup') or f'{BOOST_LAUNCH_ROUTE}/setup' in s.blob),
        EventTag.BOOST_LISTING),
    ClassificationRule(
        'boost_transfer',
        lambda s, c: (_boost(s, c) and s.has('transfer_nft') and s.boost_memo
                      and s.first_transfer_recipient not in c.staking_and_marketplaces()),
        EventTag.BOOST_TRANSFER),

    # NFTSwitch marketplace and OTC desk
    ClassificationRule(
        'nftswitch_otc_complete',
        lambda s, c: _nftswitch(s, c) and s.has('execute_trade'),
        EventTag.NFTSWITCH_OTC_COMPLETE),
    ClassificationRule(
        'nftswitch_otc_confirm',
        lambda s, c: _nftswitch(s, c) and s.has('confirm_trade'),
        EventTag.NFTSWITCH_OTC_CONFIRM),
    ClassificationRule(
        'nftswitch_otc_create',
        lambda s, c: _nftswitch(s, c) and (
            s.has('create_trade') or (s.has('approve') and s.message_count >= 2)),
        EventTag.NFTSWITCH_OTC_CREATE),
    ClassificationRule(
        'nftswitch_sale',
        lambda s, c: _nftswitch(s, c) and s.has('deposit') and NFTSWITCH_SALE_MARKER in s.blob,
        EventTag.NFTSWITCH_SALE),
    ClassificationRule(
        'nftswitch_cancel',
        lambda s, c: _nftswitch(s, c) and s.has('cancel'),
        EventTag.NFTSWITCH_CANCEL),
    ClassificationRule(
        'nftswitch_listing',
        lambda s, c: _nftswitch(s, c) and s.has('setup'),
        EventTag.NFTSWITCH_LISTING),
    ClassificationRule(
        'nftswitch_batch_transfer',
        lambda s, c: (_nftswitch(s, c) and s.message_count > 1 and s.nftswitch_memo
                      and s.all_transfers and _single_recipient(s)),
        EventTag.NFTSWITCH_BATCH_TRANSFER),

    # Plain wallet-to-wallet transfer
    ClassificationRule(
        'p2p_transfer',
        lambda s, c: (s.has('transfer_nft') and _recipient_is_peer(s, c) and not _known_scope(s, c)
                      and not (s.boost_memo or s.nftswitch_memo)),
        EventTag.P2P_TRANSFER),

    # Generic contract actions
    ClassificationRule(
        'generic_action',
        lambda s, c: _generic_action_tag(s) is not None,
        _generic_action_tag),

    ClassificationRule('unknown', lambda s, c: True, EventTag.UNKNOWN_EVENT),
)


def classify(tx: Union[LedgerTx, dict], contracts: KnownContracts = DEFAULT_CONTRACTS) -> EventTag:
    """
    Classify a transaction into exactly one event tag.

    Args:
        tx: Raw LCD/RPC transaction dict or an adapted LedgerTx
        contracts: Known contract addresses

    Returns:
        The tag of the first matching rule; ERROR_CLASSIFYING if
        classification itself fails
    """
    txhash = ''
    try:
        ledger_tx = adapt(tx)
        txhash = ledger_tx.txhash
        signals = TxSignals.from_ledger(ledger_tx)
        for rule in CLASSIFICATION_RULES:
            if rule.matches(signals, contracts):
                tag = rule.resolve(signals)
                logger.debug(f"Classified {txhash} as {tag} (rule {rule.name})")
                return tag
    except Exception as e:
        logger.error(f"Error classifying transaction {txhash}: {e}", exc_info=True)
        return EventTag.ERROR_CLASSIFYING
    return EventTag.UNKNOWN_EVENT


def action_names(tx: Union[LedgerTx, dict]) -> FrozenSet[str]:
    """Action names seen in a transaction, for diagnostics of unknown events."""
    return TxSignals.from_ledger(adapt(tx)).actions
