"""
Data model shared by the classifier, the extractors and the normalizer.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class EventTag(str, Enum):
    """Semantic category of a transaction involving the NFT collection."""
    ALLIANCE_CLAIM = 'ALLIANCE_CLAIM'
    ALLY_REWARDS_CLAIM_FAILED = 'ALLY_REWARDS_CLAIM_FAILED'
    NFT_BREAK = 'NFT_BREAK'

    DAODAO_STAKE = 'DAODAO_STAKE'
    DAODAO_UNSTAKE = 'DAODAO_UNSTAKE'
    DAODAO_CLAIM_NFTS = 'DAODAO_CLAIM_NFTS'
    BOOST_STAKE_DAODAO = 'BOOST_STAKE_DAODAO'

    ENTERPRISE_UNSTAKE = 'ENTERPRISE_UNSTAKE'
    ENTERPRISE_CLAIM_NFTS = 'ENTERPRISE_CLAIM_NFTS'
    ENTERPRISE_UNSTAKE_BOOST = 'ENTERPRISE_UNSTAKE_BOOST'

    BBL_SALE = 'BBL_SALE'
    BBL_LISTING = 'BBL_LISTING'
    BBL_DELIST = 'BBL_DELIST'
    BBL_BID = 'BBL_BID'
    BBL_COLLECTION_OFFER = 'BBL_COLLECTION_OFFER'
    BBL_COLLECTION_OFFER_ACCEPTED = 'BBL_COLLECTION_OFFER_ACCEPTED'

    BOOST_SALE = 'BOOST_SALE'
    BOOST_LISTING = 'BOOST_LISTING'
    BOOST_CANCEL = 'BOOST_CANCEL'
    BOOST_TRANSFER = 'BOOST_TRANSFER'

    NFTSWITCH_SALE = 'NFTSWITCH_SALE'
    NFTSWITCH_LISTING = 'NFTSWITCH_LISTING'
    NFTSWITCH_CANCEL = 'NFTSWITCH_CANCEL'
    NFTSWITCH_OTC_CREATE = 'NFTSWITCH_OTC_CREATE'
    NFTSWITCH_OTC_CONFIRM = 'NFTSWITCH_OTC_CONFIRM'
    NFTSWITCH_OTC_COMPLETE = 'NFTSWITCH_OTC_COMPLETE'
    NFTSWITCH_BATCH_TRANSFER = 'NFTSWITCH_BATCH_TRANSFER'

    P2P_TRANSFER = 'P2P_TRANSFER'
    GENERIC_STAKE = 'GENERIC_STAKE'
    GENERIC_UNSTAKE = 'GENERIC_UNSTAKE'
    REWARD_CLAIM = 'REWARD_CLAIM'

    UNKNOWN_EVENT = 'UNKNOWN_EVENT'
    ERROR_CLASSIFYING = 'ERROR_CLASSIFYING'

    def __str__(self) -> str:
        return self.value


REWARD_CLAIM_TAGS = frozenset({
    EventTag.ALLIANCE_CLAIM,
    EventTag.ALLY_REWARDS_CLAIM_FAILED,
    EventTag.REWARD_CLAIM,
})
STAKE_TAGS = frozenset({
    EventTag.DAODAO_STAKE,
    EventTag.BOOST_STAKE_DAODAO,
    EventTag.GENERIC_STAKE,
})
SALE_TAGS = frozenset({
    EventTag.BBL_SALE,
    EventTag.BOOST_SALE,
    EventTag.NFTSWITCH_SALE,
})
LISTING_TAGS = frozenset({
    EventTag.BBL_LISTING,
    EventTag.BOOST_LISTING,
    EventTag.NFTSWITCH_LISTING,
})
CANCEL_TAGS = frozenset({
    EventTag.BBL_DELIST,
    EventTag.BOOST_CANCEL,
    EventTag.NFTSWITCH_CANCEL,
})
OTC_TAGS = frozenset({
    EventTag.NFTSWITCH_OTC_CREATE,
    EventTag.NFTSWITCH_OTC_COMPLETE,
})
UNCLASSIFIED_TAGS = frozenset({
    EventTag.UNKNOWN_EVENT,
    EventTag.ERROR_CLASSIFYING,
})


@dataclass(frozen=True)
class AmountQuote:
    """A formatted amount together with the raw value it was built from."""
    formatted: str
    raw_amount: Optional[str] = None
    denom: Optional[str] = None


@dataclass(frozen=True)
class ValidatorClaim:
    """Rewards withdrawn from one validator in a claim transaction."""
    validator_address: str
    amount_luna: str
    amount_raw: str


@dataclass(frozen=True)
class RewardBreakdown:
    """
    Financial breakdown of a reward-claim transaction.

    Validator withdrawals are restaked, minting the liquid staking token,
    which is then split between the claimant and the DAO treasury.
    """
    total_luna_claimed: str
    minted_liquid_token: str
    validator_claims: Tuple[ValidatorClaim, ...] = ()
    user_portion: Optional[str] = None
    treasury_portion: Optional[str] = None
    treasury_address: Optional[str] = None
    staking_validator: Optional[str] = None
    recipient: Optional[str] = None
    formatted: Optional[str] = None
    type: str = 'detailed'

    @property
    def validator_count(self) -> int:
        return len(self.validator_claims)

    @property
    def has_treasury_split(self) -> bool:
        return self.user_portion is not None and self.treasury_portion is not None

    @property
    def split_balanced(self) -> bool:
        """True when user + treasury portions add up to the minted amount."""
        if not self.has_treasury_split:
            return True
        return Decimal(self.user_portion) + Decimal(self.treasury_portion) == Decimal(self.minted_liquid_token)


NftCount = Union[int, str]


@dataclass(frozen=True)
class NormalizedTransaction:
    """
    One classified transaction, ready for display or export.

    counterparty_a/counterparty_b mean buyer/seller for trades, staker/- for
    stakes, claimant/claimant for reward claims and sender/recipient for
    transfers.
    """
    hash: str
    height: int
    timestamp: Optional[str]
    event_tag: EventTag
    counterparty_a: Optional[str] = None
    counterparty_b: Optional[str] = None
    token_ids: Tuple[str, ...] = ()
    price: Optional[str] = None
    price_raw_amount: Optional[str] = None
    price_denom: Optional[str] = None
    reward_breakdown: Optional[RewardBreakdown] = None
    fees: Optional[str] = None
    display_amount: Optional[str] = None
    nft_count: NftCount = 0
    raw: Optional[Dict[str, Any]] = field(default=None, repr=False, compare=False)
