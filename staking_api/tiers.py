"""
Tiered Staking Gates

Maps a wallet's staked ZOO to a tier, and a tier to shop permissions:
- Tier 2 (500+ tokens) sees products and can check out
- Tier 3 (1000+ tokens) unlocks exclusive products
- Discounts scale with tier (5 / 10 / 20 %)

An unstake request revokes access immediately, regardless of amount.
"""

from dataclasses import dataclass, field
from typing import Optional

from staking_api.stake_accounts import StakeInfo, StakeStatus

MIN_STAKE_FOR_MAIN_PERKS = 500


@dataclass(frozen=True)
class StakeTier:
    tier: int
    name: str
    min_tokens: float
    perks: list[str] = field(default_factory=list)


STAKING_TIERS = [
    StakeTier(0, "No Access", 0),
    StakeTier(1, "Base Access", 250, ["Basic discounts (5%)"]),
    StakeTier(2, "Full Access", 500, ["Full product visibility", "Standard discounts (10%)"]),
    StakeTier(3, "Premium Access", 1000, ["Larger discounts (20%)", "Exclusive products"]),
]

_TIER_DISCOUNTS = {3: 20, 2: 10, 1: 5}


def tier_from_amount(amount_tokens: float) -> int:
    for tier in reversed(STAKING_TIERS):
        if amount_tokens >= tier.min_tokens:
            return tier.tier
    return 0


def has_main_perks(amount_tokens: float) -> bool:
    return amount_tokens >= MIN_STAKE_FOR_MAIN_PERKS


def discount_for_tier(tier: int) -> int:
    return _TIER_DISCOUNTS.get(tier, 0)


def can_see_products(tier: int) -> bool:
    return tier >= 2


def can_checkout(tier: int) -> bool:
    return tier >= 2


def has_exclusive_access(tier: int) -> bool:
    return tier >= 3


def is_access_revoked(status: StakeStatus) -> bool:
    return status in (StakeStatus.UNSTAKING, StakeStatus.UNSTAKED)


def _active_tier(stake: Optional[StakeInfo]) -> Optional[int]:
    """Tier of an active stake, or None when there is no usable stake."""
    if stake is None or stake.status != StakeStatus.ACTIVE:
        return None
    return tier_from_amount(stake.amount_tokens)


# ── Gate Evaluations ────────────────────────────────────────────────

def product_visibility(stake: Optional[StakeInfo]) -> dict:
    tier = _active_tier(stake)
    if tier is None:
        return {"visible": False, "reason": "No active stake found", "tier": 0}

    visible = can_see_products(tier)
    return {
        "visible": visible,
        "reason": None if visible else f"Requires Tier 2 (500+ tokens), current: {tier}",
        "tier": tier,
    }


def checkout_permission(stake: Optional[StakeInfo]) -> dict:
    tier = _active_tier(stake)
    if tier is None:
        return {"allowed": False, "reason": "No active stake found", "tier": 0}

    allowed = can_checkout(tier)
    return {
        "allowed": allowed,
        "reason": None if allowed else "Requires Tier 2 (500+ tokens) for checkout",
        "tier": tier,
    }


def staking_discount(stake: Optional[StakeInfo], cart_total: float) -> dict:
    tier = _active_tier(stake)
    if tier is None:
        return {"discount": 0, "discountPercent": 0, "finalTotal": cart_total, "tier": 0}

    percent = discount_for_tier(tier)
    discount = cart_total * percent / 100
    return {
        "discount": discount,
        "discountPercent": percent,
        "finalTotal": max(0, cart_total - discount),
        "tier": tier,
    }


def exclusive_access(stake: Optional[StakeInfo]) -> dict:
    tier = _active_tier(stake)
    if tier is None:
        return {"hasAccess": False, "tier": 0}
    return {"hasAccess": has_exclusive_access(tier), "tier": tier}


def staking_status(stake: Optional[StakeInfo]) -> dict:
    """Full status summary for a wallet, as shown on the account page."""
    tier = _active_tier(stake)
    if tier is None:
        return {
            "isStaking": False,
            "tier": 0,
            "tierName": STAKING_TIERS[0].name,
            "stakedAmount": 0,
            "canSeeProducts": False,
            "canCheckout": False,
            "hasExclusiveAccess": False,
            "discountPercent": 0,
            "accessRevoked": True,
            "unlockTimestamp": stake.unlock_timestamp if stake else None,
        }

    return {
        "isStaking": True,
        "tier": tier,
        "tierName": STAKING_TIERS[tier].name,
        "stakedAmount": stake.amount_tokens,
        "canSeeProducts": can_see_products(tier),
        "canCheckout": can_checkout(tier),
        "hasExclusiveAccess": has_exclusive_access(tier),
        "discountPercent": discount_for_tier(tier),
        "accessRevoked": False,
        "unlockTimestamp": stake.unlock_timestamp,
    }
