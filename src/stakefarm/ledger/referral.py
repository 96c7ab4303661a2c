"""
stakefarm/ledger/referral.py

Referral tree and payout cascade.

A user's referrer is fixed by their first stake and never changes. When a
stake pays out, each upline level k receives referral_percents[k] percent
of the staker's accrued reward, paid either in the reward tokens themselves
or, when the pool configures one, converted into the pool's referral token.
Levels with no upline are forfeited.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from ..config import REFERRAL_MULTIPLIER_SCALE, is_zero_address
from ..fixedpoint import add, mul_div, percent_of

if TYPE_CHECKING:
    from .pools import Pool
    from .world import World

logger = logging.getLogger("stakefarm.ledger.referral")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class User:
    """Referral and activity record of one address."""
    address: str
    referrer: Optional[str] = None
    referrals: List[str] = field(default_factory=list)       # direct downline, in join order
    is_active: bool = False                                   # completed a stake -> unstake cycle
    referral_earnings: Dict[str, int] = field(default_factory=dict)   # token -> total received

    @property
    def has_referrer(self) -> bool:
        return not is_zero_address(self.referrer)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        """Create from dictionary."""
        return cls(**data)


@dataclass
class ReferralPayout:
    """One transfer produced by the cascade."""
    level: int            # 0 = direct referrer
    recipient: str
    token: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# TREE OPERATIONS
# ============================================================================

def get_or_create_user(world: "World", address: str) -> User:
    user = world.users.get(address)
    if user is None:
        user = User(address=address)
        world.users[address] = user
    return user


def register_referrer(world: "World", address: str, referrer: Optional[str]) -> bool:
    """
    Attach referrer to address if it has none yet.

    Zero, self, or a referrer that would close a cycle is ignored.

    Returns:
        True if the link was recorded
    """
    user = get_or_create_user(world, address)
    if user.has_referrer or is_zero_address(referrer) or referrer == address:
        return False

    # A link back into our own downline would make the upline walk loop.
    if address in upline(world, referrer, depth=len(world.users) + 1):
        logger.warning(f"Ignoring cyclic referrer {referrer[:10]}... for {address[:10]}...")
        return False

    user.referrer = referrer
    get_or_create_user(world, referrer).referrals.append(address)
    logger.info(f"Registered referrer {referrer[:10]}... for {address[:10]}...")
    return True


def upline(world: "World", address: str, depth: Optional[int] = None) -> List[str]:
    """
    Ancestors of address, nearest first.

    Stops at the first missing link, after depth levels (default: one per
    configured referral percent), or if an address repeats.
    """
    if depth is None:
        depth = len(world.config.referral_percents)

    chain: List[str] = []
    seen = {address}
    current = world.users.get(address)
    while current is not None and current.has_referrer and len(chain) < depth:
        parent = current.referrer
        if parent in seen:
            break
        chain.append(parent)
        seen.add(parent)
        current = world.users.get(parent)
    return chain


def get_referrals(world: "World", address: str) -> List[str]:
    user = world.users.get(address)
    return list(user.referrals) if user else []


# ============================================================================
# CASCADE
# ============================================================================

def cascade_payouts(
    world: "World",
    pool: "Pool",
    owner: str,
    base_amounts: Sequence[int],
) -> List[ReferralPayout]:
    """
    Compute referral payouts for a claim by owner.

    Args:
        world: Ledger state (read-only here)
        pool: Pool the claimed stake belongs to
        owner: Staker whose upline is paid
        base_amounts: Per reward token amounts, in pool.reward_tokens order

    Returns:
        Non-zero payouts, level by level
    """
    percents = world.config.referral_percents
    payouts: List[ReferralPayout] = []

    for level, recipient in enumerate(upline(world, owner, depth=len(percents))):
        percent = percents[level]
        if percent == 0:
            continue

        if pool.has_referral_token:
            amount = 0
            for base in base_amounts:
                if base == 0:
                    continue
                scaled = mul_div(base, percent * pool.referral_multiplier, REFERRAL_MULTIPLIER_SCALE)
                amount = add(amount, scaled // 100)
            if amount > 0:
                payouts.append(ReferralPayout(level, recipient, pool.referral_token, amount))
            continue

        for token, base in zip(pool.reward_tokens, base_amounts):
            amount = percent_of(base, percent)
            if amount > 0:
                payouts.append(ReferralPayout(level, recipient, token, amount))

    return payouts


def record_earnings(world: "World", payouts: Sequence[ReferralPayout]) -> None:
    for payout in payouts:
        user = get_or_create_user(world, payout.recipient)
        user.referral_earnings[payout.token] = add(
            user.referral_earnings.get(payout.token, 0), payout.amount
        )
