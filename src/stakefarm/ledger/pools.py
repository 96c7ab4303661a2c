"""
stakefarm/ledger/pools.py

Pool registry: one staking pool per staked token.

A pool fixes the stake bounds, the overall capacity, the reward tokens with
their pool-wide emission rates, the early-exit penalty schedule and the
optional referral-token payout. Reconfiguring a pool replaces its settings
but keeps its running total_staked counter.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from ..config import PERCENT_SCALE, is_zero_address
from ..errors import (
    InvalidConfigurationData,
    InvalidMaxPenaltyPercent,
    InvalidPenaltyDuration,
    InvalidPenaltyReceiver,
    InvalidStakeBounds,
    InvalidTokenAddress,
    InvalidTotalStakeLimit,
    PoolNotFound,
)

if TYPE_CHECKING:
    from .world import World

logger = logging.getLogger("stakefarm.ledger.pools")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class Pool:
    """Settings and running totals of one staking pool."""
    staked_token: str
    min_stake_amount: int
    max_stake_amount: int
    total_stake_limit: int                   # 0 = unlimited
    reward_tokens: List[str] = field(default_factory=list)
    reward_rates: List[int] = field(default_factory=list)    # base units / second, pool-wide
    max_penalty_percent: int = 0             # scaled by PERCENT_SCALE
    penalty_duration: int = 0                # seconds after deployment
    penalty_receiver: str = ""
    referral_token: Optional[str] = None
    referral_multiplier: int = 0             # scaled by REFERRAL_MULTIPLIER_SCALE
    total_staked: int = 0
    end_total_staked: Optional[int] = None  # total_staked frozen at pool end
    last_operation_block: int = 0

    @property
    def has_referral_token(self) -> bool:
        return not is_zero_address(self.referral_token) and self.referral_multiplier > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pool":
        """Create from dictionary."""
        return cls(**data)


# ============================================================================
# REGISTRY OPERATIONS
# ============================================================================

def config_pool(
    world: "World",
    staked_token: str,
    min_stake_amount: int,
    max_stake_amount: int,
    total_stake_limit: int,
    reward_tokens: Sequence[str],
    reward_rates: Sequence[int],
    max_penalty_percent: int = 0,
    penalty_duration: int = 0,
    penalty_receiver: Optional[str] = None,
    referral_token: Optional[str] = None,
    referral_multiplier: int = 0,
) -> Pool:
    """
    Create or replace the pool for staked_token.

    Checks run in a fixed order and the first failing one raises, so each
    bad input maps to exactly one error message.

    Args:
        world: Ledger state to modify
        staked_token: Token users lock in this pool (pool key)
        min_stake_amount: Smallest accepted single stake (> 0)
        max_stake_amount: Largest accepted single stake (>= min)
        total_stake_limit: Pool capacity, 0 for unlimited
        reward_tokens: Reward token ids, paired index-wise with reward_rates
        reward_rates: Pool-wide emission per second for each reward token
        max_penalty_percent: Early-exit penalty at deployment, scaled by 1e12
        penalty_duration: Seconds over which the penalty decays to zero
        penalty_receiver: Recipient of penalty deductions (non-zero)
        referral_token: Optional token referral payouts are made in
        referral_multiplier: Referral-token conversion factor, scaled by 1e10

    Returns:
        The stored Pool

    Raises:
        ConfigurationError subclasses, one per rejected input
    """
    if is_zero_address(staked_token):
        raise InvalidTokenAddress()

    if min_stake_amount <= 0 or min_stake_amount > max_stake_amount:
        raise InvalidStakeBounds()

    if total_stake_limit > 0 and max_stake_amount > total_stake_limit:
        raise InvalidTotalStakeLimit()

    if not reward_tokens or len(reward_tokens) != len(reward_rates):
        raise InvalidConfigurationData()
    if any(is_zero_address(t) for t in reward_tokens) or len(set(reward_tokens)) != len(reward_tokens):
        raise InvalidConfigurationData()
    if any(rate < 0 for rate in reward_rates):
        raise InvalidConfigurationData()

    if max_penalty_percent < 0 or max_penalty_percent > 100 * PERCENT_SCALE:
        raise InvalidMaxPenaltyPercent()

    if penalty_duration < 0 or penalty_duration > world.config.staking_duration:
        raise InvalidPenaltyDuration()

    if is_zero_address(penalty_receiver):
        raise InvalidPenaltyReceiver()

    if referral_multiplier < 0:
        raise InvalidConfigurationData()

    existing = world.pools.get(staked_token)
    pool = Pool(
        staked_token=staked_token,
        min_stake_amount=min_stake_amount,
        max_stake_amount=max_stake_amount,
        total_stake_limit=total_stake_limit,
        reward_tokens=list(reward_tokens),
        reward_rates=list(reward_rates),
        max_penalty_percent=max_penalty_percent,
        penalty_duration=penalty_duration,
        penalty_receiver=penalty_receiver,
        referral_token=None if is_zero_address(referral_token) else referral_token,
        referral_multiplier=referral_multiplier,
        total_staked=existing.total_staked if existing else 0,
        end_total_staked=existing.end_total_staked if existing else None,
        last_operation_block=existing.last_operation_block if existing else 0,
    )
    world.pools[staked_token] = pool

    action = "Reconfigured" if existing else "Configured"
    logger.info(
        f"{action} pool {staked_token[:10]}: stake {min_stake_amount}..{max_stake_amount}, "
        f"limit {total_stake_limit or 'none'}, {len(pool.reward_tokens)} reward token(s)"
    )
    return pool


def get_pool(world: "World", staked_token: str) -> Pool:
    """Look up a pool, raising PoolNotFound for unknown tokens."""
    pool = world.pools.get(staked_token)
    if pool is None:
        raise PoolNotFound()
    return pool


def remaining_capacity(pool: Pool) -> Optional[int]:
    """Units still stakeable, or None for an unlimited pool."""
    if pool.total_stake_limit == 0:
        return None
    return max(0, pool.total_stake_limit - pool.total_staked)
