"""
stakefarm/ledger/accrual.py

Reward accrual, early-exit penalty and payout split.

Rewards accrue linearly from a stake's watermark to min(now, pool end) and
are shared pro rata over the pool's *current* total_staked, so a later
stake dilutes what earlier stakes have not yet claimed. Each stake's
multiplier is frozen at creation and rewards stakes made earlier in the
campaign, quantized to whole days.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, TYPE_CHECKING

from ..config import MULTIPLIER_SCALE, PERCENT_SCALE, SECONDS_PER_DAY
from ..fixedpoint import mul, mul_div, percent_of, scaled_percent_of, sub

if TYPE_CHECKING:
    from .pools import Pool
    from .stakes import Stake
    from .world import World

logger = logging.getLogger("stakefarm.ledger.accrual")


@dataclass
class PenaltyInfo:
    """Current early-exit penalty of a pool."""
    penalty_percent: int          # scaled by PERCENT_SCALE
    max_penalty_percent: int
    penalty_duration: int
    time_left: int                # seconds until the penalty reaches zero

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PayoutSplit:
    """How one reward token's accrued amount is distributed on claim."""
    accrued: int
    retained: int                 # retention fee, stays with the engine
    penalty: int                  # sent to the pool's penalty receiver
    payout: int                   # sent to the staker

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# CAMPAIGN WINDOW
# ============================================================================

def pool_end_time(world: "World") -> int:
    return world.deployment_time + world.config.staking_duration


def is_staking_open(world: "World", now: int) -> bool:
    return now < pool_end_time(world)


def compute_multiplier(world: "World", start_time: int) -> int:
    """
    Early-stake multiplier for a stake starting at start_time.

    1 + (stake_multiplier - 1) * remaining / staking_duration, where
    remaining is measured from the start of the day the stake falls in.
    Scaled by MULTIPLIER_SCALE.
    """
    config = world.config
    if config.stake_multiplier <= 1 or config.staking_duration == 0:
        return MULTIPLIER_SCALE

    days_before = max(0, start_time - world.deployment_time) // SECONDS_PER_DAY
    staking_time = max(0, config.staking_duration - days_before * SECONDS_PER_DAY)
    bonus = mul_div(
        (config.stake_multiplier - 1) * MULTIPLIER_SCALE,
        staking_time,
        config.staking_duration,
    )
    return MULTIPLIER_SCALE + bonus


# ============================================================================
# ACCRUAL
# ============================================================================

def accrual_elapsed(world: "World", stake: "Stake", now: int) -> int:
    """Seconds of accrual between the stake's watermark and min(now, pool end)."""
    horizon = min(now, pool_end_time(world))
    return max(0, horizon - stake.claimed_until)


def reward_divisor(world: "World", pool: "Pool", now: int) -> int:
    """
    Staked total that rewards are shared over.

    The pool's current total_staked while the campaign runs. From pool end
    on, the total as it stood at pool end, so exits after the end do not
    change what the remaining stakes are owed.
    """
    if now >= pool_end_time(world) and pool.end_total_staked is not None:
        return pool.end_total_staked
    return pool.total_staked


def freeze_end_total(world: "World", pool: "Pool", now: int) -> None:
    """Record total_staked at pool end before the first post-end change."""
    if now >= pool_end_time(world) and pool.end_total_staked is None:
        pool.end_total_staked = pool.total_staked


def raw_reward(stake: "Stake", rate: int, elapsed: int, divisor: int) -> int:
    """amount * elapsed * rate / divisor, before the stake multiplier."""
    if elapsed == 0 or rate == 0 or divisor == 0:
        return 0
    return mul_div(mul(stake.amount, elapsed), rate, divisor)


def accrued_rewards(world: "World", stake: "Stake", now: int) -> List[int]:
    """
    Unclaimed rewards of stake, one entry per reward token in pool order.

    Zero for unstaked stakes and once the watermark reaches the pool end.
    """
    pool = world.pools[stake.pool_id]
    if stake.unstaked:
        return [0] * len(pool.reward_tokens)

    elapsed = accrual_elapsed(world, stake, now)
    divisor = reward_divisor(world, pool, now)
    rewards = []
    for rate in pool.reward_rates:
        raw = raw_reward(stake, rate, elapsed, divisor)
        rewards.append(mul_div(raw, stake.multiplier, MULTIPLIER_SCALE))
    return rewards


# ============================================================================
# PENALTY
# ============================================================================

def penalty_info(world: "World", pool: "Pool", now: int) -> PenaltyInfo:
    """Linear decay from max_penalty_percent at deployment to 0 at penalty_duration."""
    duration = pool.penalty_duration
    elapsed = max(0, now - world.deployment_time)
    time_left = max(0, duration - elapsed)

    if duration == 0 or pool.max_penalty_percent == 0:
        percent = 0
    else:
        percent = mul_div(pool.max_penalty_percent, time_left, duration)

    return PenaltyInfo(
        penalty_percent=percent,
        max_penalty_percent=pool.max_penalty_percent,
        penalty_duration=duration,
        time_left=time_left,
    )


def apply_penalty(amount: int, penalty_percent: int) -> int:
    """amount with penalty_percent (scaled) removed."""
    return sub(amount, scaled_percent_of(amount, penalty_percent, PERCENT_SCALE))


# ============================================================================
# PAYOUT SPLIT
# ============================================================================

def split_payout(
    world: "World",
    accrued: int,
    has_referrer: bool,
    penalty_percent: int,
) -> PayoutSplit:
    """
    Split an accrued amount into retention fee, penalty and staker payout.

    The fee is taken first; the penalty applies to what remains.
    """
    fee_percent = world.config.fee_percent(has_referrer)
    net = percent_of(accrued, 100 - fee_percent)
    penalty = scaled_percent_of(net, penalty_percent, PERCENT_SCALE)
    return PayoutSplit(
        accrued=accrued,
        retained=accrued - net,
        penalty=penalty,
        payout=net - penalty,
    )
