"""
stakefarm.ledger - Ledger state and the pure operations over it.

Modules:
- world: World aggregate and its dict form
- pools: Pool registry and configuration validation
- stakes: Stake ledger and paged views
- accrual: Reward accrual, penalty decay, payout split
- referral: Referral tree and payout cascade
"""

from .world import World
from .pools import Pool, config_pool, get_pool
from .stakes import Stake, StakingDetails, view_staking_details
from .accrual import PenaltyInfo, PayoutSplit, compute_multiplier, penalty_info, pool_end_time
from .referral import User, ReferralPayout, cascade_payouts, upline

__all__ = [
    "World",
    "Pool",
    "config_pool",
    "get_pool",
    "Stake",
    "StakingDetails",
    "view_staking_details",
    "PenaltyInfo",
    "PayoutSplit",
    "compute_multiplier",
    "penalty_info",
    "pool_end_time",
    "User",
    "ReferralPayout",
    "cascade_payouts",
    "upline",
]
