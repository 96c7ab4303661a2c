"""
stakefarm/ledger/stakes.py

Stake ledger: per-owner, append-only list of stake positions.

A stake's id is its index in the owner's list. Positions are never removed;
unstaking only flips the unstaked flag so ids stay stable.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, TYPE_CHECKING

from ..errors import InvalidStakeIndex, StakeAlreadyUnstaked

if TYPE_CHECKING:
    from .world import World


@dataclass
class Stake:
    """One staked position."""
    id: int
    owner: str
    pool_id: str                  # staked token of the pool
    amount: int
    start_time: int
    multiplier: int               # scaled by MULTIPLIER_SCALE, frozen at creation
    claimed_until: int            # accrual watermark, never decreases
    claimed_amounts: Dict[str, int] = field(default_factory=dict)    # reward token -> gross accrued settled
    unstaked: bool = False
    unstake_time: int = 0

    @property
    def is_active(self) -> bool:
        return not self.unstaked

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stake":
        """Create from dictionary."""
        return cls(**data)


@dataclass
class StakingDetails:
    """Paged view over an owner's stakes."""
    ids: List[int]
    unstaked: List[bool]
    pool_ids: List[str]
    amounts: List[int]
    start_times: List[int]
    total_staked_amount: int      # across all of the owner's active stakes

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def append_stake(
    world: "World",
    owner: str,
    pool_id: str,
    amount: int,
    start_time: int,
    multiplier: int,
) -> Stake:
    """Record a new stake for owner and return it."""
    positions = world.stakes.setdefault(owner, [])
    stake = Stake(
        id=len(positions),
        owner=owner,
        pool_id=pool_id,
        amount=amount,
        start_time=start_time,
        multiplier=multiplier,
        claimed_until=start_time,
    )
    positions.append(stake)
    return stake


def get_stake(world: "World", owner: str, stake_id: int) -> Stake:
    positions = world.stakes.get(owner, [])
    if stake_id < 0 or stake_id >= len(positions):
        raise InvalidStakeIndex()
    return positions[stake_id]


def require_active(stake: Stake) -> Stake:
    if stake.unstaked:
        raise StakeAlreadyUnstaked()
    return stake


def get_active_stake(world: "World", owner: str, stake_id: int) -> Stake:
    return require_active(get_stake(world, owner, stake_id))


def view_staking_details(
    world: "World",
    owner: str,
    offset: int = 0,
    limit: int = 0,
) -> StakingDetails:
    """
    Page through owner's stakes.

    Args:
        offset: First stake id to include
        limit: Maximum number of stakes, 0 for all remaining

    Returns:
        StakingDetails; total_staked_amount always covers every active
        stake, not just the returned page.
    """
    if offset < 0 or limit < 0:
        raise ValueError("offset and limit must be non-negative")

    positions = world.stakes.get(owner, [])
    end = len(positions) if limit == 0 else min(len(positions), offset + limit)
    page = positions[offset:end]

    return StakingDetails(
        ids=[s.id for s in page],
        unstaked=[s.unstaked for s in page],
        pool_ids=[s.pool_id for s in page],
        amounts=[s.amount for s in page],
        start_times=[s.start_time for s in page],
        total_staked_amount=sum(s.amount for s in positions if not s.unstaked),
    )
