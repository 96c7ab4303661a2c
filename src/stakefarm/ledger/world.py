"""
stakefarm/ledger/world.py

The World aggregate: every piece of ledger state in one place.

Pools, stakes and users live in three maps next to the global settings.
Ledger functions receive the World explicitly; nothing is module-global.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..config import EngineConfig
from .pools import Pool
from .referral import User
from .stakes import Stake

logger = logging.getLogger("stakefarm.ledger.world")

STATE_FORMAT_VERSION = 1


@dataclass
class World:
    """Complete ledger state."""
    deployment_time: int
    config: EngineConfig = field(default_factory=EngineConfig)
    pools: Dict[str, Pool] = field(default_factory=dict)            # staked token -> Pool
    stakes: Dict[str, List[Stake]] = field(default_factory=dict)    # owner -> stakes by id
    users: Dict[str, User] = field(default_factory=dict)            # address -> User
    block_number: int = 0

    def next_block(self) -> int:
        self.block_number += 1
        return self.block_number

    def snapshot(self) -> "World":
        return copy.deepcopy(self)

    def restore(self, snapshot: "World") -> None:
        """Replace this world's contents with a previously taken snapshot."""
        self.deployment_time = snapshot.deployment_time
        self.config = snapshot.config
        self.pools = snapshot.pools
        self.stakes = snapshot.stakes
        self.users = snapshot.users
        self.block_number = snapshot.block_number
        logger.debug(f"Ledger restored to block {self.block_number}")

    def active_stakes(self) -> List[Stake]:
        return [s for positions in self.stakes.values() for s in positions if not s.unstaked]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "version": STATE_FORMAT_VERSION,
            "deployment_time": self.deployment_time,
            "block_number": self.block_number,
            "config": self.config.to_dict(),
            "pools": {token: pool.to_dict() for token, pool in self.pools.items()},
            "stakes": {
                owner: [s.to_dict() for s in positions]
                for owner, positions in self.stakes.items()
            },
            "users": {address: user.to_dict() for address, user in self.users.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "World":
        """Create from dictionary."""
        version = data.get("version", STATE_FORMAT_VERSION)
        if version != STATE_FORMAT_VERSION:
            raise ValueError(f"Unsupported state format version: {version}")

        return cls(
            deployment_time=int(data["deployment_time"]),
            block_number=int(data.get("block_number", 0)),
            config=EngineConfig.from_dict(data.get("config", {})),
            pools={
                token: Pool.from_dict(pool)
                for token, pool in data.get("pools", {}).items()
            },
            stakes={
                owner: [Stake.from_dict(s) for s in positions]
                for owner, positions in data.get("stakes", {}).items()
            },
            users={
                address: User.from_dict(user)
                for address, user in data.get("users", {}).items()
            },
        )
