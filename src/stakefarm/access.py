"""
stakefarm/access.py

Owner and pause gate for the farming engine.
"""

import logging

from .config import is_zero_address
from .errors import NotOwnerError, NotPausedError, PausedError

logger = logging.getLogger("stakefarm.access")


class AccessControl:
    """
    Single-owner authorization with a pause switch.

    Pausing blocks stake / claim / unstake only; owner recovery paths
    (emergency unstake, token retrieval) stay available.
    """

    def __init__(self, owner: str, paused: bool = False):
        if is_zero_address(owner):
            raise ValueError("Owner must be a non-zero address")
        self.owner = owner
        self.paused = paused

    def is_owner(self, caller: str) -> bool:
        return caller == self.owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise NotOwnerError()

    def require_not_paused(self) -> None:
        if self.paused:
            raise PausedError()

    def pause(self, caller: str) -> None:
        self.require_owner(caller)
        if self.paused:
            raise PausedError()
        self.paused = True
        logger.info("Engine paused")

    def unpause(self, caller: str) -> None:
        self.require_owner(caller)
        if not self.paused:
            raise NotPausedError()
        self.paused = False
        logger.info("Engine unpaused")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        if is_zero_address(new_owner):
            raise ValueError("Ownable: new owner is the zero address")
        logger.info(f"Ownership transferred {self.owner[:10]}... -> {new_owner[:10]}...")
        self.owner = new_owner

    def to_dict(self) -> dict:
        return {"owner": self.owner, "paused": self.paused}

    @classmethod
    def from_dict(cls, data: dict) -> "AccessControl":
        return cls(owner=data["owner"], paused=bool(data.get("paused", False)))
