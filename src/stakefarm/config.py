"""
stakefarm/config.py

Configuration constants and data classes for stakefarm.
"""

import logging
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

logger = logging.getLogger("stakefarm.config")


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scales
PERCENT_SCALE = 10 ** 12                # max_penalty_percent, penalty percents
MULTIPLIER_SCALE = 10 ** 12             # per-stake early multiplier
REFERRAL_MULTIPLIER_SCALE = 10 ** 10    # pool.referral_multiplier (1e10 = 1x)

# Largest value any ledger quantity may take
UINT256_MAX = 2 ** 256 - 1

SECONDS_PER_DAY = 86400

# Campaign defaults
DEFAULT_STAKING_DURATION_DAYS = 90
DEFAULT_STAKE_MULTIPLIER = 1
DEFAULT_REFERRAL_PERCENTS: List[int] = [3, 2, 1]    # nearest upline first

# Retention fee kept by the engine on every claim, in whole percents
DEFAULT_NO_REFERRER_FEE_PERCENT = 10
DEFAULT_REFERRER_FEE_PERCENT = 6

# Null address: "no referrer" / unset token
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Account the engine holds tokens under
ENGINE_ACCOUNT = "stakefarm"

# REST API defaults
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8545

VERSION = "0.1.0"


def is_zero_address(address: Optional[str]) -> bool:
    """True for None, empty, or the all-zero address."""
    if not address:
        return True
    return address.lower() == ZERO_ADDRESS


# ============================================================================
# ENGINE CONFIGURATION
# ============================================================================

@dataclass
class EngineConfig:
    """Owner-tunable global settings of the farming engine."""
    staking_duration: int = DEFAULT_STAKING_DURATION_DAYS * SECONDS_PER_DAY
    stake_multiplier: int = DEFAULT_STAKE_MULTIPLIER
    referral_percents: List[int] = field(
        default_factory=lambda: list(DEFAULT_REFERRAL_PERCENTS)
    )
    no_referrer_fee_percent: int = DEFAULT_NO_REFERRER_FEE_PERCENT
    referrer_fee_percent: int = DEFAULT_REFERRER_FEE_PERCENT

    @property
    def staking_days(self) -> int:
        return self.staking_duration // SECONDS_PER_DAY

    def fee_percent(self, has_referrer: bool) -> int:
        """Retention fee for a claim, depending on whether the staker was referred."""
        if has_referrer:
            return self.referrer_fee_percent
        return self.no_referrer_fee_percent

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary."""
        return cls(**data)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Build a config from defaults overridden by environment variables.

        Recognised variables:
            STAKEFARM_STAKING_DURATION_DAYS
            STAKEFARM_STAKE_MULTIPLIER
            STAKEFARM_REFERRAL_PERCENTS   (comma separated, e.g. "3,2,1")
            STAKEFARM_NO_REFERRER_FEE
            STAKEFARM_REFERRER_FEE

        Invalid values are logged and ignored.
        """
        config = cls()

        days = _env_int("STAKEFARM_STAKING_DURATION_DAYS", minimum=1)
        if days is not None:
            config.staking_duration = days * SECONDS_PER_DAY

        multiplier = _env_int("STAKEFARM_STAKE_MULTIPLIER", minimum=1)
        if multiplier is not None:
            config.stake_multiplier = multiplier

        no_ref_fee = _env_int("STAKEFARM_NO_REFERRER_FEE", minimum=0, maximum=100)
        if no_ref_fee is not None:
            config.no_referrer_fee_percent = no_ref_fee

        ref_fee = _env_int("STAKEFARM_REFERRER_FEE", minimum=0, maximum=100)
        if ref_fee is not None:
            config.referrer_fee_percent = ref_fee

        raw_percents = os.environ.get("STAKEFARM_REFERRAL_PERCENTS")
        if raw_percents:
            try:
                percents = [int(p) for p in raw_percents.split(",") if p.strip()]
            except ValueError:
                logger.warning(f"Ignoring invalid STAKEFARM_REFERRAL_PERCENTS: {raw_percents!r}")
            else:
                if percents and sum(percents) <= 100 and min(percents) >= 0:
                    config.referral_percents = percents
                else:
                    logger.warning(f"Ignoring out-of-range STAKEFARM_REFERRAL_PERCENTS: {raw_percents!r}")

        return config


def _env_int(name: str, minimum: int = 0, maximum: Optional[int] = None) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}: {raw!r}")
        return None
    if value < minimum or (maximum is not None and value > maximum):
        logger.warning(f"Ignoring out-of-range {name}: {value}")
        return None
    return value
