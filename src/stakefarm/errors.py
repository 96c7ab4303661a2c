"""
stakefarm/errors.py

Exceptions raised by the farming ledger.

Every rejected operation raises a StakingError subclass whose message is
unique to the failing condition, so callers can match on either the class
or the text. Any exception aborts the whole operation; no partial state is
kept.
"""

from typing import Optional


class StakingError(Exception):
    """Base exception for all farming ledger failures."""

    message = "Staking operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or type(self).message
        super().__init__(self.message)


# ============================================================================
# AUTHORIZATION
# ============================================================================

class AuthorizationError(StakingError):
    """Caller is not allowed to perform the operation right now."""
    pass


class NotOwnerError(AuthorizationError):
    message = "Ownable: caller is not the owner"


class PausedError(AuthorizationError):
    message = "Pausable: paused"


class NotPausedError(AuthorizationError):
    message = "Pausable: not paused"


# ============================================================================
# CONFIGURATION
# ============================================================================

class ConfigurationError(StakingError):
    """Rejected pool or global settings."""
    pass


class InvalidTokenAddress(ConfigurationError):
    message = "Invalid token contract address"


class InvalidStakeBounds(ConfigurationError):
    message = "Invalid min or max stake amounts values"


class InvalidTotalStakeLimit(InvalidStakeBounds):
    """Max stake larger than a non-zero pool limit."""
    message = "Invalid total stake limit value"


class InvalidConfigurationData(ConfigurationError):
    message = "Invalid configuration data"


class InvalidMaxPenaltyPercent(ConfigurationError):
    message = "Invalid max penalty percent"


class InvalidPenaltyDuration(ConfigurationError):
    message = "Invalid penalty duration"


class InvalidPenaltyReceiver(ConfigurationError):
    message = "Invalid penalty receiver address"


class InvalidStakingDuration(ConfigurationError):
    message = "Invalid number of days"


class InvalidStakeMultiplier(ConfigurationError):
    message = "Invalid multiplier value"


class InvalidReferralPercents(ConfigurationError):
    message = "Invalid referral percents array data"


class InvalidFeePercents(ConfigurationError):
    message = "Invalid fee percent values"


# ============================================================================
# CAPACITY / WINDOW
# ============================================================================

class CapacityError(StakingError):
    """Stake rejected by the campaign window or pool limits."""
    pass


class StakingFinished(CapacityError):
    message = "Staking is finished"


class PoolFulfilled(CapacityError):
    message = "This pool is fulfilled"


class InvalidStakeAmount(CapacityError):
    message = "Invalid stake amount value"


# ============================================================================
# REFERENCE VALIDITY
# ============================================================================

class StakeReferenceError(StakingError):
    """Operation refers to a pool, stake or token that cannot be used."""
    pass


class PoolNotFound(StakeReferenceError):
    message = "Pool does not exist"


class InvalidStakeIndex(StakeReferenceError):
    message = "Invalid stake index"


class StakeAlreadyUnstaked(StakeReferenceError):
    message = "Stake was unstaked already"


class IncorrectRewardsLength(StakeReferenceError):
    message = "Incorrect rewards array length"


class UnknownTokenError(StakeReferenceError):
    message = "Token is not registered"


# ============================================================================
# RESOURCE SUFFICIENCY
# ============================================================================

class BalanceError(StakingError):
    """Engine or caller does not hold enough tokens."""
    pass


class InvalidAmount(BalanceError):
    message = "Invalid amount"


class InsufficientBalance(BalanceError):
    message = "Insufficient Balance"


class InsufficientRewardBalance(BalanceError):
    message = "Insufficient reward balance"


class TokenTransferError(BalanceError):
    """Raised by token collaborators when a transfer cannot be made."""
    message = "ERC20: transfer amount exceeds balance"


# ============================================================================
# INTERNAL GUARDS
# ============================================================================

class ArithmeticOverflowError(StakingError):
    message = "Arithmetic overflow"


class ReentrancyError(StakingError):
    message = "ReentrancyGuard: reentrant call"
