"""
stakefarm/farming.py

Lifecycle orchestrator for the staking ledger.

FarmingEngine is the single entry point for every state transition:
staking, claiming, unstaking, owner recovery and owner settings. Each
transition is atomic. Ledger state is snapshotted first, checks and
bookkeeping run against the World, outgoing token totals are checked
against the engine's balances, and only then do tokens move. Any exception
restores the snapshot and takes back any tokens already paid by the batch.

Usage:
    from stakefarm import FarmingEngine, InMemoryToken

    farm = InMemoryToken("FARM")
    engine = FarmingEngine.create(owner="0xowner", tokens={"FARM": farm})
    engine.config_pool("0xowner", "FARM", min_stake_amount=1, max_stake_amount=10 ** 24,
                       total_stake_limit=10 ** 25, reward_tokens=["FARM"],
                       reward_rates=[277 * 10 ** 12])

    engine.stake("0xalice", "FARM", 500 * 10 ** 18, referrer="0xbob")
    engine.claim_reward("0xalice", 0)
    engine.unstake("0xalice", 0)
"""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from .access import AccessControl
from .config import SECONDS_PER_DAY, EngineConfig
from .errors import (
    IncorrectRewardsLength,
    InsufficientBalance,
    InsufficientRewardBalance,
    InvalidAmount,
    InvalidFeePercents,
    InvalidPenaltyDuration,
    InvalidReferralPercents,
    InvalidStakeAmount,
    InvalidStakeMultiplier,
    InvalidStakingDuration,
    PoolFulfilled,
    ReentrancyError,
    StakingFinished,
)
from .fixedpoint import add, sub
from .ledger import accrual, pools, referral, stakes
from .ledger.accrual import PayoutSplit, PenaltyInfo
from .ledger.pools import Pool
from .ledger.referral import ReferralPayout, User
from .ledger.stakes import Stake, StakingDetails
from .ledger.world import World
from .tokens import TokenLedger, TokenRegistry

logger = logging.getLogger("stakefarm.farming")


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class Transfer:
    """A token movement out of the engine."""
    token: str
    recipient: str
    amount: int
    kind: str            # reward, penalty, referral, principal, retrieve


@dataclass
class SettlementResult:
    """Outcome of a claim, unstake or emergency unstake."""
    owner: str
    stake_id: int
    pool_id: str
    splits: Dict[str, PayoutSplit] = field(default_factory=dict)
    referral_payouts: List[ReferralPayout] = field(default_factory=list)
    principal: int = 0
    transfers: List[Transfer] = field(default_factory=list)

    @property
    def paid(self) -> Dict[str, int]:
        """Reward-token amounts paid to the staker."""
        return {token: split.payout for token, split in self.splits.items()}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# ENGINE
# ============================================================================

class FarmingEngine:
    """
    Multi-pool, multi-reward staking engine.

    All mutating methods take the caller's address first. Stake, claim and
    unstake are blocked while paused; owner recovery paths are not.
    """

    def __init__(
        self,
        world: World,
        access: AccessControl,
        tokens: Union[TokenRegistry, Dict[str, TokenLedger], None] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize FarmingEngine.

        Args:
            world: Ledger state to operate on
            access: Owner / pause gate
            tokens: Token collaborators keyed by token id
            clock: Returns the current unix time (default: time.time)
        """
        self.world = world
        self.access = access
        self.tokens = tokens if isinstance(tokens, TokenRegistry) else TokenRegistry(tokens)
        self._clock = clock or time.time
        self._in_transition = False

        # Callbacks
        self._on_stake: List[Callable[[Stake], None]] = []
        self._on_claim: List[Callable[[SettlementResult], None]] = []
        self._on_unstake: List[Callable[[SettlementResult], None]] = []

    @classmethod
    def create(
        cls,
        owner: str,
        tokens: Union[TokenRegistry, Dict[str, TokenLedger], None] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> "FarmingEngine":
        """Deploy a fresh engine whose campaign starts now."""
        clock = clock or time.time
        world = World(deployment_time=int(clock()), config=config or EngineConfig())
        logger.info(
            f"Deployed farming engine for {owner[:10]}...: "
            f"{world.config.staking_days} day campaign starting {world.deployment_time}"
        )
        return cls(world, AccessControl(owner), tokens=tokens, clock=clock)

    def now(self) -> int:
        return int(self._clock())

    @property
    def owner(self) -> str:
        return self.access.owner

    @property
    def paused(self) -> bool:
        return self.access.paused

    # ========================================================================
    # CALLBACKS
    # ========================================================================

    def on_stake(self, callback: Callable[[Stake], None]) -> None:
        """Register callback invoked after a stake is committed."""
        self._on_stake.append(callback)

    def on_claim(self, callback: Callable[[SettlementResult], None]) -> None:
        """Register callback invoked after a reward claim is committed."""
        self._on_claim.append(callback)

    def on_unstake(self, callback: Callable[[SettlementResult], None]) -> None:
        """Register callback invoked after an unstake (regular or emergency)."""
        self._on_unstake.append(callback)

    def _notify(self, callbacks: List[Callable], payload: Any) -> None:
        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    # ========================================================================
    # TRANSITION MACHINERY
    # ========================================================================

    @contextmanager
    def _transition(self, operation: str) -> Iterator[World]:
        """Run one atomic state transition; restore the snapshot on any error."""
        if self._in_transition:
            raise ReentrancyError()

        self._in_transition = True
        snapshot = self.world.snapshot()
        try:
            self.world.next_block()
            yield self.world
        except Exception as e:
            self.world.restore(snapshot)
            logger.warning(f"{operation} rejected: {e}")
            raise
        finally:
            self._in_transition = False

    def _ensure_liquidity(self, transfers: Sequence[Transfer]) -> None:
        """Fail before any token moves if the engine cannot cover the batch."""
        required: Dict[str, int] = {}
        for transfer in transfers:
            required[transfer.token] = add(required.get(transfer.token, 0), transfer.amount)

        for token_id, amount in required.items():
            if self.tokens.get(token_id).engine_balance() < amount:
                raise InsufficientRewardBalance(
                    f"Insufficient reward balance: {token_id} needs {amount}"
                )

    def _execute(self, transfers: Sequence[Transfer]) -> None:
        """Move every transfer or none of them."""
        self._ensure_liquidity(transfers)
        completed: List[Transfer] = []
        try:
            for transfer in transfers:
                self.tokens.get(transfer.token).transfer_out(transfer.recipient, transfer.amount)
                completed.append(transfer)
                logger.debug(
                    f"Paid {transfer.amount} {transfer.token} ({transfer.kind}) to {transfer.recipient[:10]}..."
                )
        except Exception:
            self._reverse(completed)
            raise

    def _reverse(self, completed: Sequence[Transfer]) -> None:
        """Pull back transfers already made by a batch that failed later on."""
        for transfer in reversed(completed):
            try:
                self.tokens.get(transfer.token).transfer_in(transfer.recipient, transfer.amount)
            except Exception as e:
                logger.error(
                    f"Could not reverse {transfer.amount} {transfer.token} ({transfer.kind}) "
                    f"to {transfer.recipient[:10]}...: {e}"
                )
            else:
                logger.debug(
                    f"Reversed {transfer.amount} {transfer.token} ({transfer.kind}) from {transfer.recipient[:10]}..."
                )

    def _settle_rewards(self, world: World, stake: Stake, now: int, result: SettlementResult) -> None:
        """Pay out everything stake has accrued since its watermark."""
        pool = world.pools[stake.pool_id]
        user = referral.get_or_create_user(world, stake.owner)
        accrual.freeze_end_total(world, pool, now)
        penalty_percent = accrual.penalty_info(world, pool, now).penalty_percent
        accrued = accrual.accrued_rewards(world, stake, now)

        for token, amount in zip(pool.reward_tokens, accrued):
            split = accrual.split_payout(world, amount, user.has_referrer, penalty_percent)
            result.splits[token] = split
            if split.payout:
                result.transfers.append(Transfer(token, stake.owner, split.payout, "reward"))
            if split.penalty:
                result.transfers.append(Transfer(token, pool.penalty_receiver, split.penalty, "penalty"))
            stake.claimed_amounts[token] = add(stake.claimed_amounts.get(token, 0), amount)

        self._cascade(world, pool, stake.owner, accrued, result)
        stake.claimed_until = max(stake.claimed_until, min(now, accrual.pool_end_time(world)))

    def _cascade(
        self,
        world: World,
        pool: Pool,
        owner: str,
        base_amounts: Sequence[int],
        result: SettlementResult,
    ) -> None:
        payouts = referral.cascade_payouts(world, pool, owner, base_amounts)
        referral.record_earnings(world, payouts)
        result.referral_payouts.extend(payouts)
        result.transfers.extend(
            Transfer(p.token, p.recipient, p.amount, "referral") for p in payouts
        )

    def _close_stake(self, world: World, stake: Stake, now: int, result: SettlementResult) -> None:
        pool = world.pools[stake.pool_id]
        stake.unstaked = True
        stake.unstake_time = now
        pool.total_staked = sub(pool.total_staked, stake.amount)
        pool.last_operation_block = world.block_number
        referral.get_or_create_user(world, stake.owner).is_active = True
        result.principal = stake.amount
        result.transfers.append(Transfer(pool.staked_token, stake.owner, stake.amount, "principal"))

    # ========================================================================
    # STAKER OPERATIONS
    # ========================================================================

    def stake(
        self,
        caller: str,
        staked_token: str,
        amount: int,
        referrer: Optional[str] = None,
    ) -> Stake:
        """
        Lock amount of staked_token in its pool.

        Args:
            caller: Staker address
            staked_token: Pool key
            amount: Units to stake, within the pool's bounds
            referrer: Upline to record on the caller's first stake

        Returns:
            The new Stake

        Raises:
            PausedError, PoolNotFound, StakingFinished, PoolFulfilled,
            InvalidStakeAmount, or the token's transfer error
        """
        with self._transition("stake") as world:
            self.access.require_not_paused()
            now = self.now()
            pool = pools.get_pool(world, staked_token)

            if not accrual.is_staking_open(world, now):
                raise StakingFinished()
            capacity = pools.remaining_capacity(pool)
            if capacity is not None and amount > capacity:
                raise PoolFulfilled()
            if amount < pool.min_stake_amount or amount > pool.max_stake_amount:
                raise InvalidStakeAmount()

            referral.get_or_create_user(world, caller)
            referral.register_referrer(world, caller, referrer)

            multiplier = accrual.compute_multiplier(world, now)
            new_stake = stakes.append_stake(world, caller, staked_token, amount, now, multiplier)
            pool.total_staked = add(pool.total_staked, amount)
            pool.last_operation_block = world.block_number

            self.tokens.get(staked_token).transfer_in(caller, amount)

        logger.info(
            f"Stake #{new_stake.id} by {caller[:10]}...: {amount} {staked_token} "
            f"(multiplier {multiplier}, pool total {pool.total_staked})"
        )
        self._notify(self._on_stake, new_stake)
        return new_stake

    def claim_reward(self, caller: str, stake_id: int) -> SettlementResult:
        """
        Pay the caller's accrued rewards on one stake.

        Calling again with no time elapsed pays nothing.
        """
        with self._transition("claim_reward") as world:
            self.access.require_not_paused()
            now = self.now()
            target = stakes.get_active_stake(world, caller, stake_id)
            result = SettlementResult(owner=caller, stake_id=stake_id, pool_id=target.pool_id)

            self._settle_rewards(world, target, now, result)
            world.pools[target.pool_id].last_operation_block = world.block_number
            self._execute(result.transfers)

        logger.info(f"Claim on stake #{stake_id} by {caller[:10]}...: {result.paid}")
        self._notify(self._on_claim, result)
        return result

    def unstake(self, caller: str, stake_id: int) -> SettlementResult:
        """Pay accrued rewards, return the principal and close the stake."""
        with self._transition("unstake") as world:
            self.access.require_not_paused()
            now = self.now()
            target = stakes.get_active_stake(world, caller, stake_id)
            result = SettlementResult(owner=caller, stake_id=stake_id, pool_id=target.pool_id)

            self._settle_rewards(world, target, now, result)
            self._close_stake(world, target, now, result)
            self._execute(result.transfers)

        logger.info(
            f"Unstake #{stake_id} by {caller[:10]}...: principal {result.principal}, rewards {result.paid}"
        )
        self._notify(self._on_unstake, result)
        return result

    # ========================================================================
    # OWNER RECOVERY
    # ========================================================================

    def emergency_unstake(
        self,
        caller: str,
        owner: str,
        stake_id: int,
        reward_amounts: Sequence[int],
        pay_referral_rewards: bool = False,
    ) -> SettlementResult:
        """
        Close owner's stake paying exactly reward_amounts, with no fee or penalty.

        Available while paused. When pay_referral_rewards is set the upline
        is paid as if reward_amounts had accrued normally.
        """
        with self._transition("emergency_unstake") as world:
            self.access.require_owner(caller)
            now = self.now()
            target = stakes.get_active_stake(world, owner, stake_id)
            pool = world.pools[target.pool_id]
            if len(reward_amounts) != len(pool.reward_tokens):
                raise IncorrectRewardsLength()
            accrual.freeze_end_total(world, pool, now)

            result = SettlementResult(owner=owner, stake_id=stake_id, pool_id=target.pool_id)
            for token, amount in zip(pool.reward_tokens, reward_amounts):
                if amount < 0:
                    raise InvalidAmount()
                result.splits[token] = PayoutSplit(accrued=amount, retained=0, penalty=0, payout=amount)
                if amount:
                    result.transfers.append(Transfer(token, owner, amount, "reward"))
                target.claimed_amounts[token] = add(target.claimed_amounts.get(token, 0), amount)

            if pay_referral_rewards:
                self._cascade(world, pool, owner, reward_amounts, result)

            target.claimed_until = max(target.claimed_until, min(now, accrual.pool_end_time(world)))
            self._close_stake(world, target, now, result)
            self._execute(result.transfers)

        logger.info(
            f"Emergency unstake #{stake_id} of {owner[:10]}... by owner: "
            f"principal {result.principal}, rewards {result.paid}"
        )
        self._notify(self._on_unstake, result)
        return result

    def retrieve_tokens(self, caller: str, token: str, amount: int) -> Transfer:
        """Withdraw amount of token held by the engine to the owner."""
        with self._transition("retrieve_tokens"):
            self.access.require_owner(caller)
            if amount <= 0:
                raise InvalidAmount()
            ledger = self.tokens.get(token)
            if amount > ledger.engine_balance():
                raise InsufficientBalance()

            transfer = Transfer(token, caller, amount, "retrieve")
            ledger.transfer_out(caller, amount)

        logger.info(f"Owner retrieved {amount} {token}")
        return transfer

    # ========================================================================
    # OWNER SETTINGS
    # ========================================================================

    def config_pool(
        self,
        caller: str,
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
        Create or replace a pool (owner only).

        Omitting the penalty and referral arguments configures a pool with
        no early-exit penalty, paying referrals in the reward tokens, and
        the owner as penalty receiver.
        """
        with self._transition("config_pool") as world:
            self.access.require_owner(caller)
            if penalty_receiver is None:
                penalty_receiver = self.access.owner
            pool = pools.config_pool(
                world,
                staked_token,
                min_stake_amount,
                max_stake_amount,
                total_stake_limit,
                reward_tokens,
                reward_rates,
                max_penalty_percent=max_penalty_percent,
                penalty_duration=penalty_duration,
                penalty_receiver=penalty_receiver,
                referral_token=referral_token,
                referral_multiplier=referral_multiplier,
            )
        return pool

    def change_staking_duration(self, caller: str, days: int) -> None:
        """
        Set the campaign length; moves the pool end for every pool.

        Rejected while any pool's penalty window would outlast the campaign.
        """
        with self._transition("change_staking_duration") as world:
            self.access.require_owner(caller)
            if days <= 0:
                raise InvalidStakingDuration()
            duration = days * SECONDS_PER_DAY
            if any(pool.penalty_duration > duration for pool in world.pools.values()):
                raise InvalidPenaltyDuration()
            world.config.staking_duration = duration
            for pool in world.pools.values():
                pool.end_total_staked = None
        logger.info(f"Staking duration set to {days} days")

    def change_stake_multiplier(self, caller: str, value: int) -> None:
        """Set the early-stake multiplier for future stakes."""
        with self._transition("change_stake_multiplier") as world:
            self.access.require_owner(caller)
            if value < 1:
                raise InvalidStakeMultiplier()
            world.config.stake_multiplier = value
        logger.info(f"Stake multiplier set to {value}")

    def change_referral_percents(self, caller: str, percents: Sequence[int]) -> None:
        """Set per-level referral percents, nearest upline first."""
        with self._transition("change_referral_percents") as world:
            self.access.require_owner(caller)
            if not percents or any(p < 0 for p in percents) or sum(percents) > 100:
                raise InvalidReferralPercents()
            world.config.referral_percents = list(percents)
        logger.info(f"Referral percents set to {list(percents)}")

    def change_retention_fees(self, caller: str, no_referrer_percent: int, referrer_percent: int) -> None:
        """Set the retention fee for stakers without and with a referrer."""
        with self._transition("change_retention_fees") as world:
            self.access.require_owner(caller)
            for percent in (no_referrer_percent, referrer_percent):
                if percent < 0 or percent > 100:
                    raise InvalidFeePercents()
            world.config.no_referrer_fee_percent = no_referrer_percent
            world.config.referrer_fee_percent = referrer_percent
        logger.info(f"Retention fees set to {no_referrer_percent}% / {referrer_percent}% (with referrer)")

    def pause(self, caller: str) -> None:
        self.access.pause(caller)

    def unpause(self, caller: str) -> None:
        self.access.unpause(caller)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.access.transfer_ownership(caller, new_owner)

    # ========================================================================
    # VIEWS
    # ========================================================================

    def pools(self, staked_token: str) -> Pool:
        return pools.get_pool(self.world, staked_token)

    def pool_ids(self) -> List[str]:
        return list(self.world.pools.keys())

    def users(self, address: str) -> User:
        """User record of address; a blank record for unknown addresses."""
        return self.world.users.get(address) or User(address=address)

    def view_staking_details(self, owner: str, offset: int = 0, limit: int = 0) -> StakingDetails:
        return stakes.view_staking_details(self.world, owner, offset, limit)

    def get_stake(self, owner: str, stake_id: int) -> Stake:
        return stakes.get_stake(self.world, owner, stake_id)

    def get_stake_rewards(
        self,
        owner: str,
        stake_id: int,
        apply_penalty: bool = False,
        at: Optional[int] = None,
    ) -> List[int]:
        """
        Currently claimable rewards of a stake, before the retention fee.

        Args:
            owner: Stake owner
            stake_id: Index in owner's stakes
            apply_penalty: Deduct the pool's current early-exit penalty
            at: Evaluate at this time instead of now

        Returns:
            Amounts in the pool's reward token order
        """
        now = self.now() if at is None else at
        target = stakes.get_active_stake(self.world, owner, stake_id)
        rewards = accrual.accrued_rewards(self.world, target, now)
        if apply_penalty:
            pool = self.world.pools[target.pool_id]
            percent = accrual.penalty_info(self.world, pool, now).penalty_percent
            rewards = [accrual.apply_penalty(amount, percent) for amount in rewards]
        return rewards

    def get_pool_penalty_info(self, staked_token: str, at: Optional[int] = None) -> PenaltyInfo:
        pool = pools.get_pool(self.world, staked_token)
        return accrual.penalty_info(self.world, pool, self.now() if at is None else at)

    def is_active_user(self, address: str) -> bool:
        user = self.world.users.get(address)
        return bool(user and user.is_active)

    def get_referrals(self, address: str) -> List[str]:
        return referral.get_referrals(self.world, address)

    def get_referrals_number(self, address: str) -> int:
        return len(self.get_referrals(address))

    def pool_end_time(self) -> int:
        return accrual.pool_end_time(self.world)

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Ledger and access state as a JSON-serializable dictionary."""
        return {
            "access": self.access.to_dict(),
            "world": self.world.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        tokens: Union[TokenRegistry, Dict[str, TokenLedger], None] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> "FarmingEngine":
        """Create from dictionary."""
        return cls(
            World.from_dict(data["world"]),
            AccessControl.from_dict(data["access"]),
            tokens=tokens,
            clock=clock,
        )


def save_engine(engine: FarmingEngine, path: Union[str, Path]) -> None:
    """Write engine state to path as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(engine.to_dict(), indent=2))
    tmp.replace(path)
    logger.debug(f"Saved ledger state to {path}")


def load_engine(
    path: Union[str, Path],
    tokens: Union[TokenRegistry, Dict[str, TokenLedger], None] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FarmingEngine:
    """Read an engine previously written by save_engine."""
    path = Path(path)
    engine = FarmingEngine.from_dict(json.loads(path.read_text()), tokens=tokens, clock=clock)
    logger.info(
        f"Loaded ledger state from {path}: {len(engine.world.pools)} pool(s), "
        f"{len(engine.world.users)} user(s)"
    )
    return engine
