"""
stakefarm/tests/conftest.py

Shared fixtures: a controllable clock, in-memory tokens and a deployed engine.
"""

import pytest

from stakefarm.config import ENGINE_ACCOUNT, SECONDS_PER_DAY
from stakefarm.farming import FarmingEngine
from stakefarm.tokens import InMemoryToken


DEPLOY_TIME = 1_700_000_000
DAY = SECONDS_PER_DAY
E18 = 10 ** 18

OWNER = "0xowner0000000000000000000000000000000001"
ALICE = "0xalice0000000000000000000000000000000002"
BOB = "0xbob000000000000000000000000000000000003"
CAROL = "0xcarol0000000000000000000000000000000004"
DAVE = "0xdave00000000000000000000000000000000005"
ERIN = "0xerin00000000000000000000000000000000006"
RECEIVER = "0xpenalty00000000000000000000000000000007"

# 0.001 FARM / second for the whole pool
FARM_RATE = 10 ** 15
GOLD_RATE = 2 * 10 ** 15

ENGINE_FUNDING = 10 ** 12 * E18


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, start: int = DEPLOY_TIME):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now

    def set(self, timestamp: int) -> int:
        self.now = timestamp
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tokens():
    """FARM (staked + reward), GOLD (reward) and REF (referral) tokens."""
    return {
        "FARM": InMemoryToken("FARM"),
        "GOLD": InMemoryToken("GOLD"),
        "REF": InMemoryToken("REF"),
    }


@pytest.fixture
def engine(clock, tokens):
    """Engine deployed at DEPLOY_TIME holding plenty of every reward token."""
    farming = FarmingEngine.create(OWNER, tokens=tokens, clock=clock)
    for token in tokens.values():
        token.mint(ENGINE_ACCOUNT, ENGINE_FUNDING)
    return farming


def configure_pool(engine: FarmingEngine, **overrides):
    """Configure the FARM pool with FARM + GOLD rewards."""
    params = dict(
        staked_token="FARM",
        min_stake_amount=1 * E18,
        max_stake_amount=500_000 * E18,
        total_stake_limit=1_000_000 * E18,
        reward_tokens=["FARM", "GOLD"],
        reward_rates=[FARM_RATE, GOLD_RATE],
    )
    params.update(overrides)
    return engine.config_pool(OWNER, **params)


def fund(tokens, address: str, amount: int, symbol: str = "FARM") -> None:
    tokens[symbol].mint(address, amount)


@pytest.fixture
def pool(engine):
    return configure_pool(engine)
