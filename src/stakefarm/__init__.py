"""
stakefarm - Multi-pool, multi-reward token staking ledger

Built around a single FarmingEngine with:
- Per-token pools with stake bounds and capacity limits
- Pro-rata linear accrual of several reward tokens per pool
- Day-quantized early-stake multiplier
- Linearly decaying early-exit penalty and a retention fee
- Multi-level referral payout cascade
- REST API for read-only views
- Prometheus metrics for monitoring

Usage:
    from stakefarm import FarmingEngine, InMemoryToken

    farm = InMemoryToken("FARM")
    engine = FarmingEngine.create(owner="0xowner", tokens={"FARM": farm})
    engine.config_pool("0xowner", "FARM", 10 ** 18, 10 ** 24, 10 ** 25,
                       reward_tokens=["FARM"], reward_rates=[277 * 10 ** 12])

    engine.stake("0xalice", "FARM", 500 * 10 ** 18)
    engine.claim_reward("0xalice", 0)

REST API Usage:
    from stakefarm.api import FarmingAPI

    api = FarmingAPI(engine, host="0.0.0.0", port=8545)
    trio.run(api.start)

Metrics Usage:
    from stakefarm.metrics import MetricsCollector

    metrics = MetricsCollector(engine)
    prometheus_output = metrics.collect()
"""

from .config import EngineConfig, VERSION
from .access import AccessControl
from .errors import StakingError
from .tokens import TokenLedger, InMemoryToken, TokenRegistry
from .ledger import World, Pool, Stake, User
from .farming import FarmingEngine, SettlementResult, Transfer, save_engine, load_engine
from .api import FarmingAPI
from .metrics import MetricsCollector

__version__ = VERSION

__all__ = [
    "EngineConfig",
    "AccessControl",
    "StakingError",
    "TokenLedger",
    "InMemoryToken",
    "TokenRegistry",
    "World",
    "Pool",
    "Stake",
    "User",
    "FarmingEngine",
    "SettlementResult",
    "Transfer",
    "save_engine",
    "load_engine",
    "FarmingAPI",
    "MetricsCollector",
]
