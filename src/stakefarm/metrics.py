"""
stakefarm/metrics.py

Prometheus metrics collection for stakefarm.

Provides gauges over the ledger state (pools, stakes, users, penalties)
and counters for committed operations and paid rewards.
"""

import time
import logging
from typing import TYPE_CHECKING, Any, Dict

from .config import PERCENT_SCALE, VERSION

if TYPE_CHECKING:
    from .farming import FarmingEngine, SettlementResult
    from .ledger.stakes import Stake

logger = logging.getLogger("stakefarm.metrics")


class MetricsCollector:
    """
    Prometheus metrics collector for a FarmingEngine.

    Subscribes to the engine's callbacks to count operations and paid
    amounts; ledger gauges are read on every collection.

    Usage:
        from stakefarm.metrics import MetricsCollector

        metrics = MetricsCollector(engine)
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "stakefarm_pools": {
            "type": "gauge",
            "help": "Number of configured pools",
        },
        "stakefarm_pool_total_staked": {
            "type": "gauge",
            "help": "Units currently staked per pool",
        },
        "stakefarm_pool_penalty_percent": {
            "type": "gauge",
            "help": "Current early-exit penalty per pool, in percent",
        },
        "stakefarm_active_stakes": {
            "type": "gauge",
            "help": "Number of stakes not yet unstaked",
        },
        "stakefarm_users": {
            "type": "gauge",
            "help": "Number of known addresses",
        },
        "stakefarm_operations_total": {
            "type": "counter",
            "help": "Committed operations by kind",
        },
        "stakefarm_rewards_paid_total": {
            "type": "counter",
            "help": "Reward units paid to stakers per token",
        },
        "stakefarm_referral_paid_total": {
            "type": "counter",
            "help": "Referral units paid per token",
        },
        "stakefarm_paused": {
            "type": "gauge",
            "help": "Whether the engine is paused (1=yes, 0=no)",
        },
        "stakefarm_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
        "stakefarm_info": {
            "type": "gauge",
            "help": "Engine information (owner, version as labels)",
        },
    }

    def __init__(self, engine: "FarmingEngine"):
        """
        Initialize metrics collector.

        Args:
            engine: FarmingEngine to collect metrics from
        """
        self.engine = engine
        self._start_time = time.time()

        # Counters (persist across collections)
        self._operations: Dict[str, int] = {}
        self._rewards_paid: Dict[str, int] = {}
        self._referral_paid: Dict[str, int] = {}

        engine.on_stake(self._record_stake)
        engine.on_claim(self._record_claim)
        engine.on_unstake(self._record_unstake)

    def record_operation(self, operation: str) -> None:
        """Count one committed operation."""
        self._operations[operation] = self._operations.get(operation, 0) + 1

    def record_settlement(self, result: "SettlementResult") -> None:
        """Accumulate the amounts paid by a claim or unstake."""
        for token, amount in result.paid.items():
            self._rewards_paid[token] = self._rewards_paid.get(token, 0) + amount
        for payout in result.referral_payouts:
            self._referral_paid[payout.token] = self._referral_paid.get(payout.token, 0) + payout.amount

    def _record_stake(self, stake: "Stake") -> None:
        self.record_operation("stake")

    def _record_claim(self, result: "SettlementResult") -> None:
        self.record_operation("claim")
        self.record_settlement(result)

    def _record_unstake(self, result: "SettlementResult") -> None:
        self.record_operation("unstake")
        self.record_settlement(result)

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_sample(name: str, value: float, labels: Dict[str, str] = None):
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        def add_metric(name: str, value: float):
            add_header(name)
            add_sample(name, value)

        def add_labeled(name: str, label: str, values: Dict[str, float]):
            add_header(name)
            for key, value in values.items():
                add_sample(name, value, {label: key})

        try:
            world = self.engine.world
            now = self.engine.now()

            add_metric("stakefarm_pools", len(world.pools))
            add_labeled(
                "stakefarm_pool_total_staked",
                "pool",
                {token: pool.total_staked for token, pool in world.pools.items()},
            )
            add_labeled(
                "stakefarm_pool_penalty_percent",
                "pool",
                {
                    token: self.engine.get_pool_penalty_info(token, at=now).penalty_percent / PERCENT_SCALE
                    for token in world.pools
                },
            )
            add_metric("stakefarm_active_stakes", len(world.active_stakes()))
            add_metric("stakefarm_users", len(world.users))
            add_labeled("stakefarm_operations_total", "operation", self._operations)
            add_labeled("stakefarm_rewards_paid_total", "token", self._rewards_paid)
            add_labeled("stakefarm_referral_paid_total", "token", self._referral_paid)
            add_metric("stakefarm_paused", 1 if self.engine.paused else 0)
            add_metric("stakefarm_uptime_seconds", time.time() - self._start_time)

            owner = self.engine.owner or "unknown"
            add_header("stakefarm_info")
            add_sample("stakefarm_info", 1, {"owner": f"{owner[:10]}...", "version": VERSION})

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        try:
            world = self.engine.world
            return {
                "pools": len(world.pools),
                "total_staked": {token: pool.total_staked for token, pool in world.pools.items()},
                "active_stakes": len(world.active_stakes()),
                "users": len(world.users),
                "operations": dict(self._operations),
                "rewards_paid": dict(self._rewards_paid),
                "referral_paid": dict(self._referral_paid),
                "paused": self.engine.paused,
                "block_number": world.block_number,
                "uptime_seconds": time.time() - self._start_time,
            }
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            return {"error": str(e)}

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._operations = {}
        self._rewards_paid = {}
        self._referral_paid = {}
