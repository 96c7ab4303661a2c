"""
stakefarm/tests/test_api_metrics.py

Unit tests for REST API handlers and Prometheus metrics.
"""

import json

import pytest

from stakefarm.api import FarmingAPI, Request
from stakefarm.errors import TokenTransferError
from stakefarm.metrics import MetricsCollector

from conftest import ALICE, BOB, DAY, DEPLOY_TIME, E18, FARM_RATE, GOLD_RATE, OWNER, fund


def make_request(path: str, method: str = "GET", query: dict = None) -> Request:
    return Request(method=method, path=path, query=query or {}, headers={}, body=b"")


@pytest.fixture
def staked_engine(engine, tokens, pool):
    """Engine with one ALICE stake referred by BOB."""
    fund(tokens, ALICE, 1000 * E18)
    engine.stake(ALICE, "FARM", 1000 * E18, referrer=BOB)
    return engine


class TestMetricsCollector:
    """Test MetricsCollector class."""

    def test_init(self, engine):
        metrics = MetricsCollector(engine)

        assert metrics.engine is engine
        assert metrics._operations == {}
        assert metrics._rewards_paid == {}

    def test_counts_engine_operations(self, engine, tokens, clock, pool):
        metrics = MetricsCollector(engine)
        fund(tokens, ALICE, 10 * E18)

        engine.stake(ALICE, "FARM", 10 * E18, referrer=BOB)
        clock.advance(DAY)
        claim = engine.claim_reward(ALICE, 0)
        engine.unstake(ALICE, 0)

        assert metrics._operations == {"stake": 1, "claim": 1, "unstake": 1}
        assert metrics._rewards_paid["FARM"] == claim.paid["FARM"]
        assert metrics._referral_paid["FARM"] == DAY * FARM_RATE * 3 // 100

    def test_emergency_unstake_counted_as_unstake(self, staked_engine):
        metrics = MetricsCollector(staked_engine)

        staked_engine.emergency_unstake(OWNER, ALICE, 0, [E18, 0])

        assert metrics._operations == {"unstake": 1}
        assert metrics._rewards_paid == {"FARM": E18, "GOLD": 0}

    def test_rejected_operation_not_counted(self, engine, pool):
        metrics = MetricsCollector(engine)

        with pytest.raises(TokenTransferError):
            engine.stake(ALICE, "FARM", 10 * E18)

        assert metrics._operations == {}

    def test_collect_format(self, staked_engine):
        metrics = MetricsCollector(staked_engine)

        output = metrics.collect()

        assert "# HELP stakefarm_pools Number of configured pools" in output
        assert "# TYPE stakefarm_operations_total counter" in output
        assert "stakefarm_pools 1" in output
        assert f'stakefarm_pool_total_staked{{pool="FARM"}} {1000 * E18}' in output
        assert 'stakefarm_pool_penalty_percent{pool="FARM"} 0.0' in output
        assert "stakefarm_active_stakes 1" in output
        assert "stakefarm_users 2" in output
        assert "stakefarm_paused 0" in output
        assert 'version="0.1.0"' in output

    def test_collect_paused(self, staked_engine):
        metrics = MetricsCollector(staked_engine)
        staked_engine.pause(OWNER)

        assert "stakefarm_paused 1" in metrics.collect()

    def test_get_stats(self, staked_engine):
        metrics = MetricsCollector(staked_engine)

        stats = metrics.get_stats()

        assert stats["pools"] == 1
        assert stats["total_staked"] == {"FARM": 1000 * E18}
        assert stats["active_stakes"] == 1
        assert stats["paused"] is False

    def test_reset_counters(self, engine, tokens, pool):
        metrics = MetricsCollector(engine)
        fund(tokens, ALICE, 10 * E18)
        engine.stake(ALICE, "FARM", 10 * E18)

        metrics.reset_counters()

        assert metrics._operations == {}


class TestFarmingAPI:
    """Test FarmingAPI route handling."""

    def test_api_init(self, engine):
        api = FarmingAPI(engine, host="127.0.0.1", port=8080)

        assert api.engine is engine
        assert api.port == 8080
        assert api.metrics is not None

    def test_api_init_without_metrics(self, engine):
        api = FarmingAPI(engine, enable_metrics=False)

        assert api.metrics is None

    @pytest.mark.trio
    async def test_health(self, engine):
        api = FarmingAPI(engine)

        response = await api._route_request(make_request("/health"))

        assert response.status == 200
        data = json.loads(response.body)
        assert data["status"] == "healthy"
        assert data["paused"] is False

    @pytest.mark.trio
    async def test_health_paused(self, engine):
        engine.pause(OWNER)
        api = FarmingAPI(engine)

        response = await api._route_request(make_request("/health"))

        assert response.status == 503
        assert json.loads(response.body)["status"] == "paused"

    @pytest.mark.trio
    async def test_status(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request("/status"))

        data = json.loads(response.body)
        assert data["owner"] == OWNER
        assert data["deployment_time"] == DEPLOY_TIME
        assert data["pool_end_time"] == DEPLOY_TIME + 90 * DAY
        assert data["staking_open"] is True
        assert data["pools"] == ["FARM"]
        assert data["config"]["referral_percents"] == [3, 2, 1]

    @pytest.mark.trio
    async def test_pools(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request("/pools"))

        data = json.loads(response.body)
        assert data["count"] == 1
        assert data["pools"][0]["staked_token"] == "FARM"
        assert data["pools"][0]["total_staked"] == 1000 * E18

    @pytest.mark.trio
    async def test_single_pool(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request("/pools/FARM"))

        assert response.status == 200
        assert json.loads(response.body)["reward_tokens"] == ["FARM", "GOLD"]

    @pytest.mark.trio
    async def test_unknown_pool(self, engine):
        api = FarmingAPI(engine)

        response = await api._route_request(make_request("/pools/NOPE"))

        assert response.status == 404
        assert json.loads(response.body)["error"] == "Pool does not exist"

    @pytest.mark.trio
    async def test_pool_penalty(self, engine):
        engine.config_pool(
            OWNER, "FARM", E18, 100 * E18, 1000 * E18, ["FARM"], [FARM_RATE],
            max_penalty_percent=50 * 10 ** 12, penalty_duration=30 * DAY, penalty_receiver=OWNER,
        )
        api = FarmingAPI(engine)

        response = await api._route_request(
            make_request("/pools/FARM/penalty", query={"at": [str(DEPLOY_TIME + 15 * DAY)]})
        )

        data = json.loads(response.body)
        assert data["pool"] == "FARM"
        assert data["penalty_percent"] == 25 * 10 ** 12
        assert data["time_left"] == 15 * DAY

    @pytest.mark.trio
    async def test_user(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request(f"/users/{ALICE}"))

        data = json.loads(response.body)
        assert data["address"] == ALICE
        assert data["referrer"] == BOB
        assert data["is_active"] is False

    @pytest.mark.trio
    async def test_stakes_paged(self, engine, tokens, pool):
        fund(tokens, ALICE, 30 * E18)
        for _ in range(3):
            engine.stake(ALICE, "FARM", 10 * E18)
        api = FarmingAPI(engine)

        response = await api._route_request(
            make_request(f"/users/{ALICE}/stakes", query={"offset": ["1"], "limit": ["1"]})
        )

        data = json.loads(response.body)
        assert data["ids"] == [1]
        assert data["total_staked_amount"] == 30 * E18

    @pytest.mark.trio
    async def test_stake_rewards(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(
            make_request(f"/users/{ALICE}/stakes/0/rewards", query={"at": [str(DEPLOY_TIME + DAY)]})
        )

        data = json.loads(response.body)
        assert data["pool"] == "FARM"
        assert data["apply_penalty"] is False
        assert data["rewards"] == {"FARM": DAY * FARM_RATE, "GOLD": DAY * GOLD_RATE}

    @pytest.mark.trio
    async def test_stake_rewards_unknown_stake(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request(f"/users/{ALICE}/stakes/7/rewards"))

        assert response.status == 404
        assert json.loads(response.body)["error"] == "Invalid stake index"

    @pytest.mark.trio
    async def test_stake_rewards_closed_stake(self, staked_engine):
        staked_engine.unstake(ALICE, 0)
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request(f"/users/{ALICE}/stakes/0/rewards"))

        assert response.status == 400
        assert json.loads(response.body)["error"] == "Stake was unstaked already"

    @pytest.mark.trio
    async def test_invalid_query_parameter(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(
            make_request(f"/users/{ALICE}/stakes/0/rewards", query={"at": ["soon"]})
        )

        assert response.status == 400
        assert json.loads(response.body)["error"].startswith("Invalid parameter")

    @pytest.mark.trio
    async def test_referrals(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request(f"/users/{BOB}/referrals"))

        data = json.loads(response.body)
        assert data["count"] == 1
        assert data["referrals"] == [ALICE]

    @pytest.mark.trio
    async def test_metrics_endpoint(self, staked_engine):
        api = FarmingAPI(staked_engine)

        response = await api._route_request(make_request("/metrics"))

        assert response.status == 200
        assert response.headers["Content-Type"].startswith("text/plain")
        assert b"stakefarm_pools 1" in response.body

    @pytest.mark.trio
    async def test_metrics_disabled(self, engine):
        api = FarmingAPI(engine, enable_metrics=False)

        response = await api._route_request(make_request("/metrics"))

        assert response.status == 404

    @pytest.mark.trio
    async def test_not_found(self, engine):
        api = FarmingAPI(engine)

        response = await api._route_request(make_request("/nope"))

        assert response.status == 404

    @pytest.mark.trio
    async def test_method_not_allowed(self, engine):
        api = FarmingAPI(engine)

        response = await api._route_request(make_request("/pools", method="POST"))

        assert response.status == 405

    def test_match_path(self, engine):
        api = FarmingAPI(engine)

        match, params = api._match_path("/users/{address}/stakes", "/users/0xabc/stakes")
        assert match is True
        assert params == {"address": "0xabc"}

        match, params = api._match_path("/users/{address}", "/pools/FARM/penalty")
        assert match is False
