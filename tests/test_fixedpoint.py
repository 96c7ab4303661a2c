"""
stakefarm/tests/test_fixedpoint.py

Unit tests for fixed-point helpers, configuration and the error taxonomy.
"""

import pytest

from stakefarm.config import (
    DEFAULT_REFERRAL_PERCENTS,
    PERCENT_SCALE,
    SECONDS_PER_DAY,
    UINT256_MAX,
    ZERO_ADDRESS,
    EngineConfig,
    is_zero_address,
)
from stakefarm.errors import (
    ArithmeticOverflowError,
    InvalidStakeBounds,
    InvalidTotalStakeLimit,
    StakingError,
)
from stakefarm import fixedpoint


class TestFixedPoint:
    """Test overflow-checked integer math."""

    def test_mul_div_floors(self):
        assert fixedpoint.mul_div(10, 3, 4) == 7
        assert fixedpoint.mul_div(1, 1, 3) == 0

    def test_mul_div_wide_intermediate(self):
        """The product may exceed uint256 as long as the result fits."""
        assert fixedpoint.mul_div(UINT256_MAX, 4, 8) == UINT256_MAX // 2

    def test_mul_div_result_overflow(self):
        with pytest.raises(ArithmeticOverflowError):
            fixedpoint.mul_div(UINT256_MAX, 2, 1)

    def test_mul_div_by_zero(self):
        with pytest.raises(ZeroDivisionError):
            fixedpoint.mul_div(1, 1, 0)

    def test_add_overflow(self):
        with pytest.raises(ArithmeticOverflowError):
            fixedpoint.add(UINT256_MAX, 1)

    def test_sub_underflow(self):
        with pytest.raises(ArithmeticOverflowError):
            fixedpoint.sub(0, 1)

    def test_mul_overflow(self):
        with pytest.raises(ArithmeticOverflowError) as exc:
            fixedpoint.mul(2 ** 200, 2 ** 60)
        assert str(exc.value) == "Arithmetic overflow"

    def test_percent_helpers(self):
        assert fixedpoint.percent_of(1000, 90) == 900
        assert fixedpoint.scaled_percent_of(1000, 25 * PERCENT_SCALE) == 250


class TestEngineConfig:
    """Test EngineConfig defaults and environment overrides."""

    def test_defaults(self):
        config = EngineConfig()

        assert config.staking_duration == 90 * SECONDS_PER_DAY
        assert config.staking_days == 90
        assert config.stake_multiplier == 1
        assert config.referral_percents == DEFAULT_REFERRAL_PERCENTS
        assert config.fee_percent(has_referrer=False) == 10
        assert config.fee_percent(has_referrer=True) == 6

    def test_defaults_not_shared(self):
        a = EngineConfig()
        a.referral_percents.append(9)
        assert EngineConfig().referral_percents == [3, 2, 1]

    def test_round_trip_dict(self):
        config = EngineConfig(stake_multiplier=3, referral_percents=[5, 4])
        assert EngineConfig.from_dict(config.to_dict()) == config

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STAKEFARM_STAKING_DURATION_DAYS", "30")
        monkeypatch.setenv("STAKEFARM_STAKE_MULTIPLIER", "2")
        monkeypatch.setenv("STAKEFARM_REFERRAL_PERCENTS", "5,4,3,2")
        monkeypatch.setenv("STAKEFARM_NO_REFERRER_FEE", "12")
        monkeypatch.setenv("STAKEFARM_REFERRER_FEE", "14")

        config = EngineConfig.from_env()

        assert config.staking_duration == 30 * SECONDS_PER_DAY
        assert config.stake_multiplier == 2
        assert config.referral_percents == [5, 4, 3, 2]
        assert config.no_referrer_fee_percent == 12
        assert config.referrer_fee_percent == 14

    def test_from_env_ignores_invalid(self, monkeypatch):
        monkeypatch.setenv("STAKEFARM_STAKING_DURATION_DAYS", "zero")
        monkeypatch.setenv("STAKEFARM_STAKE_MULTIPLIER", "0")
        monkeypatch.setenv("STAKEFARM_REFERRAL_PERCENTS", "60,50")
        monkeypatch.setenv("STAKEFARM_NO_REFERRER_FEE", "101")

        config = EngineConfig.from_env()

        assert config == EngineConfig()

    def test_is_zero_address(self):
        assert is_zero_address(None)
        assert is_zero_address("")
        assert is_zero_address(ZERO_ADDRESS)
        assert not is_zero_address("0xalice")


class TestErrors:
    """Test error messages and hierarchy."""

    def test_default_message(self):
        err = InvalidStakeBounds()
        assert err.message == "Invalid min or max stake amounts values"
        assert str(err) == err.message

    def test_custom_message(self):
        err = StakingError("something specific")
        assert str(err) == "something specific"

    def test_total_limit_is_bounds_error(self):
        err = InvalidTotalStakeLimit()
        assert isinstance(err, InvalidStakeBounds)
        assert err.message == "Invalid total stake limit value"
        assert err.message != InvalidStakeBounds.message
