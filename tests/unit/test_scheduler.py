"""Tests for the gradual rollout schedule."""

import pytest

from canary_sre.delivery.controller import RolloutConfig
from canary_sre.delivery.scheduler import SECONDS_PER_DAY, RolloutScheduler, days_elapsed

START = 1_700_000_000.0


def _config(**overrides) -> RolloutConfig:
    values = {
        "current_percentage": 5,
        "initial_percentage": 5,
        "max_percentage": 50,
        "safety_threshold": 2,
        "rollout_period_days": 7,
        "rollout_start": START,
    }
    values.update(overrides)
    return RolloutConfig(**values)


class TestDaysElapsed:
    def test_whole_days(self) -> None:
        assert days_elapsed(START + 2.5 * SECONDS_PER_DAY, START) == 2

    def test_before_start_is_zero(self) -> None:
        assert days_elapsed(START - SECONDS_PER_DAY, START) == 0


class TestCurrentTarget:
    def test_starts_at_initial(self) -> None:
        assert RolloutScheduler().current_target(_config(), START) == 5

    def test_linear_ramp(self) -> None:
        config = _config(rollout_period_days=9)
        target = RolloutScheduler().current_target(config, START + 3 * SECONDS_PER_DAY)
        assert target == pytest.approx(5 + 45 * 3 / 9)

    def test_reaches_max_after_period(self) -> None:
        scheduler = RolloutScheduler()
        assert scheduler.current_target(_config(), START + 7 * SECONDS_PER_DAY) == 50
        assert scheduler.current_target(_config(), START + 70 * SECONDS_PER_DAY) == 50

    def test_partial_day_does_not_advance(self) -> None:
        target = RolloutScheduler().current_target(_config(), START + SECONDS_PER_DAY - 1)
        assert target == 5

    def test_zero_period_reaches_max_immediately(self) -> None:
        config = _config(rollout_period_days=0)
        assert RolloutScheduler().current_target(config, START) == 50

    def test_disabled_returns_current(self) -> None:
        config = _config(gradual_rollout=False, current_percentage=12)
        target = RolloutScheduler().current_target(config, START + 30 * SECONDS_PER_DAY)
        assert target == 12

    def test_explicit_start_overrides_config(self) -> None:
        config = _config(rollout_start=None)
        scheduler = RolloutScheduler()
        assert scheduler.current_target(config, START) == 5
        later = scheduler.current_target(config, START, rollout_start=START - 7 * SECONDS_PER_DAY)
        assert later == 50

    def test_monotonic_and_bounded(self) -> None:
        config = _config(rollout_period_days=5)
        scheduler = RolloutScheduler()
        previous = -1.0
        for hour in range(-48, 24 * 10):
            target = scheduler.current_target(config, START + hour * 3600)
            assert target >= previous
            assert target <= config.max_percentage
            previous = target

    def test_does_not_mutate_config(self) -> None:
        config = _config()
        before = config.model_dump()
        RolloutScheduler().current_target(config, START + 3 * SECONDS_PER_DAY)
        assert config.model_dump() == before
