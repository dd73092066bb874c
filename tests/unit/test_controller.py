"""Tests for the rollout controller."""

import math

import pytest
from pydantic import ValidationError

from canary_sre.delivery.controller import (
    ControllerPolicy,
    RolloutConfig,
    RolloutController,
    RolloutStatus,
    transition,
)
from canary_sre.delivery.evaluator import CONFIDENCE, Decision, EvaluationResult
from canary_sre.delivery.scheduler import RolloutScheduler


def verdict(decision: Decision) -> EvaluationResult:
    return EvaluationResult(decision=decision, confidence=CONFIDENCE[decision], timestamp=1.0)


class TestRolloutConfig:
    def test_defaults(self) -> None:
        config = RolloutConfig()
        assert config.current_percentage == 5
        assert config.max_percentage == 50
        assert config.safety_threshold == 2
        assert config.status == RolloutStatus.ACTIVE

    def test_safety_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RolloutConfig(current_percentage=10, safety_threshold=60, max_percentage=50)

    def test_current_outside_bounds_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RolloutConfig(current_percentage=60, max_percentage=50)
        with pytest.raises(ValidationError):
            RolloutConfig(current_percentage=1, safety_threshold=2)

    def test_start_percentage_falls_back_to_current(self) -> None:
        assert RolloutConfig(current_percentage=7).start_percentage == 7
        assert RolloutConfig(current_percentage=7, initial_percentage=3).start_percentage == 3


class TestStep:
    def test_rollback_drops_to_safety(self) -> None:
        config = RolloutConfig(current_percentage=40, safety_threshold=2)
        new = RolloutController().step(config, verdict(Decision.ROLLBACK))
        assert new.current_percentage == 2
        assert new.status == RolloutStatus.ROLLED_BACK
        assert new.last_evaluation.decision == Decision.ROLLBACK

    def test_rollback_restarts_ramp_from_safety(self) -> None:
        config = RolloutConfig(current_percentage=40, initial_percentage=5, rollout_start=0.0)
        new = RolloutController().step(config, verdict(Decision.ROLLBACK))
        assert new.initial_percentage == 2
        assert new.rollout_start == 1.0

    def test_repeated_proceed_reaches_max_without_overshoot(self) -> None:
        controller = RolloutController()
        config = RolloutConfig(current_percentage=5, max_percentage=50)
        seen = [config.current_percentage]
        for _ in range(100):
            config = controller.step(config, verdict(Decision.PROCEED))
            assert config.current_percentage <= 50
            if config.current_percentage == 50:
                break
            assert config.current_percentage > seen[-1]
            seen.append(config.current_percentage)
        assert config.current_percentage == 50
        assert config.status == RolloutStatus.ACTIVE

    def test_proceed_step_sizes(self) -> None:
        config = RolloutConfig(current_percentage=5, max_percentage=50)
        # ceil(45 * 0.1) = 5
        assert RolloutController().step(config, verdict(Decision.PROCEED)).current_percentage == 10
        near = RolloutConfig(current_percentage=49, max_percentage=50, increment_step=1)
        assert RolloutController().step(near, verdict(Decision.PROCEED)).current_percentage == 50

    def test_proceed_at_max_stays(self) -> None:
        config = RolloutConfig(current_percentage=50, max_percentage=50)
        assert RolloutController().step(config, verdict(Decision.PROCEED)).current_percentage == 50

    def test_proceed_honours_scheduled_target(self) -> None:
        config = RolloutConfig(current_percentage=5, max_percentage=50)
        new = RolloutController().step(config, verdict(Decision.PROCEED), scheduled_target=30)
        assert new.current_percentage == 30
        capped = RolloutController().step(config, verdict(Decision.PROCEED), scheduled_target=80)
        assert capped.current_percentage == 50

    def test_proceed_resumes_paused(self) -> None:
        config = RolloutConfig(current_percentage=20, status=RolloutStatus.PAUSED)
        new = RolloutController().step(config, verdict(Decision.PROCEED))
        assert new.status == RolloutStatus.ACTIVE
        assert new.current_percentage > 20

    def test_slow_down_pauses_and_keeps_percentage(self) -> None:
        config = RolloutConfig(current_percentage=25)
        new = RolloutController().step(config, verdict(Decision.SLOW_DOWN))
        assert new.status == RolloutStatus.PAUSED
        assert new.current_percentage == 25

    def test_caution_reduces_above_floor(self) -> None:
        config = RolloutConfig(current_percentage=50, max_percentage=50)
        new = RolloutController().step(config, verdict(Decision.CAUTION))
        assert new.current_percentage == 40
        assert new.status == RolloutStatus.ACTIVE

    def test_caution_never_below_floor(self) -> None:
        config = RolloutConfig(current_percentage=35, max_percentage=50)
        assert RolloutController().step(config, verdict(Decision.CAUTION)).current_percentage == 30

    def test_caution_at_or_below_floor_is_noop(self) -> None:
        config = RolloutConfig(current_percentage=20)
        assert RolloutController().step(config, verdict(Decision.CAUTION)).current_percentage == 20

    def test_caution_ignored_while_paused(self) -> None:
        config = RolloutConfig(current_percentage=45, status=RolloutStatus.PAUSED)
        new = RolloutController().step(config, verdict(Decision.CAUTION))
        assert new.current_percentage == 45
        assert new.status == RolloutStatus.PAUSED

    def test_caution_respects_safety_threshold(self) -> None:
        config = RolloutConfig(current_percentage=50, max_percentage=50, safety_threshold=45)
        assert RolloutController().step(config, verdict(Decision.CAUTION)).current_percentage == 45

    @pytest.mark.parametrize("decision", [Decision.NEED_MORE_DATA, Decision.ERROR])
    def test_no_op_decisions_only_record(self, decision: Decision) -> None:
        config = RolloutConfig(current_percentage=15, status=RolloutStatus.PAUSED)
        new = RolloutController().step(config, verdict(decision))
        assert new.current_percentage == 15
        assert new.status == RolloutStatus.PAUSED
        assert new.last_evaluation.decision == decision

    @pytest.mark.parametrize("decision", list(Decision))
    def test_rolled_back_is_sticky(self, decision: Decision) -> None:
        config = RolloutConfig(current_percentage=2, status=RolloutStatus.ROLLED_BACK)
        new = RolloutController().step(config, verdict(decision))
        assert new.status == RolloutStatus.ROLLED_BACK
        assert new.current_percentage == 2
        assert new.last_evaluation.decision == decision

    def test_input_not_mutated(self) -> None:
        config = RolloutConfig(current_percentage=40)
        before = config.model_dump()
        RolloutController().step(config, verdict(Decision.ROLLBACK))
        assert config.model_dump() == before

    def test_custom_policy(self) -> None:
        policy = ControllerPolicy(caution_factor=0.5, caution_floor=10)
        config = RolloutConfig(current_percentage=40)
        new = RolloutController(policy).step(config, verdict(Decision.CAUTION))
        assert new.current_percentage == 20


class TestManualOverride:
    @pytest.mark.parametrize("status", list(RolloutStatus))
    def test_sets_percentage_regardless_of_status(self, status: RolloutStatus) -> None:
        config = RolloutConfig(current_percentage=2, status=status)
        new = RolloutController().manual_override(config, 20)
        assert new.current_percentage == 20
        assert new.status == status

    def test_widens_bounds(self) -> None:
        config = RolloutConfig(current_percentage=5, safety_threshold=2, max_percentage=50)
        high = RolloutController().manual_override(config, 80)
        assert high.current_percentage == 80
        assert high.max_percentage == 80
        low = RolloutController().manual_override(config, 0)
        assert low.current_percentage == 0
        assert low.safety_threshold == 0

    @pytest.mark.parametrize("bad", [-1, 101, math.nan, "20", True, None])
    def test_invalid_percentage_rejected(self, bad) -> None:
        config = RolloutConfig()
        with pytest.raises(ValueError):
            RolloutController().manual_override(config, bad)


class TestReset:
    def test_reset_rolled_back(self) -> None:
        config = RolloutConfig(current_percentage=2, status=RolloutStatus.ROLLED_BACK)
        new = RolloutController().reset(config)
        assert new.status == RolloutStatus.ACTIVE
        assert new.current_percentage == 2

    def test_reset_reanchors_ramp(self) -> None:
        config = RolloutConfig(
            current_percentage=2,
            initial_percentage=5,
            rollout_start=0.0,
            status=RolloutStatus.ROLLED_BACK,
        )
        new = RolloutController().reset(config, now=500.0)
        assert new.initial_percentage == 2
        assert new.rollout_start == 500.0

    def test_scheduled_target_after_reset_does_not_jump(self) -> None:
        controller = RolloutController()
        config = RolloutConfig(current_percentage=2, status=RolloutStatus.ROLLED_BACK)
        config = controller.reset(config, now=1_000.0)
        target = RolloutScheduler().current_target(config, 1_000.0)
        new = controller.step(config, verdict(Decision.PROCEED), scheduled_target=target)
        # ceil((50 - 2) * 0.1) = 5
        assert new.current_percentage == 7

    def test_proceed_after_reset_advances(self) -> None:
        controller = RolloutController()
        config = RolloutConfig(current_percentage=2, status=RolloutStatus.ROLLED_BACK)
        config = controller.step(controller.reset(config), verdict(Decision.PROCEED))
        assert config.current_percentage > 2


class TestTransition:
    def test_reports_change(self) -> None:
        before = RolloutConfig(current_percentage=40)
        after = RolloutController().step(before, verdict(Decision.ROLLBACK))
        assert transition(before, after) == (RolloutStatus.ACTIVE, RolloutStatus.ROLLED_BACK)

    def test_none_when_unchanged(self) -> None:
        config = RolloutConfig()
        assert transition(config, config) is None
