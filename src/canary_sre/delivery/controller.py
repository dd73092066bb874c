"""Rollout controller: applies evaluation decisions to the rollout config.

Every operation is a pure function of its inputs and returns a new
:class:`RolloutConfig`, so a read-modify-write retry can replay it safely.
"""

from __future__ import annotations

import logging
import math
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from canary_sre.delivery.evaluator import Decision, EvaluationResult

logger = logging.getLogger(__name__)


class RolloutStatus(str, Enum):
    """Lifecycle state of the canary rollout."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ROLLED_BACK = "ROLLED_BACK"


class RolloutConfig(BaseModel):
    """Rollout distribution state.

    Invariant: ``safety_threshold <= current_percentage <= max_percentage``.
    """

    model_config = ConfigDict(frozen=True)

    current_percentage: float = Field(default=5.0, ge=0, le=100)
    max_percentage: float = Field(default=50.0, ge=0, le=100)
    safety_threshold: float = Field(default=2.0, ge=0, le=100)
    increment_step: float = Field(default=1.0, gt=0, description="Minimum PROCEED step")
    rollout_period_days: float = Field(default=7.0, ge=0)
    status: RolloutStatus = RolloutStatus.ACTIVE
    last_evaluation: EvaluationResult | None = None
    initial_percentage: float | None = Field(default=None, ge=0, le=100)
    gradual_rollout: bool = True
    rollout_start: float | None = Field(default=None, description="Epoch seconds")
    canary_version: str = "1.0.0"

    @model_validator(mode="after")
    def _check_bounds(self) -> RolloutConfig:
        if self.safety_threshold > self.max_percentage:
            raise ValueError(
                f"safety_threshold ({self.safety_threshold}) exceeds "
                f"max_percentage ({self.max_percentage})"
            )
        if not self.safety_threshold <= self.current_percentage <= self.max_percentage:
            raise ValueError(
                f"current_percentage ({self.current_percentage}) must lie within "
                f"[{self.safety_threshold}, {self.max_percentage}]"
            )
        if self.initial_percentage is not None and self.initial_percentage > self.max_percentage:
            raise ValueError("initial_percentage must not exceed max_percentage")
        return self

    @property
    def start_percentage(self) -> float:
        """Percentage the gradual ramp starts from."""
        if self.initial_percentage is None:
            return self.current_percentage
        return self.initial_percentage


class ControllerPolicy(BaseModel):
    """Tunable factors for decision handling."""

    caution_factor: float = Field(default=0.8, gt=0, le=1)
    caution_floor: float = Field(default=30.0, ge=0, le=100)
    proceed_fraction: float = Field(default=0.1, gt=0, le=1)


class RolloutController:
    """Maps evaluation decisions onto percentage and status changes.

    ``ROLLED_BACK`` is sticky: automatic decisions are only recorded until an
    operator calls :meth:`reset`.  SLOW_DOWN pauses the rollout and keeps the
    current percentage.
    """

    def __init__(self, policy: ControllerPolicy | None = None) -> None:
        self.policy = policy or ControllerPolicy()

    def step(
        self,
        config: RolloutConfig,
        evaluation: EvaluationResult,
        scheduled_target: float | None = None,
    ) -> RolloutConfig:
        """Apply one evaluation to ``config`` and return the new config.

        Args:
            config: Current rollout config.  Never modified.
            evaluation: Result from :class:`HealthEvaluator`.
            scheduled_target: Optional gradual-rollout target; a PROCEED
                never lands below it.
        """
        update: dict[str, object] = {"last_evaluation": evaluation}
        decision = evaluation.decision

        if config.status == RolloutStatus.ROLLED_BACK:
            logger.info("Rollout is rolled back; recording %s without changes", decision.value)
            return config.model_copy(update=update)

        if decision == Decision.ROLLBACK:
            # The gradual ramp restarts from the safety threshold
            update["current_percentage"] = config.safety_threshold
            update["status"] = RolloutStatus.ROLLED_BACK
            update["initial_percentage"] = config.safety_threshold
            update["rollout_start"] = evaluation.timestamp

        elif decision == Decision.SLOW_DOWN:
            update["status"] = RolloutStatus.PAUSED

        elif decision == Decision.CAUTION:
            if config.status == RolloutStatus.ACTIVE:
                update["current_percentage"] = self._caution_percentage(config)

        elif decision == Decision.PROCEED:
            update["status"] = RolloutStatus.ACTIVE
            update["current_percentage"] = self._proceed_percentage(config, scheduled_target)

        new = config.model_copy(update=update)
        if (new.status, new.current_percentage) != (config.status, config.current_percentage):
            logger.info(
                "Rollout %s: %s%% (%s) -> %s%% (%s)",
                decision.value,
                config.current_percentage,
                config.status.value,
                new.current_percentage,
                new.status.value,
            )
        return new

    def manual_override(self, config: RolloutConfig, percentage: float) -> RolloutConfig:
        """Set the percentage directly, bypassing evaluation and status.

        The safety threshold and maximum are widened when needed so the
        override always lands.

        Raises:
            ValueError: If ``percentage`` is not a number in ``[0, 100]``.
        """
        if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
            raise ValueError(f"Percentage must be a number, got {percentage!r}")
        if math.isnan(percentage) or not 0 <= percentage <= 100:
            raise ValueError("Percentage must be a number between 0 and 100")

        logger.info("Manual override: %s%% -> %s%%", config.current_percentage, percentage)
        return config.model_copy(
            update={
                "current_percentage": float(percentage),
                "safety_threshold": min(config.safety_threshold, percentage),
                "max_percentage": max(config.max_percentage, percentage),
            }
        )

    def reset(self, config: RolloutConfig, now: float | None = None) -> RolloutConfig:
        """Operator reset back to ACTIVE.

        The gradual ramp is re-anchored at ``now`` from the current
        percentage, so the next PROCEED takes a normal step instead of
        jumping to the old schedule's target.
        """
        current = min(max(config.current_percentage, config.safety_threshold), config.max_percentage)
        logger.info("Rollout reset from %s to ACTIVE", config.status.value)
        return config.model_copy(
            update={
                "status": RolloutStatus.ACTIVE,
                "current_percentage": current,
                "initial_percentage": current,
                "rollout_start": time.time() if now is None else now,
            }
        )

    def _caution_percentage(self, config: RolloutConfig) -> float:
        p = self.policy
        current = config.current_percentage
        if current <= p.caution_floor:
            return current
        reduced = math.floor(current * p.caution_factor)
        return max(p.caution_floor, reduced, config.safety_threshold)

    def _proceed_percentage(
        self, config: RolloutConfig, scheduled_target: float | None
    ) -> float:
        current = config.current_percentage
        ceiling = config.max_percentage
        if current < ceiling:
            remaining = ceiling - current
            increase = max(config.increment_step, math.ceil(remaining * self.policy.proceed_fraction))
            current = min(ceiling, current + increase)
        if scheduled_target is not None:
            current = max(current, min(scheduled_target, ceiling))
        return current


def transition(
    before: RolloutConfig, after: RolloutConfig
) -> tuple[RolloutStatus, RolloutStatus] | None:
    """Return ``(old, new)`` when the status changed, else None."""
    if before.status == after.status:
        return None
    return before.status, after.status
