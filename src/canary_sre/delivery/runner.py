"""One rollout automation run: evaluate, step, persist.

All collaborators travel in an explicit :class:`RolloutContext`; there is no
module-level state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from canary_sre.delivery.assignment import Variant
from canary_sre.delivery.controller import RolloutController, RolloutStatus
from canary_sre.delivery.evaluator import HealthEvaluator, exceeds_threshold
from canary_sre.delivery.scheduler import RolloutScheduler
from canary_sre.delivery.store import RolloutConfigStore, RolloutHistory

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from canary_sre.delivery.controller import RolloutConfig
    from canary_sre.delivery.evaluator import EvaluationResult, MetricsSnapshot
    from canary_sre.integrations.otel.events import EventLogger
    from canary_sre.integrations.otel.metrics import MetricsExporter
    from canary_sre.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class RolloutContext:
    """Everything a run needs, passed explicitly."""

    settings: Settings
    store: RolloutConfigStore
    evaluator: HealthEvaluator
    controller: RolloutController
    scheduler: RolloutScheduler = field(default_factory=RolloutScheduler)
    history: RolloutHistory | None = None
    metrics: MetricsExporter | None = None
    events: EventLogger | None = None
    clock: Callable[[], float] = time.time

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        config_path: str | Path | None = None,
        history_path: str | Path | None = None,
        clock: Callable[[], float] = time.time,
        metrics: MetricsExporter | None = None,
        events: EventLogger | None = None,
    ) -> RolloutContext:
        store = RolloutConfigStore(
            config_path or settings.config_path,
            defaults=settings.default_config().model_copy(update={"rollout_start": clock()}),
            max_retries=settings.max_retries,
            clock=clock,
        )
        history_path = history_path or settings.history_path
        return cls(
            settings=settings,
            store=store,
            evaluator=HealthEvaluator(settings.thresholds, clock=clock),
            controller=RolloutController(settings.policy),
            history=RolloutHistory(history_path) if history_path else None,
            metrics=metrics,
            events=events,
            clock=clock,
        )


@dataclass
class RunOutcome:
    """Result of one run."""

    before: RolloutConfig
    after: RolloutConfig
    reason: str
    evaluation: EvaluationResult | None = None
    exceeds_threshold: bool = False
    persisted: bool = False

    def summary(self) -> dict[str, Any]:
        return {
            "percentage": self.after.current_percentage,
            "previous_percentage": self.before.current_percentage,
            "status": self.after.status.value,
            "reason": self.reason,
            "decision": self.evaluation.decision.value if self.evaluation else "MANUAL",
            "exceeds_threshold": self.exceeds_threshold,
            "persisted": self.persisted,
        }


def change_reason(before: RolloutConfig, after: RolloutConfig) -> str:
    """Short label for what a step did to the rollout."""
    if after.status == RolloutStatus.ROLLED_BACK and before.status != RolloutStatus.ROLLED_BACK:
        return "rollback"
    if after.current_percentage > before.current_percentage:
        return "increase"
    if after.current_percentage < before.current_percentage:
        return "decrease"
    if after.status == RolloutStatus.PAUSED and before.status != RolloutStatus.PAUSED:
        return "pause"
    return "maintain"


def _apply(
    ctx: RolloutContext,
    mutate: Callable[[RolloutConfig], RolloutConfig],
    source: str,
    persist: bool,
) -> tuple[RolloutConfig, RolloutConfig]:
    if persist:
        before, after = ctx.store.update(mutate, source=source)
        if ctx.history is not None:
            ctx.history.record(after, source=source, timestamp=ctx.clock())
    else:
        before = ctx.store.load()
        after = mutate(before)
    if ctx.metrics is not None:
        ctx.metrics.record_config(after)
    return before, after


def run_evaluation(
    ctx: RolloutContext,
    snapshots: dict[Variant, MetricsSnapshot | None],
    persist: bool = True,
) -> RunOutcome:
    """Evaluate the snapshots and apply the decision to the stored config.

    Args:
        ctx: Run context.
        snapshots: Metrics keyed by variant; missing entries count as None.
        persist: When False the new config is computed but not written.
    """
    evaluation = ctx.evaluator.evaluate(
        snapshots.get(Variant.STABLE), snapshots.get(Variant.CANARY)
    )
    return _step(ctx, evaluation, persist)


def run_failed_fetch(ctx: RolloutContext, error: str, persist: bool = True) -> RunOutcome:
    """Record an ERROR evaluation when the metrics could not be obtained."""
    return _step(ctx, ctx.evaluator.failure(error), persist)


def _step(ctx: RolloutContext, evaluation: EvaluationResult, persist: bool) -> RunOutcome:
    now = ctx.clock()

    def mutate(config: RolloutConfig) -> RolloutConfig:
        target = ctx.scheduler.current_target(config, now) if config.gradual_rollout else None
        return ctx.controller.step(config, evaluation, scheduled_target=target)

    before, after = _apply(ctx, mutate, "automated", persist)
    if ctx.metrics is not None:
        ctx.metrics.record_evaluation(evaluation)
    if ctx.events is not None:
        ctx.events.log_decision(evaluation)
        ctx.events.log_status_change(before, after)

    outcome = RunOutcome(
        before=before,
        after=after,
        reason=change_reason(before, after),
        evaluation=evaluation,
        exceeds_threshold=exceeds_threshold(evaluation, ctx.settings.error_threshold),
        persisted=persist,
    )
    logger.info(
        "Evaluation %s: canary %s%% -> %s%% (%s)",
        evaluation.decision.value,
        before.current_percentage,
        after.current_percentage,
        outcome.reason,
    )
    return outcome


def apply_manual_override(
    ctx: RolloutContext, percentage: float, persist: bool = True
) -> RunOutcome:
    """Operator escape hatch: set the percentage regardless of status.

    Raises:
        ValueError: If ``percentage`` is outside ``[0, 100]``.
    """
    before, after = _apply(
        ctx, lambda config: ctx.controller.manual_override(config, percentage), "manual", persist
    )
    if ctx.events is not None:
        ctx.events.log_manual_override(before, after)
    return RunOutcome(before=before, after=after, reason="manual", persisted=persist)


def reset_rollout(ctx: RolloutContext) -> RunOutcome:
    """Operator reset of a paused or rolled-back rollout to ACTIVE."""
    now = ctx.clock()
    before, after = _apply(ctx, lambda config: ctx.controller.reset(config, now), "manual", True)
    if ctx.events is not None:
        ctx.events.log_status_change(before, after)
    return RunOutcome(before=before, after=after, reason="reset", persisted=True)
