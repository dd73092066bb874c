"""Progressive delivery for client-side canary rollouts."""

from canary_sre.delivery.assignment import (
    Assignment,
    AssignmentStorage,
    ClientAssignments,
    MemoryStorage,
    Variant,
    VariantAssigner,
)
from canary_sre.delivery.controller import (
    ControllerPolicy,
    RolloutConfig,
    RolloutController,
    RolloutStatus,
)
from canary_sre.delivery.evaluator import (
    Decision,
    EvaluationResult,
    EvaluationThresholds,
    HealthEvaluator,
    MetricsSnapshot,
    PerformanceSnapshot,
)
from canary_sre.delivery.scheduler import RolloutScheduler
from canary_sre.delivery.store import (
    ConcurrentUpdateError,
    RolloutConfigStore,
    RolloutHistory,
)

__all__ = [
    "Assignment",
    "AssignmentStorage",
    "ClientAssignments",
    "ConcurrentUpdateError",
    "ControllerPolicy",
    "Decision",
    "EvaluationResult",
    "EvaluationThresholds",
    "HealthEvaluator",
    "MemoryStorage",
    "MetricsSnapshot",
    "PerformanceSnapshot",
    "RolloutConfig",
    "RolloutConfigStore",
    "RolloutController",
    "RolloutHistory",
    "RolloutScheduler",
    "RolloutStatus",
    "Variant",
    "VariantAssigner",
]
