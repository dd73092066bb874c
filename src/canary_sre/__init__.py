"""Canary SRE — client-side canary rollouts driven by error-rate health checks.

canary-sre shifts a population of independent clients from a *stable*
experience to a *canary* experience without a server-side traffic router,
and adjusts the rollout fraction from observed error behaviour:

Core concepts
-------------
* **Variant assignment** — each client draws ``stable`` or ``canary`` once,
  weighted by the current rollout percentage, and keeps it.  See
  ``canary_sre.delivery.assignment``.

* **Gradual rollout** — the target percentage ramps linearly from an
  initial value to a maximum over a rollout period
  (``canary_sre.delivery.scheduler``).

* **Health evaluation** — stable and canary error rates are compared and
  turned into a decision: PROCEED, CAUTION, SLOW_DOWN, ROLLBACK or
  NEED_MORE_DATA (``canary_sre.delivery.evaluator``).

* **Rollout control** — decisions move the persisted percentage and status
  (ACTIVE, PAUSED, ROLLED_BACK); a manual override is always available
  (``canary_sre.delivery.controller``).

Quick start::

    from canary_sre import HealthEvaluator, MetricsSnapshot, RolloutConfig, RolloutController

    evaluation = HealthEvaluator().evaluate(
        MetricsSnapshot(pageviews=1000, errors=20),
        MetricsSnapshot(pageviews=100, errors=20),
    )
    config = RolloutController().step(RolloutConfig(current_percentage=40), evaluation)
"""

from canary_sre.delivery.assignment import Assignment, Variant, VariantAssigner
from canary_sre.delivery.controller import RolloutConfig, RolloutController, RolloutStatus
from canary_sre.delivery.evaluator import Decision, EvaluationResult, HealthEvaluator, MetricsSnapshot
from canary_sre.delivery.scheduler import RolloutScheduler

__all__ = [
    "Assignment",
    "Decision",
    "EvaluationResult",
    "HealthEvaluator",
    "MetricsSnapshot",
    "RolloutConfig",
    "RolloutController",
    "RolloutScheduler",
    "RolloutStatus",
    "Variant",
    "VariantAssigner",
]

__version__ = "0.1.0"
