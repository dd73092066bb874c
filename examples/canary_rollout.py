"""
Canary Rollout Example — Ramp a new frontend release on client error rates.

Simulates a week of daily evaluations: clients are assigned to stable or
canary, pageviews and errors are counted per variant, and the controller
moves the canary percentage after each evaluation.  On day 5 the canary
ships a regression and is rolled back automatically.

Run:
    pip install canary-sre
    python examples/canary_rollout.py
"""

import random
import tempfile
from pathlib import Path

from canary_sre.delivery import MetricsSnapshot, Variant, VariantAssigner
from canary_sre.delivery.runner import RolloutContext, run_evaluation
from canary_sre.delivery.scheduler import SECONDS_PER_DAY
from canary_sre.settings import Settings

START = 1_700_000_000.0
rng = random.Random(7)

# ── Set up a rollout in a scratch directory ────────────────────────────

workdir = Path(tempfile.mkdtemp(prefix="canary-"))
clock_now = [START]
ctx = RolloutContext.from_settings(
    Settings(config_path=workdir / "canary-config.json"),
    history_path=workdir / "history.json",
    clock=lambda: clock_now[0],
)
assigner = VariantAssigner(rng=rng)


def simulate_day(percentage: float, canary_error_rate: float, clients: int = 2000) -> dict:
    """Count pageviews and errors for one day of traffic."""
    counts = {v: [0, 0] for v in Variant}
    for _ in range(clients):
        variant = assigner.assign(percentage).variant
        rate = canary_error_rate if variant == Variant.CANARY else 0.02
        counts[variant][0] += 1
        counts[variant][1] += rng.random() < rate
    return {v: MetricsSnapshot(pageviews=pv, errors=err) for v, (pv, err) in counts.items()}


print("Canary Rollout Example")
print("=" * 60)
print()

# ── Step through daily evaluations ─────────────────────────────────────

for day in range(7):
    clock_now[0] = START + day * SECONDS_PER_DAY
    config = ctx.store.load()
    canary_error_rate = 0.02 if day < 5 else 0.15  # Regression on day 5!
    snapshots = simulate_day(config.current_percentage, canary_error_rate)

    outcome = run_evaluation(ctx, snapshots)
    stable, canary = snapshots[Variant.STABLE], snapshots[Variant.CANARY]
    print(f"Day {day + 1}: canary at {outcome.before.current_percentage:g}%")
    print(f"  Stable error rate:  {stable.error_rate:.1%} ({stable.pageviews} views)")
    print(f"  Canary error rate:  {canary.error_rate:.1%} ({canary.pageviews} views)")
    print(f"  Decision:           {outcome.evaluation.decision.value}")
    print(f"  New percentage:     {outcome.after.current_percentage:g}% ({outcome.reason})")
    print()

final = ctx.store.load()
print("─" * 60)
print(f"Final status:     {final.status.value}")
print(f"Final percentage: {final.current_percentage:g}%")
print(f"History entries:  {len(ctx.history.entries())}")
