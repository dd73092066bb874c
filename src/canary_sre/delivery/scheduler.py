"""Gradual rollout schedule.

Linearly ramps the canary percentage from its initial value to the maximum
over the configured rollout period, one step per elapsed whole day.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from canary_sre.delivery.controller import RolloutConfig

SECONDS_PER_DAY = 24 * 60 * 60


def days_elapsed(now: float, start: float) -> int:
    """Whole days between ``start`` and ``now``; never negative."""
    return max(0, math.floor((now - start) / SECONDS_PER_DAY))


class RolloutScheduler:
    """Computes the time-based target percentage.

    Stateless and side-effect free; safe to call on every request.
    """

    def current_target(
        self,
        config: RolloutConfig,
        now: float,
        rollout_start: float | None = None,
    ) -> float:
        """Target percentage for ``now``.

        With gradual rollout disabled this is the config's current
        percentage.  Otherwise the result is monotonically non-decreasing in
        ``now`` and never exceeds ``config.max_percentage``.
        """
        if not config.gradual_rollout:
            return config.current_percentage

        ceiling = config.max_percentage
        initial = min(config.start_percentage, ceiling)
        start = rollout_start if rollout_start is not None else config.rollout_start
        if start is None:
            return initial
        if config.rollout_period_days <= 0:
            return ceiling

        days = min(days_elapsed(now, start), config.rollout_period_days)
        target = initial + (ceiling - initial) * days / config.rollout_period_days
        return min(max(target, 0.0), ceiling)
