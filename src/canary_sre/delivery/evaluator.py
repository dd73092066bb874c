"""Canary health evaluation.

Compares a stable and a canary metrics snapshot and produces a decision with
a confidence and a human-readable reason.  Error rates are compared as raw
ratios; the only statistical gates are a minimum canary sample size and a
non-empty stable baseline.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from collections.abc import Callable


class Decision(str, Enum):
    """Outcome of one canary evaluation."""

    PROCEED = "PROCEED"
    CAUTION = "CAUTION"
    SLOW_DOWN = "SLOW_DOWN"
    ROLLBACK = "ROLLBACK"
    NEED_MORE_DATA = "NEED_MORE_DATA"
    ERROR = "ERROR"


CONFIDENCE: dict[Decision, float] = {
    Decision.PROCEED: 0.8,
    Decision.CAUTION: 0.5,
    Decision.SLOW_DOWN: 0.7,
    Decision.ROLLBACK: 0.9,
    Decision.NEED_MORE_DATA: 0.3,
    Decision.ERROR: 0.0,
}

RECOMMENDATIONS: dict[Decision, str] = {
    Decision.PROCEED: "Continue with normal rollout schedule",
    Decision.CAUTION: "Continue rollout but monitor closely",
    Decision.SLOW_DOWN: "Pause rollout and investigate issues",
    Decision.ROLLBACK: "Roll back to stable version",
    Decision.NEED_MORE_DATA: "Wait for more canary traffic",
    Decision.ERROR: "Fix the metrics source and re-run the evaluation",
}


class PerformanceSnapshot(BaseModel):
    """Average client-side performance timings for one variant."""

    model_config = ConfigDict(frozen=True)

    page_load_time: float | None = Field(default=None, ge=0)
    lcp: float | None = Field(default=None, ge=0)
    fid: float | None = Field(default=None, ge=0)
    cls: float | None = Field(default=None, ge=0)


class MetricsSnapshot(BaseModel):
    """Aggregate pageview and error counts for one variant."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pageviews: int = Field(default=0, ge=0, alias="pageViews")
    errors: int = Field(default=0, ge=0)
    performance: PerformanceSnapshot | None = None

    @property
    def error_rate(self) -> float:
        return self.errors / max(self.pageviews, 1)


class EvaluationThresholds(BaseModel):
    """Decision thresholds for :class:`HealthEvaluator`."""

    min_sample_size: int = Field(default=50, ge=0, description="Minimum canary pageviews")
    critical_multiplier: float = Field(
        default=1.5, gt=0, description="Canary/stable error ratio that triggers rollback"
    )
    absolute_error_floor: float = Field(
        default=0.05, ge=0, le=1, description="Canary error rate required for rollback"
    )
    slow_down_multiplier: float = Field(
        default=1.2, gt=0, description="Canary/stable error ratio that pauses the rollout"
    )
    page_load_critical_pct: float = Field(default=30.0, ge=0)
    page_load_warning_pct: float = Field(default=15.0, ge=0)
    lcp_warning_pct: float = Field(default=25.0, ge=0)
    fid_warning_pct: float = Field(default=30.0, ge=0)
    max_minor_issues: int = Field(default=2, ge=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> EvaluationThresholds:
        if self.slow_down_multiplier > self.critical_multiplier:
            raise ValueError("slow_down_multiplier must not exceed critical_multiplier")
        if self.page_load_warning_pct > self.page_load_critical_pct:
            raise ValueError("page_load_warning_pct must not exceed page_load_critical_pct")
        return self


class EvaluationResult(BaseModel):
    """A single evaluation decision.  Created fresh, never mutated."""

    model_config = ConfigDict(frozen=True)

    decision: Decision
    confidence: float = Field(ge=0.0, le=1.0)
    relative_error_increase: float = 0.0
    reason: str = ""
    timestamp: float = Field(default_factory=time.time)
    issues: list[str] = Field(default_factory=list)
    recommendation: str = ""
    stable_error_rate: float = 0.0
    canary_error_rate: float = 0.0

    def to_document(self) -> dict[str, Any]:
        """Shape stored under ``distribution.lastEvaluationResult``."""
        return {
            "status": self.decision.value,
            "confidence": self.confidence,
            "relativeErrorIncrease": self.relative_error_increase,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "issues": list(self.issues),
            "recommendation": self.recommendation,
            "stableErrorRate": self.stable_error_rate,
            "canaryErrorRate": self.canary_error_rate,
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> EvaluationResult:
        return cls(
            decision=Decision(data.get("status", data.get("decision"))),
            confidence=data.get("confidence", 0.0),
            relative_error_increase=data.get("relativeErrorIncrease", 0.0),
            reason=data.get("reason", ""),
            timestamp=data.get("timestamp", 0.0),
            issues=data.get("issues", []),
            recommendation=data.get("recommendation", ""),
            stable_error_rate=data.get("stableErrorRate", 0.0),
            canary_error_rate=data.get("canaryErrorRate", 0.0),
        )


def _pct_increase(canary: float | None, stable: float | None) -> float | None:
    """Percent by which ``canary`` exceeds ``stable``; None when not comparable."""
    if not canary or not stable:
        return None
    return (canary - stable) / stable * 100


class HealthEvaluator:
    """Turns two metrics snapshots into a rollout decision.

    Decisions are checked in priority order and the first match wins:
    NEED_MORE_DATA, ROLLBACK, SLOW_DOWN, CAUTION, PROCEED.
    """

    def __init__(
        self,
        thresholds: EvaluationThresholds | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.thresholds = thresholds or EvaluationThresholds()
        self._clock = clock

    def evaluate(
        self,
        stable: MetricsSnapshot | None,
        canary: MetricsSnapshot | None,
    ) -> EvaluationResult:
        """Evaluate canary health against the stable baseline.

        Never raises on degenerate input: missing snapshots and zero
        pageviews produce NEED_MORE_DATA.
        """
        t = self.thresholds
        stable_rate = stable.error_rate if stable is not None else 0.0
        canary_rate = canary.error_rate if canary is not None else 0.0
        increase = canary_rate - stable_rate

        if stable is None or canary is None:
            missing = "stable" if stable is None else "canary"
            return self._result(
                Decision.NEED_MORE_DATA,
                f"Missing or invalid {missing} metrics",
                stable_rate,
                canary_rate,
            )

        if stable.pageviews == 0:
            return self._result(
                Decision.NEED_MORE_DATA,
                "No stable baseline traffic",
                stable_rate,
                canary_rate,
            )

        if canary.pageviews < t.min_sample_size:
            return self._result(
                Decision.NEED_MORE_DATA,
                f"Insufficient canary data: {canary.pageviews}/{t.min_sample_size} pageviews required",
                stable_rate,
                canary_rate,
            )

        issues: list[str] = []
        critical: list[str] = []

        if canary_rate > stable_rate * t.critical_multiplier:
            if canary_rate > t.absolute_error_floor:
                critical.append(
                    f"Critical: Error rate {canary_rate:.2%} is significantly higher "
                    f"than stable {stable_rate:.2%}"
                )
            else:
                issues.append(f"Error rate increased: {canary_rate:.2%} vs {stable_rate:.2%}")

        perf_issues, perf_critical = self._performance_issues(stable, canary)
        issues.extend(perf_issues)
        critical.extend(perf_critical)

        if critical:
            return self._result(
                Decision.ROLLBACK,
                "Critical issues detected",
                stable_rate,
                canary_rate,
                issues=critical + issues,
            )

        if canary_rate > stable_rate * t.slow_down_multiplier:
            if not any(i.startswith("Error rate") for i in issues):
                issues.insert(0, f"Error rate increased: {canary_rate:.2%} vs {stable_rate:.2%}")
            return self._result(
                Decision.SLOW_DOWN,
                f"Canary error rate {increase:.2%} above stable",
                stable_rate,
                canary_rate,
                issues=issues,
            )

        if len(issues) > t.max_minor_issues:
            return self._result(
                Decision.SLOW_DOWN,
                "Multiple issues detected",
                stable_rate,
                canary_rate,
                issues=issues,
            )

        if increase > 0 or issues:
            if increase > 0:
                issues.insert(0, f"Error rate slightly higher: {canary_rate:.2%} vs {stable_rate:.2%}")
            return self._result(
                Decision.CAUTION,
                "Minor issues detected",
                stable_rate,
                canary_rate,
                issues=issues,
            )

        return self._result(
            Decision.PROCEED,
            "No significant issues detected",
            stable_rate,
            canary_rate,
        )

    def failure(self, reason: str) -> EvaluationResult:
        """Result for a metrics source that could not be read."""
        return self._result(Decision.ERROR, f"Error fetching data: {reason}", 0.0, 0.0)

    def _performance_issues(
        self, stable: MetricsSnapshot, canary: MetricsSnapshot
    ) -> tuple[list[str], list[str]]:
        issues: list[str] = []
        critical: list[str] = []
        if stable.performance is None or canary.performance is None:
            return issues, critical
        t = self.thresholds
        sp, cp = stable.performance, canary.performance

        page_load = _pct_increase(cp.page_load_time, sp.page_load_time)
        if page_load is not None:
            if page_load > t.page_load_critical_pct:
                critical.append(f"Critical: Page load time increased by {page_load:.1f}%")
            elif page_load > t.page_load_warning_pct:
                issues.append(f"Page load time increased by {page_load:.1f}%")

        lcp = _pct_increase(cp.lcp, sp.lcp)
        if lcp is not None and lcp > t.lcp_warning_pct:
            issues.append(f"LCP increased by {lcp:.1f}%")

        fid = _pct_increase(cp.fid, sp.fid)
        if fid is not None and fid > t.fid_warning_pct:
            issues.append(f"FID increased by {fid:.1f}%")

        return issues, critical

    def _result(
        self,
        decision: Decision,
        reason: str,
        stable_rate: float,
        canary_rate: float,
        issues: list[str] | None = None,
    ) -> EvaluationResult:
        return EvaluationResult(
            decision=decision,
            confidence=CONFIDENCE[decision],
            relative_error_increase=canary_rate - stable_rate,
            reason=reason,
            timestamp=self._clock(),
            issues=issues or [],
            recommendation=RECOMMENDATIONS[decision],
            stable_error_rate=stable_rate,
            canary_error_rate=canary_rate,
        )


def exceeds_threshold(result: EvaluationResult, error_threshold: float = 0.02) -> bool:
    """True when the canary error rate exceeds stable by more than ``error_threshold``."""
    return result.relative_error_increase > error_threshold
