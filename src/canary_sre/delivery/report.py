"""Analysis report written after each evaluation run."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from canary_sre.delivery.store import to_iso

if TYPE_CHECKING:
    from canary_sre.delivery.assignment import Variant
    from canary_sre.delivery.controller import RolloutConfig
    from canary_sre.delivery.evaluator import EvaluationResult, MetricsSnapshot

DEFAULT_REPORT_FILE = "canary-analysis.json"


def _snapshot_dict(snapshot: MetricsSnapshot | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {
        "pageviews": snapshot.pageviews,
        "errors": snapshot.errors,
        "errorRate": snapshot.error_rate,
    }


def build_report(
    metrics: dict[Variant, MetricsSnapshot | None],
    evaluation: EvaluationResult | None,
    before: RolloutConfig,
    after: RolloutConfig,
    reason: str,
    error_threshold: float,
    exceeds: bool,
    timestamp: float | None = None,
) -> dict[str, Any]:
    """Assemble the report document for one run."""
    return {
        "analytics": {
            variant.value: _snapshot_dict(snapshot) for variant, snapshot in metrics.items()
        },
        "analysis": {
            "decision": evaluation.decision.value if evaluation else None,
            "confidence": evaluation.confidence if evaluation else None,
            "relativeErrorIncrease": evaluation.relative_error_increase if evaluation else None,
            "exceedsThreshold": exceeds,
            "issues": list(evaluation.issues) if evaluation else [],
            "reason": evaluation.reason if evaluation else "",
        },
        "recommendation": {
            "percentage": after.current_percentage,
            "previousPercentage": before.current_percentage,
            "status": after.status.value,
            "previousStatus": before.status.value,
            "reason": reason,
        },
        "config": {"errorThreshold": error_threshold},
        "timestamp": to_iso(time.time() if timestamp is None else timestamp),
    }


def write_report(report: dict[str, Any], path: str | Path = DEFAULT_REPORT_FILE) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
        f.write("\n")
    return path
