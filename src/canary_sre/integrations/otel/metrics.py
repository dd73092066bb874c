"""OpenTelemetry metrics exporter for canary rollouts.

Exports the rollout percentage, status, per-variant error rates and a
decision counter as native OTEL metrics that any OTLP-compatible backend can
ingest.

Usage:
    from canary_sre.integrations.otel.metrics import MetricsExporter

    exporter = MetricsExporter(service_name="web-frontend")
    exporter.record_evaluation(evaluation)
    exporter.record_config(config)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics
from opentelemetry.metrics import Meter

from canary_sre.delivery.assignment import Variant
from canary_sre.integrations.otel.conventions import (
    DECISION,
    METRIC_ERROR_RATE,
    METRIC_EVALUATIONS,
    METRIC_RELATIVE_ERROR_INCREASE,
    METRIC_ROLLOUT_PERCENTAGE,
    METRIC_ROLLOUT_STATUS,
    ROLLOUT_STATUS,
    ROLLOUT_STATUS_CODES,
    ROLLOUT_VERSION,
    VARIANT,
)

if TYPE_CHECKING:
    from canary_sre.delivery.controller import RolloutConfig
    from canary_sre.delivery.evaluator import EvaluationResult

logger = logging.getLogger(__name__)


class MetricsExporter:
    """Exports rollout metrics via the OpenTelemetry Metrics API.

    Metrics go through whatever MeterProvider is configured (OTLP,
    Prometheus, console, etc.).
    """

    def __init__(
        self,
        service_name: str = "canary-sre",
        meter_provider: metrics.MeterProvider | None = None,
    ) -> None:
        self._service_name = service_name
        if meter_provider:
            self._meter: Meter = meter_provider.get_meter("canary_sre", version="0.1.0")
        else:
            self._meter = metrics.get_meter("canary_sre", version="0.1.0")

        self._percentage = self._meter.create_gauge(
            METRIC_ROLLOUT_PERCENTAGE,
            unit="%",
            description="Probability that a new client receives the canary",
        )
        self._status = self._meter.create_gauge(
            METRIC_ROLLOUT_STATUS,
            unit="1",
            description="Rollout status code (0=active, 1=paused, 2=rolled back)",
        )
        self._error_rate = self._meter.create_gauge(
            METRIC_ERROR_RATE,
            unit="1",
            description="Errors per pageview for a variant",
        )
        self._relative_increase = self._meter.create_gauge(
            METRIC_RELATIVE_ERROR_INCREASE,
            unit="1",
            description="Canary error rate minus stable error rate",
        )
        self._evaluations = self._meter.create_counter(
            METRIC_EVALUATIONS,
            unit="1",
            description="Number of canary evaluations by decision",
        )

    def record_evaluation(
        self,
        evaluation: EvaluationResult,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record one evaluation's error rates and decision."""
        base: dict[str, Any] = {"service.name": self._service_name, **(labels or {})}
        self._error_rate.set(evaluation.stable_error_rate, {**base, VARIANT: Variant.STABLE.value})
        self._error_rate.set(evaluation.canary_error_rate, {**base, VARIANT: Variant.CANARY.value})
        self._relative_increase.set(evaluation.relative_error_increase, base)
        self._evaluations.add(1, {**base, DECISION: evaluation.decision.value})

    def record_config(
        self,
        config: RolloutConfig,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record the rollout percentage and status."""
        attrs: dict[str, Any] = {
            "service.name": self._service_name,
            ROLLOUT_VERSION: config.canary_version,
            **(labels or {}),
        }
        self._percentage.set(config.current_percentage, attrs)
        self._status.set(
            ROLLOUT_STATUS_CODES.get(config.status.value, -1),
            {**attrs, ROLLOUT_STATUS: config.status.value},
        )
