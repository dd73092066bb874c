"""Structured rollout events.

Logs evaluation decisions, status transitions and manual overrides as
structured records through Python logging, and attaches them to the current
OTEL span when one is recording.

Usage:
    from canary_sre.integrations.otel.events import EventLogger

    event_logger = EventLogger(service_name="web-frontend")
    event_logger.log_decision(evaluation)
    event_logger.log_status_change(before, after)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

from canary_sre.delivery.controller import RolloutStatus
from canary_sre.delivery.evaluator import Decision
from canary_sre.integrations.otel.conventions import (
    DECISION,
    DECISION_CONFIDENCE,
    DECISION_REASON,
    EVENT_DECISION,
    EVENT_MANUAL_OVERRIDE,
    EVENT_STATUS_CHANGE,
    ROLLOUT_OLD_PERCENTAGE,
    ROLLOUT_OLD_STATUS,
    ROLLOUT_PERCENTAGE,
    ROLLOUT_STATUS,
    ROLLOUT_UPDATE_SOURCE,
)

if TYPE_CHECKING:
    from canary_sre.delivery.controller import RolloutConfig
    from canary_sre.delivery.evaluator import EvaluationResult


class EventLogger:
    """Logs rollout events as structured records."""

    def __init__(
        self,
        service_name: str = "canary-sre",
        logger_name: str = "canary_sre.events",
    ) -> None:
        self._service_name = service_name
        self._logger = logging.getLogger(logger_name)

    def _current_span(self) -> trace.Span | None:
        span = trace.get_current_span()
        if span and span.is_recording():
            return span
        return None

    def _emit(
        self,
        event_name: str,
        attributes: dict[str, Any],
        level: int = logging.INFO,
        message: str = "",
    ) -> dict[str, Any]:
        """Emit a structured event and return its attributes."""
        full_attrs = {"event.name": event_name, "service.name": self._service_name, **attributes}
        self._logger.log(level, message or event_name, extra={"otel_attributes": full_attrs})

        span = self._current_span()
        if span:
            # Span events only accept str values
            span.add_event(event_name, {k: str(v) for k, v in full_attrs.items()})

        return full_attrs

    def log_decision(self, evaluation: EvaluationResult) -> dict[str, Any]:
        level = logging.WARNING if evaluation.decision in (
            Decision.ROLLBACK,
            Decision.SLOW_DOWN,
            Decision.ERROR,
        ) else logging.INFO
        return self._emit(
            EVENT_DECISION,
            {
                DECISION: evaluation.decision.value,
                DECISION_CONFIDENCE: evaluation.confidence,
                DECISION_REASON: evaluation.reason,
                "canary.relative_error_increase": evaluation.relative_error_increase,
            },
            level=level,
            message=f"Canary evaluation: {evaluation.decision.value} ({evaluation.reason})",
        )

    def log_status_change(
        self, before: RolloutConfig, after: RolloutConfig
    ) -> dict[str, Any] | None:
        """Log a status transition; returns None when the status did not change."""
        if before.status == after.status:
            return None
        level = logging.WARNING if after.status == RolloutStatus.ROLLED_BACK else logging.INFO
        return self._emit(
            EVENT_STATUS_CHANGE,
            {
                ROLLOUT_OLD_STATUS: before.status.value,
                ROLLOUT_STATUS: after.status.value,
                ROLLOUT_OLD_PERCENTAGE: before.current_percentage,
                ROLLOUT_PERCENTAGE: after.current_percentage,
            },
            level=level,
            message=f"Rollout status: {before.status.value} -> {after.status.value}",
        )

    def log_manual_override(
        self, before: RolloutConfig, after: RolloutConfig
    ) -> dict[str, Any]:
        return self._emit(
            EVENT_MANUAL_OVERRIDE,
            {
                ROLLOUT_OLD_PERCENTAGE: before.current_percentage,
                ROLLOUT_PERCENTAGE: after.current_percentage,
                ROLLOUT_UPDATE_SOURCE: "manual",
            },
            message=(
                f"Canary percentage manually set: "
                f"{before.current_percentage}% -> {after.current_percentage}%"
            ),
        )
