"""OpenTelemetry integration — native OTLP export with rollout semantic conventions.

Provides two exporters:
- MetricsExporter: rollout percentage/status gauges, error-rate gauges, decision counter
- EventLogger: structured events for decisions, status changes and manual overrides

Usage:
    from canary_sre.integrations.otel import MetricsExporter, EventLogger

    metrics = MetricsExporter(service_name="web-frontend")
    events = EventLogger(service_name="web-frontend")
"""

from canary_sre.integrations.otel.events import EventLogger
from canary_sre.integrations.otel.metrics import MetricsExporter

__all__ = [
    "EventLogger",
    "MetricsExporter",
]
