"""OpenTelemetry semantic conventions for canary rollouts.

Defines attribute keys and metric names following OTEL naming conventions.
All rollout-specific attributes are prefixed with 'canary.' to avoid
collisions with standard OTEL conventions.
"""

# --- Attribute Keys ---

ROLLOUT_VERSION = "canary.rollout.version"
ROLLOUT_STATUS = "canary.rollout.status"
ROLLOUT_OLD_STATUS = "canary.rollout.old_status"
ROLLOUT_PERCENTAGE = "canary.rollout.percentage"
ROLLOUT_OLD_PERCENTAGE = "canary.rollout.old_percentage"
ROLLOUT_UPDATE_SOURCE = "canary.rollout.update_source"

VARIANT = "canary.variant"

DECISION = "canary.evaluation.decision"
DECISION_CONFIDENCE = "canary.evaluation.confidence"
DECISION_REASON = "canary.evaluation.reason"

# --- Metric Names ---

METRIC_ROLLOUT_PERCENTAGE = "canary.rollout.percentage"
METRIC_ROLLOUT_STATUS = "canary.rollout.status_code"
METRIC_ERROR_RATE = "canary.error_rate"
METRIC_RELATIVE_ERROR_INCREASE = "canary.relative_error_increase"
METRIC_EVALUATIONS = "canary.evaluations"

# --- Event Names ---

EVENT_DECISION = "canary.evaluation.decision"
EVENT_STATUS_CHANGE = "canary.rollout.status_change"
EVENT_MANUAL_OVERRIDE = "canary.rollout.manual_override"

# --- Status Code Mapping ---

ROLLOUT_STATUS_CODES = {
    "ACTIVE": 0,
    "PAUSED": 1,
    "ROLLED_BACK": 2,
}
