"""Settings for rollout automation.

Settings come from three layers, lowest precedence first: the built-in
environment profile (``development``, ``staging``, ``production``), an
optional YAML file, and environment variables.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from canary_sre.delivery.controller import ControllerPolicy, RolloutConfig
from canary_sre.delivery.evaluator import EvaluationThresholds


class DeployEnvironment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class EnvironmentProfile(BaseModel):
    """Default percentages for one deployment environment."""

    canary_percentage: float = Field(..., ge=0, le=100)
    max_percentage: float = Field(..., ge=0, le=100)
    safety_threshold: float = Field(..., ge=0, le=100)


PROFILES: dict[DeployEnvironment, EnvironmentProfile] = {
    DeployEnvironment.DEVELOPMENT: EnvironmentProfile(
        canary_percentage=25, max_percentage=75, safety_threshold=5
    ),
    DeployEnvironment.STAGING: EnvironmentProfile(
        canary_percentage=10, max_percentage=50, safety_threshold=5
    ),
    DeployEnvironment.PRODUCTION: EnvironmentProfile(
        canary_percentage=5, max_percentage=50, safety_threshold=2
    ),
}

# env var -> settings field
ENV_OVERRIDES: dict[str, str] = {
    "CANARY_ENV": "environment",
    "ERROR_THRESHOLD": "error_threshold",
    "CANARY_PERCENTAGE": "canary_percentage",
    "MAX_PERCENTAGE": "max_percentage",
    "SAFETY_THRESHOLD": "safety_threshold",
    "INCREMENT_STEP": "increment_step",
    "ROLLOUT_PERIOD_DAYS": "rollout_period_days",
    "CANARY_CONFIG_PATH": "config_path",
    "CANARY_HISTORY_PATH": "history_path",
}


class Settings(BaseModel):
    """Typed rollout settings.

    Percentages left unset are taken from the environment profile.
    """

    environment: DeployEnvironment = DeployEnvironment.PRODUCTION
    canary_percentage: float | None = Field(default=None, ge=0, le=100)
    max_percentage: float | None = Field(default=None, ge=0, le=100)
    safety_threshold: float | None = Field(default=None, ge=0, le=100)
    increment_step: float = Field(default=1.0, gt=0)
    rollout_period_days: float = Field(default=7.0, ge=0)
    gradual_rollout: bool = True
    error_threshold: float = Field(default=0.02, ge=0, le=1)
    storage_key: str = "canary_assignment"
    config_path: Path = Path("config/canary-config.json")
    history_path: Path | None = None
    report_path: Path = Path("canary-analysis.json")
    max_retries: int = Field(default=3, ge=0)
    thresholds: EvaluationThresholds = Field(default_factory=EvaluationThresholds)
    policy: ControllerPolicy = Field(default_factory=ControllerPolicy)

    @model_validator(mode="after")
    def _check_percentages(self) -> Settings:
        profile = self.profile
        safety = self.safety_threshold if self.safety_threshold is not None else profile.safety_threshold
        ceiling = self.max_percentage if self.max_percentage is not None else profile.max_percentage
        if safety > ceiling:
            raise ValueError(f"safety_threshold ({safety}) exceeds max_percentage ({ceiling})")
        return self

    @property
    def profile(self) -> EnvironmentProfile:
        return PROFILES[self.environment]

    def default_config(self) -> RolloutConfig:
        """Rollout config used when no document exists yet."""
        profile = self.profile
        ceiling = self.max_percentage if self.max_percentage is not None else profile.max_percentage
        safety = (
            self.safety_threshold if self.safety_threshold is not None else profile.safety_threshold
        )
        current = (
            self.canary_percentage
            if self.canary_percentage is not None
            else profile.canary_percentage
        )
        current = min(max(current, safety), ceiling)
        return RolloutConfig(
            current_percentage=current,
            initial_percentage=current,
            max_percentage=ceiling,
            safety_threshold=safety,
            increment_step=self.increment_step,
            rollout_period_days=self.rollout_period_days,
            gradual_rollout=self.gradual_rollout,
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML file."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    def to_yaml(self, path: str | Path) -> None:
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def with_env(self, environ: dict[str, str] | None = None) -> Settings:
        """Return a copy with environment variable overrides applied."""
        environ = dict(os.environ if environ is None else environ)
        overrides: dict[str, Any] = {
            field: environ[var] for var, field in ENV_OVERRIDES.items() if environ.get(var)
        }
        if not overrides:
            return self
        data = self.model_dump()
        data.update(overrides)
        return type(self).model_validate(data)


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """Build settings from an optional YAML file plus environment overrides."""
    settings = Settings.from_yaml(path) if path is not None else Settings()
    return settings.with_env(environ)
