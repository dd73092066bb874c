"""Tests for settings profiles, YAML loading and environment overrides."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from canary_sre.settings import DeployEnvironment, Settings, load_settings


class TestProfiles:
    def test_production_is_default(self) -> None:
        config = Settings().default_config()
        assert (config.current_percentage, config.max_percentage, config.safety_threshold) == (
            5,
            50,
            2,
        )

    @pytest.mark.parametrize(
        "environment, expected",
        [
            (DeployEnvironment.DEVELOPMENT, (25, 75, 5)),
            (DeployEnvironment.STAGING, (10, 50, 5)),
            (DeployEnvironment.PRODUCTION, (5, 50, 2)),
        ],
    )
    def test_profile_defaults(self, environment, expected) -> None:
        config = Settings(environment=environment).default_config()
        assert (
            config.current_percentage,
            config.max_percentage,
            config.safety_threshold,
        ) == expected
        assert config.initial_percentage == expected[0]

    def test_explicit_values_override_profile(self) -> None:
        config = Settings(canary_percentage=15, max_percentage=40).default_config()
        assert config.current_percentage == 15
        assert config.max_percentage == 40

    def test_start_clamped_into_bounds(self) -> None:
        config = Settings(canary_percentage=90, max_percentage=60).default_config()
        assert config.current_percentage == 60

    def test_safety_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(safety_threshold=60, max_percentage=50)


class TestYaml:
    def test_round_trip(self, tmp_path: Path) -> None:
        settings = Settings(environment="staging", error_threshold=0.05, history_path="h.json")
        path = tmp_path / "canary.yaml"
        settings.to_yaml(path)
        assert Settings.from_yaml(path) == settings

    def test_nested_thresholds(self, tmp_path: Path) -> None:
        path = tmp_path / "canary.yaml"
        path.write_text(
            yaml.dump({"thresholds": {"min_sample_size": 200}, "policy": {"caution_floor": 20}})
        )
        settings = Settings.from_yaml(path)
        assert settings.thresholds.min_sample_size == 200
        assert settings.policy.caution_floor == 20

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Settings.from_yaml(path) == Settings()

    def test_invalid_values_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("error_threshold: 7\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(path)


class TestEnvironmentOverrides:
    def test_env_vars_applied(self) -> None:
        settings = load_settings(
            environ={
                "CANARY_ENV": "development",
                "ERROR_THRESHOLD": "0.1",
                "CANARY_CONFIG_PATH": "/tmp/rollout.json",
            }
        )
        assert settings.environment == DeployEnvironment.DEVELOPMENT
        assert settings.error_threshold == 0.1
        assert settings.config_path == Path("/tmp/rollout.json")

    def test_env_beats_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "canary.yaml"
        path.write_text("max_percentage: 40\n")
        settings = load_settings(path, environ={"MAX_PERCENTAGE": "30"})
        assert settings.max_percentage == 30

    def test_empty_env_values_ignored(self) -> None:
        assert load_settings(environ={"ERROR_THRESHOLD": ""}) == Settings()

    def test_invalid_env_value_rejected(self) -> None:
        with pytest.raises(ValidationError):
            load_settings(environ={"CANARY_ENV": "qa"})
