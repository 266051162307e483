"""Unit tests for configuration loading."""

import pytest

from consentkeeper.config import (
    ClassifierConfig, ConfigLoader, ConsentKeeperConfig, DetectionConfig, EnforcementConfig,
    ServiceConfig, get_config,
)
from consentkeeper.errors import ConfigurationError


class TestDetectionConfig:
    """Test retry schedule of the detection config."""

    def test_defaults(self):
        config = DetectionConfig()
        assert config.initial_delay_s == 1.5
        assert config.max_attempts == 10
        assert config.observer_timeout_s == 25.0
        assert config.site_cooldown_s == 3600.0

    def test_retry_delay_grows_exponentially(self):
        config = DetectionConfig()
        assert config.retry_delay(0) == pytest.approx(0.5)
        assert config.retry_delay(1) == pytest.approx(0.75)
        assert config.retry_delay(2) == pytest.approx(1.125)

    def test_retry_delay_is_capped(self):
        config = DetectionConfig()
        assert config.retry_delay(20) == 5.0


class TestEnforcementConfig:

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            EnforcementConfig(max_deletion_attempts=0)


class TestRequestTimeout:
    """Test the service timeout against the classifier worst case."""

    def test_defaults_cover_classifier_worst_case(self):
        assert ClassifierConfig().worst_case_s == 48.0
        assert ServiceConfig().request_timeout_s >= ClassifierConfig().worst_case_s

    def test_worst_case_counts_readiness_attempts_and_waits(self):
        config = ClassifierConfig(timeout_s=10, max_retries=1, rate_limit_delay_s=3)
        assert config.worst_case_s == 33

    def test_short_timeout_warns(self, caplog):
        with caplog.at_level("WARNING", logger="consentkeeper.config"):
            ConsentKeeperConfig(service={"request_timeout_s": 5})

        assert "shorter than the classifier worst case" in caplog.text

    def test_disabled_classifier_does_not_warn(self, caplog):
        with caplog.at_level("WARNING", logger="consentkeeper.config"):
            ConsentKeeperConfig(service={"request_timeout_s": 5}, classifier={"enabled": False})

        assert "worst case" not in caplog.text


class TestConfigLoader:
    """Test YAML loading with environment overrides."""

    def test_load_base_config(self, tmp_path):
        (tmp_path / "consentkeeper.yaml").write_text(
            "detection:\n  max_attempts: 4\nenforcement:\n  attempt_cooldown_s: 12\n"
        )
        config = ConfigLoader(tmp_path).load_config("development")

        assert config.environment == "development"
        assert config.detection.max_attempts == 4
        assert config.detection.initial_delay_s == 1.5
        assert config.enforcement.attempt_cooldown_s == 12

    def test_environment_override_is_deep_merged(self, tmp_path):
        (tmp_path / "consentkeeper.yaml").write_text(
            "detection:\n  max_attempts: 4\n  debounce_s: 0.5\n"
        )
        (tmp_path / "consentkeeper.ci.yaml").write_text("detection:\n  debounce_s: 0.01\n")

        config = ConfigLoader(tmp_path).load_config("ci")

        assert config.environment == "ci"
        assert config.detection.max_attempts == 4
        assert config.detection.debounce_s == 0.01

    def test_environment_from_env_var(self, tmp_path, monkeypatch):
        (tmp_path / "consentkeeper.yaml").write_text("{}\n")
        monkeypatch.setenv("CONSENTKEEPER_ENV", "staging")

        config = ConfigLoader(tmp_path).load_config()
        assert config.environment == "staging"

    def test_missing_base_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader(tmp_path).load_config()

    def test_invalid_values(self, tmp_path):
        (tmp_path / "consentkeeper.yaml").write_text("classifier:\n  review_threshold: 3\n")
        with pytest.raises(ConfigurationError):
            ConfigLoader(tmp_path).load_config()

    def test_non_mapping_file(self, tmp_path):
        (tmp_path / "consentkeeper.yaml").write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            ConfigLoader(tmp_path).load_config()

    def test_project_test_config(self, test_config):
        assert test_config.environment == "test"
        assert test_config.detection.initial_delay_s == 0
        assert test_config.classifier.enabled is False
        assert test_config.cleanup.pass_delays_s == [0]


class TestGetConfig:

    def test_falls_back_to_defaults(self, tmp_path):
        config = get_config(config_dir=tmp_path, force_reload=True)
        assert isinstance(config, ConsentKeeperConfig)
        assert config.detection == DetectionConfig()

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("CONSENTKEEPER_CLASSIFIER_API_KEY", "sk-test")
        assert ConsentKeeperConfig().classifier.resolved_api_key() == "sk-test"
