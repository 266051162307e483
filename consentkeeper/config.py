"""Configuration management for consent handling and cookie enforcement.

This module provides pydantic configuration models for every consentkeeper
component and a YAML loader with environment-specific overrides. Values are
read from ``consentkeeper.yaml`` in the config directory and deep-merged with
``consentkeeper.<env>.yaml`` where ``<env>`` comes from ``CONSENTKEEPER_ENV``.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class DetectionConfig(BaseModel):
    """Consent prompt detection and resolution timing."""

    enabled: bool = Field(default=True, description="Enable consent prompt handling")

    initial_delay_s: float = Field(
        default=1.5,
        description="Delay before the first detection check"
    )
    retry_base_s: float = Field(
        default=0.5,
        description="Base delay of the exponential retry schedule"
    )
    retry_factor: float = Field(
        default=1.5,
        description="Backoff multiplier applied per attempt"
    )
    retry_cap_s: float = Field(
        default=5.0,
        description="Maximum delay between detection attempts"
    )
    max_attempts: int = Field(
        default=10,
        description="Maximum number of scheduled detection attempts"
    )
    debounce_s: float = Field(
        default=0.5,
        description="Debounce window for structure-change re-checks"
    )
    observer_timeout_s: float = Field(
        default=25.0,
        description="Hard timeout after which all observation stops"
    )

    # Multi-step flow pacing
    settle_delay_s: float = Field(
        default=1.0,
        description="Wait after opening a manage/customize dialog"
    )
    toggle_delay_s: float = Field(
        default=0.1,
        description="Pause between individual toggle changes"
    )
    save_delay_s: float = Field(
        default=0.5,
        description="Wait before looking for the save/confirm control"
    )

    site_cooldown_s: float = Field(
        default=3600.0,
        description="Suppress re-detection on a handled site for this long"
    )

    def retry_delay(self, attempt: int) -> float:
        """Capped exponential delay before the next attempt."""
        return min(self.retry_base_s * (self.retry_factor ** attempt), self.retry_cap_s)


class EnforcementConfig(BaseModel):
    """Cookie deletion and blocklist configuration."""

    attempt_cooldown_s: float = Field(
        default=30.0,
        description="Minimum spacing between deletion attempts for one key"
    )
    max_deletion_attempts: int = Field(
        default=3,
        description="Attempt ceiling per key until the sweep clears it"
    )
    sweep_interval_s: float = Field(
        default=300.0,
        description="How often the blocklist sweep runs"
    )
    inactivity_window_s: float = Field(
        default=300.0,
        description="Entries idle longer than this are evicted by the sweep"
    )

    @field_validator('max_deletion_attempts')
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError("max_deletion_attempts must be at least 1")
        return v


class ClassifierConfig(BaseModel):
    """External text classifier configuration."""

    enabled: bool = Field(default=True, description="Allow escalation to the external classifier")
    api_url: str = Field(
        default="https://api.groq.com/openai/v1/chat/completions",
        description="OpenAI-compatible chat completions endpoint"
    )
    model: str = Field(default="llama-3.1-8b-instant", description="Model identifier")
    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token; falls back to CONSENTKEEPER_CLASSIFIER_API_KEY"
    )
    timeout_s: float = Field(default=15.0, description="Request timeout")
    temperature: float = Field(default=0.1, description="Sampling temperature")
    max_tokens: int = Field(default=150, description="Completion token limit")
    rate_limit_delay_s: float = Field(
        default=3.0,
        description="Wait before retrying a rate-limited request"
    )
    max_retries: int = Field(default=1, description="Retries after a rate-limit response")
    value_sample_chars: int = Field(
        default=100,
        description="Characters of the cookie value included in the prompt"
    )
    review_threshold: float = Field(
        default=0.8,
        description="Results below this confidence go to the review queue"
    )

    @field_validator('review_threshold')
    @classmethod
    def validate_threshold(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("review_threshold must be between 0 and 1")
        return v

    def resolved_api_key(self) -> Optional[str]:
        return self.api_key or os.getenv('CONSENTKEEPER_CLASSIFIER_API_KEY')

    @property
    def worst_case_s(self) -> float:
        """Longest a single classification can take: readiness check, every
        rate-limited attempt and the waits between them."""
        requests = 1 + (self.max_retries + 1)
        return requests * self.timeout_s + self.max_retries * self.rate_limit_delay_s


class ManifestConfig(BaseModel):
    """Declared cookie manifest lookup."""

    enabled: bool = Field(default=True, description="Look for declared cookie manifests")
    bundled_dir: Optional[Path] = Field(
        default=None,
        description="Directory of bundled <domain>.json manifests"
    )
    well_known_paths: List[str] = Field(
        default_factory=lambda: ["/.well-known/cookies.json", "/cookies.json"],
        description="Site paths tried for a manifest, in order"
    )
    timeout_s: float = Field(default=5.0, description="Manifest fetch timeout")


class CleanupConfig(BaseModel):
    """Cookie cleanup scheduling."""

    enabled: bool = Field(default=True, description="Run cookie cleanup passes")
    pass_delays_s: List[float] = Field(
        default_factory=lambda: [4.0, 8.0, 12.0],
        description="Offsets from page load at which cleanup passes run"
    )
    monitor_interval_s: float = Field(
        default=5.0,
        description="Interval of the known-tracker monitor"
    )
    monitor_ticks: int = Field(
        default=6,
        description="Number of known-tracker monitor ticks"
    )


class StorageConfig(BaseModel):
    """Persisted shared state."""

    state_path: Optional[Path] = Field(
        default=None,
        description="JSON state file; in-memory when unset"
    )
    max_activity_entries: int = Field(
        default=1000,
        description="Activity log cap per browsing mode"
    )


class ServiceConfig(BaseModel):
    """Background service messaging."""

    request_timeout_s: float = Field(
        default=60.0,
        description="Page-side timeout for a single service request; must cover a "
                    "cold-start classification including its rate-limit retry"
    )


class ConsentKeeperConfig(BaseModel):
    """Complete consentkeeper configuration."""

    environment: str = Field(default="development", description="Environment name")

    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)

    @model_validator(mode='after')
    def validate_request_timeout(self):
        """Warn when a classify request can time out before the classifier answers."""
        if self.classifier.enabled and self.service.request_timeout_s < self.classifier.worst_case_s:
            logger.warning(
                f"service.request_timeout_s ({self.service.request_timeout_s}s) is shorter than the "
                f"classifier worst case ({self.classifier.worst_case_s}s); rate-limit retries "
                f"may be cut off and answered with the fallback classification"
            )
        return self


class ConfigLoader:
    """Loads consentkeeper configuration from YAML files with environment support."""

    BASE_FILE = "consentkeeper.yaml"

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize config loader.

        Args:
            config_dir: Directory containing config files. Defaults to project config/ dir.
        """
        if config_dir is None:
            project_root = Path(__file__).parent.parent
            config_dir = project_root / "config"

        self.config_dir = Path(config_dir)
        self.environment = os.getenv('CONSENTKEEPER_ENV', 'development')

    def load_config(self, environment: Optional[str] = None) -> ConsentKeeperConfig:
        """Load configuration for the specified environment.

        Args:
            environment: Environment name. Defaults to CONSENTKEEPER_ENV or 'development'.

        Returns:
            Loaded and validated configuration.

        Raises:
            FileNotFoundError: If the base config file is not found.
            ConfigurationError: If configuration is invalid.
        """
        env = environment or self.environment

        base_config_path = self.config_dir / self.BASE_FILE
        if not base_config_path.exists():
            raise FileNotFoundError(f"Base config not found: {base_config_path}")

        config_data = self._read_yaml(base_config_path)

        env_config_path = self.config_dir / f"consentkeeper.{env}.yaml"
        if env_config_path.exists():
            logger.info(f"Loading environment config: {env_config_path}")
            config_data = self._deep_merge(config_data, self._read_yaml(env_config_path))

        config_data['environment'] = env

        try:
            config = ConsentKeeperConfig(**config_data)
        except Exception as e:
            raise ConfigurationError(f"Invalid consentkeeper configuration: {e}")

        logger.info(f"Loaded consentkeeper configuration for environment: {env}")
        return config

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {path}")
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def create_default_config(self) -> ConsentKeeperConfig:
        return ConsentKeeperConfig(environment=self.environment)


_config_cache: Optional[ConsentKeeperConfig] = None


def get_config(
    environment: Optional[str] = None,
    config_dir: Optional[Path] = None,
    force_reload: bool = False
) -> ConsentKeeperConfig:
    """Get consentkeeper configuration for the specified environment.

    Args:
        environment: Environment name. If None, uses CONSENTKEEPER_ENV or 'development'.
        config_dir: Directory to load from. Defaults to the project config/ dir.
        force_reload: Force reload from files, ignoring cache.

    Returns:
        Configuration instance.
    """
    global _config_cache

    if force_reload or config_dir is not None or _config_cache is None:
        loader = ConfigLoader(config_dir)
        try:
            _config_cache = loader.load_config(environment)
        except FileNotFoundError:
            logger.warning("consentkeeper config file not found, using default configuration")
            _config_cache = loader.create_default_config()
        except Exception as e:
            logger.error(f"Failed to load consentkeeper config: {e}")
            logger.warning("Using default configuration")
            _config_cache = loader.create_default_config()

    return _config_cache
