"""Reliability layer configuration from YAML file.

Loads from cloudrelay/config/config.yaml with all settings in one place:
- Feature flags
- Refresh timing and coordination locks
- Retry / backoff parameters
- Token refresh rate limiting
- Health thresholds
- Security (rotation, audit logging)

Environment variables ARE supported using ${VAR_NAME} and ${VAR_NAME:-default}
syntax in YAML files.

There is no module-level singleton. Load once at startup and pass the
ReliabilityConfig into the classifier, retry policy and coordinators.
"""

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from cloudrelay.errors.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

VALID_LOG_LEVELS = ["debug", "info", "warning", "error", "critical"]


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _as_bool(value: Any) -> bool:
    # bool('false') would be True, so strings need explicit parsing
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


@dataclass
class FeatureFlags:
    """Toggles for gradual rollout of reliability features."""

    proactive_refresh: bool = True
    automatic_recovery: bool = True
    background_maintenance: bool = True
    health_monitoring: bool = True
    enhanced_logging: bool = True

    def __post_init__(self):
        for name in self.__dataclass_fields__:
            setattr(self, name, _as_bool(getattr(self, name)))


@dataclass
class TimingConfig:
    # Refresh tokens expiring within this window
    proactive_refresh_minutes: int = 15
    # Proactive window used by background maintenance refreshes
    background_refresh_minutes: int = 30
    # Wait for the per-(user, provider) refresh lock
    coordination_lock_wait_seconds: int = 5

    def __post_init__(self):
        for name in self.__dataclass_fields__:
            setattr(self, name, int(getattr(self, name)))


@dataclass
class RetrySettings:
    """Backoff parameters for the retry policy engine."""

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 16.0
    max_attempts: int = 5
    quota_wait_seconds: float = 3600.0
    linear_step_seconds: float = 60.0
    linear_cap_seconds: float = 300.0
    # Honour a provider's Retry-After when it asks for a longer wait
    respect_retry_after: bool = True
    # Backoff applied between consecutive failed refreshes of one token
    refresh_backoff_base_seconds: float = 30.0
    refresh_backoff_cap_seconds: float = 300.0

    def __post_init__(self):
        self.base_delay_seconds = float(self.base_delay_seconds)
        self.max_delay_seconds = float(self.max_delay_seconds)
        self.max_attempts = int(self.max_attempts)
        self.quota_wait_seconds = float(self.quota_wait_seconds)
        self.linear_step_seconds = float(self.linear_step_seconds)
        self.linear_cap_seconds = float(self.linear_cap_seconds)
        self.respect_retry_after = _as_bool(self.respect_retry_after)
        self.refresh_backoff_base_seconds = float(self.refresh_backoff_base_seconds)
        self.refresh_backoff_cap_seconds = float(self.refresh_backoff_cap_seconds)


@dataclass
class RateLimitSettings:
    max_attempts_per_user: int = 5
    max_attempts_per_ip: int = 20
    window_seconds: int = 3600
    ip_based_limiting: bool = True

    def __post_init__(self):
        self.max_attempts_per_user = int(self.max_attempts_per_user)
        self.max_attempts_per_ip = int(self.max_attempts_per_ip)
        self.window_seconds = int(self.window_seconds)
        self.ip_based_limiting = _as_bool(self.ip_based_limiting)


@dataclass
class HealthSettings:
    # consecutive failures >= degraded_threshold -> degraded
    degraded_threshold: int = 2
    # consecutive failures >= unhealthy_threshold -> unhealthy
    unhealthy_threshold: int = 5
    token_expiring_soon_hours: int = 24

    def __post_init__(self):
        self.degraded_threshold = int(self.degraded_threshold)
        self.unhealthy_threshold = int(self.unhealthy_threshold)
        self.token_expiring_soon_hours = int(self.token_expiring_soon_hours)


@dataclass
class SecuritySettings:
    token_rotation: bool = True
    audit_logging: bool = True
    security_log_level: str = "info"

    def __post_init__(self):
        self.token_rotation = _as_bool(self.token_rotation)
        self.audit_logging = _as_bool(self.audit_logging)
        self.security_log_level = str(self.security_log_level).lower()


@dataclass
class ReliabilityConfig:
    """Complete configuration for the cloud storage reliability layer.

    Configuration structure:
        cloudrelay:
          features: {...}
          timing: {...}
          retry: {...}
          rate_limiting: {...}
          health: {...}
          security: {...}
    """

    features: FeatureFlags = field(default_factory=FeatureFlags)
    timing: TimingConfig = field(default_factory=TimingConfig)
    retry: RetrySettings = field(default_factory=RetrySettings)
    rate_limiting: RateLimitSettings = field(default_factory=RateLimitSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReliabilityConfig":
        """Build from the dict under the top-level 'cloudrelay:' key."""
        try:
            return cls(
                features=FeatureFlags(**data.get("features", {})),
                timing=TimingConfig(**data.get("timing", {})),
                retry=RetrySettings(**data.get("retry", {})),
                rate_limiting=RateLimitSettings(**data.get("rate_limiting", {})),
                health=HealthSettings(**data.get("health", {})),
                security=SecuritySettings(**data.get("security", {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}", cause=e) from e

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        """Validate numeric ranges and cross-field constraints."""
        self._validate_min("retry.base_delay_seconds", self.retry.base_delay_seconds, 0, False)
        self._validate_min("retry.max_delay_seconds", self.retry.max_delay_seconds, self.retry.base_delay_seconds, True)
        self._validate_min("retry.max_attempts", self.retry.max_attempts, 0, True)
        self._validate_min("retry.quota_wait_seconds", self.retry.quota_wait_seconds, 0, True)
        self._validate_min("retry.linear_step_seconds", self.retry.linear_step_seconds, 0, False)
        self._validate_min("retry.linear_cap_seconds", self.retry.linear_cap_seconds, self.retry.linear_step_seconds, True)

        self._validate_min("rate_limiting.max_attempts_per_user", self.rate_limiting.max_attempts_per_user, 1, True)
        self._validate_min("rate_limiting.max_attempts_per_ip", self.rate_limiting.max_attempts_per_ip, 1, True)
        self._validate_min("rate_limiting.window_seconds", self.rate_limiting.window_seconds, 0, False)

        self._validate_min("health.degraded_threshold", self.health.degraded_threshold, 1, True)
        if self.health.unhealthy_threshold < self.health.degraded_threshold:
            raise ConfigurationError(
                "health.unhealthy_threshold must be >= health.degraded_threshold, "
                f"got {self.health.unhealthy_threshold} < {self.health.degraded_threshold}"
            )

        self._validate_min("timing.proactive_refresh_minutes", self.timing.proactive_refresh_minutes, 0, True)
        self._validate_min("timing.background_refresh_minutes", self.timing.background_refresh_minutes, 0, True)
        self._validate_min("timing.coordination_lock_wait_seconds", self.timing.coordination_lock_wait_seconds, 0, True)
        self._validate_min("health.token_expiring_soon_hours", self.health.token_expiring_soon_hours, 0, True)

        if self.security.security_log_level not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"security.security_log_level must be one of {VALID_LOG_LEVELS}, "
                f"got '{self.security.security_log_level}'"
            )

    @staticmethod
    def _validate_min(key: str, value: float, min_value: float, inclusive: bool) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if inclusive and value < min_value:
            raise ConfigurationError(f"{key} must be >= {min_value}, got {value}")
        elif not inclusive and value <= min_value:
            raise ConfigurationError(f"{key} must be > {min_value}, got {value}")


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ReliabilityConfig:
    """Load reliability configuration from a YAML file.

    Args:
        config_path: YAML file (default: the packaged config.yaml)
        overrides: Nested dict deep-merged over the 'cloudrelay:' section

    Raises:
        FileNotFoundError: config_path does not exist
        ConfigurationError: missing section or invalid values
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info("Loading configuration from file", extra={"config_path": str(config_path)})
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if "cloudrelay" not in yaml_data:
        raise ConfigurationError(
            f"Invalid config file {config_path}: missing 'cloudrelay:' section"
        )

    section = yaml_data["cloudrelay"] or {}
    if overrides:
        logger.debug("Applying config overrides", extra={"override_keys": list(overrides.keys())})
        section = _deep_merge(section, overrides)

    config = ReliabilityConfig.from_dict(section)
    config.validate()
    logger.debug("Configuration validation passed")
    return config


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "FeatureFlags",
    "HealthSettings",
    "RateLimitSettings",
    "ReliabilityConfig",
    "RetrySettings",
    "SecuritySettings",
    "TimingConfig",
    "load_config",
    "load_yaml",
]
