"""
Configuration for the reliability layer.

Usage:
    from cloudrelay.config import load_config

    config = load_config()
    policy = RetryPolicy(config.retry)
"""

from cloudrelay.config.config import (
    DEFAULT_CONFIG_FILE,
    FeatureFlags,
    HealthSettings,
    RateLimitSettings,
    ReliabilityConfig,
    RetrySettings,
    SecuritySettings,
    TimingConfig,
    load_config,
)

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
]
