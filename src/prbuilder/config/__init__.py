"""Configuration loading, validation, and schema definitions.

Usage:
    from prbuilder.config import load_config

    config = load_config()  # Auto-discovers config file
    config = load_config("/path/to/prbuilder.yaml")  # Explicit path
"""

from prbuilder.config.loader import (
    ConfigError,
    ConfigNotFoundError,
    ConfigValidationError,
    EnvironmentVariableError,
    discover_config_path,
    load_config,
    parse_config,
)
from prbuilder.config.schema import (
    BodyChangeRule,
    BuildConfig,
    BuildTriggerType,
    Config,
    GitHubConfig,
    ReporterType,
    RepositoryConfig,
    SignatureAlgorithm,
    StatusConfig,
    WebhookConfig,
)

__all__ = [
    "BodyChangeRule",
    "BuildConfig",
    "BuildTriggerType",
    "Config",
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "EnvironmentVariableError",
    "GitHubConfig",
    "ReporterType",
    "RepositoryConfig",
    "SignatureAlgorithm",
    "StatusConfig",
    "WebhookConfig",
    "discover_config_path",
    "load_config",
    "parse_config",
]
