"""Configuration file loading and environment variable expansion.

Config discovery order:
1. --config flag
2. $PRBUILDER_CONFIG
3. ./prbuilder.yaml
4. $XDG_CONFIG_HOME/prbuilder/config.yaml (~/.config/prbuilder/config.yaml)

Values may reference environment variables with ${VAR}; webhook secrets
are normally supplied this way.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from prbuilder.config.schema import Config
from prbuilder.paths import get_default_config_path, get_local_config_path

CONFIG_ENV_VAR = "PRBUILDER_CONFIG"


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        """Initialize ConfigError with message and optional path.

        Args:
            message: Error description
            path: Path to the config file that caused the error
        """
        self.path = path
        super().__init__(message)


class ConfigNotFoundError(ConfigError):
    """Raised when no config file can be found."""


class ConfigValidationError(ConfigError):
    """Raised when config validation fails."""

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.validation_errors = validation_errors or []
        super().__init__(message, path)


class EnvironmentVariableError(ConfigError):
    """Raised when a referenced environment variable is not set."""

    def __init__(self, var_name: str, path: Path | None = None) -> None:
        self.var_name = var_name
        message = (
            f"Environment variable '{var_name}' is not set. "
            f"Set it or update your config to use a different value."
        )
        super().__init__(message, path)


# ${VAR_NAME} references
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def expand_env_vars(value: Any, *, strict: bool = True) -> Any:
    """Expand ${VAR_NAME} references in strings, lists and dicts.

    Args:
        value: The value to expand.
        strict: If True, raise for undefined variables; otherwise leave
                the reference unchanged.

    Returns:
        The value with environment variables expanded.

    Raises:
        EnvironmentVariableError: If strict=True and a variable is not set.

    Examples:
        >>> os.environ["HOOK_SECRET"] = "s3cret"
        >>> expand_env_vars({"secrets": ["${HOOK_SECRET}"]})
        {'secrets': ['s3cret']}
    """
    if isinstance(value, str):
        return _expand_string(value, strict=strict)
    if isinstance(value, dict):
        return {k: expand_env_vars(v, strict=strict) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item, strict=strict) for item in value]
    return value


def _expand_string(s: str, *, strict: bool) -> str:
    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            if strict:
                raise EnvironmentVariableError(var_name)
            return match.group(0)
        return value

    return ENV_VAR_PATTERN.sub(replace_match, s)


def discover_config_path(explicit_path: str | Path | None = None) -> Path:
    """Discover the config file path using priority order.

    Args:
        explicit_path: Optional explicit path from CLI --config flag

    Returns:
        Path to the config file

    Raises:
        ConfigNotFoundError: If no config file is found at any location
    """
    if explicit_path:
        path = Path(explicit_path).expanduser().resolve()
        if path.exists():
            return path
        msg = f"Config file not found: {path}"
        raise ConfigNotFoundError(msg, path)

    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = Path(env_path).expanduser().resolve()
        if path.exists():
            return path
        candidates.append(path)

    for path in (get_local_config_path(), get_default_config_path()):
        if path.exists():
            return path
        candidates.append(path)

    locations = "\n  - ".join(str(p) for p in candidates)
    msg = f"No config file found. Searched locations:\n  - {locations}"
    raise ConfigNotFoundError(msg)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML mapping.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"Cannot read config file: {e}"
        raise ConfigError(msg, path) from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML syntax: {e}"
        raise ConfigError(msg, path) from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        msg = "Config file must contain a YAML mapping (dictionary), not a list or scalar"
        raise ConfigError(msg, path)

    return data


def parse_config(raw_config: dict[str, Any], path: Path | None = None) -> Config:
    """Validate an already-loaded config mapping.

    Raises:
        ConfigValidationError: If the mapping fails schema validation
    """
    try:
        return Config.model_validate(raw_config)
    except ValidationError as e:
        errors = e.errors()
        error_msgs = [
            f"  - {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in errors
        ]
        message = f"Config validation failed ({len(errors)} error(s)):\n" + "\n".join(error_msgs)
        raise ConfigValidationError(
            message, path=path, validation_errors=[dict(err) for err in errors]
        ) from e


def load_config(
    path: str | Path | None = None,
    *,
    expand_env: bool = True,
) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        path: Optional explicit path to config file. If None, uses discovery.
        expand_env: Whether to expand ${VAR} environment variable references.

    Returns:
        Validated Config object

    Raises:
        ConfigNotFoundError: If no config file is found
        ConfigError: If the file cannot be read or parsed
        EnvironmentVariableError: If a required env var is not set
        ConfigValidationError: If the config fails schema validation
    """
    config_path = discover_config_path(path)
    raw_config = load_yaml(config_path)

    if expand_env:
        try:
            raw_config = expand_env_vars(raw_config, strict=True)
        except EnvironmentVariableError as e:
            e.path = config_path
            raise

    return parse_config(raw_config, config_path)
