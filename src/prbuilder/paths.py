"""XDG Base Directory Specification path utilities.

prbuilder keeps no on-disk state, so only the configuration location is
resolved here ($XDG_CONFIG_HOME/prbuilder, default: ~/.config/prbuilder).

Reference: https://specifications.freedesktop.org/basedir-spec/latest/
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

XDG_CONFIG_HOME = "XDG_CONFIG_HOME"

# Application name used in XDG directories
APP_NAME = "prbuilder"

# Name of the per-project config file looked up in the working directory
LOCAL_CONFIG_NAME = "prbuilder.yaml"


def get_config_home() -> Path:
    """Get the XDG config home directory.

    Returns:
        Path from $XDG_CONFIG_HOME or ~/.config if not set
    """
    xdg_config = os.environ.get(XDG_CONFIG_HOME)
    if xdg_config:
        return Path(xdg_config).expanduser()
    return Path.home() / ".config"


def get_config_dir() -> Path:
    """Get the application config directory."""
    return get_config_home() / APP_NAME


def get_default_config_path() -> Path:
    """Get the default config file path.

    Returns:
        Path to config.yaml in the config directory
    """
    return get_config_dir() / "config.yaml"


def get_local_config_path() -> Path:
    """Get the config path in the current working directory."""
    return Path.cwd() / LOCAL_CONFIG_NAME
