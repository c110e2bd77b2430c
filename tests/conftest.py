"""Shared pytest fixtures for prbuilder tests.

This module provides common fixtures for:
- Temporary config files
- Mock time (via freezegun)
- Fake GitHub client, reporters and build triggers
- Sample GitHub API responses
"""

from __future__ import annotations

import logging
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
import structlog
import yaml

from prbuilder.config.schema import RepositoryConfig
from prbuilder.watcher import RepositoryWatcher
from tests.fakes import OWNER, REPO, FakeGitHubClient, RecordingBuildTrigger, RecordingReporter

if TYPE_CHECKING:
    from collections.abc import Callable, Generator


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    """Undo configure_logging() calls made by CLI tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers and type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def frozen_time() -> datetime:
    """Return a fixed datetime for deterministic tests.

    Use with freezegun's freeze_time decorator:

        @freeze_time("2026-01-10T15:30:00Z")
        def test_something(frozen_time):
            assert datetime.now(UTC) == frozen_time
    """
    return datetime(2026, 1, 10, 15, 30, 0, tzinfo=UTC)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory (cleaned up after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def minimal_config() -> dict[str, Any]:
    """Return a minimal valid configuration dictionary."""
    return {
        "version": 1,
        "repositories": [],
    }


@pytest.fixture
def sample_config() -> dict[str, Any]:
    """Return a sample configuration with one watched repository."""
    return {
        "version": 1,
        "github": {
            "poll_interval": 60,
        },
        "webhook": {
            "signature_algorithm": "sha1",
        },
        "status": {
            "reporter": "commit_status",
            "context": "default",
        },
        "build": {
            "type": "console",
        },
        "repositories": [
            {
                "owner": OWNER,
                "name": REPO,
                "secrets": ["s3cret"],
            }
        ],
    }


@pytest.fixture
def write_config(temp_dir: Path) -> Callable[..., Path]:
    """Factory fixture to write config files.

    Args:
        config: Configuration dictionary
        filename: Name of the config file (default: config.yaml)

    Returns:
        Path to the written config file
    """

    def _write(config: dict[str, Any], filename: str = "config.yaml") -> Path:
        path = temp_dir / filename
        with path.open("w") as f:
            yaml.safe_dump(config, f)
        return path

    return _write


@pytest.fixture
def repo_config() -> RepositoryConfig:
    """Return the configuration of the watched test repository."""
    return RepositoryConfig(owner=OWNER, name=REPO, secrets=["s3cret"])


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def fake_client() -> FakeGitHubClient:
    """Return a scriptable GitHub client with a healthy rate limit."""
    return FakeGitHubClient()


@pytest.fixture
def reporter() -> RecordingReporter:
    """Return a status reporter that records reports."""
    return RecordingReporter()


@pytest.fixture
def build_trigger() -> RecordingBuildTrigger:
    """Return a build trigger that records causes."""
    return RecordingBuildTrigger()


@pytest.fixture
def make_watcher(
    fake_client: FakeGitHubClient,
    repo_config: RepositoryConfig,
    reporter: RecordingReporter,
    build_trigger: RecordingBuildTrigger,
) -> Callable[..., RepositoryWatcher]:
    """Factory fixture for watchers wired to the fakes.

    Keyword arguments override the repository configuration, e.g.
    make_watcher(auto_build=False).
    """

    def _make(**overrides: Any) -> RepositoryWatcher:
        repo = repo_config.model_copy(update=overrides) if overrides else repo_config
        return RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo,
            reporters=[reporter],
            build_triggers=[build_trigger],
        )

    return _make


# ============================================================================
# GitHub API Response Fixtures
# ============================================================================


@pytest.fixture
def github_rate_limit_response() -> dict[str, Any]:
    """Return a sample GitHub rate limit API response."""
    return {
        "resources": {
            "core": {
                "limit": 5000,
                "remaining": 4999,
                "reset": 1704899400,
                "used": 1,
            },
            "search": {
                "limit": 30,
                "remaining": 30,
                "reset": 1704895860,
                "used": 0,
            },
        },
        "rate": {
            "limit": 5000,
            "remaining": 4999,
            "reset": 1704899400,
            "used": 1,
        },
    }


@pytest.fixture
def github_repository_response() -> dict[str, Any]:
    """Return a sample GitHub repository API response."""
    return {
        "id": 1296269,
        "name": REPO,
        "full_name": f"{OWNER}/{REPO}",
        "owner": {"login": OWNER, "id": 1},
        "private": False,
        "default_branch": "main",
        "html_url": f"https://github.com/{OWNER}/{REPO}",
    }


@pytest.fixture
def github_pr_response() -> dict[str, Any]:
    """Return a sample GitHub pull request API response."""
    return {
        "id": 100,
        "number": 123,
        "title": "Add new feature",
        "state": "open",
        "draft": False,
        "user": {
            "login": "contributor",
            "id": 3,
        },
        "head": {
            "ref": "feature",
            "sha": "6dcb09b5b57875f334f61aebed695e2e4193db5e",
        },
        "base": {
            "ref": "main",
            "sha": "e5bd3914e2e596debea16f433f57875b5b90bcd6",
        },
        "created_at": "2026-01-08T09:00:00Z",
        "updated_at": "2026-01-10T14:00:00Z",
        "body": "This PR adds...",
        "html_url": f"https://github.com/{OWNER}/{REPO}/pull/123",
        "merged": False,
        "mergeable": True,
    }


@pytest.fixture
def github_commit_response() -> dict[str, Any]:
    """Return a sample entry of the pull request commits API."""
    return {
        "sha": "6dcb09b5b57875f334f61aebed695e2e4193db5e",
        "commit": {
            "author": {
                "name": "Monalisa Octocat",
                "email": "mona@github.com",
                "date": "2026-01-10T13:55:00Z",
            },
            "message": "Fix all the bugs",
        },
        "author": {"login": "octocat", "id": 1},
    }


@pytest.fixture
def github_comment_response() -> dict[str, Any]:
    """Return a sample issue comment API response."""
    return {
        "id": 1,
        "body": "test this please",
        "user": {"login": "maintainer", "id": 5},
        "created_at": "2026-01-10T14:30:00Z",
        "updated_at": "2026-01-10T14:30:00Z",
    }
