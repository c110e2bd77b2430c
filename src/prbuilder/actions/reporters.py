"""Commit status reporters.

A reporter publishes the state of a build against a commit. The set is
closed and selected from configuration:
- CommitStatusReporter: GitHub commit statuses API
- LogStatusReporter: log line only, for dry runs and tests of wiring
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from prbuilder.config.schema import ReporterType

if TYPE_CHECKING:
    from prbuilder.config.schema import Config, RepositoryConfig
    from prbuilder.github.client import GitHubClient
    from prbuilder.github.models import CommitState

logger = logging.getLogger(__name__)


class StatusReporter(Protocol):
    """Publishes a commit status. Failures are raised to the caller."""

    name: str

    async def report(self, sha: str, state: CommitState, description: str) -> None:
        """Report a status for a commit."""
        ...


class CommitStatusReporter:
    """Reporter creating commit statuses through the GitHub API."""

    name = "commit_status"

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        repository: str,
        *,
        context: str = "default",
        target_url: str | None = None,
    ) -> None:
        """Initialize commit status reporter.

        Args:
            client: GitHub API client.
            owner: Repository owner.
            repository: Repository name.
            context: Status context label.
            target_url: Link attached to each status, None for no link.
        """
        self._client = client
        self._owner = owner
        self._repository = repository
        self._context = context
        self._target_url = target_url

    async def report(self, sha: str, state: CommitState, description: str) -> None:
        """Create a commit status on GitHub."""
        await self._client.create_commit_status(
            self._owner,
            self._repository,
            sha,
            state,
            self._target_url,
            description,
            self._context,
        )


class LogStatusReporter:
    """Reporter that only logs the status it would publish."""

    name = "log"

    def __init__(self, repository: str) -> None:
        self._repository = repository

    async def report(self, sha: str, state: CommitState, description: str) -> None:
        """Log the status."""
        logger.info(
            "Status for %s@%s: %s - %s",
            self._repository,
            sha[:7],
            state.value,
            description,
        )


def build_reporters(
    config: Config,
    client: GitHubClient,
    repo: RepositoryConfig,
) -> list[StatusReporter]:
    """Create the reporters configured for a repository.

    Args:
        config: Loaded configuration.
        client: GitHub API client shared by all watchers.
        repo: Repository the reporters publish to.

    Returns:
        Reporter list, empty when reporting is disabled.
    """
    reporter_type = config.status.reporter
    if reporter_type == ReporterType.COMMIT_STATUS:
        return [
            CommitStatusReporter(
                client,
                repo.owner,
                repo.name,
                context=config.status.context,
            )
        ]
    if reporter_type == ReporterType.LOG:
        return [LogStatusReporter(repo.full_name)]
    return []
