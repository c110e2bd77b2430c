"""Pull request reconciliation for one repository.

The RepositoryWatcher compares the open pull requests reported by GitHub
with its cache of records and decides which ones need a build:

- A rate limit gate runs first; a closed gate ends the cycle without
  further API calls
- Each pull request is diffed, evaluated by the trigger policy and
  committed to the cache with compare-and-set, in isolation from the
  others. Fetching trigger inputs runs under a wall-clock bound
- Triggered pull requests get a pending commit status and a build;
  each side effect has its own bound
- Pull requests missing from the open listing are evicted

check() is driven by the polling loop, check_one() by webhook deliveries.
Both may run concurrently against the same watcher.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from prbuilder.actions.builds import BuildCause
from prbuilder.github.client import GitHubAPIError, RateLimitError
from prbuilder.github.models import CommitState
from prbuilder.github.ratelimit import RateLimitGate
from prbuilder.logging import (
    log_build_triggered,
    log_cycle_complete,
    log_pr_classified,
    log_pr_failure,
    log_status_reported,
)
from prbuilder.state import Classification, PullRequestCache, PullRequestRecord, diff
from prbuilder.triggers import DefaultTriggerPolicy, TriggerContext

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from prbuilder.actions.builds import BuildTrigger
    from prbuilder.actions.reporters import StatusReporter
    from prbuilder.config.schema import RepositoryConfig
    from prbuilder.github.client import GitHubClient
    from prbuilder.github.models import (
        CommentRef,
        CommitRef,
        PullRequestRef,
        RateLimitSnapshot,
        RepositoryInfo,
    )
    from prbuilder.state import ChangeSet
    from prbuilder.triggers import TriggerDecision, TriggerPolicy

logger = logging.getLogger(__name__)

MERGED_DESCRIPTION = "Build triggered. sha1 is merged."
ORIGINAL_COMMIT_DESCRIPTION = "Build triggered. sha1 is original commit."

# Responses meaning the repository itself is misconfigured
_CONFIGURATION_STATUSES = frozenset({401, 403, 404})


class CycleOutcome(str, Enum):
    """How a reconciliation cycle ended."""

    COMPLETED = "completed"
    RATE_LIMITED = "rate_limited"
    EMPTY = "empty"
    FAILED = "failed"


class RemoteFetchFailure(Exception):
    """Raised when trigger inputs for one pull request cannot be fetched."""

    def __init__(self, message: str, *, pr_number: int, stage: str) -> None:
        super().__init__(message)
        self.pr_number = pr_number
        self.stage = stage


class ConfigurationError(Exception):
    """Raised when the configured repository cannot be resolved."""

    def __init__(
        self,
        message: str,
        *,
        repository: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.repository = repository
        self.status_code = status_code


@dataclass(frozen=True)
class PullRequestFailure:
    """An isolated failure of one pull request within a cycle."""

    number: int
    stage: str
    error: str


@dataclass
class CycleReport:
    """Summary of one check() or check_one() call."""

    repository: str
    outcome: CycleOutcome = CycleOutcome.COMPLETED
    counts: dict[str, int] = field(
        default_factory=lambda: {c.value: 0 for c in Classification},
    )
    triggered: list[int] = field(default_factory=list)
    evicted: list[int] = field(default_factory=list)
    failures: list[PullRequestFailure] = field(default_factory=list)
    rate_limit: RateLimitSnapshot | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        """Check if the cycle finished without any failure."""
        return self.outcome != CycleOutcome.FAILED and not self.failures

    def count(self, classification: Classification, amount: int = 1) -> None:
        """Add to the counter of a classification."""
        self.counts[classification.value] += amount


class RepositoryWatcher:
    """Reconciles the open pull requests of one repository.

    The watcher owns its cache; callers interact through check() and
    check_one() only. Collaborators are injected so tests can replace the
    GitHub client, reporters and build triggers with fakes.
    """

    def __init__(
        self,
        client: GitHubClient,
        repo: RepositoryConfig,
        *,
        policy: TriggerPolicy | None = None,
        reporters: Sequence[StatusReporter] = (),
        build_triggers: Sequence[BuildTrigger] = (),
        cache: PullRequestCache | None = None,
    ) -> None:
        """Initialize repository watcher.

        Args:
            client: GitHub API client.
            repo: Repository configuration.
            policy: Trigger policy, defaults to one built from `repo`.
            reporters: Commit status reporters, called in order.
            build_triggers: Build triggers, called in order.
            cache: Record cache (a fresh one if None).
        """
        self._client = client
        self._repo = repo
        self._policy: TriggerPolicy = policy or DefaultTriggerPolicy.from_config(repo)
        self._reporters = list(reporters)
        self._build_triggers = list(build_triggers)
        self._cache = cache if cache is not None else PullRequestCache()
        self._repository: RepositoryInfo | None = None

    @property
    def full_name(self) -> str:
        """Get the owner/name of the watched repository."""
        return self._repo.full_name

    @property
    def config(self) -> RepositoryConfig:
        """Get the repository configuration."""
        return self._repo

    @property
    def cache(self) -> PullRequestCache:
        """Get the record cache."""
        return self._cache

    @property
    def repository(self) -> RepositoryInfo | None:
        """Get the resolved repository handle, None before the first cycle."""
        return self._repository

    async def check(self) -> CycleReport:
        """Reconcile every open pull request.

        Returns:
            CycleReport describing what happened.

        Raises:
            ConfigurationError: If the repository cannot be resolved.
        """
        started = time.monotonic()
        report = CycleReport(repository=self.full_name)

        if not await self._open_gate(report):
            return self._finish(report, started)

        try:
            await self._resolve_repository()
            refs = await self._client.list_open_pull_requests(self._repo.owner, self._repo.name)
        except (GitHubAPIError, httpx.HTTPError) as e:
            logger.error("Failed to list pull requests of %s: %s", self.full_name, e)
            report.outcome = CycleOutcome.FAILED
            return self._finish(report, started)

        if not refs:
            report.outcome = CycleOutcome.EMPTY

        for ref in refs:
            await self._reconcile_isolated(ref, report)

        report.evicted = self._cache.retain(ref.number for ref in refs)
        report.count(Classification.CLOSED, len(report.evicted))
        return self._finish(report, started)

    async def check_one(self, number: int) -> CycleReport:
        """Reconcile a single pull request, as announced by a webhook.

        Args:
            number: Pull request number.

        Returns:
            CycleReport for that pull request only.

        Raises:
            ConfigurationError: If the repository cannot be resolved.
        """
        started = time.monotonic()
        report = CycleReport(repository=self.full_name)

        if not await self._open_gate(report):
            return self._finish(report, started)

        try:
            await self._resolve_repository()
        except (GitHubAPIError, httpx.HTTPError) as e:
            logger.error("Failed to resolve %s: %s", self.full_name, e)
            report.outcome = CycleOutcome.FAILED
            return self._finish(report, started)

        try:
            ref = await self._client.get_pull_request(self._repo.owner, self._repo.name, number)
        except (GitHubAPIError, httpx.HTTPError) as e:
            self._record_failure(report, number, "fetch", e)
            return self._finish(report, started)

        if not ref.is_open:
            if self._cache.evict(number) is not None:
                report.evicted.append(number)
                report.count(Classification.CLOSED)
            return self._finish(report, started)

        await self._reconcile_isolated(ref, report)
        return self._finish(report, started)

    async def _open_gate(self, report: CycleReport) -> bool:
        # A fresh gate per cycle keeps snapshots cycle-local
        gate = RateLimitGate(self._client)
        allowed = await gate.allow()
        report.rate_limit = gate.last_snapshot
        if not allowed:
            report.outcome = CycleOutcome.RATE_LIMITED
        return allowed

    async def _resolve_repository(self) -> RepositoryInfo:
        if self._repository is not None:
            return self._repository
        try:
            info = await self._client.get_repository(self._repo.owner, self._repo.name)
        except RateLimitError:
            raise
        except GitHubAPIError as e:
            if e.status_code in _CONFIGURATION_STATUSES:
                raise ConfigurationError(
                    f"Cannot access repository {self.full_name}: {e}",
                    repository=self.full_name,
                    status_code=e.status_code,
                ) from e
            raise
        self._repository = info
        return info

    async def _reconcile_isolated(self, ref: PullRequestRef, report: CycleReport) -> None:
        try:
            await self._reconcile(ref, report)
        except RemoteFetchFailure as e:
            self._record_failure(report, ref.number, e.stage, e)
        except TimeoutError as e:
            self._record_failure(report, ref.number, "timeout", e)
        except Exception as e:
            logger.exception("Unexpected error reconciling %s#%d", self.full_name, ref.number)
            self._record_failure(report, ref.number, "internal", e)

    async def _reconcile(self, ref: PullRequestRef, report: CycleReport) -> None:
        number = ref.number
        old = self._cache.get(number)
        new = PullRequestRecord.from_ref(ref, self._repo.owner, self._repo.name, previous=old)
        changes = diff(old, new)
        report.count(changes.classification)
        log_pr_classified(self.full_name, number, changes.classification.value, changes.describe())

        if not changes.needs_evaluation:
            return

        if self._repo.disabled:
            self._cache.compare_and_set(number, old, new)
            return

        # Only the read-only phase is bounded; side effects run after the commit
        new, decision = await asyncio.wait_for(
            self._evaluate(ref, old, new, changes),
            timeout=self._repo.pr_timeout,
        )

        if not self._cache.compare_and_set(number, old, new):
            logger.info(
                "%s#%d was updated by a concurrent cycle, not triggering",
                self.full_name,
                number,
            )
            return

        if not decision.should_build:
            logger.debug("%s#%d: %s", self.full_name, number, decision.explanation)
            return

        try:
            triggered = await self._trigger(ref, new, old, decision, report)
        except (asyncio.CancelledError, Exception):
            # Builds start synchronously after the last await, so none has started
            self._cache.compare_and_set(number, new, old)
            raise
        if triggered:
            report.triggered.append(number)

    async def _evaluate(
        self,
        ref: PullRequestRef,
        old: PullRequestRecord | None,
        new: PullRequestRecord,
        changes: ChangeSet,
    ) -> tuple[PullRequestRecord, TriggerDecision]:
        """Fetch trigger inputs and run the policy without touching the cache."""
        number = ref.number
        commits: tuple[CommitRef, ...] = ()
        if changes.classification == Classification.NEW or changes.head_changed:
            commits = await self._fetch_commits(number)
            if commits and commits[-1].author_email:
                new = new.with_updates(author_email=commits[-1].author_email)

        comments: tuple[CommentRef, ...] = ()
        if self._policy.has_trigger_phrase:
            # On first sighting the fetch only seeds last_comment_at
            since = (old.last_comment_at or old.updated_at) if old is not None else None
            comments = await self._fetch_comments(number, since)
            newest = _newest_comment_at(comments, new.last_comment_at)
            if newest != new.last_comment_at:
                new = new.with_updates(last_comment_at=newest)

        decision = self._policy.evaluate(
            TriggerContext(
                ref=ref,
                record=new,
                previous=old,
                changes=changes,
                commits=commits,
                comments=comments,
            )
        )
        return new, decision

    async def _fetch_commits(self, number: int) -> tuple[CommitRef, ...]:
        try:
            return tuple(
                [
                    commit
                    async for commit in self._client.list_commits(
                        self._repo.owner, self._repo.name, number
                    )
                ]
            )
        except (GitHubAPIError, httpx.HTTPError) as e:
            raise RemoteFetchFailure(
                f"Failed to list commits: {e}", pr_number=number, stage="commits"
            ) from e

    async def _fetch_comments(
        self,
        number: int,
        since: datetime | None,
    ) -> tuple[CommentRef, ...]:
        try:
            return tuple(
                [
                    comment
                    async for comment in self._client.list_comments(
                        self._repo.owner, self._repo.name, number, since=since
                    )
                ]
            )
        except (GitHubAPIError, httpx.HTTPError) as e:
            raise RemoteFetchFailure(
                f"Failed to list comments: {e}", pr_number=number, stage="comments"
            ) from e

    async def _resolve_mergeable(self, ref: PullRequestRef) -> bool | None:
        if ref.mergeable is not None:
            return ref.mergeable
        try:
            detail = await asyncio.wait_for(
                self._client.get_pull_request(self._repo.owner, self._repo.name, ref.number),
                timeout=self._repo.pr_timeout,
            )
        except (GitHubAPIError, httpx.HTTPError, TimeoutError) as e:
            logger.info(
                "Mergeability of %s#%d unknown: %s",
                self.full_name,
                ref.number,
                str(e) or type(e).__name__,
            )
            return None
        return detail.mergeable

    async def _trigger(
        self,
        ref: PullRequestRef,
        record: PullRequestRecord,
        old: PullRequestRecord | None,
        decision: TriggerDecision,
        report: CycleReport,
    ) -> bool:
        """Report pending status and start builds.

        Returns:
            True unless every build trigger failed to start, in which case
            the cache entry has been rolled back so the next cycle retries.
        """
        reason = decision.reason.value if decision.reason else "unknown"
        mergeable = await self._resolve_mergeable(ref)
        description = MERGED_DESCRIPTION if mergeable else ORIGINAL_COMMIT_DESCRIPTION

        for reporter in self._reporters:
            try:
                await asyncio.wait_for(
                    reporter.report(record.head_sha, CommitState.PENDING, description),
                    timeout=self._repo.pr_timeout,
                )
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.warning(
                    "Status report failed for %s#%d: %s", self.full_name, ref.number, message
                )
                log_status_reported(
                    self.full_name,
                    record.head_sha,
                    CommitState.PENDING.value,
                    description,
                    reporter.name,
                    error=message,
                )
            else:
                log_status_reported(
                    self.full_name,
                    record.head_sha,
                    CommitState.PENDING.value,
                    description,
                    reporter.name,
                )

        cause = BuildCause(
            repository=self.full_name,
            pr_number=record.number,
            head_sha=record.head_sha,
            reason=reason,
            base_ref=record.target.base_ref,
            head_ref=record.target.head_ref,
            author_login=record.author_login,
            author_email=record.author_email,
            title=record.title,
            html_url=record.html_url,
            mergeable=mergeable,
        )

        started = 0
        errors: list[str] = []
        for trigger in self._build_triggers:
            try:
                trigger.start(cause)
            except Exception as e:
                errors.append(str(e))
                log_build_triggered(
                    self.full_name,
                    record.number,
                    record.head_sha,
                    reason,
                    trigger.name,
                    error=str(e),
                )
            else:
                started += 1
                log_build_triggered(
                    self.full_name,
                    record.number,
                    record.head_sha,
                    reason,
                    trigger.name,
                )

        if errors and started == 0:
            self._cache.compare_and_set(record.number, record, old)
            report.failures.append(
                PullRequestFailure(number=record.number, stage="build", error="; ".join(errors))
            )
            return False
        return True

    def _record_failure(
        self,
        report: CycleReport,
        number: int,
        stage: str,
        error: BaseException,
    ) -> None:
        message = str(error) or type(error).__name__
        report.failures.append(PullRequestFailure(number=number, stage=stage, error=message))
        log_pr_failure(self.full_name, number, stage, message)

    def _finish(self, report: CycleReport, started: float) -> CycleReport:
        report.duration_ms = (time.monotonic() - started) * 1000
        log_cycle_complete(
            repository=report.repository,
            outcome=report.outcome.value,
            counts=report.counts,
            triggered=report.triggered,
            evicted=report.evicted,
            failures=len(report.failures),
            duration_ms=report.duration_ms,
        )
        return report


def _newest_comment_at(
    comments: Sequence[CommentRef],
    current: datetime | None,
) -> datetime | None:
    newest = current
    for comment in comments:
        if newest is None or comment.updated_at > newest:
            newest = comment.updated_at
    return newest
