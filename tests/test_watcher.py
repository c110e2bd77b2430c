"""Tests for RepositoryWatcher reconciliation cycles."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import httpx
import pytest

from prbuilder.actions.reporters import CommitStatusReporter
from prbuilder.github.client import GitHubAPIError, GitHubClient, TransientError
from prbuilder.github.models import CommitState, RateLimitSnapshot
from prbuilder.state import PullRequestRecord
from prbuilder.triggers import DefaultTriggerPolicy, TriggerContext, TriggerDecision
from prbuilder.watcher import (
    MERGED_DESCRIPTION,
    ORIGINAL_COMMIT_DESCRIPTION,
    ConfigurationError,
    CycleOutcome,
    RepositoryWatcher,
)
from tests.fakes import (
    BASE_TIME,
    OWNER,
    REPO,
    RecordingBuildTrigger,
    RecordingReporter,
    make_comment,
    make_commit,
    make_pr,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from prbuilder.config.schema import RepositoryConfig
    from tests.fakes import FakeGitHubClient


def _remote_calls(client: FakeGitHubClient) -> list[str]:
    return [call[0] for call in client.calls]


class TestRateLimitGate:
    """Tests for the gate at the start of every cycle."""

    async def test_closed_gate_makes_no_further_calls(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.rate_limit = RateLimitSnapshot(
            remaining=0, limit=5000, reset_at=BASE_TIME + timedelta(minutes=30)
        )
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()

        report = await watcher.check()

        assert report.outcome == CycleOutcome.RATE_LIMITED
        assert report.rate_limit is not None
        assert report.rate_limit.remaining == 0
        assert _remote_calls(fake_client) == ["get_rate_limit"]
        assert len(watcher.cache) == 0
        assert build_trigger.causes == []

    async def test_gate_fails_open_without_rate_limit_endpoint(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.rate_limit = None
        fake_client.pulls = [make_pr(1)]

        report = await make_watcher().check()

        assert report.outcome == CycleOutcome.COMPLETED
        assert report.rate_limit is None
        assert build_trigger.numbers == [1]

    async def test_gate_fails_open_on_network_error(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.rate_limit_error = httpx.ConnectError("boom")

        report = await make_watcher().check()

        assert report.outcome == CycleOutcome.EMPTY
        assert "list_open_pull_requests" in _remote_calls(fake_client)

    async def test_check_one_respects_closed_gate(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.rate_limit = RateLimitSnapshot(remaining=0, limit=5000, reset_at=BASE_TIME)

        report = await make_watcher().check_one(1)

        assert report.outcome == CycleOutcome.RATE_LIMITED
        assert _remote_calls(fake_client) == ["get_rate_limit"]


class TestCheck:
    """Tests for full reconciliation cycles."""

    async def test_empty_remote_is_noop(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        reporter: RecordingReporter,
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        report = await make_watcher().check()

        assert report.outcome == CycleOutcome.EMPTY
        assert _remote_calls(fake_client) == [
            "get_rate_limit",
            "get_repository",
            "list_open_pull_requests",
        ]
        assert reporter.reports == []
        assert build_trigger.causes == []

    async def test_new_pr_triggers_once_with_pending_status(
        self,
        fake_client: FakeGitHubClient,
        repo_config: RepositoryConfig,
    ) -> None:
        pr = make_pr(1, mergeable=True)
        fake_client.pulls = [pr]
        fake_client.commits[1] = [make_commit(pr.head_sha, email="mona@github.com")]
        trigger = RecordingBuildTrigger()
        watcher = RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo_config,
            reporters=[CommitStatusReporter(fake_client, OWNER, REPO)],  # type: ignore[arg-type]
            build_triggers=[trigger],
        )

        report = await watcher.check()

        assert report.triggered == [1]
        assert report.counts["new"] == 1
        assert fake_client.statuses == [
            (OWNER, REPO, pr.head_sha, CommitState.PENDING, None, MERGED_DESCRIPTION, "default"),
        ]
        assert len(fake_client.calls_named("list_commits")) == 1
        assert len(trigger.causes) == 1
        cause = trigger.causes[0]
        assert cause.reason == "opened"
        assert cause.head_sha == pr.head_sha
        assert cause.author_email == "mona@github.com"
        assert cause.mergeable is True
        assert watcher.cache.get(1) is not None
        await trigger.drain()

    async def test_unchanged_pr_causes_no_mutation(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()
        await watcher.check()
        cached = watcher.cache.get(1)
        fake_client.reset_calls()

        report = await watcher.check()

        assert report.counts["unchanged"] == 1
        assert report.triggered == []
        assert watcher.cache.get(1) is cached
        assert _remote_calls(fake_client) == ["get_rate_limit", "list_open_pull_requests"]
        assert build_trigger.numbers == [1]

    async def test_repository_resolved_once(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        watcher = make_watcher()

        await watcher.check()
        await watcher.check()

        assert len(fake_client.calls_named("get_repository")) == 1
        assert watcher.repository is not None
        assert watcher.repository.full_name == f"{OWNER}/{REPO}"

    async def test_closed_pr_is_evicted_without_side_effects(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        reporter: RecordingReporter,
    ) -> None:
        fake_client.pulls = [make_pr(1), make_pr(2)]
        watcher = make_watcher()
        await watcher.check()
        reporter.reports.clear()

        fake_client.pulls = [make_pr(2)]
        report = await watcher.check()

        assert report.evicted == [1]
        assert report.counts["closed"] == 1
        assert watcher.cache.numbers() == [2]
        assert reporter.reports == []

    async def test_empty_listing_evicts_everything(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()
        await watcher.check()

        fake_client.pulls = []
        report = await watcher.check()

        assert report.outcome == CycleOutcome.EMPTY
        assert report.evicted == [1]
        assert len(watcher.cache) == 0

    async def test_head_change_retriggers(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1, head_sha="a" * 40)]
        watcher = make_watcher()
        await watcher.check()

        fake_client.pulls = [
            make_pr(1, head_sha="c" * 40, updated_at=BASE_TIME + timedelta(minutes=10))
        ]
        report = await watcher.check()

        assert report.counts["updated"] == 1
        assert report.triggered == [1]
        assert [c.reason for c in build_trigger.causes] == ["opened", "head_changed"]
        assert watcher.cache.get(1).head_sha == "c" * 40

    async def test_listing_failure_keeps_cache(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()
        await watcher.check()

        fake_client.list_error = TransientError("server error", status_code=502)
        report = await watcher.check()

        assert report.outcome == CycleOutcome.FAILED
        assert report.evicted == []
        assert watcher.cache.numbers() == [1]

    @pytest.mark.parametrize("status_code", [401, 403, 404])
    async def test_unreachable_repository_raises_configuration_error(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        status_code: int,
    ) -> None:
        fake_client.repository_error = GitHubAPIError("nope", status_code=status_code)

        with pytest.raises(ConfigurationError) as exc_info:
            await make_watcher().check()

        assert exc_info.value.status_code == status_code
        assert exc_info.value.repository == f"{OWNER}/{REPO}"

    async def test_disabled_repository_fills_cache_without_triggering(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        reporter: RecordingReporter,
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1), make_pr(2)]

        report = await make_watcher(disabled=True).check()

        assert report.triggered == []
        assert report.counts["new"] == 2
        assert fake_client.calls_named("list_commits") == []
        assert reporter.reports == []
        assert build_trigger.causes == []

    async def test_disabled_repository_keeps_records(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1), make_pr(2)]
        watcher = make_watcher(disabled=True)

        await watcher.check()

        assert watcher.cache.numbers() == [1, 2]


class TestIsolation:
    """Tests that one pull request cannot break the others."""

    async def test_commit_fetch_failure_is_isolated(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1), make_pr(2)]
        fake_client.commit_errors[1] = TransientError("server error", status_code=500)
        watcher = make_watcher()

        report = await watcher.check()

        assert build_trigger.numbers == [2]
        assert report.triggered == [2]
        assert watcher.cache.get(1) is None
        assert [(f.number, f.stage) for f in report.failures] == [(1, "commits")]
        assert not report.ok

    async def test_failed_pr_keeps_previous_record(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1, head_sha="a" * 40)]
        watcher = make_watcher()
        await watcher.check()
        cached = watcher.cache.get(1)

        fake_client.pulls = [
            make_pr(1, head_sha="c" * 40, updated_at=BASE_TIME + timedelta(minutes=1))
        ]
        fake_client.commit_errors[1] = httpx.ReadTimeout("slow")
        report = await watcher.check()

        assert report.failures[0].stage == "commits"
        assert watcher.cache.get(1) is cached

    async def test_comment_fetch_failure_is_isolated(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1), make_pr(2)]
        fake_client.comment_errors[2] = GitHubAPIError("boom", status_code=500)

        report = await make_watcher().check()

        assert report.triggered == [1]
        assert [(f.number, f.stage) for f in report.failures] == [(2, "comments")]

    async def test_slow_pr_times_out(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        fake_client.commit_delay = 1.0
        watcher = make_watcher(pr_timeout=0.05)

        report = await watcher.check()

        assert [(f.number, f.stage) for f in report.failures] == [(1, "timeout")]
        assert watcher.cache.get(1) is None

    async def test_slow_status_report_does_not_lose_the_build(
        self,
        fake_client: FakeGitHubClient,
        repo_config: RepositoryConfig,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        slow_reporter = RecordingReporter(delay=0.2)
        trigger = RecordingBuildTrigger()
        watcher = RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo_config.model_copy(update={"pr_timeout": 0.05}),
            reporters=[slow_reporter],
            build_triggers=[trigger],
        )

        report = await watcher.check()

        assert report.triggered == [1]
        assert report.failures == []
        assert slow_reporter.reports == []
        assert trigger.numbers == [1]

        report = await watcher.check()

        assert report.counts["unchanged"] == 1
        assert trigger.numbers == [1]

    async def test_slow_mergeability_lookup_does_not_lose_the_build(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        reporter: RecordingReporter,
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1, mergeable=None)]
        fake_client.detail_delay = 0.2

        report = await make_watcher(pr_timeout=0.05).check()

        assert report.triggered == [1]
        assert build_trigger.causes[0].mergeable is None
        assert reporter.reports[0][2] == ORIGINAL_COMMIT_DESCRIPTION

    async def test_cancelled_cycle_before_build_start_rolls_back(
        self,
        fake_client: FakeGitHubClient,
        repo_config: RepositoryConfig,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        trigger = RecordingBuildTrigger()
        watcher = RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo_config,
            reporters=[RecordingReporter(delay=5.0)],
            build_triggers=[trigger],
        )

        task = asyncio.create_task(watcher.check())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert watcher.cache.get(1) is None
        assert trigger.causes == []


class TestMalformedResponses:
    """Tests for cycles against a GitHub API answering with bad data."""

    @staticmethod
    def _api_client(pulls: httpx.Response) -> GitHubClient:
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/rate_limit":
                core = {"remaining": 4999, "limit": 5000, "reset": 1704899400}
                return httpx.Response(200, json={"resources": {"core": core}})
            if path == f"/repos/{OWNER}/{REPO}":
                return httpx.Response(
                    200, json={"id": 1, "name": REPO, "full_name": f"{OWNER}/{REPO}"}
                )
            return pulls

        return GitHubClient(
            token="ghp_test_token_1234",
            transport=httpx.MockTransport(handler),
            backoff_seconds=0,
            max_retries=1,
        )

    @pytest.mark.parametrize(
        "pulls",
        [
            httpx.Response(200, text="<html>oops</html>"),
            httpx.Response(200, json=[{"title": "no number"}]),
            httpx.Response(200, json=[{"number": "seven"}]),
            httpx.Response(200, json=["not an object"]),
        ],
    )
    async def test_malformed_listing_fails_the_cycle(
        self,
        pulls: httpx.Response,
        repo_config: RepositoryConfig,
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        async with self._api_client(pulls) as client:
            watcher = RepositoryWatcher(client, repo_config, build_triggers=[build_trigger])
            report = await watcher.check()

        assert report.outcome == CycleOutcome.FAILED
        assert len(watcher.cache) == 0
        assert build_trigger.causes == []

    async def test_malformed_detail_is_a_fetch_failure(
        self,
        repo_config: RepositoryConfig,
    ) -> None:
        async with self._api_client(httpx.Response(200, text="<html>oops</html>")) as client:
            report = await RepositoryWatcher(client, repo_config).check_one(7)

        assert [(f.number, f.stage) for f in report.failures] == [(7, "fetch")]


class TestTriggers:
    """Tests for the decisions taken on updated pull requests."""

    async def test_trigger_phrase_in_new_comment(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()
        await watcher.check()

        comment_at = BASE_TIME + timedelta(minutes=5)
        fake_client.pulls = [make_pr(1, updated_at=comment_at)]
        fake_client.comments[1] = [make_comment(10, "Test this please", at=comment_at)]
        fake_client.reset_calls()
        report = await watcher.check()

        assert report.triggered == [1]
        assert build_trigger.causes[-1].reason == "comment_phrase"
        assert fake_client.calls_named("list_comments") == [
            ("list_comments", OWNER, REPO, 1, BASE_TIME)
        ]
        assert fake_client.calls_named("list_commits") == []
        assert watcher.cache.get(1).last_comment_at == comment_at

    async def test_comment_is_consumed_once(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()
        await watcher.check()

        comment_at = BASE_TIME + timedelta(minutes=5)
        fake_client.comments[1] = [make_comment(10, "test this please", at=comment_at)]
        fake_client.pulls = [make_pr(1, updated_at=comment_at)]
        await watcher.check()

        # An unrelated edit later must not replay the old comment
        fake_client.pulls = [make_pr(1, updated_at=comment_at + timedelta(minutes=5))]
        report = await watcher.check()

        assert report.triggered == []
        assert build_trigger.numbers == [1, 1]

    async def test_comment_without_phrase_does_not_trigger(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()
        await watcher.check()

        comment_at = BASE_TIME + timedelta(minutes=5)
        fake_client.pulls = [make_pr(1, updated_at=comment_at)]
        fake_client.comments[1] = [make_comment(10, "LGTM", at=comment_at)]
        report = await watcher.check()

        assert report.counts["updated"] == 1
        assert report.triggered == []

    async def test_comment_from_unlisted_author_is_ignored(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1, author="contributor")]
        watcher = make_watcher(allowed_authors=["contributor", "core-*"])
        await watcher.check()

        comment_at = BASE_TIME + timedelta(minutes=5)
        fake_client.pulls = [make_pr(1, author="contributor", updated_at=comment_at)]
        fake_client.comments[1] = [
            make_comment(10, "test this please", author="drive-by", at=comment_at)
        ]
        report = await watcher.check()

        assert report.triggered == []

    async def test_skip_phrase_suppresses_auto_build(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1, title="[skip ci] Fix typo")]
        watcher = make_watcher()

        report = await watcher.check()

        assert report.triggered == []
        assert build_trigger.causes == []
        assert watcher.cache.numbers() == [1]

    async def test_skip_phrase_in_latest_commit_message(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        pr = make_pr(1)
        fake_client.pulls = [pr]
        fake_client.commits[1] = [
            make_commit("1" * 40, "First"),
            make_commit(pr.head_sha, "Docs only [skip ci]"),
        ]

        report = await make_watcher().check()

        assert report.triggered == []

    async def test_unlisted_author_gets_no_auto_build(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1, author="stranger"), make_pr(2, author="core-dev")]

        report = await make_watcher(allowed_authors=["core-*"]).check()

        assert report.triggered == [2]

    async def test_body_edit_adding_phrase_retriggers(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1, body="Initial description")]
        watcher = make_watcher()
        await watcher.check()

        fake_client.pulls = [
            make_pr(
                1,
                body="Initial description\n\ntest this please",
                updated_at=BASE_TIME + timedelta(minutes=3),
            )
        ]
        report = await watcher.check()

        assert report.triggered == [1]
        assert build_trigger.causes[-1].reason == "body_phrase"

    async def test_body_edit_without_phrase_does_not_retrigger(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1, body="Initial description")]
        watcher = make_watcher()
        await watcher.check()

        fake_client.pulls = [
            make_pr(1, body="Better description", updated_at=BASE_TIME + timedelta(minutes=3))
        ]
        report = await watcher.check()

        assert report.triggered == []
        assert watcher.cache.get(1).updated_at == BASE_TIME + timedelta(minutes=3)

    async def test_new_pr_without_auto_build_waits_for_phrase(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        fake_client.pulls = [make_pr(1)]

        report = await make_watcher(auto_build=False).check()

        assert report.triggered == []
        assert report.counts["new"] == 1

    async def test_existing_comments_are_history_on_first_sighting(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        comment_at = BASE_TIME - timedelta(minutes=5)
        fake_client.pulls = [make_pr(1)]
        fake_client.comments[1] = [make_comment(10, "test this please", at=comment_at)]

        # A restarted process sees every open PR as new
        for _ in range(2):
            watcher = make_watcher(auto_build=False)
            report = await watcher.check()

            assert report.triggered == []
            assert watcher.cache.get(1).last_comment_at == comment_at

        assert build_trigger.causes == []


class TestSideEffects:
    """Tests for status reporting and build starting."""

    async def test_unknown_mergeability_is_resolved(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        reporter: RecordingReporter,
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1, mergeable=None)]
        fake_client.details[1] = make_pr(1, mergeable=False)

        await make_watcher().check()

        assert fake_client.calls_named("get_pull_request") == [
            ("get_pull_request", OWNER, REPO, 1)
        ]
        assert reporter.reports[0][2] == ORIGINAL_COMMIT_DESCRIPTION
        assert build_trigger.causes[0].mergeable is False

    async def test_mergeability_lookup_failure_leaves_it_unknown(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        reporter: RecordingReporter,
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1, mergeable=None)]
        fake_client.detail_errors[1] = TransientError("server error", status_code=503)

        report = await make_watcher().check()

        assert report.triggered == [1]
        assert reporter.reports[0][2] == ORIGINAL_COMMIT_DESCRIPTION
        assert build_trigger.causes[0].mergeable is None

    async def test_status_failure_still_starts_build(
        self,
        fake_client: FakeGitHubClient,
        repo_config: RepositoryConfig,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        trigger = RecordingBuildTrigger()
        watcher = RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo_config,
            reporters=[RecordingReporter(error=RuntimeError("status API down"))],
            build_triggers=[trigger],
        )

        report = await watcher.check()

        assert trigger.numbers == [1]
        assert report.triggered == [1]
        assert watcher.cache.get(1) is not None

    async def test_build_start_failure_rolls_back_new_record(
        self,
        fake_client: FakeGitHubClient,
        repo_config: RepositoryConfig,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        trigger = RecordingBuildTrigger(error=RuntimeError("CI unreachable"))
        watcher = RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo_config,
            build_triggers=[trigger],
        )

        report = await watcher.check()

        assert report.triggered == []
        assert [(f.number, f.stage) for f in report.failures] == [(1, "build")]
        assert watcher.cache.get(1) is None

        # The next cycle sees the PR as new again and retries
        trigger.error = None
        report = await watcher.check()

        assert report.triggered == [1]
        assert trigger.numbers == [1]

    async def test_build_start_failure_restores_previous_record(
        self,
        fake_client: FakeGitHubClient,
        repo_config: RepositoryConfig,
    ) -> None:
        fake_client.pulls = [make_pr(1, head_sha="a" * 40)]
        trigger = RecordingBuildTrigger()
        watcher = RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo_config,
            build_triggers=[trigger],
        )
        await watcher.check()
        cached = watcher.cache.get(1)

        fake_client.pulls = [
            make_pr(1, head_sha="c" * 40, updated_at=BASE_TIME + timedelta(minutes=2))
        ]
        trigger.error = RuntimeError("CI unreachable")
        await watcher.check()

        assert watcher.cache.get(1) is cached

    async def test_concurrent_update_prevents_trigger(
        self,
        fake_client: FakeGitHubClient,
        repo_config: RepositoryConfig,
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        cache_holder: list[RepositoryWatcher] = []

        class RacingPolicy:
            """Policy that lets another cycle commit first."""

            has_trigger_phrase = False

            def evaluate(self, context: TriggerContext) -> TriggerDecision:
                cache_holder[0].cache.put(context.record.with_updates(title="raced"))
                return DefaultTriggerPolicy.from_config(repo_config).evaluate(context)

        watcher = RepositoryWatcher(
            fake_client,  # type: ignore[arg-type]
            repo_config,
            policy=RacingPolicy(),
            build_triggers=[build_trigger],
        )
        cache_holder.append(watcher)

        report = await watcher.check()

        assert report.triggered == []
        assert build_trigger.causes == []
        assert watcher.cache.get(1).title == "raced"


class TestCheckOne:
    """Tests for webhook-driven single pull request reconciliation."""

    async def test_open_pr_is_reconciled(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.details[7] = make_pr(7)

        report = await make_watcher().check_one(7)

        assert report.triggered == [7]
        assert build_trigger.numbers == [7]
        assert fake_client.calls_named("list_open_pull_requests") == []

    async def test_closed_pr_is_evicted(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(7)]
        watcher = make_watcher()
        await watcher.check()

        fake_client.details[7] = make_pr(7, state="closed")
        report = await watcher.check_one(7)

        assert report.evicted == [7]
        assert 7 not in watcher.cache
        assert build_trigger.numbers == [7]

    async def test_fetch_failure_is_recorded(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
    ) -> None:
        report = await make_watcher().check_one(99)

        assert [(f.number, f.stage) for f in report.failures] == [(99, "fetch")]

    async def test_concurrent_check_and_check_one_trigger_once(
        self,
        fake_client: FakeGitHubClient,
        make_watcher: Callable[..., RepositoryWatcher],
        build_trigger: RecordingBuildTrigger,
    ) -> None:
        fake_client.pulls = [make_pr(1)]
        watcher = make_watcher()

        await asyncio.gather(watcher.check(), watcher.check_one(1))

        assert build_trigger.numbers == [1]
        assert isinstance(watcher.cache.get(1), PullRequestRecord)
