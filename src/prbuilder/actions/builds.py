"""Build triggers.

A build trigger hands a BuildCause to the CI system and returns at once
with an asyncio task; the reconciliation cycle never waits for a build.
Implementations:
- HttpBuildTrigger: POSTs the cause as JSON to a generic CI webhook,
  with retries and backoff
- ConsoleBuildTrigger: prints the cause, for local runs
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, TextIO

import httpx
from pydantic import BaseModel, ConfigDict, Field

from prbuilder import __version__
from prbuilder.config.schema import BuildTriggerType

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from prbuilder.config.schema import BuildConfig

logger = logging.getLogger(__name__)


class BuildCause(BaseModel):
    """Why and what to build, handed to the CI system."""

    model_config = ConfigDict(frozen=True)

    repository: str = Field(..., description="owner/name")
    pr_number: int = Field(..., description="Pull request number")
    head_sha: str = Field(..., description="Commit to build")
    reason: str = Field(..., description="Trigger reason")
    base_ref: str = Field(default="", description="Branch the PR merges into")
    head_ref: str = Field(default="", description="PR source branch")
    author_login: str = Field(default="", description="PR author")
    author_email: str | None = Field(default=None, description="Head commit author email")
    title: str = Field(default="", description="PR title")
    html_url: str | None = Field(default=None, description="PR web URL")
    mergeable: bool | None = Field(default=None, description="None when unknown")
    triggered_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the build was requested",
    )

    @property
    def short_description(self) -> str:
        """Get a one-line description for logs and consoles."""
        return f"{self.repository}#{self.pr_number} @ {self.head_sha[:7]} ({self.reason})"


class BuildTrigger(Protocol):
    """Starts builds without waiting for them."""

    name: str

    def start(self, cause: BuildCause) -> asyncio.Task[Any]:
        """Schedule a build and return its task.

        Raises synchronously if the build cannot even be scheduled.
        """
        ...

    async def drain(self) -> None:
        """Wait for scheduled builds to finish handing off."""
        ...


class _TrackedTrigger:
    """Keeps strong references to scheduled tasks until they finish."""

    name: ClassVar[str] = "tracked"

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Get the number of unfinished tasks."""
        return len(self._tasks)

    def _spawn(self, coro: Coroutine[Any, Any, Any], cause: BuildCause) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"build-{cause.repository}#{cause.pr_number}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for all scheduled tasks."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


@dataclass
class BuildResult:
    """Result of handing a build to the CI system."""

    success: bool
    message: str
    status_code: int | None = None
    attempts: int = 1


class HttpBuildTrigger(_TrackedTrigger):
    """Trigger that POSTs the build cause to a CI webhook.

    Retries 5xx responses and network errors with 1s, 2s, 4s backoff.
    4xx responses are not retried.
    """

    name: ClassVar[str] = "http"

    MAX_RETRIES = 3
    RETRY_DELAYS: ClassVar[list[float]] = [1, 2, 4]

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        retry_delays: list[float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HTTP build trigger.

        Args:
            url: CI webhook endpoint.
            timeout: HTTP request timeout in seconds.
            retry_delays: Override of RETRY_DELAYS (used by tests).
            transport: Optional httpx transport (used by tests).
        """
        super().__init__()
        self._url = url
        self._timeout = timeout
        self._retry_delays = self.RETRY_DELAYS if retry_delays is None else retry_delays
        self._transport = transport

    @property
    def url(self) -> str:
        """Get the endpoint URL."""
        return self._url

    def start(self, cause: BuildCause) -> asyncio.Task[BuildResult]:
        """Schedule the POST of a build cause."""
        return self._spawn(self._deliver(cause), cause)

    async def _deliver(self, cause: BuildCause) -> BuildResult:
        result = await self._send_with_retries(cause.model_dump(mode="json"))
        if result.success:
            logger.info("Build handed off: %s", cause.short_description)
        else:
            logger.error(
                "Build hand-off failed for %s after %d attempts: %s",
                cause.short_description,
                result.attempts,
                result.message,
            )
        return result

    async def _send_with_retries(self, payload: dict[str, Any]) -> BuildResult:
        last_error = ""
        last_status: int | None = None
        headers = {"User-Agent": f"prbuilder/{__version__}"}

        for attempt in range(self.MAX_RETRIES):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.post(self._url, json=payload, headers=headers)
                    last_status = response.status_code

                    if response.is_success:
                        return BuildResult(
                            success=True,
                            message="Build accepted",
                            status_code=response.status_code,
                            attempts=attempt + 1,
                        )

                    # Non-retryable errors
                    if response.status_code < 500:
                        last_error = f"HTTP {response.status_code}: {response.text}"
                        return BuildResult(
                            success=False,
                            message=last_error,
                            status_code=last_status,
                            attempts=attempt + 1,
                        )

                    last_error = f"HTTP {response.status_code}"

            except httpx.TimeoutException:
                last_error = "Request timeout"
            except httpx.RequestError as e:
                last_error = f"Request error: {e}"

            if attempt < self.MAX_RETRIES - 1:
                delay = self._retry_delays[min(attempt, len(self._retry_delays) - 1)]
                logger.warning(
                    "Build hand-off failed (attempt %d/%d): %s. Retrying in %.1fs",
                    attempt + 1,
                    self.MAX_RETRIES,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)

        return BuildResult(
            success=False,
            message=last_error,
            status_code=last_status,
            attempts=self.MAX_RETRIES,
        )


class ConsoleBuildTrigger(_TrackedTrigger):
    """Trigger that prints build causes to a stream (stdout by default)."""

    name: ClassVar[str] = "console"

    def __init__(self, output: TextIO | None = None, *, colorize: bool = True) -> None:
        super().__init__()
        self._output = output or sys.stdout
        self._colorize = colorize and self._output.isatty()

    def start(self, cause: BuildCause) -> asyncio.Task[BuildResult]:
        """Schedule printing of a build cause."""
        return self._spawn(self._print(cause), cause)

    async def _print(self, cause: BuildCause) -> BuildResult:
        header = f"BUILD {cause.short_description}"
        if self._colorize:
            header = f"\033[1;32m{header}\033[0m"
        lines = [header]
        if cause.title:
            lines.append(f"   {cause.title}")
        if cause.html_url:
            lines.append(f"   {cause.html_url}")
        merge = {True: "merged", False: "original commit", None: "unknown"}[cause.mergeable]
        lines.append(f"   {cause.head_ref or '?'} -> {cause.base_ref or '?'} ({merge})")
        print("\n".join(lines), file=self._output)
        return BuildResult(success=True, message="Printed")


def build_trigger_from_config(config: BuildConfig) -> BuildTrigger:
    """Create the configured build trigger."""
    if config.type == BuildTriggerType.HTTP:
        if not config.url:
            msg = "build.url is required for http triggers"
            raise ValueError(msg)
        return HttpBuildTrigger(config.url, timeout=config.timeout)
    return ConsoleBuildTrigger()
