"""Async GitHub REST client for pull request reconciliation.

This module provides the GitHubClient class which handles:
- Rate limit queries (/rate_limit) as immutable snapshots
- Repository resolution, pull request listing and detail
- Lazy, paginated commit and comment listing
- Commit status creation
- Bounded exponential backoff for transient failures (5xx, network errors)

The client never sleeps waiting for a rate-limit reset: budget control is
the job of the RateLimitGate, so exhausted limits surface as RateLimitError.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from prbuilder import __version__
from prbuilder.github.auth import get_github_token, mask_token
from prbuilder.github.models import (
    CommentRef,
    CommitRef,
    CommitState,
    PullRequestRef,
    RateLimitSnapshot,
    RepositoryInfo,
    normalize_comment,
    normalize_commit,
    normalize_pull_request,
    normalize_rate_limit,
    normalize_repository,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"
USER_AGENT = f"prbuilder/{__version__}"

T = TypeVar("T")


class GitHubAPIError(Exception):
    """Raised for GitHub API errors."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        """Initialize GitHub API error.

        Args:
            message: Error description.
            status_code: HTTP status code, None for network failures.
            response_body: Response JSON body if available.
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body or {}


class RateLimitError(GitHubAPIError):
    """Raised when a request is refused because the rate limit is exhausted."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = 403,
        is_secondary: bool = False,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.is_secondary = is_secondary


class TransientError(GitHubAPIError):
    """Raised for 5xx responses that should be retried."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class RateLimitUnavailable(GitHubAPIError):
    """Raised when the rate limit endpoint cannot be queried.

    GitHub Enterprise instances with rate limiting disabled answer
    /rate_limit with 404.
    """


class GitHubClient:
    """Async GitHub API client.

    Supports both context manager and standalone usage:

        async with GitHubClient(timeout=5.0) as client:
            snapshot = await client.get_rate_limit()
    """

    INITIAL_BACKOFF_SECONDS = 1.0
    MAX_BACKOFF_SECONDS = 8.0

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = USER_AGENT,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize GitHub client.

        Args:
            token: GitHub token. If None, reads from GITHUB_TOKEN.
            base_url: GitHub API base URL.
            user_agent: User-Agent header value.
            timeout: Per-request timeout in seconds.
            max_retries: Attempts per request for transient failures.
            backoff_seconds: Initial backoff, defaults to INITIAL_BACKOFF_SECONDS.
            transport: Optional httpx transport (used by tests).
        """
        self._token = token if token is not None else get_github_token()
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff = (
            self.INITIAL_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def headers(self) -> dict[str, str]:
        """Get default request headers."""
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self._user_agent,
        }

    async def __aenter__(self) -> GitHubClient:
        """Enter async context."""
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self.headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _handle_response(self, response: httpx.Response) -> Any:
        """Check the status of a response and return its JSON body.

        Raises:
            RateLimitError: If the rate limit is exhausted.
            TransientError: For 5xx errors that should be retried.
            GitHubAPIError: For other API errors and undecodable bodies.
        """
        if response.status_code in (200, 201):
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise GitHubAPIError(
                    f"GitHub API returned an undecodable body ({response.status_code})",
                    status_code=response.status_code,
                ) from e

        if response.status_code == 204:
            return {}

        body = _safe_json(response)
        message = str(body.get("message") or "")

        if response.status_code in (403, 429):
            remaining = response.headers.get("X-RateLimit-Remaining")
            lowered = message.lower()
            if "secondary rate limit" in lowered or "abuse" in lowered:
                raise RateLimitError(
                    f"GitHub secondary rate limit: {message}",
                    status_code=response.status_code,
                    is_secondary=True,
                )
            if "rate limit" in lowered or remaining == "0":
                raise RateLimitError(
                    f"GitHub API rate limit exceeded: {message}",
                    status_code=response.status_code,
                )

        if response.status_code >= 500:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise TransientError(
                f"GitHub API server error: {response.status_code}",
                status_code=response.status_code,
                retry_after=retry_after,
            )

        raise GitHubAPIError(
            f"GitHub API error: {response.status_code} - {message or 'Unknown error'}",
            status_code=response.status_code,
            response_body=body,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> tuple[Any, httpx.Response]:
        """Make a request, retrying transient errors with exponential backoff.

        Args:
            method: HTTP method.
            path: API path or full URL (pagination links).
            params: Query parameters.
            json: JSON request body.

        Returns:
            Tuple of (parsed JSON, response).

        Raises:
            GitHubAPIError: For non-recoverable errors or exhausted retries.
        """
        client = self._ensure_client()
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                response = await client.request(method, path, params=params, json=json)
                return self._handle_response(response), response

            except TransientError as e:
                last_error = e
                backoff = e.retry_after or self._backoff_for(attempt)
                logger.warning(
                    "Transient error (attempt %d/%d): %s. Retrying in %.1f seconds",
                    attempt + 1,
                    self._max_retries,
                    e,
                    backoff,
                )

            except httpx.RequestError as e:
                last_error = e
                backoff = self._backoff_for(attempt)
                logger.warning(
                    "Network error (attempt %d/%d) on %s %s: %s. Retrying in %.1f seconds",
                    attempt + 1,
                    self._max_retries,
                    method,
                    path,
                    e,
                    backoff,
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(backoff)

        if isinstance(last_error, GitHubAPIError):
            raise last_error
        raise GitHubAPIError(
            f"Request failed after {self._max_retries} attempts: {last_error}",
        ) from last_error

    def _backoff_for(self, attempt: int) -> float:
        return min(self._backoff * (2**attempt), self.MAX_BACKOFF_SECONDS)

    async def get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make a GET request to the GitHub API."""
        data, _ = await self._request("GET", path, params=params)
        return data

    async def post(self, path: str, *, json: dict[str, Any]) -> Any:
        """Make a POST request to the GitHub API."""
        data, _ = await self._request("POST", path, json=json)
        return data

    async def get_paginated(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        max_pages: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Iterate over items of a paginated list endpoint.

        Pages are fetched lazily, following the Link header.

        Args:
            path: API path.
            params: Query parameters for the first page.
            max_pages: Maximum number of pages to fetch (None for unlimited).

        Yields:
            Items from each page.
        """
        current_params: dict[str, Any] | None = dict(params or {})
        current_params.setdefault("per_page", 100)

        next_url: str | None = path
        page_count = 0

        while next_url:
            if max_pages and page_count >= max_pages:
                break

            result, response = await self._request("GET", next_url, params=current_params)

            if isinstance(result, list):
                for item in result:
                    yield item
            elif result:
                yield result

            page_count += 1
            next_url = self._parse_next_link(response.headers.get("Link", ""))
            # The next link already carries the query string
            current_params = None

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Parse the 'next' URL from Link header.

        Link header format: <url>; rel="next", <url>; rel="last"
        """
        if not link_header:
            return None

        for part in link_header.split(","):
            match = re.match(r'<([^>]+)>;\s*rel="next"', part.strip())
            if match:
                return match.group(1)

        return None

    async def get_rate_limit(self) -> RateLimitSnapshot:
        """Query the core API rate limit.

        Raises:
            RateLimitUnavailable: If the endpoint is missing or unusable.
        """
        try:
            result = await self.get("/rate_limit")
        except RateLimitError:
            raise
        except GitHubAPIError as e:
            if e.status_code == 404:
                raise RateLimitUnavailable(
                    "Rate limit endpoint not available", status_code=404
                ) from e
            raise
        if not isinstance(result, dict):
            raise RateLimitUnavailable("Unexpected /rate_limit response")
        try:
            return normalize_rate_limit(result)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise RateLimitUnavailable(f"Unusable /rate_limit response: {e}") from e

    async def get_repository(self, owner: str, repo: str) -> RepositoryInfo:
        """Resolve a repository handle."""
        result = await self.get(f"/repos/{owner}/{repo}")
        return _normalized(normalize_repository, result, "repository")

    async def list_open_pull_requests(self, owner: str, repo: str) -> list[PullRequestRef]:
        """List all open pull requests of a repository."""
        return [
            _normalized(normalize_pull_request, item, "pull request")
            async for item in self.get_paginated(
                f"/repos/{owner}/{repo}/pulls",
                params={"state": "open"},
            )
        ]

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequestRef:
        """Get one pull request, including its mergeable state."""
        result = await self.get(f"/repos/{owner}/{repo}/pulls/{number}")
        return _normalized(normalize_pull_request, result, "pull request")

    async def list_commits(
        self,
        owner: str,
        repo: str,
        number: int,
    ) -> AsyncIterator[CommitRef]:
        """Lazily iterate over the commits of a pull request, oldest first."""
        async for item in self.get_paginated(f"/repos/{owner}/{repo}/pulls/{number}/commits"):
            yield _normalized(normalize_commit, item, "commit")

    async def list_comments(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        since: datetime | None = None,
    ) -> AsyncIterator[CommentRef]:
        """Lazily iterate over conversation comments of a pull request.

        Args:
            since: Only comments updated at or after this time.
        """
        params: dict[str, Any] = {}
        if since is not None:
            params["since"] = since.isoformat().replace("+00:00", "Z")
        async for item in self.get_paginated(
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            params=params,
        ):
            yield _normalized(normalize_comment, item, "comment")

    async def create_commit_status(
        self,
        owner: str,
        repo: str,
        sha: str,
        state: CommitState,
        target_url: str | None,
        description: str,
        context: str,
    ) -> dict[str, Any]:
        """Create a commit status.

        Args:
            sha: Commit to attach the status to.
            state: Status state.
            target_url: Link shown next to the status, may be None.
            description: Short human-readable description.
            context: Status context label.
        """
        payload: dict[str, Any] = {
            "state": state.value,
            "description": description,
            "context": context,
        }
        if target_url is not None:
            payload["target_url"] = target_url
        result = await self.post(f"/repos/{owner}/{repo}/statuses/{sha}", json=payload)
        return result if isinstance(result, dict) else {}

    def __repr__(self) -> str:
        """Get string representation."""
        return (
            f"GitHubClient(base_url={self._base_url!r}, "
            f"token={mask_token(self._token)!r})"
        )


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text}
    return body if isinstance(body, dict) else {}


def _parse_retry_after(value: str | None) -> int | None:
    # HTTP-date values fall back to the regular backoff
    if not value:
        return None
    try:
        seconds = int(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def _normalized(normalize: Callable[[dict[str, Any]], T], payload: Any, kind: str) -> T:
    """Normalize a payload, turning malformed data into GitHubAPIError."""
    if not isinstance(payload, dict):
        raise GitHubAPIError(f"Malformed {kind} payload: expected an object")
    try:
        return normalize(payload)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise GitHubAPIError(f"Malformed {kind} payload: {e!r}") from e
