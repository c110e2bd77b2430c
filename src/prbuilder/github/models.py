"""GitHub API models and payload normalization.

The client converts raw REST payloads into these frozen models so the
rest of the package never touches GitHub's JSON shapes directly.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CommitState(str, Enum):
    """Commit status states accepted by the statuses API."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


class RateLimitSnapshot(BaseModel):
    """Core API rate limit at the moment it was queried.

    Snapshots are immutable and belong to the cycle that fetched them.
    """

    model_config = ConfigDict(frozen=True)

    remaining: int = Field(..., ge=0)
    limit: int = Field(default=5000, ge=0)
    reset_at: datetime

    @property
    def exhausted(self) -> bool:
        """Check if no calls remain until reset."""
        return self.remaining == 0

    @property
    def seconds_until_reset(self) -> float:
        """Get seconds until the limit resets."""
        delta = (self.reset_at - datetime.now(UTC)).total_seconds()
        return max(0.0, delta)


class RepositoryInfo(BaseModel):
    """Resolved repository handle."""

    model_config = ConfigDict(frozen=True)

    id: int
    owner: str
    name: str
    full_name: str
    default_branch: str = "main"
    private: bool = False
    html_url: str | None = None


class PullRequestRef(BaseModel):
    """An open (or just closed) pull request as reported by GitHub."""

    model_config = ConfigDict(frozen=True)

    number: int
    state: str = "open"
    title: str = ""
    body: str = ""
    head_sha: str
    head_ref: str = ""
    base_sha: str
    base_ref: str = ""
    updated_at: datetime
    author_login: str = ""
    author_email: str | None = None
    mergeable: bool | None = Field(
        default=None,
        description="None while GitHub is still computing mergeability",
    )
    html_url: str | None = None

    @property
    def is_open(self) -> bool:
        """Check if the pull request is still open."""
        return self.state == "open"


class CommitRef(BaseModel):
    """A commit belonging to a pull request."""

    model_config = ConfigDict(frozen=True)

    sha: str
    message: str = ""
    author_name: str | None = None
    author_email: str | None = None
    author_login: str | None = None


class CommentRef(BaseModel):
    """A conversation comment on a pull request."""

    model_config = ConfigDict(frozen=True)

    id: int
    author_login: str = ""
    body: str = ""
    created_at: datetime
    updated_at: datetime


def parse_timestamp(value: str | None) -> datetime:
    """Parse a GitHub ISO-8601 timestamp into an aware UTC datetime.

    Missing or malformed values map to the Unix epoch so that they never
    compare equal to a real timestamp.
    """
    if not value:
        return datetime.fromtimestamp(0, tz=UTC)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.fromtimestamp(0, tz=UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def normalize_rate_limit(payload: dict[str, Any]) -> RateLimitSnapshot:
    """Build a snapshot from the /rate_limit response.

    Prefers resources.core and falls back to the deprecated top-level
    "rate" object.

    Raises:
        ValueError: If neither object reports a remaining count.
    """
    resources = payload.get("resources")
    core = resources.get("core") if isinstance(resources, dict) else None
    if not isinstance(core, dict):
        core = payload.get("rate")
    if not isinstance(core, dict) or core.get("remaining") is None:
        raise ValueError("Rate limit payload reports no remaining count")
    reset = int(core.get("reset", 0))
    return RateLimitSnapshot(
        remaining=max(0, int(core["remaining"])),
        limit=int(core.get("limit", 5000)),
        reset_at=datetime.fromtimestamp(reset, tz=UTC),
    )


def normalize_repository(payload: dict[str, Any]) -> RepositoryInfo:
    """Build a repository handle from /repos/{owner}/{repo}."""
    owner = payload.get("owner", {}) or {}
    full_name = payload.get("full_name", "")
    owner_login = owner.get("login") or full_name.split("/", 1)[0]
    return RepositoryInfo(
        id=int(payload.get("id", 0)),
        owner=owner_login,
        name=payload.get("name", ""),
        full_name=full_name,
        default_branch=payload.get("default_branch") or "main",
        private=bool(payload.get("private", False)),
        html_url=payload.get("html_url"),
    )


def normalize_pull_request(payload: dict[str, Any]) -> PullRequestRef:
    """Normalize a pull request payload (list, detail or webhook form)."""
    head = payload.get("head", {}) or {}
    base = payload.get("base", {}) or {}
    user = payload.get("user", {}) or {}

    return PullRequestRef(
        number=int(payload["number"]),
        state=payload.get("state", "open"),
        title=payload.get("title") or "",
        body=payload.get("body") or "",
        head_sha=head.get("sha", ""),
        head_ref=head.get("ref", ""),
        base_sha=base.get("sha", ""),
        base_ref=base.get("ref", ""),
        updated_at=parse_timestamp(payload.get("updated_at")),
        author_login=user.get("login", ""),
        author_email=user.get("email"),
        mergeable=payload.get("mergeable"),
        html_url=payload.get("html_url"),
    )


def normalize_commit(payload: dict[str, Any]) -> CommitRef:
    """Normalize an entry of /pulls/{number}/commits."""
    commit = payload.get("commit", {}) or {}
    git_author = commit.get("author", {}) or {}
    author = payload.get("author") or {}
    return CommitRef(
        sha=payload.get("sha", ""),
        message=commit.get("message", ""),
        author_name=git_author.get("name"),
        author_email=git_author.get("email"),
        author_login=author.get("login"),
    )


def normalize_comment(payload: dict[str, Any]) -> CommentRef:
    """Normalize an entry of /issues/{number}/comments."""
    user = payload.get("user", {}) or {}
    created_at = parse_timestamp(payload.get("created_at"))
    updated_at = created_at
    if payload.get("updated_at"):
        updated_at = parse_timestamp(payload["updated_at"])
    return CommentRef(
        id=int(payload.get("id", 0)),
        author_login=user.get("login", ""),
        body=payload.get("body") or "",
        created_at=created_at,
        updated_at=updated_at,
    )
