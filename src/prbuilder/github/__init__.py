"""GitHub API client, models and rate limit gate."""

from prbuilder.github.auth import (
    AuthenticationError,
    validate_token,
)
from prbuilder.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
    RateLimitUnavailable,
    TransientError,
)
from prbuilder.github.models import (
    CommentRef,
    CommitRef,
    CommitState,
    PullRequestRef,
    RateLimitSnapshot,
    RepositoryInfo,
    normalize_pull_request,
)
from prbuilder.github.ratelimit import RateLimitGate

__all__ = [
    "AuthenticationError",
    "CommentRef",
    "CommitRef",
    "CommitState",
    "GitHubAPIError",
    "GitHubClient",
    "PullRequestRef",
    "RateLimitError",
    "RateLimitGate",
    "RateLimitSnapshot",
    "RateLimitUnavailable",
    "RepositoryInfo",
    "TransientError",
    "normalize_pull_request",
    "validate_token",
]
