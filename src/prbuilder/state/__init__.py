"""Pull request state: cached records, pure diffing and the record cache.

Usage:
    from prbuilder.state import PullRequestCache, PullRequestRecord, diff

    cache = PullRequestCache()
    record = PullRequestRecord.from_ref(ref, "octocat", "hello-world")
    changes = diff(cache.get(ref.number), record)
"""

from prbuilder.state.cache import PullRequestCache
from prbuilder.state.diff import ChangeSet, Classification, diff
from prbuilder.state.records import PullRequestRecord, PullRequestTarget, digest_text

__all__ = [
    "ChangeSet",
    "Classification",
    "PullRequestCache",
    "PullRequestRecord",
    "PullRequestTarget",
    "diff",
    "digest_text",
]
