"""Cached pull request records.

A record is the last state of a pull request the watcher has acted on.
Records are immutable; an update replaces the whole record in the cache.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from prbuilder.github.models import PullRequestRef


def digest_text(text: str | None) -> str:
    """Return the SHA-256 hex digest of a text, or "" for an empty one."""
    if not text:
        return ""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class PullRequestTarget:
    """Where a pull request lives and what it merges into."""

    owner: str
    repository: str
    base_ref: str
    head_ref: str

    @property
    def full_name(self) -> str:
        """Get the owner/repository form."""
        return f"{self.owner}/{self.repository}"


@dataclass(frozen=True)
class PullRequestRecord:
    """Cached state of one open pull request.

    Attributes:
        number: Pull request number, stable for the PR's lifetime
        head_sha: Latest known head commit
        base_sha: Latest known base commit
        updated_at: Last known remote modification time
        author_login: PR author login
        author_email: Email of the head commit author, when known
        title: PR title
        body_digest: SHA-256 of the PR body ("" when empty)
        mergeable: True/False, or None while GitHub has not computed it
        target: Repository and refs, fixed when the record is created
        html_url: Web URL of the PR
        last_comment_at: Newest comment already scanned for trigger phrases
    """

    number: int
    head_sha: str
    base_sha: str
    updated_at: datetime
    author_login: str
    title: str
    body_digest: str
    target: PullRequestTarget
    author_email: str | None = None
    mergeable: bool | None = None
    html_url: str | None = None
    last_comment_at: datetime | None = None

    @classmethod
    def from_ref(
        cls,
        ref: PullRequestRef,
        owner: str,
        repository: str,
        previous: PullRequestRecord | None = None,
    ) -> PullRequestRecord:
        """Build a record from a remote pull request.

        When a previous record exists its target is kept (it is immutable
        once assigned), as are the values the listing does not carry.
        """
        if previous is not None:
            target = previous.target
            author_email = ref.author_email or previous.author_email
            last_comment_at = previous.last_comment_at
        else:
            target = PullRequestTarget(
                owner=owner,
                repository=repository,
                base_ref=ref.base_ref,
                head_ref=ref.head_ref,
            )
            author_email = ref.author_email
            last_comment_at = None

        return cls(
            number=ref.number,
            head_sha=ref.head_sha,
            base_sha=ref.base_sha,
            updated_at=ref.updated_at,
            author_login=ref.author_login,
            title=ref.title,
            body_digest=digest_text(ref.body),
            target=target,
            author_email=author_email,
            mergeable=ref.mergeable,
            html_url=ref.html_url,
            last_comment_at=last_comment_at,
        )

    def with_updates(self, **changes: object) -> PullRequestRecord:
        """Return a copy with some fields replaced.

        The number and target cannot change.
        """
        if "number" in changes or "target" in changes:
            msg = "number and target are immutable"
            raise ValueError(msg)
        return replace(self, **changes)  # type: ignore[arg-type]
