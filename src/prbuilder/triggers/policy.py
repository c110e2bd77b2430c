"""Trigger policy evaluation.

This module decides whether a pull request delta warrants a build. It
handles:
- Automatic builds for newly opened PRs and new head commits
- Explicit build requests through a trigger phrase in a comment
- Re-triggering on title/description edits via a pluggable predicate
- Skip-build phrases and author allow-lists
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field

from prbuilder.config.schema import BodyChangeRule
from prbuilder.state.diff import Classification
from prbuilder.triggers.phrases import AuthorMatcher, PhraseMatcher

if TYPE_CHECKING:
    from datetime import datetime

    from prbuilder.config.schema import RepositoryConfig
    from prbuilder.github.models import CommentRef, CommitRef, PullRequestRef
    from prbuilder.state.diff import ChangeSet
    from prbuilder.state.records import PullRequestRecord

logger = logging.getLogger(__name__)


class TriggerReason(str, Enum):
    """Why a build was requested."""

    OPENED = "opened"
    HEAD_CHANGED = "head_changed"
    BODY_PHRASE = "body_phrase"
    COMMENT_PHRASE = "comment_phrase"


@dataclass(frozen=True)
class TriggerContext:
    """Everything a policy may look at for one pull request.

    Attributes:
        ref: The pull request as currently reported by GitHub
        record: The record about to be committed to the cache
        previous: The cached record, None for a new PR
        changes: Diff between previous and record
        commits: PR commits, oldest first (empty unless fetched)
        comments: Comments updated since the previous pass
    """

    ref: PullRequestRef
    record: PullRequestRecord
    previous: PullRequestRecord | None
    changes: ChangeSet
    commits: tuple[CommitRef, ...] = field(default=())
    comments: tuple[CommentRef, ...] = field(default=())

    @property
    def comments_since(self) -> datetime | None:
        """Get the time after which comments are unseen."""
        if self.previous is None:
            return None
        return self.previous.last_comment_at or self.previous.updated_at

    @property
    def latest_commit_message(self) -> str | None:
        """Get the message of the newest commit, if commits were fetched."""
        if not self.commits:
            return None
        return self.commits[-1].message

    def unseen_comments(self) -> list[CommentRef]:
        """Get the comments not consumed by an earlier pass.

        Comments that already exist when a pull request is first seen are
        history, not requests; a restart must not replay them.
        """
        since = self.comments_since
        if since is None:
            return []
        return [c for c in self.comments if c.updated_at > since]


class TriggerDecision(BaseModel):
    """Outcome of a policy evaluation."""

    model_config = ConfigDict(frozen=True)

    should_build: bool = Field(..., description="Whether a build must start")
    reason: TriggerReason | None = Field(default=None, description="Why it must start")
    explanation: str = Field(default="", description="Human-readable explanation")

    @classmethod
    def build(cls, reason: TriggerReason, explanation: str) -> TriggerDecision:
        """Create a positive decision."""
        return cls(should_build=True, reason=reason, explanation=explanation)

    @classmethod
    def no_build(cls, explanation: str) -> TriggerDecision:
        """Create a negative decision."""
        return cls(should_build=False, explanation=explanation)


class TriggerPolicy(Protocol):
    """Decides whether a pull request delta triggers a build."""

    @property
    def has_trigger_phrase(self) -> bool:
        """Check if comments can request builds (comment fetches are needed)."""
        ...

    def evaluate(self, context: TriggerContext) -> TriggerDecision:
        """Evaluate one pull request delta."""
        ...


class BodyChangePredicate(Protocol):
    """Decides whether a title/description edit re-triggers a build."""

    def __call__(self, context: TriggerContext, phrases: PhraseMatcher) -> bool: ...


def phrase_added(context: TriggerContext, phrases: PhraseMatcher) -> bool:
    """Re-trigger when the title or description changed and now has the phrase.

    Only digests of older text are cached, so "the phrase was added" is
    approximated by "the text changed and the new text matches".
    """
    if not context.changes.text_changed:
        return False
    return phrases.requests_build(context.ref.title, context.ref.body)


def any_text_change(context: TriggerContext, phrases: PhraseMatcher) -> bool:
    """Re-trigger on every title or description edit."""
    return context.changes.text_changed


def never(context: TriggerContext, phrases: PhraseMatcher) -> bool:
    """Never re-trigger on edits."""
    return False


BODY_CHANGE_PREDICATES: dict[BodyChangeRule, BodyChangePredicate] = {
    BodyChangeRule.PHRASE_ADDED: phrase_added,
    BodyChangeRule.ANY_CHANGE: any_text_change,
    BodyChangeRule.NEVER: never,
}


class DefaultTriggerPolicy:
    """Trigger policy driven by a repository's configuration.

    Precedence, first match wins:
    1. auto_build on a new PR or new head commit (unless a skip phrase
       is present in the title, description or newest commit message)
    2. an unseen comment by an allowed author containing the trigger phrase
    3. a title/description edit accepted by the body-change predicate

    Automatic and edit-based builds require the PR author to be allowed.
    """

    def __init__(
        self,
        phrases: PhraseMatcher,
        authors: AuthorMatcher | None = None,
        *,
        auto_build: bool = True,
        body_changed: BodyChangePredicate = phrase_added,
    ) -> None:
        """Initialize trigger policy.

        Args:
            phrases: Trigger and skip-build phrase matcher.
            authors: Allow-list for PR and comment authors (None allows all).
            auto_build: Build new PRs and new commits without a phrase.
            body_changed: Predicate for re-triggering on text edits.
        """
        self._phrases = phrases
        self._authors = authors or AuthorMatcher()
        self._auto_build = auto_build
        self._body_changed = body_changed

    @classmethod
    def from_config(cls, repo: RepositoryConfig) -> DefaultTriggerPolicy:
        """Build the policy for a configured repository."""
        return cls(
            PhraseMatcher(repo.trigger_phrase, repo.skip_build_phrase),
            AuthorMatcher(repo.allowed_authors),
            auto_build=repo.auto_build,
            body_changed=BODY_CHANGE_PREDICATES[repo.retrigger_on_edit],
        )

    @property
    def has_trigger_phrase(self) -> bool:
        """Check if comments can request builds."""
        return self._phrases.has_trigger_phrase

    def evaluate(self, context: TriggerContext) -> TriggerDecision:
        """Evaluate one pull request delta.

        Args:
            context: Pull request delta and fetched trigger inputs.

        Returns:
            TriggerDecision with the reason when a build must start.
        """
        changes = context.changes
        ref = context.ref
        author_allowed = self._authors.is_allowed(ref.author_login)

        automatic = self._automatic_reason(context)
        if automatic is not None:
            if not author_allowed:
                logger.debug("PR #%d: author '%s' not allowed", ref.number, ref.author_login)
            elif self._phrases.skips_build(ref.title, ref.body, context.latest_commit_message):
                logger.info("PR #%d: skip phrase present, not building", ref.number)
            else:
                return TriggerDecision.build(automatic, self._describe(automatic, context))

        requester = self._requesting_comment(context)
        if requester is not None:
            return TriggerDecision.build(
                TriggerReason.COMMENT_PHRASE,
                f"build requested by {requester.author_login} in comment {requester.id}",
            )

        if author_allowed and changes.text_changed and self._body_changed(context, self._phrases):
            return TriggerDecision.build(
                TriggerReason.BODY_PHRASE,
                "title or description edited",
            )

        return TriggerDecision.no_build(f"no trigger for {changes.classification.value} PR")

    def _automatic_reason(self, context: TriggerContext) -> TriggerReason | None:
        if not self._auto_build:
            return None
        if context.changes.classification == Classification.NEW:
            return TriggerReason.OPENED
        if context.changes.head_changed:
            return TriggerReason.HEAD_CHANGED
        return None

    def _requesting_comment(self, context: TriggerContext) -> CommentRef | None:
        if not self._phrases.has_trigger_phrase:
            return None
        for comment in context.unseen_comments():
            if not self._authors.is_allowed(comment.author_login):
                continue
            if self._phrases.requests_build(comment.body):
                return comment
        return None

    @staticmethod
    def _describe(reason: TriggerReason, context: TriggerContext) -> str:
        if reason == TriggerReason.OPENED:
            return f"new pull request at {context.record.head_sha[:7]}"
        previous = context.previous.head_sha[:7] if context.previous else "?"
        return f"head moved {previous} -> {context.record.head_sha[:7]}"
