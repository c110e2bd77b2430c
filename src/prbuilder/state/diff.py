"""Pure diffing of cached and observed pull request records."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prbuilder.state.records import PullRequestRecord


class Classification(str, Enum):
    """What a reconciliation pass observed for one pull request."""

    NEW = "new"
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    CLOSED = "closed"


@dataclass(frozen=True)
class ChangeSet:
    """Result of diffing an old record against a new one."""

    classification: Classification
    head_changed: bool = False
    base_changed: bool = False
    title_changed: bool = False
    body_changed: bool = False
    timestamp_changed: bool = False

    @property
    def text_changed(self) -> bool:
        """Check if the title or description changed."""
        return self.title_changed or self.body_changed

    @property
    def needs_evaluation(self) -> bool:
        """Check if trigger evaluation must run."""
        return self.classification in (Classification.NEW, Classification.UPDATED)

    def describe(self) -> list[str]:
        """List the names of the changed fields."""
        flags = {
            "head": self.head_changed,
            "base": self.base_changed,
            "title": self.title_changed,
            "body": self.body_changed,
            "updated_at": self.timestamp_changed,
        }
        return [name for name, changed in flags.items() if changed]


def diff(old: PullRequestRecord | None, new: PullRequestRecord) -> ChangeSet:
    """Classify the change between a cached record and a fresh one.

    A head sha change is the primary signal. An updated_at change without
    one still counts as UPDATED so that comments and description edits get
    re-inspected.

    Args:
        old: Cached record, None if the PR was never seen.
        new: Record built from the remote state.

    Returns:
        ChangeSet describing the classification and changed fields.
    """
    if old is None:
        return ChangeSet(
            classification=Classification.NEW,
            head_changed=True,
            base_changed=True,
            title_changed=bool(new.title),
            body_changed=bool(new.body_digest),
            timestamp_changed=True,
        )

    head_changed = old.head_sha != new.head_sha
    timestamp_changed = old.updated_at != new.updated_at

    if not head_changed and not timestamp_changed:
        return ChangeSet(classification=Classification.UNCHANGED)

    return ChangeSet(
        classification=Classification.UPDATED,
        head_changed=head_changed,
        base_changed=old.base_sha != new.base_sha,
        title_changed=old.title != new.title,
        body_changed=old.body_digest != new.body_digest,
        timestamp_changed=timestamp_changed,
    )
