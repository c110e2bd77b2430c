"""Trigger policies deciding when a pull request gets a build."""

from prbuilder.triggers.phrases import AuthorMatcher, PhraseMatcher
from prbuilder.triggers.policy import (
    BODY_CHANGE_PREDICATES,
    BodyChangePredicate,
    DefaultTriggerPolicy,
    TriggerContext,
    TriggerDecision,
    TriggerPolicy,
    TriggerReason,
    any_text_change,
    never,
    phrase_added,
)

__all__ = [
    "BODY_CHANGE_PREDICATES",
    "AuthorMatcher",
    "BodyChangePredicate",
    "DefaultTriggerPolicy",
    "PhraseMatcher",
    "TriggerContext",
    "TriggerDecision",
    "TriggerPolicy",
    "TriggerReason",
    "any_text_change",
    "never",
    "phrase_added",
]
