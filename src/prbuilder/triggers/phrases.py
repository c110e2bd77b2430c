"""Phrase and author matchers used by trigger policies.

This module provides:
- PhraseMatcher: trigger / skip-build phrase detection in free text
- AuthorMatcher: login allow-list with glob patterns like 'bot-*'
"""

from __future__ import annotations

import fnmatch
import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def _compile(pattern: str | None) -> re.Pattern[str] | None:
    if not pattern:
        return None
    return re.compile(pattern, re.IGNORECASE | re.DOTALL)


class PhraseMatcher:
    """Detects build-request and skip-build phrases.

    Phrases are regular expressions searched case-insensitively anywhere
    in the text. A None phrase never matches.
    """

    def __init__(
        self,
        trigger_phrase: str | None = None,
        skip_build_phrase: str | None = None,
    ) -> None:
        self._trigger = _compile(trigger_phrase)
        self._skip = _compile(skip_build_phrase)

    @property
    def has_trigger_phrase(self) -> bool:
        """Check if a trigger phrase is configured."""
        return self._trigger is not None

    def requests_build(self, *texts: str | None) -> bool:
        """Check if any text contains the trigger phrase."""
        return self._search(self._trigger, texts)

    def skips_build(self, *texts: str | None) -> bool:
        """Check if any text contains the skip-build phrase."""
        return self._search(self._skip, texts)

    @staticmethod
    def _search(pattern: re.Pattern[str] | None, texts: Iterable[str | None]) -> bool:
        if pattern is None:
            return False
        return any(text and pattern.search(text) for text in texts)


class AuthorMatcher:
    """Login allow-list.

    An empty pattern list allows everyone. Patterns are case-insensitive
    globs, so 'octo*' matches 'OctoCat'.
    """

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self._patterns = [p.lower() for p in patterns if p]

    @property
    def allows_everyone(self) -> bool:
        """Check if no restriction is configured."""
        return not self._patterns

    def is_allowed(self, login: str | None) -> bool:
        """Check if a login may get builds."""
        if self.allows_everyone:
            return True
        if not login:
            return False
        lowered = login.lower()
        allowed = any(fnmatch.fnmatchcase(lowered, pattern) for pattern in self._patterns)
        if not allowed:
            logger.debug("Author '%s' not in allow-list", login)
        return allowed
