"""Rate limit gate for reconciliation cycles.

Every cycle asks the gate first. The gate queries the rate limit
endpoint exactly once and closes only when GitHub positively reports
zero remaining calls; an unusable endpoint (GitHub Enterprise without
rate limiting, network trouble) leaves the gate open.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from prbuilder.logging import log_rate_limit

if TYPE_CHECKING:
    from prbuilder.github.models import RateLimitSnapshot

logger = logging.getLogger(__name__)


class RateLimitSource(Protocol):
    """Anything that can report the current rate limit."""

    async def get_rate_limit(self) -> RateLimitSnapshot:
        """Return the current core rate limit."""
        ...


class RateLimitGate:
    """Decides whether a reconciliation cycle may touch the API."""

    def __init__(self, source: RateLimitSource) -> None:
        self._source = source
        self._last_snapshot: RateLimitSnapshot | None = None

    @property
    def last_snapshot(self) -> RateLimitSnapshot | None:
        """Get the snapshot seen by the most recent allow() call, if any."""
        return self._last_snapshot

    async def allow(self) -> bool:
        """Return True if the cycle may proceed.

        Calls the rate limit query exactly once. Any query failure fails
        open, including responses that cannot be decoded.
        """
        try:
            snapshot = await self._source.get_rate_limit()
        except Exception as e:
            logger.info("Rate limit query failed, proceeding: %s", str(e) or type(e).__name__)
            self._last_snapshot = None
            log_rate_limit(remaining=None, limit=None, reset_at=None, allowed=True)
            return True

        self._last_snapshot = snapshot
        allowed = not snapshot.exhausted
        log_rate_limit(
            remaining=snapshot.remaining,
            limit=snapshot.limit,
            reset_at=snapshot.reset_at.isoformat(),
            allowed=allowed,
        )
        return allowed
