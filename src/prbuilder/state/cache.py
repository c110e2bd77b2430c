"""Concurrent in-memory cache of pull request records.

The cache is process-lifetime state owned by one RepositoryWatcher and
rebuilt from the remote on the first cycle. Every operation takes the
lock for a single key update and never across an await, so overlapping
timer and webhook cycles see whole records only.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from prbuilder.state.records import PullRequestRecord


class PullRequestCache:
    """Mapping of PR number to its latest record."""

    def __init__(self, records: Iterable[PullRequestRecord] = ()) -> None:
        self._lock = threading.Lock()
        self._records: dict[int, PullRequestRecord] = {r.number: r for r in records}

    def get(self, number: int) -> PullRequestRecord | None:
        """Get the record for a PR number, if cached."""
        with self._lock:
            return self._records.get(number)

    def put(self, record: PullRequestRecord) -> None:
        """Insert or replace a record."""
        with self._lock:
            self._records[record.number] = record

    def compare_and_set(
        self,
        number: int,
        expected: PullRequestRecord | None,
        record: PullRequestRecord | None,
    ) -> bool:
        """Atomically replace the entry if it is still `expected`.

        Args:
            number: PR number.
            expected: Record the caller read, None if it saw no entry.
            record: Replacement, None to remove the entry.

        Returns:
            True if the swap happened.
        """
        with self._lock:
            if self._records.get(number) is not expected:
                return False
            if record is None:
                self._records.pop(number, None)
            else:
                self._records[number] = record
            return True

    def evict(self, number: int) -> PullRequestRecord | None:
        """Remove a record, returning it if it was present."""
        with self._lock:
            return self._records.pop(number, None)

    def retain(self, numbers: Iterable[int]) -> list[int]:
        """Evict every record whose number is not in `numbers`.

        Returns:
            The evicted PR numbers, sorted.
        """
        keep = set(numbers)
        with self._lock:
            evicted = sorted(n for n in self._records if n not in keep)
            for number in evicted:
                del self._records[number]
        return evicted

    def numbers(self) -> list[int]:
        """Get the cached PR numbers, sorted."""
        with self._lock:
            return sorted(self._records)

    def snapshot(self) -> dict[int, PullRequestRecord]:
        """Get a point-in-time copy of the cache."""
        with self._lock:
            return dict(self._records)

    def __contains__(self, number: object) -> bool:
        with self._lock:
            return number in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
