"""Duplicate detection keyed strictly by the carrier transaction id (TID).

Amount/date heuristics are deliberately absent: people legitimately send the
same amount twice a day.
"""
from __future__ import annotations

from typing import AbstractSet, Iterable, Optional

from libs.models import SmsStatus

__all__ = ["is_duplicate", "DuplicateGuard"]


def is_duplicate(tid: Optional[str], known_tids: AbstractSet[str]) -> bool:
    """``True`` if *tid* was already imported. No TID → check disabled."""
    if not tid:
        return False
    return tid in known_tids


class DuplicateGuard:
    """Batch-scoped guard: previously imported TIDs plus those seen in this batch."""

    def __init__(self, known_tids: Iterable[str] = ()) -> None:
        self._seen: set[str] = set(known_tids)

    def status_for(self, tid: Optional[str]) -> SmsStatus:
        """Classify *tid* and remember it for the rest of the batch."""
        if is_duplicate(tid, self._seen):
            return SmsStatus.DUPLICATE
        if tid:
            self._seen.add(tid)
        return SmsStatus.PENDING_REVIEW

    def __contains__(self, tid: object) -> bool:
        return tid in self._seen
