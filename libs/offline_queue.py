"""Offline queue for ledger entries recorded without connectivity.

State lives in a local on-disk cache (``diskcache``) owned by an explicit
:class:`OfflineQueue` object – open it, enqueue, :meth:`OfflineQueue.flush`
when the link is back, close it. Nothing is global.

Replay rules
------------
* strictly chronological (``date``, then enqueue time), one item at a time;
* an item leaves the queue only after its commit succeeded;
* commits are idempotent per ``client_ref`` (the ledger ignores a ref it has
  already stored), so a crash between commit and removal is harmless;
* ``InsufficientBalance`` will never succeed on retry → dead-letter, continue;
* any other error (network, DB down) stops the replay, order is preserved.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from diskcache import Cache
from pydantic import BaseModel, Field

from libs.balance import InsufficientBalance
from libs.config import get_settings
from libs.models import QueuedTransaction
from libs.sentry import sentry_capture

logger = logging.getLogger(__name__)

__all__ = ["OfflineQueue", "FlushReport"]

Commit = Callable[[QueuedTransaction], Awaitable[Any]]


class FlushReport(BaseModel):
    synced: list[str] = Field(default_factory=list)
    dead_lettered: list[str] = Field(default_factory=list)
    remaining: int = 0


class OfflineQueue:
    def __init__(self, directory: Path | str | None = None) -> None:
        self._directory = Path(directory or get_settings().offline_queue_dir)
        self._pending: Optional[Cache] = None
        self._dead: Optional[Cache] = None

    # ── lifecycle ────────────────────────────────────────────────────────────
    def open(self) -> "OfflineQueue":
        if self._pending is None:
            self._pending = Cache(str(self._directory / "pending"))
            self._dead = Cache(str(self._directory / "dead_letter"))
        return self

    def close(self) -> None:
        for cache in (self._pending, self._dead):
            if cache is not None:
                cache.close()
        self._pending = self._dead = None

    def __enter__(self) -> "OfflineQueue":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _caches(self) -> tuple[Cache, Cache]:
        if self._pending is None or self._dead is None:
            raise RuntimeError("OfflineQueue is not open")
        return self._pending, self._dead

    # ── queue operations ─────────────────────────────────────────────────────
    def enqueue(self, item: QueuedTransaction) -> None:
        pending, _ = self._caches()
        pending.set(item.client_ref, item.model_dump(mode="json"))
        logger.info("Queued offline transaction %s (%s)", item.client_ref, item.amount)

    def pending(self) -> list[QueuedTransaction]:
        pending, _ = self._caches()
        items = [QueuedTransaction.model_validate(pending[key]) for key in list(pending)]
        return sorted(items, key=lambda i: (i.date, i.queued_at))

    def dead_letters(self) -> dict[str, dict[str, Any]]:
        _, dead = self._caches()
        return {key: dead[key] for key in list(dead)}

    def __len__(self) -> int:
        pending, _ = self._caches()
        return len(pending)

    async def flush(self, commit: Commit) -> FlushReport:
        """Replay queued items through *commit* in chronological order."""
        pending, dead = self._caches()
        report = FlushReport()

        for item in self.pending():
            try:
                await commit(item)
            except InsufficientBalance as exc:
                logger.warning("Offline item %s rejected: %s", item.client_ref, exc)
                dead.set(
                    item.client_ref,
                    {"item": item.model_dump(mode="json"), "err": str(exc)},
                )
                del pending[item.client_ref]
                report.dead_lettered.append(item.client_ref)
                continue
            except Exception as exc:
                logger.error("Offline replay stopped at %s: %s", item.client_ref, exc)
                sentry_capture(exc, extras={"client_ref": item.client_ref})
                break
            del pending[item.client_ref]
            report.synced.append(item.client_ref)

        report.remaining = len(pending)
        if report.synced:
            logger.info("%d offline transaction(s) synchronised", len(report.synced))
        return report
