# Hey future me - this queue is where newly discovered artists wait for their full catalog!
#
# A history sync only stores the albums/tracks a user actually played. When it meets an
# artist for the first time, it hands the artist id back and HistorySyncWorker puts a job
# in here AFTER its transaction committed (the worker must be able to see the artist row).
# ArtistBackfillWorker then pages through the artist's studio albums in the background, so
# the user's sync is never slowed down by somebody's 300-album discography.
#
# Flow:
#   HistorySyncWorker.sync_user()
#       └─► queue.enqueue(ArtistBackfillJob(artist_id, user_id))
#           └─► ArtistBackfillWorker._process_loop()
#               └─► CatalogResolver.backfill_artist()
"""Artist Backfill Queue - deferred full-catalog fetch for new artists."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtistBackfillJob:
    """Backfill request for one artist.

    user_id is whose token we use for the provider calls - any connected user works,
    we simply take the one whose sync discovered the artist.
    """

    artist_id: str
    user_id: int
    created_at: datetime = field(
        default_factory=lambda: datetime.now(UTC), compare=False
    )


class ArtistBackfillQueue:
    """Async FIFO queue of backfill jobs with de-duplication by artist id.

    Usage:
        queue = ArtistBackfillQueue()
        await queue.enqueue(ArtistBackfillJob(artist_id="0OdUWJ0sBjDrqHygGUXeCF", user_id=1))

        job = await queue.get()  # Blocks until job available
        # ... process job ...
        await queue.mark_done(job, success=True)
    """

    def __init__(self, max_size: int = 10000) -> None:
        """Initialize queue.

        Args:
            max_size: Maximum queue size (prevents memory explosion)
        """
        self._queue: asyncio.Queue[ArtistBackfillJob] = asyncio.Queue(maxsize=max_size)
        self._pending: set[str] = set()  # artist ids queued or in progress
        self._lock = asyncio.Lock()
        self._stats: dict[str, int] = {
            "enqueued": 0,
            "processed": 0,
            "failed": 0,
            "duplicates_skipped": 0,
        }

    async def enqueue(self, job: ArtistBackfillJob) -> bool:
        """Add job to queue.

        Returns:
            True if enqueued, False if the artist is already queued or the queue is full
        """
        async with self._lock:
            if job.artist_id in self._pending:
                self._stats["duplicates_skipped"] += 1
                logger.debug("artist_backfill.duplicate", extra={"artist_id": job.artist_id})
                return False
            try:
                self._queue.put_nowait(job)
            except asyncio.QueueFull:
                logger.warning(
                    "artist_backfill.queue_full", extra={"artist_id": job.artist_id}
                )
                return False
            self._pending.add(job.artist_id)
            self._stats["enqueued"] += 1

        logger.debug(
            "artist_backfill.enqueued",
            extra={"artist_id": job.artist_id, "queue_size": self._queue.qsize()},
        )
        return True

    async def enqueue_many(self, artist_ids: list[str], user_id: int) -> int:
        """Enqueue a job per artist id.

        Returns:
            Number of jobs actually enqueued (duplicates excluded)
        """
        count = 0
        for artist_id in artist_ids:
            if await self.enqueue(ArtistBackfillJob(artist_id=artist_id, user_id=user_id)):
                count += 1
        return count

    async def get(self) -> ArtistBackfillJob:
        """Get next job, blocking until one is available."""
        return await self._queue.get()

    def get_nowait(self) -> ArtistBackfillJob | None:
        """Get next job without blocking (None if empty)."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def mark_done(self, job: ArtistBackfillJob, success: bool = True) -> None:
        """Mark job as processed. Must be called once for every job taken out!"""
        async with self._lock:
            self._pending.discard(job.artist_id)
            self._stats["processed"] += 1
            if not success:
                self._stats["failed"] += 1
        self._queue.task_done()

    def get_stats(self) -> dict[str, Any]:
        """Queue statistics for monitoring."""
        return {
            **self._stats,
            "pending": len(self._pending),
            "queue_size": self._queue.qsize(),
        }

    def is_empty(self) -> bool:
        """Check if queue is empty."""
        return self._queue.empty()

    async def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every queued job was marked done.

        Returns:
            True if drained, False on timeout
        """
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
            return True
        except TimeoutError:
            logger.warning(
                "artist_backfill.drain_timeout",
                extra={"timeout": timeout, "queue_size": self._queue.qsize()},
            )
            return False


__all__ = ["ArtistBackfillJob", "ArtistBackfillQueue"]
