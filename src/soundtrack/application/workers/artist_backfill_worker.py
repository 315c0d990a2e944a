# Hey future me - this worker drains the ArtistBackfillQueue!
#
# It runs PERMANENTLY (not interval-based) and wakes up as soon as a job lands in the queue.
# - session-per-job: each backfill gets its own session_scope, committed album by album
# - a failing job is logged, counted, remembered in `recent_failures` and NOT re-queued;
#   the artist row exists already, so the next time a user plays one of its albums the
#   normal resolve path stores it anyway
# - the loop itself never dies on a job error
"""Artist Backfill Worker - processes artist backfill jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from soundtrack.application.services.catalog_resolver import CatalogResolver
from soundtrack.infrastructure.observability import correlation_scope, log_operation

if TYPE_CHECKING:
    from soundtrack.application.services.token_manager import SessionScope, TokenManager
    from soundtrack.application.workers.artist_backfill_queue import (
        ArtistBackfillJob,
        ArtistBackfillQueue,
    )
    from soundtrack.domain.ports import IStreamingProviderClient

logger = logging.getLogger(__name__)


@dataclass
class BackfillFailure:
    """A job that failed, kept for inspection."""

    artist_id: str
    user_id: int
    error_type: str
    error: str
    failed_at: datetime


class ArtistBackfillWorker:
    """Background worker that stores the full studio-album catalog of new artists.

    Usage:
        worker = ArtistBackfillWorker(queue, token_manager, client, db.session_scope)
        await worker.start()
        # ... worker runs in background ...
        await worker.stop()  # Graceful shutdown
    """

    def __init__(
        self,
        queue: ArtistBackfillQueue,
        token_manager: TokenManager,
        spotify_client: IStreamingProviderClient,
        session_scope: SessionScope,
        max_concurrent: int = 1,
        page_size: int = 50,
        max_failures_kept: int = 50,
    ) -> None:
        """Initialize worker.

        Args:
            queue: The backfill queue to process
            token_manager: Provides an access token for the job's user
            spotify_client: Provider client
            session_scope: Factory for transactional sessions (Database.session_scope)
            max_concurrent: Number of parallel worker tasks
            page_size: Page size for the artist-albums / album-tracks listings
            max_failures_kept: How many recent failures to remember
        """
        self._queue = queue
        self._token_manager = token_manager
        self._client = spotify_client
        self._session_scope = session_scope
        self._concurrency = max_concurrent
        self._page_size = page_size
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []
        self._stats: dict[str, int] = {
            "processed": 0,
            "success": 0,
            "failed": 0,
            "albums_created": 0,
        }
        self._failures: deque[BackfillFailure] = deque(maxlen=max_failures_kept)
        self._start_time = time.time()

    async def start(self) -> None:
        """Start `max_concurrent` worker tasks that all pull from the same queue."""
        if self._running:
            logger.warning("artist_backfill.already_running")
            return

        self._running = True
        self._start_time = time.time()
        for i in range(self._concurrency):
            self._tasks.append(
                asyncio.create_task(
                    self._process_loop(worker_id=i), name=f"artist-backfill-{i}"
                )
            )
        logger.info(
            "worker.started",
            extra={"worker": "artist_backfill", "concurrency": self._concurrency},
        )

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Stop worker gracefully, giving queued jobs `drain_timeout` seconds to finish."""
        if not self._running:
            return

        if not self._queue.is_empty():
            await self._queue.drain(timeout=drain_timeout)

        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

        logger.info(
            "worker.stopped",
            extra={
                "worker": "artist_backfill",
                **self._stats,
                "uptime_seconds": int(time.time() - self._start_time),
            },
        )

    async def _process_loop(self, worker_id: int) -> None:
        """Pull jobs until stopped. The 1s timeout lets us notice stop()."""
        while self._running:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                logger.debug("artist_backfill.worker_cancelled", extra={"worker_id": worker_id})
                break

            await self._process_job(job)

    async def _process_job(self, job: ArtistBackfillJob) -> bool:
        """Run one backfill. Never raises (except cancellation)."""
        success = False
        try:
            with correlation_scope():
                async with log_operation(
                    logger, "artist_backfill", artist_id=job.artist_id, user_id=job.user_id
                ):
                    access_token = await self._token_manager.get_valid_access_token(
                        job.user_id
                    )
                    async with self._session_scope() as session:
                        resolver = CatalogResolver(
                            session, self._client, page_size=self._page_size
                        )
                        created = await resolver.backfill_artist(
                            job.artist_id, access_token
                        )
            self._stats["albums_created"] += created
            success = True
        except Exception as e:
            # log_operation already logged the traceback as artist_backfill.failed
            self._failures.append(
                BackfillFailure(
                    artist_id=job.artist_id,
                    user_id=job.user_id,
                    error_type=type(e).__name__,
                    error=str(e),
                    failed_at=datetime.now(UTC),
                )
            )
        finally:
            self._stats["processed"] += 1
            self._stats["success" if success else "failed"] += 1
            await self._queue.mark_done(job, success=success)
        return success

    async def process_pending(self) -> int:
        """Process every job currently in the queue, one after another.

        Used on shutdown and in tests where no background task is running.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while (job := self._queue.get_nowait()) is not None:
            await self._process_job(job)
            processed += 1
        return processed

    @property
    def is_running(self) -> bool:
        """Check if worker is currently running."""
        return self._running

    @property
    def recent_failures(self) -> list[BackfillFailure]:
        """Most recent failed jobs, oldest first."""
        return list(self._failures)

    def get_stats(self) -> dict[str, Any]:
        """Worker + queue statistics."""
        return {
            "running": self._running,
            **self._stats,
            "queue": self._queue.get_stats(),
        }


__all__ = ["ArtistBackfillWorker", "BackfillFailure"]
