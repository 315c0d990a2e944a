# Hey future me - this is the scheduler! Every `interval_seconds` (default 10 min) it syncs
# the listening history of EVERY user with a connected account.
#
# Per cycle:
# 1. Load ids of users with a complete credential
# 2. Run HistorySyncService.sync() for each, max `max_concurrent_users` at a time
#    (asyncio.Semaphore). Users only share the RateLimiter's cooldown gate.
# 3. Queue newly discovered artists for backfill (after the user's commit!)
#
# Error handling:
# - One user failing (revoked token, provider 500, ...) is logged and counted, the other
#   users still get synced. Never crash the loop!
# - Each cycle and each user sync runs under its own correlation id
"""Background worker that periodically syncs all users' listening history."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from soundtrack.application.services.history_sync_service import (
    HistorySyncService,
    SyncResult,
)
from soundtrack.domain.exceptions import AccessTokenError, NotConnectedError, ProviderAuthError
from soundtrack.infrastructure.observability import (
    correlation_scope,
    log_operation,
    log_worker_health,
)
from soundtrack.infrastructure.persistence.models import utc_now
from soundtrack.infrastructure.persistence.repositories import UserRepository

if TYPE_CHECKING:
    from soundtrack.application.services.token_manager import SessionScope, TokenManager
    from soundtrack.application.workers.artist_backfill_queue import ArtistBackfillQueue
    from soundtrack.domain.ports import IStreamingProviderClient

logger = logging.getLogger(__name__)


class HistorySyncWorker:
    """Fixed-interval scheduler for history syncs.

    Usage:
        worker = HistorySyncWorker(db.session_scope, token_manager, client, queue)
        await worker.start()
        ...
        await worker.stop()

    `sync_user()` is also the on-demand entry point (e.g. a profile view).
    """

    def __init__(
        self,
        session_scope: SessionScope,
        token_manager: TokenManager,
        spotify_client: IStreamingProviderClient,
        backfill_queue: ArtistBackfillQueue | None = None,
        interval_seconds: float = 600,
        max_concurrent_users: int = 4,
        debounce_seconds: int = 30,
        recently_played_limit: int = 20,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize worker.

        Args:
            session_scope: Factory for transactional sessions (Database.session_scope)
            token_manager: Token manager shared with everything else
            spotify_client: Provider client (shares the process-wide RateLimiter)
            backfill_queue: Where new artists go; None disables backfill
            interval_seconds: Seconds between two cycles
            max_concurrent_users: Users synced in parallel
            debounce_seconds: Skip users whose latest play is younger than this
            recently_played_limit: Items fetched per user per cycle
            clock: Returns current aware UTC time
        """
        self._session_scope = session_scope
        self._token_manager = token_manager
        self._client = spotify_client
        self._backfill_queue = backfill_queue
        self.interval_seconds = interval_seconds
        self._max_concurrent_users = max_concurrent_users
        self._debounce_seconds = debounce_seconds
        self._limit = recently_played_limit
        self._clock = clock

        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._cycles_completed = 0
        self._errors_total = 0
        self._start_time = time.time()
        self._last_cycle: dict[str, Any] = {}

    async def start(self) -> None:
        """Start the scheduler loop (idempotent)."""
        if self._running:
            logger.warning("history_sync.already_running")
            return

        self._running = True
        self._start_time = time.time()
        self._task = asyncio.create_task(self._run_loop(), name="history-sync")
        logger.info(
            "worker.started",
            extra={"worker": "history_sync", "interval_seconds": self.interval_seconds},
        )

    async def stop(self) -> None:
        """Stop the scheduler loop and wait for it (idempotent)."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info(
            "worker.stopped",
            extra={
                "worker": "history_sync",
                "cycles_completed": self._cycles_completed,
                "errors_total": self._errors_total,
                "uptime_seconds": int(time.time() - self._start_time),
            },
        )

    async def _run_loop(self) -> None:
        """Run cycles until stop() is called."""
        while self._running:
            try:
                await self.run_once()
                self._cycles_completed += 1

                if self._cycles_completed % 10 == 0:
                    log_worker_health(
                        logger,
                        "history_sync",
                        self._cycles_completed,
                        self._errors_total,
                        time.time() - self._start_time,
                    )
            except Exception as e:
                # Do not crash the loop on errors - log and continue
                self._errors_total += 1
                logger.error(
                    "history_sync.cycle.failed",
                    extra={"error_type": type(e).__name__},
                    exc_info=True,
                )

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    async def run_once(self) -> dict[str, Any]:
        """Sync every connected user once.

        Returns:
            Cycle summary: users, succeeded, failed, inserted
        """
        with correlation_scope():
            async with self._session_scope() as session:
                user_ids = await UserRepository(session).list_connected_user_ids()

            semaphore = asyncio.Semaphore(self._max_concurrent_users)

            async def _guarded(user_id: int) -> SyncResult | None:
                async with semaphore:
                    return await self._sync_isolated(user_id)

            results = await asyncio.gather(*(_guarded(uid) for uid in user_ids))

        succeeded = [r for r in results if r is not None]
        summary = {
            "users": len(user_ids),
            "succeeded": len(succeeded),
            "failed": len(user_ids) - len(succeeded),
            "debounced": sum(1 for r in succeeded if r.debounced),
            "inserted": sum(r.inserted for r in succeeded),
        }
        self._last_cycle = summary
        logger.info("history_sync.cycle.completed", extra=summary)
        return summary

    # Hey future me - THIS is the per-user isolation boundary. Whatever goes wrong for one
    # user ends here as a log line + counter, never as an exception in run_once().
    async def _sync_isolated(self, user_id: int) -> SyncResult | None:
        try:
            return await self.sync_user(user_id)
        except (NotConnectedError, AccessTokenError, ProviderAuthError) as e:
            # User has to reconnect - nothing we can fix by retrying
            self._errors_total += 1
            logger.warning(
                "history_sync.reconnect_required",
                extra={"user_id": user_id, "error_type": type(e).__name__, "error": str(e)},
                exc_info=True,
            )
        except Exception:
            # sync_user's log_operation already logged history_sync.failed with traceback
            self._errors_total += 1
        return None

    async def sync_user(self, user_id: int) -> SyncResult:
        """Sync one user now, in its own transaction.

        New artists are queued for backfill only after the commit succeeded.

        Raises:
            Whatever HistorySyncService.sync() raises
        """
        with correlation_scope():
            async with log_operation(logger, "history_sync", user_id=user_id):
                async with self._session_scope() as session:
                    service = HistorySyncService(
                        session,
                        self._token_manager,
                        self._client,
                        clock=self._clock,
                        debounce_seconds=self._debounce_seconds,
                        limit=self._limit,
                    )
                    result = await service.sync(user_id)

                if result.new_artist_ids and self._backfill_queue is not None:
                    await self._backfill_queue.enqueue_many(result.new_artist_ids, user_id)
                return result

    @property
    def is_running(self) -> bool:
        """Check if worker is currently running."""
        return self._running

    def get_status(self) -> dict[str, Any]:
        """Current worker status and stats."""
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "cycles_completed": self._cycles_completed,
            "errors_total": self._errors_total,
            "last_cycle": self._last_cycle,
        }


__all__ = ["HistorySyncWorker"]
