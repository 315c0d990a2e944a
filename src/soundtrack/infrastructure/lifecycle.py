"""Application lifecycle management for startup and shutdown tasks.

This module wires every component together once, in dependency order:

    Database -> RateLimiter -> SpotifyClient -> TokenManager
             -> ArtistBackfillQueue -> ArtistBackfillWorker -> HistorySyncWorker

and tears them down in reverse order.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.application.services import AggregationService, TokenManager
from soundtrack.application.workers import (
    ArtistBackfillQueue,
    ArtistBackfillWorker,
    HistorySyncWorker,
)
from soundtrack.config import Settings, get_settings
from soundtrack.domain.exceptions import ConfigurationError
from soundtrack.infrastructure.integrations import SpotifyClient
from soundtrack.infrastructure.observability import configure_logging
from soundtrack.infrastructure.persistence import Database
from soundtrack.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


# Hey future me, this validates SQLite paths BEFORE we try creating the DB engine! It makes
# sure the parent directory exists and is writable (SQLite also needs to create -journal/-wal
# files next to the .db). We DON'T pre-create the .db file - SQLite does that on first
# connect. Returns early for PostgreSQL and in-memory databases.
def _validate_sqlite_path(settings: Settings) -> None:
    """Validate SQLite database path accessibility before engine creation."""
    db_path = settings._get_sqlite_db_path()
    if db_path is None:
        return

    try:
        if db_path.parent and str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc

    try:
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}. "
            "SQLite requires write permissions to create database and journal files."
        ) from exc


@dataclass
class Application:
    """Everything the running process holds on to."""

    settings: Settings
    db: Database
    rate_limiter: RateLimiter
    spotify_client: SpotifyClient
    token_manager: TokenManager
    backfill_queue: ArtistBackfillQueue
    backfill_worker: ArtistBackfillWorker
    history_sync_worker: HistorySyncWorker

    def aggregation(self, session: AsyncSession) -> AggregationService:
        """AggregationService bound to `session`, with the configured "week" length."""
        return AggregationService(
            session, week_lookback_days=self.settings.sync.week_lookback_days
        )


# Listen future me, everything before `yield` runs at STARTUP, everything after at SHUTDOWN.
# The try/finally makes sure cleanup ALWAYS runs, even if startup crashed halfway - that's why
# every resource starts as None and shutdown checks before touching it.
@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    start_workers: bool = True,
    create_tables: bool = False,
) -> AsyncGenerator[Application, None]:
    """Build, start and finally stop all components.

    Args:
        settings: Settings to use (default: get_settings())
        start_workers: Start the scheduler and backfill worker
        create_tables: Create tables directly (dev/tests - production runs alembic)

    Yields:
        The wired Application
    """
    settings = settings or get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("app.starting", extra={"app_name": settings.app_name})

    db: Database | None = None
    spotify_client: SpotifyClient | None = None
    backfill_worker: ArtistBackfillWorker | None = None
    history_sync_worker: HistorySyncWorker | None = None
    try:
        _validate_sqlite_path(settings)

        db = Database(settings)
        if create_tables:
            await db.create_tables()
        logger.info("database.initialized", extra={"dialect": db.dialect_name})

        # ONE limiter for the whole process - the provider rate-limits the application
        rate_limiter = RateLimiter(
            max_attempts=settings.spotify.max_attempts,
            margin_seconds=settings.spotify.retry_margin_seconds,
        )
        spotify_client = SpotifyClient(settings.spotify, rate_limiter)
        token_manager = TokenManager(
            spotify_client=spotify_client,
            session_scope=db.session_scope,
            skew_seconds=settings.sync.token_refresh_skew_seconds,
        )

        backfill_queue = ArtistBackfillQueue()
        backfill_worker = ArtistBackfillWorker(
            queue=backfill_queue,
            token_manager=token_manager,
            spotify_client=spotify_client,
            session_scope=db.session_scope,
            max_concurrent=settings.sync.backfill_concurrency,
        )
        history_sync_worker = HistorySyncWorker(
            session_scope=db.session_scope,
            token_manager=token_manager,
            spotify_client=spotify_client,
            backfill_queue=backfill_queue,
            interval_seconds=settings.sync.interval_seconds,
            max_concurrent_users=settings.sync.max_concurrent_users,
            debounce_seconds=settings.sync.debounce_seconds,
            recently_played_limit=settings.sync.recently_played_limit,
        )

        if start_workers:
            await backfill_worker.start()
            await history_sync_worker.start()

        yield Application(
            settings=settings,
            db=db,
            rate_limiter=rate_limiter,
            spotify_client=spotify_client,
            token_manager=token_manager,
            backfill_queue=backfill_queue,
            backfill_worker=backfill_worker,
            history_sync_worker=history_sync_worker,
        )
    finally:
        logger.info("app.stopping")
        timeout = settings.observability.shutdown_timeout

        # Reverse order: producer first, then consumer, then transport, then DB
        if history_sync_worker is not None:
            try:
                await asyncio.wait_for(history_sync_worker.stop(), timeout=timeout)
            except Exception:
                logger.exception("history_sync.stop_failed")
        if backfill_worker is not None:
            try:
                await asyncio.wait_for(
                    backfill_worker.stop(drain_timeout=timeout), timeout=timeout * 2
                )
            except Exception:
                logger.exception("artist_backfill.stop_failed")
        if spotify_client is not None:
            await spotify_client.close()
        if db is not None:
            await db.close()
        logger.info("app.stopped")


__all__ = ["Application", "lifespan"]
