"""Background workers: history sync scheduler and artist backfill."""

from soundtrack.application.workers.artist_backfill_queue import (
    ArtistBackfillJob,
    ArtistBackfillQueue,
)
from soundtrack.application.workers.artist_backfill_worker import (
    ArtistBackfillWorker,
    BackfillFailure,
)
from soundtrack.application.workers.history_sync_worker import HistorySyncWorker

__all__ = [
    "ArtistBackfillJob",
    "ArtistBackfillQueue",
    "ArtistBackfillWorker",
    "BackfillFailure",
    "HistorySyncWorker",
]
