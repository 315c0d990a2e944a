"""History sync - incremental poll of one user's recently played tracks."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.application.services.catalog_resolver import CatalogResolver
from soundtrack.application.services.token_manager import TokenManager
from soundtrack.domain.entities import PlaybackEvent, parse_played_at
from soundtrack.domain.ports import IStreamingProviderClient
from soundtrack.infrastructure.persistence.models import ensure_utc_aware, utc_now
from soundtrack.infrastructure.persistence.repositories import PlaybackEventRepository

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def to_epoch_ms(value: datetime) -> int:
    """Whole milliseconds since the epoch (integer math, no float rounding)."""
    return (ensure_utc_aware(value) - _EPOCH) // timedelta(milliseconds=1)


@dataclass
class SyncResult:
    """What one sync() call did."""

    user_id: int
    debounced: bool = False
    fetched: int = 0
    inserted: int = 0
    cursor: int | None = None
    new_artist_ids: list[str] = field(default_factory=list)


class HistorySyncService:
    """Polls the provider for new playback events of a user and appends them.

    Hey future me - this is safe to call as often as you like (scheduler AND on-demand):
    - debounce: latest event younger than 30s -> no provider call at all
    - cursor: after = last played_at + 1ms, so the stored event is never fetched again
    - dedup: the (user, track, played_at) unique key swallows any overlap anyway

    ONE page per call (max 20 items). A user who was offline for ages catches up over
    several scheduler runs instead of one huge burst. That's intentional.

    The caller owns the transaction. Every provider call (token refresh, recently played,
    artist lookups, album paging) happens BEFORE the first write, so the write lock is only
    held for the final catalog + event inserts. If fetching the catalog fails, nothing is
    written at all and the cursor (which is derived from the stored events) doesn't move.
    """

    def __init__(
        self,
        session: AsyncSession,
        token_manager: TokenManager,
        spotify_client: IStreamingProviderClient,
        resolver: CatalogResolver | None = None,
        clock: Callable[[], datetime] = utc_now,
        debounce_seconds: int = 30,
        limit: int = 20,
    ) -> None:
        self.session = session
        self._token_manager = token_manager
        self._client = spotify_client
        self._resolver = resolver or CatalogResolver(session, spotify_client)
        self._clock = clock
        self._debounce = timedelta(seconds=debounce_seconds)
        self._limit = limit
        self.events = PlaybackEventRepository(session)

    async def sync(self, user_id: int) -> SyncResult:
        """Fetch one page of new plays for the user and store them.

        Returns:
            SyncResult (debounced=True if no provider call was made)

        Raises:
            NotConnectedError: User has no complete credential
            AccessTokenError: Token rejected - user should reconnect
            ProviderAuthError / ProviderError / RateLimitExceededError: Provider failures
        """
        result = SyncResult(user_id=user_id)

        latest = await self.events.get_latest(user_id)
        if latest is not None:
            age = self._clock() - ensure_utc_aware(latest.played_at)
            if age < self._debounce:
                logger.debug(
                    "history_sync.debounced",
                    extra={"user_id": user_id, "age_seconds": age.total_seconds()},
                )
                result.debounced = True
                return result

        access_token = await self._token_manager.get_valid_access_token(user_id)

        if latest is not None:
            result.cursor = to_epoch_ms(latest.played_at) + 1

        response = await self._client.get_recently_played(
            access_token, limit=self._limit, after=result.cursor
        )
        items = [
            item
            for item in response.get("items") or []
            if item.get("played_at") and (item.get("track") or {}).get("id")
        ]
        result.fetched = len(items)
        if not items:
            return result

        catalog = await self._resolver.fetch(
            [item["track"] for item in items], access_token
        )

        # Writes only from here on
        resolved = await self._resolver.store(catalog)
        result.new_artist_ids = resolved.new_artist_ids

        events = [
            PlaybackEvent(
                user_id=user_id,
                track_id=item["track"]["id"],
                played_at=parse_played_at(item["played_at"]),
            )
            for item in items
        ]
        result.inserted = await self.events.add_ignore_duplicates(events)

        logger.info(
            "history_sync.completed",
            extra={
                "user_id": user_id,
                "fetched": result.fetched,
                "inserted": result.inserted,
                "albums_created": resolved.albums_created,
                "new_artists": len(resolved.new_artist_ids),
            },
        )
        return result


__all__ = ["HistorySyncService", "SyncResult", "to_epoch_ms"]
