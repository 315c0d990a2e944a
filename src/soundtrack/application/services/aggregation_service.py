"""Aggregation Service - top tracks/albums/artists and distinct counts per timeframe.

Hey future me - everything here is a read-only query over the event log joined to the
catalog: playback_events -> tracks -> albums -> artists.

Ranking rules:
- count events with played_at >= timeframe cutoff
- order by count DESC, then entity id ASC (stable tie-break, otherwise paging
  could show the same entity on page 1 and page 2)
- offset = (page - 1) * limit, page is 1-based
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.domain.entities import RankedEntity
from soundtrack.domain.exceptions import ValidationError
from soundtrack.domain.value_objects import Timeframe
from soundtrack.infrastructure.observability import log_slow_operation
from soundtrack.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    PlaybackEventModel,
    TrackModel,
    to_utc_naive,
    utc_now,
)

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 250


def _validate_paging(limit: int, page: int) -> int:
    """Check limit/page and return the row offset."""
    if limit < 1:
        raise ValidationError(f"limit must be >= 1, got {limit}")
    if page < 1:
        raise ValidationError(f"page must be >= 1, got {page}")
    return (page - 1) * limit


class AggregationService:
    """Ranked top-N lists and distinct counts for one user."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        week_lookback_days: int = 7,
    ) -> None:
        """Initialize aggregation service.

        Args:
            session: Database session
            clock: Returns current aware UTC time
            week_lookback_days: Length of the "week" timeframe (1 = legacy behaviour)
        """
        self._session = session
        self._clock = clock
        self._week_lookback_days = week_lookback_days

    def cutoff(self, timeframe: Timeframe | str) -> datetime:
        """Naive-UTC start cutoff for a timeframe (inclusive)."""
        start = Timeframe.parse(timeframe).start_date(
            self._clock(), week_lookback_days=self._week_lookback_days
        )
        return to_utc_naive(start)

    async def _ranked(
        self, operation: str, stmt: Any, user_id: int
    ) -> list[RankedEntity]:
        start = time.monotonic()
        result = await self._session.execute(stmt)
        rows = result.all()
        log_slow_operation(
            logger,
            operation,
            int((time.monotonic() - start) * 1000),
            threshold_ms=SLOW_QUERY_THRESHOLD_MS,
            user_id=user_id,
        )
        return [
            RankedEntity(
                id=row.id,
                name=row.name,
                count=row.stream_count,
                slug=row.slug,
                image_url=row.image_url,
                album_name=getattr(row, "album_name", None),
                artist_name=getattr(row, "artist_name", None),
            )
            for row in rows
        ]

    # =========================================================================
    # TOP-N
    # =========================================================================

    async def top_tracks(
        self,
        user_id: int,
        limit: int = 10,
        page: int = 1,
        timeframe: Timeframe | str = Timeframe.ALL,
    ) -> list[RankedEntity]:
        """Most streamed tracks of a user in the timeframe.

        Raises:
            ValidationError: limit/page < 1 or unknown timeframe
        """
        offset = _validate_paging(limit, page)
        stream_count = func.count(PlaybackEventModel.id).label("stream_count")
        stmt = (
            select(
                TrackModel.id,
                TrackModel.name,
                TrackModel.slug,
                AlbumModel.artwork_url.label("image_url"),
                AlbumModel.name.label("album_name"),
                ArtistModel.name.label("artist_name"),
                stream_count,
            )
            .select_from(PlaybackEventModel)
            .join(TrackModel, PlaybackEventModel.track_id == TrackModel.id)
            .join(AlbumModel, TrackModel.album_id == AlbumModel.id)
            .join(ArtistModel, AlbumModel.artist_id == ArtistModel.id)
            .where(
                PlaybackEventModel.user_id == user_id,
                PlaybackEventModel.played_at >= self.cutoff(timeframe),
            )
            .group_by(
                TrackModel.id,
                TrackModel.name,
                TrackModel.slug,
                AlbumModel.artwork_url,
                AlbumModel.name,
                ArtistModel.name,
            )
            .order_by(stream_count.desc(), TrackModel.id)
            .limit(limit)
            .offset(offset)
        )
        return await self._ranked("aggregation.top_tracks", stmt, user_id)

    async def top_albums(
        self,
        user_id: int,
        limit: int = 10,
        page: int = 1,
        timeframe: Timeframe | str = Timeframe.ALL,
    ) -> list[RankedEntity]:
        """Most streamed albums of a user in the timeframe.

        Raises:
            ValidationError: limit/page < 1 or unknown timeframe
        """
        offset = _validate_paging(limit, page)
        stream_count = func.count(PlaybackEventModel.id).label("stream_count")
        stmt = (
            select(
                AlbumModel.id,
                AlbumModel.name,
                AlbumModel.slug,
                AlbumModel.artwork_url.label("image_url"),
                ArtistModel.name.label("artist_name"),
                stream_count,
            )
            .select_from(PlaybackEventModel)
            .join(TrackModel, PlaybackEventModel.track_id == TrackModel.id)
            .join(AlbumModel, TrackModel.album_id == AlbumModel.id)
            .join(ArtistModel, AlbumModel.artist_id == ArtistModel.id)
            .where(
                PlaybackEventModel.user_id == user_id,
                PlaybackEventModel.played_at >= self.cutoff(timeframe),
            )
            .group_by(
                AlbumModel.id,
                AlbumModel.name,
                AlbumModel.slug,
                AlbumModel.artwork_url,
                ArtistModel.name,
            )
            .order_by(stream_count.desc(), AlbumModel.id)
            .limit(limit)
            .offset(offset)
        )
        return await self._ranked("aggregation.top_albums", stmt, user_id)

    async def top_artists(
        self,
        user_id: int,
        limit: int = 10,
        page: int = 1,
        timeframe: Timeframe | str = Timeframe.ALL,
    ) -> list[RankedEntity]:
        """Most streamed artists of a user in the timeframe.

        Raises:
            ValidationError: limit/page < 1 or unknown timeframe
        """
        offset = _validate_paging(limit, page)
        stream_count = func.count(PlaybackEventModel.id).label("stream_count")
        stmt = (
            select(
                ArtistModel.id,
                ArtistModel.name,
                ArtistModel.slug,
                ArtistModel.image_url,
                stream_count,
            )
            .select_from(PlaybackEventModel)
            .join(TrackModel, PlaybackEventModel.track_id == TrackModel.id)
            .join(AlbumModel, TrackModel.album_id == AlbumModel.id)
            .join(ArtistModel, AlbumModel.artist_id == ArtistModel.id)
            .where(
                PlaybackEventModel.user_id == user_id,
                PlaybackEventModel.played_at >= self.cutoff(timeframe),
            )
            .group_by(
                ArtistModel.id,
                ArtistModel.name,
                ArtistModel.slug,
                ArtistModel.image_url,
            )
            .order_by(stream_count.desc(), ArtistModel.id)
            .limit(limit)
            .offset(offset)
        )
        return await self._ranked("aggregation.top_artists", stmt, user_id)

    # =========================================================================
    # DISTINCT COUNTS
    # =========================================================================

    async def distinct_track_count(
        self, user_id: int, timeframe: Timeframe | str = Timeframe.ALL
    ) -> int:
        """Number of different tracks streamed in the timeframe."""
        stmt = select(func.count(func.distinct(PlaybackEventModel.track_id))).where(
            PlaybackEventModel.user_id == user_id,
            PlaybackEventModel.played_at >= self.cutoff(timeframe),
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def distinct_album_count(
        self, user_id: int, timeframe: Timeframe | str = Timeframe.ALL
    ) -> int:
        """Number of different albums streamed in the timeframe."""
        stmt = (
            select(func.count(func.distinct(TrackModel.album_id)))
            .select_from(PlaybackEventModel)
            .join(TrackModel, PlaybackEventModel.track_id == TrackModel.id)
            .where(
                PlaybackEventModel.user_id == user_id,
                PlaybackEventModel.played_at >= self.cutoff(timeframe),
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def distinct_artist_count(
        self, user_id: int, timeframe: Timeframe | str = Timeframe.ALL
    ) -> int:
        """Number of different artists streamed in the timeframe."""
        stmt = (
            select(func.count(func.distinct(AlbumModel.artist_id)))
            .select_from(PlaybackEventModel)
            .join(TrackModel, PlaybackEventModel.track_id == TrackModel.id)
            .join(AlbumModel, TrackModel.album_id == AlbumModel.id)
            .where(
                PlaybackEventModel.user_id == user_id,
                PlaybackEventModel.played_at >= self.cutoff(timeframe),
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0


__all__ = ["AggregationService"]
