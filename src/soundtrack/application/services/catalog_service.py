"""Catalog Service - artist/album/track pages and "top listeners"."""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.domain.entities import Album, AlbumTrackStats, Artist, TopListener, Track
from soundtrack.domain.exceptions import ValidationError
from soundtrack.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    PlaybackEventModel,
    TrackModel,
    UserModel,
)
from soundtrack.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
    TrackRepository,
)

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Catalog entity a top-listener ranking can be computed for."""

    TRACK = "track"
    ALBUM = "album"
    ARTIST = "artist"


class CatalogService:
    """Read side of the catalog (what the artist/album/track pages show).

    Stream counts here are over ALL users - unlike AggregationService which is per user.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize catalog service.

        Args:
            session: Database session
        """
        self._session = session
        self.artists = ArtistRepository(session)
        self.albums = AlbumRepository(session)
        self.tracks = TrackRepository(session)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_artist_by_slug(self, slug: str) -> Artist:
        """Raises EntityNotFoundException if no artist has this slug."""
        return await self.artists.get_by_slug(slug)

    async def get_album_by_slug(self, slug: str) -> Album:
        """Raises EntityNotFoundException if no album has this slug."""
        return await self.albums.get_by_slug(slug)

    async def get_track_by_slug(self, slug: str) -> Track:
        """Raises EntityNotFoundException if no track has this slug."""
        return await self.tracks.get_by_slug(slug)

    async def get_artist_albums(self, artist_id: str) -> list[Album]:
        """All stored albums of an artist (newest first).

        Raises:
            EntityNotFoundException: If the artist doesn't exist
        """
        await self.artists.get_by_id(artist_id)
        return await self.albums.list_by_artist(artist_id)

    # =========================================================================
    # ALBUM PAGE
    # =========================================================================

    # Hey future me - OUTER join on the events! Tracks nobody has played yet still show up
    # with count 0. The user filter is intentionally absent: this is the "global" view.
    async def get_album_tracks(self, album_id: str) -> list[AlbumTrackStats]:
        """Every track of an album with its stream count over all users.

        Ordered by stream count (most streamed first), then track id.

        Raises:
            EntityNotFoundException: If the album doesn't exist
        """
        await self.albums.get_by_id(album_id)

        stream_count = func.count(PlaybackEventModel.id).label("stream_count")
        stmt = (
            select(
                TrackModel.id,
                TrackModel.name,
                TrackModel.duration_ms,
                TrackModel.slug.label("track_slug"),
                AlbumModel.slug.label("album_slug"),
                AlbumModel.artwork_url,
                ArtistModel.slug.label("artist_slug"),
                stream_count,
            )
            .join(AlbumModel, TrackModel.album_id == AlbumModel.id)
            .join(ArtistModel, AlbumModel.artist_id == ArtistModel.id)
            .outerjoin(PlaybackEventModel, PlaybackEventModel.track_id == TrackModel.id)
            .where(TrackModel.album_id == album_id)
            .group_by(
                TrackModel.id,
                TrackModel.name,
                TrackModel.duration_ms,
                TrackModel.slug,
                AlbumModel.slug,
                AlbumModel.artwork_url,
                ArtistModel.slug,
            )
            .order_by(stream_count.desc(), TrackModel.id)
        )
        result = await self._session.execute(stmt)
        return [
            AlbumTrackStats(
                id=row.id,
                name=row.name,
                duration_ms=row.duration_ms,
                count=row.stream_count,
                track_slug=row.track_slug,
                album_slug=row.album_slug,
                artist_slug=row.artist_slug,
                artwork_url=row.artwork_url,
            )
            for row in result
        ]

    async def get_album_duration(self, album_id: str) -> int:
        """Sum of all stored track durations of an album, in milliseconds."""
        stmt = select(func.coalesce(func.sum(TrackModel.duration_ms), 0)).where(
            TrackModel.album_id == album_id
        )
        result = await self._session.execute(stmt)
        return int(result.scalar() or 0)

    # =========================================================================
    # TOP LISTENERS
    # =========================================================================

    async def get_top_listeners(
        self, kind: EntityKind | str, entity_id: str, limit: int = 10
    ) -> list[TopListener]:
        """Users ranked by how often they streamed a track, album or artist.

        Ties are broken by user id so the ranking is stable.

        Raises:
            ValidationError: Unknown kind or limit < 1
        """
        try:
            kind = EntityKind(kind)
        except ValueError as e:
            raise ValidationError(
                f"Invalid entity kind '{kind}' (expected track, album or artist)"
            ) from e
        if limit < 1:
            raise ValidationError(f"limit must be >= 1, got {limit}")

        stream_count = func.count(PlaybackEventModel.id).label("stream_count")
        stmt = (
            select(UserModel.id, UserModel.username, stream_count)
            .select_from(PlaybackEventModel)
            .join(UserModel, PlaybackEventModel.user_id == UserModel.id)
        )
        if kind is EntityKind.TRACK:
            stmt = stmt.where(PlaybackEventModel.track_id == entity_id)
        elif kind is EntityKind.ALBUM:
            stmt = stmt.join(
                TrackModel, PlaybackEventModel.track_id == TrackModel.id
            ).where(TrackModel.album_id == entity_id)
        else:
            stmt = (
                stmt.join(TrackModel, PlaybackEventModel.track_id == TrackModel.id)
                .join(AlbumModel, TrackModel.album_id == AlbumModel.id)
                .where(AlbumModel.artist_id == entity_id)
            )

        stmt = (
            stmt.group_by(UserModel.id, UserModel.username)
            .order_by(stream_count.desc(), UserModel.id)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [
            TopListener(user_id=row.id, username=row.username, count=row.stream_count)
            for row in result
        ]


__all__ = ["CatalogService", "EntityKind"]
