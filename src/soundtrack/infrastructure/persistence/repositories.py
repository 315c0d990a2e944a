"""Repository implementations for domain entities."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.domain.entities import (
    Album,
    Artist,
    Credential,
    HistoryEntry,
    PlaybackEvent,
    Track,
    User,
)
from soundtrack.domain.exceptions import EntityNotFoundException
from soundtrack.domain.value_objects import AlbumType, slugify, unique_slug

from .models import (
    AlbumModel,
    ArtistModel,
    Base,
    PlaybackEventModel,
    TrackModel,
    UserModel,
    ensure_utc_aware,
    to_utc_naive,
)


# Hey future me - this is our "create or ignore duplicate" primitive! Both SQLite and
# PostgreSQL understand INSERT ... ON CONFLICT DO NOTHING. Without a conflict target it
# ignores ANY unique violation (primary key, slug, the playback triple), which is exactly the
# "uniqueness violation = already there = success" rule. Foreign key violations are NOT
# conflicts - those still raise IntegrityError and propagate.
async def insert_ignore_duplicates(
    session: AsyncSession, model: type[Base], rows: Sequence[dict[str, Any]]
) -> int:
    """Bulk insert rows, silently skipping the ones that violate a unique constraint.

    Returns:
        Number of rows actually inserted (as reported by the driver)
    """
    if not rows:
        return 0

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt: Any = postgresql.insert(model).values(list(rows)).on_conflict_do_nothing()
    else:
        stmt = sqlite.insert(model).values(list(rows)).on_conflict_do_nothing()

    result = await session.execute(stmt)
    return max(result.rowcount or 0, 0)


async def _assign_slugs(
    session: AsyncSession,
    model: type[ArtistModel] | type[AlbumModel] | type[TrackModel],
    entities: Sequence[Artist | Album | Track],
) -> None:
    """Fill in a unique slug for every entity that has none yet.

    Slugs taken by OTHER rows in the DB or earlier in the same batch get the id suffix.
    """
    pending = [e for e in entities if not e.slug]
    if not pending:
        return

    bases = {slugify(e.name) for e in pending}
    stmt = select(model.id, model.slug).where(model.slug.in_(bases))
    result = await session.execute(stmt)
    owners: dict[str, str] = {row.slug: row.id for row in result}

    used_in_batch: dict[str, str] = {}
    for entity in pending:
        taken = {
            slug for slug, owner in owners.items() if owner != entity.id
        } | {slug for slug, owner in used_in_batch.items() if owner != entity.id}
        entity.slug = unique_slug(entity.name, entity.id, taken)
        used_in_batch[entity.slug] = entity.id


# =============================================================================
# USERS + CREDENTIALS
# =============================================================================


class UserRepository:
    """Repository for users and their streaming credential.

    Hey future me - the credential triple is only ever written through
    update_credential()/clear_credential(). Both write all columns in ONE UPDATE,
    so a crash can never leave a half-written credential behind.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    @staticmethod
    def _to_entity(model: UserModel) -> User:
        return User(
            id=model.id,
            username=model.username,
            created_at=ensure_utc_aware(model.created_at) if model.created_at else None,
            is_connected=model.has_credential(),
        )

    async def add(self, username: str) -> User:
        """Create a user."""
        model = UserModel(username=username)
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def get_by_id(self, user_id: int) -> User:
        """Get user by id.

        Raises:
            EntityNotFoundException: If the user doesn't exist
        """
        model = await self.session.get(UserModel, user_id)
        if model is None:
            raise EntityNotFoundException("User", user_id)
        return self._to_entity(model)

    async def username_exists(self, username: str) -> bool:
        """Check whether a username is already taken."""
        stmt = select(UserModel.id).where(UserModel.username == username)
        return (await self.session.execute(stmt)).scalar_one_or_none() is not None

    async def get_credential(self, user_id: int) -> Credential:
        """Read the credential triple (fields may be None).

        Raises:
            EntityNotFoundException: If the user doesn't exist
        """
        stmt = select(
            UserModel.spotify_access_token,
            UserModel.spotify_refresh_token,
            UserModel.spotify_token_expires_at,
        ).where(UserModel.id == user_id)
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            raise EntityNotFoundException("User", user_id)
        access_token, refresh_token, expires_at = row
        return Credential(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=ensure_utc_aware(expires_at) if expires_at else None,
        )

    async def update_credential(
        self,
        user_id: int,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        """Store a new access token + expiry; refresh token only if one was given.

        Raises:
            EntityNotFoundException: If the user doesn't exist
        """
        values: dict[str, Any] = {
            "spotify_access_token": access_token,
            "spotify_token_expires_at": to_utc_naive(expires_at),
        }
        if refresh_token:
            values["spotify_refresh_token"] = refresh_token

        stmt = update(UserModel).where(UserModel.id == user_id).values(**values)
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise EntityNotFoundException("User", user_id)

    async def clear_credential(self, user_id: int) -> None:
        """Remove all three credential fields at once.

        Raises:
            EntityNotFoundException: If the user doesn't exist
        """
        stmt = (
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(
                spotify_access_token=None,
                spotify_refresh_token=None,
                spotify_token_expires_at=None,
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise EntityNotFoundException("User", user_id)

    async def list_connected_user_ids(self) -> list[int]:
        """Ids of users with a complete credential (all three fields set)."""
        stmt = (
            select(UserModel.id)
            .where(
                UserModel.spotify_access_token.is_not(None),
                UserModel.spotify_refresh_token.is_not(None),
                UserModel.spotify_token_expires_at.is_not(None),
            )
            .order_by(UserModel.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, user_id: int) -> None:
        """Delete user; playback events go with it (FK cascade).

        Raises:
            EntityNotFoundException: If the user doesn't exist
        """
        # Explicit delete of events too - the ORM-level cascade is not involved in a
        # bulk DELETE and we don't want to depend on PRAGMA foreign_keys alone.
        await self.session.execute(
            delete(PlaybackEventModel).where(PlaybackEventModel.user_id == user_id)
        )
        result = await self.session.execute(delete(UserModel).where(UserModel.id == user_id))
        if result.rowcount == 0:
            raise EntityNotFoundException("User", user_id)


# =============================================================================
# CATALOG: ARTIST -> ALBUM -> TRACK
# =============================================================================


class ArtistRepository:
    """Repository for artists."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    @staticmethod
    def _to_entity(model: ArtistModel) -> Artist:
        return Artist(
            id=model.id, name=model.name, image_url=model.image_url, slug=model.slug
        )

    async def exists(self, artist_id: str) -> bool:
        """Check if an artist row exists."""
        stmt = select(ArtistModel.id).where(ArtistModel.id == artist_id)
        return (await self.session.execute(stmt)).scalar_one_or_none() is not None

    async def get_by_id(self, artist_id: str) -> Artist:
        """Get artist by id.

        Raises:
            EntityNotFoundException: If the artist doesn't exist
        """
        model = await self.session.get(ArtistModel, artist_id)
        if model is None:
            raise EntityNotFoundException("Artist", artist_id)
        return self._to_entity(model)

    async def get_by_slug(self, slug: str) -> Artist:
        """Get artist by URL slug.

        Raises:
            EntityNotFoundException: If no artist has this slug
        """
        stmt = select(ArtistModel).where(ArtistModel.slug == slug)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundException("Artist", slug)
        return self._to_entity(model)

    async def add_ignore_duplicates(self, artists: Sequence[Artist]) -> int:
        """Idempotent create. Returns number of newly inserted rows."""
        await _assign_slugs(self.session, ArtistModel, artists)
        rows = [
            {"id": a.id, "name": a.name, "image_url": a.image_url, "slug": a.slug}
            for a in artists
        ]
        return await insert_ignore_duplicates(self.session, ArtistModel, rows)


class AlbumRepository:
    """Repository for albums."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    @staticmethod
    def _to_entity(model: AlbumModel) -> Album:
        return Album(
            id=model.id,
            name=model.name,
            artist_id=model.artist_id,
            type=AlbumType.from_provider(model.type),
            track_count=model.track_count,
            release_year=model.release_year,
            artwork_url=model.artwork_url,
            slug=model.slug,
        )

    async def exists(self, album_id: str) -> bool:
        """Check if an album row exists."""
        stmt = select(AlbumModel.id).where(AlbumModel.id == album_id)
        return (await self.session.execute(stmt)).scalar_one_or_none() is not None

    async def get_by_id(self, album_id: str) -> Album:
        """Get album by id.

        Raises:
            EntityNotFoundException: If the album doesn't exist
        """
        model = await self.session.get(AlbumModel, album_id)
        if model is None:
            raise EntityNotFoundException("Album", album_id)
        return self._to_entity(model)

    async def get_by_slug(self, slug: str) -> Album:
        """Get album by URL slug.

        Raises:
            EntityNotFoundException: If no album has this slug
        """
        stmt = select(AlbumModel).where(AlbumModel.slug == slug)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundException("Album", slug)
        return self._to_entity(model)

    async def list_by_artist(self, artist_id: str) -> list[Album]:
        """All albums of an artist, newest release first."""
        stmt = (
            select(AlbumModel)
            .where(AlbumModel.artist_id == artist_id)
            .order_by(AlbumModel.release_year.desc(), AlbumModel.id)
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def add_ignore_duplicates(self, albums: Sequence[Album]) -> int:
        """Idempotent create. Returns number of newly inserted rows."""
        await _assign_slugs(self.session, AlbumModel, albums)
        rows = [
            {
                "id": a.id,
                "name": a.name,
                "type": a.type.value,
                "track_count": a.track_count,
                "release_year": a.release_year,
                "artwork_url": a.artwork_url,
                "artist_id": a.artist_id,
                "slug": a.slug,
            }
            for a in albums
        ]
        return await insert_ignore_duplicates(self.session, AlbumModel, rows)


class TrackRepository:
    """Repository for tracks."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    @staticmethod
    def _to_entity(model: TrackModel) -> Track:
        return Track(
            id=model.id,
            name=model.name,
            album_id=model.album_id,
            duration_ms=model.duration_ms,
            slug=model.slug,
        )

    async def get_by_id(self, track_id: str) -> Track:
        """Get track by id.

        Raises:
            EntityNotFoundException: If the track doesn't exist
        """
        model = await self.session.get(TrackModel, track_id)
        if model is None:
            raise EntityNotFoundException("Track", track_id)
        return self._to_entity(model)

    async def get_by_slug(self, slug: str) -> Track:
        """Get track by URL slug.

        Raises:
            EntityNotFoundException: If no track has this slug
        """
        stmt = select(TrackModel).where(TrackModel.slug == slug)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        if model is None:
            raise EntityNotFoundException("Track", slug)
        return self._to_entity(model)

    async def existing_ids(self, track_ids: Sequence[str]) -> set[str]:
        """Subset of the given ids that already exist."""
        if not track_ids:
            return set()
        stmt = select(TrackModel.id).where(TrackModel.id.in_(set(track_ids)))
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def add_ignore_duplicates(self, tracks: Sequence[Track]) -> int:
        """Idempotent bulk create. Returns number of newly inserted rows."""
        await _assign_slugs(self.session, TrackModel, tracks)
        rows = [
            {
                "id": t.id,
                "name": t.name,
                "duration_ms": t.duration_ms,
                "album_id": t.album_id,
                "slug": t.slug,
            }
            for t in tracks
        ]
        return await insert_ignore_duplicates(self.session, TrackModel, rows)


# =============================================================================
# EVENT LOG
# =============================================================================


class PlaybackEventRepository:
    """Repository for the append-only playback event log."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def get_latest(self, user_id: int) -> PlaybackEvent | None:
        """Most recent event of a user (played_at descending, limit 1)."""
        stmt = (
            select(PlaybackEventModel)
            .where(PlaybackEventModel.user_id == user_id)
            .order_by(PlaybackEventModel.played_at.desc(), PlaybackEventModel.id.desc())
            .limit(1)
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None
        return PlaybackEvent(
            id=model.id,
            user_id=model.user_id,
            track_id=model.track_id,
            played_at=ensure_utc_aware(model.played_at),
        )

    async def add_ignore_duplicates(self, events: Sequence[PlaybackEvent]) -> int:
        """Append events; (user_id, track_id, played_at) duplicates are skipped."""
        rows = [
            {
                "user_id": e.user_id,
                "track_id": e.track_id,
                "played_at": to_utc_naive(e.played_at),
            }
            for e in events
        ]
        return await insert_ignore_duplicates(self.session, PlaybackEventModel, rows)

    async def count_for_user(self, user_id: int) -> int:
        """Total number of events of a user."""
        stmt = select(func.count(PlaybackEventModel.id)).where(
            PlaybackEventModel.user_id == user_id
        )
        return (await self.session.execute(stmt)).scalar() or 0

    async def list_history(
        self, user_id: int, limit: int, offset: int
    ) -> list[HistoryEntry]:
        """User's listening history with catalog names, newest first."""
        stmt = (
            select(
                PlaybackEventModel.played_at,
                TrackModel.id.label("track_id"),
                TrackModel.name.label("track_name"),
                AlbumModel.id.label("album_id"),
                AlbumModel.name.label("album_name"),
                AlbumModel.artwork_url,
                ArtistModel.id.label("artist_id"),
                ArtistModel.name.label("artist_name"),
            )
            .join(TrackModel, PlaybackEventModel.track_id == TrackModel.id)
            .join(AlbumModel, TrackModel.album_id == AlbumModel.id)
            .join(ArtistModel, AlbumModel.artist_id == ArtistModel.id)
            .where(PlaybackEventModel.user_id == user_id)
            .order_by(PlaybackEventModel.played_at.desc(), PlaybackEventModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return [
            HistoryEntry(
                played_at=ensure_utc_aware(row.played_at),
                track_id=row.track_id,
                track_name=row.track_name,
                album_id=row.album_id,
                album_name=row.album_name,
                artist_id=row.artist_id,
                artist_name=row.artist_name,
                artwork_url=row.artwork_url,
            )
            for row in result
        ]


__all__ = [
    "AlbumRepository",
    "ArtistRepository",
    "PlaybackEventRepository",
    "TrackRepository",
    "UserRepository",
    "insert_ignore_duplicates",
]
