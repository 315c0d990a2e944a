"""SQLAlchemy ORM models for soundtrack."""

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def utc_now_naive() -> datetime:
    """Current UTC time without tzinfo (storage format of all our DateTime columns)."""
    return datetime.now(UTC).replace(tzinfo=None)


# Hey future me - SQLite doesn't preserve timezone info! Datetimes come back naive.
# ALWAYS run DB datetimes through this before comparing with datetime.now(UTC).
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def to_utc_naive(dt: datetime) -> datetime:
    """Normalize to naive UTC for storage.

    Hey future me - played_at is part of a UNIQUE key. If the same instant were stored once
    as "...+00:00" and once as "...+02:00" (or naive vs aware) the dedup would break on
    SQLite. So every datetime we write is converted to naive UTC first.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC).replace(tzinfo=None)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Listen up, the credential triple lives directly on the user row (nullable columns).
# The TokenManager is the ONLY writer - it always sets or clears all three together.
class UserModel(Base):
    """Profile owner plus streaming credential."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    spotify_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    spotify_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    spotify_token_expires_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(), nullable=False, default=utc_now_naive, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(),
        nullable=False,
        default=utc_now_naive,
        server_default=func.now(),
        onupdate=utc_now_naive,
    )

    playback_events: Mapped[list["PlaybackEventModel"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    def has_credential(self) -> bool:
        """All three credential fields present."""
        return (
            bool(self.spotify_access_token)
            and bool(self.spotify_refresh_token)
            and self.spotify_token_expires_at is not None
        )


class ArtistModel(Base):
    """Artist - provider id as primary key."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    slug: Mapped[str] = mapped_column(String(600), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(), nullable=False, default=utc_now_naive, server_default=func.now()
    )

    albums: Mapped[list["AlbumModel"]] = relationship(back_populates="artist")


class AlbumModel(Base):
    """Album - belongs to exactly one artist."""

    __tablename__ = "albums"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    # 'album' | 'compilation' | 'single' (plain string for SQLite compatibility)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="album")
    track_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    release_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    artwork_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    artist_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("artists.id", ondelete="CASCADE"), nullable=False
    )
    slug: Mapped[str] = mapped_column(String(600), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(), nullable=False, default=utc_now_naive, server_default=func.now()
    )

    artist: Mapped[ArtistModel] = relationship(back_populates="albums")
    tracks: Mapped[list["TrackModel"]] = relationship(back_populates="album")

    __table_args__ = (Index("ix_albums_artist_id", "artist_id"),)


class TrackModel(Base):
    """Track - belongs to exactly one album."""

    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    album_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("albums.id", ondelete="CASCADE"), nullable=False
    )
    slug: Mapped[str] = mapped_column(String(600), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(), nullable=False, default=utc_now_naive, server_default=func.now()
    )

    album: Mapped[AlbumModel] = relationship(back_populates="tracks")

    __table_args__ = (Index("ix_tracks_album_id", "album_id"),)


# Hey future me - this is the append-only event log! The unique constraint on
# (user_id, track_id, played_at) IS the dedup mechanism for overlapping poll windows.
# Never update rows here. The only delete path is the user cascade.
class PlaybackEventModel(Base):
    """One playback of a track by a user."""

    __tablename__ = "playback_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    track_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tracks.id"), nullable=False
    )
    played_at: Mapped[datetime] = mapped_column(sa.DateTime(), nullable=False)

    user: Mapped[UserModel] = relationship(back_populates="playback_events")
    track: Mapped[TrackModel] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "user_id", "track_id", "played_at", name="uq_playback_events_user_track_time"
        ),
        Index("ix_playback_events_user_played_at", "user_id", "played_at"),
        Index("ix_playback_events_track_id", "track_id"),
    )


__all__ = [
    "AlbumModel",
    "ArtistModel",
    "Base",
    "PlaybackEventModel",
    "TrackModel",
    "UserModel",
    "ensure_utc_aware",
    "to_utc_naive",
    "utc_now",
    "utc_now_naive",
]
