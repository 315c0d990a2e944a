"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from soundtrack.domain.value_objects import AlbumType


def parse_played_at(value: str) -> datetime:
    """Parse provider ISO-8601 timestamp ("2024-03-01T12:00:00.123Z") to aware UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _first_image_url(data: dict[str, Any]) -> str | None:
    images = data.get("images") or []
    return images[0].get("url") if images else None


@dataclass
class Credential:
    """OAuth credential of one user for the streaming provider.

    Hey future me - ALL three fields or NONE! The DB columns are nullable one by one,
    but a credential with a missing piece is treated as "not connected" everywhere.
    """

    user_id: int
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        """True when access token, refresh token and expiry are all present."""
        return (
            bool(self.access_token)
            and bool(self.refresh_token)
            and self.expires_at is not None
        )

    def token_pair(self) -> tuple[str, str] | None:
        """(access token, refresh token) of a complete credential, None otherwise."""
        if not self.is_complete or not self.access_token or not self.refresh_token:
            return None
        return self.access_token, self.refresh_token

    def needs_refresh(self, now: datetime, skew_seconds: int = 120) -> bool:
        """Check whether the access token is expired or expires within the skew."""
        if self.expires_at is None:
            return True
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now + timedelta(seconds=skew_seconds) >= expires_at


@dataclass
class TokenResult:
    """Token endpoint answer."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None  # Only present when the provider rotated it
    token_type: str = "Bearer"
    scope: str | None = None

    def expires_at(self, now: datetime) -> datetime:
        """Absolute expiry for a token received at `now`."""
        return now + timedelta(seconds=self.expires_in)


@dataclass
class User:
    """Profile owner."""

    id: int
    username: str
    created_at: datetime | None = None
    is_connected: bool = False


@dataclass
class Artist:
    """Artist entity (provider id is the primary key)."""

    id: str
    name: str
    image_url: str | None = None
    slug: str | None = None

    @classmethod
    def from_provider(cls, data: dict[str, Any]) -> "Artist":
        """Build from a full provider artist object."""
        return cls(id=data["id"], name=data["name"], image_url=_first_image_url(data))


@dataclass
class Album:
    """Album entity. Belongs to exactly ONE artist - the first one the provider lists."""

    id: str
    name: str
    artist_id: str
    type: AlbumType = AlbumType.ALBUM
    track_count: int = 0
    release_year: int | None = None
    artwork_url: str | None = None
    slug: str | None = None

    @classmethod
    def from_provider(
        cls, data: dict[str, Any], artist_id: str | None = None
    ) -> "Album":
        """Build from a (simplified) provider album object.

        Args:
            data: Provider album object
            artist_id: Owning artist; defaults to the first listed artist
        """
        if artist_id is None:
            artist_id = data["artists"][0]["id"]
        release_year: int | None = None
        release_date = data.get("release_date") or ""
        year_part = release_date.split("-")[0]
        if year_part.isdigit():
            release_year = int(year_part)
        return cls(
            id=data["id"],
            name=data["name"],
            artist_id=artist_id,
            type=AlbumType.from_provider(data.get("album_type")),
            track_count=int(data.get("total_tracks") or 0),
            release_year=release_year,
            artwork_url=_first_image_url(data),
        )


@dataclass
class Track:
    """Track entity."""

    id: str
    name: str
    album_id: str
    duration_ms: int = 0
    slug: str | None = None

    @classmethod
    def from_provider(cls, data: dict[str, Any], album_id: str) -> "Track":
        """Build from a provider track object (full or simplified)."""
        return cls(
            id=data["id"],
            name=data["name"],
            album_id=album_id,
            duration_ms=int(data.get("duration_ms") or 0),
        )


@dataclass
class PlaybackEvent:
    """One immutable "user streamed track at time" record.

    (user_id, track_id, played_at) is the dedup key - replays of the same poll window
    insert nothing new.
    """

    user_id: int
    track_id: str
    played_at: datetime
    id: int | None = None


# =============================================================================
# READ MODELS (aggregation / catalog queries)
# =============================================================================


@dataclass
class RankedEntity:
    """One row of a top-N list (track, album or artist)."""

    id: str
    name: str
    count: int
    slug: str | None = None
    image_url: str | None = None
    # Parent names for display ("Track by Artist" / "Album by Artist")
    album_name: str | None = None
    artist_name: str | None = None


@dataclass
class AlbumTrackStats:
    """Album track with its stream count over all users."""

    id: str
    name: str
    duration_ms: int
    count: int
    track_slug: str | None = None
    album_slug: str | None = None
    artist_slug: str | None = None
    artwork_url: str | None = None


@dataclass
class TopListener:
    """User ranked by streams of one catalog entity."""

    user_id: int
    username: str
    count: int


@dataclass
class HistoryEntry:
    """One line of a user's listening history."""

    played_at: datetime
    track_id: str
    track_name: str
    album_id: str
    album_name: str
    artist_id: str
    artist_name: str
    artwork_url: str | None = None


@dataclass
class Page:
    """Paginated result."""

    items: list[Any] = field(default_factory=list)
    total: int = 0
    limit: int = 0
    page: int = 1


__all__ = [
    "Album",
    "AlbumTrackStats",
    "Artist",
    "Credential",
    "HistoryEntry",
    "Page",
    "PlaybackEvent",
    "RankedEntity",
    "TokenResult",
    "TopListener",
    "Track",
    "User",
    "parse_played_at",
]
