"""Test helpers: fake clocks, provider payload builders and DB seeding.

Importable from every test module (pytest `pythonpath` includes tests/).
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.domain.entities import Album, Artist, PlaybackEvent, Track
from soundtrack.infrastructure.persistence import (
    AlbumRepository,
    ArtistRepository,
    PlaybackEventRepository,
    TrackRepository,
)

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Settable wall clock (aware UTC)."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeMonotonic:
    """Monotonic clock + sleep pair. sleep() advances the clock instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Provider payload builders
# =============================================================================


def artist_payload(artist_id: str = "ar1", name: str = "Artist One") -> dict[str, Any]:
    return {
        "id": artist_id,
        "name": name,
        "images": [{"url": f"https://img.example/{artist_id}.jpg"}],
    }


def album_payload(
    album_id: str = "al1",
    name: str = "Album One",
    artist_id: str = "ar1",
    total_tracks: int = 1,
    album_type: str = "album",
    release_date: str = "2020-05-01",
) -> dict[str, Any]:
    return {
        "id": album_id,
        "name": name,
        "album_type": album_type,
        "total_tracks": total_tracks,
        "release_date": release_date,
        "images": [{"url": f"https://img.example/{album_id}.jpg"}],
        "artists": [{"id": artist_id, "name": f"Artist {artist_id}"}],
    }


def track_payload(
    track_id: str = "t1",
    name: str = "Track One",
    album: dict[str, Any] | None = None,
    duration_ms: int = 180000,
) -> dict[str, Any]:
    album = album or album_payload()
    return {
        "id": track_id,
        "name": name,
        "duration_ms": duration_ms,
        "album": album,
        "artists": album["artists"],
    }


def simple_track(track_id: str, name: str | None = None, duration_ms: int = 200000) -> dict[str, Any]:
    """Simplified track as returned by the album-tracks listing (no album)."""
    return {"id": track_id, "name": name or f"Track {track_id}", "duration_ms": duration_ms}


def paging(
    items: list[dict[str, Any]], total: int | None = None, offset: int = 0
) -> dict[str, Any]:
    return {
        "items": items,
        "total": len(items) if total is None else total,
        "limit": 50,
        "offset": offset,
    }


def played_item(track: dict[str, Any], played_at: str) -> dict[str, Any]:
    return {"track": track, "played_at": played_at}


# =============================================================================
# DB seeding
# =============================================================================


async def seed_catalog(session: AsyncSession, layout: dict[str, dict[str, list[str]]]) -> None:
    """Insert artists/albums/tracks from {artist_id: {album_id: [track_ids]}}.

    Names are derived from the ids ("Artist ar1", "Album al1", "Track t1").
    """
    for artist_id, albums in layout.items():
        await ArtistRepository(session).add_ignore_duplicates(
            [Artist(id=artist_id, name=f"Artist {artist_id}")]
        )
        for album_id, track_ids in albums.items():
            await AlbumRepository(session).add_ignore_duplicates(
                [Album(id=album_id, name=f"Album {album_id}", artist_id=artist_id)]
            )
            await TrackRepository(session).add_ignore_duplicates(
                [
                    Track(id=t, name=f"Track {t}", album_id=album_id, duration_ms=1000)
                    for t in track_ids
                ]
            )


async def add_plays(
    session: AsyncSession, user_id: int, track_id: str, count: int, start: datetime
) -> None:
    """Insert `count` plays of a track, one minute apart starting at `start`."""
    await PlaybackEventRepository(session).add_ignore_duplicates(
        [
            PlaybackEvent(
                user_id=user_id, track_id=track_id, played_at=start + timedelta(minutes=i)
            )
            for i in range(count)
        ]
    )
