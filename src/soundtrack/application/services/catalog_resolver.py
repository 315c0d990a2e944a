"""Catalog resolver - makes sure artist -> album -> track rows exist for played tracks."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.domain.entities import Album, Artist, Track
from soundtrack.domain.ports import IStreamingProviderClient
from soundtrack.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
    TrackRepository,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
STUDIO_ALBUMS = ("album",)


@dataclass
class ResolveResult:
    """Outcome of one resolve() / store() call."""

    albums_created: int = 0
    tracks_created: int = 0
    # Artists created in this batch - their full catalog still needs a backfill
    new_artist_ids: list[str] = field(default_factory=list)


@dataclass
class CatalogBatch:
    """Catalog rows fetched from the provider, not written yet.

    Keyed by id, first one seen wins. store() writes them artist -> album -> track.
    """

    artists: dict[str, Artist] = field(default_factory=dict)
    albums: dict[str, Album] = field(default_factory=dict)
    tracks: dict[str, Track] = field(default_factory=dict)

    def add_tracks(self, tracks: Sequence[Track]) -> None:
        for track in tracks:
            self.tracks.setdefault(track.id, track)

    def __bool__(self) -> bool:
        return bool(self.artists or self.albums or self.tracks)


# Hey future me - the catalog is ONLY ever created from what users actually play. Order is
# strict: artist before album, album before track (foreign keys!). Every create is
# "insert or ignore duplicate", so running resolve() twice with the same batch (or two
# syncs racing on the same new album) is harmless.
#
# Resolving is split in TWO phases and the split matters:
# - fetch(): existence checks (plain SELECTs) + every provider call, including album paging
#   and rate-limit cooldown sleeps. Writes NOTHING.
# - store(): the inserts, no provider calls in between.
# On SQLite the first INSERT takes the database-wide write lock until commit. If we wrote
# while still paging the provider, every other user's sync (and every token refresh) would
# wait on us and die with "database is locked". So: network first, then one short write.
#
# A brand-new artist's whole discography is NOT fetched in here - that can be dozens of
# provider calls. resolve() only reports new_artist_ids, and the caller queues them
# (ArtistBackfillQueue) once its transaction is committed.
class CatalogResolver:
    """Persists the minimal catalog closure for a batch of provider tracks."""

    def __init__(
        self,
        session: AsyncSession,
        spotify_client: IStreamingProviderClient,
        page_size: int = PAGE_SIZE,
    ) -> None:
        """Initialize resolver.

        Args:
            session: Database session (caller owns the transaction)
            spotify_client: Provider client
            page_size: Page size for album-tracks / artist-albums listings (max 50)
        """
        self.session = session
        self._client = spotify_client
        self._page_size = min(max(page_size, 1), PAGE_SIZE)
        self.artists = ArtistRepository(session)
        self.albums = AlbumRepository(session)
        self.tracks = TrackRepository(session)

    @staticmethod
    def _group_by_album(
        tracks: Sequence[dict[str, Any]],
    ) -> dict[str, tuple[dict[str, Any], list[dict[str, Any]]]]:
        """Group provider tracks by album id (first album object seen wins)."""
        grouped: dict[str, tuple[dict[str, Any], list[dict[str, Any]]]] = {}
        for track in tracks:
            album = track.get("album") or {}
            album_id = album.get("id")
            if not track.get("id") or not album_id:
                # Local files and unavailable tracks come without ids - nothing to store
                logger.debug("catalog.track_skipped", extra={"track": track.get("name")})
                continue
            if album_id not in grouped:
                grouped[album_id] = (album, [])
            grouped[album_id][1].append(track)
        return grouped

    @staticmethod
    def _primary_artist_id(
        album: dict[str, Any], tracks: Sequence[dict[str, Any]]
    ) -> str:
        """First listed album artist (falls back to the first track artist)."""
        for source in (album, *tracks):
            artists = source.get("artists") or []
            if artists and artists[0].get("id"):
                return str(artists[0]["id"])
        raise ValueError(f"Album {album.get('id')} has no artist reference")

    async def resolve(
        self, tracks: Sequence[dict[str, Any]], access_token: str
    ) -> ResolveResult:
        """Ensure every track of the batch (plus album and artist) exists locally.

        Shorthand for store(await fetch(...)).

        Args:
            tracks: Full provider track objects (with nested album and artists)
            access_token: Token used for the provider lookups

        Returns:
            ResolveResult with counts and the newly discovered artist ids

        Raises:
            AccessTokenError / ProviderError / RateLimitExceededError: Provider failures
            sqlalchemy.exc.IntegrityError: Non-uniqueness persistence failures
        """
        return await self.store(await self.fetch(tracks, access_token))

    async def fetch(
        self, tracks: Sequence[dict[str, Any]], access_token: str
    ) -> CatalogBatch:
        """Collect everything the batch needs that isn't stored yet. Read-only on the DB."""
        batch = CatalogBatch()

        for album_id, (album_data, album_tracks) in self._group_by_album(tracks).items():
            batch_tracks = [Track.from_provider(t, album_id) for t in album_tracks]

            # Cheap path: album known, just make sure this batch's tracks are there
            if await self.albums.exists(album_id):
                batch.add_tracks(batch_tracks)
                continue

            artist_id = self._primary_artist_id(album_data, album_tracks)
            if artist_id not in batch.artists and not await self.artists.exists(artist_id):
                artist_data = await self._client.get_artist(access_token, artist_id)
                batch.artists[artist_id] = Artist.from_provider(artist_data)

            batch.albums[album_id] = Album.from_provider(album_data, artist_id=artist_id)
            batch.add_tracks(await self._fetch_album_tracks(album_id, access_token))
            # Relinked tracks can carry an id that the album listing doesn't have
            batch.add_tracks(batch_tracks)

        return batch

    async def store(self, batch: CatalogBatch) -> ResolveResult:
        """Write a fetched batch (insert or ignore, foreign-key order). No provider calls."""
        result = ResolveResult()

        for artist_id, artist in batch.artists.items():
            # One by one so we know which artists are really new (another sync may have won)
            if await self.artists.add_ignore_duplicates([artist]):
                result.new_artist_ids.append(artist_id)
                logger.info("catalog.artist_created", extra={"artist_id": artist_id})

        result.albums_created = await self.albums.add_ignore_duplicates(
            list(batch.albums.values())
        )
        result.tracks_created = await self.tracks.add_ignore_duplicates(
            list(batch.tracks.values())
        )
        return result

    async def _fetch_album_tracks(self, album_id: str, access_token: str) -> list[Track]:
        """Page through the album's track listing until `total` is reached."""
        tracks: list[Track] = []
        offset = 0
        while True:
            page = await self._client.get_album_tracks(
                access_token, album_id, limit=self._page_size, offset=offset
            )
            raw_items = page.get("items") or []
            tracks.extend(
                Track.from_provider(item, album_id)
                for item in raw_items
                if item and item.get("id")
            )
            offset += len(raw_items)
            total = int(page.get("total") or 0)
            if not raw_items or offset >= total:
                return tracks

    async def backfill_artist(self, artist_id: str, access_token: str) -> int:
        """Store all studio albums (and their tracks) of an already stored artist.

        Albums are owned by `artist_id` even if the provider lists another artist first,
        because only this artist is guaranteed to exist locally.

        Hey future me - this COMMITS after every album. A discography can be hundreds of
        provider calls (plus cooldowns), and holding one write transaction across all of
        them would lock every other writer out. Albums stored before a failure stay stored,
        the next backfill of the same artist skips them.

        Returns:
            Number of albums created
        """
        created = 0
        offset = 0
        while True:
            page = await self._client.get_artist_albums(
                access_token,
                artist_id,
                include_groups=STUDIO_ALBUMS,
                limit=self._page_size,
                offset=offset,
            )
            raw_items = page.get("items") or []
            for album_data in raw_items:
                if not album_data or not album_data.get("id"):
                    continue
                if await self.albums.exists(album_data["id"]):
                    continue
                album = Album.from_provider(album_data, artist_id=artist_id)
                tracks = await self._fetch_album_tracks(album.id, access_token)

                created += await self.albums.add_ignore_duplicates([album])
                await self.tracks.add_ignore_duplicates(tracks)
                await self.session.commit()

            offset += len(raw_items)
            total = int(page.get("total") or 0)
            if not raw_items or offset >= total:
                break

        logger.info(
            "catalog.artist_backfilled",
            extra={"artist_id": artist_id, "albums_created": created},
        )
        return created


__all__ = ["CatalogBatch", "CatalogResolver", "ResolveResult"]
