"""Tests for HistorySyncService.

Hey future me - the cursor tests are the important ones. Two consecutive syncs whose
provider windows overlap must neither lose nor duplicate an event.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from helpers import (
    FakeClock,
    artist_payload,
    paging,
    played_item,
    simple_track,
    track_payload,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.application.services import HistorySyncService
from soundtrack.application.services.history_sync_service import to_epoch_ms
from soundtrack.domain.exceptions import NotConnectedError, ProviderError
from soundtrack.infrastructure.persistence import (
    Database,
    PlaybackEventRepository,
    UserRepository,
)
from soundtrack.infrastructure.persistence.models import ArtistModel, PlaybackEventModel

T1 = "2024-06-15T10:00:00.000Z"
T2 = "2024-06-15T10:05:00.500Z"
T3 = "2024-06-15T10:10:00.000Z"


@pytest.fixture
def token_manager() -> AsyncMock:
    manager = AsyncMock()
    manager.get_valid_access_token.return_value = "tok"
    return manager


@pytest.fixture
def spotify_client() -> AsyncMock:
    client = AsyncMock()
    client.get_artist.return_value = artist_payload("ar1")
    client.get_album_tracks.return_value = paging(
        [simple_track("t1"), simple_track("t2"), simple_track("t3")]
    )
    return client


@pytest.fixture
async def user_id(session: AsyncSession) -> int:
    return (await UserRepository(session).add("alice")).id


@pytest.fixture
def service(
    session: AsyncSession,
    token_manager: AsyncMock,
    spotify_client: AsyncMock,
    clock: FakeClock,
) -> HistorySyncService:
    return HistorySyncService(session, token_manager, spotify_client, clock=clock)


class TestToEpochMs:
    """Tests for to_epoch_ms()."""

    def test_millisecond_precision(self) -> None:
        """Sub-millisecond parts are dropped, no float rounding."""
        value = datetime(2024, 6, 15, 10, 5, 0, 500999, tzinfo=UTC)
        assert to_epoch_ms(value) == 1718445900500

    def test_naive_is_utc(self) -> None:
        """Naive values count as UTC."""
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1)) == 1000


class TestHistorySync:
    """Tests for HistorySyncService.sync()."""

    async def test_first_sync_has_no_cursor(
        self, service: HistorySyncService, spotify_client: AsyncMock, user_id: int
    ) -> None:
        """No events yet -> no `after`; items are stored with their catalog."""
        spotify_client.get_recently_played.return_value = {
            "items": [played_item(track_payload("t1"), T1)]
        }

        result = await service.sync(user_id)

        spotify_client.get_recently_played.assert_awaited_once_with(
            "tok", limit=20, after=None
        )
        assert result.fetched == 1
        assert result.inserted == 1
        assert result.cursor is None
        assert result.new_artist_ids == ["ar1"]

    async def test_cursor_has_no_gap_and_no_duplicate(
        self,
        service: HistorySyncService,
        spotify_client: AsyncMock,
        session: AsyncSession,
        user_id: int,
    ) -> None:
        """Overlapping windows (t1,t2 then t2,t3) store exactly three events."""
        spotify_client.get_recently_played.return_value = {
            "items": [
                played_item(track_payload("t2"), T2),
                played_item(track_payload("t1"), T1),
            ]
        }
        first = await service.sync(user_id)

        spotify_client.get_recently_played.return_value = {
            "items": [
                played_item(track_payload("t3"), T3),
                played_item(track_payload("t2"), T2),
            ]
        }
        second = await service.sync(user_id)

        assert first.inserted == 2
        assert second.inserted == 1
        assert second.cursor == to_epoch_ms(datetime(2024, 6, 15, 10, 5, 0, 500000, tzinfo=UTC)) + 1
        last_call = spotify_client.get_recently_played.await_args
        assert last_call.kwargs["after"] == second.cursor
        assert await PlaybackEventRepository(session).count_for_user(user_id) == 3

    async def test_recent_event_debounces(
        self,
        service: HistorySyncService,
        spotify_client: AsyncMock,
        token_manager: AsyncMock,
        clock: FakeClock,
        user_id: int,
    ) -> None:
        """Latest event 10s old -> no token, no provider call."""
        played = (clock() - timedelta(seconds=10)).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        spotify_client.get_recently_played.return_value = {
            "items": [played_item(track_payload("t1"), played)]
        }
        await service.sync(user_id)
        token_manager.reset_mock()
        spotify_client.reset_mock()

        result = await service.sync(user_id)

        assert result.debounced is True
        token_manager.get_valid_access_token.assert_not_called()
        spotify_client.get_recently_played.assert_not_called()

    async def test_debounce_window_expires(
        self,
        service: HistorySyncService,
        spotify_client: AsyncMock,
        clock: FakeClock,
        user_id: int,
    ) -> None:
        """31s later the provider is asked again."""
        played = (clock() - timedelta(seconds=10)).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        spotify_client.get_recently_played.return_value = {
            "items": [played_item(track_payload("t1"), played)]
        }
        await service.sync(user_id)
        clock.now = clock.now + timedelta(seconds=21)
        spotify_client.get_recently_played.return_value = {"items": []}

        result = await service.sync(user_id)

        assert result.debounced is False
        assert result.fetched == 0
        assert spotify_client.get_recently_played.await_count == 2

    async def test_items_without_track_id_are_ignored(
        self, service: HistorySyncService, spotify_client: AsyncMock, user_id: int
    ) -> None:
        """Local files and broken items are dropped before resolving."""
        local = {"id": None, "name": "Local", "album": {"id": None}}
        spotify_client.get_recently_played.return_value = {
            "items": [
                played_item(local, T1),
                {"track": track_payload("t1"), "played_at": None},
                played_item(track_payload("t2"), T2),
            ]
        }

        result = await service.sync(user_id)

        assert result.fetched == 1
        assert result.inserted == 1

    async def test_not_connected_propagates(
        self, service: HistorySyncService, token_manager: AsyncMock, user_id: int
    ) -> None:
        """Token problems surface to the caller."""
        token_manager.get_valid_access_token.side_effect = NotConnectedError(user_id)

        with pytest.raises(NotConnectedError):
            await service.sync(user_id)


class TestHistorySyncAtomicity:
    """Failure while resolving the catalog leaves no trace."""

    async def test_resolve_failure_stores_nothing(
        self, db: Database, token_manager: AsyncMock, spotify_client: AsyncMock, clock: FakeClock
    ) -> None:
        """Provider error during resolve -> rollback, no events, no catalog rows."""
        async with db.session_scope() as session:
            user_id = (await UserRepository(session).add("alice")).id

        spotify_client.get_recently_played.return_value = {
            "items": [played_item(track_payload("t1"), T1)]
        }
        spotify_client.get_album_tracks.side_effect = ProviderError(503, "unavailable")

        with pytest.raises(ProviderError):
            async with db.session_scope() as session:
                await HistorySyncService(
                    session, token_manager, spotify_client, clock=clock
                ).sync(user_id)

        async with db.session_scope() as session:
            events = await session.scalar(select(func.count(PlaybackEventModel.id)))
            artists = await session.scalar(select(func.count(ArtistModel.id)))
        assert events == 0
        assert artists == 0

    async def test_catalog_is_written_after_all_provider_calls(
        self,
        service: HistorySyncService,
        spotify_client: AsyncMock,
        session: AsyncSession,
        user_id: int,
    ) -> None:
        """Album paging runs while nothing is written yet (no lock held across I/O)."""
        artists_seen_during_paging: list[int] = []

        async def get_album_tracks(*args: object, **kwargs: object) -> dict:
            count = await session.scalar(select(func.count(ArtistModel.id)))
            artists_seen_during_paging.append(count or 0)
            return paging([simple_track("t1")])

        spotify_client.get_recently_played.return_value = {
            "items": [played_item(track_payload("t1"), T1)]
        }
        spotify_client.get_album_tracks.side_effect = get_album_tracks

        result = await service.sync(user_id)

        assert artists_seen_during_paging == [0]
        assert result.inserted == 1
        assert await session.scalar(select(func.count(ArtistModel.id))) == 1
