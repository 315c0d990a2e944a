"""Tests for UserService."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from helpers import add_plays, seed_catalog
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.application.services import UserService
from soundtrack.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    ValidationError,
)
from soundtrack.infrastructure.persistence import ArtistRepository

PLAYED = datetime(2024, 6, 14, 10, 0, tzinfo=UTC)


@pytest.fixture
def service(session: AsyncSession) -> UserService:
    return UserService(session)


class TestUserLifecycle:
    """Tests for create/get/delete."""

    async def test_create_and_get(self, service: UserService) -> None:
        """Username is stripped; new users are not connected."""
        user = await service.create_user("  alice ")

        loaded = await service.get_user(user.id)

        assert loaded.username == "alice"
        assert loaded.is_connected is False
        assert await service.list_connected_user_ids() == []

    @pytest.mark.parametrize("name", ["", "   "])
    async def test_empty_username(self, service: UserService, name: str) -> None:
        """Empty names are rejected."""
        with pytest.raises(ValidationError):
            await service.create_user(name)

    async def test_duplicate_username(self, service: UserService) -> None:
        """Usernames are unique."""
        await service.create_user("alice")
        with pytest.raises(ValidationError, match="already taken"):
            await service.create_user("alice")

    async def test_delete_keeps_catalog(
        self, service: UserService, session: AsyncSession
    ) -> None:
        """Deleting a user removes the history, not the catalog."""
        user = await service.create_user("alice")
        await seed_catalog(session, {"ar1": {"al1": ["t1"]}})
        await add_plays(session, user.id, "t1", 2, PLAYED)

        await service.delete_user(user.id)

        with pytest.raises(EntityNotFoundException):
            await service.get_user(user.id)
        assert await ArtistRepository(session).exists("ar1")


class TestTrackHistory:
    """Tests for get_track_history()."""

    async def test_history_pages(self, service: UserService, session: AsyncSession) -> None:
        """Newest first, total counts everything."""
        user = await service.create_user("alice")
        await seed_catalog(session, {"ar1": {"al1": ["t1", "t2"]}})
        await add_plays(session, user.id, "t1", 3, PLAYED)
        await add_plays(session, user.id, "t2", 1, PLAYED.replace(hour=11))

        first = await service.get_track_history(user.id, limit=2, page=1)
        second = await service.get_track_history(user.id, limit=2, page=2)

        assert first.total == 4
        assert [h.track_id for h in first.items] == ["t2", "t1"]
        assert first.items[1].played_at == PLAYED.replace(minute=2)
        assert len(second.items) == 2
        assert second.page == 2

    async def test_history_validation(self, service: UserService) -> None:
        """Bad paging and unknown users are rejected."""
        with pytest.raises(ValidationError):
            await service.get_track_history(1, limit=0)
        with pytest.raises(ValidationError):
            await service.get_track_history(1, page=0)
        with pytest.raises(EntityNotFoundException):
            await service.get_track_history(999)


class TestCurrentlyPlaying:
    """Tests for get_currently_playing()."""

    async def test_asks_provider_with_valid_token(self, session: AsyncSession) -> None:
        """Token comes from the TokenManager; None passes through."""
        token_manager = AsyncMock()
        token_manager.get_valid_access_token.return_value = "tok"
        client = AsyncMock()
        client.get_currently_playing.return_value = None
        service = UserService(session, token_manager=token_manager, spotify_client=client)

        assert await service.get_currently_playing(7) is None
        token_manager.get_valid_access_token.assert_awaited_once_with(7)
        client.get_currently_playing.assert_awaited_once_with("tok")

    async def test_requires_dependencies(self, service: UserService) -> None:
        """Without provider wiring -> ConfigurationError."""
        with pytest.raises(ConfigurationError):
            await service.get_currently_playing(1)
