"""User Service - profiles, listening history and "now playing"."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.application.services.token_manager import TokenManager
from soundtrack.domain.entities import HistoryEntry, Page, User
from soundtrack.domain.exceptions import ConfigurationError, ValidationError
from soundtrack.domain.ports import IStreamingProviderClient
from soundtrack.infrastructure.persistence.repositories import (
    PlaybackEventRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class UserService:
    """Operations on user profiles.

    Hey future me - the caller (HTTP layer) has already checked WHO is asking. Owner-only
    operations like delete_user() trust that check and don't do their own.
    """

    def __init__(
        self,
        session: AsyncSession,
        token_manager: TokenManager | None = None,
        spotify_client: IStreamingProviderClient | None = None,
    ) -> None:
        """Initialize user service.

        Args:
            session: Database session
            token_manager: Needed for get_currently_playing()
            spotify_client: Needed for get_currently_playing()
        """
        self._session = session
        self._token_manager = token_manager
        self._client = spotify_client
        self.users = UserRepository(session)
        self.events = PlaybackEventRepository(session)

    async def create_user(self, username: str) -> User:
        """Create a user (not connected to the provider yet).

        Raises:
            ValidationError: Empty or already taken username
        """
        username = username.strip()
        if not username:
            raise ValidationError("username must not be empty")
        if await self.users.username_exists(username):
            raise ValidationError(f"username '{username}' is already taken")
        user = await self.users.add(username)
        logger.info("user.created", extra={"user_id": user.id})
        return user

    async def get_user(self, user_id: int) -> User:
        """Raises EntityNotFoundException if the user doesn't exist."""
        return await self.users.get_by_id(user_id)

    async def delete_user(self, user_id: int) -> None:
        """Delete user and all their playback events.

        Catalog rows stay - other users may reference them.

        Raises:
            EntityNotFoundException: If the user doesn't exist
        """
        await self.users.delete(user_id)
        logger.info("user.deleted", extra={"user_id": user_id})

    async def list_connected_user_ids(self) -> list[int]:
        """Users with a complete credential (the ones the scheduler syncs)."""
        return await self.users.list_connected_user_ids()

    async def get_track_history(
        self, user_id: int, limit: int = 20, page: int = 1
    ) -> Page:
        """Listening history, newest first.

        Raises:
            ValidationError: limit/page < 1
            EntityNotFoundException: If the user doesn't exist
        """
        if limit < 1:
            raise ValidationError(f"limit must be >= 1, got {limit}")
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}")

        await self.users.get_by_id(user_id)
        items: list[HistoryEntry] = await self.events.list_history(
            user_id, limit=limit, offset=(page - 1) * limit
        )
        total = await self.events.count_for_user(user_id)
        return Page(items=items, total=total, limit=limit, page=page)

    # Listen up, this is NOT part of the sync engine! One provider call, no retries on
    # our side beyond the rate limiter, nothing stored. None means nothing is playing.
    async def get_currently_playing(self, user_id: int) -> dict[str, Any] | None:
        """Ask the provider what the user is listening to right now.

        Raises:
            NotConnectedError: User has no credential
            AccessTokenError: Token rejected - user should reconnect
        """
        if self._token_manager is None or self._client is None:
            raise ConfigurationError(
                "UserService needs a token manager and provider client for now playing"
            )
        access_token = await self._token_manager.get_valid_access_token(user_id)
        return await self._client.get_currently_playing(access_token)


__all__ = ["UserService"]
