"""Token manager - hands out valid provider access tokens per user."""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.domain.exceptions import NotConnectedError, ProviderAuthError
from soundtrack.domain.ports import IStreamingProviderClient
from soundtrack.infrastructure.persistence.models import utc_now
from soundtrack.infrastructure.persistence.repositories import UserRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class TokenManager:
    """Issues valid access tokens, refreshing them shortly before they expire.

    Hey future me - this is the ONLY writer of the credential columns! Every write goes
    through UserRepository.update_credential()/clear_credential() which update all
    credential columns in a single UPDATE.

    Refreshes are serialized PER USER with an asyncio.Lock. Without it a scheduled sync and
    an on-demand sync could both refresh at the same time, and if the provider rotates
    refresh tokens the slower one would store an already-invalidated refresh token.

    Each DB access uses its own short session (session_scope) so we never hold a
    transaction open while waiting for the token endpoint.
    """

    def __init__(
        self,
        spotify_client: IStreamingProviderClient,
        session_scope: SessionScope,
        skew_seconds: int = 120,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize token manager.

        Args:
            spotify_client: Provider client (token endpoint calls)
            session_scope: Factory for transactional sessions (Database.session_scope)
            skew_seconds: Refresh when the token expires within this many seconds
            clock: Returns the current aware UTC time
        """
        self._client = spotify_client
        self._session_scope = session_scope
        self._skew_seconds = skew_seconds
        self._clock = clock
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def get_valid_access_token(self, user_id: int) -> str:
        """Return an access token that is valid for at least `skew_seconds`.

        Raises:
            EntityNotFoundException: If the user doesn't exist
            NotConnectedError: If the credential is missing or incomplete
            ProviderAuthError: If the refresh token was rejected (re-auth needed)
            ProviderError / RateLimitExceededError: Other refresh failures
        """
        async with self._lock_for(user_id):
            async with self._session_scope() as session:
                credential = await UserRepository(session).get_credential(user_id)

            tokens = credential.token_pair()
            if tokens is None:
                raise NotConnectedError(user_id)
            access_token, refresh_token = tokens

            now = self._clock()
            if not credential.needs_refresh(now, self._skew_seconds):
                return access_token

            # Hey future me - if this raises we just let it propagate. The stored credential
            # stays untouched (stale but complete), so the next run can try again.
            result = await self._client.refresh_access_token(refresh_token)

            async with self._session_scope() as session:
                await UserRepository(session).update_credential(
                    user_id,
                    access_token=result.access_token,
                    expires_at=result.expires_at(now),
                    refresh_token=result.refresh_token,
                )

            logger.info(
                "token.refreshed",
                extra={
                    "user_id": user_id,
                    "expires_in": result.expires_in,
                    "refresh_token_rotated": result.refresh_token is not None,
                },
            )
            return result.access_token

    async def authenticate_first_time(
        self, user_id: int, code: str, redirect_uri: str
    ) -> None:
        """Exchange a one-time authorization code and store the first credential.

        Raises:
            ProviderAuthError: If the code is invalid/expired (restart the OAuth flow)
            EntityNotFoundException: If the user doesn't exist
        """
        async with self._lock_for(user_id):
            now = self._clock()
            result = await self._client.request_access_token(code, redirect_uri)
            if not result.refresh_token:
                raise ProviderAuthError(
                    "Token endpoint did not return a refresh token",
                    error_code="missing_refresh_token",
                )

            async with self._session_scope() as session:
                await UserRepository(session).update_credential(
                    user_id,
                    access_token=result.access_token,
                    expires_at=result.expires_at(now),
                    refresh_token=result.refresh_token,
                )

        logger.info("token.connected", extra={"user_id": user_id})

    async def disconnect(self, user_id: int) -> None:
        """Forget the user's credential (all fields at once).

        Raises:
            EntityNotFoundException: If the user doesn't exist
        """
        async with self._lock_for(user_id):
            async with self._session_scope() as session:
                await UserRepository(session).clear_credential(user_id)

        logger.info("token.disconnected", extra={"user_id": user_id})


__all__ = ["SessionScope", "TokenManager"]
