"""Domain ports (interfaces) for external collaborators."""

from abc import ABC, abstractmethod
from typing import Any

from soundtrack.domain.entities import TokenResult


class IStreamingProviderClient(ABC):
    """Port for the streaming provider API (OAuth token endpoint + REST resources).

    All resource methods return the raw provider JSON as dicts. Error classification:
    401 -> AccessTokenError, 429 (after retry budget) -> RateLimitExceededError,
    anything else non-2xx -> ProviderError.
    """

    @abstractmethod
    def build_authorization_url(self, state: str, redirect_uri: str | None = None) -> str:
        """
        Build the provider authorization URL the user has to visit.

        Args:
            state: Opaque value echoed back to the redirect (CSRF protection)
            redirect_uri: Redirect URI; defaults to the configured one

        Returns:
            Authorization URL
        """
        pass

    @abstractmethod
    async def request_access_token(self, code: str, redirect_uri: str) -> TokenResult:
        """
        Exchange a one-time authorization code for the first token pair.

        Raises:
            ProviderAuthError: If the code is invalid or expired
        """
        pass

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        """
        Get a fresh access token with a stored refresh token.

        Returns:
            TokenResult; refresh_token is None unless the provider rotated it
        """
        pass

    @abstractmethod
    async def get_artist(self, access_token: str, artist_id: str) -> dict[str, Any]:
        """Get full artist object."""
        pass

    @abstractmethod
    async def get_album_tracks(
        self, access_token: str, album_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        """Get one page of album tracks ({items, total, limit, offset})."""
        pass

    @abstractmethod
    async def get_artist_albums(
        self,
        access_token: str,
        artist_id: str,
        include_groups: tuple[str, ...] = ("album",),
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Get one page of artist albums ({items, total, limit, offset})."""
        pass

    @abstractmethod
    async def get_recently_played(
        self, access_token: str, limit: int = 20, after: int | None = None
    ) -> dict[str, Any]:
        """
        Get recently played items.

        Args:
            access_token: OAuth access token
            limit: Max items (provider max 50)
            after: Only items played strictly after this epoch-ms cursor

        Returns:
            Response with "items": [{"track": {...}, "played_at": "..."}]
        """
        pass

    @abstractmethod
    async def get_currently_playing(self, access_token: str) -> dict[str, Any] | None:
        """Get the currently playing item, or None when nothing plays."""
        pass


__all__ = ["IStreamingProviderClient"]
