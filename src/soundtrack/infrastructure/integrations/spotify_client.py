"""Spotify HTTP client implementation (OAuth authorization code flow + Web API)."""

import logging
from typing import Any, cast
from urllib.parse import urlencode

import httpx

from soundtrack.config.settings import SpotifySettings
from soundtrack.domain.entities import TokenResult
from soundtrack.domain.exceptions import (
    AccessTokenError,
    ConfigurationError,
    ProviderAuthError,
    ProviderError,
)
from soundtrack.domain.ports import IStreamingProviderClient
from soundtrack.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def _resource_error_message(response: httpx.Response) -> str:
    """Extract message from a `{"error": {"status", "message"}}` body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or response.reason_phrase)
    if isinstance(error, str):
        return str(body.get("error_description") or error)
    return response.reason_phrase


def _token_error(response: httpx.Response) -> tuple[str | None, str]:
    """Extract (error, error_description) from a token endpoint error body."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text or response.reason_phrase
    if not isinstance(body, dict):
        return None, response.reason_phrase
    error = body.get("error")
    if isinstance(error, dict):
        # Some proxies answer token calls in the resource error shape
        return None, str(error.get("message") or response.reason_phrase)
    return error, str(body.get("error_description") or error or response.reason_phrase)


class SpotifyClient(IStreamingProviderClient):
    """HTTP client for the Spotify Web API and accounts service.

    Every request (token endpoint included) goes through the injected RateLimiter,
    so all users of the process share one cooldown gate.
    """

    # Hey future me, this init is deceptively simple - we DON'T create the HTTP client here
    # because we need to be async-friendly. The actual client gets lazy-loaded in _get_client().
    # The RateLimiter is passed in (not a module global) so tests can use a fake clock.
    def __init__(
        self, settings: SpotifySettings, rate_limiter: RateLimiter | None = None
    ) -> None:
        """
        Initialize Spotify client.

        Args:
            settings: Spotify configuration settings
            rate_limiter: Shared cooldown gate; a private one is created if omitted
        """
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(
            max_attempts=settings.max_attempts,
            margin_seconds=settings.retry_margin_seconds,
        )
        self._client: httpx.AsyncClient | None = None

    @property
    def authorize_url(self) -> str:
        return f"{self.settings.accounts_url.rstrip('/')}/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.settings.accounts_url.rstrip('/')}/api/token"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.timeout)
        return self._client

    # Hey, this close() is IMPORTANT - if you don't call it, you'll leak connections.
    # lifecycle.py calls it on shutdown; tests use `async with SpotifyClient(...)`.
    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _require_client_credentials(self) -> None:
        if not self.settings.client_id or not self.settings.client_id.strip():
            raise ConfigurationError(
                "SPOTIFY_CLIENT_ID is not configured. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )
        if not self.settings.client_secret or not self.settings.client_secret.strip():
            raise ConfigurationError("SPOTIFY_CLIENT_SECRET is not configured.")

    # -------------------------------------------------------------------------
    # Resource calls
    # -------------------------------------------------------------------------

    # Hey future me - CENTRALIZED API REQUEST! All resource calls go through here.
    # - 429 is retried inside the RateLimiter (never surfaces unless the budget is gone)
    # - 401 surfaces as AccessTokenError right away. We do NOT refresh here - that would
    #   hide recursive token calls inside the transport. TokenManager owns refreshing.
    # - any other non-2xx becomes ProviderError(status, message)
    async def _api_request(
        self,
        method: str,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Make rate-limited API request and classify errors.

        Returns:
            Parsed JSON body, or None for 204 No Content

        Raises:
            AccessTokenError: On 401
            RateLimitExceededError: If the provider kept answering 429
            ProviderError: On any other non-2xx
        """
        client = await self._get_client()
        url = f"{self.settings.api_base_url.rstrip('/')}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {access_token}"}

        response = await self.rate_limiter.execute(
            lambda: client.request(method, url, params=params, headers=headers)
        )

        if response.status_code == 401:
            raise AccessTokenError(_resource_error_message(response))
        if not response.is_success:
            message = _resource_error_message(response)
            logger.warning(
                "spotify.request_failed",
                extra={"path": path, "status": response.status_code, "error": message},
            )
            raise ProviderError(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        return cast(dict[str, Any], response.json())

    async def _get(
        self, path: str, access_token: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        body = await self._api_request("GET", path, access_token, params=params)
        return body or {}

    async def get_artist(self, access_token: str, artist_id: str) -> dict[str, Any]:
        """
        Get full artist details.

        Args:
            access_token: OAuth access token
            artist_id: Spotify artist ID

        Returns:
            Artist object (id, name, images, genres, ...)
        """
        return await self._get(f"artists/{artist_id}", access_token)

    # Listen up, album tracks are paginated (max 50 per page). The answer has a `total`
    # field - the resolver keeps calling with a growing offset until it has them all.
    async def get_album_tracks(
        self, access_token: str, album_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        """
        Get one page of album tracks.

        Args:
            access_token: OAuth access token
            album_id: Spotify album ID
            limit: Page size (1-50)
            offset: Index of the first track to return

        Returns:
            Paging object with items, total, limit, offset
        """
        return await self._get(
            f"albums/{album_id}/tracks",
            access_token,
            params={"limit": min(limit, 50), "offset": offset},
        )

    async def get_artist_albums(
        self,
        access_token: str,
        artist_id: str,
        include_groups: tuple[str, ...] = ("album",),
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        """
        Get one page of an artist's albums.

        Args:
            access_token: OAuth access token
            artist_id: Spotify artist ID
            include_groups: Album groups to include (default: studio albums only)
            limit: Page size (1-50)
            offset: Index of the first album to return

        Returns:
            Paging object with items, total, limit, offset
        """
        return await self._get(
            f"artists/{artist_id}/albums",
            access_token,
            params={
                "include_groups": ",".join(include_groups),
                "limit": min(limit, 50),
                "offset": offset,
            },
        )

    # Hey future me - `after` is an epoch-MILLISECONDS cursor and is exclusive on the
    # provider side... mostly. We still add 1ms ourselves (see HistorySyncService) and
    # the unique key on playback_events catches whatever slips through.
    async def get_recently_played(
        self, access_token: str, limit: int = 20, after: int | None = None
    ) -> dict[str, Any]:
        """
        Get the user's recently played tracks.

        Args:
            access_token: OAuth access token
            limit: Max items (1-50)
            after: Only items played after this epoch-ms timestamp

        Returns:
            Cursor paging object with items: [{"track": {...}, "played_at": "..."}]
        """
        params: dict[str, Any] = {"limit": min(limit, 50)}
        if after is not None:
            params["after"] = after
        return await self._get("me/player/recently-played", access_token, params=params)

    async def get_currently_playing(self, access_token: str) -> dict[str, Any] | None:
        """Get the currently playing item (None on 204 - nothing playing)."""
        return await self._api_request(
            "GET", "me/player/currently-playing", access_token
        )

    # -------------------------------------------------------------------------
    # OAuth
    # -------------------------------------------------------------------------

    def build_authorization_url(self, state: str, redirect_uri: str | None = None) -> str:
        """
        Generate Spotify OAuth authorization URL.

        Args:
            state: State parameter for CSRF protection
            redirect_uri: Redirect URI (defaults to SPOTIFY_REDIRECT_URI)

        Returns:
            Authorization URL

        Raises:
            ConfigurationError: If client_id or redirect_uri is not configured
        """
        if not self.settings.client_id or not self.settings.client_id.strip():
            raise ConfigurationError(
                "SPOTIFY_CLIENT_ID is not configured. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )
        redirect_uri = redirect_uri or self.settings.redirect_uri
        if not redirect_uri:
            raise ConfigurationError("SPOTIFY_REDIRECT_URI is not configured.")

        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": " ".join(self.settings.scopes),
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    # Yo future me, token calls use HTTP Basic (client_id:client_secret) and MUST be
    # form-urlencoded, not JSON. Errors come back as {"error", "error_description"} - a
    # 400/401 here means the code/refresh token is bad and retrying won't help.
    async def _token_request(self, data: dict[str, str]) -> TokenResult:
        self._require_client_credentials()
        client = await self._get_client()
        auth = (self.settings.client_id, self.settings.client_secret)

        response = await self.rate_limiter.execute(
            lambda: client.post(self.token_url, data=data, auth=auth)
        )

        if response.status_code in (400, 401):
            error_code, description = _token_error(response)
            raise ProviderAuthError(
                message=description,
                error_code=error_code,
                http_status=response.status_code,
            )
        if not response.is_success:
            _, description = _token_error(response)
            raise ProviderError(response.status_code, description)

        body = response.json()
        return TokenResult(
            access_token=body["access_token"],
            expires_in=int(body.get("expires_in", 3600)),
            refresh_token=body.get("refresh_token") or None,
            token_type=body.get("token_type", "Bearer"),
            scope=body.get("scope"),
        )

    async def request_access_token(self, code: str, redirect_uri: str) -> TokenResult:
        """
        Exchange authorization code for the first token pair.

        Args:
            code: One-time authorization code (expires after ~10 minutes)
            redirect_uri: Must match EXACTLY the one used for the authorization URL

        Returns:
            TokenResult with access and refresh token

        Raises:
            ProviderAuthError: If the code is invalid or expired
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        """
        Refresh access token using refresh token.

        Returns:
            TokenResult; refresh_token only set if Spotify rotated it

        Raises:
            ProviderAuthError: If the refresh token is invalid/revoked (re-auth needed)
            ProviderError: For other HTTP errors
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )


__all__ = ["SpotifyClient"]
