"""External service integrations."""

from soundtrack.infrastructure.integrations.spotify_client import SpotifyClient

__all__ = ["SpotifyClient"]
