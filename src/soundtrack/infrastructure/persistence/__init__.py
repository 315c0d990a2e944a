"""Persistence layer: database engine, ORM models and repositories."""

from soundtrack.infrastructure.persistence.database import Database
from soundtrack.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
    PlaybackEventRepository,
    TrackRepository,
    UserRepository,
)

__all__ = [
    "AlbumRepository",
    "ArtistRepository",
    "Database",
    "PlaybackEventRepository",
    "TrackRepository",
    "UserRepository",
]
