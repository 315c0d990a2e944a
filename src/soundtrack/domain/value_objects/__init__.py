"""Domain value objects."""

from soundtrack.domain.value_objects.album_types import AlbumType
from soundtrack.domain.value_objects.slug import slugify, unique_slug
from soundtrack.domain.value_objects.timeframe import ALL_TIME_START, Timeframe

__all__ = [
    "ALL_TIME_START",
    "AlbumType",
    "Timeframe",
    "slugify",
    "unique_slug",
]
