"""Album type as reported by the streaming provider."""

from enum import Enum


class AlbumType(str, Enum):
    """Album type - one of album, compilation or single.

    Values match the provider's `album_type` field so we can store them as-is.
    """

    ALBUM = "album"
    COMPILATION = "compilation"
    SINGLE = "single"

    @classmethod
    def from_provider(cls, value: str | None) -> "AlbumType":
        """Parse provider value, defaulting to ALBUM if unknown.

        Args:
            value: String like "album", "SINGLE", "compilation"

        Returns:
            Corresponding enum value, or ALBUM if not recognized.
        """
        if not value:
            return cls.ALBUM
        try:
            return cls(value.lower().strip())
        except ValueError:
            return cls.ALBUM
