"""URL slugs for catalog entities.

Hey future me - slugs are what ends up in profile/artist/album URLs. Rules:
- lower case, whitespace -> "-", "&" -> "-and-"
- everything that is not an ASCII word character or "-" is dropped
- runs of "-" collapse, leading/trailing "-" are trimmed

Uniqueness is NOT guaranteed by slugify() itself. Two artists called "Nirvana" exist!
unique_slug() appends the provider id when the plain slug is already taken. Once a slug is
stored we never touch it again - links must stay stable.
"""

import re

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\-]+", re.ASCII)
_MULTI_DASH = re.compile(r"-{2,}")


def slugify(value: str) -> str:
    """Format a name for use in a URL.

    Example:
        >>> slugify("Simon & Garfunkel")
        'simon-and-garfunkel'
    """
    slug = value.lower()
    slug = _WHITESPACE.sub("-", slug)
    slug = slug.replace("&", "-and-")
    slug = _NON_WORD.sub("", slug)
    slug = _MULTI_DASH.sub("-", slug)
    return slug.strip("-")


def unique_slug(name: str, entity_id: str, taken: set[str] | frozenset[str]) -> str:
    """Build a slug for `name` that is not in `taken`.

    Args:
        name: Entity display name
        entity_id: Provider id, used as disambiguation suffix
        taken: Slugs already used by OTHER entities

    Returns:
        Plain slug if free, otherwise "<slug>-<id>" (or just the id for empty slugs)
    """
    base = slugify(name)
    suffix = slugify(entity_id) or entity_id.lower()
    if not base:
        return suffix
    if base not in taken:
        return base
    return f"{base}-{suffix}"
