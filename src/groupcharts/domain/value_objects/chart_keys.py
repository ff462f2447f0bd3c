"""Entry keys and URL slugs for chartable items.

The entry key is the stable identity of an item inside one chart type:

    >>> make_entry_key("Radiohead", None, ChartType.ARTISTS)
    'radiohead'
    >>> make_entry_key("Karma Police", "Radiohead", ChartType.TRACKS)
    'karma police|radiohead'

Slugs are derived from entry keys only, so a slug never changes while the key doesn't.

    >>> slugify_entry_key("beyoncé", ChartType.ARTISTS)
    'beyonce'
    >>> slugify_entry_key("karma police|radiohead", ChartType.TRACKS)
    'karma-police-radiohead'
"""

import hashlib
import re
import unicodedata

from groupcharts.domain.entities import ChartType

_WHITESPACE_RE = re.compile(r"[\s_]+")
_INVALID_RE = re.compile(r"[^a-z0-9-]")
_DASHES_RE = re.compile(r"-+")


def make_entry_key(name: str, artist: str | None, chart_type: ChartType) -> str:
    """Build the normalized identity for an item.

    Args:
        name: Artist, track or album name as reported in the snapshot
        artist: Artist of a track/album (ignored for the artist chart)
        chart_type: Which chart the item belongs to

    Returns:
        Trimmed, lowercase ``name`` for artists, ``name|artist`` for tracks and albums
    """
    if chart_type is ChartType.ARTISTS:
        return name.strip().lower()
    return f"{name.strip()}|{(artist or '').strip()}".lower()


def split_entry_key(entry_key: str) -> tuple[str, str | None]:
    """Split a ``name|artist`` key back into its parts (artist keys have no pipe)."""
    if "|" not in entry_key:
        return entry_key, None
    name, _, artist = entry_key.rpartition("|")
    return name, artist or None


def _remove_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def slugify_entry_key(entry_key: str, chart_type: ChartType) -> str:
    """Map an entry key to a URL-safe slug.

    Keys made entirely of non-latin characters would slugify to nothing, so those
    fall back to a short stable hash of the key.
    """
    slug = _remove_accents(entry_key.strip().lower())
    if chart_type is not ChartType.ARTISTS:
        slug = slug.replace("|", "-")
    slug = _WHITESPACE_RE.sub("-", slug)
    slug = _INVALID_RE.sub("", slug)
    slug = _DASHES_RE.sub("-", slug).strip("-")
    if not slug:
        digest = hashlib.sha1(entry_key.encode("utf-8")).hexdigest()[:10]
        slug = f"entry-{digest}"
    return slug
