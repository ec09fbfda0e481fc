"""Catalog filtering — pure business logic, no I/O.

Provides:
- search / genre / mood filters (AND-ed, applied in sequence)
- optional sorting by a whitelisted key
- page slicing
- mood inference from free-form tags
- the fixed sample list used when every external catalog is down
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from core.models import SORT_KEYS, CatalogFilter, CatalogPage, Source, Track


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def matches_search(track: Track, search: str) -> bool:
    """Case-insensitive substring match on title, artist or album."""
    needle = search.lower()
    return (
        needle in track.title.lower()
        or needle in track.artist.lower()
        or needle in (track.album or "").lower()
    )


def filter_tracks(
    tracks: Sequence[Track],
    *,
    search: str = "",
    genre: str = "",
    mood: str = "",
) -> List[Track]:
    """Apply every non-empty filter in turn."""
    result = list(tracks)
    if search:
        result = [t for t in result if matches_search(t, search)]
    if genre:
        g = genre.lower()
        result = [t for t in result if g in (t.genre or "").lower()]
    if mood:
        m = mood.lower()
        result = [t for t in result if (t.mood or "").lower() == m]
    return result


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def _sort_value(track: Track, attr: str):
    value = getattr(track, attr)
    return value.lower() if isinstance(value, str) else value


def sort_tracks(
    tracks: Sequence[Track],
    sort_by: Optional[str],
    order: str = "desc",
) -> List[Track]:
    """Sort by a public key (``plays``, ``releaseYear``…); unknown keys keep order.

    Tracks missing the value sort last regardless of direction.
    """
    attr = SORT_KEYS.get(sort_by or "")
    if attr is None:
        return list(tracks)
    present = [t for t in tracks if getattr(t, attr) is not None]
    missing = [t for t in tracks if getattr(t, attr) is None]
    present.sort(key=lambda t: _sort_value(t, attr), reverse=(order != "asc"))
    return present + missing


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

def paginate(tracks: Sequence[Track], page: int, limit: int) -> List[Track]:
    start = (page - 1) * limit
    return list(tracks[start : start + limit])


def build_page(
    api_tracks: Sequence[Track],
    user_tracks: Sequence[Track],
    flt: CatalogFilter,
) -> CatalogPage:
    """Concatenate sources, filter, sort and slice one page."""
    merged = list(api_tracks) + list(user_tracks)
    filtered = filter_tracks(merged, search=flt.search, genre=flt.genre, mood=flt.mood)
    ordered = sort_tracks(filtered, flt.sort_by, flt.order)
    total = len(ordered)
    return CatalogPage(
        songs=paginate(ordered, flt.page, flt.limit),
        total=total,
        total_pages=math.ceil(total / flt.limit),
        current_page=flt.page,
        api_count=len(api_tracks),
        user_count=len(user_tracks),
    )


def top_by_plays(tracks: Sequence[Track], n: int = 12) -> List[Track]:
    return sorted(tracks, key=lambda t: t.plays or 0, reverse=True)[:n]


# ---------------------------------------------------------------------------
# Tags → mood
# ---------------------------------------------------------------------------

_MOOD_KEYWORDS = (
    ("happy", ("happy", "joyful")),
    ("sad", ("sad", "melancholy")),
    ("calm", ("calm", "peaceful")),
    ("romantic", ("romantic", "love")),
    ("focused", ("focus", "study")),
)


def mood_from_tags(tags: Optional[str]) -> str:
    """Best-effort mood from a tag string; ``energetic`` when nothing matches."""
    if not tags:
        return "energetic"
    text = tags.lower()
    for mood, keywords in _MOOD_KEYWORDS:
        if any(k in text for k in keywords):
            return mood
    return "energetic"


# ---------------------------------------------------------------------------
# Fallback content
# ---------------------------------------------------------------------------

SAMPLE_TRACKS: tuple[Track, ...] = (
    Track(
        id="sample_1",
        title="Summer Vibes",
        artist="Independent Artist",
        album="Demo Tracks",
        genre="Pop",
        mood="happy",
        duration=180,
        file_url="/uploads/sample1.mp3",
        plays=154,
        release_year=2024,
        source=Source.SAMPLE,
    ),
    Track(
        id="sample_2",
        title="Night Drive",
        artist="Independent Artist",
        album="Demo Tracks",
        genre="Electronic",
        mood="calm",
        duration=214,
        file_url="/uploads/sample2.mp3",
        plays=87,
        release_year=2024,
        source=Source.SAMPLE,
    ),
)


def sample_tracks() -> List[Track]:
    return list(SAMPLE_TRACKS)
