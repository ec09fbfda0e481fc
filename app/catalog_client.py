"""External catalog clients (Jamendo, Deezer).

Each fetcher returns a list of :class:`core.models.Track` or raises
``CatalogError``; the aggregator treats a raising source as empty.
Requests are bounded by ``CATALOG_TIMEOUT`` seconds.
"""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from app.config import get_settings
from core.catalog import mood_from_tags
from core.models import Source, Track

logger = logging.getLogger(__name__)

_JAMENDO_TRACKS_URL = "https://api.jamendo.com/v3.0/tracks/"
_DEEZER_SEARCH_URL = "https://api.deezer.com/search"
_DEFAULT_COVER = "/uploads/default-cover.jpg"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CatalogError(Exception):
    """Raised when an external catalog cannot be queried."""

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"{source} catalog error: {detail}")


# ---------------------------------------------------------------------------
# HTTP helper
# ---------------------------------------------------------------------------

def _timeout() -> httpx.Timeout:
    return httpx.Timeout(get_settings().catalog_timeout)


async def _get_json(source: str, url: str, params: dict) -> dict:
    async with httpx.AsyncClient(timeout=_timeout()) as client:
        try:
            resp = await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise CatalogError(source, "timed out") from exc
        except httpx.HTTPError as exc:
            raise CatalogError(source, str(exc)) from exc

    if resp.status_code != 200:
        raise CatalogError(source, f"HTTP {resp.status_code}")
    try:
        return resp.json()
    except ValueError as exc:
        raise CatalogError(source, "invalid JSON") from exc


def _year(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value[:10]).year
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Jamendo
# ---------------------------------------------------------------------------

def parse_jamendo_track(item: dict) -> Track:
    tags = item.get("tags")
    if isinstance(tags, list):
        tags = " ".join(tags)
    return Track(
        id=f"jamendo_{item['id']}",
        title=item.get("name", ""),
        artist=item.get("artist_name", ""),
        album=item.get("album_name") or "Single",
        genre=tags or "Various",
        mood=mood_from_tags(tags),
        duration=int(float(item.get("duration") or 0)),
        file_url=item.get("audio", ""),
        cover_art=item.get("album_image") or _DEFAULT_COVER,
        plays=int(item.get("popularity_total") or 0),
        release_year=_year(item.get("releasedate")),
        source=Source.JAMENDO,
    )


async def get_jamendo_tracks(genre: str = "", limit: int = 20) -> list[Track]:
    """Popular Jamendo tracks, optionally filtered by tag."""
    settings = get_settings()
    if not settings.jamendo_client_id:
        raise CatalogError("jamendo", "JAMENDO_CLIENT_ID not set")

    data = await _get_json(
        "jamendo",
        _JAMENDO_TRACKS_URL,
        {
            "client_id": settings.jamendo_client_id,
            "format": "json",
            "limit": limit,
            "tags": genre,
            "order": "popularity_total",
            "include": "musicinfo",
        },
    )
    return [parse_jamendo_track(item) for item in data.get("results", []) if item.get("id")]


# ---------------------------------------------------------------------------
# Deezer
# ---------------------------------------------------------------------------

def parse_deezer_track(item: dict, genre: str = "") -> Track:
    album = item.get("album") or {}
    return Track(
        id=f"deezer_{item['id']}",
        title=item.get("title", ""),
        artist=(item.get("artist") or {}).get("name", ""),
        album=album.get("title") or "Single",
        genre=genre or "Various",
        mood="energetic",
        duration=int(item.get("duration") or 0),
        file_url=item.get("preview", ""),
        cover_art=album.get("cover_medium") or _DEFAULT_COVER,
        plays=int(item.get("rank") or 0),
        release_year=None,
        source=Source.DEEZER,
    )


async def get_deezer_tracks(genre: str = "", limit: int = 20) -> list[Track]:
    """Deezer search results (30-second previews)."""
    data = await _get_json(
        "deezer",
        _DEEZER_SEARCH_URL,
        {"q": f'genre:"{genre}"' if genre else "music", "limit": limit},
    )
    if "error" in data:
        raise CatalogError("deezer", str(data["error"]))
    return [parse_deezer_track(item, genre) for item in data.get("data", []) if item.get("id")]
