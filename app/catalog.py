"""Catalog aggregator — one filtered, paginated list from every track source.

External catalogs are queried concurrently; a source that fails or times
out contributes nothing.  When every external source comes back empty the
fixed sample list stands in for them, so browsing never shows a blank page.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from app import store
from app.catalog_client import CatalogError, get_deezer_tracks, get_jamendo_tracks
from app.config import get_settings
from core.catalog import build_page, sample_tracks, top_by_plays
from core.models import CatalogFilter, CatalogPage, Track

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, int], Awaitable[list[Track]]]

EXTERNAL_SOURCES: dict[str, Fetcher] = {
    "jamendo": get_jamendo_tracks,
    "deezer": get_deezer_tracks,
}


async def _safe_fetch(name: str, fetcher: Fetcher, genre: str, limit: int) -> list[Track]:
    try:
        return await fetcher(genre, limit)
    except CatalogError as exc:
        logger.warning("Catalog source %s unavailable: %s", name, exc.detail)
    except Exception:
        logger.exception("Catalog source %s failed", name)
    return []


async def fetch_external(genre: str = "", limit: int | None = None) -> list[Track]:
    """Merged tracks from every external source, samples if all are empty."""
    limit = limit or get_settings().catalog_fetch_limit
    results = await asyncio.gather(
        *(
            _safe_fetch(name, EXTERNAL_SOURCES[name], genre, limit)
            for name in EXTERNAL_SOURCES
        )
    )
    tracks = [t for batch in results for t in batch]
    if not tracks:
        logger.info("No external catalog answered, using sample tracks")
        tracks = sample_tracks()

    await store.remember_tracks(tracks)
    return tracks


async def list_songs(flt: CatalogFilter) -> CatalogPage:
    """Search/browse across the selected sources."""
    api_tracks: list[Track] = []
    user_tracks: list[Track] = []

    if flt.wants_api:
        api_tracks = await fetch_external(flt.genre)
    if flt.wants_user:
        user_tracks = await store.list_user_songs()

    return build_page(api_tracks, user_tracks, flt)


async def recommendations(n: int = 12) -> list[Track]:
    """Most-played tracks across external catalogs and uploads."""
    api_tracks = await fetch_external("", 10)
    user_tracks = await store.list_user_songs()
    return top_by_plays(api_tracks + user_tracks, n) or sample_tracks()
