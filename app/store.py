"""Persistence operations for users, songs, playlists, history and favourites.

Every counter (``songs_played``, ``songs_uploaded``, ``plays`` …) is bumped
with an ``UPDATE … SET n = n + 1`` at the store level, never read-then-write,
so concurrent requests from the same user cannot lose updates.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Iterable, Optional, Union
from uuid import uuid4

import aiosqlite
from werkzeug.security import check_password_hash, generate_password_hash

from app.config import get_settings
from app.db import get_db, transaction
from core.models import Source, Track

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Base class for persistence-level failures the routers translate."""


class NotFound(StoreError):
    pass


class Conflict(StoreError):
    pass


class Forbidden(StoreError):
    pass


class InvalidInput(StoreError):
    """Raised before any write when required fields are missing or malformed."""

    def __init__(self, message: str, fields: Iterable[str] = ()):
        self.fields = list(fields)
        super().__init__(message)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_SETTINGS: dict[str, Any] = {
    "theme": "light",
    "volume": 0.7,
    "audioQuality": "high",
    "crossfade": False,
    "crossfadeDuration": 5,
    "normalizeVolume": True,
    "privateMode": False,
    "showListeningActivity": True,
    "emailNotifications": True,
    "pushNotifications": True,
}

DEFAULT_PREFERENCES: dict[str, Any] = {"genres": [], "favoriteArtists": [], "mood": ""}

MOODS = ("happy", "sad", "energetic", "calm", "romantic", "focused")

_EMAIL_RE = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)*\.\w{2,}$")


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def row_to_track(row: aiosqlite.Row) -> Track:
    return Track(
        id=row["id"],
        title=row["title"],
        artist=row["artist"],
        album=row["album"],
        genre=row["genre"],
        mood=row["mood"],
        duration=row["duration"],
        file_url=row["file_url"],
        cover_art=row["cover_art"],
        lyrics=row["lyrics"],
        plays=row["plays"],
        source=Source(row["source"]),
        release_year=row["release_year"],
        uploaded_by=row["uploaded_by"],
        created_at=row["created_at"],
    )


def _user_dict(row: aiosqlite.Row) -> dict:
    """Public view of a user row; the password hash never leaves the store."""
    return {
        "id": row["id"],
        "username": row["username"],
        "email": row["email"],
        "profile": {
            "displayName": row["display_name"],
            "bio": row["bio"],
            "avatar": row["avatar"],
        },
        "preferences": {**DEFAULT_PREFERENCES, **json.loads(row["preferences"])},
        "settings": {**DEFAULT_SETTINGS, **json.loads(row["settings"])},
        "stats": _stats_dict(row),
        "createdAt": row["created_at"],
    }


def _stats_dict(row: aiosqlite.Row) -> dict:
    return {
        "songsPlayed": row["songs_played"],
        "favoriteSongs": row["favorite_songs"],
        "playlistsCreated": row["playlists_created"],
        "songsUploaded": row["songs_uploaded"],
        "listeningTime": row["listening_time"],
    }


def _history_dict(row: aiosqlite.Row) -> dict:
    return {
        "songId": row["song_id"],
        "songTitle": row["song_title"],
        "artist": row["artist"],
        "duration": row["duration"],
        "playedAt": row["played_at"],
    }


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def validate_registration(username: str, email: str, password: str) -> None:
    missing = [n for n, v in (("username", username), ("email", email), ("password", password)) if not v]
    if missing:
        raise InvalidInput("Please provide username, email, and password", missing)
    if not 3 <= len(username.strip()) <= 30:
        raise InvalidInput("Username must be 3-30 characters", ["username"])
    if not _EMAIL_RE.match(email.strip()):
        raise InvalidInput("Please enter a valid email", ["email"])
    if len(password) < 6:
        raise InvalidInput("Password must be at least 6 characters", ["password"])


async def create_user(username: str, email: str, password: str) -> dict:
    validate_registration(username, email, password)
    username = username.strip()
    email = email.strip().lower()
    try:
        async with transaction() as db:
            cur = await db.execute(
                """INSERT INTO users (username, email, password_hash, display_name)
                   VALUES (?, ?, ?, ?)""",
                (username, email, generate_password_hash(password), username),
            )
            user_id = cur.lastrowid
    except aiosqlite.IntegrityError as exc:
        raise Conflict("User already exists with this email or username") from exc
    logger.info("Registered user %d (%s)", user_id, username)
    return await get_user(user_id)


async def authenticate(email: str, password: str) -> Optional[dict]:
    """Return the user for valid credentials, else None."""
    db = get_db()
    cur = await db.execute(
        "SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),)
    )
    row = await cur.fetchone()
    if not row or not check_password_hash(row["password_hash"], password or ""):
        return None
    return _user_dict(row)


async def get_user(user_id: int) -> dict:
    db = get_db()
    cur = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = await cur.fetchone()
    if not row:
        raise NotFound("User not found")
    return _user_dict(row)


async def update_profile(
    user_id: int,
    *,
    display_name: Optional[str] = None,
    bio: Optional[str] = None,
    avatar: Optional[str] = None,
) -> dict:
    """Set the given profile fields; ``None`` leaves a field unchanged."""
    async with transaction() as db:
        cur = await db.execute(
            """UPDATE users
               SET display_name = COALESCE(?, display_name),
                   bio          = COALESCE(?, bio),
                   avatar       = COALESCE(?, avatar),
                   updated_at   = datetime('now')
               WHERE id = ?""",
            (display_name, bio, avatar, user_id),
        )
        if cur.rowcount == 0:
            raise NotFound("User not found")
    return await get_user(user_id)


async def update_settings(user_id: int, changes: dict) -> dict:
    """Merge *changes* into the stored settings (unknown keys are dropped)."""
    unknown = sorted(set(changes) - set(DEFAULT_SETTINGS))
    if unknown:
        raise InvalidInput("Unknown settings", unknown)
    async with transaction() as db:
        cur = await db.execute("SELECT settings FROM users WHERE id = ?", (user_id,))
        row = await cur.fetchone()
        if not row:
            raise NotFound("User not found")
        merged = {**DEFAULT_SETTINGS, **json.loads(row["settings"]), **changes}
        await db.execute(
            "UPDATE users SET settings = ?, updated_at = datetime('now') WHERE id = ?",
            (json.dumps(merged), user_id),
        )
    return merged


async def update_preferences(user_id: int, changes: dict) -> dict:
    unknown = sorted(set(changes) - set(DEFAULT_PREFERENCES))
    if unknown:
        raise InvalidInput("Unknown preferences", unknown)
    async with transaction() as db:
        cur = await db.execute("SELECT preferences FROM users WHERE id = ?", (user_id,))
        row = await cur.fetchone()
        if not row:
            raise NotFound("User not found")
        merged = {**DEFAULT_PREFERENCES, **json.loads(row["preferences"]), **changes}
        await db.execute(
            "UPDATE users SET preferences = ?, updated_at = datetime('now') WHERE id = ?",
            (json.dumps(merged), user_id),
        )
    return merged


# ---------------------------------------------------------------------------
# Plays & history
# ---------------------------------------------------------------------------

async def record_play(
    user_id: int,
    song_id: str,
    *,
    song_title: str = "",
    artist: str = "",
    duration: int = 0,
) -> dict:
    """Count one play: user stats, song counter and a history entry.

    History is pruned to the newest ``history_limit`` rows in the same
    transaction.  An unknown user or song raises ``NotFound`` and nothing is
    written.  Returns the updated stats.
    """
    if not song_id:
        raise InvalidInput("songId is required", ["songId"])
    duration = max(0, int(duration or 0))
    limit = get_settings().history_limit

    async with transaction() as db:
        cur = await db.execute(
            """UPDATE users
               SET songs_played   = songs_played + 1,
                   listening_time = listening_time + ?,
                   updated_at     = datetime('now')
               WHERE id = ?""",
            (duration // 60, user_id),
        )
        if cur.rowcount == 0:
            raise NotFound("User not found")
        cur = await db.execute("UPDATE songs SET plays = plays + 1 WHERE id = ?", (song_id,))
        if cur.rowcount == 0:
            raise NotFound("Song not found")
        await db.execute(
            """INSERT INTO listening_history (user_id, song_id, song_title, artist, duration)
               VALUES (?, ?, ?, ?, ?)""",
            (user_id, song_id, song_title, artist, duration),
        )
        await db.execute(
            """DELETE FROM listening_history
               WHERE user_id = ? AND id NOT IN (
                   SELECT id FROM listening_history
                   WHERE user_id = ? ORDER BY id DESC LIMIT ?
               )""",
            (user_id, user_id, limit),
        )
        cur = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cur.fetchone()
    return _stats_dict(row)


async def get_history(user_id: int, limit: Optional[int] = None) -> list[dict]:
    """Newest first."""
    db = get_db()
    cur = await db.execute(
        "SELECT * FROM listening_history WHERE user_id = ? ORDER BY id DESC LIMIT ?",
        (user_id, limit if limit is not None else -1),
    )
    return [_history_dict(r) for r in await cur.fetchall()]


# ---------------------------------------------------------------------------
# Songs
# ---------------------------------------------------------------------------

async def remember_tracks(tracks: Iterable[Track]) -> None:
    """Upsert catalog and sample tracks so they can be fetched by id later.

    Metadata is refreshed; the local play counter is left alone.
    """
    rows = [
        (
            t.id, t.title, t.artist, t.album, t.genre, t.mood, t.duration,
            t.file_url, t.cover_art, t.plays, t.source.value, t.release_year,
        )
        for t in tracks
        if t.source != Source.USER
    ]
    if not rows:
        return
    async with transaction() as db:
        await db.executemany(
            """INSERT INTO songs
                   (id, title, artist, album, genre, mood, duration,
                    file_url, cover_art, plays, source, release_year)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   title        = excluded.title,
                   artist       = excluded.artist,
                   album        = excluded.album,
                   genre        = excluded.genre,
                   mood         = excluded.mood,
                   duration     = excluded.duration,
                   file_url     = excluded.file_url,
                   cover_art    = excluded.cover_art,
                   release_year = excluded.release_year""",
            rows,
        )


async def get_song(song_id: str) -> Track:
    db = get_db()
    cur = await db.execute("SELECT * FROM songs WHERE id = ?", (song_id,))
    row = await cur.fetchone()
    if not row:
        raise NotFound("Song not found")
    return row_to_track(row)


async def get_songs(song_ids: Iterable[str]) -> list[Track]:
    """Fetch several songs, preserving the requested order; unknown ids raise NotFound."""
    tracks = []
    for song_id in song_ids:
        tracks.append(await get_song(song_id))
    return tracks


async def increment_song_plays(song_id: str) -> Track:
    async with transaction() as db:
        cur = await db.execute("UPDATE songs SET plays = plays + 1 WHERE id = ?", (song_id,))
        if cur.rowcount == 0:
            raise NotFound("Song not found")
    return await get_song(song_id)


async def list_user_songs(uploaded_by: Optional[int] = None) -> list[Track]:
    """All user-uploaded songs (optionally one uploader's), newest first."""
    db = get_db()
    if uploaded_by is None:
        cur = await db.execute(
            "SELECT * FROM songs WHERE source = 'user' ORDER BY created_at DESC, rowid DESC"
        )
    else:
        cur = await db.execute(
            """SELECT * FROM songs WHERE source = 'user' AND uploaded_by = ?
               ORDER BY created_at DESC, rowid DESC""",
            (uploaded_by,),
        )
    return [row_to_track(r) for r in await cur.fetchall()]


def validate_song_fields(
    *,
    title: Optional[str],
    artist: Optional[str],
    genre: Optional[str],
    mood: Optional[str] = None,
    release_year: Union[int, str, None] = None,
) -> Optional[int]:
    """Reject an upload before anything is written; return the parsed release year.

    Form posts send ``releaseYear=""`` when the field is left blank, which
    counts as no year.
    """
    missing = [n for n, v in (("title", title), ("artist", artist), ("genre", genre)) if not (v or "").strip()]
    if missing:
        raise InvalidInput("Title, artist, and genre are required", missing)
    if len(title.strip()) > 100:
        raise InvalidInput("Title must be at most 100 characters", ["title"])
    if len(artist.strip()) > 50:
        raise InvalidInput("Artist must be at most 50 characters", ["artist"])
    if mood and mood not in MOODS:
        raise InvalidInput(f"Mood must be one of {', '.join(MOODS)}", ["mood"])
    year = _parse_year(release_year)
    if year is not None and not 1900 <= year <= datetime.now().year:
        raise InvalidInput("Release year out of range", ["releaseYear"])
    return year


def _parse_year(value: Union[int, str, None]) -> Optional[int]:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            raise InvalidInput("Release year must be a number", ["releaseYear"]) from None
    return value


def new_song_id() -> str:
    return f"user_{uuid4().hex[:16]}"


async def create_song(
    user_id: int,
    *,
    song_id: str,
    title: str,
    artist: str,
    genre: str,
    file_url: str,
    album: str = "",
    mood: str = "",
    lyrics: str = "",
    duration: int = 0,
    release_year: Union[int, str, None] = None,
) -> Track:
    """Persist an uploaded song and bump the uploader's counter as one unit."""
    year = validate_song_fields(
        title=title, artist=artist, genre=genre, mood=mood, release_year=release_year
    )
    async with transaction() as db:
        cur = await db.execute(
            """UPDATE users
               SET songs_uploaded = songs_uploaded + 1, updated_at = datetime('now')
               WHERE id = ?""",
            (user_id,),
        )
        if cur.rowcount == 0:
            raise NotFound("User not found")
        await db.execute(
            """INSERT INTO songs
                   (id, title, artist, album, genre, mood, duration, file_url,
                    lyrics, plays, source, release_year, uploaded_by)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 'user', ?, ?)""",
            (
                song_id, title.strip(), artist.strip(), album or "", genre.strip(),
                mood or "energetic", duration, file_url, lyrics or "",
                year if year is not None else datetime.now().year,
                user_id,
            ),
        )
    logger.info("User %d uploaded song %s (%s)", user_id, song_id, title)
    return await get_song(song_id)


# ---------------------------------------------------------------------------
# Playlists
# ---------------------------------------------------------------------------

async def _playlist_songs(playlist_id: int) -> list[Track]:
    db = get_db()
    cur = await db.execute(
        """SELECT s.* FROM playlist_songs ps
           JOIN songs s ON s.id = ps.song_id
           WHERE ps.playlist_id = ?
           ORDER BY ps.position""",
        (playlist_id,),
    )
    return [row_to_track(r) for r in await cur.fetchall()]


async def _playlist_dict(row: aiosqlite.Row, *, include_songs: bool = True) -> dict:
    data = {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "owner": {"id": row["owner_id"], "username": row["owner_username"]},
        "isPublic": bool(row["is_public"]),
        "coverArt": row["cover_art"],
        "tags": json.loads(row["tags"]),
        "plays": row["plays"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
    if include_songs:
        data["songs"] = [t.to_json_dict() for t in await _playlist_songs(row["id"])]
    return data


_PLAYLIST_SELECT = """
    SELECT p.*, u.username AS owner_username
    FROM playlists p JOIN users u ON u.id = p.owner_id
"""


async def create_playlist(
    owner_id: int,
    name: Optional[str],
    *,
    description: str = "",
    is_public: bool = True,
    tags: Optional[list[str]] = None,
) -> dict:
    """Create an empty playlist and bump the owner's ``playlists_created``."""
    if not (name or "").strip():
        raise InvalidInput("Playlist name is required", ["name"])
    if len(name.strip()) > 100:
        raise InvalidInput("Playlist name must be at most 100 characters", ["name"])
    if len(description or "") > 500:
        raise InvalidInput("Description must be at most 500 characters", ["description"])

    async with transaction() as db:
        cur = await db.execute(
            """UPDATE users
               SET playlists_created = playlists_created + 1, updated_at = datetime('now')
               WHERE id = ?""",
            (owner_id,),
        )
        if cur.rowcount == 0:
            raise NotFound("User not found")
        cur = await db.execute(
            """INSERT INTO playlists (owner_id, name, description, is_public, tags)
               VALUES (?, ?, ?, ?, ?)""",
            (owner_id, name.strip(), description or "", int(bool(is_public)), json.dumps(tags or [])),
        )
        playlist_id = cur.lastrowid
    logger.info("User %d created playlist %d", owner_id, playlist_id)
    return await get_playlist(playlist_id, viewer_id=owner_id)


async def get_playlist(playlist_id: int, *, viewer_id: Optional[int] = None) -> dict:
    """Playlist with songs populated; private playlists are visible to their owner only."""
    db = get_db()
    cur = await db.execute(f"{_PLAYLIST_SELECT} WHERE p.id = ?", (playlist_id,))
    row = await cur.fetchone()
    if not row or (not row["is_public"] and row["owner_id"] != viewer_id):
        raise NotFound("Playlist not found")
    return await _playlist_dict(row)


async def list_user_playlists(owner_id: int) -> list[dict]:
    db = get_db()
    cur = await db.execute(
        f"{_PLAYLIST_SELECT} WHERE p.owner_id = ? ORDER BY p.created_at DESC, p.id DESC",
        (owner_id,),
    )
    return [await _playlist_dict(r) for r in await cur.fetchall()]


async def _owned_playlist(db: aiosqlite.Connection, playlist_id: int, owner_id: int) -> None:
    cur = await db.execute("SELECT owner_id FROM playlists WHERE id = ?", (playlist_id,))
    row = await cur.fetchone()
    if not row:
        raise NotFound("Playlist not found")
    if row["owner_id"] != owner_id:
        raise Forbidden("Not the owner of this playlist")


async def add_song_to_playlist(playlist_id: int, owner_id: int, song_id: str) -> dict:
    """Append *song_id*; the song must exist.  Re-adding is a no-op."""
    async with transaction() as db:
        await _owned_playlist(db, playlist_id, owner_id)
        cur = await db.execute("SELECT 1 FROM songs WHERE id = ?", (song_id,))
        if not await cur.fetchone():
            raise NotFound("Song not found")
        await db.execute(
            """INSERT OR IGNORE INTO playlist_songs (playlist_id, song_id, position)
               VALUES (?, ?, (SELECT COALESCE(MAX(position), -1) + 1
                              FROM playlist_songs WHERE playlist_id = ?))""",
            (playlist_id, song_id, playlist_id),
        )
        await db.execute(
            "UPDATE playlists SET updated_at = datetime('now') WHERE id = ?", (playlist_id,)
        )
    return await get_playlist(playlist_id, viewer_id=owner_id)


async def remove_song_from_playlist(playlist_id: int, owner_id: int, song_id: str) -> dict:
    async with transaction() as db:
        await _owned_playlist(db, playlist_id, owner_id)
        cur = await db.execute(
            "DELETE FROM playlist_songs WHERE playlist_id = ? AND song_id = ?",
            (playlist_id, song_id),
        )
        if cur.rowcount == 0:
            raise NotFound("Song not in playlist")
        await db.execute(
            "UPDATE playlists SET updated_at = datetime('now') WHERE id = ?", (playlist_id,)
        )
    return await get_playlist(playlist_id, viewer_id=owner_id)


# ---------------------------------------------------------------------------
# Favourites
# ---------------------------------------------------------------------------

async def add_favorite(user_id: int, song_id: str) -> dict:
    async with transaction() as db:
        cur = await db.execute("SELECT 1 FROM songs WHERE id = ?", (song_id,))
        if not await cur.fetchone():
            raise NotFound("Song not found")
        cur = await db.execute(
            "INSERT OR IGNORE INTO favorites (user_id, song_id) VALUES (?, ?)",
            (user_id, song_id),
        )
        if cur.rowcount:
            await db.execute(
                "UPDATE users SET favorite_songs = favorite_songs + 1 WHERE id = ?",
                (user_id,),
            )
    return (await get_user(user_id))["stats"]


async def remove_favorite(user_id: int, song_id: str) -> dict:
    async with transaction() as db:
        cur = await db.execute(
            "DELETE FROM favorites WHERE user_id = ? AND song_id = ?", (user_id, song_id)
        )
        if cur.rowcount == 0:
            raise NotFound("Song is not a favourite")
        await db.execute(
            "UPDATE users SET favorite_songs = favorite_songs - 1 WHERE id = ?",
            (user_id,),
        )
    return (await get_user(user_id))["stats"]


async def list_favorites(user_id: int, limit: Optional[int] = None) -> list[dict]:
    """Favourite songs, most recently added first."""
    db = get_db()
    cur = await db.execute(
        """SELECT s.*, f.added_at AS favorited_at FROM favorites f
           JOIN songs s ON s.id = f.song_id
           WHERE f.user_id = ?
           ORDER BY f.added_at DESC, f.rowid DESC
           LIMIT ?""",
        (user_id, limit if limit is not None else -1),
    )
    return [
        {**row_to_track(r).to_json_dict(), "addedAt": r["favorited_at"]}
        for r in await cur.fetchall()
    ]
