"""Async SQLite database layer.

Uses aiosqlite for non-blocking access.  Tables are created on first
startup via ``init_db()``.  The connection runs in autocommit mode;
anything that writes goes through ``transaction()`` so multi-statement
updates (song + uploader counter, history insert + prune …) commit or
roll back as a unit.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from app.config import get_settings

# Module-level connection (set during lifespan startup).
_db: aiosqlite.Connection | None = None
_write_lock: asyncio.Lock | None = None

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    username          TEXT    NOT NULL UNIQUE,
    email             TEXT    NOT NULL UNIQUE,
    password_hash     TEXT    NOT NULL,
    display_name      TEXT    NOT NULL DEFAULT '',
    bio               TEXT    NOT NULL DEFAULT '',
    avatar            TEXT    NOT NULL DEFAULT '',
    preferences       TEXT    NOT NULL DEFAULT '{}',   -- JSON
    settings          TEXT    NOT NULL DEFAULT '{}',   -- JSON
    songs_played      INTEGER NOT NULL DEFAULT 0,
    favorite_songs    INTEGER NOT NULL DEFAULT 0,
    playlists_created INTEGER NOT NULL DEFAULT 0,
    songs_uploaded    INTEGER NOT NULL DEFAULT 0,
    listening_time    INTEGER NOT NULL DEFAULT 0,      -- minutes
    created_at        TEXT    NOT NULL DEFAULT (datetime('now')),
    updated_at        TEXT    NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS songs (
    id            TEXT    PRIMARY KEY,                 -- "user_…", "jamendo_…", "deezer_…"
    title         TEXT    NOT NULL,
    artist        TEXT    NOT NULL,
    album         TEXT    NOT NULL DEFAULT '',
    genre         TEXT    NOT NULL DEFAULT '',
    mood          TEXT    NOT NULL DEFAULT '',
    duration      INTEGER NOT NULL DEFAULT 0,
    file_url      TEXT    NOT NULL,
    cover_art     TEXT    NOT NULL DEFAULT '/uploads/default-cover.jpg',
    lyrics        TEXT    NOT NULL DEFAULT '',
    plays         INTEGER NOT NULL DEFAULT 0,
    source        TEXT    NOT NULL
                      CHECK(source IN ('jamendo', 'deezer', 'user', 'sample')),
    release_year  INTEGER,
    uploaded_by   INTEGER REFERENCES users(id),
    created_at    TEXT    NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_songs_source ON songs(source);

CREATE TABLE IF NOT EXISTS playlists (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id     INTEGER NOT NULL REFERENCES users(id),
    name         TEXT    NOT NULL CHECK(length(name) BETWEEN 1 AND 100),
    description  TEXT    NOT NULL DEFAULT '',
    is_public    INTEGER NOT NULL DEFAULT 1,
    cover_art    TEXT,
    tags         TEXT    NOT NULL DEFAULT '[]',        -- JSON array
    plays        INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT    NOT NULL DEFAULT (datetime('now')),
    updated_at   TEXT    NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_playlists_owner ON playlists(owner_id);

CREATE TABLE IF NOT EXISTS playlist_songs (
    playlist_id  INTEGER NOT NULL REFERENCES playlists(id) ON DELETE CASCADE,
    song_id      TEXT    NOT NULL REFERENCES songs(id),
    position     INTEGER NOT NULL,
    added_at     TEXT    NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (playlist_id, song_id)
);

CREATE TABLE IF NOT EXISTS listening_history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL REFERENCES users(id),
    song_id     TEXT    NOT NULL,
    song_title  TEXT    NOT NULL DEFAULT '',
    artist      TEXT    NOT NULL DEFAULT '',
    duration    INTEGER NOT NULL DEFAULT 0,
    played_at   TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_history_user ON listening_history(user_id, id);

CREATE TABLE IF NOT EXISTS favorites (
    user_id   INTEGER NOT NULL REFERENCES users(id),
    song_id   TEXT    NOT NULL REFERENCES songs(id),
    added_at  TEXT    NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (user_id, song_id)
);
"""


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

async def init_db() -> aiosqlite.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    global _db, _write_lock  # noqa: PLW0603
    settings = get_settings()
    db_path = settings.db_abs_path

    _db = await aiosqlite.connect(str(db_path), isolation_level=None)
    _db.row_factory = aiosqlite.Row  # type: ignore[assignment]
    await _db.execute("PRAGMA foreign_keys = ON")
    await _db.executescript(_SCHEMA_SQL)
    await _db.commit()
    _write_lock = asyncio.Lock()
    return _db


async def close_db() -> None:
    """Close the database connection."""
    global _db, _write_lock  # noqa: PLW0603
    if _db is not None:
        await _db.close()
        _db = None
    _write_lock = None


def get_db() -> aiosqlite.Connection:
    """Return the current database connection (call after init)."""
    if _db is None:
        raise RuntimeError("Database not initialised — call init_db() first.")
    return _db


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Serialise writers and run the body as one transaction.

    Commits on normal exit, rolls back if the body raises.
    """
    db = get_db()
    assert _write_lock is not None
    async with _write_lock:
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.execute("ROLLBACK")
            raise
        await db.execute("COMMIT")
