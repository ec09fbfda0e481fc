"""Tests for the persistence operations (app/store.py)."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from app import store
from app.db import close_db, get_db, init_db
from core.catalog import sample_tracks
from core.models import Source, Track


@pytest.fixture(autouse=True)
def _override_env(monkeypatch, tmp_path):
    """Use a temporary database for every test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("HISTORY_LIMIT", "5")
    from app.config import get_settings
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db():
    conn = await init_db()
    yield conn
    await close_db()


@pytest_asyncio.fixture
async def user(db):
    return await store.create_user("listener", "listener@example.com", "secret1")


async def _song(owner_id: int, title: str = "Tune") -> Track:
    return await store.create_song(
        owner_id,
        song_id=store.new_song_id(),
        title=title,
        artist="Band",
        genre="Rock",
        file_url="/uploads/x.mp3",
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_user_hashes_password(user):
    cursor = await get_db().execute("SELECT password_hash FROM users WHERE id = ?", (user["id"],))
    stored = (await cursor.fetchone())[0]
    assert stored != "secret1"
    assert "password_hash" not in user
    assert user["stats"]["songsPlayed"] == 0


@pytest.mark.asyncio
async def test_duplicate_user_conflicts(user):
    with pytest.raises(store.Conflict):
        await store.create_user("listener", "other@example.com", "secret1")


@pytest.mark.asyncio
async def test_registration_validation(db):
    with pytest.raises(store.InvalidInput) as exc_info:
        await store.create_user("", "a@b.io", "")
    assert exc_info.value.fields == ["username", "password"]
    with pytest.raises(store.InvalidInput):
        await store.create_user("abc", "not-an-email", "secret1")


@pytest.mark.asyncio
async def test_authenticate(user):
    assert (await store.authenticate("LISTENER@example.com", "secret1"))["id"] == user["id"]
    assert await store.authenticate("listener@example.com", "wrong") is None
    assert await store.authenticate("nobody@example.com", "secret1") is None


@pytest.mark.asyncio
async def test_settings_merge_and_reject_unknown(user):
    merged = await store.update_settings(user["id"], {"theme": "dark"})
    assert merged["theme"] == "dark"
    assert merged["volume"] == 0.7
    with pytest.raises(store.InvalidInput):
        await store.update_settings(user["id"], {"nope": 1})


# ---------------------------------------------------------------------------
# Plays
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_record_play_counts_both(user):
    song = await _song(user["id"])
    await asyncio.gather(
        store.record_play(user["id"], song.id, duration=120),
        store.record_play(user["id"], song.id, duration=120),
    )
    stats = (await store.get_user(user["id"]))["stats"]
    assert stats["songsPlayed"] == 2
    assert stats["listeningTime"] == 4
    assert (await store.get_song(song.id)).plays == 2


@pytest.mark.asyncio
async def test_history_is_pruned_to_limit(user):
    await store.remember_tracks(
        [Track(id=f"deezer_{i}", title=f"t{i}", artist="A", source=Source.DEEZER) for i in range(8)]
    )
    for i in range(8):
        await store.record_play(user["id"], f"deezer_{i}", song_title=f"t{i}")
    history = await store.get_history(user["id"])
    assert len(history) == 5
    assert [h["songId"] for h in history] == [f"deezer_{i}" for i in range(7, 2, -1)]


@pytest.mark.asyncio
async def test_record_play_requires_song_id(user):
    with pytest.raises(store.InvalidInput):
        await store.record_play(user["id"], "")


@pytest.mark.asyncio
async def test_record_play_unknown_user(db):
    with pytest.raises(store.NotFound):
        await store.record_play(999, "deezer_1")


@pytest.mark.asyncio
async def test_record_play_unknown_song_writes_nothing(user):
    with pytest.raises(store.NotFound):
        await store.record_play(user["id"], "deezer_404", duration=60)
    stats = (await store.get_user(user["id"]))["stats"]
    assert stats["songsPlayed"] == 0
    assert stats["listeningTime"] == 0
    assert await store.get_history(user["id"]) == []


# ---------------------------------------------------------------------------
# Songs
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_song_bumps_upload_counter(user):
    song = await _song(user["id"])
    assert song.source == Source.USER
    assert song.uploaded_by == user["id"]
    assert (await store.get_user(user["id"]))["stats"]["songsUploaded"] == 1
    assert [t.id for t in await store.list_user_songs(uploaded_by=user["id"])] == [song.id]


def test_release_year_form_values():
    fields = {"title": "T", "artist": "A", "genre": "Rock"}
    assert store.validate_song_fields(**fields, release_year="") is None
    assert store.validate_song_fields(**fields, release_year=" 2001 ") == 2001
    with pytest.raises(store.InvalidInput) as exc_info:
        store.validate_song_fields(**fields, release_year="abc")
    assert exc_info.value.fields == ["releaseYear"]


@pytest.mark.asyncio
async def test_create_song_invalid_writes_nothing(user):
    with pytest.raises(store.InvalidInput) as exc_info:
        await store.create_song(
            user["id"], song_id="user_x", title="T", artist="A", genre="", file_url="/u"
        )
    assert exc_info.value.fields == ["genre"]
    assert (await store.get_user(user["id"]))["stats"]["songsUploaded"] == 0
    assert await store.list_user_songs() == []


@pytest.mark.asyncio
async def test_remember_tracks_keeps_local_plays(db):
    ext = Track(id="deezer_1", title="Old", artist="A", source=Source.DEEZER, file_url="u", plays=10)
    await store.remember_tracks([ext])
    await store.increment_song_plays("deezer_1")
    await store.remember_tracks([ext.model_copy(update={"title": "New"})])
    song = await store.get_song("deezer_1")
    assert song.title == "New"
    assert song.plays == 11


@pytest.mark.asyncio
async def test_remember_tracks_keeps_samples_playable(db):
    await store.remember_tracks(sample_tracks())
    song = await store.get_song("sample_1")
    assert song.source == Source.SAMPLE
    assert (await store.increment_song_plays("sample_1")).plays == song.plays + 1
    assert await store.list_user_songs() == []


@pytest.mark.asyncio
async def test_remember_tracks_ignores_user_songs(db):
    await store.remember_tracks([Track(id="user_1", title="s", artist="a", source=Source.USER)])
    with pytest.raises(store.NotFound):
        await store.get_song("user_1")


@pytest.mark.asyncio
async def test_increment_unknown_song(db):
    with pytest.raises(store.NotFound):
        await store.increment_song_plays("missing")


# ---------------------------------------------------------------------------
# Playlists
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_playlist_add_and_remove(user):
    song = await _song(user["id"])
    playlist = await store.create_playlist(user["id"], "Road trip")
    assert playlist["songs"] == []
    assert (await store.get_user(user["id"]))["stats"]["playlistsCreated"] == 1

    playlist = await store.add_song_to_playlist(playlist["id"], user["id"], song.id)
    assert [s["id"] for s in playlist["songs"]] == [song.id]

    playlist = await store.remove_song_from_playlist(playlist["id"], user["id"], song.id)
    assert playlist["songs"] == []


@pytest.mark.asyncio
async def test_playlist_unknown_song_leaves_it_unchanged(user):
    playlist = await store.create_playlist(user["id"], "Mix")
    with pytest.raises(store.NotFound):
        await store.add_song_to_playlist(playlist["id"], user["id"], "nope")
    assert (await store.get_playlist(playlist["id"]))["songs"] == []


@pytest.mark.asyncio
async def test_playlist_requires_owner(user):
    other = await store.create_user("other", "other@example.com", "secret2")
    song = await _song(user["id"])
    playlist = await store.create_playlist(user["id"], "Mine")
    with pytest.raises(store.Forbidden):
        await store.add_song_to_playlist(playlist["id"], other["id"], song.id)


@pytest.mark.asyncio
async def test_private_playlist_hidden_from_others(user):
    playlist = await store.create_playlist(user["id"], "Secret", is_public=False)
    assert (await store.get_playlist(playlist["id"], viewer_id=user["id"]))["isPublic"] is False
    with pytest.raises(store.NotFound):
        await store.get_playlist(playlist["id"])


@pytest.mark.asyncio
async def test_playlist_name_required(user):
    with pytest.raises(store.InvalidInput):
        await store.create_playlist(user["id"], "  ")


# ---------------------------------------------------------------------------
# Favourites
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_favorites(user):
    song = await _song(user["id"])
    stats = await store.add_favorite(user["id"], song.id)
    assert stats["favoriteSongs"] == 1
    # Re-adding is a no-op.
    stats = await store.add_favorite(user["id"], song.id)
    assert stats["favoriteSongs"] == 1
    assert [f["id"] for f in await store.list_favorites(user["id"])] == [song.id]

    stats = await store.remove_favorite(user["id"], song.id)
    assert stats["favoriteSongs"] == 0
    with pytest.raises(store.NotFound):
        await store.remove_favorite(user["id"], song.id)
