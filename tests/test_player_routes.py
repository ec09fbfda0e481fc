"""Tests for the player session routes (app/routes_player.py)."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.player import _sessions


@pytest.fixture(autouse=True)
def _use_tmp_env(monkeypatch, tmp_path):
    """Use a temp database and upload dir for every test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("SECRET_KEY", "test_secret")
    monkeypatch.setenv("MEDIA_BASE_URL", "http://media.test")
    from app.config import get_settings
    get_settings.cache_clear()
    _sessions.clear()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def song_ids(client):
    client.post(
        "/auth/register",
        json={"username": "ana", "email": "ana@example.com", "password": "secret1"},
    )
    ids = []
    for title in ("One", "Two", "Three"):
        resp = client.post(
            "/music/upload",
            data={"title": title, "artist": "Me", "genre": "Rock"},
            files={"audio": (f"{title}.mp3", b"ID3", "audio/mpeg")},
        )
        ids.append(resp.json()["song"]["id"])
    return ids


def _play(client, song_ids, index=0):
    return client.post(
        "/player/play", json={"songId": song_ids[index], "queue": song_ids, "index": index}
    )


def test_state_requires_login(client):
    assert client.get("/player/state").status_code == 401


def test_initial_state(client, song_ids):
    data = client.get("/player/state").json()
    assert data["state"]["isPlaying"] is False
    assert data["state"]["volume"] == 0.7
    assert data["audio"]["src"] is None


def test_play_sets_audio_source(client, song_ids):
    data = _play(client, song_ids).json()
    assert data["state"]["isPlaying"] is True
    assert data["state"]["currentTrack"]["id"] == song_ids[0]
    assert data["audio"]["paused"] is False
    assert data["audio"]["src"].startswith("http://media.test/uploads/song-")


def test_play_unknown_song_is_404(client, song_ids):
    resp = client.post("/player/play", json={"songId": "missing"})
    assert resp.status_code == 404


def test_play_index_out_of_range_is_400(client, song_ids):
    resp = client.post("/player/play", json={"songId": song_ids[0], "queue": song_ids, "index": 9})
    assert resp.status_code == 400


def test_next_wraps_to_paused_start(client, song_ids):
    _play(client, song_ids)
    states = [client.post("/player/next").json()["state"] for _ in range(3)]
    assert [(s["currentIndex"], s["isPlaying"]) for s in states] == [
        (1, True),
        (2, True),
        (0, False),
    ]


def test_ended_event_advances(client, song_ids):
    _play(client, song_ids)
    data = client.post("/player/events", json={"type": "ended"}).json()
    assert data["state"]["currentIndex"] == 1


def test_seek_after_metadata(client, song_ids):
    _play(client, song_ids)
    # Unknown duration: no-op.
    assert client.post("/player/seek", json={"percent": 50}).json()["state"]["currentTime"] == 0
    client.post("/player/events", json={"type": "loadedmetadata", "duration": 200})
    data = client.post("/player/seek", json={"percent": 50}).json()
    assert data["state"]["currentTime"] == 100
    assert data["audio"]["position"] == 100


def test_timeupdate_sets_progress(client, song_ids):
    _play(client, song_ids)
    client.post("/player/events", json={"type": "loadedmetadata", "duration": 100})
    data = client.post("/player/events", json={"type": "timeupdate", "currentTime": 25}).json()
    assert data["state"]["progress"] == 25


def test_error_event_pauses(client, song_ids):
    _play(client, song_ids)
    data = client.post("/player/events", json={"type": "error", "message": "decode failed"}).json()
    assert data["state"]["isPlaying"] is False
    assert data["state"]["error"] == "decode failed"


def test_volume_is_clamped(client, song_ids):
    client.post("/player/volume", json={"level": 0.3})
    data = client.post("/player/volume", json={"level": 1.5}).json()
    assert data["state"]["volume"] == 1.0
    assert data["audio"]["volume"] == 1.0


def test_repeat_and_shuffle(client, song_ids):
    _play(client, song_ids, 1)
    assert client.post("/player/repeat", json={"mode": "bogus"}).status_code == 400
    client.post("/player/repeat", json={"mode": "one"})
    data = client.post("/player/next").json()
    assert data["state"]["currentIndex"] == 1
    assert data["state"]["repeat"] == "one"
    data = client.post("/player/shuffle", json={"enabled": True}).json()
    assert data["state"]["shuffle"] is True


def test_toggle_and_previous(client, song_ids):
    _play(client, song_ids)
    assert client.post("/player/toggle").json()["state"]["isPlaying"] is False
    data = client.post("/player/previous").json()
    assert data["state"]["currentIndex"] == 2
    assert data["state"]["isPlaying"] is True


def test_logout_drops_session(client, song_ids):
    _play(client, song_ids)
    assert _sessions
    client.post("/auth/logout")
    assert not _sessions


def test_reset_starts_fresh(client, song_ids):
    _play(client, song_ids)
    client.post("/player/volume", json={"level": 0.2})
    assert client.delete("/player").json() == {"status": "reset"}
    data = client.get("/player/state").json()
    assert data["state"]["currentTrack"] is None
    assert data["state"]["volume"] == 0.7


# ---------------------------------------------------------------------------
# One player per client
# ---------------------------------------------------------------------------

def test_two_devices_of_one_user_are_independent(client, song_ids):
    # Shares the running app; the lifespan is owned by ``client``.
    other = TestClient(app)
    resp = other.post("/auth/login", json={"email": "ana@example.com", "password": "secret1"})
    assert resp.status_code == 200

    client.post("/player/volume", json={"level": 0.2})
    client.post("/player/shuffle", json={"enabled": True})
    _play(client, song_ids)

    data = other.get("/player/state").json()
    assert data["state"]["volume"] == 0.7
    assert data["state"]["shuffle"] is False
    assert data["state"]["currentTrack"] is None
    assert client.get("/player/state").json()["state"]["volume"] == 0.2


def test_tabs_pick_their_player_by_header(client, song_ids):
    tab1 = {"X-Player-Session": "tab-1"}
    tab2 = {"X-Player-Session": "tab-2"}
    client.post("/player/volume", json={"level": 0.2}, headers=tab1)
    client.post("/player/shuffle", json={"enabled": True}, headers=tab1)

    state2 = client.get("/player/state", headers=tab2).json()["state"]
    assert state2["volume"] == 0.7
    assert state2["shuffle"] is False
    state1 = client.get("/player/state", headers=tab1).json()["state"]
    assert state1["volume"] == 0.2
    assert state1["shuffle"] is True


def test_reset_only_drops_own_tab(client, song_ids):
    client.post("/player/volume", json={"level": 0.2}, headers={"X-Player-Session": "a"})
    client.post("/player/volume", json={"level": 0.4}, headers={"X-Player-Session": "b"})
    client.delete("/player", headers={"X-Player-Session": "a"})
    assert client.get("/player/state", headers={"X-Player-Session": "a"}).json()["state"]["volume"] == 0.7
    assert client.get("/player/state", headers={"X-Player-Session": "b"}).json()["state"]["volume"] == 0.4


def test_session_limit_evicts_least_recent(monkeypatch, client, song_ids):
    monkeypatch.setenv("PLAYER_SESSION_LIMIT", "2")
    from app.config import get_settings
    get_settings.cache_clear()

    for tab in ("a", "b"):
        client.post("/player/volume", json={"level": 0.2}, headers={"X-Player-Session": tab})
    client.get("/player/state", headers={"X-Player-Session": "a"})
    client.get("/player/state", headers={"X-Player-Session": "c"})

    assert [key[1] for key in _sessions] == ["a", "c"]


def test_idle_sessions_expire(monkeypatch, client, song_ids):
    monkeypatch.setenv("PLAYER_SESSION_TTL", "60")
    from app.config import get_settings
    get_settings.cache_clear()

    client.post("/player/volume", json={"level": 0.2}, headers={"X-Player-Session": "old"})
    (old,) = _sessions.values()
    old.last_used -= 61
    client.get("/player/state", headers={"X-Player-Session": "new"})

    assert [key[1] for key in _sessions] == ["new"]
