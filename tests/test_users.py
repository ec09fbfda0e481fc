"""Tests for profile, play recording and export routes (app/routes_users.py)."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from app.main import app


@pytest.fixture(autouse=True)
def _use_tmp_env(monkeypatch, tmp_path):
    """Use a temp database and upload dir for every test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("SECRET_KEY", "test_secret")
    from app.config import get_settings
    get_settings.cache_clear()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def user(client):
    resp = client.post(
        "/auth/register",
        json={"username": "ana", "email": "ana@example.com", "password": "secret1"},
    )
    return resp.json()["user"]


def _play(client, user_id, song_id="sample_1", **extra):
    body = {"songId": song_id, "songTitle": "Tune", "artist": "DJ", "duration": 180, **extra}
    return client.post(f"/users/{user_id}/record-play", json=body)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

def test_profile_is_public(client, user):
    _play(client, user["id"])
    client.cookies.clear()
    resp = client.get(f"/users/{user['id']}/profile")
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["username"] == "ana"
    assert data["recentActivity"][0]["songId"] == "sample_1"
    assert data["favoriteSongs"] == []
    assert data["uploadedSongs"] == []


def test_profile_unknown_user_is_404(client):
    assert client.get("/users/999/profile").status_code == 404


def test_update_profile(client, user):
    resp = client.put(
        f"/users/{user['id']}/profile",
        json={"displayName": "Ana B", "bio": "Hi", "preferences": {"genres": ["Jazz"]}},
    )
    assert resp.status_code == 200
    updated = resp.json()["user"]
    assert updated["profile"]["displayName"] == "Ana B"
    assert updated["profile"]["bio"] == "Hi"
    assert updated["preferences"]["genres"] == ["Jazz"]


def test_update_other_profile_is_403(client, user):
    client.post(
        "/auth/register",
        json={"username": "bob", "email": "bob@example.com", "password": "secret2"},
    )
    resp = client.put(f"/users/{user['id']}/profile", json={"bio": "hacked"})
    assert resp.status_code == 403


def test_update_settings(client, user):
    resp = client.put(f"/users/{user['id']}/settings", json={"theme": "dark"})
    assert resp.json()["settings"]["theme"] == "dark"
    resp = client.put(f"/users/{user['id']}/settings", json={"bogus": True})
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["bogus"]


# ---------------------------------------------------------------------------
# Plays
# ---------------------------------------------------------------------------

def test_record_play_updates_stats(client, user):
    resp = _play(client, user["id"])
    assert resp.status_code == 200
    assert resp.json()["stats"]["songsPlayed"] == 1
    assert resp.json()["stats"]["listeningTime"] == 3
    history = client.get("/music/history").json()["history"]
    assert history[0]["songTitle"] == "Tune"


def test_record_play_missing_song_is_400(client, user):
    resp = _play(client, user["id"], song_id="")
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["songId"]


def test_record_play_unknown_song_is_404(client, user):
    resp = _play(client, user["id"], song_id="deezer_404")
    assert resp.status_code == 404
    assert client.get("/music/history").json()["history"] == []
    stats = client.get(f"/users/{user['id']}/profile").json()["user"]["stats"]
    assert stats["songsPlayed"] == 0


def test_record_play_requires_login(client):
    assert _play(client, 1).status_code == 401


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def test_export_has_no_password_hash(client, user):
    _play(client, user["id"])
    client.post("/music/playlists", json={"name": "Mix"})
    resp = client.get(f"/users/{user['id']}/export")
    assert resp.status_code == 200
    assert "attachment" in resp.headers["content-disposition"]
    assert "password_hash" not in resp.text
    data = json.loads(resp.text)
    assert data["username"] == "ana"
    assert data["playlists"][0]["name"] == "Mix"
    assert data["listening_history"][0]["songId"] == "sample_1"


def test_export_other_user_is_403(client, user):
    assert client.get(f"/users/{user['id'] + 1}/export").status_code == 403
