"""User routes: profile, settings, play recording, favourites and export."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from app import store
from app.auth import require_self
from core.exporter import export_user

router = APIRouter(prefix="/users", tags=["users"])


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, alias="displayName")
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar: Optional[str] = None
    preferences: Optional[dict] = None


class PlayRecord(BaseModel):
    song_id: str = Field(default="", alias="songId")
    song_title: str = Field(default="", alias="songTitle")
    artist: str = ""
    duration: int = 0


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

@router.get("/{user_id}/profile")
async def get_profile(user_id: int):
    """Public profile with recent activity, favourites and uploads."""
    user = await store.get_user(user_id)
    uploads = await store.list_user_songs(uploaded_by=user_id)
    return JSONResponse(
        {
            "user": user,
            "recentActivity": await store.get_history(user_id, 10),
            "favoriteSongs": await store.list_favorites(user_id, 10),
            "uploadedSongs": [t.to_json_dict() for t in uploads],
        }
    )


@router.put("/{user_id}/profile")
async def update_profile(request: Request, user_id: int, body: ProfileUpdate):
    require_self(request, user_id)
    if body.preferences:
        await store.update_preferences(user_id, body.preferences)
    user = await store.update_profile(
        user_id, display_name=body.display_name, bio=body.bio, avatar=body.avatar
    )
    return JSONResponse({"message": "Profile updated", "user": user})


@router.put("/{user_id}/settings")
async def update_settings(request: Request, user_id: int, body: dict):
    require_self(request, user_id)
    settings = await store.update_settings(user_id, body)
    return JSONResponse({"message": "Settings updated", "settings": settings})


# ---------------------------------------------------------------------------
# Plays & favourites
# ---------------------------------------------------------------------------

@router.post("/{user_id}/record-play")
async def record_play(request: Request, user_id: int, body: PlayRecord):
    """Count a play against the user's stats and history."""
    require_self(request, user_id)
    stats = await store.record_play(
        user_id,
        body.song_id,
        song_title=body.song_title,
        artist=body.artist,
        duration=body.duration,
    )
    return JSONResponse({"message": "Play recorded", "stats": stats})


@router.post("/{user_id}/favorites/{song_id}")
async def add_favorite(request: Request, user_id: int, song_id: str):
    require_self(request, user_id)
    stats = await store.add_favorite(user_id, song_id)
    return JSONResponse({"message": "Added to favourites", "stats": stats})


@router.delete("/{user_id}/favorites/{song_id}")
async def remove_favorite(request: Request, user_id: int, song_id: str):
    require_self(request, user_id)
    stats = await store.remove_favorite(user_id, song_id)
    return JSONResponse({"message": "Removed from favourites", "stats": stats})


# ---------------------------------------------------------------------------
# GET /users/{id}/export — download own data as JSON
# ---------------------------------------------------------------------------

@router.get("/{user_id}/export")
async def export_data(request: Request, user_id: int):
    require_self(request, user_id)
    user = await store.get_user(user_id)
    uploads = await store.list_user_songs(uploaded_by=user_id)

    json_str = export_user(
        user,
        playlists=await store.list_user_playlists(user_id),
        favorites=await store.list_favorites(user_id),
        history=await store.get_history(user_id),
        uploads=[t.to_json_dict() for t in uploads],
    )
    return Response(
        content=json_str,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="user_{user_id}.json"'},
    )
