"""Music routes: catalog browsing, uploads, history and playlists."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from app import catalog, store
from app.auth import current_user_id, optional_user_id
from app.config import get_settings
from core.models import CatalogFilter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/music", tags=["music"])

_CHUNK_SIZE = 1024 * 1024


# ---------------------------------------------------------------------------
# Songs
# ---------------------------------------------------------------------------

@router.get("/songs")
async def list_songs(
    search: str = "",
    genre: str = "",
    mood: str = "",
    source: str = "all",
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    order: str = "desc",
    page: int = 1,
    limit: int = 20,
):
    """Search and browse external catalogs plus user uploads."""
    try:
        flt = CatalogFilter(
            search=search,
            genre=genre,
            mood=mood,
            source=source,
            sort_by=sort_by,
            order=order,
            page=page,
            limit=limit,
        )
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise store.InvalidInput("Invalid query parameters", fields) from exc

    result = await catalog.list_songs(flt)
    return JSONResponse(result.to_json_dict())


@router.get("/songs/favorites")
async def favorite_songs(request: Request):
    uid = current_user_id(request)
    return JSONResponse({"songs": await store.list_favorites(uid)})


@router.get("/songs/{song_id}")
async def get_song(song_id: str):
    """Fetch one song and count the view as a play."""
    track = await store.increment_song_plays(song_id)
    return JSONResponse(track.to_json_dict())


@router.get("/recommendations")
async def recommendations():
    tracks = await catalog.recommendations()
    return JSONResponse({"songs": [t.to_json_dict() for t in tracks]})


@router.get("/user-uploads")
async def user_uploads():
    tracks = await store.list_user_songs()
    return JSONResponse({"songs": [t.to_json_dict() for t in tracks], "total": len(tracks)})


@router.get("/history")
async def history(request: Request, limit: Optional[int] = Query(None, ge=1)):
    uid = current_user_id(request)
    return JSONResponse({"history": await store.get_history(uid, limit)})


# ---------------------------------------------------------------------------
# POST /music/upload
# ---------------------------------------------------------------------------

def _extension(upload: UploadFile) -> str:
    suffix = Path(upload.filename or "").suffix.lower()
    if suffix:
        return suffix
    return mimetypes.guess_extension(upload.content_type or "") or ".bin"


async def _save_upload(upload: UploadFile, dest: Path, max_bytes: int) -> None:
    """Stream *upload* to *dest*; 413 (and no file left behind) past *max_bytes*."""
    written = 0
    try:
        with dest.open("wb") as fh:
            while chunk := await upload.read(_CHUNK_SIZE):
                written += len(chunk)
                if written > max_bytes:
                    raise HTTPException(status_code=413, detail="file_too_large")
                fh.write(chunk)
    except BaseException:
        dest.unlink(missing_ok=True)
        raise


@router.post("/upload", status_code=201)
async def upload_song(
    request: Request,
    audio: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    artist: Optional[str] = Form(None),
    genre: Optional[str] = Form(None),
    album: str = Form(""),
    mood: str = Form(""),
    lyrics: str = Form(""),
    release_year: Optional[str] = Form(None, alias="releaseYear"),
    duration: int = Form(0),
):
    """Store an uploaded audio file and register it as a song.

    Everything is validated before the file touches disk; a rejected upload
    leaves no file, no song row and no counter change.
    """
    uid = current_user_id(request)
    settings = get_settings()

    year = store.validate_song_fields(
        title=title, artist=artist, genre=genre, mood=mood, release_year=release_year
    )
    if audio is None or not audio.filename:
        raise store.InvalidInput("Please select an audio file", ["audio"])
    if audio.content_type not in settings.allowed_audio_types:
        raise HTTPException(status_code=415, detail="unsupported_media_type")

    upload_dir = settings.upload_abs_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"song-{uuid4().hex}{_extension(audio)}"
    dest = upload_dir / filename
    await _save_upload(audio, dest, settings.max_upload_bytes)

    try:
        track = await store.create_song(
            uid,
            song_id=store.new_song_id(),
            title=title,
            artist=artist,
            genre=genre,
            album=album,
            mood=mood,
            lyrics=lyrics,
            duration=max(0, duration),
            release_year=year,
            file_url=f"/uploads/{filename}",
        )
    except Exception:
        dest.unlink(missing_ok=True)
        raise

    return JSONResponse(
        {"message": "Song uploaded successfully", "song": track.to_json_dict()},
        status_code=201,
    )


# ---------------------------------------------------------------------------
# Playlists
# ---------------------------------------------------------------------------

class PlaylistCreate(BaseModel):
    name: str = ""
    description: str = ""
    is_public: bool = Field(default=True, alias="isPublic")
    tags: List[str] = Field(default_factory=list)


class PlaylistSong(BaseModel):
    song_id: str = Field(default="", alias="songId")


@router.get("/playlists/user")
async def my_playlists(request: Request):
    uid = current_user_id(request)
    return JSONResponse({"playlists": await store.list_user_playlists(uid)})


@router.post("/playlists", status_code=201)
async def create_playlist(request: Request, body: PlaylistCreate):
    uid = current_user_id(request)
    playlist = await store.create_playlist(
        uid, body.name, description=body.description, is_public=body.is_public, tags=body.tags
    )
    return JSONResponse(playlist, status_code=201)


@router.get("/playlists/{playlist_id}")
async def get_playlist(request: Request, playlist_id: int):
    """Public playlists are visible to anyone, private ones to their owner."""
    playlist = await store.get_playlist(playlist_id, viewer_id=optional_user_id(request))
    return JSONResponse(playlist)


@router.post("/playlists/{playlist_id}/songs")
async def add_playlist_song(request: Request, playlist_id: int, body: PlaylistSong):
    uid = current_user_id(request)
    if not body.song_id:
        raise store.InvalidInput("songId is required", ["songId"])
    return JSONResponse(await store.add_song_to_playlist(playlist_id, uid, body.song_id))


@router.delete("/playlists/{playlist_id}/songs/{song_id}")
async def remove_playlist_song(request: Request, playlist_id: int, song_id: str):
    uid = current_user_id(request)
    return JSONResponse(await store.remove_song_from_playlist(playlist_id, uid, song_id))
