"""Player REST API routes.

Endpoints for the per-client playback engine: transport commands, queue
replacement, and the audio-element signals the browser reports back.
"""

from __future__ import annotations

from typing import List, Literal, Optional
from uuid import uuid4

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app import store
from app.auth import current_user_id
from app.player import PlayerSession, drop_session, get_or_create_session
from core.models import Ended, Fault, MetadataLoaded, RepeatMode, TimeUpdate

router = APIRouter(prefix="/player", tags=["player"])


class PlayRequest(BaseModel):
    song_id: str = Field(alias="songId")
    queue: List[str] = Field(default_factory=list)  # song ids
    index: Optional[int] = None


class SeekRequest(BaseModel):
    percent: float


class VolumeRequest(BaseModel):
    level: float


class RepeatRequest(BaseModel):
    mode: str


class ShuffleRequest(BaseModel):
    enabled: bool


class EventRequest(BaseModel):
    type: Literal["loadedmetadata", "timeupdate", "ended", "error"]
    duration: Optional[float] = None
    current_time: Optional[float] = Field(default=None, alias="currentTime")
    message: Optional[str] = None


CLIENT_HEADER = "X-Player-Session"


def _client_id(request: Request) -> str:
    """Which player this request drives.

    Browser tabs share one cookie, so each tab sends its own
    ``X-Player-Session`` id; clients without the header get a random id kept
    in the session cookie.
    """
    header = request.headers.get(CLIENT_HEADER, "").strip()
    if header:
        return header[:64]
    cid = request.session.get("player_id")
    if not isinstance(cid, str):
        cid = uuid4().hex
        request.session["player_id"] = cid
    return cid


def _session(request: Request) -> PlayerSession:
    return get_or_create_session(current_user_id(request), _client_id(request))


def _state(request: Request) -> JSONResponse:
    return JSONResponse(_session(request).to_status_dict())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/state")
async def state(request: Request):
    """Current playback state plus the desired audio-element state."""
    return _state(request)


@router.post("/play")
async def play(request: Request, body: PlayRequest):
    """Play a song, optionally replacing the queue with *queue*."""
    session = _session(request)
    track = await store.get_song(body.song_id)
    tracks = await store.get_songs(body.queue)

    index = body.index
    if tracks:
        if index is None:
            ids = [t.id for t in tracks]
            index = ids.index(track.id) if track.id in ids else 0
        if not 0 <= index < len(tracks):
            raise HTTPException(status_code=400, detail="index out of range for queue")
    session.engine.play(track, tracks, index or 0)
    return JSONResponse(session.to_status_dict())


@router.post("/toggle")
async def toggle(request: Request):
    _session(request).engine.toggle_play()
    return _state(request)


@router.post("/next")
async def next_track(request: Request):
    _session(request).engine.next()
    return _state(request)


@router.post("/previous")
async def previous_track(request: Request):
    _session(request).engine.previous()
    return _state(request)


@router.post("/seek")
async def seek(request: Request, body: SeekRequest):
    _session(request).engine.seek(body.percent)
    return _state(request)


@router.post("/volume")
async def volume(request: Request, body: VolumeRequest):
    """Set the volume; values outside [0, 1] are clamped."""
    _session(request).engine.set_volume(body.level)
    return _state(request)


@router.post("/repeat")
async def repeat(request: Request, body: RepeatRequest):
    try:
        mode = RepeatMode(body.mode)
    except ValueError:
        raise HTTPException(status_code=400, detail="mode must be one of none, one, all")
    _session(request).engine.set_repeat(mode)
    return _state(request)


@router.post("/shuffle")
async def shuffle(request: Request, body: ShuffleRequest):
    _session(request).engine.set_shuffle(body.enabled)
    return _state(request)


@router.post("/events")
async def events(request: Request, body: EventRequest):
    """Feed one audio-element signal into the engine."""
    engine = _session(request).engine
    if body.type == "loadedmetadata":
        engine.handle(MetadataLoaded(duration=body.duration))
    elif body.type == "timeupdate":
        if body.current_time is None:
            raise HTTPException(status_code=400, detail="currentTime is required")
        engine.handle(TimeUpdate(current_time=body.current_time))
    elif body.type == "ended":
        engine.handle(Ended())
    else:
        engine.handle(Fault(message=body.message or "audio error"))
    return _state(request)


@router.delete("")
async def reset(request: Request):
    """Discard the session; the next call starts fresh with defaults."""
    drop_session(current_user_id(request), _client_id(request))
    return JSONResponse({"status": "reset"})
