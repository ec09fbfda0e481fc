"""Pydantic models shared across the application."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Source(str, Enum):
    """Where a track came from."""

    JAMENDO = "jamendo"
    DEEZER = "deezer"
    USER = "user"
    SAMPLE = "sample"


class RepeatMode(str, Enum):
    NONE = "none"
    ONE = "one"
    ALL = "all"


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys (``fileUrl``, ``coverArt``…)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Track(CamelModel):
    """A playable audio item.  Immutable once fetched."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    artist: str
    album: str = ""
    genre: str = ""
    mood: str = ""
    duration: int = 0  # seconds
    file_url: str = ""
    cover_art: str = "/uploads/default-cover.jpg"
    plays: int = 0
    source: Source = Source.USER
    release_year: Optional[int] = None
    lyrics: str = ""
    uploaded_by: Optional[int] = None
    created_at: Optional[str] = None


class PlaybackState(CamelModel):
    """Snapshot of one player session (never persisted)."""

    current_track: Optional[Track] = None
    is_playing: bool = False
    volume: float = 0.7
    progress: float = 0.0  # percent 0-100
    repeat: RepeatMode = RepeatMode.NONE
    shuffle: bool = False
    duration: float = 0.0  # seconds, 0 when unknown
    current_time: float = 0.0
    queue: List[Track] = Field(default_factory=list)
    current_index: int = 0
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Audio signals (raised by the audio output, consumed by the engine)
# ---------------------------------------------------------------------------

class MetadataLoaded(BaseModel):
    duration: Optional[float] = None


class TimeUpdate(BaseModel):
    current_time: float


class Ended(BaseModel):
    pass


class Fault(BaseModel):
    message: str = "audio error"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

SORT_KEYS = {
    "createdAt": "created_at",
    "plays": "plays",
    "title": "title",
    "artist": "artist",
    "releaseYear": "release_year",
    "duration": "duration",
}


class CatalogFilter(BaseModel):
    """Browse/search parameters for ``GET /music/songs``."""

    search: str = ""
    genre: str = ""
    mood: str = ""
    source: str = "all"  # "all" | "api" | "user"
    sort_by: Optional[str] = None  # key of SORT_KEYS
    order: str = "desc"  # "asc" | "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def wants_api(self) -> bool:
        return self.source in ("all", "api")

    @property
    def wants_user(self) -> bool:
        return self.source in ("all", "user")


class CatalogPage(BaseModel):
    songs: List[Track]
    total: int
    total_pages: int
    current_page: int
    api_count: int = 0
    user_count: int = 0

    def to_json_dict(self) -> dict:
        return {
            "songs": [t.to_json_dict() for t in self.songs],
            "total": self.total,
            "totalPages": self.total_pages,
            "currentPage": self.current_page,
            "sources": {"api": self.api_count, "user": self.user_count},
        }


class UserExport(BaseModel):
    """JSON export of a user's data, without credentials."""

    user_id: int
    username: str
    email: str
    profile: dict
    preferences: dict
    settings: dict
    stats: dict
    playlists: List[dict] = Field(default_factory=list)
    favorites: List[dict] = Field(default_factory=list)
    listening_history: List[dict] = Field(default_factory=list)
    uploaded_songs: List[dict] = Field(default_factory=list)
    exported_at: str = ""

    model_config = {
        "json_schema_extra": {
            "description": "User data export — password hashes are NEVER included."
        }
    }
