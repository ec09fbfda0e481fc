"""Server-held player sessions.

Each client of a logged-in user (a browser tab or device) gets its own
:class:`core.player.PlaybackEngine`, so tabs never drive each other.  Its audio
output is a :class:`RemoteAudioOutput`: the engine's commands are recorded
as the desired state of the browser's ``<audio>`` element, which the front
end mirrors, and the element's own signals (metadata, progress, ended,
error) are posted back and fed into the engine.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any

from app.config import get_settings
from core.player import PlaybackEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Remote audio output
# ---------------------------------------------------------------------------

class RemoteAudioOutput:
    """Desired state of the client's audio element.

    ``revision`` increases with every command so the client can tell a
    fresh instruction (e.g. a seek) from one it has already applied.
    """

    __slots__ = ("src", "paused", "position", "volume", "revision")

    def __init__(self) -> None:
        self.src: str | None = None
        self.paused = True
        self.position = 0.0
        self.volume = 0.7
        self.revision = 0

    def _bump(self) -> None:
        self.revision += 1

    def load(self, src: str) -> None:
        self.src = src
        self.position = 0.0
        self.paused = True
        self._bump()

    def play(self) -> None:
        self.paused = False
        self._bump()

    def pause(self) -> None:
        self.paused = True
        self._bump()

    def seek(self, seconds: float) -> None:
        self.position = seconds
        self._bump()

    def set_volume(self, level: float) -> None:
        self.volume = level
        self._bump()

    def to_dict(self) -> dict[str, Any]:
        return {
            "src": self.src,
            "paused": self.paused,
            "position": self.position,
            "volume": self.volume,
            "revision": self.revision,
        }


# ---------------------------------------------------------------------------
# In-memory session store (one per user and client)
# ---------------------------------------------------------------------------

class PlayerSession:
    """Engine plus its remote output for one client of one user."""

    __slots__ = ("user_id", "client_id", "engine", "output", "last_used")

    def __init__(self, user_id: int, client_id: str, *, media_base_url: str = ""):
        self.user_id = user_id
        self.client_id = client_id
        self.output = RemoteAudioOutput()
        self.engine = PlaybackEngine(self.output, media_base_url=media_base_url)
        self.last_used = time.monotonic()

    def to_status_dict(self) -> dict[str, Any]:
        """Serialize for the state API."""
        return {"state": self.engine.to_status_dict(), "audio": self.output.to_dict()}


# Key: (user id, client id) → PlayerSession, least recently used first
_sessions: OrderedDict[tuple[int, str], PlayerSession] = OrderedDict()


def _prune(now: float) -> None:
    """Drop idle sessions and, past the size cap, the least recently used ones."""
    settings = get_settings()
    while _sessions:
        key, oldest = next(iter(_sessions.items()))
        expired = now - oldest.last_used > settings.player_session_ttl
        if not expired and len(_sessions) <= settings.player_session_limit:
            break
        del _sessions[key]
        logger.info("Evicted player session %s for user %d", key[1], key[0])


def get_or_create_session(user_id: int, client_id: str) -> PlayerSession:
    now = time.monotonic()
    key = (user_id, client_id)
    session = _sessions.get(key)
    if session is None:
        session = PlayerSession(
            user_id, client_id, media_base_url=get_settings().media_base_url
        )
        _sessions[key] = session
        logger.info("Started player session %s for user %d", client_id, user_id)
    else:
        _sessions.move_to_end(key)
    session.last_used = now
    _prune(now)
    return session


def drop_session(user_id: int, client_id: str) -> None:
    if _sessions.pop((user_id, client_id), None) is not None:
        logger.info("Dropped player session %s for user %d", client_id, user_id)


def drop_user_sessions(user_id: int) -> None:
    """Forget every player session the user has open."""
    for key in [k for k in _sessions if k[0] == user_id]:
        del _sessions[key]
    logger.info("Dropped all player sessions for user %d", user_id)
