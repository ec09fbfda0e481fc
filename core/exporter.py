"""User-data export — profile, playlists and history as JSON (NEVER includes credentials)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from core.models import UserExport

_FORBIDDEN = ("password", "password_hash", "token", "secret_key")


def _scrub(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k not in _FORBIDDEN}


def export_user(
    user: Dict[str, Any],
    *,
    playlists: List[Dict[str, Any]],
    favorites: List[Dict[str, Any]],
    history: List[Dict[str, Any]],
    uploads: List[Dict[str, Any]],
) -> str:
    """Serialize one user's data to JSON.

    *user* is the public profile dict built by the store.  Credentials are
    **never** included, even if a caller passes them in.
    """
    user = _scrub(user)
    payload = UserExport(
        user_id=user["id"],
        username=user["username"],
        email=user["email"],
        profile=user.get("profile", {}),
        preferences=user.get("preferences", {}),
        settings=user.get("settings", {}),
        stats=user.get("stats", {}),
        playlists=[_scrub(p) for p in playlists],
        favorites=[_scrub(f) for f in favorites],
        listening_history=[_scrub(h) for h in history],
        uploaded_songs=[_scrub(s) for s in uploads],
        exported_at=datetime.now(timezone.utc).isoformat(),
    )
    return payload.model_dump_json(indent=2)
