"""Account registration, login and request authentication.

Flow:
  1. POST /auth/register → create account (password hashed with werkzeug)
  2. POST /auth/login    → verify password, return profile + bearer token
  3. Session cookie also holds ``user_id`` so the browser needs no header
  4. ``current_user_id`` accepts either ``Authorization: Bearer`` or the cookie
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import BaseModel

from app import store
from app.config import get_settings
from app.player import drop_user_sessions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_TOKEN_SALT = "music-player-auth"


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------

def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(get_settings().secret_key, salt=_TOKEN_SALT)


def issue_token(user_id: int) -> str:
    """Signed, timestamped token carrying the user id."""
    return _serializer().dumps({"uid": user_id})


def load_token(token: str) -> int | None:
    """Return the user id in *token*, or None if it is forged or expired."""
    try:
        data = _serializer().loads(token, max_age=get_settings().token_max_age)
    except SignatureExpired:
        logger.info("Rejected expired auth token")
        return None
    except BadSignature:
        return None
    uid = data.get("uid") if isinstance(data, dict) else None
    return uid if isinstance(uid, int) else None


def optional_user_id(request: Request) -> int | None:
    """User id from the bearer token or session cookie, if any."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return load_token(header[7:].strip())
    uid = request.session.get("user_id")
    return uid if isinstance(uid, int) else None


def current_user_id(request: Request) -> int:
    """Extract the user id or raise 401."""
    uid = optional_user_id(request)
    if uid is None:
        raise HTTPException(status_code=401, detail="Not logged in — please log in")
    return uid


def require_self(request: Request, user_id: int) -> int:
    """The authenticated user must be *user_id*; 403 otherwise."""
    uid = current_user_id(request)
    if uid != user_id:
        raise HTTPException(status_code=403, detail="Cannot act on another user's account")
    return uid


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    username: str = ""
    email: str = ""
    password: str = ""


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/register", status_code=201)
async def register(request: Request, body: RegisterRequest):
    """Create an account and log it in."""
    user = await store.create_user(body.username, body.email, body.password)
    request.session["user_id"] = user["id"]
    return JSONResponse(
        {"message": "User registered successfully", "user": user, "token": issue_token(user["id"])},
        status_code=201,
    )


@router.post("/login")
async def login(request: Request, body: LoginRequest):
    """Verify credentials; return the profile plus a bearer token."""
    if not body.email or not body.password:
        missing = [f for f in ("email", "password") if not getattr(body, f)]
        raise store.InvalidInput("Please provide email and password", missing)

    user = await store.authenticate(body.email, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    request.session["user_id"] = user["id"]
    logger.info("User %d logged in", user["id"])
    return JSONResponse(
        {"message": "Login successful", "user": user, "token": issue_token(user["id"])}
    )


@router.post("/logout")
async def logout(request: Request):
    """Clear the session and drop the user's player session."""
    uid = optional_user_id(request)
    if uid is not None:
        drop_user_sessions(uid)
    request.session.clear()
    return JSONResponse({"message": "Logged out"})


@router.get("/me")
async def me(request: Request):
    uid = current_user_id(request)
    return JSONResponse({"user": await store.get_user(uid)})
