"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from app import store
from app.config import get_settings
from app.db import close_db, init_db
from core.catalog import sample_tracks

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str) -> None:
    """Timestamped root handler at the configured level."""
    logging.basicConfig(format=_LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    settings = get_settings()
    configure_logging(settings.log_level)
    await init_db()
    await store.remember_tracks(sample_tracks())
    logger.info("DB ready at %s", settings.db_abs_path)
    yield
    await close_db()
    logger.info("DB closed")


app = FastAPI(
    title="music-player-api",
    version="1.0.0",
    lifespan=lifespan,
)

# Session middleware (signed cookie holding the user id).
app.add_middleware(SessionMiddleware, secret_key=get_settings().secret_key)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Uploaded audio
app.mount("/uploads", StaticFiles(directory=get_settings().upload_abs_dir), name="uploads")

# Routers
from app.auth import router as auth_router  # noqa: E402
from app.routes_music import router as music_router  # noqa: E402
from app.routes_player import router as player_router  # noqa: E402
from app.routes_users import router as users_router  # noqa: E402

app.include_router(auth_router)
app.include_router(music_router)
app.include_router(users_router)
app.include_router(player_router)


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

@app.exception_handler(store.InvalidInput)
async def invalid_input_handler(request: Request, exc: store.InvalidInput):
    return JSONResponse({"detail": str(exc), "fields": exc.fields}, status_code=400)


@app.exception_handler(store.NotFound)
async def not_found_handler(request: Request, exc: store.NotFound):
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(store.Forbidden)
async def forbidden_handler(request: Request, exc: store.Forbidden):
    return JSONResponse({"detail": str(exc)}, status_code=403)


@app.exception_handler(store.Conflict)
async def conflict_handler(request: Request, exc: store.Conflict):
    return JSONResponse({"detail": str(exc)}, status_code=409)


@app.exception_handler(Exception)
async def unhandled_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = {"detail": "Internal server error"}
    if not get_settings().is_production:
        body["error"] = str(exc)
    return JSONResponse(body, status_code=500)


@app.get("/health")
async def health():
    """Simple health-check endpoint."""
    return JSONResponse({"status": "ok", "version": app.version})
