"""Application settings loaded from .env via pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration — values come from environment / .env file."""

    # App
    media_base_url: str = ""
    secret_key: str = "change-me"
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:3000"]

    # Database
    db_path: str = "./data/music_player.db"
    history_limit: int = 200

    # Auth
    token_max_age: int = 7 * 24 * 3600  # seconds

    # Player sessions
    player_session_ttl: int = 3600  # idle seconds before eviction
    player_session_limit: int = 1000

    # Uploads
    upload_dir: str = "./uploads"
    max_upload_mb: int = 50
    allowed_audio_types: List[str] = [
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/x-wav",
        "audio/ogg",
        "audio/aac",
        "audio/flac",
    ]

    # External catalogs
    jamendo_client_id: str = ""
    catalog_timeout: float = 5.0  # seconds per source
    catalog_fetch_limit: int = 50

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def db_abs_path(self) -> Path:
        """Return the database path as an absolute Path, creating parents if needed."""
        p = Path(self.db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p.resolve()

    @property
    def upload_abs_dir(self) -> Path:
        """Return the upload directory, creating it if needed."""
        p = Path(self.upload_dir)
        p.mkdir(parents=True, exist_ok=True)
        return p.resolve()


@lru_cache
def get_settings() -> Settings:
    """Cached singleton so .env is read only once."""
    return Settings()
