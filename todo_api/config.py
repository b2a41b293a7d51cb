from functools import lru_cache
from pathlib import Path
from typing import Dict, List
import os

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from repo root and todo_api/.env (if present).
REPO_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(REPO_ROOT / ".env")
load_dotenv(Path(__file__).resolve().parent / ".env")

DEFAULT_DATABASE_URL = "sqlite:///./todo_tasks.db"
DEFAULT_RETENTION_SECONDS = 24 * 60 * 60


def _parse_overrides(raw: str) -> Dict[str, float]:
    """Parse ``user=seconds,user2=seconds`` into a retention override map."""
    overrides: Dict[str, float] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        user_id, sep, seconds = chunk.partition("=")
        if not sep or not user_id.strip():
            raise ValueError(f"Invalid retention override: {chunk!r}")
        overrides[user_id.strip()] = float(seconds)
    return overrides


class Settings(BaseModel):
    """Runtime configuration, passed explicitly to the engine, store and app."""

    database_url: str = DEFAULT_DATABASE_URL
    retention_seconds: float = DEFAULT_RETENTION_SECONDS
    retention_overrides: Dict[str, float] = {}
    store_timeout_seconds: float = 5.0
    reaper_interval_seconds: float = 300.0
    reaper_batch_size: int = 500
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load configuration from environment variables."""
        _cors_origins = os.getenv("CORS_ORIGINS", "*")
        settings = cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            retention_seconds=float(os.getenv("TASK_RETENTION_SECONDS", str(DEFAULT_RETENTION_SECONDS))),
            retention_overrides=_parse_overrides(os.getenv("TASK_RETENTION_OVERRIDES", "")),
            store_timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "5")),
            reaper_interval_seconds=float(os.getenv("REAPER_INTERVAL_SECONDS", "300")),
            reaper_batch_size=int(os.getenv("REAPER_BATCH_SIZE", "500")),
            cors_origins=[origin.strip() for origin in _cors_origins.split(",") if origin.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        settings.check()
        return settings

    def check(self) -> None:
        if self.retention_seconds <= 0:
            raise ValueError("TASK_RETENTION_SECONDS must be positive")
        for user_id, seconds in self.retention_overrides.items():
            if seconds <= 0:
                raise ValueError(f"Retention override for {user_id!r} must be positive")
        if self.store_timeout_seconds <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be positive")
        if self.reaper_interval_seconds < 0:
            raise ValueError("REAPER_INTERVAL_SECONDS must not be negative")
        if self.reaper_batch_size <= 0:
            raise ValueError("REAPER_BATCH_SIZE must be positive")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings for the entry points (uvicorn app, serverless handler)."""
    return Settings.from_env()
