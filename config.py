"""
config.py
Settings loaded from the environment (and an optional .env file).
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    DB_FILE: Path = Path(os.getenv("GYM_DB_FILE", str(Path(__file__).with_name("gym.db"))))
    CACHE_TTL_SECONDS: int = int(os.getenv("GYM_CACHE_TTL_SECONDS", "300"))
    DUE_THRESHOLD_DAYS: int = int(os.getenv("GYM_DUE_THRESHOLD_DAYS", "3"))
    ENFORCE_UNIQUE_CONTACT: bool = _env_bool("GYM_ENFORCE_UNIQUE_CONTACT", True)
    SESSION_HOURS: int = int(os.getenv("GYM_SESSION_HOURS", "2"))
    LOG_LEVEL: str = os.getenv("GYM_LOG_LEVEL", "INFO")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


__all__ = ["settings", "Settings", "get_settings", "configure_logging"]
