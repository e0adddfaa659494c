"""
Runtime configuration for the Quran Hifz trainer.

Values come from the environment, with a .env file loaded first when present.
"""

import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "secret123"


@dataclass
class Settings:
    """Resolved application settings."""
    database_url: str = "sqlite:///quran_hifz.db"
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_expires_days: int = 7
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    grading_timeout: float = 30.0
    alquran_base_url: str = "https://api.alquran.cloud/v1/"
    auto_advance_delay: float = 1.5
    session_idle_ttl: float = 3600.0
    max_hifz_sessions: int = 1000
    host: str = "127.0.0.1"
    port: int = 8000


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}", setting_name=name)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings from the environment. Cached; call ``get_settings.cache_clear()`` to reload."""
    settings = Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        jwt_secret=os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET),
        jwt_expires_days=_env_number("JWT_EXPIRES_DAYS", Settings.jwt_expires_days, int),
        gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
        gemini_model=os.getenv("GEMINI_MODEL", Settings.gemini_model),
        grading_timeout=_env_number("GRADING_TIMEOUT", Settings.grading_timeout, float),
        alquran_base_url=os.getenv("ALQURAN_BASE_URL", Settings.alquran_base_url),
        auto_advance_delay=_env_number("AUTO_ADVANCE_DELAY", Settings.auto_advance_delay, float),
        session_idle_ttl=_env_number("SESSION_IDLE_TTL", Settings.session_idle_ttl, float),
        max_hifz_sessions=_env_number("MAX_HIFZ_SESSIONS", Settings.max_hifz_sessions, int),
        host=os.getenv("HOST", Settings.host),
        port=_env_number("PORT", Settings.port, int),
    )

    if settings.jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET not found. Using the insecure development secret.")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not found. Recitation grading will fall back to full reveal.")
    if settings.auto_advance_delay < 0:
        raise ConfigurationError("AUTO_ADVANCE_DELAY must not be negative", setting_name="AUTO_ADVANCE_DELAY")
    if settings.session_idle_ttl <= 0:
        raise ConfigurationError("SESSION_IDLE_TTL must be positive", setting_name="SESSION_IDLE_TTL")
    if settings.max_hifz_sessions < 1:
        raise ConfigurationError("MAX_HIFZ_SESSIONS must be at least 1", setting_name="MAX_HIFZ_SESSIONS")

    return settings
