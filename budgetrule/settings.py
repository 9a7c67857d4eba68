from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DATABASE_URL = "sqlite:///./budgetrule.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_SUGGESTION_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_SUGGESTION_MODEL = "gpt-4o-mini"
DEFAULT_SUGGESTION_TIMEOUT_SECONDS = 10.0
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    suggestion_api_url: str = DEFAULT_SUGGESTION_API_URL
    suggestion_api_key: Optional[str] = None
    suggestion_model: str = DEFAULT_SUGGESTION_MODEL
    suggestion_timeout_seconds: float = DEFAULT_SUGGESTION_TIMEOUT_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
        suggestion_api_url=os.getenv("SUGGESTION_API_URL", DEFAULT_SUGGESTION_API_URL),
        suggestion_api_key=os.getenv("SUGGESTION_API_KEY") or None,
        suggestion_model=os.getenv("SUGGESTION_MODEL", DEFAULT_SUGGESTION_MODEL),
        suggestion_timeout_seconds=_get_positive_float(
            "SUGGESTION_TIMEOUT_SECONDS", DEFAULT_SUGGESTION_TIMEOUT_SECONDS
        ),
        log_level=os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper() or DEFAULT_LOG_LEVEL,
    )


def _get_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default
