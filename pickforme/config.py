"""Runtime settings loaded from the environment (and a local .env when present)."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _origins_env() -> List[str]:
    raw = os.getenv("PICKFORME_ALLOWED_ORIGINS") or "*"
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or ["*"]


@dataclass
class Settings:
    backend_url: str = field(
        default_factory=lambda: os.getenv("PICKFORME_BACKEND_URL", "http://localhost:3000/api/chat")
    )
    # Seconds per attempt; the geolocation lookups elsewhere in the product use 10s.
    request_timeout: float = field(default_factory=lambda: _float_env("PICKFORME_REQUEST_TIMEOUT", 30.0))
    max_retries: int = field(default_factory=lambda: _int_env("PICKFORME_MAX_RETRIES", 3))
    retry_backoff_base: float = field(default_factory=lambda: _float_env("PICKFORME_RETRY_BACKOFF", 1.0))
    retry_backoff_cap: float = field(default_factory=lambda: _float_env("PICKFORME_RETRY_BACKOFF_CAP", 5.0))
    booking_seed: int | None = field(
        default_factory=lambda: _int_env("PICKFORME_BOOKING_SEED", 0) if os.getenv("PICKFORME_BOOKING_SEED") else None
    )
    preference_ttl_hours: float = field(default_factory=lambda: _float_env("PICKFORME_PREFERENCE_TTL_HOURS", 24.0))
    session_ttl_hours: float = field(default_factory=lambda: _float_env("PICKFORME_SESSION_TTL_HOURS", 2.0))
    max_sessions: int = field(default_factory=lambda: _int_env("PICKFORME_MAX_SESSIONS", 1000))
    allowed_origins: List[str] = field(default_factory=_origins_env)


settings = Settings()
