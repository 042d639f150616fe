"""Runtime configuration loaded from environment variables.

This module centralizes backend settings such as database URL, round
timing, participant limits, metric bounds, and API behavior defaults.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _optional_int(raw: str) -> int | None:
    value = raw.strip().lower()
    if value in {"", "none", "null", "unbounded"}:
        return None
    return int(value)


class Settings:
    """Typed settings object used across the backend."""

    env: str = os.getenv("ENV", "dev")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data/ecogame.db")
    round_duration_ms: int = int(os.getenv("ROUND_DURATION_MS", "30000"))
    tick_interval_ms: int = int(os.getenv("TICK_INTERVAL_MS", "1000"))
    min_participants: int = int(os.getenv("MIN_PARTICIPANTS", "2"))
    max_participants: int = int(os.getenv("MAX_PARTICIPANTS", "20"))
    metric_max: int | None = _optional_int(os.getenv("METRIC_MAX", "20"))
    dilemma_selection: str = os.getenv("DILEMMA_SELECTION", "sequential").lower()
    dilemma_seed: int | None = _optional_int(os.getenv("DILEMMA_SEED", ""))
    presence_timeout_ms: int = int(os.getenv("PRESENCE_TIMEOUT_MS", "30000"))
    transaction_max_attempts: int = int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "25"))
    cors_origins: list[str] = [x.strip() for x in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if x.strip()]


settings = Settings()
