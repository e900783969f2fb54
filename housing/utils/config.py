"""Environment-backed application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration.

    Tests build variants with ``dataclasses.replace`` instead of mutating
    environment variables.
    """

    app_name: str
    app_version: str
    database_path: Path
    database_busy_timeout_seconds: float
    log_level: str
    admin_token: str | None
    default_operator: str
    max_admin_sessions: int
    default_max_age_gap: int
    age_gap_min: int
    age_gap_max: int
    demo_seed_enabled: bool
    demo_random_seed: int
    demo_room_count: int
    demo_registrant_count: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    admin_token = os.getenv("ADMIN_TOKEN")
    return Settings(
        app_name=_env_str("APP_NAME", "Accommodation Allocation Engine"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        database_path=Path(
            _env_str(
                "HOUSING_DATABASE_PATH",
                str(PROJECT_ROOT / "data" / "accommodation.db"),
            )
        ),
        database_busy_timeout_seconds=_env_float("DATABASE_BUSY_TIMEOUT_SECONDS", 5.0),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        admin_token=admin_token.strip() if admin_token and admin_token.strip() else None,
        default_operator=_env_str("DEFAULT_OPERATOR", "system"),
        max_admin_sessions=_env_int("MAX_ADMIN_SESSIONS", 16),
        default_max_age_gap=_env_int("DEFAULT_MAX_AGE_GAP", 5),
        age_gap_min=_env_int("AGE_GAP_MIN", 1),
        age_gap_max=_env_int("AGE_GAP_MAX", 20),
        demo_seed_enabled=_env_bool("DEMO_SEED_ENABLED", True),
        demo_random_seed=_env_int("DEMO_RANDOM_SEED", 42),
        demo_room_count=_env_int("DEMO_ROOM_COUNT", 8),
        demo_registrant_count=_env_int("DEMO_REGISTRANT_COUNT", 40),
    )
