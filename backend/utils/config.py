"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_busy_timeout_seconds: float
    seed_demo_data: bool

    # Operating hours are always compared in this zone, never the server's.
    building_timezone: str

    admin_token: str | None

    expiration_sweep_enabled: bool
    expiration_sweep_interval_seconds: float
    expiration_sweep_initial_delay_seconds: float

    email_backend: str
    email_from: str
    smtp_host: str | None
    smtp_port: int
    smtp_username: str | None
    smtp_password: str | None
    smtp_use_tls: bool
    smtp_timeout_seconds: float

    reservation_list_default_limit: int
    reservation_list_max_limit: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; tests call ``cache_clear``."""
    load_dotenv(PROJECT_ROOT / ".env")

    database_path = Path(
        os.getenv("DATABASE_PATH", str(PROJECT_ROOT / "data" / "amenities.db"))
    )
    return Settings(
        app_name=os.getenv("APP_NAME", "Amenity Reservation Service"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=database_path,
        database_busy_timeout_seconds=_env_float("DATABASE_BUSY_TIMEOUT_SECONDS", 10.0),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        building_timezone=os.getenv("BUILDING_TIMEZONE", "America/Argentina/Buenos_Aires"),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        expiration_sweep_enabled=_env_bool("EXPIRATION_SWEEP_ENABLED", True),
        expiration_sweep_interval_seconds=_env_float("EXPIRATION_SWEEP_INTERVAL_SECONDS", 300.0),
        expiration_sweep_initial_delay_seconds=_env_float(
            "EXPIRATION_SWEEP_INITIAL_DELAY_SECONDS", 0.0
        ),
        email_backend=os.getenv("EMAIL_BACKEND", "mock").strip().lower(),
        email_from=os.getenv("EMAIL_FROM", "noreply@building.local"),
        smtp_host=os.getenv("SMTP_HOST") or None,
        smtp_port=_env_int("SMTP_PORT", 587),
        smtp_username=os.getenv("SMTP_USER") or None,
        smtp_password=os.getenv("SMTP_PASS") or None,
        smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
        smtp_timeout_seconds=_env_float("SMTP_TIMEOUT_SECONDS", 30.0),
        reservation_list_default_limit=_env_int("RESERVATION_LIST_DEFAULT_LIMIT", 50),
        reservation_list_max_limit=_env_int("RESERVATION_LIST_MAX_LIMIT", 200),
    )
