from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    database_url: str | None
    redis_url: str | None
    leaderboard_cache_ttl: int
    user_lock_timeout: int
    badge_catalog_path: str | None
    metrics_port: int

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    log_json = _parse_bool("LOG_JSON", _getenv("LOG_JSON", "false"))

    leaderboard_cache_ttl = _parse_int(
        "LEADERBOARD_CACHE_TTL", _getenv("LEADERBOARD_CACHE_TTL", "30")
    )
    if leaderboard_cache_ttl < 0:
        raise ValueError(
            f"LEADERBOARD_CACHE_TTL must be >= 0 (got {leaderboard_cache_ttl})"
        )

    user_lock_timeout = _parse_int(
        "USER_LOCK_TIMEOUT", _getenv("USER_LOCK_TIMEOUT", "5")
    )
    if user_lock_timeout <= 0:
        raise ValueError(f"USER_LOCK_TIMEOUT must be > 0 (got {user_lock_timeout})")

    metrics_port = _parse_int("METRICS_PORT", _getenv("METRICS_PORT", "0"))
    if not 0 <= metrics_port <= 65535:
        raise ValueError(f"METRICS_PORT must be 0..65535 (got {metrics_port})")

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None
    badge_catalog_path = _getenv("BADGE_CATALOG_PATH", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json,
        database_url=database_url,
        redis_url=redis_url,
        leaderboard_cache_ttl=leaderboard_cache_ttl,
        user_lock_timeout=user_lock_timeout,
        badge_catalog_path=badge_catalog_path,
        metrics_port=metrics_port,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
