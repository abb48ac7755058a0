"""Runtime settings read from ``BIDHOUSE_*`` environment variables.

Command line flags of :mod:`bidhouse.server_grpc` override these values.
"""
import os
from dataclasses import dataclass
from functools import lru_cache

ENV_PREFIX = "BIDHOUSE_"


def _env(name, default):
    return os.getenv(ENV_PREFIX + name, default)


def _env_int(name, default):
    raw = _env(name, None)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _env_bool(name, default):
    raw = _env(name, None)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    db_path: str = "auctions.db"
    host: str = "127.0.0.1"
    port: int = 50051
    max_workers: int = 10
    bid_retries: int = 5
    grace_hours: int = 24
    page_size: int = 9
    notify_async: bool = True
    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls):
        return cls(
            db_path=_env("DB_PATH", cls.db_path),
            host=_env("HOST", cls.host),
            port=_env_int("PORT", cls.port),
            max_workers=_env_int("MAX_WORKERS", cls.max_workers),
            bid_retries=_env_int("BID_RETRIES", cls.bid_retries),
            grace_hours=_env_int("GRACE_HOURS", cls.grace_hours),
            page_size=_env_int("PAGE_SIZE", cls.page_size),
            notify_async=_env_bool("NOTIFY_ASYNC", cls.notify_async),
            log_level=_env("LOG_LEVEL", cls.log_level).upper(),
            log_format=_env("LOG_FORMAT", cls.log_format).lower(),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
