from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from cliptrail.database import HistoryStore, MemoryHistoryStore, RedisHistoryStore

STORE_BACKENDS = ("redis", "memory")


def _load_env_file(env_path: Optional[Path] = None) -> None:
    path = env_path or Path.cwd() / ".env"
    if path.exists():
        load_dotenv(path, override=False)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


@dataclass(frozen=True)
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RedisConfig":
        uri = os.getenv("REDIS_URI")
        if uri:
            return cls.from_uri(uri)

        host = os.getenv("REDIS_HOST", cls.host)
        password = os.getenv("REDIS_PASSWORD") or None
        port = _env_int("REDIS_PORT", cls.port)
        db = _env_int("REDIS_DB", cls.db)

        return cls(host=host, port=port, db=db, password=password)

    @classmethod
    def from_uri(cls, uri: str) -> "RedisConfig":
        parsed = urlparse(uri)
        if parsed.scheme not in {"redis", "rediss"}:
            raise ValueError(
                f"Unsupported Redis URI scheme: {parsed.scheme!r}")

        host = parsed.hostname or cls.host
        port = parsed.port or cls.port
        password = parsed.password or None
        db_fragment = parsed.path.lstrip("/")
        db = int(db_fragment) if db_fragment else cls.db

        return cls(host=host, port=port, db=db, password=password)


@dataclass(frozen=True)
class HistoryConfig:
    poll_interval: float = 0.5
    page_size: int = 20
    max_in_memory: int = 100
    store: str = "redis"
    key_prefix: str = "cliptrail"
    log_level: str = "INFO"
    redis: RedisConfig = field(default_factory=RedisConfig)

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if self.page_size <= 0:
            raise ValueError("page_size must be > 0")
        if self.max_in_memory < self.page_size:
            raise ValueError("max_in_memory must be at least page_size")
        if self.store not in STORE_BACKENDS:
            raise ValueError(f"Unknown store backend: {self.store!r}")

    @classmethod
    def from_env(cls, *, env_path: Optional[Path] = None) -> "HistoryConfig":
        _load_env_file(env_path)

        return cls(
            poll_interval=_env_float("CLIPTRAIL_POLL_INTERVAL", cls.poll_interval),
            page_size=_env_int("CLIPTRAIL_PAGE_SIZE", cls.page_size),
            max_in_memory=_env_int("CLIPTRAIL_MAX_IN_MEMORY", cls.max_in_memory),
            store=os.getenv("CLIPTRAIL_STORE", cls.store).strip().lower(),
            key_prefix=os.getenv("CLIPTRAIL_KEY_PREFIX", cls.key_prefix),
            log_level=os.getenv("CLIPTRAIL_LOG_LEVEL", cls.log_level).upper(),
            redis=RedisConfig.from_env(),
        )

    def create_store(self) -> HistoryStore:
        if self.store == "memory":
            return MemoryHistoryStore()
        return RedisHistoryStore(
            host=self.redis.host,
            port=self.redis.port,
            db=self.redis.db,
            password=self.redis.password,
            prefix=self.key_prefix,
        )
