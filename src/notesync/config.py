from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import redis
from dotenv import load_dotenv

from notesync.database.redis_tree import RedisTreeClient


def load_env_file(env_path: Optional[Path] = None) -> None:
    """Load ``.env`` without overriding variables already set in the environment."""
    if env_path is not None:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path, override=False)
        return
    load_dotenv(override=False)


def _to_bool(value: Optional[str], default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


def _to_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value else default
    except ValueError:
        return default


@dataclass(frozen=True)
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    username: Optional[str] = None
    password: Optional[str] = None
    ssl: bool = False
    socket_timeout: float = 5.0
    key_prefix: str = "notesync:"

    @classmethod
    def from_env(cls, *, env_path: Optional[Path] = None) -> "RedisConfig":
        load_env_file(env_path)

        timeout = _to_float(os.getenv("REDIS_SOCKET_TIMEOUT"), cls.socket_timeout)
        prefix = os.getenv("NOTESYNC_KEY_PREFIX", cls.key_prefix)

        uri = os.getenv("REDIS_URI")
        if uri:
            return cls.from_uri(uri, socket_timeout=timeout, key_prefix=prefix)

        return cls(
            host=os.getenv("REDIS_HOST", cls.host),
            port=_to_int(os.getenv("REDIS_PORT"), cls.port),
            db=_to_int(os.getenv("REDIS_DB"), cls.db),
            username=os.getenv("REDIS_USERNAME") or None,
            password=os.getenv("REDIS_PASSWORD") or None,
            ssl=_to_bool(os.getenv("REDIS_SSL"), default=False),
            socket_timeout=timeout,
            key_prefix=prefix,
        )

    @classmethod
    def from_uri(
        cls,
        uri: str,
        *,
        socket_timeout: float = 5.0,
        key_prefix: str = "notesync:",
    ) -> "RedisConfig":
        parsed = urlparse(uri)
        if parsed.scheme not in {"redis", "rediss"}:
            raise ValueError(
                f"Unsupported Redis URI scheme: {parsed.scheme!r}")

        db_fragment = parsed.path.lstrip("/")
        return cls(
            host=parsed.hostname or cls.host,
            port=parsed.port or cls.port,
            db=int(db_fragment) if db_fragment else cls.db,
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
            ssl=parsed.scheme == "rediss",
            socket_timeout=socket_timeout,
            key_prefix=key_prefix,
        )

    def create_redis(self) -> "redis.Redis":
        return redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            username=self.username,
            password=self.password,
            ssl=self.ssl,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
            decode_responses=True,
        )

    def create_tree(self) -> RedisTreeClient:
        return RedisTreeClient(self.create_redis(), key_prefix=self.key_prefix)


@dataclass(frozen=True)
class SyncSettings:
    db_path: Path = Path.home() / ".notesync" / "notes.db"
    sync_interval: float = 60.0
    retry_attempts: int = 3
    retry_delay: float = 30.0
    encrypt_at_rest: bool = True
    device_type: str = "desktop"
    api_host: str = "127.0.0.1"
    api_port: int = 3001

    @classmethod
    def from_env(cls, *, env_path: Optional[Path] = None) -> "SyncSettings":
        load_env_file(env_path)

        db_raw = os.getenv("NOTESYNC_DB_PATH")
        return cls(
            db_path=Path(db_raw).expanduser() if db_raw else cls.db_path,
            sync_interval=max(1.0, _to_float(os.getenv("NOTESYNC_SYNC_INTERVAL"), cls.sync_interval)),
            retry_attempts=max(1, _to_int(os.getenv("NOTESYNC_RETRY_ATTEMPTS"), cls.retry_attempts)),
            retry_delay=max(0.0, _to_float(os.getenv("NOTESYNC_RETRY_DELAY"), cls.retry_delay)),
            encrypt_at_rest=_to_bool(os.getenv("NOTESYNC_ENCRYPT_AT_REST"), default=True),
            device_type=os.getenv("NOTESYNC_DEVICE_TYPE", cls.device_type),
            api_host=os.getenv("NOTESYNC_API_HOST", cls.api_host),
            api_port=_to_int(os.getenv("NOTESYNC_API_PORT"), cls.api_port),
        )
