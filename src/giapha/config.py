"""Environment-driven configuration.

Environment Variables:
    GIAPHA_DB_PATH: SQLite database file (default ./data/giapha.db)
    GIAPHA_HANDLE_WIDTH: Zero-padding width for P/F handles (default 3)
    GIAPHA_POST_MAX_LENGTH: Maximum post body length (default 10000)
    GIAPHA_BUSY_TIMEOUT_MS: SQLite busy timeout in milliseconds (default 5000)
    GIAPHA_LOG_LEVEL: structlog level (default INFO)
"""
from __future__ import annotations

import os
from dataclasses import dataclass


def _i(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default


def _s(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


@dataclass(frozen=True)
class RegistryConfig:
    db_path: str = "./data/giapha.db"
    handle_width: int = 3
    post_max_length: int = 10_000
    busy_timeout_ms: int = 5000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> RegistryConfig:
        """Build a config from the current environment (call after load_dotenv)."""
        return cls(
            db_path=_s("GIAPHA_DB_PATH", cls.db_path),
            handle_width=_i("GIAPHA_HANDLE_WIDTH", cls.handle_width),
            post_max_length=_i("GIAPHA_POST_MAX_LENGTH", cls.post_max_length),
            busy_timeout_ms=_i("GIAPHA_BUSY_TIMEOUT_MS", cls.busy_timeout_ms),
            log_level=_s("GIAPHA_LOG_LEVEL", cls.log_level).upper(),
        )


CONFIG = RegistryConfig.from_env()
