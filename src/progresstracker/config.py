"""Configuration for progresstracker.

Every setting is an environment variable (the CLI can load a ``.env`` file
first). Values are cast on first read and cached until ``clear_cache``.
"""

import os
from pathlib import Path
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DB_PATH = str(Path.home() / ".progresstracker" / "progress.duckdb")

TRUE_VALUES = ("true", "1", "yes", "on")


def _cast(value: Any, cast_type: type) -> Any:
    if cast_type is bool:
        return value.lower() in TRUE_VALUES if isinstance(value, str) else bool(value)
    if cast_type is str or isinstance(value, cast_type):
        return value
    return cast_type(value)


class Config:
    """Typed, cached access to environment settings."""

    def __init__(self):
        self._cache: dict[str, Any] = {}

    def get(self, key: str, default: Any = None, cast_type: type = str) -> Any:
        """
        Read ``key`` from the environment.

        Args:
            key: Environment variable name
            default: Value used when the variable is unset or cannot be cast
            cast_type: str, int, float or bool
        """
        cache_key = f"{key}:{cast_type.__name__}"
        if cache_key not in self._cache:
            raw = os.getenv(key)
            value = default if raw is None else raw
            if value is not None:
                try:
                    value = _cast(value, cast_type)
                except (ValueError, TypeError) as e:
                    logger.warning("config_cast_failed", key=key, cast_type=cast_type.__name__, error=str(e))
                    value = default
            self._cache[cache_key] = value
        return self._cache[cache_key]

    def get_required(self, key: str, cast_type: type = str) -> Any:
        """
        Raises:
            ValueError: If the variable is not set
        """
        value = self.get(key, cast_type=cast_type)
        if value is None:
            raise ValueError(f"Required configuration '{key}' not found")
        return value

    def clear_cache(self) -> None:
        self._cache.clear()


_config: Config | None = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_env(key: str, default: Any = None, cast_type: type = str) -> Any:
    return get_config().get(key, default, cast_type)


def get_db_path() -> str:
    """DuckDB file backing the image store (``:memory:`` is allowed)."""
    return str(get_env("PROGRESS_DB_PATH", DEFAULT_DB_PATH))


def get_max_image_bytes() -> int:
    """Size target for compressed images."""
    return get_env("MAX_IMAGE_BYTES", 500 * 1024, int)


def get_max_image_dimension() -> int:
    return get_env("MAX_IMAGE_DIMENSION", 1920, int)


def get_file_size_limits() -> tuple[int, int]:
    """(min, max) raw upload sizes in bytes."""
    return get_env("MIN_FILE_SIZE", 100, int), get_env("MAX_FILE_SIZE", 50 * 1024 * 1024, int)


def get_store_quota_bytes() -> int:
    """Payload quota for the store; 0 disables the check."""
    return get_env("STORE_QUOTA_BYTES", 0, int)
