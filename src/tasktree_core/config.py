"""Runtime settings loaded from the environment."""
import os
from functools import lru_cache

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Core settings.

    Every field can be overridden with a ``TASKTREE_``-prefixed environment
    variable (e.g. ``TASKTREE_DATABASE_URL``).
    """

    database_url: str = "sqlite:///tasktree.db"
    activity_log_link_template: str = "/activity-logs/{id}"
    pagination_per_page: int = Field(20, ge=1, le=500)


def _getenv(name: str) -> str | None:
    value = os.environ.get(f"TASKTREE_{name.upper()}")
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings() -> Settings:
    overrides = {}
    for name in Settings.model_fields:
        value = _getenv(name)
        if value is not None:
            overrides[name] = value
    return Settings(**overrides)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (cached; call ``get_settings.cache_clear()`` in tests)."""
    return load_settings()
