from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


def _resolve_data_dir() -> Path:
    override = os.getenv("HOPEDEEDS_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve() / "data"
    return Path.cwd().resolve() / "data"


def _env(key: str, default: str) -> str:
    return os.getenv(key, "").strip() or default


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=_resolve_data_dir)
    database_url: str = Field(default_factory=lambda: os.getenv("HOPEDEEDS_DATABASE_URL", "").strip())
    log_level: str = Field(default_factory=lambda: _env("HOPEDEEDS_LOG_LEVEL", "INFO"))

    host: str = Field(default_factory=lambda: _env("HOPEDEEDS_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(_env("HOPEDEEDS_PORT", "8080")))

    # Recurrence expansion
    default_bound_by: str = Field(default_factory=lambda: _env("HOPEDEEDS_RECURRENCE_BOUND", "count"))
    default_horizon_months: int = Field(default_factory=lambda: int(_env("HOPEDEEDS_HORIZON_MONTHS", "3")))
    max_scan_days: int = Field(default_factory=lambda: int(_env("HOPEDEEDS_MAX_SCAN_DAYS", "1825")))

    default_max_capacity: int = Field(default_factory=lambda: int(_env("HOPEDEEDS_DEFAULT_CAPACITY", "10")))

    admin_roles: frozenset[str] = frozenset({"admin", "manager"})

    @field_validator("default_bound_by")
    @classmethod
    def bound_must_be_known(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("count", "horizon"):
            raise ValueError("default_bound_by must be 'count' or 'horizon'")
        return v

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'hopedeeds.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    if not settings.database_url:
        settings.ensure_directories()
    return settings
