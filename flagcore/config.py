"""Настройки flagcore (pydantic-settings, префикс FEATURE_FLAGS_)."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import PLATFORM_SCOPE


class FlagSettings(BaseSettings):
    """Настройки движка флагов."""

    model_config = SettingsConfigDict(
        env_prefix="FEATURE_FLAGS_",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    database_url: Optional[str] = Field(default=None, description="postgresql+asyncpg:// DSN")
    default_scope: str = PLATFORM_SCOPE
    page_size: int = Field(default=20, ge=1)
    cache_endpoint: str = "/feature-flags"
    api_base_url: str = ""
    http_timeout: float = Field(default=5.0, gt=0)
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("database_url", mode="before")
    @classmethod
    def normalize_database_url(cls, v):
        """Context7: всегда asyncpg драйвер для async движка."""
        if not v:
            return None
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v


@lru_cache(maxsize=1)
def get_settings() -> FlagSettings:
    return FlagSettings()
