from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """Configuration for the capacity cache, read from ``CAPX_*`` variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="CAPX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = Field(..., min_length=1)
    api_token: str = Field(
        default="",
        validation_alias=AliasChoices("CAPX_API_TOKEN", "CAPX_TOKEN", "api_token"),
    )
    language: str = Field(default="en", min_length=2)
    fallback_language: str = Field(default="en", min_length=2)

    metabase_sparql_url: str = "https://metabase.wikibase.cloud/query/sparql"
    wikidata_sparql_url: str = "https://query.wikidata.org/sparql"

    translation_batch_size: int = Field(default=20, ge=1)
    translation_batch_attempts: int = Field(default=2, ge=1)
    translation_retry_wait_seconds: float = Field(default=0.5, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Raw string from environment; an empty value selects the in-memory snapshot store
    snapshot_dir_raw: str = Field(
        default="",
        validation_alias=AliasChoices("CAPX_SNAPSHOT_DIR", "snapshot_dir"),
    )
    snapshot_key: str = Field(default="capx-unified-cache", min_length=1)
    user_agent: str = "capx-capacity-cache/0.1 (https://capx.toolforge.org)"

    @property
    def snapshot_dir(self) -> Path | None:
        raw = self.snapshot_dir_raw.strip()
        if not raw:
            return None
        return Path(raw).expanduser()

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        url = v.strip()
        if not url.startswith(("http://", "https://")):
            raise ValueError("CAPX_API_BASE_URL must start with http:// or https://")
        return url.rstrip("/")

    @field_validator("language", "fallback_language")
    @classmethod
    def normalize_language(cls, v: str) -> str:
        return v.strip().lower()


@lru_cache(maxsize=1)
def get_settings() -> CacheSettings:
    return CacheSettings.model_validate({})
