import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = Field("http://localhost:5000", alias="STUDYROOM_API_BASE_URL")
    api_token: Optional[str] = Field(None, alias="STUDYROOM_API_TOKEN")
    api_timeout_ms: int = Field(10000, alias="STUDYROOM_API_TIMEOUT_MS")
    timer_tick_seconds: float = Field(1.0, gt=0, alias="STUDYROOM_TIMER_TICK_SECONDS")
    timer_pulse_seconds: float = Field(5.0, gt=0, alias="STUDYROOM_TIMER_PULSE_SECONDS")
    timer_stale_after_minutes: int = Field(30, ge=1, alias="STUDYROOM_TIMER_STALE_AFTER_MINUTES")
    timer_local_max_age_hours: int = Field(24, ge=1, alias="STUDYROOM_TIMER_LOCAL_MAX_AGE_HOURS")
    timer_storage_mode: Literal["memory", "file"] = Field("file", alias="STUDYROOM_TIMER_STORAGE")
    timer_storage_path: Optional[str] = Field(None, alias="STUDYROOM_TIMER_STORAGE_PATH")
    database_url: Optional[str] = Field(None, alias="STUDYROOM_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDYROOM_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDYROOM_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDYROOM_DATABASE_ECHO")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
