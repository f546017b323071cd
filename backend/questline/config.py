import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="QUESTLINE_DATABASE_URL")
    database_pool_size: int = Field(10, alias="QUESTLINE_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="QUESTLINE_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="QUESTLINE_DATABASE_ECHO")
    sqlite_busy_timeout: float = Field(30.0, alias="QUESTLINE_SQLITE_BUSY_TIMEOUT", gt=0)
    recalculation_error_limit: int = Field(50, alias="QUESTLINE_RECALC_ERROR_LIMIT", ge=0)
    catalog_path: Optional[str] = Field(None, alias="QUESTLINE_CATALOG_PATH")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
