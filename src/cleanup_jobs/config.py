from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Required credentials. Missing values fail validation before any job runs.
    SUPABASE_URL: str = Field(
        validation_alias=AliasChoices("SUPABASE_URL", "EXPO_PUBLIC_SUPABASE_URL"),
    )
    SUPABASE_SERVICE_ROLE_KEY: str = Field(
        validation_alias=AliasChoices(
            "SUPABASE_SERVICE_ROLE_KEY", "EXPO_PUBLIC_SUPABASE_SERVICE_ROLE_KEY",
        ),
    )
    CLOUDINARY_CLOUD_NAME: str
    CLOUDINARY_API_KEY: str
    CLOUDINARY_API_SECRET: str

    EXPIRE_BATCH_SIZE: int = 100
    EXPIRE_BATCH_DELAY_SECONDS: float = 1.0
    EXPIRE_MAX_ATTEMPTS: int = 1

    PURGE_BATCH_SIZE: int = 10
    PURGE_GRACE_DAYS: int = 7
    PURGE_IMAGE_FOLDER: str = "posts"
    PURGE_MAX_ATTEMPTS: int = 1
    PURGE_STATUSES: list[str] = ["removed", "expired"]

    CONVERSATION_RETENTION_MONTHS: int = 1
    REPORT_RETENTION_DAYS: int = 30

    HTTP_TIMEOUT_SECONDS: float = 30.0

    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
