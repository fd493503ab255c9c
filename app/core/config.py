from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Security
    secret_key: str = "changeme"  # override in .env
    access_token_expire_minutes: int = 60

    # Database
    database_url: str

    # Redis
    redis_url: str | None = None

    # RBAC permission cache
    rbac_cache_backend: str = "memory"  # memory | redis | none
    rbac_cache_ttl_seconds: int = 300
    rbac_cache_key_prefix: str = "rbac:"

    # Request header carrying the active hospital context
    hospital_header: str = "X-Hospital-ID"

    # Pydantic v2 style config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance so the .env is parsed once.
    """
    return Settings()
