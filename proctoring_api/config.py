from functools import lru_cache
from typing import Annotated, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    host: str = "0.0.0.0"
    port: int = 4000
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "proctoring"
    app_env: str = "development"
    # comma-separated in the environment, only used in production
    cors_origins: Annotated[List[str], NoDecode] = []
    static_dir: str = "frontend/dist"
    log_level: str = "INFO"

    @field_validator("app_env", mode="before")
    @classmethod
    def _lower_env(cls, value):
        return str(value).lower()

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def is_development(self) -> bool:
        return self.app_env != "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
