from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import quote_plus

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: Literal["dev", "staging", "prod"] = "dev"
    app_name: str = "CISA Assessment API"
    api_prefix: str = "/api/v1"
    debug: bool = True
    log_level: str = "INFO"
    cors_allow_origins: str = "http://localhost:3000"
    public_base_url: str = "http://localhost:3000"

    database_url: str = ""
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "cisa"
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_sslmode: Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"] = "disable"
    redis_url: str = "redis://localhost:6379/0"

    jwt_secret_key: str = Field(default="change-me-identity", min_length=16)
    jwt_algorithm: str = "HS256"
    jwt_access_ttl_min: int = 60

    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash-001"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    gemini_timeout_seconds: float = 60.0
    gemini_temperature: float = 0.2

    grading_default_limit: int = 20
    grading_max_limit: int = 100
    grading_lease_seconds: int = 600
    grading_feedback_language: str = "Thai"
    default_max_time_seconds: int = 7200

    submit_rate_limit: int = 25
    submit_rate_window_seconds: int = 60

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_sender: str = "CISA Assessment <no-reply@localhost>"
    smtp_starttls: bool = True
    notification_max_retries: int = 5
    notification_lease_seconds: int = 300

    @property
    def async_database_url(self) -> str:
        if self.database_url:
            if self.database_url.startswith("postgresql://"):
                return "postgresql+asyncpg://" + self.database_url.removeprefix("postgresql://")
            return self.database_url
        user = quote_plus(self.db_user)
        password = quote_plus(self.db_password)
        ssl_query = "?ssl=require" if self.db_sslmode == "require" else ""
        return (
            f"postgresql+asyncpg://{user}:{password}@{self.db_host}:{self.db_port}/{self.db_name}"
            f"{ssl_query}"
        )

    @property
    def mail_enabled(self) -> bool:
        return bool(self.smtp_host)


@lru_cache
def get_settings() -> Settings:
    return Settings()
