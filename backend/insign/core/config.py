from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global Insign settings.
    Values are read from the environment and from the ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "Insign API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Caller sessions. Tokens are issued by the external authentication service,
    # which shares the signing key; auth_token_url is its login endpoint.
    secret_key: str = "changeme"
    algorithm: str = "HS256"
    auth_token_url: str = "http://localhost:8001/api/v1/auth/login"

    # Database
    database_url: str = "sqlite:///./insign.db"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Public signing links
    public_app_url: str = "http://localhost:3000"
    access_token_bytes: int = 32

    # Outbound webhook for workflow events (optional)
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def resolved_public_app_url(self) -> str:
        """Base URL used to build the signing links sent to participants."""
        return (self.public_app_url or "").strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return the cached global settings instance."""
    return Settings()


settings = get_settings()
