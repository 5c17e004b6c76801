"""Settings configuration using pydantic-settings for environment variable management."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from dotenv import load_dotenv

load_dotenv(override=False)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "task-manager-api"
    MONGODB_TIMEOUT_MS: int = 5000
    USE_MEMORY_STORE: bool = False

    JWT_SECRET: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_PRIVATE_KEY: Optional[str] = None
    JWT_PUBLIC_KEY: Optional[str] = None
    JWT_KEY_ID: Optional[str] = None
    JWT_AUDIENCE: str = "task-manager"
    JWT_ISSUER: str = "task-manager-api"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    JWKS_URL: Optional[str] = None
    JWKS_CACHE_MINUTES: int = 10
    JWKS_REQUESTS_PER_MINUTE: int = 5
    HTTP_TIMEOUT_SECONDS: float = 10.0

    BCRYPT_ROUNDS: int = 12
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    SENDGRID_API_KEY: str = ""
    EMAIL_FROM: str = "no-reply@task-manager.local"
    BASE_URL: str = "http://localhost:8000"

    APP_NAME: str = "Task Manager API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("JWT_PRIVATE_KEY", "JWT_PUBLIC_KEY", mode="before")
    @classmethod
    def validate_pem(cls, v):
        """Allow PEM keys passed on a single line with escaped newlines."""
        if isinstance(v, str):
            v = v.strip().replace("\\n", "\n")
            return v or None
        return v

    @field_validator("JWT_ALGORITHM", mode="before")
    @classmethod
    def validate_algorithm(cls, v):
        """Normalize algorithm names (e.g. 'rs256' -> 'RS256')."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def uses_hmac(self) -> bool:
        """Whether tokens are signed with the shared secret."""
        return self.JWT_ALGORITHM.startswith("HS")


settings = Settings()
