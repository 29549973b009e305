"""
Runtime configuration for the TubeStream API.

`Settings` is a pydantic-settings model: every field is read from the
environment variable of the same name (or from a local ``.env`` file) when the
application is created, validated, and carried on the application context from
then on. Nothing else in the code base reads the environment.

Auth strategy selection, the repository backend and object-storage credentials
are all driven from here. Comma-separated variables (``REPLIT_DOMAINS``,
``CORS_ORIGINS``) become lists, hosted Postgres URLs are rewritten for asyncpg,
and a value of the wrong type fails startup with a pydantic validation error
naming the variable.
"""

import secrets
from typing import Annotated, List, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .logging_config import get_logger

logger = get_logger("core.config")

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./tubestream.db"
DEFAULT_ISSUER_URL = "https://replit.com/oidc"
DEFAULT_CORS_ORIGINS = ["http://localhost:5000", "http://localhost:5173"]
ONE_WEEK_SECONDS = 7 * 24 * 60 * 60


def _split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def normalize_database_url(url: str) -> str:
    """Rewrite hosted Postgres URLs so SQLAlchemy picks the asyncpg driver"""
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "development"
    log_level: str = "INFO"

    storage_backend: str = "database"
    database_url: str = DEFAULT_DATABASE_URL

    session_secret: str = ""
    session_ttl_seconds: int = Field(default=ONE_WEEK_SECONDS, gt=0)
    session_cookie_name: str = "tubestream.sid"

    # OIDC
    replit_domains: Annotated[List[str], NoDecode] = []
    repl_id: Optional[str] = None
    issuer_url: str = DEFAULT_ISSUER_URL

    # Google OAuth2
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_callback_url: Optional[str] = None
    public_url: str = "http://localhost:5000"

    # S3-compatible object storage
    s3_endpoint: Optional[str] = None
    s3_region: str = "us-east-1"
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_bucket: Optional[str] = None
    cdn_url: Optional[str] = None
    max_upload_size_mb: int = Field(
        default=500,
        gt=0,
        validation_alias=AliasChoices("max_upload_size_mb", "max_upload_size"),
    )

    cors_origins: Annotated[List[str], NoDecode] = DEFAULT_CORS_ORIGINS

    @field_validator("environment", "storage_backend")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return value.lower()

    @field_validator("log_level")
    @classmethod
    def uppercase(cls, value: str) -> str:
        return value.upper()

    @field_validator("database_url")
    @classmethod
    def asyncpg_driver(cls, value: str) -> str:
        return normalize_database_url(value)

    @field_validator("public_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("replit_domains", mode="before")
    @classmethod
    def split_domains(cls, value):
        return _split_csv(value) if isinstance(value, str) else value

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            return _split_csv(value) or list(DEFAULT_CORS_ORIGINS)
        return value

    @model_validator(mode="after")
    def ensure_session_secret(self) -> "Settings":
        if not self.session_secret:
            if self.is_production:
                raise RuntimeError("SESSION_SECRET must be set in production")
            self.session_secret = secrets.token_urlsafe(32)
            logger.warning(
                "SESSION_SECRET not set, generated an ephemeral secret. "
                "Sessions will not survive a restart."
            )
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables"""
        return cls()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def storage_configured(self) -> bool:
        return all(
            [self.s3_endpoint, self.s3_access_key, self.s3_secret_key, self.s3_bucket]
        )

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def oidc_configured(self) -> bool:
        return bool(self.replit_domains)

    def resolved_google_callback_url(self) -> str:
        return self.google_callback_url or f"{self.public_url}/api/auth/google/callback"
