"""Application settings loaded from environment variables.

Environment Configuration:
    REDLINE_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    REDIS_URL: Redis connection string for the annotation broadcast channel (optional)

Auth Configuration (required outside the test environment):
    AUTH_JWKS_URL: Full URL to the identity provider's JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences

Storage Configuration:
    SUPABASE_URL / SUPABASE_SERVICE_KEY: Storage API credentials. When either is
        missing the in-memory FakeStorageClient is used.
    COMMENT_IMAGES_BUCKET: Bucket holding comment image attachments
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL is always required
    - AUTH_JWKS_URL, AUTH_ISSUER, AUTH_AUDIENCES are required unless REDLINE_ENV=test
    """

    redline_env: Environment = Field(default=Environment.LOCAL, alias="REDLINE_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Redis pub/sub for annotation events
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Auth settings
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    # Storage settings
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_KEY")
    comment_images_bucket: str = Field(default="comment-images", alias="COMMENT_IMAGES_BUCKET")

    # Image attachment limits
    image_upload_timeout_s: float = Field(default=30.0, alias="IMAGE_UPLOAD_TIMEOUT_S")
    comment_image_url_expiry_s: int = Field(
        default=31_536_000, alias="COMMENT_IMAGE_URL_EXPIRY_S"
    )  # 1 year
    max_comment_image_bytes: int = Field(
        default=10 * 1024 * 1024, alias="MAX_COMMENT_IMAGE_BYTES"
    )  # 10 MB

    # Project access cache
    access_cache_ttl_s: float = Field(default=300.0, alias="ACCESS_CACHE_TTL_S")
    access_cache_max_entries: int = Field(default=1000, alias="ACCESS_CACHE_MAX_ENTRIES")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure auth settings are present outside the test environment."""
        if self.redline_env == Environment.TEST:
            return self

        missing_auth = []
        if not self.auth_jwks_url:
            missing_auth.append("AUTH_JWKS_URL")
        if not self.auth_issuer:
            missing_auth.append("AUTH_ISSUER")
        if not self.auth_audiences:
            missing_auth.append("AUTH_AUDIENCES")

        if missing_auth:
            raise ValueError(
                f"Missing required auth settings: {', '.join(missing_auth)}. "
                f"Set these environment variables for REDLINE_ENV={self.redline_env.value}."
            )

        return self

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.auth_audiences:
            return [a.strip() for a in self.auth_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.auth_issuer:
            return self.auth_issuer.rstrip("/")
        return None

    @property
    def storage_configured(self) -> bool:
        """Whether real storage credentials are available."""
        return bool(self.supabase_url and self.supabase_service_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
