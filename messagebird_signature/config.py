from functools import lru_cache
from typing import Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from messagebird_signature.errors import DEFAULT_SIGNATURE_HEADER, DEFAULT_TIMESTAMP_HEADER
from messagebird_signature.schemas import (
    DEFAULT_HASH_NAME,
    DEFAULT_MAX_AGE_SECONDS,
    SignatureConfig,
)


class Settings(BaseSettings):
    """
    Settings loaded from MESSAGEBIRD_* environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_prefix="MESSAGEBIRD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Webhook Security - empty means requests cannot be verified
    SIGNING_KEY: str = ""

    # Signature scheme
    MAX_AGE_SECONDS: int = DEFAULT_MAX_AGE_SECONDS
    TIMESTAMP_HEADER: str = DEFAULT_TIMESTAMP_HEADER
    SIGNATURE_HEADER: str = DEFAULT_SIGNATURE_HEADER
    HASH_ALGORITHM: str = DEFAULT_HASH_NAME

    # Boundary adapter
    MAX_BODY_BYTES: int = 100 * 1024
    EXEMPT_PATHS: Tuple[str, ...] = ("/health/live", "/health/ready", "/metrics")

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    def signature_config(self) -> SignatureConfig:
        """Build the immutable verifier configuration from these settings."""
        return SignatureConfig(
            timestamp_header=self.TIMESTAMP_HEADER,
            signature_header=self.SIGNATURE_HEADER,
            max_age_seconds=self.MAX_AGE_SECONDS,
            hash_name=self.HASH_ALGORITHM,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
