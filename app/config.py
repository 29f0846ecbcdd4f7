"""
Application configuration with validation and environment management.

All archive settings (database, content store, timeouts, retry policy)
are read from the environment or a .env file and validated on startup.
"""

import os
from typing import List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with validation."""

    # Database
    database_url: str = "sqlite:///./etherith.db"
    bootstrap_schema: bool = False
    repository_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8080"
    cors_allow_credentials: bool = True
    cors_allowed_headers: str = "Content-Type,Authorization,X-Request-ID"

    # Monitoring (optional)
    sentry_dsn: Optional[str] = None
    environment: str = "development"

    # Content store (Pinata / IPFS)
    pinata_jwt: Optional[str] = None
    pinata_api_url: str = "https://api.pinata.cloud"
    ipfs_gateway_url: str = "https://gateway.pinata.cloud"
    content_store_timeout_seconds: float = 60.0
    pin_metadata_documents: bool = True

    # Archive policy
    max_payload_bytes: int = 100 * 1024 * 1024
    read_retry_attempts: int = 3
    retry_backoff_seconds: float = 0.2
    default_page_size: int = 20
    max_page_size: int = 100

    # Auth collaborator
    firebase_service_account_path: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("read_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Reads are retried at most three times."""
        if v < 1 or v > 3:
            raise ValueError("read_retry_attempts must be between 1 and 3")
        return v

    @field_validator("max_payload_bytes", "default_page_size", "max_page_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("cors_origins", "cors_allowed_headers", mode="before")
    @classmethod
    def join_list_values(cls, v) -> str:
        """Keep comma-separated values as a string, parse when needed."""
        if isinstance(v, list):
            return ",".join(v)
        return str(v)

    def get_cors_origins(self) -> List[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def get_cors_headers(self) -> List[str]:
        """Get CORS headers as list."""
        return [header.strip() for header in self.cors_allowed_headers.split(",") if header.strip()]

    def validate_required(self) -> List[str]:
        """
        Validate required settings for production.

        Returns:
            List of missing required settings
        """
        errors = []

        if not self.database_url:
            errors.append("DATABASE_URL is required")
        if self.environment == "production":
            if self.database_url.startswith("sqlite"):
                errors.append("DATABASE_URL must point to PostgreSQL in production")
            if not self.pinata_jwt:
                errors.append("PINATA_JWT is required in production")
        return errors

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Create settings instance
settings = Settings()

# Validate on import (for production)
if os.getenv("VALIDATE_CONFIG", "false").lower() == "true":
    errors = settings.validate_required()
    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")
