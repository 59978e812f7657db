"""
Application Configuration

Uses Pydantic Settings for type-safe configuration.
"""

from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field, field_validator, ConfigDict

# Project root: triathlon-integrations/
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Application settings with validation."""

    # === Core ===
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    environment: str = Field(
        default="development",
        description="Deployment environment (development, staging, production)"
    )

    # === Database ===
    database_url: str = Field(
        default="sqlite:///./integrations.db",
        description="Database connection URL"
    )

    # === CORS ===
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # === Public URLs ===
    api_url: str = Field(
        default="http://localhost:8787",
        description="Public base URL of this API (OAuth callbacks)"
    )
    web_url: str = Field(
        default="http://localhost:3000",
        description="Frontend base URL (post-OAuth redirects)"
    )

    # === Sync ===
    sync_cooldown_seconds: int = Field(
        default=300,
        description="Minimum interval between manual syncs per athlete and provider"
    )

    # === Secrets ===
    integration_encryption_key: Optional[str] = Field(
        default=None,
        description="64 hex chars (32 bytes) for AES-256-GCM token encryption"
    )
    jwt_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("jwt_secret", "supabase_jwt_secret"),
        description="Shared JWT secret, fallback for key derivation and state signing"
    )
    oauth_state_secret: Optional[str] = Field(default=None)

    # === Strava ===
    strava_client_id: Optional[str] = Field(default=None)
    strava_client_secret: Optional[str] = Field(default=None)
    strava_verify_token: Optional[str] = Field(default=None)

    # === Garmin ===
    garmin_consumer_key: Optional[str] = Field(default=None)
    garmin_consumer_secret: Optional[str] = Field(default=None)

    # === Polar ===
    polar_client_id: Optional[str] = Field(default=None)
    polar_client_secret: Optional[str] = Field(default=None)
    polar_webhook_secret: Optional[str] = Field(default=None)

    # === Wahoo ===
    wahoo_client_id: Optional[str] = Field(default=None)
    wahoo_client_secret: Optional[str] = Field(default=None)
    wahoo_webhook_token: Optional[str] = Field(default=None)

    @field_validator('database_url')
    @classmethod
    def fix_postgres_url(cls, v: str) -> str:
        """Fix Render/Railway postgres:// URL to postgresql://"""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
