"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
Secrets (tokens, API keys) never have defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # WHATSAPP CLOUD API
    # ===================
    whatsapp_access_token: Optional[str] = Field(
        None,
        description="Meta Graph API access token"
    )
    whatsapp_phone_number_id: Optional[str] = Field(
        None,
        description="Phone number ID used as sender for replies"
    )
    whatsapp_verify_token: Optional[str] = Field(
        None,
        description="Shared secret for the webhook verification handshake"
    )
    whatsapp_api_version: str = Field(
        default="v21.0",
        pattern=r"^v\d+\.\d+$",
        description="Graph API version"
    )
    whatsapp_timeout_seconds: int = Field(
        default=10,
        ge=1,
        le=60,
        description="Timeout for Graph API calls"
    )

    # ===================
    # STRUCTURING MODEL
    # ===================
    anthropic_api_key: Optional[str] = Field(
        None,
        description="Anthropic API key for the vision model"
    )
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model used to structure offers"
    )
    anthropic_max_tokens: int = Field(
        default=500,
        ge=100,
        le=4096,
        description="Maximum tokens for the structuring response"
    )
    model_timeout_seconds: int = Field(
        default=30,
        ge=5,
        le=120,
        description="Timeout for a structuring call (no retries)"
    )

    # ===================
    # SWEEP TRIGGER
    # ===================
    cron_secret: Optional[str] = Field(
        None,
        description="Bearer token required by the periodic sweep endpoint"
    )

    # ===================
    # PIPELINE TIMINGS
    # ===================
    merge_window_seconds: int = Field(
        default=20,
        ge=1,
        le=300,
        description="Fragments within this window fold into the pending submission"
    )
    quiet_period_seconds: int = Field(
        default=15,
        ge=1,
        le=300,
        description="Silence required before a submission is ready"
    )
    deferred_check_margin_seconds: int = Field(
        default=1,
        ge=0,
        le=30,
        description="Added to the quiet period for the local deferred check"
    )
    max_accumulation_seconds: int = Field(
        default=300,
        ge=30,
        le=3600,
        description="Submissions older than this are ready even if still receiving fragments"
    )
    offer_validity_days: int = Field(
        default=7,
        ge=1,
        le=30,
        description="Default offer lifetime when the message states none"
    )

    # ===================
    # IMAGE LIBRARY
    # ===================
    offer_images_bucket: str = Field(
        default="offer-images",
        description="Storage bucket for offer images"
    )
    image_match_threshold: int = Field(
        default=0,
        ge=0,
        le=100,
        description="0 = exact product name match only, otherwise fuzzy score cutoff"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def whatsapp_configured(self) -> bool:
        """Check if outbound WhatsApp calls are possible."""
        return bool(self.whatsapp_access_token and self.whatsapp_phone_number_id)

    @property
    def model_configured(self) -> bool:
        """Check if the structuring model can be called."""
        return bool(self.anthropic_api_key)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
