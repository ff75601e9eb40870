"""
Configuration management for the WaxRadio client core.
Centralizes all environment variables and provides validation.
"""
from typing import Optional
from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from pydantic import field_validator

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Supabase (identity, profiles, tracks)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    profiles_table: str = "profiles"
    tracks_table: str = "tracks"
    vote_increment_rpc: str = "increment_track_vote"

    # Cloudflare R2
    r2_access_key: Optional[str] = None
    r2_secret_key: Optional[str] = None
    r2_audio_bucket: str = "waxradio-audio"
    r2_image_bucket: str = "waxradio-images"
    r2_endpoint: Optional[str] = None

    # Application
    app_name: str = "WaxRadio"
    debug: bool = False

    # Lifecycle timing
    auth_timeout_seconds: float = 10.0
    profile_fetch_max_attempts: int = 3
    profile_fetch_backoff_seconds: float = 1.0
    profile_fetch_timeout_seconds: float = 15.0

    # Engagement
    preview_cap_seconds: float = 30.0
    reconcile_votes: bool = True

    # Local storage
    local_storage_path: str = ".waxradio/local_storage.json"
    onboarding_storage_key: str = "waxradio-onboarding-completed"

    # File upload limits
    max_audio_size: int = 50 * 1024 * 1024  # 50MB
    max_image_size: int = 5 * 1024 * 1024  # 5MB
    allowed_audio_types: list[str] = ["audio/"]
    allowed_image_types: list[str] = ["image/"]

    @field_validator('supabase_url')
    @classmethod
    def validate_supabase_url(cls, v):
        if v and not v.startswith('https://'):
            raise ValueError('SUPABASE_URL must be a valid HTTPS URL')
        return v

    @field_validator('r2_endpoint')
    @classmethod
    def validate_r2_endpoint(cls, v):
        if v and not v.startswith('https://'):
            raise ValueError('R2_ENDPOINT must be a valid HTTPS URL')
        return v

    @field_validator('profile_fetch_max_attempts')
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError('PROFILE_FETCH_MAX_ATTEMPTS must be at least 1')
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore"
    }


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
