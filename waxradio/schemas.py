from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime

from waxradio.models import Role

PLACEHOLDER_PREFIX = "placeholder-"


# Profile Schemas
class Profile(BaseModel):
    """Durable per-user record, keyed by principal id."""
    id: str = Field(..., description="Principal id")
    email: str = Field("", description="User email address")
    display_name: str = Field("", max_length=100, description="Display name")
    role: Role = Field(Role.FAN, description="Artist or fan")
    bio: str = Field("", description="User bio")
    avatar_url: str = Field("", description="Profile image URL")
    setup_complete: bool = Field(False, description="Whether profile setup is complete")
    onboarded: bool = Field(False, description="Whether the tutorial was completed")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @field_validator('bio', 'avatar_url', 'display_name', 'email', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    def to_document(self) -> dict:
        """JSON document as stored by the profile store."""
        return self.model_dump(mode="json")


class ProfileSetupFields(BaseModel):
    """Fields submitted from the profile setup form."""
    display_name: str = Field(..., min_length=1, max_length=100, description="Display name")
    bio: str = Field("", max_length=500, description="User bio")
    avatar_url: Optional[str] = Field(None, description="Profile image URL")

    @field_validator('display_name')
    @classmethod
    def validate_display_name(cls, v):
        if not v.strip():
            raise ValueError('Display name cannot be empty or whitespace only')
        return v.strip()

    @field_validator('bio')
    @classmethod
    def strip_bio(cls, v):
        return v.strip()

    @field_validator('avatar_url')
    @classmethod
    def validate_avatar_url(cls, v):
        if v and not v.startswith(('http://', 'https://')):
            raise ValueError('URLs must start with http:// or https://')
        return v


# Track Schemas
class Track(BaseModel):
    """Track document as listed in the catalog."""
    id: str = Field(..., description="Opaque track id")
    title: str = Field(..., description="Track title")
    artist: str = Field("", description="Artist name")
    artist_id: str = Field("", description="Principal id of the uploader")
    genre: str = Field("", description="Genre")
    cover_art_url: str = Field("", description="Cover art URL")
    audio_url: str = Field("", description="Full-length audio URL")
    preview_url: str = Field("", description="Preview audio URL")
    duration_seconds: float = Field(0, ge=0, description="Duration in seconds")
    upvotes: int = Field(0, ge=0, description="Up-vote count")
    downvotes: int = Field(0, ge=0, description="Down-vote count")
    heat_score: int = Field(30, ge=30, le=110, description="Derived popularity temperature")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @field_validator('cover_art_url', 'audio_url', 'preview_url', 'artist', 'artist_id', 'genre', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator('upvotes', 'downvotes', 'duration_seconds', mode='before')
    @classmethod
    def none_to_zero(cls, v):
        return 0 if v is None else v

    @field_validator('heat_score', mode='before')
    @classmethod
    def none_to_base_heat(cls, v):
        return 30 if v is None else v

    @property
    def is_placeholder(self) -> bool:
        return self.id.startswith(PLACEHOLDER_PREFIX)


class TrackUpload(BaseModel):
    """Schema for a track submitted from the upload form."""
    title: str = Field(..., min_length=1, max_length=255, description="Track title")
    genre: str = Field(..., min_length=1, max_length=100, description="Genre")
    audio_filename: str = Field(..., min_length=1, description="Original audio file name")
    audio_content_type: str = Field(..., description="Audio MIME type")
    audio_data: bytes = Field(..., repr=False, description="Audio file contents")
    cover_art_filename: Optional[str] = Field(None, description="Original cover file name")
    cover_art_content_type: Optional[str] = Field(None, description="Cover MIME type")
    cover_art_data: Optional[bytes] = Field(None, repr=False, description="Cover file contents")
    duration_seconds: float = Field(0, ge=0, description="Duration in seconds, when known")

    @field_validator('title', 'genre')
    @classmethod
    def validate_strings(cls, v):
        if not v or not v.strip():
            raise ValueError('Field cannot be empty or whitespace only')
        return v.strip()

    @model_validator(mode='after')
    def validate_cover_art(self):
        if self.cover_art_data is not None and not (self.cover_art_filename and self.cover_art_content_type):
            raise ValueError('Cover art requires a file name and a content type')
        return self


class UploadProgress(BaseModel):
    """Progress event emitted while an upload is running."""
    progress: float = Field(..., ge=0, le=100, description="Percent complete")
    bytes_transferred: int = Field(..., ge=0)
    total_bytes: int = Field(..., ge=0)
