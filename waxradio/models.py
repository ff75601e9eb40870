"""
In-memory models for the WaxRadio client core.
These are never persisted; documents live in the schemas module.
"""
from enum import Enum
from typing import Optional, TYPE_CHECKING

from waxradio.exceptions import ErrorKind

if TYPE_CHECKING:
    from waxradio.schemas import Track


class Role(str, Enum):
    """Kind of account a profile belongs to."""
    ARTIST = "artist"
    FAN = "fan"


class LifecycleState(str, Enum):
    """Screen the presentation layer should show."""
    LOADING = "loading"
    AUTH_ERROR = "auth_error"
    UNAUTHENTICATED = "unauthenticated"
    PROFILE_LOADING = "profile_loading"
    PROFILE_SETUP_REQUIRED = "profile_setup_required"
    ONBOARDING_REQUIRED = "onboarding_required"
    READY = "ready"


class FetchStatus(str, Enum):
    """Progress of the principal/profile resolution."""
    AWAITING_AUTH = "awaiting_auth"
    AUTH_TIMED_OUT = "auth_timed_out"
    SIGNED_OUT = "signed_out"
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


class FetchOutcome:
    """Result of the latest profile resolution attempt."""

    def __init__(
        self,
        status: FetchStatus,
        error_kind: Optional[ErrorKind] = None,
        message: Optional[str] = None,
        attempts: int = 0,
    ):
        self.status = status
        self.error_kind = error_kind
        self.message = message
        self.attempts = attempts

    @classmethod
    def awaiting_auth(cls) -> "FetchOutcome":
        return cls(FetchStatus.AWAITING_AUTH)

    @classmethod
    def timed_out(cls) -> "FetchOutcome":
        return cls(FetchStatus.AUTH_TIMED_OUT)

    @classmethod
    def signed_out(cls) -> "FetchOutcome":
        return cls(FetchStatus.SIGNED_OUT)

    @classmethod
    def pending(cls, attempts: int = 0) -> "FetchOutcome":
        return cls(FetchStatus.PENDING, attempts=attempts)

    @classmethod
    def loaded(cls, attempts: int = 1) -> "FetchOutcome":
        return cls(FetchStatus.LOADED, attempts=attempts)

    @classmethod
    def failed(cls, kind: ErrorKind, message: str, attempts: int) -> "FetchOutcome":
        return cls(FetchStatus.FAILED, error_kind=kind, message=message, attempts=attempts)

    def __eq__(self, other):
        if not isinstance(other, FetchOutcome):
            return NotImplemented
        return (self.status, self.error_kind, self.message, self.attempts) == (
            other.status, other.error_kind, other.message, other.attempts
        )

    def __repr__(self):
        return f"FetchOutcome(status={self.status.value}, error_kind={self.error_kind}, attempts={self.attempts})"


class Principal:
    """Authenticated identity handle issued by the identity gateway."""

    def __init__(
        self,
        id: str,
        email: str = "",
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        role_hint: Optional[Role] = None,
        **kwargs
    ):
        self.id = id
        self.email = email
        self.display_name = display_name
        self.avatar_url = avatar_url
        # Role declared at sign-up, when the provider kept it
        self.role_hint = role_hint

    def default_display_name(self) -> str:
        """Name to use when the profile has none yet."""
        if self.display_name:
            return self.display_name
        if self.email:
            return self.email.split("@")[0]
        return "User"

    def __repr__(self):
        return f"Principal(id={self.id!r}, email={self.email!r})"


class VoteDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class PlaybackMode(str, Enum):
    PREVIEW = "preview"
    FULL = "full"


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PREVIEW_PLAYING = "preview_playing"
    FULL_PLAYING = "full_playing"


class PlaybackSession:
    """State of the currently loaded track."""

    def __init__(self, track: "Track", mode: PlaybackMode = PlaybackMode.PREVIEW):
        self.track = track
        self.mode = mode
        self.has_voted = mode is PlaybackMode.FULL
        self.position_seconds = 0.0
        self.is_playing = False
        self.status = PlaybackStatus.LOADING

    @property
    def source_url(self) -> str:
        if self.mode is PlaybackMode.PREVIEW:
            return self.track.preview_url
        return self.track.audio_url

    def to_dict(self) -> dict:
        return {
            "track_id": self.track.id,
            "mode": self.mode.value,
            "has_voted": self.has_voted,
            "position_seconds": self.position_seconds,
            "is_playing": self.is_playing,
            "status": self.status.value,
        }
