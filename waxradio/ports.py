"""Capability interfaces the core consumes.

Every collaborator outside the core is reached through one of these ports.
``waxradio.crud`` and ``waxradio.auth`` implement them on Supabase,
``waxradio.services`` on Cloudflare R2 and a local JSON file; tests implement
them in memory.

All remote operations are coroutines and raise subclasses of
``waxradio.exceptions.StoreError`` (or ``AuthenticationError`` for the
identity gateway) with the vendor error already classified.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from waxradio.models import Principal, Role, VoteDirection
from waxradio.schemas import UploadProgress

PrincipalCallback = Callable[[Optional[Principal]], None]
ProgressCallback = Callable[[UploadProgress], None]


class Subscription(ABC):
    """Handle returned by a push registration; release it exactly once."""

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivering notifications."""


class IdentityGateway(ABC):
    """Issues principals and notifies when the current one changes."""

    @abstractmethod
    def on_principal_change(self, callback: PrincipalCallback) -> Subscription:
        """Register ``callback``; it is called with the current principal
        (or None) once resolved, then on every change."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Principal:
        """Authenticate with email and password."""

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, display_name: str, role: Role
    ) -> Principal:
        """Create an account and authenticate it."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Drop the current session."""


class ProfileStore(ABC):
    """One JSON document per principal id."""

    @abstractmethod
    async def get(self, profile_id: str) -> Optional[dict[str, Any]]:
        """Return the raw document, or None when it does not exist."""

    @abstractmethod
    async def create(self, profile_id: str, document: dict[str, Any]) -> None:
        """Write a new document."""

    @abstractmethod
    async def patch(self, profile_id: str, fields: dict[str, Any]) -> None:
        """Update the given fields of an existing document."""


class TrackStore(ABC):
    """Track documents keyed by an opaque id."""

    @abstractmethod
    async def list_by_heat(self) -> list[dict[str, Any]]:
        """All tracks, hottest first."""

    @abstractmethod
    async def list_by_artist(self, artist_id: str) -> list[dict[str, Any]]:
        """Tracks uploaded by one artist, newest first."""

    @abstractmethod
    async def get(self, track_id: str) -> Optional[dict[str, Any]]:
        """Return the raw document, or None when it does not exist."""

    @abstractmethod
    async def create(self, document: dict[str, Any]) -> str:
        """Insert a track and return its id."""

    @abstractmethod
    async def increment_vote(self, track_id: str, direction: VoteDirection) -> None:
        """Add one to the counter for ``direction``, applied by the store."""

    @abstractmethod
    async def patch(self, track_id: str, fields: dict[str, Any]) -> None:
        """Update the given fields of an existing track."""


class ObjectStore(ABC):
    """Binary object storage returning retrievable URLs."""

    @abstractmethod
    async def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Upload ``data`` under ``path`` and return its URL."""


class KeyValueStore(ABC):
    """Local persistent string storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class AudioOutput(ABC):
    """Sound device driven by the playback controller."""

    @abstractmethod
    def load(self, url: str) -> None:
        """Stop whatever is playing and point the output at ``url``."""

    @abstractmethod
    async def play(self) -> None:
        """Start or resume; raises PlaybackError when the output refuses."""

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def seek(self, seconds: float) -> None:
        ...
