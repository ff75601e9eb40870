"""
Composition root: wires the controllers to their collaborators and exposes
the surface the presentation layer talks to.
"""
from typing import Optional

from waxradio.auth import SupabaseIdentityGateway
from waxradio.config import Settings, get_settings
from waxradio.crud import SupabaseProfileStore, SupabaseTrackStore
from waxradio.engagement import EngagementEngine
from waxradio.lifecycle import LifecycleController
from waxradio.logger import get_logger
from waxradio.models import LifecycleState, PlaybackSession
from waxradio.playback import PlaybackController
from waxradio.ports import (
    AudioOutput, IdentityGateway, KeyValueStore, ObjectStore, ProfileStore, TrackStore,
)
from waxradio.scheduling import Scheduler
from waxradio.schemas import Track
from waxradio.services.audio_output import NullAudioOutput
from waxradio.services.local_storage import JsonFileKeyValueStore
from waxradio.services.r2_service import R2ObjectStore

logger = get_logger("main")


class WaxRadioClient:
    """One signed-in (or signing-in) user session."""

    def __init__(
        self,
        lifecycle: LifecycleController,
        engagement: EngagementEngine,
    ):
        self.lifecycle = lifecycle
        self.engagement = engagement
        self._remove_listener = None

    async def __aenter__(self) -> "WaxRadioClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def start(self) -> None:
        self._remove_listener = self.lifecycle.add_listener(self._on_state_change)
        self.lifecycle.start()

    async def close(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        self.engagement.player.stop()
        await self.lifecycle.close()

    def _on_state_change(self, state: LifecycleState) -> None:
        if state is not LifecycleState.READY:
            # Nothing plays outside the dashboard
            self.engagement.player.stop()

    # Snapshots

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    @property
    def current_track(self) -> Optional[Track]:
        return self.engagement.player.current_track

    @property
    def playback(self) -> Optional[PlaybackSession]:
        return self.engagement.player.session

    # Intents

    async def complete_setup(self, fields) -> None:
        await self.lifecycle.complete_setup(fields)

    async def skip_setup(self) -> None:
        await self.lifecycle.skip_setup()

    async def complete_onboarding(self) -> None:
        await self.lifecycle.complete_onboarding()

    async def reset_onboarding(self) -> None:
        await self.lifecycle.reset_onboarding()

    async def vote(self, track_id: str, direction) -> int:
        return await self.engagement.vote(track_id, direction)

    def load_track(self, track: Track, as_preview: bool = True) -> PlaybackSession:
        return self.engagement.load_track(track, as_preview)

    async def toggle_play_pause(self) -> bool:
        return await self.engagement.toggle_play_pause()


def create_client(
    settings: Optional[Settings] = None,
    gateway: Optional[IdentityGateway] = None,
    profile_store: Optional[ProfileStore] = None,
    track_store: Optional[TrackStore] = None,
    object_store: Optional[ObjectStore] = None,
    local_storage: Optional[KeyValueStore] = None,
    audio_output: Optional[AudioOutput] = None,
    scheduler: Optional[Scheduler] = None,
) -> WaxRadioClient:
    """Build a client; collaborators default to the Supabase/R2 adapters."""
    settings = settings or get_settings()
    scheduler = scheduler or Scheduler()

    lifecycle = LifecycleController(
        gateway=gateway or SupabaseIdentityGateway(settings=settings),
        profile_store=profile_store or SupabaseProfileStore(settings=settings),
        local_storage=local_storage or JsonFileKeyValueStore(settings.local_storage_path),
        scheduler=scheduler,
        settings=settings,
    )
    player = PlaybackController(
        output=audio_output or NullAudioOutput(),
        scheduler=scheduler,
        settings=settings,
    )
    engagement = EngagementEngine(
        track_store=track_store or SupabaseTrackStore(settings=settings),
        player=player,
        object_store=object_store or R2ObjectStore(settings=settings),
        settings=settings,
    )
    logger.info(f"Created {settings.app_name} client (debug={settings.debug})")
    return WaxRadioClient(lifecycle, engagement)
