"""
Preview-gated playback.

A loaded track starts as a capped preview. Voting it up unlocks the full
track; voting it down, skipping it, or letting the cap run out ends the
session and asks the host for the next track through the advance signal.
"""
import math
from typing import Callable, Optional

from waxradio.config import Settings, get_settings
from waxradio.exceptions import PlaceholderTrackError, PlaybackError
from waxradio.logger import get_logger
from waxradio.models import PlaybackMode, PlaybackSession, PlaybackStatus
from waxradio.ports import AudioOutput
from waxradio.scheduling import Scheduler, TimerHandle
from waxradio.schemas import Track

logger = get_logger("playback")

AdvanceListener = Callable[[Track], None]

PLACEHOLDER_PLAYBACK_MESSAGE = (
    "This is a placeholder track. Real tracks will appear here once artists upload music."
)


class PlaybackController:
    """Owns the single live PlaybackSession and its preview timer."""

    def __init__(
        self,
        output: AudioOutput,
        scheduler: Optional[Scheduler] = None,
        settings: Optional[Settings] = None,
    ):
        self._output = output
        self._scheduler = scheduler or Scheduler()
        self._settings = settings or get_settings()
        self._session: Optional[PlaybackSession] = None
        self._preview_timer: Optional[TimerHandle] = None
        self._advance_listeners: list[AdvanceListener] = []
        self.error: Optional[str] = None

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def current_track(self) -> Optional[Track]:
        return self._session.track if self._session else None

    @property
    def status(self) -> PlaybackStatus:
        return self._session.status if self._session else PlaybackStatus.IDLE

    @property
    def preview_timer_active(self) -> bool:
        return self._preview_timer is not None

    def on_advance(self, listener: AdvanceListener) -> Callable[[], None]:
        """Call ``listener`` with the finished track whenever a session ends
        and the host should move on. Returns an unsubscribe function."""
        self._advance_listeners.append(listener)

        def remove() -> None:
            if listener in self._advance_listeners:
                self._advance_listeners.remove(listener)
        return remove

    def load_track(self, track: Track, as_preview: bool = True) -> PlaybackSession:
        """Replace the current session with ``track``. Does not start playback."""
        if track.is_placeholder:
            raise PlaceholderTrackError(PLACEHOLDER_PLAYBACK_MESSAGE)
        self._discard_session()
        session = PlaybackSession(track, PlaybackMode.PREVIEW if as_preview else PlaybackMode.FULL)
        self._session = session
        self.error = None
        self._output.load(session.source_url)
        logger.info(f"Loaded {'preview' if as_preview else 'full track'}: {track.title}")
        return session

    async def play(self) -> bool:
        session = self._session
        if session is None:
            return False
        try:
            await self._output.play()
        except PlaybackError as e:
            logger.error(f"Play failed for {session.track.id}: {e.message}")
            if session is self._session:
                session.is_playing = False
                self.error = "Click play to start listening"
            return False
        if session is not self._session:
            return False

        session.is_playing = True
        if session.mode is PlaybackMode.PREVIEW:
            session.status = PlaybackStatus.PREVIEW_PLAYING
            if self._preview_timer is None:
                self._preview_timer = self._scheduler.call_later(
                    self._settings.preview_cap_seconds,
                    lambda: self._on_preview_expired(session),
                )
        else:
            session.status = PlaybackStatus.FULL_PLAYING
        return True

    def pause(self) -> None:
        if self._session is None:
            return
        self._output.pause()
        self._session.is_playing = False

    async def toggle_play_pause(self) -> bool:
        """Pause when playing, play otherwise. Returns whether audio is playing."""
        if self._session is None:
            return False
        if self._session.is_playing:
            self.pause()
            return False
        return await self.play()

    def seek(self, seconds: float) -> None:
        session = self._session
        if session is None:
            return
        seconds = max(0.0, seconds)
        if session.mode is PlaybackMode.PREVIEW:
            seconds = min(seconds, self._settings.preview_cap_seconds)
        self._output.seek(seconds)
        session.position_seconds = seconds

    def update_position(self, seconds: float) -> None:
        """Record the position reported by the output."""
        if self._session is not None:
            self._session.position_seconds = max(0.0, seconds)

    def time_remaining(self) -> int:
        session = self._session
        if session is None:
            return 0
        if session.mode is PlaybackMode.PREVIEW and not session.has_voted:
            return max(0, int(self._settings.preview_cap_seconds) - math.floor(session.position_seconds))
        return max(0, math.floor(session.track.duration_seconds - session.position_seconds))

    async def vote_up(self) -> bool:
        """Unlock the full track. Only a preview that has not been voted on qualifies."""
        session = self._session
        if session is None or session.has_voted or session.mode is not PlaybackMode.PREVIEW:
            return False
        was_playing = session.is_playing
        self._cancel_preview_timer()
        self._output.pause()

        full = PlaybackSession(session.track, PlaybackMode.FULL)
        self._session = full
        self._output.load(full.source_url)
        logger.info(f"Voted up, loading full track: {full.track.title}")
        if was_playing:
            await self.play()
        return True

    def vote_down(self) -> bool:
        session = self._session
        if session is None or session.has_voted:
            return False
        session.has_voted = True
        self._output.pause()
        logger.info(f"Voted down: {session.track.title}")
        self._finish(session)
        return True

    def skip(self) -> None:
        session = self._session
        if session is None:
            return
        self._output.pause()
        self._finish(session)

    def handle_ended(self) -> None:
        """Called by the output when the loaded source reaches its end."""
        session = self._session
        if session is not None:
            self._finish(session)

    def stop(self) -> None:
        """Drop the session without asking for the next track."""
        self._discard_session()

    def _on_preview_expired(self, session: PlaybackSession) -> None:
        if session is not self._session:
            return
        self._preview_timer = None
        self._output.pause()
        logger.info(f"Preview cap reached for {session.track.title}, skipping")
        self._finish(session)

    def _cancel_preview_timer(self) -> None:
        if self._preview_timer is not None:
            self._preview_timer.cancel()
            self._preview_timer = None

    def _discard_session(self) -> None:
        self._cancel_preview_timer()
        if self._session is not None:
            self._output.pause()
            self._session.is_playing = False
            self._session.status = PlaybackStatus.IDLE
            self._session = None

    def _finish(self, session: PlaybackSession) -> None:
        self._cancel_preview_timer()
        session.is_playing = False
        session.status = PlaybackStatus.IDLE
        self._session = None
        for listener in list(self._advance_listeners):
            try:
                listener(session.track)
            except Exception as e:
                logger.error(f"Advance listener failed: {e}", exc_info=True)
