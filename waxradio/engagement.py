"""
Engagement engine: heat scores, votes, the track catalog and uploads.
"""
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from waxradio.config import Settings, get_settings
from waxradio.exceptions import (
    ConfigurationError, FileUploadError, PlaceholderTrackError, TrackNotFoundError,
    ValidationError, VoteError, WaxRadioException,
)
from waxradio.logger import get_logger
from waxradio.models import Principal, VoteDirection
from waxradio.playback import PlaybackController
from waxradio.ports import ObjectStore, ProgressCallback, TrackStore
from waxradio.schemas import PLACEHOLDER_PREFIX, Track, TrackUpload

logger = get_logger("engagement")

BASE_HEAT = 30
HEAT_RANGE = 80
PLACEHOLDER_VOTE_MESSAGE = (
    "Voting is disabled for placeholder tracks. Real tracks will appear here once artists upload music."
)


def calculate_heat_score(upvotes: int, downvotes: int) -> int:
    """
    Heat score from 30 (all down-votes, or no votes) to 110 (all up-votes).

    ``30 + 80 * up / total`` rounded half up, in integer arithmetic so the
    .5 cases do not depend on float representation.
    """
    if upvotes < 0 or downvotes < 0:
        raise ValueError("Vote counts cannot be negative")
    total = upvotes + downvotes
    if total == 0:
        return BASE_HEAT
    return BASE_HEAT + (2 * HEAT_RANGE * upvotes + total) // (2 * total)


def heat_level(score: int) -> float:
    """Percent of the heat range reached by ``score``, for progress bars."""
    return min(100.0, max(0.0, (score - BASE_HEAT) / HEAT_RANGE * 100))


def placeholder_tracks() -> list[Track]:
    """Stand-ins shown while the catalog is empty or unreachable."""
    now = datetime.now(timezone.utc)
    return [
        Track(
            id=f"{PLACEHOLDER_PREFIX}{index}",
            title="Your Song Here",
            artist="Unknown Artist",
            artist_id="placeholder",
            genre=genre,
            duration_seconds=duration,
            created_at=now,
            updated_at=now,
        )
        for index, (genre, duration) in enumerate(
            [("Hip Hop", 180), ("R&B", 210), ("Pop", 195)], start=1
        )
    ]


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name)


def _parse_direction(direction) -> VoteDirection:
    try:
        return VoteDirection(direction)
    except ValueError:
        raise ValidationError(f"Invalid vote direction: {direction!r}")


def _parse_tracks(documents: list[dict[str, Any]]) -> list[Track]:
    tracks = []
    for document in documents:
        try:
            tracks.append(Track(**document))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed track {document.get('id')}: {e}")
    return tracks


class EngagementEngine:
    """
    Holds the in-memory track list and drives votes and playback.

    The list is only ever replaced as a whole, so readers never observe a
    half-applied vote.
    """

    def __init__(
        self,
        track_store: TrackStore,
        player: PlaybackController,
        object_store: Optional[ObjectStore] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._track_store = track_store
        self._object_store = object_store
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.player = player
        self._tracks: tuple[Track, ...] = ()
        self.loading = False
        self.uploading = False

    @property
    def tracks(self) -> tuple[Track, ...]:
        return self._tracks

    def get_track(self, track_id: str) -> Track:
        for track in self._tracks:
            if track.id == track_id:
                return track
        raise TrackNotFoundError(f"Track not found: {track_id}")

    def _replace_track(self, updated: Track) -> None:
        self._tracks = tuple(updated if t.id == updated.id else t for t in self._tracks)

    # Catalog

    async def fetch_tracks(self) -> tuple[Track, ...]:
        """Load the catalog hottest first; placeholders when empty or unreachable."""
        self.loading = True
        try:
            tracks = _parse_tracks(await self._track_store.list_by_heat())
        except WaxRadioException as e:
            logger.error(f"Error fetching tracks: {e.message}")
            tracks = []
        finally:
            self.loading = False
        if not tracks:
            logger.info("No tracks available, showing placeholders")
            tracks = placeholder_tracks()
        self._tracks = tuple(tracks)
        return self._tracks

    async def fetch_artist_tracks(self, artist_id: str) -> list[Track]:
        """Tracks uploaded by ``artist_id``, newest first."""
        if not artist_id:
            raise ValidationError("Artist id is required")
        self.loading = True
        try:
            return _parse_tracks(await self._track_store.list_by_artist(artist_id))
        except WaxRadioException as e:
            logger.error(f"Error fetching tracks for artist {artist_id}: {e.message}")
            raise
        finally:
            self.loading = False

    # Votes

    async def vote(self, track_id: str, direction) -> int:
        """
        Record a vote and return the new heat score.

        Raises:
            TrackNotFoundError: the track is not in the current list
            PlaceholderTrackError: the track is a placeholder
            VoteError: the vote could not be persisted; nothing changed locally
        """
        direction = _parse_direction(direction)
        track = self.get_track(track_id)
        if track.is_placeholder:
            raise PlaceholderTrackError(PLACEHOLDER_VOTE_MESSAGE)

        upvotes = track.upvotes + (1 if direction is VoteDirection.UP else 0)
        downvotes = track.downvotes + (1 if direction is VoteDirection.DOWN else 0)
        heat_score = calculate_heat_score(upvotes, downvotes)
        now = self._clock()

        try:
            await self._track_store.increment_vote(track_id, direction)
            await self._track_store.patch(
                track_id, {"heat_score": heat_score, "updated_at": now.isoformat()}
            )
        except WaxRadioException as e:
            logger.error(f"Error voting on track {track_id}: {e.message}")
            raise VoteError("Failed to record vote", e.details or e.message, kind=e.kind) from e

        self._replace_track(track.model_copy(update={
            "upvotes": upvotes,
            "downvotes": downvotes,
            "heat_score": heat_score,
            "updated_at": now,
        }))
        logger.info(f"Voted {direction.value} on {track_id}, heat score {heat_score}")

        if self._settings.reconcile_votes:
            heat_score = await self._reconcile_heat(track_id, heat_score)
        return heat_score

    async def _reconcile_heat(self, track_id: str, heat_score: int) -> int:
        """Recompute the heat score from the stored counters, which may include
        votes from other listeners that the local snapshot missed."""
        try:
            document = await self._track_store.get(track_id)
            if document is None:
                return heat_score
            upvotes = int(document.get("upvotes") or 0)
            downvotes = int(document.get("downvotes") or 0)
            actual = calculate_heat_score(upvotes, downvotes)
            if actual != document.get("heat_score"):
                logger.info(f"Correcting heat score of {track_id}: {document.get('heat_score')} -> {actual}")
                await self._track_store.patch(
                    track_id, {"heat_score": actual, "updated_at": self._clock().isoformat()}
                )
        except WaxRadioException as e:
            logger.warning(f"Could not reconcile heat score for {track_id}: {e.message}")
            return heat_score

        try:
            track = self.get_track(track_id)
        except TrackNotFoundError:
            return actual
        self._replace_track(track.model_copy(update={
            "upvotes": upvotes,
            "downvotes": downvotes,
            "heat_score": actual,
        }))
        return actual

    async def vote_current(self, direction) -> int:
        """Vote on the loaded track, then unlock it or move on."""
        session = self.player.session
        if session is None:
            raise ValidationError("No track is loaded")
        if session.has_voted:
            raise ValidationError("You already voted on this track")
        direction = _parse_direction(direction)
        heat_score = await self.vote(session.track.id, direction)
        if self.player.session is not session:
            return heat_score
        if direction is VoteDirection.UP:
            await self.player.vote_up()
        else:
            self.player.vote_down()
        return heat_score

    # Playback

    def load_track(self, track: Track, as_preview: bool = True):
        return self.player.load_track(track, as_preview)

    async def toggle_play_pause(self) -> bool:
        return await self.player.toggle_play_pause()

    # Upload

    def _validate_upload(self, upload: TrackUpload) -> None:
        if not any(upload.audio_content_type.startswith(t) for t in self._settings.allowed_audio_types):
            raise ValidationError("File must be an audio file")
        if len(upload.audio_data) > self._settings.max_audio_size:
            raise ValidationError(
                f"File size must be less than {self._settings.max_audio_size // (1024 * 1024)}MB"
            )
        if upload.cover_art_data is None:
            return
        if not any(upload.cover_art_content_type.startswith(t) for t in self._settings.allowed_image_types):
            raise ValidationError("Cover art must be an image")
        if len(upload.cover_art_data) > self._settings.max_image_size:
            raise ValidationError(
                f"Image size must be less than {self._settings.max_image_size // (1024 * 1024)}MB"
            )

    async def upload_track(
        self,
        principal: Optional[Principal],
        upload: TrackUpload,
        on_progress: Optional[ProgressCallback] = None,
        artist_name: Optional[str] = None,
    ) -> Track:
        """Store the files, create the track document and put it first in the list."""
        if principal is None:
            raise ValidationError("User must be logged in")
        if self._object_store is None:
            raise ConfigurationError("No object store configured for uploads")
        self._validate_upload(upload)

        now = self._clock()
        stamp = int(now.timestamp() * 1000)
        self.uploading = True
        try:
            audio_path = f"tracks/{principal.id}/{stamp}_{sanitize_filename(upload.audio_filename)}"
            logger.info(f"Uploading audio for '{upload.title}' to {audio_path}")
            audio_url = await self._object_store.put(
                audio_path, upload.audio_data, upload.audio_content_type, on_progress
            )

            cover_art_url = ""
            if upload.cover_art_data is not None:
                cover_path = f"covers/{principal.id}/{stamp}_{sanitize_filename(upload.cover_art_filename)}"
                cover_art_url = await self._object_store.put(
                    cover_path, upload.cover_art_data, upload.cover_art_content_type
                )

            document = {
                "title": upload.title,
                "artist": artist_name or principal.default_display_name(),
                "artist_id": principal.id,
                "genre": upload.genre,
                "cover_art_url": cover_art_url,
                "audio_url": audio_url,
                # Same source until previews are cut separately
                "preview_url": audio_url,
                "duration_seconds": upload.duration_seconds,
                "heat_score": BASE_HEAT,
                "upvotes": 0,
                "downvotes": 0,
                "created_at": now.isoformat(),
                "updated_at": now.isoformat(),
            }
            track_id = await self._track_store.create(document)
        except FileUploadError:
            raise
        except WaxRadioException as e:
            logger.error(f"Error uploading track '{upload.title}': {e.message}")
            raise FileUploadError("Failed to upload track", e.details or e.message, kind=e.kind) from e
        finally:
            self.uploading = False

        track = Track(id=track_id, **document)
        self._tracks = (track,) + tuple(t for t in self._tracks if not t.is_placeholder)
        logger.info(f"Uploaded track {track_id}: {track.title}")
        return track
