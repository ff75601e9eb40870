"""
Supabase-backed profile and track stores.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial, wraps
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from waxradio.config import Settings, get_settings
from waxradio.exceptions import ConfigurationError, NotFoundError, StoreError, to_store_error
from waxradio.logger import get_logger
from waxradio.models import VoteDirection
from waxradio.ports import ProfileStore, TrackStore

logger = get_logger("crud")

# Thread pool for async execution of sync operations
_thread_pool = ThreadPoolExecutor(max_workers=10)

_supabase_client: Optional[Client] = None


def get_supabase_client(settings: Optional[Settings] = None) -> Client:
    """Get or create the shared Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        settings = settings or get_settings()
        if not settings.supabase_url or not settings.supabase_key:
            raise ConfigurationError("Supabase credentials are missing! Check your .env file.")
        _supabase_client = create_client(settings.supabase_url, settings.supabase_key)
        logger.info("Successfully initialized Supabase client")
    return _supabase_client


def run_in_thread(func):
    """Run a sync function in the thread pool."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_thread_pool, partial(func, *args, **kwargs))
    return wrapper


class SupabaseProfileStore(ProfileStore):
    """Profiles table, one row per principal id."""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._client = client
        self._table = self._settings.profiles_table

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client(self._settings)
        return self._client

    def _select(self, profile_id: str) -> Optional[Dict[str, Any]]:
        result = self.client.table(self._table).select("*").eq("id", profile_id).limit(1).execute()
        if result.data:
            return result.data[0]
        return None

    def _insert(self, document: Dict[str, Any]) -> None:
        result = self.client.table(self._table).insert(document).execute()
        if not result.data:
            raise StoreError("Failed to create profile", "No data returned from insert")

    def _update(self, profile_id: str, fields: Dict[str, Any]) -> None:
        result = self.client.table(self._table).update(fields).eq("id", profile_id).execute()
        if not result.data:
            raise NotFoundError(f"Profile not found: {profile_id}")

    async def get(self, profile_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await run_in_thread(self._select)(profile_id)
        except Exception as e:
            logger.error(f"Error fetching profile {profile_id}: {e}")
            raise to_store_error(e, "Failed to fetch profile") from e

    async def create(self, profile_id: str, document: Dict[str, Any]) -> None:
        try:
            await run_in_thread(self._insert)({**document, "id": profile_id})
            logger.info(f"Created profile: {profile_id}")
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Error creating profile {profile_id}: {e}")
            raise to_store_error(e, "Failed to create profile") from e

    async def patch(self, profile_id: str, fields: Dict[str, Any]) -> None:
        try:
            await run_in_thread(self._update)(profile_id, fields)
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Error updating profile {profile_id}: {e}")
            raise to_store_error(e, "Failed to update profile") from e


class SupabaseTrackStore(TrackStore):
    """Tracks table; vote counters are incremented server-side by an RPC."""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._client = client
        self._table = self._settings.tracks_table

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client(self._settings)
        return self._client

    def _list_by_heat(self) -> List[Dict[str, Any]]:
        response = self.client.table(self._table).select("*").order("heat_score", desc=True).execute()
        return response.data or []

    def _list_by_artist(self, artist_id: str) -> List[Dict[str, Any]]:
        response = (
            self.client.table(self._table)
            .select("*")
            .eq("artist_id", artist_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    def _select(self, track_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table(self._table).select("*").eq("id", track_id).limit(1).execute()
        if response.data:
            return response.data[0]
        return None

    def _insert(self, document: Dict[str, Any]) -> str:
        result = self.client.table(self._table).insert(document).execute()
        if not result.data:
            raise StoreError("Failed to insert track record - no data returned")
        return str(result.data[0]["id"])

    def _increment(self, track_id: str, direction: VoteDirection) -> None:
        column = "upvotes" if direction is VoteDirection.UP else "downvotes"
        self.client.rpc(
            self._settings.vote_increment_rpc, {"track_id": track_id, "counter": column}
        ).execute()

    def _update(self, track_id: str, fields: Dict[str, Any]) -> None:
        result = self.client.table(self._table).update(fields).eq("id", track_id).execute()
        if not result.data:
            raise NotFoundError(f"Track not found: {track_id}")

    async def list_by_heat(self) -> List[Dict[str, Any]]:
        try:
            tracks = await run_in_thread(self._list_by_heat)()
            logger.info(f"Retrieved {len(tracks)} tracks")
            return tracks
        except Exception as e:
            logger.error(f"Failed to list tracks: {e}")
            raise to_store_error(e, "Failed to list tracks") from e

    async def list_by_artist(self, artist_id: str) -> List[Dict[str, Any]]:
        try:
            return await run_in_thread(self._list_by_artist)(artist_id)
        except Exception as e:
            logger.error(f"Failed to list tracks for artist {artist_id}: {e}")
            raise to_store_error(e, "Failed to list artist tracks") from e

    async def get(self, track_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await run_in_thread(self._select)(track_id)
        except Exception as e:
            logger.error(f"Failed to retrieve track {track_id}: {e}")
            raise to_store_error(e, "Failed to retrieve track") from e

    async def create(self, document: Dict[str, Any]) -> str:
        try:
            track_id = await run_in_thread(self._insert)(document)
            logger.info(f"Successfully created track record with ID: {track_id}")
            return track_id
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Failed to create track record: {e}")
            raise to_store_error(e, "Failed to create track record") from e

    async def increment_vote(self, track_id: str, direction: VoteDirection) -> None:
        try:
            await run_in_thread(self._increment)(track_id, direction)
        except Exception as e:
            logger.error(f"Failed to increment {direction.value} votes on {track_id}: {e}")
            raise to_store_error(e, "Failed to record vote") from e

    async def patch(self, track_id: str, fields: Dict[str, Any]) -> None:
        try:
            await run_in_thread(self._update)(track_id, fields)
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Failed to update track {track_id}: {e}")
            raise to_store_error(e, "Failed to update track") from e
