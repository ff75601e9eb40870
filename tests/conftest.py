"""Shared fakes for the WaxRadio tests.

Every port gets an in-memory implementation that records what it was asked
to do and can be told to fail. FakeScheduler is a manual clock: nothing
fires until a test calls ``advance``.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest

from waxradio.config import Settings
from waxradio.exceptions import AuthenticationError, ErrorKind, PlaybackError, TransientStoreError
from waxradio.models import Principal, Role, VoteDirection
from waxradio.ports import (
    AudioOutput, IdentityGateway, ObjectStore, ProfileStore, Subscription, TrackStore,
)
from waxradio.services.local_storage import InMemoryKeyValueStore


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeTimer:
    def __init__(self, deadline: float, callback: Callable[[], None]):
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler driven by ``advance`` instead of wall time."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []
        self.sleepers: list[tuple[float, asyncio.Future]] = []
        self.sleep_calls: list[float] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    async def sleep(self, delay: float) -> None:
        self.sleep_calls.append(delay)
        future = asyncio.get_running_loop().create_future()
        self.sleepers.append((self.now + delay, future))
        await future

    def time(self) -> float:
        return self.now

    @property
    def active_timers(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    async def advance(self, seconds: float) -> None:
        self.now += seconds
        for timer in sorted(self.active_timers, key=lambda t: t.deadline):
            if timer.deadline <= self.now and not timer.cancelled:
                timer.cancelled = True
                timer.callback()
        for deadline, future in list(self.sleepers):
            if deadline <= self.now and not future.done():
                future.set_result(None)
        self.sleepers = [(d, f) for d, f in self.sleepers if not f.done()]
        await settle()


class FakeSubscription(Subscription):
    def __init__(self, gateway: "FakeIdentityGateway"):
        self._gateway = gateway

    def unsubscribe(self) -> None:
        self._gateway.callback = None
        self._gateway.unsubscribed = True


class FakeIdentityGateway(IdentityGateway):
    """Gateway whose notifications are pushed by the test through ``emit``."""

    def __init__(self):
        self.callback = None
        self.unsubscribed = False
        self.accounts: dict[str, tuple[str, Principal]] = {}
        self.signed_out = 0
        self.fail_with: Optional[Exception] = None

    def on_principal_change(self, callback) -> Subscription:
        self.callback = callback
        return FakeSubscription(self)

    def emit(self, principal: Optional[Principal]) -> None:
        assert self.callback is not None, "controller is not subscribed"
        self.callback(principal)

    async def sign_in(self, email: str, password: str) -> Principal:
        if self.fail_with is not None:
            raise self.fail_with
        stored = self.accounts.get(email)
        if stored is None or stored[0] != password:
            raise AuthenticationError("Invalid email or password", kind=ErrorKind.VALIDATION)
        self.emit(stored[1])
        return stored[1]

    async def sign_up(self, email: str, password: str, display_name: str, role: Role) -> Principal:
        if self.fail_with is not None:
            raise self.fail_with
        principal = Principal(id=f"uid-{len(self.accounts) + 1}", email=email, display_name=display_name)
        self.accounts[email] = (password, principal)
        self.emit(principal)
        return principal

    async def sign_out(self) -> None:
        self.signed_out += 1
        if self.callback is not None:
            self.emit(None)


class FakeProfileStore(ProfileStore):
    """Profiles in a dict; ``get_failures`` are raised by successive gets."""

    def __init__(self, documents: Optional[dict[str, dict]] = None):
        self.documents = {k: dict(v) for k, v in (documents or {}).items()}
        self.get_failures: list[Exception] = []
        self.patch_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.gets: list[str] = []
        self.creates: list[tuple[str, dict]] = []
        self.patches: list[tuple[str, dict]] = []

    async def get(self, profile_id: str) -> Optional[dict[str, Any]]:
        self.gets.append(profile_id)
        if self.get_failures:
            raise self.get_failures.pop(0)
        document = self.documents.get(profile_id)
        return dict(document) if document is not None else None

    async def create(self, profile_id: str, document: dict[str, Any]) -> None:
        if self.create_error is not None:
            raise self.create_error
        self.creates.append((profile_id, dict(document)))
        self.documents[profile_id] = dict(document)

    async def patch(self, profile_id: str, fields: dict[str, Any]) -> None:
        if self.patch_error is not None:
            raise self.patch_error
        self.patches.append((profile_id, dict(fields)))
        self.documents.setdefault(profile_id, {}).update(fields)


class FakeTrackStore(TrackStore):
    def __init__(self, documents: Optional[list[dict]] = None):
        self.documents = {d["id"]: dict(d) for d in (documents or [])}
        self.list_error: Optional[Exception] = None
        self.increment_error: Optional[Exception] = None
        self.patch_error: Optional[Exception] = None
        self.get_error: Optional[Exception] = None
        self.increments: list[tuple[str, VoteDirection]] = []
        self.patches: list[tuple[str, dict]] = []
        self.next_id = 100

    async def list_by_heat(self) -> list[dict[str, Any]]:
        if self.list_error is not None:
            raise self.list_error
        return sorted((dict(d) for d in self.documents.values()), key=lambda d: -(d.get("heat_score") or 30))

    async def list_by_artist(self, artist_id: str) -> list[dict[str, Any]]:
        if self.list_error is not None:
            raise self.list_error
        return [dict(d) for d in self.documents.values() if d.get("artist_id") == artist_id]

    async def get(self, track_id: str) -> Optional[dict[str, Any]]:
        if self.get_error is not None:
            raise self.get_error
        document = self.documents.get(track_id)
        return dict(document) if document is not None else None

    async def create(self, document: dict[str, Any]) -> str:
        track_id = f"track-{self.next_id}"
        self.next_id += 1
        self.documents[track_id] = {**document, "id": track_id}
        return track_id

    async def increment_vote(self, track_id: str, direction: VoteDirection) -> None:
        if self.increment_error is not None:
            raise self.increment_error
        self.increments.append((track_id, direction))
        column = "upvotes" if direction is VoteDirection.UP else "downvotes"
        self.documents[track_id][column] = self.documents[track_id].get(column, 0) + 1

    async def patch(self, track_id: str, fields: dict[str, Any]) -> None:
        if self.patch_error is not None:
            raise self.patch_error
        self.patches.append((track_id, dict(fields)))
        self.documents[track_id].update(fields)


class FakeObjectStore(ObjectStore):
    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.error: Optional[Exception] = None

    async def put(self, path, data, content_type, on_progress=None) -> str:
        if self.error is not None:
            raise self.error
        self.objects[path] = (data, content_type)
        if on_progress is not None:
            from waxradio.schemas import UploadProgress
            on_progress(UploadProgress(progress=100.0, bytes_transferred=len(data), total_bytes=len(data)))
        return f"https://objects.test/{path}"


class FakeAudioOutput(AudioOutput):
    def __init__(self):
        self.loaded: list[str] = []
        self.playing = False
        self.play_calls = 0
        self.position = 0.0
        self.refuse_play = False

    def load(self, url: str) -> None:
        self.loaded.append(url)
        self.playing = False

    async def play(self) -> None:
        self.play_calls += 1
        if self.refuse_play:
            raise PlaybackError("autoplay blocked")
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def seek(self, seconds: float) -> None:
        self.position = seconds


def transient(message: str = "unavailable") -> TransientStoreError:
    return TransientStoreError(message)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url=None,
        supabase_key=None,
        auth_timeout_seconds=10,
        profile_fetch_max_attempts=3,
        profile_fetch_backoff_seconds=1.0,
        preview_cap_seconds=30,
        reconcile_votes=False,
    )


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def gateway() -> FakeIdentityGateway:
    return FakeIdentityGateway()


@pytest.fixture
def profile_store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
def local_storage() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def audio_output() -> FakeAudioOutput:
    return FakeAudioOutput()


@pytest.fixture
def alice() -> Principal:
    return Principal(id="uid-alice", email="alice@example.com", display_name="Alice")


@pytest.fixture
def bob() -> Principal:
    return Principal(id="uid-bob", email="bob@example.com")
