"""Tests for the Supabase and R2 adapters against mocked SDK clients."""

import asyncio
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from postgrest.exceptions import APIError

from waxradio.auth import SupabaseIdentityGateway, principal_from_user
from waxradio.crud import SupabaseProfileStore, SupabaseTrackStore
from waxradio.exceptions import (
    AuthenticationError, ConfigurationError, ErrorKind, FileUploadError, NotFoundError,
    PermissionDeniedError, TransientStoreError,
)
from waxradio.models import Role, VoteDirection
from waxradio.services.r2_service import R2ObjectStore


def user(user_id="uid-alice", email="alice@example.com", **metadata):
    return SimpleNamespace(id=user_id, email=email, user_metadata=metadata)


async def wait_for_pushes(received, count):
    for _ in range(200):
        if len(received) >= count:
            return
        await asyncio.sleep(0.01)


@pytest.fixture
def client():
    return MagicMock()


class TestSupabaseProfileStore:
    """Tests for the profiles table adapter."""

    @pytest.mark.asyncio
    async def test_get_returns_first_row(self, client, settings):
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[{"id": "uid-alice", "role": "fan"}])
        store = SupabaseProfileStore(client=client, settings=settings)

        document = await store.get("uid-alice")

        assert document == {"id": "uid-alice", "role": "fan"}
        client.table.assert_called_with("profiles")
        client.table.return_value.select.return_value.eq.assert_called_with("id", "uid-alice")

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, client, settings):
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[])
        store = SupabaseProfileStore(client=client, settings=settings)

        assert await store.get("uid-nobody") is None

    @pytest.mark.asyncio
    async def test_get_classifies_errors(self, client, settings):
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.side_effect = APIError({"code": "42501", "message": "permission denied", "hint": None, "details": None})
        store = SupabaseProfileStore(client=client, settings=settings)

        with pytest.raises(PermissionDeniedError):
            await store.get("uid-alice")

    @pytest.mark.asyncio
    async def test_create_includes_id(self, client, settings):
        client.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[{"id": "uid-alice"}])
        store = SupabaseProfileStore(client=client, settings=settings)

        await store.create("uid-alice", {"role": "fan"})

        client.table.return_value.insert.assert_called_with({"role": "fan", "id": "uid-alice"})

    @pytest.mark.asyncio
    async def test_patch_missing_row(self, client, settings):
        client.table.return_value.update.return_value.eq.return_value.execute.return_value = MagicMock(data=[])
        store = SupabaseProfileStore(client=client, settings=settings)

        with pytest.raises(NotFoundError):
            await store.patch("uid-alice", {"onboarded": True})

    def test_missing_credentials(self, settings):
        store = SupabaseProfileStore(settings=settings)
        with pytest.raises(ConfigurationError):
            store.client


class TestSupabaseTrackStore:
    """Tests for the tracks table adapter."""

    @pytest.mark.asyncio
    async def test_list_by_heat(self, client, settings):
        ordered = client.table.return_value.select.return_value.order.return_value
        ordered.execute.return_value = MagicMock(data=[{"id": "t1"}])
        store = SupabaseTrackStore(client=client, settings=settings)

        assert await store.list_by_heat() == [{"id": "t1"}]
        client.table.return_value.select.return_value.order.assert_called_with("heat_score", desc=True)

    @pytest.mark.asyncio
    async def test_increment_vote_uses_rpc(self, client, settings):
        store = SupabaseTrackStore(client=client, settings=settings)

        await store.increment_vote("t1", VoteDirection.DOWN)

        client.rpc.assert_called_with("increment_track_vote", {"track_id": "t1", "counter": "downvotes"})

    @pytest.mark.asyncio
    async def test_create_returns_id(self, client, settings):
        client.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[{"id": 42}])
        store = SupabaseTrackStore(client=client, settings=settings)

        assert await store.create({"title": "Song"}) == "42"

    @pytest.mark.asyncio
    async def test_network_failure_is_transient(self, client, settings):
        client.rpc.return_value.execute.side_effect = ConnectionError("reset by peer")
        store = SupabaseTrackStore(client=client, settings=settings)

        with pytest.raises(TransientStoreError):
            await store.increment_vote("t1", VoteDirection.UP)


class TestSupabaseIdentityGateway:
    """Tests for the auth adapter."""

    def test_principal_from_user(self):
        principal = principal_from_user(user(display_name="Alice", role="artist"))
        assert principal.id == "uid-alice"
        assert principal.display_name == "Alice"
        assert principal.role_hint is Role.ARTIST
        assert principal_from_user(None) is None

    def test_unknown_role_metadata_ignored(self):
        assert principal_from_user(user(role="admin")).role_hint is None

    @pytest.mark.asyncio
    async def test_pushes_current_session_then_changes(self, client, settings):
        client.auth.get_session.return_value = None
        gateway = SupabaseIdentityGateway(client=client, settings=settings)
        received = []

        subscription = gateway.on_principal_change(received.append)
        await wait_for_pushes(received, 1)
        assert received == [None]

        handler = client.auth.on_auth_state_change.call_args[0][0]
        handler("SIGNED_IN", SimpleNamespace(user=user()))
        await asyncio.sleep(0)
        assert received[-1].id == "uid-alice"

        subscription.unsubscribe()
        subscription.unsubscribe()
        client.auth.on_auth_state_change.return_value.unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_current_session_read_off_the_loop(self, client, settings):
        loop_thread = threading.get_ident()
        read_threads = []

        def get_session():
            read_threads.append(threading.get_ident())
            return SimpleNamespace(user=user())

        client.auth.get_session.side_effect = get_session
        gateway = SupabaseIdentityGateway(client=client, settings=settings)
        received = []

        gateway.on_principal_change(received.append)
        assert received == []
        await wait_for_pushes(received, 1)

        assert received[0].id == "uid-alice"
        assert read_threads and read_threads[0] != loop_thread

    @pytest.mark.asyncio
    async def test_session_read_failure_pushes_no_principal(self, client, settings):
        client.auth.get_session.side_effect = ConnectionError("refresh failed")
        gateway = SupabaseIdentityGateway(client=client, settings=settings)
        received = []

        gateway.on_principal_change(received.append)
        await wait_for_pushes(received, 1)

        assert received == [None]

    @pytest.mark.asyncio
    async def test_sign_up_sends_role_metadata(self, client, settings):
        client.auth.sign_up.return_value = SimpleNamespace(user=user(role="artist"))
        gateway = SupabaseIdentityGateway(client=client, settings=settings)

        principal = await gateway.sign_up("alice@example.com", "secret", "Alice", Role.ARTIST)

        payload = client.auth.sign_up.call_args[0][0]
        assert payload["options"]["data"] == {"display_name": "Alice", "role": "artist"}
        assert principal.role_hint is Role.ARTIST

    @pytest.mark.asyncio
    async def test_sign_in_failure(self, client, settings):
        client.auth.sign_in_with_password.side_effect = Exception("Invalid login credentials")
        gateway = SupabaseIdentityGateway(client=client, settings=settings)

        with pytest.raises(AuthenticationError) as exc_info:
            await gateway.sign_in("alice@example.com", "wrong")
        assert exc_info.value.message == "Invalid email or password"


class TestR2ObjectStore:
    """Tests for the R2 upload adapter."""

    @pytest.fixture
    def r2_settings(self, settings):
        return settings.model_copy(update={"r2_endpoint": "https://r2.test"})

    @pytest.mark.asyncio
    async def test_put_reports_progress(self, client, r2_settings):
        def upload(fileobj, bucket, key, ExtraArgs=None, Callback=None):
            data = fileobj.read()
            Callback(len(data) // 2)
            Callback(len(data) - len(data) // 2)

        client.upload_fileobj.side_effect = upload
        store = R2ObjectStore(client=client, settings=r2_settings)
        events = []

        url = await store.put("tracks/uid-alice/1_song.mp3", b"0123456789", "audio/mpeg", events.append)
        await asyncio.sleep(0)

        assert url == "https://r2.test/waxradio-audio/tracks/uid-alice/1_song.mp3"
        assert [e.progress for e in events] == [50.0, 100.0]
        extra_args = client.upload_fileobj.call_args.kwargs["ExtraArgs"]
        assert extra_args["ContentType"] == "audio/mpeg"

    @pytest.mark.asyncio
    async def test_images_go_to_image_bucket(self, client, r2_settings):
        store = R2ObjectStore(client=client, settings=r2_settings)
        url = await store.put("covers/uid-alice/1_cover.png", b"png", "image/png")
        assert url == "https://r2.test/waxradio-images/covers/uid-alice/1_cover.png"

    @pytest.mark.asyncio
    async def test_put_failure(self, client, r2_settings):
        client.upload_fileobj.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )
        store = R2ObjectStore(client=client, settings=r2_settings)

        with pytest.raises(FileUploadError) as exc_info:
            await store.put("tracks/uid-alice/1_song.mp3", b"abc", "audio/mpeg")
        assert exc_info.value.kind is ErrorKind.PERMISSION

    def test_missing_credentials(self, settings):
        with pytest.raises(ConfigurationError):
            R2ObjectStore(settings=settings).client
