"""
Session and profile lifecycle.

The controller follows the identity gateway, materializes the profile of the
signed-in principal, and exposes the screen the user should see as a single
LifecycleState computed by ``compute_lifecycle_state``.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from waxradio.config import Settings, get_settings
from waxradio.exceptions import ValidationError, WaxRadioException, user_message
from waxradio.logger import get_logger
from waxradio.models import FetchOutcome, FetchStatus, LifecycleState, Principal, Role
from waxradio.ports import IdentityGateway, KeyValueStore, ProfileStore, Subscription
from waxradio.retry import RetryPolicy
from waxradio.scheduling import Scheduler, TimerHandle
from waxradio.schemas import Profile, ProfileSetupFields

logger = get_logger("lifecycle")

StateListener = Callable[[LifecycleState], None]

EDITABLE_PROFILE_FIELDS = ("display_name", "bio", "avatar_url")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_lifecycle_state(
    principal: Optional[Principal],
    profile: Optional[Profile],
    outcome: FetchOutcome,
) -> LifecycleState:
    """Screen for the given principal, profile and fetch outcome."""
    if outcome.status is FetchStatus.AWAITING_AUTH:
        return LifecycleState.LOADING
    if principal is None:
        return LifecycleState.UNAUTHENTICATED
    if outcome.status is FetchStatus.FAILED:
        return LifecycleState.AUTH_ERROR
    if outcome.status is not FetchStatus.LOADED or profile is None:
        return LifecycleState.PROFILE_LOADING
    if not profile.setup_complete:
        return LifecycleState.PROFILE_SETUP_REQUIRED
    if not profile.onboarded:
        return LifecycleState.ONBOARDING_REQUIRED
    return LifecycleState.READY


def migrate_profile_document(document: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Backfill completion flags on documents created before they existed.

    Returns the document with defaults applied and the patch that adds them.
    The patch is empty for a document that already has both flags.
    """
    patch = {}
    if document.get("setup_complete") is None:
        role = document.get("role") or Role.FAN.value
        bio = document.get("bio") or ""
        patch["setup_complete"] = role == Role.FAN.value or bool(bio.strip())
    if document.get("onboarded") is None:
        # Existing users never saw the tutorial gate
        patch["onboarded"] = True
    return {**document, **patch}, patch


def new_profile_document(principal: Principal, role: Role, now: datetime) -> dict[str, Any]:
    """Minimal profile for a principal signing in for the first time."""
    profile = Profile(
        id=principal.id,
        email=principal.email or "",
        display_name=principal.default_display_name(),
        role=role,
        bio="",
        avatar_url=principal.avatar_url or "",
        # An artist must describe their craft; a fan may proceed immediately
        setup_complete=role is Role.FAN,
        onboarded=False,
        created_at=now,
        updated_at=now,
    )
    return profile.to_document()


def profile_from_document(principal: Principal, document: dict[str, Any]) -> Profile:
    """Parse a stored document for ``principal``."""
    data = dict(document)
    data["id"] = principal.id
    data["email"] = data.get("email") or principal.email or ""
    if data.get("role") not in (Role.ARTIST.value, Role.FAN.value):
        if data.get("role") is not None:
            logger.warning(f"Unknown role {data['role']!r} on profile {principal.id}, treating as fan")
        data["role"] = Role.FAN.value
    return Profile(**data)


class LifecycleController:
    """
    Owns the lifecycle state machine for one client instance.

    Use as an async context manager, or call ``start()`` from a running event
    loop and ``close()`` when done; closing releases the gateway subscription
    and cancels pending timers and fetches.
    """

    def __init__(
        self,
        gateway: IdentityGateway,
        profile_store: ProfileStore,
        local_storage: KeyValueStore,
        scheduler: Optional[Scheduler] = None,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self._settings = settings or get_settings()
        self._gateway = gateway
        self._profile_store = profile_store
        self._local_storage = local_storage
        self._scheduler = scheduler or Scheduler()
        self._retry_policy = retry_policy or RetryPolicy.from_settings(self._settings)

        self._principal: Optional[Principal] = None
        self._profile: Optional[Profile] = None
        self._outcome = FetchOutcome.awaiting_auth()
        self._state = LifecycleState.LOADING
        self._generation = 0

        self._subscription: Optional[Subscription] = None
        self._auth_timer: Optional[TimerHandle] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._pending_signup: Optional[tuple[str, Role]] = None
        self._listeners: list[StateListener] = []
        self._closed = False

    async def __aenter__(self) -> "LifecycleController":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Snapshots

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def principal(self) -> Optional[Principal]:
        return self._principal

    @property
    def profile(self) -> Optional[Profile]:
        return self._profile

    @property
    def outcome(self) -> FetchOutcome:
        return self._outcome

    @property
    def error_message(self) -> Optional[str]:
        if self._outcome.status is FetchStatus.FAILED:
            return self._outcome.message
        return None

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with every new state; returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    # Subscription lifetime

    def start(self) -> None:
        """Subscribe to the gateway and arm the auth timeout."""
        if self._closed:
            raise RuntimeError("LifecycleController is closed")
        if self._subscription is not None:
            return
        logger.info("Starting lifecycle controller")
        self._auth_timer = self._scheduler.call_later(
            self._settings.auth_timeout_seconds, self._on_auth_timeout
        )
        self._subscription = self._gateway.on_principal_change(self._on_principal_change)

    async def close(self) -> None:
        """Release the subscription and cancel everything pending."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        task = self._fetch_task
        self._cancel_pending()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        self._listeners.clear()
        logger.info("Lifecycle controller closed")

    def _cancel_pending(self) -> None:
        if self._auth_timer is not None:
            self._auth_timer.cancel()
            self._auth_timer = None
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None

    # Gateway events

    def _on_auth_timeout(self) -> None:
        self._auth_timer = None
        if self._outcome.status is FetchStatus.AWAITING_AUTH:
            logger.warning(
                f"Auth state did not resolve within {self._settings.auth_timeout_seconds}s, "
                "showing sign-in"
            )
            self._outcome = FetchOutcome.timed_out()
            self._publish()

    def _on_principal_change(self, principal: Optional[Principal]) -> None:
        if self._closed:
            return
        current = self._principal
        if principal is not None and current is not None and principal.id == current.id:
            logger.debug(f"Ignoring repeated notification for principal {principal.id}")
            return

        self._generation += 1
        self._cancel_pending()
        self._principal = principal
        self._profile = None

        if principal is None:
            logger.info("No principal, clearing profile")
            self._outcome = FetchOutcome.signed_out()
            self._publish()
            return

        logger.info(f"Principal signed in: {principal.id}")
        self._begin_fetch(principal)

    def _begin_fetch(self, principal: Principal) -> None:
        self._outcome = FetchOutcome.pending()
        self._publish()
        self._fetch_task = asyncio.get_running_loop().create_task(
            self._load_profile(principal, self._generation)
        )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    # Profile loading

    async def _load_profile(self, principal: Principal, generation: int) -> None:
        attempt = 0
        while self._is_current(generation):
            attempt += 1
            try:
                logger.info(f"Fetching profile for {principal.id} (attempt {attempt})")
                profile = await self._resolve_profile(principal, generation)
            except Exception as e:
                if not self._is_current(generation):
                    return
                decision = self._retry_policy.evaluate(attempt, e)
                if decision.is_retry:
                    logger.warning(
                        f"Attempt {attempt} failed to load profile {principal.id}: {e}. "
                        f"Retrying in {decision.delay} seconds..."
                    )
                    self._outcome = FetchOutcome.pending(attempts=attempt)
                    await self._scheduler.sleep(decision.delay)
                    continue
                message = user_message(decision.kind, getattr(e, "message", None) or str(e))
                logger.error(
                    f"Failed to load profile {principal.id} after {attempt} attempt(s) "
                    f"({decision.kind.value}): {e}"
                )
                self._outcome = FetchOutcome.failed(decision.kind, message, attempt)
                self._publish()
                return

            if profile is None or not self._is_current(generation):
                return
            self._profile = self._keep_completed_flags(profile)
            self._outcome = FetchOutcome.loaded(attempt)
            self._publish()
            return

    async def _resolve_profile(self, principal: Principal, generation: int) -> Optional[Profile]:
        document = await asyncio.wait_for(
            self._profile_store.get(principal.id),
            timeout=self._settings.profile_fetch_timeout_seconds,
        )
        if not self._is_current(generation):
            return None

        if document is None:
            profile = await self._create_profile(principal, generation)
        else:
            profile = await self._migrate_profile(principal, document, generation)
        if profile is None:
            return None
        return await self._reconcile_local_flags(principal, profile, generation)

    async def _create_profile(self, principal: Principal, generation: int) -> Optional[Profile]:
        role = self._role_for_new_profile(principal)
        document = new_profile_document(principal, role, utcnow())
        logger.info(f"Profile not found for {principal.id}, creating minimal {role.value} profile")
        if not self._is_current(generation):
            return None
        await self._profile_store.create(principal.id, document)
        self._pending_signup = None
        return profile_from_document(principal, document)

    def _role_for_new_profile(self, principal: Principal) -> Role:
        if self._pending_signup is not None:
            email, role = self._pending_signup
            if email == (principal.email or "").lower():
                return role
        if principal.role_hint is not None:
            return Role(principal.role_hint)
        return Role.FAN

    async def _migrate_profile(
        self, principal: Principal, document: dict[str, Any], generation: int
    ) -> Optional[Profile]:
        migrated, patch = migrate_profile_document(document)
        if patch and self._is_current(generation):
            logger.info(f"Backfilling {sorted(patch)} on profile {principal.id}")
            try:
                await self._profile_store.patch(
                    principal.id, {**patch, "updated_at": utcnow().isoformat()}
                )
            except WaxRadioException as e:
                logger.error(f"Failed to migrate profile {principal.id}: {e.message}")
        if not self._is_current(generation):
            return None
        return profile_from_document(principal, migrated)

    async def _reconcile_local_flags(
        self, principal: Principal, profile: Profile, generation: int
    ) -> Optional[Profile]:
        if profile.onboarded:
            return profile
        if self._read_local(self._settings.onboarding_storage_key) != principal.id:
            return profile
        logger.info(f"Onboarding for {principal.id} was saved locally, syncing to the profile")
        try:
            await self._profile_store.patch(
                principal.id, {"onboarded": True, "updated_at": utcnow().isoformat()}
            )
        except WaxRadioException as e:
            logger.error(f"Failed to sync local onboarding flag for {principal.id}: {e.message}")
        if not self._is_current(generation):
            return None
        return profile.model_copy(update={"onboarded": True})

    def _keep_completed_flags(self, fetched: Profile) -> Profile:
        """A read of the same principal never clears a flag held locally."""
        held = self._profile
        if held is None or held.id != fetched.id:
            return fetched
        return fetched.model_copy(update={
            "setup_complete": fetched.setup_complete or held.setup_complete,
            "onboarded": fetched.onboarded or held.onboarded,
        })

    def _supersede_fetch(self) -> None:
        """Drop a fetch still in flight; a confirmed local write is newer."""
        if self._fetch_task is None or self._fetch_task.done():
            return
        logger.info(f"Local write supersedes the pending profile fetch for {self._principal.id}")
        self._generation += 1
        self._fetch_task.cancel()
        self._fetch_task = None
        self._outcome = FetchOutcome.loaded(max(1, self._outcome.attempts))

    def retry(self) -> None:
        """Restart the whole profile fetch with a fresh retry budget."""
        if self._closed:
            raise RuntimeError("LifecycleController is closed")
        if self._principal is None:
            raise ValidationError("Sign in before retrying")
        logger.info(f"Manual retry of profile fetch for {self._principal.id}")
        self._generation += 1
        self._cancel_pending()
        self._begin_fetch(self._principal)

    # Identity operations

    async def sign_in(self, email: str, password: str) -> Principal:
        if not email or not email.strip() or not password:
            raise ValidationError("Email and password are required")
        return await self._gateway.sign_in(email.strip(), password)

    async def sign_up(self, email: str, password: str, display_name: str, role: Role) -> Principal:
        if not email or not email.strip() or not password:
            raise ValidationError("Email and password are required")
        if not display_name or not display_name.strip():
            raise ValidationError("Display name is required")
        role = Role(role)
        self._pending_signup = (email.strip().lower(), role)
        try:
            return await self._gateway.sign_up(email.strip(), password, display_name.strip(), role)
        except WaxRadioException:
            self._pending_signup = None
            raise

    async def sign_out(self) -> None:
        await self._gateway.sign_out()
        # Do not wait for the gateway notification to leave the signed-in screens
        self._on_principal_change(None)

    # Profile writes

    def _require_profile(self) -> Profile:
        if self._principal is None or self._profile is None:
            raise ValidationError("No profile is loaded")
        return self._profile

    async def _write_profile(self, updates: dict[str, Any]) -> bool:
        """Patch the current profile and mirror it locally. Returns False when
        the principal changed while the write was in flight."""
        self._require_profile()
        generation = self._generation
        principal_id = self._principal.id
        now = utcnow()
        await self._profile_store.patch(principal_id, {**updates, "updated_at": now.isoformat()})
        if not self._is_current(generation):
            logger.info(f"Principal changed during profile write for {principal_id}, discarding")
            return False
        self._profile = self._profile.model_copy(update={**updates, "updated_at": now})
        self._supersede_fetch()
        self._publish()
        return True

    async def complete_setup(self, fields) -> None:
        """Save the setup form and mark setup complete."""
        profile = self._require_profile()
        if not isinstance(fields, ProfileSetupFields):
            try:
                fields = ProfileSetupFields(**fields)
            except PydanticValidationError as e:
                raise ValidationError("Invalid profile setup fields", str(e))
        if profile.role is Role.ARTIST and not fields.bio:
            raise ValidationError("Artists must describe their craft in the bio")

        updates = {"display_name": fields.display_name, "bio": fields.bio, "setup_complete": True}
        if fields.avatar_url:
            updates["avatar_url"] = fields.avatar_url
        await self._write_profile(updates)
        logger.info(f"Profile setup completed for {profile.id}")

    async def skip_setup(self) -> None:
        profile = self._require_profile()
        await self._write_profile({"setup_complete": True})
        logger.info(f"Profile setup skipped for {profile.id}")

    async def update_profile(self, **fields) -> None:
        """Edit display name, bio or avatar. Never clears completion flags."""
        profile = self._require_profile()
        unknown = set(fields) - set(EDITABLE_PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        updates = {key: (value or "").strip() for key, value in fields.items()}
        if "display_name" in updates and not updates["display_name"]:
            raise ValidationError("Display name cannot be empty")
        if updates.get("bio") and not profile.setup_complete:
            # Describing yourself completes setup
            updates["setup_complete"] = True
        if updates:
            await self._write_profile(updates)

    async def complete_onboarding(self) -> None:
        """Mark the tutorial done. A failed write still lets the user through."""
        profile = self._require_profile()
        generation = self._generation
        try:
            await self._write_profile({"onboarded": True})
            logger.info(f"Onboarding completed for {profile.id}")
            return
        except WaxRadioException as e:
            logger.error(f"Failed to save onboarding completion for {profile.id}: {e.message}")
        if not self._is_current(generation):
            return
        self._write_local(self._settings.onboarding_storage_key, profile.id)
        logger.info("Onboarding saved to local storage as fallback")
        self._profile = self._profile.model_copy(update={"onboarded": True})
        self._supersede_fetch()
        self._publish()

    async def reset_onboarding(self) -> None:
        """Show the tutorial again."""
        profile = self._require_profile()
        generation = self._generation
        try:
            await self._profile_store.patch(
                profile.id, {"onboarded": False, "updated_at": utcnow().isoformat()}
            )
        except WaxRadioException as e:
            logger.error(f"Failed to reset onboarding for {profile.id}: {e.message}")
        if not self._is_current(generation):
            return
        self._remove_local(self._settings.onboarding_storage_key)
        self._profile = self._profile.model_copy(update={"onboarded": False})
        self._supersede_fetch()
        self._publish()
        logger.info(f"Onboarding reset for {profile.id}")

    # Local storage

    def _read_local(self, key: str) -> Optional[str]:
        try:
            return self._local_storage.get(key)
        except OSError as e:
            logger.error(f"Failed to read local storage key {key}: {e}")
            return None

    def _write_local(self, key: str, value: str) -> None:
        try:
            self._local_storage.set(key, value)
        except OSError as e:
            logger.error(f"Failed to write local storage key {key}: {e}")

    def _remove_local(self, key: str) -> None:
        try:
            self._local_storage.remove(key)
        except OSError as e:
            logger.error(f"Failed to remove local storage key {key}: {e}")

    # Publication

    def _publish(self) -> None:
        state = compute_lifecycle_state(self._principal, self._profile, self._outcome)
        if state is self._state:
            return
        logger.info(f"Lifecycle state: {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Lifecycle listener failed: {e}", exc_info=True)
