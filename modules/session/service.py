"""
Session manager implementation.

Owns the authentication session: login, registration, logout, password
and profile maintenance, and the notification of session transitions to
observers. Identity-provider state is the source of truth for "signed in";
the profile document is merged in best-effort.
"""

import asyncio
import logging
from contextlib import contextmanager, suppress
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from modules.errors import ErrorClassifier, Result
from providers.base import Credential, DocumentStore, IdentityProvider
from providers.factory import get_providers
from shared.config import Settings, get_settings
from shared.exceptions import RosterError

from .exceptions import EmptyUpdateError, InvalidEmailError, NotSignedInError, WeakPasswordError
from .interfaces import ISessionManager, SessionObserver
from .models import ProfileDocument, ProfileInput, ProfileUpdate, SessionState, UserView
from .reconciler import ProfileReconciler
from .repository import ProfileRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

_email_adapter: TypeAdapter[str] = TypeAdapter(EmailStr)


def normalize_email(email: Optional[str]) -> str:
    """Trim and lower-case an email address."""
    return (email or "").strip().lower()


class SessionManager(ISessionManager):
    """
    Implementation of the session manager.

    Transitions (login, register, logout, password change, provider
    notifications) are serialised by one lock, so concurrent calls queue
    rather than interleave. Provider notifications are delivered through a
    queue and applied in order by a background task started with start().

    Observers are notified only on real transitions: a sign-in of a
    different user, or a sign-out. Token refreshes for the same user
    update the credential silently.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        reconciler: Optional[ProfileReconciler] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self._settings = settings or get_settings()
        self._identity = identity
        self._profiles = ProfileRepository(store, self._settings.profiles_collection)
        self._reconciler = reconciler or ProfileReconciler()
        self._classifier = classifier or ErrorClassifier()

        self._state = SessionState.SIGNED_OUT
        self._credential: Optional[Credential] = None
        self._user: Optional[UserView] = None

        self._observers: dict[int, SessionObserver] = {}
        self._next_observer_id = 0

        self._lock = asyncio.Lock()
        self._events: asyncio.Queue[Optional[Credential]] = asyncio.Queue()
        self._pump: Optional[asyncio.Task] = None
        self._unobserve_provider: Optional[Callable[[], None]] = None
        self._provider_call_depth = 0

    # -------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        self._expire_stale_session()
        return self._state

    @property
    def credential(self) -> Optional[Credential]:
        self._expire_stale_session()
        return self._credential

    @property
    def current_user(self) -> Optional[UserView]:
        """The signed-in user, or None if signed out or the token has expired."""
        self._expire_stale_session()
        if self._credential is None:
            return None
        return self._user

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    async def start(self) -> None:
        """
        Begin following identity-provider notifications.

        A session the provider already holds (for example one restored
        from storage) is applied as the first notification.
        """
        if self._pump is not None:
            return

        self._unobserve_provider = self._identity.observe(self._on_provider_change)
        self._pump = asyncio.create_task(self._pump_events())

        try:
            existing = await self._identity.current_credential()
        except Exception as exc:
            error = self._classifier.classify_exception(exc)
            logger.warning(f"Could not restore provider session: {error.category.value}: {error.detail}")
            return

        if existing is not None:
            self._events.put_nowait(existing)

    async def close(self) -> None:
        """Stop following provider notifications."""
        if self._unobserve_provider is not None:
            self._unobserve_provider()
            self._unobserve_provider = None

        if self._pump is not None:
            self._pump.cancel()
            with suppress(asyncio.CancelledError):
                await self._pump
            self._pump = None

    async def wait_for_events(self) -> None:
        """Wait until every queued provider notification has been applied."""
        await self._events.join()

    async def __aenter__(self) -> "SessionManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------

    def observe_session_changes(self, callback: SessionObserver) -> Callable[[], None]:
        observer_id = self._next_observer_id
        self._next_observer_id += 1
        self._observers[observer_id] = callback

        def unsubscribe() -> None:
            self._observers.pop(observer_id, None)

        return unsubscribe

    def _notify(self, user: Optional[UserView]) -> None:
        for observer in list(self._observers.values()):
            try:
                observer(user)
            except Exception:
                logger.exception("Session observer raised")

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Result[UserView]:
        email = normalize_email(email)

        async with self._lock:
            previous_state = self._state
            self._state = SessionState.AUTHENTICATING
            try:
                with self._provider_call():
                    credential = await self._identity.sign_in(email, password)
            except Exception as exc:
                self._state = previous_state
                return self._failure("login", exc)

            user_id = credential.user.id
            profile = await self._best_effort("fetch profile", self._profiles.get(user_id))
            await self._best_effort("record last login", self._profiles.touch_last_login(user_id))

            user = self._reconciler.reconcile(credential.user, profile)
            self._enter_signed_in(credential, user)
            return Result.success(user)

    async def register(self, profile_input: ProfileInput) -> Result[UserView]:
        email = normalize_email(profile_input.email)
        try:
            self._validate_email(email)
            self._validate_password(profile_input.password)
        except RosterError as exc:
            return self._failure("register", exc)

        async with self._lock:
            # A failed pre-check is not fatal: the provider enforces uniqueness too
            if await self._best_effort("check existing profile", self._profiles.email_exists(email)):
                logger.info("Registration rejected: a profile already uses this email")
                return Result.failure(
                    self._classifier.classify("email_in_use", "A profile already uses this email")
                )

            previous_state = self._state
            self._state = SessionState.AUTHENTICATING
            try:
                with self._provider_call():
                    credential = await self._identity.sign_up(email, profile_input.password)
            except Exception as exc:
                self._state = previous_state
                return self._failure("register", exc)

            name = (profile_input.name or "").strip() or None
            if name:
                credential = await self._sync_display_name(credential, name)

            profile = await self._write_new_profile(credential, profile_input, email, name)

            if self._settings.send_verification_on_register:
                await self._best_effort(
                    "send verification email",
                    self._identity.send_email_verification(credential),
                )

            user = self._reconciler.reconcile(credential.user, profile)
            self._enter_signed_in(credential, user)
            return Result.success(user)

    async def logout(self) -> Result[None]:
        async with self._lock:
            if self._credential is None:
                return Result.success(None)

            try:
                with self._provider_call():
                    await self._identity.sign_out(self._credential)
            except Exception as exc:
                # The provider still holds the session, so we keep ours
                return self._failure("logout", exc)

            self._enter_signed_out()
            return Result.success(None)

    async def reset_password(self, email: str) -> Result[None]:
        email = normalize_email(email)
        try:
            self._validate_email(email)
            await self._identity.send_password_reset(email)
        except Exception as exc:
            return self._failure("password reset", exc)
        return Result.success(None)

    async def change_password(self, current_password: str, new_password: str) -> Result[None]:
        try:
            self._validate_password(new_password)
        except RosterError as exc:
            return self._failure("change password", exc)

        async with self._lock:
            credential = self._active_credential()
            if credential is None:
                return self._failure("change password", NotSignedInError())

            self._state = SessionState.AUTHENTICATING
            try:
                with self._provider_call():
                    credential = await self._identity.reauthenticate(credential, current_password)
                    self._credential = credential
                    await self._identity.change_password(credential, new_password)
            except Exception as exc:
                return self._failure("change password", exc)
            finally:
                self._state = SessionState.SIGNED_IN

            await self._best_effort("touch profile", self._profiles.touch_updated(credential.user.id))
            return Result.success(None)

    async def send_verification_email(self) -> Result[None]:
        credential = self._active_credential()
        if credential is None:
            return self._failure("send verification email", NotSignedInError())

        try:
            await self._identity.send_email_verification(credential)
        except Exception as exc:
            return self._failure("send verification email", exc)
        return Result.success(None)

    async def update_profile(self, update: ProfileUpdate) -> Result[UserView]:
        changes = update.changes()
        if not changes:
            return self._failure("update profile", EmptyUpdateError())

        async with self._lock:
            credential = self._active_credential()
            if credential is None:
                return self._failure("update profile", NotSignedInError())

            name = changes.get("name")
            if name and name != credential.user.display_name:
                credential = await self._sync_display_name(credential, name)
                self._credential = credential

            user_id = credential.user.id
            try:
                await self._profiles.update(user_id, changes)
            except Exception as exc:
                return self._failure("update profile", exc)

            profile = await self._best_effort("fetch profile", self._profiles.get(user_id))
            self._user = self._reconciler.reconcile(credential.user, profile)
            return Result.success(self._user)

    async def refresh(self) -> Result[Optional[UserView]]:
        """
        Re-read the signed-in user's profile.

        If the store is unreachable the previous view is kept.
        """
        async with self._lock:
            credential = self._active_credential()
            if credential is None:
                return self._failure("refresh", NotSignedInError())

            try:
                profile = await self._profiles.get(credential.user.id)
            except Exception as exc:
                error = self._classifier.classify_exception(exc)
                logger.warning(f"Profile refresh failed, keeping previous view: {error.category.value}")
                return Result.success(self._user)

            self._user = self._reconciler.reconcile(credential.user, profile)
            return Result.success(self._user)

    async def is_email_registered(self, email: str) -> Result[bool]:
        try:
            exists = await self._profiles.email_exists(normalize_email(email))
        except Exception as exc:
            return self._failure("email lookup", exc)
        return Result.success(exists)

    # -------------------------------------------------------------------
    # Provider notifications
    # -------------------------------------------------------------------

    def _on_provider_change(self, credential: Optional[Credential]) -> None:
        if self._provider_call_depth:
            # Our own call triggered this; the operation applies the result itself
            logger.debug("Ignoring provider notification raised by our own call")
            return
        self._events.put_nowait(credential)

    async def _pump_events(self) -> None:
        while True:
            credential = await self._events.get()
            try:
                async with self._lock:
                    await self._apply_provider_change(credential)
            except Exception:
                logger.exception("Failed to apply provider session notification")
            finally:
                self._events.task_done()

    async def _apply_provider_change(self, credential: Optional[Credential]) -> None:
        if credential is None:
            if self._credential is not None:
                logger.info("Session ended by identity provider")
                self._enter_signed_out()
            return

        current = self._credential
        if current is not None and current.user.id == credential.user.id:
            self._credential = credential
            if current.user != credential.user:
                profile = await self._best_effort("fetch profile", self._profiles.get(credential.user.id))
                self._user = self._reconciler.reconcile(credential.user, profile)
            return

        profile = await self._best_effort("fetch profile", self._profiles.get(credential.user.id))
        self._enter_signed_in(credential, self._reconciler.reconcile(credential.user, profile))

    @contextmanager
    def _provider_call(self) -> Iterator[None]:
        self._provider_call_depth += 1
        try:
            yield
        finally:
            self._provider_call_depth -= 1

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------

    def _enter_signed_in(self, credential: Credential, user: UserView) -> None:
        previous = self._user
        self._credential = credential
        self._user = user
        self._state = SessionState.SIGNED_IN

        if previous is None or previous.id != user.id:
            logger.info(f"Signed in as {user.id}")
            self._notify(user)

    def _enter_signed_out(self) -> None:
        had_session = self._credential is not None
        self._credential = None
        self._user = None
        self._state = SessionState.SIGNED_OUT

        if had_session:
            logger.info("Signed out")
            self._notify(None)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _active_credential(self) -> Optional[Credential]:
        self._expire_stale_session()
        return self._credential

    def _expire_stale_session(self) -> None:
        """Sign out a settled session whose token has expired."""
        if self._state is not SessionState.SIGNED_IN:
            return
        if self._credential is not None and self._credential.is_expired:
            logger.info(f"Session token for {self._credential.user.id} expired")
            self._enter_signed_out()

    async def _sync_display_name(self, credential: Credential, name: str) -> Credential:
        with self._provider_call():
            updated = await self._best_effort(
                "set display name",
                self._identity.update_display_name(credential, name),
            )
        if updated is None:
            return credential
        return credential.model_copy(update={"user": updated})

    async def _write_new_profile(
        self,
        credential: Credential,
        profile_input: ProfileInput,
        email: str,
        name: Optional[str],
    ) -> Optional[ProfileDocument]:
        identity = credential.user
        try:
            await self._profiles.create(identity, profile_input, email=email, name=name)
        except Exception as exc:
            error = self._classifier.classify_exception(exc)
            logger.error(
                f"Profile write failed after sign-up; identity {identity.id} has no profile "
                f"({error.category.value}: {error.detail})"
            )
            return None

        stored = await self._best_effort("read back profile", self._profiles.get(identity.id))
        if stored is not None:
            return stored

        return ProfileDocument(
            id=identity.id,
            name=name,
            email=email,
            age=profile_input.age,
            specialty=profile_input.specialty.value,
            email_verified=identity.email_verified,
            profile_complete=True,
        )

    async def _best_effort(self, step: str, action: Awaitable[T]) -> Optional[T]:
        """Await a secondary step, logging and discarding its failure."""
        try:
            return await action
        except Exception as exc:
            error = self._classifier.classify_exception(exc)
            logger.warning(f"Best-effort step '{step}' failed: {error.category.value}: {error.detail}")
            return None

    def _failure(self, operation: str, exc: Exception) -> Result[Any]:
        error = self._classifier.classify_exception(exc)
        logger.warning(
            f"{operation} failed: {error.category.value} "
            f"(code={error.provider_code}, detail={error.detail!r})"
        )
        return Result.failure(error)

    def _validate_email(self, email: str) -> None:
        try:
            _email_adapter.validate_python(email)
        except PydanticValidationError:
            raise InvalidEmailError(email)

    def _validate_password(self, password: str) -> None:
        if len(password or "") < self._settings.min_password_length:
            raise WeakPasswordError(self._settings.min_password_length)


# Verify the implementation satisfies the interface
def _verify_interface(identity: IdentityProvider, store: DocumentStore) -> ISessionManager:
    """Type check that SessionManager implements ISessionManager."""
    return SessionManager(identity, store)


# Module-level instance getter
_manager_instance: Optional[SessionManager] = None


async def get_session_manager() -> SessionManager:
    """Get the session manager singleton, built on the shared provider pair."""
    global _manager_instance
    if _manager_instance is None:
        identity, store = await get_providers()
        _manager_instance = SessionManager(identity, store)
    return _manager_instance


def reset_session_manager() -> None:
    """Reset the session manager singleton (for testing)."""
    global _manager_instance
    _manager_instance = None
