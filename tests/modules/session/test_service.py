"""Tests for modules/session/service.py."""

import asyncio
from unittest.mock import patch

import pytest

from modules.errors import ErrorCategory
from modules.session.models import ProfileInput, ProfileUpdate, SessionState, Specialty
from modules.session.service import SessionManager, get_session_manager, normalize_email
from providers.memory import InMemoryIdentityProvider, SentEmail


async def _create_account(identity, email: str, password: str = "secret123") -> str:
    """Create an account at the provider without leaving it signed in."""
    credential = await identity.sign_up(email, password)
    await identity.sign_out(credential)
    return credential.user.id


@pytest.fixture
def manager(identity, store, settings):
    return SessionManager(identity, store, settings=settings)


@pytest.fixture
def events(manager):
    """Record every session notification the manager emits."""
    received = []
    manager.observe_session_changes(received.append)
    return received


class TestNormalizeEmail:
    def test_trims_and_lowercases(self):
        assert normalize_email("  Ana@Example.COM ") == "ana@example.com"

    def test_none_becomes_empty(self):
        assert normalize_email(None) == ""


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_creates_account_and_profile(self, manager, store, events):
        """A valid registration signs in and stores the profile."""
        result = await manager.register(
            ProfileInput(email="a@b.com", password="abcdef", age=20, specialty="Software")
        )

        assert result.ok is True
        user = result.value
        assert user.id
        assert user.email == "a@b.com"
        assert user.age == 20
        assert user.specialty == "Software"
        assert user.has_profile is True

        stored = await store.get_document("users", user.id)
        assert stored["age"] == 20
        assert stored["email"] == "a@b.com"
        assert "password" not in stored

        assert manager.state is SessionState.SIGNED_IN
        assert manager.current_user == user
        assert events == [user]

    @pytest.mark.asyncio
    async def test_register_sets_display_name_and_sends_verification(
        self, manager, identity, make_profile_input
    ):
        result = await manager.register(make_profile_input(name="  Ana Torres "))

        assert result.value.display_name == "Ana Torres"
        assert result.value.name == "Ana Torres"
        assert SentEmail(kind="verification", email="ana@example.com") in identity.sent_emails

    @pytest.mark.asyncio
    async def test_register_skips_verification_when_disabled(self, identity, store, settings, make_profile_input):
        settings.send_verification_on_register = False
        manager = SessionManager(identity, store, settings=settings)

        result = await manager.register(make_profile_input())

        assert result.ok is True
        assert identity.sent_emails == []

    @pytest.mark.asyncio
    async def test_register_normalises_email(self, manager, identity, make_profile_input):
        result = await manager.register(make_profile_input(email="  Ana@Example.com "))
        assert result.value.email == "ana@example.com"
        assert identity.has_account("ana@example.com")

    @pytest.mark.asyncio
    async def test_register_then_login_yields_same_id(self, manager, make_profile_input):
        """Register followed by login with the same credentials is the same user."""
        registered = await manager.register(make_profile_input())
        await manager.logout()

        logged_in = await manager.login("ana@example.com", "secret123")

        assert logged_in.ok is True
        assert logged_in.value.id == registered.value.id

    @pytest.mark.asyncio
    async def test_profile_write_failure_still_succeeds(self, manager, store, events, make_profile_input):
        """A failed profile write leaves a signed-in user without profile fields."""
        store.inject_failure("set_document", "unavailable")

        result = await manager.register(make_profile_input())

        assert result.ok is True
        assert result.value.has_profile is False
        assert result.value.age is None
        assert result.value.specialty is None
        assert manager.state is SessionState.SIGNED_IN
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_existing_profile_short_circuits(self, manager, identity, store, make_profile_input):
        """An email already used by a profile is rejected before the provider is called."""
        store.seed("users", "legacy-id", {"email": "ana@example.com"})

        result = await manager.register(make_profile_input())

        assert result.ok is False
        assert result.error.category is ErrorCategory.EMAIL_IN_USE
        assert not identity.has_account("ana@example.com")
        assert manager.state is SessionState.SIGNED_OUT

    @pytest.mark.asyncio
    async def test_failed_precheck_is_skipped(self, manager, store, make_profile_input):
        """If the email pre-check cannot run, registration goes ahead."""
        store.inject_failure("query", "unavailable")

        result = await manager.register(make_profile_input())

        assert result.ok is True

    @pytest.mark.asyncio
    async def test_provider_email_in_use(self, manager, identity, make_profile_input):
        """An identity without a profile is still caught by the provider."""
        await _create_account(identity, "ana@example.com")

        result = await manager.register(make_profile_input())

        assert result.ok is False
        assert result.error.category is ErrorCategory.EMAIL_IN_USE

    @pytest.mark.asyncio
    async def test_malformed_email(self, manager, identity, make_profile_input):
        result = await manager.register(make_profile_input(email="not-an-email"))

        assert result.ok is False
        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS
        assert not identity.has_account("not-an-email")

    @pytest.mark.asyncio
    async def test_short_password(self, manager, make_profile_input):
        result = await manager.register(make_profile_input(password="abc"))

        assert result.ok is False
        assert result.error.category is ErrorCategory.WEAK_CREDENTIAL

    @pytest.mark.asyncio
    async def test_provider_failure_restores_state(self, manager, identity, make_profile_input):
        identity.inject_failure("sign_up", "auth/network-request-failed")

        result = await manager.register(make_profile_input())

        assert result.error.category is ErrorCategory.NETWORK_UNAVAILABLE
        assert manager.state is SessionState.SIGNED_OUT


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_success(self, manager, identity, store, events):
        user_id = await _create_account(identity, "ana@example.com")
        store.seed("users", user_id, {"email": "ana@example.com", "age": 22, "specialty": "Emca"})

        result = await manager.login("  ANA@example.com ", "secret123")

        assert result.ok is True
        assert result.value.id == user_id
        assert result.value.age == 22
        assert result.value.specialty == "Emca"
        assert manager.state is SessionState.SIGNED_IN
        assert events == [result.value]

    @pytest.mark.asyncio
    async def test_login_records_last_login(self, manager, identity, store):
        user_id = await _create_account(identity, "ana@example.com")
        store.seed("users", user_id, {"email": "ana@example.com"})

        await manager.login("ana@example.com", "secret123")

        stored = await store.get_document("users", user_id)
        assert stored["last_login_at"] is not None
        assert stored["updated_at"] == stored["last_login_at"]

    @pytest.mark.asyncio
    async def test_wrong_password(self, manager, identity, events):
        await _create_account(identity, "a@b.com", "abcdef")

        result = await manager.login("a@b.com", "wrong")

        assert result.ok is False
        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS
        assert manager.state is SessionState.SIGNED_OUT
        assert manager.current_user is None
        assert events == []

    @pytest.mark.asyncio
    async def test_unknown_account(self, manager):
        result = await manager.login("nobody@example.com", "secret123")
        assert result.error.category is ErrorCategory.ACCOUNT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_disabled_account(self, manager, identity):
        await _create_account(identity, "ana@example.com")
        identity.disable_account("ana@example.com")

        result = await manager.login("ana@example.com", "secret123")

        assert result.error.category is ErrorCategory.ACCOUNT_DISABLED

    @pytest.mark.asyncio
    async def test_profile_fetch_failure_degrades(self, manager, identity, store):
        """A signed-in user is returned even if the profile cannot be read."""
        user_id = await _create_account(identity, "ana@example.com")
        store.seed("users", user_id, {"email": "ana@example.com", "age": 22})
        store.inject_failure("get_document", "unavailable")

        result = await manager.login("ana@example.com", "secret123")

        assert result.ok is True
        assert result.value.id == user_id
        assert result.value.has_profile is False

    @pytest.mark.asyncio
    async def test_missing_profile_is_not_an_error(self, manager, identity):
        """Login works for identities that never got a profile."""
        await _create_account(identity, "ana@example.com")

        result = await manager.login("ana@example.com", "secret123")

        assert result.ok is True
        assert result.value.has_profile is False

    @pytest.mark.asyncio
    async def test_concurrent_logins_are_serialised(self, manager, identity, events):
        """Two logins in flight are applied one after the other."""
        first_id = await _create_account(identity, "ana@example.com")
        second_id = await _create_account(identity, "bob@example.com")

        first, second = await asyncio.gather(
            manager.login("ana@example.com", "secret123"),
            manager.login("bob@example.com", "secret123"),
        )

        assert first.value.id == first_id
        assert second.value.id == second_id
        assert [user.id for user in events] == [first_id, second_id]
        assert manager.current_user.id == second_id


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_clears_session(self, manager, events, make_profile_input):
        await manager.register(make_profile_input())

        result = await manager.logout()

        assert result.ok is True
        assert manager.state is SessionState.SIGNED_OUT
        assert manager.current_user is None
        assert manager.credential is None
        assert events[-1] is None
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_logout_when_signed_out_is_noop(self, manager, events):
        result = await manager.logout()

        assert result.ok is True
        assert events == []

    @pytest.mark.asyncio
    async def test_logout_failure_keeps_session(self, manager, identity, events, make_profile_input):
        await manager.register(make_profile_input())
        identity.inject_failure("sign_out", "auth/network-request-failed")

        result = await manager.logout()

        assert result.ok is False
        assert result.error.category is ErrorCategory.NETWORK_UNAVAILABLE
        assert manager.state is SessionState.SIGNED_IN
        assert len(events) == 1


class TestObservers:
    @pytest.mark.asyncio
    async def test_failing_observer_does_not_block_others(self, manager, make_profile_input):
        received = []

        def broken(user):
            raise RuntimeError("observer bug")

        manager.observe_session_changes(broken)
        manager.observe_session_changes(received.append)

        result = await manager.register(make_profile_input())

        assert result.ok is True
        assert received == [result.value]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_only_that_observer(self, manager, make_profile_input):
        kept, dropped = [], []
        manager.observe_session_changes(kept.append)
        unsubscribe = manager.observe_session_changes(dropped.append)

        unsubscribe()
        unsubscribe()
        await manager.register(make_profile_input())

        assert len(kept) == 1
        assert dropped == []


class TestProviderNotifications:
    @pytest.mark.asyncio
    async def test_own_calls_notify_once(self, manager, events, make_profile_input):
        """Provider echoes of our own sign-in and sign-out are ignored."""
        async with manager:
            await manager.register(make_profile_input())
            await manager.logout()
            await manager.wait_for_events()

        assert len(events) == 2
        assert events[1] is None

    @pytest.mark.asyncio
    async def test_provider_forced_sign_out(self, manager, identity, events, make_profile_input):
        """A provider-side session end reaches observers exactly once."""
        async with manager:
            await manager.register(make_profile_input())
            identity.expire_session()
            await manager.wait_for_events()

            assert manager.state is SessionState.SIGNED_OUT
            assert manager.current_user is None

        assert len(events) == 2
        assert events[1] is None

    @pytest.mark.asyncio
    async def test_start_restores_provider_session(self, manager, identity, store, events):
        """A session the provider already holds is adopted on start."""
        credential = await identity.sign_up("ana@example.com", "secret123")
        store.seed("users", credential.user.id, {"email": "ana@example.com", "age": 30})

        async with manager:
            await manager.wait_for_events()
            assert manager.state is SessionState.SIGNED_IN
            assert manager.current_user.age == 30

        assert [user.id for user in events] == [credential.user.id]

    @pytest.mark.asyncio
    async def test_external_sign_in_is_adopted(self, manager, identity, events):
        """A sign-in made outside the manager is applied as a transition."""
        await _create_account(identity, "ana@example.com")

        async with manager:
            credential = await identity.sign_in("ana@example.com", "secret123")
            await manager.wait_for_events()

        assert manager.credential == credential
        assert [user.id for user in events] == [credential.user.id]

    @pytest.mark.asyncio
    async def test_close_stops_following_provider(self, manager, identity, events, make_profile_input):
        async with manager:
            await manager.register(make_profile_input())

        identity.expire_session()

        assert manager.state is SessionState.SIGNED_IN
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_expired_credential_signs_out(self, store, settings, make_profile_input):
        """An expired token ends the session and observers see the sign-out."""
        identity = InMemoryIdentityProvider(token_ttl_seconds=-60)
        manager = SessionManager(identity, store, settings=settings)
        received = []
        manager.observe_session_changes(received.append)

        result = await manager.register(make_profile_input())

        assert result.ok is True
        assert manager.current_user is None
        assert manager.state is SessionState.SIGNED_OUT
        assert manager.credential is None
        assert len(received) == 2
        assert received[0].id == result.value.id
        assert received[1] is None
        assert (await manager.send_verification_email()).error.category is ErrorCategory.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_login_after_expiry_notifies_again(self, store, settings, make_profile_input):
        """The same user signing in after expiry is a new transition."""
        identity = InMemoryIdentityProvider(token_ttl_seconds=-60)
        manager = SessionManager(identity, store, settings=settings)
        received = []
        manager.observe_session_changes(received.append)
        await manager.register(make_profile_input())
        assert manager.state is SessionState.SIGNED_OUT

        result = await manager.login("ana@example.com", "secret123")

        assert result.ok is True
        assert manager.state is SessionState.SIGNED_OUT
        assert [event.id if event else None for event in received] == [
            result.value.id, None, result.value.id, None,
        ]

    @pytest.mark.asyncio
    async def test_expired_session_blocks_password_change(self, store, settings, make_profile_input):
        identity = InMemoryIdentityProvider(token_ttl_seconds=-60)
        manager = SessionManager(identity, store, settings=settings)
        await manager.register(make_profile_input())

        result = await manager.change_password("secret123", "newsecret")

        assert result.ok is False
        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS
        assert manager.state is SessionState.SIGNED_OUT


class TestPasswordOperations:
    @pytest.mark.asyncio
    async def test_change_password(self, manager, store, make_profile_input):
        registered = await manager.register(make_profile_input())
        before = await store.get_document("users", registered.value.id)

        result = await manager.change_password("secret123", "newsecret")

        assert result.ok is True
        assert manager.state is SessionState.SIGNED_IN
        after = await store.get_document("users", registered.value.id)
        assert after["updated_at"] > before["updated_at"]

        await manager.logout()
        assert (await manager.login("ana@example.com", "newsecret")).ok is True
        await manager.logout()
        assert (await manager.login("ana@example.com", "secret123")).ok is False

    @pytest.mark.asyncio
    async def test_change_password_ignores_provider_echo(self, manager, events, make_profile_input):
        """The user-updated notification raised by our own password change is not replayed."""
        async with manager:
            await manager.register(make_profile_input())
            await manager.wait_for_events()

            with patch.object(
                manager, "_apply_provider_change", wraps=manager._apply_provider_change
            ) as applied:
                result = await manager.change_password("secret123", "newsecret")
                await manager.wait_for_events()

            assert result.ok is True
            applied.assert_not_awaited()

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, manager, make_profile_input):
        await manager.register(make_profile_input())

        result = await manager.change_password("not-it", "newsecret")

        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS
        assert manager.state is SessionState.SIGNED_IN

    @pytest.mark.asyncio
    async def test_change_password_requires_session(self, manager):
        result = await manager.change_password("secret123", "newsecret")
        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_change_password_weak(self, manager, make_profile_input):
        await manager.register(make_profile_input())
        result = await manager.change_password("secret123", "abc")
        assert result.error.category is ErrorCategory.WEAK_CREDENTIAL

    @pytest.mark.asyncio
    async def test_reset_password(self, manager, identity):
        await _create_account(identity, "ana@example.com")

        result = await manager.reset_password(" Ana@Example.com")

        assert result.ok is True
        assert identity.sent_emails == [SentEmail(kind="password_reset", email="ana@example.com")]

    @pytest.mark.asyncio
    async def test_reset_password_unknown_account(self, manager):
        result = await manager.reset_password("nobody@example.com")
        assert result.error.category is ErrorCategory.ACCOUNT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_reset_password_malformed_email(self, manager):
        result = await manager.reset_password("nope")
        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_send_verification_email(self, identity, settings, store, make_profile_input):
        settings.send_verification_on_register = False
        manager = SessionManager(identity, store, settings=settings)
        await manager.register(make_profile_input())

        result = await manager.send_verification_email()

        assert result.ok is True
        assert identity.sent_emails == [SentEmail(kind="verification", email="ana@example.com")]

    @pytest.mark.asyncio
    async def test_send_verification_email_signed_out(self, manager):
        result = await manager.send_verification_email()
        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS


class TestProfileOperations:
    @pytest.mark.asyncio
    async def test_update_profile(self, manager, store, make_profile_input):
        registered = await manager.register(make_profile_input())

        result = await manager.update_profile(
            ProfileUpdate(name="Ana María", age=21, specialty=Specialty.ARCHITECTURE)
        )

        assert result.ok is True
        assert result.value.name == "Ana María"
        assert result.value.display_name == "Ana María"
        assert result.value.age == 21
        assert result.value.specialty == "Arquitectura"
        assert manager.current_user == result.value
        stored = await store.get_document("users", registered.value.id)
        assert stored["age"] == 21

    @pytest.mark.asyncio
    async def test_update_profile_does_not_notify(self, manager, events, make_profile_input):
        await manager.register(make_profile_input())
        await manager.update_profile(ProfileUpdate(age=40))
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_update_profile_empty(self, manager, make_profile_input):
        await manager.register(make_profile_input())
        result = await manager.update_profile(ProfileUpdate())
        assert result.ok is False

    @pytest.mark.asyncio
    async def test_update_profile_signed_out(self, manager):
        result = await manager.update_profile(ProfileUpdate(age=30))
        assert result.error.category is ErrorCategory.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_update_profile_store_failure(self, manager, store, make_profile_input):
        await manager.register(make_profile_input())
        store.inject_failure("update_document", "unavailable")

        result = await manager.update_profile(ProfileUpdate(age=30))

        assert result.error.category is ErrorCategory.NETWORK_UNAVAILABLE
        assert manager.current_user.age == 20

    @pytest.mark.asyncio
    async def test_refresh_picks_up_changes(self, manager, store, make_profile_input):
        registered = await manager.register(make_profile_input())
        await store.update_document("users", registered.value.id, {"age": 33})

        result = await manager.refresh()

        assert result.value.age == 33
        assert manager.current_user.age == 33

    @pytest.mark.asyncio
    async def test_refresh_keeps_view_when_store_fails(self, manager, store, make_profile_input):
        registered = await manager.register(make_profile_input())
        store.inject_failure("get_document", "unavailable")

        result = await manager.refresh()

        assert result.ok is True
        assert result.value == registered.value

    @pytest.mark.asyncio
    async def test_refresh_signed_out(self, manager):
        result = await manager.refresh()
        assert result.ok is False

    @pytest.mark.asyncio
    async def test_is_email_registered(self, manager, store, make_profile_input):
        await manager.register(make_profile_input())

        assert (await manager.is_email_registered("ANA@example.com")).value is True
        assert (await manager.is_email_registered("bob@example.com")).value is False

        store.inject_failure("query", "unavailable")
        failed = await manager.is_email_registered("ana@example.com")
        assert failed.error.category is ErrorCategory.NETWORK_UNAVAILABLE


class TestSingleton:
    @pytest.mark.asyncio
    async def test_get_session_manager_is_cached(self):
        first = await get_session_manager()
        second = await get_session_manager()
        assert first is second
