"""Tests for account lockout"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from phi_guard.models.actor import Actor
from phi_guard.models.audit import EventType
from phi_guard.services import auth_service as auth_module
from phi_guard.services import passwords
from phi_guard.services.auth_service import AuthService
from phi_guard.services.lockout import LockoutPolicy
from phi_guard.utils.errors import AccountLocked, InvalidLogin

from conftest import PASSWORD

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def make_actor(**overrides) -> Actor:
    return Actor(
        actor_id="actor-1",
        email="provider@hospital.com",
        first_name="Test",
        last_name="Actor",
        password_hash="x",
        **overrides,
    )


@pytest.fixture
def auth_service(directory, audit_writer, settings):
    return AuthService(directory, audit_writer, settings)


class TestLockoutPolicy:
    """Pure state transitions"""

    def test_locks_at_threshold(self):
        """The threshold-th failure locks for the configured duration"""
        policy = LockoutPolicy(threshold=3, duration=timedelta(minutes=30))
        actor = make_actor()

        for _ in range(2):
            actor = policy.register_failure(actor, NOW)
            assert not policy.state(actor, NOW).locked

        actor = policy.register_failure(actor, NOW)
        state = policy.state(actor, NOW)
        assert state.locked
        assert state.until == NOW + timedelta(minutes=30)
        assert actor.failed_login_attempts == 3

    def test_lock_elapses(self):
        policy = LockoutPolicy(threshold=1)
        actor = policy.register_failure(make_actor(), NOW)

        assert policy.state(actor, NOW + timedelta(minutes=29)).locked
        assert not policy.state(actor, NOW + timedelta(minutes=30)).locked

    def test_failure_after_expired_lock_starts_fresh(self):
        """A failure after the lock ran out counts from one"""
        policy = LockoutPolicy(threshold=5)
        actor = make_actor(failed_login_attempts=5, locked_until=NOW - timedelta(seconds=1))

        actor = policy.register_failure(actor, NOW)
        assert actor.failed_login_attempts == 1
        assert actor.locked_until is None

    def test_success_resets(self):
        policy = LockoutPolicy(threshold=5)
        actor = make_actor(failed_login_attempts=4)

        actor = policy.register_success(actor, NOW)
        assert actor.failed_login_attempts == 0
        assert actor.locked_until is None
        assert actor.last_login_at == NOW

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            LockoutPolicy(threshold=0)


class TestLoginLockout:
    """Lockout driven through password login"""

    @pytest.mark.asyncio
    async def test_correct_password_rejected_while_locked(
        self, auth_service, create_actor, directory, context, monkeypatch
    ):
        """After five failures even the right password is refused"""
        actor = await create_actor()

        for _ in range(5):
            with pytest.raises(InvalidLogin):
                await auth_service.login(actor.email, "wrong-password", context)

        real_checks = []
        compared_hashes = []
        real_verify = passwords.verify_password

        async def recording_verify(password, password_hash):
            compared_hashes.append(password_hash)
            return await real_verify(password, password_hash)

        async def real_check(password, password_hash):
            real_checks.append(password_hash)
            return await real_verify(password, password_hash)

        monkeypatch.setattr(passwords, "verify_password", recording_verify)
        monkeypatch.setattr(auth_module, "verify_password", real_check)

        with pytest.raises(AccountLocked):
            await auth_service.login(actor.email, PASSWORD, context)

        assert real_checks == []
        assert len(compared_hashes) == 1
        assert compared_hashes[0] != actor.password_hash

        stored = await directory.get(actor.actor_id)
        assert stored.failed_login_attempts == 5
        assert stored.locked_until is not None

    @pytest.mark.asyncio
    async def test_concurrent_failures_are_all_counted(
        self, auth_service, create_actor, directory, context
    ):
        """Parallel attempts never lose a failure count"""
        actor = await create_actor()

        results = await asyncio.gather(
            *[auth_service.login(actor.email, "wrong-password", context) for _ in range(10)],
            return_exceptions=True,
        )

        assert sum(isinstance(r, AccountLocked) for r in results) == 5
        assert sum(type(r) is InvalidLogin for r in results) == 5
        stored = await directory.get(actor.actor_id)
        assert stored.failed_login_attempts == 5
        assert stored.locked_until is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [0, 1, 2, 3, 4])
    async def test_success_below_threshold_resets_counter(
        self, auth_service, create_actor, directory, context, failures
    ):
        actor = await create_actor()

        for _ in range(failures):
            with pytest.raises(InvalidLogin):
                await auth_service.login(actor.email, "wrong-password", context)

        logged_in, tokens = await auth_service.login(actor.email, PASSWORD, context)

        assert tokens.access_token
        stored = await directory.get(actor.actor_id)
        assert stored.failed_login_attempts == 0
        assert stored.locked_until is None
        assert stored.last_login_at is not None

    @pytest.mark.asyncio
    async def test_expired_lock_allows_login(self, auth_service, create_actor, context):
        actor = await create_actor(
            failed_login_attempts=5,
            locked_until=datetime.now(timezone.utc) - timedelta(minutes=1),
        )

        logged_in, _ = await auth_service.login(actor.email, PASSWORD, context)
        assert logged_in.failed_login_attempts == 0

    @pytest.mark.asyncio
    async def test_failures_and_lock_are_audited(
        self, auth_service, create_actor, audit_writer, audit_store, context
    ):
        """Each failure is a failed_login entry; the locked attempt is access_denied"""
        actor = await create_actor()

        for _ in range(5):
            with pytest.raises(InvalidLogin):
                await auth_service.login(actor.email, "wrong-password", context)
        with pytest.raises(AccountLocked):
            await auth_service.login(actor.email, PASSWORD, context)
        await audit_writer.drain()

        event_types = [e.event_type for e in audit_store.entries]
        assert event_types.count(EventType.FAILED_LOGIN) == 5
        assert event_types.count(EventType.ACCESS_DENIED) == 1
        assert all(e.actor_id == actor.actor_id for e in audit_store.entries)
        assert all(e.ip_address == "10.0.0.7" for e in audit_store.entries)
