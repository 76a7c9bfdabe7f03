"""Tests for bearer token authentication"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from phi_guard.models.actor import Actor
from phi_guard.models.audit import EventType, Outcome, ResourceType, Severity
from phi_guard.services.authenticator import TokenAuthenticator
from phi_guard.services.tokens import create_access_token, create_refresh_token
from phi_guard.utils.errors import (
    ExpiredCredential,
    InvalidCredential,
    MissingCredential,
    StaleCredential,
    UnknownOrInactiveActor,
)


@pytest.fixture
def authenticator(directory, audit_writer, settings):
    return TokenAuthenticator(directory, audit_writer, settings)


class TestTokenAuthenticator:
    """Credential checks and denial auditing"""

    @pytest.mark.asyncio
    async def test_valid_token(self, authenticator, create_actor, settings, audit_writer, audit_store, context):
        """A fresh token resolves to its actor without audit noise"""
        actor = await create_actor()
        token = create_access_token(actor, settings)

        resolved = await authenticator.authenticate(token, context)
        await audit_writer.drain()

        assert resolved.actor_id == actor.actor_id
        assert audit_store.entries == []

    @pytest.mark.asyncio
    async def test_missing_token(self, authenticator, audit_writer, audit_store, context):
        with pytest.raises(MissingCredential):
            await authenticator.authenticate(None, context)
        await audit_writer.drain()

        [entry] = audit_store.entries
        assert entry.event_type == EventType.ACCESS_DENIED
        assert entry.resource_type == ResourceType.AUTH
        assert entry.outcome == Outcome.FAILURE
        assert entry.severity == Severity.HIGH
        assert entry.actor_id is None
        assert entry.ip_address == "10.0.0.7"
        assert entry.details["reason"] == "missing_credential"

    @pytest.mark.asyncio
    async def test_malformed_token(self, authenticator, audit_writer, audit_store, context):
        with pytest.raises(InvalidCredential):
            await authenticator.authenticate("not-a-jwt", context)
        await audit_writer.drain()

        assert audit_store.entries[0].severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, authenticator, create_actor, settings, context):
        actor = await create_actor()

        with pytest.raises(InvalidCredential):
            await authenticator.authenticate(create_refresh_token(actor, settings), context)

    @pytest.mark.asyncio
    async def test_expired_token(self, authenticator, create_actor, settings, audit_writer, audit_store, context):
        """Expired credentials are a medium severity denial"""
        actor = await create_actor()
        issued = datetime.now(timezone.utc) - timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS + 1)
        token = create_access_token(actor, settings, now=issued)

        with pytest.raises(ExpiredCredential):
            await authenticator.authenticate(token, context)
        await audit_writer.drain()

        assert audit_store.entries[0].severity == Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_token_issued_before_credential_change(
        self, authenticator, create_actor, settings, audit_writer, audit_store, context
    ):
        """Tokens minted before the last password change are stale"""
        actor = await create_actor()
        token = create_access_token(
            actor, settings, now=actor.credential_changed_at - timedelta(seconds=1)
        )

        with pytest.raises(StaleCredential):
            await authenticator.authenticate(token, context)
        await audit_writer.drain()

        entry = audit_store.entries[0]
        assert entry.actor_id == actor.actor_id
        assert entry.severity == Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_inactive_actor(self, authenticator, create_actor, directory, settings, context):
        actor = await create_actor()
        token = create_access_token(actor, settings)
        await directory.save(actor.model_copy(update={"is_active": False}))

        with pytest.raises(UnknownOrInactiveActor):
            await authenticator.authenticate(token, context)

    @pytest.mark.asyncio
    async def test_unknown_actor(self, authenticator, settings, context):
        stranger = Actor(
            actor_id=str(uuid.uuid4()),
            email="ghost@hospital.com",
            first_name="No",
            last_name="One",
            password_hash="x",
        )

        with pytest.raises(UnknownOrInactiveActor):
            await authenticator.authenticate(create_access_token(stranger, settings), context)

    @pytest.mark.asyncio
    async def test_authentication_does_not_modify_actor(
        self, authenticator, create_actor, directory, settings, context
    ):
        actor = await create_actor()
        await authenticator.authenticate(create_access_token(actor, settings), context)

        assert await directory.get(actor.actor_id) == actor
