"""Tests for role, training and data-access tier checks"""

import pytest

from phi_guard.models.actor import Actor, DataAccessTier, Role
from phi_guard.models.audit import EventType, Outcome, RequestContext, ResourceType, Severity
from phi_guard.rules.access_policy import AccessGate, AccessRequirement, evaluate
from phi_guard.utils.errors import (
    InsufficientAccessTier,
    InsufficientRole,
    TrainingRequired,
)

from conftest import PATIENT_ID


def make_actor(role=Role.PROVIDER, tier=DataAccessTier.LIMITED, training=True) -> Actor:
    return Actor(
        actor_id="actor-1",
        email="provider@hospital.com",
        first_name="Test",
        last_name="Actor",
        password_hash="x",
        role=role,
        data_access_tier=tier,
        training_completed=training,
    )


class TestEvaluate:
    """Predicate chain ordering"""

    def test_allows_when_all_pass(self):
        requirement = AccessRequirement(
            roles=frozenset({Role.PROVIDER}), training=True, min_tier=DataAccessTier.LIMITED
        )
        assert evaluate(make_actor(), requirement) is None

    def test_role_checked_before_training(self):
        """The first failing predicate is reported"""
        requirement = AccessRequirement(roles=frozenset({Role.ADMIN}), training=True)
        failure = evaluate(make_actor(role=Role.ASSISTANT, training=False), requirement)
        assert isinstance(failure, InsufficientRole)

    def test_training_checked_before_tier(self):
        requirement = AccessRequirement(training=True, min_tier=DataAccessTier.FULL)
        failure = evaluate(make_actor(training=False), requirement)
        assert isinstance(failure, TrainingRequired)

    @pytest.mark.parametrize("tier, required, allowed", [
        (DataAccessTier.READONLY, DataAccessTier.READONLY, True),
        (DataAccessTier.READONLY, DataAccessTier.LIMITED, False),
        (DataAccessTier.LIMITED, DataAccessTier.READONLY, True),
        (DataAccessTier.LIMITED, DataAccessTier.FULL, False),
        (DataAccessTier.FULL, DataAccessTier.LIMITED, True),
    ])
    def test_tier_ordering(self, tier, required, allowed):
        failure = evaluate(make_actor(tier=tier), AccessRequirement(min_tier=required))
        assert (failure is None) == allowed

    def test_empty_requirement_allows_everyone(self):
        assert evaluate(make_actor(role=Role.ASSISTANT, training=False), AccessRequirement()) is None


class TestAccessGate:
    """Denials are audited before they are raised"""

    @pytest.mark.asyncio
    async def test_tier_denial_is_audited(self, audit_writer, audit_store):
        gate = AccessGate(audit_writer)
        context = RequestContext(ip_address="10.0.0.7", resource=f"/patients/{PATIENT_ID}")
        actor = make_actor(tier=DataAccessTier.READONLY)

        with pytest.raises(InsufficientAccessTier):
            gate.check(actor, AccessRequirement(min_tier=DataAccessTier.LIMITED), context)
        await audit_writer.drain()

        [entry] = audit_store.entries
        assert entry.event_type == EventType.ACCESS_DENIED
        assert entry.severity == Severity.MEDIUM
        assert entry.outcome == Outcome.FAILURE
        assert entry.resource_type == ResourceType.PATIENT
        assert entry.actor_id == "actor-1"
        assert "Required: limited" in entry.error_message

    @pytest.mark.asyncio
    async def test_role_denial_is_high_severity(self, audit_writer, audit_store, context):
        gate = AccessGate(audit_writer)

        with pytest.raises(InsufficientRole):
            gate.check(make_actor(), AccessRequirement(roles=frozenset({Role.ADMIN})), context)
        await audit_writer.drain()

        assert audit_store.entries[0].severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_allowed_access_writes_nothing(self, audit_writer, audit_store, context):
        AccessGate(audit_writer).check(make_actor(), AccessRequirement(training=True), context)
        await audit_writer.drain()

        assert audit_store.entries == []


class TestRouteAccess:
    """Access requirements on mounted routes"""

    @pytest.mark.asyncio
    async def test_readonly_tier_cannot_read_patient(
        self, client, create_actor, auth_headers, audit_store, drain
    ):
        """A readonly actor on a limited route gets 403 and one access_denied entry"""
        actor = await create_actor(tier=DataAccessTier.READONLY)

        response = await client.get(f"/patients/{PATIENT_ID}", headers=auth_headers(actor))
        await drain()

        assert response.status_code == 403
        assert response.json()["code"] == "insufficient_access_tier"
        denials = [e for e in audit_store.entries if e.event_type == EventType.ACCESS_DENIED]
        assert len(denials) == 1
        assert denials[0].severity == Severity.MEDIUM
        assert denials[0].outcome == Outcome.FAILURE
        assert denials[0].actor_id == actor.actor_id

    @pytest.mark.asyncio
    async def test_untrained_actor_is_refused(self, client, create_actor, auth_headers):
        actor = await create_actor(training=False)

        response = await client.get(f"/patients/{PATIENT_ID}", headers=auth_headers(actor))

        assert response.status_code == 403
        assert response.json()["code"] == "training_required"

    @pytest.mark.asyncio
    async def test_assistant_role_is_refused(self, client, create_actor, auth_headers):
        actor = await create_actor(role=Role.ASSISTANT)

        response = await client.get(f"/patients/{PATIENT_ID}", headers=auth_headers(actor))

        assert response.status_code == 403
        assert response.json()["code"] == "insufficient_role"

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client):
        response = await client.get(f"/patients/{PATIENT_ID}")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["code"] == "missing_credential"
