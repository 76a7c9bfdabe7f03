"""
Test Configuration and Fixtures

In-memory repositories, fast bcrypt settings, seeded actors and an
httpx client bound to an app that also mounts a small patient router.
"""

import uuid

import pytest
import pytest_asyncio
from fastapi import APIRouter, Depends
from httpx import ASGITransport, AsyncClient

from phi_guard.api.dependencies import require_access
from phi_guard.api.main import create_app
from phi_guard.models.actor import Actor, DataAccessTier, Role
from phi_guard.models.audit import RequestContext
from phi_guard.repositories.actor_directory import InMemoryActorDirectory
from phi_guard.repositories.audit_store import InMemoryAuditStore
from phi_guard.services.audit_writer import AuditWriter
from phi_guard.services.passwords import hash_password
from phi_guard.services.tokens import create_access_token
from phi_guard.utils.config import Settings


PASSWORD = "Str0ng-Passw0rd!"
PATIENT_ID = "8c5e0c52-2f61-4d7e-a1f4-7f0b9a1d2c3e"


# ==================== Sample clinical routes ====================

patients_router = APIRouter()

clinical_access = require_access(
    roles=[Role.PROVIDER, Role.ADMIN],
    training=True,
    min_tier=DataAccessTier.LIMITED,
)


@patients_router.get("/patients/{patient_id}")
async def get_patient(patient_id: str, actor: Actor = Depends(clinical_access)):
    return {"patient_id": patient_id, "first_name": "Jane", "last_name": "Doe"}


@patients_router.post("/patients", status_code=201)
async def create_patient(payload: dict, actor: Actor = Depends(clinical_access)):
    return {"patient_id": PATIENT_ID}


@patients_router.get("/boom")
async def boom():
    raise RuntimeError("boom")


# ==================== Core Fixtures ====================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BCRYPT_ROUNDS=4,
        LOG_JSON=False,
        LOG_LEVEL="WARNING",
        AUDIT_WRITE_TIMEOUT_SECONDS=1.0,
    )


@pytest.fixture
def directory() -> InMemoryActorDirectory:
    return InMemoryActorDirectory()


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest_asyncio.fixture
async def audit_writer(audit_store, settings):
    writer = AuditWriter(audit_store, settings)
    yield writer
    await writer.stop()


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(
        ip_address="10.0.0.7",
        user_agent="pytest",
        resource="/patients",
        location="10.0.0.7",
    )


@pytest.fixture
def create_actor(directory, settings):
    """Factory adding an actor straight to the directory"""

    async def factory(
        email: str = "provider@hospital.com",
        role: Role = Role.PROVIDER,
        tier: DataAccessTier = DataAccessTier.LIMITED,
        training: bool = True,
        password: str = PASSWORD,
        **overrides,
    ) -> Actor:
        actor = Actor(
            actor_id=str(uuid.uuid4()),
            email=email,
            first_name="Test",
            last_name="Actor",
            password_hash=await hash_password(password, settings.BCRYPT_ROUNDS),
            role=role,
            data_access_tier=tier,
            training_completed=training,
            **overrides,
        )
        return await directory.add(actor)

    return factory


@pytest.fixture
def auth_headers(settings):
    def build(actor: Actor) -> dict:
        return {"Authorization": f"Bearer {create_access_token(actor, settings)}"}

    return build


# ==================== Application Fixtures ====================


@pytest.fixture
def app(settings, directory, audit_store):
    application = create_app(settings=settings, directory=directory, audit_store=audit_store)
    application.include_router(patients_router)
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await app.state.audit_writer.stop()


@pytest.fixture
def drain(app):
    """Wait for every queued audit entry to be handled"""
    return app.state.audit_writer.drain
