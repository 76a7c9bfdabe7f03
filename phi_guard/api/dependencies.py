"""
FastAPI Dependencies

Components live on app.state and are handed to routes through these
dependencies, so tests can build an app around in-memory repositories.
"""

from typing import Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from phi_guard.models.actor import Actor, DataAccessTier, Role
from phi_guard.models.audit import RequestContext
from phi_guard.rules.access_policy import AccessRequirement
from phi_guard.services.audit_service import AuditService
from phi_guard.services.auth_service import AuthService


bearer = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_audit_service(request: Request) -> AuditService:
    return request.app.state.audit_service


def request_context(request: Request) -> RequestContext:
    """Origin details of the current request"""
    ip_address = request.client.host if request.client else None
    return RequestContext(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        resource=request.url.path,
        location=request.headers.get("x-forwarded-for") or ip_address,
    )


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    context: RequestContext = Depends(request_context),
) -> Actor:
    """
    Authenticate the bearer token and attach the actor to the request.

    Raises:
        AuthenticationFailure: Mapped to 401 by the app's error handlers
    """
    token = credentials.credentials if credentials else None
    actor = await request.app.state.authenticator.authenticate(token, context)
    request.state.actor = actor
    return actor


def require_access(
    roles: Optional[Iterable[Role]] = None,
    training: bool = False,
    min_tier: Optional[DataAccessTier] = None,
):
    """
    Build a dependency that authenticates and then authorizes the actor.

    Checks run as authentication, role, training, tier; the first failure
    is returned (401 or 403).
    """
    requirement = AccessRequirement(
        roles=frozenset(roles) if roles else None,
        training=training,
        min_tier=min_tier,
    )

    async def dependency(
        request: Request,
        actor: Actor = Depends(get_current_actor),
        context: RequestContext = Depends(request_context),
    ) -> Actor:
        request.app.state.access_gate.check(actor, requirement, context)
        return actor

    return dependency
