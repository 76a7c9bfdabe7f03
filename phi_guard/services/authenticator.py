"""Token Authenticator"""

from typing import Optional

import structlog

from phi_guard.models.actor import Actor
from phi_guard.models.audit import (
    AuditEntryDraft,
    EventType,
    Outcome,
    RequestContext,
    ResourceType,
    Severity,
)
from phi_guard.repositories.actor_directory import ActorDirectory
from phi_guard.services.audit_writer import AuditWriter
from phi_guard.services.tokens import ACCESS, decode_token, issued_before
from phi_guard.utils.config import Settings
from phi_guard.utils.errors import (
    AuthenticationFailure,
    ExpiredCredential,
    MissingCredential,
    StaleCredential,
    UnknownOrInactiveActor,
)

logger = structlog.get_logger()


_DENIAL_SEVERITY = {
    ExpiredCredential: Severity.MEDIUM,
    StaleCredential: Severity.MEDIUM,
}


class TokenAuthenticator:
    """
    Resolves a bearer credential to an Actor

    Checks, in order: presence, signature/structure, expiry, actor
    existence and activity, issuance against the last credential change.
    Every rejection is audited before it is raised. Never mutates actors.
    """

    def __init__(self, directory: ActorDirectory, audit_writer: AuditWriter, settings: Settings):
        self.directory = directory
        self.audit_writer = audit_writer
        self.settings = settings

    async def authenticate(self, credential: Optional[str], context: RequestContext) -> Actor:
        """
        Authenticate a bearer credential

        Raises:
            MissingCredential, InvalidCredential, ExpiredCredential,
            UnknownOrInactiveActor, StaleCredential
        """
        actor_id = None
        try:
            if not credential:
                raise MissingCredential("Authentication token is required")

            payload = decode_token(credential, self.settings, ACCESS)
            actor_id = payload["sub"]

            actor = await self.directory.get(actor_id)
            if actor is None or not actor.is_active:
                raise UnknownOrInactiveActor("User account is inactive or not found")

            if issued_before(payload, actor.credential_changed_at):
                raise StaleCredential("Password was changed, please login again")

        except AuthenticationFailure as e:
            self._audit_denial(e, actor_id, context)
            raise

        return actor

    def _audit_denial(
        self,
        error: AuthenticationFailure,
        actor_id: Optional[str],
        context: RequestContext,
    ) -> None:
        logger.warning("authentication_rejected", code=error.code, actor_id=actor_id)
        self.audit_writer.submit(context.apply(AuditEntryDraft(
            actor_id=actor_id,
            action="API_ACCESS",
            resource_type=ResourceType.AUTH,
            event_type=EventType.ACCESS_DENIED,
            severity=_DENIAL_SEVERITY.get(type(error), Severity.HIGH),
            outcome=Outcome.FAILURE,
            error_message=error.message,
            details={"reason": error.code},
            context="Authentication middleware",
        )))
