"""
Authentication Service

Password login (driving the lockout state machine), registration,
credential refresh, password change and training completion.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

import structlog

from phi_guard.models.actor import Actor, RegisterRequest, Role, TokenResponse
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
from phi_guard.services.lockout import LockoutPolicy
from phi_guard.services.passwords import (
    burn_password_check,
    check_password_strength,
    hash_password,
    verify_password,
)
from phi_guard.services.tokens import (
    REFRESH,
    access_token_expiry_seconds,
    create_access_token,
    create_refresh_token,
    decode_token,
    issued_before,
)
from phi_guard.utils.config import Settings
from phi_guard.utils.errors import (
    AccountLocked,
    ActorAlreadyExists,
    AuthenticationFailure,
    InvalidCredential,
    InvalidLogin,
    StaleCredential,
    UnknownOrInactiveActor,
)
from phi_guard.utils.identifiers import generate_unique_id

logger = structlog.get_logger()


class AuthService:
    """Authentication service with password, lockout and token management."""

    def __init__(
        self,
        directory: ActorDirectory,
        audit_writer: AuditWriter,
        settings: Settings,
        lockout: Optional[LockoutPolicy] = None,
    ):
        self.directory = directory
        self.audit_writer = audit_writer
        self.settings = settings
        self.lockout = lockout or LockoutPolicy.from_settings(settings)

    async def register(
        self,
        data: RegisterRequest,
        context: RequestContext,
        role: Role = Role.PROVIDER,
    ) -> Actor:
        """
        Register a new actor.

        New actors start without training, so PHI routes stay closed to them
        until training is completed.

        Raises:
            WeakCredential: If the password fails the strength policy
            ActorAlreadyExists: If the email is taken
        """
        check_password_strength(data.password, self.settings.PASSWORD_MIN_LENGTH)

        if await self.directory.get_by_email(data.email):
            raise ActorAlreadyExists("User with this email already exists")

        actor_id = await generate_unique_id(
            self.directory.exists, self.settings.ID_GENERATION_MAX_ATTEMPTS
        )
        actor = Actor(
            actor_id=actor_id,
            email=data.email.lower(),
            first_name=data.first_name,
            last_name=data.last_name,
            password_hash=await hash_password(data.password, self.settings.BCRYPT_ROUNDS),
            role=role,
        )
        try:
            actor = await self.directory.add(actor)
        except ValueError:
            raise ActorAlreadyExists("User with this email already exists")

        self._audit(context, AuditEntryDraft(
            actor_id=actor.actor_id,
            action="USER_REGISTRATION",
            resource_type=ResourceType.ACTOR,
            event_type=EventType.CREATE,
            severity=Severity.MEDIUM,
            details={"role": actor.role.value},
            context="User registration",
        ))
        logger.info("actor_registered", actor_id=actor.actor_id, role=actor.role.value)
        return actor

    async def login(self, email: str, password: str, context: RequestContext) -> Tuple[Actor, TokenResponse]:
        """
        Authenticate with email and password.

        The whole attempt runs under the actor's directory lock, so parallel
        attempts are counted one at a time.

        Raises:
            InvalidLogin: Unknown email, wrong password or inactive account
            AccountLocked: Too many recent failures
        """
        actor = await self.directory.get_by_email(email)
        if actor is None:
            await burn_password_check(password, self.settings.BCRYPT_ROUNDS)
            self._audit_login_failure(context, None, EventType.FAILED_LOGIN, "User not found")
            raise InvalidLogin("Invalid email or password")

        async with self.directory.locked(actor.actor_id):
            actor = await self.directory.get(actor.actor_id)
            now = datetime.now(timezone.utc)

            state = self.lockout.state(actor, now)
            if state.locked:
                await burn_password_check(password, self.settings.BCRYPT_ROUNDS)
                self._audit_login_failure(
                    context, actor.actor_id, EventType.ACCESS_DENIED, "Account locked",
                    details={"locked_until": state.until.isoformat()},
                )
                raise AccountLocked(
                    "Account is temporarily locked due to multiple failed login attempts",
                    details={"locked_until": state.until.isoformat()},
                )

            if not await verify_password(password, actor.password_hash):
                actor = await self.directory.save(self.lockout.register_failure(actor, now))
                self._audit_login_failure(
                    context, actor.actor_id, EventType.FAILED_LOGIN, "Invalid password",
                    details={"failed_attempts": actor.failed_login_attempts},
                )
                if self.lockout.state(actor, now).locked:
                    logger.warning(
                        "actor_locked_out",
                        actor_id=actor.actor_id,
                        locked_until=actor.locked_until.isoformat(),
                    )
                raise InvalidLogin("Invalid email or password")

            if not actor.is_active:
                self._audit_login_failure(
                    context, actor.actor_id, EventType.ACCESS_DENIED, "Account inactive",
                    severity=Severity.HIGH,
                )
                raise InvalidLogin("Account is inactive")

            actor = await self.directory.save(self.lockout.register_success(actor, now))

        self._audit(context, AuditEntryDraft(
            actor_id=actor.actor_id,
            action="LOGIN_SUCCESS",
            resource_type=ResourceType.AUTH,
            event_type=EventType.LOGIN,
            severity=Severity.MEDIUM,
            context="Successful login",
        ))
        logger.info("login_succeeded", actor_id=actor.actor_id)
        return actor, self.issue_tokens(actor)

    def issue_tokens(self, actor: Actor) -> TokenResponse:
        return TokenResponse(
            access_token=create_access_token(actor, self.settings),
            refresh_token=create_refresh_token(actor, self.settings),
            expires_in=access_token_expiry_seconds(self.settings),
            actor=actor.public(),
            requires_training=not actor.training_completed,
        )

    async def refresh(self, refresh_token: str, context: RequestContext) -> TokenResponse:
        """
        Exchange a refresh credential for a new access credential.

        Raises:
            InvalidCredential: On any problem with the refresh token
        """
        actor_id = None
        try:
            payload = decode_token(refresh_token, self.settings, REFRESH)
            actor_id = payload["sub"]
            actor = await self.directory.get(actor_id)
            if actor is None or not actor.is_active:
                raise UnknownOrInactiveActor("Invalid refresh token")
            if issued_before(payload, actor.credential_changed_at):
                raise StaleCredential("Invalid refresh token")
        except AuthenticationFailure as e:
            self._audit_login_failure(
                context, actor_id, EventType.ACCESS_DENIED, e.message,
                details={"reason": e.code},
            )
            raise InvalidCredential("Invalid refresh token", code=e.code)

        self._audit(context, AuditEntryDraft(
            actor_id=actor.actor_id,
            action="TOKEN_REFRESH",
            resource_type=ResourceType.AUTH,
            event_type=EventType.LOGIN,
            severity=Severity.LOW,
            context="Token refresh",
        ))
        return TokenResponse(
            access_token=create_access_token(actor, self.settings),
            expires_in=access_token_expiry_seconds(self.settings),
            requires_training=not actor.training_completed,
        )

    def logout(self, actor: Actor, context: RequestContext) -> None:
        self._audit(context, AuditEntryDraft(
            actor_id=actor.actor_id,
            action="LOGOUT",
            resource_type=ResourceType.AUTH,
            event_type=EventType.LOGOUT,
            severity=Severity.LOW,
            context="User logout",
        ))

    async def change_password(
        self,
        actor: Actor,
        current_password: str,
        new_password: str,
        context: RequestContext,
    ) -> Actor:
        """
        Change an actor's password.

        Bumps the credential version, which invalidates every token issued
        before now, and resets the failure counter.

        Raises:
            InvalidLogin: If the current password is wrong
            WeakCredential: If the new password fails the strength policy
        """
        if not await verify_password(current_password, actor.password_hash):
            self._audit_login_failure(
                context, actor.actor_id, EventType.CREDENTIAL_CHANGE, "Current password is incorrect",
                action="PASSWORD_CHANGE", label="Password change",
            )
            raise InvalidLogin("Current password is incorrect")

        check_password_strength(new_password, self.settings.PASSWORD_MIN_LENGTH)
        new_hash = await hash_password(new_password, self.settings.BCRYPT_ROUNDS)

        async with self.directory.locked(actor.actor_id):
            current = await self.directory.get(actor.actor_id)
            updated = await self.directory.save(current.model_copy(update={
                "password_hash": new_hash,
                "credential_changed_at": datetime.now(timezone.utc),
                "failed_login_attempts": 0,
                "locked_until": None,
            }))

        self._audit(context, AuditEntryDraft(
            actor_id=actor.actor_id,
            action="PASSWORD_CHANGE",
            resource_type=ResourceType.AUTH,
            event_type=EventType.CREDENTIAL_CHANGE,
            severity=Severity.MEDIUM,
            context="Password change",
        ))
        logger.info("credential_changed", actor_id=actor.actor_id)
        return updated

    async def complete_training(self, actor: Actor, context: RequestContext) -> Actor:
        """Record HIPAA training completion for an actor."""
        now = datetime.now(timezone.utc)
        async with self.directory.locked(actor.actor_id):
            current = await self.directory.get(actor.actor_id)
            updated = await self.directory.save(current.model_copy(update={
                "training_completed": True,
                "training_completed_at": now,
            }))

        self._audit(context, AuditEntryDraft(
            actor_id=actor.actor_id,
            action="HIPAA_TRAINING_COMPLETED",
            resource_type=ResourceType.ACTOR,
            event_type=EventType.UPDATE,
            severity=Severity.MEDIUM,
            old_values={"training_completed": actor.training_completed},
            new_values={"training_completed": True},
            context="HIPAA training completion",
        ))
        return updated

    def _audit_login_failure(
        self,
        context: RequestContext,
        actor_id: Optional[str],
        event_type: EventType,
        message: str,
        severity: Severity = Severity.MEDIUM,
        details: Optional[dict] = None,
        action: str = "LOGIN_ATTEMPT",
        label: str = "Login attempt",
    ) -> None:
        logger.warning("login_failed", actor_id=actor_id, reason=message)
        self._audit(context, AuditEntryDraft(
            actor_id=actor_id,
            action=action,
            resource_type=ResourceType.AUTH,
            event_type=event_type,
            severity=severity,
            outcome=Outcome.FAILURE,
            error_message=message,
            details=details or {},
            context=label,
        ))

    def _audit(self, context: RequestContext, draft: AuditEntryDraft) -> None:
        self.audit_writer.create_manual(context.apply(draft))
