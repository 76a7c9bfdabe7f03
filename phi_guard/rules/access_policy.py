"""
Access Policy

Per-route authorization as a chain of predicates over the authenticated
actor: role membership, training completion, minimum data-access tier.
Predicates are evaluated in that order and the first failure is reported.
"""

from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, List, Optional

import structlog

from phi_guard.models.actor import Actor, DataAccessTier, Role
from phi_guard.models.audit import (
    AuditEntryDraft,
    EventType,
    Outcome,
    RequestContext,
    Severity,
)
from phi_guard.rules.audit_classifier import resource_type_for
from phi_guard.services.audit_writer import AuditWriter
from phi_guard.utils.errors import (
    AuthorizationFailure,
    InsufficientAccessTier,
    InsufficientRole,
    TrainingRequired,
)

logger = structlog.get_logger()


Predicate = Callable[[Actor], Optional[AuthorizationFailure]]


def role_in(roles: Iterable[Role]) -> Predicate:
    allowed = frozenset(roles)

    def check(actor: Actor) -> Optional[AuthorizationFailure]:
        if actor.role in allowed:
            return None
        required = ", ".join(sorted(r.value for r in allowed))
        return InsufficientRole(
            "Insufficient permissions",
            details={
                "reason": f"Insufficient role. Required: {required}, User: {actor.role.value}",
            },
        )

    return check


def training_completed(actor: Actor) -> Optional[AuthorizationFailure]:
    if actor.training_completed:
        return None
    return TrainingRequired(
        "HIPAA training must be completed before accessing patient data",
        details={"reason": "HIPAA training not completed"},
    )


def tier_at_least(required: DataAccessTier) -> Predicate:
    def check(actor: Actor) -> Optional[AuthorizationFailure]:
        if actor.data_access_tier.covers(required):
            return None
        return InsufficientAccessTier(
            "Insufficient data access level",
            details={
                "reason": (
                    f"Insufficient data access level. Required: {required.value}, "
                    f"User: {actor.data_access_tier.value}"
                ),
            },
        )

    return check


@dataclass(frozen=True)
class AccessRequirement:
    """What a route demands of the actor"""
    roles: Optional[FrozenSet[Role]] = None
    training: bool = False
    min_tier: Optional[DataAccessTier] = None

    def predicates(self) -> List[Predicate]:
        chain: List[Predicate] = []
        if self.roles:
            chain.append(role_in(self.roles))
        if self.training:
            chain.append(training_completed)
        if self.min_tier is not None:
            chain.append(tier_at_least(self.min_tier))
        return chain


def evaluate(actor: Actor, requirement: AccessRequirement) -> Optional[AuthorizationFailure]:
    """First failing predicate's error, or None when access is allowed"""
    for predicate in requirement.predicates():
        failure = predicate(actor)
        if failure is not None:
            return failure
    return None


_DENIAL_SEVERITY = {
    InsufficientRole: (Severity.HIGH, "ROLE_ACCESS", "Role-based access control"),
    TrainingRequired: (Severity.HIGH, "HIPAA_ACCESS", "HIPAA compliance check"),
    InsufficientAccessTier: (Severity.MEDIUM, "DATA_ACCESS", "Data access level check"),
}


class AccessGate:
    """Evaluates access requirements and audits every denial"""

    def __init__(self, audit_writer: AuditWriter):
        self.audit_writer = audit_writer

    def check(self, actor: Actor, requirement: AccessRequirement, context: RequestContext) -> None:
        """
        Raises:
            InsufficientRole, TrainingRequired, InsufficientAccessTier
        """
        failure = evaluate(actor, requirement)
        if failure is None:
            return

        severity, action, label = _DENIAL_SEVERITY.get(
            type(failure), (Severity.HIGH, "API_ACCESS", "Access control")
        )
        logger.warning("access_denied", actor_id=actor.actor_id, code=failure.code)
        segments = [s for s in (context.resource or "").split("/") if s]
        self.audit_writer.submit(context.apply(AuditEntryDraft(
            actor_id=actor.actor_id,
            action=action,
            resource_type=resource_type_for(segments),
            event_type=EventType.ACCESS_DENIED,
            severity=severity,
            outcome=Outcome.FAILURE,
            error_message=failure.details.get("reason", failure.message),
            details={"reason": failure.code},
            context=label,
        )))
        raise failure
