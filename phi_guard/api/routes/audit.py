"""Audit Trail Endpoints"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
import structlog

from phi_guard.api.dependencies import get_audit_service, require_access
from phi_guard.models.actor import DataAccessTier, Role
from phi_guard.models.audit import (
    ActorActivity,
    AuditEntry,
    AuditPage,
    AuditQuery,
    AuditStats,
    EventType,
    Outcome,
    ResourceType,
    Severity,
)
from phi_guard.services.audit_service import AuditService

# Only administrators with full data access read the audit trail
router = APIRouter(
    dependencies=[Depends(require_access(roles=[Role.ADMIN], min_tier=DataAccessTier.FULL))]
)
logger = structlog.get_logger()


def audit_filters(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[str] = None,
    event_type: Optional[EventType] = None,
    severity: Optional[Severity] = None,
    status: Optional[Outcome] = None,
    resource_type: Optional[ResourceType] = None,
    phi_accessed: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
) -> AuditQuery:
    """Query-string filters shared by the list, view and export endpoints"""
    return AuditQuery(
        start_date=start_date,
        end_date=end_date,
        actor_id=user_id,
        event_types=[event_type] if event_type else None,
        severity=severity,
        outcome=status,
        resource_type=resource_type,
        phi_accessed=phi_accessed,
        search=search,
        page=page,
        limit=limit,
    )


@router.get("", response_model=AuditPage)
async def get_audit_logs(
    query: AuditQuery = Depends(audit_filters),
    audit_service: AuditService = Depends(get_audit_service),
):
    """
    Query audit logs

    Supports filtering by:
    - Date range
    - User ID
    - Event type, severity, status
    - Resource type
    - PHI access flag
    - Free-text search over action, resource, error and context
    """
    return await audit_service.query_logs(query)


@router.get("/phi-access", response_model=AuditPage)
async def get_phi_access_logs(
    query: AuditQuery = Depends(audit_filters),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Entries where protected health information was accessed"""
    return await audit_service.phi_access_logs(query)


@router.get("/security-events", response_model=AuditPage)
async def get_security_events(
    query: AuditQuery = Depends(audit_filters),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Logins, logouts, failed logins, credential changes and access denials"""
    return await audit_service.security_events(query)


@router.get("/stats/overview", response_model=AuditStats)
async def get_audit_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    audit_service: AuditService = Depends(get_audit_service),
):
    return await audit_service.get_stats(start_date=start_date, end_date=end_date)


@router.get("/user/{user_id}/activity", response_model=ActorActivity)
async def get_user_activity(
    user_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    audit_service: AuditService = Depends(get_audit_service),
):
    """Most recent activity of one user with a per-event-type summary"""
    return await audit_service.actor_activity(user_id, start_date=start_date, end_date=end_date)


@router.get("/export")
async def export_audit_logs(
    query: AuditQuery = Depends(audit_filters),
    audit_service: AuditService = Depends(get_audit_service),
):
    """
    Export matching audit logs as CSV

    Pagination parameters are ignored; every matching entry is exported.
    """
    logger.info("audit_export_requested", filters=query.model_dump(exclude_none=True, mode="json"))
    content = await audit_service.export_csv(query)
    filename = f"audit_logs_{datetime.now(timezone.utc).date().isoformat()}.csv"
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{entry_id}", response_model=AuditEntry)
async def get_audit_log(
    entry_id: str,
    audit_service: AuditService = Depends(get_audit_service),
):
    """Get specific audit log entry"""
    return await audit_service.get_log(entry_id)
