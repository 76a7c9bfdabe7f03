"""Audit Models"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

from phi_guard.utils.errors import AuditEntryInvalid


class EventType(str, Enum):
    """Compliance event types"""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    FAILED_LOGIN = "failed_login"
    CREDENTIAL_CHANGE = "credential_change"
    DATA_EXPORT = "data_export"
    DATA_IMPORT = "data_import"
    FILE_UPLOAD = "file_upload"
    FILE_DOWNLOAD = "file_download"
    REPORT_GENERATION = "report_generation"
    ACCESS_DENIED = "access_denied"
    SYSTEM_ERROR = "system_error"


SECURITY_EVENT_TYPES = frozenset({
    EventType.LOGIN,
    EventType.LOGOUT,
    EventType.FAILED_LOGIN,
    EventType.CREDENTIAL_CHANGE,
    EventType.ACCESS_DENIED,
})


class Severity(str, Enum):
    """Audit severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def raise_severity(current: Severity, floor: Severity) -> Severity:
    """Return the higher of two severities"""
    return floor if floor.rank > current.rank else current


class Outcome(str, Enum):
    """Outcome of the audited action. WARNING is reserved for manual entries."""
    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"


class ResourceType(str, Enum):
    """Resource families"""
    ACTOR = "actor"
    PATIENT = "patient"
    DOCUMENT = "document"
    REPORT = "report"
    AUTH = "auth"
    SYSTEM = "system"


PHI_RESOURCE_TYPES = frozenset({
    ResourceType.PATIENT,
    ResourceType.DOCUMENT,
    ResourceType.REPORT,
})


class AuditEntryDraft(BaseModel):
    """An audit event that has not been persisted yet"""
    actor_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    action: str
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    resource_type: ResourceType = ResourceType.SYSTEM
    event_type: EventType
    severity: Severity = Severity.LOW
    outcome: Outcome = Outcome.SUCCESS
    phi_accessed: bool = False
    phi_fields: Optional[List[str]] = None
    purpose: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    location: Optional[str] = None
    context: Optional[str] = None
    timestamp: Optional[datetime] = None
    duration_ms: Optional[int] = None

    def invariant_violations(self) -> List[str]:
        """List the audit entry invariants this draft breaks"""
        problems = []
        if not self.action or not self.action.strip():
            problems.append("action is required")
        if self.phi_accessed and not self.phi_fields and not self.purpose:
            problems.append(
                "phi_accessed entries need phi_fields or a purpose justification"
            )
        if self.duration_ms is not None and self.duration_ms < 0:
            problems.append("duration_ms cannot be negative")
        return problems

    def ensure_valid(self) -> None:
        """
        Raises:
            AuditEntryInvalid: listing every broken invariant
        """
        problems = self.invariant_violations()
        if problems:
            raise AuditEntryInvalid("; ".join(problems), details={"problems": problems})


class AuditEntry(AuditEntryDraft):
    """Persisted, immutable audit log entry"""
    entry_id: str
    timestamp: datetime

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "entry_id": "6f1c2a9e-4b1d-4a53-9d55-0d6b7d3c1e10",
                "timestamp": "2024-01-15T10:30:00Z",
                "actor_id": "2b0f5c1e-9a7d-4e7f-8f43-1a2b3c4d5e6f",
                "ip_address": "192.168.1.100",
                "action": "GET /patients/8c5e0c52-2f61-4d7e-a1f4-7f0b9a1d2c3e",
                "resource": "/patients/8c5e0c52-2f61-4d7e-a1f4-7f0b9a1d2c3e",
                "resource_type": "patient",
                "event_type": "read",
                "severity": "high",
                "outcome": "success",
                "phi_accessed": True,
                "phi_fields": ["patient_record"],
                "purpose": "patient_care"
            }
        }


class AuditQuery(BaseModel):
    """Filters and pagination for audit log queries"""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    actor_id: Optional[str] = None
    event_types: Optional[List[EventType]] = None
    severity: Optional[Severity] = None
    outcome: Optional[Outcome] = None
    resource_type: Optional[ResourceType] = None
    phi_accessed: Optional[bool] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AuditPage(BaseModel):
    """One page of audit log entries"""
    entries: List[AuditEntry]
    pagination: Pagination


class AuditStats(BaseModel):
    """Aggregate audit counts over a time window"""
    total_entries: int
    phi_access_count: int
    security_events_count: int
    failed_logins_count: int
    recent_activity: int
    events_by_type: Dict[str, int]
    events_by_severity: Dict[str, int]


class ActorActivity(BaseModel):
    """Activity summary for one actor"""
    actor_id: str
    activity: List[AuditEntry]
    total_activity: int
    phi_access_count: int
    failed_logins: int
    activity_by_type: Dict[str, int]


class RequestContext(BaseModel):
    """Origin details of the request an audit entry describes"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resource: Optional[str] = None
    location: Optional[str] = None
    session_id: Optional[str] = None

    def apply(self, draft: AuditEntryDraft) -> AuditEntryDraft:
        """Copy of `draft` with origin fields filled where it left them empty"""
        fields = self.model_dump(exclude_none=True)
        update = {k: v for k, v in fields.items() if getattr(draft, k) is None}
        return draft.model_copy(update=update)
