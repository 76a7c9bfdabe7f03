"""Audit Query and Export Service"""

import csv
import io
import math
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import structlog

from phi_guard.models.audit import (
    ActorActivity,
    AuditEntry,
    AuditPage,
    AuditQuery,
    AuditStats,
    EventType,
    Pagination,
    SECURITY_EVENT_TYPES,
)
from phi_guard.repositories.audit_store import AuditStore
from phi_guard.utils.errors import AuditEntryNotFound, InvalidAuditFilter

logger = structlog.get_logger()


EXPORT_COLUMNS = [
    "Timestamp",
    "User ID",
    "IP Address",
    "Action",
    "Resource",
    "Event Type",
    "Severity",
    "Status",
    "PHI Accessed",
    "Error Message",
    "Context",
]


class AuditService:
    """
    Read side of the HIPAA audit trail

    Features:
    - Filtered, paginated queries
    - PHI access and security event views
    - Aggregate statistics
    - CSV export

    Nothing here writes audit entries; request-level capture covers the
    endpoints that expose these queries.
    """

    def __init__(self, store: AuditStore, max_limit: int = 100):
        self.store = store
        self.max_limit = max_limit

    async def query_logs(self, query: AuditQuery) -> AuditPage:
        """Query audit logs with filters, newest first"""
        query = self._checked(query)
        entries, total = await self.store.find(query)
        return AuditPage(
            entries=entries,
            pagination=Pagination(
                page=query.page,
                limit=query.limit,
                total=total,
                total_pages=math.ceil(total / query.limit) if total else 0,
            ),
        )

    async def get_log(self, entry_id: str) -> AuditEntry:
        """Get specific audit log"""
        entry = await self.store.get(entry_id)
        if entry is None:
            raise AuditEntryNotFound("Audit log not found", details={"entry_id": entry_id})
        return entry

    async def phi_access_logs(self, query: AuditQuery) -> AuditPage:
        """Entries where PHI was accessed"""
        return await self.query_logs(query.model_copy(update={"phi_accessed": True}))

    async def security_events(self, query: AuditQuery) -> AuditPage:
        """Authentication and access-control events"""
        if query.event_types:
            wanted = [e for e in query.event_types if e in SECURITY_EVENT_TYPES]
        else:
            wanted = sorted(SECURITY_EVENT_TYPES, key=lambda e: e.value)
        if not wanted:
            raise InvalidAuditFilter("event_type is not a security event type")
        return await self.query_logs(query.model_copy(update={"event_types": wanted}))

    async def get_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> AuditStats:
        """Aggregate counts grouped by event type and by severity"""
        window = self._checked(
            AuditQuery(start_date=start_date, end_date=end_date), paginate=False
        )
        now = now or datetime.now(timezone.utc)

        by_type = await self.store.count_by("event_type", window)
        by_severity = await self.store.count_by("severity", window)
        _, phi_count = await self.store.find(
            window.model_copy(update={"phi_accessed": True}), paginate=False
        )

        recent_start = now - timedelta(hours=24)
        if window.start_date and window.start_date > recent_start:
            recent_start = window.start_date
        _, recent = await self.store.find(
            window.model_copy(update={"start_date": recent_start}), paginate=False
        )

        return AuditStats(
            total_entries=sum(by_type.values()),
            phi_access_count=phi_count,
            security_events_count=sum(
                count for name, count in by_type.items()
                if EventType(name) in SECURITY_EVENT_TYPES
            ),
            failed_logins_count=by_type.get(EventType.FAILED_LOGIN.value, 0),
            recent_activity=recent,
            events_by_type=dict(sorted(by_type.items(), key=lambda kv: kv[1], reverse=True)),
            events_by_severity=by_severity,
        )

    async def actor_activity(
        self,
        actor_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> ActorActivity:
        """Audit trail and summary for one actor"""
        window = self._checked(AuditQuery(
            actor_id=actor_id, start_date=start_date, end_date=end_date, limit=limit
        ))
        recent, _ = await self.store.find(window)
        by_type = await self.store.count_by("event_type", window)
        _, phi_count = await self.store.find(
            window.model_copy(update={"phi_accessed": True}), paginate=False
        )

        return ActorActivity(
            actor_id=actor_id,
            activity=recent,
            total_activity=sum(by_type.values()),
            phi_access_count=phi_count,
            failed_logins=by_type.get(EventType.FAILED_LOGIN.value, 0),
            activity_by_type=by_type,
        )

    async def export_csv(self, query: AuditQuery) -> str:
        """
        Export every matching entry as CSV

        Columns follow EXPORT_COLUMNS. Every field is quoted and embedded
        quotes are doubled.
        """
        query = self._checked(query, paginate=False)
        entries, total = await self.store.find(query, paginate=False)

        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(EXPORT_COLUMNS)
        for entry in entries:
            writer.writerow(export_row(entry))

        logger.info("audit_export_generated", rows=total)
        return buffer.getvalue()

    def _checked(self, query: AuditQuery, paginate: bool = True) -> AuditQuery:
        start = _as_utc(query.start_date)
        end = _as_utc(query.end_date)
        if start and end and start > end:
            raise InvalidAuditFilter(
                "start_date must not be after end_date",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )
        if paginate and query.limit > self.max_limit:
            raise InvalidAuditFilter(
                f"limit must be at most {self.max_limit}",
                details={"limit": query.limit},
            )
        return query.model_copy(update={"start_date": start, "end_date": end})


def export_row(entry: AuditEntry) -> List[str]:
    return [
        _field(entry.timestamp.isoformat()),
        _field(entry.actor_id),
        _field(entry.ip_address),
        _field(entry.action),
        _field(entry.resource),
        _field(entry.event_type.value),
        _field(entry.severity.value),
        _field(entry.outcome.value),
        _field("true" if entry.phi_accessed else "false"),
        _field(entry.error_message),
        _field(entry.context),
    ]


def _field(value: Any) -> str:
    return "" if value is None else str(value)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
