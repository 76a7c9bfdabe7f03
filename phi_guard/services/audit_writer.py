"""Audit Writer"""

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import structlog

from phi_guard.models.audit import (
    AuditEntry,
    AuditEntryDraft,
    EventType,
    Outcome,
    ResourceType,
    Severity,
)
from phi_guard.repositories.audit_store import AuditStore
from phi_guard.rules.audit_classifier import redact_secrets
from phi_guard.utils.config import Settings
from phi_guard.utils.errors import AuditEntryInvalid, PersistenceFailure
from phi_guard.utils.identifiers import generate_unique_id

logger = structlog.get_logger()


@dataclass
class WriterStats:
    """Counters exposed for operational alerting"""
    written: int = 0
    failed: int = 0
    dropped: int = 0
    rejected: int = 0
    consecutive_failures: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class AuditWriter:
    """
    Sole writer of audit entries

    Features:
    - Non-blocking submission onto a bounded queue
    - Background persistence with its own timeout
    - Failure isolation: persistence errors are logged, counted and dropped,
      never raised to the submitting request
    - Batch submission persisted as a single unit
    """

    def __init__(self, store: AuditStore, settings: Settings):
        self.store = store
        self.timeout = settings.AUDIT_WRITE_TIMEOUT_SECONDS
        self.queue_max_size = settings.AUDIT_QUEUE_MAX_SIZE
        self.alert_threshold = settings.AUDIT_FAILURE_ALERT_THRESHOLD
        self.max_id_attempts = settings.ID_GENERATION_MAX_ATTEMPTS
        self.stats = WriterStats()
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    def submit(self, draft: AuditEntryDraft) -> bool:
        """
        Queue a classified draft for persistence

        Returns:
            True if the draft was queued
        """
        if not self._accept(draft):
            return False
        return self._enqueue([draft])

    def create_manual(self, draft: AuditEntryDraft) -> bool:
        """
        Queue a hand-built draft, bypassing classification

        The draft is persisted as given once it passes the audit entry
        invariants. A rejected draft is replaced by a system_error entry.
        """
        return self.submit(draft)

    def submit_batch(self, drafts: Sequence[AuditEntryDraft]) -> bool:
        """Queue several drafts to be persisted together, or not at all"""
        batch = list(drafts)
        if not batch:
            return True
        if not all(self._accept(draft) for draft in batch):
            return False
        return self._enqueue(batch)

    async def start(self) -> None:
        self._ensure_worker()

    async def drain(self) -> None:
        """Wait until everything queued so far has been handled"""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Flush pending entries and stop the worker"""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=self.timeout * 2)
        except asyncio.TimeoutError:
            logger.error("audit_writer_stop_timeout", pending=self._queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("audit_writer_stopped", **self.stats.as_dict())

    def _accept(self, draft: AuditEntryDraft) -> bool:
        try:
            draft.ensure_valid()
            return True
        except AuditEntryInvalid as e:
            problems = e.details["problems"]

        self.stats.rejected += 1
        logger.error(
            "audit_entry_rejected",
            action=draft.action,
            event_type=draft.event_type.value,
            problems=problems,
        )
        self._enqueue([AuditEntryDraft(
            actor_id=draft.actor_id,
            ip_address=draft.ip_address,
            user_agent=draft.user_agent,
            action="AUDIT_ENTRY_REJECTED",
            resource=draft.resource,
            resource_type=ResourceType.SYSTEM,
            event_type=EventType.SYSTEM_ERROR,
            severity=Severity.HIGH,
            outcome=Outcome.FAILURE,
            error_message="; ".join(problems),
            details={
                "rejected_action": draft.action,
                "rejected_event_type": draft.event_type.value,
            },
            context="Audit pipeline validation",
        )])
        return False

    def _enqueue(self, batch: List[AuditEntryDraft]) -> bool:
        self._ensure_worker()
        try:
            self._queue.put_nowait(batch)
        except asyncio.QueueFull:
            self.stats.dropped += len(batch)
            logger.error("audit_queue_full", dropped=len(batch), total_dropped=self.stats.dropped)
            return False
        return True

    def _ensure_worker(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_max_size)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                await self._persist(batch)
            finally:
                self._queue.task_done()

    async def _persist(self, batch: List[AuditEntryDraft]) -> None:
        try:
            entries = [await self._to_entry(draft) for draft in batch]
            await self._write(entries)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(batch, e)
            return

        self.stats.written += len(entries)
        self.stats.consecutive_failures = 0
        for entry in entries:
            logger.info(
                "audit_log_created",
                entry_id=entry.entry_id,
                event_type=entry.event_type.value,
                resource_type=entry.resource_type.value,
                outcome=entry.outcome.value,
            )

    async def _write(self, entries: List[AuditEntry]) -> None:
        write = self.store.add(entries[0]) if len(entries) == 1 else self.store.add_many(entries)
        try:
            await asyncio.wait_for(write, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise PersistenceFailure(
                f"Audit store write timed out after {self.timeout}s",
                details={"entries": len(entries)},
            )

    async def _to_entry(self, draft: AuditEntryDraft) -> AuditEntry:
        entry_id = await generate_unique_id(self.store.exists, self.max_id_attempts)
        data = draft.model_dump()
        data["entry_id"] = entry_id
        data["timestamp"] = draft.timestamp or datetime.now(timezone.utc)
        data["old_values"] = redact_secrets(draft.old_values) if draft.old_values else draft.old_values
        data["new_values"] = redact_secrets(draft.new_values) if draft.new_values else draft.new_values
        if draft.phi_accessed and not draft.phi_fields:
            data["phi_fields"] = [f"{draft.resource_type.value}_record"]
        return AuditEntry(**data)

    def _record_failure(self, batch: List[AuditEntryDraft], error: Exception) -> None:
        self.stats.failed += len(batch)
        self.stats.consecutive_failures += 1
        logger.error(
            "audit_write_failed",
            error=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            entries=len(batch),
            actions=[d.action for d in batch[:5]],
            total_failed=self.stats.failed,
        )
        if self.stats.consecutive_failures >= self.alert_threshold:
            logger.critical(
                "audit_persistence_degraded",
                consecutive_failures=self.stats.consecutive_failures,
                total_failed=self.stats.failed,
            )
