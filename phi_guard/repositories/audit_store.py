"""
Audit Store

Append-only storage for audit entries. Only the audit writer calls add() and
add_many(); everything else reads.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from phi_guard.models.audit import AuditEntry, AuditQuery


class AuditStore(ABC):
    """Persistence interface for audit entries"""

    @abstractmethod
    async def add(self, entry: AuditEntry) -> None:
        ...

    @abstractmethod
    async def add_many(self, entries: Sequence[AuditEntry]) -> None:
        """Persist all entries or none of them"""

    @abstractmethod
    async def get(self, entry_id: str) -> Optional[AuditEntry]:
        ...

    @abstractmethod
    async def find(self, query: AuditQuery, paginate: bool = True) -> Tuple[List[AuditEntry], int]:
        """Matching entries newest first, and the total match count"""

    @abstractmethod
    async def count_by(self, field: str, query: AuditQuery) -> Dict[str, int]:
        """Counts of matching entries grouped by an entry attribute"""

    async def exists(self, entry_id: str) -> bool:
        return await self.get(entry_id) is not None


class InMemoryAuditStore(AuditStore):
    """
    Audit store held in process memory

    Entries are immutable models, so they are shared rather than copied.
    """

    def __init__(self):
        self.entries: List[AuditEntry] = []
        self._index: Dict[str, AuditEntry] = {}

    async def add(self, entry: AuditEntry) -> None:
        if entry.entry_id in self._index:
            raise ValueError(f"Duplicate audit entry id {entry.entry_id}")
        self.entries.append(entry)
        self._index[entry.entry_id] = entry

    async def add_many(self, entries: Sequence[AuditEntry]) -> None:
        ids = [e.entry_id for e in entries]
        if len(set(ids)) != len(ids) or any(i in self._index for i in ids):
            raise ValueError("Duplicate audit entry id in batch")
        for entry in entries:
            self.entries.append(entry)
            self._index[entry.entry_id] = entry

    async def get(self, entry_id: str) -> Optional[AuditEntry]:
        return self._index.get(entry_id)

    async def find(self, query: AuditQuery, paginate: bool = True) -> Tuple[List[AuditEntry], int]:
        matches = sorted(
            (e for e in self.entries if _matcher(query)(e)),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        total = len(matches)
        if paginate:
            matches = matches[query.offset:query.offset + query.limit]
        return matches, total

    async def count_by(self, field: str, query: AuditQuery) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        match = _matcher(query)
        for entry in self.entries:
            if not match(entry):
                continue
            value = getattr(entry, field)
            key = getattr(value, "value", value)
            counts[str(key)] = counts.get(str(key), 0) + 1
        return counts


def _matcher(query: AuditQuery) -> Callable[[AuditEntry], bool]:
    needle = query.search.lower() if query.search else None
    event_types = set(query.event_types) if query.event_types else None

    def match(log: AuditEntry) -> bool:
        if query.start_date and log.timestamp < query.start_date:
            return False
        if query.end_date and log.timestamp > query.end_date:
            return False
        if query.actor_id and log.actor_id != query.actor_id:
            return False
        if event_types and log.event_type not in event_types:
            return False
        if query.severity and log.severity != query.severity:
            return False
        if query.outcome and log.outcome != query.outcome:
            return False
        if query.resource_type and log.resource_type != query.resource_type:
            return False
        if query.phi_accessed is not None and log.phi_accessed != query.phi_accessed:
            return False
        if needle:
            haystack = (log.action, log.resource, log.error_message, log.context)
            if not any(needle in (text or "").lower() for text in haystack):
                return False
        return True

    return match
