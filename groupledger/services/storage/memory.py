"""
In-Memory Storage Implementation

Keeps groups, entries and audit events in process memory. Used by the
test-suite and when no Google Sheets backend is configured.

Stored objects are deep copies, so callers mutating what they passed in
(or what they got back) cannot change what is stored, the same as with a
real backend.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

from groupledger.models.audit import AuditEvent
from groupledger.models.ledger import Group, LedgerEntry, MemberId
from groupledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dictionary-backed group and ledger storage."""

    def __init__(self):
        self._groups: dict[UUID, Group] = {}
        self._entries: dict[UUID, LedgerEntry] = {}
        self._order: list[UUID] = []
        self._lock = asyncio.Lock()

    async def save_group(self, group: Group) -> bool:
        if group.id in self._groups:
            raise DuplicateError(f"Group already exists: {group.id}")
        self._groups[group.id] = group.model_copy(deep=True)
        return True

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def update_group(self, group: Group) -> bool:
        if group.id not in self._groups:
            raise NotFoundError(f"Group not found: {group.id}")
        self._groups[group.id] = group.model_copy(deep=True)
        return True

    async def list_groups_for_member(self, member_id: str) -> list[Group]:
        groups = [
            g.model_copy(deep=True)
            for g in self._groups.values()
            if g.created_by.value == member_id or g.has_member(member_id)
        ]
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    async def append_entry(self, entry: LedgerEntry) -> bool:
        if entry.id in self._entries:
            raise DuplicateError(f"Entry already exists: {entry.id}")
        if entry.idempotency_key and entry.group_id:
            existing = await self.find_entry_by_idempotency_key(
                entry.group_id, entry.idempotency_key
            )
            if existing is not None:
                raise DuplicateError(
                    f"Entry already recorded for key {entry.idempotency_key}"
                )
        self._entries[entry.id] = entry.model_copy(deep=True)
        self._order.append(entry.id)
        return True

    async def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        entry = self._entries.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    async def update_entry(self, entry: LedgerEntry) -> bool:
        if entry.id not in self._entries:
            raise NotFoundError(f"Entry not found: {entry.id}")
        self._entries[entry.id] = entry.model_copy(deep=True)
        return True

    async def list_entries(
        self,
        group_id: UUID,
        include_deleted: bool = False,
    ) -> list[LedgerEntry]:
        entries = []
        for entry_id in self._order:
            entry = self._entries[entry_id]
            if entry.group_id != group_id:
                continue
            if entry.is_deleted and not include_deleted:
                continue
            entries.append(entry.model_copy(deep=True))
        return entries

    async def soft_delete_entry(
        self,
        entry_id: UUID,
        deleted_by: Optional[str] = None,
    ) -> LedgerEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        entry.is_deleted = True
        entry.deleted_at = datetime.utcnow()
        entry.deleted_by = deleted_by
        return entry.model_copy(deep=True)

    async def find_entry_by_idempotency_key(
        self,
        group_id: UUID,
        idempotency_key: str,
    ) -> Optional[LedgerEntry]:
        for entry in self._entries.values():
            if entry.group_id == group_id and entry.idempotency_key == idempotency_key:
                return entry.model_copy(deep=True)
        return None

    async def find_groups_with_shadow_contact(
        self,
        email: Optional[str],
        phone: Optional[str],
    ) -> list[Group]:
        email = email.strip().lower() if email else None
        phone = phone.strip() if phone else None
        matches = []
        for group in self._groups.values():
            for member in group.members:
                if not member.is_shadow:
                    continue
                if (email and member.email == email) or (phone and member.phone == phone):
                    matches.append(group.model_copy(deep=True))
                    break
        return matches

    async def rewrite_member_id(
        self,
        group_id: UUID,
        old_id: MemberId,
        new_id: MemberId,
    ) -> int:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                raise NotFoundError(f"Group not found: {group_id}")

            updated_group = group.model_copy(deep=True)
            if not updated_group.relink_member(old_id, new_id):
                return 0

            rewritten = {}
            for entry_id, entry in self._entries.items():
                if entry.group_id != group_id:
                    continue
                changed = entry.rewrite_member(old_id.value, new_id.value)
                if changed is not None:
                    rewritten[entry_id] = changed

            # Commit everything at once so a reader never sees half a migration
            self._groups[group_id] = updated_group
            self._entries.update(rewritten)
            return len(rewritten)


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit log."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
