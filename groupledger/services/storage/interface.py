"""
Abstract Storage Interface

The flows depend only on these two ABCs; Google Sheets and in-memory
backends implement them, and balance and settlement code never touches
storage at all.

The ledger is append-only for balance purposes: entries are soft-deleted,
never removed, and paying a debt appends a new entry.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from groupledger.models.audit import AuditEvent
from groupledger.models.ledger import Group, LedgerEntry, MemberId


class LedgerStorageInterface(ABC):
    """
    Groups with their members, and the ledger entries of each group.

    Entries are listed in the order they were appended.
    """

    @abstractmethod
    async def save_group(self, group: Group) -> bool:
        """
        Save a new group.

        Raises:
            DuplicateError: If a group with this ID already exists
            StorageError: If the backend write fails
        """
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        """
        Retrieve a group by its ID.

        Returns:
            The group if found, None otherwise
        """
        pass

    @abstractmethod
    async def update_group(self, group: Group) -> bool:
        """
        Replace a stored group (name, type, members).

        Raises:
            NotFoundError: If the group doesn't exist
        """
        pass

    @abstractmethod
    async def list_groups_for_member(self, member_id: str) -> list[Group]:
        """
        List groups the member created or belongs to, newest first.
        """
        pass

    @abstractmethod
    async def append_entry(self, entry: LedgerEntry) -> bool:
        """
        Append a ledger entry.

        Raises:
            DuplicateError: If an entry with the same ID or the same
                            idempotency key already exists in the group
            StorageError: If the backend write fails
        """
        pass

    @abstractmethod
    async def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        """Retrieve an entry by ID, deleted or not."""
        pass

    @abstractmethod
    async def update_entry(self, entry: LedgerEntry) -> bool:
        """
        Replace a stored entry.

        Raises:
            NotFoundError: If the entry doesn't exist
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        group_id: UUID,
        include_deleted: bool = False,
    ) -> list[LedgerEntry]:
        """
        List a group's entries in the order they were recorded.

        Args:
            group_id: The group
            include_deleted: Also return soft-deleted entries
        """
        pass

    @abstractmethod
    async def soft_delete_entry(
        self,
        entry_id: UUID,
        deleted_by: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Mark an entry deleted. It stays in storage for the audit trail.

        Raises:
            NotFoundError: If the entry doesn't exist
        """
        pass

    @abstractmethod
    async def find_entry_by_idempotency_key(
        self,
        group_id: UUID,
        idempotency_key: str,
    ) -> Optional[LedgerEntry]:
        """Find the entry recorded with this key in the group, if any."""
        pass

    @abstractmethod
    async def find_groups_with_shadow_contact(
        self,
        email: Optional[str],
        phone: Optional[str],
    ) -> list[Group]:
        """
        Find groups containing a shadow member with this email
        (case-insensitive) or phone (exact).
        """
        pass

    @abstractmethod
    async def rewrite_member_id(
        self,
        group_id: UUID,
        old_id: MemberId,
        new_id: MemberId,
    ) -> int:
        """
        Replace a member identifier in a group and in all its entries.

        Must be atomic per group and idempotent: if `old_id` no longer
        appears, nothing changes.

        Returns:
            Number of ledger entries rewritten
        """
        pass


class AuditStorageInterface(ABC):
    """
    Append-only store for audit events.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Store one audit event.

        Returns:
            True if the event was stored
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID, in chronological order.
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Any failure inside a storage backend."""
    pass


class NotFoundError(StorageError):
    """No record with the requested id."""
    pass


class DuplicateError(StorageError):
    """The id or idempotency key is already stored."""
    pass


class ConnectionError(StorageError):
    """The backend could not be reached or authorized."""
    pass
