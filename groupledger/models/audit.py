"""
Audit Models for Group Ledger

Every action that changes a group's ledger, and every balance or settlement
computation shown to a user, is logged for audit purposes.
This provides:
1. Complete traceability of who recorded which payment
2. Debugging information when balances look wrong
3. A way to explain a settlement suggestion after the fact

Audit events are only ever appended; nothing edits or removes them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Groups
    GROUP_CREATED = "group_created"
    MEMBER_ADDED = "member_added"
    SHADOW_MEMBER_LINKED = "shadow_member_linked"

    # Ledger writes
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_REJECTED = "expense_rejected"
    SETTLEMENT_RECORDED = "settlement_recorded"
    SETTLEMENT_DUPLICATE_IGNORED = "settlement_duplicate_ignored"

    # Computations
    BALANCES_COMPUTED = "balances_computed"
    SETTLEMENTS_SUGGESTED = "settlements_suggested"
    SETTLEMENT_CALCULATION_FAILED = "settlement_calculation_failed"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """How loud an event is in logs and dashboards."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    One entry in the audit trail.

    Group changes, ledger writes and derived computations each emit one.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Event id"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="UTC time the event was emitted"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="What happened"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Log level for the event"
    )

    # Subject
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'entry')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="Group or entry id"
    )

    # Events from one request share this
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one bulk settle-up)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="One-line summary for people reading the trail"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific fields (amounts, counts, ids)"
    )

    # Failures only
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # Who triggered it
    actor_id: Optional[str] = Field(
        default=None,
        description="Member identifier of the user who triggered the event"
    )
    is_user_action: bool = Field(
        default=False,
        description="True when a person, not the system, caused the event"
    )

    def to_log_dict(self) -> dict:
        """Flat dict for structlog key-value output."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "actor_id": self.actor_id,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        One AuditLog worksheet row.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, actor_id,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            self.actor_id or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    One factory per audited step; callers never build AuditEvent by hand.

    Usage:
        event = AuditEventBuilder.expense_added(entry_id, group_id, "1200.00", actor_id)
        event = AuditEventBuilder.settlement_recorded(entry_id, group_id, ...)
    """

    @staticmethod
    def group_created(
        group_id: UUID,
        name: str,
        member_count: int,
        actor_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Group created: {name}",
            details={
                "name": name,
                "member_count": member_count,
            },
            actor_id=actor_id,
            is_user_action=True,
        )

    @staticmethod
    def member_added(
        group_id: UUID,
        member_id: str,
        member_name: str,
        is_shadow: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_ADDED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Member added: {member_name}",
            details={
                "member_id": member_id,
                "is_shadow": is_shadow,
            },
            is_user_action=True,
        )

    @staticmethod
    def shadow_member_linked(
        group_id: UUID,
        old_id: str,
        account_id: str,
        rewritten_entries: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHADOW_MEMBER_LINKED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description="Shadow member linked to registered account",
            details={
                "shadow_id": old_id,
                "account_id": account_id,
                "rewritten_entries": rewritten_entries,
            },
            actor_id=account_id,
        )

    @staticmethod
    def expense_added(
        entry_id: UUID,
        group_id: UUID,
        amount: str,
        category: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Expense added: ₹{amount} ({category})",
            details={
                "group_id": str(group_id),
                "amount": amount,
                "category": category,
            },
            actor_id=actor_id,
            is_user_action=True,
        )

    @staticmethod
    def expense_updated(
        entry_id: UUID,
        group_id: UUID,
        amount: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Expense updated: ₹{amount}",
            details={
                "group_id": str(group_id),
                "amount": amount,
            },
            actor_id=actor_id,
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(
        entry_id: UUID,
        group_id: UUID,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description="Expense soft-deleted",
            details={
                "group_id": str(group_id),
            },
            actor_id=actor_id,
            is_user_action=True,
        )

    @staticmethod
    def expense_rejected(
        entry_id: UUID,
        group_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry rejected by validation with {len(issues)} issues",
            details={
                "group_id": str(group_id),
                "issues": issues,
            },
        )

    @staticmethod
    def settlement_recorded(
        entry_id: UUID,
        group_id: UUID,
        payer_id: str,
        receiver_id: str,
        amount: str,
        warning: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_RECORDED,
            severity=AuditSeverity.WARNING if warning else AuditSeverity.INFO,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Settlement recorded: ₹{amount}",
            details={
                "group_id": str(group_id),
                "payer_id": payer_id,
                "receiver_id": receiver_id,
                "amount": amount,
                "warning": warning,
            },
            actor_id=payer_id,
            is_user_action=True,
        )

    @staticmethod
    def settlement_duplicate_ignored(
        entry_id: UUID,
        group_id: UUID,
        idempotency_key: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_DUPLICATE_IGNORED,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description="Settlement already recorded for this idempotency key",
            details={
                "group_id": str(group_id),
                "idempotency_key": idempotency_key,
            },
        )

    @staticmethod
    def balances_computed(
        group_id: UUID,
        member_count: int,
        entry_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_COMPUTED,
            severity=AuditSeverity.DEBUG,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Balances computed over {entry_count} entries",
            details={
                "member_count": member_count,
                "entry_count": entry_count,
            },
        )

    @staticmethod
    def settlements_suggested(
        group_id: UUID,
        suggestion_count: int,
        total_amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENTS_SUGGESTED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"{suggestion_count} settlements suggested",
            details={
                "suggestion_count": suggestion_count,
                "total_amount": total_amount,
            },
        )

    @staticmethod
    def settlement_calculation_failed(
        group_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_CALCULATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description="Settlement calculation failed",
            error_message=error_message,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={
                "operation": operation,
            },
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
