"""
Audit Logger

Every ledger write and every balance or settlement computation emits an
AuditEvent. Each event goes to the structlog JSON log and, when a backend
is configured, to audit storage under the request's correlation id.

A failing audit backend is logged and reported as False; it never fails
the ledger operation that emitted the event.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from groupledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from groupledger.services.storage.interface import AuditStorageInterface


# JSON lines through the stdlib logging tree
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "error",
}


class AuditLogger:
    """
    Writes audit events to the local log and to audit storage.

    Without storage (`AuditLogger()`), events are only logged locally.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("groupledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when storage is configured and the write failed.
        """
        level = _LEVELS.get(event.severity, "info")
        getattr(self._logger, level)("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True

        try:
            return await self._storage.append_event(event)
        except Exception as e:
            # Audit trail is best effort
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def log_group_created(
        self,
        group_id: UUID,
        name: str,
        member_count: int,
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log group creation."""
        await self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            name=name,
            member_count=member_count,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_member_added(
        self,
        group_id: UUID,
        member_id: str,
        member_name: str,
        is_shadow: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_added(
            group_id=group_id,
            member_id=member_id,
            member_name=member_name,
            is_shadow=is_shadow,
            correlation_id=correlation_id,
        ))

    async def log_shadow_member_linked(
        self,
        group_id: UUID,
        old_id: str,
        account_id: str,
        rewritten_entries: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.shadow_member_linked(
            group_id=group_id,
            old_id=old_id,
            account_id=account_id,
            rewritten_entries=rewritten_entries,
            correlation_id=correlation_id,
        ))

    async def log_expense_added(
        self,
        entry_id: UUID,
        group_id: UUID,
        amount: str,
        category: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recorded expense."""
        await self.log(AuditEventBuilder.expense_added(
            entry_id=entry_id,
            group_id=group_id,
            amount=amount,
            category=category,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_expense_updated(
        self,
        entry_id: UUID,
        group_id: UUID,
        amount: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_updated(
            entry_id=entry_id,
            group_id=group_id,
            amount=amount,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        entry_id: UUID,
        group_id: UUID,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            entry_id=entry_id,
            group_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_expense_rejected(
        self,
        entry_id: UUID,
        group_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an entry refused by validation."""
        await self.log(AuditEventBuilder.expense_rejected(
            entry_id=entry_id,
            group_id=group_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_settlement_recorded(
        self,
        entry_id: UUID,
        group_id: UUID,
        payer_id: str,
        receiver_id: str,
        amount: str,
        warning: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recorded debt payment."""
        await self.log(AuditEventBuilder.settlement_recorded(
            entry_id=entry_id,
            group_id=group_id,
            payer_id=payer_id,
            receiver_id=receiver_id,
            amount=amount,
            warning=warning,
            correlation_id=correlation_id,
        ))

    async def log_settlement_duplicate_ignored(
        self,
        entry_id: UUID,
        group_id: UUID,
        idempotency_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlement_duplicate_ignored(
            entry_id=entry_id,
            group_id=group_id,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        ))

    async def log_balances_computed(
        self,
        group_id: UUID,
        member_count: int,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balances_computed(
            group_id=group_id,
            member_count=member_count,
            entry_count=entry_count,
            correlation_id=correlation_id,
        ))

    async def log_settlements_suggested(
        self,
        group_id: UUID,
        suggestion_count: int,
        total_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlements_suggested(
            group_id=group_id,
            suggestion_count=suggestion_count,
            total_amount=total_amount,
            correlation_id=correlation_id,
        ))

    async def log_settlement_calculation_failed(
        self,
        group_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlement_calculation_failed(
            group_id=group_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage backend failure."""
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """New id shared by every audit event of one user request."""
    return uuid4()
