"""
Data Models Package

This package contains all Pydantic models used in the Group Ledger system.
All data flowing through the system must conform to these schemas.
"""

from groupledger.models.ledger import (
    ExpenseCategory,
    Group,
    GroupType,
    IdentifierKind,
    IdRef,
    BalanceEntry,
    LedgerEntry,
    LinkResult,
    Member,
    MemberId,
    PopulatedRef,
    Reference,
    SettlementParty,
    SettlementSuggestion,
    SpendingSummary,
    Split,
    UnresolvedRef,
    ValidationIssue,
    ValidationResult,
    reference_id,
    to_reference,
)
from groupledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "ExpenseCategory",
    "Group",
    "GroupType",
    "IdentifierKind",
    "IdRef",
    "BalanceEntry",
    "LedgerEntry",
    "LinkResult",
    "Member",
    "MemberId",
    "PopulatedRef",
    "Reference",
    "SettlementParty",
    "SettlementSuggestion",
    "SpendingSummary",
    "Split",
    "UnresolvedRef",
    "ValidationIssue",
    "ValidationResult",
    "reference_id",
    "to_reference",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
