"""
Main Orchestrator for Group Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Group membership (create group → add members → link shadows)
2. Recording (expense → validate → append; debt payment → settlement entry)
3. Reading (ledger → balances → settlement suggestions / spend summary)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No entry reaches the ledger without passing validation
- Balances and suggestions are always derived, never stored
- Paying a debt appends a settlement entry, it never edits history
- Every step is audited

Writes to one group's ledger are serialized with a per-group lock, and
settlements carry idempotency keys so a retried request records once.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from groupledger.analytics import summarize_spending
from groupledger.audit import AuditLogger, create_correlation_id
from groupledger.balances import (
    compute_balances,
    compute_member_position,
    pairwise_debt,
    to_decimal,
)
from groupledger.config import get_settings, validate_all_settings
from groupledger.identity import IdentitySet, derive_shadow_id
from groupledger.models.ledger import (
    ExpenseCategory,
    Group,
    GroupType,
    LedgerEntry,
    Member,
    MemberId,
    SettlementSuggestion,
    SpendingSummary,
    Split,
    ValidationIssue,
    ValidationResult,
)
from groupledger.services.linking import ShadowLinkService
from groupledger.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
)
from groupledger.settlement import SettlementCalculationError, simplify_debts
from groupledger.validation import LedgerEntryValidator

logger = structlog.get_logger("groupledger.orchestrator")

SETTLEMENT_FAILED_MESSAGE = "Failed to calculate settlements"

MemberInput = Union[Member, Mapping[str, Any]]
PayerInput = Union[str, MemberId, Member, Mapping[str, Any]]


class EntryValidationError(Exception):
    """An entry was rejected by validation and was not recorded."""

    def __init__(self, result: ValidationResult, message: str):
        super().__init__(message)
        self.result = result


class GroupNotFoundError(NotFoundError):
    """The requested group does not exist."""
    pass


class ImmutableEntryError(Exception):
    """Settlement entries cannot be edited; delete and record a new one."""
    pass


def _build_member(data: MemberInput) -> Member:
    """
    Member from a model or a mapping with name, email, phone, account_id.

    Members without an account id get a shadow id derived from their
    email or phone (MissingContactError when they have neither).
    """
    if isinstance(data, Member):
        return data
    account_id = data.get("account_id")
    if account_id:
        member_id = MemberId.account(account_id)
    else:
        member_id = derive_shadow_id(data.get("email"), data.get("phone"))
    return Member(
        id=member_id,
        name=data.get("name") or "",
        email=data.get("email"),
        phone=data.get("phone"),
    )


def _payer_value(payer: PayerInput) -> Any:
    if isinstance(payer, Member):
        return payer.id
    return payer


def _result_from_model_error(error: ValidationError) -> ValidationResult:
    """Report pydantic schema errors the same way the validator does."""
    issues = [
        ValidationIssue(
            field=".".join(str(part) for part in err["loc"]) or "entry",
            issue_type="invalid_value",
            message=err["msg"],
            severity="error",
        )
        for err in error.errors()
    ]
    return ValidationResult(
        entry_id=UUID(int=0),
        schema_valid=False,
        semantic_valid=False,
        is_valid=False,
        issues=issues,
    )


class GroupLedgerFlow:
    """
    Orchestrates everything that reads or writes a group's ledger.

    Flow for an expense:
    1. Build → Normalize payer and split references into a LedgerEntry
    2. Validate → Two-stage validation against the group's members
    3. Append → Persist (rejected entries are audited and raised)

    Flow for a debt payment:
    1. Lock → Serialize with other writes to the same group
    2. Deduplicate → Same idempotency key returns the recorded entry
    3. Check → Warn when the amount exceeds the direct debt
    4. Append → Record a SETTLEMENT entry
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: Optional[LedgerEntryValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator or LedgerEntryValidator()
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = get_settings().ledger
        self._epsilon = to_decimal(self._settings.settlement_epsilon)
        self._locks: dict[UUID, asyncio.Lock] = {}

    def _lock_for(self, group_id: UUID) -> asyncio.Lock:
        return self._locks.setdefault(group_id, asyncio.Lock())

    async def _require_group(self, group_id: UUID) -> Group:
        group = await self._storage.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(f"Group not found: {group_id}")
        return group

    async def _require_entry(self, group_id: UUID, entry_id: UUID) -> LedgerEntry:
        entry = await self._storage.get_entry(entry_id)
        if entry is None or entry.group_id != group_id or entry.is_deleted:
            raise NotFoundError(f"Expense not found: {entry_id}")
        return entry

    async def _validate_or_raise(
        self,
        entry: LedgerEntry,
        group: Group,
        correlation_id: UUID,
    ) -> ValidationResult:
        result = self._validator.validate(entry, group.members)
        if not result.is_valid:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in result.issues
            ]
            await self._audit_logger.log_expense_rejected(
                entry_id=entry.id,
                group_id=group.id,
                issues=issues,
                correlation_id=correlation_id,
            )
            raise EntryValidationError(
                result, self._validator.get_user_friendly_summary(result)
            )
        return result

    # ------------------------------------------------------------------
    # Groups and members
    # ------------------------------------------------------------------

    async def create_group(
        self,
        name: str,
        created_by: Member,
        members: Iterable[MemberInput] = (),
        type: GroupType = GroupType.OTHER,
        currency: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        """
        Create a group with its creator as the first member.

        Raises:
            MissingContactError: If a member has no account, email or phone
            ValueError: If two members end up with the same identifier
        """
        correlation_id = correlation_id or create_correlation_id()

        all_members = [created_by]
        for data in members:
            member = _build_member(data)
            if member.key != created_by.key:
                all_members.append(member)

        group = Group(
            name=name,
            created_by=created_by.id,
            type=type,
            currency=currency or self._settings.default_currency,
            members=all_members,
        )
        await self._storage.save_group(group)

        await self._audit_logger.log_group_created(
            group_id=group.id,
            name=group.name,
            member_count=len(group.members),
            actor_id=created_by.key,
            correlation_id=correlation_id,
        )
        return group

    async def add_member(
        self,
        group_id: UUID,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Member:
        """
        Add a member to a group.

        Without an account id the member is a shadow member identified by
        email (preferred) or phone.

        Raises:
            GroupNotFoundError: If the group doesn't exist
            MissingContactError: If no account id, email or phone is given
            DuplicateError: If the member is already in the group
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._lock_for(group_id):
            group = await self._require_group(group_id)
            member = _build_member({
                "name": name,
                "email": email,
                "phone": phone,
                "account_id": account_id,
            })
            if group.has_member(member.id):
                raise DuplicateError(f"{member.name} is already a member of {group.name}")

            group.members.append(member)
            await self._storage.update_group(group)

        await self._audit_logger.log_member_added(
            group_id=group_id,
            member_id=member.key,
            member_name=member.name,
            is_shadow=member.is_shadow,
            correlation_id=correlation_id,
        )
        return member

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    async def add_expense(
        self,
        group_id: UUID,
        description: str,
        amount: Union[Decimal, float, str],
        payer: PayerInput,
        splits: Iterable[Union[Split, Mapping[str, Any]]],
        category: ExpenseCategory = ExpenseCategory.UNCATEGORIZED,
        occurred_at: Optional[datetime] = None,
        payer_name: Optional[str] = None,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[LedgerEntry, ValidationResult]:
        """
        Validate and record an expense.

        Returns:
            (entry, validation_result); the result may carry warnings

        Raises:
            GroupNotFoundError: If the group doesn't exist
            EntryValidationError: If validation fails; nothing is recorded
        """
        correlation_id = correlation_id or create_correlation_id()

        if ExpenseCategory(category) == ExpenseCategory.SETTLEMENT:
            raise ValueError("Debt payments are recorded with settle_debt")

        async with self._lock_for(group_id):
            group = await self._require_group(group_id)

            data = {
                "group_id": group_id,
                "description": description,
                "amount": amount,
                "category": category,
                "payer": _payer_value(payer),
                "payer_name_fallback": payer_name,
                "splits": list(splits),
            }
            if occurred_at is not None:
                data["occurred_at"] = occurred_at
            try:
                entry = LedgerEntry.model_validate(data)
            except ValidationError as e:
                result = _result_from_model_error(e)
                raise EntryValidationError(
                    result, self._validator.get_user_friendly_summary(result)
                ) from e

            result = await self._validate_or_raise(entry, group, correlation_id)
            await self._storage.append_entry(entry)

        await self._audit_logger.log_expense_added(
            entry_id=entry.id,
            group_id=group_id,
            amount=str(entry.amount),
            category=entry.category.value,
            actor_id=actor_id,
            correlation_id=correlation_id,
        )
        return entry, result

    async def update_expense(
        self,
        group_id: UUID,
        entry_id: UUID,
        description: Optional[str] = None,
        amount: Optional[Union[Decimal, float, str]] = None,
        payer: Optional[PayerInput] = None,
        splits: Optional[Iterable[Union[Split, Mapping[str, Any]]]] = None,
        category: Optional[ExpenseCategory] = None,
        occurred_at: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[LedgerEntry, ValidationResult]:
        """
        Edit an expense. Only the given fields change.

        Raises:
            NotFoundError: If the expense doesn't exist or was deleted
            ImmutableEntryError: If the entry is a settlement
            EntryValidationError: If the edited entry fails validation
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._lock_for(group_id):
            group = await self._require_group(group_id)
            current = await self._require_entry(group_id, entry_id)
            if current.is_settlement:
                raise ImmutableEntryError(
                    "Settlements cannot be edited; delete it and record a new payment"
                )
            if category is not None and ExpenseCategory(category) == ExpenseCategory.SETTLEMENT:
                raise ValueError("An expense cannot be turned into a settlement")

            data = current.model_dump()
            updates = {
                "description": description,
                "amount": amount,
                "payer": _payer_value(payer) if payer is not None else None,
                "splits": list(splits) if splits is not None else None,
                "category": category,
                "occurred_at": occurred_at,
            }
            data.update({k: v for k, v in updates.items() if v is not None})
            if payer is not None:
                data["payer_name_fallback"] = None
            try:
                entry = LedgerEntry.model_validate(data)
            except ValidationError as e:
                result = _result_from_model_error(e)
                raise EntryValidationError(
                    result, self._validator.get_user_friendly_summary(result)
                ) from e

            result = await self._validate_or_raise(entry, group, correlation_id)
            await self._storage.update_entry(entry)

        await self._audit_logger.log_expense_updated(
            entry_id=entry.id,
            group_id=group_id,
            amount=str(entry.amount),
            actor_id=actor_id,
            correlation_id=correlation_id,
        )
        return entry, result

    async def delete_expense(
        self,
        group_id: UUID,
        entry_id: UUID,
        deleted_by: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """
        Soft-delete an entry (expense or settlement).

        The entry stays in storage and drops out of every balance.
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._lock_for(group_id):
            await self._require_entry(group_id, entry_id)
            entry = await self._storage.soft_delete_entry(entry_id, deleted_by)

        await self._audit_logger.log_expense_deleted(
            entry_id=entry_id,
            group_id=group_id,
            actor_id=deleted_by,
            correlation_id=correlation_id,
        )
        return entry

    # ------------------------------------------------------------------
    # Settling debts
    # ------------------------------------------------------------------

    async def settle_debt(
        self,
        group_id: UUID,
        payer_id: str,
        receiver_id: str,
        amount: Union[Decimal, float, str],
        payer_name: Optional[str] = None,
        receiver_name: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[LedgerEntry, Optional[str]]:
        """
        Record that `payer_id` paid `receiver_id` back.

        The payment is a SETTLEMENT entry with the debtor as payer and the
        creditor as the single split, which cancels the debt once balances
        are recomputed.

        Returns:
            (entry, warning); warning is set when the amount exceeds the
            direct debt between the two by more than the overpayment buffer.
            A repeated idempotency key returns the entry already recorded.

        Raises:
            GroupNotFoundError: If the group doesn't exist
            EntryValidationError: If the payment is malformed (e.g. paying oneself)
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._lock_for(group_id):
            group = await self._require_group(group_id)

            if idempotency_key:
                existing = await self._storage.find_entry_by_idempotency_key(
                    group_id, idempotency_key
                )
                if existing is not None:
                    await self._audit_logger.log_settlement_duplicate_ignored(
                        entry_id=existing.id,
                        group_id=group_id,
                        idempotency_key=idempotency_key,
                        correlation_id=correlation_id,
                    )
                    return existing, None

            try:
                entry = LedgerEntry.model_validate({
                    "group_id": group_id,
                    "description": "Settlement",
                    "amount": amount,
                    "category": ExpenseCategory.SETTLEMENT,
                    "payer": payer_id,
                    "payer_name_fallback": payer_name,
                    "splits": [{
                        "member": receiver_id,
                        "member_name_fallback": receiver_name,
                        "amount": amount,
                    }],
                    "idempotency_key": idempotency_key,
                })
            except ValidationError as e:
                result = _result_from_model_error(e)
                raise EntryValidationError(
                    result, self._validator.get_user_friendly_summary(result)
                ) from e

            await self._validate_or_raise(entry, group, correlation_id)

            entries = await self._storage.list_entries(group_id)
            debt = pairwise_debt(group.members, entries, str(payer_id), str(receiver_id))
            warning = None
            if entry.amount > debt + to_decimal(self._settings.overpayment_buffer):
                symbol = self._settings.currency_symbol
                warning = (
                    f"Note: Settlement amount ({symbol}{entry.amount:.2f}) exceeds "
                    f"calculated debt ({symbol}{debt:.2f})"
                )

            try:
                await self._storage.append_entry(entry)
            except DuplicateError:
                # Recorded by a concurrent writer sharing the storage
                if not idempotency_key:
                    raise
                existing = await self._storage.find_entry_by_idempotency_key(
                    group_id, idempotency_key
                )
                if existing is None:
                    raise
                return existing, None

        await self._audit_logger.log_settlement_recorded(
            entry_id=entry.id,
            group_id=group_id,
            payer_id=str(payer_id),
            receiver_id=str(receiver_id),
            amount=str(entry.amount),
            warning=warning,
            correlation_id=correlation_id,
        )
        return entry, warning

    async def accept_suggestion(
        self,
        group_id: UUID,
        suggestion: SettlementSuggestion,
        idempotency_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[LedgerEntry, Optional[str]]:
        """Record a suggested settlement as paid."""
        return await self.settle_debt(
            group_id=group_id,
            payer_id=suggestion.from_member.id,
            receiver_id=suggestion.to_member.id,
            amount=suggestion.amount,
            payer_name=suggestion.from_member.name,
            receiver_name=suggestion.to_member.name,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        )

    async def bulk_settle(
        self,
        group_id: UUID,
        suggestions: list[SettlementSuggestion],
        idempotency_prefix: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[tuple[LedgerEntry, Optional[str]]]:
        """
        Record several settlements in order ("settle all").

        With an idempotency prefix, suggestion N is recorded under key
        "<prefix>:N", so retrying the whole batch records nothing twice.
        """
        if not suggestions:
            raise ValueError("Settlements are required and must not be empty")

        correlation_id = correlation_id or create_correlation_id()
        await self._require_group(group_id)

        results = []
        for index, suggestion in enumerate(suggestions):
            key = f"{idempotency_prefix}:{index}" if idempotency_prefix else None
            results.append(await self.accept_suggestion(
                group_id,
                suggestion,
                idempotency_key=key,
                correlation_id=correlation_id,
            ))
        return results

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    async def get_balances(
        self,
        group_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, Decimal]:
        """Net balance per member (positive = is owed money)."""
        group = await self._require_group(group_id)
        entries = await self._storage.list_entries(group_id)
        balances = compute_balances(group.members, entries, self._epsilon)

        await self._audit_logger.log_balances_computed(
            group_id=group_id,
            member_count=len(group.members),
            entry_count=len(entries),
            correlation_id=correlation_id,
        )
        return balances

    async def get_my_position(
        self,
        group_id: UUID,
        identity: IdentitySet,
    ) -> Decimal:
        """Net position of the current user in one group."""
        group = await self._require_group(group_id)
        entries = await self._storage.list_entries(group_id)
        return compute_member_position(group.members, entries, identity, self._epsilon)

    async def suggest_settlements(
        self,
        group_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[list[SettlementSuggestion], str]:
        """
        Suggest the payments that settle every debt in the group.

        Returns:
            (suggestions, message). On a calculation failure the list is
            empty and the message is "Failed to calculate settlements".
        """
        correlation_id = correlation_id or create_correlation_id()
        group = await self._require_group(group_id)
        balances = await self.get_balances(group_id, correlation_id)

        try:
            suggestions = simplify_debts(balances, group.members, self._epsilon)
        except SettlementCalculationError as e:
            logger.error(
                "settlement_calculation_failed",
                group_id=str(group_id),
                error=str(e),
            )
            await self._audit_logger.log_settlement_calculation_failed(
                group_id=group_id,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return [], SETTLEMENT_FAILED_MESSAGE

        total = sum((s.amount for s in suggestions), Decimal("0"))
        await self._audit_logger.log_settlements_suggested(
            group_id=group_id,
            suggestion_count=len(suggestions),
            total_amount=str(total),
            correlation_id=correlation_id,
        )

        if not suggestions:
            return [], "Everyone is settled up"
        return suggestions, f"{len(suggestions)} payment(s) settle all debts in {group.name}"

    async def get_spending_summary(
        self,
        group_id: UUID,
        identity: Optional[IdentitySet] = None,
    ) -> SpendingSummary:
        """Spend totals for the group, settlements excluded."""
        group = await self._require_group(group_id)
        entries = await self._storage.list_entries(group_id)
        return summarize_spending(entries, group.members, identity)


def create_app_components(
    use_storage: bool = True,
) -> tuple[GroupLedgerFlow, ShadowLinkService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use Google Sheets storage.
                    Falls back to in-memory storage when False or when
                    Sheets is not configured.

    Returns:
        (ledger_flow, link_service, sheets_client)
    """
    sheets_client = None
    ledger_storage = None
    audit_storage = None

    if use_storage and get_settings().app.use_google_sheets:
        status = validate_all_settings()
        if status["google_sheets"]:
            try:
                sheets_client = GoogleSheetsClient()
                ledger_storage = GoogleSheetsLedgerStorage(sheets_client)
                audit_storage = GoogleSheetsAuditStorage(sheets_client)
            except Exception as e:
                # Storage not configured - continue in memory
                logger.warning("storage_not_configured", error=str(e))
                sheets_client = None
                ledger_storage = None
                audit_storage = None
        else:
            logger.warning(
                "storage_not_configured",
                error=status.get("google_sheets_error", ""),
            )

    if ledger_storage is None:
        ledger_storage = InMemoryLedgerStorage()
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)

    ledger_flow = GroupLedgerFlow(
        storage=ledger_storage,
        audit_logger=audit_logger,
    )
    link_service = ShadowLinkService(
        storage=ledger_storage,
        audit_logger=audit_logger,
    )

    return ledger_flow, link_service, sheets_client
