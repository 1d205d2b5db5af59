"""
Core Data Models for Group Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Normalize the many shapes a member reference arrives in
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep balances and settlement suggestions derived, never persisted

DESIGN DECISION: A member reference can be a bare identifier, a populated
record, or nothing but a denormalized name. All three are folded into one
`Reference` variant at the model boundary so the balance code never has to
guess what it is holding.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class IdentifierKind(str, Enum):
    """
    Where a member identifier comes from.

    ACCOUNT identifiers belong to registered users.
    SHADOW identifiers are derived from contact details for people who
    have not registered yet, and are rewritten once they do.
    """
    ACCOUNT = "account"
    SHADOW = "shadow"


class ExpenseCategory(str, Enum):
    """
    Ledger entry categories.

    CRITICAL: SETTLEMENT marks a debt payment, not a spend. It counts for
    balances and is excluded from every spending total.
    """
    ENTERTAINMENT = "Entertainment"
    FOOD_AND_DRINK = "Food and Drink"
    HOME = "Home"
    LIFE = "Life"
    TRANSPORTATION = "Transportation"
    UTILITIES = "Utilities"
    UNCATEGORIZED = "Uncategorized"
    SETTLEMENT = "Settlement"


class GroupType(str, Enum):
    """Kind of group, used for display only."""
    TRIP = "Trip"
    HOME = "Home"
    COUPLE = "Couple"
    OTHER = "Other"


# =============================================================================
# IDENTIFIERS AND REFERENCES
# =============================================================================

class MemberId(BaseModel):
    """
    Typed member identifier.

    Two identifiers are equal only when both kind and value match, so an
    account id never collides with a shadow id that happens to share its text.
    """
    model_config = ConfigDict(frozen=True)

    kind: IdentifierKind
    value: str = Field(..., min_length=1)

    @classmethod
    def account(cls, value: Any) -> "MemberId":
        return cls(kind=IdentifierKind.ACCOUNT, value=str(value))

    @classmethod
    def shadow(cls, value: Any) -> "MemberId":
        return cls(kind=IdentifierKind.SHADOW, value=str(value))

    @property
    def is_shadow(self) -> bool:
        return self.kind == IdentifierKind.SHADOW

    def __str__(self) -> str:
        return self.value


class IdRef(BaseModel):
    """A bare identifier."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["id"] = "id"
    id: str = Field(..., min_length=1)


class PopulatedRef(BaseModel):
    """A reference that was populated with the referenced record."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["populated"] = "populated"
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class UnresolvedRef(BaseModel):
    """No usable identifier, at most a denormalized display name."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["unresolved"] = "unresolved"
    fallback_name: Optional[str] = None


Reference = Annotated[
    Union[IdRef, PopulatedRef, UnresolvedRef],
    Field(discriminator="kind"),
]

_REFERENCE_TYPES = {
    "id": IdRef,
    "populated": PopulatedRef,
    "unresolved": UnresolvedRef,
}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_reference(raw: Any, fallback_name: Optional[str] = None) -> Reference:
    """
    Normalize any incoming member reference shape.

    Accepts a bare identifier, a populated dict (`id` or `_id`, optionally
    nested one level as in `{"_id": {"_id": ...}}`), a `MemberId`, an
    existing reference, or None.

    Raises:
        ValueError: If the value cannot be interpreted as a reference
    """
    fallback = _clean(fallback_name)

    if isinstance(raw, (IdRef, PopulatedRef)):
        return raw
    if isinstance(raw, UnresolvedRef):
        if raw.fallback_name is None and fallback:
            return UnresolvedRef(fallback_name=fallback)
        return raw
    if isinstance(raw, MemberId):
        return IdRef(id=raw.value)
    if raw is None:
        return UnresolvedRef(fallback_name=fallback)

    if isinstance(raw, dict):
        kind = raw.get("kind")
        if kind in _REFERENCE_TYPES:
            return _REFERENCE_TYPES[kind].model_validate(raw)

        identifier = raw.get("id", raw.get("_id"))
        if isinstance(identifier, dict):
            identifier = identifier.get("_id", identifier.get("id"))
        identifier = _clean(identifier)
        name = _clean(raw.get("name"))

        if identifier:
            return PopulatedRef(
                id=identifier,
                name=name,
                email=_clean(raw.get("email")),
                phone=_clean(raw.get("phone")),
            )
        return UnresolvedRef(fallback_name=name or fallback)

    if isinstance(raw, (str, int, UUID)):
        identifier = _clean(raw)
        if identifier:
            return IdRef(id=identifier)
        return UnresolvedRef(fallback_name=fallback)

    raise ValueError(f"Unsupported member reference: {raw!r}")


def reference_id(ref: Reference) -> Optional[str]:
    """Identifier carried by a reference, if any."""
    if isinstance(ref, (IdRef, PopulatedRef)):
        return ref.id
    return None


def _rewrite_reference(ref: Reference, old_id: str, new_id: str) -> Reference:
    if isinstance(ref, (IdRef, PopulatedRef)) and ref.id == old_id:
        return ref.model_copy(update={"id": new_id})
    return ref


# =============================================================================
# GROUP MEMBERS
# =============================================================================

class Member(BaseModel):
    """
    A participant in a group.

    Registered users carry an ACCOUNT id. People added by contact details
    carry a SHADOW id until they register with matching email or phone.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: MemberId
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    email: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Email, stored lowercased"
    )
    phone: Optional[str] = Field(
        default=None,
        max_length=30,
        description="Phone number, compared exactly"
    )
    is_active: bool = Field(
        default=True,
        description="False once the member is removed from the group"
    )

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        """Emails are compared case-insensitively."""
        if v is None:
            return None
        return v.strip().lower() or None

    @field_validator('phone')
    @classmethod
    def empty_phone_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @property
    def is_shadow(self) -> bool:
        return self.id.is_shadow

    @property
    def key(self) -> str:
        """Canonical identifier string used in balance maps."""
        return self.id.value


# =============================================================================
# LEDGER
# =============================================================================

class Split(BaseModel):
    """One member's consumption share of a ledger entry."""
    model_config = ConfigDict(populate_by_name=True)

    member: Reference
    member_name_fallback: Optional[str] = Field(
        default=None,
        alias="memberNameFallback",
        description="Name stored on the split for references that cannot be resolved"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Amount this member owes for the entry"
    )

    @model_validator(mode='before')
    @classmethod
    def normalize_member(cls, data: Any) -> Any:
        """Fold every accepted member shape into a Reference."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        fallback = (
            data.get("member_name_fallback")
            or data.get("memberNameFallback")
            or data.get("userName")
        )
        raw = data.get("member", data.get("user"))
        data["member"] = to_reference(raw, fallback)
        if fallback and not data.get("member_name_fallback"):
            data["member_name_fallback"] = fallback
        data.pop("memberNameFallback", None)
        return data


def _normalize_entry_data(data: Any) -> Any:
    """Fold every accepted payer shape into a Reference; map legacy flags."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    fallback = (
        data.get("payer_name_fallback")
        or data.get("payerNameFallback")
        or data.get("paidByName")
    )
    raw = data.get("payer", data.get("paidBy"))
    data["payer"] = to_reference(raw, fallback)
    if fallback and not data.get("payer_name_fallback"):
        data["payer_name_fallback"] = fallback
    data.pop("payerNameFallback", None)

    is_settlement = data.pop("isSettlement", data.pop("is_settlement", None))
    if is_settlement and not data.get("category"):
        data["category"] = ExpenseCategory.SETTLEMENT
    return data


class LedgerEntry(BaseModel):
    """
    One transaction affecting balances: an expense or a settlement.

    CRITICAL: Entries are never edited to reflect a payment. Paying a debt
    appends a SETTLEMENT entry (payer = debtor, single split = creditor),
    which cancels the debt when balances are recomputed.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry ID"
    )
    group_id: Optional[UUID] = Field(
        default=None,
        description="Group this entry belongs to"
    )
    description: str = Field(
        default="",
        max_length=200,
        description="What the money was spent on"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Total amount of the entry"
    )
    category: ExpenseCategory = Field(
        default=ExpenseCategory.UNCATEGORIZED,
        description="Entry category; SETTLEMENT marks a debt payment"
    )
    occurred_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the expense happened"
    )
    payer: Reference
    payer_name_fallback: Optional[str] = Field(
        default=None,
        alias="payerNameFallback",
        description="Payer name stored on the entry itself"
    )
    splits: list[Split] = Field(default_factory=list)

    # Soft delete
    is_deleted: bool = Field(default=False, alias="deleted")
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Caller-supplied key that makes recording this entry idempotent"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    @model_validator(mode='before')
    @classmethod
    def normalize_payer(cls, data: Any) -> Any:
        """Fold the payer into a Reference and derive the category."""
        return _normalize_entry_data(data)

    @property
    def is_settlement(self) -> bool:
        return self.category == ExpenseCategory.SETTLEMENT

    @property
    def category_label(self) -> str:
        return self.category.value

    @property
    def split_total(self) -> Decimal:
        return sum((split.amount for split in self.splits), Decimal("0"))

    def rewrite_member(self, old_id: str, new_id: str) -> Optional["LedgerEntry"]:
        """
        Copy of this entry with references to `old_id` pointing at `new_id`.

        Returns None when nothing in the entry refers to `old_id`.
        """
        payer = _rewrite_reference(self.payer, old_id, new_id)
        splits = [
            split.model_copy(
                update={"member": _rewrite_reference(split.member, old_id, new_id)}
            )
            for split in self.splits
        ]
        changed = payer != self.payer or any(
            new.member != old.member for new, old in zip(splits, self.splits)
        )
        if not changed:
            return None
        return self.model_copy(update={"payer": payer, "splits": splits})


class BalanceEntry(BaseModel):
    """
    The part of a ledger entry that balances depend on.

    Raw stored entries are read through this model when balances are
    computed. Display fields (description, dates) are ignored and the
    category is kept as plain text, so a record that predates the current
    schema still counts.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount: Decimal = Field(..., gt=0)
    category: str = ExpenseCategory.UNCATEGORIZED.value
    payer: Reference
    payer_name_fallback: Optional[str] = Field(default=None, alias="payerNameFallback")
    splits: list[Split] = Field(default_factory=list)
    is_deleted: bool = Field(default=False, alias="deleted")

    @model_validator(mode='before')
    @classmethod
    def normalize_payer(cls, data: Any) -> Any:
        data = _normalize_entry_data(data)
        if isinstance(data, dict):
            category = data.get("category")
            if isinstance(category, Enum):
                data["category"] = category.value
            elif category is None:
                data.pop("category", None)
        return data

    @property
    def is_settlement(self) -> bool:
        return self.category == ExpenseCategory.SETTLEMENT.value

    @property
    def category_label(self) -> str:
        return self.category


# =============================================================================
# GROUP
# =============================================================================

class Group(BaseModel):
    """A set of members sharing a ledger."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Group name"
    )
    created_by: MemberId
    type: GroupType = Field(default=GroupType.OTHER)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    members: list[Member] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_unique_members(self) -> 'Group':
        """Member identifiers must be unique within a group."""
        seen = set()
        for member in self.members:
            if member.key in seen:
                raise ValueError(f"Duplicate member identifier: {member.key}")
            seen.add(member.key)
        return self

    def find_member(self, member_id: Union[str, MemberId]) -> Optional[Member]:
        key = member_id.value if isinstance(member_id, MemberId) else str(member_id)
        for member in self.members:
            if member.key == key:
                return member
        return None

    @property
    def active_members(self) -> list[Member]:
        return [m for m in self.members if m.is_active]

    def has_member(self, member_id: Union[str, MemberId]) -> bool:
        return self.find_member(member_id) is not None

    def relink_member(self, old_id: MemberId, new_id: MemberId) -> bool:
        """
        Point the member holding `old_id` at `new_id` in place.

        Returns False if no member holds `old_id` (already linked).
        """
        for member in self.members:
            if member.id == old_id:
                member.id = new_id
                return True
        return False


# =============================================================================
# DERIVED RESULTS
# =============================================================================

class SettlementParty(BaseModel):
    """One side of a settlement suggestion, enriched for display."""

    id: str
    name: str = "Unknown"
    email: Optional[str] = None
    phone: Optional[str] = None


class SettlementSuggestion(BaseModel):
    """
    A suggested payment from a debtor to a creditor.

    Never persisted. Accepting it records a SETTLEMENT ledger entry.
    """
    model_config = ConfigDict(populate_by_name=True)

    from_member: SettlementParty = Field(..., alias="from")
    to_member: SettlementParty = Field(..., alias="to")
    amount: Decimal = Field(..., gt=0)


class SpendingSummary(BaseModel):
    """
    Spending analytics for one group.

    Settlement entries are excluded from every spend figure; they only
    show up in `my_net_balance`.
    """

    total_group_spend: Decimal = Decimal("0")
    by_category: dict[str, Decimal] = Field(default_factory=dict)
    by_member: dict[str, Decimal] = Field(default_factory=dict)
    my_total_spend: Decimal = Decimal("0")
    my_net_balance: Decimal = Decimal("0")
    expense_count: int = Field(default=0, ge=0)
    settlement_count: int = Field(default=0, ge=0)


class LinkResult(BaseModel):
    """Outcome of linking shadow members to a newly registered account."""

    success: bool = True
    linked_groups_count: int = Field(default=0, ge=0)
    linked_members_count: int = Field(default=0, ge=0)
    group_names: list[str] = Field(default_factory=list)
    message: str = "No existing groups found"


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'split_mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage entry validation.

    Stage 1: Schema validation (amount, payer, splits present)
    Stage 2: Semantic validation (split sums, double counting, settlement shape)
    """

    entry_id: UUID = Field(
        ...,
        description="ID of the entry being validated"
    )
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool = Field(
        ...,
        description="Overall validation result"
    )

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
