"""
Tests for Group Ledger

Test strategy:
1. Unit tests for individual components (models, resolver, aggregator, simplifier)
2. Integration tests for flows (against in-memory storage)
3. No real API calls in tests
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from groupledger.models.ledger import (
    ExpenseCategory,
    Group,
    IdRef,
    LedgerEntry,
    Member,
    MemberId,
    PopulatedRef,
    SettlementSuggestion,
    Split,
    UnresolvedRef,
    reference_id,
    to_reference,
)
from groupledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestMemberIdentifiers:
    """Tests for typed member identifiers."""

    def test_account_and_shadow_ids_never_collide(self):
        """Test that equality takes the identifier kind into account."""
        assert MemberId.account("abc") != MemberId.shadow("abc")
        assert MemberId.account("abc") == MemberId.account("abc")

    def test_member_id_is_hashable(self):
        """Test that identifiers can be used as dict keys."""
        ids = {MemberId.account("a"), MemberId.account("a"), MemberId.shadow("a")}
        assert len(ids) == 2

    def test_member_email_is_lowercased(self):
        """Test that member emails are normalized."""
        member = Member(id=MemberId.account("u1"), name="  Asha ", email=" Asha@Example.COM ")
        assert member.name == "Asha"
        assert member.email == "asha@example.com"

    def test_member_key_and_shadow_flag(self):
        """Test the canonical key of a member."""
        member = Member(id=MemberId.shadow("f00"), name="Ravi", phone="9999")
        assert member.key == "f00"
        assert member.is_shadow


class TestReferences:
    """Tests for member reference normalization."""

    def test_bare_string_becomes_id_ref(self):
        """Test a bare identifier."""
        assert to_reference("u1") == IdRef(id="u1")

    def test_uuid_becomes_id_ref(self):
        """Test that UUIDs are stringified."""
        value = uuid4()
        assert to_reference(value) == IdRef(id=str(value))

    def test_populated_dict_with_nested_id(self):
        """Test the doubly nested _id shape."""
        ref = to_reference({"_id": {"_id": "u1"}, "name": "Asha"})
        assert isinstance(ref, PopulatedRef)
        assert ref.id == "u1"
        assert ref.name == "Asha"

    def test_none_keeps_fallback_name(self):
        """Test that a missing reference keeps the stored name."""
        ref = to_reference(None, "  Bob ")
        assert ref == UnresolvedRef(fallback_name="Bob")
        assert reference_id(ref) is None

    def test_dict_without_id_is_unresolved(self):
        """Test a populated record that lost its id."""
        assert to_reference({"name": "Bob"}) == UnresolvedRef(fallback_name="Bob")

    def test_blank_string_is_unresolved(self):
        """Test that whitespace is not an identifier."""
        assert to_reference("   ", "Cara") == UnresolvedRef(fallback_name="Cara")

    def test_unsupported_shape_raises(self):
        """Test that floats are rejected."""
        with pytest.raises(ValueError):
            to_reference(3.5)

    def test_member_id_becomes_id_ref(self):
        """Test conversion of a typed identifier."""
        assert to_reference(MemberId.shadow("abc")) == IdRef(id="abc")


class TestLedgerEntry:
    """Tests for ledger entries and splits."""

    def test_split_accepts_user_and_user_name(self):
        """Test the legacy split field names."""
        split = Split.model_validate({"user": "u2", "userName": "Bob", "amount": "25"})
        assert split.member == IdRef(id="u2")
        assert split.member_name_fallback == "Bob"
        assert split.amount == Decimal("25")

    def test_split_rejects_negative_amount(self):
        """Test that split amounts cannot be negative."""
        with pytest.raises(ValueError):
            Split(member="u1", amount=Decimal("-1"))

    def test_entry_accepts_paid_by_and_settlement_flag(self):
        """Test the legacy entry field names."""
        entry = LedgerEntry.model_validate({
            "paidBy": {"_id": "u1", "name": "Asha"},
            "paidByName": "Asha",
            "amount": "100",
            "isSettlement": True,
            "splits": [{"user": "u2", "amount": "100"}],
        })
        assert entry.is_settlement
        assert entry.category == ExpenseCategory.SETTLEMENT
        assert entry.payer == PopulatedRef(id="u1", name="Asha")
        assert entry.payer_name_fallback == "Asha"

    def test_deleted_alias(self):
        """Test that the deleted flag is read from 'deleted'."""
        entry = LedgerEntry.model_validate({
            "payer": "u1",
            "amount": 10,
            "splits": [{"member": "u1", "amount": 10}],
            "deleted": True,
        })
        assert entry.is_deleted

    def test_entry_rejects_zero_amount(self):
        """Test that entry amounts must be positive."""
        with pytest.raises(ValueError):
            LedgerEntry(payer="u1", amount=Decimal("0"))

    def test_split_total(self):
        """Test the sum of split amounts."""
        entry = LedgerEntry(
            payer="u1",
            amount=Decimal("30"),
            splits=[
                Split(member="u1", amount=Decimal("10")),
                Split(member="u2", amount=Decimal("20")),
            ],
        )
        assert entry.split_total == Decimal("30")

    def test_rewrite_member(self):
        """Test that payer and split references are rewritten."""
        entry = LedgerEntry(
            payer="old",
            amount=Decimal("30"),
            splits=[
                Split(member="old", amount=Decimal("15")),
                Split(member="u2", amount=Decimal("15")),
            ],
        )
        rewritten = entry.rewrite_member("old", "new")
        assert rewritten.payer == IdRef(id="new")
        assert rewritten.splits[0].member == IdRef(id="new")
        assert rewritten.splits[1].member == IdRef(id="u2")
        assert entry.payer == IdRef(id="old")

    def test_rewrite_member_without_reference_returns_none(self):
        """Test that unrelated entries are left alone."""
        entry = LedgerEntry(
            payer="u1",
            amount=Decimal("10"),
            splits=[Split(member="u2", amount=Decimal("10"))],
        )
        assert entry.rewrite_member("old", "new") is None


class TestGroup:
    """Tests for the group model."""

    def test_duplicate_members_rejected(self):
        """Test that member identifiers are unique."""
        with pytest.raises(ValueError, match="Duplicate member identifier"):
            Group(
                name="Goa",
                created_by=MemberId.account("u1"),
                members=[
                    Member(id=MemberId.account("u1"), name="Asha"),
                    Member(id=MemberId.account("u1"), name="Asha again"),
                ],
            )

    def test_same_value_across_kinds_rejected(self):
        """Test that an account and a shadow member cannot share an id value."""
        with pytest.raises(ValueError, match="Duplicate member identifier"):
            Group(
                name="Goa",
                created_by=MemberId.account("u1"),
                members=[
                    Member(id=MemberId.account("u1"), name="Asha"),
                    Member(id=MemberId.shadow("u1"), name="Asha (invited)"),
                ],
            )

    def test_relink_member(self):
        """Test pointing a shadow member at an account."""
        shadow = MemberId.shadow("s1")
        group = Group(
            name="Flat",
            created_by=MemberId.account("u1"),
            members=[Member(id=shadow, name="Ravi", email="ravi@example.com")],
        )
        assert group.relink_member(shadow, MemberId.account("u9"))
        assert group.find_member("u9").name == "Ravi"
        assert not group.relink_member(shadow, MemberId.account("u9"))

    def test_active_members(self):
        """Test that removed members are filtered out."""
        group = Group(
            name="Trip",
            created_by=MemberId.account("u1"),
            members=[
                Member(id=MemberId.account("u1"), name="Asha"),
                Member(id=MemberId.account("u2"), name="Bob", is_active=False),
            ],
        )
        assert [m.key for m in group.active_members] == ["u1"]


class TestSettlementSuggestion:
    """Tests for settlement suggestion serialization."""

    def test_from_and_to_aliases(self):
        """Test the 'from'/'to' wire names."""
        suggestion = SettlementSuggestion.model_validate({
            "from": {"id": "b", "name": "Bob"},
            "to": {"id": "a", "name": "Asha"},
            "amount": "100.00",
        })
        assert suggestion.from_member.id == "b"
        assert suggestion.model_dump(by_alias=True)["to"]["name"] == "Asha"

    def test_amount_must_be_positive(self):
        """Test that zero payments are never suggested."""
        with pytest.raises(ValueError):
            SettlementSuggestion(
                from_member={"id": "b"},
                to_member={"id": "a"},
                amount=Decimal("0"),
            )


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            description="Group created",
        )
        assert event.event_type == AuditEventType.GROUP_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_sheets_row_has_every_column(self):
        """Test the Google Sheets row layout."""
        event = AuditEventBuilder.expense_added(
            entry_id=uuid4(),
            group_id=uuid4(),
            amount="1200.00",
            category="Food and Drink",
            actor_id="u1",
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "expense_added"
        assert row[10] == "u1"
        assert row[11] == "True"

    def test_settlement_with_warning_is_a_warning(self):
        """Test severity of an overpaid settlement."""
        event = AuditEventBuilder.settlement_recorded(
            entry_id=uuid4(),
            group_id=uuid4(),
            payer_id="u2",
            receiver_id="u1",
            amount="500.00",
            warning="exceeds calculated debt",
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.actor_id == "u2"

    def test_calculation_failure_is_an_error(self):
        """Test severity of a failed settlement calculation."""
        event = AuditEventBuilder.settlement_calculation_failed(
            group_id=uuid4(),
            error_message="bad balance",
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.to_log_dict()["error_message"] == "bad balance"
