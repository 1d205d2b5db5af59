"""Tests for spending analytics."""

from decimal import Decimal

from groupledger.analytics import summarize_spending
from groupledger.identity import IdentitySet
from groupledger.models.ledger import (
    ExpenseCategory,
    LedgerEntry,
    Member,
    MemberId,
    Split,
)


MEMBERS = [
    Member(id=MemberId.account("A"), name="Asha"),
    Member(id=MemberId.account("B"), name="Bob"),
]


def _entries():
    return [
        LedgerEntry(
            payer="A",
            amount=Decimal("120"),
            category=ExpenseCategory.FOOD_AND_DRINK,
            splits=[Split(member="A", amount=Decimal("60")), Split(member="B", amount=Decimal("60"))],
        ),
        LedgerEntry(
            payer="B",
            amount=Decimal("40"),
            category=ExpenseCategory.TRANSPORTATION,
            splits=[Split(member="A", amount=Decimal("20")), Split(member="B", amount=Decimal("20"))],
        ),
        LedgerEntry(
            payer="B",
            amount=Decimal("40"),
            category=ExpenseCategory.SETTLEMENT,
            splits=[Split(member="A", amount=Decimal("40"))],
        ),
        LedgerEntry(
            payer="A",
            amount=Decimal("999"),
            is_deleted=True,
            splits=[Split(member="B", amount=Decimal("999"))],
        ),
    ]


class TestSpendingSummary:
    """Tests for group spend figures."""

    def test_settlements_are_not_spending(self):
        """Test that totals skip settlements and deleted entries."""
        summary = summarize_spending(_entries(), MEMBERS)
        assert summary.total_group_spend == Decimal("160.00")
        assert summary.expense_count == 2
        assert summary.settlement_count == 1
        assert "Settlement" not in summary.by_category

    def test_by_category(self):
        """Test spend per category."""
        summary = summarize_spending(_entries(), MEMBERS)
        assert summary.by_category == {
            "Food and Drink": Decimal("120.00"),
            "Transportation": Decimal("40.00"),
        }

    def test_by_member_sorted_descending(self):
        """Test spend per payer, largest first."""
        summary = summarize_spending(_entries(), MEMBERS)
        assert list(summary.by_member.items()) == [
            ("Asha", Decimal("120.00")),
            ("Bob", Decimal("40.00")),
        ]

    def test_my_figures(self):
        """Test that my net balance includes settlements but my spend doesn't."""
        me = IdentitySet.for_user(user_id="B")
        summary = summarize_spending(_entries(), MEMBERS, me)
        assert summary.my_total_spend == Decimal("40.00")
        # -60 + 40 - 20 + 40
        assert summary.my_net_balance == Decimal("0.00")

    def test_without_identity(self):
        """Test that personal figures stay zero without a user."""
        summary = summarize_spending(_entries(), MEMBERS)
        assert summary.my_total_spend == Decimal("0")
        assert summary.my_net_balance == Decimal("0")

    def test_empty_group(self):
        """Test an empty ledger."""
        summary = summarize_spending([], MEMBERS)
        assert summary.total_group_spend == Decimal("0")
        assert summary.by_member == {"Asha": Decimal("0"), "Bob": Decimal("0")}

    def test_raw_entries_keep_their_category_text(self):
        """Test stored entries with a category outside the current list."""
        raw = [{
            "paidBy": "A",
            "amount": "30",
            "category": "Groceries",
            "description": "Weekly shop " * 30,
            "splits": [{"user": "A", "amount": "15"}, {"user": "B", "amount": "15"}],
        }]
        summary = summarize_spending(raw, MEMBERS)
        assert summary.by_category == {"Groceries": Decimal("30.00")}
        assert summary.expense_count == 1
