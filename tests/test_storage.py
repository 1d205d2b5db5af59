"""Tests for storage implementations (in-memory and Google Sheets with a fake client)."""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from tenacity import wait_none

from groupledger.models.audit import AuditEventBuilder
from groupledger.models.ledger import (
    ExpenseCategory,
    Group,
    IdRef,
    LedgerEntry,
    Member,
    MemberId,
    Split,
)
from groupledger.services.storage import (
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    NotFoundError,
)
from groupledger.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    ENTRY_COLUMNS,
    GROUP_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStorage,
)


SHADOW = MemberId.shadow("s1")
ACCOUNT = MemberId.account("acct-9")


def _group():
    return Group(
        name="Goa Trip",
        created_by=MemberId.account("A"),
        members=[
            Member(id=MemberId.account("A"), name="Asha", email="asha@example.com"),
            Member(id=SHADOW, name="Ravi", email="ravi@example.com", phone="98450"),
        ],
    )


def _entry(group_id, payer="A", key=None):
    return LedgerEntry(
        group_id=group_id,
        description="Dinner",
        payer=payer,
        amount=Decimal("100"),
        category=ExpenseCategory.FOOD_AND_DRINK,
        splits=[
            Split(member="A", amount=Decimal("50")),
            Split(member="s1", amount=Decimal("50")),
        ],
        idempotency_key=key,
    )


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the storage code."""

    def __init__(self, header):
        self.rows = [list(header)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append([str(v) for v in row])

    def update(self, range_name=None, values=None, value_input_option=None):
        self._write(range_name, values[0])

    def batch_update(self, data, value_input_option=None):
        for item in data:
            self._write(item["range"], item["values"][0])

    def _write(self, range_name, row):
        self.rows[int(range_name[1:]) - 1] = [str(v) for v in row]


class FakeSheetsClient:
    def __init__(self):
        self.groups = FakeWorksheet(GROUP_COLUMNS)
        self.entries = FakeWorksheet(ENTRY_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_groups_sheet(self):
        return self.groups

    def get_entries_sheet(self):
        return self.entries

    def get_audit_sheet(self):
        return self.audit


@pytest.fixture(params=["memory", "sheets"])
def storage(request):
    if request.param == "memory":
        return InMemoryLedgerStorage()
    return GoogleSheetsLedgerStorage(client=FakeSheetsClient())


class TestLedgerStorage:
    """Behaviour shared by every ledger storage backend."""

    def test_group_round_trip(self, storage):
        """Test saving and loading a group."""
        group = _group()
        asyncio.run(storage.save_group(group))
        loaded = asyncio.run(storage.get_group(group.id))
        assert loaded.name == "Goa Trip"
        assert loaded.find_member("s1").id == SHADOW
        assert loaded.find_member("s1").phone == "98450"

    def test_missing_group_is_none(self, storage):
        """Test looking up an unknown group."""
        assert asyncio.run(storage.get_group(uuid4())) is None

    def test_duplicate_group(self, storage):
        """Test that a group id can only be saved once."""
        group = _group()
        asyncio.run(storage.save_group(group))
        with pytest.raises(DuplicateError):
            asyncio.run(storage.save_group(group))

    def test_update_missing_group(self, storage):
        """Test updating a group that was never saved."""
        with pytest.raises(NotFoundError):
            asyncio.run(storage.update_group(_group()))

    def test_entries_keep_record_order(self, storage):
        """Test that entries are listed in the order they were appended."""
        group = _group()
        asyncio.run(storage.save_group(group))
        first, second = _entry(group.id), _entry(group.id, payer="s1")
        asyncio.run(storage.append_entry(first))
        asyncio.run(storage.append_entry(second))
        asyncio.run(storage.append_entry(_entry(uuid4())))

        entries = asyncio.run(storage.list_entries(group.id))
        assert [e.id for e in entries] == [first.id, second.id]
        assert entries[1].payer == IdRef(id="s1")
        assert entries[0].splits[1].amount == Decimal("50")

    def test_duplicate_idempotency_key(self, storage):
        """Test that a key is recorded once per group."""
        group_id = uuid4()
        asyncio.run(storage.append_entry(_entry(group_id, key="pay-1")))
        with pytest.raises(DuplicateError):
            asyncio.run(storage.append_entry(_entry(group_id, key="pay-1")))
        asyncio.run(storage.append_entry(_entry(uuid4(), key="pay-1")))

        found = asyncio.run(storage.find_entry_by_idempotency_key(group_id, "pay-1"))
        assert found is not None
        assert asyncio.run(storage.find_entry_by_idempotency_key(group_id, "pay-2")) is None

    def test_soft_delete(self, storage):
        """Test that deleted entries are hidden but kept."""
        group_id = uuid4()
        entry = _entry(group_id)
        asyncio.run(storage.append_entry(entry))
        deleted = asyncio.run(storage.soft_delete_entry(entry.id, deleted_by="A"))

        assert deleted.is_deleted
        assert deleted.deleted_by == "A"
        assert deleted.deleted_at is not None
        assert asyncio.run(storage.list_entries(group_id)) == []
        assert len(asyncio.run(storage.list_entries(group_id, include_deleted=True))) == 1

    def test_soft_delete_missing(self, storage):
        """Test deleting an unknown entry."""
        with pytest.raises(NotFoundError):
            asyncio.run(storage.soft_delete_entry(uuid4()))

    def test_find_groups_with_shadow_contact(self, storage):
        """Test that only shadow members match, email case-insensitively."""
        group = _group()
        asyncio.run(storage.save_group(group))

        by_email = asyncio.run(storage.find_groups_with_shadow_contact("RAVI@example.com", None))
        by_phone = asyncio.run(storage.find_groups_with_shadow_contact(None, "98450"))
        account_email = asyncio.run(storage.find_groups_with_shadow_contact("asha@example.com", None))

        assert [g.id for g in by_email] == [group.id]
        assert [g.id for g in by_phone] == [group.id]
        assert account_email == []

    def test_rewrite_member_id(self, storage):
        """Test that the member list and every entry are rewritten once."""
        group = _group()
        asyncio.run(storage.save_group(group))
        asyncio.run(storage.append_entry(_entry(group.id)))
        asyncio.run(storage.append_entry(_entry(group.id, payer="s1")))

        rewritten = asyncio.run(storage.rewrite_member_id(group.id, SHADOW, ACCOUNT))
        again = asyncio.run(storage.rewrite_member_id(group.id, SHADOW, ACCOUNT))

        assert rewritten == 2
        assert again == 0
        loaded = asyncio.run(storage.get_group(group.id))
        assert loaded.find_member("acct-9").id == ACCOUNT
        assert loaded.find_member("s1") is None
        entries = asyncio.run(storage.list_entries(group.id))
        assert entries[1].payer == IdRef(id="acct-9")
        assert all(s.member != IdRef(id="s1") for e in entries for s in e.splits)

    def test_rewrite_member_id_unknown_group(self, storage):
        """Test rewriting in a group that doesn't exist."""
        with pytest.raises(NotFoundError):
            asyncio.run(storage.rewrite_member_id(uuid4(), SHADOW, ACCOUNT))

    def test_list_groups_for_member(self, storage):
        """Test listing groups by membership."""
        group = _group()
        asyncio.run(storage.save_group(group))
        assert [g.id for g in asyncio.run(storage.list_groups_for_member("s1"))] == [group.id]
        assert asyncio.run(storage.list_groups_for_member("nobody")) == []


class TestInMemoryIsolation:
    """Tests for copy semantics of the in-memory backend."""

    def test_returned_group_is_a_copy(self):
        """Test that mutating a loaded group does not change storage."""
        storage = InMemoryLedgerStorage()
        group = _group()
        asyncio.run(storage.save_group(group))

        loaded = asyncio.run(storage.get_group(group.id))
        loaded.members.clear()
        group.name = "Changed"

        stored = asyncio.run(storage.get_group(group.id))
        assert len(stored.members) == 2
        assert stored.name == "Goa Trip"


class TestAuditStorage:
    """Tests for audit storage backends."""

    @pytest.mark.parametrize("make", [
        InMemoryAuditStorage,
        lambda: GoogleSheetsAuditStorage(client=FakeSheetsClient()),
    ])
    def test_events_by_entity_and_correlation(self, make):
        """Test the audit lookups."""
        storage = make()
        group_id = uuid4()
        correlation_id = uuid4()
        asyncio.run(storage.append_event(AuditEventBuilder.balances_computed(
            group_id=group_id, member_count=2, entry_count=3, correlation_id=correlation_id,
        )))
        asyncio.run(storage.append_event(AuditEventBuilder.settlements_suggested(
            group_id=group_id, suggestion_count=1, total_amount="50.00", correlation_id=correlation_id,
        )))
        asyncio.run(storage.append_event(AuditEventBuilder.storage_error(
            operation="append_entry", error_message="boom",
        )))

        by_entity = asyncio.run(storage.get_events_by_entity("group", group_id))
        by_correlation = asyncio.run(storage.get_events_by_correlation_id(correlation_id))
        recent = asyncio.run(storage.get_recent_events(limit=2))

        assert len(by_entity) == 2
        assert len(by_correlation) == 2
        assert by_correlation[1].details["total_amount"] == "50.00"
        assert len(recent) == 2

    def test_sheets_audit_write_failure_returns_false(self, monkeypatch):
        """Test that a failing audit sheet never raises."""

        class BrokenClient:
            def get_audit_sheet(self):
                raise RuntimeError("quota exceeded")

        storage = GoogleSheetsAuditStorage(client=BrokenClient())
        monkeypatch.setattr(GoogleSheetsAuditStorage._append_row.retry, "wait", wait_none())
        event = AuditEventBuilder.system_error(error_type="test", error_message="x")
        assert asyncio.run(storage.append_event(event)) is False
