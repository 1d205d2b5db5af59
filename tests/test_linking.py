"""Tests for linking shadow members to registered accounts."""

import asyncio
from decimal import Decimal

from groupledger.audit import AuditLogger
from groupledger.balances import compute_balances
from groupledger.identity import derive_shadow_id
from groupledger.models.audit import AuditEventType
from groupledger.models.ledger import (
    Group,
    LedgerEntry,
    Member,
    MemberId,
    Split,
)
from groupledger.services.linking import ShadowLinkService
from groupledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


RAVI_SHADOW = derive_shadow_id(email="ravi@example.com")


def _setup(extra_members=()):
    storage = InMemoryLedgerStorage()
    audit_storage = InMemoryAuditStorage()
    group = Group(
        name="Flat 4B",
        created_by=MemberId.account("A"),
        members=[
            Member(id=MemberId.account("A"), name="Asha"),
            Member(id=RAVI_SHADOW, name="Ravi", email="ravi@example.com"),
            *extra_members,
        ],
    )
    entry = LedgerEntry(
        group_id=group.id,
        payer="A",
        amount=Decimal("300"),
        splits=[
            Split(member="A", amount=Decimal("150")),
            Split(member=RAVI_SHADOW.value, amount=Decimal("150")),
        ],
    )
    asyncio.run(storage.save_group(group))
    asyncio.run(storage.append_entry(entry))
    service = ShadowLinkService(storage, AuditLogger(audit_storage))
    return service, storage, audit_storage, group


class TestShadowLinking:
    """Tests for ShadowLinkService."""

    def test_link_by_email(self):
        """Test that the shadow member and their debts move to the account."""
        service, storage, _, group = _setup()

        result = asyncio.run(service.link_registered_user("acct-9", email="Ravi@Example.com"))

        assert result.success
        assert result.linked_groups_count == 1
        assert result.linked_members_count == 1
        assert result.group_names == ["Flat 4B"]
        assert result.message == "You've been added to 1 existing group(s)"

        loaded = asyncio.run(storage.get_group(group.id))
        entries = asyncio.run(storage.list_entries(group.id))
        balances = compute_balances(loaded.members, entries)
        assert balances == {"A": Decimal("150.00"), "acct-9": Decimal("-150.00")}

    def test_link_is_idempotent(self):
        """Test that a second link changes nothing."""
        service, _, _, _ = _setup()
        asyncio.run(service.link_registered_user("acct-9", email="ravi@example.com"))

        again = asyncio.run(service.link_registered_user("acct-9", email="ravi@example.com"))

        assert again.linked_groups_count == 0
        assert again.message == "No existing groups found"

    def test_link_by_phone(self):
        """Test linking a member added by phone number."""
        phone_shadow = derive_shadow_id(phone="98450")
        service, storage, _, group = _setup([
            Member(id=phone_shadow, name="Meera", phone="98450"),
        ])

        result = asyncio.run(service.link_registered_user("acct-3", phone=" 98450 "))

        assert result.linked_members_count == 1
        loaded = asyncio.run(storage.get_group(group.id))
        assert loaded.find_member("acct-3").name == "Meera"
        assert loaded.find_member(RAVI_SHADOW).is_shadow

    def test_no_contact_details(self):
        """Test that linking needs an email or phone."""
        service, _, _, _ = _setup()
        result = asyncio.run(service.link_registered_user("acct-9"))
        assert result.linked_groups_count == 0
        assert result.message == "No contact details to link"

    def test_account_already_in_group_is_skipped(self):
        """Test that linking never duplicates a member."""
        service, storage, _, group = _setup([
            Member(id=MemberId.account("acct-9"), name="Ravi (app)"),
        ])

        result = asyncio.run(service.link_registered_user("acct-9", email="ravi@example.com"))

        assert result.linked_groups_count == 0
        loaded = asyncio.run(storage.get_group(group.id))
        assert loaded.find_member(RAVI_SHADOW) is not None

    def test_link_is_audited(self):
        """Test the audit trail of a link."""
        service, _, audit_storage, group = _setup()
        asyncio.run(service.link_registered_user("acct-9", email="ravi@example.com"))

        [event] = asyncio.run(audit_storage.get_events_by_entity("group", group.id))
        assert event.event_type == AuditEventType.SHADOW_MEMBER_LINKED
        assert event.details["shadow_id"] == RAVI_SHADOW.value
        assert event.details["rewritten_entries"] == 1
        assert event.actor_id == "acct-9"
