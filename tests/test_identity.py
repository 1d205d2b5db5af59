"""Tests for identity matching and reference resolution."""

import hashlib

import pytest

from groupledger.identity import (
    IdentitySet,
    MatchKind,
    MissingContactError,
    ReferenceResolver,
    UNKNOWN_NAME,
    derive_shadow_id,
)
from groupledger.models.ledger import (
    IdRef,
    Member,
    MemberId,
    PopulatedRef,
    UnresolvedRef,
)


@pytest.fixture
def members():
    return [
        Member(id=MemberId.account("u1"), name="Asha", email="asha@example.com"),
        Member(id=MemberId.account("u2"), name="Bob", email="shared@example.com"),
        Member(id=MemberId.shadow("s1"), name="Ravi", email="ravi@example.com", phone="98450"),
    ]


class TestShadowIds:
    """Tests for deterministic shadow identifiers."""

    def test_email_is_normalized_before_hashing(self):
        """Test that case and whitespace do not change the id."""
        assert derive_shadow_id(email="  Asha@Example.com ") == derive_shadow_id(email="asha@example.com")

    def test_id_is_sha256_prefix(self):
        """Test the identifier format."""
        expected = hashlib.sha256(b"asha@example.com").hexdigest()[:24]
        shadow = derive_shadow_id(email="asha@example.com")
        assert shadow == MemberId.shadow(expected)
        assert len(shadow.value) == 24

    def test_email_takes_precedence_over_phone(self):
        """Test that the phone is ignored when an email is present."""
        assert derive_shadow_id("a@x.com", "123") == derive_shadow_id("a@x.com")

    def test_phone_only(self):
        """Test a member known only by phone."""
        expected = hashlib.sha256(b"98450").hexdigest()[:24]
        assert derive_shadow_id(phone=" 98450 ").value == expected

    def test_missing_contact_raises(self):
        """Test that a shadow member needs contact details."""
        with pytest.raises(MissingContactError):
            derive_shadow_id(email="  ", phone=None)


class TestReferenceResolver:
    """Tests for resolving references to member keys."""

    def test_known_id(self, members):
        """Test that a member id resolves to itself."""
        assert ReferenceResolver(members).resolve(IdRef(id="u1")) == "u1"

    def test_unknown_id_with_matching_name(self, members):
        """Test falling back to the populated name."""
        ref = PopulatedRef(id="legacy-7", name="  bob ")
        assert ReferenceResolver(members).resolve(ref) == "u2"

    def test_unknown_id_is_kept(self, members):
        """Test that an unknown id is its own key."""
        assert ReferenceResolver(members).resolve(IdRef(id="ghost")) == "ghost"

    def test_fallback_name_matching(self, members):
        """Test resolving a reference that only carries a stored name."""
        resolver = ReferenceResolver(members)
        assert resolver.resolve(UnresolvedRef(), "RAVI") == "s1"
        assert resolver.resolve(UnresolvedRef(fallback_name="asha")) == "u1"

    def test_unattributable_reference(self, members):
        """Test that a nameless, idless reference resolves to nothing."""
        resolver = ReferenceResolver(members)
        assert resolver.resolve(UnresolvedRef()) is None
        assert resolver.resolve(UnresolvedRef(fallback_name="Stranger")) is None

    def test_display_name_chain(self, members):
        """Test the display name fallbacks."""
        resolver = ReferenceResolver(members)
        assert resolver.display_name(IdRef(id="u1")) == "Asha"
        assert resolver.display_name(PopulatedRef(id="ghost", name="Zed")) == "Zed"
        assert resolver.display_name(IdRef(id="ghost"), "Stored Name") == "Stored Name"
        assert resolver.display_name(UnresolvedRef(fallback_name="Old")) == "Old"
        assert resolver.display_name(IdRef(id="ghost")) == UNKNOWN_NAME


class TestIdentitySet:
    """Tests for recognising the current user."""

    def test_match_by_id(self, members):
        """Test the id rule."""
        me = IdentitySet.for_user(user_id="u1")
        assert me.match(IdRef(id="u1"), resolver=ReferenceResolver(members)) == MatchKind.ID

    def test_match_by_email_on_shadow_member(self, members):
        """Test recognising myself in a shadow member added by email."""
        me = IdentitySet.for_user(user_id="u9", email="Ravi@Example.com")
        ref = IdRef(id="s1")
        assert me.match(ref, resolver=ReferenceResolver(members)) == MatchKind.EMAIL

    def test_match_by_phone(self, members):
        """Test the phone rule."""
        me = IdentitySet.for_user(user_id="u9", phone="98450")
        assert me.match(IdRef(id="s1"), resolver=ReferenceResolver(members)) == MatchKind.PHONE

    def test_other_account_is_never_matched_by_email(self, members):
        """Test that account ids are authoritative."""
        me = IdentitySet.for_user(user_id="u1", email="shared@example.com", name="Bob")
        assert me.match(IdRef(id="u2"), resolver=ReferenceResolver(members)) is None

    def test_match_populated_email_without_resolver(self):
        """Test matching on a populated record alone."""
        me = IdentitySet.for_user(user_id="u1", email="asha@example.com")
        ref = PopulatedRef(id="x", email="ASHA@example.com")
        assert me.match(ref) == MatchKind.EMAIL

    def test_match_by_name_last(self):
        """Test the name rule for name-only references."""
        me = IdentitySet.for_user(user_id="u1", name="Asha")
        assert me.match(UnresolvedRef(), "  asha ") == MatchKind.NAME
        assert not me.is_me(UnresolvedRef(), "Bob")

    def test_for_member(self, members):
        """Test building an identity from a member record."""
        me = IdentitySet.for_member(members[2])
        assert "s1" in me.ids
        assert "ravi@example.com" in me.emails
        assert me.is_me(IdRef(id="s1"))

    def test_extra_ids(self):
        """Test that former identifiers still match."""
        me = IdentitySet.for_user(user_id="u1", extra_ids=["legacy"])
        assert me.match(IdRef(id="legacy")) == MatchKind.ID
