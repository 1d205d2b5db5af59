"""
Identity and Reference Resolution

Members of a group can be referenced in several ways by ledger entries:
a registered account id, a shadow id derived from contact details, a
populated record, or only a name stored on the entry itself. This module
turns all of them into one canonical member key.

DESIGN DECISION: "Is this entry mine?" is answered through an explicit
IdentitySet value object built once per request and passed in. Nothing in
this module keeps state between calls.

Matching priority is fixed:
1. ID (account or shadow)
2. Email (case-insensitive, trimmed)
3. Phone (exact)
4. Name (case-insensitive, trimmed), only when nothing structured applies
"""

import hashlib
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from groupledger.models.ledger import (
    Member,
    MemberId,
    PopulatedRef,
    Reference,
    UnresolvedRef,
    reference_id,
)


UNKNOWN_NAME = "Unknown"

# Shadow ids have the length of a MongoDB ObjectId so they fit the same columns
SHADOW_ID_LENGTH = 24


class MissingContactError(ValueError):
    """A shadow member needs an email or phone to derive an identifier."""
    pass


class MatchKind(str, Enum):
    """Which rule recognised a reference as the current user."""
    ID = "id"
    EMAIL = "email"
    PHONE = "phone"
    NAME = "name"


def _norm_email(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.strip().lower() or None


def _norm_phone(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.strip() or None


def _norm_name(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.strip().lower() or None


def derive_shadow_id(
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> MemberId:
    """
    Derive the deterministic identifier of an unregistered member.

    Email takes precedence over phone. The same contact details always
    produce the same identifier.

    Raises:
        MissingContactError: If neither email nor phone is given
    """
    identifier = _norm_email(email) or _norm_phone(phone)
    if not identifier:
        raise MissingContactError(
            "A member without an account must have either an email or a mobile number"
        )
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()
    return MemberId.shadow(digest[:SHADOW_ID_LENGTH])


class ReferenceResolver:
    """
    Resolves ledger references to canonical member keys for one group.

    Resolution order:
    1. Identifier of a known member
    2. Name (populated name or the fallback stored on the entry) of a known member
    3. The raw identifier, kept as a separate unknown member
    4. Nothing: the reference cannot be attributed
    """

    def __init__(self, members: Iterable[Member]):
        # Keyed by bare id value: ledger references carry no kind, and Group
        # rejects two members sharing a value across kinds.
        self._members = {}
        self._by_name = {}
        for member in members:
            self._members[member.key] = member
            name = _norm_name(member.name)
            if name:
                self._by_name.setdefault(name, member.key)

    def _match_name(self, *names: Optional[str]) -> Optional[str]:
        for name in names:
            key = self._by_name.get(_norm_name(name) or "")
            if key:
                return key
        return None

    def resolve(
        self,
        ref: Reference,
        fallback_name: Optional[str] = None,
    ) -> Optional[str]:
        """Canonical member key for a reference, or None if unattributable."""
        identifier = reference_id(ref)
        if identifier is not None:
            if identifier in self._members:
                return identifier
            populated_name = ref.name if isinstance(ref, PopulatedRef) else None
            return self._match_name(populated_name, fallback_name) or identifier

        ref_name = ref.fallback_name if isinstance(ref, UnresolvedRef) else None
        return self._match_name(ref_name, fallback_name)

    def member_for(
        self,
        ref: Reference,
        fallback_name: Optional[str] = None,
    ) -> Optional[Member]:
        key = self.resolve(ref, fallback_name)
        if key is None:
            return None
        return self._members.get(key)

    def display_name(
        self,
        ref: Reference,
        fallback_name: Optional[str] = None,
    ) -> str:
        """Resolved member name, then populated name, then stored fallback, then 'Unknown'."""
        member = self.member_for(ref, fallback_name)
        if member is not None:
            return member.name
        if isinstance(ref, PopulatedRef) and ref.name:
            return ref.name
        if fallback_name and fallback_name.strip():
            return fallback_name.strip()
        if isinstance(ref, UnresolvedRef) and ref.fallback_name:
            return ref.fallback_name
        return UNKNOWN_NAME

    def get(self, key: str) -> Optional[Member]:
        return self._members.get(key)

    @property
    def member_keys(self) -> list[str]:
        return list(self._members)


class IdentitySet(BaseModel):
    """
    Every identifier the current user may appear under.

    Build one per request or view and pass it to the predicates that need
    it. Values are stored normalized: emails and names lowercased and
    trimmed, phones trimmed.
    """
    model_config = ConfigDict(frozen=True)

    ids: frozenset[str] = Field(default_factory=frozenset)
    emails: frozenset[str] = Field(default_factory=frozenset)
    phones: frozenset[str] = Field(default_factory=frozenset)
    names: frozenset[str] = Field(default_factory=frozenset)

    @classmethod
    def for_user(
        cls,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        name: Optional[str] = None,
        extra_ids: Iterable[str] = (),
    ) -> "IdentitySet":
        ids = {str(i) for i in (user_id, *extra_ids) if i}
        return cls(
            ids=frozenset(ids),
            emails=frozenset(v for v in [_norm_email(email)] if v),
            phones=frozenset(v for v in [_norm_phone(phone)] if v),
            names=frozenset(v for v in [_norm_name(name)] if v),
        )

    @classmethod
    def for_member(cls, member: Member) -> "IdentitySet":
        return cls.for_user(
            user_id=member.key,
            email=member.email,
            phone=member.phone,
            name=member.name,
        )

    def match(
        self,
        ref: Reference,
        fallback_name: Optional[str] = None,
        resolver: Optional[ReferenceResolver] = None,
    ) -> Optional[MatchKind]:
        """
        Decide whether a reference points at the current user.

        A reference that resolves to a registered member other than the
        current user is never matched on contact details or name.
        """
        member = resolver.member_for(ref, fallback_name) if resolver else None
        identifier = reference_id(ref)

        if identifier is not None and identifier in self.ids:
            return MatchKind.ID
        if member is not None and member.key in self.ids:
            return MatchKind.ID
        if member is not None and not member.is_shadow:
            return None

        populated = ref if isinstance(ref, PopulatedRef) else None

        emails = [member.email if member else None, populated.email if populated else None]
        if any(_norm_email(e) in self.emails for e in emails if e):
            return MatchKind.EMAIL

        phones = [member.phone if member else None, populated.phone if populated else None]
        if any(_norm_phone(p) in self.phones for p in phones if p):
            return MatchKind.PHONE

        names = [
            member.name if member else None,
            populated.name if populated else None,
            ref.fallback_name if isinstance(ref, UnresolvedRef) else None,
            fallback_name,
        ]
        if any(_norm_name(n) in self.names for n in names if n):
            return MatchKind.NAME

        return None

    def is_me(
        self,
        ref: Reference,
        fallback_name: Optional[str] = None,
        resolver: Optional[ReferenceResolver] = None,
    ) -> bool:
        return self.match(ref, fallback_name, resolver) is not None
