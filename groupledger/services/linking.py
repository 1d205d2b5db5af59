"""
Shadow Member Linking

People can be added to a group before they register, identified only by
an email or phone number. Their member id is then a shadow id derived
from that contact. When they register, every group holding a matching
shadow member is rewritten to use the new account id, in the member list
and in every ledger entry that references the shadow id.

Linking is idempotent: a shadow member that has already been rewritten no
longer matches, so running the link twice changes nothing the second time.
"""

from typing import Optional
from uuid import UUID

import structlog

from groupledger.audit import AuditLogger
from groupledger.models.ledger import LinkResult, MemberId
from groupledger.services.storage.interface import LedgerStorageInterface

logger = structlog.get_logger("groupledger.linking")


def _contact_matches(member, email: Optional[str], phone: Optional[str]) -> bool:
    if email and member.email == email:
        return True
    return bool(phone and member.phone == phone)


class ShadowLinkService:
    """Rewrites shadow members to a newly registered account."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def link_registered_user(
        self,
        account_id: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LinkResult:
        """
        Link every shadow member with this email or phone to `account_id`.

        Args:
            account_id: Identifier of the registered account
            email: Registered email, compared case-insensitively
            phone: Registered phone, compared exactly

        Returns:
            LinkResult with the groups and members that were linked
        """
        email = email.strip().lower() if email else None
        phone = phone.strip() if phone else None
        if not email and not phone:
            return LinkResult(message="No contact details to link")

        account = MemberId.account(account_id)
        groups = await self._storage.find_groups_with_shadow_contact(email, phone)
        if not groups:
            return LinkResult()

        linked_members = 0
        group_names = []
        for group in groups:
            shadows = [
                m for m in group.members
                if m.is_shadow and _contact_matches(m, email, phone)
            ]
            if group.has_member(account):
                # Already a member under the account; linking would duplicate it
                logger.warning(
                    "shadow_link_skipped",
                    group_id=str(group.id),
                    account_id=account_id,
                    reason="account already in group",
                )
                continue

            if not shadows:
                continue

            # One account takes one member slot; email match wins over phone
            shadows.sort(key=lambda m: not (email and m.email == email))
            shadow = shadows[0]
            rewritten = await self._storage.rewrite_member_id(
                group.id, shadow.id, account
            )
            await self._audit.log_shadow_member_linked(
                group_id=group.id,
                old_id=shadow.key,
                account_id=account_id,
                rewritten_entries=rewritten,
                correlation_id=correlation_id,
            )
            linked_members += 1
            group_names.append(group.name)

        if not group_names:
            return LinkResult()

        return LinkResult(
            linked_groups_count=len(group_names),
            linked_members_count=linked_members,
            group_names=group_names,
            message=f"You've been added to {len(group_names)} existing group(s)",
        )
