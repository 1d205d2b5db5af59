"""
Spending Analytics

Group-level spend figures for charts and summary cards.

DESIGN DECISION: Settlement entries move money between members, they are
not spending. Every spend total here skips them. The one figure that does
include them is the user's net balance, because a settlement changes what
the user owes.
"""

from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Union

from groupledger.balances import iter_valid_entries, round_amount
from groupledger.identity import IdentitySet, ReferenceResolver
from groupledger.models.ledger import LedgerEntry, Member, SpendingSummary


def summarize_spending(
    entries: Iterable[Union[LedgerEntry, Mapping[str, Any]]],
    members: Iterable[Member],
    identity: Optional[IdentitySet] = None,
) -> SpendingSummary:
    """
    Summarize a group's spending.

    Args:
        entries: Ledger entries of the group
        members: Group members (for payer names)
        identity: Current user, for the "my spend" and "my balance" figures

    Returns:
        SpendingSummary with totals by category and by payer name
    """
    members = list(members)
    resolver = ReferenceResolver(members)

    total = Decimal("0")
    by_category = {}
    by_member = {m.name: Decimal("0") for m in members}
    my_spend = Decimal("0")
    my_net = Decimal("0")
    expense_count = 0
    settlement_count = 0

    for entry in iter_valid_entries(entries):
        paid_by_me = identity is not None and identity.is_me(
            entry.payer, entry.payer_name_fallback, resolver
        )

        if identity is not None:
            if paid_by_me:
                my_net += entry.amount
            for split in entry.splits:
                if identity.is_me(split.member, split.member_name_fallback, resolver):
                    my_net -= split.amount

        if entry.is_settlement:
            settlement_count += 1
            continue

        expense_count += 1
        total += entry.amount

        category = entry.category_label
        by_category[category] = by_category.get(category, Decimal("0")) + entry.amount

        payer_name = resolver.display_name(entry.payer, entry.payer_name_fallback)
        by_member[payer_name] = by_member.get(payer_name, Decimal("0")) + entry.amount

        if paid_by_me:
            my_spend += entry.amount

    by_member = dict(
        sorted(by_member.items(), key=lambda item: item[1], reverse=True)
    )

    return SpendingSummary(
        total_group_spend=round_amount(total),
        by_category={k: round_amount(v) for k, v in by_category.items()},
        by_member={k: round_amount(v) for k, v in by_member.items()},
        my_total_spend=round_amount(my_spend),
        my_net_balance=round_amount(my_net),
        expense_count=expense_count,
        settlement_count=settlement_count,
    )
