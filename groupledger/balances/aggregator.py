"""
Balance Aggregator

Derives each member's net position from a group's ledger:
positive = the member is owed money, negative = the member owes money.

For every entry that is not deleted:
- the payer is credited the full amount (including their own share)
- every split member is debited their split amount (including the payer's)

Settlement entries go through exactly the same arithmetic. A settlement
records the debtor as payer and the creditor as the single split, which is
what makes it cancel the debt it pays off.

DESIGN DECISION: This is a pure projection. It does not validate entries
(that happens before they reach the ledger), it never raises on a bad
entry, and it never logs. A piece it cannot attribute to anyone is skipped
so one broken record cannot block a whole group's balance view.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Iterator, Mapping, Union

from pydantic import ValidationError

from groupledger.identity import IdentitySet, ReferenceResolver
from groupledger.models.ledger import BalanceEntry, LedgerEntry, Member


ZERO = Decimal("0.00")
CENT = Decimal("0.01")
DEFAULT_EPSILON = Decimal("0.01")

BalanceMap = dict[str, Decimal]


def to_decimal(value: Any) -> Decimal:
    """Convert an int, float, str or Decimal amount to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Booleans are not amounts")
    return Decimal(str(value))


def round_amount(value: Decimal) -> Decimal:
    """Round to currency precision (2 decimals, half up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def settle_drift(value: Decimal, epsilon: Decimal = DEFAULT_EPSILON) -> Decimal:
    """Round, treating anything below epsilon as exactly zero."""
    if abs(value) < epsilon:
        return ZERO
    return round_amount(value)


def iter_valid_entries(
    entries: Iterable[Union[LedgerEntry, Mapping[str, Any]]],
) -> Iterator[Union[LedgerEntry, BalanceEntry]]:
    """
    Yield ledger entries, parsing raw mappings on the way.

    Raw mappings are read as BalanceEntry: only amount, payer, splits,
    category and the deleted flag are parsed, so display fields never
    drop an entry. Entries without a usable amount or payer/splits shape
    are skipped. Deleted entries are skipped too.
    """
    for raw in entries:
        if isinstance(raw, (LedgerEntry, BalanceEntry)):
            entry = raw
        else:
            try:
                entry = BalanceEntry.model_validate(raw)
            except (ValidationError, TypeError, ValueError):
                continue
        if entry.is_deleted:
            continue
        yield entry


def compute_balances(
    members: Iterable[Member],
    entries: Iterable[Union[LedgerEntry, Mapping[str, Any]]],
    epsilon: Union[Decimal, float] = DEFAULT_EPSILON,
) -> BalanceMap:
    """
    Compute the net balance of every member of a group.

    Args:
        members: Group members; every one of them appears in the result
        entries: Ledger entries (models or raw mappings), settlements included
        epsilon: Magnitudes below this are reported as zero

    Returns:
        Mapping of member key to balance, rounded to 2 decimals. References
        that carry an id unknown to the group show up under that id.
    """
    eps = to_decimal(epsilon)
    resolver = ReferenceResolver(members)
    balances = {key: Decimal("0") for key in resolver.member_keys}

    for entry in iter_valid_entries(entries):
        payer = resolver.resolve(entry.payer, entry.payer_name_fallback)
        if payer is not None:
            balances[payer] = balances.get(payer, Decimal("0")) + entry.amount

        for split in entry.splits:
            key = resolver.resolve(split.member, split.member_name_fallback)
            if key is None:
                continue
            balances[key] = balances.get(key, Decimal("0")) - split.amount

    return {key: settle_drift(value, eps) for key, value in balances.items()}


def compute_member_position(
    members: Iterable[Member],
    entries: Iterable[Union[LedgerEntry, Mapping[str, Any]]],
    identity: IdentitySet,
    epsilon: Union[Decimal, float] = DEFAULT_EPSILON,
) -> Decimal:
    """
    Net position of the current user in one group.

    Used by per-user views (group list, dashboard) that only need "my"
    number and must recognise the user under any of their identifiers.
    """
    resolver = ReferenceResolver(members)
    total = Decimal("0")

    for entry in iter_valid_entries(entries):
        if identity.is_me(entry.payer, entry.payer_name_fallback, resolver):
            total += entry.amount
        for split in entry.splits:
            if identity.is_me(split.member, split.member_name_fallback, resolver):
                total -= split.amount

    return settle_drift(total, to_decimal(epsilon))


def pairwise_debt(
    members: Iterable[Member],
    entries: Iterable[Union[LedgerEntry, Mapping[str, Any]]],
    debtor: str,
    creditor: str,
) -> Decimal:
    """
    What `debtor` owes `creditor` from entries directly between the two.

    Counts the debtor's splits on entries the creditor paid, minus the
    creditor's splits on entries the debtor paid (earlier settlements
    included). This ignores debt routed through third parties, so it is
    only a plausibility check for a settle-up amount.
    """
    resolver = ReferenceResolver(members)
    debt = Decimal("0")

    for entry in iter_valid_entries(entries):
        payer = resolver.resolve(entry.payer, entry.payer_name_fallback)
        if payer not in (debtor, creditor):
            continue
        for split in entry.splits:
            key = resolver.resolve(split.member, split.member_name_fallback)
            if payer == creditor and key == debtor:
                debt += split.amount
            elif payer == debtor and key == creditor:
                debt -= split.amount

    return round_amount(debt)


def balances_are_zero_sum(
    balances: Mapping[str, Any],
    epsilon: Union[Decimal, float] = DEFAULT_EPSILON,
) -> bool:
    """Check that a balance map sums to zero within epsilon."""
    total = sum((to_decimal(v) for v in balances.values()), Decimal("0"))
    return abs(total) < to_decimal(epsilon)
