"""
Settlement Simplifier

Turns a balance map into the fewest payments that settle everyone up.

Algorithm (greedy, two pointers):
1. Split members into creditors (balance > epsilon) and debtors (balance < -epsilon)
2. Sort both descending by amount (stable, so ties keep input order)
3. Match the largest outstanding debtor with the largest outstanding creditor,
   pay the smaller of the two remainders, advance whichever side is settled
4. Stop when either side runs out

Example:
    Input:  A=+1000, B=-400, C=+300, D=+500, E=-1400
    Output: E->A 1000, E->D 400, B->D 100, B->C 300

For N members with a non-zero balance this emits at most N-1 payments.

DESIGN DECISION: This is the only implementation of the algorithm. Reports,
APIs and views all call it, with the same epsilon (one currency minor unit).

KNOWN LOOSENESS: If credits and debits do not add up (caller error), the
unmatched tail is dropped instead of raising. `validate_settlements` will
report such a result as invalid.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Union

from groupledger.balances import DEFAULT_EPSILON, round_amount, to_decimal
from groupledger.models.ledger import Member, SettlementParty, SettlementSuggestion


class SettlementCalculationError(Exception):
    """Settlements could not be calculated from the given balances."""
    pass


def _index_members(members: Iterable[Member]) -> dict[str, Member]:
    index = {}
    for member in members:
        if not isinstance(member, Member):
            raise SettlementCalculationError(f"Not a group member: {member!r}")
        index[member.key] = member
    return index


def _party(member_id: str, members: dict[str, Member]) -> SettlementParty:
    member = members.get(member_id)
    if member is None:
        return SettlementParty(id=member_id)
    return SettlementParty(
        id=member_id,
        name=member.name,
        email=member.email,
        phone=member.phone,
    )


def _parse_balance(member_id: Any, raw: Any) -> Decimal:
    try:
        amount = to_decimal(raw)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise SettlementCalculationError(
            f"Invalid balance for {member_id!r}: {raw!r}"
        ) from e
    if not amount.is_finite():
        raise SettlementCalculationError(
            f"Invalid balance for {member_id!r}: {raw!r}"
        )
    return amount


def simplify_debts(
    balances: Mapping[str, Any],
    members: Iterable[Member] = (),
    epsilon: Union[Decimal, float] = DEFAULT_EPSILON,
) -> list[SettlementSuggestion]:
    """
    Compute the payments that zero out every balance.

    Args:
        balances: Member key to signed balance (positive = owed money)
        members: Group members, used to put names and contacts on the result
        epsilon: Balances and payments below this are treated as settled

    Returns:
        Ordered list of suggestions; empty when everyone is already settled

    Raises:
        SettlementCalculationError: If balances is not a mapping of numbers.
            No partial result is ever returned.
    """
    if not isinstance(balances, Mapping):
        raise SettlementCalculationError(
            "Balances must be a mapping of member id to amount"
        )
    eps = _parse_balance("epsilon", epsilon)
    if eps <= 0:
        raise SettlementCalculationError("Epsilon must be positive")

    index = _index_members(members)

    # [member_id, remaining]
    creditors = []
    debtors = []
    for member_id, raw in balances.items():
        amount = _parse_balance(member_id, raw)
        if abs(amount) < eps:
            continue
        if amount > 0:
            creditors.append([str(member_id), amount])
        else:
            debtors.append([str(member_id), -amount])

    creditors.sort(key=lambda party: party[1], reverse=True)
    debtors.sort(key=lambda party: party[1], reverse=True)

    settlements = []
    i = 0  # creditor index
    j = 0  # debtor index

    while i < len(creditors) and j < len(debtors):
        creditor = creditors[i]
        debtor = debtors[j]

        payment = min(creditor[1], debtor[1])

        if payment >= eps:
            settlements.append(SettlementSuggestion(
                from_member=_party(debtor[0], index),
                to_member=_party(creditor[0], index),
                amount=round_amount(payment),
            ))

        creditor[1] -= payment
        debtor[1] -= payment

        if creditor[1] < eps:
            i += 1
        if debtor[1] < eps:
            j += 1

    return settlements


def settlement_deltas(
    settlements: Iterable[SettlementSuggestion],
) -> dict[str, Decimal]:
    """Net effect of a list of settlements per member (payer negative, receiver positive)."""
    deltas = {}
    for settlement in settlements:
        payer = settlement.from_member.id
        receiver = settlement.to_member.id
        deltas[payer] = deltas.get(payer, Decimal("0")) - settlement.amount
        deltas[receiver] = deltas.get(receiver, Decimal("0")) + settlement.amount
    return deltas


def validate_settlements(
    settlements: Iterable[SettlementSuggestion],
    balances: Mapping[str, Any],
    epsilon: Union[Decimal, float] = DEFAULT_EPSILON,
) -> bool:
    """
    Check that executing every settlement reproduces the original balances.

    Each member's accumulated delta must be within epsilon of their balance;
    members absent from the settlements must already be settled.
    """
    eps = to_decimal(epsilon)
    deltas = settlement_deltas(settlements)

    for member_id in set(deltas) | {str(k) for k in balances}:
        expected = to_decimal(balances.get(member_id, 0))
        actual = deltas.get(member_id, Decimal("0"))
        if abs(actual - expected) >= eps:
            return False
    return True


def format_settlement(settlement: SettlementSuggestion, symbol: str = "₹") -> str:
    """Format a settlement for display, e.g. 'Bob pays Alice ₹100.00'."""
    return (
        f"{settlement.from_member.name} pays {settlement.to_member.name} "
        f"{symbol}{settlement.amount:.2f}"
    )
