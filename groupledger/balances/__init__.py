"""Balance aggregation package."""

from groupledger.balances.aggregator import (
    BalanceMap,
    DEFAULT_EPSILON,
    balances_are_zero_sum,
    compute_balances,
    compute_member_position,
    iter_valid_entries,
    pairwise_debt,
    round_amount,
    settle_drift,
    to_decimal,
)

__all__ = [
    "BalanceMap",
    "DEFAULT_EPSILON",
    "balances_are_zero_sum",
    "compute_balances",
    "compute_member_position",
    "iter_valid_entries",
    "pairwise_debt",
    "round_amount",
    "settle_drift",
    "to_decimal",
]
