"""Settlement simplification package."""

from groupledger.settlement.simplifier import (
    SettlementCalculationError,
    format_settlement,
    settlement_deltas,
    simplify_debts,
    validate_settlements,
)

__all__ = [
    "SettlementCalculationError",
    "format_settlement",
    "settlement_deltas",
    "simplify_debts",
    "validate_settlements",
]
