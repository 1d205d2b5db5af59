"""Ledger entry validation package."""

from groupledger.validation.validator import LedgerEntryValidator

__all__ = ["LedgerEntryValidator"]
