"""
Group Ledger - Source Package

Shared-expense bookkeeping for groups of friends, flatmates and families:
who paid, who owes, and the fewest payments that settle everyone up.

DESIGN PRINCIPLES:
1. Balances are derived, never stored
2. The ledger is append-only (settlements are ledger entries too)
3. The balance and settlement core is pure: no I/O, no logging
4. Validation happens before an entry reaches the ledger
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Group Ledger Team"
