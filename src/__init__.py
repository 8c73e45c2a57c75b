"""
Personal Ledger - Source Package

Account balances kept consistent with the ledger entries that
produce them.

DESIGN PRINCIPLES:
1. Balances are derived, never edited
2. Fail early, fail visibly
3. No silent corrections
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Ledger Team"
