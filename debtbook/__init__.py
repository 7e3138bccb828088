"""
DebtBook - Shared Debt Ledger

Tracks who owes whom between pairs of people. Each side of a pair keeps
its own copy of the balance and history; the two copies are mirrored.

DESIGN PRINCIPLES:
1. Both sides of a pair always sum to zero
2. Money moves only through recorded transactions or settlements
3. Every multi-document operation is an idempotent, resumable sequence
4. Every user action is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "DebtBook Team"
