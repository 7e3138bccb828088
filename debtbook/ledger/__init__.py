"""
Ledger Package

The reconciliation core: relationships, staged transactions, mirrored
balances and the acceptance saga that joins them. All components share
one LedgerStore and never hold state between calls.
"""

from debtbook.ledger.balances import BalanceLedger, TransactionHistory
from debtbook.ledger.contacts import ContactRelationshipManager
from debtbook.ledger.reconciliation import ReconciliationEngine
from debtbook.ledger.staging import StagedTransactionBuffer
from debtbook.ledger.store import LedgerStore, field_path, history_path, staged_path

__all__ = [
    "BalanceLedger",
    "ContactRelationshipManager",
    "LedgerStore",
    "ReconciliationEngine",
    "StagedTransactionBuffer",
    "TransactionHistory",
    "field_path",
    "history_path",
    "staged_path",
]
