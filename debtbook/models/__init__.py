"""
Data Models Package

This package contains all Pydantic models used in DebtBook.
Every document read from or written to the store goes through these schemas.
"""

from debtbook.models.ledger import (
    Account,
    BalanceStatus,
    ConfirmedRelationship,
    ContactsOverview,
    ContactSummary,
    DebtDirection,
    DeclineResult,
    DuplicateKind,
    GhostRelationship,
    PairConsistencyReport,
    PairingRecord,
    PairingStatus,
    PendingRelationship,
    ReconciliationReport,
    RelationshipKind,
    RelationshipTable,
    SendRequestResult,
    SettlementResult,
    StagedTransaction,
    Transaction,
    TransactionKind,
    TransactionReceipt,
)
from debtbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "BalanceStatus",
    "ConfirmedRelationship",
    "ContactsOverview",
    "ContactSummary",
    "DebtDirection",
    "DeclineResult",
    "DuplicateKind",
    "GhostRelationship",
    "PairConsistencyReport",
    "PairingRecord",
    "PairingStatus",
    "PendingRelationship",
    "ReconciliationReport",
    "RelationshipKind",
    "RelationshipTable",
    "SendRequestResult",
    "SettlementResult",
    "StagedTransaction",
    "Transaction",
    "TransactionKind",
    "TransactionReceipt",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
