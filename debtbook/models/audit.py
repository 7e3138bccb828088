"""
Audit Models for DebtBook

Every action that moves money or changes a relationship is logged.
This provides:
1. Complete traceability of balances back to user actions
2. Debugging information when a multi-document operation stops half-way
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from debtbook.models.ledger import as_utc, utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every user action and every step of a reconciliation has its own type.
    """
    # Accounts
    ACCOUNT_REGISTERED = "account_registered"
    ACCOUNT_ONBOARDED = "account_onboarded"

    # Contact requests
    CONTACT_REQUEST_SENT = "contact_request_sent"
    GHOST_CONTACT_ADDED = "ghost_contact_added"
    CONTACT_REQUEST_REJECTED = "contact_request_rejected"
    CONTACT_REQUEST_DECLINED = "contact_request_declined"
    STAGED_RECORDS_ORPHANED = "staged_records_orphaned"

    # Money movements
    STAGED_TRANSACTION_RECORDED = "staged_transaction_recorded"
    TRANSACTION_RECORDED = "transaction_recorded"
    DEBT_SETTLED = "debt_settled"

    # Reconciliation
    RECONCILIATION_STARTED = "reconciliation_started"
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    RECONCILIATION_FAILED = "reconciliation_failed"
    PAIR_INCONSISTENT = "pair_inconsistent"

    # System events
    OPERATION_REJECTED = "operation_rejected"
    SYSTEM_ERROR = "system_error"
    STORE_ERROR = "store_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - who or what is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'pair', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    actor_id: Optional[str] = Field(
        default=None,
        description="Account that performed the action"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one acceptance)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_code,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.actor_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.request_sent(owner_id, counterparty_id, email, correlation_id)
        event = AuditEventBuilder.debt_settled(owner_id, counterparty_id, ...)
    """

    @staticmethod
    def account_registered(uid: str, email: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_REGISTERED,
            entity_type="account",
            entity_id=uid,
            actor_id=uid,
            correlation_id=correlation_id,
            description=f"Account registered: {email}",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def account_onboarded(uid: str, name: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_ONBOARDED,
            entity_type="account",
            entity_id=uid,
            actor_id=uid,
            correlation_id=correlation_id,
            description="Display name set",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def request_sent(
        owner_id: str,
        counterparty_id: str,
        pairing_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTACT_REQUEST_SENT,
            entity_type="pair",
            entity_id=pairing_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description="Contact request sent",
            details={"counterparty_id": counterparty_id},
            is_user_action=True,
        )

    @staticmethod
    def ghost_added(
        owner_id: str,
        ghost_id: str,
        pairing_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GHOST_CONTACT_ADDED,
            entity_type="pair",
            entity_id=pairing_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description="Ghost contact added for an email without an account",
            details={"ghost_id": ghost_id},
            is_user_action=True,
        )

    @staticmethod
    def request_rejected(
        owner_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTACT_REQUEST_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=owner_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description=f"Contact request rejected: {reason}",
            details={"reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def request_declined(
        owner_id: str,
        requester_id: str,
        orphaned_staged: int,
        purged: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTACT_REQUEST_DECLINED,
            entity_type="pair",
            entity_id=requester_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description="Contact request declined",
            details={
                "requester_id": requester_id,
                "orphaned_staged": orphaned_staged,
                "purged": purged,
            },
            is_user_action=True,
        )

    @staticmethod
    def staged_orphaned(
        owner_id: str,
        counterparty_id: str,
        count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STAGED_RECORDS_ORPHANED,
            severity=AuditSeverity.WARNING,
            entity_type="pair",
            entity_id=counterparty_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description=f"{count} staged transactions left after decline",
            details={"count": count},
        )

    @staticmethod
    def staged_recorded(
        owner_id: str,
        counterparty_id: str,
        transaction_id: str,
        signed_amount: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STAGED_TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description=f"Staged {_money(signed_amount)} against a pending contact",
            details={
                "counterparty_id": counterparty_id,
                "signed_amount": _money(signed_amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_recorded(
        owner_id: str,
        counterparty_id: str,
        transaction_id: str,
        signed_amount: Decimal,
        owner_net_debt: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description=f"Recorded {_money(signed_amount)}, balance now {_money(owner_net_debt)}",
            details={
                "counterparty_id": counterparty_id,
                "signed_amount": _money(signed_amount),
                "owner_net_debt": _money(owner_net_debt),
            },
            is_user_action=True,
        )

    @staticmethod
    def debt_settled(
        owner_id: str,
        counterparty_id: str,
        requested: Decimal,
        effective: Decimal,
        owner_net_debt: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEBT_SETTLED,
            entity_type="pair",
            entity_id=counterparty_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description=f"Settled {_money(effective)} of {_money(requested)} requested",
            details={
                "requested": _money(requested),
                "effective": _money(effective),
                "owner_net_debt": _money(owner_net_debt),
            },
            is_user_action=True,
        )

    @staticmethod
    def reconciliation_started(
        owner_id: str,
        requester_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_STARTED,
            entity_type="pair",
            entity_id=requester_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description="Accepting contact request",
            details={"requester_id": requester_id},
            is_user_action=True,
        )

    @staticmethod
    def reconciliation_completed(
        owner_id: str,
        requester_id: str,
        migrated_count: int,
        owner_delta: Decimal,
        resumed: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            entity_type="pair",
            entity_id=requester_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description=f"Reconciled {migrated_count} staged transactions",
            details={
                "migrated_count": migrated_count,
                "owner_delta": _money(owner_delta),
                "resumed": resumed,
            },
        )

    @staticmethod
    def reconciliation_failed(
        owner_id: str,
        requester_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="pair",
            entity_id=requester_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description="Acceptance stopped before completing; safe to retry",
            error_message=error_message,
        )

    @staticmethod
    def pair_inconsistent(
        owner_id: str,
        counterparty_id: str,
        details: dict,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAIR_INCONSISTENT,
            severity=AuditSeverity.ERROR,
            entity_type="pair",
            entity_id=counterparty_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description="Mirrored ledgers disagree",
            details=details,
        )

    @staticmethod
    def operation_rejected(
        actor_id: Optional[str],
        operation: str,
        error_code: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected",
            error_code=error_code,
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def store_error(
        operation: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Document store unavailable during {operation}",
            error_message=error_message,
            details={"operation": operation, "retryable": True},
            correlation_id=correlation_id,
        )
