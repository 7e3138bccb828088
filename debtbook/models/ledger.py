"""
Core Data Models for DebtBook

These models define the strict schemas for everything stored in the
document store and everything returned to callers. They are designed to:
1. Enforce type safety at the storage boundary
2. Keep money as Decimal end to end (serialized as strings in documents)
3. Replace loosely-typed nested maps with typed relationship entries

DESIGN DECISION: Stored documents use camelCase field names so that the
data stays readable next to the documents other clients write. The Python
side only ever sees snake_case attributes; aliases do the translation.
"""

import hashlib
import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


ZERO = Decimal("0")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class RelationshipKind(str, Enum):
    """
    State of one side's relationship with a counterparty.

    Checked in declaration order when an owner holds more than one entry
    for the same counterparty (for example mid-way through an acceptance).
    """
    CONFIRMED = "confirmed"
    OUTGOING_PENDING = "outgoing_pending"
    INCOMING_PENDING = "incoming_pending"
    GHOST = "ghost"


class BalanceStatus(str, Enum):
    """Derived from netDebt: settled iff the balance is exactly zero."""
    SETTLED = "settled"
    UNSETTLED = "unsettled"

    @classmethod
    def for_balance(cls, net_debt: Decimal) -> "BalanceStatus":
        return cls.SETTLED if net_debt == 0 else cls.UNSETTLED


class DebtDirection(str, Enum):
    """Direction of a debt as seen by the person recording it."""
    OWED_TO_OWNER = "owes_me"   # counterparty owes the owner
    OWED_BY_OWNER = "i_owe"     # owner owes the counterparty

    def sign(self, amount: Decimal) -> Decimal:
        """Signed amount relative to the owner's ledger."""
        return amount if self is DebtDirection.OWED_TO_OWNER else -amount


class TransactionKind(str, Enum):
    DEBT = "debt"
    SETTLEMENT = "settlement"


class PairingStatus(str, Enum):
    """Bookkeeping status of a pairing record. Never authoritative for balances."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    GHOST = "ghost"


class DuplicateKind(str, Enum):
    """Why a contact request was rejected as a duplicate."""
    SELF = "self"
    CONFIRMED = "confirmed"
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    GHOST = "ghost"


# =============================================================================
# STORED DOCUMENTS
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps stored without an offset were written in UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DocumentModel(BaseModel):
    """Base for models persisted as documents or sub-collection records."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize for the document store (camelCase, JSON-safe values)."""
        return self.model_dump(mode="json", by_alias=True)


class Account(DocumentModel):
    """
    A registered person (`users/{uid}`).

    An empty name means the account still needs onboarding.
    """

    uid: str = Field(..., exclude=True)
    name: str = Field(default="", max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def needs_onboarding(self) -> bool:
        return not self.name

    @property
    def display_name(self) -> str:
        return self.name or self.email

    @classmethod
    def from_document(cls, uid: str, data: dict[str, Any]) -> "Account":
        return cls.model_validate({**data, "uid": uid})


class ConfirmedRelationship(DocumentModel):
    """A mutual contact with a running balance."""

    counterparty_id: str = Field(..., exclude=True)
    net_debt: Decimal = ZERO
    status: BalanceStatus = BalanceStatus.SETTLED
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def kind(self) -> RelationshipKind:
        return RelationshipKind.CONFIRMED


class GhostRelationship(DocumentModel):
    """
    A one-sided contact for an email with no account.

    Lives in the owner's `contacts` map with `ghost: true`. There is no
    counterpart record anywhere.
    """

    counterparty_id: str = Field(..., exclude=True)
    email: str
    name: Optional[str] = None
    net_debt: Decimal = ZERO
    status: BalanceStatus = BalanceStatus.SETTLED
    ghost: bool = True

    @property
    def kind(self) -> RelationshipKind:
        return RelationshipKind.GHOST

    @staticmethod
    def id_for_email(email: str) -> str:
        """Deterministic contact id for a normalized email."""
        digest = hashlib.sha256(email.encode("utf-8")).hexdigest()
        return f"ghost-{digest[:20]}"


class PendingRelationship(DocumentModel):
    """An incoming or outgoing contact request."""

    counterparty_id: str = Field(..., exclude=True)
    kind: RelationshipKind = Field(..., exclude=True)
    name: str = ""
    email: str = ""


class RelationshipTable(BaseModel):
    """
    Typed view of one account's relationship map (`contacts/{uid}`).

    Each variant lives in its own table so that an entry can never be
    mistaken for another kind. `raw` keeps the document as read, which the
    balance writers use as the expected value for compare-and-set updates.
    """

    owner_id: str
    confirmed: dict[str, ConfirmedRelationship] = Field(default_factory=dict)
    ghosts: dict[str, GhostRelationship] = Field(default_factory=dict)
    incoming: dict[str, PendingRelationship] = Field(default_factory=dict)
    outgoing: dict[str, PendingRelationship] = Field(default_factory=dict)
    pending_migrations: dict[str, dict[str, Decimal]] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @staticmethod
    def empty_document(owner_id: str) -> dict[str, Any]:
        return {
            "userId": owner_id,
            "contacts": {},
            "incomingRequests": {},
            "outgoingRequests": {},
            "pendingMigrations": {},
        }

    @classmethod
    def from_document(cls, owner_id: str, data: dict[str, Any]) -> "RelationshipTable":
        confirmed = {}
        ghosts = {}
        for cid, entry in (data.get("contacts") or {}).items():
            if entry.get("ghost"):
                ghosts[cid] = GhostRelationship.model_validate(
                    {"email": "", **entry, "counterparty_id": cid}
                )
            else:
                confirmed[cid] = ConfirmedRelationship.model_validate(
                    {**entry, "counterparty_id": cid}
                )

        def pending(key: str, kind: RelationshipKind) -> dict[str, PendingRelationship]:
            return {
                cid: PendingRelationship.model_validate(
                    {**(entry or {}), "counterparty_id": cid, "kind": kind}
                )
                for cid, entry in (data.get(key) or {}).items()
            }

        journal = {
            peer: {staged_id: Decimal(str(delta)) for staged_id, delta in entries.items()}
            for peer, entries in (data.get("pendingMigrations") or {}).items()
            if entries
        }

        return cls(
            owner_id=owner_id,
            confirmed=confirmed,
            ghosts=ghosts,
            incoming=pending("incomingRequests", RelationshipKind.INCOMING_PENDING),
            outgoing=pending("outgoingRequests", RelationshipKind.OUTGOING_PENDING),
            pending_migrations=journal,
            raw=data,
        )

    def kind_of(self, counterparty_id: str) -> Optional[RelationshipKind]:
        """First matching kind in priority order confirmed, outgoing, incoming, ghost."""
        if counterparty_id in self.confirmed:
            return RelationshipKind.CONFIRMED
        if counterparty_id in self.outgoing:
            return RelationshipKind.OUTGOING_PENDING
        if counterparty_id in self.incoming:
            return RelationshipKind.INCOMING_PENDING
        if counterparty_id in self.ghosts:
            return RelationshipKind.GHOST
        return None

    def raw_net_debt(self, counterparty_id: str) -> Any:
        entry = (self.raw.get("contacts") or {}).get(counterparty_id) or {}
        return entry.get("netDebt")

    def journal_for(self, peer_id: str) -> dict[str, Decimal]:
        return self.pending_migrations.get(peer_id, {})


class Transaction(DocumentModel):
    """
    One immutable money movement in a ledger.

    Mirrored records on both sides of a pair share the same id and carry
    opposite signed amounts.
    """

    id: str = Field(default_factory=lambda: uuid4().hex, exclude=True)
    amount: Decimal = Field(..., gt=0)
    signed_amount: Optional[Decimal] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    created_by: str
    kind: TransactionKind = TransactionKind.DEBT
    migrated_at: Optional[datetime] = None

    @field_validator("created_at", "migrated_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def signed_or_amount(self) -> Decimal:
        """
        Authoritative direction for this ledger.

        Records written before signed amounts existed count as owed to the
        ledger's owner.
        """
        if self.signed_amount is None:
            return self.amount
        return self.signed_amount

    def mirrored(self, **overrides: Any) -> "Transaction":
        """The same event as seen from the other side of the pair."""
        return self.model_copy(update={"signed_amount": -self.signed_or_amount, **overrides})

    @classmethod
    def from_record(cls, record_id: str, data: dict[str, Any]) -> "Transaction":
        return cls.model_validate({**data, "id": record_id})


class StagedTransaction(Transaction):
    """A transaction held under (owner, counterparty) until the pair is mutual."""

    owner_id: str = Field(..., exclude=True)
    counterparty_id: str = Field(..., exclude=True)


class PairingRecord(DocumentModel):
    """Audit/bookkeeping record for a pair (`ledgers/{id}`)."""

    pairing_id: str = Field(..., exclude=True)
    participants: list[str]
    status: PairingStatus
    created_by: str
    invite_email: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @staticmethod
    def pair_id(a: str, b: str) -> str:
        return "__".join(sorted([a, b]))

    @staticmethod
    def ghost_id(owner_id: str, email: str) -> str:
        sanitized = re.sub(r"[^a-z0-9._-]", "_", email.lower())
        return f"ghost__{owner_id}__{sanitized}"


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class SendRequestResult(BaseModel):
    """Outcome of adding a contact by email."""

    counterparty_id: str
    kind: RelationshipKind
    pairing_id: str
    email: str


class DeclineResult(BaseModel):
    """Outcome of declining a request, including staged records left behind."""

    counterparty_id: str
    orphaned_staged: int = Field(ge=0)
    purged: bool = False


class TransactionReceipt(BaseModel):
    """A confirmed transaction and the balances it produced."""

    transaction: Transaction
    owner_net_debt: Decimal
    counterparty_net_debt: Decimal


class SettlementResult(BaseModel):
    requested: Decimal
    effective: Decimal
    owner_net_debt: Decimal
    counterparty_net_debt: Decimal
    transaction: Optional[Transaction] = None

    @property
    def was_clamped(self) -> bool:
        return self.effective < self.requested


class ReconciliationReport(BaseModel):
    """
    Result of merging staged transactions into a newly confirmed ledger.

    Each delta is the journal total folded into that side during this run,
    so a run that resumes after the drain still reports what it applied.
    The two sum to zero whenever both journals are folded in the same run.
    """

    owner_id: str
    requester_id: str
    migrated_count: int = Field(ge=0)
    owner_delta: Decimal = ZERO
    requester_delta: Decimal = ZERO
    owner_net_debt: Decimal = ZERO
    requester_net_debt: Decimal = ZERO
    resumed: bool = False


class PairConsistencyReport(BaseModel):
    """What `verify_pair` found when comparing both sides of a pair."""

    owner_id: str
    counterparty_id: str
    owner_net_debt: Optional[Decimal] = None
    counterparty_net_debt: Optional[Decimal] = None
    unmirrored_transaction_ids: list[str] = Field(default_factory=list)

    @property
    def balances_mirrored(self) -> bool:
        if self.owner_net_debt is None or self.counterparty_net_debt is None:
            return False
        return self.owner_net_debt + self.counterparty_net_debt == 0

    @property
    def is_consistent(self) -> bool:
        return self.balances_mirrored and not self.unmirrored_transaction_ids


class ContactSummary(BaseModel):
    """One row of the contacts overview."""

    counterparty_id: str
    kind: RelationshipKind
    label: str
    email: Optional[str] = None
    net_debt: Decimal = ZERO
    status: BalanceStatus = BalanceStatus.SETTLED


class ContactsOverview(BaseModel):
    """Everything a dashboard shows for one account."""

    owner_id: str
    needs_onboarding: bool = False
    contacts: list[ContactSummary] = Field(default_factory=list)
    incoming_requests: list[ContactSummary] = Field(default_factory=list)
    outgoing_requests: list[ContactSummary] = Field(default_factory=list)

    @property
    def total_owed_to_owner(self) -> Decimal:
        return sum((c.net_debt for c in self.contacts if c.net_debt > 0), ZERO)

    @property
    def total_owed_by_owner(self) -> Decimal:
        return sum((-c.net_debt for c in self.contacts if c.net_debt < 0), ZERO)
