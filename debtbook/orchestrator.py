"""
Main Orchestrator for DebtBook

This module ties together all the ledger components and exposes one
method per user action:

1. Accounts (register → onboard)
2. Contacts (send request → accept / decline)
3. Money (add debt → settle → history)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Debts reach a balance only through a confirmed relationship
- Anything else is staged until the pair is mutual
- Every action is audited under one correlation id

Failures are audited and re-raised unchanged, so callers see the ledger
error taxonomy and can show `error.user_message` directly.
"""

from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from debtbook.audit import AuditLogger, create_correlation_id
from debtbook.config import get_settings
from debtbook.errors import DuplicateRelationship, LedgerError, LedgerMissing, StoreUnavailable
from debtbook.ledger import (
    BalanceLedger,
    ContactRelationshipManager,
    LedgerStore,
    ReconciliationEngine,
    StagedTransactionBuffer,
    TransactionHistory,
)
from debtbook.models import (
    Account,
    AuditEventBuilder,
    ContactsOverview,
    DebtDirection,
    DeclineResult,
    PairConsistencyReport,
    ReconciliationReport,
    RelationshipKind,
    SendRequestResult,
    SettlementResult,
    StagedTransaction,
    TransactionReceipt,
)
from debtbook.services.storage import (
    AuditStorageInterface,
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    StorageError,
)
from debtbook.validation import LedgerValidator


logger = structlog.get_logger(__name__)

STAGED_KINDS = (
    RelationshipKind.OUTGOING_PENDING,
    RelationshipKind.INCOMING_PENDING,
    RelationshipKind.GHOST,
)


class DebtBook:
    """
    Entry point for every user action on the ledger.

    Each method takes the acting user's id explicitly; nothing is kept
    between calls, so one instance can serve any number of sessions.
    """

    def __init__(
        self,
        documents: DocumentStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        purge_staged_on_decline: Optional[bool] = None,
        record_settlements: Optional[bool] = None,
        balance_update_attempts: Optional[int] = None,
    ):
        ledger_settings = get_settings().ledger
        if purge_staged_on_decline is None:
            purge_staged_on_decline = ledger_settings.purge_staged_on_decline
        if record_settlements is None:
            record_settlements = ledger_settings.record_settlements
        if balance_update_attempts is None:
            balance_update_attempts = ledger_settings.balance_update_attempts

        validator = validator or LedgerValidator(ledger_settings)
        self._store = LedgerStore(documents)
        self._staging = StagedTransactionBuffer(self._store, validator)
        self._contacts = ContactRelationshipManager(
            self._store,
            self._staging,
            validator,
            purge_staged_on_decline=purge_staged_on_decline,
        )
        self._balances = BalanceLedger(
            self._store,
            validator,
            record_settlements=record_settlements,
            balance_update_attempts=balance_update_attempts,
        )
        self._reconciliation = ReconciliationEngine(self._store, self._staging, self._balances)
        self._audit_logger = audit_logger or AuditLogger()

    @property
    def store(self) -> LedgerStore:
        return self._store

    async def _rejected(
        self,
        actor_id: str,
        operation: str,
        error: LedgerError,
        correlation_id: UUID,
    ) -> None:
        if isinstance(error, StoreUnavailable):
            await self._audit_logger.log_store_error(
                operation=operation,
                error_message=str(error),
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_rejected(
                actor_id=actor_id,
                operation=operation,
                error=error,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def register(
        self,
        uid: str,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """Create an account and its empty relationship map."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            account = await self._contacts.register_account(uid, email)
        except LedgerError as e:
            await self._rejected(uid, "register", e, correlation_id)
            raise

        await self._audit_logger.log(
            AuditEventBuilder.account_registered(
                uid=uid,
                email=account.email,
                correlation_id=correlation_id,
            )
        )
        return account

    async def onboard(
        self,
        uid: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """Set the display name shown to contacts."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            account = await self._contacts.complete_onboarding(uid, name)
        except LedgerError as e:
            await self._rejected(uid, "onboard", e, correlation_id)
            raise

        await self._audit_logger.log(
            AuditEventBuilder.account_onboarded(
                uid=uid,
                name=account.name,
                correlation_id=correlation_id,
            )
        )
        return account

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    async def send_request(
        self,
        owner_id: str,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> SendRequestResult:
        """
        Add a contact by email.

        Returns:
            SendRequestResult; kind is GHOST when no account has the email
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            result = await self._contacts.send_request(owner_id, email)
        except DuplicateRelationship as e:
            await self._audit_logger.log(
                AuditEventBuilder.request_rejected(
                    owner_id=owner_id,
                    reason=e.kind.value,
                    correlation_id=correlation_id,
                )
            )
            raise
        except LedgerError as e:
            await self._rejected(owner_id, "send_request", e, correlation_id)
            raise

        if result.kind == RelationshipKind.GHOST:
            event = AuditEventBuilder.ghost_added(
                owner_id=owner_id,
                ghost_id=result.counterparty_id,
                pairing_id=result.pairing_id,
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.request_sent(
                owner_id=owner_id,
                counterparty_id=result.counterparty_id,
                pairing_id=result.pairing_id,
                correlation_id=correlation_id,
            )
        await self._audit_logger.log(event)
        return result

    async def accept_request(
        self,
        owner_id: str,
        requester_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Accept an incoming request and migrate both staged buffers.

        Safe to call again with the same ids after a failure.
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._audit_logger.log(
            AuditEventBuilder.reconciliation_started(
                owner_id=owner_id,
                requester_id=requester_id,
                correlation_id=correlation_id,
            )
        )

        try:
            report = await self._reconciliation.accept_request(owner_id, requester_id)
        except LedgerError as e:
            await self._audit_logger.log(
                AuditEventBuilder.reconciliation_failed(
                    owner_id=owner_id,
                    requester_id=requester_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            )
            await self._rejected(owner_id, "accept_request", e, correlation_id)
            raise
        except Exception as e:
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": "accept_request", "requester_id": requester_id},
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log(
            AuditEventBuilder.reconciliation_completed(
                owner_id=owner_id,
                requester_id=requester_id,
                migrated_count=report.migrated_count,
                owner_delta=report.owner_delta,
                resumed=report.resumed,
                correlation_id=correlation_id,
            )
        )
        return report

    async def decline_request(
        self,
        owner_id: str,
        requester_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> DeclineResult:
        """Decline an incoming request; staged records are reported, not lost."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            result = await self._contacts.decline_request(owner_id, requester_id)
        except LedgerError as e:
            await self._rejected(owner_id, "decline_request", e, correlation_id)
            raise

        await self._audit_logger.log(
            AuditEventBuilder.request_declined(
                owner_id=owner_id,
                requester_id=requester_id,
                orphaned_staged=result.orphaned_staged,
                purged=result.purged,
                correlation_id=correlation_id,
            )
        )
        if result.orphaned_staged and not result.purged:
            await self._audit_logger.log(
                AuditEventBuilder.staged_orphaned(
                    owner_id=owner_id,
                    counterparty_id=requester_id,
                    count=result.orphaned_staged,
                    correlation_id=correlation_id,
                )
            )
        return result

    # -------------------------------------------------------------------------
    # Money
    # -------------------------------------------------------------------------

    async def add_debt(
        self,
        owner_id: str,
        counterparty_id: str,
        amount: Decimal,
        direction: DebtDirection,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Union[TransactionReceipt, StagedTransaction]:
        """
        Record a debt against a contact.

        Confirmed contacts get a mirrored transaction and updated balances.
        Pending and ghost contacts get a staged transaction that waits for
        acceptance.

        Raises:
            LedgerMissing: the owner has no relationship with the counterparty
            InvalidAmount: amount is not positive, or for a confirmed contact
                has more than two decimals or exceeds the configured limit
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            kind = await self._contacts.relationship_kind(owner_id, counterparty_id)
            if kind == RelationshipKind.CONFIRMED:
                receipt = await self._balances.record_confirmed_transaction(
                    owner_id, counterparty_id, amount, direction, description
                )
            elif kind in STAGED_KINDS:
                staged = await self._staging.record_staged(
                    owner_id, counterparty_id, amount, direction, description
                )
            else:
                raise LedgerMissing(f"{owner_id} has no contact {counterparty_id}")
        except LedgerError as e:
            await self._rejected(owner_id, "add_debt", e, correlation_id)
            raise

        if kind == RelationshipKind.CONFIRMED:
            await self._audit_logger.log(
                AuditEventBuilder.transaction_recorded(
                    owner_id=owner_id,
                    counterparty_id=counterparty_id,
                    transaction_id=receipt.transaction.id,
                    signed_amount=receipt.transaction.signed_or_amount,
                    owner_net_debt=receipt.owner_net_debt,
                    correlation_id=correlation_id,
                )
            )
            return receipt

        await self._audit_logger.log(
            AuditEventBuilder.staged_recorded(
                owner_id=owner_id,
                counterparty_id=counterparty_id,
                transaction_id=staged.id,
                signed_amount=staged.signed_or_amount,
                correlation_id=correlation_id,
            )
        )
        return staged

    async def settle_debt(
        self,
        owner_id: str,
        counterparty_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> SettlementResult:
        """Settle up to `amount` of the outstanding balance with a confirmed contact."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            result = await self._balances.settle(owner_id, counterparty_id, amount)
        except LedgerError as e:
            await self._rejected(owner_id, "settle_debt", e, correlation_id)
            raise

        await self._audit_logger.log(
            AuditEventBuilder.debt_settled(
                owner_id=owner_id,
                counterparty_id=counterparty_id,
                requested=result.requested,
                effective=result.effective,
                owner_net_debt=result.owner_net_debt,
                correlation_id=correlation_id,
            )
        )
        return result

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def history(self, owner_id: str, counterparty_id: str) -> TransactionHistory:
        """Owner's history with a contact, newest first. Iterate with `async for`."""
        return self._balances.history(owner_id, counterparty_id)

    async def overview(self, owner_id: str) -> ContactsOverview:
        return await self._contacts.get_overview(owner_id)

    async def verify_pair(
        self,
        owner_id: str,
        counterparty_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> PairConsistencyReport:
        """Check that both sides of a pair mirror each other."""
        correlation_id = correlation_id or create_correlation_id()
        report = await self._balances.verify_pair(owner_id, counterparty_id)
        if not report.is_consistent:
            await self._audit_logger.log(
                AuditEventBuilder.pair_inconsistent(
                    owner_id=owner_id,
                    counterparty_id=counterparty_id,
                    details={
                        "owner_net_debt": str(report.owner_net_debt),
                        "counterparty_net_debt": str(report.counterparty_net_debt),
                        "unmirrored_transaction_ids": report.unmirrored_transaction_ids,
                    },
                    correlation_id=correlation_id,
                )
            )
        return report


def create_app_components(
    use_storage: bool = True,
) -> tuple[DebtBook, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage when the
                    configured backend is google_sheets.
                    Set to False for testing without storage.

    Returns:
        (debtbook, sheets_client)
    """
    sheets_client = None
    documents: Optional[DocumentStoreInterface] = None
    audit_storage: Optional[AuditStorageInterface] = None

    if use_storage and get_settings().app.uses_google_sheets:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.get_spreadsheet()
            documents = GoogleSheetsDocumentStore(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except (StorageError, ValidationError) as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None

    if documents is None:
        documents = InMemoryDocumentStore()
        audit_storage = InMemoryAuditStorage()

    debtbook = DebtBook(
        documents=documents,
        audit_logger=AuditLogger(audit_storage),
    )
    return debtbook, sheets_client
