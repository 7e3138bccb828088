"""
Tests for the DebtBook orchestrator: dispatch between confirmed and staged
debts, and the audit trail left by every action.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from debtbook.errors import (
    DuplicateRelationship,
    EmailAlreadyRegistered,
    InvalidAmount,
    LedgerMissing,
    RequestStateInconsistent,
    StoreUnavailable,
)
from debtbook.models import AuditEventType, DebtDirection, StagedTransaction, TransactionReceipt
from debtbook.models.ledger import GhostRelationship, RelationshipKind
from debtbook.orchestrator import DebtBook, create_app_components
from debtbook.services.storage import InMemoryDocumentStore

from tests.conftest import ALICE, BOB, CAROL, EMAILS


@pytest_asyncio.fixture
async def people(book):
    for uid, email in EMAILS.items():
        await book.register(uid, email)
        await book.onboard(uid, uid.split("-")[1].title())
    return book


@pytest_asyncio.fixture
async def friends(people):
    """Alice and Bob confirmed through the orchestrator."""
    await people.send_request(ALICE, EMAILS[BOB])
    await people.accept_request(BOB, ALICE)
    return people


def event_types(audit_storage, correlation_id=None):
    return [
        e.event_type
        for e in audit_storage.events
        if correlation_id is None or e.correlation_id == correlation_id
    ]


class TestAccounts:
    @pytest.mark.asyncio
    async def test_register_and_onboard_are_audited(self, book, audit_storage):
        correlation_id = uuid4()
        await book.register(ALICE, EMAILS[ALICE], correlation_id=correlation_id)
        account = await book.onboard(ALICE, "Alice", correlation_id=correlation_id)

        assert account.name == "Alice"
        assert event_types(audit_storage, correlation_id) == [
            AuditEventType.ACCOUNT_REGISTERED,
            AuditEventType.ACCOUNT_ONBOARDED,
        ]

    @pytest.mark.asyncio
    async def test_rejected_registration_is_audited(self, book, audit_storage):
        await book.register(ALICE, EMAILS[ALICE])
        with pytest.raises(EmailAlreadyRegistered):
            await book.register(BOB, EMAILS[ALICE])

        rejected = audit_storage.events[-1]
        assert rejected.event_type == AuditEventType.OPERATION_REJECTED
        assert rejected.error_code == "EmailAlreadyRegistered"
        assert rejected.actor_id == BOB


class TestContactRequests:
    @pytest.mark.asyncio
    async def test_request_and_ghost_events(self, people, audit_storage):
        await people.send_request(ALICE, EMAILS[BOB])
        ghost = await people.send_request(ALICE, "x@y.com")

        assert ghost.kind == RelationshipKind.GHOST
        assert event_types(audit_storage)[-2:] == [
            AuditEventType.CONTACT_REQUEST_SENT,
            AuditEventType.GHOST_CONTACT_ADDED,
        ]

    @pytest.mark.asyncio
    async def test_duplicate_request_is_audited_with_reason(self, people, audit_storage):
        await people.send_request(ALICE, EMAILS[BOB])
        with pytest.raises(DuplicateRelationship):
            await people.send_request(ALICE, EMAILS[BOB])

        rejected = audit_storage.events[-1]
        assert rejected.event_type == AuditEventType.CONTACT_REQUEST_REJECTED
        assert rejected.details == {"reason": "outgoing"}

    @pytest.mark.asyncio
    async def test_accept_events_share_correlation_id(self, people, audit_storage):
        await people.send_request(ALICE, EMAILS[BOB])
        await people.add_debt(ALICE, BOB, Decimal("20"), DebtDirection.OWED_TO_OWNER)
        correlation_id = uuid4()

        report = await people.accept_request(BOB, ALICE, correlation_id=correlation_id)

        assert report.migrated_count == 1
        assert event_types(audit_storage, correlation_id) == [
            AuditEventType.RECONCILIATION_STARTED,
            AuditEventType.RECONCILIATION_COMPLETED,
        ]
        completed = audit_storage.events[-1]
        assert completed.details["migrated_count"] == 1
        assert completed.details["owner_delta"] == "-20.00"

    @pytest.mark.asyncio
    async def test_rejected_accept_is_audited(self, people, audit_storage):
        correlation_id = uuid4()
        with pytest.raises(RequestStateInconsistent):
            await people.accept_request(BOB, ALICE, correlation_id=correlation_id)

        assert event_types(audit_storage, correlation_id) == [
            AuditEventType.RECONCILIATION_STARTED,
            AuditEventType.RECONCILIATION_FAILED,
            AuditEventType.OPERATION_REJECTED,
        ]

    @pytest.mark.asyncio
    async def test_interrupted_accept_reports_store_error_and_can_be_retried(
        self, people, documents, audit_storage
    ):
        await people.send_request(ALICE, EMAILS[BOB])
        await people.add_debt(ALICE, BOB, Decimal("20"), DebtDirection.OWED_TO_OWNER)
        documents.fail_on("delete_record")
        correlation_id = uuid4()

        with pytest.raises(StoreUnavailable):
            await people.accept_request(BOB, ALICE, correlation_id=correlation_id)
        assert event_types(audit_storage, correlation_id)[-1] == AuditEventType.STORE_ERROR

        report = await people.accept_request(BOB, ALICE)
        assert report.resumed
        assert report.owner_net_debt == Decimal("-20")
        assert (await people.verify_pair(BOB, ALICE)).is_consistent

    @pytest.mark.asyncio
    async def test_unexpected_accept_failure_is_audited(self, people, audit_storage, monkeypatch):
        async def broken(owner_id, requester_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(people._reconciliation, "accept_request", broken)
        with pytest.raises(RuntimeError):
            await people.accept_request(BOB, ALICE)

        error = audit_storage.events[-1]
        assert error.event_type == AuditEventType.SYSTEM_ERROR
        assert error.error_message == "boom"

    @pytest.mark.asyncio
    async def test_decline_reports_orphaned_staged_records(self, people, audit_storage):
        await people.send_request(ALICE, EMAILS[BOB])
        await people.add_debt(ALICE, BOB, Decimal("20"), DebtDirection.OWED_TO_OWNER)
        correlation_id = uuid4()

        result = await people.decline_request(BOB, ALICE, correlation_id=correlation_id)

        assert result.orphaned_staged == 1
        assert event_types(audit_storage, correlation_id) == [
            AuditEventType.CONTACT_REQUEST_DECLINED,
            AuditEventType.STAGED_RECORDS_ORPHANED,
        ]
        assert audit_storage.events[-1].details == {"count": 1}

    @pytest.mark.asyncio
    async def test_clean_decline_has_no_orphan_event(self, people, audit_storage):
        await people.send_request(ALICE, EMAILS[BOB])
        correlation_id = uuid4()
        await people.decline_request(BOB, ALICE, correlation_id=correlation_id)
        assert event_types(audit_storage, correlation_id) == [AuditEventType.CONTACT_REQUEST_DECLINED]


class TestAddDebt:
    @pytest.mark.asyncio
    async def test_confirmed_contact_updates_balances(self, friends, audit_storage):
        receipt = await friends.add_debt(ALICE, BOB, Decimal("12.50"), DebtDirection.OWED_BY_OWNER)

        assert isinstance(receipt, TransactionReceipt)
        assert receipt.owner_net_debt == Decimal("-12.50")
        assert receipt.counterparty_net_debt == Decimal("12.50")
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.TRANSACTION_RECORDED
        assert event.entity_id == receipt.transaction.id

    @pytest.mark.asyncio
    async def test_pending_contacts_are_staged_on_both_sides(self, people, audit_storage):
        await people.send_request(ALICE, EMAILS[BOB])

        mine = await people.add_debt(ALICE, BOB, Decimal("5"), DebtDirection.OWED_TO_OWNER)
        theirs = await people.add_debt(BOB, ALICE, Decimal("2"), DebtDirection.OWED_TO_OWNER)

        assert isinstance(mine, StagedTransaction)
        assert isinstance(theirs, StagedTransaction)
        assert audit_storage.events[-1].event_type == AuditEventType.STAGED_TRANSACTION_RECORDED
        overview = await people.overview(ALICE)
        assert overview.contacts == []

    @pytest.mark.asyncio
    async def test_ghost_contact_is_staged(self, people):
        ghost = await people.send_request(ALICE, "x@y.com")
        staged = await people.add_debt(
            ALICE, ghost.counterparty_id, Decimal("9"), DebtDirection.OWED_TO_OWNER
        )
        assert isinstance(staged, StagedTransaction)
        assert staged.counterparty_id == GhostRelationship.id_for_email("x@y.com")

    @pytest.mark.asyncio
    async def test_unknown_contact_is_rejected(self, people, audit_storage):
        with pytest.raises(LedgerMissing):
            await people.add_debt(ALICE, CAROL, Decimal("1"), DebtDirection.OWED_TO_OWNER)

        rejected = audit_storage.events[-1]
        assert rejected.event_type == AuditEventType.OPERATION_REJECTED
        assert rejected.error_code == "LedgerMissing"
        assert rejected.details == {"operation": "add_debt"}

    @pytest.mark.asyncio
    async def test_invalid_amount_is_rejected(self, friends, audit_storage):
        with pytest.raises(InvalidAmount):
            await friends.add_debt(ALICE, BOB, Decimal("0"), DebtDirection.OWED_TO_OWNER)
        assert audit_storage.events[-1].error_code == "InvalidAmount"


class TestMoney:
    @pytest.mark.asyncio
    async def test_settle_is_audited(self, friends, audit_storage):
        await friends.add_debt(ALICE, BOB, Decimal("50"), DebtDirection.OWED_TO_OWNER)

        result = await friends.settle_debt(BOB, ALICE, Decimal("70"))

        assert result.effective == Decimal("50")
        assert result.was_clamped
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.DEBT_SETTLED
        assert event.actor_id == BOB

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, friends):
        await friends.add_debt(ALICE, BOB, Decimal("1"), DebtDirection.OWED_TO_OWNER)
        await friends.add_debt(BOB, ALICE, Decimal("2"), DebtDirection.OWED_TO_OWNER)

        amounts = [t.signed_amount async for t in friends.history(ALICE, BOB)]
        assert amounts == [Decimal("-2"), Decimal("1")]

    @pytest.mark.asyncio
    async def test_inconsistent_pair_is_audited(self, friends, documents, audit_storage):
        documents.fail_on(
            "update_fields",
            nth=2,
            when=lambda collection, doc_id, updates, preconditions: collection == "contacts",
        )
        with pytest.raises(StoreUnavailable):
            await friends.add_debt(ALICE, BOB, Decimal("20"), DebtDirection.OWED_TO_OWNER)
        assert audit_storage.events[-1].event_type == AuditEventType.STORE_ERROR

        report = await friends.verify_pair(ALICE, BOB)

        assert not report.is_consistent
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.PAIR_INCONSISTENT
        assert event.details["owner_net_debt"] == "20.00"

    @pytest.mark.asyncio
    async def test_consistent_pair_is_not_audited(self, friends, audit_storage):
        before = len(audit_storage.events)
        assert (await friends.verify_pair(ALICE, BOB)).is_consistent
        assert len(audit_storage.events) == before


class TestSettingsDefaults:
    @pytest.mark.asyncio
    async def test_options_default_to_ledger_settings(self, monkeypatch):
        monkeypatch.setenv("DEBTBOOK_RECORD_SETTLEMENTS", "true")
        book = DebtBook(InMemoryDocumentStore())
        for uid, email in EMAILS.items():
            await book.register(uid, email)
        await book.send_request(ALICE, EMAILS[BOB])
        await book.accept_request(BOB, ALICE)
        await book.add_debt(ALICE, BOB, Decimal("10"), DebtDirection.OWED_TO_OWNER)

        result = await book.settle_debt(BOB, ALICE, Decimal("10"))

        assert result.transaction is not None
        assert len(await book.history(ALICE, BOB).to_list()) == 2


class TestCreateAppComponents:
    def test_without_storage(self):
        book, client = create_app_components(use_storage=False)
        assert isinstance(book, DebtBook)
        assert client is None

    def test_missing_sheets_configuration_falls_back_to_memory(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "google_sheets")
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        book, client = create_app_components()

        assert isinstance(book, DebtBook)
        assert client is None
