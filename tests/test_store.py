"""
Tests for the document stores and the ledger store adapter.
"""

import pytest
from uuid import uuid4

from debtbook.errors import NotFound, StoreUnavailable
from debtbook.ledger.store import LedgerStore, field_path, history_path, staged_path
from debtbook.models.audit import AuditEventBuilder
from debtbook.models.ledger import Account, PairingRecord, PairingStatus, Transaction
from debtbook.services.storage import (
    DELETE,
    GoogleSheetsAuditStorage,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    NotFoundError,
    WriteConflictError,
)
from debtbook.services.storage.google_sheets import AUDIT_COLUMNS, DOCUMENT_COLUMNS, RECORD_COLUMNS

from tests.conftest import FlakyDocumentStore


class FakeWorksheet:
    """In-process stand-in for a gspread worksheet."""

    def __init__(self, columns):
        self.rows = [list(columns)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update_cell(self, row, col, value):
        target = self.rows[row - 1]
        while len(target) < col:
            target.append("")
        target[col - 1] = str(value)

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    def __init__(self):
        self.documents = FakeWorksheet(DOCUMENT_COLUMNS)
        self.records = FakeWorksheet(RECORD_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_documents_sheet(self):
        return self.documents

    def get_records_sheet(self):
        return self.records

    def get_audit_sheet(self):
        return self.audit


@pytest.fixture(params=["memory", "google_sheets"])
def backend(request):
    if request.param == "memory":
        return InMemoryDocumentStore()
    return GoogleSheetsDocumentStore(FakeSheetsClient())


class TestDocumentStores:
    """Contract tests run against every backend."""

    @pytest.mark.asyncio
    async def test_get_missing_document(self, backend):
        assert await backend.get("contacts", "nobody") is None

    @pytest.mark.asyncio
    async def test_set_if_absent_creates_once(self, backend):
        assert await backend.set_if_absent("users", "u1", {"name": "", "email": "a@x.io"})
        assert not await backend.set_if_absent("users", "u1", {"name": "other", "email": "b@x.io"})
        assert await backend.get("users", "u1") == {"name": "", "email": "a@x.io"}

    @pytest.mark.asyncio
    async def test_update_fields_nested_and_delete(self, backend):
        await backend.set_if_absent("contacts", "u1", {"contacts": {}, "incomingRequests": {"u2": {"name": "B"}}})
        await backend.update_fields(
            "contacts",
            "u1",
            {
                "contacts.u2.netDebt": "10.00",
                "contacts.u2.status": "unsettled",
                "incomingRequests.u2": DELETE,
                "pendingMigrations.u2.s1": "5.00",
            },
        )
        document = await backend.get("contacts", "u1")
        assert document["contacts"]["u2"] == {"netDebt": "10.00", "status": "unsettled"}
        assert document["incomingRequests"] == {}
        assert document["pendingMigrations"] == {"u2": {"s1": "5.00"}}

    @pytest.mark.asyncio
    async def test_delete_of_missing_path_is_a_no_op(self, backend):
        await backend.set_if_absent("contacts", "u1", {"contacts": {}})
        await backend.update_fields("contacts", "u1", {"outgoingRequests.u9": DELETE})
        assert await backend.get("contacts", "u1") == {"contacts": {}}

    @pytest.mark.asyncio
    async def test_update_missing_document_raises_not_found(self, backend):
        with pytest.raises(NotFoundError):
            await backend.update_fields("contacts", "ghost", {"a": 1})

    @pytest.mark.asyncio
    async def test_preconditions_guard_updates(self, backend):
        await backend.set_if_absent("contacts", "u1", {"contacts": {"u2": {"netDebt": "0"}}})

        await backend.update_fields(
            "contacts", "u1", {"contacts.u2.netDebt": "5.00"}, preconditions={"contacts.u2.netDebt": "0"}
        )
        with pytest.raises(WriteConflictError):
            await backend.update_fields(
                "contacts", "u1", {"contacts.u2.netDebt": "9.00"}, preconditions={"contacts.u2.netDebt": "0"}
            )
        document = await backend.get("contacts", "u1")
        assert document["contacts"]["u2"]["netDebt"] == "5.00"

    @pytest.mark.asyncio
    async def test_absence_precondition(self, backend):
        await backend.set_if_absent("contacts", "u1", {"contacts": {}})
        await backend.update_fields("contacts", "u1", {"contacts.u2": {"netDebt": "0"}}, {"contacts.u2": None})
        with pytest.raises(WriteConflictError):
            await backend.update_fields("contacts", "u1", {"contacts.u2": {"netDebt": "0"}}, {"contacts.u2": None})

    @pytest.mark.asyncio
    async def test_records_are_put_if_absent_and_ordered(self, backend):
        path = "contacts/u1/contacts/u2/transactions"
        first = await backend.append_record(path, {"n": 1})
        await backend.append_record(path, {"n": 2}, record_id="fixed")
        assert await backend.append_record(path, {"n": 3}, record_id="fixed") == "fixed"

        records = await backend.list_records(path)
        assert records == [(first, {"n": 1}), ("fixed", {"n": 2})]
        assert await backend.list_records("contacts/u2/contacts/u1/transactions") == []

    @pytest.mark.asyncio
    async def test_delete_record(self, backend):
        path = "contacts/u1/staged/u2/transactions"
        record_id = await backend.append_record(path, {"n": 1})
        assert await backend.delete_record(path, record_id)
        assert not await backend.delete_record(path, record_id)
        assert await backend.list_records(path) == []

    @pytest.mark.asyncio
    async def test_query_by_field(self, backend):
        await backend.set_if_absent("users", "u1", {"email": "a@x.io"})
        await backend.set_if_absent("users", "u2", {"email": "b@x.io"})
        await backend.set_if_absent("contacts", "u3", {"email": "a@x.io"})
        assert await backend.query_by_field("users", "email", "a@x.io") == [("u1", {"email": "a@x.io"})]


class TestGoogleSheetsAuditStorage:
    @pytest.mark.asyncio
    async def test_events_round_trip_through_rows(self):
        storage = GoogleSheetsAuditStorage(FakeSheetsClient())
        correlation_id = uuid4()
        await storage.append_event(
            AuditEventBuilder.request_sent("u1", "u2", "u1__u2", correlation_id)
        )
        await storage.append_event(
            AuditEventBuilder.account_registered("u3", "c@x.io", uuid4())
        )

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 1
        assert events[0].actor_id == "u1"
        assert events[0].entity_id == "u1__u2"
        assert len(await storage.get_recent_events(limit=10)) == 2
        assert len(await storage.get_events_by_entity("account", "u3")) == 1


class TestFieldPaths:
    def test_joins_segments(self):
        assert field_path("contacts", "u2", "netDebt") == "contacts.u2.netDebt"

    @pytest.mark.parametrize("segment", ["", "a.b"])
    def test_rejects_unsafe_segments(self, segment):
        with pytest.raises(ValueError):
            field_path("contacts", segment)

    def test_collection_paths(self):
        assert history_path("a", "b") == "contacts/a/contacts/b/transactions"
        assert staged_path("a", "b") == "contacts/a/staged/b/transactions"


class TestLedgerStore:
    @pytest.mark.asyncio
    async def test_account_round_trip(self):
        store = LedgerStore(InMemoryDocumentStore())
        assert await store.create_account(Account(uid="u1", email="a@x.io"))
        assert not await store.create_account(Account(uid="u1", email="a@x.io"))

        found = await store.find_account_by_email("a@x.io")
        assert found.uid == "u1"
        assert found.needs_onboarding
        assert await store.find_account_by_email("nobody@x.io") is None

    @pytest.mark.asyncio
    async def test_set_account_name_only_once(self):
        store = LedgerStore(InMemoryDocumentStore())
        await store.create_account(Account(uid="u1", email="a@x.io"))
        await store.set_account_name("u1", "Ann")
        with pytest.raises(WriteConflictError):
            await store.set_account_name("u1", "Other")
        assert (await store.get_account("u1")).name == "Ann"

    @pytest.mark.asyncio
    async def test_missing_document_becomes_not_found(self):
        store = LedgerStore(InMemoryDocumentStore())
        with pytest.raises(NotFound):
            await store.update_relationships("nobody", {"contacts.x.netDebt": "1"})

    @pytest.mark.asyncio
    async def test_backend_failure_becomes_store_unavailable(self):
        documents = FlakyDocumentStore()
        documents.fail_on("get")
        store = LedgerStore(documents)
        with pytest.raises(StoreUnavailable):
            await store.get_account("u1")
        assert await store.get_account("u1") is None

    @pytest.mark.asyncio
    async def test_transactions_keep_their_id(self):
        store = LedgerStore(InMemoryDocumentStore())
        transaction = Transaction(amount="5.00", signed_amount="-5.00", created_by="u1")
        path = history_path("u1", "u2")
        assert await store.append_transaction(path, transaction, record_id=transaction.id) == transaction.id

        [(record_id, data)] = await store.list_transactions(path)
        assert record_id == transaction.id
        assert Transaction.from_record(record_id, data).signed_amount == transaction.signed_amount

    @pytest.mark.asyncio
    async def test_save_pairing_creates_then_updates_status(self):
        store = LedgerStore(InMemoryDocumentStore())
        record = PairingRecord(
            pairing_id=PairingRecord.pair_id("u1", "u2"),
            participants=["u1", "u2"],
            status=PairingStatus.PENDING,
            created_by="u1",
        )
        await store.save_pairing(record)
        await store.save_pairing(record.model_copy(update={"status": PairingStatus.CONFIRMED}))

        saved = await store.get_pairing("u1__u2")
        assert saved.status == PairingStatus.CONFIRMED
        assert saved.created_by == "u1"
        assert saved.participants == ["u1", "u2"]
        assert await store.get_pairing("nobody") is None
