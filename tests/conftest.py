"""
Shared fixtures for DebtBook tests.

Everything runs against the in-memory store. `FlakyDocumentStore` wraps it
to inject store failures at chosen calls, which is how the crash/resume
tests interrupt multi-document operations part-way.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio

from debtbook.audit import AuditLogger
from debtbook.config import LedgerSettings
from debtbook.ledger import (
    BalanceLedger,
    ContactRelationshipManager,
    LedgerStore,
    ReconciliationEngine,
    StagedTransactionBuffer,
)
from debtbook.orchestrator import DebtBook
from debtbook.services.storage import (
    DocumentStoreInterface,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    StoreUnavailableError,
)
from debtbook.validation import LedgerValidator


ALICE = "uid-alice"
BOB = "uid-bob"
CAROL = "uid-carol"

EMAILS = {
    ALICE: "alice@example.com",
    BOB: "bob@example.com",
    CAROL: "carol@example.com",
}


class FlakyDocumentStore(DocumentStoreInterface):
    """
    Delegates to an in-memory store and fails selected calls once.

    Args:
        inner: Store that holds the data
        yield_on_read: Give other tasks a turn after every `get`, so that
                       concurrent read-modify-write sequences interleave
    """

    def __init__(self, inner: Optional[InMemoryDocumentStore] = None, yield_on_read: bool = False):
        self.inner = inner or InMemoryDocumentStore()
        self.yield_on_read = yield_on_read
        self.calls: dict[str, int] = {}
        self._rules: list[dict[str, Any]] = []

    def fail_on(self, method: str, nth: int = 1, when: Optional[Callable[..., bool]] = None) -> None:
        """Raise StoreUnavailableError on the nth call of `method` matching `when`."""
        self._rules.append({"method": method, "remaining": nth, "when": when})

    @property
    def armed(self) -> bool:
        return bool(self._rules)

    def _check(self, method: str, *args: Any) -> None:
        self.calls[method] = self.calls.get(method, 0) + 1
        for rule in self._rules:
            if rule["method"] != method:
                continue
            if rule["when"] is not None and not rule["when"](*args):
                continue
            rule["remaining"] -= 1
            if rule["remaining"] == 0:
                self._rules.remove(rule)
                raise StoreUnavailableError(f"Injected failure in {method}")

    async def get(self, collection, doc_id):
        self._check("get", collection, doc_id)
        document = await self.inner.get(collection, doc_id)
        if self.yield_on_read:
            await asyncio.sleep(0)
        return document

    async def set_if_absent(self, collection, doc_id, document):
        self._check("set_if_absent", collection, doc_id, document)
        return await self.inner.set_if_absent(collection, doc_id, document)

    async def update_fields(self, collection, doc_id, updates, preconditions=None):
        self._check("update_fields", collection, doc_id, updates, preconditions)
        return await self.inner.update_fields(collection, doc_id, updates, preconditions)

    async def append_record(self, path, record, record_id=None):
        self._check("append_record", path, record, record_id)
        return await self.inner.append_record(path, record, record_id)

    async def list_records(self, path):
        self._check("list_records", path)
        return await self.inner.list_records(path)

    async def delete_record(self, path, record_id):
        self._check("delete_record", path, record_id)
        return await self.inner.delete_record(path, record_id)

    async def query_by_field(self, collection, field, value):
        self._check("query_by_field", collection, field, value)
        return await self.inner.query_by_field(collection, field, value)


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        max_transaction_amount="1000000",
        max_description_length=200,
        purge_staged_on_decline=False,
        record_settlements=False,
        balance_update_attempts=5,
    )


@pytest.fixture
def validator(ledger_settings) -> LedgerValidator:
    return LedgerValidator(ledger_settings)


@pytest.fixture
def documents() -> FlakyDocumentStore:
    return FlakyDocumentStore()


@pytest.fixture
def store(documents) -> LedgerStore:
    return LedgerStore(documents)


@pytest.fixture
def staging(store, validator) -> StagedTransactionBuffer:
    return StagedTransactionBuffer(store, validator)


@pytest.fixture
def contacts(store, staging, validator) -> ContactRelationshipManager:
    return ContactRelationshipManager(store, staging, validator)


@pytest.fixture
def balances(store, validator) -> BalanceLedger:
    return BalanceLedger(store, validator)


@pytest.fixture
def engine(store, staging, balances) -> ReconciliationEngine:
    return ReconciliationEngine(store, staging, balances)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def book(documents, audit_storage, validator) -> DebtBook:
    return DebtBook(
        documents=documents,
        audit_logger=AuditLogger(audit_storage),
        validator=validator,
        purge_staged_on_decline=False,
        record_settlements=False,
        balance_update_attempts=5,
    )


@pytest_asyncio.fixture
async def accounts(contacts) -> dict[str, str]:
    """Alice, Bob and Carol registered and onboarded."""
    for uid, email in EMAILS.items():
        await contacts.register_account(uid, email)
        await contacts.complete_onboarding(uid, uid.split("-")[1].title())
    return dict(EMAILS)


async def confirm_pair(contacts, engine, requester_id: str, owner_id: str) -> None:
    """Requester sends a request and the owner accepts it."""
    await contacts.send_request(requester_id, EMAILS[owner_id])
    await engine.accept_request(owner_id, requester_id)


async def net_debt(store: LedgerStore, owner_id: str, counterparty_id: str):
    table = await store.get_relationships(owner_id)
    return table.confirmed[counterparty_id].net_debt
