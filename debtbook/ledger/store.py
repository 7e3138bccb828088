"""
Ledger Store Adapter

The only module that knows collection names, document paths and field
paths. Everything above it works with typed models and ids.

Document layout:
- users/{uid}                                       Account
- contacts/{uid}                                    relationship map
- contacts/{uid}/contacts/{cid}/transactions/{id}   confirmed history
- contacts/{uid}/staged/{cid}/transactions/{id}     staged transactions
- ledgers/{pairing_id}                              pairing record

Backend failures are translated here so that callers only ever see the
ledger error taxonomy, except for WriteConflictError which balance writers
catch to retry a compare-and-set.
"""

from functools import wraps
from typing import Any, Optional

import structlog

from debtbook.errors import NotFound, StoreUnavailable
from debtbook.models.ledger import Account, PairingRecord, RelationshipTable, Transaction, utc_now
from debtbook.services.storage import (
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
    WriteConflictError,
)


USERS = "users"
CONTACTS = "contacts"
LEDGERS = "ledgers"

logger = structlog.get_logger(__name__)


def field_path(*parts: str) -> str:
    """Join path segments, refusing ids that would split into extra segments."""
    for part in parts:
        if not part or "." in part:
            raise ValueError(f"Invalid field path segment: {part!r}")
    return ".".join(parts)


def history_path(owner_id: str, counterparty_id: str) -> str:
    return f"{CONTACTS}/{owner_id}/contacts/{counterparty_id}/transactions"


def staged_path(owner_id: str, counterparty_id: str) -> str:
    return f"{CONTACTS}/{owner_id}/staged/{counterparty_id}/transactions"


def translate_errors(func):
    """Map backend errors onto ledger errors."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except WriteConflictError:
            raise
        except NotFoundError as e:
            raise NotFound(str(e)) from e
        except StorageError as e:
            logger.warning("store_unavailable", operation=func.__name__, error=str(e))
            raise StoreUnavailable(f"{func.__name__} failed: {e}") from e

    return wrapper


class LedgerStore:
    """Typed access to accounts, relationship maps, histories and pairings."""

    def __init__(self, documents: DocumentStoreInterface):
        self._documents = documents

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @translate_errors
    async def get_account(self, uid: str) -> Optional[Account]:
        data = await self._documents.get(USERS, uid)
        return Account.from_document(uid, data) if data is not None else None

    @translate_errors
    async def find_account_by_email(self, email: str) -> Optional[Account]:
        matches = await self._documents.query_by_field(USERS, "email", email)
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning("duplicate_email", email=email, count=len(matches))
        uid, data = sorted(matches)[0]
        return Account.from_document(uid, data)

    @translate_errors
    async def create_account(self, account: Account) -> bool:
        return await self._documents.set_if_absent(USERS, account.uid, account.to_document())

    @translate_errors
    async def set_account_name(self, uid: str, name: str) -> None:
        await self._documents.update_fields(USERS, uid, {"name": name}, preconditions={"name": ""})

    # -------------------------------------------------------------------------
    # Relationship maps
    # -------------------------------------------------------------------------

    @translate_errors
    async def get_relationships(self, uid: str) -> Optional[RelationshipTable]:
        data = await self._documents.get(CONTACTS, uid)
        return RelationshipTable.from_document(uid, data) if data is not None else None

    @translate_errors
    async def ensure_relationship_doc(self, uid: str) -> bool:
        return await self._documents.set_if_absent(
            CONTACTS, uid, RelationshipTable.empty_document(uid)
        )

    @translate_errors
    async def update_relationships(
        self,
        uid: str,
        updates: dict[str, Any],
        preconditions: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._documents.update_fields(CONTACTS, uid, updates, preconditions)

    # -------------------------------------------------------------------------
    # Transactions (history and staged)
    # -------------------------------------------------------------------------

    @translate_errors
    async def append_transaction(
        self,
        path: str,
        transaction: Transaction,
        record_id: Optional[str] = None,
    ) -> str:
        return await self._documents.append_record(path, transaction.to_document(), record_id)

    @translate_errors
    async def list_transactions(self, path: str) -> list[tuple[str, dict[str, Any]]]:
        return await self._documents.list_records(path)

    @translate_errors
    async def delete_record(self, path: str, record_id: str) -> bool:
        return await self._documents.delete_record(path, record_id)

    # -------------------------------------------------------------------------
    # Pairing records
    # -------------------------------------------------------------------------

    @translate_errors
    async def get_pairing(self, pairing_id: str) -> Optional[PairingRecord]:
        data = await self._documents.get(LEDGERS, pairing_id)
        if data is None:
            return None
        return PairingRecord.model_validate({**data, "pairing_id": pairing_id})

    @translate_errors
    async def save_pairing(self, record: PairingRecord) -> None:
        """Create the record, or move an existing one to the record's status."""
        created = await self._documents.set_if_absent(
            LEDGERS, record.pairing_id, record.to_document()
        )
        if not created:
            await self._documents.update_fields(
                LEDGERS,
                record.pairing_id,
                {
                    "status": record.status.value,
                    "updatedAt": utc_now().isoformat(),
                },
            )
