"""
Staged Transaction Buffer

Holds transactions recorded against a contact that is not (yet) mutual:
an outgoing or incoming request, or a ghost contact. Staged transactions
never touch netDebt; they only reach a balance through reconciliation.

Draining works on a snapshot. Each record is handed to the caller's
migrate callback and deleted only after the callback returns, so a crash
never loses a record, and a record appended while a drain is running is
simply left for the next drain.
"""

from decimal import Decimal
from typing import Awaitable, Callable, Optional

import structlog

from debtbook.ledger.store import LedgerStore, staged_path
from debtbook.models.ledger import DebtDirection, StagedTransaction, Transaction, utc_now
from debtbook.validation import LedgerValidator


logger = structlog.get_logger(__name__)

MigrateCallback = Callable[[StagedTransaction], Awaitable[None]]


class StagedTransactionBuffer:
    """Per-(owner, counterparty) append-only staging area."""

    def __init__(self, store: LedgerStore, validator: Optional[LedgerValidator] = None):
        self._store = store
        self._validator = validator or LedgerValidator()

    async def record_staged(
        self,
        owner_id: str,
        counterparty_id: str,
        amount: Decimal,
        direction: DebtDirection,
        description: Optional[str] = None,
    ) -> StagedTransaction:
        """
        Append a transaction to the owner's staging area for the counterparty.

        Only the sign of the amount is checked here; the amount is kept as
        given until it is folded into a balance.

        Raises:
            InvalidAmount: amount is not a number or is <= 0
        """
        amount = self._validator.positive_amount(amount)
        description = (description or "").strip() or None

        transaction = Transaction(
            amount=amount,
            signed_amount=direction.sign(amount),
            description=description,
            created_at=utc_now(),
            created_by=owner_id,
        )
        record_id = await self._store.append_transaction(
            staged_path(owner_id, counterparty_id), transaction, record_id=transaction.id
        )

        logger.info(
            "transaction_staged",
            owner_id=owner_id,
            counterparty_id=counterparty_id,
            record_id=record_id,
        )
        return StagedTransaction(
            **transaction.model_dump(exclude={"id"}),
            id=record_id,
            owner_id=owner_id,
            counterparty_id=counterparty_id,
        )

    async def list_staged(self, owner_id: str, counterparty_id: str) -> list[StagedTransaction]:
        """Staged transactions in the order they were recorded."""
        records = await self._store.list_transactions(staged_path(owner_id, counterparty_id))
        return [
            StagedTransaction.model_validate(
                {
                    **data,
                    "id": record_id,
                    "owner_id": owner_id,
                    "counterparty_id": counterparty_id,
                }
            )
            for record_id, data in records
        ]

    async def count(self, owner_id: str, counterparty_id: str) -> int:
        records = await self._store.list_transactions(staged_path(owner_id, counterparty_id))
        return len(records)

    async def drain(
        self,
        owner_id: str,
        counterparty_id: str,
        migrate: MigrateCallback,
    ) -> list[StagedTransaction]:
        """
        Hand every staged record to `migrate`, deleting each once it returns.

        If `migrate` raises, that record and all later ones stay staged.

        Returns:
            The records that were migrated and deleted
        """
        path = staged_path(owner_id, counterparty_id)
        drained = []
        for staged in await self.list_staged(owner_id, counterparty_id):
            await migrate(staged)
            await self._store.delete_record(path, staged.id)
            drained.append(staged)
        return drained

    async def purge(self, owner_id: str, counterparty_id: str) -> int:
        """Delete all staged records for the pair without migrating them."""
        path = staged_path(owner_id, counterparty_id)
        deleted = 0
        for record_id, _ in await self._store.list_transactions(path):
            if await self._store.delete_record(path, record_id):
                deleted += 1
        logger.info(
            "staged_purged",
            owner_id=owner_id,
            counterparty_id=counterparty_id,
            count=deleted,
        )
        return deleted
