"""
Balance Ledger

Maintains the mirrored netDebt of a confirmed pair and the append-only
transaction history behind it.

Invariant: for every mutual transaction the two mirrored signed amounts
sum to exactly zero, and after every completed operation
owner.netDebt + counterparty.netDebt == 0.

WRITE ORDER (the store only guarantees single-document atomicity):
1. owner's history record
2. counterparty's mirrored history record (same id, opposite sign)
3. owner's balance
4. counterparty's balance
A failure part-way leaves the owner's side ahead of the counterparty's,
which `verify_pair` detects.

Balance writes are compare-and-set against the netDebt value that was
read, retried with tenacity on conflict, so concurrent writers on one
document never lose an update.
"""

from decimal import Decimal
from typing import AsyncIterator, Callable, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from debtbook.errors import LedgerMissing, StoreUnavailable
from debtbook.ledger.store import LedgerStore, field_path, history_path
from debtbook.models.ledger import (
    BalanceStatus,
    ConfirmedRelationship,
    DebtDirection,
    PairConsistencyReport,
    RelationshipTable,
    SettlementResult,
    Transaction,
    TransactionKind,
    TransactionReceipt,
    utc_now,
)
from debtbook.services.storage import WriteConflictError
from debtbook.validation import LedgerValidator


logger = structlog.get_logger(__name__)

# Computes (new netDebt, extra field updates) from the freshly read table
BalanceUpdate = Callable[[RelationshipTable, ConfirmedRelationship], tuple[Decimal, dict]]


def money(value: Decimal) -> Decimal:
    """Round to cents; zero is always stored unsigned."""
    value = value.quantize(Decimal("0.01"))
    return abs(value) if value == 0 else value


class TransactionHistory:
    """
    Lazy, finite, restartable view of one side's history, newest first.

    Every iteration re-reads the store, so iterating twice reflects any
    transactions recorded in between.
    """

    def __init__(self, store: LedgerStore, owner_id: str, counterparty_id: str):
        self._store = store
        self.owner_id = owner_id
        self.counterparty_id = counterparty_id

    async def __aiter__(self) -> AsyncIterator[Transaction]:
        records = await self._store.list_transactions(
            history_path(self.owner_id, self.counterparty_id)
        )
        transactions = [Transaction.from_record(record_id, data) for record_id, data in records]
        # Newest insertion first so that equal timestamps keep that order
        # through the stable sort below.
        transactions.reverse()
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        for transaction in transactions:
            yield transaction

    async def to_list(self) -> list[Transaction]:
        return [transaction async for transaction in self]


class BalanceLedger:
    """Confirmed-pair transactions, settlements and history."""

    def __init__(
        self,
        store: LedgerStore,
        validator: Optional[LedgerValidator] = None,
        record_settlements: bool = False,
        balance_update_attempts: int = 5,
    ):
        self._store = store
        self._validator = validator or LedgerValidator()
        self._record_settlements = record_settlements
        self._attempts = balance_update_attempts

    # -------------------------------------------------------------------------
    # Balance writes
    # -------------------------------------------------------------------------

    async def update_balance(
        self,
        owner_id: str,
        counterparty_id: str,
        compute: BalanceUpdate,
    ) -> Decimal:
        """
        Read-compute-write one side's balance with compare-and-set.

        Raises:
            LedgerMissing: the owner has no confirmed entry for the counterparty
            StoreUnavailable: every attempt lost to a concurrent write
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(WriteConflictError),
            stop=stop_after_attempt(self._attempts),
            wait=wait_random(0, 0.05),
            reraise=True,
        )
        prefix = ("contacts", counterparty_id)
        try:
            async for attempt in retrying:
                with attempt:
                    table = await self._store.get_relationships(owner_id)
                    entry = table.confirmed.get(counterparty_id) if table else None
                    if entry is None:
                        raise LedgerMissing(
                            f"{owner_id} has no confirmed ledger with {counterparty_id}"
                        )

                    new_net, extra = compute(table, entry)
                    new_net = money(new_net)
                    await self._store.update_relationships(
                        owner_id,
                        {
                            field_path(*prefix, "netDebt"): str(new_net),
                            field_path(*prefix, "status"): BalanceStatus.for_balance(new_net).value,
                            **extra,
                        },
                        preconditions={
                            field_path(*prefix, "netDebt"): table.raw_net_debt(counterparty_id),
                        },
                    )
        except WriteConflictError as e:
            raise StoreUnavailable(
                f"Balance of {owner_id} for {counterparty_id} kept changing"
            ) from e
        return new_net

    async def apply_delta(self, owner_id: str, counterparty_id: str, delta: Decimal) -> Decimal:
        return await self.update_balance(
            owner_id,
            counterparty_id,
            lambda table, entry: (entry.net_debt + delta, {}),
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def record_confirmed_transaction(
        self,
        owner_id: str,
        counterparty_id: str,
        amount: Decimal,
        direction: DebtDirection,
        description: Optional[str] = None,
    ) -> TransactionReceipt:
        """
        Record a debt between two confirmed contacts on both sides.

        Raises:
            InvalidAmount: amount is not a positive two-decimal number
            LedgerMissing: either side lacks the confirmed entry
        """
        amount = self._validator.amount(amount)
        description = self._validator.description(description)
        await self._require_confirmed(owner_id, counterparty_id)
        await self._require_confirmed(counterparty_id, owner_id)

        transaction = Transaction(
            amount=amount,
            signed_amount=direction.sign(amount),
            description=description,
            created_at=utc_now(),
            created_by=owner_id,
        )
        await self.write_mirrored(owner_id, counterparty_id, transaction)

        signed = transaction.signed_or_amount
        owner_net = await self.apply_delta(owner_id, counterparty_id, signed)
        counterparty_net = await self.apply_delta(counterparty_id, owner_id, -signed)

        logger.info(
            "transaction_recorded",
            owner_id=owner_id,
            counterparty_id=counterparty_id,
            transaction_id=transaction.id,
        )
        return TransactionReceipt(
            transaction=transaction,
            owner_net_debt=owner_net,
            counterparty_net_debt=counterparty_net,
        )

    async def write_mirrored(
        self,
        creator_id: str,
        other_id: str,
        transaction: Transaction,
    ) -> None:
        """Write the creator's record, then the opposite-sign mirror, under one id."""
        await self._store.append_transaction(
            history_path(creator_id, other_id), transaction, record_id=transaction.id
        )
        await self._store.append_transaction(
            history_path(other_id, creator_id), transaction.mirrored(), record_id=transaction.id
        )

    async def settle(
        self,
        owner_id: str,
        counterparty_id: str,
        settle_amount: Decimal,
    ) -> SettlementResult:
        """
        Move the owner's balance toward zero by at most `settle_amount`.

        Settling more than is outstanding clamps to the outstanding balance;
        the sign of the balance never flips. The counterparty's balance moves
        by the opposite change, ending at the exact negation of the owner's.
        Only a positive number is required; there is no upper limit.

        Raises:
            InvalidAmount: settle_amount is not a number or is <= 0
            LedgerMissing: either side lacks the confirmed entry
        """
        settle_amount = self._validator.positive_amount(settle_amount)
        await self._require_confirmed(counterparty_id, owner_id)

        outcome = {}

        def reduce(table: RelationshipTable, entry: ConfirmedRelationship) -> tuple[Decimal, dict]:
            current = entry.net_debt
            step = min(abs(current), settle_amount)
            new_net = money(current - step if current > 0 else current + step)
            outcome.update(current=current, change=new_net - current)
            return new_net, {}

        owner_net = await self.update_balance(owner_id, counterparty_id, reduce)
        # Counterparty moves by the mirrored change
        counterparty_net = await self.apply_delta(counterparty_id, owner_id, -outcome["change"])
        effective = abs(outcome["change"])

        transaction = None
        if self._record_settlements and effective > 0:
            transaction = Transaction(
                amount=effective,
                signed_amount=outcome["change"],
                description="Settlement",
                created_at=utc_now(),
                created_by=owner_id,
                kind=TransactionKind.SETTLEMENT,
            )
            await self.write_mirrored(owner_id, counterparty_id, transaction)

        logger.info(
            "debt_settled",
            owner_id=owner_id,
            counterparty_id=counterparty_id,
            effective=str(effective),
        )
        return SettlementResult(
            requested=settle_amount,
            effective=effective,
            owner_net_debt=owner_net,
            counterparty_net_debt=counterparty_net,
            transaction=transaction,
        )

    def history(self, owner_id: str, counterparty_id: str) -> TransactionHistory:
        return TransactionHistory(self._store, owner_id, counterparty_id)

    async def verify_pair(self, owner_id: str, counterparty_id: str) -> PairConsistencyReport:
        """Compare both sides' balances and histories."""
        owner_table = await self._store.get_relationships(owner_id)
        counterparty_table = await self._store.get_relationships(counterparty_id)
        owner_entry = owner_table.confirmed.get(counterparty_id) if owner_table else None
        counterparty_entry = (
            counterparty_table.confirmed.get(owner_id) if counterparty_table else None
        )

        mine = {t.id: t for t in await self.history(owner_id, counterparty_id).to_list()}
        theirs = {t.id: t for t in await self.history(counterparty_id, owner_id).to_list()}

        unmirrored = sorted(
            tid
            for tid in mine.keys() | theirs.keys()
            if tid not in mine
            or tid not in theirs
            or mine[tid].signed_or_amount + theirs[tid].signed_or_amount != 0
        )

        return PairConsistencyReport(
            owner_id=owner_id,
            counterparty_id=counterparty_id,
            owner_net_debt=owner_entry.net_debt if owner_entry else None,
            counterparty_net_debt=counterparty_entry.net_debt if counterparty_entry else None,
            unmirrored_transaction_ids=unmirrored,
        )

    async def _require_confirmed(self, owner_id: str, counterparty_id: str) -> ConfirmedRelationship:
        table = await self._store.get_relationships(owner_id)
        entry = table.confirmed.get(counterparty_id) if table else None
        if entry is None:
            raise LedgerMissing(f"{owner_id} has no confirmed ledger with {counterparty_id}")
        return entry
