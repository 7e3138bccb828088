"""
Reconciliation Engine

Accepting a contact request is the only way a pair becomes confirmed, and
the only moment staged transactions turn into balance. The store offers
single-document atomicity only, so acceptance is an ordered saga of
idempotent steps instead of one commit:

1. Seed a confirmed entry (netDebt 0, settled) on each side if absent.
2. Remove the pending request entries from both sides.
3. Drain the requester's staged buffer, then the owner's. For each record:
   a. write both mirrored history records under the staged record's id
      (put-if-absent)
   b. journal the record's contribution on each side under
      pendingMigrations.<peer>.<staged id>
   c. delete the staged record
4. For each side, owner first, fold the journal into netDebt with one
   compare-and-set write that also clears the applied journal keys.
5. Mark the pairing record confirmed.

DESIGN DECISION: The journal makes step 4 safe to repeat. A crash before a
staged record is deleted re-writes the same history ids and the same
journal keys; a crash after deletion leaves the contribution in the
journal, where the next run still finds it. A contribution is therefore
applied exactly once however many times acceptance is re-run.

Acceptance of one pair is expected to run from a single caller at a time
(the accepting owner). Different pairs never coordinate.
"""

from decimal import Decimal
from typing import Optional

import structlog

from debtbook.errors import RelationshipStateMissing, RequestStateInconsistent
from debtbook.ledger.balances import BalanceLedger
from debtbook.ledger.staging import StagedTransactionBuffer
from debtbook.ledger.store import LedgerStore, field_path
from debtbook.models.ledger import (
    ZERO,
    ConfirmedRelationship,
    PairingRecord,
    PairingStatus,
    PendingRelationship,
    ReconciliationReport,
    RelationshipTable,
    StagedTransaction,
    Transaction,
    utc_now,
)
from debtbook.services.storage import DELETE, WriteConflictError


logger = structlog.get_logger(__name__)


class ReconciliationEngine:
    """Turns a pending request into a confirmed, balanced pair."""

    def __init__(
        self,
        store: LedgerStore,
        staging: StagedTransactionBuffer,
        balances: BalanceLedger,
    ):
        self._store = store
        self._staging = staging
        self._balances = balances

    async def accept_request(self, owner_id: str, requester_id: str) -> ReconciliationReport:
        """
        Accept the requester's pending request to the owner.

        Safe to call again after any partial failure: a side that already
        holds the confirmed entry satisfies the precondition in place of
        the pending one.

        Args:
            owner_id: Account accepting the request
            requester_id: Account that sent it

        Returns:
            ReconciliationReport with migrated records and resulting balances

        Raises:
            RelationshipStateMissing: either relationship map is absent
            RequestStateInconsistent: a side has neither the pending nor
                the confirmed entry
        """
        owner_table = await self._require_table(owner_id)
        requester_table = await self._require_table(requester_id)

        owner_ready = requester_id in owner_table.incoming or requester_id in owner_table.confirmed
        requester_ready = (
            owner_id in requester_table.outgoing or owner_id in requester_table.confirmed
        )
        if not (owner_ready and requester_ready):
            raise RequestStateInconsistent(
                f"No pending request from {requester_id} to {owner_id}"
            )

        resumed = requester_id in owner_table.confirmed or owner_id in requester_table.confirmed
        logger.info(
            "reconciliation_started",
            owner_id=owner_id,
            requester_id=requester_id,
            resumed=resumed,
        )

        # 1. Seed
        await self._seed_confirmed(
            owner_table, requester_id, owner_table.incoming.get(requester_id)
        )
        await self._seed_confirmed(
            requester_table, owner_id, requester_table.outgoing.get(owner_id)
        )

        # 2. Remove pending entries, including a crossed request the other way
        await self._store.update_relationships(
            owner_id,
            {
                field_path("incomingRequests", requester_id): DELETE,
                field_path("outgoingRequests", requester_id): DELETE,
            },
        )
        await self._store.update_relationships(
            requester_id,
            {
                field_path("outgoingRequests", owner_id): DELETE,
                field_path("incomingRequests", owner_id): DELETE,
            },
        )

        # 3. Drain both buffers into history and the journal
        migrated = []
        for stager_id, other_id in ((requester_id, owner_id), (owner_id, requester_id)):
            migrated.extend(await self._staging.drain(stager_id, other_id, self._migrate))

        # 4. Fold journals into balances
        owner_net, owner_delta = await self._apply_journal(owner_id, requester_id)
        requester_net, requester_delta = await self._apply_journal(requester_id, owner_id)

        # 5. Bookkeeping
        await self._store.save_pairing(
            PairingRecord(
                pairing_id=PairingRecord.pair_id(owner_id, requester_id),
                participants=[requester_id, owner_id],
                status=PairingStatus.CONFIRMED,
                created_by=requester_id,
            )
        )

        logger.info(
            "reconciliation_completed",
            owner_id=owner_id,
            requester_id=requester_id,
            migrated=len(migrated),
        )
        return ReconciliationReport(
            owner_id=owner_id,
            requester_id=requester_id,
            migrated_count=len(migrated),
            owner_delta=owner_delta,
            requester_delta=requester_delta,
            owner_net_debt=owner_net,
            requester_net_debt=requester_net,
            resumed=resumed,
        )

    async def _seed_confirmed(
        self,
        table: RelationshipTable,
        counterparty_id: str,
        pending: Optional[PendingRelationship],
    ) -> None:
        if counterparty_id in table.confirmed:
            return

        entry = ConfirmedRelationship(counterparty_id=counterparty_id)
        if pending is not None:
            entry.name = pending.name or None
            entry.email = pending.email or None
        path = field_path("contacts", counterparty_id)
        try:
            await self._store.update_relationships(
                table.owner_id,
                {path: entry.to_document()},
                preconditions={path: None},
            )
        except WriteConflictError:
            # Seeded by an earlier or concurrent run
            logger.debug(
                "confirmed_entry_exists",
                owner_id=table.owner_id,
                counterparty_id=counterparty_id,
            )

    async def _migrate(self, staged: StagedTransaction) -> None:
        """Move one staged record into both histories and both journals."""
        transaction = Transaction(
            id=staged.id,
            amount=staged.amount,
            signed_amount=staged.signed_or_amount,
            description=staged.description,
            created_at=staged.created_at,
            created_by=staged.created_by,
            kind=staged.kind,
            migrated_at=utc_now(),
        )
        await self._balances.write_mirrored(staged.owner_id, staged.counterparty_id, transaction)

        signed = transaction.signed_or_amount
        await self._store.update_relationships(
            staged.owner_id,
            {field_path("pendingMigrations", staged.counterparty_id, staged.id): str(signed)},
        )
        await self._store.update_relationships(
            staged.counterparty_id,
            {field_path("pendingMigrations", staged.owner_id, staged.id): str(-signed)},
        )

    async def _apply_journal(self, owner_id: str, counterparty_id: str) -> tuple[Decimal, Decimal]:
        """
        Fold one side's journal for the peer into its netDebt.

        Returns:
            The new netDebt and the journal total that was folded in
        """
        table = await self._require_table(owner_id)
        if not table.journal_for(counterparty_id):
            return table.confirmed[counterparty_id].net_debt, ZERO

        folded = {}

        def fold(table: RelationshipTable, entry: ConfirmedRelationship) -> tuple[Decimal, dict]:
            journal = table.journal_for(counterparty_id)
            cleared = {
                field_path("pendingMigrations", counterparty_id, staged_id): DELETE
                for staged_id in journal
            }
            # Recomputed on every attempt; the last one is the write that landed
            folded["total"] = sum(journal.values(), ZERO)
            return entry.net_debt + folded["total"], cleared

        net = await self._balances.update_balance(owner_id, counterparty_id, fold)
        return net, folded["total"]

    async def _require_table(self, uid: str) -> RelationshipTable:
        table = await self._store.get_relationships(uid)
        if table is None:
            raise RelationshipStateMissing(f"Relationship map for {uid} does not exist")
        return table
