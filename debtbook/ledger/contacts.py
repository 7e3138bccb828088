"""
Contact Relationship Manager

Owns the lifecycle of a relationship between two people:

    none -> outgoing/incoming request -> confirmed
    none -> ghost (email without an account)

Acceptance is the only path to confirmed and lives in the reconciliation
engine, because it moves money as well as relationship state.

DESIGN DECISION: Each side's relationship map is written only by the
operation acting for that pair, owner's side first. A crash between the
two writes leaves a one-sided pending entry, which decline and accept both
tolerate on retry.
"""

from typing import Optional

import structlog

from debtbook.errors import (
    AccountAlreadyOnboarded,
    DuplicateRelationship,
    EmailAlreadyRegistered,
    RelationshipStateMissing,
    RequestStateInconsistent,
)
from debtbook.ledger.staging import StagedTransactionBuffer
from debtbook.ledger.store import LedgerStore, field_path
from debtbook.models.ledger import (
    Account,
    BalanceStatus,
    ContactsOverview,
    ContactSummary,
    DeclineResult,
    DuplicateKind,
    GhostRelationship,
    PairingRecord,
    PairingStatus,
    RelationshipKind,
    RelationshipTable,
    SendRequestResult,
)
from debtbook.services.storage import DELETE, WriteConflictError
from debtbook.validation import LedgerValidator


logger = structlog.get_logger(__name__)


class ContactRelationshipManager:
    """Creates, reads and declines relationships between accounts."""

    def __init__(
        self,
        store: LedgerStore,
        staging: StagedTransactionBuffer,
        validator: Optional[LedgerValidator] = None,
        purge_staged_on_decline: bool = False,
    ):
        self._store = store
        self._staging = staging
        self._validator = validator or LedgerValidator()
        self._purge_staged_on_decline = purge_staged_on_decline

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def register_account(self, uid: str, email: str) -> Account:
        """
        Create the account and its empty relationship map.

        Safe to repeat for the same uid and email.

        Raises:
            EmailAlreadyRegistered: the email belongs to another account
            InvalidInput: malformed email
        """
        email = self._validator.email(email)

        existing = await self._store.find_account_by_email(email)
        if existing is not None and existing.uid != uid:
            raise EmailAlreadyRegistered(f"{email} is registered to {existing.uid}")

        account = await self._store.get_account(uid)
        if account is None:
            account = Account(uid=uid, email=email)
            await self._store.create_account(account)
        await self._store.ensure_relationship_doc(uid)

        logger.info("account_registered", uid=uid)
        return account

    async def complete_onboarding(self, uid: str, name: str) -> Account:
        """Set the display name. Only allowed once."""
        name = self._validator.display_name(name)

        account = await self._store.get_account(uid)
        if account is None:
            raise RelationshipStateMissing(f"Account {uid} does not exist")
        if not account.needs_onboarding:
            raise AccountAlreadyOnboarded(f"Account {uid} already has a name")

        try:
            await self._store.set_account_name(uid, name)
        except WriteConflictError as e:
            raise AccountAlreadyOnboarded(f"Account {uid} already has a name") from e

        return account.model_copy(update={"name": name})

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def send_request(self, owner_id: str, counterparty_email: str) -> SendRequestResult:
        """
        Add a contact by email.

        Without a matching account a ghost contact is created for the owner
        only. Otherwise a pending request is written to both sides.

        Raises:
            RelationshipStateMissing: the owner has no account
            DuplicateRelationship: self, confirmed, outgoing, incoming or ghost
            InvalidInput: malformed email
        """
        email = self._validator.email(counterparty_email)

        owner = await self._store.get_account(owner_id)
        if owner is None:
            raise RelationshipStateMissing(f"Account {owner_id} does not exist")

        await self._store.ensure_relationship_doc(owner_id)
        table = await self._require_table(owner_id)

        counterparty = await self._store.find_account_by_email(email)
        if counterparty is None:
            return await self._add_ghost(owner_id, email, table)

        if email == owner.email.lower() or counterparty.uid == owner_id:
            raise DuplicateRelationship(DuplicateKind.SELF, email)

        kind = table.kind_of(counterparty.uid)
        duplicate = {
            RelationshipKind.CONFIRMED: DuplicateKind.CONFIRMED,
            RelationshipKind.OUTGOING_PENDING: DuplicateKind.OUTGOING,
            RelationshipKind.INCOMING_PENDING: DuplicateKind.INCOMING,
        }.get(kind)
        if duplicate is not None:
            raise DuplicateRelationship(duplicate, email)

        await self._store.update_relationships(
            owner_id,
            {
                field_path("outgoingRequests", counterparty.uid): {
                    "name": counterparty.display_name,
                    "email": counterparty.email,
                },
            },
        )

        await self._store.ensure_relationship_doc(counterparty.uid)
        await self._store.update_relationships(
            counterparty.uid,
            {
                field_path("incomingRequests", owner_id): {
                    "name": owner.display_name,
                    "email": owner.email,
                },
            },
        )

        pairing_id = PairingRecord.pair_id(owner_id, counterparty.uid)
        await self._store.save_pairing(
            PairingRecord(
                pairing_id=pairing_id,
                participants=[owner_id, counterparty.uid],
                status=PairingStatus.PENDING,
                created_by=owner_id,
            )
        )

        logger.info("request_sent", owner_id=owner_id, counterparty_id=counterparty.uid)
        return SendRequestResult(
            counterparty_id=counterparty.uid,
            kind=RelationshipKind.OUTGOING_PENDING,
            pairing_id=pairing_id,
            email=email,
        )

    async def _add_ghost(
        self,
        owner_id: str,
        email: str,
        table: RelationshipTable,
    ) -> SendRequestResult:
        ghost_id = GhostRelationship.id_for_email(email)
        if ghost_id in table.ghosts:
            raise DuplicateRelationship(DuplicateKind.GHOST, email)

        ghost = GhostRelationship(counterparty_id=ghost_id, email=email, name=email)
        await self._store.update_relationships(
            owner_id, {field_path("contacts", ghost_id): ghost.to_document()}
        )

        pairing_id = PairingRecord.ghost_id(owner_id, email)
        await self._store.save_pairing(
            PairingRecord(
                pairing_id=pairing_id,
                participants=[owner_id],
                status=PairingStatus.GHOST,
                created_by=owner_id,
                invite_email=email,
            )
        )

        logger.info("ghost_added", owner_id=owner_id, ghost_id=ghost_id)
        return SendRequestResult(
            counterparty_id=ghost_id,
            kind=RelationshipKind.GHOST,
            pairing_id=pairing_id,
            email=email,
        )

    async def decline_request(self, owner_id: str, requester_id: str) -> DeclineResult:
        """
        Decline an incoming request.

        Removes the owner's incoming entry and the requester's outgoing entry.
        Staged transactions for the pair are kept (a later request and
        acceptance migrates them) unless purging on decline is configured.

        Raises:
            RelationshipStateMissing: either relationship map is absent
            RequestStateInconsistent: neither side has the pending entry
        """
        owner_table = await self._require_table(owner_id)
        requester_table = await self._require_table(requester_id)

        has_incoming = requester_id in owner_table.incoming
        has_outgoing = owner_id in requester_table.outgoing
        if not has_incoming and not has_outgoing:
            raise RequestStateInconsistent(
                f"No pending request from {requester_id} to {owner_id}"
            )

        if has_incoming:
            await self._store.update_relationships(
                owner_id, {field_path("incomingRequests", requester_id): DELETE}
            )
        if has_outgoing:
            await self._store.update_relationships(
                requester_id, {field_path("outgoingRequests", owner_id): DELETE}
            )

        await self._store.save_pairing(
            PairingRecord(
                pairing_id=PairingRecord.pair_id(owner_id, requester_id),
                participants=[requester_id, owner_id],
                status=PairingStatus.DECLINED,
                created_by=requester_id,
            )
        )

        orphaned = (
            await self._staging.count(owner_id, requester_id)
            + await self._staging.count(requester_id, owner_id)
        )
        purged = False
        if orphaned and self._purge_staged_on_decline:
            await self._staging.purge(owner_id, requester_id)
            await self._staging.purge(requester_id, owner_id)
            purged = True
        elif orphaned:
            logger.warning(
                "staged_transactions_orphaned",
                owner_id=owner_id,
                requester_id=requester_id,
                count=orphaned,
            )

        return DeclineResult(counterparty_id=requester_id, orphaned_staged=orphaned, purged=purged)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def relationship_kind(
        self,
        owner_id: str,
        counterparty_id: str,
    ) -> Optional[RelationshipKind]:
        table = await self._require_table(owner_id)
        return table.kind_of(counterparty_id)

    async def get_overview(self, owner_id: str) -> ContactsOverview:
        """Contacts, ghosts and requests for one account, with display labels."""
        account = await self._store.get_account(owner_id)
        if account is None:
            raise RelationshipStateMissing(f"Account {owner_id} does not exist")
        table = await self._store.get_relationships(owner_id)
        if table is None:
            return ContactsOverview(owner_id=owner_id, needs_onboarding=account.needs_onboarding)

        contacts = []
        for cid, entry in table.confirmed.items():
            label = entry.name or ""
            email = entry.email
            if not label or not email:
                other = await self._store.get_account(cid)
                if other is not None:
                    label = label or other.name
                    email = email or other.email
            contacts.append(
                ContactSummary(
                    counterparty_id=cid,
                    kind=RelationshipKind.CONFIRMED,
                    label=label or email or "Unknown",
                    email=email,
                    net_debt=entry.net_debt,
                    status=BalanceStatus.for_balance(entry.net_debt),
                )
            )
        for gid, ghost in table.ghosts.items():
            contacts.append(
                ContactSummary(
                    counterparty_id=gid,
                    kind=RelationshipKind.GHOST,
                    label=ghost.name or ghost.email or "Ghost contact",
                    email=ghost.email,
                    net_debt=ghost.net_debt,
                    status=BalanceStatus.for_balance(ghost.net_debt),
                )
            )

        def requests(entries) -> list[ContactSummary]:
            return [
                ContactSummary(
                    counterparty_id=cid,
                    kind=entry.kind,
                    label=entry.name or entry.email or "Unknown",
                    email=entry.email or None,
                )
                for cid, entry in entries.items()
            ]

        return ContactsOverview(
            owner_id=owner_id,
            needs_onboarding=account.needs_onboarding,
            contacts=contacts,
            incoming_requests=requests(table.incoming),
            outgoing_requests=requests(table.outgoing),
        )

    async def _require_table(self, uid: str) -> RelationshipTable:
        table = await self._store.get_relationships(uid)
        if table is None:
            raise RelationshipStateMissing(f"Relationship map for {uid} does not exist")
        return table
