"""
Ledger error taxonomy.

Every error carries a `user_message` that can be shown as-is. Validation
errors are raised before any write happens; `StoreUnavailable` may be
raised part-way through an operation and is always safe to retry.
"""

from typing import Optional

from debtbook.models.ledger import DuplicateKind


class LedgerError(Exception):
    """Base class for all ledger errors."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class NotFound(LedgerError):
    """A referenced account or ledger document is absent."""

    user_message = "The requested record could not be found."


class RelationshipStateMissing(NotFound):
    """An account or relationship map is missing on one side of a pair."""

    user_message = "Your account information could not be retrieved."


class LedgerMissing(NotFound):
    """No confirmed ledger exists between the two accounts."""

    user_message = "You don't have a confirmed ledger with this contact."


DUPLICATE_MESSAGES = {
    DuplicateKind.SELF: "You can't add yourself as a contact.",
    DuplicateKind.CONFIRMED: "You already have this user added.",
    DuplicateKind.OUTGOING: "You already have a pending request to this user.",
    DuplicateKind.INCOMING: "This user already sent you a request. Check Incoming Requests.",
    DuplicateKind.GHOST: "You already have this contact added.",
}


class DuplicateRelationship(LedgerError):
    """A contact request conflicts with an existing relationship."""

    def __init__(self, kind: DuplicateKind, counterparty: str):
        self.kind = kind
        self.counterparty = counterparty
        super().__init__(
            f"Relationship with {counterparty} already exists ({kind.value})",
            user_message=DUPLICATE_MESSAGES[kind],
        )


class InvalidAmount(LedgerError):
    """Amount is not a positive number with at most two decimals."""

    user_message = "Please enter a valid amount."


class InvalidInput(LedgerError):
    """A non-monetary input (email, name, description) is invalid."""

    user_message = "Please check the details you entered."


class RequestStateInconsistent(LedgerError):
    """Accept/decline without matching pending entries on both sides."""

    user_message = "This request is no longer pending."


class StoreUnavailable(LedgerError):
    """The document store failed or timed out. Retrying is safe."""

    user_message = "The service is temporarily unavailable. Please try again."


class EmailAlreadyRegistered(LedgerError):
    user_message = "An account with this email already exists."


class AccountAlreadyOnboarded(LedgerError):
    user_message = "Your name has already been set."
