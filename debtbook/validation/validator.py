"""
Input Validation

DESIGN DECISION: Every value a user types is validated before any document
is read or written. Validation NEVER silently fixes an amount: a confirmed
debt with more than two decimals is rejected rather than rounded. Staged
debts and settle amounts only have to be positive numbers.

Normalization is limited to what the stored data requires:
- emails are trimmed and lower-cased (they are lookup keys)
- names and descriptions are trimmed
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from debtbook.config import LedgerSettings, get_settings
from debtbook.errors import InvalidAmount, InvalidInput


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

CENT = Decimal("0.01")


class LedgerValidator:
    """Validates amounts and free-text inputs against ledger settings."""

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def positive_amount(self, value: Any) -> Decimal:
        """
        Parse any positive number, with no cap and no decimal-place rule.

        Used where only the sign matters: staging and settling.

        Raises:
            InvalidAmount: non-numeric, not finite or <= 0
        """
        if isinstance(value, bool):
            raise InvalidAmount(f"Not an amount: {value!r}")
        try:
            parsed = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmount(f"Not an amount: {value!r}")

        if not parsed.is_finite():
            raise InvalidAmount(f"Not an amount: {value!r}")
        if parsed <= 0:
            raise InvalidAmount(f"Amount must be positive, got {parsed}")
        return parsed

    def amount(self, value: Any) -> Decimal:
        """
        Parse a positive money amount for a confirmed debt.

        Accepts Decimal, int or numeric strings. Floats are converted through
        their string form so that 10.1 stays 10.1.

        Raises:
            InvalidAmount: non-numeric, not finite, <= 0, more than two
                           decimals or above the configured maximum
        """
        parsed = self.positive_amount(value)
        if parsed != parsed.quantize(CENT):
            raise InvalidAmount(
                f"Amount has more than two decimals: {parsed}",
                user_message="Amounts can have at most two decimal places.",
            )
        if parsed > self._settings.max_transaction_amount:
            raise InvalidAmount(
                f"Amount {parsed} exceeds {self._settings.max_transaction_amount}",
                user_message="That amount is larger than allowed.",
            )
        return parsed.quantize(CENT)

    def email(self, value: Optional[str]) -> str:
        normalized = (value or "").strip().lower()
        if not normalized:
            raise InvalidInput("Email is empty", user_message="Please enter the contact's email.")
        if not EMAIL_PATTERN.match(normalized):
            raise InvalidInput(
                f"Malformed email: {normalized}",
                user_message="Please enter a valid email address.",
            )
        return normalized

    def display_name(self, value: Optional[str]) -> str:
        name = (value or "").strip()
        if not name:
            raise InvalidInput("Name is empty", user_message="Name is required.")
        if len(name) > 100:
            raise InvalidInput("Name too long", user_message="Name is too long.")
        return name

    def description(self, value: Optional[str]) -> Optional[str]:
        text = (value or "").strip()
        if not text:
            return None
        if len(text) > self._settings.max_description_length:
            raise InvalidInput(
                "Description too long",
                user_message=(
                    f"Descriptions are limited to "
                    f"{self._settings.max_description_length} characters."
                ),
            )
        return text
