"""Input validation package."""

from debtbook.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
