"""
library_errors.py

Exception hierarchy for the lending engine.

Every error carries an `ErrorKind` tag so callers can branch on the kind
without matching class names, and a `recoverable` flag that separates
expected operational failures (not found, over limit, ...) from consistency
faults, which indicate a bug and must never be swallowed.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    INVALID_IDENTIFIER = "InvalidIdentifier"
    INVALID_YEAR = "InvalidYear"
    INVALID_EMAIL = "InvalidEmail"
    INVALID_COPIES = "InvalidCopies"
    ITEM_NOT_FOUND = "ItemNotFound"
    BORROWER_NOT_FOUND = "BorrowerNotFound"
    ITEM_UNAVAILABLE = "ItemUnavailable"
    BORROWER_OVER_LIMIT = "BorrowerOverLimit"
    LOAN_NOT_FOUND = "LoanNotFound"
    DUPLICATE_ITEM = "DuplicateItem"
    CONSISTENCY_FAULT = "ConsistencyFault"


class LibraryError(Exception):
    """Base class for every error raised by the lending engine."""

    kind: ErrorKind
    recoverable = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# ---------------- Validation (raised at construction) ----------------
class ValidationError(LibraryError):
    """Malformed input rejected before an entity enters shared state."""


class InvalidIdentifier(ValidationError):
    kind = ErrorKind.INVALID_IDENTIFIER

    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Item identifier must be exactly 13 digits: {item_id!r}")


class InvalidYear(ValidationError):
    kind = ErrorKind.INVALID_YEAR

    def __init__(self, year, max_year: int):
        self.year = year
        self.max_year = max_year
        super().__init__(f"Invalid publication year {year!r} (expected 1000..{max_year})")


class InvalidEmail(ValidationError):
    kind = ErrorKind.INVALID_EMAIL

    def __init__(self, email):
        self.email = email
        super().__init__(f"Invalid email: {email!r}")


class InvalidCopies(ValidationError):
    kind = ErrorKind.INVALID_COPIES

    def __init__(self, copies):
        self.copies = copies
        super().__init__(f"Total copies must be a positive integer: {copies!r}")


# ---------------- Operational (raised before any mutation) ----------------
class OperationalError(LibraryError):
    """Expected failure of a lending operation; state is left untouched."""


class ItemNotFound(OperationalError):
    kind = ErrorKind.ITEM_NOT_FOUND

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class BorrowerNotFound(OperationalError):
    kind = ErrorKind.BORROWER_NOT_FOUND

    def __init__(self, borrower_id: int):
        self.borrower_id = borrower_id
        super().__init__(f"Borrower not found: {borrower_id}")


class ItemUnavailable(OperationalError):
    kind = ErrorKind.ITEM_UNAVAILABLE

    def __init__(self, item_id: str, title: str):
        self.item_id = item_id
        self.title = title
        super().__init__(f"No copies available of '{title}' ({item_id})")


class BorrowerOverLimit(OperationalError):
    kind = ErrorKind.BORROWER_OVER_LIMIT

    def __init__(self, borrower_id: int, held: int, penalty_balance):
        self.borrower_id = borrower_id
        self.held = held
        self.penalty_balance = penalty_balance
        super().__init__(
            f"Borrower {borrower_id} cannot take another loan "
            f"(holding {held}, penalties {penalty_balance})"
        )


class LoanNotFound(OperationalError):
    kind = ErrorKind.LOAN_NOT_FOUND

    def __init__(self, item_id: str, borrower_id: int):
        self.item_id = item_id
        self.borrower_id = borrower_id
        super().__init__(f"No open loan of item {item_id} for borrower {borrower_id}")


class DuplicateItem(OperationalError):
    kind = ErrorKind.DUPLICATE_ITEM

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item already in catalog: {item_id}")


# ---------------- Faults ----------------
class ConsistencyFault(LibraryError):
    """An internal invariant was violated. This is a bug, not a user error."""

    kind = ErrorKind.CONSISTENCY_FAULT
    recoverable = False
