"""
library_models.py

Data models for the lending engine: catalog items, borrowers and loans.

Items and borrowers validate their input at construction, so a malformed
identifier, year or email never produces a half-built object. Loans carry
their own fine arithmetic; the ledger decides when to apply it.
"""

from __future__ import annotations

import datetime
import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from library_errors import InvalidCopies, InvalidEmail, InvalidIdentifier, InvalidYear

ITEM_ID_PATTERN = re.compile(r"[0-9]{13}")
EMAIL_PATTERN = re.compile(r"[A-Za-z0-9+_.-]+@(.+)")
MIN_YEAR = 1000


class LoanStatus(Enum):
    """Loan lifecycle. Values are the labels shown to library staff."""
    ACTIVE = "ACTIVO"
    RETURNED = "DEVUELTO"
    OVERDUE = "VENCIDO"


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class Item:
    """
    A catalog entry: one title with a fixed number of physical copies.

    Attributes:
        item_id: 13-digit identifier (ISBN-13 style).
        title: item title.
        author: author name.
        year: publication year, 1000 up to the current year.
        total_copies: copies owned by the library.
        available_copies: copies on the shelf right now.
        times_borrowed: lifetime number of successful checkouts.
    """

    item_id: str
    title: str
    author: str
    year: int
    total_copies: int
    available_copies: int = field(init=False)
    times_borrowed: int = field(init=False, default=0)

    def __post_init__(self):
        if not isinstance(self.item_id, str) or not ITEM_ID_PATTERN.fullmatch(self.item_id):
            raise InvalidIdentifier(self.item_id)
        current_year = datetime.date.today().year
        if not _is_int(self.year) or not (MIN_YEAR <= self.year <= current_year):
            raise InvalidYear(self.year, current_year)
        if not _is_int(self.total_copies) or self.total_copies < 1:
            raise InvalidCopies(self.total_copies)
        self.available_copies = self.total_copies

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0


@dataclass
class Borrower:
    """
    A registered person who may hold loans.

    `held` lists the identifiers of the items currently on loan, in checkout
    order. The same item id may appear more than once when the borrower holds
    several copies of one title.
    """

    borrower_id: int
    name: str
    email: str
    held: List[str] = field(default_factory=list)
    penalty_balance: Decimal = Decimal("0")

    def __post_init__(self):
        if not isinstance(self.email, str) or not EMAIL_PATTERN.fullmatch(self.email):
            raise InvalidEmail(self.email)

    @property
    def held_items(self) -> Tuple[str, ...]:
        return tuple(self.held)

    @property
    def held_count(self) -> int:
        return len(self.held)


@dataclass
class Loan:
    """One borrower holding one copy of one item for a bounded period."""

    item_id: str
    borrower_id: int
    start_date: datetime.date
    due_date: datetime.date
    returned_on: Optional[datetime.date] = None
    status: LoanStatus = LoanStatus.ACTIVE
    fine: Decimal = Decimal("0")
    loan_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_open(self) -> bool:
        """True while the copy is still out (ACTIVE or flagged OVERDUE)."""
        return self.status is not LoanStatus.RETURNED

    def days_late(self, on: datetime.date) -> int:
        """Whole calendar days between the due date and `on`; 0 if not late."""
        return max((on - self.due_date).days, 0)

    def fine_for(self, on: datetime.date, daily_fine: Decimal) -> Decimal:
        return daily_fine * self.days_late(on)
