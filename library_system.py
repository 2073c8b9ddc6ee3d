#!/usr/bin/env python3
"""
library_system.py

In-memory lending engine: catalog, borrower registry, loan ledger and the
LendingService that ties them together, plus the seed loaders and the
interactive CLI that drive it.
"""

from __future__ import annotations
import argparse
import copy
import datetime
import logging
import pathlib
import threading
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from library_errors import (
    BorrowerNotFound,
    BorrowerOverLimit,
    ConsistencyFault,
    DuplicateItem,
    ItemNotFound,
    ItemUnavailable,
    LibraryError,
    LoanNotFound,
    OperationalError,
)
from library_models import Borrower, Item, Loan, LoanStatus

# Configuration
LOAN_DAYS = 14
DAILY_FINE = Decimal("500")
MAX_HELD_ITEMS = 3
PENALTY_LIMIT = Decimal("5000")

# Logging
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger("LendingService")


# ---------------- Components ----------------
class Catalog:
    """
    Items keyed by identifier, kept in insertion order.

    Mutators are not thread-safe on their own; LendingService calls them
    under its lock.
    """

    def __init__(self):
        self._items: Dict[str, Item] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id) -> bool:
        return item_id in self._items

    def add_item(self, item: Item) -> None:
        if item.item_id in self._items:
            raise DuplicateItem(item.item_id)
        self._items[item.item_id] = item

    def find_by_identifier(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def find_by_title(self, fragment: str) -> List[Item]:
        needle = (fragment or "").lower()
        return [item for item in self._items.values() if needle in item.title.lower()]

    def checkout_unit(self, item: Item) -> None:
        if item.available_copies <= 0:
            raise ItemUnavailable(item.item_id, item.title)
        item.available_copies -= 1
        item.times_borrowed += 1

    def return_unit(self, item: Item) -> None:
        if item.available_copies >= item.total_copies:
            raise ConsistencyFault(
                f"Return of {item.item_id} would exceed its {item.total_copies} copies"
            )
        item.available_copies += 1

    def list_available(self) -> List[Item]:
        return [item for item in self._items.values() if item.is_available]

    def top_borrowed(self, n: int) -> List[Item]:
        """Most borrowed first; equal counts are ordered by identifier."""
        if n <= 0:
            return []
        ranked = sorted(self._items.values(), key=lambda i: (-i.times_borrowed, i.item_id))
        return ranked[:n]

    def all_items(self) -> List[Item]:
        return list(self._items.values())


class BorrowerRegistry:
    """Borrowers keyed by an id this registry hands out, starting at 1."""

    def __init__(self, max_held_items: int = MAX_HELD_ITEMS, penalty_limit: Decimal = PENALTY_LIMIT):
        self.max_held_items = int(max_held_items)
        self.penalty_limit = Decimal(penalty_limit)
        self._borrowers: Dict[int, Borrower] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._borrowers)

    def register(self, name: str, email: str) -> Borrower:
        # Borrower validates the email; the id is only consumed on success
        borrower = Borrower(self._next_id, name, email)
        self._borrowers[borrower.borrower_id] = borrower
        self._next_id += 1
        return borrower

    def find_by_identifier(self, borrower_id: int) -> Optional[Borrower]:
        return self._borrowers.get(borrower_id)

    def is_eligible(self, borrower: Borrower) -> bool:
        return borrower.held_count < self.max_held_items and borrower.penalty_balance < self.penalty_limit

    def record_loan(self, borrower: Borrower, item_id: str) -> None:
        if not self.is_eligible(borrower):
            raise BorrowerOverLimit(borrower.borrower_id, borrower.held_count, borrower.penalty_balance)
        borrower.held.append(item_id)

    def release_loan(self, borrower: Borrower, item_id: str) -> None:
        if item_id not in borrower.held:
            raise ConsistencyFault(f"Borrower {borrower.borrower_id} does not hold {item_id}")
        borrower.held.remove(item_id)

    def add_penalty(self, borrower: Borrower, amount: Decimal) -> None:
        amount = Decimal(amount)
        if amount < 0:
            raise ValueError(f"Penalty amount must be non-negative: {amount}")
        borrower.penalty_balance += amount

    def settle_penalties(self, borrower: Borrower) -> None:
        borrower.penalty_balance = Decimal("0")

    def with_outstanding_penalty(self) -> List[Borrower]:
        return [b for b in self._borrowers.values() if b.penalty_balance > 0]

    def all_borrowers(self) -> List[Borrower]:
        return list(self._borrowers.values())


class LoanLedger:
    """Append-only list of loans. Fine arithmetic lives on Loan."""

    def __init__(self, loan_days: int = LOAN_DAYS, daily_fine: Decimal = DAILY_FINE):
        self.loan_days = int(loan_days)
        self.daily_fine = Decimal(daily_fine)
        self._loans: List[Loan] = []

    def __len__(self) -> int:
        return len(self._loans)

    def open_loan(self, item_id: str, borrower_id: int, start_date: datetime.date) -> Loan:
        loan = Loan(
            item_id=item_id,
            borrower_id=borrower_id,
            start_date=start_date,
            due_date=start_date + datetime.timedelta(days=self.loan_days),
        )
        self._loans.append(loan)
        return loan

    def close_loan(self, loan: Loan, returned_on: datetime.date) -> None:
        if not loan.is_open:
            raise ConsistencyFault(f"Loan {loan.loan_id} was already returned")
        loan.returned_on = returned_on
        loan.status = LoanStatus.RETURNED
        loan.fine = loan.fine_for(returned_on, self.daily_fine)

    def mark_overdue_if_past_due(self, loan: Loan, today: datetime.date) -> bool:
        """Flip ACTIVE -> OVERDUE when today is past the due date. Returns True if flipped."""
        if loan.status is LoanStatus.ACTIVE and today > loan.due_date:
            loan.status = LoanStatus.OVERDUE
            return True
        return False

    def find_open_loan(self, item_id: str, borrower_id: int) -> Optional[Loan]:
        for loan in self._loans:
            if loan.is_open and loan.item_id == item_id and loan.borrower_id == borrower_id:
                return loan
        return None

    def loans_of(self, borrower_id: int) -> List[Loan]:
        return [loan for loan in self._loans if loan.borrower_id == borrower_id]

    def open_loans(self) -> List[Loan]:
        return [loan for loan in self._loans if loan.is_open]

    def all_loans(self) -> List[Loan]:
        return list(self._loans)


# ---------------- Orchestrator ----------------
class LendingService:
    """
    LendingService is the single entry point for changing lending state.

    It owns a Catalog, a BorrowerRegistry and a LoanLedger and keeps them
    consistent: every item a borrower holds has exactly one open loan, and
    every open loan is reflected in the item's availability and in the
    borrower's held list. All mutations and read snapshots go through one
    engine-wide lock, so checkout and return are atomic with respect to each
    other. Query results are deep copies; changing them never touches the
    engine.
    """

    def __init__(self,
                 loan_days: int = LOAN_DAYS,
                 daily_fine: Decimal = DAILY_FINE,
                 max_held_items: int = MAX_HELD_ITEMS,
                 penalty_limit: Decimal = PENALTY_LIMIT,
                 clock: Callable[[], datetime.date] = datetime.date.today):
        """
        Initialize an empty engine.

        Args:
            loan_days: days between checkout and due date.
            daily_fine: fine charged per whole day a loan is returned late.
            max_held_items: loans a borrower may hold at once.
            penalty_limit: balance at which a borrower stops being eligible.
            clock: callable returning today's date; used for checkout and return.
        """
        self._catalog = Catalog()
        self._registry = BorrowerRegistry(max_held_items, penalty_limit)
        self._ledger = LoanLedger(loan_days, daily_fine)
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def loan_days(self) -> int:
        return self._ledger.loan_days

    @property
    def daily_fine(self) -> Decimal:
        return self._ledger.daily_fine

    def today(self) -> datetime.date:
        return self._clock()

    # -------------- Internal helpers ----------------
    def _require_item(self, item_id: str) -> Item:
        item = self._catalog.find_by_identifier(item_id)
        if item is None:
            raise self._rejected(ItemNotFound(item_id))
        return item

    def _require_borrower(self, borrower_id: int) -> Borrower:
        borrower = self._registry.find_by_identifier(borrower_id)
        if borrower is None:
            raise self._rejected(BorrowerNotFound(borrower_id))
        return borrower

    @staticmethod
    def _rejected(error: OperationalError) -> OperationalError:
        logger.warning("%s: %s", error.kind.value, error.message)
        return error

    # ---------------- Catalog ----------------
    def add_item(self, item: Item) -> Item:
        """
        Add `item` to the catalog with every copy on the shelf and no loans yet.

        The stored entry is rebuilt from the constructor fields, so counters
        changed on `item` after construction never reach the catalog.
        Raises DuplicateItem if the id is taken.
        """
        stored = Item(item.item_id, item.title, item.author, item.year, item.total_copies)
        with self._lock:
            if stored.item_id in self._catalog:
                raise self._rejected(DuplicateItem(stored.item_id))
            self._catalog.add_item(stored)
        logger.info("Added item %s (%d copies)", stored.item_id, stored.total_copies)
        return copy.deepcopy(stored)

    def find_item_by_identifier(self, item_id: str) -> Optional[Item]:
        with self._lock:
            return copy.deepcopy(self._catalog.find_by_identifier(item_id))

    def find_items_by_title(self, fragment: str) -> List[Item]:
        with self._lock:
            return copy.deepcopy(self._catalog.find_by_title(fragment))

    def available_items(self) -> List[Item]:
        with self._lock:
            return copy.deepcopy(self._catalog.list_available())

    def top_borrowed_items(self, n: int = 5) -> List[Item]:
        with self._lock:
            return copy.deepcopy(self._catalog.top_borrowed(n))

    def all_items(self) -> List[Item]:
        with self._lock:
            return copy.deepcopy(self._catalog.all_items())

    # ---------------- Borrowers ----------------
    def register_borrower(self, name: str, email: str) -> Borrower:
        with self._lock:
            borrower = self._registry.register(name, email)
            snapshot = copy.deepcopy(borrower)
        logger.info("Registered borrower %d (%s)", snapshot.borrower_id, snapshot.email)
        return snapshot

    def find_borrower_by_identifier(self, borrower_id: int) -> Optional[Borrower]:
        with self._lock:
            return copy.deepcopy(self._registry.find_by_identifier(borrower_id))

    def borrowers_with_penalties(self) -> List[Borrower]:
        with self._lock:
            return copy.deepcopy(self._registry.with_outstanding_penalty())

    def all_borrowers(self) -> List[Borrower]:
        with self._lock:
            return copy.deepcopy(self._registry.all_borrowers())

    def settle_penalties(self, borrower_id: int) -> Decimal:
        """Reset a borrower's penalty balance to zero. Returns the amount cleared."""
        with self._lock:
            borrower = self._require_borrower(borrower_id)
            cleared = borrower.penalty_balance
            self._registry.settle_penalties(borrower)
        logger.info("Borrower %d settled penalties of %s", borrower_id, cleared)
        return cleared

    # ---------------- Loans ----------------
    def checkout(self, item_id: str, borrower_id: int) -> Loan:
        """
        Lend one copy of an item to a borrower.

        All checks run before any state changes, so a failure leaves the
        catalog, registry and ledger exactly as they were.

        Raises:
            ItemNotFound, BorrowerNotFound, ItemUnavailable, BorrowerOverLimit.
        """
        with self._lock:
            item = self._require_item(item_id)
            borrower = self._require_borrower(borrower_id)
            if not item.is_available:
                raise self._rejected(ItemUnavailable(item.item_id, item.title))
            if not self._registry.is_eligible(borrower):
                raise self._rejected(
                    BorrowerOverLimit(borrower.borrower_id, borrower.held_count, borrower.penalty_balance))

            self._catalog.checkout_unit(item)
            self._registry.record_loan(borrower, item.item_id)
            loan = self._ledger.open_loan(item.item_id, borrower.borrower_id, self._clock())
            snapshot = copy.deepcopy(loan)

        logger.info("Lent %s to borrower %d until %s", item_id, borrower_id, snapshot.due_date.isoformat())
        return snapshot

    def return_item(self, item_id: str, borrower_id: int) -> Loan:
        """
        Close the open loan of `item_id` held by `borrower_id`.

        The loan is closed with today's date; a late return adds the fine to
        the borrower's penalty balance. Loans already flagged OVERDUE are
        returned the same way.

        Raises:
            LoanNotFound if the borrower does not currently hold the item.
            ConsistencyFault if engine state contradicts the open loan.
        """
        with self._lock:
            loan = self._ledger.find_open_loan(item_id, borrower_id)
            if loan is None:
                raise self._rejected(LoanNotFound(item_id, borrower_id))
            try:
                item = self._catalog.find_by_identifier(item_id)
                borrower = self._registry.find_by_identifier(borrower_id)
                if item is None or borrower is None:
                    raise ConsistencyFault(f"Open loan {loan.loan_id} references unknown item or borrower")
                if item_id not in borrower.held:
                    raise ConsistencyFault(f"Open loan {loan.loan_id} is missing from borrower {borrower_id}")

                self._catalog.return_unit(item)
                self._registry.release_loan(borrower, item_id)
                self._ledger.close_loan(loan, self._clock())
                if loan.fine > 0:
                    self._registry.add_penalty(borrower, loan.fine)
            except ConsistencyFault:
                logger.error("Consistency fault returning %s for borrower %d", item_id, borrower_id)
                raise
            snapshot = copy.deepcopy(loan)

        if snapshot.fine > 0:
            logger.info("Item %s returned late by borrower %d, fine %s", item_id, borrower_id, snapshot.fine)
        else:
            logger.info("Item %s returned by borrower %d", item_id, borrower_id)
        return snapshot

    def sweep_overdue_loans(self, today: Optional[datetime.date] = None) -> int:
        """Flag every ACTIVE loan past its due date as OVERDUE. Returns how many were flagged."""
        with self._lock:
            today = today or self._clock()
            flagged = sum(1 for loan in self._ledger.open_loans()
                          if self._ledger.mark_overdue_if_past_due(loan, today))
        logger.info("Overdue sweep on %s flagged %d loan(s)", today.isoformat(), flagged)
        return flagged

    def loans_of_borrower(self, borrower_id: int) -> List[Loan]:
        with self._lock:
            return copy.deepcopy(self._ledger.loans_of(borrower_id))

    def all_loans(self) -> List[Loan]:
        with self._lock:
            return copy.deepcopy(self._ledger.all_loans())


# ---------------- Seeding ----------------
SAMPLE_ITEMS = [
    ("9788437604947", "Cien años de soledad", "Gabriel García Márquez", 1967, 5),
    ("9788408268521", "El Quijote", "Miguel de Cervantes", 1605, 3),
    ("9788497593798", "1984", "George Orwell", 1949, 4),
    ("9788466338141", "Harry Potter y la piedra filosofal", "J.K. Rowling", 1997, 6),
]

SAMPLE_BORROWERS = [
    ("Ana García", "ana@email.com"),
    ("Carlos López", "carlos@email.com"),
]


def seed_sample_data(service: LendingService) -> None:
    """Load the built-in sample catalog and borrowers into an empty service."""
    for item_id, title, author, year, copies in SAMPLE_ITEMS:
        service.add_item(Item(item_id, title, author, year, copies))
    for name, email in SAMPLE_BORROWERS:
        service.register_borrower(name, email)


def seed_from_csv(service: LendingService,
                  items_csv: Optional[str] = None,
                  borrowers_csv: Optional[str] = None) -> Dict[str, int]:
    """
    Load items and borrowers from CSV files into the service.

    Items CSV columns: Item ID, Title, Author, Year, Copies.
    Borrowers CSV columns: Name, Email.

    Rows that fail validation are logged and skipped. A missing file is
    logged and treated as empty.

    Returns:
        Counts of loaded rows: {"items": n, "borrowers": m}.
    """
    loaded = {"items": 0, "borrowers": 0}

    if items_csv is not None:
        path = pathlib.Path(items_csv)
        if not path.exists():
            logger.warning("Items CSV not found: %s (skipping)", path)
        else:
            # dtype=str keeps leading zeros in identifiers
            items_df = pd.read_csv(path, dtype=str).fillna("")
            for idx, row in items_df.iterrows():
                try:
                    item = Item(str(row["Item ID"]).strip(), row["Title"].strip(), row["Author"].strip(),
                                int(row["Year"]), int(row["Copies"]))
                    service.add_item(item)
                    loaded["items"] += 1
                except (LibraryError, KeyError, ValueError) as e:
                    logger.warning("Skipping item row %s: %s", idx, e)
            logger.info("Loaded %d of %d items from %s", loaded["items"], len(items_df), path)

    if borrowers_csv is not None:
        path = pathlib.Path(borrowers_csv)
        if not path.exists():
            logger.warning("Borrowers CSV not found: %s (skipping)", path)
        else:
            borrowers_df = pd.read_csv(path, dtype=str).fillna("")
            for idx, row in borrowers_df.iterrows():
                try:
                    service.register_borrower(row["Name"].strip(), row["Email"].strip())
                    loaded["borrowers"] += 1
                except (LibraryError, KeyError) as e:
                    logger.warning("Skipping borrower row %s: %s", idx, e)
            logger.info("Loaded %d of %d borrowers from %s", loaded["borrowers"], len(borrowers_df), path)

    return loaded


# ---------------- Formatting ----------------
def format_item(item: Item) -> str:
    return (f"{item.item_id}: {item.title} | {item.author} | {item.year} | "
            f"Available {item.available_copies}/{item.total_copies} | Loans {item.times_borrowed}")


def format_borrower(borrower: Borrower) -> str:
    return (f"{borrower.borrower_id}: {borrower.name} | {borrower.email} | "
            f"Held {borrower.held_count} | Penalties ${borrower.penalty_balance:.2f}")


def format_loan(loan: Loan) -> str:
    returned = loan.returned_on.isoformat() if loan.returned_on else "-"
    return (f"Loan {loan.loan_id[:8]} | Item {loan.item_id} | Borrower {loan.borrower_id} | "
            f"Due {loan.due_date.isoformat()} | Returned {returned} | {loan.status.value} | "
            f"Fine ${loan.fine:.2f}")


def run_action(action: Callable, *args) -> Tuple[bool, object]:
    """
    Call a service operation and fold recoverable failures into a message.

    Returns (True, result) on success or (False, "<Kind>: <message>") for
    validation and operational errors. Consistency faults propagate.
    """
    try:
        return True, action(*args)
    except LibraryError as e:
        if not e.recoverable:
            raise
        return False, f"{e.kind.value}: {e.message}"


# ---------------- CLI ----------------
def input_prompt(prompt: str) -> str:
    """
    Wrapper around built-in input() that returns a stripped string and handles interrupts.

    Returns an empty string on EOF/KeyboardInterrupt.
    """
    try:
        return input(prompt).strip()
    except (EOFError, KeyboardInterrupt):
        print()
        return ""


def _parse_int(raw: str) -> Optional[int]:
    """Return `raw` as an int, or None when it is not a whole number."""
    try:
        return int(raw)
    except ValueError:
        return None


def _prompt_borrower_id() -> Optional[int]:
    raw = input_prompt("Borrower ID: ")
    borrower_id = _parse_int(raw)
    if borrower_id is None:
        print(f"Invalid borrower ID: {raw!r}")
    return borrower_id


def print_menu():
    """Print the interactive CLI menu to stdout."""
    print("\n--- Library Lending (CLI) ---")
    print("1. Add item")
    print("2. Register borrower")
    print("3. Checkout item")
    print("4. Return item")
    print("5. Show available items")
    print("6. Show loans of a borrower")
    print("7. Show borrowers with penalties")
    print("8. Top 5 most borrowed items")
    print("9. Settle borrower penalties")
    print("10. Sweep overdue loans")
    print("11. Search items by title")
    print("12. Export reports")
    print("0. Exit")


def cli_loop(service: LendingService):
    """
    Interactive command-loop for the lending engine.

    Presents a text menu, accepts user input and invokes `LendingService`
    methods, printing either the result or the failure kind and message.
    """
    while True:
        print_menu()
        choice = input_prompt("Choose (0-12): ")
        if choice == "0" or choice == "":
            print("Exiting.")
            break
        elif choice == "1":
            item_id = input_prompt("Item ID (13 digits): ")
            title = input_prompt("Title: ")
            author = input_prompt("Author: ")
            year_raw = input_prompt("Year: ")
            copies_raw = input_prompt("Copies: ")
            year, copies = _parse_int(year_raw), _parse_int(copies_raw)
            if year is None or copies is None:
                print("Year and copies must be whole numbers.")
                continue
            ok, res = run_action(lambda: service.add_item(Item(item_id, title, author, year, copies)))
            print(f"Added: {format_item(res)}" if ok else res)
        elif choice == "2":
            name = input_prompt("Name: ")
            email = input_prompt("Email: ")
            ok, res = run_action(service.register_borrower, name, email)
            print(f"Registered with ID {res.borrower_id}." if ok else res)
        elif choice == "3":
            item_id = input_prompt("Item ID: ")
            borrower_id = _prompt_borrower_id()
            if borrower_id is None:
                continue
            ok, res = run_action(service.checkout, item_id, borrower_id)
            print(f"Checked out. Due on {res.due_date.isoformat()}." if ok else res)
        elif choice == "4":
            item_id = input_prompt("Item ID: ")
            borrower_id = _prompt_borrower_id()
            if borrower_id is None:
                continue
            ok, res = run_action(service.return_item, item_id, borrower_id)
            if not ok:
                print(res)
            elif res.fine > 0:
                print(f"Returned late. Fine: ${res.fine:.2f}")
            else:
                print("Returned.")
        elif choice == "5":
            items = service.available_items()
            print(f"Available items ({len(items)}):")
            for item in items:
                print(format_item(item))
        elif choice == "6":
            borrower_id = _prompt_borrower_id()
            if borrower_id is None:
                continue
            loans = service.loans_of_borrower(borrower_id)
            print(f"Loans of borrower {borrower_id} ({len(loans)}):")
            for loan in loans:
                print(format_loan(loan))
        elif choice == "7":
            borrowers = service.borrowers_with_penalties()
            print(f"Borrowers with penalties ({len(borrowers)}):")
            for borrower in borrowers:
                print(format_borrower(borrower))
        elif choice == "8":
            print("Top 5 most borrowed items:")
            for rank, item in enumerate(service.top_borrowed_items(5), start=1):
                print(f"{rank}. {format_item(item)}")
        elif choice == "9":
            borrower_id = _prompt_borrower_id()
            if borrower_id is None:
                continue
            ok, res = run_action(service.settle_penalties, borrower_id)
            print(f"Cleared ${res:.2f} in penalties." if ok else res)
        elif choice == "10":
            flagged = service.sweep_overdue_loans()
            print(f"Flagged {flagged} overdue loan(s).")
        elif choice == "11":
            fragment = input_prompt("Title contains: ")
            items = service.find_items_by_title(fragment)
            print(f"Found {len(items)} result(s):")
            for item in items:
                print(format_item(item))
        elif choice == "12":
            import library_reports
            out = input_prompt("Output folder (default library_reports): ") or "library_reports"
            written = library_reports.save_reports(service, out)
            print(f"Wrote {len(written)} report file(s) to {pathlib.Path(out).resolve()}")
        else:
            print("Unknown choice. Try again.")


def demo_run(items_csv: Optional[str] = None,
             borrowers_csv: Optional[str] = None,
             loan_days: int = LOAN_DAYS):
    """
    Start an interactive session.

    Seeds the engine from the given CSV files, or from the built-in sample
    data when none are given, then runs the CLI loop.
    """
    service = LendingService(loan_days=loan_days)
    if items_csv or borrowers_csv:
        seed_from_csv(service, items_csv, borrowers_csv)
    else:
        seed_sample_data(service)
    print("Welcome. Catalog and borrowers loaded.")
    cli_loop(service)
    print("Goodbye.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Library lending engine (interactive)")
    parser.add_argument("--items", default=None, help="CSV of items: Item ID, Title, Author, Year, Copies")
    parser.add_argument("--borrowers", default=None, help="CSV of borrowers: Name, Email")
    parser.add_argument("--loan-days", type=int, default=LOAN_DAYS, help="Days until a loan is due")
    args = parser.parse_args()

    demo_run(args.items, args.borrowers, args.loan_days)
