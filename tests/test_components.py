import datetime
from decimal import Decimal

import pytest

from library_errors import (
    BorrowerOverLimit,
    ConsistencyFault,
    DuplicateItem,
    InvalidEmail,
    ItemUnavailable,
)
from library_models import LoanStatus
from library_system import BorrowerRegistry, Catalog, LoanLedger

DAY0 = datetime.date(2024, 3, 1)


def days(n):
    return DAY0 + datetime.timedelta(days=n)


# ---------------- Catalog ----------------
def test_catalog_rejects_duplicate_identifier(make_item):
    catalog = Catalog()
    first = make_item(copies=2)
    catalog.add_item(first)
    with pytest.raises(DuplicateItem):
        catalog.add_item(make_item(copies=9))
    assert catalog.find_by_identifier("9788437604947") is first
    assert len(catalog) == 1
    assert "9788437604947" in catalog


def test_find_by_title_is_case_insensitive_and_ordered(make_item):
    catalog = Catalog()
    catalog.add_item(make_item("9788408268521", "El Quijote"))
    catalog.add_item(make_item("9788497593798", "1984"))
    catalog.add_item(make_item("9788437604947", "El QUIJOTE comentado"))
    found = catalog.find_by_title("quijote")
    assert [i.item_id for i in found] == ["9788408268521", "9788437604947"]
    assert catalog.find_by_title("zzz") == []
    assert catalog.find_by_identifier("0000000000000") is None


def test_checkout_unit_and_return_unit(make_item):
    catalog = Catalog()
    item = make_item(copies=1)
    catalog.add_item(item)
    catalog.checkout_unit(item)
    assert item.available_copies == 0
    assert item.times_borrowed == 1
    assert catalog.list_available() == []

    with pytest.raises(ItemUnavailable):
        catalog.checkout_unit(item)
    assert item.times_borrowed == 1

    catalog.return_unit(item)
    assert item.available_copies == 1
    with pytest.raises(ConsistencyFault):
        catalog.return_unit(item)
    assert item.available_copies == 1


def test_top_borrowed_breaks_ties_by_identifier(make_item):
    catalog = Catalog()
    b = make_item("9780000000002", "B", copies=5)
    a = make_item("9780000000001", "A", copies=5)
    c = make_item("9780000000003", "C", copies=5)
    for item in (b, a, c):
        catalog.add_item(item)
    for _ in range(2):
        catalog.checkout_unit(c)
    catalog.checkout_unit(a)
    catalog.checkout_unit(b)

    assert [i.title for i in catalog.top_borrowed(5)] == ["C", "A", "B"]
    assert [i.title for i in catalog.top_borrowed(2)] == ["C", "A"]
    assert catalog.top_borrowed(0) == []
    assert catalog.top_borrowed(-3) == []


# ---------------- Registry ----------------
def test_registry_assigns_increasing_ids_and_skips_nothing_on_bad_email():
    registry = BorrowerRegistry()
    ana = registry.register("Ana", "ana@email.com")
    with pytest.raises(InvalidEmail):
        registry.register("Bad", "ana@")
    carlos = registry.register("Carlos", "carlos@email.com")
    assert (ana.borrower_id, carlos.borrower_id) == (1, 2)
    assert len(registry) == 2
    assert registry.find_by_identifier(2) is carlos
    assert registry.find_by_identifier(3) is None


def test_separate_registries_have_separate_counters():
    assert BorrowerRegistry().register("A", "a@x.com").borrower_id == 1
    assert BorrowerRegistry().register("B", "b@x.com").borrower_id == 1


def test_eligibility_needs_both_limits():
    registry = BorrowerRegistry()
    ana = registry.register("Ana", "ana@email.com")
    assert registry.is_eligible(ana)

    registry.add_penalty(ana, Decimal("4999.99"))
    assert registry.is_eligible(ana)
    registry.add_penalty(ana, Decimal("0.01"))
    assert not registry.is_eligible(ana)

    registry.settle_penalties(ana)
    assert ana.penalty_balance == Decimal("0")
    for item_id in ["9780000000001", "9780000000002", "9780000000003"]:
        registry.record_loan(ana, item_id)
    assert not registry.is_eligible(ana)
    with pytest.raises(BorrowerOverLimit):
        registry.record_loan(ana, "9780000000004")
    assert ana.held_count == 3


def test_release_loan_removes_one_occurrence():
    registry = BorrowerRegistry()
    ana = registry.register("Ana", "ana@email.com")
    registry.record_loan(ana, "9780000000001")
    registry.record_loan(ana, "9780000000001")
    registry.release_loan(ana, "9780000000001")
    assert ana.held_items == ("9780000000001",)
    registry.release_loan(ana, "9780000000001")
    with pytest.raises(ConsistencyFault):
        registry.release_loan(ana, "9780000000001")


def test_penalties_are_non_negative():
    registry = BorrowerRegistry()
    ana = registry.register("Ana", "ana@email.com")
    carlos = registry.register("Carlos", "carlos@email.com")
    with pytest.raises(ValueError):
        registry.add_penalty(ana, Decimal("-1"))
    registry.add_penalty(carlos, Decimal("500"))
    assert registry.with_outstanding_penalty() == [carlos]


# ---------------- Ledger ----------------
def test_open_loan_is_due_in_fourteen_days():
    ledger = LoanLedger()
    loan = ledger.open_loan("9788437604947", 1, DAY0)
    assert loan.status is LoanStatus.ACTIVE
    assert loan.due_date == days(14)
    assert loan.returned_on is None
    assert len(ledger) == 1


@pytest.mark.parametrize("returned_after, fine", [(0, 0), (14, 0), (15, 500), (20, 3000)])
def test_close_loan_fine(returned_after, fine):
    ledger = LoanLedger()
    loan = ledger.open_loan("9788437604947", 1, DAY0)
    ledger.close_loan(loan, days(returned_after))
    assert loan.status is LoanStatus.RETURNED
    assert loan.returned_on == days(returned_after)
    assert loan.fine == Decimal(fine)


def test_close_loan_twice_is_a_fault():
    ledger = LoanLedger()
    loan = ledger.open_loan("9788437604947", 1, DAY0)
    ledger.close_loan(loan, days(1))
    with pytest.raises(ConsistencyFault):
        ledger.close_loan(loan, days(2))


def test_mark_overdue_only_after_due_date_and_idempotent():
    ledger = LoanLedger()
    loan = ledger.open_loan("9788437604947", 1, DAY0)
    assert not ledger.mark_overdue_if_past_due(loan, days(14))
    assert loan.status is LoanStatus.ACTIVE
    assert ledger.mark_overdue_if_past_due(loan, days(15))
    assert loan.status is LoanStatus.OVERDUE
    assert not ledger.mark_overdue_if_past_due(loan, days(16))
    assert loan.status is LoanStatus.OVERDUE


def test_mark_overdue_never_touches_returned_loans():
    ledger = LoanLedger()
    loan = ledger.open_loan("9788437604947", 1, DAY0)
    ledger.close_loan(loan, days(3))
    assert not ledger.mark_overdue_if_past_due(loan, days(30))
    assert loan.status is LoanStatus.RETURNED


def test_overdue_loan_closes_with_fine_from_dates():
    ledger = LoanLedger()
    loan = ledger.open_loan("9788437604947", 1, DAY0)
    ledger.mark_overdue_if_past_due(loan, days(16))
    ledger.close_loan(loan, days(17))
    assert loan.status is LoanStatus.RETURNED
    assert loan.fine == Decimal("1500")


def test_loans_of_keeps_ledger_order_across_statuses():
    ledger = LoanLedger()
    first = ledger.open_loan("9780000000001", 1, DAY0)
    ledger.open_loan("9780000000002", 2, DAY0)
    third = ledger.open_loan("9780000000003", 1, days(1))
    ledger.close_loan(first, days(2))
    assert [l.loan_id for l in ledger.loans_of(1)] == [first.loan_id, third.loan_id]
    assert ledger.loans_of(99) == []
    assert ledger.find_open_loan("9780000000001", 1) is None
    assert ledger.find_open_loan("9780000000003", 1) is third
    assert len(ledger.open_loans()) == 2


def test_custom_policy():
    ledger = LoanLedger(loan_days=7, daily_fine=Decimal("2.50"))
    loan = ledger.open_loan("9788437604947", 1, DAY0)
    assert loan.due_date == days(7)
    ledger.close_loan(loan, days(9))
    assert loan.fine == Decimal("5.00")
