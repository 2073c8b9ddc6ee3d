import datetime
import pathlib
import sys

import pytest

# Add project root to sys.path so imports from repo root work when running the tests
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from library_models import Item
from library_system import LendingService

START = datetime.date(2024, 3, 1)


class FakeClock:
    """Callable clock the tests can move forward by whole days."""

    def __init__(self, today):
        self.today = today

    def __call__(self):
        return self.today

    def advance(self, days):
        self.today += datetime.timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def service(clock):
    return LendingService(clock=clock)


@pytest.fixture
def make_item():
    def _make(item_id="9788437604947", title="Cien años de soledad", author="Gabriel García Márquez",
              year=1967, copies=1):
        return Item(item_id, title, author, year, copies)
    return _make


@pytest.fixture
def stocked(service, make_item):
    """Service with four single-copy items and two borrowers (ids 1 and 2)."""
    service.add_item(make_item("9788437604947", "Cien años de soledad"))
    service.add_item(make_item("9788408268521", "El Quijote", "Miguel de Cervantes", 1605))
    service.add_item(make_item("9788497593798", "1984", "George Orwell", 1949))
    service.add_item(make_item("9788466338141", "Harry Potter y la piedra filosofal", "J.K. Rowling", 1997))
    service.register_borrower("Ana García", "ana@email.com")
    service.register_borrower("Carlos López", "carlos@email.com")
    return service
