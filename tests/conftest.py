import itertools
from datetime import date, datetime
from decimal import Decimal

import pytest

from library_engine.engine import LibraryEngine
from library_engine.models.book import Author, Book, Publisher
from library_engine.models.book_copy import BookCopy
from library_engine.models.branch import Branch
from library_engine.models.database import close_db, get_db
from library_engine.models.member import Member
from library_engine.models.staff import Staff

NOW = datetime(2024, 3, 1, 10, 0, 0)


class Catalog:
    """Builds the reference rows the engine operates on."""

    def __init__(self):
        self._seq = itertools.count(1)
        self.branch = Branch.create('Central Library', 'Kenyatta Avenue, Nairobi',
                                    '0722345678', 'central@library.com',
                                    'Mon-Fri: 9AM-9PM')
        self.other_branch = Branch.create('North Branch', 'Magadi Road, Rongai',
                                          '0733678901', 'north@library.com',
                                          'Mon-Fri: 10AM-8PM')
        self.staff = Staff.create(self.branch.branch_id, 'Grace', 'Wanjiru',
                                  'grace@library.com', '0700000001', 'Librarian',
                                  52000.0, date(2020, 1, 6))
        self.publisher = Publisher.create('Penguin Random House', 'info@penguinrandomhouse.com')
        self.author = Author.create('Chinua', 'Achebe', birth_year=1930, death_year=2013)
        self.book = self.add_book('Things Fall Apart', price=Decimal('30.00'))

    def add_book(self, title, price=None, author_ids=None):
        n = next(self._seq)
        return Book.create(f'978000000{n:04d}', title, self.publisher.publisher_id, 1958,
                           'Fiction',
                           author_ids=[self.author.author_id] if author_ids is None else author_ids,
                           price=price)

    def add_copy(self, book=None, branch=None, shelf='A-1'):
        book = book or self.book
        branch = branch or self.branch
        return BookCopy.create(book.book_id, branch.branch_id, shelf, date(2023, 1, 1))

    def add_member(self, membership_type='Public', max_books_allowed=5,
                   start=date(2024, 1, 1), end=date(2025, 12, 31), first_name='Amina'):
        n = next(self._seq)
        return Member.create(first_name, f'Member{n}', f'member{n}@example.com',
                             '0711000000', 'Nairobi', date(1995, 5, 17), membership_type,
                             start, end, max_books_allowed=max_books_allowed)


@pytest.fixture
def events():
    """Notifications published by the engine, in order."""
    return []


@pytest.fixture
def engine(tmp_path, events):
    engine = LibraryEngine(str(tmp_path / 'library.db'),
                           notifier=lambda event, member_id, payload: events.append(
                               (event, member_id, payload)),
                           busy_timeout=10.0)
    engine.initialize()
    with engine.scope():
        yield engine
    close_db()


@pytest.fixture
def catalog(engine):
    return Catalog()


@pytest.fixture
def staff_id(catalog):
    return catalog.staff.staff_id


def copy_status(copy_id):
    return BookCopy.get_by_id(copy_id).copy_status


def assert_copy_loan_bijection():
    """Every copy is Checked Out iff exactly one open loan references it."""
    db = get_db()
    rows = db.execute('''
        SELECT bc.copy_id, bc.copy_status,
               (SELECT COUNT(*) FROM loan l
                WHERE l.copy_id = bc.copy_id
                  AND l.loan_status IN ('Active', 'Overdue')) AS open_loans
        FROM book_copy bc
    ''').fetchall()
    for row in rows:
        if row['copy_status'] == 'Checked Out':
            assert row['open_loans'] == 1, dict(row)
        else:
            assert row['open_loans'] == 0, dict(row)
