"""sqlite storage for the lending engine.

Each thread keeps one connection per database file. The current file is
whichever ``use_database`` scope is innermost on the calling thread
(``LibraryEngine`` enters its own), falling back to Config.DATABASE_PATH.
Mutations run inside ``transaction()``, which takes the database write lock
up front (``BEGIN IMMEDIATE``) so that concurrent units are serialized and
every read inside a unit sees the state it will commit against.
"""
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from library_engine.config.config import Config
from library_engine.errors import ConcurrencyConflict, DuplicateRecord, ValidationError

logger = logging.getLogger(__name__)

# Money is stored as TEXT so cents survive the round trip
sqlite3.register_adapter(Decimal, str)

_local = threading.local()

SCHEMA = '''
CREATE TABLE IF NOT EXISTS library_branch (
    branch_id INTEGER PRIMARY KEY AUTOINCREMENT,
    branch_name TEXT NOT NULL,
    address TEXT NOT NULL,
    phone TEXT NOT NULL,
    email TEXT UNIQUE NOT NULL,
    opening_hours TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS staff (
    staff_id INTEGER PRIMARY KEY AUTOINCREMENT,
    branch_id INTEGER NOT NULL,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT UNIQUE NOT NULL,
    phone TEXT NOT NULL,
    position TEXT NOT NULL,
    salary REAL NOT NULL CHECK (salary > 0),
    hire_date TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY (branch_id) REFERENCES library_branch(branch_id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS member (
    member_id INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT UNIQUE NOT NULL,
    phone TEXT NOT NULL,
    address TEXT NOT NULL,
    date_of_birth TEXT NOT NULL,
    membership_type TEXT NOT NULL CHECK (membership_type IN ('Student', 'Faculty', 'Public')),
    membership_start_date TEXT NOT NULL,
    membership_end_date TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    max_books_allowed INTEGER NOT NULL DEFAULT 5 CHECK (max_books_allowed BETWEEN 1 AND 10),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    CHECK (membership_end_date >= membership_start_date)
);

CREATE TABLE IF NOT EXISTS author (
    author_id INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    birth_year INTEGER,
    death_year INTEGER,
    nationality TEXT,
    biography TEXT,
    CHECK (death_year IS NULL OR birth_year <= death_year)
);

CREATE TABLE IF NOT EXISTS publisher (
    publisher_id INTEGER PRIMARY KEY AUTOINCREMENT,
    publisher_name TEXT UNIQUE NOT NULL,
    address TEXT,
    phone TEXT,
    email TEXT UNIQUE NOT NULL,
    website TEXT
);

CREATE TABLE IF NOT EXISTS book (
    book_id INTEGER PRIMARY KEY AUTOINCREMENT,
    isbn TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    publisher_id INTEGER NOT NULL,
    publication_year INTEGER NOT NULL,
    edition INTEGER NOT NULL DEFAULT 1 CHECK (edition >= 1),
    category TEXT NOT NULL,
    language TEXT NOT NULL DEFAULT 'English',
    page_count INTEGER CHECK (page_count > 0),
    description TEXT,
    price TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (publisher_id) REFERENCES publisher(publisher_id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS book_author (
    book_id INTEGER NOT NULL,
    author_id INTEGER NOT NULL,
    PRIMARY KEY (book_id, author_id),
    FOREIGN KEY (book_id) REFERENCES book(book_id) ON DELETE CASCADE,
    FOREIGN KEY (author_id) REFERENCES author(author_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS book_copy (
    copy_id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id INTEGER NOT NULL,
    branch_id INTEGER NOT NULL,
    acquisition_date TEXT NOT NULL,
    copy_status TEXT NOT NULL DEFAULT 'Available'
        CHECK (copy_status IN ('Available', 'Checked Out', 'Under Maintenance', 'Lost')),
    shelf_location TEXT NOT NULL,
    book_condition TEXT NOT NULL DEFAULT 'Good'
        CHECK (book_condition IN ('New', 'Good', 'Fair', 'Poor')),
    last_maintenance_date TEXT,
    FOREIGN KEY (book_id) REFERENCES book(book_id) ON DELETE CASCADE,
    FOREIGN KEY (branch_id) REFERENCES library_branch(branch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS loan (
    loan_id INTEGER PRIMARY KEY AUTOINCREMENT,
    copy_id INTEGER NOT NULL,
    member_id INTEGER NOT NULL,
    staff_id INTEGER NOT NULL,
    loan_date TEXT NOT NULL,
    due_date TEXT NOT NULL,
    return_date TEXT,
    late_fee TEXT NOT NULL DEFAULT '0.00',
    loan_status TEXT NOT NULL DEFAULT 'Active'
        CHECK (loan_status IN ('Active', 'Returned', 'Overdue')),
    CHECK (due_date > loan_date),
    CHECK (return_date IS NULL OR return_date >= loan_date),
    FOREIGN KEY (copy_id) REFERENCES book_copy(copy_id) ON DELETE RESTRICT,
    FOREIGN KEY (member_id) REFERENCES member(member_id) ON DELETE RESTRICT,
    FOREIGN KEY (staff_id) REFERENCES staff(staff_id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS reservation (
    reservation_id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id INTEGER NOT NULL,
    member_id INTEGER NOT NULL,
    reservation_date TEXT NOT NULL,
    reservation_status TEXT NOT NULL DEFAULT 'Pending'
        CHECK (reservation_status IN ('Pending', 'Fulfilled', 'Cancelled')),
    priority INTEGER NOT NULL DEFAULT 1 CHECK (priority >= 1),
    notes TEXT,
    FOREIGN KEY (book_id) REFERENCES book(book_id) ON DELETE CASCADE,
    FOREIGN KEY (member_id) REFERENCES member(member_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS fine (
    fine_id INTEGER PRIMARY KEY AUTOINCREMENT,
    member_id INTEGER NOT NULL,
    loan_id INTEGER,
    fine_amount TEXT NOT NULL,
    fine_date TEXT NOT NULL,
    reason TEXT NOT NULL,
    paid_amount TEXT NOT NULL DEFAULT '0.00',
    payment_date TEXT,
    fine_status TEXT NOT NULL DEFAULT 'Pending'
        CHECK (fine_status IN ('Pending', 'Partially Paid', 'Paid')),
    FOREIGN KEY (member_id) REFERENCES member(member_id) ON DELETE CASCADE,
    FOREIGN KEY (loan_id) REFERENCES loan(loan_id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL
        CHECK (table_name IN ('book_copy', 'loan', 'reservation', 'fine', 'member')),
    record_id INTEGER NOT NULL,
    action_type TEXT NOT NULL CHECK (action_type IN ('INSERT', 'UPDATE', 'DELETE')),
    old_values TEXT,
    new_values TEXT,
    changed_by INTEGER,
    changed_at TEXT NOT NULL,
    FOREIGN KEY (changed_by) REFERENCES staff(staff_id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS system_config (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    config_data TEXT NOT NULL
);

-- One open loan per copy, one pending reservation per (book, member)
CREATE UNIQUE INDEX IF NOT EXISTS unique_open_loan
    ON loan(copy_id) WHERE loan_status IN ('Active', 'Overdue');
CREATE UNIQUE INDEX IF NOT EXISTS unique_active_reservation
    ON reservation(book_id, member_id) WHERE reservation_status = 'Pending';

CREATE INDEX IF NOT EXISTS idx_book_title ON book(title);
CREATE INDEX IF NOT EXISTS idx_book_category ON book(category);
CREATE INDEX IF NOT EXISTS idx_member_email ON member(email);
CREATE INDEX IF NOT EXISTS idx_loan_due_date ON loan(due_date);
CREATE INDEX IF NOT EXISTS idx_loan_status ON loan(loan_status);
CREATE INDEX IF NOT EXISTS idx_loan_member ON loan(member_id, loan_status);
CREATE INDEX IF NOT EXISTS idx_copy_status ON book_copy(copy_status);
CREATE INDEX IF NOT EXISTS idx_fine_status ON fine(fine_status);
CREATE INDEX IF NOT EXISTS idx_fine_member ON fine(member_id);
CREATE INDEX IF NOT EXISTS idx_reservation_status ON reservation(reservation_status);
CREATE INDEX IF NOT EXISTS idx_reservation_queue
    ON reservation(book_id, reservation_status, priority, reservation_date);
CREATE INDEX IF NOT EXISTS idx_audit_record ON audit_log(table_name, record_id);
'''

REFERENCE_BRANCHES = [
    ('Central Library', 'Kenyatta Avenue, Nairobi', '0722345678', 'central@library.com',
     'Mon-Fri: 9AM-9PM, Sat-Sun: 10AM-6PM'),
    ('North Branch', 'Magadi Road, Rongai', '0733678901', 'north@library.com',
     'Mon-Fri: 10AM-8PM, Sat: 10AM-5PM'),
    ('South Branch', 'Thika Road, Thika', '0743234567', 'south@library.com',
     'Mon-Fri: 9AM-7PM, Sat-Sun: 12PM-5PM'),
]

REFERENCE_PUBLISHERS = [
    ('Penguin Random House', 'Moi Avenue, Nairobi', '0721765432',
     'info@penguinrandomhouse.com', 'https://www.penguinrandomhouse.com'),
    ('HarperCollins', 'Tom Mboya, Nairobi', '0734098765',
     'contact@harpercollins.com', 'https://www.harpercollins.com'),
    ('Simon & Schuster', 'University Way, Nairobi', '0728378654',
     'info@simonandschuster.com', 'https://www.simonandschuster.com'),
]


def _scopes() -> List[Tuple[str, Optional[float]]]:
    scopes = getattr(_local, 'scopes', None)
    if scopes is None:
        scopes = _local.scopes = []
    return scopes


def _connections() -> Dict[str, sqlite3.Connection]:
    conns = getattr(_local, 'conns', None)
    if conns is None:
        conns = _local.conns = {}
    return conns


def push_database(database_path: str, busy_timeout: Optional[float] = None) -> None:
    """Make ``database_path`` the current database for this thread."""
    _scopes().append((database_path, busy_timeout))


def pop_database() -> None:
    scopes = _scopes()
    if scopes:
        scopes.pop()


@contextmanager
def use_database(database_path: str,
                 busy_timeout: Optional[float] = None) -> Iterator[None]:
    """Resolve get_db() and transaction() against ``database_path`` in the block.

    Scopes nest; outside any scope the default Config.DATABASE_PATH is used.
    """
    push_database(database_path, busy_timeout)
    try:
        yield
    finally:
        pop_database()


def get_database_path() -> str:
    scopes = getattr(_local, 'scopes', None)
    if scopes:
        return scopes[-1][0]
    return Config.DATABASE_PATH


def _current_busy_timeout() -> float:
    scopes = getattr(_local, 'scopes', None)
    if scopes and scopes[-1][1] is not None:
        return scopes[-1][1]
    return Config.DATABASE_BUSY_TIMEOUT


def _connect(path: str, busy_timeout: float) -> sqlite3.Connection:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    # isolation_level=None: transactions are opened explicitly by transaction()
    conn = sqlite3.connect(path, timeout=busy_timeout, isolation_level=None,
                           check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA journal_mode=WAL;')
    conn.execute('PRAGMA foreign_keys=ON;')
    conn.execute('PRAGMA synchronous=NORMAL;')
    return conn


def get_db() -> sqlite3.Connection:
    """Return this thread's connection to the current database, opening it on first use."""
    path = get_database_path()
    conns = _connections()
    conn = conns.get(path)
    if conn is None:
        conn = conns[path] = _connect(path, _current_busy_timeout())
    return conn


def _close(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.rollback()
    conn.close()


def close_db(exception: Optional[BaseException] = None) -> None:
    """Close every connection this thread holds."""
    conns = _connections()
    while conns:
        _, conn = conns.popitem()
        _close(conn)


def close_connection(database_path: str) -> None:
    """Close this thread's connection to ``database_path``, if any."""
    conn = _connections().pop(database_path, None)
    if conn is not None:
        _close(conn)


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run the enclosed block as one serializable unit.

    Nested calls join the outer unit. Any exception rolls the whole unit
    back; lock timeouts and constraint violations surface as
    ConcurrencyConflict.
    """
    db = get_db()
    if db.in_transaction:
        yield db
        return

    try:
        db.execute('BEGIN IMMEDIATE')
    except sqlite3.OperationalError as exc:
        logger.warning("Could not acquire write lock: %s", exc)
        raise ConcurrencyConflict(f"Database busy: {exc}") from exc

    try:
        yield db
    except sqlite3.IntegrityError as exc:
        db.rollback()
        logger.warning("Unit rolled back on constraint violation: %s", exc)
        raise ConcurrencyConflict(f"Constraint violation: {exc}") from exc
    except BaseException:
        db.rollback()
        raise

    try:
        db.commit()
    except sqlite3.OperationalError as exc:
        db.rollback()
        raise ConcurrencyConflict(f"Commit failed: {exc}") from exc


def insert_row(sql: str, params: tuple) -> int:
    """Insert one catalog row and return its id.

    Raises:
        DuplicateRecord: On a uniqueness violation (email, ISBN, ...).
        ValidationError: On any other constraint violation.
    """
    with transaction() as db:
        try:
            cursor = db.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            if 'UNIQUE' in str(exc):
                raise DuplicateRecord(str(exc)) from exc
            raise ValidationError(str(exc)) from exc
        return cursor.lastrowid


def init_db(seed: bool = False) -> None:
    """Create tables and indexes if missing, optionally adding reference rows."""
    db = get_db()
    db.executescript(SCHEMA)
    if seed:
        seed_reference_data()
    logger.info("Database ready at %s", get_database_path())


def seed_reference_data() -> None:
    """Insert the reference branches and publishers (idempotent)."""
    with transaction() as db:
        db.executemany('''
            INSERT INTO library_branch
            (branch_name, address, phone, email, opening_hours)
            SELECT ?, ?, ?, ?, ?
            WHERE NOT EXISTS (SELECT 1 FROM library_branch WHERE branch_name = ?)
        ''', [branch + (branch[0],) for branch in REFERENCE_BRANCHES])
        db.executemany('''
            INSERT OR IGNORE INTO publisher
            (publisher_name, address, phone, email, website)
            VALUES (?, ?, ?, ?, ?)
        ''', REFERENCE_PUBLISHERS)
