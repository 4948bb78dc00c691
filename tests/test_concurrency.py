"""Races between real threads, each on its own database connection."""
import threading
from datetime import timedelta

from conftest import NOW, assert_copy_loan_bijection, copy_status
from library_engine.errors import (
    AlreadyReturned,
    CopyUnavailable,
    DuplicatePending,
    LibraryError,
)
from library_engine.models.database import close_db
from library_engine.models.loan import Loan
from library_engine.models.reservation import Reservation


def run_concurrently(*calls):
    """Start every call at once; return each call's result or raised LibraryError."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        try:
            barrier.wait()
            outcomes[index] = call()
        except LibraryError as exc:
            outcomes[index] = exc
        finally:
            close_db()

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert not any(thread.is_alive() for thread in threads)
    return outcomes


def split(outcomes):
    successes = [o for o in outcomes if not isinstance(o, LibraryError)]
    failures = [o for o in outcomes if isinstance(o, LibraryError)]
    return successes, failures


def test_racing_checkouts_issue_the_copy_once(engine, catalog, staff_id):
    copy = catalog.add_copy()
    members = [catalog.add_member() for _ in range(6)]

    outcomes = run_concurrently(*[
        (lambda m=m: engine.checkout(copy.copy_id, m.member_id, staff_id, now=NOW))
        for m in members
    ])

    successes, failures = split(outcomes)
    assert len(successes) == 1
    assert len(failures) == 5
    assert all(isinstance(exc, CopyUnavailable) for exc in failures)
    assert Loan.get_open_for_copy(copy.copy_id).loan_id == successes[0].loan_id
    assert_copy_loan_bijection()


def test_racing_returns_close_the_loan_once(engine, catalog, staff_id):
    copy = catalog.add_copy()
    member = catalog.add_member()
    loan = engine.checkout(copy.copy_id, member.member_id, staff_id, now=NOW)
    later = loan.due_at + timedelta(days=2)

    outcomes = run_concurrently(
        lambda: engine.return_copy(loan.loan_id, now=later),
        lambda: engine.return_copy(loan.loan_id, now=later),
    )

    successes, failures = split(outcomes)
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], AlreadyReturned)
    # Late fee charged exactly once
    assert len(Loan.get_member_loans(member.member_id)) == 1
    assert str(engine.outstanding_balance(member.member_id)) == '1.00'
    assert copy_status(copy.copy_id) == 'Available'
    assert_copy_loan_bijection()


def test_concurrent_releases_serve_the_queue_in_order(engine, catalog, staff_id):
    book_id = catalog.book.book_id
    copies = [catalog.add_copy(), catalog.add_copy(shelf='A-2')]
    holders = [catalog.add_member(first_name='Holder') for _ in copies]
    loans = [engine.checkout(c.copy_id, h.member_id, staff_id, now=NOW)
             for c, h in zip(copies, holders)]
    waiting = [catalog.add_member() for _ in range(3)]
    holds = [
        engine.reserve(book_id, member.member_id, now=NOW + timedelta(minutes=i), priority=1)
        for i, member in enumerate(waiting)
    ]
    returned_at = NOW + timedelta(days=1)

    outcomes = run_concurrently(*[
        (lambda loan=loan: engine.return_copy(loan.loan_id, now=returned_at))
        for loan in loans
    ])

    successes, failures = split(outcomes)
    assert failures == []
    fulfilled = [result.fulfillment.reservation.reservation_id for result in successes]
    # The two oldest holds are served, each by a different copy
    assert sorted(fulfilled) == sorted([holds[0].reservation_id, holds[1].reservation_id])
    assert len({result.fulfillment.loan.copy_id for result in successes}) == 2
    assert Reservation.get_by_id(holds[2].reservation_id).is_pending
    assert all(copy_status(c.copy_id) == 'Checked Out' for c in copies)
    assert_copy_loan_bijection()


def test_sweep_racing_a_return(engine, catalog, staff_id):
    copy = catalog.add_copy()
    member = catalog.add_member()
    loan = engine.checkout(copy.copy_id, member.member_id, staff_id, now=NOW)
    later = loan.due_at + timedelta(days=1)

    outcomes = run_concurrently(
        lambda: engine.sweep_overdue(now=later),
        lambda: engine.return_copy(loan.loan_id, now=later),
    )

    successes, failures = split(outcomes)
    assert failures == []
    assert Loan.get_by_id(loan.loan_id).loan_status == 'Returned'
    assert engine.sweep_overdue(now=later) == []
    assert_copy_loan_bijection()


def test_racing_duplicate_reservations(engine, catalog):
    member = catalog.add_member()
    book_id = catalog.book.book_id

    outcomes = run_concurrently(
        lambda: engine.reserve(book_id, member.member_id, now=NOW),
        lambda: engine.reserve(book_id, member.member_id, now=NOW),
    )

    successes, failures = split(outcomes)
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], DuplicatePending)
    assert len(Reservation.get_member_reservations(member.member_id)) == 1
