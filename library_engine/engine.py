"""Consistency engine.

``LibraryEngine`` is the entry point for callers. Each public mutating
operation runs as one atomic unit: the loan, copy, reservation, fine and
member rows it touches and their audit entries commit together or not at
all. Notifications about the outcome are published only after commit.
"""
import functools
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from library_engine.config.config import Config
from library_engine.errors import LoanNotFound
from library_engine.models import reports
from library_engine.models.book_copy import BookCopy
from library_engine.models.database import close_connection, init_db, transaction, use_database
from library_engine.models.enums import LoanStatus
from library_engine.models.fine import Fine, FineLedger
from library_engine.models.loan import Loan, LoanLedger, LostReport, ReleaseResult, ReturnResult
from library_engine.models.member import Member
from library_engine.models.reservation import Fulfillment, Reservation, ReservationQueue
from library_engine.models.staff import Staff

logger = logging.getLogger(__name__)

# notifier(event, member_id, payload)
Notifier = Callable[[str, int, Dict[str, Any]], None]
Event = Tuple[str, int, Dict[str, Any]]


def _fulfillment_events(fulfillment: Optional[Fulfillment]) -> List[Event]:
    if fulfillment is None:
        return []
    member_id = fulfillment.reservation.member_id
    return [
        ('reservation_fulfilled', member_id, {
            'reservation': fulfillment.reservation.to_dict(),
            'loan': fulfillment.loan.to_dict(),
        }),
        ('loan_created', member_id, fulfillment.loan.to_dict()),
    ]


def _fine_event(fine: Fine) -> Event:
    return ('fine_accrued', fine.member_id, fine.to_dict())


def _scoped(method):
    """Run an engine method against the engine's own database."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.scope():
            return method(self, *args, **kwargs)
    return wrapper


class LibraryEngine:
    """Atomic lending, reservation and fine operations over one database.

    Args:
        database_path: sqlite file to operate on (defaults to Config.DATABASE_PATH).
        notifier: Optional callable receiving ``(event, member_id, payload)``
            after each committed operation.
        busy_timeout: Seconds a unit waits for the write lock before
            failing with ConcurrencyConflict.
    """

    def __init__(self, database_path: Optional[str] = None,
                 notifier: Optional[Notifier] = None,
                 busy_timeout: Optional[float] = None) -> None:
        self.database_path = database_path or Config.DATABASE_PATH
        self.busy_timeout = busy_timeout
        self.notifier = notifier

    def scope(self):
        """Context manager binding model calls on this thread to this engine's database."""
        return use_database(self.database_path, self.busy_timeout)

    @_scoped
    def initialize(self, seed: bool = False) -> None:
        """Create the schema if missing."""
        init_db(seed=seed)

    def close(self) -> None:
        """Close the calling thread's connection to this engine's database."""
        close_connection(self.database_path)

    # ==================== NOTIFICATIONS ====================

    def _publish(self, events: List[Event]) -> None:
        if self.notifier is None:
            return
        for event, member_id, payload in events:
            try:
                self.notifier(event, member_id, payload)
            except Exception:
                # Unit is already committed
                logger.exception("Notifier failed for %s (member %s)", event, member_id)

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return now or datetime.now()

    # ==================== LOANS ====================

    @_scoped
    def checkout(self, copy_id: int, member_id: int, staff_id: int,
                 now: Optional[datetime] = None) -> Loan:
        """Lend a copy to a member."""
        now = self._now(now)
        with transaction():
            loan = LoanLedger.checkout(copy_id, member_id, staff_id, now)
        self._publish([('loan_created', loan.member_id, loan.to_dict())])
        return loan

    @_scoped
    def return_copy(self, loan_id: int, now: Optional[datetime] = None,
                    staff_id: Optional[int] = None,
                    condition: Optional[str] = None) -> ReturnResult:
        """Close a loan; charges any late fee and serves the book's queue."""
        now = self._now(now)
        with transaction():
            result = LoanLedger.return_copy(loan_id, now, staff_id=staff_id,
                                            condition=condition)

        events: List[Event] = [('loan_returned', result.loan.member_id, result.loan.to_dict())]
        if result.fine is not None:
            events.append(_fine_event(result.fine))
        events.extend(_fulfillment_events(result.fulfillment))
        self._publish(events)
        return result

    @_scoped
    def report_lost(self, copy_id: int, now: Optional[datetime] = None,
                    staff_id: Optional[int] = None) -> LostReport:
        now = self._now(now)
        with transaction():
            report = LoanLedger.report_lost(copy_id, now, staff_id=staff_id)
        self._publish([_fine_event(fine) for fine in report.fines])
        return report

    @_scoped
    def send_to_maintenance(self, copy_id: int, now: Optional[datetime] = None,
                            staff_id: Optional[int] = None) -> BookCopy:
        now = self._now(now)
        with transaction():
            return LoanLedger.send_to_maintenance(copy_id, now, staff_id=staff_id)

    @_scoped
    def complete_maintenance(self, copy_id: int, staff_id: int,
                             now: Optional[datetime] = None,
                             condition: Optional[str] = None) -> ReleaseResult:
        now = self._now(now)
        with transaction():
            result = LoanLedger.complete_maintenance(copy_id, now, staff_id,
                                                     condition=condition)
        self._publish(_fulfillment_events(result.fulfillment))
        return result

    @_scoped
    def sweep_overdue(self, now: Optional[datetime] = None,
                      staff_id: Optional[int] = None) -> List[Loan]:
        """Store Overdue on every Active loan past due. Idempotent."""
        now = self._now(now)
        with transaction():
            swept = LoanLedger.sweep_overdue(now, staff_id=staff_id)
        self._publish([('loan_overdue', loan.member_id, loan.to_dict()) for loan in swept])
        return swept

    # ==================== RESERVATIONS ====================

    @_scoped
    def reserve(self, book_id: int, member_id: int, now: Optional[datetime] = None,
                priority: Optional[int] = None, notes: Optional[str] = None,
                staff_id: Optional[int] = None) -> Reservation:
        now = self._now(now)
        with transaction():
            return ReservationQueue.reserve(book_id, member_id, now, priority=priority,
                                            notes=notes, staff_id=staff_id)

    @_scoped
    def cancel_reservation(self, reservation_id: int, now: Optional[datetime] = None,
                           staff_id: Optional[int] = None) -> Reservation:
        now = self._now(now)
        with transaction():
            return ReservationQueue.cancel(reservation_id, now, staff_id=staff_id)

    @_scoped
    def expire_memberships(self, now: Optional[datetime] = None,
                           staff_id: Optional[int] = None) -> List[Member]:
        """Deactivate members whose membership has ended and drop their holds."""
        now = self._now(now)
        expired = []
        with transaction():
            Staff.require_actor(staff_id)
            for member in Member.get_lapsed(now.date()):
                expired.append(member.deactivate(now, staff_id=staff_id))
                cancelled = ReservationQueue.cancel_for_member(member.member_id, now,
                                                               staff_id=staff_id)
                if cancelled:
                    logger.info("Cancelled %d reservation(s) of expired member %s",
                                len(cancelled), member.member_id)
        return expired

    # ==================== FINES ====================

    @_scoped
    def accrue_fine(self, member_id: int, amount: Decimal, reason: str,
                    now: Optional[datetime] = None, loan_id: Optional[int] = None,
                    staff_id: Optional[int] = None) -> Fine:
        now = self._now(now)
        with transaction():
            fine = FineLedger.accrue(member_id, amount, reason, now,
                                     loan_id=loan_id, staff_id=staff_id)
        self._publish([_fine_event(fine)])
        return fine

    @_scoped
    def pay_fine(self, fine_id: int, amount: Decimal, now: Optional[datetime] = None,
                 staff_id: Optional[int] = None) -> Fine:
        now = self._now(now)
        with transaction():
            return FineLedger.pay(fine_id, amount, now, staff_id=staff_id)

    # ==================== QUERIES ====================

    @_scoped
    def outstanding_balance(self, member_id: int) -> Decimal:
        Member.require(member_id)
        return FineLedger.outstanding_balance(member_id)

    @_scoped
    def loan_status(self, loan_id: int, now: Optional[datetime] = None) -> LoanStatus:
        """Current status of a loan, reading past-due open loans as Overdue."""
        loan = Loan.get_by_id(loan_id)
        if not loan:
            raise LoanNotFound(f"Loan {loan_id} not found")
        return LoanLedger.derive_status(loan, self._now(now))

    @_scoped
    def active_loans(self, now: Optional[datetime] = None, **filters) -> List[dict]:
        """See ``reports.active_loans`` for the accepted filters."""
        return reports.active_loans(self._now(now), **filters)

    @_scoped
    def available_copies(self, **filters) -> List[dict]:
        """See ``reports.available_copies`` for the accepted filters."""
        return reports.available_copies(**filters)
