import logging
import sqlite3
from datetime import datetime
from typing import List, NamedTuple, Optional

from library_engine.config.config import Config
from library_engine.errors import (
    DuplicatePending,
    MemberIneligible,
    NotPending,
    ReservationNotFound,
    ValidationError,
)
from library_engine.models.audit_log import AuditLog
from library_engine.models.book import Book
from library_engine.models.database import get_db
from library_engine.models.enums import AuditAction, AuditTable, ReservationStatus
from library_engine.models.loan import Loan, LoanLedger
from library_engine.models.member import Member
from library_engine.models.staff import Staff
from library_engine.models.system_config import SystemConfig
from library_engine.utils.dates import format_timestamp

logger = logging.getLogger(__name__)

# Queue order: priority tier first, then first come first served
QUEUE_ORDER = 'priority ASC, reservation_date ASC, reservation_id ASC'


class Reservation:
    """Represents a hold on a book in the queue.

    Attributes:
        reservation_id (int): Unique reservation identifier.
        book_id (int): ID of reserved book.
        member_id (int): ID of member who made the reservation.
        reservation_date (str): When the reservation was made.
        reservation_status (str): 'Pending', 'Fulfilled' or 'Cancelled'.
        priority (int): Priority tier, lower is served first.
        notes (str): Free-form notes.
    """

    def __init__(self, reservation_id: int, book_id: int, member_id: int,
                 reservation_date: str, reservation_status: str,
                 priority: int, notes: Optional[str] = None) -> None:
        """Initialize a Reservation instance."""
        self.reservation_id = reservation_id
        self.book_id = book_id
        self.member_id = member_id
        self.reservation_date = reservation_date
        self.reservation_status = reservation_status
        self.priority = int(priority)
        self.notes = notes

    @property
    def status(self) -> ReservationStatus:
        return ReservationStatus(self.reservation_status)

    @property
    def is_pending(self) -> bool:
        return self.status == ReservationStatus.PENDING

    @staticmethod
    def get_by_id(reservation_id: int) -> Optional['Reservation']:
        """Get reservation by ID."""
        db = get_db()
        row = db.execute(
            'SELECT * FROM reservation WHERE reservation_id = ?',
            (reservation_id,)
        ).fetchone()

        if row:
            return Reservation(**dict(row))
        return None

    @staticmethod
    def get_member_reservations(member_id: int,
                                status: Optional[ReservationStatus] = None) -> List['Reservation']:
        """Get all reservations for a member."""
        db = get_db()

        if status:
            rows = db.execute('''
                SELECT * FROM reservation
                WHERE member_id = ? AND reservation_status = ?
                ORDER BY reservation_date DESC
            ''', (member_id, status.value)).fetchall()
        else:
            rows = db.execute('''
                SELECT * FROM reservation
                WHERE member_id = ?
                ORDER BY reservation_date DESC
            ''', (member_id,)).fetchall()

        return [Reservation(**dict(row)) for row in rows]

    @staticmethod
    def get_pending(book_id: int, member_id: int) -> Optional['Reservation']:
        """Get the member's pending reservation for a book, if any."""
        db = get_db()
        row = db.execute('''
            SELECT * FROM reservation
            WHERE book_id = ? AND member_id = ? AND reservation_status = ?
        ''', (book_id, member_id, ReservationStatus.PENDING.value)).fetchone()

        if row:
            return Reservation(**dict(row))
        return None

    def queue_position(self) -> Optional[int]:
        """1-based position among the book's pending reservations."""
        if not self.is_pending:
            return None
        queue = ReservationQueue.pending_for_book(self.book_id)
        for position, reservation in enumerate(queue, start=1):
            if reservation.reservation_id == self.reservation_id:
                return position
        return None

    def to_dict(self) -> dict:
        """Convert reservation to dictionary."""
        return {
            'reservation_id': self.reservation_id,
            'book_id': self.book_id,
            'member_id': self.member_id,
            'reservation_date': self.reservation_date,
            'reservation_status': self.reservation_status,
            'priority': self.priority,
            'notes': self.notes,
        }


class Fulfillment(NamedTuple):
    reservation: Reservation
    loan: Loan


class ReservationQueue:
    """Per-book queue of pending holds.

    Mutating methods must run inside ``transaction()``.
    """

    @staticmethod
    def pending_for_book(book_id: int) -> List[Reservation]:
        """Pending reservations for a book in the order they will be served."""
        db = get_db()
        rows = db.execute(f'''
            SELECT * FROM reservation
            WHERE book_id = ? AND reservation_status = ?
            ORDER BY {QUEUE_ORDER}
        ''', (book_id, ReservationStatus.PENDING.value)).fetchall()
        return [Reservation(**dict(row)) for row in rows]

    @staticmethod
    def next_in_queue(book_id: int) -> Optional[Reservation]:
        """Get the next reservation to be served for a book."""
        db = get_db()
        row = db.execute(f'''
            SELECT * FROM reservation
            WHERE book_id = ? AND reservation_status = ?
            ORDER BY {QUEUE_ORDER}
            LIMIT 1
        ''', (book_id, ReservationStatus.PENDING.value)).fetchone()

        if row:
            return Reservation(**dict(row))
        return None

    @staticmethod
    def reserve(book_id: int, member_id: int, now: datetime,
                priority: Optional[int] = None, notes: Optional[str] = None,
                staff_id: Optional[int] = None) -> Reservation:
        """Place a hold on a book.

        Raises:
            BookNotFound, MemberNotFound, StaffNotFound: Missing references.
            ValidationError: Priority below 1.
            MemberIneligible: Member fails the eligibility rule.
            DuplicatePending: Member already has a pending hold on the book.
        """
        book = Book.require(book_id)
        member = Member.require(member_id)
        Staff.require_actor(staff_id)

        if priority is None:
            priority = SystemConfig.get_int('default_reservation_priority',
                                            Config.DEFAULT_RESERVATION_PRIORITY)
        if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
            raise ValidationError(f"Priority must be an integer >= 1, got {priority!r}")

        member.ensure_eligible(now)

        if Reservation.get_pending(book_id, member_id):
            raise DuplicatePending(
                f"Member {member_id} already has a pending reservation for book {book_id}"
            )

        db = get_db()
        try:
            cursor = db.execute('''
                INSERT INTO reservation (book_id, member_id, reservation_date,
                                         reservation_status, priority, notes)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (book_id, member_id, format_timestamp(now),
                  ReservationStatus.PENDING.value, priority, notes))
        except sqlite3.IntegrityError as exc:
            raise DuplicatePending(
                f"Member {member_id} already has a pending reservation for book {book_id}"
            ) from exc

        reservation = Reservation.get_by_id(cursor.lastrowid)
        AuditLog.record(AuditTable.RESERVATION, reservation.reservation_id,
                        AuditAction.INSERT, None, reservation, staff_id, now)

        logger.info("Reservation %s: member %s reserved \"%s\" (priority %s, position %s)",
                    reservation.reservation_id, member_id, book.title, priority,
                    reservation.queue_position())
        return reservation

    @staticmethod
    def _set_status(reservation: Reservation, status: ReservationStatus,
                    now: datetime, staff_id: Optional[int]) -> Reservation:
        db = get_db()
        cursor = db.execute('''
            UPDATE reservation SET reservation_status = ?
            WHERE reservation_id = ? AND reservation_status = ?
        ''', (status.value, reservation.reservation_id, ReservationStatus.PENDING.value))
        if cursor.rowcount != 1:
            raise NotPending(f"Reservation {reservation.reservation_id} is no longer pending")

        updated = Reservation.get_by_id(reservation.reservation_id)
        AuditLog.record(AuditTable.RESERVATION, reservation.reservation_id,
                        AuditAction.UPDATE, reservation, updated, staff_id, now)
        return updated

    @staticmethod
    def cancel(reservation_id: int, now: datetime,
               staff_id: Optional[int] = None) -> Reservation:
        """Cancel a pending reservation.

        Raises:
            ReservationNotFound: Reservation does not exist.
            StaffNotFound: staff_id is given but unknown.
            NotPending: Reservation is already Fulfilled or Cancelled.
        """
        Staff.require_actor(staff_id)
        reservation = Reservation.get_by_id(reservation_id)
        if not reservation:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        if not reservation.is_pending:
            raise NotPending(
                f"Reservation {reservation_id} is {reservation.reservation_status}"
            )

        cancelled = ReservationQueue._set_status(reservation, ReservationStatus.CANCELLED,
                                                 now, staff_id)
        logger.info("Reservation %s cancelled", reservation_id)
        return cancelled

    @staticmethod
    def cancel_for_member(member_id: int, now: datetime,
                          staff_id: Optional[int] = None) -> List[Reservation]:
        """Cancel every pending reservation a member holds."""
        pending = Reservation.get_member_reservations(member_id, ReservationStatus.PENDING)
        return [
            ReservationQueue._set_status(reservation, ReservationStatus.CANCELLED, now, staff_id)
            for reservation in pending
        ]

    @staticmethod
    def match_on_release(book_id: int, copy_id: int, now: datetime,
                         staff_id: int) -> Optional[Fulfillment]:
        """Hand a copy that just became Available to the head of the book's queue.

        Reservations are tried in queue order. One whose membership has lapsed
        is cancelled; one whose member is otherwise ineligible keeps its place
        and is skipped. The first eligible reservation is Fulfilled and the
        copy is checked out to its member in the same unit.

        Returns:
            The fulfilled reservation and its loan, or None if the copy stays
            Available.
        """
        for reservation in ReservationQueue.pending_for_book(book_id):
            member = Member.get_by_id(reservation.member_id)
            if not member.is_active or not member.is_membership_current(now):
                ReservationQueue._set_status(reservation, ReservationStatus.CANCELLED,
                                             now, staff_id)
                logger.info("Reservation %s cancelled: membership of member %s lapsed",
                            reservation.reservation_id, member.member_id)
                continue
            try:
                member.ensure_eligible(now)
            except MemberIneligible as exc:
                logger.info("Reservation %s skipped for copy %s: %s",
                            reservation.reservation_id, copy_id, exc.message)
                continue

            fulfilled = ReservationQueue._set_status(reservation, ReservationStatus.FULFILLED,
                                                     now, staff_id)
            loan = LoanLedger.checkout(copy_id, member.member_id, staff_id, now)
            logger.info("Reservation %s fulfilled with copy %s (loan %s)",
                        reservation.reservation_id, copy_id, loan.loan_id)
            return Fulfillment(reservation=fulfilled, loan=loan)

        return None
