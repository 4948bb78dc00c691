import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, NamedTuple, Optional

from library_engine.config.config import Config
from library_engine.errors import (
    AlreadyReturned,
    CopyUnavailable,
    InvalidCopyState,
    LoanNotFound,
    ValidationError,
)
from library_engine.models.audit_log import AuditLog
from library_engine.models.book import Book
from library_engine.models.book_copy import BookCopy
from library_engine.models.database import get_db
from library_engine.models.enums import (
    OPEN_LOAN_STATUSES,
    AuditAction,
    AuditTable,
    CopyCondition,
    CopyStatus,
    LoanStatus,
)
from library_engine.models.fine import Fine, FineLedger
from library_engine.models.member import Member
from library_engine.models.staff import Staff
from library_engine.models.system_config import SystemConfig
from library_engine.utils.dates import (
    calendar_days_between,
    format_date,
    format_timestamp,
    parse_timestamp,
)
from library_engine.utils.money import format_money, to_money

logger = logging.getLogger(__name__)


class Loan:

    def __init__(self, loan_id, copy_id, member_id, staff_id, loan_date,
                 due_date, return_date, late_fee, loan_status):
        self.loan_id = loan_id
        self.copy_id = copy_id
        self.member_id = member_id
        self.staff_id = staff_id
        self.loan_date = loan_date
        self.due_date = due_date
        self.return_date = return_date
        self.late_fee = Decimal(late_fee) if late_fee is not None else Decimal('0.00')
        self.loan_status = loan_status

    @property
    def status(self) -> LoanStatus:
        return LoanStatus(self.loan_status)

    @property
    def is_open(self) -> bool:
        return self.loan_status in OPEN_LOAN_STATUSES

    @property
    def due_at(self) -> datetime:
        return parse_timestamp(self.due_date)

    def derive_status(self, now: datetime) -> LoanStatus:
        return LoanLedger.derive_status(self, now)

    def days_overdue(self, now: datetime) -> int:
        """Calendar days past due (0 when not overdue or returned)."""
        if not self.is_open:
            return 0
        return max(0, calendar_days_between(self.due_at, now))

    @staticmethod
    def get_by_id(loan_id):
        db = get_db()
        row = db.execute('SELECT * FROM loan WHERE loan_id = ?', (loan_id,)).fetchone()
        if row:
            return Loan(**dict(row))
        return None

    @staticmethod
    def get_open_for_copy(copy_id) -> Optional['Loan']:
        db = get_db()
        row = db.execute(f'''
            SELECT * FROM loan
            WHERE copy_id = ? AND loan_status IN ({_OPEN_PLACEHOLDERS})
        ''', (copy_id, *OPEN_LOAN_STATUSES)).fetchone()
        if row:
            return Loan(**dict(row))
        return None

    @staticmethod
    def get_member_loans(member_id, open_only=False) -> List['Loan']:
        db = get_db()
        if open_only:
            rows = db.execute(f'''
                SELECT * FROM loan
                WHERE member_id = ? AND loan_status IN ({_OPEN_PLACEHOLDERS})
                ORDER BY loan_date DESC, loan_id DESC
            ''', (member_id, *OPEN_LOAN_STATUSES)).fetchall()
        else:
            rows = db.execute(
                'SELECT * FROM loan WHERE member_id = ? ORDER BY loan_date DESC, loan_id DESC',
                (member_id,)
            ).fetchall()
        return [Loan(**dict(row)) for row in rows]

    @staticmethod
    def count_open_for_member(member_id) -> int:
        db = get_db()
        row = db.execute(f'''
            SELECT COUNT(*) AS count FROM loan
            WHERE member_id = ? AND loan_status IN ({_OPEN_PLACEHOLDERS})
        ''', (member_id, *OPEN_LOAN_STATUSES)).fetchone()
        return row['count']

    def to_dict(self):
        return {
            'loan_id': self.loan_id,
            'copy_id': self.copy_id,
            'member_id': self.member_id,
            'staff_id': self.staff_id,
            'loan_date': self.loan_date,
            'due_date': self.due_date,
            'return_date': self.return_date,
            'late_fee': format_money(self.late_fee),
            'loan_status': self.loan_status,
        }


_OPEN_PLACEHOLDERS = ', '.join('?' for _ in OPEN_LOAN_STATUSES)


class ReturnResult(NamedTuple):
    loan: Loan
    fine: Optional[Fine]
    fulfillment: Optional['Fulfillment']


class LostReport(NamedTuple):
    copy: BookCopy
    loan: Optional[Loan]
    fines: List[Fine]


class ReleaseResult(NamedTuple):
    copy: BookCopy
    fulfillment: Optional['Fulfillment']


class LoanLedger:
    """Owns the loan state machine and is the only writer of copy status.

    Every method that mutates state must run inside ``transaction()`` so that
    the loan, the copy, any fine and their audit rows commit together.
    """

    # ========== POLICY ==========

    @staticmethod
    def loan_period_days(membership_type: str) -> int:
        default = Config.LOAN_PERIOD_DAYS[membership_type]
        return SystemConfig.get_int(f'loan_period_{membership_type.lower()}', default)

    @staticmethod
    def calculate_late_fee(due_date: datetime, returned_at: datetime) -> Decimal:
        """Per-diem fee for each calendar day between due date and return."""
        days_late = calendar_days_between(due_date, returned_at)
        rate = SystemConfig.get_decimal('late_fee_per_day', Config.LATE_FEE_PER_DAY)
        return to_money(max(0, days_late) * rate)

    @staticmethod
    def derive_status(loan: Loan, now: datetime) -> LoanStatus:
        """Status for reporting: open loans past due read as Overdue."""
        if not loan.is_open:
            return loan.status
        if now > loan.due_at:
            return LoanStatus.OVERDUE
        return loan.status

    # ========== COPY STATUS (single writer) ==========

    @staticmethod
    def _set_copy_status(book_copy: BookCopy, status: CopyStatus, now: datetime,
                         staff_id: Optional[int], condition: Optional[str] = None,
                         maintained: bool = False) -> BookCopy:
        db = get_db()
        db.execute('''
            UPDATE book_copy
            SET copy_status = ?,
                book_condition = COALESCE(?, book_condition),
                last_maintenance_date = CASE WHEN ? THEN ? ELSE last_maintenance_date END
            WHERE copy_id = ?
        ''', (status.value, condition, maintained, format_date(now), book_copy.copy_id))
        after = BookCopy.get_by_id(book_copy.copy_id)
        AuditLog.record(AuditTable.BOOK_COPY, book_copy.copy_id, AuditAction.UPDATE,
                        book_copy, after, staff_id, now)
        return after

    @staticmethod
    def _validate_condition(condition: Optional[str]) -> Optional[str]:
        if condition is None:
            return None
        try:
            return CopyCondition(condition).value
        except ValueError:
            raise ValidationError(f"Unknown copy condition: {condition}")

    # ========== CHECKOUT ==========

    @staticmethod
    def checkout(copy_id: int, member_id: int, staff_id: int, now: datetime) -> Loan:
        """Lend an Available copy to an eligible member.

        Raises:
            CopyNotFound, MemberNotFound, StaffNotFound: Missing references.
            CopyUnavailable: Copy is not Available.
            MemberIneligible: Member fails the eligibility rule.
        """
        book_copy = BookCopy.require(copy_id)
        member = Member.require(member_id)
        Staff.require(staff_id)

        if not book_copy.is_available:
            raise CopyUnavailable(f"Copy {copy_id} is {book_copy.copy_status}")

        member.ensure_eligible(now)

        period = LoanLedger.loan_period_days(member.membership_type)
        due_date = now + timedelta(days=period)
        if due_date <= now:
            raise ValidationError(f"Loan period must be positive, got {period} days")

        db = get_db()
        cursor = db.execute('''
            INSERT INTO loan (copy_id, member_id, staff_id, loan_date, due_date,
                              return_date, late_fee, loan_status)
            VALUES (?, ?, ?, ?, ?, NULL, ?, ?)
        ''', (copy_id, member_id, staff_id, format_timestamp(now),
              format_timestamp(due_date), Decimal('0.00'), LoanStatus.ACTIVE.value))
        loan = Loan.get_by_id(cursor.lastrowid)
        AuditLog.record(AuditTable.LOAN, loan.loan_id, AuditAction.INSERT,
                        None, loan, staff_id, now)

        LoanLedger._set_copy_status(book_copy, CopyStatus.CHECKED_OUT, now, staff_id)

        logger.info("Loan %s: copy %s checked out to member %s, due %s",
                    loan.loan_id, copy_id, member_id, loan.due_date)
        return loan

    # ========== RETURN ==========

    @staticmethod
    def _close_loan(loan: Loan, now: datetime, staff_id: Optional[int]) -> Loan:
        """Mark an open loan Returned and charge the late fee onto it."""
        if now < parse_timestamp(loan.loan_date):
            raise ValidationError(
                f"Return date {format_timestamp(now)} precedes loan date {loan.loan_date}"
            )
        late_fee = LoanLedger.calculate_late_fee(loan.due_at, now)

        db = get_db()
        cursor = db.execute(f'''
            UPDATE loan SET return_date = ?, late_fee = ?, loan_status = ?
            WHERE loan_id = ? AND loan_status IN ({_OPEN_PLACEHOLDERS})
        ''', (format_timestamp(now), late_fee, LoanStatus.RETURNED.value,
              loan.loan_id, *OPEN_LOAN_STATUSES))
        if cursor.rowcount != 1:
            raise AlreadyReturned(f"Loan {loan.loan_id} is already returned")

        closed = Loan.get_by_id(loan.loan_id)
        AuditLog.record(AuditTable.LOAN, loan.loan_id, AuditAction.UPDATE,
                        loan, closed, staff_id, now)
        return closed

    @staticmethod
    def return_copy(loan_id: int, now: datetime, staff_id: Optional[int] = None,
                    condition: Optional[str] = None) -> ReturnResult:
        """Close a loan, charge any late fee and hand the copy to the next reserver.

        Raises:
            LoanNotFound: Loan does not exist.
            StaffNotFound: staff_id is given but unknown.
            AlreadyReturned: Loan is already closed.
            ValidationError: Return precedes the loan date or unknown condition.
        """
        from library_engine.models.reservation import ReservationQueue

        Staff.require_actor(staff_id)
        loan = Loan.get_by_id(loan_id)
        if not loan:
            raise LoanNotFound(f"Loan {loan_id} not found")
        if not loan.is_open:
            raise AlreadyReturned(f"Loan {loan_id} was returned on {loan.return_date}")
        condition = LoanLedger._validate_condition(condition)

        closed = LoanLedger._close_loan(loan, now, staff_id)

        fine = None
        if closed.late_fee > 0:
            days_late = calendar_days_between(closed.due_at, now)
            fine = FineLedger.accrue(closed.member_id, closed.late_fee,
                                     f"Late return ({days_late} days overdue)",
                                     now, loan_id=closed.loan_id, staff_id=staff_id)

        book_copy = BookCopy.require(closed.copy_id)
        fulfillment = None
        if book_copy.status == CopyStatus.LOST:
            # Lost copies stay lost; only the fee is settled
            logger.warning("Loan %s returned against lost copy %s", loan_id, book_copy.copy_id)
        else:
            book_copy = LoanLedger._set_copy_status(book_copy, CopyStatus.AVAILABLE, now,
                                                    staff_id, condition=condition)
            fulfillment = ReservationQueue.match_on_release(
                book_copy.book_id, book_copy.copy_id, now,
                staff_id if staff_id is not None else closed.staff_id
            )

        logger.info("Loan %s returned (late fee %s)", loan_id, format_money(closed.late_fee))
        return ReturnResult(loan=closed, fine=fine, fulfillment=fulfillment)

    # ========== LOST / MAINTENANCE ==========

    @staticmethod
    def report_lost(copy_id: int, now: datetime, staff_id: Optional[int] = None) -> LostReport:
        """Mark a copy Lost, closing its open loan with a replacement-cost fine.

        Raises:
            CopyNotFound: Copy does not exist.
            InvalidCopyState: Copy is already Lost.
            StaffNotFound: staff_id is given but unknown.
        """
        Staff.require_actor(staff_id)
        book_copy = BookCopy.require(copy_id)
        if book_copy.status == CopyStatus.LOST:
            raise InvalidCopyState(f"Copy {copy_id} is already reported lost")

        fines: List[Fine] = []
        closed = None
        loan = Loan.get_open_for_copy(copy_id)
        if loan:
            closed = LoanLedger._close_loan(loan, now, staff_id)
            if closed.late_fee > 0:
                fines.append(FineLedger.accrue(
                    closed.member_id, closed.late_fee, "Late return (copy lost)",
                    now, loan_id=closed.loan_id, staff_id=staff_id
                ))
            book = Book.require(book_copy.book_id)
            replacement = book.price if book.price is not None else SystemConfig.get_decimal(
                'lost_replacement_fee', Config.LOST_REPLACEMENT_FEE
            )
            fines.append(FineLedger.accrue(
                closed.member_id, replacement, f"Lost copy replacement: {book.title}",
                now, loan_id=closed.loan_id, staff_id=staff_id
            ))

        book_copy = LoanLedger._set_copy_status(book_copy, CopyStatus.LOST, now, staff_id)
        logger.info("Copy %s reported lost%s", copy_id,
                    f" (loan {closed.loan_id} closed)" if closed else "")
        return LostReport(copy=book_copy, loan=closed, fines=fines)

    @staticmethod
    def send_to_maintenance(copy_id: int, now: datetime,
                            staff_id: Optional[int] = None) -> BookCopy:
        Staff.require_actor(staff_id)
        book_copy = BookCopy.require(copy_id)
        if book_copy.status != CopyStatus.AVAILABLE:
            raise InvalidCopyState(
                f"Only available copies can go to maintenance; copy {copy_id} is "
                f"{book_copy.copy_status}"
            )
        book_copy = LoanLedger._set_copy_status(book_copy, CopyStatus.UNDER_MAINTENANCE,
                                                now, staff_id)
        logger.info("Copy %s sent to maintenance", copy_id)
        return book_copy

    @staticmethod
    def complete_maintenance(copy_id: int, now: datetime, staff_id: int,
                             condition: Optional[str] = None) -> ReleaseResult:
        """Put a maintained copy back into circulation and offer it to the queue.

        ``staff_id`` is required because a waiting reservation is checked out
        on the spot in that staff member's name.
        """
        from library_engine.models.reservation import ReservationQueue

        Staff.require(staff_id)
        book_copy = BookCopy.require(copy_id)
        if book_copy.status != CopyStatus.UNDER_MAINTENANCE:
            raise InvalidCopyState(f"Copy {copy_id} is not under maintenance")
        condition = LoanLedger._validate_condition(condition)

        book_copy = LoanLedger._set_copy_status(book_copy, CopyStatus.AVAILABLE, now,
                                                staff_id, condition=condition,
                                                maintained=True)
        fulfillment = ReservationQueue.match_on_release(book_copy.book_id, copy_id,
                                                        now, staff_id)
        logger.info("Copy %s back in circulation", copy_id)
        return ReleaseResult(copy=BookCopy.get_by_id(copy_id), fulfillment=fulfillment)

    # ========== OVERDUE SWEEP ==========

    @staticmethod
    def sweep_overdue(now: datetime, staff_id: Optional[int] = None) -> List[Loan]:
        """Flip stored Active loans past their due date to Overdue.

        Only loans still Active are touched, so repeated or concurrent sweeps
        are harmless and a return that commits first always wins.
        """
        Staff.require_actor(staff_id)
        db = get_db()
        rows = db.execute('''
            SELECT * FROM loan WHERE loan_status = ? AND due_date < ?
            ORDER BY due_date ASC
        ''', (LoanStatus.ACTIVE.value, format_timestamp(now))).fetchall()

        swept = []
        for row in rows:
            loan = Loan(**dict(row))
            cursor = db.execute('''
                UPDATE loan SET loan_status = ?
                WHERE loan_id = ? AND loan_status = ?
            ''', (LoanStatus.OVERDUE.value, loan.loan_id, LoanStatus.ACTIVE.value))
            if cursor.rowcount != 1:
                continue
            overdue = Loan.get_by_id(loan.loan_id)
            AuditLog.record(AuditTable.LOAN, loan.loan_id, AuditAction.UPDATE,
                            loan, overdue, staff_id, now)
            swept.append(overdue)

        if swept:
            logger.info("Overdue sweep marked %d loan(s)", len(swept))
        return swept

