"""
Fine model for tracking member fines and payments.

This module records late-return and lost-copy fines, accepts partial
payments, and reports outstanding balances used by eligibility checks.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from library_engine.errors import FineNotFound, OverPayment, ValidationError
from library_engine.models.audit_log import AuditLog
from library_engine.models.database import get_db
from library_engine.models.enums import AuditAction, AuditTable, FineStatus
from library_engine.models.member import Member
from library_engine.models.staff import Staff
from library_engine.utils.dates import format_timestamp
from library_engine.utils.money import format_money, to_money

logger = logging.getLogger(__name__)


class Fine:
    """Represents a member fine record.

    Attributes:
        fine_id (int): Unique fine identifier.
        member_id (int): Member who owes the fine.
        loan_id (int): Related loan (optional, cleared if the loan is purged).
        fine_amount (Decimal): Total amount owed.
        fine_date (str): When the fine was recorded.
        reason (str): Why the fine was charged.
        paid_amount (Decimal): Amount paid so far.
        payment_date (str): When the fine was fully paid (optional).
        fine_status (str): 'Pending', 'Partially Paid' or 'Paid'.
    """

    def __init__(self, fine_id: int, member_id: int, loan_id: Optional[int],
                 fine_amount: str, fine_date: str, reason: str,
                 paid_amount: str = '0.00', payment_date: Optional[str] = None,
                 fine_status: str = FineStatus.PENDING.value) -> None:
        """Initialize Fine instance."""
        self.fine_id = fine_id
        self.member_id = member_id
        self.loan_id = loan_id
        self.fine_amount = Decimal(fine_amount)
        self.fine_date = fine_date
        self.reason = reason
        self.paid_amount = Decimal(paid_amount)
        self.payment_date = payment_date
        self.fine_status = fine_status

    @property
    def status(self) -> FineStatus:
        return FineStatus(self.fine_status)

    @property
    def remaining(self) -> Decimal:
        return self.fine_amount - self.paid_amount

    @staticmethod
    def get_by_id(fine_id: int) -> Optional['Fine']:
        """Get fine by ID."""
        db = get_db()
        row = db.execute('SELECT * FROM fine WHERE fine_id = ?', (fine_id,)).fetchone()
        if row:
            return Fine(**dict(row))
        return None

    @staticmethod
    def get_member_fines(member_id: int,
                         status: Optional[FineStatus] = None) -> List['Fine']:
        """Get all fines for a member.

        Args:
            member_id: Member ID.
            status: Filter by fine status (optional).

        Returns:
            List of Fine objects, newest first.
        """
        db = get_db()

        if status:
            rows = db.execute('''
                SELECT * FROM fine
                WHERE member_id = ? AND fine_status = ?
                ORDER BY fine_date DESC, fine_id DESC
            ''', (member_id, status.value)).fetchall()
        else:
            rows = db.execute('''
                SELECT * FROM fine
                WHERE member_id = ?
                ORDER BY fine_date DESC, fine_id DESC
            ''', (member_id,)).fetchall()

        return [Fine(**dict(row)) for row in rows]

    @staticmethod
    def get_for_loan(loan_id: int) -> List['Fine']:
        db = get_db()
        rows = db.execute(
            'SELECT * FROM fine WHERE loan_id = ? ORDER BY fine_id', (loan_id,)
        ).fetchall()
        return [Fine(**dict(row)) for row in rows]

    def to_dict(self) -> dict:
        """Convert fine to dictionary."""
        return {
            'fine_id': self.fine_id,
            'member_id': self.member_id,
            'loan_id': self.loan_id,
            'fine_amount': format_money(self.fine_amount),
            'fine_date': self.fine_date,
            'reason': self.reason,
            'paid_amount': format_money(self.paid_amount),
            'payment_date': self.payment_date,
            'fine_status': self.fine_status,
        }


class FineLedger:
    """Accrual, payment and balance of fines.

    Mutating methods must run inside ``transaction()``.
    """

    @staticmethod
    def derive_status(fine_amount: Decimal, paid_amount: Decimal) -> FineStatus:
        """Status implied by the paid/total ratio."""
        if paid_amount >= fine_amount:
            return FineStatus.PAID
        if paid_amount > 0:
            return FineStatus.PARTIALLY_PAID
        return FineStatus.PENDING

    @staticmethod
    def accrue(member_id: int, amount: Decimal, reason: str, now: datetime,
               loan_id: Optional[int] = None,
               staff_id: Optional[int] = None) -> Fine:
        """Create a new fine record.

        Args:
            member_id: Member who owes the fine.
            amount: Fine amount (>= 0).
            reason: Why the fine was charged.
            now: Fine date.
            loan_id: Related loan (optional).
            staff_id: Staff member recorded in the audit trail.

        Returns:
            New Fine instance.

        Raises:
            ValidationError: On a negative amount or an empty reason.
            MemberNotFound: If the member does not exist.
            StaffNotFound: If staff_id is given but unknown.
        """
        amount = to_money(amount)
        if amount < 0:
            raise ValidationError("Fine amount cannot be negative")
        if not reason or not reason.strip():
            raise ValidationError("Fine reason is required")
        Member.require(member_id)
        Staff.require_actor(staff_id)

        status = FineLedger.derive_status(amount, Decimal('0.00'))
        payment_date = format_timestamp(now) if status == FineStatus.PAID else None

        db = get_db()
        cursor = db.execute('''
            INSERT INTO fine (member_id, loan_id, fine_amount, fine_date, reason,
                              paid_amount, payment_date, fine_status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (member_id, loan_id, amount, format_timestamp(now), reason.strip(),
              Decimal('0.00'), payment_date, status.value))
        fine = Fine.get_by_id(cursor.lastrowid)

        AuditLog.record(AuditTable.FINE, fine.fine_id, AuditAction.INSERT,
                        None, fine, staff_id, now)
        logger.info("Fine %s recorded for member %s: %s (%s)",
                    fine.fine_id, member_id, format_money(amount), reason)
        return fine

    @staticmethod
    def pay(fine_id: int, amount: Decimal, now: datetime,
            staff_id: Optional[int] = None) -> Fine:
        """Record a payment against a fine.

        Raises:
            ValidationError: If the amount is not positive.
            FineNotFound: If the fine does not exist.
            OverPayment: If the payment exceeds the remaining balance.
            StaffNotFound: If staff_id is given but unknown.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")

        fine = Fine.get_by_id(fine_id)
        if not fine:
            raise FineNotFound(f"Fine {fine_id} not found")
        Staff.require_actor(staff_id)

        new_paid = fine.paid_amount + amount
        if new_paid > fine.fine_amount:
            raise OverPayment(
                f"Payment of {format_money(amount)} exceeds remaining balance "
                f"{format_money(fine.remaining)} on fine {fine_id}"
            )

        status = FineLedger.derive_status(fine.fine_amount, new_paid)
        payment_date = format_timestamp(now) if status == FineStatus.PAID else None

        db = get_db()
        db.execute('''
            UPDATE fine
            SET paid_amount = ?, fine_status = ?, payment_date = ?
            WHERE fine_id = ?
        ''', (new_paid, status.value, payment_date, fine_id))
        updated = Fine.get_by_id(fine_id)

        AuditLog.record(AuditTable.FINE, fine_id, AuditAction.UPDATE,
                        fine, updated, staff_id, now)
        logger.info("Fine %s payment %s recorded, status %s",
                    fine_id, format_money(amount), status.value)
        return updated

    @staticmethod
    def outstanding_balance(member_id: int) -> Decimal:
        """Sum of unpaid amounts over the member's open fines."""
        db = get_db()
        rows = db.execute('''
            SELECT fine_amount, paid_amount FROM fine
            WHERE member_id = ? AND fine_status != ?
        ''', (member_id, FineStatus.PAID.value)).fetchall()
        total = sum((Decimal(row['fine_amount']) - Decimal(row['paid_amount']) for row in rows),
                    Decimal('0.00'))
        return total
