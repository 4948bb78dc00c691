"""Member model.

Holds membership details and the eligibility rule shared by checkout and
reservation: an active, current membership, fewer open loans than the
member's allowance, and an outstanding fine balance at or below the
configured threshold.
"""
import logging
from datetime import date, datetime
from typing import List, Optional, Union

from library_engine.config.config import Config
from library_engine.errors import MemberIneligible, MemberNotFound, ValidationError
from library_engine.models.audit_log import AuditLog
from library_engine.models.database import get_db, insert_row, transaction
from library_engine.models.enums import AuditAction, AuditTable, MembershipType
from library_engine.models.staff import Staff
from library_engine.utils.dates import format_date, parse_date

logger = logging.getLogger(__name__)


class Member:
    """Represents a library member.

    Attributes:
        member_id (int): Unique identifier.
        first_name (str): First name.
        last_name (str): Last name.
        email (str): Unique email address.
        membership_type (str): 'Student', 'Faculty' or 'Public'.
        membership_start_date (str): First day of membership (YYYY-MM-DD).
        membership_end_date (str): Last day of membership (YYYY-MM-DD).
        is_active (bool): Whether the membership is enabled.
        max_books_allowed (int): Open loan allowance (1-10).
    """

    def __init__(self, member_id: int, first_name: str, last_name: str,
                 email: str, phone: str, address: str, date_of_birth: str,
                 membership_type: str, membership_start_date: str,
                 membership_end_date: str, is_active: int = 1,
                 max_books_allowed: int = Config.DEFAULT_MAX_BOOKS_ALLOWED,
                 created_at: Optional[str] = None) -> None:
        self.member_id = member_id
        self.first_name = first_name
        self.last_name = last_name
        self.email = email
        self.phone = phone
        self.address = address
        self.date_of_birth = date_of_birth
        self.membership_type = membership_type
        self.membership_start_date = membership_start_date
        self.membership_end_date = membership_end_date
        self.is_active = bool(is_active)
        self.max_books_allowed = int(max_books_allowed)
        self.created_at = created_at

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def is_membership_current(self, on: Union[date, datetime]) -> bool:
        """Whether ``on`` falls inside the membership window."""
        if isinstance(on, datetime):
            on = on.date()
        return parse_date(self.membership_start_date) <= on <= parse_date(self.membership_end_date)

    @staticmethod
    def create(first_name: str, last_name: str, email: str, phone: str,
               address: str, date_of_birth: date, membership_type: str,
               membership_start_date: date, membership_end_date: date,
               max_books_allowed: int = Config.DEFAULT_MAX_BOOKS_ALLOWED,
               staff_id: Optional[int] = None,
               now: Optional[datetime] = None) -> 'Member':
        """Register a member.

        Raises:
            ValidationError: On an unknown membership type, an allowance
                outside 1-10, or an end date before the start date.
            DuplicateRecord: If the email is already registered.
        """
        try:
            membership_type = MembershipType(membership_type).value
        except ValueError:
            raise ValidationError(f"Unknown membership type: {membership_type}")
        if not 1 <= int(max_books_allowed) <= 10:
            raise ValidationError("max_books_allowed must be between 1 and 10")
        if membership_end_date < membership_start_date:
            raise ValidationError("Membership cannot end before it starts")
        Staff.require_actor(staff_id)

        now = now or datetime.now()
        with transaction():
            member_id = insert_row('''
                INSERT INTO member (first_name, last_name, email, phone, address,
                                    date_of_birth, membership_type,
                                    membership_start_date, membership_end_date,
                                    is_active, max_books_allowed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
            ''', (first_name, last_name, email, phone, address,
                  format_date(date_of_birth), membership_type,
                  format_date(membership_start_date), format_date(membership_end_date),
                  int(max_books_allowed)))
            member = Member.get_by_id(member_id)
            AuditLog.record(AuditTable.MEMBER, member_id, AuditAction.INSERT,
                            None, member, staff_id, now)
        return member

    @staticmethod
    def get_by_id(member_id: int) -> Optional['Member']:
        db = get_db()
        row = db.execute('SELECT * FROM member WHERE member_id = ?', (member_id,)).fetchone()
        if row:
            return Member(**dict(row))
        return None

    @staticmethod
    def require(member_id: int) -> 'Member':
        """Get member by ID or raise MemberNotFound."""
        member = Member.get_by_id(member_id)
        if not member:
            raise MemberNotFound(f"Member {member_id} not found")
        return member

    @staticmethod
    def get_lapsed(today: date) -> List['Member']:
        """Active members whose membership ended before ``today``."""
        db = get_db()
        rows = db.execute('''
            SELECT * FROM member
            WHERE is_active = 1 AND membership_end_date < ?
            ORDER BY member_id
        ''', (format_date(today),)).fetchall()
        return [Member(**dict(row)) for row in rows]

    def active_loan_count(self) -> int:
        from library_engine.models.loan import Loan
        return Loan.count_open_for_member(self.member_id)

    def ensure_eligible(self, now: datetime) -> None:
        """Raise MemberIneligible unless the member may borrow or reserve now."""
        from library_engine.models.fine import FineLedger
        from library_engine.models.system_config import SystemConfig

        if not self.is_active:
            raise MemberIneligible(f"Member {self.member_id} is not active", reason='inactive')

        if not self.is_membership_current(now):
            raise MemberIneligible(
                f"Membership of member {self.member_id} is not valid on {format_date(now)}",
                reason='membership_expired'
            )

        open_loans = self.active_loan_count()
        if open_loans >= self.max_books_allowed:
            raise MemberIneligible(
                f"Member {self.member_id} has reached the limit of "
                f"{self.max_books_allowed} books",
                reason='loan_limit'
            )

        balance = FineLedger.outstanding_balance(self.member_id)
        threshold = SystemConfig.get_decimal('fine_block_threshold', Config.FINE_BLOCK_THRESHOLD)
        if balance > threshold:
            raise MemberIneligible(
                f"Member {self.member_id} has outstanding fines of {balance} "
                f"(limit {threshold})",
                reason='outstanding_fines'
            )

    def deactivate(self, now: datetime, staff_id: Optional[int] = None) -> 'Member':
        """Disable the membership. Must run inside a transaction."""
        db = get_db()
        db.execute('UPDATE member SET is_active = 0 WHERE member_id = ?', (self.member_id,))
        after = Member.get_by_id(self.member_id)
        AuditLog.record(AuditTable.MEMBER, self.member_id, AuditAction.UPDATE,
                        self, after, staff_id, now)
        logger.info("Member %s deactivated (membership ended %s)",
                    self.member_id, self.membership_end_date)
        return after

    def to_dict(self) -> dict:
        return {
            'member_id': self.member_id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'phone': self.phone,
            'membership_type': self.membership_type,
            'membership_start_date': self.membership_start_date,
            'membership_end_date': self.membership_end_date,
            'is_active': self.is_active,
            'max_books_allowed': self.max_books_allowed,
        }
