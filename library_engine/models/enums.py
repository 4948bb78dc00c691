"""Status and type vocabularies shared by the models.

Values keep the spelling used by the stored schema.
"""
import enum


class MembershipType(str, enum.Enum):
    STUDENT = 'Student'
    FACULTY = 'Faculty'
    PUBLIC = 'Public'


class CopyStatus(str, enum.Enum):
    AVAILABLE = 'Available'
    CHECKED_OUT = 'Checked Out'
    UNDER_MAINTENANCE = 'Under Maintenance'
    LOST = 'Lost'


class CopyCondition(str, enum.Enum):
    NEW = 'New'
    GOOD = 'Good'
    FAIR = 'Fair'
    POOR = 'Poor'


class LoanStatus(str, enum.Enum):
    """Loan lifecycle.

    Flow:
        ACTIVE -> OVERDUE (sweep, due date passed)
        ACTIVE/OVERDUE -> RETURNED (terminal)
    """
    ACTIVE = 'Active'
    RETURNED = 'Returned'
    OVERDUE = 'Overdue'


# Loans that still hold their copy
OPEN_LOAN_STATUSES = (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value)


class ReservationStatus(str, enum.Enum):
    """Reservation lifecycle.

    Flow:
        PENDING -> FULFILLED (matched to a released copy)
        PENDING -> CANCELLED (member request or membership expiry)
    """
    PENDING = 'Pending'
    FULFILLED = 'Fulfilled'
    CANCELLED = 'Cancelled'


class FineStatus(str, enum.Enum):
    PENDING = 'Pending'
    PARTIALLY_PAID = 'Partially Paid'
    PAID = 'Paid'


class AuditAction(str, enum.Enum):
    INSERT = 'INSERT'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'


class AuditTable(str, enum.Enum):
    """Entity kinds the audit trail records snapshots for."""
    BOOK_COPY = 'book_copy'
    LOAN = 'loan'
    RESERVATION = 'reservation'
    FINE = 'fine'
    MEMBER = 'member'
