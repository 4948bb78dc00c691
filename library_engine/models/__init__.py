"""
Models package

Ownership:
    LoanLedger (loan.py)        - loans, and the only writer of copy status
    ReservationQueue (reservation.py) - pending holds and matching on release
    FineLedger (fine.py)        - accrual, payment, outstanding balance
    AuditLog (audit_log.py)     - append-only snapshots of every mutation
    Catalog records (book.py, book_copy.py, branch.py, member.py, staff.py)
"""
from library_engine.models.database import init_db, get_db, close_db, transaction
from library_engine.models.branch import Branch
from library_engine.models.staff import Staff
from library_engine.models.member import Member
from library_engine.models.book import Author, Book, Publisher
from library_engine.models.book_copy import BookCopy
from library_engine.models.fine import Fine, FineLedger
from library_engine.models.loan import Loan, LoanLedger
from library_engine.models.reservation import Fulfillment, Reservation, ReservationQueue
from library_engine.models.audit_log import AuditEntry, AuditLog
from library_engine.models.system_config import SystemConfig

__all__ = [
    'Branch', 'Staff', 'Member', 'Author', 'Book', 'Publisher', 'BookCopy',
    'Fine', 'FineLedger', 'Loan', 'LoanLedger',
    'Fulfillment', 'Reservation', 'ReservationQueue',
    'AuditEntry', 'AuditLog', 'SystemConfig',
    'init_db', 'get_db', 'close_db', 'transaction'
]
