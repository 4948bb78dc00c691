"""Physical copies of catalog titles.

A copy's status is written only by the loan ledger; this module creates
copies and reads them.
"""
from datetime import date, datetime
from typing import Dict, List, Optional

from library_engine.errors import CopyNotFound, ValidationError
from library_engine.models.audit_log import AuditLog
from library_engine.models.database import get_db, insert_row, transaction
from library_engine.models.enums import AuditAction, AuditTable, CopyCondition, CopyStatus
from library_engine.models.staff import Staff
from library_engine.utils.dates import format_date


class BookCopy:
    """One physical instance of a Book held at a Branch.

    Attributes:
        copy_id (int): Unique identifier.
        book_id (int): Catalog title.
        branch_id (int): Holding branch.
        acquisition_date (str): When the copy was acquired.
        copy_status (str): 'Available', 'Checked Out', 'Under Maintenance' or 'Lost'.
        shelf_location (str): Physical shelf location.
        book_condition (str): 'New', 'Good', 'Fair' or 'Poor'.
        last_maintenance_date (str): Last time the copy left maintenance.
    """

    def __init__(self, copy_id: int, book_id: int, branch_id: int,
                 acquisition_date: str, copy_status: str, shelf_location: str,
                 book_condition: str, last_maintenance_date: Optional[str] = None) -> None:
        self.copy_id = copy_id
        self.book_id = book_id
        self.branch_id = branch_id
        self.acquisition_date = acquisition_date
        self.copy_status = copy_status
        self.shelf_location = shelf_location
        self.book_condition = book_condition
        self.last_maintenance_date = last_maintenance_date

    @property
    def status(self) -> CopyStatus:
        return CopyStatus(self.copy_status)

    @property
    def is_available(self) -> bool:
        return self.status == CopyStatus.AVAILABLE

    @staticmethod
    def create(book_id: int, branch_id: int, shelf_location: str,
               acquisition_date: date, condition: str = CopyCondition.GOOD.value,
               staff_id: Optional[int] = None,
               now: Optional[datetime] = None) -> 'BookCopy':
        """Add an Available copy to a branch's inventory."""
        try:
            condition = CopyCondition(condition).value
        except ValueError:
            raise ValidationError(f"Unknown copy condition: {condition}")
        Staff.require_actor(staff_id)

        now = now or datetime.now()
        with transaction():
            copy_id = insert_row('''
                INSERT INTO book_copy (book_id, branch_id, acquisition_date, copy_status,
                                       shelf_location, book_condition)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (book_id, branch_id, format_date(acquisition_date),
                  CopyStatus.AVAILABLE.value, shelf_location, condition))
            book_copy = BookCopy.get_by_id(copy_id)
            AuditLog.record(AuditTable.BOOK_COPY, copy_id, AuditAction.INSERT,
                            None, book_copy, staff_id, now)
        return book_copy

    @staticmethod
    def get_by_id(copy_id: int) -> Optional['BookCopy']:
        db = get_db()
        row = db.execute('SELECT * FROM book_copy WHERE copy_id = ?', (copy_id,)).fetchone()
        if row:
            return BookCopy(**dict(row))
        return None

    @staticmethod
    def require(copy_id: int) -> 'BookCopy':
        """Get copy by ID or raise CopyNotFound."""
        book_copy = BookCopy.get_by_id(copy_id)
        if not book_copy:
            raise CopyNotFound(f"Copy {copy_id} not found")
        return book_copy

    @staticmethod
    def get_for_book(book_id: int) -> List['BookCopy']:
        db = get_db()
        rows = db.execute(
            'SELECT * FROM book_copy WHERE book_id = ? ORDER BY copy_id', (book_id,)
        ).fetchall()
        return [BookCopy(**dict(row)) for row in rows]

    @staticmethod
    def count_by_status(book_id: int) -> Dict[str, int]:
        db = get_db()
        rows = db.execute('''
            SELECT copy_status, COUNT(*) AS count FROM book_copy
            WHERE book_id = ? GROUP BY copy_status
        ''', (book_id,)).fetchall()
        return {row['copy_status']: row['count'] for row in rows}

    def to_dict(self) -> dict:
        return {
            'copy_id': self.copy_id,
            'book_id': self.book_id,
            'branch_id': self.branch_id,
            'acquisition_date': self.acquisition_date,
            'copy_status': self.copy_status,
            'shelf_location': self.shelf_location,
            'book_condition': self.book_condition,
            'last_maintenance_date': self.last_maintenance_date,
        }
