"""Staff model module.

Staff members issue loans and are recorded as the actor of every audited
change they make. The engine only needs to look them up; hiring and payroll
live outside this package.
"""
from datetime import date
from typing import Optional

from library_engine.errors import StaffNotFound, ValidationError
from library_engine.models.database import get_db, insert_row
from library_engine.utils.dates import format_date


class Staff:
    """Represents a library staff member.

    Attributes:
        staff_id (int): Unique identifier.
        branch_id (int): Branch the staff member works at.
        first_name (str): First name.
        last_name (str): Last name.
        email (str): Unique email address.
        phone (str): Contact phone.
        position (str): Job title.
        salary (float): Salary, must be positive.
        hire_date (str): Hire date (YYYY-MM-DD).
        is_active (bool): Whether the staff member is still employed.
    """

    def __init__(self, staff_id: int, branch_id: int, first_name: str,
                 last_name: str, email: str, phone: str, position: str,
                 salary: float, hire_date: str, is_active: int = 1) -> None:
        """Initialize a Staff instance."""
        self.staff_id = staff_id
        self.branch_id = branch_id
        self.first_name = first_name
        self.last_name = last_name
        self.email = email
        self.phone = phone
        self.position = position
        self.salary = float(salary)
        self.hire_date = hire_date
        self.is_active = bool(is_active)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @staticmethod
    def create(branch_id: int, first_name: str, last_name: str, email: str,
               phone: str, position: str, salary: float,
               hire_date: date) -> 'Staff':
        """Create a staff record.

        Raises:
            ValidationError: If the salary is not positive.
            DuplicateRecord: If the email is already used.
        """
        if salary <= 0:
            raise ValidationError("Salary must be positive")
        staff_id = insert_row('''
            INSERT INTO staff (branch_id, first_name, last_name, email, phone,
                               position, salary, hire_date, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
        ''', (branch_id, first_name, last_name, email, phone, position,
              salary, format_date(hire_date)))
        return Staff.get_by_id(staff_id)

    @staticmethod
    def get_by_id(staff_id: int) -> Optional['Staff']:
        db = get_db()
        row = db.execute('SELECT * FROM staff WHERE staff_id = ?', (staff_id,)).fetchone()
        if row:
            return Staff(**dict(row))
        return None

    @staticmethod
    def require(staff_id: int) -> 'Staff':
        """Get staff by ID or raise StaffNotFound."""
        staff = Staff.get_by_id(staff_id)
        if not staff:
            raise StaffNotFound(f"Staff {staff_id} not found")
        return staff

    @staticmethod
    def require_actor(staff_id: Optional[int]) -> None:
        """Check an optional acting staff id; None means the system acts."""
        if staff_id is not None:
            Staff.require(staff_id)

    def to_dict(self) -> dict:
        return {
            'staff_id': self.staff_id,
            'branch_id': self.branch_id,
            'name': self.full_name,
            'email': self.email,
            'position': self.position,
            'is_active': self.is_active,
        }
