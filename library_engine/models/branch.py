from typing import List, Optional

from library_engine.models.database import get_db, insert_row


class Branch:
    """A library branch holding physical copies."""

    def __init__(self, branch_id: int, branch_name: str, address: str,
                 phone: str, email: str, opening_hours: str,
                 created_at: Optional[str] = None) -> None:
        self.branch_id = branch_id
        self.branch_name = branch_name
        self.address = address
        self.phone = phone
        self.email = email
        self.opening_hours = opening_hours
        self.created_at = created_at

    @staticmethod
    def create(branch_name: str, address: str, phone: str, email: str,
               opening_hours: str) -> 'Branch':
        branch_id = insert_row('''
            INSERT INTO library_branch (branch_name, address, phone, email, opening_hours)
            VALUES (?, ?, ?, ?, ?)
        ''', (branch_name, address, phone, email, opening_hours))
        return Branch.get_by_id(branch_id)

    @staticmethod
    def get_by_id(branch_id: int) -> Optional['Branch']:
        db = get_db()
        row = db.execute(
            'SELECT * FROM library_branch WHERE branch_id = ?', (branch_id,)
        ).fetchone()
        if row:
            return Branch(**dict(row))
        return None

    @staticmethod
    def get_all() -> List['Branch']:
        db = get_db()
        rows = db.execute('SELECT * FROM library_branch ORDER BY branch_id').fetchall()
        return [Branch(**dict(row)) for row in rows]

    def to_dict(self) -> dict:
        return {
            'branch_id': self.branch_id,
            'branch_name': self.branch_name,
            'address': self.address,
            'phone': self.phone,
            'email': self.email,
            'opening_hours': self.opening_hours,
        }
