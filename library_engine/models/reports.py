"""Read-only circulation views.

``active_loans`` lists open loans with member, title and branch details and
the days each loan is past due. ``available_copies`` lists copies that can
be lent right now with their authors and shelf location.
"""
from datetime import datetime
from typing import List, Optional

from library_engine.models.database import get_db
from library_engine.models.enums import OPEN_LOAN_STATUSES, CopyStatus, LoanStatus
from library_engine.models.loan import Loan, LoanLedger


def active_loans(now: datetime, member_id: Optional[int] = None,
                 branch_id: Optional[int] = None, book_id: Optional[int] = None,
                 overdue_only: bool = False) -> List[dict]:
    """Open loans, most overdue first.

    Args:
        now: Reference time for overdue status and day counts.
        member_id: Only this member's loans (optional).
        branch_id: Only copies held by this branch (optional).
        book_id: Only copies of this title (optional).
        overdue_only: Drop loans that are not yet past due.

    Returns:
        List of dicts, one per loan.
    """
    placeholders = ', '.join('?' for _ in OPEN_LOAN_STATUSES)
    query = f'''
        SELECT l.*,
               m.first_name AS member_first_name,
               m.last_name AS member_last_name,
               b.book_id,
               b.title AS book_title,
               lb.branch_id,
               lb.branch_name
        FROM loan l
        JOIN member m ON l.member_id = m.member_id
        JOIN book_copy bc ON l.copy_id = bc.copy_id
        JOIN book b ON bc.book_id = b.book_id
        JOIN library_branch lb ON bc.branch_id = lb.branch_id
        WHERE l.loan_status IN ({placeholders})
    '''
    params = list(OPEN_LOAN_STATUSES)

    if member_id is not None:
        query += ' AND l.member_id = ?'
        params.append(member_id)
    if branch_id is not None:
        query += ' AND lb.branch_id = ?'
        params.append(branch_id)
    if book_id is not None:
        query += ' AND b.book_id = ?'
        params.append(book_id)

    query += ' ORDER BY l.due_date ASC, l.loan_id ASC'

    db = get_db()
    results = []
    for row in db.execute(query, params).fetchall():
        data = dict(row)
        loan = Loan(**{key: data[key] for key in (
            'loan_id', 'copy_id', 'member_id', 'staff_id', 'loan_date',
            'due_date', 'return_date', 'late_fee', 'loan_status'
        )})
        status = LoanLedger.derive_status(loan, now)
        if overdue_only and status != LoanStatus.OVERDUE:
            continue
        results.append({
            'loan_id': loan.loan_id,
            'member_id': loan.member_id,
            'member_first_name': data['member_first_name'],
            'member_last_name': data['member_last_name'],
            'book_id': data['book_id'],
            'book_title': data['book_title'],
            'copy_id': loan.copy_id,
            'branch_id': data['branch_id'],
            'branch_name': data['branch_name'],
            'loan_date': loan.loan_date,
            'due_date': loan.due_date,
            'days_overdue': loan.days_overdue(now),
            'status': status.value,
        })
    return results


def available_copies(book_id: Optional[int] = None, branch_id: Optional[int] = None,
                     isbn: Optional[str] = None,
                     search: Optional[str] = None) -> List[dict]:
    """Copies currently on the shelf, grouped with their authors.

    ``search`` matches title, ISBN or an author's name.
    """
    query = '''
        SELECT b.book_id, b.title, b.isbn,
               bc.copy_id, bc.shelf_location, bc.book_condition,
               lb.branch_id, lb.branch_name,
               GROUP_CONCAT(a.first_name || ' ' || a.last_name, '|') AS authors
        FROM book_copy bc
        JOIN book b ON bc.book_id = b.book_id
        JOIN library_branch lb ON bc.branch_id = lb.branch_id
        LEFT JOIN book_author ba ON b.book_id = ba.book_id
        LEFT JOIN author a ON ba.author_id = a.author_id
        WHERE bc.copy_status = ?
    '''
    params: list = [CopyStatus.AVAILABLE.value]

    if book_id is not None:
        query += ' AND b.book_id = ?'
        params.append(book_id)
    if branch_id is not None:
        query += ' AND lb.branch_id = ?'
        params.append(branch_id)
    if isbn:
        query += ' AND b.isbn = ?'
        params.append(isbn)
    if search:
        query += '''
            AND (b.title LIKE ? OR b.isbn LIKE ? OR EXISTS (
                SELECT 1 FROM book_author ba2
                JOIN author a2 ON ba2.author_id = a2.author_id
                WHERE ba2.book_id = b.book_id
                  AND (a2.first_name || ' ' || a2.last_name) LIKE ?
            ))
        '''
        pattern = f'%{search}%'
        params.extend([pattern, pattern, pattern])

    query += ' GROUP BY bc.copy_id ORDER BY b.title, lb.branch_name, bc.copy_id'

    db = get_db()
    rows = db.execute(query, params).fetchall()
    return [
        {
            'book_id': row['book_id'],
            'title': row['title'],
            'isbn': row['isbn'],
            'authors': sorted(row['authors'].split('|')) if row['authors'] else [],
            'copy_id': row['copy_id'],
            'branch_id': row['branch_id'],
            'branch_name': row['branch_name'],
            'shelf_location': row['shelf_location'],
            'book_condition': row['book_condition'],
        }
        for row in rows
    ]
