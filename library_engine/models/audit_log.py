"""Append-only audit trail.

Every mutation of a copy, loan, reservation, fine or member is recorded
with the before and after snapshot of the record, inside the same
transaction as the mutation itself. If the audit row cannot be written the
unit fails as a whole.
"""
import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from library_engine.errors import AuditWriteError
from library_engine.models.database import get_db
from library_engine.models.enums import AuditAction, AuditTable
from library_engine.utils.dates import format_timestamp

logger = logging.getLogger(__name__)


def _snapshot_type(table: AuditTable) -> type:
    """Model class whose snapshots are recorded for ``table``."""
    from library_engine.models.book_copy import BookCopy
    from library_engine.models.fine import Fine
    from library_engine.models.loan import Loan
    from library_engine.models.member import Member
    from library_engine.models.reservation import Reservation

    return {
        AuditTable.BOOK_COPY: BookCopy,
        AuditTable.LOAN: Loan,
        AuditTable.RESERVATION: Reservation,
        AuditTable.FINE: Fine,
        AuditTable.MEMBER: Member,
    }[table]


class AuditEntry:
    """One immutable audit row.

    Attributes:
        log_id: Unique entry identifier.
        table_name: Entity kind ('book_copy', 'loan', ...).
        record_id: Identifier of the mutated record.
        action_type: 'INSERT', 'UPDATE' or 'DELETE'.
        old_values: Snapshot before the change (None for inserts).
        new_values: Snapshot after the change (None for deletes).
        changed_by: Staff member who caused the change, None for system tasks.
        changed_at: When the change was committed.
    """

    def __init__(self, log_id: int, table_name: str, record_id: int,
                 action_type: str, old_values: Optional[str],
                 new_values: Optional[str], changed_by: Optional[int],
                 changed_at: str) -> None:
        self.log_id = log_id
        self.table_name = table_name
        self.record_id = record_id
        self.action_type = action_type
        self.old_values: Optional[Dict[str, Any]] = json.loads(old_values) if old_values else None
        self.new_values: Optional[Dict[str, Any]] = json.loads(new_values) if new_values else None
        self.changed_by = changed_by
        self.changed_at = changed_at

    def to_dict(self) -> dict:
        return {
            'log_id': self.log_id,
            'table_name': self.table_name,
            'record_id': self.record_id,
            'action_type': self.action_type,
            'old_values': self.old_values,
            'new_values': self.new_values,
            'changed_by': self.changed_by,
            'changed_at': self.changed_at,
        }


class AuditLog:

    @staticmethod
    def record(table: AuditTable, record_id: int, action: AuditAction,
               before: Optional[Any], after: Optional[Any],
               actor_staff_id: Optional[int], now: datetime) -> None:
        """Append an audit row for a mutation in the current unit.

        Args:
            table: Entity kind being mutated.
            record_id: Identifier of the mutated record.
            action: INSERT, UPDATE or DELETE.
            before: Model instance before the change (None for INSERT).
            after: Model instance after the change (None for DELETE).
            actor_staff_id: Staff member responsible, None for system tasks.
            now: Time of the change.

        Raises:
            AuditWriteError: If the row cannot be written.
        """
        expected = _snapshot_type(table)
        for snapshot in (before, after):
            if snapshot is not None and not isinstance(snapshot, expected):
                raise TypeError(
                    f"{table.value} audit expects {expected.__name__}, "
                    f"got {type(snapshot).__name__}"
                )
        if action == AuditAction.INSERT and before is not None:
            raise ValueError("INSERT audit entries carry no before-image")
        if action == AuditAction.DELETE and after is not None:
            raise ValueError("DELETE audit entries carry no after-image")

        old_values = json.dumps(before.to_dict()) if before is not None else None
        new_values = json.dumps(after.to_dict()) if after is not None else None

        try:
            AuditLog._write(table.value, record_id, action.value, old_values,
                            new_values, actor_staff_id, format_timestamp(now))
        except sqlite3.Error as exc:
            logger.error("Audit write failed for %s #%s: %s", table.value, record_id, exc)
            raise AuditWriteError(
                f"Could not record audit entry for {table.value} #{record_id}"
            ) from exc

    @staticmethod
    def _write(table_name: str, record_id: int, action_type: str,
               old_values: Optional[str], new_values: Optional[str],
               changed_by: Optional[int], changed_at: str) -> None:
        db = get_db()
        db.execute('''
            INSERT INTO audit_log
            (table_name, record_id, action_type, old_values, new_values,
             changed_by, changed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (table_name, record_id, action_type, old_values, new_values,
              changed_by, changed_at))

    @staticmethod
    def get_for_record(table: AuditTable, record_id: int) -> List[AuditEntry]:
        """Get the history of one record, oldest first."""
        db = get_db()
        rows = db.execute('''
            SELECT * FROM audit_log
            WHERE table_name = ? AND record_id = ?
            ORDER BY log_id ASC
        ''', (table.value, record_id)).fetchall()
        return [AuditEntry(**dict(row)) for row in rows]

    @staticmethod
    def get_recent(limit: int = 50, table: Optional[AuditTable] = None) -> List[AuditEntry]:
        """Get the most recent entries, newest first."""
        db = get_db()
        if table:
            rows = db.execute('''
                SELECT * FROM audit_log WHERE table_name = ?
                ORDER BY log_id DESC LIMIT ?
            ''', (table.value, limit)).fetchall()
        else:
            rows = db.execute(
                'SELECT * FROM audit_log ORDER BY log_id DESC LIMIT ?',
                (limit,)
            ).fetchall()
        return [AuditEntry(**dict(row)) for row in rows]

    @staticmethod
    def count() -> int:
        db = get_db()
        return db.execute('SELECT COUNT(*) AS count FROM audit_log').fetchone()['count']
