import sqlite3
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW, copy_status
from library_engine.errors import AuditWriteError, Conflict
from library_engine.models.audit_log import AuditLog
from library_engine.models.database import transaction
from library_engine.models.enums import AuditAction, AuditTable
from library_engine.models.fine import Fine
from library_engine.models.loan import Loan


def test_checkout_records_loan_and_copy_snapshots(engine, catalog, staff_id):
    copy = catalog.add_copy()
    member = catalog.add_member()

    loan = engine.checkout(copy.copy_id, member.member_id, staff_id, now=NOW)

    loan_history = AuditLog.get_for_record(AuditTable.LOAN, loan.loan_id)
    assert len(loan_history) == 1
    assert loan_history[0].action_type == 'INSERT'
    assert loan_history[0].old_values is None
    assert loan_history[0].new_values['loan_status'] == 'Active'
    assert loan_history[0].changed_by == staff_id
    assert loan_history[0].changed_at == '2024-03-01 10:00:00'

    copy_history = AuditLog.get_for_record(AuditTable.BOOK_COPY, copy.copy_id)
    assert [entry.action_type for entry in copy_history] == ['INSERT', 'UPDATE']
    assert copy_history[-1].old_values['copy_status'] == 'Available'
    assert copy_history[-1].new_values['copy_status'] == 'Checked Out'


def test_return_records_every_mutation(engine, catalog, staff_id):
    copy = catalog.add_copy()
    member = catalog.add_member()
    loan = engine.checkout(copy.copy_id, member.member_id, staff_id, now=NOW)
    before = AuditLog.count()

    result = engine.return_copy(loan.loan_id, now=loan.due_at + timedelta(days=2),
                                staff_id=staff_id)

    # loan closed, fine accrued, copy released
    assert AuditLog.count() == before + 3
    recent = AuditLog.get_recent(3)
    assert {entry.table_name for entry in recent} == {'loan', 'fine', 'book_copy'}
    fine_entry = AuditLog.get_for_record(AuditTable.FINE, result.fine.fine_id)[0]
    assert fine_entry.new_values['fine_amount'] == '1.00'


def test_get_recent_filters_by_table(engine, catalog, staff_id):
    copy = catalog.add_copy()
    member = catalog.add_member()
    engine.checkout(copy.copy_id, member.member_id, staff_id, now=NOW)

    entries = AuditLog.get_recent(10, table=AuditTable.MEMBER)

    assert [entry.record_id for entry in entries] == [member.member_id]


def test_audit_failure_rolls_back_checkout(engine, catalog, staff_id, monkeypatch, events):
    copy = catalog.add_copy()
    member = catalog.add_member()
    before = AuditLog.count()

    def failing_write(*args, **kwargs):
        raise sqlite3.OperationalError('disk I/O error')

    monkeypatch.setattr(AuditLog, '_write', staticmethod(failing_write))

    with pytest.raises(AuditWriteError) as excinfo:
        engine.checkout(copy.copy_id, member.member_id, staff_id, now=NOW)

    monkeypatch.undo()
    assert isinstance(excinfo.value, Conflict)
    assert copy_status(copy.copy_id) == 'Available'
    assert Loan.get_member_loans(member.member_id) == []
    assert AuditLog.count() == before
    assert events == []


def test_audit_failure_late_in_unit_rolls_back_return(engine, catalog, staff_id, monkeypatch):
    copy = catalog.add_copy()
    member = catalog.add_member()
    loan = engine.checkout(copy.copy_id, member.member_id, staff_id, now=NOW)
    real_write = AuditLog._write

    def fail_on_copy(table_name, *args):
        if table_name == 'book_copy':
            raise sqlite3.OperationalError('database is full')
        real_write(table_name, *args)

    monkeypatch.setattr(AuditLog, '_write', staticmethod(fail_on_copy))

    with pytest.raises(AuditWriteError):
        engine.return_copy(loan.loan_id, now=loan.due_at + timedelta(days=5))

    monkeypatch.undo()
    # Loan close and fine were written before the failure and must be gone
    assert Loan.get_by_id(loan.loan_id).is_open
    assert Fine.get_member_fines(member.member_id) == []
    assert copy_status(copy.copy_id) == 'Checked Out'


def test_record_rejects_wrong_snapshot_type(engine, catalog):
    member = catalog.add_member()

    with pytest.raises(TypeError):
        with transaction():
            AuditLog.record(AuditTable.LOAN, 1, AuditAction.INSERT, None, member, None, NOW)


def test_record_rejects_before_image_on_insert(engine, catalog):
    member = catalog.add_member()

    with pytest.raises(ValueError):
        with transaction():
            AuditLog.record(AuditTable.MEMBER, member.member_id, AuditAction.INSERT,
                            member, member, None, NOW)


def test_system_actor_is_recorded_as_null(engine, catalog):
    member = catalog.add_member()

    fine = engine.accrue_fine(member.member_id, Decimal('1.00'), 'Late return', now=NOW)

    entry = AuditLog.get_for_record(AuditTable.FINE, fine.fine_id)[0]
    assert entry.changed_by is None
