from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW
from library_engine.errors import (
    FineNotFound,
    MemberNotFound,
    OverPayment,
    StaffNotFound,
    ValidationError,
)
from library_engine.models.audit_log import AuditLog
from library_engine.models.enums import AuditTable, FineStatus
from library_engine.models.fine import Fine, FineLedger


@pytest.fixture
def member(catalog):
    return catalog.add_member()


def test_accrue_creates_pending_fine(engine, member, events):
    fine = engine.accrue_fine(member.member_id, Decimal('4.00'), 'Damaged spine', now=NOW)

    assert fine.fine_status == 'Pending'
    assert fine.fine_amount == Decimal('4.00')
    assert fine.paid_amount == Decimal('0.00')
    assert fine.loan_id is None
    assert fine.payment_date is None
    assert events == [('fine_accrued', member.member_id, fine.to_dict())]


def test_accrue_rounds_to_cents(engine, member):
    fine = engine.accrue_fine(member.member_id, 2.675, 'Rounding', now=NOW)

    assert fine.fine_amount == Decimal('2.68')


def test_zero_fine_is_paid_immediately(engine, member):
    fine = engine.accrue_fine(member.member_id, Decimal('0'), 'Waived', now=NOW)

    assert fine.status == FineStatus.PAID
    assert fine.payment_date == '2024-03-01 10:00:00'


@pytest.mark.parametrize('amount, reason', [
    (Decimal('-1.00'), 'Negative'),
    ('abc', 'Not a number'),
    (Decimal('1.00'), '   '),
])
def test_accrue_rejects_bad_input(engine, member, amount, reason):
    with pytest.raises(ValidationError):
        engine.accrue_fine(member.member_id, amount, reason, now=NOW)

    assert Fine.get_member_fines(member.member_id) == []


def test_accrue_unknown_member(engine, catalog):
    with pytest.raises(MemberNotFound):
        engine.accrue_fine(999, Decimal('1.00'), 'Ghost', now=NOW)


def test_partial_payments_reach_paid_exactly_once(engine, member):
    fine = engine.accrue_fine(member.member_id, Decimal('5.00'), 'Late return', now=NOW)

    first = engine.pay_fine(fine.fine_id, Decimal('2.00'), now=NOW + timedelta(days=1))
    assert first.fine_status == 'Partially Paid'
    assert first.payment_date is None
    assert engine.outstanding_balance(member.member_id) == Decimal('3.00')

    second = engine.pay_fine(fine.fine_id, Decimal('3.00'), now=NOW + timedelta(days=2))
    assert second.fine_status == 'Paid'
    assert second.paid_amount == Decimal('5.00')
    assert second.payment_date == '2024-03-03 10:00:00'
    assert engine.outstanding_balance(member.member_id) == Decimal('0.00')

    history = AuditLog.get_for_record(AuditTable.FINE, fine.fine_id)
    statuses = [entry.new_values['fine_status'] for entry in history]
    assert statuses == ['Pending', 'Partially Paid', 'Paid']


def test_overpayment_leaves_fine_unchanged(engine, member):
    fine = engine.accrue_fine(member.member_id, Decimal('5.00'), 'Late return', now=NOW)
    engine.pay_fine(fine.fine_id, Decimal('4.00'), now=NOW)
    audit_rows = AuditLog.count()

    with pytest.raises(OverPayment):
        engine.pay_fine(fine.fine_id, Decimal('1.01'), now=NOW)

    unchanged = Fine.get_by_id(fine.fine_id)
    assert unchanged.paid_amount == Decimal('4.00')
    assert unchanged.fine_status == 'Partially Paid'
    assert AuditLog.count() == audit_rows


def test_paying_a_paid_fine_is_overpayment(engine, member):
    fine = engine.accrue_fine(member.member_id, Decimal('1.00'), 'Late return', now=NOW)
    engine.pay_fine(fine.fine_id, Decimal('1.00'), now=NOW)

    with pytest.raises(OverPayment):
        engine.pay_fine(fine.fine_id, Decimal('0.01'), now=NOW)


@pytest.mark.parametrize('amount', [Decimal('0'), Decimal('-2.00')])
def test_payment_must_be_positive(engine, member, amount):
    fine = engine.accrue_fine(member.member_id, Decimal('3.00'), 'Late return', now=NOW)

    with pytest.raises(ValidationError):
        engine.pay_fine(fine.fine_id, amount, now=NOW)


def test_pay_unknown_fine(engine, member):
    with pytest.raises(FineNotFound):
        engine.pay_fine(12345, Decimal('1.00'), now=NOW)


def test_outstanding_balance_sums_unpaid_remainders(engine, member, catalog):
    other = catalog.add_member()
    a = engine.accrue_fine(member.member_id, Decimal('3.00'), 'A', now=NOW)
    engine.accrue_fine(member.member_id, Decimal('2.50'), 'B', now=NOW)
    c = engine.accrue_fine(member.member_id, Decimal('1.00'), 'C', now=NOW)
    engine.accrue_fine(other.member_id, Decimal('9.00'), 'Other member', now=NOW)
    engine.pay_fine(a.fine_id, Decimal('1.25'), now=NOW)
    engine.pay_fine(c.fine_id, Decimal('1.00'), now=NOW)

    assert engine.outstanding_balance(member.member_id) == Decimal('4.25')


def test_outstanding_balance_unknown_member(engine, catalog):
    with pytest.raises(MemberNotFound):
        engine.outstanding_balance(77)


@pytest.mark.parametrize('total, paid, expected', [
    ('5.00', '0.00', FineStatus.PENDING),
    ('5.00', '0.01', FineStatus.PARTIALLY_PAID),
    ('5.00', '5.00', FineStatus.PAID),
    ('0.00', '0.00', FineStatus.PAID),
])
def test_derive_status(total, paid, expected):
    assert FineLedger.derive_status(Decimal(total), Decimal(paid)) == expected


def test_fine_operations_reject_unknown_staff(engine, member, events):
    with pytest.raises(StaffNotFound):
        engine.accrue_fine(member.member_id, Decimal('2.00'), 'Torn page', now=NOW,
                           staff_id=9999)
    assert Fine.get_member_fines(member.member_id) == []

    fine = engine.accrue_fine(member.member_id, Decimal('2.00'), 'Torn page', now=NOW)
    with pytest.raises(StaffNotFound):
        engine.pay_fine(fine.fine_id, Decimal('1.00'), now=NOW, staff_id=9999)

    assert Fine.get_by_id(fine.fine_id).paid_amount == Decimal('0.00')
    assert len(events) == 1
