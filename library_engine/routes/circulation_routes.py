from flask import Blueprint, jsonify, request

from library_engine.extensions import get_engine
from library_engine.utils.money import format_money
from library_engine.utils.request_args import (
    get_json_body,
    optional_datetime,
    optional_int,
    parse_bool,
    require_int,
)

# Create circulation blueprint
circulation_bp = Blueprint('circulation', __name__)


def _fulfillment_dict(fulfillment):
    if fulfillment is None:
        return None
    return {
        'reservation': fulfillment.reservation.to_dict(),
        'loan': fulfillment.loan.to_dict(),
    }


# ==================== LOANS ====================

@circulation_bp.route('/checkout', methods=['POST'])
def checkout():
    """Lend a copy to a member."""
    data = get_json_body()
    loan = get_engine().checkout(
        require_int(data, 'copy_id'),
        require_int(data, 'member_id'),
        require_int(data, 'staff_id'),
        now=optional_datetime(data),
    )
    return jsonify({
        'success': True,
        'message': f"Copy {loan.copy_id} checked out, due {loan.due_date}",
        'loan': loan.to_dict()
    }), 201


@circulation_bp.route('/loans/<int:loan_id>/return', methods=['POST'])
def return_copy(loan_id):
    """Return a loaned copy."""
    data = get_json_body()
    result = get_engine().return_copy(
        loan_id,
        now=optional_datetime(data),
        staff_id=optional_int(data, 'staff_id'),
        condition=data.get('condition'),
    )
    return jsonify({
        'success': True,
        'message': f"Loan {loan_id} returned",
        'loan': result.loan.to_dict(),
        'fine': result.fine.to_dict() if result.fine else None,
        'fulfillment': _fulfillment_dict(result.fulfillment)
    })


@circulation_bp.route('/loans/<int:loan_id>/status')
def loan_status(loan_id):
    status = get_engine().loan_status(loan_id, now=optional_datetime(request.args))
    return jsonify({'success': True, 'loan_id': loan_id, 'status': status.value})


@circulation_bp.route('/loans/active')
def active_loans():
    """Open loans with member, title, branch and days overdue."""
    args = request.args
    loans = get_engine().active_loans(
        now=optional_datetime(args),
        member_id=optional_int(args, 'member_id'),
        branch_id=optional_int(args, 'branch_id'),
        book_id=optional_int(args, 'book_id'),
        overdue_only=parse_bool(args.get('overdue_only')),
    )
    return jsonify({'success': True, 'count': len(loans), 'loans': loans})


# ==================== COPIES ====================

@circulation_bp.route('/copies/available')
def available_copies():
    args = request.args
    copies = get_engine().available_copies(
        book_id=optional_int(args, 'book_id'),
        branch_id=optional_int(args, 'branch_id'),
        isbn=args.get('isbn') or None,
        search=args.get('q') or None,
    )
    return jsonify({'success': True, 'count': len(copies), 'copies': copies})


@circulation_bp.route('/copies/<int:copy_id>/lost', methods=['POST'])
def report_lost(copy_id):
    data = get_json_body()
    report = get_engine().report_lost(
        copy_id,
        now=optional_datetime(data),
        staff_id=optional_int(data, 'staff_id'),
    )
    return jsonify({
        'success': True,
        'message': f"Copy {copy_id} reported lost",
        'copy': report.copy.to_dict(),
        'loan': report.loan.to_dict() if report.loan else None,
        'fines': [fine.to_dict() for fine in report.fines]
    })


@circulation_bp.route('/copies/<int:copy_id>/maintenance', methods=['POST'])
def send_to_maintenance(copy_id):
    data = get_json_body()
    book_copy = get_engine().send_to_maintenance(
        copy_id,
        now=optional_datetime(data),
        staff_id=optional_int(data, 'staff_id'),
    )
    return jsonify({'success': True, 'copy': book_copy.to_dict()})


@circulation_bp.route('/copies/<int:copy_id>/maintenance/complete', methods=['POST'])
def complete_maintenance(copy_id):
    data = get_json_body()
    result = get_engine().complete_maintenance(
        copy_id,
        require_int(data, 'staff_id'),
        now=optional_datetime(data),
        condition=data.get('condition'),
    )
    return jsonify({
        'success': True,
        'copy': result.copy.to_dict(),
        'fulfillment': _fulfillment_dict(result.fulfillment)
    })


# ==================== RESERVATIONS ====================

@circulation_bp.route('/reservations', methods=['POST'])
def reserve():
    """Place a hold on a book."""
    data = get_json_body()
    reservation = get_engine().reserve(
        require_int(data, 'book_id'),
        require_int(data, 'member_id'),
        now=optional_datetime(data),
        priority=optional_int(data, 'priority'),
        notes=data.get('notes'),
        staff_id=optional_int(data, 'staff_id'),
    )
    return jsonify({
        'success': True,
        'message': f"Reservation placed (position {reservation.queue_position()})",
        'reservation': reservation.to_dict()
    }), 201


@circulation_bp.route('/reservations/<int:reservation_id>/cancel', methods=['POST'])
def cancel_reservation(reservation_id):
    data = get_json_body()
    reservation = get_engine().cancel_reservation(
        reservation_id,
        now=optional_datetime(data),
        staff_id=optional_int(data, 'staff_id'),
    )
    return jsonify({
        'success': True,
        'message': 'Reservation cancelled',
        'reservation': reservation.to_dict()
    })


# ==================== FINES ====================

@circulation_bp.route('/fines/<int:fine_id>/pay', methods=['POST'])
def pay_fine(fine_id):
    """Record a (partial) payment against a fine."""
    data = get_json_body()
    fine = get_engine().pay_fine(
        fine_id,
        data.get('amount'),
        now=optional_datetime(data),
        staff_id=optional_int(data, 'staff_id'),
    )
    return jsonify({
        'success': True,
        'message': f"Payment recorded, fine is {fine.fine_status}",
        'fine': fine.to_dict()
    })


@circulation_bp.route('/members/<int:member_id>/balance')
def member_balance(member_id):
    balance = get_engine().outstanding_balance(member_id)
    return jsonify({
        'success': True,
        'member_id': member_id,
        'outstanding_balance': format_money(balance)
    })
