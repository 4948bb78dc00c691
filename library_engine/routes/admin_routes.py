import csv
import json
import logging
from io import StringIO

from flask import Blueprint, jsonify, make_response, request

from library_engine.errors import ValidationError
from library_engine.extensions import get_engine
from library_engine.models.audit_log import AuditLog
from library_engine.models.enums import AuditTable
from library_engine.models.system_config import SystemConfig
from library_engine.utils.money import format_money, to_money
from library_engine.utils.request_args import get_json_body, optional_datetime, optional_int

logger = logging.getLogger(__name__)

# Create admin blueprint
admin_bp = Blueprint('admin', __name__)

INT_SETTINGS = ('loan_period_student', 'loan_period_faculty', 'loan_period_public',
                'default_reservation_priority')
MONEY_SETTINGS = ('late_fee_per_day', 'fine_block_threshold', 'lost_replacement_fee')


def _audit_table_arg():
    table = request.args.get('table')
    if not table:
        return None
    try:
        return AuditTable(table)
    except ValueError:
        raise ValidationError(f"Unknown audit table: {table}")


@admin_bp.route('/config', methods=['GET'])
def get_config():
    """Current business settings (stored overrides merged over defaults)."""
    return jsonify({'success': True, 'config': SystemConfig.get()})


@admin_bp.route('/config', methods=['POST'])
def save_config():
    """Save system configuration settings.

    Accepts any subset of the loan periods and money settings; unknown keys
    are rejected.
    """
    data = get_json_body()
    unknown = sorted(set(data) - set(INT_SETTINGS) - set(MONEY_SETTINGS))
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(unknown)}")

    config_data = {}
    for key in INT_SETTINGS:
        if key in data:
            value = optional_int(data, key)
            if value is None or value < 1:
                raise ValidationError(f"{key} must be a positive integer")
            config_data[key] = value
    for key in MONEY_SETTINGS:
        if key in data:
            amount = to_money(data[key])
            if amount < 0:
                raise ValidationError(f"{key} cannot be negative")
            config_data[key] = format_money(amount)

    config = SystemConfig.update(config_data)
    return jsonify({
        'success': True,
        'message': 'System configuration has been updated successfully!',
        'config': config
    })


@admin_bp.route('/sweep-overdue', methods=['POST'])
def sweep_overdue():
    data = get_json_body()
    swept = get_engine().sweep_overdue(now=optional_datetime(data),
                                       staff_id=optional_int(data, 'staff_id'))
    return jsonify({
        'success': True,
        'message': f"{len(swept)} loan(s) marked overdue",
        'loans': [loan.to_dict() for loan in swept]
    })


@admin_bp.route('/expire-memberships', methods=['POST'])
def expire_memberships():
    data = get_json_body()
    expired = get_engine().expire_memberships(now=optional_datetime(data),
                                              staff_id=optional_int(data, 'staff_id'))
    return jsonify({
        'success': True,
        'message': f"{len(expired)} membership(s) expired",
        'members': [member.to_dict() for member in expired]
    })


@admin_bp.route('/audit-log')
def audit_log():
    """Recent audit entries, or the history of one record."""
    table = _audit_table_arg()
    record_id = optional_int(request.args, 'record_id')

    if record_id is not None:
        if table is None:
            raise ValidationError("record_id requires a table")
        entries = AuditLog.get_for_record(table, record_id)
    else:
        limit = optional_int(request.args, 'limit') or 50
        entries = AuditLog.get_recent(limit, table=table)

    return jsonify({
        'success': True,
        'count': len(entries),
        'entries': [entry.to_dict() for entry in entries]
    })


@admin_bp.route('/audit-log/export')
def export_audit_log():
    """Export audit entries to CSV file."""
    entries = AuditLog.get_recent(1000, table=_audit_table_arg())

    si = StringIO()
    writer = csv.writer(si)

    writer.writerow(['Timestamp', 'Table', 'Record ID', 'Action', 'Old Values',
                     'New Values', 'Staff ID'])

    for entry in entries:
        writer.writerow([
            entry.changed_at,
            entry.table_name,
            entry.record_id,
            entry.action_type,
            json.dumps(entry.old_values) if entry.old_values is not None else '',
            json.dumps(entry.new_values) if entry.new_values is not None else '',
            entry.changed_by if entry.changed_by is not None else ''
        ])

    logger.info("Exported %d audit entries", len(entries))
    output = make_response(si.getvalue())
    output.headers["Content-Disposition"] = "attachment; filename=audit_log.csv"
    output.headers["Content-type"] = "text/csv"

    return output
