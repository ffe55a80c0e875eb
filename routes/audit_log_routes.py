import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import jwt_required
from decoraters import admin_required
from models import AuditLog, db

audit_log_bp = Blueprint('audit_log', __name__)
logger = logging.getLogger(__name__)


def record_audit(action, performed_by, details=None):
    """Append one audit row. Call it after the handler's own commit."""
    try:
        db.session.add(AuditLog(action=action, performed_by=performed_by, details=details or {}))
        db.session.commit()
        logger.info("Audit %s by %s", action, performed_by)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not write audit log %s", action)


@audit_log_bp.route('/audit-logs', methods=['GET'])
@audit_log_bp.route('/admin/audit-logs', methods=['GET'])
@jwt_required
@admin_required
def get_all_logs():
    """
    List audit log entries, newest first
    ---
    tags:
      - Audit
    parameters:
      - name: action
        in: query
        type: string
        required: false
      - name: limit
        in: query
        type: integer
        required: false
    responses:
      200:
        description: Audit log entries.
    """
    query = AuditLog.query
    action = request.args.get('action')
    if action:
        query = query.filter_by(action=action)

    query = query.order_by(AuditLog.created_at.desc())
    limit = request.args.get('limit', type=int)
    if limit and limit > 0:
        query = query.limit(limit)

    return jsonify([log.to_dict() for log in query.all()]), 200


# Audit entries are append-only.
@audit_log_bp.route('/audit-logs/<log_id>', methods=['PUT', 'PATCH'])
def update_log(log_id):
    return jsonify({'error': 'Log entries cannot be updated'}), 403


@audit_log_bp.route('/audit-logs/<log_id>', methods=['DELETE'])
def delete_log(log_id):
    return jsonify({'error': 'Log entries cannot be deleted'}), 403
