import logging
import time
from datetime import datetime
from decimal import Decimal

from flask import Blueprint, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import jwt_required
from decoraters import admin_required
from models import Invoice, Project, SystemSetting, Ticket, User, db
from routes.audit_log_routes import record_audit
from utils.plans import parse_amount

dashboard_bp = Blueprint('dashboard', __name__)
logger = logging.getLogger(__name__)

CLOSED_PROJECT_STATUSES = ('completed', 'rejected')
CLOSED_TICKET_STATUSES = ('resolved', 'closed')


@dashboard_bp.route('/admin/stats', methods=['GET'])
@jwt_required
@admin_required
def get_stats():
    total_revenue = Decimal('0')
    outstanding = Decimal('0')
    # amounts are free text, so they are summed here rather than in SQL
    for invoice in Invoice.query.all():
        status = (invoice.status or '').lower()
        if status == 'paid':
            total_revenue += parse_amount(invoice.amount)
        elif status != 'cancelled':
            outstanding += parse_amount(invoice.amount)

    return jsonify({
        'totalUsers': User.query.count(),
        'activeProjects': Project.query.filter(~Project.status.in_(CLOSED_PROJECT_STATUSES)).count(),
        'pendingTickets': Ticket.query.filter(~Ticket.status.in_(CLOSED_TICKET_STATUSES)).count(),
        'totalRevenue': float(total_revenue),
        'outstandingRevenue': float(outstanding),
    }), 200


@dashboard_bp.route('/health', methods=['GET'])
def health_check():
    """
    Liveness and database check
    ---
    tags:
      - Health
    responses:
      200:
        description: Database answered.
      503:
        description: Database check failed.
    """
    started = time.perf_counter()
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Health check database query failed")
        return jsonify({
            'status': 'unhealthy',
            'latency': None,
            'database': 'disconnected',
            'timestamp': datetime.utcnow().isoformat(),
        }), 503

    latency_ms = round((time.perf_counter() - started) * 1000, 2)
    return jsonify({
        'status': 'healthy',
        'latency': latency_ms,
        'database': 'connected',
        'timestamp': datetime.utcnow().isoformat(),
    }), 200


@dashboard_bp.route('/admin/settings', methods=['GET'])
@jwt_required
@admin_required
def get_settings():
    settings = SystemSetting.query.order_by(SystemSetting.key).all()
    return jsonify({s.key: s.value for s in settings}), 200


@dashboard_bp.route('/admin/settings', methods=['PUT'])
@jwt_required
@admin_required
def update_settings():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({"error": "Settings must be a non-empty JSON object"}), 400

    for key, value in data.items():
        setting = db.session.get(SystemSetting, key)
        if setting is None:
            db.session.add(SystemSetting(key=key, value=value))
        else:
            setting.value = value

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to update settings")
        return jsonify({"error": "Failed to update settings"}), 500

    logger.info("Settings updated: %s", ", ".join(sorted(data)))
    record_audit('SETTINGS_UPDATED', request.current_user_email, {'keys': sorted(data)})
    settings = SystemSetting.query.order_by(SystemSetting.key).all()
    return jsonify({s.key: s.value for s in settings}), 200
