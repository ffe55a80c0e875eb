import calendar
import csv
import io
import logging
from datetime import datetime

from flask import Blueprint, Response, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import is_admin, jwt_required
from decoraters import admin_required
from models import Project, Subscription, User, db
from realtime import broadcast
from routes.audit_log_routes import record_audit
from routes.notifications_routes import notify_user
from utils.obfuscation import obfuscate
from utils.plans import find_plan
from utils.sanitize import clean

subscriptions_bp = Blueprint('subscriptions', __name__)
logger = logging.getLogger(__name__)

DEFAULT_DURATION_MONTHS = 12
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# action -> (statuses it may start from, resulting status)
TRANSITIONS = {
    'approve': (('pending',), 'active'),
    'reject': (('pending',), 'rejected'),
    'cancel': (('pending', 'active', 'extended'), 'cancelled'),
    'extend': (('active', 'extended'), 'extended'),
}

EXPORT_COLUMNS = ['id', 'userName', 'userEmail', 'plan', 'status', 'startDate', 'endDate', 'createdAt']
FORMULA_PREFIXES = ('=', '+', '-', '@')


def _csv_safe(value):
    # spreadsheets evaluate cells that start with these characters
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def add_months(moment, months):
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _positive_int(value, default):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def create_subscription_record(user, plan, duration_months=DEFAULT_DURATION_MONTHS, details=None,
                               user_name=None, user_email=None):
    """Add a pending subscription to the session. The caller commits."""
    subscription = Subscription(
        user_id=user.id if user else None,
        user_name=user_name or (user.name if user else None),
        user_email=(user_email or (user.email if user else '')).lower(),
        plan=plan,
        status='pending',
        duration_months=duration_months,
        details=obfuscate(details) if details else None,
    )
    db.session.add(subscription)
    return subscription


def create_project_for(subscription):
    """Subscription approval is the only place a subscription turns into a project."""
    project = Project(
        user_id=subscription.user_id,
        name=subscription.user_name,
        email=subscription.user_email,
        company=subscription.user.company if subscription.user else None,
        plan=subscription.plan,
        notes=obfuscate(f"Created from subscription {subscription.id}"),
        status='in-progress',
    )
    db.session.add(project)
    db.session.commit()
    return project


@subscriptions_bp.route('/subscriptions', methods=['GET'])
@jwt_required
def get_subscriptions():
    """
    List subscriptions, paginated
    ---
    tags:
      - Subscriptions
    parameters:
      - name: page
        in: query
        type: integer
      - name: limit
        in: query
        type: integer
      - name: status
        in: query
        type: string
    responses:
      200:
        description: One page of subscriptions; clients only see their own.
    """
    page = _positive_int(request.args.get('page'), 1)
    limit = min(_positive_int(request.args.get('limit'), DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    status = request.args.get('status')

    query = Subscription.query
    if not is_admin():
        query = query.filter(
            (Subscription.user_id == request.current_user_id)
            | (Subscription.user_email == (request.current_user_email or '').lower())
        )
    if status and status != 'all':
        query = query.filter(Subscription.status == status)

    total = query.count()
    items = query.order_by(Subscription.created_at.desc()) \
        .offset((page - 1) * limit).limit(limit).all()

    return jsonify({
        'data': [s.to_dict() for s in items],
        'total': total,
        'page': page,
        'limit': limit,
        'totalPages': (total + limit - 1) // limit,
    }), 200


@subscriptions_bp.route('/subscriptions', methods=['POST'])
@jwt_required
@admin_required
def create_subscription():
    data = request.get_json(silent=True) or {}
    user_email = (data.get('userEmail') or '').strip().lower()
    plan = clean(data.get('plan'))

    if not user_email or not plan:
        return jsonify({'error': "userEmail and plan are required"}), 400
    if not find_plan(plan):
        return jsonify({'error': f"Unknown plan: {plan}"}), 400

    user = db.session.get(User, data['userId']) if data.get('userId') else None
    user = user or User.query.filter_by(email=user_email).first()

    subscription = create_subscription_record(
        user, plan,
        duration_months=_positive_int(data.get('durationMonths'), DEFAULT_DURATION_MONTHS),
        details=clean(data.get('details')) if data.get('details') else None,
        user_name=clean(data.get('userName')),
        user_email=user_email,
    )
    db.session.commit()

    logger.info("Subscription %s created for %s", subscription.id, user_email)
    broadcast('new_subscription', subscription.to_dict())
    record_audit('SUBSCRIPTION_CREATED', request.current_user_email,
                 {'subscriptionId': subscription.id, 'plan': plan, 'userEmail': user_email})
    return jsonify(subscription.to_dict()), 201


@subscriptions_bp.route('/subscriptions/<string:subscription_id>/action', methods=['PATCH'])
@jwt_required
@admin_required
def subscription_action(subscription_id):
    """
    Approve, reject, cancel or extend a subscription
    ---
    tags:
      - Subscriptions
    parameters:
      - name: subscription_id
        in: path
        type: string
        required: true
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - action
          properties:
            action:
              type: string
              enum: [approve, reject, cancel, extend]
            details:
              type: object
              properties:
                months:
                  type: integer
                reason:
                  type: string
    responses:
      200:
        description: Updated subscription; approval also returns the created project.
      400:
        description: Unknown action, or details that are not an object.
      404:
        description: Subscription not found.
      409:
        description: The action is not allowed from the current status.
    """
    data = request.get_json(silent=True) or {}
    action = (data.get('action') or '').lower()
    details = data.get('details') or {}

    if action not in TRANSITIONS:
        return jsonify({'error': f"Unknown action: {data.get('action')}"}), 400
    if not isinstance(details, dict):
        return jsonify({'error': "details must be an object"}), 400

    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        return jsonify({'error': "Subscription not found"}), 404

    allowed_from, new_status = TRANSITIONS[action]
    if subscription.status not in allowed_from:
        return jsonify({'error': f"Cannot {action} a subscription that is {subscription.status}"}), 409

    now = datetime.utcnow()
    subscription.status = new_status
    if action == 'approve':
        subscription.start_date = now
        subscription.end_date = add_months(now, subscription.duration_months or DEFAULT_DURATION_MONTHS)
    elif action == 'extend':
        months = _positive_int(details.get('months'), 1)
        subscription.end_date = add_months(subscription.end_date or now, months)
    elif action == 'cancel':
        subscription.end_date = now
    if details.get('reason'):
        subscription.details = obfuscate(clean(details['reason']))

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to %s subscription %s", action, subscription_id)
        return jsonify({'error': f"Failed to {action} subscription"}), 500

    result = subscription.to_dict()

    # Status is already committed; a failure here leaves an active subscription without a project.
    if action == 'approve':
        try:
            project = create_project_for(subscription)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Subscription %s approved but project creation failed", subscription_id)
            project = None
        result['project'] = project.to_dict() if project else None
        if project:
            broadcast('new_project', project.to_dict())

    logger.info("Subscription %s %s", subscription_id, new_status)
    broadcast('update_subscriptions', subscription.to_dict())
    record_audit(f'SUBSCRIPTION_{action.upper()}', request.current_user_email,
                 {'subscriptionId': subscription.id, 'status': subscription.status, 'details': details})

    if subscription.user_id:
        notify_user(subscription.user_id, "Subscription update",
                    f"Your {subscription.plan} subscription is now {subscription.status}.")
    return jsonify(result), 200


@subscriptions_bp.route('/subscriptions/export', methods=['GET'])
@jwt_required
@admin_required
def export_subscriptions():
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for subscription in Subscription.query.order_by(Subscription.created_at.desc()).all():
        row = subscription.to_dict()
        writer.writerow({column: _csv_safe(row.get(column)) for column in EXPORT_COLUMNS})

    record_audit('SUBSCRIPTIONS_EXPORTED', request.current_user_email, {})
    return Response(
        output.getvalue(),
        mimetype='text/csv',
        headers={'Content-Disposition': 'attachment; filename=subscriptions.csv'},
    )


@subscriptions_bp.route('/subscriptions/<string:subscription_id>', methods=['DELETE'])
@jwt_required
@admin_required
def delete_subscription(subscription_id):
    logger.warning("Received DELETE request for subscription ID: %s", subscription_id)
    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        return jsonify({'error': "Subscription not found"}), 404

    db.session.delete(subscription)
    db.session.commit()
    broadcast('update_subscriptions', {'id': subscription_id, 'deleted': True})
    record_audit('SUBSCRIPTION_DELETED', request.current_user_email, {'subscriptionId': subscription_id})
    return jsonify({'message': f'Subscription {subscription_id} deleted successfully'}), 200
