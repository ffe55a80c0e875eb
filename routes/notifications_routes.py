import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import jwt_required
from decoraters import admin_required
from models import Notification, User, db
from realtime import broadcast
from routes.audit_log_routes import record_audit

notifications_bp = Blueprint('notifications', __name__)
logger = logging.getLogger(__name__)


def notify_user(user_id, title, message, type='info'):
    """Store a notification for one user and push it to connected dashboards."""
    if not user_id:
        return None
    notification = Notification(user_id=user_id, title=title, message=message, type=type, target='user')
    db.session.add(notification)
    db.session.commit()
    broadcast('new_notification', notification.to_dict())
    return notification


def notify_admins(title, message, type='info'):
    admins = User.query.filter_by(role='admin').all()
    created = [
        Notification(user_id=admin.id, title=title, message=message, type=type, target='user')
        for admin in admins
    ]
    if not created:
        return []
    db.session.add_all(created)
    db.session.commit()
    for notification in created:
        broadcast('new_notification', notification.to_dict())
    return created


def _visible_to(user_id):
    return Notification.query.filter(
        or_(Notification.user_id == user_id, Notification.target == 'all')
    )


# --- GET the caller's inbox (own rows plus system-wide rows) ---
@notifications_bp.route('/notifications', methods=['GET'])
@jwt_required
def get_my_notifications():
    user_id = request.current_user_id
    notifications = _visible_to(user_id).order_by(Notification.created_at.desc()).all()
    return jsonify([n.to_dict(viewer_id=user_id) for n in notifications]), 200


# --- GET every notification ever sent ---
@notifications_bp.route('/notifications/history', methods=['GET'])
@jwt_required
@admin_required
def get_notification_history():
    notifications = Notification.query.order_by(Notification.created_at.desc()).all()
    return jsonify([n.to_dict() for n in notifications]), 200


@notifications_bp.route('/notifications/send', methods=['POST'])
@jwt_required
@admin_required
def send_notification():
    """
    Send a notification to one user or to everyone
    ---
    tags:
      - Notifications
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - title
            - message
          properties:
            recipientId:
              type: string
              description: A user id, or "all" for a system-wide notification.
            title:
              type: string
            message:
              type: string
            type:
              type: string
    responses:
      201:
        description: Notification stored and broadcast.
      400:
        description: Missing title or message.
      404:
        description: Recipient not found.
    """
    data = request.get_json(silent=True) or {}
    recipient_id = data.get('recipientId') or 'all'
    title = (data.get('title') or '').strip()
    message = (data.get('message') or '').strip()

    if not title or not message:
        return jsonify({"error": "title and message are required"}), 400

    if recipient_id == 'all':
        notification = Notification(title=title, message=message, type=data.get('type', 'info'),
                                    target='all', read_by=[])
    else:
        if not db.session.get(User, recipient_id):
            return jsonify({"error": "User not found"}), 404
        notification = Notification(user_id=recipient_id, title=title, message=message,
                                    type=data.get('type', 'info'), target='user')

    try:
        db.session.add(notification)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to store notification")
        return jsonify({"error": "Failed to send notification"}), 500

    broadcast('new_notification', notification.to_dict())
    record_audit('NOTIFICATION_SENT', request.current_user_email,
                 {'notificationId': notification.id, 'recipient': recipient_id, 'title': title})
    return jsonify(notification.to_dict()), 201


@notifications_bp.route('/notifications/<string:notification_id>/read', methods=['PATCH'])
@jwt_required
def mark_notification_read(notification_id):
    user_id = request.current_user_id
    notification = db.session.get(Notification, notification_id)
    if not notification:
        return jsonify({"error": "Notification not found"}), 404

    if notification.target == 'all':
        read_by = list(notification.read_by or [])
        if user_id not in read_by:
            # reassign so the JSON column is flagged dirty
            notification.read_by = read_by + [user_id]
    else:
        if notification.user_id != user_id:
            return jsonify({"error": "Forbidden"}), 403
        notification.read = True

    db.session.commit()
    return jsonify(notification.to_dict(viewer_id=user_id)), 200


@notifications_bp.route('/notifications/read-all', methods=['PATCH'])
@jwt_required
def mark_all_notifications_read():
    user_id = request.current_user_id

    updated = Notification.query.filter_by(user_id=user_id, read=False).update({'read': True})

    for notification in Notification.query.filter_by(target='all').all():
        read_by = list(notification.read_by or [])
        if user_id not in read_by:
            notification.read_by = read_by + [user_id]
            updated += 1

    db.session.commit()
    return jsonify({"message": "All notifications marked as read", "updated": updated}), 200
