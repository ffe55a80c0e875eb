from datetime import datetime
import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import jwt_required
from decoraters import admin_required
from extensions import limiter, public_limit
from models import Ticket, User, db, generate_uuid
from realtime import broadcast
from routes.projects_routes import ensure_own_email
from utils.obfuscation import obfuscate
from utils.sanitize import clean

tickets_bp = Blueprint('tickets', __name__)
logger = logging.getLogger(__name__)

TICKET_STATUSES = ('open', 'in-progress', 'resolved', 'closed')
TICKET_PRIORITIES = ('low', 'medium', 'high', 'urgent')


def append_response(ticket, sender, text):
    """Add an obfuscated reply to the ticket's conversation."""
    response = {
        'id': generate_uuid(),
        'sender': sender,
        'message': obfuscate(clean(text)),
        'timestamp': datetime.utcnow().isoformat(),
    }
    # new list so SQLAlchemy sees the JSON column change
    ticket.responses = list(ticket.responses or []) + [response]
    ticket.updated_at = datetime.utcnow()
    return response


@tickets_bp.route('/tickets', methods=['POST'])
@limiter.limit(public_limit)
def create_ticket():
    data = request.get_json(silent=True) or {}
    subject = data.get('subject')
    message = data.get('message')
    user_email = data.get('userEmail')

    if not all([subject, message, user_email]):
        return jsonify({"error": "Subject, message, and email are required."}), 400

    priority = clean(data.get('priority') or 'medium').lower()
    if priority not in TICKET_PRIORITIES:
        priority = 'medium'

    user_email = clean(user_email).lower()
    owner = User.query.filter_by(email=user_email).first()
    ticket = Ticket(
        user_id=owner.id if owner else None,
        user_email=user_email,
        user_name=clean(data.get('userName') or (owner.name if owner else None) or 'User'),
        subject=clean(subject),
        message=obfuscate(clean(message)),
        priority=priority,
        status='open',
        responses=[],
    )
    try:
        db.session.add(ticket)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to store ticket")
        return jsonify({"error": "Failed to create support ticket."}), 500

    logger.info("Ticket %s opened by %s", ticket.id, user_email)
    broadcast('new_ticket', ticket.to_dict())
    return jsonify({"message": "Support ticket created.", "id": ticket.id}), 201


@tickets_bp.route('/tickets', methods=['GET'])
@jwt_required
@admin_required
def get_all_tickets():
    tickets = Ticket.query.order_by(Ticket.created_at.desc()).all()
    return jsonify([t.to_dict() for t in tickets]), 200


@tickets_bp.route('/client/tickets', methods=['GET'])
@jwt_required
def get_client_tickets():
    email = request.args.get('email') or request.current_user_email
    denied = ensure_own_email(email)
    if denied:
        return denied

    tickets = Ticket.query.filter_by(user_email=email.lower()) \
        .order_by(Ticket.created_at.desc()).all()
    return jsonify([t.to_dict() for t in tickets]), 200


@tickets_bp.route('/client/tickets/<string:ticket_id>', methods=['PATCH'])
@jwt_required
def client_reply(ticket_id):
    data = request.get_json(silent=True) or {}
    email = data.get('email') or request.current_user_email
    response = data.get('response')

    if not email or not response:
        return jsonify({"error": "Email and response required"}), 400

    denied = ensure_own_email(email)
    if denied:
        return denied

    ticket = db.session.get(Ticket, ticket_id)
    if not ticket:
        return jsonify({"error": "Ticket not found"}), 404

    if (ticket.user_email or '').lower() != email.lower():
        return jsonify({"error": "Unauthorized"}), 403

    append_response(ticket, 'client', response)
    db.session.commit()

    updated = ticket.to_dict()
    broadcast('update_tickets', updated)
    return jsonify(updated), 200
