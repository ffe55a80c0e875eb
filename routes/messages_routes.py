import logging
import smtplib

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import jwt_required
from decoraters import admin_required
from extensions import limiter, public_limit
from models import Message, db
from realtime import broadcast
from routes.audit_log_routes import record_audit
from utils.email_utils import send_email
from utils.obfuscation import obfuscate
from utils.sanitize import clean, contains_profanity

messages_bp = Blueprint('messages', __name__)
logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


@messages_bp.route('/client-messages', methods=['POST'])
@limiter.limit(public_limit)
def submit_message():
    """
    Contact form submission
    ---
    tags:
      - Messages
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - name
            - email
            - subject
            - message
          properties:
            name:
              type: string
            email:
              type: string
            subject:
              type: string
            message:
              type: string
    responses:
      201:
        description: Message stored and pushed to the admin dashboard.
      400:
        description: Missing fields, inappropriate content or bad length.
    """
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    email = data.get('email')
    subject = data.get('subject')
    message = data.get('message')

    if not all([name, email, subject, message]):
        return jsonify({"error": "All fields are required."}), 400

    if contains_profanity(message):
        return jsonify({"error": "Message contains inappropriate content."}), 400

    if len(message) < 1 or len(message) > MAX_MESSAGE_LENGTH:
        return jsonify({"error": f"Message must be between 1 and {MAX_MESSAGE_LENGTH} characters."}), 400

    new_message = Message(
        name=clean(name),
        email=clean(email),
        subject=clean(subject),
        content=obfuscate(clean(message)),
        status='unread',
        ip=request.remote_addr,
        user_agent=request.headers.get('User-Agent'),
    )
    try:
        db.session.add(new_message)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to store contact message")
        return jsonify({"error": "Failed to send message."}), 500

    logger.info("Contact message %s received", new_message.id)
    broadcast('new_message', new_message.to_dict())
    return jsonify({"message": "Message sent successfully.", "id": new_message.id}), 201


@messages_bp.route('/messages', methods=['GET'])
@jwt_required
@admin_required
def get_all_messages():
    messages = Message.query.order_by(Message.created_at.desc()).all()
    return jsonify([m.to_dict() for m in messages]), 200


@messages_bp.route('/send-email', methods=['POST'])
@jwt_required
@admin_required
def compose_email():
    data = request.get_json(silent=True) or {}
    to = (data.get('to') or '').strip()
    subject = (data.get('subject') or '').strip()
    body = data.get('message') or ''

    if not all([to, subject, body]):
        return jsonify({"error": "to, subject and message are required"}), 400

    try:
        send_email([to], subject, body)
    except (smtplib.SMTPException, OSError):
        return jsonify({"error": "Failed to send email"}), 502

    record_audit('EMAIL_SENT', request.current_user_email, {'to': to, 'subject': subject})
    return jsonify({"message": "Email sent successfully"}), 200
