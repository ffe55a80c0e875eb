import logging
import re

from flask import Blueprint, current_app, jsonify, request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.exception import ApiError
from auth.authhelpers import create_access_token, get_current_user, jwt_required
from extensions import bcrypt, limiter, public_limit
from models import User, db
from realtime import broadcast
from routes.audit_log_routes import record_audit
from utils.email_utils import send_login_notification
from utils.sanitize import clean

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def normalize_email(value):
    return (value or '').strip().lower()


def is_valid_email(value):
    return bool(EMAIL_RE.match(value or ''))


def hash_password(password):
    return bcrypt.generate_password_hash(password).decode('utf-8')


def check_password(user, password):
    return bool(user.password_hash) and bcrypt.check_password_hash(user.password_hash, password or '')


def verify_google_credential(credential):
    """Verify a Google ID token and return its claims."""
    client_id = current_app.config.get('GOOGLE_CLIENT_ID')
    if not client_id:
        raise ApiError("Google sign-in is not configured", 503)
    if not credential:
        raise ApiError("credential is required", 400)
    try:
        claims = id_token.verify_oauth2_token(credential, google_requests.Request(), client_id)
    except ValueError as e:
        logger.warning("Rejected Google credential: %s", e)
        raise ApiError("Invalid Google credential", 401)

    if claims.get('iss') not in ('accounts.google.com', 'https://accounts.google.com'):
        raise ApiError("Invalid Google credential", 401)
    if not claims.get('email') or not claims.get('email_verified', False):
        raise ApiError("Google account email is not verified", 401)
    return claims


@auth_bp.route("/login", methods=['POST'])
@limiter.limit(public_limit)
def admin_login():
    """
    Admin Login
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            username:
              type: string
              description: Accepted as an alias of email.
            password:
              type: string
    responses:
      200:
        description: Signed admin token.
      400:
        description: Missing credentials.
      401:
        description: Invalid credentials.
    """
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get('email') or data.get('username'))
    password = data.get('password')

    if not all([email, password]):
        return jsonify({"error": "Email and password are required"}), 400

    user = User.query.filter_by(email=email).first()
    if not user or user.role != 'admin' or not check_password(user, password):
        logger.warning("Failed admin login for %s from %s", email, request.remote_addr)
        return jsonify({"error": "Invalid credentials"}), 401

    token = create_access_token(user)
    user_agent = request.headers.get('User-Agent')
    send_login_notification(user.email, request.remote_addr, user_agent)
    record_audit('ADMIN_LOGIN', user.email, {'ip': request.remote_addr, 'userAgent': user_agent})
    return jsonify({"token": token, "user": user.to_dict()}), 200


@auth_bp.route("/auth/register", methods=['POST'])
@limiter.limit(public_limit)
def register():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get('email'))
    password = data.get('password') or ''
    name = clean(data.get('name'))

    if not is_valid_email(email):
        return jsonify({"error": "A valid email is required"}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({"error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}), 400
    if User.query.filter_by(email=email).first():
        return jsonify({"error": "An account with this email already exists"}), 409

    user = User(email=email, name=name, password_hash=hash_password(password),
                role='client', account_type='email')
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "An account with this email already exists"}), 409

    logger.info("Registered user %s", user.id)
    broadcast('new_user', user.to_dict())
    return jsonify({"token": create_access_token(user), "user": user.to_dict()}), 201


@auth_bp.route("/auth/login", methods=['POST'])
@limiter.limit(public_limit)
def client_login():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get('email'))
    password = data.get('password')

    if not all([email, password]):
        return jsonify({"error": "Email and password are required"}), 400

    user = User.query.filter_by(email=email).first()
    if not user or not check_password(user, password):
        return jsonify({"error": "Invalid email or password"}), 401

    return jsonify({"token": create_access_token(user), "user": user.to_dict()}), 200


@auth_bp.route("/auth/google", methods=['POST'])
def google_login():
    data = request.get_json(silent=True) or {}
    claims = verify_google_credential(data.get('credential'))
    email = normalize_email(claims['email'])

    user = User.query.filter_by(google_id=claims['sub']).first() or \
        User.query.filter_by(email=email).first()
    created = user is None
    if created:
        user = User(email=email, role='client', account_type='google')
        db.session.add(user)

    user.google_id = claims['sub']
    user.name = user.name or claims.get('name')
    user.avatar_url = claims.get('picture') or user.avatar_url
    db.session.commit()

    if created:
        broadcast('new_user', user.to_dict())
    return jsonify({"token": create_access_token(user), "user": user.to_dict()}), 200


@auth_bp.route("/auth/me", methods=['GET'])
@jwt_required
def me():
    return jsonify({"user": get_current_user().to_dict()}), 200


@auth_bp.route("/auth/profile", methods=['PATCH'])
@jwt_required
def update_profile():
    user = get_current_user()
    data = request.get_json(silent=True) or {}

    if 'name' in data:
        user.name = clean(data['name'])
    if 'company' in data:
        user.company = clean(data['company'])
    if 'phone' in data:
        user.phone = clean(data['phone'])
    if 'avatarUrl' in data:
        user.avatar_url = clean(data['avatarUrl'])

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Profile update failed for %s", user.id)
        return jsonify({"error": "Failed to update profile"}), 500

    broadcast('update_users', user.to_dict())
    return jsonify({"user": user.to_dict()}), 200


@auth_bp.route("/auth/change-password", methods=['POST'])
@jwt_required
def change_password():
    user = get_current_user()
    data = request.get_json(silent=True) or {}
    old_password = data.get('oldPassword')
    new_password = data.get('newPassword') or ''

    # Google accounts may set a first password without an old one.
    if user.password_hash:
        if not old_password:
            return jsonify({"error": "Current password is required"}), 400
        if not check_password(user, old_password):
            return jsonify({"error": "Current password is incorrect"}), 401

    if len(new_password) < MIN_PASSWORD_LENGTH:
        return jsonify({"error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}), 400

    user.password_hash = hash_password(new_password)
    db.session.commit()
    record_audit('PASSWORD_CHANGED', user.email, {'userId': user.id})
    return jsonify({"message": "Password updated successfully", "user": user.to_dict()}), 200
